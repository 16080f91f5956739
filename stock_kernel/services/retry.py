"""
Retry-on-conflict for units of work that touch stock rows.

Responsibility:
    Re-run a whole workflow commit when a concurrent writer changed a
    stock row between read and write (OptimisticLockError).  Each attempt
    starts from a rolled-back session so it re-reads current stock.

Invariants enforced:
    - At most ``max_retries`` extra attempts; the last conflict propagates.
    - Only OptimisticLockError is retried.  Validation, state and
      processing errors surface on the first attempt.
"""

from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.orm import Session

from stock_kernel.exceptions import OptimisticLockError
from stock_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")

MAX_RETRIES = 3


def run_with_retry(
    session: Session,
    operation: Callable[[], T],
    *,
    max_retries: int = MAX_RETRIES,
    operation_name: str = "unit_of_work",
) -> T:
    attempt = 0
    while True:
        try:
            return operation()
        except OptimisticLockError as exc:
            session.rollback()
            if attempt >= max_retries:
                logger.error(
                    "optimistic_retry_exhausted",
                    extra={
                        "operation_name": operation_name,
                        "attempts": attempt + 1,
                        "entity_id": exc.entity_id,
                    },
                )
                raise
            attempt += 1
            logger.warning(
                "optimistic_retry",
                extra={
                    "operation_name": operation_name,
                    "attempt": attempt,
                    "entity_id": exc.entity_id,
                },
            )
