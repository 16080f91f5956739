"""
Unit-of-work helpers shared by the document workflows.

Responsibility:
    Give every committing operation the same shape: run under
    retry-on-conflict, commit once at the end, roll back on any failure,
    and report commit-phase failures as ProcessingError.

    validation  ->  commit_phase(stock mutations + ledger appends)  ->  commit

Invariants enforced:
    - Atomicity: nothing from a failed attempt is visible; the session is
      rolled back before the error reaches the caller.
    - Rule failures detected before the commit phase keep their own type
      (InputValidationError, BusinessRuleViolation, StateTransitionError,
      NotFoundError).  Anything that fails inside ``commit_phase`` becomes
      ProcessingError, except conflicts, which are retried first.
"""

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stock_kernel.exceptions import (
    OptimisticLockError,
    ProcessingError,
    StateTransitionError,
    StockLedgerError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.services.retry import MAX_RETRIES, run_with_retry

logger = get_logger("services.unit_of_work")

T = TypeVar("T")


@contextmanager
def commit_phase(document_type: str, document_id) -> Iterator[None]:
    """Convert failures during stock mutation into ProcessingError."""
    try:
        yield
    except (OptimisticLockError, StateTransitionError, ProcessingError):
        raise
    except (StockLedgerError, SQLAlchemyError) as exc:
        logger.error(
            "commit_phase_failed",
            extra={
                "document_type": document_type,
                "document_id": str(document_id),
                "error": str(exc),
            },
        )
        raise ProcessingError(document_type, document_id, str(exc)) from exc


def execute_unit_of_work(
    session: Session,
    operation: Callable[[], T],
    *,
    document_type: str,
    document_id=None,
    max_retries: int = MAX_RETRIES,
    operation_name: str = "unit_of_work",
) -> T:
    """Run ``operation`` with retry, then commit; roll back on any failure."""
    try:
        result = run_with_retry(
            session, operation, max_retries=max_retries, operation_name=operation_name,
        )
        session.commit()
        return result
    except OptimisticLockError as exc:
        session.rollback()
        raise ProcessingError(document_type, document_id, str(exc)) from exc
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error(
            "unit_of_work_database_error",
            extra={"operation_name": operation_name, "document_type": document_type},
            exc_info=True,
        )
        raise ProcessingError(document_type, document_id, str(exc)) from exc
    except Exception:
        session.rollback()
        raise
