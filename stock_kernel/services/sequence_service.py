"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Allocates strictly increasing integers per sequence name and formats
    document numbers (``BR-2026-0001``, ``TR-2026-0001``, ``INV-2026-0001``)
    on top of them.

Architecture position:
    Kernel > Services.  Called by the receipt, transfer and count services
    when a document is first saved.

Invariants enforced:
    - Monotonicity: the locked counter row is the sole source of truth for
      the next value.  ``MAX(number) + 1`` is never used.
    - Transactional: an increment is only visible after the caller's
      transaction commits; a rollback returns the value.

Failure modes:
    - IntegrityError on a concurrent first use of a counter name, handled
      by a savepoint rollback and a locked re-read.
"""

from enum import Enum

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.logging_config import get_logger
from stock_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class NumberingReset(Enum):
    """Whether a document prefix restarts at 1 every calendar year."""
    YEARLY = "yearly"
    NEVER = "never"


class SequenceService:
    """
    Transactional sequence numbers.

    Does NOT call ``session.commit()``; the caller owns the transaction.
    """

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """Lock (or create) the counter row, increment it, return the new value."""
        counter = self._locked_counter(sequence_name)

        if counter is None:
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing, or None if never used."""
        return self._session.execute(
            select(SequenceCounter.current_value)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

    def reset(self, sequence_name: str, value: int = 0) -> None:
        """Set a counter back to ``value``.  Administrative use only."""
        counter = self._locked_counter(sequence_name)
        if counter is None:
            counter = SequenceCounter(name=sequence_name, current_value=value)
            self._session.add(counter)
        else:
            counter.current_value = value
        self._session.flush()
        logger.warning(
            "sequence_reset",
            extra={"sequence_name": sequence_name, "value": value},
        )


class DocumentNumberService:
    """
    Formats ``<PREFIX>-<YYYY>-<NNNN>`` document numbers.

    With ``NumberingReset.YEARLY`` each (prefix, year) pair has its own
    counter; with ``NEVER`` one counter per prefix runs forever while the
    year in the formatted number still follows the clock.  The sequence is
    zero-padded to at least four digits.
    """

    RECEIPT = "BR"
    TRANSFER = "TR"
    COUNT = "INV"

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        reset: NumberingReset = NumberingReset.YEARLY,
    ):
        self._sequences = SequenceService(session)
        self._clock = clock or SystemClock()
        self._reset = reset

    def counter_name(self, prefix: str, year: int) -> str:
        if self._reset is NumberingReset.YEARLY:
            return f"{prefix}:{year:04d}"
        return prefix

    def next_number(self, prefix: str) -> str:
        year = self._clock.now().year
        value = self._sequences.next_value(self.counter_name(prefix, year))
        return format_document_number(prefix, year, value)


def format_document_number(prefix: str, year: int, value: int) -> str:
    return f"{prefix}-{year:04d}-{value:04d}"
