"""
StockLevelStore -- single source of truth for ``(store, product)`` positions.

Responsibility:
    Reads and mutates ``stock_levels`` rows.  The receipt, transfer and
    count workflows change stock ONLY through this class, inside their own
    commit path; nothing else writes the table.

Architecture position:
    Kernel > Services.  Pure persistence: cost averaging is computed by the
    caller (``stock_engines.cost``) and passed in.

Invariants enforced:
    - Non-negativity: a mutation that would drive ``quantity`` or
      ``reserved_quantity`` below zero, or ``reserved_quantity`` above
      ``quantity``, is rejected with StockInvariantError BEFORE the row is
      touched.
    - Serialization per key: ``lock()`` takes ``SELECT ... FOR UPDATE`` row
      locks in sorted key order, and every UPDATE is guarded by the row's
      ``version``; a concurrent change surfaces as OptimisticLockError.

Failure modes:
    - StockInvariantError: invalid mutation (nothing written).
    - OptimisticLockError: row changed by another transaction since it was
      read.  Callers retry the whole unit of work (see ``retry.py``).
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.stock import ZERO, StockKey, StockLevel, quantize_cost
from stock_kernel.exceptions import OptimisticLockError, StockInvariantError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.stock_level import StockLevelModel

logger = get_logger("services.stock_level_store")


class StockLevelStore:
    """
    Repository for stock positions.

    Does NOT commit; the calling workflow owns the transaction.

    ``reserve`` / ``release`` are not used by the workflows here (transfers
    decrement the source outright).  They serve callers outside this core,
    such as order taking, that hold stock without moving it.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _row(self, store_id: str, product_id: str) -> StockLevelModel | None:
        return self._session.execute(
            select(StockLevelModel).where(
                StockLevelModel.store_id == store_id,
                StockLevelModel.product_id == product_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get(self, store_id: str, product_id: str) -> StockLevel | None:
        row = self._row(store_id, product_id)
        return row.to_dto() if row is not None else None

    def get_or_empty(self, store_id: str, product_id: str) -> StockLevel:
        return self.get(store_id, product_id) or StockLevel.empty(store_id, product_id)

    def list_by_store(self, store_id: str) -> list[StockLevel]:
        rows = self._session.execute(
            select(StockLevelModel)
            .where(StockLevelModel.store_id == store_id)
            .order_by(StockLevelModel.product_id)
        ).scalars().all()
        return [r.to_dto() for r in rows]

    def list_all(self) -> list[StockLevel]:
        rows = self._session.execute(
            select(StockLevelModel).order_by(
                StockLevelModel.store_id, StockLevelModel.product_id,
            )
        ).scalars().all()
        return [r.to_dto() for r in rows]

    def valuation(self, store_id: str) -> Decimal:
        """Sum of quantity * average_cost over the store's positions."""
        total = self._session.execute(
            select(func.coalesce(
                func.sum(StockLevelModel.quantity * StockLevelModel.average_cost), 0,
            )).where(StockLevelModel.store_id == store_id)
        ).scalar_one()
        return Decimal(str(total))

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def lock(self, keys: Iterable[StockKey]) -> dict[StockKey, StockLevel]:
        """
        Lock existing rows for ``keys`` in deterministic order.

        Keys without a row are simply absent from the result; they are
        created by the first positive mutation.
        """
        ordered = sorted(set(keys), key=lambda k: (k.store_id, k.product_id))
        locked: dict[StockKey, StockLevel] = {}
        for key in ordered:
            row = self._session.execute(
                select(StockLevelModel)
                .where(
                    StockLevelModel.store_id == key.store_id,
                    StockLevelModel.product_id == key.product_id,
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if row is not None:
                locked[key] = row.to_dto()
        logger.debug(
            "stock_rows_locked",
            extra={"requested": len(ordered), "existing": len(locked)},
        )
        return locked

    # ------------------------------------------------------------------
    # Mutations (workflow commit paths only)
    # ------------------------------------------------------------------

    def apply_delta(
        self,
        store_id: str,
        product_id: str,
        quantity_delta: Decimal,
        *,
        average_cost: Decimal | None = None,
        at: datetime | None = None,
    ) -> StockLevel:
        """
        Add ``quantity_delta`` (may be negative) and optionally replace the
        average cost.  Creates the row on first positive delta.
        """
        row = self._row(store_id, product_id)
        current_qty = row.quantity if row is not None else ZERO
        reserved = row.reserved_quantity if row is not None else ZERO
        new_qty = current_qty + quantity_delta

        if new_qty < 0:
            raise StockInvariantError(
                store_id, product_id,
                f"quantity would become {new_qty} (current {current_qty}, delta {quantity_delta})",
            )
        if reserved > new_qty:
            raise StockInvariantError(
                store_id, product_id,
                f"quantity {new_qty} would fall below reserved {reserved}",
            )
        if average_cost is not None and average_cost < 0:
            raise StockInvariantError(store_id, product_id, "average cost cannot be negative")

        return self._write(row, store_id, product_id, new_qty, reserved, average_cost, at)

    def set_quantity(
        self,
        store_id: str,
        product_id: str,
        quantity: Decimal,
        *,
        at: datetime | None = None,
    ) -> tuple[StockLevel, Decimal]:
        """Set an absolute quantity; returns the new level and the applied delta."""
        if quantity < 0:
            raise StockInvariantError(store_id, product_id, f"quantity {quantity} is negative")
        current = self.get_or_empty(store_id, product_id)
        delta = quantity - current.quantity
        if delta == 0:
            return current, ZERO
        return self.apply_delta(store_id, product_id, delta, at=at), delta

    def reserve(self, store_id: str, product_id: str, quantity: Decimal) -> StockLevel:
        """Move ``quantity`` from available to reserved."""
        if quantity <= 0:
            raise StockInvariantError(store_id, product_id, "reservation must be positive")
        row = self._row(store_id, product_id)
        if row is None or row.quantity - row.reserved_quantity < quantity:
            available = ZERO if row is None else row.quantity - row.reserved_quantity
            raise StockInvariantError(
                store_id, product_id,
                f"cannot reserve {quantity}: only {available} available",
            )
        return self._write(
            row, store_id, product_id,
            row.quantity, row.reserved_quantity + quantity, None, None,
        )

    def release(self, store_id: str, product_id: str, quantity: Decimal) -> StockLevel:
        """Return ``quantity`` from reserved to available."""
        row = self._row(store_id, product_id)
        if row is None or quantity <= 0 or row.reserved_quantity < quantity:
            raise StockInvariantError(
                store_id, product_id,
                f"cannot release {quantity} from reservation",
            )
        return self._write(
            row, store_id, product_id,
            row.quantity, row.reserved_quantity - quantity, None, None,
        )

    def _write(
        self,
        row: StockLevelModel | None,
        store_id: str,
        product_id: str,
        quantity: Decimal,
        reserved: Decimal,
        average_cost: Decimal | None,
        at: datetime | None,
    ) -> StockLevel:
        now = at or self._clock.now()
        if row is None:
            row = StockLevelModel(
                store_id=store_id,
                product_id=product_id,
                quantity=quantity,
                reserved_quantity=reserved,
                average_cost=quantize_cost(average_cost or ZERO),
                last_updated=now,
            )
            self._session.add(row)
        else:
            row.quantity = quantity
            row.reserved_quantity = reserved
            if average_cost is not None:
                row.average_cost = quantize_cost(average_cost)
            row.last_updated = now

        try:
            self._session.flush()
        except StaleDataError as exc:
            logger.warning(
                "stock_level_version_conflict",
                extra={"store_id": store_id, "product_id": product_id},
            )
            raise OptimisticLockError("StockLevel", f"{store_id}/{product_id}") from exc

        logger.debug(
            "stock_level_written",
            extra={
                "store_id": store_id,
                "product_id": product_id,
                "quantity": quantity,
                "reserved_quantity": reserved,
                "version": row.version,
            },
        )
        return row.to_dto()
