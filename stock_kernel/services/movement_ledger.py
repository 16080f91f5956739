"""
MovementLedger -- append-only persistence for the traceability ledger.

Responsibility:
    ``append()`` is the only write path.  Queries return movements newest
    first.  Aggregation, anomaly flagging and export live one layer up in
    ``stock_services.traceability``; this class only stores and filters.

Invariants enforced:
    - Append-only: there is no update or delete method, and the ORM model
      is guarded by the immutability listeners.
    - ``value = quantity_delta * unit_cost`` fixed at append time.
    - Σ quantity_delta per (store, product) equals the stock quantity,
      because every committed stock mutation appends exactly one movement
      with the applied delta.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.stock import (
    MovementDraft,
    MovementRecord,
    MovementType,
    ReferenceType,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.movement import MovementRecordModel

logger = get_logger("services.movement_ledger")


@dataclass(frozen=True)
class MovementFilter:
    """Query filters.  Empty collections mean "no restriction".

    ``search`` matches reference id and comment (case-insensitive);
    ``search_store_ids`` / ``search_product_ids`` are ids whose catalog
    names matched the same term, resolved by the caller.
    """
    date_from: date | None = None
    date_to: date | None = None
    store_ids: tuple[str, ...] = ()
    product_ids: tuple[str, ...] = ()
    movement_types: tuple[MovementType, ...] = ()
    user_ids: tuple[str, ...] = ()
    reference_type: ReferenceType | None = None
    reference_id: str | None = None
    search: str | None = None
    search_store_ids: tuple[str, ...] = ()
    search_product_ids: tuple[str, ...] = ()
    limit: int | None = None


class MovementLedger:
    """Append and query movement records.  Never commits."""

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def append(self, draft: MovementDraft) -> MovementRecord:
        now = self._clock.now()
        model = MovementRecordModel(
            id=uuid4(),
            movement_date=draft.movement_date or now.date(),
            movement_type=draft.movement_type.value,
            store_id=draft.store_id,
            product_id=draft.product_id,
            quantity_delta=draft.quantity_delta,
            unit_cost=draft.unit_cost,
            value=draft.quantity_delta * draft.unit_cost,
            reference_id=draft.reference_id,
            reference_type=draft.reference_type.value,
            created_by=draft.created_by,
            created_at=now,
            comment=draft.comment,
        )
        self._session.add(model)
        self._session.flush()
        logger.info(
            "movement_appended",
            extra={
                "movement_id": str(model.id),
                "movement_type": model.movement_type,
                "store_id": model.store_id,
                "product_id": model.product_id,
                "quantity_delta": model.quantity_delta,
                "reference_type": model.reference_type,
                "reference_id": model.reference_id,
            },
        )
        return model.to_dto()

    def query(self, filters: MovementFilter | None = None) -> list[MovementRecord]:
        f = filters or MovementFilter()
        stmt = select(MovementRecordModel)

        if f.date_from is not None:
            stmt = stmt.where(MovementRecordModel.movement_date >= f.date_from)
        if f.date_to is not None:
            stmt = stmt.where(MovementRecordModel.movement_date <= f.date_to)
        if f.store_ids:
            stmt = stmt.where(MovementRecordModel.store_id.in_(f.store_ids))
        if f.product_ids:
            stmt = stmt.where(MovementRecordModel.product_id.in_(f.product_ids))
        if f.movement_types:
            stmt = stmt.where(
                MovementRecordModel.movement_type.in_([t.value for t in f.movement_types])
            )
        if f.user_ids:
            stmt = stmt.where(MovementRecordModel.created_by.in_(f.user_ids))
        if f.reference_type is not None:
            stmt = stmt.where(MovementRecordModel.reference_type == f.reference_type.value)
        if f.reference_id is not None:
            stmt = stmt.where(MovementRecordModel.reference_id == f.reference_id)
        if f.search:
            pattern = f"%{f.search.lower()}%"
            clauses = [
                func.lower(MovementRecordModel.reference_id).like(pattern),
                func.lower(func.coalesce(MovementRecordModel.comment, "")).like(pattern),
            ]
            if f.search_store_ids:
                clauses.append(MovementRecordModel.store_id.in_(f.search_store_ids))
            if f.search_product_ids:
                clauses.append(MovementRecordModel.product_id.in_(f.search_product_ids))
            stmt = stmt.where(or_(*clauses))

        stmt = stmt.order_by(
            MovementRecordModel.movement_date.desc(),
            MovementRecordModel.created_at.desc(),
        )
        if f.limit is not None:
            stmt = stmt.limit(f.limit)

        return [m.to_dto() for m in self._session.execute(stmt).scalars().all()]

    def balances(self, store_id: str | None = None) -> dict[tuple[str, str], Decimal]:
        """Σ quantity_delta per (store_id, product_id)."""
        stmt = select(
            MovementRecordModel.store_id,
            MovementRecordModel.product_id,
            func.sum(MovementRecordModel.quantity_delta),
        ).group_by(MovementRecordModel.store_id, MovementRecordModel.product_id)
        if store_id is not None:
            stmt = stmt.where(MovementRecordModel.store_id == store_id)
        return {
            (s, p): Decimal(str(total))
            for s, p, total in self._session.execute(stmt).all()
        }
