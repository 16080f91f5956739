"""
Module: stock_kernel.models.movement
Responsibility: Append-only persistence for movement records.

Invariants enforced:
    - ``__append_only__``: the immutability listeners block every UPDATE and
      DELETE on this table through the ORM.
    - ``value = quantity_delta * unit_cost`` is computed once at append time.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base
from stock_kernel.domain.stock import MovementRecord, MovementType, ReferenceType


class MovementRecordModel(Base):
    """ORM model for one ledger movement.  Maps to ``MovementRecord``."""

    __tablename__ = "stock_movements"
    __append_only__ = True

    __table_args__ = (
        Index("idx_movement_store_product", "store_id", "product_id"),
        Index("idx_movement_date", "movement_date"),
        Index("idx_movement_reference", "reference_type", "reference_id"),
        Index("idx_movement_created_at", "created_at"),
    )

    movement_date: Mapped[date] = mapped_column(Date, nullable=False)
    movement_type: Mapped[str] = mapped_column(String(50), nullable=False)
    store_id: Mapped[str] = mapped_column(String(100), nullable=False)
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity_delta: Mapped[Decimal] = mapped_column(nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(nullable=False)
    value: Mapped[Decimal] = mapped_column(nullable=False)
    reference_id: Mapped[str] = mapped_column(String(100), nullable=False)
    reference_type: Mapped[str] = mapped_column(String(50), nullable=False)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> MovementRecord:
        return MovementRecord(
            id=self.id,
            movement_date=self.movement_date,
            movement_type=MovementType(self.movement_type),
            store_id=self.store_id,
            product_id=self.product_id,
            quantity_delta=self.quantity_delta,
            unit_cost=self.unit_cost,
            value=self.value,
            reference_id=self.reference_id,
            reference_type=ReferenceType(self.reference_type),
            created_by=self.created_by,
            created_at=self.created_at,
            comment=self.comment,
        )

    def __repr__(self) -> str:
        return (
            f"<MovementRecordModel {self.movement_type} {self.store_id}/{self.product_id} "
            f"delta={self.quantity_delta} ref={self.reference_type}:{self.reference_id}>"
        )
