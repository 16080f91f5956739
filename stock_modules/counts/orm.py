"""
Module: stock_modules.counts.orm
Responsibility: SQLAlchemy persistence for inventory counts.

Invariants enforced:
    - ``theoretical_quantity`` and ``average_cost`` are written once, at
      creation, and never recomputed from live stock.
    - A validated count and its lines are frozen by the immutability
      listeners.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import UUID, Base, TrackedBase


class InventoryCountModel(TrackedBase):
    """Maps to: stock_modules.counts.models.InventoryCount."""

    __tablename__ = "inventory_counts"
    __terminal_statuses__ = ("validated",)

    __table_args__ = (
        Index("idx_count_store", "store_id"),
        Index("idx_count_status", "status"),
        Index("idx_count_date", "count_date"),
    )

    number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    store_id: Mapped[str] = mapped_column(String(100), nullable=False)
    count_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(50), default="in_progress")
    total_variance: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total_variance_value: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    submitted_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    validated_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    validated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    lines: Mapped[list["InventoryCountLineModel"]] = relationship(
        back_populates="count",
        cascade="all, delete-orphan",
        order_by="InventoryCountLineModel.line_no",
    )

    def to_dto(self):
        from stock_modules.counts.models import CountStatus, InventoryCount
        return InventoryCount(
            id=self.id,
            number=self.number,
            store_id=self.store_id,
            count_date=self.count_date,
            lines=tuple(line.to_dto() for line in self.lines),
            status=CountStatus(self.status),
            total_variance=self.total_variance,
            total_variance_value=self.total_variance_value,
            created_by=self.created_by_id,
            created_at=self.created_at,
            comment=self.comment,
            submitted_by=self.submitted_by,
            submitted_at=self.submitted_at,
            validated_by=self.validated_by,
            validated_at=self.validated_at,
        )

    def __repr__(self) -> str:
        return f"<InventoryCountModel {self.number} store={self.store_id} {self.status}>"


class InventoryCountLineModel(Base):
    __tablename__ = "inventory_count_lines"
    __immutable_parent__ = "count"

    __table_args__ = (
        Index("idx_count_line_count", "count_id"),
    )

    count_id: Mapped[UUID] = mapped_column(
        ForeignKey("inventory_counts.id", ondelete="CASCADE"), nullable=False,
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    theoretical_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    average_cost: Mapped[Decimal] = mapped_column(nullable=False)
    physical_quantity: Mapped[Decimal | None] = mapped_column(nullable=True)
    variance: Mapped[Decimal | None] = mapped_column(nullable=True)
    variance_value: Mapped[Decimal | None] = mapped_column(nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    count: Mapped[InventoryCountModel] = relationship(back_populates="lines")

    def to_dto(self):
        from stock_modules.counts.models import CountLine
        return CountLine(
            line_no=self.line_no,
            product_id=self.product_id,
            theoretical_quantity=self.theoretical_quantity,
            average_cost=self.average_cost,
            physical_quantity=self.physical_quantity,
            variance=self.variance,
            variance_value=self.variance_value,
            comment=self.comment,
        )
