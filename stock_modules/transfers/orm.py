"""
Module: stock_modules.transfers.orm
Responsibility: SQLAlchemy persistence for inter-store transfers.

Invariants enforced:
    - source_store_id <> destination_store_id (CHECK constraint).
    - ``unit_cost`` on each line is the source's average cost when the goods
      left; reception and cancellation value the stock at that snapshot.
    - Terminal statuses (completed, completed_with_variance, cancelled) are
      frozen by the immutability listeners, lines included.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import UUID, Base, TrackedBase


class TransferModel(TrackedBase):
    """
    ORM model for a transfer between two stores.

    Maps to: stock_modules.transfers.models.Transfer (frozen dataclass).
    """

    __tablename__ = "transfers"
    __terminal_statuses__ = ("completed", "completed_with_variance", "cancelled")

    __table_args__ = (
        CheckConstraint(
            "source_store_id <> destination_store_id", name="ck_transfer_distinct_stores",
        ),
        Index("idx_transfer_source", "source_store_id"),
        Index("idx_transfer_destination", "destination_store_id"),
        Index("idx_transfer_status", "status"),
    )

    number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    source_store_id: Mapped[str] = mapped_column(String(100), nullable=False)
    destination_store_id: Mapped[str] = mapped_column(String(100), nullable=False)
    transfer_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(50), default="in_transit")
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    received_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    received_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reception_comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    cancelled_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list["TransferLineModel"]] = relationship(
        back_populates="transfer",
        cascade="all, delete-orphan",
        order_by="TransferLineModel.line_no",
    )

    def to_dto(self):
        from stock_modules.transfers.models import Transfer, TransferStatus
        return Transfer(
            id=self.id,
            number=self.number,
            source_store_id=self.source_store_id,
            destination_store_id=self.destination_store_id,
            transfer_date=self.transfer_date,
            lines=tuple(line.to_dto() for line in self.lines),
            status=TransferStatus(self.status),
            created_by=self.created_by_id,
            created_at=self.created_at,
            comment=self.comment,
            received_by=self.received_by,
            received_at=self.received_at,
            reception_comment=self.reception_comment,
            cancelled_by=self.cancelled_by,
            cancelled_at=self.cancelled_at,
            cancel_reason=self.cancel_reason,
        )

    def __repr__(self) -> str:
        return (
            f"<TransferModel {self.number} {self.source_store_id}->"
            f"{self.destination_store_id} {self.status}>"
        )


class TransferLineModel(Base):
    __tablename__ = "transfer_lines"
    __immutable_parent__ = "transfer"

    __table_args__ = (
        Index("idx_transfer_line_transfer", "transfer_id"),
    )

    transfer_id: Mapped[UUID] = mapped_column(
        ForeignKey("transfers.id", ondelete="CASCADE"), nullable=False,
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity_sent: Mapped[Decimal] = mapped_column(nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(nullable=False)
    quantity_received: Mapped[Decimal | None] = mapped_column(nullable=True)
    variance: Mapped[Decimal | None] = mapped_column(nullable=True)

    transfer: Mapped[TransferModel] = relationship(back_populates="lines")

    def to_dto(self):
        from stock_modules.transfers.models import TransferLine
        return TransferLine(
            line_no=self.line_no,
            product_id=self.product_id,
            quantity_sent=self.quantity_sent,
            unit_cost=self.unit_cost,
            quantity_received=self.quantity_received,
            variance=self.variance,
        )
