"""
Module: stock_modules.receipts.orm
Responsibility: SQLAlchemy persistence for goods receipts and their lines.

Architecture position: Modules > Receipts > ORM.  Inherits from TrackedBase
    (stock_kernel.db.base).  Supplier, store and product are external
    identifiers held as String columns with NO foreign key constraints.

Invariants enforced:
    - Quantities and amounts are Decimal (Numeric(38,9)).
    - ``number`` is unique (``BR-YYYY-NNNN``).
    - ``__terminal_statuses__``: once persisted as ``validated`` the receipt
      and (through ``__immutable_parent__``) its lines are frozen by the
      immutability listeners.

Failure modes:
    - IntegrityError on duplicate number.
    - ImmutabilityViolationError on any change to a validated receipt.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stock_kernel.db.base import UUID, Base, TrackedBase


class GoodsReceiptModel(TrackedBase):
    """
    ORM model for a supplier goods receipt.

    Maps to: stock_modules.receipts.models.GoodsReceipt (frozen dataclass).
    """

    __tablename__ = "goods_receipts"
    __terminal_statuses__ = ("validated",)

    __table_args__ = (
        Index("idx_receipt_store", "store_id"),
        Index("idx_receipt_supplier", "supplier_id"),
        Index("idx_receipt_status", "status"),
        Index("idx_receipt_date", "date_received"),
    )

    number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    supplier_id: Mapped[str] = mapped_column(String(100), nullable=False)
    store_id: Mapped[str] = mapped_column(String(100), nullable=False)
    date_received: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_value: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    declared_total: Mapped[Decimal | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(50), default="draft")
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    validated_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    validated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    lines: Mapped[list["GoodsReceiptLineModel"]] = relationship(
        back_populates="receipt",
        cascade="all, delete-orphan",
        order_by="GoodsReceiptLineModel.line_no",
    )

    def to_dto(self):
        """Convert ORM model to frozen GoodsReceipt DTO."""
        from stock_modules.receipts.models import GoodsReceipt, ReceiptStatus
        return GoodsReceipt(
            id=self.id,
            number=self.number,
            supplier_id=self.supplier_id,
            store_id=self.store_id,
            date_received=self.date_received,
            lines=tuple(line.to_dto() for line in self.lines),
            total_value=self.total_value,
            declared_total=self.declared_total,
            status=ReceiptStatus(self.status),
            created_by=self.created_by_id,
            created_at=self.created_at,
            comment=self.comment,
            validated_by=self.validated_by,
            validated_at=self.validated_at,
        )

    def __repr__(self) -> str:
        return f"<GoodsReceiptModel {self.number} {self.status} store={self.store_id}>"


class GoodsReceiptLineModel(Base):
    """One product line on a goods receipt.  Frozen with its receipt."""

    __tablename__ = "goods_receipt_lines"
    __immutable_parent__ = "receipt"

    __table_args__ = (
        Index("idx_receipt_line_receipt", "receipt_id"),
    )

    receipt_id: Mapped[UUID] = mapped_column(
        ForeignKey("goods_receipts.id", ondelete="CASCADE"), nullable=False,
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quantity_received: Mapped[Decimal | None] = mapped_column(nullable=True)
    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    subtotal: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    receipt: Mapped[GoodsReceiptModel] = relationship(back_populates="lines")

    def to_dto(self):
        from stock_modules.receipts.models import ReceiptLine
        return ReceiptLine(
            line_no=self.line_no,
            product_id=self.product_id,
            quantity_received=self.quantity_received,
            unit_cost=self.unit_cost,
            subtotal=self.subtotal,
        )
