"""
Module: stock_kernel.models.stock_level
Responsibility: Persistence for the current stock position of each
    ``(store_id, product_id)`` key.

Invariants enforced:
    - One row per key (unique constraint).
    - CHECK constraints: quantity >= 0, 0 <= reserved_quantity <= quantity,
      average_cost >= 0.  The StockLevelStore checks the same rules before
      mutating; the constraints catch anything that bypasses it.
    - ``version`` is SQLAlchemy's version counter: every UPDATE carries
      ``WHERE version = :old`` and a concurrent writer's flush fails with
      StaleDataError instead of silently overwriting.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base
from stock_kernel.domain.stock import StockLevel


class StockLevelModel(Base):
    """ORM model for a stock position.  Maps to ``StockLevel``."""

    __tablename__ = "stock_levels"

    __table_args__ = (
        UniqueConstraint("store_id", "product_id", name="uq_stock_level_key"),
        CheckConstraint("quantity >= 0", name="ck_stock_quantity_non_negative"),
        CheckConstraint("reserved_quantity >= 0", name="ck_stock_reserved_non_negative"),
        CheckConstraint("reserved_quantity <= quantity", name="ck_stock_reserved_le_quantity"),
        CheckConstraint("average_cost >= 0", name="ck_stock_cost_non_negative"),
    )

    store_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    reserved_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    average_cost: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    last_updated: Mapped[datetime] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dto(self) -> StockLevel:
        return StockLevel(
            store_id=self.store_id,
            product_id=self.product_id,
            quantity=self.quantity,
            reserved_quantity=self.reserved_quantity,
            average_cost=self.average_cost,
            last_updated=self.last_updated,
            version=self.version,
        )

    def __repr__(self) -> str:
        return (
            f"<StockLevelModel {self.store_id}/{self.product_id} "
            f"qty={self.quantity} reserved={self.reserved_quantity} v{self.version}>"
        )
