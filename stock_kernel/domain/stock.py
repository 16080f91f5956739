"""
Stock domain values (``stock_kernel.domain.stock``).

Frozen DTOs for the two kernel-owned nouns:

* ``StockLevel`` -- current quantity, reservation and weighted-average cost
  for one ``(store_id, product_id)`` key.
* ``MovementRecord`` -- one immutable fact in the traceability ledger.

All quantities and costs are ``Decimal``.  Construction validates the
stock invariants so a DTO in hand is always internally consistent.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

ZERO = Decimal("0")
COST_QUANTUM = Decimal("0.000000001")
TOLERANCE = Decimal("0.01")


class MovementType(Enum):
    """Cause of a quantity change."""
    ARRIVAL = "arrival"
    TRANSFER_OUT = "transfer_out"
    TRANSFER_IN = "transfer_in"
    SALE = "sale"
    LOSS = "loss"
    ADJUSTMENT = "adjustment"


class ReferenceType(Enum):
    """Kind of document a movement points back to."""
    GOODS_RECEIPT = "goods_receipt"
    TRANSFER = "transfer"
    TRANSFER_CANCELLATION = "transfer_cancellation"
    INVENTORY_COUNT = "inventory_count"
    SALE = "sale"
    MANUAL = "manual"


@dataclass(frozen=True)
class StockKey:
    store_id: str
    product_id: str

    def __str__(self) -> str:
        return f"{self.store_id}/{self.product_id}"


@dataclass(frozen=True)
class StockLevel:
    """Stock position for one (store, product).

    Invariants: ``quantity >= 0``, ``0 <= reserved_quantity <= quantity``,
    ``average_cost >= 0``.
    """
    store_id: str
    product_id: str
    quantity: Decimal
    reserved_quantity: Decimal
    average_cost: Decimal
    last_updated: datetime | None = None
    version: int = 0

    def __post_init__(self) -> None:
        if self.quantity < 0:
            raise ValueError("quantity cannot be negative")
        if self.reserved_quantity < 0:
            raise ValueError("reserved_quantity cannot be negative")
        if self.reserved_quantity > self.quantity:
            raise ValueError("reserved_quantity cannot exceed quantity")
        if self.average_cost < 0:
            raise ValueError("average_cost cannot be negative")

    @property
    def key(self) -> StockKey:
        return StockKey(self.store_id, self.product_id)

    @property
    def available_quantity(self) -> Decimal:
        return self.quantity - self.reserved_quantity

    @property
    def total_value(self) -> Decimal:
        return self.quantity * self.average_cost

    @classmethod
    def empty(cls, store_id: str, product_id: str) -> StockLevel:
        return cls(store_id, product_id, ZERO, ZERO, ZERO)


@dataclass(frozen=True)
class MovementRecord:
    """Immutable ledger entry for one committed quantity change."""
    id: UUID
    movement_date: date
    movement_type: MovementType
    store_id: str
    product_id: str
    quantity_delta: Decimal
    unit_cost: Decimal
    value: Decimal
    reference_id: str
    reference_type: ReferenceType
    created_by: str
    created_at: datetime
    comment: str | None = None

    @property
    def is_inflow(self) -> bool:
        return self.quantity_delta > 0

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "date": self.movement_date.isoformat(),
            "type": self.movement_type.value,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "quantity": str(self.quantity_delta),
            "unit_cost": str(self.unit_cost),
            "value": str(self.value),
            "reference_id": self.reference_id,
            "reference_type": self.reference_type.value,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
            "comment": self.comment,
        }


@dataclass(frozen=True)
class MovementDraft:
    """Everything a workflow supplies to append a movement.

    The ledger fills in ``id``, ``value`` and ``created_at``.
    """
    movement_type: MovementType
    store_id: str
    product_id: str
    quantity_delta: Decimal
    unit_cost: Decimal
    reference_id: str
    reference_type: ReferenceType
    created_by: str
    movement_date: date | None = None
    comment: str | None = None


def quantize_cost(value: Decimal) -> Decimal:
    """Round a cost to storage precision (9 places)."""
    return value.quantize(COST_QUANTUM)
