"""
Transfer Domain Models.

A transfer moves stock from a source store to a destination store in two
steps: ``create`` takes the goods out of the source (status
``in_transit``), ``receive`` puts what actually arrived into the
destination.  ``variance = quantity_received - quantity_sent`` per line,
computed at reception only.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from stock_kernel.domain.issues import ValidationIssue
from stock_kernel.domain.stock import TOLERANCE


class TransferStatus(Enum):
    IN_TRANSIT = "in_transit"
    COMPLETED = "completed"
    COMPLETED_WITH_VARIANCE = "completed_with_variance"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not TransferStatus.IN_TRANSIT


@dataclass(frozen=True)
class TransferLineInput:
    """Requested (at creation) or received (at reception) quantity for a product."""
    product_id: str | None
    quantity: Decimal | None


@dataclass(frozen=True)
class TransferLine:
    line_no: int
    product_id: str
    quantity_sent: Decimal
    unit_cost: Decimal
    quantity_received: Decimal | None = None
    variance: Decimal | None = None

    @property
    def has_variance(self) -> bool:
        return self.variance is not None and abs(self.variance) > TOLERANCE


@dataclass(frozen=True)
class Transfer:
    id: UUID
    number: str
    source_store_id: str
    destination_store_id: str
    transfer_date: date
    lines: tuple[TransferLine, ...]
    status: TransferStatus
    created_by: str
    created_at: datetime
    comment: str | None = None
    received_by: str | None = None
    received_at: datetime | None = None
    reception_comment: str | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None

    @property
    def total_quantity_sent(self) -> Decimal:
        return sum((line.quantity_sent for line in self.lines), Decimal("0"))

    @property
    def total_variance(self) -> Decimal:
        return sum((line.variance or Decimal("0") for line in self.lines), Decimal("0"))


@dataclass(frozen=True)
class TransferReception:
    """Received transfer plus non-blocking warnings (e.g. high variance)."""
    transfer: Transfer
    warnings: tuple[ValidationIssue, ...] = ()


@dataclass(frozen=True)
class TransferFilter:
    """``store_id`` matches either side of the transfer."""
    store_id: str | None = None
    status: TransferStatus | None = None
    date_from: date | None = None
    date_to: date | None = None


@dataclass(frozen=True)
class TransferStats:
    total_count: int
    in_transit_count: int
    completed_count: int
    completed_with_variance_count: int
    cancelled_count: int
    total_quantity_sent: Decimal
    average_absolute_variance: Decimal


@dataclass(frozen=True)
class TransferVarianceEntry:
    transfer_id: UUID
    number: str
    source_store_id: str
    destination_store_id: str
    product_id: str
    quantity_sent: Decimal
    quantity_received: Decimal
    variance: Decimal
    variance_percent: Decimal
    received_at: datetime | None
