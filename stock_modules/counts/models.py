"""
Inventory Count Domain Models.

Each line freezes ``theoretical_quantity`` and ``average_cost`` when the
count is created.  Once a physical quantity is entered:

    variance       = physical_quantity - theoretical_quantity
    variance_value = variance * average_cost
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from stock_kernel.domain.issues import ValidationIssue


class CountStatus(Enum):
    IN_PROGRESS = "in_progress"
    PENDING_VALIDATION = "pending_validation"
    VALIDATED = "validated"


@dataclass(frozen=True)
class CountEntry:
    """A counted quantity entered by the user."""
    product_id: str
    physical_quantity: Decimal | None
    comment: str | None = None

    @property
    def quantity(self) -> Decimal | None:
        return self.physical_quantity


@dataclass(frozen=True)
class CountLine:
    line_no: int
    product_id: str
    theoretical_quantity: Decimal
    average_cost: Decimal
    physical_quantity: Decimal | None = None
    variance: Decimal | None = None
    variance_value: Decimal | None = None
    comment: str | None = None

    @property
    def is_counted(self) -> bool:
        return self.physical_quantity is not None


@dataclass(frozen=True)
class InventoryCount:
    id: UUID
    number: str
    store_id: str
    count_date: date
    lines: tuple[CountLine, ...]
    status: CountStatus
    total_variance: Decimal
    total_variance_value: Decimal
    created_by: str
    created_at: datetime
    comment: str | None = None
    submitted_by: str | None = None
    submitted_at: datetime | None = None
    validated_by: str | None = None
    validated_at: datetime | None = None

    def line_for(self, product_id: str) -> CountLine:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        raise KeyError(product_id)


@dataclass(frozen=True)
class CountSubmission:
    count: InventoryCount
    warnings: tuple[ValidationIssue, ...] = ()


@dataclass(frozen=True)
class CountFilter:
    store_id: str | None = None
    status: CountStatus | None = None
    date_from: date | None = None
    date_to: date | None = None


@dataclass(frozen=True)
class CountCompletion:
    total_lines: int
    counted_lines: int
    percent: Decimal


@dataclass(frozen=True)
class CountStats:
    total_count: int
    in_progress_count: int
    pending_validation_count: int
    validated_count: int
    total_absolute_variance_value: Decimal
    average_absolute_variance_percent: Decimal
