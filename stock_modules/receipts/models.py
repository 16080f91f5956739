"""
Goods Receipt Domain Models (``stock_modules.receipts.models``).

Two families of frozen value objects:

* The editable **form** (``GoodsReceiptForm`` / ``ReceiptLineForm``) that a
  caller builds up with ``create_draft``, ``add_line``, ``update_line`` and
  ``remove_line``.  Every edit returns a new form.  Fields may be missing
  while the user is still typing.
* The persisted **document** (``GoodsReceipt`` / ``ReceiptLine``) returned
  by the service after a save.

Invariants
----------
- ``subtotal == quantity_received * unit_cost`` on every form line; the
  edit helpers recompute it whenever quantity or unit cost changes.
- All quantities and amounts are ``Decimal``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from stock_kernel.domain.issues import ValidationIssue
from stock_kernel.exceptions import ProcessingError
from stock_engines.cost import line_subtotal


class ReceiptStatus(Enum):
    DRAFT = "draft"
    VALIDATED = "validated"


class ReceiptCommitStatus(Enum):
    VALIDATED = "validated"
    VALIDATION_FAILED = "validation_failed"
    PROCESSING_FAILED = "processing_failed"


class StatsPeriod(Enum):
    WEEK = "week"
    MONTH = "month"


# ---------------------------------------------------------------------------
# Editable form
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReceiptLineForm:
    line_id: str
    product_id: str | None = None
    quantity_received: Decimal | None = None
    unit_cost: Decimal | None = None
    subtotal: Decimal = Decimal("0")

    @classmethod
    def new(
        cls,
        product_id: str | None = None,
        quantity_received: Decimal | None = None,
        unit_cost: Decimal | None = None,
    ) -> ReceiptLineForm:
        return cls(
            line_id=uuid4().hex,
            product_id=product_id,
            quantity_received=quantity_received,
            unit_cost=unit_cost,
            subtotal=line_subtotal(quantity_received, unit_cost),
        )


@dataclass(frozen=True)
class GoodsReceiptForm:
    """In-progress receipt.  ``id``/``number`` are set once it has been saved."""
    supplier_id: str | None
    store_id: str | None
    date_received: date | None
    lines: tuple[ReceiptLineForm, ...] = ()
    declared_total: Decimal | None = None
    comment: str | None = None
    id: UUID | None = None
    number: str | None = None

    @property
    def computed_total(self) -> Decimal:
        return sum((line.subtotal for line in self.lines), Decimal("0"))

    def line(self, line_id: str) -> ReceiptLineForm:
        for line in self.lines:
            if line.line_id == line_id:
                return line
        raise KeyError(line_id)

    def with_line(self, line: ReceiptLineForm) -> GoodsReceiptForm:
        return replace(self, lines=self.lines + (line,))

    def with_updated_line(self, line_id: str, **changes) -> GoodsReceiptForm:
        current = self.line(line_id)
        updated = replace(current, **changes)
        if "quantity_received" in changes or "unit_cost" in changes:
            updated = replace(
                updated,
                subtotal=line_subtotal(updated.quantity_received, updated.unit_cost),
            )
        return replace(
            self,
            lines=tuple(updated if ln.line_id == line_id else ln for ln in self.lines),
        )

    def without_line(self, line_id: str) -> GoodsReceiptForm:
        self.line(line_id)
        return replace(self, lines=tuple(ln for ln in self.lines if ln.line_id != line_id))

    def to_snapshot(self) -> dict:
        """JSON-safe dict used by auto-save."""
        return {
            "id": str(self.id) if self.id else None,
            "number": self.number,
            "supplier_id": self.supplier_id,
            "store_id": self.store_id,
            "date_received": self.date_received.isoformat() if self.date_received else None,
            "declared_total": None if self.declared_total is None else str(self.declared_total),
            "comment": self.comment,
            "lines": [
                {
                    "line_id": ln.line_id,
                    "product_id": ln.product_id,
                    "quantity_received": None if ln.quantity_received is None else str(ln.quantity_received),
                    "unit_cost": None if ln.unit_cost is None else str(ln.unit_cost),
                    "subtotal": str(ln.subtotal),
                }
                for ln in self.lines
            ],
        }

    @classmethod
    def from_snapshot(cls, data: dict) -> GoodsReceiptForm:
        def dec(value):
            return None if value is None else Decimal(value)

        return cls(
            id=UUID(data["id"]) if data.get("id") else None,
            number=data.get("number"),
            supplier_id=data.get("supplier_id"),
            store_id=data.get("store_id"),
            date_received=date.fromisoformat(data["date_received"]) if data.get("date_received") else None,
            declared_total=dec(data.get("declared_total")),
            comment=data.get("comment"),
            lines=tuple(
                ReceiptLineForm(
                    line_id=ln["line_id"],
                    product_id=ln.get("product_id"),
                    quantity_received=dec(ln.get("quantity_received")),
                    unit_cost=dec(ln.get("unit_cost")),
                    subtotal=Decimal(ln.get("subtotal", "0")),
                )
                for ln in data.get("lines", [])
            ),
        )


# ---------------------------------------------------------------------------
# Persisted document
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReceiptLine:
    line_no: int
    product_id: str | None
    quantity_received: Decimal | None
    unit_cost: Decimal | None
    subtotal: Decimal


@dataclass(frozen=True)
class GoodsReceipt:
    id: UUID
    number: str
    supplier_id: str
    store_id: str
    date_received: date | None
    lines: tuple[ReceiptLine, ...]
    total_value: Decimal
    declared_total: Decimal | None
    status: ReceiptStatus
    created_by: str
    created_at: datetime
    comment: str | None = None
    validated_by: str | None = None
    validated_at: datetime | None = None

    @property
    def is_draft(self) -> bool:
        return self.status is ReceiptStatus.DRAFT

    def to_form(self) -> GoodsReceiptForm:
        """Reopen a draft for editing."""
        return GoodsReceiptForm(
            id=self.id,
            number=self.number,
            supplier_id=self.supplier_id,
            store_id=self.store_id,
            date_received=self.date_received,
            declared_total=self.declared_total,
            comment=self.comment,
            lines=tuple(
                ReceiptLineForm(
                    line_id=f"line-{ln.line_no}",
                    product_id=ln.product_id,
                    quantity_received=ln.quantity_received,
                    unit_cost=ln.unit_cost,
                    subtotal=ln.subtotal,
                )
                for ln in self.lines
            ),
        )


@dataclass(frozen=True)
class ReceiptCommitResult:
    """Outcome of ``validate_and_commit``.

    ``VALIDATION_FAILED``: nothing changed; ``errors`` lists every rule failure.
    ``PROCESSING_FAILED``: validation passed but the stock update failed; the
    receipt is stored as a draft with the entered data and ``processing_error``
    explains the failure.
    """
    status: ReceiptCommitStatus
    receipt: GoodsReceipt | None
    errors: tuple[ValidationIssue, ...] = ()
    warnings: tuple[ValidationIssue, ...] = ()
    processing_error: ProcessingError | None = None

    @property
    def is_success(self) -> bool:
        return self.status is ReceiptCommitStatus.VALIDATED


@dataclass(frozen=True)
class ReceiptFilter:
    store_id: str | None = None
    supplier_id: str | None = None
    status: ReceiptStatus | None = None
    date_from: date | None = None
    date_to: date | None = None


@dataclass(frozen=True)
class ReceiptStats:
    total_count: int
    total_value: Decimal
    average_value: Decimal
    draft_count: int
    validated_count: int
    period_start: date
    period_end: date
    store_id: str | None = None
    by_supplier: dict[str, Decimal] = field(default_factory=dict)
