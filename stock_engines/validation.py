"""
stock_engines.validation -- stateless rule set for receipts, transfers, counts.

Responsibility:
    Produce a ``ValidationResult`` (errors + advisory warnings) for each
    document kind.  Workflows call these before any state change and
    decide how to surface failures; the engine itself never raises for a
    rule failure.

Strictness levels (receipts):
    STRICT     -- final commit: every rule, non-empty lines, totals reconcile.
    DRAFT      -- identity fields only; populated lines checked one by one;
                  an empty line list is accepted.
    AUTO_SAVE  -- always valid; used to persist in-progress edits.

Architecture position:
    Engines -- pure.  Inputs are duck-typed through the Protocols below so
    the module forms in ``stock_modules`` can be passed directly.

Invariants enforced:
    - Totals reconcile within ``rules.tolerance`` (0.01 by default).
    - Duplicate products are reported at the later line index, with the
      first index in ``details``.
    - The total check runs only when every line passed its own checks, so
      a bad line is reported once rather than twice.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Protocol

from stock_kernel.domain.issues import IssueCode, ValidationIssue, ValidationResult
from stock_kernel.logging_config import get_logger
from stock_engines.tracer import traced_engine

logger = get_logger("engines.validation")

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class ValidationMode(Enum):
    STRICT = "strict"
    DRAFT = "draft"
    AUTO_SAVE = "auto_save"


@dataclass(frozen=True)
class ValidationRules:
    """Thresholds for document validation."""
    tolerance: Decimal = Decimal("0.01")
    max_lines_warning: int = 20
    max_total_value_warning: Decimal = Decimal("1000000")
    transfer_variance_warning_percent: Decimal = Decimal("10")
    count_variance_warning_percent: Decimal = Decimal("5")
    future_date_tolerance_days: int = 1

    def __post_init__(self) -> None:
        if self.tolerance < 0:
            raise ValueError("tolerance cannot be negative")
        if self.max_lines_warning < 1:
            raise ValueError("max_lines_warning must be positive")
        if self.future_date_tolerance_days < 0:
            raise ValueError("future_date_tolerance_days cannot be negative")


# ---------------------------------------------------------------------------
# Input shapes
# ---------------------------------------------------------------------------


class ReceiptLineLike(Protocol):
    product_id: str | None
    quantity_received: Decimal | None
    unit_cost: Decimal | None
    subtotal: Decimal | None


class ReceiptLike(Protocol):
    supplier_id: str | None
    store_id: str | None
    date_received: date | None
    lines: Sequence[ReceiptLineLike]
    declared_total: Decimal | None


class QuantityLineLike(Protocol):
    product_id: str | None
    quantity: Decimal | None


class CountLineLike(Protocol):
    product_id: str
    theoretical_quantity: Decimal
    physical_quantity: Decimal | None


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ValidationEngine:
    """Rule checks over the three document kinds.  Holds only its rules."""

    def __init__(self, rules: ValidationRules | None = None):
        self.rules = rules or ValidationRules()

    # -- shared checks ------------------------------------------------------

    def _check_quantity(
        self,
        quantity: Decimal | None,
        index: int,
        field_name: str,
        *,
        allow_zero: bool = False,
    ) -> list[ValidationIssue]:
        if quantity is None:
            return [ValidationIssue(
                IssueCode.INVALID_QUANTITY, f"Line {index + 1}: quantity is required",
                field=field_name, line_index=index,
            )]
        if quantity < 0:
            return [ValidationIssue(
                IssueCode.NEGATIVE_QUANTITY, f"Line {index + 1}: quantity cannot be negative",
                field=field_name, line_index=index, details={"quantity": quantity},
            )]
        if quantity == 0 and not allow_zero:
            return [ValidationIssue(
                IssueCode.ZERO_QUANTITY, f"Line {index + 1}: quantity must be greater than zero",
                field=field_name, line_index=index,
            )]
        return []

    def _check_cost(self, unit_cost: Decimal | None, index: int) -> list[ValidationIssue]:
        if unit_cost is None:
            return [ValidationIssue(
                IssueCode.MISSING_COST, f"Line {index + 1}: unit cost is required",
                field="unit_cost", line_index=index,
            )]
        if unit_cost < 0:
            return [ValidationIssue(
                IssueCode.NEGATIVE_COST, f"Line {index + 1}: unit cost cannot be negative",
                field="unit_cost", line_index=index, details={"unit_cost": unit_cost},
            )]
        if unit_cost == 0:
            return [ValidationIssue(
                IssueCode.ZERO_COST, f"Line {index + 1}: unit cost must be greater than zero",
                field="unit_cost", line_index=index,
            )]
        return []

    def _check_product(self, product_id: str | None, index: int) -> list[ValidationIssue]:
        if not product_id:
            return [ValidationIssue(
                IssueCode.MISSING_PRODUCT, f"Line {index + 1}: product is required",
                field="product_id", line_index=index,
            )]
        return []

    def _check_duplicates(self, product_ids: Iterable[str | None]) -> list[ValidationIssue]:
        first_seen: dict[str, int] = {}
        issues = []
        for index, product_id in enumerate(product_ids):
            if not product_id:
                continue
            if product_id in first_seen:
                issues.append(ValidationIssue(
                    IssueCode.DUPLICATE_PRODUCT,
                    f"Line {index + 1}: product {product_id} already appears on line "
                    f"{first_seen[product_id] + 1}",
                    field="product_id", line_index=index,
                    details={"product_id": product_id, "first_index": first_seen[product_id]},
                ))
            else:
                first_seen[product_id] = index
        return issues

    def _check_date(self, value: date | None, today: date, field_name: str) -> list[ValidationIssue]:
        if value is None:
            return [ValidationIssue(IssueCode.MISSING_DATE, "Date is required", field=field_name)]
        limit = today + timedelta(days=self.rules.future_date_tolerance_days)
        if value > limit:
            return [ValidationIssue(
                IssueCode.FUTURE_DATE, f"Date {value.isoformat()} is in the future",
                field=field_name, details={"date": value, "today": today},
            )]
        return []

    def _variance_percent(self, expected: Decimal, actual: Decimal) -> Decimal:
        if expected == 0:
            return ZERO if actual == 0 else HUNDRED
        return abs(actual - expected) / expected * HUNDRED

    # -- receipts ----------------------------------------------------------

    @staticmethod
    def _is_populated(line: ReceiptLineLike) -> bool:
        return bool(
            line.product_id
            or (line.quantity_received or ZERO) != 0
            or (line.unit_cost or ZERO) != 0
        )

    def _check_receipt_line(self, line: ReceiptLineLike, index: int) -> list[ValidationIssue]:
        issues = self._check_product(line.product_id, index)
        issues += self._check_quantity(line.quantity_received, index, "quantity_received")
        issues += self._check_cost(line.unit_cost, index)
        if (
            not issues
            and line.subtotal is not None
            and abs(line.subtotal - line.quantity_received * line.unit_cost) > self.rules.tolerance
        ):
            issues.append(ValidationIssue(
                IssueCode.CALCULATION_ERROR,
                f"Line {index + 1}: subtotal {line.subtotal} does not equal quantity x unit cost",
                field="subtotal", line_index=index,
                details={
                    "subtotal": line.subtotal,
                    "expected": line.quantity_received * line.unit_cost,
                },
            ))
        return issues

    def _check_identity(self, receipt: ReceiptLike) -> list[ValidationIssue]:
        issues = []
        if not receipt.supplier_id:
            issues.append(ValidationIssue(
                IssueCode.MISSING_SUPPLIER, "Supplier is required", field="supplier_id",
            ))
        if not receipt.store_id:
            issues.append(ValidationIssue(
                IssueCode.MISSING_STORE, "Store is required", field="store_id",
            ))
        return issues

    @traced_engine("validation.receipt", "1.0", fingerprint_fields=("mode",))
    def validate_receipt(
        self,
        receipt: ReceiptLike,
        *,
        mode: ValidationMode = ValidationMode.STRICT,
        today: date,
    ) -> ValidationResult:
        if mode is ValidationMode.AUTO_SAVE:
            return ValidationResult.ok()

        errors = self._check_identity(receipt)

        if mode is ValidationMode.DRAFT:
            for index, line in enumerate(receipt.lines):
                if self._is_populated(line):
                    errors += self._check_receipt_line(line, index)
            return ValidationResult(errors=tuple(errors))

        errors += self._check_date(receipt.date_received, today, "date_received")

        lines = list(receipt.lines)
        if not lines:
            errors.append(ValidationIssue(
                IssueCode.EMPTY_LINES, "At least one line is required", field="lines",
            ))
            return ValidationResult(errors=tuple(errors))

        line_errors: list[ValidationIssue] = []
        for index, line in enumerate(lines):
            line_errors += self._check_receipt_line(line, index)
        line_errors += self._check_duplicates(line.product_id for line in lines)
        errors += line_errors

        computed_total = sum(
            (line.quantity_received or ZERO) * (line.unit_cost or ZERO) for line in lines
        )
        if not line_errors:
            declared = receipt.declared_total if receipt.declared_total is not None else computed_total
            if abs(declared - computed_total) > self.rules.tolerance:
                errors.append(ValidationIssue(
                    IssueCode.TOTAL_MISMATCH,
                    f"Declared total {declared} does not match sum of lines {computed_total}",
                    field="declared_total",
                    details={
                        "declared_total": declared,
                        "computed_total": computed_total,
                        "difference": declared - computed_total,
                    },
                ))

        warnings = []
        if len(lines) > self.rules.max_lines_warning:
            warnings.append(ValidationIssue(
                IssueCode.HIGH_LINE_COUNT,
                f"Receipt has {len(lines)} lines; consider splitting it",
                field="lines", details={"line_count": len(lines)},
            ))
        if computed_total > self.rules.max_total_value_warning:
            warnings.append(ValidationIssue(
                IssueCode.HIGH_TOTAL_VALUE,
                f"Receipt total {computed_total} is unusually high",
                field="declared_total", details={"total": computed_total},
            ))

        return ValidationResult(errors=tuple(errors), warnings=tuple(warnings))

    # -- transfers ---------------------------------------------------------

    @traced_engine("validation.transfer", "1.0")
    def validate_transfer(
        self,
        *,
        source_store_id: str | None,
        destination_store_id: str | None,
        lines: Sequence[QuantityLineLike],
        available: Mapping[str, Decimal],
    ) -> ValidationResult:
        """``available`` maps product_id to the source's available quantity."""
        errors: list[ValidationIssue] = []
        if not source_store_id:
            errors.append(ValidationIssue(
                IssueCode.MISSING_STORE, "Source store is required", field="source_store_id",
            ))
        if not destination_store_id:
            errors.append(ValidationIssue(
                IssueCode.MISSING_STORE, "Destination store is required",
                field="destination_store_id",
            ))
        if source_store_id and source_store_id == destination_store_id:
            errors.append(ValidationIssue(
                IssueCode.SAME_SOURCE_DESTINATION,
                "Source and destination stores must be different",
                field="destination_store_id",
                details={"store_id": source_store_id},
            ))
        if not lines:
            errors.append(ValidationIssue(
                IssueCode.EMPTY_LINES, "At least one line is required", field="lines",
            ))
            return ValidationResult(errors=tuple(errors))

        for index, line in enumerate(lines):
            line_issues = self._check_product(line.product_id, index)
            line_issues += self._check_quantity(line.quantity, index, "quantity")
            errors += line_issues
            if line_issues or not source_store_id:
                continue
            on_hand = available.get(line.product_id)
            if on_hand is None or on_hand < line.quantity:
                on_hand = on_hand if on_hand is not None else ZERO
                shortage = line.quantity - on_hand
                reason = "no stock" if on_hand == 0 else f"only {on_hand} available"
                errors.append(ValidationIssue(
                    IssueCode.INSUFFICIENT_STOCK,
                    f"Line {index + 1}: insufficient stock for {line.product_id} "
                    f"({reason}, requested {line.quantity}, short by {shortage})",
                    field="quantity", line_index=index,
                    details={
                        "product_id": line.product_id,
                        "available": on_hand,
                        "requested": line.quantity,
                        "shortage": shortage,
                    },
                ))
        errors += self._check_duplicates(line.product_id for line in lines)
        return ValidationResult(errors=tuple(errors))

    @traced_engine("validation.transfer_reception", "1.0")
    def validate_transfer_reception(
        self,
        *,
        sent: Mapping[str, Decimal],
        received: Sequence[QuantityLineLike],
    ) -> ValidationResult:
        """``sent`` maps product_id to quantity sent, in transfer line order."""
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []
        seen: set[str] = set()

        for index, line in enumerate(received):
            if line.product_id not in sent:
                errors.append(ValidationIssue(
                    IssueCode.UNKNOWN_LINE,
                    f"Received line {index + 1}: product {line.product_id} is not on this transfer",
                    field="product_id", line_index=index,
                    details={"product_id": line.product_id},
                ))
                continue
            errors += self._check_quantity(line.quantity, index, "quantity", allow_zero=True)
            seen.add(line.product_id)
            if line.quantity is None or line.quantity < 0:
                continue
            quantity_sent = sent[line.product_id]
            variance = line.quantity - quantity_sent
            threshold = quantity_sent * self.rules.transfer_variance_warning_percent / HUNDRED
            if abs(variance) > threshold:
                warnings.append(ValidationIssue(
                    IssueCode.HIGH_VARIANCE,
                    f"Product {line.product_id}: variance {variance} exceeds "
                    f"{self.rules.transfer_variance_warning_percent}% of quantity sent",
                    field="quantity", line_index=index,
                    details={
                        "product_id": line.product_id,
                        "quantity_sent": quantity_sent,
                        "quantity_received": line.quantity,
                        "variance": variance,
                    },
                ))
        errors += self._check_duplicates(line.product_id for line in received)

        for index, product_id in enumerate(sent):
            if product_id not in seen:
                errors.append(ValidationIssue(
                    IssueCode.MISSING_LINES,
                    f"No received quantity for product {product_id}",
                    field="lines", line_index=index,
                    details={"product_id": product_id},
                ))

        return ValidationResult(errors=tuple(errors), warnings=tuple(warnings))

    # -- inventory counts -------------------------------------------------

    @traced_engine("validation.count_entries", "1.0")
    def validate_count_entries(
        self,
        *,
        counted_products: Iterable[str],
        entries: Sequence[QuantityLineLike],
    ) -> ValidationResult:
        known = set(counted_products)
        errors: list[ValidationIssue] = []
        for index, entry in enumerate(entries):
            if entry.product_id not in known:
                errors.append(ValidationIssue(
                    IssueCode.UNKNOWN_LINE,
                    f"Entry {index + 1}: product {entry.product_id} is not on this count",
                    field="product_id", line_index=index,
                    details={"product_id": entry.product_id},
                ))
                continue
            errors += self._check_quantity(entry.quantity, index, "physical_quantity", allow_zero=True)
        errors += self._check_duplicates(entry.product_id for entry in entries)
        return ValidationResult(errors=tuple(errors))

    @traced_engine("validation.count_submission", "1.0")
    def validate_count_submission(
        self,
        *,
        count_date: date | None,
        lines: Sequence[CountLineLike],
        today: date,
    ) -> ValidationResult:
        errors = self._check_date(count_date, today, "count_date")
        warnings: list[ValidationIssue] = []
        if not lines:
            errors.append(ValidationIssue(
                IssueCode.EMPTY_LINES, "Count has no lines", field="lines",
            ))
        for index, line in enumerate(lines):
            if line.physical_quantity is None:
                errors.append(ValidationIssue(
                    IssueCode.MISSING_COUNT,
                    f"Line {index + 1}: physical quantity for {line.product_id} not entered",
                    field="physical_quantity", line_index=index,
                    details={"product_id": line.product_id},
                ))
                continue
            errors += self._check_quantity(
                line.physical_quantity, index, "physical_quantity", allow_zero=True,
            )
            if line.physical_quantity < 0:
                continue
            percent = self._variance_percent(line.theoretical_quantity, line.physical_quantity)
            if percent > self.rules.count_variance_warning_percent:
                warnings.append(ValidationIssue(
                    IssueCode.HIGH_VARIANCE,
                    f"Line {index + 1}: variance of {percent:.1f}% for {line.product_id}",
                    field="physical_quantity", line_index=index,
                    details={
                        "product_id": line.product_id,
                        "theoretical_quantity": line.theoretical_quantity,
                        "physical_quantity": line.physical_quantity,
                        "variance_percent": percent,
                    },
                ))
        errors += self._check_duplicates(line.product_id for line in lines)
        return ValidationResult(errors=tuple(errors), warnings=tuple(warnings))
