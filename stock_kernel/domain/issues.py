"""
Validation issue value objects (``stock_kernel.domain.issues``).

Every rule check in the ValidationEngine produces ``ValidationIssue``
instances collected into a ``ValidationResult``.  Exceptions raised by
the workflows carry the same objects, so callers see one structured
shape whether they inspect a returned result or catch an error.

Issues are split into two categories:

* ``INPUT`` -- field-level problems, optionally tied to a line index
  (missing product, non-positive quantity, bad date).
* ``BUSINESS`` -- cross-field or document rules (duplicate product,
  total mismatch, same source/destination, insufficient stock).
"""

from __future__ import annotations

from dataclasses import dataclass, field as dc_field
from enum import Enum
from typing import Any


class IssueCategory(Enum):
    INPUT = "input"
    BUSINESS = "business"


class IssueCode(Enum):
    """Stable machine-readable issue codes."""
    MISSING_SUPPLIER = "MISSING_SUPPLIER"
    MISSING_STORE = "MISSING_STORE"
    MISSING_PRODUCT = "MISSING_PRODUCT"
    MISSING_DATE = "MISSING_DATE"
    FUTURE_DATE = "FUTURE_DATE"
    EMPTY_LINES = "EMPTY_LINES"
    MISSING_LINES = "MISSING_LINES"
    UNKNOWN_LINE = "UNKNOWN_LINE"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    ZERO_QUANTITY = "ZERO_QUANTITY"
    NEGATIVE_QUANTITY = "NEGATIVE_QUANTITY"
    MISSING_COST = "MISSING_COST"
    ZERO_COST = "ZERO_COST"
    NEGATIVE_COST = "NEGATIVE_COST"
    MISSING_COUNT = "MISSING_COUNT"
    MISSING_REASON = "MISSING_REASON"
    CALCULATION_ERROR = "CALCULATION_ERROR"
    DUPLICATE_PRODUCT = "DUPLICATE_PRODUCT"
    TOTAL_MISMATCH = "TOTAL_MISMATCH"
    SAME_SOURCE_DESTINATION = "SAME_SOURCE_DESTINATION"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    # Warning codes
    HIGH_LINE_COUNT = "HIGH_LINE_COUNT"
    HIGH_TOTAL_VALUE = "HIGH_TOTAL_VALUE"
    HIGH_VARIANCE = "HIGH_VARIANCE"
    CRITICAL_STOCK = "CRITICAL_STOCK"
    OVERSTOCK = "OVERSTOCK"
    NEGATIVE_STOCK = "NEGATIVE_STOCK"
    AVAILABLE_MISMATCH = "AVAILABLE_MISMATCH"


_BUSINESS_CODES = frozenset({
    IssueCode.DUPLICATE_PRODUCT,
    IssueCode.TOTAL_MISMATCH,
    IssueCode.CALCULATION_ERROR,
    IssueCode.SAME_SOURCE_DESTINATION,
    IssueCode.INSUFFICIENT_STOCK,
    IssueCode.NEGATIVE_STOCK,
    IssueCode.AVAILABLE_MISMATCH,
    IssueCode.HIGH_TOTAL_VALUE,
    IssueCode.HIGH_VARIANCE,
    IssueCode.CRITICAL_STOCK,
    IssueCode.OVERSTOCK,
})


@dataclass(frozen=True)
class ValidationIssue:
    """One rule finding.  ``line_index`` is zero-based when set."""
    code: IssueCode
    message: str
    field: str | None = None
    line_index: int | None = None
    details: dict[str, Any] = dc_field(default_factory=dict)

    @property
    def category(self) -> IssueCategory:
        if self.code in _BUSINESS_CODES:
            return IssueCategory.BUSINESS
        return IssueCategory.INPUT

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "field": self.field,
            "line_index": self.line_index,
            "category": self.category.value,
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a rule pass.  Warnings never affect ``is_valid``."""
    errors: tuple[ValidationIssue, ...] = ()
    warnings: tuple[ValidationIssue, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def has_business_errors(self) -> bool:
        return any(e.category is IssueCategory.BUSINESS for e in self.errors)

    def error_codes(self) -> set[IssueCode]:
        return {e.code for e in self.errors}

    def warning_codes(self) -> set[IssueCode]:
        return {w.code for w in self.warnings}

    def merge(self, other: ValidationResult) -> ValidationResult:
        return ValidationResult(
            errors=self.errors + other.errors,
            warnings=self.warnings + other.warnings,
        )

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls()
