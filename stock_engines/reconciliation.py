"""
stock_engines.reconciliation -- count variance analysis and stock health.

Responsibility:
    - Classify count lines whose variance exceeds the tolerance into
      inconsistencies (minor / moderate / major / critical) with likely
      causes and recommended actions.
    - Turn inconsistencies into prioritized reconciliation actions.
    - Summarize a count's variance (positive, negative, significant, top N).
    - Check stock positions for negative or inconsistent values and flag
      critical-low and overstocked products.

Architecture position:
    Engines -- pure.  Count lines and stock positions are duck-typed.

Severity bands (percent of theoretical quantity):
    critical > 50, major > 25, moderate > 10, minor otherwise.
    A line with zero theoretical quantity and a positive count is 100%.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Protocol

from stock_kernel.domain.issues import IssueCode, ValidationIssue, ValidationResult
from stock_engines.tracer import traced_engine

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class Severity(Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"
    CRITICAL = "critical"


class ActionType(Enum):
    ADJUSTMENT = "adjustment"
    INVESTIGATION = "investigation"
    RECOUNT = "recount"
    AUDIT = "audit"


class Priority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


_PRIORITY_RANK = {Priority.URGENT: 0, Priority.HIGH: 1, Priority.MEDIUM: 2, Priority.LOW: 3}


@dataclass(frozen=True)
class ReconciliationRules:
    tolerance_percent: Decimal = Decimal("5")
    moderate_percent: Decimal = Decimal("10")
    major_percent: Decimal = Decimal("25")
    critical_percent: Decimal = Decimal("50")
    variance_epsilon: Decimal = Decimal("0.01")
    significant_variance_percent: Decimal = Decimal("5")
    critical_stock_threshold: Decimal = Decimal("5")
    overstock_threshold: Decimal = Decimal("100")
    top_variances: int = 10

    def __post_init__(self) -> None:
        if not (self.moderate_percent <= self.major_percent <= self.critical_percent):
            raise ValueError("severity bands must be ordered moderate <= major <= critical")
        if self.critical_stock_threshold > self.overstock_threshold:
            raise ValueError("critical_stock_threshold must not exceed overstock_threshold")


class CountLineLike(Protocol):
    product_id: str
    theoretical_quantity: Decimal
    physical_quantity: Decimal | None
    average_cost: Decimal


class StockPositionLike(Protocol):
    store_id: str
    product_id: str
    quantity: Decimal
    reserved_quantity: Decimal


@dataclass(frozen=True)
class Inconsistency:
    product_id: str
    theoretical_quantity: Decimal
    physical_quantity: Decimal
    variance: Decimal
    variance_percent: Decimal
    severity: Severity
    possible_causes: tuple[str, ...]
    recommended_actions: tuple[str, ...]


@dataclass(frozen=True)
class ReconciliationAction:
    product_id: str
    action_type: ActionType
    priority: Priority
    description: str
    estimated_minutes: int
    required_role: str


@dataclass(frozen=True)
class LineVariance:
    product_id: str
    variance: Decimal
    variance_percent: Decimal
    variance_value: Decimal


@dataclass(frozen=True)
class VarianceAnalysis:
    total_lines: int
    lines_with_variance: int
    positive_variances: int
    negative_variances: int
    significant_variances: int
    total_variance: Decimal
    total_variance_value: Decimal
    top_variances: tuple[LineVariance, ...]


def variance_percent(theoretical: Decimal, physical: Decimal) -> Decimal:
    """|physical - theoretical| as a percent of theoretical."""
    if theoretical > 0:
        return abs(physical - theoretical) / theoretical * HUNDRED
    return HUNDRED if physical > 0 else ZERO


def classify_severity(percent: Decimal, rules: ReconciliationRules | None = None) -> Severity:
    r = rules or ReconciliationRules()
    if percent > r.critical_percent:
        return Severity.CRITICAL
    if percent > r.major_percent:
        return Severity.MAJOR
    if percent > r.moderate_percent:
        return Severity.MODERATE
    return Severity.MINOR


def _possible_causes(variance: Decimal, percent: Decimal, rules: ReconciliationRules) -> list[str]:
    if variance > 0:
        causes = [
            "unrecorded goods receipt",
            "customer return not recorded",
            "outgoing movement entered twice",
        ]
        if percent > rules.major_percent:
            causes.append("incoming transfer not recorded")
    else:
        causes = [
            "unrecorded sale",
            "undeclared loss",
            "theft or unknown shrinkage",
            "counting error",
        ]
        if percent > rules.major_percent:
            causes.append("outgoing transfer not recorded")
    if percent > rules.critical_percent:
        causes += ["major system error", "data synchronization problem"]
    return causes


_SEVERITY_ACTIONS = {
    Severity.CRITICAL: [
        "stop operations on this product",
        "full audit of movements",
        "recount by an independent team",
    ],
    Severity.MAJOR: [
        "immediate recount",
        "check the latest movements",
        "check transfer documents",
    ],
    Severity.MODERATE: ["verification recount", "check recent entries"],
    Severity.MINOR: ["stock adjustment", "note in the variance log"],
}


def _recommended_actions(variance: Decimal, severity: Severity) -> list[str]:
    actions = list(_SEVERITY_ACTIONS[severity])
    if variance < 0:
        actions += ["look for undeclared losses", "check for unrecorded sales"]
    else:
        actions += ["look for unrecorded receipts", "check customer returns"]
    return actions


@traced_engine("reconciliation.inconsistencies", "1.0")
def detect_inconsistencies(
    lines: Sequence[CountLineLike],
    rules: ReconciliationRules | None = None,
) -> list[Inconsistency]:
    """Counted lines whose variance percent exceeds ``rules.tolerance_percent``."""
    r = rules or ReconciliationRules()
    found = []
    for line in lines:
        if line.physical_quantity is None:
            continue
        variance = line.physical_quantity - line.theoretical_quantity
        percent = variance_percent(line.theoretical_quantity, line.physical_quantity)
        if percent <= r.tolerance_percent:
            continue
        severity = classify_severity(percent, r)
        found.append(Inconsistency(
            product_id=line.product_id,
            theoretical_quantity=line.theoretical_quantity,
            physical_quantity=line.physical_quantity,
            variance=variance,
            variance_percent=percent,
            severity=severity,
            possible_causes=tuple(_possible_causes(variance, percent, r)),
            recommended_actions=tuple(_recommended_actions(variance, severity)),
        ))
    return found


def generate_reconciliation_actions(inconsistencies: Sequence[Inconsistency]) -> list[ReconciliationAction]:
    """One or two actions per inconsistency, most urgent first."""
    actions = []
    for inc in inconsistencies:
        pct = f"{inc.variance_percent:.1f}%"
        if inc.severity is Severity.CRITICAL:
            actions.append(ReconciliationAction(
                inc.product_id, ActionType.AUDIT, Priority.URGENT,
                f"Full audit required: critical variance of {pct}", 120, "director",
            ))
        elif inc.severity is Severity.MAJOR:
            actions.append(ReconciliationAction(
                inc.product_id, ActionType.INVESTIGATION, Priority.HIGH,
                f"Investigation required: major variance of {inc.variance} units", 60, "director",
            ))
            actions.append(ReconciliationAction(
                inc.product_id, ActionType.RECOUNT, Priority.HIGH,
                "Verification recount", 30, "manager",
            ))
        elif inc.severity is Severity.MODERATE:
            actions.append(ReconciliationAction(
                inc.product_id, ActionType.RECOUNT, Priority.MEDIUM,
                f"Recount recommended: variance of {pct}", 20, "manager",
            ))
        else:
            actions.append(ReconciliationAction(
                inc.product_id, ActionType.ADJUSTMENT, Priority.LOW,
                f"Adjustment: minor variance of {inc.variance} units", 5, "manager",
            ))
    actions.sort(key=lambda a: _PRIORITY_RANK[a.priority])
    return actions


def analyze_variance(
    lines: Sequence[CountLineLike],
    rules: ReconciliationRules | None = None,
) -> VarianceAnalysis:
    r = rules or ReconciliationRules()
    counted = [line for line in lines if line.physical_quantity is not None]
    variances = []
    for line in counted:
        variance = line.physical_quantity - line.theoretical_quantity
        variances.append(LineVariance(
            product_id=line.product_id,
            variance=variance,
            variance_percent=variance_percent(line.theoretical_quantity, line.physical_quantity),
            variance_value=variance * line.average_cost,
        ))
    with_variance = [v for v in variances if abs(v.variance) > r.variance_epsilon]
    top = sorted(with_variance, key=lambda v: (-v.variance_percent, v.product_id))[: r.top_variances]
    return VarianceAnalysis(
        total_lines=len(lines),
        lines_with_variance=len(with_variance),
        positive_variances=sum(1 for v in with_variance if v.variance > 0),
        negative_variances=sum(1 for v in with_variance if v.variance < 0),
        significant_variances=sum(
            1 for v in with_variance if v.variance_percent > r.significant_variance_percent
        ),
        total_variance=sum((v.variance for v in variances), ZERO),
        total_variance_value=sum((v.variance_value for v in variances), ZERO),
        top_variances=tuple(top),
    )


@traced_engine("reconciliation.stock_consistency", "1.0")
def check_stock_consistency(
    positions: Sequence[StockPositionLike],
    rules: ReconciliationRules | None = None,
) -> ValidationResult:
    """Errors for impossible positions; warnings for critical-low and overstock."""
    r = rules or ReconciliationRules()
    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []
    for index, pos in enumerate(positions):
        details = {"store_id": pos.store_id, "product_id": pos.product_id, "quantity": pos.quantity}
        if pos.quantity < 0 or pos.reserved_quantity < 0:
            errors.append(ValidationIssue(
                IssueCode.NEGATIVE_STOCK,
                f"Negative stock for {pos.product_id} in {pos.store_id}",
                field="quantity", line_index=index, details=details,
            ))
            continue
        if pos.reserved_quantity > pos.quantity:
            errors.append(ValidationIssue(
                IssueCode.AVAILABLE_MISMATCH,
                f"Reserved {pos.reserved_quantity} exceeds quantity {pos.quantity} "
                f"for {pos.product_id} in {pos.store_id}",
                field="reserved_quantity", line_index=index,
                details={**details, "reserved_quantity": pos.reserved_quantity},
            ))
        if pos.quantity <= r.critical_stock_threshold:
            warnings.append(ValidationIssue(
                IssueCode.CRITICAL_STOCK,
                f"Critical stock level for {pos.product_id} in {pos.store_id}: {pos.quantity}",
                field="quantity", line_index=index, details=details,
            ))
        elif pos.quantity > r.overstock_threshold:
            warnings.append(ValidationIssue(
                IssueCode.OVERSTOCK,
                f"Overstock for {pos.product_id} in {pos.store_id}: {pos.quantity}",
                field="quantity", line_index=index, details=details,
            ))
    return ValidationResult(errors=tuple(errors), warnings=tuple(warnings))
