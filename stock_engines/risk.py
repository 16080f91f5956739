"""
stock_engines.risk -- advisory risk scoring for stock operations.

Scores an operation by quantity, value and recent frequency.  The level
is the highest any single factor reaches.  ``requires_approval`` tells the
caller whether its approval policy should be consulted; this core never
enforces it.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from stock_engines.tracer import traced_engine


class RiskLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]


@dataclass(frozen=True)
class RiskRules:
    max_quantity_per_operation: Decimal = Decimal("1000")
    max_value_per_operation: Decimal = Decimal("5000000")
    max_operations_per_hour: int = 50
    quantity_medium_ratio: Decimal = Decimal("0.7")
    value_high_ratio: Decimal = Decimal("0.5")

    def __post_init__(self) -> None:
        if self.max_quantity_per_operation <= 0 or self.max_value_per_operation <= 0:
            raise ValueError("risk limits must be positive")
        if self.max_operations_per_hour < 1:
            raise ValueError("max_operations_per_hour must be positive")


@dataclass(frozen=True)
class RiskAssessment:
    level: RiskLevel
    factors: tuple[str, ...]
    recommendations: tuple[str, ...]
    requires_approval: bool


def _raise(current: RiskLevel, candidate: RiskLevel) -> RiskLevel:
    return max(current, candidate, key=_ORDER.index)


@traced_engine("risk", "1.0")
def assess_operation_risk(
    *,
    total_quantity: Decimal,
    total_value: Decimal,
    recent_operation_count: int = 0,
    actor_role: str | None = None,
    rules: RiskRules | None = None,
) -> RiskAssessment:
    r = rules or RiskRules()
    level = RiskLevel.LOW
    factors: list[str] = []
    recommendations: list[str] = []

    if total_quantity > r.max_quantity_per_operation:
        level = _raise(level, RiskLevel.HIGH)
        factors.append(f"quantity {total_quantity} exceeds limit {r.max_quantity_per_operation}")
        recommendations.append("split the operation into smaller documents")
    elif total_quantity > r.max_quantity_per_operation * r.quantity_medium_ratio:
        level = _raise(level, RiskLevel.MEDIUM)
        factors.append(f"quantity {total_quantity} is close to limit {r.max_quantity_per_operation}")

    if total_value > r.max_value_per_operation:
        level = _raise(level, RiskLevel.CRITICAL)
        factors.append(f"value {total_value} exceeds limit {r.max_value_per_operation}")
        recommendations.append("obtain director approval before committing")
    elif total_value > r.max_value_per_operation * r.value_high_ratio:
        level = _raise(level, RiskLevel.HIGH)
        factors.append(f"value {total_value} exceeds half of limit {r.max_value_per_operation}")
        recommendations.append("verify supporting documents")

    if recent_operation_count > r.max_operations_per_hour:
        level = _raise(level, RiskLevel.HIGH)
        factors.append(
            f"{recent_operation_count} operations in the last hour (limit {r.max_operations_per_hour})"
        )
        recommendations.append("review recent activity for this actor")

    requires_approval = level in (RiskLevel.HIGH, RiskLevel.CRITICAL) or (
        actor_role == "manager" and level is RiskLevel.MEDIUM
    )
    return RiskAssessment(
        level=level,
        factors=tuple(factors),
        recommendations=tuple(recommendations),
        requires_approval=requires_approval,
    )
