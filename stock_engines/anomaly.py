"""
stock_engines.anomaly -- deterministic anomaly flagging over movements.

Responsibility:
    Flag movements that look unusual as advisory findings.  Nothing here
    blocks a commit; findings feed the traceability report.

Rules (all thresholds in ``AnomalyThresholds``):
    OVERSIZED_QUANTITY  |delta| above ``absolute_quantity`` (HIGH above
                        ``high_severity_quantity``), or more than ``z_score``
                        standard deviations from the sample mean once the
                        sample has ``min_sample_size`` movements.
    OFF_HOURS           timestamp hour before ``business_hour_start`` or
                        after ``business_hour_end`` (local to ``utc_offset_hours``).
    NEAR_DUPLICATE      same store, product, type and delta as an earlier
                        movement within ``duplicate_window_minutes``.

Invariants enforced:
    - Deterministic: the same movements and thresholds always give the same
      findings in the same order.  No randomness.
    - At most ``max_findings`` returned, most severe first.
"""

from __future__ import annotations

import statistics
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol

from stock_kernel.logging_config import get_logger
from stock_engines.tracer import traced_engine

logger = get_logger("engines.anomaly")


class AnomalyKind(Enum):
    OVERSIZED_QUANTITY = "oversized_quantity"
    OFF_HOURS = "off_hours"
    NEAR_DUPLICATE = "near_duplicate"


class AnomalySeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


_SEVERITY_RANK = {AnomalySeverity.HIGH: 0, AnomalySeverity.MEDIUM: 1, AnomalySeverity.LOW: 2}


@dataclass(frozen=True)
class AnomalyThresholds:
    absolute_quantity: Decimal = Decimal("100")
    high_severity_quantity: Decimal = Decimal("200")
    z_score: float = 3.0
    min_sample_size: int = 10
    business_hour_start: int = 6
    business_hour_end: int = 22
    utc_offset_hours: int = 0
    duplicate_window_minutes: int = 60
    max_findings: int = 10

    def __post_init__(self) -> None:
        if self.high_severity_quantity < self.absolute_quantity:
            raise ValueError("high_severity_quantity must be >= absolute_quantity")
        if not (0 <= self.business_hour_start <= self.business_hour_end <= 23):
            raise ValueError("business hours must satisfy 0 <= start <= end <= 23")
        if self.duplicate_window_minutes < 0:
            raise ValueError("duplicate_window_minutes cannot be negative")
        if self.max_findings < 1:
            raise ValueError("max_findings must be positive")


class MovementLike(Protocol):
    id: Any
    movement_type: Any
    store_id: str
    product_id: str
    quantity_delta: Decimal
    created_at: datetime


@dataclass(frozen=True)
class Anomaly:
    kind: AnomalyKind
    severity: AnomalySeverity
    movement_id: str
    description: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "movement_id": self.movement_id,
            "description": self.description,
            "details": {k: str(v) for k, v in self.details.items()},
        }


def _oversized(movements: Sequence[MovementLike], t: AnomalyThresholds) -> list[tuple[Anomaly, datetime]]:
    findings = []
    magnitudes = [float(abs(m.quantity_delta)) for m in movements]
    mean = stdev = None
    if len(magnitudes) >= t.min_sample_size:
        mean = statistics.fmean(magnitudes)
        stdev = statistics.pstdev(magnitudes)

    for m, magnitude in zip(movements, magnitudes):
        qty = abs(m.quantity_delta)
        if qty > t.absolute_quantity:
            severity = AnomalySeverity.HIGH if qty > t.high_severity_quantity else AnomalySeverity.MEDIUM
            findings.append((Anomaly(
                AnomalyKind.OVERSIZED_QUANTITY, severity, str(m.id),
                f"Quantity {m.quantity_delta} exceeds threshold {t.absolute_quantity}",
                {"quantity": m.quantity_delta, "threshold": t.absolute_quantity},
            ), m.created_at))
        elif stdev and abs(magnitude - mean) / stdev > t.z_score:
            findings.append((Anomaly(
                AnomalyKind.OVERSIZED_QUANTITY, AnomalySeverity.MEDIUM, str(m.id),
                f"Quantity {m.quantity_delta} is more than {t.z_score} standard deviations from the mean",
                {"quantity": m.quantity_delta, "mean": round(mean, 4), "stdev": round(stdev, 4)},
            ), m.created_at))
    return findings


def _off_hours(movements: Sequence[MovementLike], t: AnomalyThresholds) -> list[tuple[Anomaly, datetime]]:
    tz = timezone(timedelta(hours=t.utc_offset_hours))
    findings = []
    for m in movements:
        hour = m.created_at.astimezone(tz).hour
        if hour < t.business_hour_start or hour > t.business_hour_end:
            findings.append((Anomaly(
                AnomalyKind.OFF_HOURS, AnomalySeverity.LOW, str(m.id),
                f"Movement recorded at {hour:02d}h, outside business hours "
                f"{t.business_hour_start:02d}h-{t.business_hour_end:02d}h",
                {"hour": hour},
            ), m.created_at))
    return findings


def _near_duplicates(movements: Sequence[MovementLike], t: AnomalyThresholds) -> list[tuple[Anomaly, datetime]]:
    window = timedelta(minutes=t.duplicate_window_minutes)
    groups: dict[tuple, list[MovementLike]] = defaultdict(list)
    for m in movements:
        kind = getattr(m.movement_type, "value", m.movement_type)
        groups[(m.store_id, m.product_id, kind, m.quantity_delta)].append(m)

    findings = []
    for group in groups.values():
        ordered = sorted(group, key=lambda m: (m.created_at, str(m.id)))
        for previous, current in zip(ordered, ordered[1:]):
            gap = current.created_at - previous.created_at
            if gap <= window:
                findings.append((Anomaly(
                    AnomalyKind.NEAR_DUPLICATE, AnomalySeverity.MEDIUM, str(current.id),
                    f"Same movement as {previous.id} recorded {int(gap.total_seconds() // 60)} minutes earlier",
                    {"previous_movement_id": previous.id, "gap_minutes": int(gap.total_seconds() // 60)},
                ), current.created_at))
    return findings


@traced_engine("anomaly", "1.0")
def detect_anomalies(
    movements: Sequence[MovementLike],
    thresholds: AnomalyThresholds | None = None,
) -> list[Anomaly]:
    t = thresholds or AnomalyThresholds()
    found = _oversized(movements, t) + _off_hours(movements, t) + _near_duplicates(movements, t)
    found.sort(key=lambda pair: (_SEVERITY_RANK[pair[0].severity], pair[1], pair[0].movement_id, pair[0].kind.value))
    result = [a for a, _ in found[: t.max_findings]]
    if result:
        logger.info(
            "anomalies_detected",
            extra={"count": len(result), "total_candidates": len(found)},
        )
    return result
