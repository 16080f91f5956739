"""
Configuration schema (``stock_config.schema``).

Frozen dataclasses describing every tunable of the stock ledger.  Engine
rule objects are defined beside their engines and aggregated here so that
one ``LedgerConfig`` carries the whole policy surface.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from stock_engines.anomaly import AnomalyThresholds
from stock_engines.reconciliation import ReconciliationRules
from stock_engines.risk import RiskRules
from stock_engines.validation import ValidationRules
from stock_kernel.services.retry import MAX_RETRIES
from stock_kernel.services.sequence_service import NumberingReset


@dataclass(frozen=True)
class NumberingConfig:
    """Document numbering.  ``reset`` decides whether sequences restart yearly."""
    reset: NumberingReset = NumberingReset.YEARLY


@dataclass(frozen=True)
class LedgerConfig:
    """Top-level configuration for a StockLedger instance."""
    validation: ValidationRules = field(default_factory=ValidationRules)
    anomaly: AnomalyThresholds = field(default_factory=AnomalyThresholds)
    risk: RiskRules = field(default_factory=RiskRules)
    reconciliation: ReconciliationRules = field(default_factory=ReconciliationRules)
    numbering: NumberingConfig = field(default_factory=NumberingConfig)
    max_commit_retries: int = MAX_RETRIES
    timeline_days: int = 7
    checksum: str | None = None

    def __post_init__(self) -> None:
        if self.max_commit_retries < 0:
            raise ValueError("max_commit_retries cannot be negative")
        if self.timeline_days < 1:
            raise ValueError("timeline_days must be positive")

    @classmethod
    def with_defaults(cls) -> LedgerConfig:
        return cls()
