"""
StockLedger -- the public facade over the stock ledger core.

Responsibility:
    One object a UI or API layer holds per session.  Wires the three
    document workflows, the traceability service and auto-save onto a
    shared session, clock, configuration, catalog and movement sink, and
    exposes the stock/ledger read operations directly.

Architecture position:
    Services -- composition root.  Holds no state of its own beyond the
    collaborators it was given.

Usage:
    ledger = StockLedger(session, clock=SystemClock(), catalog=catalog)
    form = ledger.receipts.create_draft("SUP-1", "STORE-1")
    ...
    ledger.get_stock_level("STORE-1", "P-1")
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from stock_config import LedgerConfig
from stock_engines.reconciliation import check_stock_consistency
from stock_engines.risk import RiskAssessment, assess_operation_risk
from stock_kernel.domain.catalog import Catalog
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.issues import ValidationResult
from stock_kernel.domain.sink import MovementSink, NullSink
from stock_kernel.domain.stock import MovementRecord, StockLevel
from stock_kernel.exceptions import StockLevelNotFoundError
from stock_kernel.logging_config import get_logger
from stock_kernel.services.movement_ledger import MovementFilter
from stock_kernel.services.stock_level_store import StockLevelStore
from stock_modules.counts import InventoryCountService
from stock_modules.receipts import GoodsReceiptService
from stock_modules.transfers import TransferService
from stock_services.autosave import AutoSaveService
from stock_services.traceability import (
    ExportFormat,
    LedgerMismatch,
    LogisticsFlowReport,
    TraceabilityReport,
    TraceabilityService,
)

logger = get_logger("services.stock_ledger")

RISK_WINDOW = timedelta(hours=1)


class StockLedger:
    """Facade exposing receipts, transfers, counts and stock/ledger reads."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: LedgerConfig | None = None,
        sink: MovementSink | None = None,
        catalog: Catalog | None = None,
        autosave: AutoSaveService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or LedgerConfig.with_defaults()
        self._sink = sink or NullSink()
        self._catalog = catalog
        self._stock = StockLevelStore(session, self._clock)

        self.receipts = GoodsReceiptService(session, self._clock, self._config, self._sink)
        self.transfers = TransferService(
            session, self._clock, self._config, self._sink, catalog,
        )
        self.counts = InventoryCountService(session, self._clock, self._config, self._sink)
        self.traceability = TraceabilityService(session, self._clock, self._config, catalog)
        self.autosave = autosave or AutoSaveService(self._clock)

        logger.debug(
            "stock_ledger_initialized",
            extra={
                "config_checksum": self._config.checksum,
                "sink": type(self._sink).__name__,
            },
        )

    @property
    def config(self) -> LedgerConfig:
        return self._config

    # -- stock -------------------------------------------------------------

    def get_stock_level(self, store_id: str, product_id: str) -> StockLevel:
        level = self._stock.get(store_id, product_id)
        if level is None:
            raise StockLevelNotFoundError(store_id, product_id)
        return level

    def list_stock_levels(self, store_id: str) -> list[StockLevel]:
        return self._stock.list_by_store(store_id)

    def get_stock_valuation(self, store_id: str) -> Decimal:
        return self._stock.valuation(store_id)

    def check_stock_consistency(self, store_id: str) -> ValidationResult:
        return check_stock_consistency(
            self._stock.list_by_store(store_id), self._config.reconciliation,
        )

    # -- ledger ------------------------------------------------------------

    def query_movements(self, filters: MovementFilter | None = None) -> list[MovementRecord]:
        return self.traceability.query(filters)

    def generate_traceability_report(self, filters: MovementFilter | None = None) -> TraceabilityReport:
        return self.traceability.generate_report(filters)

    def get_logistics_flow_report(self, filters: MovementFilter | None = None) -> LogisticsFlowReport:
        return self.traceability.logistics_flow_report(filters)

    def export_movements(
        self,
        export_format: ExportFormat | str,
        filters: MovementFilter | None = None,
    ) -> str:
        return self.traceability.export(export_format, filters)

    def reconcile_ledger(self, store_id: str | None = None) -> list[LedgerMismatch]:
        return self.traceability.reconcile_ledger(store_id)

    # -- risk --------------------------------------------------------------

    def assess_operation_risk(
        self,
        *,
        total_quantity: Decimal,
        total_value: Decimal,
        actor_id: str | None = None,
        actor_role: str | None = None,
    ) -> RiskAssessment:
        """Advisory risk level for an operation about to be committed.

        ``recent_operation_count`` is the number of distinct documents the
        actor touched in the last hour, read from the ledger.
        """
        recent = 0
        if actor_id is not None:
            since = self._clock.now() - RISK_WINDOW
            movements = self.traceability.query(MovementFilter(user_ids=(actor_id,)))
            recent = len({
                (m.reference_type, m.reference_id) for m in movements if m.created_at >= since
            })
        assessment = assess_operation_risk(
            total_quantity=total_quantity,
            total_value=total_value,
            recent_operation_count=recent,
            actor_role=actor_role,
            rules=self._config.risk,
        )
        if assessment.requires_approval:
            logger.warning(
                "operation_requires_approval",
                extra={
                    "risk_level": assessment.level.value,
                    "actor_id": actor_id,
                    "factors": list(assessment.factors),
                },
            )
        return assessment
