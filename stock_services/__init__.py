"""
stock_services -- composition layer and public API.

Responsibility:
    The ``StockLedger`` facade plus the services that sit on top of the
    document workflows: traceability reporting, auto-save and movement
    sinks.

Architecture position:
    Outermost layer.  May import every other package; nothing imports it.
"""

from stock_services.autosave import AutoSaveEntry, AutoSaveService
from stock_services.sinks import CollectingSink, LoggingSink, MovementSink, NullSink
from stock_services.stock_ledger import StockLedger
from stock_services.traceability import (
    ExportFormat,
    LedgerMismatch,
    LogisticsFlowReport,
    TraceabilityReport,
    TraceabilityService,
)

__all__ = [
    "AutoSaveEntry",
    "AutoSaveService",
    "CollectingSink",
    "ExportFormat",
    "LedgerMismatch",
    "LoggingSink",
    "LogisticsFlowReport",
    "MovementSink",
    "NullSink",
    "StockLedger",
    "TraceabilityReport",
    "TraceabilityService",
]
