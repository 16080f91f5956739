"""
Tests for TraceabilityService.

Covers:
- Report breakdowns, daily timeline and advisory anomalies
- Logistics flow per store and per route
- CSV and JSON export
- Ledger versus stock reconciliation
"""

import csv
import io
import json
from datetime import date
from decimal import Decimal

import pytest

from stock_engines.anomaly import AnomalyKind
from stock_kernel.services.movement_ledger import MovementFilter
from stock_kernel.services.stock_level_store import StockLevelStore
from stock_modules.transfers import TransferLineInput
from stock_services.traceability import CSV_HEADERS, ExportFormat

MAIN_STORE = "S-MAIN"
NORTH_STORE = "S-NORTH"


@pytest.fixture
def activity(ledger, receive_goods):
    """Two arrivals into MAIN and one fully received transfer to NORTH."""
    receive_goods(MAIN_STORE, "P-RICE", "10", "5000")
    receive_goods(MAIN_STORE, "P-OIL", "4", "3000")
    transfer = ledger.transfers.create(
        MAIN_STORE, NORTH_STORE, [TransferLineInput("P-RICE", Decimal("3"))], "bob",
    )
    ledger.transfers.receive(transfer.id, [TransferLineInput("P-RICE", Decimal("3"))], "bob")
    return transfer


@pytest.mark.usefixtures("activity")
class TestReport:

    def test_breakdowns(self, ledger):
        report = ledger.generate_traceability_report()
        assert report.total_movements == 4
        assert report.by_type == {"arrival": 2, "transfer_out": 1, "transfer_in": 1}
        assert report.by_store == {MAIN_STORE: 3, NORTH_STORE: 1}
        assert report.by_product == {"P-RICE": 3, "P-OIL": 1}
        assert report.by_user == {"alice": 2, "bob": 2}
        assert report.total_value == Decimal("62000")
        assert report.anomalies == ()

    def test_timeline_covers_configured_days(self, ledger):
        timeline = ledger.generate_traceability_report().timeline
        assert len(timeline) == 7
        assert timeline[0].day == date(2026, 2, 24)
        today = timeline[-1]
        assert today.day == date(2026, 3, 2)
        assert today.inflow == Decimal("17")
        assert today.outflow == Decimal("3")
        assert today.net == Decimal("14")
        assert all(p.inflow == 0 for p in timeline[:-1])

    def test_repeated_receipt_is_flagged(self, ledger, receive_goods):
        receive_goods(MAIN_STORE, "P-OIL", "4", "3000")
        report = ledger.generate_traceability_report()
        assert [a.kind for a in report.anomalies] == [AnomalyKind.NEAR_DUPLICATE]

    def test_filters_apply(self, ledger):
        report = ledger.generate_traceability_report(MovementFilter(store_ids=(NORTH_STORE,)))
        assert report.total_movements == 1
        assert report.by_type == {"transfer_in": 1}


@pytest.mark.usefixtures("activity")
class TestLogisticsFlow:

    def test_store_flows_and_routes(self, ledger):
        report = ledger.get_logistics_flow_report()
        flows = {f.store_id: f for f in report.stores}
        assert flows[MAIN_STORE].outbound_transfers == 1
        assert flows[MAIN_STORE].outbound_quantity == Decimal("3")
        assert flows[MAIN_STORE].inbound_transfers == 0
        assert flows[NORTH_STORE].inbound_quantity == Decimal("3")
        [route] = report.top_routes
        assert (route.source_store_id, route.destination_store_id) == (MAIN_STORE, NORTH_STORE)
        assert route.transfer_count == 1
        assert route.quantity == Decimal("3")

    def test_transfer_in_transit_has_no_route(self, ledger):
        ledger.transfers.create(
            MAIN_STORE, NORTH_STORE, [TransferLineInput("P-OIL", Decimal("1"))], "bob",
        )
        report = ledger.get_logistics_flow_report()
        assert len(report.top_routes) == 1
        main = next(f for f in report.stores if f.store_id == MAIN_STORE)
        assert main.outbound_transfers == 2


@pytest.mark.usefixtures("activity")
class TestExport:

    def test_csv_uses_catalog_names(self, ledger):
        content = ledger.export_movements("csv", MovementFilter(product_ids=("P-OIL",)))
        assert content.startswith('"Date","Type"')
        header, row = list(csv.reader(io.StringIO(content)))
        assert tuple(header) == CSV_HEADERS
        assert row[0] == "2026-03-02"
        assert row[1] == "arrival"
        assert row[2] == "Dépôt Central"
        assert row[3] == "Huile végétale 5L"
        assert Decimal(row[4]) == Decimal("4")
        assert row[8] == "goods_receipt"

    def test_json_bundles_report_and_movements(self, ledger):
        data = json.loads(ledger.export_movements(ExportFormat.JSON))
        assert set(data) == {"metadata", "report", "movements"}
        assert data["metadata"]["movement_count"] == 4
        assert data["report"]["total_movements"] == 4
        assert {m["type"] for m in data["movements"]} == {"arrival", "transfer_out", "transfer_in"}

    def test_unknown_format_rejected(self, ledger):
        with pytest.raises(ValueError):
            ledger.export_movements("xml")

    def test_search_matches_catalog_names(self, ledger):
        movements = ledger.query_movements(MovementFilter(search="riz"))
        assert {m.product_id for m in movements} == {"P-RICE"}
        assert len(movements) == 3


@pytest.mark.usefixtures("activity")
class TestReconcileLedger:

    def test_consistent_ledger(self, ledger):
        assert ledger.reconcile_ledger() == []

    def test_detects_unrecorded_change(self, ledger, session, clock):
        StockLevelStore(session, clock).apply_delta(MAIN_STORE, "P-RICE", Decimal("1"))
        [mismatch] = ledger.reconcile_ledger(MAIN_STORE)
        assert mismatch.product_id == "P-RICE"
        assert mismatch.stock_quantity == Decimal("8")
        assert mismatch.ledger_quantity == Decimal("7")
        assert mismatch.difference == Decimal("1")
        assert ledger.reconcile_ledger(NORTH_STORE) == []
