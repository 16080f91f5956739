"""
TraceabilityService -- reporting over the movement ledger.

Responsibility:
    Movement queries with catalog-aware search, the traceability report
    (counts by type, store, product and user, a daily inflow/outflow
    timeline, advisory anomalies), the logistics flow report, CSV/JSON
    export and the ledger-versus-stock reconciliation check.

Architecture position:
    Services.  Reads only; never writes stock or movements.  Anomaly
    detection is delegated to ``stock_engines.anomaly``.

Invariants enforced:
    - Anomalies are advisory: they are reported, never raised.
    - Deterministic output for a given ledger state and clock.
"""

from __future__ import annotations

import csv
import io
import json
from collections import Counter, defaultdict
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum

from sqlalchemy.orm import Session

from stock_config import LedgerConfig
from stock_engines.anomaly import Anomaly, detect_anomalies
from stock_kernel.domain.catalog import Catalog
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.stock import ZERO, MovementRecord, MovementType, ReferenceType
from stock_kernel.logging_config import get_logger
from stock_kernel.services.movement_ledger import MovementFilter, MovementLedger
from stock_kernel.services.stock_level_store import StockLevelStore

logger = get_logger("services.traceability")

CSV_HEADERS = (
    "Date", "Type", "Store", "Product", "Quantity", "Unit Cost", "Value",
    "Reference", "Reference Type", "Created By", "Comment",
)

_INFLOW_TYPES = frozenset({MovementType.ARRIVAL, MovementType.TRANSFER_IN})


class ExportFormat(Enum):
    CSV = "csv"
    JSON = "json"


@dataclass(frozen=True)
class TimelinePoint:
    day: date
    inflow: Decimal
    outflow: Decimal

    @property
    def net(self) -> Decimal:
        return self.inflow - self.outflow


@dataclass(frozen=True)
class TraceabilityReport:
    generated_at: datetime
    total_movements: int
    total_value: Decimal
    by_type: dict[str, int]
    by_store: dict[str, int]
    by_product: dict[str, int]
    by_user: dict[str, int]
    timeline: tuple[TimelinePoint, ...]
    anomalies: tuple[Anomaly, ...] = ()

    def to_dict(self) -> dict:
        return {
            "generated_at": self.generated_at.isoformat(),
            "total_movements": self.total_movements,
            "total_value": str(self.total_value),
            "by_type": self.by_type,
            "by_store": self.by_store,
            "by_product": self.by_product,
            "by_user": self.by_user,
            "timeline": [
                {
                    "date": p.day.isoformat(),
                    "inflow": str(p.inflow),
                    "outflow": str(p.outflow),
                    "net": str(p.net),
                }
                for p in self.timeline
            ],
            "anomalies": [a.to_dict() for a in self.anomalies],
        }


@dataclass(frozen=True)
class StoreFlow:
    store_id: str
    inbound_transfers: int = 0
    inbound_quantity: Decimal = ZERO
    outbound_transfers: int = 0
    outbound_quantity: Decimal = ZERO


@dataclass(frozen=True)
class TransferRoute:
    source_store_id: str
    destination_store_id: str
    transfer_count: int
    quantity: Decimal


@dataclass(frozen=True)
class LogisticsFlowReport:
    stores: tuple[StoreFlow, ...]
    top_routes: tuple[TransferRoute, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class LedgerMismatch:
    """A stock position whose quantity differs from Σ of its movement deltas."""
    store_id: str
    product_id: str
    stock_quantity: Decimal
    ledger_quantity: Decimal

    @property
    def difference(self) -> Decimal:
        return self.stock_quantity - self.ledger_quantity


def is_inflow(movement: MovementRecord) -> bool:
    if movement.movement_type in _INFLOW_TYPES:
        return True
    return movement.movement_type is MovementType.ADJUSTMENT and movement.quantity_delta > 0


class TraceabilityService:
    """Read-side reporting over ``MovementLedger`` and ``StockLevelStore``."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: LedgerConfig | None = None,
        catalog: Catalog | None = None,
    ):
        self._clock = clock or SystemClock()
        self._config = config or LedgerConfig.with_defaults()
        self._catalog = catalog
        self._ledger = MovementLedger(session, self._clock)
        self._stock = StockLevelStore(session, self._clock)

    # -- queries -----------------------------------------------------------

    def query(self, filters: MovementFilter | None = None) -> list[MovementRecord]:
        """Newest first.  ``search`` also matches catalog product and store names."""
        f = filters or MovementFilter()
        if f.search and self._catalog is not None:
            f = replace(
                f,
                search_store_ids=tuple(sorted(self._catalog.find_stores(f.search))),
                search_product_ids=tuple(sorted(self._catalog.find_products(f.search))),
            )
        return self._ledger.query(f)

    def detect_anomalies(self, movements: list[MovementRecord]) -> list[Anomaly]:
        return detect_anomalies(movements, self._config.anomaly)

    def generate_report(self, filters: MovementFilter | None = None) -> TraceabilityReport:
        movements = self.query(filters)
        end = (filters.date_to if filters and filters.date_to else None) or self._clock.today()
        report = TraceabilityReport(
            generated_at=self._clock.now(),
            total_movements=len(movements),
            total_value=sum((m.value for m in movements), ZERO),
            by_type=dict(Counter(m.movement_type.value for m in movements)),
            by_store=dict(Counter(m.store_id for m in movements)),
            by_product=dict(Counter(m.product_id for m in movements)),
            by_user=dict(Counter(m.created_by for m in movements)),
            timeline=tuple(self._timeline(movements, end)),
            anomalies=tuple(self.detect_anomalies(movements)),
        )
        logger.info(
            "traceability_report_generated",
            extra={"movements": report.total_movements, "anomalies": len(report.anomalies)},
        )
        return report

    def _timeline(self, movements: list[MovementRecord], end: date) -> list[TimelinePoint]:
        days = self._config.timeline_days
        inflow: dict[date, Decimal] = defaultdict(Decimal)
        outflow: dict[date, Decimal] = defaultdict(Decimal)
        for m in movements:
            if is_inflow(m):
                inflow[m.movement_date] += m.quantity_delta
            elif m.quantity_delta < 0:
                outflow[m.movement_date] += -m.quantity_delta
        return [
            TimelinePoint(day=d, inflow=inflow[d], outflow=outflow[d])
            for d in (end - timedelta(days=offset) for offset in range(days - 1, -1, -1))
        ]

    def logistics_flow_report(
        self,
        filters: MovementFilter | None = None,
        top_routes: int = 10,
    ) -> LogisticsFlowReport:
        """Per-store transfer volumes and the busiest source -> destination routes."""
        base = filters or MovementFilter()
        movements = self.query(replace(
            base,
            movement_types=(MovementType.TRANSFER_OUT, MovementType.TRANSFER_IN),
            reference_type=ReferenceType.TRANSFER,
        ))

        out_refs: dict[str, set[str]] = defaultdict(set)
        in_refs: dict[str, set[str]] = defaultdict(set)
        out_qty: dict[str, Decimal] = defaultdict(Decimal)
        in_qty: dict[str, Decimal] = defaultdict(Decimal)
        source_of: dict[str, str] = {}
        destination_of: dict[str, str] = {}
        sent: dict[str, Decimal] = defaultdict(Decimal)
        for m in movements:
            if m.movement_type is MovementType.TRANSFER_OUT:
                out_refs[m.store_id].add(m.reference_id)
                out_qty[m.store_id] += -m.quantity_delta
                source_of[m.reference_id] = m.store_id
                sent[m.reference_id] += -m.quantity_delta
            else:
                in_refs[m.store_id].add(m.reference_id)
                in_qty[m.store_id] += m.quantity_delta
                destination_of[m.reference_id] = m.store_id

        stores = sorted(set(out_refs) | set(in_refs))
        flows = tuple(
            StoreFlow(
                store_id=s,
                inbound_transfers=len(in_refs[s]),
                inbound_quantity=in_qty[s],
                outbound_transfers=len(out_refs[s]),
                outbound_quantity=out_qty[s],
            )
            for s in stores
        )

        route_count: Counter = Counter()
        route_qty: dict[tuple[str, str], Decimal] = defaultdict(Decimal)
        for ref, source in source_of.items():
            destination = destination_of.get(ref)
            if destination is None:
                continue
            route_count[(source, destination)] += 1
            route_qty[(source, destination)] += sent[ref]
        routes = sorted(
            (TransferRoute(s, d, route_count[(s, d)], route_qty[(s, d)]) for s, d in route_count),
            key=lambda r: (-r.transfer_count, -r.quantity, r.source_store_id, r.destination_store_id),
        )
        return LogisticsFlowReport(stores=flows, top_routes=tuple(routes[:top_routes]))

    # -- export ------------------------------------------------------------

    def export(
        self,
        export_format: ExportFormat | str,
        filters: MovementFilter | None = None,
    ) -> str:
        fmt = ExportFormat(export_format)
        movements = self.query(filters)
        if fmt is ExportFormat.CSV:
            content = self._to_csv(movements)
        else:
            content = json.dumps(
                {
                    "metadata": {
                        "generated_at": self._clock.now().isoformat(),
                        "format": fmt.value,
                        "movement_count": len(movements),
                    },
                    "report": self.generate_report(filters).to_dict(),
                    "movements": [m.to_dict() for m in movements],
                },
                indent=2,
            )
        logger.info("movements_exported", extra={"format": fmt.value, "movements": len(movements)})
        return content

    def _to_csv(self, movements: list[MovementRecord]) -> str:
        output = io.StringIO()
        writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(CSV_HEADERS)
        for m in movements:
            writer.writerow((
                m.movement_date.isoformat(),
                m.movement_type.value,
                self._store_label(m.store_id),
                self._product_label(m.product_id),
                str(m.quantity_delta),
                str(m.unit_cost),
                str(m.value),
                m.reference_id,
                m.reference_type.value,
                m.created_by,
                m.comment or "",
            ))
        return output.getvalue()

    def _store_label(self, store_id: str) -> str:
        name = self._catalog.store_name(store_id) if self._catalog else None
        return name or store_id

    def _product_label(self, product_id: str) -> str:
        name = self._catalog.product_name(product_id) if self._catalog else None
        return name or product_id

    # -- integrity ---------------------------------------------------------

    def reconcile_ledger(self, store_id: str | None = None) -> list[LedgerMismatch]:
        """Positions where stock quantity != Σ movement deltas."""
        levels = self._stock.list_by_store(store_id) if store_id else self._stock.list_all()
        balances = self._ledger.balances(store_id)
        mismatches = []
        seen = set()
        for level in levels:
            key = (level.store_id, level.product_id)
            seen.add(key)
            ledger_qty = balances.get(key, ZERO)
            if ledger_qty != level.quantity:
                mismatches.append(LedgerMismatch(level.store_id, level.product_id, level.quantity, ledger_qty))
        for (s, p), ledger_qty in sorted(balances.items()):
            if (s, p) not in seen and ledger_qty != 0:
                mismatches.append(LedgerMismatch(s, p, ZERO, ledger_qty))
        if mismatches:
            logger.error(
                "ledger_stock_mismatch",
                extra={"store_id": store_id, "mismatches": len(mismatches)},
            )
        return mismatches
