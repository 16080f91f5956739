"""
InventoryCountService -- physical counts reconciled against the books.

Responsibility
--------------
Snapshots a store's theoretical stock, collects physical quantities,
routes the count through submit / validate / reject, and on validation
sets each product's quantity to the counted one with an ``adjustment``
movement.  Also exposes the reconciliation views (variance analysis,
inconsistencies, recommended actions) computed by
``stock_engines.reconciliation``.

Invariants
----------
* ``theoretical_quantity`` and ``average_cost`` are frozen at creation.
* ``variance_value = (physical - theoretical) * average_cost`` exactly.
* Validation writes the delta actually applied to stock, so the ledger
  stays in balance even if stock moved after the snapshot.
* Rejection keeps every counted quantity and appends to the comment trail.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_config import LedgerConfig
from stock_engines.reconciliation import (
    Inconsistency,
    ReconciliationAction,
    VarianceAnalysis,
    analyze_variance,
    detect_inconsistencies,
    generate_reconciliation_actions,
    variance_percent,
)
from stock_engines.validation import ValidationEngine
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.issues import IssueCode, ValidationIssue
from stock_kernel.domain.sink import MovementSink, NullSink, publish_all
from stock_kernel.domain.stock import (
    ZERO,
    MovementDraft,
    MovementRecord,
    MovementType,
    ReferenceType,
    StockKey,
)
from stock_kernel.exceptions import (
    DocumentNotFoundError,
    InputValidationError,
    StateTransitionError,
    raise_for_result,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.services.movement_ledger import MovementLedger
from stock_kernel.services.sequence_service import DocumentNumberService
from stock_kernel.services.stock_level_store import StockLevelStore
from stock_kernel.services.unit_of_work import commit_phase, execute_unit_of_work
from stock_modules.counts.models import (
    CountCompletion,
    CountEntry,
    CountFilter,
    CountStats,
    CountStatus,
    CountSubmission,
    InventoryCount,
)
from stock_modules.counts.orm import InventoryCountLineModel, InventoryCountModel
from stock_modules.counts.workflows import COUNT_WORKFLOW

logger = get_logger("modules.counts.service")

DOCUMENT_TYPE = "InventoryCount"
HUNDRED = Decimal("100")


class InventoryCountService:
    """
    Inventory count reconciler.

    Contract:
        Every mutating method commits before returning or rolls back and
        raises.  ``validate`` runs as a retried unit of work.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: LedgerConfig | None = None,
        sink: MovementSink | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or LedgerConfig.with_defaults()
        self._sink = sink or NullSink()
        self._validation = ValidationEngine(self._config.validation)
        self._stock = StockLevelStore(session, self._clock)
        self._ledger = MovementLedger(session, self._clock)
        self._numbers = DocumentNumberService(session, self._clock, self._config.numbering.reset)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def create(
        self,
        store_id: str,
        actor_id: str,
        count_date: date | None = None,
        comment: str | None = None,
    ) -> InventoryCount:
        """Snapshot every position of ``store_id`` with quantity > 0."""
        if not store_id:
            raise InputValidationError([ValidationIssue(
                IssueCode.MISSING_STORE, "Store is required", field="store_id",
            )])
        with LogContext.bind(actor_id=actor_id, operation="create_count"):
            try:
                levels = [lvl for lvl in self._stock.list_by_store(store_id) if lvl.quantity > 0]
                model = InventoryCountModel(
                    id=uuid4(),
                    number=self._numbers.next_number(DocumentNumberService.COUNT),
                    store_id=store_id,
                    count_date=count_date or self._clock.today(),
                    status=CountStatus.IN_PROGRESS.value,
                    total_variance=ZERO,
                    total_variance_value=ZERO,
                    comment=comment,
                    created_by_id=actor_id,
                    created_at=self._clock.now(),
                )
                for line_no, level in enumerate(levels, start=1):
                    model.lines.append(InventoryCountLineModel(
                        line_no=line_no,
                        product_id=level.product_id,
                        theoretical_quantity=level.quantity,
                        average_cost=level.average_cost,
                    ))
                self._session.add(model)
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise
            logger.info(
                "count_created",
                extra={"count_id": str(model.id), "number": model.number, "lines": len(levels)},
            )
            return model.to_dto()

    def record_counts(
        self,
        count_id: UUID,
        entries: Sequence[CountEntry],
        actor_id: str,
    ) -> InventoryCount:
        """Enter physical quantities.  Products not on the count are rejected."""
        with LogContext.bind(actor_id=actor_id, document_id=count_id, operation="record_counts"):
            try:
                model = self._load(count_id)
                self._require_transition(model, "record_counts")
                result = self._validation.validate_count_entries(
                    counted_products=[line.product_id for line in model.lines],
                    entries=entries,
                )
                raise_for_result(result)

                lines = {line.product_id: line for line in model.lines}
                for entry in entries:
                    line = lines[entry.product_id]
                    line.physical_quantity = entry.physical_quantity
                    line.variance = entry.physical_quantity - line.theoretical_quantity
                    line.variance_value = line.variance * line.average_cost
                    if entry.comment is not None:
                        line.comment = entry.comment
                counted = [line for line in model.lines if line.variance is not None]
                model.total_variance = sum((line.variance for line in counted), ZERO)
                model.total_variance_value = sum((line.variance_value for line in counted), ZERO)
                model.updated_by_id = actor_id
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise
            logger.info(
                "count_entries_recorded",
                extra={"count_id": str(count_id), "entries": len(entries)},
            )
            return model.to_dto()

    def submit(self, count_id: UUID, actor_id: str) -> CountSubmission:
        with LogContext.bind(actor_id=actor_id, document_id=count_id, operation="submit_count"):
            try:
                model = self._load(count_id)
                self._require_transition(model, "submit")
                result = self._validation.validate_count_submission(
                    count_date=model.count_date,
                    lines=model.lines,
                    today=self._clock.today(),
                )
                raise_for_result(result)
                model.status = CountStatus.PENDING_VALIDATION.value
                model.submitted_by = actor_id
                model.submitted_at = self._clock.now()
                model.updated_by_id = actor_id
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise
            logger.info(
                "count_submitted",
                extra={"count_id": str(count_id), "warnings": len(result.warnings)},
            )
            return CountSubmission(count=model.to_dto(), warnings=result.warnings)

    def validate(self, count_id: UUID, actor_id: str) -> InventoryCount:
        """Apply the counted quantities to stock.

        Raises ProcessingError if the stock phase fails; the count then
        stays ``pending_validation``.
        """
        with LogContext.bind(actor_id=actor_id, document_id=count_id, operation="validate_count"):
            movements = execute_unit_of_work(
                self._session,
                lambda: self._validate(count_id, actor_id),
                document_type=DOCUMENT_TYPE,
                document_id=count_id,
                max_retries=self._config.max_commit_retries,
                operation_name="count_validate",
            )
            count = self.get_by_id(count_id)
            logger.info(
                "count_validated",
                extra={
                    "count_id": str(count_id),
                    "number": count.number,
                    "adjustments": len(movements),
                    "total_variance_value": count.total_variance_value,
                },
            )
            publish_all(self._sink, movements, logger)
            return count

    def _validate(self, count_id: UUID, actor_id: str) -> list[MovementRecord]:
        model = self._session.execute(
            select(InventoryCountModel)
            .where(InventoryCountModel.id == count_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise DocumentNotFoundError(DOCUMENT_TYPE, count_id)
        self._require_transition(model, "validate")

        now = self._clock.now()
        movements: list[MovementRecord] = []
        with commit_phase(DOCUMENT_TYPE, count_id):
            self._stock.lock(StockKey(model.store_id, line.product_id) for line in model.lines)
            for line in model.lines:
                _, applied = self._stock.set_quantity(
                    model.store_id, line.product_id, line.physical_quantity, at=now,
                )
                if applied == 0:
                    continue
                movements.append(self._ledger.append(MovementDraft(
                    movement_type=MovementType.ADJUSTMENT,
                    store_id=model.store_id,
                    product_id=line.product_id,
                    quantity_delta=applied,
                    unit_cost=line.average_cost,
                    reference_id=model.number,
                    reference_type=ReferenceType.INVENTORY_COUNT,
                    created_by=actor_id,
                    movement_date=model.count_date,
                    comment=f"Inventory count {model.number}",
                )))
            model.status = CountStatus.VALIDATED.value
            model.validated_by = actor_id
            model.validated_at = now
            model.updated_by_id = actor_id
            self._session.flush()
        return movements

    def reject(self, count_id: UUID, actor_id: str, reason: str) -> InventoryCount:
        """Send the count back to ``in_progress`` with a reason on the trail."""
        if not reason or not reason.strip():
            raise InputValidationError([ValidationIssue(
                IssueCode.MISSING_REASON, "A rejection reason is required", field="reason",
            )])
        with LogContext.bind(actor_id=actor_id, document_id=count_id, operation="reject_count"):
            try:
                model = self._load(count_id)
                self._require_transition(model, "reject")
                note = f"REJECTED by {actor_id}: {reason.strip()}"
                model.comment = f"{model.comment}\n{note}" if model.comment else note
                model.status = CountStatus.IN_PROGRESS.value
                model.submitted_by = None
                model.submitted_at = None
                model.updated_by_id = actor_id
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise
            logger.warning("count_rejected", extra={"count_id": str(count_id), "reason": reason})
            return model.to_dto()

    def delete(self, count_id: UUID, actor_id: str) -> None:
        """Delete a count that has not been validated."""
        with LogContext.bind(actor_id=actor_id, document_id=count_id, operation="delete_count"):
            model = self._load(count_id)
            if model.status == CountStatus.VALIDATED.value:
                raise StateTransitionError(DOCUMENT_TYPE, count_id, model.status, "delete")
            try:
                self._session.delete(model)
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise
            logger.info("count_deleted", extra={"count_id": str(count_id)})

    # =========================================================================
    # Queries
    # =========================================================================

    def get_by_id(self, count_id: UUID) -> InventoryCount:
        return self._load(count_id).to_dto()

    def list(self, filters: CountFilter | None = None) -> list[InventoryCount]:
        f = filters or CountFilter()
        stmt = select(InventoryCountModel)
        if f.store_id is not None:
            stmt = stmt.where(InventoryCountModel.store_id == f.store_id)
        if f.status is not None:
            stmt = stmt.where(InventoryCountModel.status == f.status.value)
        if f.date_from is not None:
            stmt = stmt.where(InventoryCountModel.count_date >= f.date_from)
        if f.date_to is not None:
            stmt = stmt.where(InventoryCountModel.count_date <= f.date_to)
        stmt = stmt.order_by(InventoryCountModel.created_at.desc(), InventoryCountModel.number.desc())
        return [m.to_dto() for m in self._session.execute(stmt).scalars().all()]

    def get_completion(self, count_id: UUID) -> CountCompletion:
        count = self.get_by_id(count_id)
        counted = sum(1 for line in count.lines if line.is_counted)
        total = len(count.lines)
        return CountCompletion(
            total_lines=total,
            counted_lines=counted,
            percent=Decimal(counted) / Decimal(total) * HUNDRED if total else ZERO,
        )

    def get_variance_analysis(self, count_id: UUID) -> VarianceAnalysis:
        return analyze_variance(self.get_by_id(count_id).lines, self._config.reconciliation)

    def get_inconsistencies(self, count_id: UUID) -> list[Inconsistency]:
        return detect_inconsistencies(self.get_by_id(count_id).lines, self._config.reconciliation)

    def get_reconciliation_actions(self, count_id: UUID) -> list[ReconciliationAction]:
        return generate_reconciliation_actions(self.get_inconsistencies(count_id))

    def get_stats(self, store_id: str | None = None) -> CountStats:
        counts = self.list(CountFilter(store_id=store_id))
        validated = [c for c in counts if c.status is CountStatus.VALIDATED]
        percents = [
            variance_percent(line.theoretical_quantity, line.physical_quantity)
            for c in validated for line in c.lines if line.is_counted
        ]
        return CountStats(
            total_count=len(counts),
            in_progress_count=sum(1 for c in counts if c.status is CountStatus.IN_PROGRESS),
            pending_validation_count=sum(
                1 for c in counts if c.status is CountStatus.PENDING_VALIDATION
            ),
            validated_count=len(validated),
            total_absolute_variance_value=sum(
                (abs(line.variance_value) for c in validated for line in c.lines
                 if line.variance_value is not None),
                ZERO,
            ),
            average_absolute_variance_percent=(
                sum(percents, ZERO) / len(percents) if percents else ZERO
            ),
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _load(self, count_id: UUID) -> InventoryCountModel:
        model = self._session.get(InventoryCountModel, count_id)
        if model is None:
            raise DocumentNotFoundError(DOCUMENT_TYPE, count_id)
        return model

    def _require_transition(self, model: InventoryCountModel, action: str) -> None:
        if COUNT_WORKFLOW.find_transition(model.status, action) is None:
            raise StateTransitionError(DOCUMENT_TYPE, model.id, model.status, action)
