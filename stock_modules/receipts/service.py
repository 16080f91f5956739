"""
GoodsReceiptService -- supplier deliveries from draft to stock arrival.

Responsibility
--------------
Owns the goods-receipt lifecycle: building the editable form, saving
drafts under lenient validation, and the strict validate-and-commit path
that raises stock, recomputes the weighted-average cost and appends one
``arrival`` movement per line.

Architecture
------------
Modules layer.  Composes kernel services (``StockLevelStore``,
``MovementLedger``, ``DocumentNumberService``) with the pure
``ValidationEngine`` and ``CostLedger`` engines.  Each public mutating
method owns its transaction.

Invariants
----------
* A receipt is numbered once, at its first save, and the number never
  changes.
* ``validated`` is terminal.  Re-validating raises StateTransitionError and
  stock is not touched a second time.
* The stock phase is atomic: either every line's level and movement is
  written and the receipt is ``validated``, or nothing is and the receipt
  is still a ``draft`` holding the entered data.

Failure Modes
-------------
* InputValidationError / BusinessRuleViolation from ``save_draft``.
* ``ReceiptCommitResult`` with ``VALIDATION_FAILED`` or ``PROCESSING_FAILED``
  from ``validate_and_commit``; rule failures are data, not exceptions.
* StateTransitionError, DocumentNotFoundError, PermissionDeniedError.

Usage
-----
    service = GoodsReceiptService(session, clock)
    form = service.create_draft("SUP-1", "STORE-1")
    form = service.add_line(form, "P-1", Decimal("10"), Decimal("5000"))
    result = service.validate_and_commit(form, actor_id="alice")
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_config import LedgerConfig
from stock_engines.cost import CostLedger, line_subtotal
from stock_engines.validation import ValidationEngine, ValidationMode
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.sink import MovementSink, NullSink, publish_all
from stock_kernel.domain.stock import (
    MovementDraft,
    MovementRecord,
    MovementType,
    ReferenceType,
    StockKey,
)
from stock_kernel.exceptions import (
    DocumentNotFoundError,
    PermissionDeniedError,
    ProcessingError,
    StateTransitionError,
    raise_for_result,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.services.movement_ledger import MovementLedger
from stock_kernel.services.sequence_service import DocumentNumberService
from stock_kernel.services.stock_level_store import StockLevelStore
from stock_kernel.services.unit_of_work import commit_phase, execute_unit_of_work
from stock_modules.receipts.models import (
    GoodsReceipt,
    GoodsReceiptForm,
    ReceiptCommitResult,
    ReceiptCommitStatus,
    ReceiptFilter,
    ReceiptLineForm,
    ReceiptStats,
    ReceiptStatus,
    StatsPeriod,
)
from stock_modules.receipts.orm import GoodsReceiptLineModel, GoodsReceiptModel
from stock_modules.receipts.workflows import RECEIPT_WORKFLOW

logger = get_logger("modules.receipts.service")

DOCUMENT_TYPE = "GoodsReceipt"

_EDITABLE_LINE_FIELDS = frozenset({"product_id", "quantity_received", "unit_cost"})
_PERIOD_DAYS = {StatsPeriod.WEEK: 7, StatsPeriod.MONTH: 30}


class GoodsReceiptService:
    """
    Goods receipt processor.

    Contract:
        Form helpers (``create_draft``, ``add_line``, ``update_line``,
        ``remove_line``) are pure.  ``save_draft``, ``validate_and_commit`` and
        ``delete_draft`` commit or roll back before returning.
    Guarantees:
        Committed movements are published to the sink only after the
        database commit succeeded.
    Non-goals:
        Does not check that supplier, store or product ids exist; the
        catalog is owned elsewhere.
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
        self._cost = CostLedger()
        self._stock = StockLevelStore(session, self._clock)
        self._ledger = MovementLedger(session, self._clock)
        self._numbers = DocumentNumberService(session, self._clock, self._config.numbering.reset)

    # =========================================================================
    # Form editing (pure)
    # =========================================================================

    def create_draft(
        self,
        supplier_id: str | None,
        store_id: str | None,
        date_received: date | None = None,
        comment: str | None = None,
    ) -> GoodsReceiptForm:
        """New unsaved form dated today unless ``date_received`` is given."""
        return GoodsReceiptForm(
            supplier_id=supplier_id,
            store_id=store_id,
            date_received=date_received or self._clock.today(),
            comment=comment,
        )

    def add_line(
        self,
        form: GoodsReceiptForm,
        product_id: str | None = None,
        quantity_received: Decimal | None = None,
        unit_cost: Decimal | None = None,
    ) -> GoodsReceiptForm:
        return form.with_line(ReceiptLineForm.new(product_id, quantity_received, unit_cost))

    def update_line(self, form: GoodsReceiptForm, line_id: str, **changes) -> GoodsReceiptForm:
        """Change product, quantity or unit cost; the subtotal follows."""
        unknown = set(changes) - _EDITABLE_LINE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update line field(s): {sorted(unknown)}")
        return form.with_updated_line(line_id, **changes)

    def remove_line(self, form: GoodsReceiptForm, line_id: str) -> GoodsReceiptForm:
        return form.without_line(line_id)

    # =========================================================================
    # Draft persistence
    # =========================================================================

    def save_draft(self, form: GoodsReceiptForm, actor_id: str) -> GoodsReceipt:
        """Persist ``form`` as a draft after lenient validation.

        Raises InputValidationError when supplier or store is missing or a
        populated line is invalid.  Numbers the receipt on first save.
        """
        with LogContext.bind(actor_id=actor_id, operation="save_receipt_draft"):
            result = self._validation.validate_receipt(
                form, mode=ValidationMode.DRAFT, today=self._clock.today(),
            )
            raise_for_result(result)
            try:
                model = self._persist_draft(form, actor_id)
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise
            logger.info(
                "receipt_draft_saved",
                extra={"receipt_id": str(model.id), "number": model.number, "lines": len(model.lines)},
            )
            return model.to_dto()

    # =========================================================================
    # Validate and commit
    # =========================================================================

    def validate_and_commit(self, form: GoodsReceiptForm, actor_id: str) -> ReceiptCommitResult:
        """Strictly validate ``form`` and, if clean, apply it to stock.

        Raises StateTransitionError if ``form`` refers to a receipt that is
        no longer a draft.
        """
        with LogContext.bind(actor_id=actor_id, document_id=form.id, operation="validate_receipt"):
            existing = None
            if form.id is not None:
                existing = self._load(form.id)
                self._require_transition(existing, "validate")

            result = self._validation.validate_receipt(
                form, mode=ValidationMode.STRICT, today=self._clock.today(),
            )
            if not result.is_valid:
                logger.info(
                    "receipt_validation_failed",
                    extra={"error_codes": sorted(c.value for c in result.error_codes())},
                )
                return ReceiptCommitResult(
                    status=ReceiptCommitStatus.VALIDATION_FAILED,
                    receipt=existing.to_dto() if existing is not None else None,
                    errors=result.errors,
                    warnings=result.warnings,
                )

            # Phase A: the entered data is durable before stock is touched.
            try:
                model = self._persist_draft(form, actor_id)
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise
            receipt_id = model.id

            # Phase B: stock mutation, all or nothing.
            try:
                movements = execute_unit_of_work(
                    self._session,
                    lambda: self._commit_stock(receipt_id, actor_id),
                    document_type=DOCUMENT_TYPE,
                    document_id=receipt_id,
                    max_retries=self._config.max_commit_retries,
                    operation_name="receipt_validate",
                )
            except ProcessingError as exc:
                logger.error(
                    "receipt_processing_failed",
                    extra={"receipt_id": str(receipt_id), "cause": exc.cause},
                )
                return ReceiptCommitResult(
                    status=ReceiptCommitStatus.PROCESSING_FAILED,
                    receipt=self.get_by_id(receipt_id),
                    warnings=result.warnings,
                    processing_error=exc,
                )

            receipt = self.get_by_id(receipt_id)
            logger.info(
                "receipt_validated",
                extra={
                    "receipt_id": str(receipt_id),
                    "number": receipt.number,
                    "total_value": receipt.total_value,
                    "movements": len(movements),
                },
            )
            publish_all(self._sink, movements, logger)
            return ReceiptCommitResult(
                status=ReceiptCommitStatus.VALIDATED,
                receipt=receipt,
                warnings=result.warnings,
            )

    def _commit_stock(self, receipt_id: UUID, actor_id: str) -> list[MovementRecord]:
        model = self._session.execute(
            select(GoodsReceiptModel)
            .where(GoodsReceiptModel.id == receipt_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()
        self._require_transition(model, "validate")

        movements: list[MovementRecord] = []
        with commit_phase(DOCUMENT_TYPE, receipt_id):
            now = self._clock.now()
            self._stock.lock(StockKey(model.store_id, line.product_id) for line in model.lines)
            for line in model.lines:
                current = self._stock.get_or_empty(model.store_id, line.product_id)
                new_cost = self._cost.weighted_average(
                    current.quantity, current.average_cost,
                    line.quantity_received, line.unit_cost,
                )
                self._stock.apply_delta(
                    model.store_id, line.product_id, line.quantity_received,
                    average_cost=new_cost, at=now,
                )
                movements.append(self._ledger.append(MovementDraft(
                    movement_type=MovementType.ARRIVAL,
                    store_id=model.store_id,
                    product_id=line.product_id,
                    quantity_delta=line.quantity_received,
                    unit_cost=line.unit_cost,
                    reference_id=model.number,
                    reference_type=ReferenceType.GOODS_RECEIPT,
                    created_by=actor_id,
                    movement_date=model.date_received,
                    comment=f"Receipt {model.number} from {model.supplier_id}",
                )))
            model.status = ReceiptStatus.VALIDATED.value
            model.validated_by = actor_id
            model.validated_at = now
            model.updated_by_id = actor_id
            self._session.flush()
        return movements

    # =========================================================================
    # Queries
    # =========================================================================

    def get_by_id(self, receipt_id: UUID) -> GoodsReceipt:
        return self._load(receipt_id).to_dto()

    def list(self, filters: ReceiptFilter | None = None) -> list[GoodsReceipt]:
        f = filters or ReceiptFilter()
        stmt = select(GoodsReceiptModel)
        if f.store_id is not None:
            stmt = stmt.where(GoodsReceiptModel.store_id == f.store_id)
        if f.supplier_id is not None:
            stmt = stmt.where(GoodsReceiptModel.supplier_id == f.supplier_id)
        if f.status is not None:
            stmt = stmt.where(GoodsReceiptModel.status == f.status.value)
        if f.date_from is not None:
            stmt = stmt.where(GoodsReceiptModel.date_received >= f.date_from)
        if f.date_to is not None:
            stmt = stmt.where(GoodsReceiptModel.date_received <= f.date_to)
        stmt = stmt.order_by(GoodsReceiptModel.created_at.desc(), GoodsReceiptModel.number.desc())
        return [m.to_dto() for m in self._session.execute(stmt).scalars().all()]

    def reopen(self, receipt_id: UUID) -> GoodsReceiptForm:
        """Editable form for a saved draft."""
        model = self._load(receipt_id)
        self._require_transition(model, "save_draft")
        return model.to_dto().to_form()

    def get_recent(self, limit: int = 10) -> list[GoodsReceipt]:
        return self.list()[:limit]

    def get_stats(
        self,
        store_id: str | None = None,
        period: StatsPeriod = StatsPeriod.MONTH,
    ) -> ReceiptStats:
        """Receipts created in the last week or month (30 days)."""
        now = self._clock.now()
        since = now - timedelta(days=_PERIOD_DAYS[period])
        stmt = select(GoodsReceiptModel).where(GoodsReceiptModel.created_at >= since)
        if store_id is not None:
            stmt = stmt.where(GoodsReceiptModel.store_id == store_id)
        rows = self._session.execute(stmt).scalars().all()

        total_value = sum((r.total_value for r in rows), Decimal("0"))
        by_supplier: dict[str, Decimal] = defaultdict(Decimal)
        for r in rows:
            by_supplier[r.supplier_id] += r.total_value
        return ReceiptStats(
            total_count=len(rows),
            total_value=total_value,
            average_value=total_value / len(rows) if rows else Decimal("0"),
            draft_count=sum(1 for r in rows if r.status == ReceiptStatus.DRAFT.value),
            validated_count=sum(1 for r in rows if r.status == ReceiptStatus.VALIDATED.value),
            period_start=since.date(),
            period_end=now.date(),
            store_id=store_id,
            by_supplier=dict(by_supplier),
        )

    # =========================================================================
    # Deletion
    # =========================================================================

    def delete_draft(self, receipt_id: UUID, actor_id: str) -> None:
        """Delete a draft.  Only its creator may do so."""
        with LogContext.bind(actor_id=actor_id, document_id=receipt_id, operation="delete_receipt"):
            model = self._load(receipt_id)
            if model.status != ReceiptStatus.DRAFT.value:
                raise StateTransitionError(DOCUMENT_TYPE, receipt_id, model.status, "delete")
            if model.created_by_id != actor_id:
                raise PermissionDeniedError(
                    DOCUMENT_TYPE, receipt_id, actor_id, "only the creator can delete a draft",
                )
            try:
                self._session.delete(model)
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise
            logger.info("receipt_draft_deleted", extra={"receipt_id": str(receipt_id)})

    # =========================================================================
    # Internals
    # =========================================================================

    def _load(self, receipt_id: UUID) -> GoodsReceiptModel:
        model = self._session.get(GoodsReceiptModel, receipt_id)
        if model is None:
            raise DocumentNotFoundError(DOCUMENT_TYPE, receipt_id)
        return model

    def _require_transition(self, model: GoodsReceiptModel, action: str) -> None:
        if RECEIPT_WORKFLOW.find_transition(model.status, action) is None:
            raise StateTransitionError(DOCUMENT_TYPE, model.id, model.status, action)

    def _persist_draft(self, form: GoodsReceiptForm, actor_id: str) -> GoodsReceiptModel:
        """Insert or update the draft row and replace its lines.  Flushes."""
        if form.id is not None:
            model = self._load(form.id)
            self._require_transition(model, "save_draft")
            model.updated_by_id = actor_id
        else:
            model = GoodsReceiptModel(
                id=uuid4(),
                number=self._numbers.next_number(DocumentNumberService.RECEIPT),
                status=ReceiptStatus.DRAFT.value,
                created_by_id=actor_id,
                created_at=self._clock.now(),
            )
            self._session.add(model)

        model.supplier_id = form.supplier_id
        model.store_id = form.store_id
        model.date_received = form.date_received
        model.declared_total = form.declared_total
        model.comment = form.comment
        model.lines.clear()
        for line_no, line in enumerate(form.lines, start=1):
            model.lines.append(GoodsReceiptLineModel(
                line_no=line_no,
                product_id=line.product_id,
                quantity_received=line.quantity_received,
                unit_cost=line.unit_cost,
                subtotal=line_subtotal(line.quantity_received, line.unit_cost),
            ))
        model.total_value = sum((ln.subtotal for ln in model.lines), Decimal("0"))
        self._session.flush()
        return model
