"""
TransferService -- stock moved between two stores.

Responsibility
--------------
Creates transfers (source stock leaves immediately), receives them at the
destination with per-line variance, and cancels them while in transit.

Invariants
----------
* Source quantity is decremented at creation, inside the same transaction
  that checked availability under row locks, so two concurrent transfers
  can never both spend the same stock.
* Source and destination keys are locked together in sorted order; a
  transfer is one logical transaction across both stores.
* Σ movement deltas per key equals the stock quantity.  Reception writes
  ``transfer_in`` for the quantity sent and a ``loss`` or ``adjustment``
  for the variance, so the net equals the quantity received.
* Terminal transfers reject ``receive`` and ``cancel`` with
  StateTransitionError; stock is never applied twice.

Failure Modes
-------------
* InputValidationError / BusinessRuleViolation (InsufficientStockError for
  shortages) before anything is written.
* ProcessingError when the stock phase fails; the transfer keeps its
  prior status.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from stock_config import LedgerConfig
from stock_engines.cost import CostLedger
from stock_engines.validation import ValidationEngine
from stock_kernel.domain.catalog import Catalog
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.issues import IssueCode
from stock_kernel.domain.sink import MovementSink, NullSink, publish_all
from stock_kernel.domain.stock import (
    TOLERANCE,
    MovementDraft,
    MovementRecord,
    MovementType,
    ReferenceType,
    StockKey,
)
from stock_kernel.exceptions import (
    DocumentNotFoundError,
    InsufficientStockError,
    StateTransitionError,
    raise_for_result,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.services.movement_ledger import MovementLedger
from stock_kernel.services.sequence_service import DocumentNumberService
from stock_kernel.services.stock_level_store import StockLevelStore
from stock_kernel.services.unit_of_work import commit_phase, execute_unit_of_work
from stock_modules.transfers.models import (
    Transfer,
    TransferFilter,
    TransferLineInput,
    TransferReception,
    TransferStats,
    TransferStatus,
    TransferVarianceEntry,
)
from stock_modules.transfers.orm import TransferLineModel, TransferModel
from stock_modules.transfers.workflows import TRANSFER_WORKFLOW

logger = get_logger("modules.transfers.service")

DOCUMENT_TYPE = "Transfer"
HUNDRED = Decimal("100")


class TransferService:
    """
    Transfer orchestrator.

    Contract:
        ``create``, ``receive`` and ``cancel`` each run as one unit of work
        with retry on version conflicts, and commit before returning.
    Non-goals:
        Reservations.  Stock is decremented at creation rather than
        reserved.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: LedgerConfig | None = None,
        sink: MovementSink | None = None,
        catalog: Catalog | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or LedgerConfig.with_defaults()
        self._sink = sink or NullSink()
        self._catalog = catalog
        self._validation = ValidationEngine(self._config.validation)
        self._cost = CostLedger()
        self._stock = StockLevelStore(session, self._clock)
        self._ledger = MovementLedger(session, self._clock)
        self._numbers = DocumentNumberService(session, self._clock, self._config.numbering.reset)

    # =========================================================================
    # Create
    # =========================================================================

    def create(
        self,
        source_store_id: str,
        destination_store_id: str,
        lines: Sequence[TransferLineInput],
        actor_id: str,
        comment: str | None = None,
    ) -> Transfer:
        with LogContext.bind(actor_id=actor_id, operation="create_transfer"):
            transfer_id, movements = execute_unit_of_work(
                self._session,
                lambda: self._create(source_store_id, destination_store_id, lines, actor_id, comment),
                document_type=DOCUMENT_TYPE,
                max_retries=self._config.max_commit_retries,
                operation_name="transfer_create",
            )
            transfer = self.get_by_id(transfer_id)
            logger.info(
                "transfer_created",
                extra={
                    "transfer_id": str(transfer_id),
                    "number": transfer.number,
                    "source_store_id": source_store_id,
                    "destination_store_id": destination_store_id,
                    "lines": len(transfer.lines),
                },
            )
            publish_all(self._sink, movements, logger)
            return transfer

    def _create(self, source_store_id, destination_store_id, lines, actor_id, comment):
        keys = [
            StockKey(source_store_id, line.product_id)
            for line in lines if source_store_id and line.product_id
        ]
        locked = self._stock.lock(keys)
        available = {key.product_id: level.available_quantity for key, level in locked.items()}

        result = self._validation.validate_transfer(
            source_store_id=source_store_id,
            destination_store_id=destination_store_id,
            lines=lines,
            available=available,
        )
        if IssueCode.INSUFFICIENT_STOCK in result.error_codes():
            raise InsufficientStockError(result.errors, result.warnings)
        raise_for_result(result)

        now = self._clock.now()
        model = TransferModel(
            id=uuid4(),
            number=self._numbers.next_number(DocumentNumberService.TRANSFER),
            source_store_id=source_store_id,
            destination_store_id=destination_store_id,
            transfer_date=self._clock.today(),
            status=TransferStatus.IN_TRANSIT.value,
            comment=comment,
            created_by_id=actor_id,
            created_at=now,
        )
        self._session.add(model)

        movements: list[MovementRecord] = []
        with commit_phase(DOCUMENT_TYPE, model.id):
            for line_no, line in enumerate(lines, start=1):
                level = locked[StockKey(source_store_id, line.product_id)]
                self._stock.apply_delta(source_store_id, line.product_id, -line.quantity, at=now)
                model.lines.append(TransferLineModel(
                    line_no=line_no,
                    product_id=line.product_id,
                    quantity_sent=line.quantity,
                    unit_cost=level.average_cost,
                ))
                movements.append(self._ledger.append(MovementDraft(
                    movement_type=MovementType.TRANSFER_OUT,
                    store_id=source_store_id,
                    product_id=line.product_id,
                    quantity_delta=-line.quantity,
                    unit_cost=level.average_cost,
                    reference_id=model.number,
                    reference_type=ReferenceType.TRANSFER,
                    created_by=actor_id,
                    comment=f"Transfer {model.number} to {destination_store_id}",
                )))
            self._session.flush()
        return model.id, movements

    # =========================================================================
    # Receive
    # =========================================================================

    def receive(
        self,
        transfer_id: UUID,
        received_lines: Sequence[TransferLineInput],
        actor_id: str,
        comment: str | None = None,
    ) -> TransferReception:
        """Record what arrived.  Every sent line needs a received quantity."""
        with LogContext.bind(actor_id=actor_id, document_id=transfer_id, operation="receive_transfer"):
            movements, warnings = execute_unit_of_work(
                self._session,
                lambda: self._receive(transfer_id, received_lines, actor_id, comment),
                document_type=DOCUMENT_TYPE,
                document_id=transfer_id,
                max_retries=self._config.max_commit_retries,
                operation_name="transfer_receive",
            )
            transfer = self.get_by_id(transfer_id)
            logger.info(
                "transfer_received",
                extra={
                    "transfer_id": str(transfer_id),
                    "number": transfer.number,
                    "status": transfer.status.value,
                    "total_variance": transfer.total_variance,
                    "warnings": len(warnings),
                },
            )
            publish_all(self._sink, movements, logger)
            return TransferReception(transfer=transfer, warnings=warnings)

    def _receive(self, transfer_id, received_lines, actor_id, comment):
        model = self._lock_transfer(transfer_id)
        self._require_transition(model, "receive")

        sent = {line.product_id: line.quantity_sent for line in model.lines}
        result = self._validation.validate_transfer_reception(sent=sent, received=received_lines)
        raise_for_result(result)
        received = {line.product_id: line.quantity for line in received_lines}

        now = self._clock.now()
        destination = model.destination_store_id
        movements: list[MovementRecord] = []
        with commit_phase(DOCUMENT_TYPE, transfer_id):
            self._stock.lock(StockKey(destination, line.product_id) for line in model.lines)
            for line in model.lines:
                quantity_received = received[line.product_id]
                variance = quantity_received - line.quantity_sent
                if quantity_received > 0:
                    current = self._stock.get_or_empty(destination, line.product_id)
                    new_cost = self._cost.weighted_average(
                        current.quantity, current.average_cost, quantity_received, line.unit_cost,
                    )
                    self._stock.apply_delta(
                        destination, line.product_id, quantity_received,
                        average_cost=new_cost, at=now,
                    )
                movements.append(self._movement(
                    model, line, MovementType.TRANSFER_IN, line.quantity_sent, actor_id,
                    f"Transfer {model.number} from {model.source_store_id}",
                ))
                if variance < 0:
                    movements.append(self._movement(
                        model, line, MovementType.LOSS, variance, actor_id,
                        f"In-transit loss on {model.number}",
                    ))
                elif variance > 0:
                    movements.append(self._movement(
                        model, line, MovementType.ADJUSTMENT, variance, actor_id,
                        f"Surplus received on {model.number}",
                    ))
                line.quantity_received = quantity_received
                line.variance = variance

            has_variance = any(abs(line.variance) > TOLERANCE for line in model.lines)
            model.status = (
                TransferStatus.COMPLETED_WITH_VARIANCE if has_variance else TransferStatus.COMPLETED
            ).value
            model.received_by = actor_id
            model.received_at = now
            model.reception_comment = comment
            model.updated_by_id = actor_id
            self._session.flush()
        return movements, result.warnings

    def _movement(self, model, line, movement_type, delta, actor_id, comment) -> MovementRecord:
        return self._ledger.append(MovementDraft(
            movement_type=movement_type,
            store_id=model.destination_store_id,
            product_id=line.product_id,
            quantity_delta=delta,
            unit_cost=line.unit_cost,
            reference_id=model.number,
            reference_type=ReferenceType.TRANSFER,
            created_by=actor_id,
            comment=comment,
        ))

    # =========================================================================
    # Cancel
    # =========================================================================

    def cancel(self, transfer_id: UUID, actor_id: str, reason: str | None = None) -> Transfer:
        """Return the goods to the source.  Only while in transit."""
        with LogContext.bind(actor_id=actor_id, document_id=transfer_id, operation="cancel_transfer"):
            movements = execute_unit_of_work(
                self._session,
                lambda: self._cancel(transfer_id, actor_id, reason),
                document_type=DOCUMENT_TYPE,
                document_id=transfer_id,
                max_retries=self._config.max_commit_retries,
                operation_name="transfer_cancel",
            )
            transfer = self.get_by_id(transfer_id)
            logger.info(
                "transfer_cancelled",
                extra={"transfer_id": str(transfer_id), "number": transfer.number, "reason": reason},
            )
            publish_all(self._sink, movements, logger)
            return transfer

    def _cancel(self, transfer_id, actor_id, reason):
        model = self._lock_transfer(transfer_id)
        self._require_transition(model, "cancel")

        now = self._clock.now()
        source = model.source_store_id
        movements: list[MovementRecord] = []
        with commit_phase(DOCUMENT_TYPE, transfer_id):
            self._stock.lock(StockKey(source, line.product_id) for line in model.lines)
            for line in model.lines:
                current = self._stock.get_or_empty(source, line.product_id)
                new_cost = self._cost.weighted_average(
                    current.quantity, current.average_cost, line.quantity_sent, line.unit_cost,
                )
                self._stock.apply_delta(
                    source, line.product_id, line.quantity_sent, average_cost=new_cost, at=now,
                )
                movements.append(self._ledger.append(MovementDraft(
                    movement_type=MovementType.TRANSFER_IN,
                    store_id=source,
                    product_id=line.product_id,
                    quantity_delta=line.quantity_sent,
                    unit_cost=line.unit_cost,
                    reference_id=model.number,
                    reference_type=ReferenceType.TRANSFER_CANCELLATION,
                    created_by=actor_id,
                    comment=f"Cancellation of {model.number}" + (f": {reason}" if reason else ""),
                )))
            model.status = TransferStatus.CANCELLED.value
            model.cancelled_by = actor_id
            model.cancelled_at = now
            model.cancel_reason = reason
            model.updated_by_id = actor_id
            self._session.flush()
        return movements

    # =========================================================================
    # Queries
    # =========================================================================

    def get_by_id(self, transfer_id: UUID) -> Transfer:
        model = self._session.get(TransferModel, transfer_id)
        if model is None:
            raise DocumentNotFoundError(DOCUMENT_TYPE, transfer_id)
        return model.to_dto()

    def list(self, filters: TransferFilter | None = None) -> list[Transfer]:
        f = filters or TransferFilter()
        stmt = select(TransferModel)
        if f.store_id is not None:
            stmt = stmt.where(or_(
                TransferModel.source_store_id == f.store_id,
                TransferModel.destination_store_id == f.store_id,
            ))
        if f.status is not None:
            stmt = stmt.where(TransferModel.status == f.status.value)
        if f.date_from is not None:
            stmt = stmt.where(TransferModel.transfer_date >= f.date_from)
        if f.date_to is not None:
            stmt = stmt.where(TransferModel.transfer_date <= f.date_to)
        stmt = stmt.order_by(TransferModel.created_at.desc(), TransferModel.number.desc())
        return [m.to_dto() for m in self._session.execute(stmt).scalars().all()]

    def get_pending_for_store(self, destination_store_id: str) -> list[Transfer]:
        """In-transit transfers awaiting reception at ``destination_store_id``."""
        return [
            t for t in self.list(TransferFilter(status=TransferStatus.IN_TRANSIT))
            if t.destination_store_id == destination_store_id
        ]

    def search(self, term: str) -> list[Transfer]:
        """Match number or comment, or product and store names via the catalog."""
        needle = term.strip().lower()
        if not needle:
            return self.list()
        products = self._catalog.find_products(term) if self._catalog else set()
        stores = self._catalog.find_stores(term) if self._catalog else set()
        return [
            t for t in self.list()
            if needle in t.number.lower()
            or needle in (t.comment or "").lower()
            or t.source_store_id in stores
            or t.destination_store_id in stores
            or any(line.product_id in products for line in t.lines)
        ]

    def get_stats(self, store_id: str | None = None) -> TransferStats:
        transfers = self.list(TransferFilter(store_id=store_id))
        by_status = {status: 0 for status in TransferStatus}
        for t in transfers:
            by_status[t.status] += 1
        variances = [
            abs(line.variance)
            for t in transfers for line in t.lines if line.variance is not None
        ]
        return TransferStats(
            total_count=len(transfers),
            in_transit_count=by_status[TransferStatus.IN_TRANSIT],
            completed_count=by_status[TransferStatus.COMPLETED],
            completed_with_variance_count=by_status[TransferStatus.COMPLETED_WITH_VARIANCE],
            cancelled_count=by_status[TransferStatus.CANCELLED],
            total_quantity_sent=sum((t.total_quantity_sent for t in transfers), Decimal("0")),
            average_absolute_variance=(
                sum(variances, Decimal("0")) / len(variances) if variances else Decimal("0")
            ),
        )

    def get_variance_report(self, filters: TransferFilter | None = None) -> list[TransferVarianceEntry]:
        """Received lines with a non-zero variance, largest |variance %| first."""
        entries = []
        for t in self.list(filters):
            for line in t.lines:
                if not line.variance:
                    continue
                entries.append(TransferVarianceEntry(
                    transfer_id=t.id,
                    number=t.number,
                    source_store_id=t.source_store_id,
                    destination_store_id=t.destination_store_id,
                    product_id=line.product_id,
                    quantity_sent=line.quantity_sent,
                    quantity_received=line.quantity_received,
                    variance=line.variance,
                    variance_percent=line.variance / line.quantity_sent * HUNDRED,
                    received_at=t.received_at,
                ))
        entries.sort(key=lambda e: (-abs(e.variance_percent), e.number, e.product_id))
        return entries

    # =========================================================================
    # Internals
    # =========================================================================

    def _lock_transfer(self, transfer_id: UUID) -> TransferModel:
        model = self._session.execute(
            select(TransferModel)
            .where(TransferModel.id == transfer_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise DocumentNotFoundError(DOCUMENT_TYPE, transfer_id)
        return model

    def _require_transition(self, model: TransferModel, action: str) -> None:
        if TRANSFER_WORKFLOW.find_transition(model.status, action) is None:
            raise StateTransitionError(DOCUMENT_TYPE, model.id, model.status, action)
