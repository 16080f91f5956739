"""
Tests for inter-store transfers.

Covers:
- Creation decrements the source and writes transfer_out movements
- Insufficient stock and same-store transfers rejected with no writes
- Reception with and without variance (transfer_in + loss/adjustment)
- Destination CUMP uses the cost snapshot taken at creation
- Cancellation restores the source
- Terminal statuses refuse further actions
- A failed stock phase keeps the prior status and leaves stock and ledger intact
- Queries: pending, search, stats, variance report
"""

from decimal import Decimal

import pytest

from stock_kernel.domain.issues import IssueCode
from stock_kernel.domain.stock import MovementType, ReferenceType
from stock_kernel.exceptions import (
    BusinessRuleViolation,
    InputValidationError,
    InsufficientStockError,
    ProcessingError,
    StateTransitionError,
    StockInvariantError,
)
from stock_kernel.services.movement_ledger import MovementFilter
from stock_kernel.services.stock_level_store import StockLevelStore
from stock_modules.transfers import TransferFilter, TransferLineInput, TransferStatus

TEST_ACTOR_ID = "alice"
MAIN_STORE = "S-MAIN"
NORTH_STORE = "S-NORTH"


@pytest.fixture
def transfers(ledger):
    return ledger.transfers


@pytest.fixture
def stocked(receive_goods):
    receive_goods(MAIN_STORE, "P-RICE", "15", "5000")
    receive_goods(MAIN_STORE, "P-OIL", "6", "3000")


def send(transfers, *lines):
    return transfers.create(
        MAIN_STORE, NORTH_STORE,
        [TransferLineInput(product_id, Decimal(qty)) for product_id, qty in lines],
        TEST_ACTOR_ID,
    )


def movements_for(ledger, number, store_id=None):
    return ledger.query_movements(MovementFilter(
        reference_id=number,
        store_ids=(store_id,) if store_id else (),
    ))


@pytest.mark.usefixtures("stocked")
class TestCreate:

    def test_source_decremented(self, ledger, transfers, sink):
        sink.clear()
        transfer = send(transfers, ("P-RICE", "10"))

        assert transfer.number == "TR-2026-0001"
        assert transfer.status is TransferStatus.IN_TRANSIT
        assert transfer.lines[0].unit_cost == Decimal("5000")
        assert ledger.get_stock_level(MAIN_STORE, "P-RICE").quantity == Decimal("5")

        [movement] = movements_for(ledger, transfer.number)
        assert movement.movement_type is MovementType.TRANSFER_OUT
        assert movement.quantity_delta == Decimal("-10")
        assert movement.value == Decimal("-50000")
        assert [m.id for m in sink.movements] == [movement.id]

    def test_insufficient_stock(self, ledger, transfers):
        with pytest.raises(InsufficientStockError) as exc_info:
            send(transfers, ("P-RICE", "10"), ("P-OIL", "7"))
        [issue] = exc_info.value.errors
        assert issue.details["shortage"] == Decimal("1")
        assert ledger.get_stock_level(MAIN_STORE, "P-RICE").quantity == Decimal("15")
        assert transfers.list() == []

    def test_unknown_product_is_insufficient(self, transfers):
        with pytest.raises(InsufficientStockError):
            send(transfers, ("P-SUGAR", "1"))

    def test_same_store_rejected(self, transfers):
        with pytest.raises(BusinessRuleViolation) as exc_info:
            transfers.create(
                MAIN_STORE, MAIN_STORE, [TransferLineInput("P-RICE", Decimal("1"))], TEST_ACTOR_ID,
            )
        assert IssueCode.SAME_SOURCE_DESTINATION in exc_info.value.error_codes

    def test_zero_quantity_rejected(self, transfers):
        with pytest.raises(InputValidationError):
            send(transfers, ("P-RICE", "0"))


@pytest.mark.usefixtures("stocked")
class TestReceive:

    def test_exact_reception_completes(self, ledger, transfers):
        transfer = send(transfers, ("P-RICE", "10"))
        reception = transfers.receive(
            transfer.id, [TransferLineInput("P-RICE", Decimal("10"))], TEST_ACTOR_ID,
        )
        assert reception.transfer.status is TransferStatus.COMPLETED
        assert reception.warnings == ()
        level = ledger.get_stock_level(NORTH_STORE, "P-RICE")
        assert level.quantity == Decimal("10")
        assert level.average_cost == Decimal("5000")
        [movement] = movements_for(ledger, transfer.number, NORTH_STORE)
        assert movement.movement_type is MovementType.TRANSFER_IN

    def test_short_reception_records_loss(self, ledger, transfers):
        transfer = send(transfers, ("P-RICE", "10"))
        reception = transfers.receive(
            transfer.id, [TransferLineInput("P-RICE", Decimal("8"))], TEST_ACTOR_ID, comment="2 bags torn",
        )

        received = reception.transfer
        assert received.status is TransferStatus.COMPLETED_WITH_VARIANCE
        assert received.lines[0].variance == Decimal("-2")
        assert received.total_variance == Decimal("-2")
        assert received.reception_comment == "2 bags torn"
        assert {w.code for w in reception.warnings} == {IssueCode.HIGH_VARIANCE}
        assert ledger.get_stock_level(NORTH_STORE, "P-RICE").quantity == Decimal("8")

        deltas = {
            m.movement_type: m.quantity_delta
            for m in movements_for(ledger, transfer.number, NORTH_STORE)
        }
        assert deltas == {MovementType.TRANSFER_IN: Decimal("10"), MovementType.LOSS: Decimal("-2")}

    def test_surplus_records_adjustment(self, ledger, transfers):
        transfer = send(transfers, ("P-RICE", "10"))
        transfers.receive(transfer.id, [TransferLineInput("P-RICE", Decimal("11"))], TEST_ACTOR_ID)
        types = {m.movement_type for m in movements_for(ledger, transfer.number, NORTH_STORE)}
        assert types == {MovementType.TRANSFER_IN, MovementType.ADJUSTMENT}
        assert ledger.get_stock_level(NORTH_STORE, "P-RICE").quantity == Decimal("11")

    def test_nothing_received(self, ledger, transfers):
        transfer = send(transfers, ("P-OIL", "6"))
        reception = transfers.receive(transfer.id, [TransferLineInput("P-OIL", Decimal("0"))], TEST_ACTOR_ID)
        assert reception.transfer.status is TransferStatus.COMPLETED_WITH_VARIANCE
        assert ledger.reconcile_ledger() == []

    def test_destination_cost_uses_snapshot(self, ledger, transfers, receive_goods):
        receive_goods(NORTH_STORE, "P-RICE", "10", "7000")
        transfer = send(transfers, ("P-RICE", "10"))
        # Source cost changes after dispatch; the transfer keeps 5000.
        receive_goods(MAIN_STORE, "P-RICE", "5", "11000")
        transfers.receive(transfer.id, [TransferLineInput("P-RICE", Decimal("10"))], TEST_ACTOR_ID)
        assert ledger.get_stock_level(NORTH_STORE, "P-RICE").average_cost == Decimal("6000")

    def test_missing_line_rejected(self, transfers):
        transfer = send(transfers, ("P-RICE", "2"), ("P-OIL", "1"))
        with pytest.raises(InputValidationError) as exc_info:
            transfers.receive(transfer.id, [TransferLineInput("P-RICE", Decimal("2"))], TEST_ACTOR_ID)
        assert exc_info.value.error_codes == {IssueCode.MISSING_LINES}
        assert transfers.get_by_id(transfer.id).status is TransferStatus.IN_TRANSIT

    def test_second_reception_refused(self, ledger, transfers):
        transfer = send(transfers, ("P-RICE", "10"))
        lines = [TransferLineInput("P-RICE", Decimal("10"))]
        transfers.receive(transfer.id, lines, TEST_ACTOR_ID)
        with pytest.raises(StateTransitionError):
            transfers.receive(transfer.id, lines, TEST_ACTOR_ID)
        assert ledger.get_stock_level(NORTH_STORE, "P-RICE").quantity == Decimal("10")


@pytest.mark.usefixtures("stocked")
class TestCancel:

    def test_cancel_restores_source(self, ledger, transfers):
        transfer = send(transfers, ("P-RICE", "10"))
        cancelled = transfers.cancel(transfer.id, TEST_ACTOR_ID, reason="truck unavailable")

        assert cancelled.status is TransferStatus.CANCELLED
        assert cancelled.cancel_reason == "truck unavailable"
        level = ledger.get_stock_level(MAIN_STORE, "P-RICE")
        assert level.quantity == Decimal("15")
        assert level.average_cost == Decimal("5000")
        restore = ledger.query_movements(MovementFilter(reference_type=ReferenceType.TRANSFER_CANCELLATION))
        assert [m.quantity_delta for m in restore] == [Decimal("10")]
        assert ledger.reconcile_ledger() == []

    def test_cannot_cancel_after_reception(self, transfers):
        transfer = send(transfers, ("P-RICE", "1"))
        transfers.receive(transfer.id, [TransferLineInput("P-RICE", Decimal("1"))], TEST_ACTOR_ID)
        with pytest.raises(StateTransitionError):
            transfers.cancel(transfer.id, TEST_ACTOR_ID)

    def test_cannot_receive_after_cancel(self, transfers):
        transfer = send(transfers, ("P-RICE", "1"))
        transfers.cancel(transfer.id, TEST_ACTOR_ID)
        with pytest.raises(StateTransitionError):
            transfers.receive(transfer.id, [TransferLineInput("P-RICE", Decimal("1"))], TEST_ACTOR_ID)


@pytest.mark.usefixtures("stocked")
class TestQueries:

    def test_pending_and_filters(self, transfers):
        first = send(transfers, ("P-RICE", "1"))
        second = send(transfers, ("P-OIL", "1"))
        transfers.receive(second.id, [TransferLineInput("P-OIL", Decimal("1"))], TEST_ACTOR_ID)

        assert [t.id for t in transfers.get_pending_for_store(NORTH_STORE)] == [first.id]
        assert transfers.get_pending_for_store(MAIN_STORE) == []
        assert len(transfers.list(TransferFilter(store_id=MAIN_STORE))) == 2
        completed = transfers.list(TransferFilter(status=TransferStatus.COMPLETED))
        assert [t.id for t in completed] == [second.id]

    def test_search_by_number_and_catalog_names(self, transfers):
        transfer = send(transfers, ("P-OIL", "1"))
        assert [t.id for t in transfers.search(transfer.number.lower())] == [transfer.id]
        assert [t.id for t in transfers.search("huile")] == [transfer.id]
        assert [t.id for t in transfers.search("boutique")] == [transfer.id]
        assert transfers.search("sucre") == []

    def test_stats_and_variance_report(self, transfers):
        short = send(transfers, ("P-RICE", "10"))
        exact = send(transfers, ("P-OIL", "4"))
        transfers.receive(short.id, [TransferLineInput("P-RICE", Decimal("8"))], TEST_ACTOR_ID)
        transfers.receive(exact.id, [TransferLineInput("P-OIL", Decimal("4"))], TEST_ACTOR_ID)

        stats = transfers.get_stats()
        assert stats.total_count == 2
        assert stats.completed_count == 1
        assert stats.completed_with_variance_count == 1
        assert stats.total_quantity_sent == Decimal("14")
        assert stats.average_absolute_variance == Decimal("1")

        [entry] = transfers.get_variance_report()
        assert entry.number == short.number
        assert entry.variance_percent == Decimal("-20")


@pytest.fixture
def fail_on(monkeypatch):
    """Make StockLevelStore.apply_delta fail for one (store, product) position."""

    def install(store_id, product_id):
        original = StockLevelStore.apply_delta

        def failing_apply_delta(self, store, product, quantity_delta, **kwargs):
            if (store, product) == (store_id, product_id):
                raise StockInvariantError(store, product, "simulated failure")
            return original(self, store, product, quantity_delta, **kwargs)

        monkeypatch.setattr(StockLevelStore, "apply_delta", failing_apply_delta)

    return install


@pytest.mark.usefixtures("stocked")
class TestProcessingFailure:

    def test_create_failure_leaves_source_untouched(self, ledger, transfers, sink, fail_on):
        fail_on(MAIN_STORE, "P-OIL")
        sink.clear()
        with pytest.raises(ProcessingError) as exc_info:
            send(transfers, ("P-RICE", "10"), ("P-OIL", "2"))

        assert "simulated failure" in exc_info.value.cause
        assert transfers.list() == []
        assert ledger.get_stock_level(MAIN_STORE, "P-RICE").quantity == Decimal("15")
        assert ledger.get_stock_level(MAIN_STORE, "P-OIL").quantity == Decimal("6")
        assert ledger.query_movements(MovementFilter(reference_type=ReferenceType.TRANSFER)) == []
        assert sink.movements == []
        assert ledger.reconcile_ledger() == []

    def test_receive_failure_stays_in_transit(self, ledger, transfers, sink, fail_on):
        transfer = send(transfers, ("P-RICE", "10"), ("P-OIL", "2"))
        fail_on(NORTH_STORE, "P-OIL")
        sink.clear()
        with pytest.raises(ProcessingError):
            transfers.receive(transfer.id, [
                TransferLineInput("P-RICE", Decimal("10")),
                TransferLineInput("P-OIL", Decimal("2")),
            ], TEST_ACTOR_ID)

        reloaded = transfers.get_by_id(transfer.id)
        assert reloaded.status is TransferStatus.IN_TRANSIT
        assert reloaded.received_at is None
        assert ledger.list_stock_levels(NORTH_STORE) == []
        assert movements_for(ledger, transfer.number, NORTH_STORE) == []
        assert ledger.get_stock_level(MAIN_STORE, "P-RICE").quantity == Decimal("5")
        assert sink.movements == []
        assert ledger.reconcile_ledger() == []

    def test_cancel_failure_stays_in_transit(self, ledger, transfers, sink, fail_on):
        transfer = send(transfers, ("P-RICE", "10"), ("P-OIL", "2"))
        fail_on(MAIN_STORE, "P-OIL")
        sink.clear()
        with pytest.raises(ProcessingError):
            transfers.cancel(transfer.id, TEST_ACTOR_ID, reason="truck unavailable")

        reloaded = transfers.get_by_id(transfer.id)
        assert reloaded.status is TransferStatus.IN_TRANSIT
        assert reloaded.cancel_reason is None
        assert ledger.get_stock_level(MAIN_STORE, "P-RICE").quantity == Decimal("5")
        assert ledger.get_stock_level(MAIN_STORE, "P-OIL").quantity == Decimal("4")
        restore = ledger.query_movements(MovementFilter(reference_type=ReferenceType.TRANSFER_CANCELLATION))
        assert restore == []
        assert sink.movements == []
        assert ledger.reconcile_ledger() == []
