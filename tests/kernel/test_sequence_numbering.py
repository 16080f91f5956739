"""
Tests for transactional document numbering.

Covers:
- Format <PREFIX>-<YYYY>-<NNNN>
- Independent counters per prefix
- Yearly reset vs. continuous numbering
- Rolled-back allocations are returned
"""

from datetime import datetime, timezone

from stock_kernel.services.sequence_service import (
    DocumentNumberService,
    NumberingReset,
    SequenceService,
    format_document_number,
)


class TestDocumentNumbers:

    def test_sequential_numbers(self, session, clock):
        numbers = DocumentNumberService(session, clock)
        assert numbers.next_number(DocumentNumberService.RECEIPT) == "BR-2026-0001"
        assert numbers.next_number(DocumentNumberService.RECEIPT) == "BR-2026-0002"

    def test_prefixes_are_independent(self, session, clock):
        numbers = DocumentNumberService(session, clock)
        numbers.next_number(DocumentNumberService.RECEIPT)
        assert numbers.next_number(DocumentNumberService.TRANSFER) == "TR-2026-0001"
        assert numbers.next_number(DocumentNumberService.COUNT) == "INV-2026-0001"

    def test_yearly_reset(self, session, clock):
        numbers = DocumentNumberService(session, clock, NumberingReset.YEARLY)
        numbers.next_number(DocumentNumberService.RECEIPT)
        numbers.next_number(DocumentNumberService.RECEIPT)
        clock.set_time(datetime(2027, 1, 1, 8, 0, tzinfo=timezone.utc))
        assert numbers.next_number(DocumentNumberService.RECEIPT) == "BR-2027-0001"

    def test_never_reset_keeps_counting(self, session, clock):
        numbers = DocumentNumberService(session, clock, NumberingReset.NEVER)
        numbers.next_number(DocumentNumberService.RECEIPT)
        numbers.next_number(DocumentNumberService.RECEIPT)
        clock.set_time(datetime(2027, 1, 1, 8, 0, tzinfo=timezone.utc))
        assert numbers.next_number(DocumentNumberService.RECEIPT) == "BR-2027-0003"

    def test_padding_grows_past_four_digits(self):
        assert format_document_number("TR", 2026, 12345) == "TR-2026-12345"


class TestSequenceService:

    def test_rollback_returns_value(self, session):
        sequences = SequenceService(session)
        assert sequences.next_value("X") == 1
        session.commit()
        assert sequences.next_value("X") == 2
        session.rollback()
        assert sequences.current_value("X") == 1
        assert sequences.next_value("X") == 2

    def test_current_value_of_unused_counter(self, session):
        assert SequenceService(session).current_value("unused") is None

    def test_reset(self, session):
        sequences = SequenceService(session)
        sequences.next_value("X")
        sequences.next_value("X")
        sequences.reset("X")
        assert sequences.next_value("X") == 1
