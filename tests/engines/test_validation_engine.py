"""
Tests for the document validation rules.

Covers:
- Receipt strictness levels (STRICT, DRAFT, AUTO_SAVE)
- Line checks, duplicate reporting, total reconciliation
- Transfer creation and reception checks
- Count entry and submission checks
"""

from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from stock_engines.validation import ValidationEngine, ValidationMode, ValidationRules
from stock_kernel.domain.issues import IssueCategory, IssueCode

TODAY = date(2026, 3, 2)


def receipt_line(product_id="P-RICE", qty="10", cost="5000", subtotal=None):
    quantity = Decimal(qty) if qty is not None else None
    unit_cost = Decimal(cost) if cost is not None else None
    if subtotal is None and quantity is not None and unit_cost is not None:
        subtotal = quantity * unit_cost
    return SimpleNamespace(
        product_id=product_id, quantity_received=quantity, unit_cost=unit_cost, subtotal=subtotal,
    )


def receipt(lines, *, supplier_id="SUP-1", store_id="S-MAIN", date_received=TODAY, declared_total=None):
    return SimpleNamespace(
        supplier_id=supplier_id, store_id=store_id, date_received=date_received,
        lines=lines, declared_total=declared_total,
    )


def qty_line(product_id, qty):
    return SimpleNamespace(product_id=product_id, quantity=Decimal(qty) if qty is not None else None)


class TestReceiptStrict:

    def setup_method(self):
        self.engine = ValidationEngine()

    def validate(self, doc):
        return self.engine.validate_receipt(doc, mode=ValidationMode.STRICT, today=TODAY)

    def test_valid_receipt(self):
        result = self.validate(receipt([receipt_line(), receipt_line("P-OIL", "5", "8000")]))
        assert result.is_valid
        assert result.warnings == ()

    def test_missing_identity_and_empty_lines(self):
        result = self.validate(receipt([], supplier_id=None, store_id=""))
        assert result.error_codes() == {
            IssueCode.MISSING_SUPPLIER, IssueCode.MISSING_STORE, IssueCode.EMPTY_LINES,
        }

    def test_missing_date(self):
        result = self.validate(receipt([receipt_line()], date_received=None))
        assert result.error_codes() == {IssueCode.MISSING_DATE}

    def test_tomorrow_is_accepted(self):
        result = self.validate(receipt([receipt_line()], date_received=TODAY + timedelta(days=1)))
        assert result.is_valid

    def test_beyond_tomorrow_is_future(self):
        result = self.validate(receipt([receipt_line()], date_received=TODAY + timedelta(days=2)))
        assert result.error_codes() == {IssueCode.FUTURE_DATE}

    @pytest.mark.parametrize(
        "line, code",
        [
            (receipt_line(product_id=None), IssueCode.MISSING_PRODUCT),
            (receipt_line(qty=None, subtotal=Decimal("0")), IssueCode.INVALID_QUANTITY),
            (receipt_line(qty="-1"), IssueCode.NEGATIVE_QUANTITY),
            (receipt_line(qty="0"), IssueCode.ZERO_QUANTITY),
            (receipt_line(cost=None, subtotal=Decimal("0")), IssueCode.MISSING_COST),
            (receipt_line(cost="-5"), IssueCode.NEGATIVE_COST),
            (receipt_line(cost="0"), IssueCode.ZERO_COST),
        ],
    )
    def test_line_errors(self, line, code):
        result = self.validate(receipt([line]))
        assert code in result.error_codes()
        issue = next(e for e in result.errors if e.code is code)
        assert issue.line_index == 0
        assert issue.category is IssueCategory.INPUT

    def test_bad_subtotal_is_calculation_error(self):
        result = self.validate(receipt([receipt_line(subtotal=Decimal("49000"))]))
        assert result.error_codes() == {IssueCode.CALCULATION_ERROR}
        assert result.has_business_errors

    def test_duplicate_reported_at_later_index(self):
        result = self.validate(receipt([
            receipt_line("P-RICE"), receipt_line("P-OIL"), receipt_line("P-RICE"),
        ]))
        [dup] = [e for e in result.errors if e.code is IssueCode.DUPLICATE_PRODUCT]
        assert dup.line_index == 2
        assert dup.details["first_index"] == 0

    def test_declared_total_mismatch(self):
        lines = [receipt_line("P-RICE", "10", "5000"), receipt_line("P-OIL", "5", "3000")]
        result = self.validate(receipt(lines, declared_total=Decimal("70000")))
        assert result.error_codes() == {IssueCode.TOTAL_MISMATCH}
        [issue] = result.errors
        assert issue.details["computed_total"] == Decimal("65000")
        assert issue.details["difference"] == Decimal("5000")

    def test_declared_total_within_tolerance(self):
        lines = [receipt_line("P-RICE", "10", "5000")]
        result = self.validate(receipt(lines, declared_total=Decimal("50000.01")))
        assert result.is_valid

    def test_total_not_checked_when_a_line_is_bad(self):
        lines = [receipt_line("P-RICE", "0", "5000")]
        result = self.validate(receipt(lines, declared_total=Decimal("1")))
        assert IssueCode.TOTAL_MISMATCH not in result.error_codes()

    def test_warnings_do_not_invalidate(self):
        engine = ValidationEngine(ValidationRules(max_lines_warning=1, max_total_value_warning=Decimal("10")))
        lines = [receipt_line("P-RICE"), receipt_line("P-OIL")]
        result = engine.validate_receipt(receipt(lines), mode=ValidationMode.STRICT, today=TODAY)
        assert result.is_valid
        assert result.warning_codes() == {IssueCode.HIGH_LINE_COUNT, IssueCode.HIGH_TOTAL_VALUE}


class TestReceiptRelaxedModes:

    def setup_method(self):
        self.engine = ValidationEngine()

    def test_draft_accepts_empty_lines(self):
        result = self.engine.validate_receipt(receipt([]), mode=ValidationMode.DRAFT, today=TODAY)
        assert result.is_valid

    def test_draft_skips_blank_lines_but_checks_populated_ones(self):
        blank = receipt_line(product_id=None, qty="0", cost="0")
        bad = receipt_line("P-OIL", "-2", "100")
        result = self.engine.validate_receipt(receipt([blank, bad]), mode=ValidationMode.DRAFT, today=TODAY)
        assert result.error_codes() == {IssueCode.NEGATIVE_QUANTITY}
        assert result.errors[0].line_index == 1

    def test_draft_still_requires_identity(self):
        result = self.engine.validate_receipt(
            receipt([], supplier_id=None), mode=ValidationMode.DRAFT, today=TODAY,
        )
        assert result.error_codes() == {IssueCode.MISSING_SUPPLIER}

    def test_auto_save_always_valid(self):
        doc = receipt([receipt_line(qty="-1")], supplier_id=None, store_id=None, date_received=None)
        result = self.engine.validate_receipt(doc, mode=ValidationMode.AUTO_SAVE, today=TODAY)
        assert result.is_valid


class TestTransferValidation:

    def setup_method(self):
        self.engine = ValidationEngine()

    def test_valid_transfer(self):
        result = self.engine.validate_transfer(
            source_store_id="S-MAIN", destination_store_id="S-NORTH",
            lines=[qty_line("P-RICE", "10")], available={"P-RICE": Decimal("15")},
        )
        assert result.is_valid

    def test_same_source_and_destination(self):
        result = self.engine.validate_transfer(
            source_store_id="S-MAIN", destination_store_id="S-MAIN",
            lines=[qty_line("P-RICE", "1")], available={"P-RICE": Decimal("15")},
        )
        assert result.error_codes() == {IssueCode.SAME_SOURCE_DESTINATION}

    def test_insufficient_stock_details(self):
        result = self.engine.validate_transfer(
            source_store_id="S-MAIN", destination_store_id="S-NORTH",
            lines=[qty_line("P-RICE", "20")], available={"P-RICE": Decimal("15")},
        )
        [issue] = result.errors
        assert issue.code is IssueCode.INSUFFICIENT_STOCK
        assert issue.details["available"] == Decimal("15")
        assert issue.details["shortage"] == Decimal("5")

    def test_unknown_product_has_no_stock(self):
        result = self.engine.validate_transfer(
            source_store_id="S-MAIN", destination_store_id="S-NORTH",
            lines=[qty_line("P-SUGAR", "1")], available={},
        )
        [issue] = result.errors
        assert issue.code is IssueCode.INSUFFICIENT_STOCK
        assert "no stock" in issue.message

    def test_empty_lines(self):
        result = self.engine.validate_transfer(
            source_store_id="S-MAIN", destination_store_id="S-NORTH", lines=[], available={},
        )
        assert result.error_codes() == {IssueCode.EMPTY_LINES}

    def test_reception_missing_and_unknown_lines(self):
        result = self.engine.validate_transfer_reception(
            sent={"P-RICE": Decimal("10"), "P-OIL": Decimal("4")},
            received=[qty_line("P-RICE", "10"), qty_line("P-SUGAR", "1")],
        )
        assert result.error_codes() == {IssueCode.UNKNOWN_LINE, IssueCode.MISSING_LINES}

    def test_reception_zero_allowed_negative_rejected(self):
        ok = self.engine.validate_transfer_reception(
            sent={"P-RICE": Decimal("10")}, received=[qty_line("P-RICE", "0")],
        )
        assert ok.is_valid
        bad = self.engine.validate_transfer_reception(
            sent={"P-RICE": Decimal("10")}, received=[qty_line("P-RICE", "-1")],
        )
        assert bad.error_codes() == {IssueCode.NEGATIVE_QUANTITY}

    def test_reception_high_variance_warning(self):
        result = self.engine.validate_transfer_reception(
            sent={"P-RICE": Decimal("10")}, received=[qty_line("P-RICE", "8")],
        )
        assert result.is_valid
        assert result.warning_codes() == {IssueCode.HIGH_VARIANCE}
        assert result.warnings[0].details["variance"] == Decimal("-2")

    def test_reception_within_threshold_has_no_warning(self):
        result = self.engine.validate_transfer_reception(
            sent={"P-RICE": Decimal("10")}, received=[qty_line("P-RICE", "9")],
        )
        assert result.warnings == ()


class TestCountValidation:

    def setup_method(self):
        self.engine = ValidationEngine()

    def count_line(self, product_id, theoretical, physical):
        return SimpleNamespace(
            product_id=product_id,
            theoretical_quantity=Decimal(theoretical),
            physical_quantity=Decimal(physical) if physical is not None else None,
        )

    def test_entries_must_belong_to_count(self):
        result = self.engine.validate_count_entries(
            counted_products=["P-RICE"], entries=[qty_line("P-OIL", "3")],
        )
        assert result.error_codes() == {IssueCode.UNKNOWN_LINE}

    def test_entries_reject_duplicates_and_negatives(self):
        result = self.engine.validate_count_entries(
            counted_products=["P-RICE"],
            entries=[qty_line("P-RICE", "3"), qty_line("P-RICE", "-1")],
        )
        assert result.error_codes() == {IssueCode.NEGATIVE_QUANTITY, IssueCode.DUPLICATE_PRODUCT}

    def test_submission_requires_every_line(self):
        result = self.engine.validate_count_submission(
            count_date=TODAY,
            lines=[self.count_line("P-RICE", "10", "10"), self.count_line("P-OIL", "4", None)],
            today=TODAY,
        )
        assert result.error_codes() == {IssueCode.MISSING_COUNT}

    def test_submission_variance_warning(self):
        result = self.engine.validate_count_submission(
            count_date=TODAY, lines=[self.count_line("P-RICE", "10", "8")], today=TODAY,
        )
        assert result.is_valid
        assert result.warning_codes() == {IssueCode.HIGH_VARIANCE}

    def test_submission_empty(self):
        result = self.engine.validate_count_submission(count_date=TODAY, lines=[], today=TODAY)
        assert result.error_codes() == {IssueCode.EMPTY_LINES}


class TestValidationRules:

    def test_negative_tolerance_rejected(self):
        with pytest.raises(ValueError):
            ValidationRules(tolerance=Decimal("-1"))
