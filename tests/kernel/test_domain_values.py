"""
Tests for kernel value objects.

Covers:
- StockLevel invariants and derived values
- MovementRecord serialization
- Workflow definitions reject malformed state machines
- ValidationIssue categories and raise_for_result mapping
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from stock_kernel.domain.issues import IssueCategory, IssueCode, ValidationIssue, ValidationResult
from stock_kernel.domain.stock import (
    MovementRecord,
    MovementType,
    ReferenceType,
    StockLevel,
    quantize_cost,
)
from stock_kernel.domain.workflow import Transition, Workflow
from stock_kernel.exceptions import BusinessRuleViolation, InputValidationError, raise_for_result
from stock_modules.counts.workflows import COUNT_WORKFLOW
from stock_modules.receipts.workflows import RECEIPT_WORKFLOW
from stock_modules.transfers.workflows import TRANSFER_WORKFLOW


class TestStockLevel:

    def test_derived_values(self):
        level = StockLevel("S-MAIN", "P-RICE", Decimal("10"), Decimal("4"), Decimal("5000"))
        assert level.available_quantity == Decimal("6")
        assert level.total_value == Decimal("50000")
        assert str(level.key) == "S-MAIN/P-RICE"

    @pytest.mark.parametrize(
        "quantity, reserved, cost",
        [("-1", "0", "0"), ("1", "-1", "0"), ("1", "2", "0"), ("1", "0", "-1")],
    )
    def test_invariants(self, quantity, reserved, cost):
        with pytest.raises(ValueError):
            StockLevel("S", "P", Decimal(quantity), Decimal(reserved), Decimal(cost))

    def test_quantize_cost(self):
        assert quantize_cost(Decimal("6000.0000000001")) == Decimal("6000.000000000")


class TestMovementRecord:

    def test_to_dict(self):
        movement_id = uuid4()
        record = MovementRecord(
            id=movement_id,
            movement_date=date(2026, 3, 2),
            movement_type=MovementType.LOSS,
            store_id="S-NORTH",
            product_id="P-RICE",
            quantity_delta=Decimal("-2"),
            unit_cost=Decimal("5000"),
            value=Decimal("-10000"),
            reference_id="TR-2026-0001",
            reference_type=ReferenceType.TRANSFER,
            created_by="alice",
            created_at=datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc),
        )
        data = record.to_dict()
        assert data["id"] == str(movement_id)
        assert data["type"] == "loss"
        assert data["quantity"] == "-2"
        assert data["reference_type"] == "transfer"
        assert not record.is_inflow


class TestWorkflows:

    def test_document_workflows(self):
        assert RECEIPT_WORKFLOW.find_transition("draft", "validate").mutates_stock
        assert RECEIPT_WORKFLOW.find_transition("validated", "validate") is None
        assert set(TRANSFER_WORKFLOW.actions_from("in_transit")) == {"receive", "cancel"}
        assert TRANSFER_WORKFLOW.is_terminal("completed_with_variance")
        assert COUNT_WORKFLOW.find_transition("pending_validation", "reject").to_state == "in_progress"

    def test_unknown_initial_state(self):
        with pytest.raises(ValueError):
            Workflow("w", "", "start", ("a",), ())

    def test_transition_to_unknown_state(self):
        with pytest.raises(ValueError):
            Workflow("w", "", "a", ("a",), (Transition("a", "b", "go"),))

    def test_terminal_state_with_exit(self):
        with pytest.raises(ValueError):
            Workflow("w", "", "a", ("a", "b"), (Transition("b", "a", "back"),), terminal_states=("b",))


class TestIssues:

    def test_categories(self):
        assert ValidationIssue(IssueCode.ZERO_COST, "x").category is IssueCategory.INPUT
        assert ValidationIssue(IssueCode.TOTAL_MISMATCH, "x").category is IssueCategory.BUSINESS

    def test_raise_for_result(self):
        raise_for_result(ValidationResult.ok())
        with pytest.raises(InputValidationError):
            raise_for_result(ValidationResult(errors=(ValidationIssue(IssueCode.MISSING_PRODUCT, "x"),)))
        mixed = ValidationResult(errors=(
            ValidationIssue(IssueCode.MISSING_PRODUCT, "x"),
            ValidationIssue(IssueCode.DUPLICATE_PRODUCT, "y"),
        ))
        with pytest.raises(BusinessRuleViolation) as exc_info:
            raise_for_result(mixed)
        assert len(exc_info.value.errors) == 2

    def test_to_dict(self):
        issue = ValidationIssue(IssueCode.DUPLICATE_PRODUCT, "dup", field="product_id", line_index=2)
        assert issue.to_dict()["category"] == "business"
        assert issue.to_dict()["line_index"] == 2

    def test_field_attribute_with_default_details(self):
        first = ValidationIssue(IssueCode.MISSING_STORE, "x", field="store_id")
        second = ValidationIssue(IssueCode.MISSING_STORE, "y", field="store_id")
        assert first.field == "store_id"
        assert first.details == {}
        assert first.details is not second.details
