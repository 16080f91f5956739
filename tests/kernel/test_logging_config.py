"""Tests for the structured logging system (stock_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from stock_kernel.exceptions import StockInvariantError
from stock_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state around each test, then restore the suite config."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


class TestStructuredFormatter:

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        [record] = _parse_all_logs(stream)
        assert record["message"] == "hello"
        assert record["level"] == "INFO"
        assert record["logger"] == "stock_kernel.test"
        assert "ts" in record

    def test_extra_fields_are_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        movement_id = uuid4()
        get_logger("test").info(
            "movement_appended",
            extra={"movement_id": movement_id, "quantity_delta": Decimal("2.5")},
        )

        [record] = _parse_all_logs(stream)
        assert record["movement_id"] == str(movement_id)
        assert record["quantity_delta"] == "2.5"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise StockInvariantError("S-MAIN", "P-RICE", "quantity would become -1")
        except StockInvariantError:
            get_logger("test").exception("failed")

        [record] = _parse_all_logs(stream)
        assert record["exc_type"] == "StockInvariantError"
        assert record["exc_code"] == "STOCK_INVARIANT_VIOLATION"
        assert record["exc_store_id"] == "S-MAIN"
        assert "traceback" in record


class TestLogContext:

    def test_context_fields_are_attached(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(actor_id="alice", operation="receipt.validate")
        get_logger("test").info("inside")

        [record] = _parse_all_logs(stream)
        assert record["actor_id"] == "alice"
        assert record["operation"] == "receipt.validate"

    def test_bind_restores_previous_values(self):
        LogContext.set(actor_id="alice")
        with LogContext.bind(actor_id="bob", document_id=uuid4()):
            assert LogContext.get_all()["actor_id"] == "bob"
            assert "document_id" in LogContext.get_all()
        assert LogContext.get_all() == {"actor_id": "alice"}

    def test_bind_ignores_none(self):
        with LogContext.bind(actor_id=None, operation="count.create"):
            assert LogContext.get_all() == {"operation": "count.create"}


class TestConfiguration:

    def test_configure_is_idempotent(self):
        first, first_stream = _make_handler()
        second, second_stream = _make_handler()
        configure_logging(handler=first)
        configure_logging(handler=second)
        get_logger("test").info("once")

        assert len(_parse_all_logs(first_stream)) == 1
        assert second_stream.getvalue() == ""

    def test_level_filters(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.WARNING, handler=handler)
        get_logger("test").info("hidden")
        get_logger("test").warning("shown")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["shown"]

    def test_reset_clears_handlers(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        reset_logging()
        root = logging.getLogger("stock_kernel")
        assert root.handlers == []
        assert root.propagate is True
