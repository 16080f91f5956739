"""Tests for the engine invocation tracer."""

from stock_engines.tracer import compute_input_fingerprint, traced_engine
from stock_engines.validation import ValidationMode


class TestFingerprint:

    def test_deterministic_and_order_independent_for_dicts(self):
        first = compute_input_fingerprint(("rules",), {"rules": {"a": 1, "b": 2}})
        second = compute_input_fingerprint(("rules",), {"rules": {"b": 2, "a": 1}})
        assert first == second
        assert len(first) == 16

    def test_enums_use_their_value(self):
        by_enum = compute_input_fingerprint(("mode",), {"mode": ValidationMode.STRICT})
        by_value = compute_input_fingerprint(("mode",), {"mode": ValidationMode.STRICT.value})
        assert by_enum == by_value
        assert by_enum != compute_input_fingerprint(("mode",), {"mode": ValidationMode.DRAFT})


class TestTracedEngine:

    def test_emits_trace_and_returns_result(self, captured_logs):
        @traced_engine("demo", "2.1", fingerprint_fields=("factor",))
        def scale(value, *, factor):
            return value * factor

        assert scale(3, factor=4) == 12
        [record] = [r for r in captured_logs() if r["message"] == "STOCK_ENGINE_TRACE"]
        assert record["engine_name"] == "demo"
        assert record["engine_version"] == "2.1"
        assert record["input_fingerprint"] == compute_input_fingerprint(("factor",), {"factor": 4})
        assert record["function"].endswith("scale")
