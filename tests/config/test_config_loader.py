"""
Tests for YAML configuration loading.

Covers:
- Defaults when no file is given
- Section parsing and type coercion
- Rejection of unknown sections and keys
- Engine-level validation surfaced as ConfigError
- Deterministic checksum
"""

from decimal import Decimal

import pytest
import yaml

from stock_config import ConfigError, LedgerConfig, get_active_config
from stock_config.loader import compute_checksum, load_config, parse_ledger_config
from stock_kernel.services.sequence_service import NumberingReset


class TestDefaults:

    def test_defaults_without_file(self):
        config = get_active_config()
        assert config == LedgerConfig.with_defaults()
        assert config.validation.tolerance == Decimal("0.01")
        assert config.numbering.reset is NumberingReset.YEARLY
        assert config.timeline_days == 7

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        config = load_config(path)
        assert config.validation == LedgerConfig().validation
        assert config.checksum == compute_checksum({})


class TestParsing:

    def test_sections_and_coercion(self, tmp_path):
        path = tmp_path / "ledger.yaml"
        path.write_text(yaml.safe_dump({
            "validation": {"tolerance": "0.5", "max_lines_warning": 40},
            "anomaly": {"absolute_quantity": 150, "high_severity_quantity": 300, "z_score": 2},
            "risk": {"max_operations_per_hour": 10},
            "reconciliation": {"tolerance_percent": 2.5},
            "numbering": {"reset": "never"},
            "max_commit_retries": 5,
            "timeline_days": 14,
        }))
        config = get_active_config(path)
        assert config.validation.tolerance == Decimal("0.5")
        assert config.validation.max_lines_warning == 40
        assert config.anomaly.absolute_quantity == Decimal("150")
        assert config.anomaly.z_score == 2.0
        assert config.risk.max_operations_per_hour == 10
        assert config.reconciliation.tolerance_percent == Decimal("2.5")
        assert config.numbering.reset is NumberingReset.NEVER
        assert config.max_commit_retries == 5
        assert config.timeline_days == 14

    def test_missing_file_propagates(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")


class TestRejection:

    def test_unknown_section(self):
        with pytest.raises(ConfigError, match="unknown configuration sections"):
            parse_ledger_config({"validaton": {}})

    def test_unknown_key(self):
        with pytest.raises(ConfigError, match="tolerence"):
            parse_ledger_config({"validation": {"tolerence": "0.1"}})

    def test_section_must_be_mapping(self):
        with pytest.raises(ConfigError):
            parse_ledger_config({"risk": [1, 2]})

    def test_bad_number(self):
        with pytest.raises(ConfigError, match="not a number"):
            parse_ledger_config({"validation": {"tolerance": "abc"}})

    def test_bool_is_not_an_int(self):
        with pytest.raises(ConfigError, match="expected an integer"):
            parse_ledger_config({"timeline_days": True})

    def test_engine_rule_violation(self):
        with pytest.raises(ConfigError, match="business hours"):
            parse_ledger_config({"anomaly": {"business_hour_start": 23, "business_hour_end": 5}})

    def test_bad_numbering_reset(self):
        with pytest.raises(ConfigError, match="numbering.reset"):
            parse_ledger_config({"numbering": {"reset": "monthly"}})

    def test_ledger_level_violation(self):
        with pytest.raises(ConfigError, match="timeline_days"):
            parse_ledger_config({"timeline_days": 0})


class TestChecksum:

    def test_key_order_does_not_matter(self):
        a = {"risk": {"max_operations_per_hour": 3}, "timeline_days": 2}
        b = {"timeline_days": 2, "risk": {"max_operations_per_hour": 3}}
        assert compute_checksum(a) == compute_checksum(b)

    def test_content_changes_checksum(self):
        assert compute_checksum({"timeline_days": 2}) != compute_checksum({"timeline_days": 3})
