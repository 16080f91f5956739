"""
Configuration Loader (``stock_config.loader``).

Responsibility
--------------
Load a YAML file and parse it into a ``LedgerConfig``.  Missing sections
fall back to defaults; unknown sections or keys are rejected so a typo can
never silently leave a threshold at its default.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key or bad value  -> ``ConfigError``.

Example file::

    validation:
      tolerance: "0.01"
      max_lines_warning: 20
    anomaly:
      absolute_quantity: 150
      business_hour_start: 7
    numbering:
      reset: never
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from stock_config.schema import LedgerConfig, NumberingConfig
from stock_engines.anomaly import AnomalyThresholds
from stock_engines.reconciliation import ReconciliationRules
from stock_engines.risk import RiskRules
from stock_engines.validation import ValidationRules
from stock_kernel.services.sequence_service import NumberingReset

_SECTIONS: dict[str, type] = {
    "validation": ValidationRules,
    "anomaly": AnomalyThresholds,
    "risk": RiskRules,
    "reconciliation": ReconciliationRules,
}

_TOP_LEVEL_SCALARS = {"max_commit_retries", "timeline_days"}


class ConfigError(ValueError):
    """Configuration content is invalid."""


def load_yaml_file(path: Path) -> dict[str, Any]:
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _coerce(value: Any, annotation: str, key: str) -> Any:
    if "Decimal" in annotation:
        try:
            return Decimal(str(value))
        except InvalidOperation as exc:
            raise ConfigError(f"{key}: {value!r} is not a number") from exc
    if annotation == "int":
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{key}: expected an integer, got {value!r}")
        return value
    if annotation == "float":
        return float(value)
    return value


def parse_section(cls: type, data: dict[str, Any], section: str):
    if not isinstance(data, dict):
        raise ConfigError(f"section '{section}' must be a mapping")
    fields = {f.name: f for f in dataclasses.fields(cls)}
    unknown = sorted(set(data) - set(fields))
    if unknown:
        raise ConfigError(f"unknown keys in '{section}': {', '.join(unknown)}")
    kwargs = {
        key: _coerce(value, str(fields[key].type), f"{section}.{key}")
        for key, value in data.items()
    }
    try:
        return cls(**kwargs)
    except ValueError as exc:
        raise ConfigError(f"invalid '{section}' section: {exc}") from exc


def parse_numbering(data: dict[str, Any]) -> NumberingConfig:
    unknown = sorted(set(data) - {"reset"})
    if unknown:
        raise ConfigError(f"unknown keys in 'numbering': {', '.join(unknown)}")
    try:
        return NumberingConfig(reset=NumberingReset(data.get("reset", "yearly")))
    except ValueError as exc:
        raise ConfigError(f"numbering.reset: {exc}") from exc


def parse_ledger_config(data: dict[str, Any]) -> LedgerConfig:
    allowed = set(_SECTIONS) | {"numbering"} | _TOP_LEVEL_SCALARS
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ConfigError(f"unknown configuration sections: {', '.join(unknown)}")

    kwargs: dict[str, Any] = {
        name: parse_section(cls, data[name], name)
        for name, cls in _SECTIONS.items()
        if name in data
    }
    if "numbering" in data:
        kwargs["numbering"] = parse_numbering(data["numbering"] or {})
    for key in _TOP_LEVEL_SCALARS & set(data):
        kwargs[key] = _coerce(data[key], "int", key)

    try:
        return LedgerConfig(checksum=compute_checksum(data), **kwargs)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def load_config(path: Path | str) -> LedgerConfig:
    return parse_ledger_config(load_yaml_file(Path(path)))
