"""
stock_config -- single public entrypoint for stock ledger configuration.

``get_active_config()`` returns the ``LedgerConfig`` every service is
built from: defaults when no file is given, otherwise the parsed YAML.
Each call emits a ``STOCK_CONFIG_TRACE`` record with the checksum so a
run can be tied back to the exact configuration it used.
"""

from __future__ import annotations

from pathlib import Path

from stock_config.loader import ConfigError, load_config
from stock_config.schema import LedgerConfig, NumberingConfig
from stock_kernel.logging_config import get_logger

__all__ = ["ConfigError", "LedgerConfig", "NumberingConfig", "get_active_config"]

_logger = get_logger("config")


def get_active_config(config_path: Path | str | None = None) -> LedgerConfig:
    config = LedgerConfig.with_defaults() if config_path is None else load_config(config_path)
    _logger.info(
        "STOCK_CONFIG_TRACE",
        extra={
            "source": str(config_path) if config_path is not None else "defaults",
            "checksum": config.checksum,
            "numbering_reset": config.numbering.reset.value,
        },
    )
    return config
