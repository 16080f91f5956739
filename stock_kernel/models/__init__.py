"""Kernel ORM models: stock levels, movement records, sequence counters."""

from stock_kernel.models.movement import MovementRecordModel
from stock_kernel.models.sequence import SequenceCounter
from stock_kernel.models.stock_level import StockLevelModel

__all__ = ["MovementRecordModel", "SequenceCounter", "StockLevelModel"]
