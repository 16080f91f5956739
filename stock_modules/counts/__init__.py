"""Physical inventory counts and reconciliation."""

from stock_modules.counts.models import (
    CountCompletion,
    CountEntry,
    CountFilter,
    CountLine,
    CountStats,
    CountStatus,
    CountSubmission,
    InventoryCount,
)
from stock_modules.counts.service import InventoryCountService

__all__ = [
    "CountCompletion",
    "CountEntry",
    "CountFilter",
    "CountLine",
    "CountStats",
    "CountStatus",
    "CountSubmission",
    "InventoryCount",
    "InventoryCountService",
]
