"""Inter-store transfers with reception variance."""

from stock_modules.transfers.models import (
    Transfer,
    TransferFilter,
    TransferLine,
    TransferLineInput,
    TransferReception,
    TransferStats,
    TransferStatus,
    TransferVarianceEntry,
)
from stock_modules.transfers.service import TransferService

__all__ = [
    "Transfer",
    "TransferFilter",
    "TransferLine",
    "TransferLineInput",
    "TransferReception",
    "TransferService",
    "TransferStats",
    "TransferStatus",
    "TransferVarianceEntry",
]
