"""Supplier goods receipts (bons de réception)."""

from stock_modules.receipts.models import (
    GoodsReceipt,
    GoodsReceiptForm,
    ReceiptCommitResult,
    ReceiptCommitStatus,
    ReceiptFilter,
    ReceiptLine,
    ReceiptLineForm,
    ReceiptStats,
    ReceiptStatus,
    StatsPeriod,
)
from stock_modules.receipts.service import GoodsReceiptService

__all__ = [
    "GoodsReceipt",
    "GoodsReceiptForm",
    "GoodsReceiptService",
    "ReceiptCommitResult",
    "ReceiptCommitStatus",
    "ReceiptFilter",
    "ReceiptLine",
    "ReceiptLineForm",
    "ReceiptStats",
    "ReceiptStatus",
    "StatsPeriod",
]
