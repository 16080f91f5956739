"""
Stock Kernel

Infrastructure for the stock ledger and reconciliation core:
- Stock positions keyed by (store, product) with non-negativity enforced
- Append-only movement ledger
- Transactional document numbering
- Structured logging and a typed exception hierarchy
"""

__version__ = "0.1.0"
