"""Kernel services: numbering, stock level store, movement ledger, retry."""
