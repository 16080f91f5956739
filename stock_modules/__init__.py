"""Document workflows: goods receipts, inter-store transfers, inventory counts."""
