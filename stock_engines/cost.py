"""
stock_engines.cost -- weighted-average cost (CUMP) computation.

Responsibility:
    Recompute a product's average unit cost when stock enters at a
    possibly different unit cost.

Invariants enforced:
    - Bounding: for non-negative quantities and costs the result lies in
      ``[min(current_avg_cost, incoming_unit_cost), max(...)]``.
    - Division-by-zero safe: returns 0 when both quantities are 0.
    - Purity: identical inputs give identical outputs.

Usage:
    new_avg = compute_weighted_average_cost(
        current_qty=Decimal("10"), current_avg_cost=Decimal("5000"),
        incoming_qty=Decimal("5"), incoming_unit_cost=Decimal("8000"),
    )  # Decimal("6000")
"""

from __future__ import annotations

from decimal import Decimal

ZERO = Decimal("0")


def compute_weighted_average_cost(
    current_qty: Decimal,
    current_avg_cost: Decimal,
    incoming_qty: Decimal,
    incoming_unit_cost: Decimal,
) -> Decimal:
    """(current value + incoming value) / (current qty + incoming qty)."""
    total_qty = current_qty + incoming_qty
    if total_qty == 0:
        return ZERO
    total_value = current_qty * current_avg_cost + incoming_qty * incoming_unit_cost
    return total_value / total_qty


def line_subtotal(quantity: Decimal | None, unit_cost: Decimal | None) -> Decimal:
    """quantity * unit_cost, treating missing values as zero."""
    return (quantity or ZERO) * (unit_cost or ZERO)


class CostLedger:
    """Object form of the CUMP rule, for injection into workflows."""

    def weighted_average(
        self,
        current_qty: Decimal,
        current_avg_cost: Decimal,
        incoming_qty: Decimal,
        incoming_unit_cost: Decimal,
    ) -> Decimal:
        return compute_weighted_average_cost(
            current_qty, current_avg_cost, incoming_qty, incoming_unit_cost,
        )

    def stock_value(self, quantity: Decimal, average_cost: Decimal) -> Decimal:
        return quantity * average_cost
