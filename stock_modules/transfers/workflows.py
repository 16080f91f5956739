"""
Transfer workflow.

    in_transit --receive--> completed | completed_with_variance
    in_transit --cancel---> cancelled

All three outcomes are terminal.
"""

from stock_kernel.domain.workflow import Guard, Transition, Workflow

ALL_LINES_RECEIVED = Guard(
    name="all_lines_received",
    description="Every sent line has a received quantity >= 0",
)

VARIANCE_DETECTED = Guard(
    name="variance_detected",
    description="At least one line differs from the quantity sent by more than 0.01",
)

TRANSFER_WORKFLOW = Workflow(
    name="transfer",
    description="Stock moved between two stores, with reception variance",
    initial_state="in_transit",
    states=("in_transit", "completed", "completed_with_variance", "cancelled"),
    transitions=(
        Transition(
            "in_transit", "completed", action="receive",
            guard=ALL_LINES_RECEIVED, mutates_stock=True,
        ),
        Transition(
            "in_transit", "completed_with_variance", action="receive",
            guard=VARIANCE_DETECTED, mutates_stock=True,
        ),
        Transition("in_transit", "cancelled", action="cancel", mutates_stock=True),
    ),
    terminal_states=("completed", "completed_with_variance", "cancelled"),
)
