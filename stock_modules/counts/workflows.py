"""
Inventory count workflow.

    in_progress --record_counts--> in_progress
    in_progress --submit--> pending_validation --validate--> validated
                            pending_validation --reject--> in_progress
"""

from stock_kernel.domain.workflow import Guard, Transition, Workflow

ALL_LINES_COUNTED = Guard(
    name="all_lines_counted",
    description="Every line has a physical quantity",
)

REASON_GIVEN = Guard(
    name="reason_given",
    description="A rejection carries a non-empty reason",
)

COUNT_WORKFLOW = Workflow(
    name="inventory_count",
    description="Physical stocktake reconciled against theoretical quantities",
    initial_state="in_progress",
    states=("in_progress", "pending_validation", "validated"),
    transitions=(
        Transition("in_progress", "in_progress", action="record_counts"),
        Transition("in_progress", "pending_validation", action="submit", guard=ALL_LINES_COUNTED),
        Transition("pending_validation", "validated", action="validate", mutates_stock=True),
        Transition("pending_validation", "in_progress", action="reject", guard=REASON_GIVEN),
    ),
    terminal_states=("validated",),
)
