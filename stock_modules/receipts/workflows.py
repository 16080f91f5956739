"""
Goods receipt workflow.

    draft --save_draft--> draft --validate--> validated (terminal)
"""

from stock_kernel.domain.workflow import Guard, Transition, Workflow
from stock_kernel.logging_config import get_logger

logger = get_logger("modules.receipts.workflows")

RECEIPT_COMPLETE = Guard(
    name="receipt_complete",
    description="Strict validation passed: lines present, costs positive, totals match",
)

RECEIPT_WORKFLOW = Workflow(
    name="goods_receipt",
    description="Supplier delivery from draft entry to validated stock arrival",
    initial_state="draft",
    states=("draft", "validated"),
    transitions=(
        Transition("draft", "draft", action="save_draft"),
        Transition(
            "draft", "validated", action="validate",
            guard=RECEIPT_COMPLETE, mutates_stock=True,
        ),
    ),
    terminal_states=("validated",),
)

logger.debug(
    "receipt_workflow_defined",
    extra={"workflow": RECEIPT_WORKFLOW.name, "states": list(RECEIPT_WORKFLOW.states)},
)
