"""
Budget Workflows.

Quotes move freely between the open states; ``approved`` is entered only by
a successful conversion into a service order and has no way out.
"""

from fabshop_kernel.domain.workflow import Guard, Transition, Workflow, fully_connected
from fabshop_kernel.logging_config import get_logger
from fabshop_modules.budgets.models import BudgetStatus

logger = get_logger("modules.budgets.workflows")


CONVERTED_TO_ORDER = Guard(
    name="converted_to_order",
    description="A service order was created from this budget in the same transaction",
)

_OPEN = (BudgetStatus.DRAFT.value, BudgetStatus.PENDING.value, BudgetStatus.SENT.value)
_CLOSED = (BudgetStatus.REJECTED.value, BudgetStatus.EXPIRED.value)

BUDGET_WORKFLOW = Workflow(
    name="budget",
    description="Quote lifecycle",
    initial_state=BudgetStatus.DRAFT.value,
    states=tuple(s.value for s in BudgetStatus),
    transitions=(
        fully_connected(_OPEN + _CLOSED, action="set_status", exclude_from=_CLOSED)
        + tuple(
            Transition(closed, BudgetStatus.DRAFT.value, action="reopen")
            for closed in _CLOSED
        )
        + tuple(
            Transition(
                src,
                BudgetStatus.APPROVED.value,
                action="convert",
                guard=CONVERTED_TO_ORDER,
                system_only=True,
            )
            for src in _OPEN
        )
    ),
)

logger.info(
    "budget_workflow_registered",
    extra={
        "workflow_name": BUDGET_WORKFLOW.name,
        "state_count": len(BUDGET_WORKFLOW.states),
        "transition_count": len(BUDGET_WORKFLOW.transitions),
        "initial_state": BUDGET_WORKFLOW.initial_state,
    },
)
