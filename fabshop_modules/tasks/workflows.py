"""
Task Workflow.

Task statuses are freely editable by the floor; the table exists so that
status moves are validated the same way as budgets and orders.
"""

from fabshop_kernel.domain.workflow import Workflow, fully_connected
from fabshop_kernel.logging_config import get_logger
from fabshop_modules.tasks.models import TaskStatus

logger = get_logger("modules.tasks.workflows")

_STATES = tuple(s.value for s in TaskStatus)

TASK_WORKFLOW = Workflow(
    name="service_order_task",
    description="Task lifecycle",
    initial_state=TaskStatus.PENDING.value,
    states=_STATES,
    transitions=fully_connected(_STATES, action="set_status"),
)

logger.info(
    "task_workflow_registered",
    extra={
        "workflow_name": TASK_WORKFLOW.name,
        "state_count": len(TASK_WORKFLOW.states),
        "transition_count": len(TASK_WORKFLOW.transitions),
    },
)
