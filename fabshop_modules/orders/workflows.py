"""
Service Order Workflows.

Manual status changes are permissive: any state may move to any other
state, so the floor can correct mistakes.  The table still carries the hard
rules:

* entering ``on_hold`` is guarded by a recorded reason (hold record);
* ``invoiced`` is entered only from ``to_invoice`` by the invoice aggregator,
  and left only towards ``completed`` or ``cancelled`` (or back to
  ``to_invoice`` when the invoice is voided).  A cancelled order keeps its
  invoice link until the invoice is voided;
* with ``allow_reopen_terminal`` disabled, ``completed`` and ``cancelled``
  have no way out.
"""

from fabshop_kernel.domain.workflow import Guard, Transition, Workflow, fully_connected
from fabshop_kernel.logging_config import get_logger
from fabshop_modules.orders.models import OrderStatus

logger = get_logger("modules.orders.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

HOLD_REASON_RECORDED = Guard(
    name="hold_reason_recorded",
    description="A hold record with a non-blank reason is persisted first",
)

BILLED_ON_INVOICE = Guard(
    name="billed_on_invoice",
    description="The order is frozen into a non-void invoice",
)


# -----------------------------------------------------------------------------
# Order Workflow
# -----------------------------------------------------------------------------

_STATES = tuple(s.value for s in OrderStatus)
_INVOICED = OrderStatus.INVOICED.value
_TERMINAL = (OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value)

_BILLING_TRANSITIONS = (
    Transition(
        OrderStatus.TO_INVOICE.value,
        _INVOICED,
        action="bill",
        guard=BILLED_ON_INVOICE,
        system_only=True,
    ),
    Transition(_INVOICED, OrderStatus.COMPLETED.value, action="complete"),
    Transition(_INVOICED, OrderStatus.CANCELLED.value, action="cancel"),
    Transition(
        _INVOICED,
        OrderStatus.TO_INVOICE.value,
        action="release_invoice",
        system_only=True,
    ),
)


def _build(name: str, description: str, exclude_from: tuple[str, ...]) -> Workflow:
    return Workflow(
        name=name,
        description=description,
        initial_state=OrderStatus.RECEIVED.value,
        states=_STATES,
        transitions=fully_connected(
            _STATES,
            action="set_status",
            exclude_from=exclude_from,
            exclude_to=(_INVOICED,),
            guards={OrderStatus.ON_HOLD.value: HOLD_REASON_RECORDED},
        )
        + _BILLING_TRANSITIONS,
    )


ORDER_WORKFLOW = _build(
    "service_order",
    "Service order lifecycle (terminal states may be reopened)",
    exclude_from=(_INVOICED,),
)

STRICT_ORDER_WORKFLOW = _build(
    "service_order_strict",
    "Service order lifecycle (completed / cancelled are final)",
    exclude_from=(_INVOICED,) + _TERMINAL,
)


def order_workflow(allow_reopen_terminal: bool) -> Workflow:
    return ORDER_WORKFLOW if allow_reopen_terminal else STRICT_ORDER_WORKFLOW


for _wf in (ORDER_WORKFLOW, STRICT_ORDER_WORKFLOW):
    logger.info(
        "order_workflow_registered",
        extra={
            "workflow_name": _wf.name,
            "state_count": len(_wf.states),
            "transition_count": len(_wf.transitions),
            "initial_state": _wf.initial_state,
        },
    )
