"""
Typed Exception Hierarchy for the fabshop engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (the presentation layer, export jobs, tests) must be able to react to
a failure without parsing message strings.  Every error therefore:

  1. Has its own exception CLASS (catch by type, not message)
  2. Carries a CODE class attribute (machine-readable, API-safe)
  3. Stores structured DATA (which entity, which field, which constraint)

Example - WRONG way to handle errors:
    try:
        workshop.change_order_status(order_id, "on_hold", actor_id)
    except Exception as e:
        if "reason" in str(e):  # FRAGILE - message might change
            ask_for_reason()

Example - RIGHT way (what this module enables):
    try:
        workshop.change_order_status(order_id, "on_hold", actor_id)
    except HoldReasonRequiredError as e:
        ask_for_reason(order_id=e.order_id)
        api_response(code=e.code, field=e.field)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from FabshopError:

    FabshopError (base)
    |
    +-- ValidationError
    |   +-- HoldReasonRequiredError
    |   +-- InvalidTimeRangeError
    |   +-- BudgetExpiredError
    |
    +-- NotFoundError
    |   +-- PartyNotFoundError
    |   +-- BudgetNotFoundError
    |   +-- BudgetItemNotFoundError
    |   +-- OrderNotFoundError
    |   +-- OrderItemNotFoundError
    |   +-- CallNotFoundError
    |   +-- TaskNotFoundError
    |   +-- TimeLogNotFoundError
    |   +-- InvoiceNotFoundError
    |
    +-- ConflictError
    |   +-- DoubleBillingError
    |   +-- StaleStateError
    |   +-- OptimisticLockError
    |   +-- InvalidStatusTransitionError
    |   +-- BudgetAlreadyConvertedError
    |   +-- BudgetLockedError
    |   +-- CallAlreadyResolvedError
    |   +-- OpenTimeLogExistsError
    |   +-- TimeLogAlreadyClosedError
    |   +-- TaskHasTimeLogsError
    |   +-- InvoiceAlreadyVoidError
    |   +-- InvoiceTotalsMismatchError
    |
    +-- AllocationExhaustedError
    +-- NoBillableOrdersError
    +-- OwnershipError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                       | When Raised
-------------|----------------------------|-----------------------------------------
Validation   | VALIDATION_ERROR           | Malformed or missing field, before writes
             | HOLD_REASON_REQUIRED       | on_hold requested without a reason
             | INVALID_TIME_RANGE         | end < start, or last open log removed
             | BUDGET_EXPIRED             | Converting a budget past valid_until
-------------|----------------------------|-----------------------------------------
Not found    | NOT_FOUND                  | Generic missing entity
             | PARTY_NOT_FOUND            | Client / worker id unknown
             | BUDGET_NOT_FOUND           | Budget id unknown
             | ORDER_NOT_FOUND            | Service order id unknown
             | TASK_NOT_FOUND ...         | (one code per entity type)
-------------|----------------------------|-----------------------------------------
Conflict     | DOUBLE_BILLING             | Order already on a live invoice
             | STALE_STATE                | Caller's expected status is outdated
             | OPTIMISTIC_LOCK_CONFLICT   | Row version changed under us
             | INVALID_STATUS_TRANSITION  | Transition not in the workflow table
             | BUDGET_ALREADY_CONVERTED   | Budget already produced an order
             | BUDGET_LOCKED              | Editing an approved budget
             | CALL_ALREADY_RESOLVED      | Resolving a resolved hold record
             | OPEN_TIME_LOG_EXISTS       | Worker already has an open log
             | TIME_LOG_ALREADY_CLOSED    | Closing a closed log
             | TASK_HAS_TIME_LOGS         | Deleting a task with logged work
             | INVOICE_ALREADY_VOID       | Voiding twice
             | INVOICE_TOTALS_MISMATCH    | Stored totals drift from snapshot
-------------|----------------------------|-----------------------------------------
Allocation   | ALLOCATION_EXHAUSTED       | Order number retries exceeded the cap
Invoicing    | NO_BILLABLE_ORDERS         | Nothing left to bill in the window
Access       | NOT_OWNER                  | Budget mutated by a non-owner

===============================================================================
HANDLING PATTERNS
===============================================================================

1. RECOVERABLE CONDITIONS are results first, exceptions second:

    result = workshop.create_invoice(client_id, start, end, actor_id)
    if result.status is AggregationStatus.NO_BILLABLE_ORDERS:
        suggest_other_window()

   ``result.unwrap()`` raises NoBillableOrdersError for callers that prefer
   exception flow.

2. CONFLICTS mean "re-fetch and retry":

    except ConflictError as e:
        refresh_view()
        show_message(e.code)
"""


class FabshopError(Exception):
    """
    Base exception for all fabshop errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "FABSHOP_ERROR"


# Validation


class ValidationError(FabshopError):
    """A field is malformed or missing. Raised before any write."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid value for '{field}': {reason}")


class HoldReasonRequiredError(ValidationError):
    """An on_hold transition was requested without a reason."""

    code: str = "HOLD_REASON_REQUIRED"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__("reason", f"order {order_id} cannot be put on hold without a reason")


class InvalidTimeRangeError(ValidationError):
    """A time log interval is invalid."""

    code: str = "INVALID_TIME_RANGE"

    def __init__(self, time_log_id: str | None, reason: str):
        self.time_log_id = time_log_id
        super().__init__("end_time", reason)


class BudgetExpiredError(ValidationError):
    """The budget's validity date has passed."""

    code: str = "BUDGET_EXPIRED"

    def __init__(self, budget_id: str, valid_until: str):
        self.budget_id = budget_id
        self.valid_until = valid_until
        super().__init__(
            "valid_until", f"budget {budget_id} expired on {valid_until}"
        )


# Not found


class NotFoundError(FabshopError):
    """A referenced entity does not exist."""

    code: str = "NOT_FOUND"
    entity_type: str = "entity"

    def __init__(self, entity_id: str, entity_type: str | None = None):
        if entity_type is not None:
            self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class PartyNotFoundError(NotFoundError):
    code: str = "PARTY_NOT_FOUND"
    entity_type: str = "party"


class BudgetNotFoundError(NotFoundError):
    code: str = "BUDGET_NOT_FOUND"
    entity_type: str = "budget"


class BudgetItemNotFoundError(NotFoundError):
    code: str = "BUDGET_ITEM_NOT_FOUND"
    entity_type: str = "budget_item"


class OrderNotFoundError(NotFoundError):
    code: str = "ORDER_NOT_FOUND"
    entity_type: str = "service_order"


class OrderItemNotFoundError(NotFoundError):
    code: str = "ORDER_ITEM_NOT_FOUND"
    entity_type: str = "service_order_item"


class CallNotFoundError(NotFoundError):
    code: str = "CALL_NOT_FOUND"
    entity_type: str = "service_order_call"


class TaskNotFoundError(NotFoundError):
    code: str = "TASK_NOT_FOUND"
    entity_type: str = "task"


class TimeLogNotFoundError(NotFoundError):
    code: str = "TIME_LOG_NOT_FOUND"
    entity_type: str = "time_log"


class InvoiceNotFoundError(NotFoundError):
    code: str = "INVOICE_NOT_FOUND"
    entity_type: str = "invoice"


# Conflicts


class ConflictError(FabshopError):
    """Base exception for uniqueness, staleness and state conflicts."""

    code: str = "CONFLICT"


class DoubleBillingError(ConflictError):
    """The order is already referenced by a non-void invoice."""

    code: str = "DOUBLE_BILLING"

    def __init__(self, order_id: str, invoice_id: str):
        self.order_id = order_id
        self.invoice_id = invoice_id
        super().__init__(
            f"Order {order_id} is already billed on invoice {invoice_id}"
        )


class StaleStateError(ConflictError):
    """The caller's view of an entity's status is out of date."""

    code: str = "STALE_STATE"

    def __init__(self, entity_type: str, entity_id: str, expected: str, actual: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{entity_type} {entity_id} is '{actual}', expected '{expected}'"
        )


class OptimisticLockError(ConflictError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class InvalidStatusTransitionError(ConflictError):
    """The requested transition is not allowed by the workflow."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, entity_type: str, entity_id: str, from_status: str, to_status: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"{entity_type} {entity_id}: transition {from_status} -> {to_status} not allowed"
        )


class BudgetAlreadyConvertedError(ConflictError):
    code: str = "BUDGET_ALREADY_CONVERTED"

    def __init__(self, budget_id: str, order_id: str):
        self.budget_id = budget_id
        self.order_id = order_id
        super().__init__(f"Budget {budget_id} was already converted to order {order_id}")


class BudgetLockedError(ConflictError):
    """Approved budgets can no longer be edited."""

    code: str = "BUDGET_LOCKED"

    def __init__(self, budget_id: str, status: str):
        self.budget_id = budget_id
        self.status = status
        super().__init__(f"Budget {budget_id} is {status} and cannot be modified")


class CallAlreadyResolvedError(ConflictError):
    code: str = "CALL_ALREADY_RESOLVED"

    def __init__(self, call_id: str):
        self.call_id = call_id
        super().__init__(f"Hold record {call_id} is already resolved")


class OpenTimeLogExistsError(ConflictError):
    """A worker may hold only one open log per task."""

    code: str = "OPEN_TIME_LOG_EXISTS"

    def __init__(self, task_id: str, worker_id: str, time_log_id: str):
        self.task_id = task_id
        self.worker_id = worker_id
        self.time_log_id = time_log_id
        super().__init__(
            f"Worker {worker_id} already has open time log {time_log_id} on task {task_id}"
        )


class TimeLogAlreadyClosedError(ConflictError):
    code: str = "TIME_LOG_ALREADY_CLOSED"

    def __init__(self, time_log_id: str):
        self.time_log_id = time_log_id
        super().__init__(f"Time log {time_log_id} is already closed")


class TaskHasTimeLogsError(ConflictError):
    code: str = "TASK_HAS_TIME_LOGS"

    def __init__(self, task_id: str, log_count: int):
        self.task_id = task_id
        self.log_count = log_count
        super().__init__(f"Task {task_id} has {log_count} closed time log(s)")


class InvoiceAlreadyVoidError(ConflictError):
    code: str = "INVOICE_ALREADY_VOID"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} is already void")


class InvoiceTotalsMismatchError(ConflictError):
    """Stored invoice totals no longer match the frozen snapshot."""

    code: str = "INVOICE_TOTALS_MISMATCH"

    def __init__(
        self,
        invoice_id: str,
        stored_value: str,
        computed_value: str,
        stored_time: str,
        computed_time: str,
    ):
        self.invoice_id = invoice_id
        self.stored_value = stored_value
        self.computed_value = computed_value
        self.stored_time = stored_time
        self.computed_time = computed_time
        super().__init__(
            f"Invoice {invoice_id} totals drifted: value {stored_value} != "
            f"{computed_value} or time {stored_time} != {computed_time}"
        )


# Allocation


class AllocationExhaustedError(FabshopError):
    """No free order number was found within the retry cap."""

    code: str = "ALLOCATION_EXHAUSTED"

    def __init__(self, base: str, attempts: int):
        self.base = base
        self.attempts = attempts
        super().__init__(
            f"Could not allocate an order number from base {base} "
            f"after {attempts} attempt(s)"
        )


# Invoicing


class NoBillableOrdersError(FabshopError):
    """The selection window holds no billable orders for the client."""

    code: str = "NO_BILLABLE_ORDERS"

    def __init__(
        self,
        client_id: str,
        window_start: str,
        window_end: str,
        dropped: tuple = (),
    ):
        self.client_id = client_id
        self.window_start = window_start
        self.window_end = window_end
        self.dropped = dropped
        super().__init__(
            f"No billable orders for client {client_id} "
            f"between {window_start} and {window_end}"
        )


# Access


class OwnershipError(FabshopError):
    """Only the owning user may mutate a budget before approval."""

    code: str = "NOT_OWNER"

    def __init__(self, entity_type: str, entity_id: str, actor_id: str, owner_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.actor_id = actor_id
        self.owner_id = owner_id
        super().__init__(
            f"{entity_type} {entity_id} is owned by {owner_id}, not {actor_id}"
        )
