"""
Orders Module.

Service orders: budget conversion, unique order numbering, the production
status workflow with hold records, and order items.
"""

from fabshop_modules.orders.allocator import Allocation, OrderNumberAllocator
from fabshop_modules.orders.models import (
    ConversionResult,
    HoldCall,
    OrderItem,
    OrderStatus,
    ServiceOrder,
    StatusChangeResult,
    TERMINAL_STATUSES,
    Urgency,
    WORK_SYNC_STATUSES,
)
from fabshop_modules.orders.service import OrderLifecycleService
from fabshop_modules.orders.workflows import (
    ORDER_WORKFLOW,
    STRICT_ORDER_WORKFLOW,
    order_workflow,
)

__all__ = [
    "Allocation",
    "ConversionResult",
    "HoldCall",
    "ORDER_WORKFLOW",
    "OrderItem",
    "OrderLifecycleService",
    "OrderNumberAllocator",
    "OrderStatus",
    "STRICT_ORDER_WORKFLOW",
    "ServiceOrder",
    "StatusChangeResult",
    "TERMINAL_STATUSES",
    "Urgency",
    "WORK_SYNC_STATUSES",
    "order_workflow",
]
