# erp_sync/models/__init__.py
from .event import QueueEvent, EventStatus, EventSource
from .dead_letter import DeadLetterEvent
from .circuit_breaker import CircuitBreakerState, CircuitState
from .lock import AdvisoryLock
from .order import Order, OrderItem, OrderNote, OrderStatus, Product, Refund, RefundItem
from .inventory import Inventory
from .order_map import OrderSyncMapping, SyncStatus, SYNCED_STATUSES

# Export all models
__all__ = [
    "AdvisoryLock",
    "CircuitBreakerState",
    "CircuitState",
    "DeadLetterEvent",
    "EventSource",
    "EventStatus",
    "Inventory",
    "Order",
    "OrderItem",
    "OrderNote",
    "OrderStatus",
    "OrderSyncMapping",
    "Product",
    "QueueEvent",
    "Refund",
    "RefundItem",
    "SYNCED_STATUSES",
    "SyncStatus",
]
