import logging
from typing import Any, Dict

from erp_sync.core.exceptions import SyncError
from erp_sync.models.order import Order
from erp_sync.queue.circuit_breaker import CircuitBreaker
from erp_sync.queue.manager import QueueManager
from erp_sync.sync.order_map_repository import reset_for_retry

log = logging.getLogger("admin_service")


async def force_retry_order(order_id: int, queue: QueueManager) -> int:
    """
    Operator action: clears the retry bookkeeping of an order and queues a
    fresh sync at top priority. Returns the new event id.
    """
    if not await Order.exists(id=order_id):
        raise SyncError(f"Order {order_id} not found", {"order_id": order_id})

    await reset_for_retry(order_id)
    event_id = await queue.enqueue("order.placed", "storefront", {"order_id": order_id}, priority=1)
    log.info(f"Order {order_id} force-retried as event {event_id}")
    return event_id


async def queue_overview(queue: QueueManager, breaker: CircuitBreaker) -> Dict[str, Any]:
    return {
        "queue": await queue.stats(),
        "circuit_breaker": await breaker.status(),
    }
