import logging
from typing import Any, Dict, Optional

from erp_sync.consumers import inventory_consumer, order_consumer
from erp_sync.erp.client import ErpClient
from erp_sync.models.event import QueueEvent
from erp_sync.queue.circuit_breaker import CircuitBreaker
from erp_sync.queue.manager import QueueManager
from erp_sync.schemas.events import PAYLOAD_TYPES, EventEnvelope, decode_event
from erp_sync.sync.order_sync import OrderSync

log = logging.getLogger("event_processor")


class EventProcessor:
    """
    Routes a queue event to its handler, behind the ERP circuit breaker.

    Handler exceptions record a breaker failure and propagate unchanged so
    the queue can nack the event. Payload validation errors propagate too,
    but are not counted against the ERP. Unknown event types are logged
    and treated as done.
    """

    def __init__(self, client: ErpClient, breaker: CircuitBreaker, queue: QueueManager, order_sync: Optional[OrderSync] = None):
        self.client = client
        self.breaker = breaker
        self.queue = queue
        self.order_sync = order_sync or OrderSync(client)

        self._handlers = {
            "order.placed": self._order_placed,
            "order.delivered": self._order_delivered,
            "order.refunded": self._order_refunded,
            "order.cancelled": self._order_cancelled,
            "order.status_changed": self._order_status_changed,
            "item.stock_changed": self._stock_changed,
            "item.returned": self._stock_changed,
            "item.created": self._item_created,
            "item.updated": self._item_updated,
            "item.code_changed": self._item_code_changed,
            "item.deactivated": self._item_deactivated,
        }

    def handles(self, event_type: str) -> bool:
        return event_type in self._handlers

    async def process(self, event: QueueEvent) -> None:
        source = event.source.value if hasattr(event.source, "value") else str(event.source)
        await self.dispatch(event.event_type, event.payload, source=source, event_id=event.id, attempts=event.attempts)

    async def dispatch(
        self,
        event_type: str,
        payload: Dict[str, Any],
        source: str = "storefront",
        event_id: Optional[int] = None,
        attempts: int = 0,
    ) -> None:
        handler = self._handlers.get(event_type)
        if handler is None or event_type not in PAYLOAD_TYPES:
            log.warning(f"No handler for event type: {event_type} (event {event_id})")
            return

        # Decode errors are not counted as ERP failures
        envelope = decode_event(event_type, payload, source=source, event_id=event_id, attempts=attempts)

        # Raises CircuitOpenError without touching the ERP
        await self.breaker.check()

        try:
            await handler(envelope)
        except Exception:
            await self.breaker.record_failure()
            raise

        await self.breaker.record_success()

    # --- Handlers ---

    async def _order_placed(self, envelope: EventEnvelope):
        result = await self.order_sync.process_new_order(envelope.payload.order_id)
        for warning in result.warnings:
            log.warning(f"Order {result.order_id}: {warning}")

    async def _order_delivered(self, envelope: EventEnvelope):
        await order_consumer.handle_order_delivered(envelope.payload, self.client)

    async def _order_refunded(self, envelope: EventEnvelope):
        await order_consumer.handle_order_refunded(envelope.payload, self.client, self.queue)

    async def _order_cancelled(self, envelope: EventEnvelope):
        await order_consumer.handle_order_cancelled(envelope.payload, self.client)

    async def _order_status_changed(self, envelope: EventEnvelope):
        await order_consumer.handle_order_status_changed(envelope.payload)

    async def _stock_changed(self, envelope: EventEnvelope):
        await inventory_consumer.handle_stock_changed(envelope.payload, self.client)

    async def _item_created(self, envelope: EventEnvelope):
        await inventory_consumer.handle_item_created(envelope.payload)

    async def _item_updated(self, envelope: EventEnvelope):
        await inventory_consumer.handle_item_updated(envelope.payload)

    async def _item_code_changed(self, envelope: EventEnvelope):
        await inventory_consumer.handle_item_code_changed(envelope.payload, self.client)

    async def _item_deactivated(self, envelope: EventEnvelope):
        await inventory_consumer.handle_item_deactivated(envelope.payload)
