import hashlib
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request, status
from pydantic import ValidationError

from erp_sync.core.config import WEBHOOK_SECRET
from erp_sync.schemas.webhook import WebhookAccepted, WebhookEvent
from erp_sync.services.runtime import get_queue_manager

router = APIRouter()
log = logging.getLogger("webhook")

# Accepted ERP event types and their queue priority (1 = most urgent)
WEBHOOK_PRIORITIES = {
    "order.placed": 1,
    "order.status_changed": 1,
    "order.cancelled": 1,
    "order.refunded": 1,
    "item.stock_changed": 2,
    "item.returned": 2,
    "item.code_changed": 3,
    "order.delivered": 3,
    "item.updated": 4,
    "item.created": 5,
    "item.deactivated": 5,
}


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """HMAC-SHA256 of the raw request body, hex encoded (optionally prefixed 'sha256=')."""
    if not secret or not signature:
        return False
    provided = signature.strip()
    if provided.startswith("sha256="):
        provided = provided[len("sha256="):]
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, provided.lower())


@router.post("/webhook", status_code=status.HTTP_202_ACCEPTED, response_model=WebhookAccepted)
async def erp_webhook_endpoint(request: Request, x_erp_signature: Optional[str] = Header(None)):
    """
    Receives an ERP event and queues it. Nothing is processed inline; the
    queue worker picks the event up on its next tick.
    """
    body = await request.body()
    if not verify_signature(body, x_erp_signature, WEBHOOK_SECRET):
        log.warning("Rejected ERP webhook with invalid signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        event = WebhookEvent.model_validate_json(body)
    except ValidationError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid event body")

    priority = WEBHOOK_PRIORITIES.get(event.event_type)
    if priority is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown event type: {event.event_type}")

    event_id = await get_queue_manager().enqueue(event.event_type, "erp", event.payload, priority=priority)
    log.info(f"ERP webhook {event.event_type} queued as event {event_id}")
    return WebhookAccepted(event_id=event_id)
