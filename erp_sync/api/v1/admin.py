import logging
from fastapi import APIRouter, status
from erp_sync.schemas.response import SuccessResponse
from erp_sync.schemas.admin import DeadLetterResponse, ResolveRequest
from erp_sync.services.admin_service import force_retry_order, queue_overview
from erp_sync.services.runtime import get_circuit_breaker, get_queue_manager, get_queue_worker
from erp_sync.core.exceptions import QueueError

router = APIRouter()
log = logging.getLogger("uvicorn")


@router.get("/queue", response_model=SuccessResponse)
async def queue_stats_endpoint():
    """Event counts per status, unresolved dead letters and the breaker state."""
    data = await queue_overview(get_queue_manager(), get_circuit_breaker())
    return SuccessResponse(data=data)


@router.post("/queue/process", response_model=SuccessResponse)
async def process_queue_endpoint():
    """Runs one worker batch now instead of waiting for the scheduler."""
    result = await get_queue_worker().process_batch()
    return SuccessResponse(data=result)


@router.get("/dead-letters", response_model=SuccessResponse)
async def list_dead_letters_endpoint(include_resolved: bool = False, limit: int = 100):
    dead_letters = await get_queue_manager().list_dead_letters(include_resolved=include_resolved, limit=limit)
    data = [
        DeadLetterResponse(
            id=d.id,
            original_event_id=d.original_event_id,
            event_type=d.event_type,
            source=d.source.value,
            payload=d.payload,
            error_history=d.error_history,
            total_attempts=d.total_attempts,
            resolved=d.resolved,
            resolution_note=d.resolution_note,
            created_at=str(d.created_at),
        ).model_dump()
        for d in dead_letters
    ]
    return SuccessResponse(data=data)


@router.post("/dead-letters/{dead_letter_id}/retry", status_code=status.HTTP_202_ACCEPTED, response_model=SuccessResponse)
async def retry_dead_letter_endpoint(dead_letter_id: int):
    """Re-enqueues a dead letter at top priority."""
    event_id = await get_queue_manager().retry_dead_letter(dead_letter_id)
    log.info(f"Dead letter {dead_letter_id} re-enqueued as event {event_id}")
    return SuccessResponse(data={"dead_letter_id": dead_letter_id, "event_id": event_id})


@router.post("/dead-letters/{dead_letter_id}/resolve", response_model=SuccessResponse)
async def resolve_dead_letter_endpoint(dead_letter_id: int, payload: ResolveRequest):
    if not await get_queue_manager().resolve_dead_letter(dead_letter_id, payload.note):
        raise QueueError(f"Dead letter {dead_letter_id} not found or already resolved")
    return SuccessResponse(data={"dead_letter_id": dead_letter_id, "resolved": True})


@router.post("/orders/{order_id}/retry", status_code=status.HTTP_202_ACCEPTED, response_model=SuccessResponse)
async def force_retry_order_endpoint(order_id: int):
    """Resets the sync bookkeeping of an order and queues a fresh ERP sync."""
    event_id = await force_retry_order(order_id, get_queue_manager())
    return SuccessResponse(data={"order_id": order_id, "event_id": event_id})


@router.post("/circuit/reset", response_model=SuccessResponse)
async def reset_circuit_endpoint():
    breaker = get_circuit_breaker()
    await breaker.reset()
    return SuccessResponse(data=await breaker.status())
