from datetime import timedelta
from typing import Any, List, Optional

from tortoise import timezone

from erp_sync.core.config import MAX_RETRY_ATTEMPTS
from erp_sync.models.order_map import OrderSyncMapping, SyncStatus, SYNCED_STATUSES
from erp_sync.queue.backoff import backoff_delay


async def get_mapping(order_id: int, conn: Any = None) -> Optional[OrderSyncMapping]:
    return await OrderSyncMapping.filter(order_id=order_id).using_db(conn).first()


async def get_mapping_by_doc_entry(doc_entry: int) -> Optional[OrderSyncMapping]:
    return await OrderSyncMapping.filter(doc_entry=doc_entry).first()


async def is_synced(order_id: int) -> bool:
    """True once the ERP sales order for this order exists."""
    return await OrderSyncMapping.filter(order_id=order_id, sync_status__in=list(SYNCED_STATUSES)).exists()


async def upsert_mapping(order_id: int, conn: Any = None, **fields) -> OrderSyncMapping:
    """Creates the mapping for an order or updates the given fields on it."""
    mapping = await get_mapping(order_id, conn=conn)
    if mapping is None:
        return await OrderSyncMapping.create(order_id=order_id, using_db=conn, **fields)

    for name, value in fields.items():
        setattr(mapping, name, value)
    if fields:
        await mapping.save(using_db=conn)
    return mapping


async def record_sync_failure(order_id: int, message: str) -> OrderSyncMapping:
    """
    Marks the order sync as failed and schedules the next saga retry on the
    backoff schedule. Once the retries are used up the mapping is marked failed.
    """
    mapping = await get_mapping(order_id)
    retry_count = (mapping.retry_count if mapping else 0) + 1
    status = SyncStatus.FAILED if retry_count >= MAX_RETRY_ATTEMPTS else SyncStatus.ERROR
    return await upsert_mapping(
        order_id,
        sync_status=status,
        error_message=message[:2000],
        retry_count=retry_count,
        next_retry_at=timezone.now() + timedelta(seconds=backoff_delay(retry_count)),
    )


async def retry_candidates(max_retries: int, limit: int) -> List[OrderSyncMapping]:
    """Failed mappings whose retry time has come."""
    return await OrderSyncMapping.filter(
        sync_status=SyncStatus.ERROR,
        retry_count__lt=max_retries,
        next_retry_at__lte=timezone.now(),
    ).order_by("next_retry_at").limit(limit)


async def reset_for_retry(order_id: int) -> OrderSyncMapping:
    """Clears the retry bookkeeping so the saga runs again from scratch."""
    return await upsert_mapping(
        order_id,
        sync_status=SyncStatus.PENDING,
        retry_count=0,
        next_retry_at=None,
        error_message=None,
    )
