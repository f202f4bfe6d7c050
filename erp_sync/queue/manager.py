import logging
import os
import socket
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional

from tortoise import timezone
from tortoise.expressions import Q
from tortoise.transactions import in_transaction

from erp_sync.core.config import (
    CLEANUP_BATCH_SIZE,
    DEAD_LETTER_THRESHOLD,
    DEFAULT_PRIORITY,
    QUEUE_BATCH_SIZE,
    QUEUE_LOCK_TIMEOUT,
    QUEUE_RETENTION_DAYS,
)
from erp_sync.core.exceptions import QueueError
from erp_sync.models.dead_letter import DeadLetterEvent
from erp_sync.models.event import EventSource, EventStatus, QueueEvent
from erp_sync.queue.backoff import backoff_delay

log = logging.getLogger("queue_manager")


def make_worker_id() -> str:
    """Unique identity of this process for lock ownership (host-pid-random)."""
    return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:8]}"


class QueueManager:
    """
    Persistent event queue with guaranteed delivery.

    Events are claimed with a locked, conditional update so that concurrent
    workers never receive the same row. Failed events are retried on the
    backoff schedule and moved to the dead letter table once they run out
    of attempts.
    """

    def __init__(
        self,
        lock_timeout: int = QUEUE_LOCK_TIMEOUT,
        batch_size: int = QUEUE_BATCH_SIZE,
        max_attempts: int = DEAD_LETTER_THRESHOLD,
        worker_id: Optional[str] = None,
    ):
        self.lock_timeout = lock_timeout
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.worker_id = worker_id or make_worker_id()

    async def enqueue(
        self,
        event_type: str,
        source: str,
        payload: Optional[Dict[str, Any]] = None,
        priority: int = DEFAULT_PRIORITY,
        delay_seconds: int = 0,
        conn: Any = None,
    ) -> int:
        """
        Stores a new pending event and returns its id.
        Pass `conn` to write inside the caller's open transaction.
        """
        event = await QueueEvent.create(
            event_type=event_type,
            source=EventSource(source),
            payload=payload or {},
            priority=priority,
            max_attempts=self.max_attempts,
            process_after=timezone.now() + timedelta(seconds=delay_seconds),
            using_db=conn,
        )
        log.info(f"Enqueued event {event.id} ({event_type}, priority {priority})")
        return event.id

    async def dequeue(self, batch_size: Optional[int] = None) -> List[QueueEvent]:
        """Claims up to `batch_size` ready events for this worker."""
        limit = batch_size or self.batch_size
        now = timezone.now()
        stale_before = now - timedelta(seconds=self.lock_timeout)
        claimed = []

        async with in_transaction() as conn:
            # Row locks where the backend has them; the conditional update below
            # is what guarantees a single owner per event.
            candidates = await QueueEvent.filter(
                Q(locked_at__isnull=True) | Q(locked_at__lt=stale_before),
                status=EventStatus.PENDING,
                process_after__lte=now,
            ).order_by(
                "priority", "created_at", "id"
            ).limit(limit).select_for_update(skip_locked=True).using_db(conn)

            for event in candidates:
                updated = await QueueEvent.filter(
                    id=event.id, status=EventStatus.PENDING
                ).using_db(conn).update(
                    status=EventStatus.PROCESSING,
                    locked_by=self.worker_id,
                    locked_at=now,
                    updated_at=now,
                )
                if updated != 1:
                    continue
                event.status = EventStatus.PROCESSING
                event.locked_by = self.worker_id
                event.locked_at = now
                claimed.append(event)

        if claimed:
            log.info(f"Worker {self.worker_id} claimed {len(claimed)} event(s)")
        return claimed

    async def ack(self, event_id: int) -> bool:
        """
        Marks a claimed event as completed and releases its lock. Returns False
        when this worker no longer holds the claim (stale lock taken over).
        """
        now = timezone.now()
        updated = await QueueEvent.filter(
            id=event_id, status=EventStatus.PROCESSING, locked_by=self.worker_id
        ).update(
            status=EventStatus.COMPLETED,
            completed_at=now,
            locked_by=None,
            locked_at=None,
            updated_at=now,
        )
        if not updated:
            log.warning(f"ack for event {event_id} ignored, claim no longer held by {self.worker_id}")
        return updated == 1

    async def nack(self, event_id: int, error: str) -> None:
        """
        Records a failed attempt. Schedules a retry with backoff, or moves the
        event to the dead letter table once it has used all its attempts.
        """
        now = timezone.now()
        async with in_transaction() as conn:
            event = await QueueEvent.filter(id=event_id).using_db(conn).select_for_update().first()
            if event is None:
                log.warning(f"nack for unknown event {event_id} ignored")
                return
            if event.status != EventStatus.PROCESSING or event.locked_by != self.worker_id:
                log.warning(
                    f"nack for event {event_id} ignored, claim no longer held by {self.worker_id} "
                    f"(status {event.status.value})"
                )
                return

            event.attempts += 1
            event.last_error = error
            event.error_history = list(event.error_history or []) + [
                {"attempt": event.attempts, "error": error, "at": now.isoformat()}
            ]
            event.locked_by = None
            event.locked_at = None
            event.updated_at = now

            if event.attempts >= event.max_attempts:
                already_dead = await DeadLetterEvent.filter(original_event_id=event.id).using_db(conn).exists()
                if not already_dead:
                    await DeadLetterEvent.create(
                        original_event_id=event.id,
                        event_type=event.event_type,
                        source=event.source,
                        payload=event.payload,
                        error_history=event.error_history,
                        total_attempts=event.attempts,
                        using_db=conn,
                    )
                event.status = EventStatus.DEAD
                await event.save(using_db=conn)
                log.error(
                    f"Event {event.id} ({event.event_type}) moved to dead letter after "
                    f"{event.attempts} attempts: {error}"
                )
                return

            delay = backoff_delay(event.attempts)
            event.status = EventStatus.PENDING
            event.process_after = now + timedelta(seconds=delay)
            await event.save(using_db=conn)
            log.warning(
                f"Event {event.id} ({event.event_type}) failed attempt {event.attempts}, "
                f"retry in {delay}s: {error}"
            )

    async def release_stale_locks(self) -> int:
        """Returns claims older than the lock timeout to the pending pool."""
        now = timezone.now()
        released = await QueueEvent.filter(
            status=EventStatus.PROCESSING,
            locked_at__lt=now - timedelta(seconds=self.lock_timeout),
        ).update(
            status=EventStatus.PENDING,
            locked_by=None,
            locked_at=None,
            updated_at=now,
        )
        if released:
            log.warning(f"Released {released} stale event lock(s)")
        return released

    async def cleanup_completed(self, retention_days: int = QUEUE_RETENTION_DAYS) -> int:
        """Deletes completed events older than the retention period, in batches."""
        cutoff = timezone.now() - timedelta(days=retention_days)
        total = 0
        while True:
            ids = await QueueEvent.filter(
                status=EventStatus.COMPLETED, completed_at__lt=cutoff
            ).limit(CLEANUP_BATCH_SIZE).values_list("id", flat=True)
            if not ids:
                break
            await QueueEvent.filter(id__in=list(ids)).delete()
            total += len(ids)
            if len(ids) < CLEANUP_BATCH_SIZE:
                break

        if total:
            log.info(f"Cleaned up {total} completed event(s) older than {retention_days} days")
        return total

    # --- Monitoring ---

    async def queue_depth(self) -> int:
        """Events still waiting to be processed (pending or claimed)."""
        return await QueueEvent.filter(
            status__in=[EventStatus.PENDING, EventStatus.PROCESSING]
        ).count()

    async def dead_letter_count(self) -> int:
        return await DeadLetterEvent.filter(resolved=False).count()

    async def stats(self) -> Dict[str, int]:
        counts = {}
        for status in EventStatus:
            counts[status.value] = await QueueEvent.filter(status=status).count()
        counts["dead_letters"] = await self.dead_letter_count()
        return counts

    # --- Dead letter management ---

    async def list_dead_letters(self, include_resolved: bool = False, limit: int = 100) -> List[DeadLetterEvent]:
        query = DeadLetterEvent.all()
        if not include_resolved:
            query = query.filter(resolved=False)
        return await query.order_by("-created_at", "-id").limit(limit)

    async def retry_dead_letter(self, dead_letter_id: int) -> int:
        """Re-enqueues a dead letter at top priority and marks it resolved."""
        async with in_transaction() as conn:
            dead = await DeadLetterEvent.filter(id=dead_letter_id).using_db(conn).select_for_update().first()
            if dead is None:
                raise QueueError(f"Dead letter {dead_letter_id} not found", {"dead_letter_id": dead_letter_id})
            if dead.resolved:
                raise QueueError(f"Dead letter {dead_letter_id} is already resolved", {"dead_letter_id": dead_letter_id})

            new_id = await self.enqueue(dead.event_type, dead.source, dead.payload, priority=1, conn=conn)
            dead.resolved = True
            dead.resolved_at = timezone.now()
            dead.resolution_note = f"Re-enqueued as event #{new_id}"
            await dead.save(using_db=conn)

        log.info(f"Dead letter {dead_letter_id} re-enqueued as event {new_id}")
        return new_id

    async def resolve_dead_letter(self, dead_letter_id: int, note: str = "") -> bool:
        """Marks a dead letter as handled without re-processing it."""
        updated = await DeadLetterEvent.filter(id=dead_letter_id, resolved=False).update(
            resolved=True,
            resolved_at=timezone.now(),
            resolution_note=note or "Resolved manually",
        )
        return updated == 1
