import asyncio
from datetime import timedelta

import pytest
from unittest.mock import patch
from tortoise import timezone
from tortoise.transactions import in_transaction

from erp_sync.core.exceptions import QueueError
from erp_sync.models.dead_letter import DeadLetterEvent
from erp_sync.models.event import EventStatus, QueueEvent
from erp_sync.queue.manager import QueueManager


async def make_ready(event_id: int):
    """Moves a backed-off event's retry time into the past."""
    await QueueEvent.filter(id=event_id).update(process_after=timezone.now() - timedelta(seconds=1))


@pytest.mark.asyncio
async def test_enqueue_stores_pending_event(db):
    manager = QueueManager()
    event_id = await manager.enqueue("order.placed", "storefront", {"order_id": 7}, priority=1)

    event = await QueueEvent.get(id=event_id)
    assert event.status == EventStatus.PENDING
    assert event.priority == 1
    assert event.attempts == 0
    assert event.payload == {"order_id": 7}
    assert event.locked_by is None


@pytest.mark.asyncio
async def test_enqueue_joins_caller_transaction(db):
    manager = QueueManager()
    with pytest.raises(RuntimeError):
        async with in_transaction() as conn:
            await manager.enqueue("order.placed", "storefront", {"order_id": 1}, conn=conn)
            raise RuntimeError("storefront write failed")

    assert await QueueEvent.all().count() == 0


@pytest.mark.asyncio
async def test_delayed_event_is_not_dequeued_early(db):
    manager = QueueManager()
    await manager.enqueue("item.stock_changed", "storefront", {"ItemCode": "A"}, delay_seconds=60)

    assert await manager.dequeue() == []


@pytest.mark.asyncio
async def test_dequeue_orders_by_priority_then_age(db):
    manager = QueueManager()
    low = await manager.enqueue("item.updated", "erp", {"ItemCode": "A"}, priority=4)
    first_urgent = await manager.enqueue("order.placed", "storefront", {"order_id": 1}, priority=1)
    second_urgent = await manager.enqueue("order.placed", "storefront", {"order_id": 2}, priority=1)

    claimed = await manager.dequeue(10)

    assert [e.id for e in claimed] == [first_urgent, second_urgent, low]
    for event in claimed:
        stored = await QueueEvent.get(id=event.id)
        assert stored.status == EventStatus.PROCESSING
        assert stored.locked_by == manager.worker_id
        assert stored.locked_at is not None


@pytest.mark.asyncio
async def test_claimed_events_are_not_returned_twice(db):
    manager = QueueManager()
    for i in range(3):
        await manager.enqueue("order.placed", "storefront", {"order_id": i})

    first = await manager.dequeue(2)
    second = await manager.dequeue(10)

    assert len(first) == 2
    assert len(second) == 1
    assert not {e.id for e in first} & {e.id for e in second}


@pytest.mark.asyncio
async def test_concurrent_workers_never_share_an_event(db):
    producer = QueueManager()
    total = 40
    for i in range(total):
        await producer.enqueue("order.placed", "storefront", {"order_id": i})

    async def drain(manager: QueueManager):
        seen = []
        while True:
            batch = await manager.dequeue(3)
            if not batch:
                return seen
            for event in batch:
                seen.append(event.id)
                await manager.ack(event.id)

    workers = [QueueManager() for _ in range(5)]
    results = await asyncio.gather(*(drain(w) for w in workers))

    processed = [event_id for result in results for event_id in result]
    assert len(processed) == total
    assert len(set(processed)) == total
    assert await QueueEvent.filter(status=EventStatus.COMPLETED).count() == total


@pytest.mark.asyncio
async def test_ack_completes_and_clears_lock(db):
    manager = QueueManager()
    event_id = await manager.enqueue("order.placed", "storefront", {"order_id": 1})
    await manager.dequeue()

    await manager.ack(event_id)

    event = await QueueEvent.get(id=event_id)
    assert event.status == EventStatus.COMPLETED
    assert event.completed_at is not None
    assert event.locked_by is None
    assert event.locked_at is None


@pytest.mark.asyncio
async def test_nack_schedules_retry_with_backoff(db):
    manager = QueueManager()
    event_id = await manager.enqueue("order.placed", "storefront", {"order_id": 1})
    await manager.dequeue()
    before = timezone.now()

    await manager.nack(event_id, "ERP timeout")

    event = await QueueEvent.get(id=event_id)
    assert event.status == EventStatus.PENDING
    assert event.attempts == 1
    assert event.last_error == "ERP timeout"
    assert [entry["error"] for entry in event.error_history] == ["ERP timeout"]
    assert event.locked_by is None
    assert event.process_after >= before + timedelta(seconds=59)
    assert await manager.dequeue() == []


@pytest.mark.asyncio
async def test_nack_unknown_event_is_ignored(db):
    await QueueManager().nack(9999, "whatever")
    assert await DeadLetterEvent.all().count() == 0


@pytest.mark.asyncio
async def test_exhausted_event_moves_to_dead_letter_once(db):
    manager = QueueManager(max_attempts=3)
    event_id = await manager.enqueue("order.refunded", "storefront", {"order_id": 5, "refund_id": 9})

    for attempt in range(3):
        await make_ready(event_id)
        claimed = await manager.dequeue()
        assert [e.id for e in claimed] == [event_id]
        await manager.nack(event_id, f"failure {attempt + 1}")

    event = await QueueEvent.get(id=event_id)
    assert event.status == EventStatus.DEAD
    assert event.attempts == 3

    dead_letters = await DeadLetterEvent.filter(original_event_id=event_id)
    assert len(dead_letters) == 1
    dead = dead_letters[0]
    assert dead.total_attempts == 3
    assert dead.payload == {"order_id": 5, "refund_id": 9}
    assert [entry["error"] for entry in dead.error_history] == ["failure 1", "failure 2", "failure 3"]

    # A late duplicate nack must not create a second record
    await manager.nack(event_id, "late failure")
    assert await DeadLetterEvent.filter(original_event_id=event_id).count() == 1
    assert await manager.dequeue() == []


@pytest.mark.asyncio
async def test_stale_lock_is_released_and_redequeued(db):
    manager = QueueManager(lock_timeout=300)
    stale_id = await manager.enqueue("order.placed", "storefront", {"order_id": 1})
    fresh_id = await manager.enqueue("order.placed", "storefront", {"order_id": 2})
    await manager.dequeue()
    await QueueEvent.filter(id=stale_id).update(locked_at=timezone.now() - timedelta(seconds=301))

    released = await manager.release_stale_locks()

    assert released == 1
    stale = await QueueEvent.get(id=stale_id)
    assert stale.status == EventStatus.PENDING
    assert stale.locked_by is None
    assert (await QueueEvent.get(id=fresh_id)).status == EventStatus.PROCESSING

    other_worker = QueueManager(lock_timeout=300)
    assert [e.id for e in await other_worker.dequeue()] == [stale_id]


@pytest.mark.asyncio
async def test_cleanup_deletes_old_completed_events_in_batches(db):
    manager = QueueManager()
    old_ids = []
    for i in range(5):
        event_id = await manager.enqueue("order.placed", "storefront", {"order_id": i})
        old_ids.append(event_id)
    recent_id = await manager.enqueue("order.placed", "storefront", {"order_id": 99})
    pending_id = await manager.enqueue("order.placed", "storefront", {"order_id": 100})

    await QueueEvent.filter(id__in=old_ids).update(
        status=EventStatus.COMPLETED, completed_at=timezone.now() - timedelta(days=8)
    )
    await QueueEvent.filter(id=recent_id).update(status=EventStatus.COMPLETED, completed_at=timezone.now())

    with patch("erp_sync.queue.manager.CLEANUP_BATCH_SIZE", 2):
        deleted = await manager.cleanup_completed(retention_days=7)

    assert deleted == 5
    remaining = set(await QueueEvent.all().values_list("id", flat=True))
    assert remaining == {recent_id, pending_id}


@pytest.mark.asyncio
async def test_stats_and_depth(db):
    manager = QueueManager(max_attempts=1)
    await manager.enqueue("order.placed", "storefront", {"order_id": 1})
    failing = await manager.enqueue("order.placed", "storefront", {"order_id": 2})
    await manager.enqueue("order.placed", "storefront", {"order_id": 3})
    claimed = await manager.dequeue(2)
    await manager.ack(claimed[0].id)
    await manager.nack(failing, "boom")

    stats = await manager.stats()

    assert stats == {"pending": 1, "processing": 0, "completed": 1, "dead": 1, "dead_letters": 1}
    assert await manager.queue_depth() == 1
    assert await manager.dead_letter_count() == 1


@pytest.mark.asyncio
async def test_retry_dead_letter_reenqueues_at_top_priority(db):
    manager = QueueManager(max_attempts=1)
    event_id = await manager.enqueue("order.placed", "storefront", {"order_id": 3}, priority=5)
    await manager.dequeue()
    await manager.nack(event_id, "ERP down")
    dead = await DeadLetterEvent.get(original_event_id=event_id)

    new_id = await manager.retry_dead_letter(dead.id)

    new_event = await QueueEvent.get(id=new_id)
    assert new_event.priority == 1
    assert new_event.payload == {"order_id": 3}
    assert new_event.status == EventStatus.PENDING

    await dead.refresh_from_db()
    assert dead.resolved is True
    assert dead.resolution_note == f"Re-enqueued as event #{new_id}"
    assert await manager.list_dead_letters() == []
    assert len(await manager.list_dead_letters(include_resolved=True)) == 1

    with pytest.raises(QueueError):
        await manager.retry_dead_letter(dead.id)


@pytest.mark.asyncio
async def test_resolve_dead_letter(db):
    manager = QueueManager(max_attempts=1)
    event_id = await manager.enqueue("item.updated", "erp", {"ItemCode": "X"})
    await manager.dequeue()
    await manager.nack(event_id, "bad payload")
    dead = await DeadLetterEvent.get(original_event_id=event_id)

    assert await manager.resolve_dead_letter(dead.id, "Item removed in ERP") is True
    assert await manager.resolve_dead_letter(dead.id, "again") is False

    await dead.refresh_from_db()
    assert dead.resolution_note == "Item removed in ERP"
    assert await manager.dead_letter_count() == 0


@pytest.mark.asyncio
async def test_late_nack_from_stalled_worker_leaves_completed_event_alone(db):
    stalled = QueueManager(lock_timeout=300)
    event_id = await stalled.enqueue("order.placed", "storefront", {"order_id": 1})
    await stalled.dequeue()
    await QueueEvent.filter(id=event_id).update(locked_at=timezone.now() - timedelta(seconds=301))
    await stalled.release_stale_locks()

    takeover = QueueManager(lock_timeout=300)
    assert [e.id for e in await takeover.dequeue()] == [event_id]
    assert await takeover.ack(event_id) is True

    await stalled.nack(event_id, "timed out talking to ERP")

    event = await QueueEvent.get(id=event_id)
    assert event.status == EventStatus.COMPLETED
    assert event.attempts == 0
    assert event.last_error is None


@pytest.mark.asyncio
async def test_late_ack_does_not_revive_dead_event(db):
    manager = QueueManager(max_attempts=1)
    event_id = await manager.enqueue("order.placed", "storefront", {"order_id": 1})
    await manager.dequeue()
    await manager.nack(event_id, "ERP down")

    assert await manager.ack(event_id) is False

    event = await QueueEvent.get(id=event_id)
    assert event.status == EventStatus.DEAD
    assert event.completed_at is None
    assert await DeadLetterEvent.filter(original_event_id=event_id).count() == 1


@pytest.mark.asyncio
async def test_ack_and_nack_require_the_current_claim(db):
    owner = QueueManager()
    other = QueueManager()
    event_id = await owner.enqueue("order.placed", "storefront", {"order_id": 1})

    # Not claimed yet
    assert await owner.ack(event_id) is False
    await owner.dequeue()

    assert await other.ack(event_id) is False
    await other.nack(event_id, "not mine")

    event = await QueueEvent.get(id=event_id)
    assert event.status == EventStatus.PROCESSING
    assert event.locked_by == owner.worker_id
    assert event.attempts == 0
