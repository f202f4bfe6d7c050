import logging
from typing import Dict, Optional

from erp_sync.core.config import QUEUE_LOCK_TIMEOUT
from erp_sync.queue.locks import acquire_lock, release_lock
from erp_sync.queue.manager import QueueManager

log = logging.getLogger("queue_worker")

WORKER_LOCK = "queue_worker"


class QueueWorker:
    """
    Drains one batch of the event queue per scheduler tick.
    Only one worker runs a batch at a time (advisory lock); a failing event
    is nacked and never aborts the rest of the batch.
    """

    def __init__(self, queue: QueueManager, processor, lock_ttl: int = QUEUE_LOCK_TIMEOUT):
        self.queue = queue
        self.processor = processor
        self.lock_ttl = lock_ttl

    async def process_batch(self, batch_size: Optional[int] = None) -> Dict[str, int]:
        result = {"processed": 0, "failed": 0, "skipped": 0}

        if not await acquire_lock(WORKER_LOCK, self.queue.worker_id, self.lock_ttl):
            log.info("Another worker is processing the queue, skipping this tick")
            result["skipped"] = 1
            return result

        try:
            await self.queue.release_stale_locks()
            events = await self.queue.dequeue(batch_size)

            for event in events:
                try:
                    await self.processor.process(event)
                except Exception as e:
                    log.error(f"Event {event.id} ({event.event_type}) failed: {e}")
                    await self.queue.nack(event.id, str(e) or e.__class__.__name__)
                    result["failed"] += 1
                else:
                    await self.queue.ack(event.id)
                    result["processed"] += 1
        finally:
            await release_lock(WORKER_LOCK, self.queue.worker_id)

        if result["processed"] or result["failed"]:
            log.info(f"Batch done: {result['processed']} processed, {result['failed']} failed")
        return result
