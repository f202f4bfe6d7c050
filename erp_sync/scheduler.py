import asyncio
import logging
import time
from typing import Dict

from erp_sync.core.config import (
    CLEANUP_INTERVAL,
    HEALTH_CHECK_INTERVAL,
    MAX_RETRY_ATTEMPTS,
    QUEUE_RETENTION_DAYS,
    RETRY_ORDERS_BATCH,
    WORKER_INTERVAL,
)
from erp_sync.core.db import close_db, init_db
from erp_sync.core.exceptions import CircuitOpenError
from erp_sync.consumers.event_processor import EventProcessor
from erp_sync.queue.circuit_breaker import CircuitBreaker
from erp_sync.queue.manager import QueueManager
from erp_sync.queue.worker import QueueWorker
from erp_sync.services.runtime import (
    close_runtime,
    get_circuit_breaker,
    get_event_processor,
    get_queue_manager,
    get_queue_worker,
)
from erp_sync.sync.order_map_repository import retry_candidates

log = logging.getLogger("scheduler")


async def worker_tick(worker: QueueWorker) -> Dict[str, int]:
    """Processes one batch of queued events."""
    return await worker.process_batch()


async def health_tick(queue: QueueManager, breaker: CircuitBreaker) -> Dict:
    """Frees stale claims and reports the sync health."""
    released = await queue.release_stale_locks()
    status = await breaker.status()
    depth = await queue.queue_depth()
    dead = await queue.dead_letter_count()

    if not status["is_healthy"]:
        log.warning(f"ERP circuit is {status['state']} ({status['failure_count']} failures)")
    if dead:
        log.warning(f"{dead} unresolved dead letter(s) need attention")
    log.info(f"Health: circuit={status['state']} queue_depth={depth} dead_letters={dead} released={released}")
    return {"circuit": status["state"], "queue_depth": depth, "dead_letters": dead, "released": released}


async def retry_orders_tick(processor: EventProcessor, breaker: CircuitBreaker) -> int:
    """
    Re-runs the order saga for mappings whose retry time has come.
    Skipped entirely while the ERP circuit is open.
    """
    status = await breaker.status()
    if status["state"] == "open":
        log.info("ERP circuit open, skipping order retries")
        return 0

    retried = 0
    for mapping in await retry_candidates(MAX_RETRY_ATTEMPTS, RETRY_ORDERS_BATCH):
        try:
            await processor.dispatch("order.placed", {"order_id": mapping.order_id})
        except CircuitOpenError:
            log.info("ERP circuit opened during order retries, stopping")
            break
        except Exception as e:
            # Failure bookkeeping was already written by the saga
            log.error(f"Retry of order {mapping.order_id} failed: {e}")
        retried += 1
    return retried


async def cleanup_tick(queue: QueueManager) -> int:
    return await queue.cleanup_completed(QUEUE_RETENTION_DAYS)


async def run_scheduler():
    """Main loop driving every periodic job."""
    await init_db()
    log.info("--- ERP Sync Scheduler Started ---")

    queue = get_queue_manager()
    breaker = get_circuit_breaker()
    processor = get_event_processor()
    worker = get_queue_worker()

    jobs = [
        (WORKER_INTERVAL, lambda: worker_tick(worker)),
        (WORKER_INTERVAL, lambda: retry_orders_tick(processor, breaker)),
        (HEALTH_CHECK_INTERVAL, lambda: health_tick(queue, breaker)),
        (CLEANUP_INTERVAL, lambda: cleanup_tick(queue)),
    ]
    last_run = [0.0] * len(jobs)

    try:
        while True:
            now = time.monotonic()
            for index, (interval, job) in enumerate(jobs):
                if last_run[index] and now - last_run[index] < interval:
                    continue
                last_run[index] = now
                try:
                    await job()
                except Exception as e:
                    log.exception(f"Scheduled job failed: {e}")
            await asyncio.sleep(1)
    finally:
        await close_runtime()
        await close_db()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    try:
        asyncio.run(run_scheduler())
    except KeyboardInterrupt:
        log.info("Scheduler stopped.")
