import pytest
from pydantic import ValidationError

from erp_sync.consumers.event_processor import EventProcessor
from erp_sync.core.exceptions import CircuitOpenError, ErpApiError
from erp_sync.models.inventory import Inventory
from erp_sync.models.order import Product
from erp_sync.models.order_map import OrderSyncMapping, SyncStatus
from erp_sync.queue.circuit_breaker import CircuitBreaker
from erp_sync.queue.manager import QueueManager
from erp_sync.queue.worker import QueueWorker
from erp_sync.testing.testing_mocks import seed_order


@pytest.fixture
def breaker():
    return CircuitBreaker(failure_threshold=2, failure_window=60, cooldown=30)


@pytest.fixture
def processor(erp, breaker):
    return EventProcessor(erp, breaker, QueueManager())


@pytest.mark.asyncio
async def test_order_placed_runs_the_saga(db, erp, processor):
    order = await seed_order()

    await processor.dispatch("order.placed", {"order_id": order.id})

    assert len(erp.documents("Orders")) == 1
    mapping = await OrderSyncMapping.get(order_id=order.id)
    assert mapping.sync_status == SyncStatus.SO_CREATED


@pytest.mark.asyncio
async def test_erp_item_event_uses_pascal_case_keys(db, erp, processor):
    product = await Product.create(name="Book", price=10, sku="BK-001")
    await Inventory.create(product=product, available_qty=0)
    erp.add_item("BK-001", in_stock=4)

    await processor.dispatch("item.stock_changed", {"ItemCode": "BK-001"}, source="erp")

    assert (await Inventory.get(product_id=product.id)).available_qty == 4


@pytest.mark.asyncio
async def test_unknown_event_type_is_acknowledged_without_erp_calls(db, erp, breaker, processor):
    await processor.dispatch("customer.created", {"id": 1})

    assert erp.calls == []
    assert processor.handles("customer.created") is False
    assert processor.handles("order.refunded") is True
    assert (await breaker.status())["failure_count"] == 0


@pytest.mark.asyncio
async def test_handler_failure_is_counted_and_reraised(db, erp, breaker, processor):
    order = await seed_order()
    erp.fail("POST Orders")

    with pytest.raises(ErpApiError):
        await processor.dispatch("order.placed", {"order_id": order.id})

    assert (await breaker.status())["failure_count"] == 1


@pytest.mark.asyncio
async def test_invalid_payload_fails_the_event(db, breaker, processor):
    with pytest.raises(ValidationError):
        await processor.dispatch("item.stock_changed", {"sku": "missing-item-code"})

    assert (await breaker.status())["failure_count"] == 0


@pytest.mark.asyncio
async def test_malformed_payloads_do_not_open_the_circuit(db, erp, breaker, processor):
    for _ in range(3):
        with pytest.raises(ValidationError):
            await processor.dispatch("order.placed", {"order": "not-an-id"})

    status = await breaker.status()
    assert status["state"] == "closed"
    assert status["failure_count"] == 0
    assert erp.calls == []

    order = await seed_order()
    await processor.dispatch("order.placed", {"order_id": order.id})
    assert len(erp.documents("Orders")) == 1


@pytest.mark.asyncio
async def test_open_circuit_rejects_without_calling_erp(db, erp, breaker, processor):
    order = await seed_order()
    await breaker.record_failure()
    await breaker.record_failure()

    with pytest.raises(CircuitOpenError):
        await processor.dispatch("order.placed", {"order_id": order.id})

    assert erp.calls == []


@pytest.mark.asyncio
async def test_success_clears_failure_count(db, erp, breaker, processor):
    order = await seed_order()
    await breaker.record_failure()

    await processor.dispatch("order.placed", {"order_id": order.id})

    assert (await breaker.status())["failure_count"] == 0


@pytest.mark.asyncio
async def test_worker_drives_processor_end_to_end(db, erp, breaker):
    queue = QueueManager()
    processor = EventProcessor(erp, breaker, queue)
    order = await seed_order()
    await queue.enqueue("order.placed", "storefront", {"order_id": order.id}, priority=1)
    await queue.enqueue("order.placed", "storefront", {"order_id": order.id}, priority=1)

    result = await QueueWorker(queue, processor).process_batch()

    assert result == {"processed": 2, "failed": 0, "skipped": 0}
    assert len(erp.documents("Orders")) == 1
