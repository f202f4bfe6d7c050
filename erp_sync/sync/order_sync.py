import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field
from tortoise.transactions import in_transaction

from erp_sync.core.config import ENABLE_ORDER_SYNC
from erp_sync.erp.client import ErpClient
from erp_sync.erp.filters import equals
from erp_sync.models.order import Order
from erp_sync.models.order_map import SyncStatus
from erp_sync.services.storefront import add_order_note, get_order
from erp_sync.sync.documents import (
    build_down_payment,
    build_incoming_payment,
    build_sales_order,
    business_key,
    is_cod,
)
from erp_sync.sync.order_map_repository import is_synced, record_sync_failure, upsert_mapping

log = logging.getLogger("order_sync")


class StepResult(BaseModel):
    """Outcome of one non-blocking saga step."""
    step: str
    ok: bool
    doc_entry: Optional[int] = None
    error: Optional[str] = None


class SagaResult(BaseModel):
    order_id: int
    status: str  # 'created' | 'linked' | 'skipped'
    doc_entry: Optional[int] = None
    doc_num: Optional[int] = None
    steps: List[StepResult] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class OrderSync:
    """
    Creates the ERP sales order for a storefront order, exactly once.

    The business key (NumAtCard) is looked up before anything is created so a
    retried or duplicated event only links the existing document. Prepaid
    orders then get a down payment invoice and an incoming payment; those
    steps are best effort and only produce warnings.
    """

    def __init__(self, client: ErpClient):
        self.client = client

    async def process_new_order(self, order_id: int) -> SagaResult:
        if not ENABLE_ORDER_SYNC:
            log.info(f"Order sync disabled, skipping order {order_id}")
            return SagaResult(order_id=order_id, status="skipped", warnings=["Order sync is disabled"])

        order = await get_order(order_id)
        if order is None:
            log.warning(f"Order {order_id} not found locally, nothing to sync")
            return SagaResult(order_id=order_id, status="skipped", warnings=["Order not found"])

        if await is_synced(order_id):
            log.info(f"Order {order_id} already synced, skipping")
            return SagaResult(order_id=order_id, status="skipped", warnings=["Order already synced"])

        key = business_key(order_id)
        try:
            existing = await self.find_existing_sales_order(key)
            if existing:
                return await self._link_existing(order, key, existing)
            if is_cod(order):
                return await self._create_cod(order, key)
            return await self._create_prepaid(order, key)
        except Exception as e:
            await self._record_failure(order_id, e)
            raise

    async def find_existing_sales_order(self, key: str) -> Optional[Dict[str, Any]]:
        """Sales order carrying this business key, if the ERP already has one. Lookup errors propagate."""
        response = await self.client.get("Orders", {
            "$filter": equals("NumAtCard", key),
            "$select": "DocEntry,DocNum",
            "$top": 1,
        })
        values = response.get("value") or []
        return values[0] if values else None

    async def _link_existing(self, order: Order, key: str, existing: Dict[str, Any]) -> SagaResult:
        doc_entry = int(existing["DocEntry"])
        doc_num = existing.get("DocNum")
        await upsert_mapping(
            order.id,
            business_key=key,
            payment_type="cod" if is_cod(order) else "prepaid",
            doc_entry=doc_entry,
            doc_num=doc_num,
            sync_status=SyncStatus.SO_CREATED,
            error_message=None,
            next_retry_at=None,
        )
        await add_order_note(order.id, f"ERP sales order already exists (DocEntry={doc_entry}), linked")
        log.info(f"Order {order.id} already exists in ERP (DocEntry={doc_entry}), linked mapping")
        return SagaResult(order_id=order.id, status="linked", doc_entry=doc_entry, doc_num=doc_num)

    async def _create_cod(self, order: Order, key: str) -> SagaResult:
        """Cash on delivery: sales order and mapping in one unit of work."""
        async with in_transaction() as conn:
            response = await self.client.post("Orders", build_sales_order(order, key))
            doc_entry, doc_num = response["DocEntry"], response.get("DocNum")
            await upsert_mapping(
                order.id,
                conn=conn,
                business_key=key,
                payment_type="cod",
                doc_entry=doc_entry,
                doc_num=doc_num,
                sync_status=SyncStatus.SO_CREATED,
                error_message=None,
                next_retry_at=None,
            )
            await add_order_note(order.id, f"ERP sales order created: DocEntry={doc_entry}, DocNum={doc_num}", conn=conn)

        log.info(f"COD order {order.id} synced: DocEntry={doc_entry}")
        return SagaResult(order_id=order.id, status="created", doc_entry=doc_entry, doc_num=doc_num)

    async def _create_prepaid(self, order: Order, key: str) -> SagaResult:
        """Prepaid: sales order, then best-effort down payment and incoming payment."""
        response = await self.client.post("Orders", build_sales_order(order, key))
        doc_entry, doc_num = response["DocEntry"], response.get("DocNum")
        await upsert_mapping(
            order.id,
            business_key=key,
            payment_type="prepaid",
            doc_entry=doc_entry,
            doc_num=doc_num,
            sync_status=SyncStatus.SO_CREATED,
            error_message=None,
            next_retry_at=None,
        )
        await add_order_note(order.id, f"ERP sales order created: DocEntry={doc_entry}, DocNum={doc_num}")
        log.info(f"Prepaid order {order.id} synced: DocEntry={doc_entry}")

        result = SagaResult(order_id=order.id, status="created", doc_entry=doc_entry, doc_num=doc_num)

        down_payment = await self._run_step(result, order, "down_payment", self._create_down_payment, order, key)
        if down_payment.ok:
            await self._run_step(
                result, order, "incoming_payment", self._create_incoming_payment, order, down_payment.doc_entry
            )
        else:
            result.steps.append(StepResult(step="incoming_payment", ok=False, error="Skipped: no down payment invoice"))
        return result

    async def _run_step(
        self,
        result: SagaResult,
        order: Order,
        name: str,
        step: Callable[..., Awaitable[int]],
        *args,
    ) -> StepResult:
        label = name.replace("_", " ")
        try:
            doc_entry = await step(*args)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            log.warning(f"ERP {label} skipped for order {order.id}: {message}")
            await add_order_note(order.id, f"ERP {label} skipped: {message}")
            result.warnings.append(f"{label}: {message}")
            outcome = StepResult(step=name, ok=False, error=message)
        else:
            outcome = StepResult(step=name, ok=True, doc_entry=doc_entry)
        result.steps.append(outcome)
        return outcome

    async def _create_down_payment(self, order: Order, key: str) -> int:
        response = await self.client.post("DownPayments", build_down_payment(order, key))
        entry = response["DocEntry"]
        await upsert_mapping(order.id, down_payment_entry=entry, sync_status=SyncStatus.DP_CREATED)
        await add_order_note(order.id, f"ERP down payment invoice created: DocEntry={entry}")
        return entry

    async def _create_incoming_payment(self, order: Order, down_payment_entry: int) -> int:
        response = await self.client.post("IncomingPayments", build_incoming_payment(order, down_payment_entry))
        entry = response["DocEntry"]
        await upsert_mapping(order.id, payment_entry=entry)
        await add_order_note(order.id, f"ERP incoming payment recorded: DocEntry={entry}")
        return entry

    async def _record_failure(self, order_id: int, error: Exception) -> None:
        message = str(error) or error.__class__.__name__
        log.error(f"Order {order_id} sync failed: {message}")
        mapping = await record_sync_failure(order_id, message)
        await add_order_note(order_id, f"ERP sync failed (attempt {mapping.retry_count}): {message}")
