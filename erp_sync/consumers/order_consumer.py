import logging
from typing import Dict, List

from tortoise import timezone

from erp_sync.core.config import DEFAULT_WAREHOUSE, TAX_CODE, TRANSFER_ACCOUNT
from erp_sync.core.exceptions import MappingError
from erp_sync.erp.client import ErpClient
from erp_sync.models.order import OrderStatus, Refund
from erp_sync.models.order_map import OrderSyncMapping, SyncStatus
from erp_sync.queue.manager import QueueManager
from erp_sync.schemas.events import (
    OrderCancelledPayload,
    OrderDeliveredPayload,
    OrderRefundedPayload,
    OrderStatusChangedPayload,
)
from erp_sync.services.storefront import add_order_note, get_refund, set_order_status
from erp_sync.sync.documents import ERP_DATE_FORMAT, OBJ_DELIVERY, OBJ_INVOICE, OBJ_SALES_ORDER, build_copy_lines
from erp_sync.sync.order_map_repository import get_mapping, get_mapping_by_doc_entry, upsert_mapping

log = logging.getLogger("order_consumer")

CANCELLED_STATUSES = {"cancelled", "canceled", "c"}


def _today() -> str:
    return timezone.now().strftime(ERP_DATE_FORMAT)


async def handle_order_delivered(payload: OrderDeliveredPayload, client: ErpClient):
    """
    Order shipped: Delivery Note from the sales order, then (best effort) the
    AR Invoice from the delivery. Each document is created once per order.
    """
    order_id = payload.order_id
    mapping = await get_mapping(order_id)
    if mapping is None or not mapping.doc_entry:
        log.info(f"Order {order_id} delivered but not in ERP, skipping delivery note")
        return

    if mapping.delivery_entry:
        log.info(f"Delivery note already exists for order {order_id} (DocEntry={mapping.delivery_entry})")
        sales_order_card = None
    else:
        sales_order = await client.get(f"Orders({mapping.doc_entry})")
        response = await client.post("DeliveryNotes", {
            "CardCode": sales_order["CardCode"],
            "DocDate": _today(),
            "DocumentLines": build_copy_lines(sales_order, OBJ_SALES_ORDER),
        })
        mapping = await upsert_mapping(order_id, delivery_entry=response["DocEntry"], sync_status=SyncStatus.DELIVERED)
        await add_order_note(order_id, f"ERP delivery note created: DocEntry={response['DocEntry']}")
        log.info(f"Delivery note created for order {order_id}: DocEntry={response['DocEntry']}")
        sales_order_card = sales_order["CardCode"]

    if mapping.invoice_entry:
        return

    # Invoice failures never fail the event; the delivery is already booked.
    try:
        await _create_invoice(client, mapping, sales_order_card)
    except Exception as e:
        log.warning(f"AR invoice skipped for order {order_id}: {e}")
        await add_order_note(order_id, f"ERP AR invoice skipped: {e}")


async def _create_invoice(client: ErpClient, mapping: OrderSyncMapping, card_code=None):
    delivery = await client.get(f"DeliveryNotes({mapping.delivery_entry})")
    response = await client.post("Invoices", {
        "CardCode": card_code or delivery["CardCode"],
        "DocDate": _today(),
        "DocumentLines": build_copy_lines(delivery, OBJ_DELIVERY),
    })
    await upsert_mapping(mapping.order_id, invoice_entry=response["DocEntry"], sync_status=SyncStatus.INVOICED)
    await add_order_note(mapping.order_id, f"ERP AR invoice created: DocEntry={response['DocEntry']}")
    log.info(f"AR invoice created for order {mapping.order_id}: DocEntry={response['DocEntry']}")


async def _refund_lines(client: ErpClient, mapping: OrderSyncMapping, refund: Refund) -> List[Dict]:
    """Credit note lines: copied from the AR invoice when possible, standalone otherwise."""
    lines = []
    if mapping.invoice_entry:
        invoice = await client.get(f"Invoices({mapping.invoice_entry})")
        invoice_lines = invoice.get("DocumentLines") or []
        for item in refund.items:
            sku = item.product.sku if item.product else None
            if not sku:
                continue
            for index, line in enumerate(invoice_lines):
                if line.get("ItemCode") == sku:
                    lines.append({
                        "BaseType": OBJ_INVOICE,
                        "BaseEntry": mapping.invoice_entry,
                        "BaseLine": index,
                        "Quantity": float(abs(item.quantity)),
                    })
                    break

    if lines:
        return lines

    for item in refund.items:
        sku = item.product.sku if item.product else None
        if not sku:
            continue
        quantity = abs(item.quantity)
        total = abs(float(item.total))
        lines.append({
            "ItemCode": sku,
            "Quantity": float(quantity),
            "UnitPrice": total / quantity if quantity > 0 else 0.0,
            "TaxCode": TAX_CODE,
            "WarehouseCode": DEFAULT_WAREHOUSE,
        })
    return lines


async def handle_order_refunded(payload: OrderRefundedPayload, client: ErpClient, queue: QueueManager):
    """
    Refund: A/R Credit Note (from the invoice or standalone), then a best
    effort outgoing payment, then a stock refresh for every refunded SKU.
    """
    order_id, refund_id = payload.order_id, payload.refund_id
    mapping = await get_mapping(order_id)
    if mapping is None or not mapping.doc_entry:
        log.info(f"Refund {refund_id} for order {order_id} not in ERP scope, skipping")
        return

    refunds = dict(mapping.refunds or {})
    if str(refund_id) in refunds:
        log.info(f"Refund {refund_id} already booked in ERP, skipping")
        return

    refund = await get_refund(refund_id)
    if refund is None:
        log.warning(f"Refund {refund_id} not found locally")
        return

    lines = await _refund_lines(client, mapping, refund)
    if not lines:
        await add_order_note(order_id, "ERP refund: no items to create a credit note for")
        return

    sales_order = await client.get(f"Orders({mapping.doc_entry})", {"$select": "CardCode"})
    card_code = sales_order["CardCode"]

    response = await client.post("CreditNotes", {
        "CardCode": card_code,
        "DocDate": _today(),
        "Comments": f"Web refund #{refund_id} for order #{order_id}",
        "DocumentLines": lines,
    })
    credit_note_entry = response["DocEntry"]
    refunds[str(refund_id)] = {"credit_note": credit_note_entry}
    await upsert_mapping(
        order_id, refunds=refunds, credit_note_entry=credit_note_entry, sync_status=SyncStatus.REFUNDED
    )
    amount = abs(float(refund.amount))
    await add_order_note(order_id, f"ERP credit note created: DocEntry={credit_note_entry}, Amount={amount:.2f}")
    log.info(f"Credit note created for order {order_id}: DocEntry={credit_note_entry}")

    try:
        payment_entry = await _create_outgoing_payment(client, card_code, credit_note_entry, refund_id, amount)
    except Exception as e:
        log.warning(f"Outgoing payment skipped for order {order_id}: {e}")
        await add_order_note(order_id, f"ERP outgoing payment skipped: {e}")
    else:
        refunds[str(refund_id)]["payment"] = payment_entry
        await upsert_mapping(order_id, refunds=refunds)
        await add_order_note(order_id, f"ERP outgoing payment created: DocEntry={payment_entry}, Amount={amount:.2f}")

    skus = {item.product.sku for item in refund.items if item.product and item.product.sku}
    for sku in sorted(skus):
        await queue.enqueue("item.stock_changed", "storefront", {"ItemCode": sku}, priority=2)


async def _create_outgoing_payment(client: ErpClient, card_code: str, credit_note_entry: int, refund_id: int, amount: float) -> int:
    if not TRANSFER_ACCOUNT:
        raise MappingError("Transfer account not configured for outgoing payment")

    response = await client.post("VendorPayments", {
        "CardCode": card_code,
        "DocType": "rCustomer",
        "DocDate": _today(),
        "TransferAccount": TRANSFER_ACCOUNT,
        "TransferSum": amount,
        "TransferDate": _today(),
        "TransferReference": f"WEB-REFUND-{refund_id}",
        "PaymentInvoices": [{
            "DocEntry": credit_note_entry,
            "SumApplied": amount,
            "InvoiceType": "it_CredItnote",
            "InstallmentId": 1,
        }],
    })
    return response["DocEntry"]


async def handle_order_status_changed(payload: OrderStatusChangedPayload):
    """ERP-side status change. Only cancellation is mirrored on the storefront."""
    mapping = await get_mapping_by_doc_entry(payload.doc_entry)
    if mapping is None:
        return

    if payload.status.lower() in CANCELLED_STATUSES:
        if await set_order_status(mapping.order_id, OrderStatus.CANCELLED):
            await add_order_note(mapping.order_id, "Cancelled in ERP")
            log.info(f"Order {mapping.order_id} cancelled from ERP (DocEntry={payload.doc_entry})")


async def handle_order_cancelled(payload: OrderCancelledPayload, client: ErpClient):
    """
    ERP-originated (DocEntry): cancel the local order.
    Storefront-originated (order_id): cancel the ERP sales order once.
    """
    if payload.doc_entry:
        await handle_order_status_changed(OrderStatusChangedPayload(DocEntry=payload.doc_entry, Status="cancelled"))
        return

    if not payload.order_id:
        raise MappingError("order.cancelled requires order_id or DocEntry")

    mapping = await get_mapping(payload.order_id)
    if mapping is None or not mapping.doc_entry:
        return
    if mapping.sync_status == SyncStatus.CANCELED:
        log.info(f"ERP sales order for order {payload.order_id} already cancelled")
        return

    await client.post(f"Orders({mapping.doc_entry})/Cancel")
    await upsert_mapping(payload.order_id, sync_status=SyncStatus.CANCELED)
    await add_order_note(payload.order_id, f"ERP sales order (DocEntry={mapping.doc_entry}) cancelled")
    log.info(f"ERP sales order cancelled for order {payload.order_id}")
