from tortoise.transactions import in_transaction
from typing import List, Dict, Optional
from decimal import Decimal, ROUND_HALF_UP
from erp_sync.core.config import COD_METHODS, ENABLE_ORDER_SYNC, STORE_TAX_RATE
from erp_sync.models.order import Order, OrderItem, Product, Refund, RefundItem, OrderStatus
from erp_sync.models.order_map import SyncStatus
from erp_sync.queue.manager import QueueManager
from erp_sync.sync.order_map_repository import get_mapping, upsert_mapping

CENT = Decimal("0.01")

# Seconds to wait before re-reading stock, the ERP updates committed quantities asynchronously
STOCK_REFRESH_DELAY = 60


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


async def place_order(customer: Dict, payment_method: str, items: List[Dict], queue: QueueManager,
                      payment_method_title: str = "", shipping_total=0, transaction_id: Optional[str] = None) -> Order:
    """
    FAST PATH: Creates Order/OrderItem and the order.placed event atomically.
    The ERP sales order is created later by the queue worker.
    """
    tax_rate = Decimal(str(STORE_TAX_RATE))

    async with in_transaction() as conn:
        # Input validation and existence check
        product_ids = [int(it["product_id"]) for it in items]
        products = await Product.filter(id__in=product_ids, is_active=True).using_db(conn)
        product_map = {p.id: p for p in products}

        # 1. Create the Order header
        order = await Order.create(
            customer_name=customer.get("name", ""),
            email=customer.get("email", ""),
            phone=customer.get("phone", ""),
            address=customer.get("address", ""),
            city=customer.get("city", ""),
            payment_method=payment_method,
            payment_method_title=payment_method_title,
            transaction_id=transaction_id,
            status=OrderStatus.PENDING,
            shipping_total=_money(shipping_total),
            shipping_tax=Decimal("0"), # Shipping is zero-rated
            total_amount=Decimal("0"),
            using_db=conn
        )

        total = Decimal("0")
        skus = []

        for it in items:
            pid = int(it["product_id"])
            qty = int(it["quantity"])
            product = product_map.get(pid)

            if not product:
                raise ValueError(f"Product {pid} not found or inactive.")

            line_subtotal = _money(product.price * qty)
            discount = _money(it.get("discount", 0))
            line_total = line_subtotal - discount
            line_tax = _money(line_total * tax_rate)
            total += line_total + line_tax

            # 2. Create Order Item line
            await OrderItem.create(
                order=order,
                product=product,
                name=product.name,
                quantity=qty,
                line_subtotal=line_subtotal,
                line_total=line_total,
                line_tax=line_tax,
                using_db=conn
            )
            if product.sku:
                skus.append(product.sku)

        order.total_amount = total + order.shipping_total
        await order.save(using_db=conn)

        if ENABLE_ORDER_SYNC:
            await upsert_mapping(
                order.id,
                conn=conn,
                payment_type="cod" if payment_method.lower() in COD_METHODS else "prepaid",
                sync_status=SyncStatus.PENDING,
            )
            # 3. ATOMIC EVENT: ERP sales order creation (handled by the worker)
            await queue.enqueue("order.placed", "storefront", {"order_id": order.id}, priority=1, conn=conn)

            # Deferred stock refresh once the ERP has committed the quantities
            for sku in sorted(set(skus)):
                await queue.enqueue("item.stock_changed", "storefront", {"ItemCode": sku},
                                    priority=2, delay_seconds=STOCK_REFRESH_DELAY, conn=conn)

    return order


async def get_order_by_id(order_id: int) -> Optional[Order]:
    """Fetches order details with items, including the product name/SKU."""
    # Pre-fetch related entities to minimize DB queries (N+1 avoidance)
    return await Order.get_or_none(id=order_id).prefetch_related('items', 'items__product', 'notes')


async def complete_order(order_id: int, queue: QueueManager) -> Order:
    """
    Marks the order as shipped and requests the ERP delivery note.
    """
    async with in_transaction() as conn:
        order = await Order.get_or_none(id=order_id).using_db(conn)
        if not order:
            raise ValueError("Order not found")

        # --- CRITICAL STATE MACHINE VALIDATION ---
        if order.status in [OrderStatus.CANCELLED, OrderStatus.REFUNDED, OrderStatus.COMPLETED]:
            raise ValueError(f"Order is already in a final state: {order.status}. Status cannot be updated.")

        order.status = OrderStatus.COMPLETED
        await order.save(using_db=conn)

        # Only orders already in the ERP get a delivery note
        mapping = await get_mapping(order.id, conn=conn)
        if ENABLE_ORDER_SYNC and mapping and mapping.doc_entry:
            await queue.enqueue(
                "order.delivered", "storefront",
                {"order_id": order.id, "doc_entry": mapping.doc_entry},
                priority=3, conn=conn
            )

    return order


async def cancel_order(order_id: int, queue: QueueManager) -> Order:
    """
    Cancels an order and triggers the ERP sales order cancellation.
    """
    async with in_transaction() as conn:
        order = await Order.get_or_none(id=order_id).using_db(conn)
        if not order:
            raise ValueError("Order not found")

        # Validation: Cannot cancel if already shipped or closed
        if order.status in [OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.REFUNDED]:
            raise ValueError(f"Cannot cancel order in status {order.status}")

        order.status = OrderStatus.CANCELLED
        await order.save(using_db=conn)

        mapping = await get_mapping(order.id, conn=conn)
        if ENABLE_ORDER_SYNC and mapping and mapping.doc_entry:
            # ATOMIC EVENT: ERP cancellation releases the committed stock
            await queue.enqueue("order.cancelled", "storefront", {"order_id": order.id}, priority=1, conn=conn)

    return order


async def refund_order(order_id: int, items: List[Dict], queue: QueueManager, reason: str = "") -> Refund:
    """
    Records a (partial) refund and requests the ERP credit note.
    """
    async with in_transaction() as conn:
        order = await Order.get_or_none(id=order_id).prefetch_related('items').using_db(conn)
        if not order:
            raise ValueError("Order not found")
        if order.status == OrderStatus.CANCELLED:
            raise ValueError("Cannot refund a cancelled order")

        order_items = {item.product_id: item for item in order.items}
        refund = await Refund.create(order=order, amount=Decimal("0"), reason=reason, using_db=conn)

        amount = Decimal("0")
        for it in items:
            pid = int(it["product_id"])
            qty = int(it["quantity"])
            line = order_items.get(pid)
            if not line or qty <= 0 or qty > line.quantity:
                raise ValueError(f"Invalid refund quantity for product {pid}")

            # Refund at the paid unit price, tax included
            line_amount = _money((line.line_total + line.line_tax) / line.quantity * qty)
            amount += line_amount
            await RefundItem.create(
                refund=refund,
                product_id=pid,
                name=line.name,
                quantity=qty,
                total=line_amount,
                using_db=conn
            )

        refund.amount = amount
        await refund.save(using_db=conn)

        mapping = await get_mapping(order.id, conn=conn)
        if ENABLE_ORDER_SYNC and mapping and mapping.doc_entry:
            await queue.enqueue(
                "order.refunded", "storefront",
                {"order_id": order.id, "refund_id": refund.id, "doc_entry": mapping.doc_entry},
                priority=1, conn=conn
            )

    return refund
