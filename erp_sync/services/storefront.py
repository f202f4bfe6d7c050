import logging
from typing import Any, Optional

from erp_sync.models.inventory import Inventory
from erp_sync.models.order import Order, OrderNote, OrderStatus, Product, Refund

log = logging.getLogger("storefront")


async def get_order(order_id: int, conn: Any = None) -> Optional[Order]:
    """Fetches an order with its line items and their products."""
    return await Order.filter(id=order_id).using_db(conn).prefetch_related("items", "items__product").first()


async def get_refund(refund_id: int) -> Optional[Refund]:
    return await Refund.filter(id=refund_id).prefetch_related("items", "items__product").first()


async def add_order_note(order_id: int, note: str, conn: Any = None) -> None:
    await OrderNote.create(order_id=order_id, note=note, using_db=conn)


async def set_order_status(order_id: int, status: OrderStatus, conn: Any = None) -> bool:
    """Sets the order status. Returns False if the order is missing or already in that status."""
    updated = await Order.filter(id=order_id).exclude(status=status).using_db(conn).update(status=status)
    return updated == 1


async def get_product_by_sku(sku: str) -> Optional[Product]:
    return await Product.get_or_none(sku=sku)


async def update_stock(sku: str, quantity: int) -> bool:
    """
    Sets the available quantity for the product with this SKU.
    Idempotent: returns False when the product is unknown or the stock is unchanged.
    """
    product = await Product.get_or_none(sku=sku)
    if product is None:
        log.warning(f"Stock update for unknown SKU {sku} ignored")
        return False

    inventory, created = await Inventory.get_or_create(product=product, defaults={"available_qty": quantity})
    if not created and inventory.available_qty == quantity:
        return False

    if not created:
        inventory.available_qty = quantity
        await inventory.save(update_fields=["available_qty", "updated_at"])
    log.info(f"Stock for {sku} set to {quantity}")
    return True
