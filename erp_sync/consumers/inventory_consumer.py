import logging
import math
from typing import Any, Dict, Optional

from tortoise.transactions import in_transaction

from erp_sync.core.config import DEFAULT_WAREHOUSE, ENABLE_INVENTORY_SYNC
from erp_sync.erp.client import ErpClient
from erp_sync.erp.filters import entity
from erp_sync.models.inventory import Inventory
from erp_sync.models.order import Product
from erp_sync.schemas.events import (
    ItemCodeChangedPayload,
    ItemCreatedPayload,
    ItemDeactivatedPayload,
    ItemStockPayload,
    ItemUpdatedPayload,
)
from erp_sync.services.storefront import get_product_by_sku, update_stock

log = logging.getLogger("inventory_consumer")


def available_quantity(item: Dict[str, Any], warehouse: str = DEFAULT_WAREHOUSE) -> int:
    """Available = InStock - Committed in the web warehouse, never negative."""
    for info in item.get("ItemWarehouseInfoCollection") or []:
        if info.get("WarehouseCode") == warehouse:
            in_stock = float(info.get("InStock") or 0)
            committed = float(info.get("Committed") or 0)
            return max(0, math.floor(in_stock - committed))
    return 0


async def refresh_stock(client: ErpClient, sku: str) -> Optional[int]:
    """
    Pulls the current stock of one ERP item and writes it to the local
    inventory. Returns the available quantity, or None when skipped.
    """
    if not ENABLE_INVENTORY_SYNC:
        return None

    if await get_product_by_sku(sku) is None:
        log.info(f"Item {sku} is not mapped to a product, skipping stock refresh")
        return None

    item = await client.get(entity("Items", sku), {"$select": "ItemCode,ItemName,Valid,ItemWarehouseInfoCollection"})
    available = available_quantity(item)
    await update_stock(sku, available)
    return available


async def handle_stock_changed(payload: ItemStockPayload, client: ErpClient):
    """Covers both item.stock_changed and item.returned."""
    await refresh_stock(client, payload.item_code)


async def handle_item_created(payload: ItemCreatedPayload):
    """New ERP item: create an inactive product with zero stock until it is curated."""
    existing = await get_product_by_sku(payload.item_code)
    if existing:
        log.info(f"Item {payload.item_code} already mapped to product {existing.id}, skipping creation")
        return

    async with in_transaction() as conn:
        product = await Product.create(
            name=payload.item_name,
            price=0,
            sku=payload.item_code,
            barcode=payload.first_barcode(),
            is_active=False,
            using_db=conn,
        )
        await Inventory.create(product=product, available_qty=0, using_db=conn)
    log.info(f"Draft product {product.id} created for ERP item {payload.item_code}")


async def handle_item_updated(payload: ItemUpdatedPayload):
    product = await get_product_by_sku(payload.item_code)
    if product is None:
        log.info(f"Item {payload.item_code} not mapped, skipping update")
        return

    update_fields = []
    if payload.item_name and payload.item_name != product.name:
        product.name = payload.item_name
        update_fields.append("name")
    if payload.barcode and payload.barcode != product.barcode:
        product.barcode = payload.barcode
        update_fields.append("barcode")

    if update_fields:
        await product.save(update_fields=update_fields)
        log.info(f"Product {product.id} updated from ERP item {payload.item_code}: {', '.join(update_fields)}")


async def handle_item_code_changed(payload: ItemCodeChangedPayload, client: ErpClient):
    """ERP re-keyed an item: move the SKU on the local product, then refresh its stock."""
    product = await get_product_by_sku(payload.old_item_code)
    if product is None:
        log.info(f"Old item code {payload.old_item_code} not mapped, skipping")
        return

    product.sku = payload.new_item_code
    await product.save(update_fields=["sku"])
    log.info(f"Product {product.id} SKU changed {payload.old_item_code} -> {payload.new_item_code}")
    await refresh_stock(client, payload.new_item_code)


async def handle_item_deactivated(payload: ItemDeactivatedPayload):
    updated = await Product.filter(sku=payload.item_code, is_active=True).update(is_active=False)
    if updated:
        log.info(f"Product for ERP item {payload.item_code} deactivated")
