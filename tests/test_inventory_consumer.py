from decimal import Decimal

import pytest
from unittest.mock import patch

from erp_sync.consumers.inventory_consumer import (
    available_quantity,
    handle_item_code_changed,
    handle_item_created,
    handle_item_deactivated,
    handle_item_updated,
    handle_stock_changed,
    refresh_stock,
)
from erp_sync.core.exceptions import ErpApiError
from erp_sync.models.inventory import Inventory
from erp_sync.models.order import Product
from erp_sync.schemas.events import (
    ItemCodeChangedPayload,
    ItemCreatedPayload,
    ItemDeactivatedPayload,
    ItemStockPayload,
    ItemUpdatedPayload,
)


async def make_product(sku: str, qty: int = 0, **fields) -> Product:
    product = await Product.create(name=fields.pop("name", sku), price=Decimal("10"), sku=sku, **fields)
    await Inventory.create(product=product, available_qty=qty)
    return product


def test_available_quantity_is_in_stock_minus_committed():
    item = {"ItemWarehouseInfoCollection": [
        {"WarehouseCode": "MAIN", "InStock": 100, "Committed": 0},
        {"WarehouseCode": "WEB-GEN", "InStock": 12.7, "Committed": 2},
    ]}
    assert available_quantity(item, "WEB-GEN") == 10


def test_available_quantity_never_negative_and_zero_without_warehouse():
    item = {"ItemWarehouseInfoCollection": [{"WarehouseCode": "WEB-GEN", "InStock": 1, "Committed": 5}]}
    assert available_quantity(item, "WEB-GEN") == 0
    assert available_quantity({"ItemWarehouseInfoCollection": []}, "WEB-GEN") == 0
    assert available_quantity({}, "WEB-GEN") == 0


@pytest.mark.asyncio
async def test_stock_change_updates_local_inventory(db, erp):
    product = await make_product("BK-001", qty=3)
    erp.add_item("BK-001", in_stock=20, committed=5)

    await handle_stock_changed(ItemStockPayload(ItemCode="BK-001"), erp)

    inventory = await Inventory.get(product_id=product.id)
    assert inventory.available_qty == 15
    assert erp.calls[0][1] == "Items('BK-001')"


@pytest.mark.asyncio
async def test_stock_refresh_for_unmapped_item_does_not_call_erp(db, erp):
    assert await refresh_stock(erp, "UNKNOWN") is None
    assert erp.calls == []


@pytest.mark.asyncio
async def test_stock_refresh_skipped_when_inventory_sync_disabled(db, erp):
    await make_product("BK-001")

    with patch("erp_sync.consumers.inventory_consumer.ENABLE_INVENTORY_SYNC", False):
        assert await refresh_stock(erp, "BK-001") is None
    assert erp.calls == []


@pytest.mark.asyncio
async def test_stock_refresh_error_propagates(db, erp):
    await make_product("BK-001")
    erp.fail("Items")

    with pytest.raises(ErpApiError):
        await refresh_stock(erp, "BK-001")


@pytest.mark.asyncio
async def test_item_created_adds_inactive_product_with_zero_stock(db):
    payload = ItemCreatedPayload.model_validate({
        "ItemCode": "NEW-1",
        "ItemName": "New Novel",
        "ItemBarCodeCollection": [{"Barcode": None}, {"Barcode": "978000000001"}],
    })

    await handle_item_created(payload)
    await handle_item_created(payload)

    products = await Product.filter(sku="NEW-1")
    assert len(products) == 1
    product = products[0]
    assert product.is_active is False
    assert product.name == "New Novel"
    assert product.barcode == "978000000001"
    assert (await Inventory.get(product_id=product.id)).available_qty == 0


@pytest.mark.asyncio
async def test_item_updated_changes_name_and_barcode(db):
    product = await make_product("BK-001", name="Old Title")

    await handle_item_updated(ItemUpdatedPayload(ItemCode="BK-001", ItemName="New Title", BarCode="123"))

    await product.refresh_from_db()
    assert product.name == "New Title"
    assert product.barcode == "123"


@pytest.mark.asyncio
async def test_item_updated_for_unmapped_item_is_ignored(db):
    await handle_item_updated(ItemUpdatedPayload(ItemCode="NOPE", ItemName="Whatever"))
    assert await Product.all().count() == 0


@pytest.mark.asyncio
async def test_item_code_change_moves_sku_and_refreshes_stock(db, erp):
    product = await make_product("OLD-1", qty=1)
    erp.add_item("NEW-1", in_stock=7)

    await handle_item_code_changed(ItemCodeChangedPayload(OldItemCode="OLD-1", NewItemCode="NEW-1"), erp)

    await product.refresh_from_db()
    assert product.sku == "NEW-1"
    assert (await Inventory.get(product_id=product.id)).available_qty == 7


@pytest.mark.asyncio
async def test_item_deactivated_hides_product(db):
    product = await make_product("BK-001")

    await handle_item_deactivated(ItemDeactivatedPayload(ItemCode="BK-001"))
    await handle_item_deactivated(ItemDeactivatedPayload(ItemCode="BK-001"))

    await product.refresh_from_db()
    assert product.is_active is False
