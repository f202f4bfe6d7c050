import logging
from fastapi import APIRouter, HTTPException, status
from tortoise.exceptions import IntegrityError
from tortoise.transactions import in_transaction
from erp_sync.models.inventory import Inventory
from erp_sync.models.order import Product
from erp_sync.schemas.inventory import InventoryResponse, ProductRequest
from erp_sync.services.runtime import get_queue_manager

log = logging.getLogger("uvicorn")

router = APIRouter()


@router.get("/{product_id}", response_model=InventoryResponse)
async def get_inventory_stock(product_id: int):
    """Fetches the available stock for a specific product."""
    inventory = await Inventory.get_or_none(product_id=product_id).prefetch_related("product")
    if not inventory:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inventory not found for product.")

    return InventoryResponse(
        product_id=inventory.product_id,
        sku=inventory.product.sku,
        available_qty=inventory.available_qty,
        updated_at=str(inventory.updated_at)
    )


@router.post("/products", status_code=status.HTTP_201_CREATED)
async def add_product(item_data: ProductRequest):
    """
    Adds a new product and its initial inventory.
    """
    try:
        async with in_transaction() as conn:
            product = await Product.create(
                name=item_data.name,
                price=item_data.price,
                sku=item_data.sku or None,
                barcode=item_data.barcode,
                is_active=item_data.is_active,
                using_db=conn
            )
            inventory = await Inventory.create(
                product=product,
                available_qty=item_data.initial_qty,
                using_db=conn
            )
    except IntegrityError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"SKU {item_data.sku} is already in use.")

    return {
        "message": f"Successfully added '{item_data.name}'.",
        "product_id": product.id,
        "initial_stock": inventory.available_qty
    }


@router.post("/{sku}/refresh", status_code=status.HTTP_202_ACCEPTED)
async def refresh_stock(sku: str):
    """Queues a stock refresh of one SKU from the ERP."""
    if not await Product.exists(sku=sku):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No product with SKU {sku}.")
    event_id = await get_queue_manager().enqueue("item.stock_changed", "storefront", {"ItemCode": sku}, priority=2)
    return {"message": f"Stock refresh queued for {sku}.", "event_id": event_id}
