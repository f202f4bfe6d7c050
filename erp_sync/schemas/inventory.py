from typing import Optional
from pydantic import BaseModel, Field


class InventoryResponse(BaseModel):
    """Schema for fetching product stock."""
    product_id: int
    sku: Optional[str] = None
    available_qty: int
    updated_at: str

class ProductRequest(BaseModel):
    name: str = Field(..., description="Product name shown in the storefront.")
    price: float = Field(..., gt=0, description="Selling price of the item.")
    sku: Optional[str] = Field(None, description="ERP ItemCode. Products without one are not synced.")
    barcode: Optional[str] = Field(None, description="ISBN/EAN barcode.")
    initial_qty: int = Field(0, ge=0, description="Initial available stock quantity.")
    is_active: bool = Field(True, description="Whether the product is on sale.")
