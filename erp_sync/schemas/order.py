from pydantic import BaseModel, Field
from typing import List, Optional
from decimal import Decimal

from erp_sync.models.order import OrderStatus


class CustomerDetails(BaseModel):
    """Billing/shipping contact copied to the ERP user fields."""
    name: str
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""

class OrderItemRequest(BaseModel):
    """Schema for a single item in the order request."""
    product_id: int
    quantity: int = Field(..., gt=0)
    discount: Decimal = Field(Decimal("0"), ge=0, description="Line discount amount before tax.")

class OrderRequest(BaseModel):
    """Schema for the full order placement request body."""
    customer: CustomerDetails
    payment_method: str = Field(..., description="Storefront payment method slug, e.g. 'cod', 'bacs', 'stripe'.")
    payment_method_title: str = ""
    transaction_id: Optional[str] = None
    shipping_total: Decimal = Field(Decimal("0"), ge=0)
    items: List[OrderItemRequest]

class OrderPlacementResponse(BaseModel):
    """Response schema for a newly placed order (202 Accepted)."""
    order_id: int
    status: OrderStatus
    total_amount: Decimal
    message: str

class OrderItemResponse(BaseModel):
    """Schema for an item inside the detailed order response."""
    name: str
    sku: Optional[str] = None
    quantity: int
    line_total: str  # Use string for Decimal type serialization
    line_tax: str

class OrderDetailResponse(BaseModel):
    """Schema for fetching detailed order information."""
    id: int
    status: OrderStatus
    payment_method: str
    total_amount: Decimal
    items: List[OrderItemResponse]
    notes: List[str] = []
    created_at: str

class RefundItemRequest(BaseModel):
    product_id: int
    quantity: int = Field(..., gt=0)

class RefundRequest(BaseModel):
    """Schema for a (partial) refund of an order."""
    items: List[RefundItemRequest]
    reason: str = ""
