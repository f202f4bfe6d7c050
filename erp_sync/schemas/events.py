from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field


class EventPayload(BaseModel):
    """Base for typed event payloads. Unknown keys are kept, ERP names accepted as aliases."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")


# --- Storefront-originated order events ---

class OrderPlacedPayload(EventPayload):
    order_id: int


class OrderDeliveredPayload(EventPayload):
    order_id: int
    doc_entry: Optional[int] = None


class OrderRefundedPayload(EventPayload):
    order_id: int
    refund_id: int
    doc_entry: Optional[int] = None


class OrderCancelledPayload(EventPayload):
    """Storefront cancellations carry order_id; ERP cancellations carry DocEntry."""
    order_id: Optional[int] = None
    doc_entry: Optional[int] = Field(None, alias="DocEntry")


# --- ERP-originated events ---

class OrderStatusChangedPayload(EventPayload):
    doc_entry: int = Field(..., alias="DocEntry")
    status: str = Field("", alias="Status")


class ItemStockPayload(EventPayload):
    item_code: str = Field(..., alias="ItemCode", min_length=1)


class ItemBarcode(EventPayload):
    barcode: Optional[str] = Field(None, alias="Barcode")


class ItemCreatedPayload(EventPayload):
    item_code: str = Field(..., alias="ItemCode", min_length=1)
    item_name: str = Field(..., alias="ItemName", min_length=1)
    barcode: Optional[str] = Field(None, alias="BarCode")
    barcodes: List[ItemBarcode] = Field(default_factory=list, alias="ItemBarCodeCollection")

    def first_barcode(self) -> Optional[str]:
        if self.barcode:
            return self.barcode
        for entry in self.barcodes:
            if entry.barcode:
                return entry.barcode
        return None


class ItemUpdatedPayload(EventPayload):
    item_code: str = Field(..., alias="ItemCode", min_length=1)
    item_name: Optional[str] = Field(None, alias="ItemName")
    barcode: Optional[str] = Field(None, alias="BarCode")


class ItemCodeChangedPayload(EventPayload):
    old_item_code: str = Field(..., alias="OldItemCode", min_length=1)
    new_item_code: str = Field(..., alias="NewItemCode", min_length=1)


class ItemDeactivatedPayload(EventPayload):
    item_code: str = Field(..., alias="ItemCode", min_length=1)


PAYLOAD_TYPES: Dict[str, Type[EventPayload]] = {
    "order.placed": OrderPlacedPayload,
    "order.delivered": OrderDeliveredPayload,
    "order.refunded": OrderRefundedPayload,
    "order.cancelled": OrderCancelledPayload,
    "order.status_changed": OrderStatusChangedPayload,
    "item.stock_changed": ItemStockPayload,
    "item.returned": ItemStockPayload,
    "item.created": ItemCreatedPayload,
    "item.updated": ItemUpdatedPayload,
    "item.code_changed": ItemCodeChangedPayload,
    "item.deactivated": ItemDeactivatedPayload,
}


class EventEnvelope(BaseModel):
    """Common wrapper around a decoded event payload."""
    id: Optional[int] = None
    event_type: str
    source: str
    payload: EventPayload
    attempts: int = 0


def decode_event(
    event_type: str,
    payload: Dict[str, Any],
    source: str = "storefront",
    event_id: Optional[int] = None,
    attempts: int = 0,
) -> EventEnvelope:
    """Validates the raw payload against the model for its type. Raises KeyError for unknown types."""
    model = PAYLOAD_TYPES[event_type]
    return EventEnvelope(
        id=event_id,
        event_type=event_type,
        source=source,
        payload=model.model_validate(payload or {}),
        attempts=attempts,
    )
