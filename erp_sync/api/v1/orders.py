import logging
from fastapi import APIRouter, HTTPException, status
from erp_sync.schemas.response import SuccessResponse
from erp_sync.services.order_service import place_order, get_order_by_id, complete_order, cancel_order, refund_order
from erp_sync.services.runtime import get_queue_manager
from erp_sync.schemas.order import OrderRequest, OrderPlacementResponse, OrderDetailResponse, RefundRequest

router = APIRouter()
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
log = logging.getLogger("uvicorn")


@router.post("/", status_code=status.HTTP_202_ACCEPTED, response_model=SuccessResponse)
async def create_order_endpoint(request_data: OrderRequest):
    """
    Places a new order. Returns 202 Accepted because the ERP sync is async.
    """
    try:
        items_data = [
            {
                "product_id": item.product_id,
                "quantity": item.quantity,
                "discount": item.discount,
            }
            for item in request_data.items
        ]

        if not items_data:
            raise HTTPException(status_code=400, detail="Order must contain items.")

        order = await place_order(
            customer=request_data.customer.model_dump(),
            payment_method=request_data.payment_method,
            items=items_data,
            queue=get_queue_manager(),
            payment_method_title=request_data.payment_method_title,
            shipping_total=request_data.shipping_total,
            transaction_id=request_data.transaction_id,
        )
        log.info(f"Order {order.id} placed successfully ({order.payment_method}).")
        data = OrderPlacementResponse(
            order_id=order.id,
            status=order.status,
            total_amount=order.total_amount,
            message="Order accepted and queued for ERP sync."
        ).model_dump()
        return SuccessResponse(data=data)
    except ValueError as e:
        log.error(f"Value error placing order: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except HTTPException as he:
        log.error(f"HTTP error placing order: {he.detail}")
        raise he
    except Exception as e:
        log.error(f"Error placing order: {e}")
        raise HTTPException(status_code=500, detail="Server failed to place order.")


@router.get("/{order_id}", response_model=SuccessResponse)
async def get_order_endpoint(order_id: int):
    """Fetches details for a specific order, including its ERP sync notes."""
    order = await get_order_by_id(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    items = [
        {
            "name": i.name,
            "sku": i.product.sku if i.product else None,
            "quantity": i.quantity,
            "line_total": str(i.line_total),
            "line_tax": str(i.line_tax),
        }
        for i in order.items
    ]

    data = OrderDetailResponse(
        id=order.id,
        status=order.status,
        payment_method=order.payment_method,
        total_amount=order.total_amount,
        items=items,
        notes=[n.note for n in order.notes],
        created_at=str(order.created_at)
    ).model_dump()
    return SuccessResponse(data=data)


@router.post("/{order_id}/complete", response_model=SuccessResponse)
async def complete_order_endpoint(order_id: int):
    """
    Marks the order as shipped; the ERP delivery note and invoice are queued.
    """
    try:
        order = await complete_order(order_id, get_queue_manager())
        data = OrderPlacementResponse(
            order_id=order.id,
            status=order.status,
            total_amount=order.total_amount,
            message="Order completed. ERP delivery queued."
        ).model_dump()
        return SuccessResponse(data=data)
    except ValueError as e:
        log.error(f"Value error completing order: {e}")
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/{order_id}/cancel", response_model=SuccessResponse)
async def cancel_order_endpoint(order_id: int):
    """
    Cancels the order, updates status to CANCELLED, and queues the ERP cancellation.
    """
    try:
        order = await cancel_order(order_id, get_queue_manager())
        data = OrderPlacementResponse(
            order_id=order.id,
            status=order.status,
            total_amount=order.total_amount,
            message="Order cancelled. ERP cancellation queued."
        ).model_dump()
        return SuccessResponse(data=data)
    except ValueError as e:
        log.error(f"Value error cancelling order: {e}")
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/{order_id}/refunds", status_code=status.HTTP_201_CREATED, response_model=SuccessResponse)
async def refund_order_endpoint(order_id: int, payload: RefundRequest):
    """Records a refund; the ERP credit note is queued."""
    try:
        refund = await refund_order(
            order_id,
            [item.model_dump() for item in payload.items],
            get_queue_manager(),
            reason=payload.reason,
        )
        return SuccessResponse(data={"refund_id": refund.id, "order_id": order_id, "amount": str(refund.amount)})
    except ValueError as e:
        log.error(f"Value error refunding order: {e}")
        raise HTTPException(status_code=400, detail=str(e))
