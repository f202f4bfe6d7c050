"""
Builders for the ERP document payloads created from storefront orders.

Prices are sent tax inclusive (PriceAfterVAT) so the ERP recomputes the net
amounts with its own tax codes. Numbers are emitted as floats.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from tortoise import timezone

from erp_sync.core.config import (
    ACCOUNT_CODE,
    CARD_METHODS,
    COD_METHODS,
    CREDIT_CARD_ACCOUNT,
    CREDIT_CARD_CODE,
    DEFAULT_CUSTOMER,
    DEFAULT_WAREHOUSE,
    DOC_DUE_DAYS,
    SALES_ORDER_SERIES,
    SHIPPING_ITEM_CODE,
    SHIPPING_TAX_CODE,
    TAX_CODE,
    TRANSFER_ACCOUNT,
    map_payment_method,
)
from erp_sync.core.exceptions import MappingError
from erp_sync.models.order import Order, OrderItem

ERP_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S"
ERP_DATE_FORMAT = "%Y-%m-%d"

# ERP object type codes used as BaseType on copied document lines
OBJ_INVOICE = 13
OBJ_DELIVERY = 15
OBJ_SALES_ORDER = 17


def business_key(order_id: int) -> str:
    """Deterministic ERP reference (NumAtCard) for a storefront order."""
    return "WEB-SO-%06d" % order_id


def is_cod(order: Order) -> bool:
    return (order.payment_method or "").lower() in COD_METHODS


def unit_price(item: OrderItem) -> float:
    """Tax-inclusive price per unit."""
    if item.quantity <= 0:
        return 0.0
    return float((item.line_total + item.line_tax) / item.quantity)


def discount_percent(item: OrderItem) -> float:
    subtotal = float(item.line_subtotal)
    total = float(item.line_total)
    if subtotal <= 0:
        return 0.0
    return round(max(0.0, (subtotal - total) / subtotal * 100), 2)


def _item_sku(item: OrderItem) -> Optional[str]:
    product = item.product
    if product is None:
        return None
    return product.sku or None


def build_document_lines(order: Order) -> List[Dict[str, Any]]:
    """
    One line per item with a mapped SKU. Raises MappingError when no item
    of the order can be mapped.
    """
    lines = []
    for item in order.items:
        sku = _item_sku(item)
        if not sku:
            continue
        lines.append({
            "ItemCode": sku,
            "Quantity": float(item.quantity),
            "PriceAfterVAT": unit_price(item),
            "TaxCode": TAX_CODE,
            "DiscountPercent": discount_percent(item),
            "WarehouseCode": DEFAULT_WAREHOUSE,
        })

    if not lines:
        products = []
        for item in order.items:
            sku = _item_sku(item)
            products.append(f"{item.name} (SKU: {sku})" if sku else f"{item.name} (no SKU - unmapped)")
        raise MappingError(
            "No mapped ERP items in order. Products: " + "; ".join(products),
            {"order_id": order.id},
        )
    return lines


def build_shipping_line(order: Order) -> Optional[Dict[str, Any]]:
    """Shipping as a zero-rated service line, or None when the order ships free."""
    shipping_total = float(order.shipping_total or 0)
    if shipping_total <= 0:
        return None
    return {
        "ItemCode": SHIPPING_ITEM_CODE,
        "Quantity": 1.0,
        "PriceAfterVAT": round(shipping_total + float(order.shipping_tax or 0), 2),
        "TaxCode": SHIPPING_TAX_CODE,
        "DiscountPercent": 0.0,
    }


def build_sales_order(order: Order, key: Optional[str] = None) -> Dict[str, Any]:
    """Sales order payload; customer details travel in user fields on the default customer."""
    if not DEFAULT_CUSTOMER:
        raise MappingError("Default ERP customer is not configured", {"order_id": order.id})

    lines = build_document_lines(order)
    shipping_line = build_shipping_line(order)
    if shipping_line:
        lines.append(shipping_line)

    key = key or business_key(order.id)
    doc_date: datetime = order.created_at or timezone.now()

    return {
        "CardCode": DEFAULT_CUSTOMER,
        "Series": SALES_ORDER_SERIES,
        "NumAtCard": key,
        "DocDate": doc_date.strftime(ERP_DATETIME_FORMAT),
        "TaxDate": doc_date.strftime(ERP_DATETIME_FORMAT),
        "DocDueDate": (doc_date + timedelta(days=DOC_DUE_DAYS)).strftime(ERP_DATETIME_FORMAT),
        "AccountCode": ACCOUNT_CODE,
        "U_Web_Customer_Name": (order.customer_name or "")[:100],
        "U_Delivery_Address": (order.address or "")[:254],
        "U_Delivery_City": (order.city or "")[:100],
        "U_Web_Customer_Mobile_No": order.phone or "",
        "U_Web_Customer_Email": order.email or "",
        "U_Payment_Term": "COD" if is_cod(order) else "Prepaid",
        "U_Payment_Method": map_payment_method(order.payment_method, order.payment_method_title),
        "U_Web_Sales_Order_Number": key,
        "DocumentLines": lines,
    }


def build_down_payment(order: Order, key: Optional[str] = None) -> Dict[str, Any]:
    """Down payment invoice: same content as the sales order, in its own numbering series."""
    payload = build_sales_order(order, key)
    payload["DownPaymentType"] = "dptInvoice"
    payload.pop("Series", None)
    return payload


def build_incoming_payment(order: Order, doc_entry: int, invoice_type: str = "it_DownPayment") -> Dict[str, Any]:
    """
    Incoming payment applied to a down payment invoice. Card methods book to
    the configured credit card; everything else is a bank transfer.
    """
    total = float(order.total_amount)
    doc_date = (order.created_at or timezone.now()).strftime(ERP_DATE_FORMAT)

    payload = {
        "CardCode": DEFAULT_CUSTOMER,
        "DocType": "rCustomer",
        "DocDate": doc_date,
        "PaymentInvoices": [{
            "DocEntry": doc_entry,
            "SumApplied": total,
            "InvoiceType": invoice_type,
            "InstallmentId": 1,
        }],
    }

    method = (order.payment_method or "").lower()
    if method in CARD_METHODS and CREDIT_CARD_CODE and CREDIT_CARD_ACCOUNT:
        payload["PaymentCreditCards"] = [{
            "CreditCard": int(CREDIT_CARD_CODE),
            "CreditAcct": CREDIT_CARD_ACCOUNT,
            "CreditSum": total,
            "CardValidUntil": (timezone.now() + timedelta(days=5 * 365)).strftime(ERP_DATE_FORMAT),
            "VoucherNum": str(order.id),
        }]
        return payload

    if not TRANSFER_ACCOUNT:
        raise MappingError("Transfer account not configured", {"order_id": order.id})
    payload["TransferAccount"] = TRANSFER_ACCOUNT
    payload["TransferSum"] = total
    payload["TransferDate"] = doc_date
    payload["TransferReference"] = order.transaction_id or f"WEB-{order.id}"
    return payload


def build_copy_lines(source_document: Dict[str, Any], base_type: int) -> List[Dict[str, Any]]:
    """Lines that copy every line of a base document (delivery from order, invoice from delivery)."""
    base_entry = source_document["DocEntry"]
    return [
        {"BaseType": base_type, "BaseEntry": base_entry, "BaseLine": index}
        for index, _ in enumerate(source_document.get("DocumentLines") or [])
    ]
