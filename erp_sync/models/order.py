from enum import Enum
from tortoise import fields, models


class OrderStatus(str, Enum):
    PENDING = "PENDING"  # Placed, waiting for payment/processing
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"  # Shipped to the customer (triggers ERP delivery)
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class Product(models.Model):
    id = fields.IntField(primary_key=True)
    name = fields.CharField(max_length=255)
    price = fields.DecimalField(max_digits=12, decimal_places=2)
    sku = fields.CharField(max_length=64, null=True, unique=True) # ERP ItemCode, NULL = unmapped
    barcode = fields.CharField(max_length=64, null=True)
    is_active = fields.BooleanField(default=True)

    class Meta:
        table = "products"
        indexes = [
            ("is_active",),
        ]


class Order(models.Model):
    id = fields.IntField(primary_key=True)
    customer_name = fields.CharField(max_length=255, default="")
    email = fields.CharField(max_length=255, default="")
    phone = fields.CharField(max_length=64, default="")
    address = fields.CharField(max_length=255, default="")
    city = fields.CharField(max_length=100, default="")
    payment_method = fields.CharField(max_length=64) # e.g., 'cod', 'bacs', 'stripe'
    payment_method_title = fields.CharField(max_length=128, default="")
    transaction_id = fields.CharField(max_length=128, null=True)
    status = fields.CharEnumField(OrderStatus, default=OrderStatus.PENDING)
    shipping_total = fields.DecimalField(max_digits=12, decimal_places=2, default=0)
    shipping_tax = fields.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_amount = fields.DecimalField(max_digits=14, decimal_places=2, default=0)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "orders"
        indexes = [
            ("status",),                 # Status-based filtering
            ("created_at",),             # Time-based queries
            ("status", "created_at"),    # Composite: status with time
        ]


class OrderItem(models.Model):
    id = fields.IntField(primary_key=True)
    order = fields.ForeignKeyField("models.Order", related_name="items")
    product = fields.ForeignKeyField("models.Product", related_name="order_items", null=True, on_delete=fields.SET_NULL)
    name = fields.CharField(max_length=255)
    quantity = fields.IntField()
    line_subtotal = fields.DecimalField(max_digits=14, decimal_places=2) # Before discounts
    line_total = fields.DecimalField(max_digits=14, decimal_places=2) # After discounts, before tax
    line_tax = fields.DecimalField(max_digits=14, decimal_places=2, default=0)

    class Meta:
        table = "order_items"
        indexes = [
            ("order_id",),              # Order line items
            ("product_id",),
        ]


class OrderNote(models.Model):
    id = fields.IntField(primary_key=True)
    order = fields.ForeignKeyField("models.Order", related_name="notes")
    note = fields.TextField()
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "order_notes"


class Refund(models.Model):
    id = fields.IntField(primary_key=True)
    order = fields.ForeignKeyField("models.Order", related_name="refunds")
    amount = fields.DecimalField(max_digits=14, decimal_places=2)
    reason = fields.CharField(max_length=255, default="")
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "refunds"


class RefundItem(models.Model):
    id = fields.IntField(primary_key=True)
    refund = fields.ForeignKeyField("models.Refund", related_name="items")
    product = fields.ForeignKeyField("models.Product", related_name="refund_items", null=True, on_delete=fields.SET_NULL)
    name = fields.CharField(max_length=255)
    quantity = fields.IntField()
    total = fields.DecimalField(max_digits=14, decimal_places=2)

    class Meta:
        table = "refund_items"
