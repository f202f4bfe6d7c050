from enum import Enum
from tortoise import fields, models


class SyncStatus(str, Enum):
    PENDING = "pending"
    SO_CREATED = "so_created"
    DP_CREATED = "dp_created"
    DELIVERED = "delivered"
    INVOICED = "invoiced"
    CANCELED = "canceled"
    REFUNDED = "refunded"
    ERROR = "error"
    FAILED = "failed"


# Statuses meaning the top-level sales order exists; the saga must not run again.
SYNCED_STATUSES = {
    SyncStatus.SO_CREATED,
    SyncStatus.DP_CREATED,
    SyncStatus.DELIVERED,
    SyncStatus.INVOICED,
    SyncStatus.CANCELED,
    SyncStatus.REFUNDED,
}


class OrderSyncMapping(models.Model):
    """
    Links a local order to the chain of ERP documents created for it.
    Written only by the handlers working on that order.
    """
    id = fields.IntField(primary_key=True)
    order_id = fields.IntField(unique=True) # Local order id (reference, not a FK)
    business_key = fields.CharField(max_length=64, null=True) # ERP NumAtCard
    payment_type = fields.CharField(max_length=16, default="prepaid") # 'cod' | 'prepaid'
    doc_entry = fields.IntField(null=True) # Sales order
    doc_num = fields.IntField(null=True)
    down_payment_entry = fields.IntField(null=True)
    payment_entry = fields.IntField(null=True)
    delivery_entry = fields.IntField(null=True)
    invoice_entry = fields.IntField(null=True)
    credit_note_entry = fields.IntField(null=True) # Latest credit note
    refunds = fields.JSONField(default=dict) # refund id -> {"credit_note": .., "payment": ..}
    sync_status = fields.CharEnumField(SyncStatus, max_length=16, default=SyncStatus.PENDING)
    retry_count = fields.IntField(default=0)
    next_retry_at = fields.DatetimeField(null=True)
    error_message = fields.TextField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "order_sync_map"
        indexes = [
            ("doc_entry",),
            ("sync_status", "next_retry_at"),  # Retry candidates
        ]
