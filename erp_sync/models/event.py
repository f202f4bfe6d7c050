from enum import Enum
from tortoise import fields, models


class EventStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"  # Claimed by a worker (locked_by / locked_at set)
    COMPLETED = "completed"
    DEAD = "dead"  # Exceeded max attempts, copied to the dead letter table


class EventSource(str, Enum):
    ERP = "erp"
    STOREFRONT = "storefront"


class QueueEvent(models.Model):
    """
    Durable work item. Rows are inserted by producers (optionally inside their
    own transaction) and claimed by the queue worker with a locked dequeue.
    """
    id = fields.IntField(primary_key=True)
    event_type = fields.CharField(max_length=64) # e.g., 'order.placed'
    source = fields.CharEnumField(EventSource, max_length=16)
    payload = fields.JSONField(default=dict)
    status = fields.CharEnumField(EventStatus, max_length=16, default=EventStatus.PENDING)
    priority = fields.IntField(default=5) # 1 = most urgent
    attempts = fields.IntField(default=0)
    max_attempts = fields.IntField(default=5)
    last_error = fields.TextField(null=True)
    error_history = fields.JSONField(default=list)
    process_after = fields.DatetimeField()
    locked_by = fields.CharField(max_length=128, null=True)
    locked_at = fields.DatetimeField(null=True)
    completed_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "event_queue"
        indexes = [
            ("status", "process_after"),  # Dequeue scan
            ("status", "priority", "created_at"),  # Dequeue ordering
            ("status", "completed_at"),  # Retention cleanup
            ("locked_at",),
        ]
