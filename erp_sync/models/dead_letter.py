from tortoise import fields, models

from erp_sync.models.event import EventSource


class DeadLetterEvent(models.Model):
    """
    Permanently failed queue event, set aside for manual inspection.
    Keeps a copy of the payload and the ordered error history; the original
    queue row stays behind with status 'dead'.
    """
    id = fields.IntField(primary_key=True)
    original_event_id = fields.IntField(unique=True) # Reference only, not a FK
    event_type = fields.CharField(max_length=64)
    source = fields.CharEnumField(EventSource, max_length=16)
    payload = fields.JSONField(default=dict)
    error_history = fields.JSONField(default=list)
    total_attempts = fields.IntField(default=0)
    resolved = fields.BooleanField(default=False)
    resolved_at = fields.DatetimeField(null=True)
    resolution_note = fields.TextField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "dead_letter_queue"
        indexes = [
            ("resolved",),
            ("event_type",),
        ]
