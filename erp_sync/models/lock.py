from tortoise import fields, models


class AdvisoryLock(models.Model):
    """
    Cooperative, time-bounded lock. The primary key on name is the only
    arbiter; an expired row may be taken over by the next caller.
    """
    name = fields.CharField(max_length=128, primary_key=True)
    holder = fields.CharField(max_length=128)
    acquired_at = fields.DatetimeField(auto_now_add=True)
    expires_at = fields.DatetimeField()

    class Meta:
        table = "advisory_locks"
