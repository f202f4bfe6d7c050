from enum import Enum
from tortoise import fields, models


class CircuitState(str, Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Fail fast
    HALF_OPEN = "half_open"  # One probe call allowed


class CircuitBreakerState(models.Model):
    """Persisted circuit breaker state, one row per protected dependency."""
    id = fields.IntField(primary_key=True)
    name = fields.CharField(max_length=64, unique=True) # e.g., 'erp'
    state = fields.CharEnumField(CircuitState, max_length=16, default=CircuitState.CLOSED)
    failure_count = fields.IntField(default=0)
    last_failure_at = fields.DatetimeField(null=True)
    opened_at = fields.DatetimeField(null=True)
    version = fields.IntField(default=0) # Bumped on every write (optimistic update)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "circuit_breaker_state"
