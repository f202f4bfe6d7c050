from typing import Any, Dict

from pydantic import BaseModel, Field


class WebhookEvent(BaseModel):
    """Event pushed by the ERP."""
    event_type: str = Field(..., description="e.g. 'item.stock_changed'")
    payload: Dict[str, Any] = Field(default_factory=dict)


class WebhookAccepted(BaseModel):
    status: str = "accepted"
    event_id: int
