from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ResolveRequest(BaseModel):
    note: str = Field("", description="Why the dead letter needs no further processing.")


class DeadLetterResponse(BaseModel):
    id: int
    original_event_id: int
    event_type: str
    source: str
    payload: Dict[str, Any]
    error_history: List[Any]
    total_attempts: int
    resolved: bool
    resolution_note: Optional[str] = None
    created_at: str
