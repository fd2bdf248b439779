"""Pydantic schemas for the webhook audit log API."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class WebhookEventResponse(BaseModel):
    id: str
    conversation_id: str
    event_type: str
    message_type: Optional[str] = None
    payload: dict[str, Any] = {}
    processed: bool
    outcome: Optional[str] = None
    status_code: Optional[int] = None
    created_at: datetime

    model_config = {"from_attributes": True}
