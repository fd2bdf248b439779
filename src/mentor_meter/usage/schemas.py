"""Pydantic schemas for usage endpoints."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class DocumentUsageRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    document_type: str = Field(..., min_length=1, max_length=100)
    tokens: int = Field(default=0, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ResourceUsage(BaseModel):
    used: int
    limit: Optional[int] = None
    remaining: Optional[int] = None
    percentage: Optional[float] = None


class UsageSummary(BaseModel):
    user_id: str
    usage_period_id: str
    tier: str
    period_start: datetime
    period_end: datetime
    resources: dict[str, ResourceUsage]
    overage: dict[str, Any] = {}


class UsagePeriodResponse(BaseModel):
    id: str
    user_id: str
    period_start: datetime
    period_end: datetime
    tier: str
    price_id: Optional[str] = None
    sessions_used: int
    minutes_used: int
    documents_generated: int
    tokens_consumed: int
    last_conversation_at: Optional[datetime] = None
    last_document_generated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
