"""Pydantic schemas for subscription endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator

SUBSCRIPTION_STATUSES = (
    "not_started",
    "incomplete",
    "incomplete_expired",
    "trialing",
    "active",
    "past_due",
    "canceled",
    "unpaid",
    "paused",
)


class SubscriptionUpsert(BaseModel):
    subscription_id: Optional[str] = None
    price_id: Optional[str] = None
    status: str = Field(..., pattern=r"^(" + "|".join(SUBSCRIPTION_STATUSES) + r")$")
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False

    @model_validator(mode="after")
    def _check_period(self):
        if self.current_period_start and self.current_period_end:
            if self.current_period_end <= self.current_period_start:
                raise ValueError("current_period_end must be after current_period_start")
        return self


class SubscriptionResponse(BaseModel):
    user_id: str
    subscription_id: Optional[str] = None
    price_id: Optional[str] = None
    status: str
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    tier: Optional[str] = None

    model_config = {"from_attributes": True}
