"""Pydantic schemas for entitlement checks."""

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

ActionType = Literal["conversation", "document_generation"]


class EntitlementCheckRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    action_type: ActionType
    estimated_duration_minutes: Optional[float] = Field(None, ge=0)
    estimated_tokens: Optional[int] = Field(None, ge=0)
    document_type: Optional[str] = None


class UpgradeSuggestion(BaseModel):
    tier: str
    name: str
    benefits: list[str] = []


class TierInfo(BaseModel):
    id: str
    name: str
    minutes_per_session: int
    team_access: bool = False
    custom_personas: bool = False
    unlimited_tokens: bool = False


class EntitlementResult(BaseModel):
    """Outcome of one entitlement evaluation.

    ``None`` in ``limits`` or ``remaining`` means the resource is unlimited;
    such resources are also named in ``unlimited``.
    """

    allowed: bool
    reason: Optional[str] = None
    action_type: ActionType
    subscription_status: Optional[str] = None
    current_usage: dict[str, int] = {}
    limits: dict[str, Optional[int]] = {}
    remaining: dict[str, Optional[int]] = {}
    overage: dict[str, Any] = {}
    unlimited: list[str] = []
    warnings: list[str] = []
    messages: list[str] = []
    upgrade_required: bool = False
    upgrade_suggestion: Optional[UpgradeSuggestion] = None
    tier_info: Optional[TierInfo] = None


class TierResponse(BaseModel):
    id: str
    name: str
    sessions_limit: Optional[int] = None
    minutes_limit: Optional[int] = None
    documents_limit: Optional[int] = None
    tokens_limit: Optional[int] = None
    minutes_per_session: int
    team_access: bool = False
    custom_personas: bool = False
    unlimited_tokens: bool = False
    upgrade_benefits: list[str] = []
