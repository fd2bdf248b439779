"""Pydantic schemas for conversation endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ConversationCreate(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    provider_conversation_id: str = Field(..., min_length=1, max_length=255)
    persona: Optional[str] = None


class ConversationResponse(BaseModel):
    id: str
    user_id: str
    provider_conversation_id: str
    status: str
    persona: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None
    has_transcript: bool = False
    has_recording: bool = False
    recording_url: Optional[str] = None
    key_topics: list[str] = []
    created_at: datetime

    model_config = {"from_attributes": True}


class TranscriptResponse(BaseModel):
    id: str
    conversation_id: str
    user_id: str
    message_stats: dict = {}
    key_topics: list[str] = []
    suggested_documents: list[str] = []
    created_at: datetime

    model_config = {"from_attributes": True}


class ActivityResponse(BaseModel):
    id: str
    conversation_id: str
    kind: str
    event_type: str
    inference_id: Optional[str] = None
    data: dict = {}
    created_at: datetime

    model_config = {"from_attributes": True}
