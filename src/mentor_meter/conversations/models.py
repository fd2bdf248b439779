"""SQLAlchemy models for provider conversations and their transcripts."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mentor_meter.common.models import Base, SoftDeleteMixin, TimestampMixin, generate_uuid

CONVERSATION_STATUSES = ("pending", "in_progress", "completed", "ended", "ended_early")
TERMINAL_STATUSES = frozenset({"completed", "ended", "ended_early"})


class ConversationModel(Base, TimestampMixin, SoftDeleteMixin):
    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    provider_conversation_id: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    persona: Mapped[str | None] = mapped_column(String(255), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    has_transcript: Mapped[bool] = mapped_column(Boolean, default=False)
    has_recording: Mapped[bool] = mapped_column(Boolean, default=False)
    recording_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    key_topics: Mapped[list] = mapped_column(JSON, default=list)


class ConversationTranscriptModel(Base, TimestampMixin):
    __tablename__ = "conversation_transcripts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    conversation_id: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    messages: Mapped[list] = mapped_column(JSON, default=list)
    message_stats: Mapped[dict] = mapped_column(JSON, default=dict)
    key_topics: Mapped[list] = mapped_column(JSON, default=list)
    suggested_documents: Mapped[list] = mapped_column(JSON, default=list)
    user_context: Mapped[str] = mapped_column(Text, default="")


class ConversationActivityModel(Base, TimestampMixin):
    """Tool calls and perception results reported during a live conversation."""

    __tablename__ = "conversation_activity"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    conversation_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    inference_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    data: Mapped[dict] = mapped_column(JSON, default=dict)
