"""Conversation service: known provider conversations and their transcripts."""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mentor_meter.common.database import insert_if_absent
from mentor_meter.common.exceptions import ConversationNotFoundError, MentorMeterError
from mentor_meter.common.models import utcnow
from mentor_meter.conversations.classifier import TranscriptAnalysis
from mentor_meter.conversations.models import (
    CONVERSATION_STATUSES,
    TERMINAL_STATUSES,
    ConversationActivityModel,
    ConversationModel,
    ConversationTranscriptModel,
)

logger = logging.getLogger(__name__)


class ConversationService:
    """Records of conversations created through the product, keyed by provider id."""

    async def create_conversation(
        self,
        session: AsyncSession,
        user_id: str,
        provider_conversation_id: str,
        persona: str | None = None,
    ) -> ConversationModel:
        existing = await self.get_conversation(
            session, provider_conversation_id, include_deleted=True,
        )
        if existing is not None:
            raise MentorMeterError(
                f"Conversation {provider_conversation_id} already registered",
                code="CONVERSATION_EXISTS",
            )
        conversation = ConversationModel(
            user_id=user_id,
            provider_conversation_id=provider_conversation_id,
            persona=persona,
            status="pending",
        )
        session.add(conversation)
        await session.flush()
        logger.info(
            "Registered conversation %s for %s", provider_conversation_id, user_id,
            extra={"user_id": user_id, "conversation_id": provider_conversation_id},
        )
        return conversation

    async def get_conversation(
        self,
        session: AsyncSession,
        provider_conversation_id: str,
        include_deleted: bool = False,
    ) -> Optional[ConversationModel]:
        query = select(ConversationModel).where(
            ConversationModel.provider_conversation_id == provider_conversation_id,
        )
        if not include_deleted:
            query = query.where(ConversationModel.deleted_at.is_(None))
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def list_conversations(
        self,
        session: AsyncSession,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ConversationModel]:
        result = await session.execute(
            select(ConversationModel)
            .where(
                ConversationModel.user_id == user_id,
                ConversationModel.deleted_at.is_(None),
            )
            .order_by(ConversationModel.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def soft_delete(
        self, session: AsyncSession, provider_conversation_id: str,
    ) -> ConversationModel:
        conversation = await self.get_conversation(session, provider_conversation_id)
        if conversation is None:
            raise ConversationNotFoundError()
        conversation.deleted_at = utcnow()
        await session.flush()
        return conversation

    async def resolve_for_webhook(
        self, session: AsyncSession, provider_conversation_id: str,
    ) -> Optional[ConversationModel]:
        """Known, non-deleted conversation in a status that may receive events."""
        conversation = await self.get_conversation(session, provider_conversation_id)
        if conversation is None:
            return None
        if conversation.status not in CONVERSATION_STATUSES:
            logger.warning(
                "Conversation %s has unexpected status %s",
                provider_conversation_id, conversation.status,
                extra={"conversation_id": provider_conversation_id},
            )
            return None
        return conversation

    # ── Lifecycle updates driven by provider events ──

    async def mark_started(
        self, session: AsyncSession, conversation: ConversationModel, started_at: datetime,
    ) -> None:
        if conversation.status == "pending":
            conversation.status = "in_progress"
        if conversation.started_at is None:
            conversation.started_at = started_at
        await session.flush()

    async def mark_ended(
        self,
        session: AsyncSession,
        conversation: ConversationModel,
        status: str,
        ended_at: datetime,
        duration_minutes: int,
    ) -> None:
        """Record the session end. A status already set by the transcript is kept."""
        if conversation.status not in TERMINAL_STATUSES:
            conversation.status = status
        conversation.ended_at = ended_at
        conversation.duration_minutes = duration_minutes
        await session.flush()

    async def attach_recording(
        self, session: AsyncSession, conversation: ConversationModel, recording_url: str | None,
    ) -> None:
        conversation.has_recording = True
        conversation.recording_url = recording_url
        await session.flush()

    # ── Transcripts ──

    async def get_transcript(
        self, session: AsyncSession, provider_conversation_id: str,
    ) -> Optional[ConversationTranscriptModel]:
        result = await session.execute(
            select(ConversationTranscriptModel).where(
                ConversationTranscriptModel.conversation_id == provider_conversation_id,
            )
        )
        return result.scalar_one_or_none()

    async def save_transcript(
        self,
        session: AsyncSession,
        conversation: ConversationModel,
        messages: list[dict[str, Any]],
        analysis: TranscriptAnalysis,
    ) -> tuple[ConversationTranscriptModel, bool]:
        """Persist the transcript once. Returns (transcript, created)."""
        created = await insert_if_absent(
            session,
            ConversationTranscriptModel,
            {
                "conversation_id": conversation.provider_conversation_id,
                "user_id": conversation.user_id,
                "messages": messages,
                "message_stats": {**analysis.message_stats, "sentiment": analysis.sentiment},
                "key_topics": analysis.key_topics,
                "suggested_documents": analysis.suggested_documents,
                "user_context": analysis.user_context,
            },
            ["conversation_id"],
        )
        transcript = await self.get_transcript(session, conversation.provider_conversation_id)
        if created:
            conversation.status = "completed"
            conversation.has_transcript = True
            conversation.key_topics = analysis.key_topics
            await session.flush()
        return transcript, created

    # ── Live activity ──

    async def record_activity(
        self,
        session: AsyncSession,
        conversation: ConversationModel,
        kind: str,
        event_type: str,
        data: dict[str, Any],
        inference_id: str | None = None,
    ) -> ConversationActivityModel:
        activity = ConversationActivityModel(
            conversation_id=conversation.provider_conversation_id,
            user_id=conversation.user_id,
            kind=kind,
            event_type=event_type,
            inference_id=inference_id,
            data=data,
        )
        session.add(activity)
        await session.flush()
        return activity

    async def list_activity(
        self,
        session: AsyncSession,
        provider_conversation_id: str,
        kind: str | None = None,
    ) -> list[ConversationActivityModel]:
        query = select(ConversationActivityModel).where(
            ConversationActivityModel.conversation_id == provider_conversation_id,
        )
        if kind is not None:
            query = query.where(ConversationActivityModel.kind == kind)
        result = await session.execute(query.order_by(ConversationActivityModel.created_at))
        return list(result.scalars().all())
