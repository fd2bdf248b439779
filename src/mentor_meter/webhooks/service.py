"""Provider webhook ingestion: authentication, audit logging and event dispatch.

Every ledger mutation here is guarded by a database primitive rather than an
application-level check: session starts by insert-if-absent on the usage
detail row, session ends by a conditional UPDATE out of the non-terminal
states. Redelivered events therefore never double-apply.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mentor_meter.common.config import MentorSettings
from mentor_meter.common.database import insert_if_absent
from mentor_meter.common.exceptions import InvalidPayloadError, WebhookAuthError
from mentor_meter.common.models import as_utc, utcnow
from mentor_meter.conversations.classifier import analyze_transcript
from mentor_meter.conversations.models import TERMINAL_STATUSES, ConversationModel
from mentor_meter.conversations.service import ConversationService
from mentor_meter.entitlements.tiers import get_tier
from mentor_meter.notifications.broadcaster import USAGE_UPDATE, Notification
from mentor_meter.usage.models import ConversationUsageDetailModel, UsagePeriodModel
from mentor_meter.usage.service import UsageLedger
from mentor_meter.webhooks.events import (
    PerceptionResult,
    ProviderEvent,
    RecordingReady,
    ReplicaJoined,
    Shutdown,
    SpeakingStateChange,
    ToolCall,
    TranscriptionReady,
    Utterance,
    parse_event,
)
from mentor_meter.webhooks.models import WebhookEventModel, WebhookNonceModel
from mentor_meter.webhooks.signing import SIGNATURE_HEADER, verify_signature

logger = logging.getLogger(__name__)

ORIGIN_HEADERS = ("origin", "referer")


@dataclass
class WebhookOutcome:
    """HTTP-ready result of one delivery plus the notifications it earned."""

    status_code: int
    body: dict[str, Any]
    processed: bool = True
    notifications: list[Notification] = field(default_factory=list)


def duration_minutes(started_at: datetime, ended_at: datetime) -> int:
    """Billable whole minutes between two instants, rounded up, never negative."""
    seconds = (as_utc(ended_at) - as_utc(started_at)).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / 60)


def _usage_payload(period: UsagePeriodModel) -> dict[str, Any]:
    tier = get_tier(period.tier)
    usage = period.usage()
    remaining = {}
    for resource, limit in tier.limits().items():
        remaining[resource] = None if limit is None else max(0, limit - usage[resource])
    return {
        "type": "usage_updated",
        "usage_period_id": period.id,
        "current_usage": usage,
        "remaining": remaining,
    }


class IngestionService:
    """Turns authenticated provider deliveries into ledger transitions."""

    def __init__(
        self,
        settings: MentorSettings,
        ledger: UsageLedger,
        conversations: ConversationService,
    ):
        self.settings = settings
        self.ledger = ledger
        self.conversations = conversations

    # ── Authentication ──

    def check_origin(self, headers: Mapping[str, str]) -> None:
        """Advisory allow-list over origin/referer; absent headers pass.

        Raises:
            WebhookAuthError: (403) If a header names a foreign domain.
        """
        origin = next((headers.get(h) for h in ORIGIN_HEADERS if headers.get(h)), None)
        if not origin:
            return
        origin = origin.lower()
        if not any(domain.lower() in origin for domain in self.settings.provider_domains):
            logger.warning("Webhook from unauthorized domain: %s", origin)
            raise WebhookAuthError("Unauthorized domain", status_code=403)

    async def check_signature(
        self, session: AsyncSession, body: bytes, headers: Mapping[str, str],
    ) -> None:
        """Verify the HMAC header and burn its nonce. No-op without a secret."""
        if not self.settings.webhook_secret:
            return
        tolerance = self.settings.webhook_signature_tolerance
        verified = verify_signature(
            body,
            headers.get(SIGNATURE_HEADER.lower(), ""),
            self.settings.webhook_secret,
            tolerance,
        )

        now = utcnow()
        await session.execute(
            delete(WebhookNonceModel).where(
                WebhookNonceModel.signed_at < now - timedelta(seconds=2 * tolerance)
            )
        )
        fresh = await insert_if_absent(
            session,
            WebhookNonceModel,
            {"nonce": verified.nonce, "signed_at": verified.signed_at, "received_at": now},
            ["nonce"],
        )
        if not fresh:
            logger.warning("Replayed webhook nonce %s", verified.nonce)
            raise WebhookAuthError("Replayed webhook signature")

    # ── Entry point ──

    async def ingest(
        self,
        session: AsyncSession,
        body: bytes,
        headers: Mapping[str, str],
    ) -> WebhookOutcome:
        """Authenticate, log and apply one delivery.

        Raises:
            WebhookAuthError: Origin, signature, replay or ownership failure.
            InvalidPayloadError: Body is not a JSON event object.
        """
        headers = {k.lower(): v for k, v in headers.items()}
        self.check_origin(headers)
        await self.check_signature(session, body, headers)

        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise InvalidPayloadError()
        event = parse_event(payload)

        conversation = await self.conversations.resolve_for_webhook(
            session, event.conversation_id,
        )
        if conversation is None:
            logger.warning(
                "Webhook for unknown conversation %s", event.conversation_id,
                extra={"conversation_id": event.conversation_id, "event_type": event.event_type},
            )
            raise WebhookAuthError("Invalid webhook request: conversation not found")

        logger.info(
            "Webhook received: %s for conversation %s", event.event_type, event.conversation_id,
            extra={
                "conversation_id": event.conversation_id,
                "event_type": event.event_type,
                "user_id": conversation.user_id,
            },
        )
        record = WebhookEventModel(
            conversation_id=event.conversation_id,
            event_type=event.event_type,
            message_type=event.message_type,
            payload=payload,
            processed=False,
        )
        session.add(record)
        await session.flush()

        outcome = await self.dispatch(session, event, conversation, record.id)

        record.processed = outcome.processed
        record.outcome = outcome.body.get("message") or outcome.body.get("error")
        record.status_code = outcome.status_code
        await session.flush()
        return outcome

    async def dispatch(
        self,
        session: AsyncSession,
        event: ProviderEvent,
        conversation: ConversationModel,
        event_id: str,
    ) -> WebhookOutcome:
        if isinstance(event, ReplicaJoined):
            return await self._on_replica_joined(session, event, conversation, event_id)
        if isinstance(event, Shutdown):
            return await self._on_shutdown(session, event, conversation, event_id)
        if isinstance(event, TranscriptionReady):
            return await self._on_transcription_ready(session, event, conversation)
        if isinstance(event, RecordingReady):
            return await self._on_recording_ready(session, event, conversation)
        if isinstance(event, Utterance):
            return await self._on_utterance(session, event, conversation)
        if isinstance(event, ToolCall):
            return await self._on_tool_call(session, event, conversation)
        if isinstance(event, PerceptionResult):
            return await self._on_perception(session, event, conversation)
        if isinstance(event, SpeakingStateChange):
            return self._on_speaking(event, conversation)

        logger.info(
            "Event logged but not processed: %s", event.event_type,
            extra={"conversation_id": event.conversation_id, "event_type": event.event_type},
        )
        return WebhookOutcome(
            200,
            {
                "success": True,
                "message": f"Event logged but not processed: {event.event_type}",
                "event_type": event.event_type,
            },
            processed=False,
        )

    # ── Handlers ──

    async def _find_detail(
        self, session: AsyncSession, conversation_id: str,
    ) -> Optional[ConversationUsageDetailModel]:
        result = await session.execute(
            select(ConversationUsageDetailModel)
            .where(ConversationUsageDetailModel.conversation_id == conversation_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _on_replica_joined(
        self,
        session: AsyncSession,
        event: ReplicaJoined,
        conversation: ConversationModel,
        event_id: str,
    ) -> WebhookOutcome:
        user_id = conversation.user_id
        started_at = event.timestamp or utcnow()
        await self.conversations.mark_started(session, conversation, started_at)
        started = Notification(user_id, {
            "type": "conversation_started",
            "conversation_id": event.conversation_id,
            "status": conversation.status,
        })

        period = await self.ledger.get_or_create_current_period(session, user_id)
        if period is None:
            logger.warning(
                "No subscription to meter conversation %s", event.conversation_id,
                extra={"user_id": user_id, "conversation_id": event.conversation_id},
            )
            return WebhookOutcome(
                200,
                {
                    "success": True,
                    "message": "Conversation started without an active subscription",
                    "event_type": event.event_type,
                    "metered": False,
                },
                notifications=[started],
            )

        inserted = await insert_if_absent(
            session,
            ConversationUsageDetailModel,
            {
                "conversation_id": event.conversation_id,
                "user_id": user_id,
                "usage_period_id": period.id,
                "started_at": started_at,
                "planned_duration_minutes": get_tier(period.tier).minutes_per_session,
                "completion_status": "pending",
                "started_event_id": event_id,
            },
            ["conversation_id"],
        )
        if not inserted:
            logger.info(
                "Duplicate session start for %s ignored", event.conversation_id,
                extra={"user_id": user_id, "conversation_id": event.conversation_id},
            )
            return WebhookOutcome(200, {
                "success": True,
                "message": "Session start already recorded",
                "event_type": event.event_type,
                "duplicate": True,
            })

        period = await self.ledger.increment(session, period.id, {"sessions": 1})
        logger.info(
            "Session started for %s (sessions_used=%d)", user_id, period.sessions_used,
            extra={
                "user_id": user_id,
                "conversation_id": event.conversation_id,
                "usage_period_id": period.id,
            },
        )
        return WebhookOutcome(
            200,
            {
                "success": True,
                "message": "Conversation started",
                "event_type": event.event_type,
                "sessions_used": period.sessions_used,
            },
            notifications=[started, Notification(user_id, _usage_payload(period), USAGE_UPDATE)],
        )

    async def _on_shutdown(
        self,
        session: AsyncSession,
        event: Shutdown,
        conversation: ConversationModel,
        event_id: str,
    ) -> WebhookOutcome:
        user_id = conversation.user_id
        detail = await self._find_detail(session, event.conversation_id)
        if detail is None:
            logger.warning(
                "Shutdown for %s without a recorded session start", event.conversation_id,
                extra={"user_id": user_id, "conversation_id": event.conversation_id},
            )
            return WebhookOutcome(
                404,
                {
                    "success": False,
                    "error": "Conversation not found",
                    "conversation_id": event.conversation_id,
                },
                processed=False,
            )

        already_ended = WebhookOutcome(200, {
            "success": True,
            "message": "Conversation already ended",
            "event_type": event.event_type,
            "duplicate": True,
        })
        if detail.completion_status in TERMINAL_STATUSES:
            return already_ended

        ended_at = event.timestamp or utcnow()
        minutes = duration_minutes(detail.started_at, ended_at)
        status = event.terminal_status

        result = await session.execute(
            update(ConversationUsageDetailModel)
            .where(
                ConversationUsageDetailModel.id == detail.id,
                ConversationUsageDetailModel.completion_status.not_in(TERMINAL_STATUSES),
            )
            .values(
                ended_at=ended_at,
                actual_duration_minutes=minutes,
                completion_status=status,
                termination_reason=event.reason,
                ended_event_id=event_id,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return already_ended

        notifications = []
        # Minutes land in the period open at shutdown; the start-time period
        # is only used once the subscription no longer resolves to one.
        period = await self.ledger.get_or_create_current_period(session, user_id)
        if period is None:
            period = await self.ledger.get_period(session, detail.usage_period_id)
        if minutes:
            period = await self.ledger.increment(session, period.id, {"minutes": minutes})
        await self.conversations.mark_ended(session, conversation, status, ended_at, minutes)

        logger.info(
            "Session ended for %s: %s after %d min (%s)",
            user_id, status, minutes, event.reason,
            extra={
                "user_id": user_id,
                "conversation_id": event.conversation_id,
                "usage_period_id": period.id,
            },
        )
        notifications.append(Notification(user_id, {
            "type": "conversation_ended",
            "conversation_id": event.conversation_id,
            "status": status,
            "reason": event.reason,
            "duration_minutes": minutes,
        }))
        notifications.append(Notification(user_id, _usage_payload(period), USAGE_UPDATE))
        return WebhookOutcome(
            200,
            {
                "success": True,
                "message": "Conversation ended",
                "event_type": event.event_type,
                "reason": event.reason,
                "status": status,
                "duration_minutes": minutes,
            },
            notifications=notifications,
        )

    async def _on_transcription_ready(
        self,
        session: AsyncSession,
        event: TranscriptionReady,
        conversation: ConversationModel,
    ) -> WebhookOutcome:
        existing = await self.conversations.get_transcript(session, event.conversation_id)
        if existing is not None:
            return WebhookOutcome(200, {
                "success": True,
                "message": "Transcript already processed",
                "transcript_id": existing.id,
            })
        if not event.messages:
            return WebhookOutcome(
                200,
                {"success": False, "error": "No transcription data provided"},
                processed=False,
            )

        analysis = analyze_transcript(event.messages)
        transcript, created = await self.conversations.save_transcript(
            session, conversation, event.messages, analysis,
        )
        if not created:
            return WebhookOutcome(200, {
                "success": True,
                "message": "Transcript already processed",
                "transcript_id": transcript.id,
            })

        logger.info(
            "Transcript stored for %s (%d messages, topics=%s)",
            event.conversation_id, len(event.messages), ",".join(analysis.key_topics),
            extra={"user_id": conversation.user_id, "conversation_id": event.conversation_id},
        )
        return WebhookOutcome(
            200,
            {
                "success": True,
                "message": "Transcript processed and analyzed",
                "transcript_id": transcript.id,
                "key_topics": analysis.key_topics,
                "suggested_documents": analysis.suggested_documents,
            },
            notifications=[Notification(conversation.user_id, {
                "type": "conversation_completed",
                "conversation_id": event.conversation_id,
                "transcript_id": transcript.id,
                "message_count": len(event.messages),
                "key_topics": analysis.key_topics,
                "document_opportunities": analysis.suggested_documents,
            })],
        )

    async def _on_recording_ready(
        self,
        session: AsyncSession,
        event: RecordingReady,
        conversation: ConversationModel,
    ) -> WebhookOutcome:
        await self.conversations.attach_recording(session, conversation, event.recording_url)
        return WebhookOutcome(
            200,
            {
                "success": True,
                "message": "Recording processed and saved",
                "recording_url": event.recording_url,
            },
            notifications=[Notification(conversation.user_id, {
                "type": "recording_ready",
                "conversation_id": event.conversation_id,
                "recording_url": event.recording_url,
                "duration": event.duration,
            })],
        )

    async def _on_utterance(
        self,
        session: AsyncSession,
        event: Utterance,
        conversation: ConversationModel,
    ) -> WebhookOutcome:
        await session.execute(
            update(ConversationUsageDetailModel)
            .where(
                ConversationUsageDetailModel.conversation_id == event.conversation_id,
                ConversationUsageDetailModel.completion_status == "pending",
            )
            .values(completion_status="in_progress", updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return WebhookOutcome(
            200,
            {"success": True, "message": "Utterance logged", "event_type": event.event_type},
            notifications=[Notification(conversation.user_id, {
                "type": "utterance",
                "conversation_id": event.conversation_id,
                "role": event.role,
                "content": event.text,
            })],
        )

    async def _on_tool_call(
        self,
        session: AsyncSession,
        event: ToolCall,
        conversation: ConversationModel,
    ) -> WebhookOutcome:
        await self.conversations.record_activity(
            session, conversation, "tool_call", event.event_type,
            {"name": event.name, "arguments": event.arguments},
            inference_id=event.inference_id,
        )
        return WebhookOutcome(
            200,
            {"success": True, "message": "Tool call logged", "event_type": event.event_type},
            notifications=[Notification(conversation.user_id, {
                "type": "tool_call",
                "conversation_id": event.conversation_id,
                "function_name": event.name,
                "arguments": event.arguments,
            })],
        )

    async def _on_perception(
        self,
        session: AsyncSession,
        event: PerceptionResult,
        conversation: ConversationModel,
    ) -> WebhookOutcome:
        await self.conversations.record_activity(
            session, conversation, "perception", event.event_type,
            {
                "analysis": event.analysis,
                "visual_context": event.visual_context,
                "detected_objects": event.detected_objects,
                "confidence": event.confidence,
            },
            inference_id=event.inference_id,
        )
        if event.event_type == "application.perception_analysis":
            kind = "perception_analysis_complete"
        else:
            kind = event.event_type.split(".", 1)[1]
        objects = event.detected_objects if isinstance(event.detected_objects, list) else []
        return WebhookOutcome(
            200,
            {"success": True, "message": "Perception result logged", "event_type": event.event_type},
            notifications=[Notification(conversation.user_id, {
                "type": kind,
                "conversation_id": event.conversation_id,
                "analysis": event.analysis,
                "visual_context": event.visual_context,
                "confidence": event.confidence,
                "objects_detected": len(objects),
            })],
        )

    def _on_speaking(
        self, event: SpeakingStateChange, conversation: ConversationModel,
    ) -> WebhookOutcome:
        return WebhookOutcome(
            200,
            {
                "success": True,
                "message": f"Speaking state change: {event.event_type}",
                "event_type": event.event_type,
            },
            notifications=[Notification(conversation.user_id, {
                "type": "speaking_state_change",
                "conversation_id": event.conversation_id,
                "speaker": event.speaker,
                "state": event.state,
                "inference_id": event.inference_id,
            })],
        )

    # ── Audit log queries ──

    async def list_events(
        self,
        session: AsyncSession,
        conversation_id: str | None = None,
        processed: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WebhookEventModel]:
        query = select(WebhookEventModel)
        if conversation_id is not None:
            query = query.where(WebhookEventModel.conversation_id == conversation_id)
        if processed is not None:
            query = query.where(WebhookEventModel.processed == processed)
        query = query.order_by(WebhookEventModel.created_at.desc()).offset(offset).limit(limit)
        result = await session.execute(query)
        return list(result.scalars().all())

    async def record_failure(
        self, session: AsyncSession, body: bytes, error: str,
    ) -> None:
        """Audit a delivery whose processing failed and was rolled back."""
        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return
        if not isinstance(payload, dict):
            return
        session.add(WebhookEventModel(
            conversation_id=str(payload.get("conversation_id") or ""),
            event_type=str(payload.get("event_type") or ""),
            message_type=payload.get("message_type") if isinstance(payload.get("message_type"), str) else None,
            payload=payload,
            processed=False,
            outcome=error[:255],
            status_code=500,
        ))
        await session.flush()
