"""Typed provider webhook events.

Each recognized ``event_type`` maps to one dataclass; anything else parses to
``Unrecognized`` and is logged without being processed.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from mentor_meter.common.exceptions import InvalidPayloadError
from mentor_meter.common.models import as_utc

SHUTDOWN_STATUS = {
    "max_call_duration": "completed",
    "participant_left_timeout": "ended_early",
}


@dataclass(frozen=True)
class ProviderEvent:
    conversation_id: str
    event_type: str
    message_type: Optional[str]
    timestamp: Optional[datetime]
    properties: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ReplicaJoined(ProviderEvent):
    replica_id: Optional[str] = None


@dataclass(frozen=True)
class Shutdown(ProviderEvent):
    reason: Optional[str] = None

    @property
    def terminal_status(self) -> str:
        return SHUTDOWN_STATUS.get(self.reason or "", "ended")


@dataclass(frozen=True)
class TranscriptionReady(ProviderEvent):
    messages: list[dict[str, Any]] = field(default_factory=list)
    replica_id: Optional[str] = None


@dataclass(frozen=True)
class RecordingReady(ProviderEvent):
    recording_url: Optional[str] = None
    duration: Optional[float] = None


@dataclass(frozen=True)
class Utterance(ProviderEvent):
    role: Optional[str] = None
    text: Optional[str] = None


@dataclass(frozen=True)
class ToolCall(ProviderEvent):
    name: Optional[str] = None
    arguments: Any = None
    inference_id: Optional[str] = None


@dataclass(frozen=True)
class PerceptionResult(ProviderEvent):
    """Visual analysis from the provider, mid-call or after the call ends."""

    analysis: Any = None
    visual_context: Any = None
    detected_objects: Any = None
    confidence: Optional[float] = None
    inference_id: Optional[str] = None


@dataclass(frozen=True)
class SpeakingStateChange(ProviderEvent):
    speaker: str = "user"
    state: str = "started"
    inference_id: Optional[str] = None


@dataclass(frozen=True)
class Unrecognized(ProviderEvent):
    pass


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None


def _transcript_messages(raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    return [
        {"role": m.get("role"), "content": str(m.get("content") or ""),
         **({"timestamp": m["timestamp"]} if m.get("timestamp") else {})}
        for m in raw
        if isinstance(m, dict)
    ]


def _replica_joined(base: dict[str, Any], props: dict[str, Any]) -> ProviderEvent:
    return ReplicaJoined(**base, replica_id=props.get("replica_id"))


def _shutdown(base: dict[str, Any], props: dict[str, Any]) -> ProviderEvent:
    return Shutdown(**base, reason=props.get("reason") or props.get("shutdown_reason"))


def _transcription_ready(base: dict[str, Any], props: dict[str, Any]) -> ProviderEvent:
    return TranscriptionReady(
        **base,
        messages=_transcript_messages(props.get("transcription") or props.get("transcript")),
        replica_id=props.get("replica_id"),
    )


def _recording_ready(base: dict[str, Any], props: dict[str, Any]) -> ProviderEvent:
    duration = props.get("duration")
    return RecordingReady(
        **base,
        recording_url=props.get("recording_url"),
        duration=float(duration) if isinstance(duration, (int, float)) else None,
    )


def _utterance(base: dict[str, Any], props: dict[str, Any]) -> ProviderEvent:
    return Utterance(**base, role=props.get("role"), text=props.get("text"))


def _tool_call(base: dict[str, Any], props: dict[str, Any]) -> ProviderEvent:
    return ToolCall(
        **base,
        name=props.get("name"),
        arguments=props.get("arguments"),
        inference_id=props.get("inference_id"),
    )


def _perception(base: dict[str, Any], props: dict[str, Any]) -> ProviderEvent:
    confidence = props.get("overall_confidence", props.get("confidence_score"))
    if base["event_type"] == "application.perception_analysis":
        analysis = props.get("analysis_summary")
        visual_context = props.get("visual_context_summary")
        detected_objects = props.get("detected_objects_summary")
    else:
        analysis = props.get("visual_context") if base["event_type"].endswith("analysis") else None
        visual_context = props.get("visual_context")
        detected_objects = props.get("detected_objects")
    return PerceptionResult(
        **base,
        analysis=analysis,
        visual_context=visual_context,
        detected_objects=detected_objects,
        confidence=float(confidence) if isinstance(confidence, (int, float)) else None,
        inference_id=props.get("inference_id"),
    )


def _speaking(base: dict[str, Any], props: dict[str, Any]) -> ProviderEvent:
    _, speaker, state = base["event_type"].split(".")
    return SpeakingStateChange(
        **base,
        speaker=speaker,
        state=state.split("_")[0],
        inference_id=props.get("inference_id"),
    )


EVENT_PARSERS = {
    "system.replica_joined": _replica_joined,
    "system.shutdown": _shutdown,
    "application.transcription_ready": _transcription_ready,
    "application.recording_ready": _recording_ready,
    "conversation.utterance": _utterance,
    "conversation.tool_call": _tool_call,
    "application.perception_analysis": _perception,
    "conversation.perception_tool_call": _perception,
    "conversation.perception_analysis": _perception,
    "conversation.replica.started_speaking": _speaking,
    "conversation.replica.stopped_speaking": _speaking,
    "conversation.user.started_speaking": _speaking,
    "conversation.user.stopped_speaking": _speaking,
}


def parse_event(payload: Any) -> ProviderEvent:
    """Build the typed event for a decoded webhook body.

    Raises:
        InvalidPayloadError: If the body is not an object carrying string
            ``conversation_id`` and ``event_type`` fields.
    """
    if not isinstance(payload, dict):
        raise InvalidPayloadError("Webhook payload must be a JSON object")

    conversation_id = payload.get("conversation_id")
    event_type = payload.get("event_type")
    if not isinstance(conversation_id, str) or not conversation_id:
        raise InvalidPayloadError("Missing conversation_id")
    if not isinstance(event_type, str) or not event_type:
        raise InvalidPayloadError("Missing event_type")

    props = payload.get("properties")
    props = props if isinstance(props, dict) else {}
    message_type = payload.get("message_type")

    base = {
        "conversation_id": conversation_id,
        "event_type": event_type,
        "message_type": message_type if isinstance(message_type, str) else None,
        "timestamp": _parse_timestamp(payload.get("timestamp")),
        "properties": props,
    }
    parser = EVENT_PARSERS.get(event_type)
    if parser is None:
        return Unrecognized(**base)
    return parser(base, props)
