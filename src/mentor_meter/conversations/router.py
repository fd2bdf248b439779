"""Conversation registry API router."""

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from mentor_meter.common.exceptions import ConversationNotFoundError, MentorMeterError
from mentor_meter.common.security import require_api_key
from mentor_meter.conversations.schemas import (
    ActivityResponse,
    ConversationCreate,
    ConversationResponse,
    TranscriptResponse,
)

router = APIRouter()


def _get_service():
    from mentor_meter.deps import get_conversation_service
    return get_conversation_service()


def _get_db():
    from mentor_meter.deps import get_db
    return get_db()


@router.post("/conversations", response_model=ConversationResponse, status_code=201)
async def create_conversation(body: ConversationCreate, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            conversation = await svc.create_conversation(
                session,
                user_id=body.user_id,
                provider_conversation_id=body.provider_conversation_id,
                persona=body.persona,
            )
            return ConversationResponse.model_validate(conversation)
    except MentorMeterError as e:
        raise HTTPException(status_code=409, detail=e.message)


@router.get("/conversations", response_model=list[ConversationResponse])
async def list_conversations(
    user_id: str = Query(...),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        conversations = await svc.list_conversations(
            session, user_id, limit=limit, offset=offset,
        )
        return [ConversationResponse.model_validate(c) for c in conversations]


@router.get(
    "/conversations/{provider_conversation_id}",
    response_model=ConversationResponse,
)
async def get_conversation(provider_conversation_id: str, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        conversation = await svc.get_conversation(session, provider_conversation_id)
        if conversation is None:
            raise HTTPException(status_code=404, detail="Conversation not found")
        return ConversationResponse.model_validate(conversation)


@router.get(
    "/conversations/{provider_conversation_id}/transcript",
    response_model=TranscriptResponse,
)
async def get_transcript(provider_conversation_id: str, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        transcript = await svc.get_transcript(session, provider_conversation_id)
        if transcript is None:
            raise HTTPException(status_code=404, detail="Transcript not found")
        return TranscriptResponse.model_validate(transcript)


@router.get(
    "/conversations/{provider_conversation_id}/activity",
    response_model=list[ActivityResponse],
)
async def list_activity(
    provider_conversation_id: str,
    kind: str | None = Query(None, pattern="^(tool_call|perception)$"),
    _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        activity = await svc.list_activity(session, provider_conversation_id, kind=kind)
        return [ActivityResponse.model_validate(a) for a in activity]


@router.delete("/conversations/{provider_conversation_id}", status_code=204)
async def delete_conversation(provider_conversation_id: str, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            await svc.soft_delete(session, provider_conversation_id)
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return Response(status_code=204)
