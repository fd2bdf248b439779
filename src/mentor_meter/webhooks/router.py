"""Provider webhook endpoint and audit log API."""

import asyncio
import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.exc import SQLAlchemyError

from mentor_meter.common.exceptions import InvalidPayloadError, WebhookAuthError
from mentor_meter.common.models import utcnow
from mentor_meter.common.security import require_api_key
from mentor_meter.webhooks.schemas import WebhookEventResponse

logger = logging.getLogger(__name__)

router = APIRouter()

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": (
        "authorization, x-client-info, apikey, content-type, x-mentor-signature"
    ),
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


def _get_service():
    from mentor_meter.deps import get_ingestion_service
    return get_ingestion_service()


def _get_broadcaster():
    from mentor_meter.deps import get_broadcaster
    return get_broadcaster()


def _get_db():
    from mentor_meter.deps import get_db
    return get_db()


def _get_settings():
    from mentor_meter.common.config import get_settings
    return get_settings()


def _error(status_code: int, error: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, **extra},
        headers=CORS_HEADERS,
    )


@router.options("/webhooks/provider")
async def provider_webhook_preflight():
    return Response(content="ok", headers=CORS_HEADERS)


@router.post("/webhooks/provider")
async def provider_webhook(request: Request):
    svc = _get_service()
    db = _get_db()
    settings = _get_settings()
    body = await request.body()

    async def _process():
        async with db.get_session() as session:
            return await svc.ingest(session, body, request.headers)

    try:
        outcome = await asyncio.wait_for(_process(), timeout=settings.webhook_timeout_seconds)
    except WebhookAuthError as e:
        return _error(e.status_code, e.message)
    except InvalidPayloadError as e:
        return _error(400, e.message)
    except asyncio.TimeoutError:
        logger.error("Webhook processing timed out after %.1fs", settings.webhook_timeout_seconds)
        return _error(503, "Webhook processing timed out", retryable=True)
    except SQLAlchemyError as e:
        logger.exception("Database failure while processing webhook")
        await _audit_failure(svc, db, body, f"database error: {type(e).__name__}")
        return _error(500, "Internal server error", retryable=True, timestamp=utcnow().isoformat())
    except Exception as e:
        logger.exception("Webhook processing error")
        await _audit_failure(svc, db, body, str(e))
        return _error(500, "Internal server error", message=str(e), timestamp=utcnow().isoformat())

    # Published only after the ledger transaction committed.
    _get_broadcaster().publish_all(outcome.notifications)
    return JSONResponse(status_code=outcome.status_code, content=outcome.body, headers=CORS_HEADERS)


async def _audit_failure(svc, db, body: bytes, error: str) -> None:
    try:
        async with db.get_session() as session:
            await svc.record_failure(session, body, error)
    except Exception:
        logger.exception("Failed to audit failed webhook delivery")


@router.get("/webhooks/events", response_model=list[WebhookEventResponse])
async def list_webhook_events(
    conversation_id: str | None = Query(None),
    processed: bool | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        events = await svc.list_events(
            session,
            conversation_id=conversation_id,
            processed=processed,
            limit=limit,
            offset=offset,
        )
        return [WebhookEventResponse.model_validate(e) for e in events]
