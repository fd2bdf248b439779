"""Entitlement check and tier catalogue API router."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from mentor_meter.common.exceptions import MentorMeterError
from mentor_meter.common.schemas import ErrorResponse
from mentor_meter.entitlements.schemas import (
    EntitlementCheckRequest,
    EntitlementResult,
    TierResponse,
)
from mentor_meter.entitlements.tiers import TIERS, UPGRADE_BENEFITS

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_service():
    from mentor_meter.deps import get_entitlement_service
    return get_entitlement_service()


def _get_db():
    from mentor_meter.deps import get_db
    return get_db()


@router.post(
    "/entitlements/check",
    response_model=EntitlementResult,
    responses={500: {"model": ErrorResponse}},
)
async def check_entitlement(body: EntitlementCheckRequest):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            return await svc.check(session, body)
    except SQLAlchemyError:
        logger.exception("Database failure during entitlement check")
        error = ErrorResponse(
            error="Entitlement check failed", code="DATABASE_ERROR", retryable=True,
        )
    except MentorMeterError as e:
        logger.error("Entitlement check failed for %s: %s", body.user_id, e.message)
        error = ErrorResponse(error="Entitlement check failed", code=e.code, detail=e.message)
    return JSONResponse(status_code=500, content=error.model_dump())


@router.get("/tiers", response_model=list[TierResponse])
async def list_tiers():
    return [
        TierResponse(
            id=tier.id,
            name=tier.name,
            sessions_limit=tier.sessions_limit,
            minutes_limit=tier.minutes_limit,
            documents_limit=tier.documents_limit,
            tokens_limit=tier.tokens_limit,
            minutes_per_session=tier.minutes_per_session,
            team_access=tier.team_access,
            custom_personas=tier.custom_personas,
            unlimited_tokens=tier.unlimited_tokens,
            upgrade_benefits=UPGRADE_BENEFITS.get(tier.id, []),
        )
        for tier in TIERS.values()
    ]
