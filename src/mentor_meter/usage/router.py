"""Usage API router."""

from fastapi import APIRouter, Depends, HTTPException, Query

from mentor_meter.common.security import require_api_key
from mentor_meter.notifications.broadcaster import USAGE_UPDATE, Notification
from mentor_meter.usage.schemas import DocumentUsageRequest, UsagePeriodResponse, UsageSummary
from mentor_meter.usage.service import summarize_period

router = APIRouter()


def _get_service():
    from mentor_meter.deps import get_usage_ledger
    return get_usage_ledger()


def _get_broadcaster():
    from mentor_meter.deps import get_broadcaster
    return get_broadcaster()


def _get_db():
    from mentor_meter.deps import get_db
    return get_db()


@router.post("/usage/documents", response_model=UsageSummary)
async def record_document(body: DocumentUsageRequest, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        period = await svc.record_document_usage(
            session,
            user_id=body.user_id,
            document_type=body.document_type,
            tokens=body.tokens,
            metadata=body.metadata,
        )
        if period is None:
            raise HTTPException(status_code=404, detail="Subscription not found")
        summary = summarize_period(period)

    _get_broadcaster().publish(Notification(
        body.user_id,
        {"type": "document_generated", "document_type": body.document_type, **_counters(summary)},
        USAGE_UPDATE,
    ))
    return summary


def _counters(summary: dict) -> dict:
    resources = summary["resources"]
    return {
        "current_usage": {name: r["used"] for name, r in resources.items()},
        "remaining": {name: r["remaining"] for name, r in resources.items()},
    }


@router.get("/usage/{user_id}", response_model=UsageSummary)
async def get_usage(user_id: str, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        summary = await svc.get_usage_summary(session, user_id)
        if summary is None:
            raise HTTPException(status_code=404, detail="Subscription not found")
        return summary


@router.get("/usage/{user_id}/periods", response_model=list[UsagePeriodResponse])
async def list_usage_periods(
    user_id: str,
    limit: int = Query(24, ge=1, le=120),
    _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        periods = await svc.list_periods(session, user_id, limit=limit)
        return [UsagePeriodResponse.model_validate(p) for p in periods]
