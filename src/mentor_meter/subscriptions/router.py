"""Subscription records API router (billing sync and support tooling)."""

from fastapi import APIRouter, Depends, HTTPException

from mentor_meter.common.exceptions import TierNotFoundError
from mentor_meter.common.security import require_api_key
from mentor_meter.subscriptions.schemas import SubscriptionResponse, SubscriptionUpsert

router = APIRouter()


def _get_service():
    from mentor_meter.deps import get_subscription_service
    return get_subscription_service()


def _get_db():
    from mentor_meter.deps import get_db
    return get_db()


def _to_response(svc, sub) -> SubscriptionResponse:
    try:
        tier = svc.resolve_tier(sub).id
    except TierNotFoundError:
        tier = None
    return SubscriptionResponse(
        user_id=sub.user_id,
        subscription_id=sub.subscription_id,
        price_id=sub.price_id,
        status=sub.status,
        current_period_start=sub.current_period_start,
        current_period_end=sub.current_period_end,
        cancel_at_period_end=sub.cancel_at_period_end,
        tier=tier,
    )


@router.put("/subscriptions/{user_id}", response_model=SubscriptionResponse)
async def upsert_subscription(
    user_id: str,
    body: SubscriptionUpsert,
    _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        sub = await svc.upsert_subscription(
            session,
            user_id=user_id,
            status=body.status,
            price_id=body.price_id,
            subscription_id=body.subscription_id,
            current_period_start=body.current_period_start,
            current_period_end=body.current_period_end,
            cancel_at_period_end=body.cancel_at_period_end,
        )
        return _to_response(svc, sub)


@router.get("/subscriptions/{user_id}", response_model=SubscriptionResponse)
async def get_subscription(user_id: str, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        sub = await svc.get_subscription(session, user_id)
        if sub is None:
            raise HTTPException(status_code=404, detail="Subscription not found")
        return _to_response(svc, sub)
