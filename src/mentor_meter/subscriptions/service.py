"""Subscription service: store and read billing subscription records."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mentor_meter.common.config import MentorSettings
from mentor_meter.common.models import as_utc, utcnow
from mentor_meter.entitlements.tiers import TierDefinition, resolve_tier_for_price
from mentor_meter.subscriptions.models import SubscriptionModel

logger = logging.getLogger(__name__)


class SubscriptionService:
    """Local view of the billing provider's subscription records."""

    def __init__(self, settings: MentorSettings):
        self.settings = settings

    async def get_subscription(
        self, session: AsyncSession, user_id: str,
    ) -> Optional[SubscriptionModel]:
        result = await session.execute(
            select(SubscriptionModel).where(SubscriptionModel.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def upsert_subscription(
        self,
        session: AsyncSession,
        user_id: str,
        status: str,
        price_id: str | None = None,
        subscription_id: str | None = None,
        current_period_start: datetime | None = None,
        current_period_end: datetime | None = None,
        cancel_at_period_end: bool = False,
    ) -> SubscriptionModel:
        """Create or replace the subscriber's billing record."""
        sub = await self.get_subscription(session, user_id)
        if sub is None:
            sub = SubscriptionModel(user_id=user_id)
            session.add(sub)

        sub.status = status
        sub.price_id = price_id
        sub.subscription_id = subscription_id
        sub.current_period_start = as_utc(current_period_start)
        sub.current_period_end = as_utc(current_period_end)
        sub.cancel_at_period_end = cancel_at_period_end
        await session.flush()
        logger.info(
            "Subscription stored for %s (status=%s, price=%s)", user_id, status, price_id,
            extra={"user_id": user_id},
        )
        return sub

    def resolve_tier(self, sub: SubscriptionModel) -> TierDefinition:
        """Tier currently purchased by ``sub``; raises TierNotFoundError."""
        return resolve_tier_for_price(sub.price_id, self.settings.price_tiers)

    @staticmethod
    def period_bounds(sub: SubscriptionModel) -> tuple[datetime, datetime] | None:
        """Current billing-period bounds, or None when the record has none."""
        start = as_utc(sub.current_period_start)
        end = as_utc(sub.current_period_end)
        if start is None or end is None:
            return None
        return start, end

    @staticmethod
    def trial_ended(sub: SubscriptionModel, now: datetime | None = None) -> bool:
        """True when a trialing subscription's trial end lies in the past.

        The trial end is the current period end while trialing; billing never
        reports this state itself.
        """
        if sub.status != "trialing":
            return False
        end = as_utc(sub.current_period_end)
        if end is None:
            return False
        return (now or utcnow()) > end
