"""Entitlement service: resolves subscriber state and runs the evaluator."""

import logging
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from mentor_meter.common.config import MentorSettings
from mentor_meter.common.models import utcnow
from mentor_meter.entitlements.evaluator import Estimate, evaluate, status_block
from mentor_meter.entitlements.schemas import EntitlementCheckRequest, EntitlementResult
from mentor_meter.entitlements.tiers import get_tier
from mentor_meter.subscriptions.service import SubscriptionService
from mentor_meter.usage.service import UsageLedger

logger = logging.getLogger(__name__)

RATE_LIMIT_WINDOW = timedelta(hours=1)


class EntitlementService:
    def __init__(
        self,
        settings: MentorSettings,
        subscriptions: SubscriptionService,
        ledger: UsageLedger,
    ):
        self.settings = settings
        self.subscriptions = subscriptions
        self.ledger = ledger

    async def check(
        self, session: AsyncSession, request: EntitlementCheckRequest,
    ) -> EntitlementResult:
        """Evaluate one requested action against the subscriber's current period.

        Infrastructure failures (database, tier configuration) propagate as
        exceptions and are never reported as a denial.
        """
        user_id = request.user_id
        estimate = Estimate.from_request(
            request.estimated_duration_minutes,
            request.estimated_tokens,
            request.document_type,
        )

        sub = await self.subscriptions.get_subscription(session, user_id)
        status = sub.status if sub is not None else None
        trial_ended = sub is not None and self.subscriptions.trial_ended(sub)

        tier = usage = None
        recent_starts = 0
        if status_block(status, trial_ended) is None:
            period = await self.ledger.get_or_create_current_period(session, user_id, sub)
            if period is not None:
                tier = get_tier(period.tier)
                usage = period.usage()
                if request.action_type == "conversation":
                    recent_starts = await self.ledger.count_recent_starts(
                        session, user_id, utcnow() - RATE_LIMIT_WINDOW,
                    )

        result = evaluate(
            request.action_type,
            status,
            tier=tier,
            usage=usage,
            estimate=estimate,
            trial_ended=trial_ended,
            recent_starts=recent_starts,
            max_starts_per_hour=self.settings.max_conversation_starts_per_hour,
            default_tokens=self.settings.default_estimated_tokens,
        )
        logger.info(
            "Entitlement %s for %s: %s",
            request.action_type, user_id,
            "allowed" if result.allowed else result.reason,
            extra={
                "user_id": user_id,
                "action_type": request.action_type,
                "reason": result.reason,
            },
        )
        return result
