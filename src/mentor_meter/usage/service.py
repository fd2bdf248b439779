"""Usage ledger: current-period counters per subscriber.

Counters are only ever changed by a single ``UPDATE ... SET col = col + n``
statement, so concurrent webhook deliveries cannot lose updates. Period rows
are created with insert-if-absent on (user_id, period_start, period_end).
"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mentor_meter.common.config import MentorSettings
from mentor_meter.common.database import insert_if_absent
from mentor_meter.common.models import as_utc, utcnow
from mentor_meter.entitlements.tiers import (
    RESOURCES,
    calculate_overage,
    get_tier,
    is_unlimited,
)
from mentor_meter.subscriptions.models import SubscriptionModel
from mentor_meter.subscriptions.service import SubscriptionService
from mentor_meter.usage.models import (
    COUNTER_COLUMNS,
    ConversationUsageDetailModel,
    UsagePeriodModel,
    UsageRecordModel,
)

logger = logging.getLogger(__name__)


class UsageLedger:
    """Current-period usage counters with atomic increments."""

    def __init__(self, settings: MentorSettings, subscriptions: SubscriptionService):
        self.settings = settings
        self.subscriptions = subscriptions

    # ── Periods ──

    async def get_or_create_current_period(
        self,
        session: AsyncSession,
        user_id: str,
        subscription: SubscriptionModel | None = None,
    ) -> Optional[UsagePeriodModel]:
        """Return the subscriber's ledger row for the current billing period.

        Returns None when the subscriber has no resolvable subscription
        (no billing record, or a record without period bounds). Callers must
        treat None as "no subscription", not as an error.

        Raises:
            TierNotFoundError: If a new period must be opened but the
                subscription's price id maps to no tier.
        """
        sub = subscription or await self.subscriptions.get_subscription(session, user_id)
        if sub is None:
            return None
        bounds = self.subscriptions.period_bounds(sub)
        if bounds is None:
            logger.warning(
                "Subscription for %s has no billing period", user_id,
                extra={"user_id": user_id},
            )
            return None
        start, end = bounds

        period = await self._find_period(session, user_id, start, end)
        if period is not None:
            return period

        tier = self.subscriptions.resolve_tier(sub)
        inserted = await insert_if_absent(
            session,
            UsagePeriodModel,
            {
                "user_id": user_id,
                "period_start": start,
                "period_end": end,
                "tier": tier.id,
                "price_id": sub.price_id,
            },
            ["user_id", "period_start", "period_end"],
        )
        period = await self._find_period(session, user_id, start, end)
        if inserted:
            logger.info(
                "Opened usage period %s for %s (%s -> %s, tier=%s)",
                period.id, user_id, start.isoformat(), end.isoformat(), tier.id,
                extra={"user_id": user_id, "usage_period_id": period.id},
            )
        return period

    async def _find_period(
        self,
        session: AsyncSession,
        user_id: str,
        start: datetime,
        end: datetime,
    ) -> Optional[UsagePeriodModel]:
        result = await session.execute(
            select(UsagePeriodModel).where(
                UsagePeriodModel.user_id == user_id,
                UsagePeriodModel.period_start == start,
                UsagePeriodModel.period_end == end,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_period(
        self, session: AsyncSession, period_id: str,
    ) -> Optional[UsagePeriodModel]:
        result = await session.execute(
            select(UsagePeriodModel)
            .where(UsagePeriodModel.id == period_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_periods(
        self, session: AsyncSession, user_id: str, limit: int = 24,
    ) -> list[UsagePeriodModel]:
        """Historical periods, newest first."""
        result = await session.execute(
            select(UsagePeriodModel)
            .where(UsagePeriodModel.user_id == user_id)
            .order_by(UsagePeriodModel.period_start.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # ── Mutation ──

    async def increment(
        self,
        session: AsyncSession,
        period_id: str,
        deltas: dict[str, int],
    ) -> UsagePeriodModel:
        """Atomically add non-negative ``deltas`` to the period's counters.

        ``deltas`` is keyed by resource: sessions, minutes, documents, tokens.
        """
        values: dict[str, Any] = {}
        for resource, delta in deltas.items():
            column = COUNTER_COLUMNS.get(resource)
            if column is None:
                raise ValueError(f"Unknown usage counter: {resource}")
            if delta < 0:
                raise ValueError(f"Usage counters never decrease (got {resource}={delta})")
            if delta:
                values[column] = getattr(UsagePeriodModel, column) + delta

        if values:
            now = utcnow()
            if deltas.get("sessions") or deltas.get("minutes"):
                values["last_conversation_at"] = now
            if deltas.get("documents") or deltas.get("tokens"):
                values["last_document_generated_at"] = now
            values["updated_at"] = now

            result = await session.execute(
                update(UsagePeriodModel)
                .where(UsagePeriodModel.id == period_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise LookupError(f"Usage period {period_id} not found")

        period = await self.get_period(session, period_id)
        if period is None:
            raise LookupError(f"Usage period {period_id} not found")
        return period

    async def record_document_usage(
        self,
        session: AsyncSession,
        user_id: str,
        document_type: str,
        tokens: int = 0,
        metadata: dict[str, Any] | None = None,
    ) -> Optional[UsagePeriodModel]:
        """Account one generated document and its token spend.

        Returns None when the subscriber has no subscription.
        """
        period = await self.get_or_create_current_period(session, user_id)
        if period is None:
            return None

        detail = {"document_type": document_type, **(metadata or {})}
        session.add(UsageRecordModel(
            user_id=user_id, usage_period_id=period.id,
            metric="documents", value=1, metadata_=detail,
        ))
        if tokens:
            session.add(UsageRecordModel(
                user_id=user_id, usage_period_id=period.id,
                metric="tokens", value=tokens, metadata_=detail,
            ))
        await session.flush()

        return await self.increment(
            session, period.id, {"documents": 1, "tokens": tokens},
        )

    # ── Queries ──

    async def count_recent_starts(
        self, session: AsyncSession, user_id: str, since: datetime,
    ) -> int:
        """Number of conversations the subscriber started since ``since``."""
        result = await session.execute(
            select(func.count(ConversationUsageDetailModel.id)).where(
                ConversationUsageDetailModel.user_id == user_id,
                ConversationUsageDetailModel.started_at >= as_utc(since),
            )
        )
        return result.scalar() or 0

    async def get_usage_summary(
        self, session: AsyncSession, user_id: str,
    ) -> Optional[dict[str, Any]]:
        """Current-period usage with limits, remaining, percentages and overage."""
        period = await self.get_or_create_current_period(session, user_id)
        if period is None:
            return None
        return summarize_period(period)


def summarize_period(period: UsagePeriodModel) -> dict[str, Any]:
    tier = get_tier(period.tier)
    usage = period.usage()
    limits = tier.limits()

    resources = {}
    for resource in RESOURCES:
        limit = limits[resource]
        used = usage[resource]
        if is_unlimited(limit):
            remaining = None
            percentage = None
        else:
            remaining = max(0, limit - used)
            percentage = round(used / limit * 100, 1) if limit else None
        resources[resource] = {
            "used": used,
            "limit": limit,
            "remaining": remaining,
            "percentage": percentage,
        }

    return {
        "user_id": period.user_id,
        "usage_period_id": period.id,
        "tier": tier.id,
        "period_start": as_utc(period.period_start),
        "period_end": as_utc(period.period_end),
        "resources": resources,
        "overage": calculate_overage(limits, usage),
    }
