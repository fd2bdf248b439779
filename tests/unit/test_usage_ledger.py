"""Tests for the usage ledger: periods, atomic counters and summaries."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from mentor_meter.common.config import MentorSettings
from mentor_meter.common.database import DatabaseManager, insert_if_absent
from mentor_meter.common.exceptions import TierNotFoundError
from mentor_meter.common.models import utcnow
from mentor_meter.subscriptions.service import SubscriptionService
from mentor_meter.usage.models import UsagePeriodModel, UsageRecordModel
from mentor_meter.usage.service import UsageLedger, summarize_period

START = utcnow().replace(microsecond=0) - timedelta(days=3)
END = START + timedelta(days=30)


def make_settings(**overrides) -> MentorSettings:
    defaults = {"db_url": "sqlite+aiosqlite://", "realtime_url": ""}
    defaults.update(overrides)
    return MentorSettings(**defaults)


@pytest.fixture
async def db():
    manager = DatabaseManager(make_settings())
    await manager.init()
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def subscriptions():
    return SubscriptionService(make_settings())


@pytest.fixture
def ledger(subscriptions):
    return UsageLedger(make_settings(), subscriptions)


async def _subscribe(db, subscriptions, user_id="user-1", price_id="founder_companion",
                     start=START, end=END):
    async with db.get_session() as session:
        await subscriptions.upsert_subscription(
            session, user_id, "active", price_id=price_id,
            current_period_start=start, current_period_end=end,
        )


class TestPeriods:
    async def test_no_subscription_returns_none(self, db, ledger):
        async with db.get_session() as session:
            assert await ledger.get_or_create_current_period(session, "nobody") is None

    async def test_subscription_without_bounds_returns_none(self, db, ledger, subscriptions):
        async with db.get_session() as session:
            await subscriptions.upsert_subscription(session, "user-1", "active", price_id="founder_companion")
        async with db.get_session() as session:
            assert await ledger.get_or_create_current_period(session, "user-1") is None

    async def test_creates_zeroed_period_with_tier_snapshot(self, db, ledger, subscriptions):
        await _subscribe(db, subscriptions)
        async with db.get_session() as session:
            period = await ledger.get_or_create_current_period(session, "user-1")
            assert period.tier == "founder_companion"
            assert period.price_id == "founder_companion"
            assert period.usage() == {"sessions": 0, "minutes": 0, "documents": 0, "tokens": 0}

    async def test_repeated_calls_return_same_period(self, db, ledger, subscriptions):
        await _subscribe(db, subscriptions)
        async with db.get_session() as session:
            first = await ledger.get_or_create_current_period(session, "user-1")
        async with db.get_session() as session:
            second = await ledger.get_or_create_current_period(session, "user-1")
        assert first.id == second.id

    async def test_insert_race_converges_on_one_row(self, db, ledger, subscriptions):
        await _subscribe(db, subscriptions)
        values = {
            "user_id": "user-1", "period_start": START, "period_end": END,
            "tier": "founder_companion", "price_id": "founder_companion",
        }
        conflict = ["user_id", "period_start", "period_end"]
        async with db.get_session() as session:
            assert await insert_if_absent(session, UsagePeriodModel, values, conflict) is True
            assert await insert_if_absent(session, UsagePeriodModel, values, conflict) is False
        async with db.get_session() as session:
            period = await ledger.get_or_create_current_period(session, "user-1")
            count = (await session.execute(
                select(func.count(UsagePeriodModel.id))
            )).scalar()
        assert count == 1
        assert period.user_id == "user-1"

    async def test_rollover_opens_fresh_period(self, db, ledger, subscriptions):
        await _subscribe(db, subscriptions)
        async with db.get_session() as session:
            old = await ledger.get_or_create_current_period(session, "user-1")
            await ledger.increment(session, old.id, {"sessions": 2, "minutes": 40})

        await _subscribe(db, subscriptions, start=END, end=END + timedelta(days=30))
        async with db.get_session() as session:
            new = await ledger.get_or_create_current_period(session, "user-1")
            assert new.id != old.id
            assert new.sessions_used == 0
            previous = await ledger.get_period(session, old.id)
            assert previous.sessions_used == 2
            assert previous.minutes_used == 40

    async def test_list_periods_newest_first(self, db, ledger, subscriptions):
        await _subscribe(db, subscriptions)
        async with db.get_session() as session:
            await ledger.get_or_create_current_period(session, "user-1")
        await _subscribe(db, subscriptions, start=END, end=END + timedelta(days=30))
        async with db.get_session() as session:
            await ledger.get_or_create_current_period(session, "user-1")
            periods = await ledger.list_periods(session, "user-1")
        assert len(periods) == 2
        assert periods[0].period_start > periods[1].period_start

    async def test_unknown_price_raises(self, db, ledger, subscriptions):
        await _subscribe(db, subscriptions, price_id="price_mystery")
        async with db.get_session() as session:
            with pytest.raises(TierNotFoundError):
                await ledger.get_or_create_current_period(session, "user-1")

    async def test_price_map_resolves_tier(self, db, subscriptions):
        settings = make_settings(price_tier_map='{"price_123": "expert_advisor"}')
        subs = SubscriptionService(settings)
        ledger = UsageLedger(settings, subs)
        await _subscribe(db, subs, price_id="price_123")
        async with db.get_session() as session:
            period = await ledger.get_or_create_current_period(session, "user-1")
        assert period.tier == "expert_advisor"


class TestIncrement:
    async def _period(self, db, ledger, subscriptions):
        await _subscribe(db, subscriptions)
        async with db.get_session() as session:
            return await ledger.get_or_create_current_period(session, "user-1")

    async def test_increments_accumulate(self, db, ledger, subscriptions):
        period = await self._period(db, ledger, subscriptions)
        async with db.get_session() as session:
            await ledger.increment(session, period.id, {"sessions": 1})
        async with db.get_session() as session:
            updated = await ledger.increment(session, period.id, {"sessions": 1, "minutes": 12})
        assert updated.sessions_used == 2
        assert updated.minutes_used == 12
        assert updated.last_conversation_at is not None
        assert updated.last_document_generated_at is None

    async def test_zero_delta_is_noop(self, db, ledger, subscriptions):
        period = await self._period(db, ledger, subscriptions)
        async with db.get_session() as session:
            updated = await ledger.increment(session, period.id, {"minutes": 0})
        assert updated.minutes_used == 0
        assert updated.last_conversation_at is None

    async def test_negative_delta_rejected(self, db, ledger, subscriptions):
        period = await self._period(db, ledger, subscriptions)
        async with db.get_session() as session:
            with pytest.raises(ValueError):
                await ledger.increment(session, period.id, {"minutes": -5})

    async def test_unknown_counter_rejected(self, db, ledger, subscriptions):
        period = await self._period(db, ledger, subscriptions)
        async with db.get_session() as session:
            with pytest.raises(ValueError):
                await ledger.increment(session, period.id, {"api_calls": 1})

    async def test_missing_period(self, db, ledger):
        async with db.get_session() as session:
            with pytest.raises(LookupError):
                await ledger.increment(session, "no-such-period", {"sessions": 1})

    async def test_rolled_back_increment_not_applied(self, db, ledger, subscriptions):
        period = await self._period(db, ledger, subscriptions)
        with pytest.raises(RuntimeError):
            async with db.get_session() as session:
                await ledger.increment(session, period.id, {"sessions": 1})
                raise RuntimeError("boom")
        async with db.get_session() as session:
            assert (await ledger.get_period(session, period.id)).sessions_used == 0


class TestDocumentUsage:
    async def test_record_document(self, db, ledger, subscriptions):
        await _subscribe(db, subscriptions)
        async with db.get_session() as session:
            period = await ledger.record_document_usage(
                session, "user-1", "business_plan", tokens=1800, metadata={"source": "chat"},
            )
        assert period.documents_generated == 1
        assert period.tokens_consumed == 1800
        assert period.last_document_generated_at is not None

        async with db.get_session() as session:
            rows = (await session.execute(select(UsageRecordModel))).scalars().all()
        assert sorted(r.metric for r in rows) == ["documents", "tokens"]
        assert rows[0].metadata_["document_type"] == "business_plan"
        assert rows[0].metadata_["source"] == "chat"

    async def test_record_document_without_tokens(self, db, ledger, subscriptions):
        await _subscribe(db, subscriptions)
        async with db.get_session() as session:
            period = await ledger.record_document_usage(session, "user-1", "pitch_deck")
        assert period.documents_generated == 1
        assert period.tokens_consumed == 0

    async def test_record_document_without_subscription(self, db, ledger):
        async with db.get_session() as session:
            assert await ledger.record_document_usage(session, "nobody", "pitch_deck") is None


class TestSummary:
    async def test_summary_shape(self, db, ledger, subscriptions):
        await _subscribe(db, subscriptions, price_id="founder_essential")
        async with db.get_session() as session:
            period = await ledger.get_or_create_current_period(session, "user-1")
            await ledger.increment(session, period.id, {"sessions": 1, "minutes": 50, "documents": 5})
        async with db.get_session() as session:
            summary = await ledger.get_usage_summary(session, "user-1")

        assert summary["tier"] == "founder_essential"
        assert summary["resources"]["sessions"] == {
            "used": 1, "limit": 2, "remaining": 1, "percentage": 50.0,
        }
        assert summary["resources"]["minutes"]["remaining"] == 0
        assert summary["overage"]["minutes"] == {"amount": 10, "cost": 5.0}
        assert summary["period_start"].tzinfo is not None

    async def test_summary_unlimited(self, db, ledger, subscriptions):
        await _subscribe(db, subscriptions, price_id="expert_advisor")
        async with db.get_session() as session:
            period = await ledger.get_or_create_current_period(session, "user-1")
            summary = summarize_period(period)
        assert summary["resources"]["documents"]["limit"] is None
        assert summary["resources"]["documents"]["remaining"] is None
        assert summary["resources"]["documents"]["percentage"] is None

    async def test_summary_without_subscription(self, db, ledger):
        async with db.get_session() as session:
            assert await ledger.get_usage_summary(session, "nobody") is None


class TestRecentStarts:
    async def test_counts_detail_rows_in_window(self, db, ledger, subscriptions):
        from mentor_meter.usage.models import ConversationUsageDetailModel

        await _subscribe(db, subscriptions)
        now = utcnow()
        async with db.get_session() as session:
            period = await ledger.get_or_create_current_period(session, "user-1")
            for i, age in enumerate([5, 30, 90]):
                session.add(ConversationUsageDetailModel(
                    conversation_id=f"c{i}", user_id="user-1",
                    usage_period_id=period.id,
                    started_at=now - timedelta(minutes=age),
                ))
        async with db.get_session() as session:
            count = await ledger.count_recent_starts(session, "user-1", now - timedelta(hours=1))
        assert count == 2
