"""Integration tests for entitlement checks and the tier catalogue."""

import json
from datetime import timedelta

from sqlalchemy.exc import OperationalError

from mentor_meter.common.models import utcnow

CHECK = "/entitlements/check"


async def start_session(client, conversation_id, minutes=None):
    started = utcnow().replace(microsecond=0) - timedelta(hours=2)
    await client.post("/webhooks/provider", content=json.dumps({
        "conversation_id": conversation_id,
        "event_type": "system.replica_joined",
        "timestamp": started.isoformat(),
    }).encode())
    if minutes is not None:
        await client.post("/webhooks/provider", content=json.dumps({
            "conversation_id": conversation_id,
            "event_type": "system.shutdown",
            "timestamp": (started + timedelta(minutes=minutes)).isoformat(),
            "properties": {"reason": "max_call_duration"},
        }).encode())


class TestConversationChecks:
    async def test_no_subscription(self, client):
        resp = await client.post(CHECK, json={"user_id": "nobody", "action_type": "conversation"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["allowed"] is False
        assert data["reason"] == "no_subscription"
        assert data["upgrade_required"] is True
        assert data["upgrade_suggestion"]["tier"] == "founder_companion"

    async def test_fresh_subscriber_allowed(self, client, subscribe):
        await subscribe()
        resp = await client.post(CHECK, json={
            "user_id": "user-1", "action_type": "conversation", "estimated_duration_minutes": 30,
        })
        data = resp.json()
        assert data["allowed"] is True
        assert data["remaining"]["sessions"] == 3
        assert data["limits"]["minutes"] == 75
        assert data["tier_info"]["id"] == "founder_companion"
        assert data["warnings"] == []

    async def test_within_limits_after_one_session(self, client, subscribe, register_conversation):
        await subscribe()
        await register_conversation("c1")
        await start_session(client, "c1", minutes=25)

        resp = await client.post(CHECK, json={
            "user_id": "user-1", "action_type": "conversation", "estimated_duration_minutes": 30,
        })
        data = resp.json()
        assert data["allowed"] is True
        assert data["remaining"]["sessions"] == 2
        assert data["remaining"]["minutes"] == 50
        assert data["current_usage"]["sessions"] == 1

    async def test_sessions_exhausted(self, client, subscribe, register_conversation):
        await subscribe()
        for cid in ("c1", "c2", "c3"):
            await register_conversation(cid)
            await start_session(client, cid, minutes=5)

        resp = await client.post(CHECK, json={"user_id": "user-1", "action_type": "conversation"})
        data = resp.json()
        assert data["allowed"] is False
        assert data["reason"] == "sessions_exceeded"
        assert data["upgrade_suggestion"]["tier"] == "growth_partner"

    async def test_canceled_subscription(self, client, subscribe):
        await subscribe(status="canceled")
        resp = await client.post(CHECK, json={"user_id": "user-1", "action_type": "conversation"})
        assert resp.json()["reason"] == "subscription_canceled"

    async def test_trial_ended(self, client, subscribe):
        now = utcnow().replace(microsecond=0)
        await subscribe(status="trialing", start=now - timedelta(days=14), end=now - timedelta(days=1))
        resp = await client.post(CHECK, json={"user_id": "user-1", "action_type": "conversation"})
        assert resp.json()["reason"] == "trial_ended"

    async def test_invalid_action_type(self, client):
        resp = await client.post(CHECK, json={"user_id": "user-1", "action_type": "teleport"})
        assert resp.status_code == 422

    async def test_negative_estimate_rejected(self, client):
        resp = await client.post(CHECK, json={
            "user_id": "user-1", "action_type": "conversation", "estimated_duration_minutes": -1,
        })
        assert resp.status_code == 422


class TestDocumentChecks:
    async def test_unlimited_documents(self, client, subscribe):
        await subscribe(price_id="expert_advisor")
        resp = await client.post(CHECK, json={
            "user_id": "user-1", "action_type": "document_generation",
            "document_type": "pitch_deck", "estimated_tokens": 8000,
        })
        data = resp.json()
        assert data["allowed"] is True
        assert data["remaining"]["documents"] is None
        assert data["limits"]["tokens"] is None
        assert set(data["unlimited"]) == {"documents", "tokens"}

    async def test_documents_exhausted(self, client, admin_headers, subscribe):
        await subscribe(price_id="founder_essential")
        for _ in range(10):
            await client.post("/usage/documents", json={
                "user_id": "user-1", "document_type": "pitch_deck",
            }, headers=admin_headers)

        resp = await client.post(CHECK, json={"user_id": "user-1", "action_type": "document_generation"})
        assert resp.json()["reason"] == "documents_exceeded"

    async def test_zero_token_estimate_when_tokens_exhausted(self, client, admin_headers, subscribe):
        await subscribe(price_id="founder_essential")
        await client.post("/usage/documents", json={
            "user_id": "user-1", "document_type": "business_plan", "tokens": 25_000,
        }, headers=admin_headers)

        resp = await client.post(CHECK, json={
            "user_id": "user-1", "action_type": "document_generation", "estimated_tokens": 0,
        })
        data = resp.json()
        assert data["allowed"] is False
        assert data["reason"] == "tokens_exceeded"


class TestInfrastructureErrors:
    async def test_unknown_price_is_not_a_denial(self, client, subscribe):
        await subscribe(price_id="price_not_configured")
        resp = await client.post(CHECK, json={"user_id": "user-1", "action_type": "conversation"})
        assert resp.status_code == 500
        data = resp.json()
        assert data["code"] == "TIER_NOT_FOUND"
        assert "allowed" not in data

    async def test_database_error(self, client, monkeypatch):
        from mentor_meter.deps import get_entitlement_service

        async def failing_check(session, request):
            raise OperationalError("SELECT", {}, Exception("connection refused"))

        monkeypatch.setattr(get_entitlement_service(), "check", failing_check)
        resp = await client.post(CHECK, json={"user_id": "user-1", "action_type": "conversation"})
        assert resp.status_code == 500
        assert resp.json()["code"] == "DATABASE_ERROR"
        assert resp.json()["retryable"] is True


class TestTiers:
    async def test_list_tiers(self, client):
        resp = await client.get("/tiers")
        assert resp.status_code == 200
        tiers = {t["id"]: t for t in resp.json()}
        assert list(tiers) == [
            "founder_essential", "founder_companion", "growth_partner", "expert_advisor",
        ]
        assert tiers["expert_advisor"]["documents_limit"] is None
        assert tiers["growth_partner"]["upgrade_benefits"]
