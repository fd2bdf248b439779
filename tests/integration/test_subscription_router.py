"""Integration tests for subscription record endpoints."""


class TestSubscriptionRouter:
    async def test_upsert_and_get(self, client, admin_headers, subscribe):
        created = await subscribe(price_id="founder_essential")
        assert created["tier"] == "founder_essential"
        assert created["status"] == "active"

        resp = await client.get("/subscriptions/user-1", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["subscription_id"] == "sub_user-1"

    async def test_upsert_replaces_record(self, client, admin_headers, subscribe):
        await subscribe(price_id="founder_essential")
        updated = await subscribe(price_id="growth_partner", status="past_due")
        assert updated["tier"] == "growth_partner"
        assert updated["status"] == "past_due"

    async def test_unknown_price_has_no_tier(self, subscribe):
        created = await subscribe(price_id="price_unmapped")
        assert created["tier"] is None

    async def test_get_missing(self, client, admin_headers):
        resp = await client.get("/subscriptions/nobody", headers=admin_headers)
        assert resp.status_code == 404

    async def test_invalid_status(self, client, admin_headers):
        resp = await client.put("/subscriptions/user-1", json={
            "status": "enchanted",
        }, headers=admin_headers)
        assert resp.status_code == 422

    async def test_period_end_before_start(self, client, admin_headers):
        resp = await client.put("/subscriptions/user-1", json={
            "status": "active",
            "current_period_start": "2026-02-01T00:00:00Z",
            "current_period_end": "2026-01-01T00:00:00Z",
        }, headers=admin_headers)
        assert resp.status_code == 422

    async def test_requires_api_key(self, client):
        resp = await client.get("/subscriptions/user-1", headers={"X-Mentor-Api-Key": "nope"})
        assert resp.status_code == 403
