"""Integration tests for the conversation registry."""


class TestConversationRouter:
    async def test_register(self, register_conversation):
        data = await register_conversation("c1", "user-1")
        assert data["provider_conversation_id"] == "c1"
        assert data["status"] == "pending"
        assert data["has_transcript"] is False

    async def test_register_duplicate(self, client, admin_headers, register_conversation):
        await register_conversation("c1")
        resp = await client.post("/conversations", json={
            "user_id": "user-1", "provider_conversation_id": "c1",
        }, headers=admin_headers)
        assert resp.status_code == 409

    async def test_get_and_list(self, client, admin_headers, register_conversation):
        await register_conversation("c1")
        await register_conversation("c2")
        await register_conversation("c3", user_id="user-2")

        resp = await client.get("/conversations/c2", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["user_id"] == "user-1"

        resp = await client.get("/conversations", params={"user_id": "user-1"}, headers=admin_headers)
        assert sorted(c["provider_conversation_id"] for c in resp.json()) == ["c1", "c2"]

    async def test_get_missing(self, client, admin_headers):
        resp = await client.get("/conversations/ghost", headers=admin_headers)
        assert resp.status_code == 404

    async def test_transcript_missing(self, client, admin_headers, register_conversation):
        await register_conversation("c1")
        resp = await client.get("/conversations/c1/transcript", headers=admin_headers)
        assert resp.status_code == 404

    async def test_soft_delete_rejects_webhooks(self, client, admin_headers, register_conversation):
        await register_conversation("c1")
        resp = await client.delete("/conversations/c1", headers=admin_headers)
        assert resp.status_code == 204

        assert (await client.get("/conversations/c1", headers=admin_headers)).status_code == 404
        webhook = await client.post("/webhooks/provider", json={
            "conversation_id": "c1", "event_type": "system.replica_joined",
        })
        assert webhook.status_code == 401

    async def test_delete_missing(self, client, admin_headers):
        resp = await client.delete("/conversations/ghost", headers=admin_headers)
        assert resp.status_code == 404


class TestHealth:
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["service"] == "mentor-meter"
