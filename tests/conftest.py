"""Shared test fixtures for mentor-meter."""

import os
from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient


API_KEY = "test-admin-api-key"
WEBHOOK_SECRET = "test-webhook-secret-for-unit-tests"

PERIOD_START = datetime.now(timezone.utc).replace(microsecond=0) - timedelta(days=5)
PERIOD_END = PERIOD_START + timedelta(days=30)


@pytest.fixture
def api_key():
    return API_KEY


@pytest.fixture
def webhook_secret():
    return WEBHOOK_SECRET


def _configure_env(**extra):
    os.environ["MENTOR_DB_URL"] = "sqlite+aiosqlite://"
    os.environ["MENTOR_API_KEY"] = API_KEY
    os.environ["MENTOR_REALTIME_URL"] = ""
    os.environ.pop("MENTOR_WEBHOOK_SECRET", None)
    for key, value in extra.items():
        os.environ[key] = value

    # Clear caches and singletons so new env vars take effect
    from mentor_meter.common.config import get_settings
    get_settings.cache_clear()

    from mentor_meter.deps import reset_singletons
    reset_singletons()


@pytest.fixture
def app():
    """Create a test app with in-memory DB and unsigned webhooks."""
    _configure_env()
    from mentor_meter.app import create_app
    return create_app()


@pytest.fixture
def signed_app():
    """Create a test app that requires signed webhooks."""
    _configure_env(MENTOR_WEBHOOK_SECRET=WEBHOOK_SECRET)
    from mentor_meter.app import create_app
    yield create_app()
    os.environ.pop("MENTOR_WEBHOOK_SECRET", None)


async def _client_for(app):
    # Manually init DB since ASGITransport doesn't run lifespan
    from mentor_meter.deps import get_broadcaster, get_db
    db = get_db()
    await db.init()
    await db.create_all()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await get_broadcaster().close()
    await db.close()


@pytest.fixture
async def client(app):
    async for ac in _client_for(app):
        yield ac


@pytest.fixture
async def signed_client(signed_app):
    async for ac in _client_for(signed_app):
        yield ac


@pytest.fixture
def admin_headers():
    return {"X-Mentor-Api-Key": API_KEY}


@pytest.fixture
def subscribe(client, admin_headers):
    """Store a billing subscription for a user via the admin API."""

    async def _subscribe(user_id="user-1", price_id="founder_companion", status="active",
                         start=PERIOD_START, end=PERIOD_END):
        resp = await client.put(f"/subscriptions/{user_id}", json={
            "price_id": price_id,
            "status": status,
            "subscription_id": f"sub_{user_id}",
            "current_period_start": start.isoformat(),
            "current_period_end": end.isoformat(),
        }, headers=admin_headers)
        assert resp.status_code == 200, resp.text
        return resp.json()

    return _subscribe


@pytest.fixture
def register_conversation(client, admin_headers):
    async def _register(provider_conversation_id="c1", user_id="user-1"):
        resp = await client.post("/conversations", json={
            "user_id": user_id,
            "provider_conversation_id": provider_conversation_id,
        }, headers=admin_headers)
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _register
