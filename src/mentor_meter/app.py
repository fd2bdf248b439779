"""FastAPI application factory for mentor-meter."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mentor_meter.common.config import get_settings
from mentor_meter.common.schemas import HealthResponse


def create_app() -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        from mentor_meter.deps import get_broadcaster, get_db
        db = get_db()
        await db.init()
        await db.create_all()
        yield
        # Shutdown
        await get_broadcaster().close()
        await db.close()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(version=settings.api_version)

    # Mount routers
    from mentor_meter.webhooks.router import router as webhook_router
    from mentor_meter.entitlements.router import router as entitlement_router
    from mentor_meter.usage.router import router as usage_router
    from mentor_meter.subscriptions.router import router as subscription_router
    from mentor_meter.conversations.router import router as conversation_router

    prefix = settings.api_prefix
    app.include_router(webhook_router, prefix=prefix, tags=["webhooks"])
    app.include_router(entitlement_router, prefix=prefix, tags=["entitlements"])
    app.include_router(usage_router, prefix=prefix, tags=["usage"])
    app.include_router(subscription_router, prefix=prefix, tags=["subscriptions"])
    app.include_router(conversation_router, prefix=prefix, tags=["conversations"])

    return app
