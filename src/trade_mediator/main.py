"""FastAPI application entry point for the Trade Mediator.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, the Discord adapter and
       the services; create tables (dev mode).
    2. Running: Serve the REST API on a single Uvicorn process.
    3. Shutdown: Close the Discord client, database and Redis connections.

Run with:
    uv run uvicorn trade_mediator.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from trade_mediator.config import get_settings
from trade_mediator.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
    )

    # 2. Initialize database
    from trade_mediator.infrastructure.database.engine import (
        close_db,
        get_session_factory,
        init_db,
    )

    await init_db()
    session_factory = get_session_factory()

    # 3. Initialize Redis (panel ids, cooldowns and review invites live there)
    from trade_mediator.infrastructure.redis_client import (
        RedisKeyValueStore,
        close_redis,
        init_redis,
    )

    try:
        redis = await init_redis()
    except Exception as exc:
        logger.error("app.redis_unavailable", error=str(exc))
        await close_db()
        raise
    store = RedisKeyValueStore(redis)

    # 4. Chat platform and services
    from trade_mediator.infrastructure.discord_client import DiscordRestChatPlatform
    from trade_mediator.services import MiddlemanService, ReviewService, TradeLifecycleService
    from trade_mediator.services.notifications import ChannelNotifier

    chat = DiscordRestChatPlatform.from_settings(settings)
    notifier = ChannelNotifier(chat, reviews_channel_id=settings.discord_reviews_channel_id)

    app.state.session_factory = session_factory
    app.state.store = store
    app.state.lifecycle_service = TradeLifecycleService(
        session_factory=session_factory,
        chat=chat,
        store=store,
        notifier=notifier,
        settings=settings,
    )
    app.state.review_service = ReviewService(
        session_factory=session_factory,
        store=store,
        notifier=notifier,
        settings=settings,
    )
    app.state.middleman_service = MiddlemanService(session_factory)

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    await chat.aclose()
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Trade Mediator",
        description=(
            "Middleman ticket lifecycle: open, register trades, claim, "
            "confirm, close and review."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from trade_mediator.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from trade_mediator.api.routes.health import router as health_router
    from trade_mediator.api.routes.middlemen import router as middlemen_router
    from trade_mediator.api.routes.reviews import router as reviews_router
    from trade_mediator.api.routes.tickets import router as tickets_router

    app.include_router(health_router)
    app.include_router(tickets_router)
    app.include_router(reviews_router)
    app.include_router(middlemen_router)

    return app


# The app instance used by Uvicorn
app = create_app()
