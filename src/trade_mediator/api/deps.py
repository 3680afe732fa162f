"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject the services built
in the application lifespan, plus configuration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request

from trade_mediator.config import Settings, get_settings

if TYPE_CHECKING:
    from trade_mediator.domain.ports import KeyValueStore
    from trade_mediator.services import MiddlemanService, ReviewService, TradeLifecycleService


def get_lifecycle_service(request: Request) -> TradeLifecycleService:
    """Provide the lifecycle service created at startup."""
    return request.app.state.lifecycle_service


def get_review_service(request: Request) -> ReviewService:
    """Provide the review service created at startup."""
    return request.app.state.review_service


def get_middleman_service(request: Request) -> MiddlemanService:
    """Provide the middleman service created at startup."""
    return request.app.state.middleman_service


def get_key_value_store(request: Request) -> KeyValueStore | None:
    """Provide the key/value store, or None if it was never configured."""
    return getattr(request.app.state, "store", None)


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()
