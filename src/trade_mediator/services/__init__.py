"""Application services — use case orchestration."""

from trade_mediator.services.lifecycle_service import TradeLifecycleService
from trade_mediator.services.middleman_service import MiddlemanService
from trade_mediator.services.review_service import ReviewService

__all__ = ["MiddlemanService", "ReviewService", "TradeLifecycleService"]
