"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup, so a malformed value fails fast with a clear error message.

Usage:
    from trade_mediator.config import get_settings
    settings = get_settings()
    print(settings.max_open_tickets_per_user)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the trade mediator."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://mediator:mediator_dev"
        "@localhost:5432/trade_mediator"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis (panel ids, cooldowns, review invites) ---
    redis_url: str = "redis://localhost:6379/0"
    review_invite_ttl_seconds: int = 7 * 24 * 60 * 60

    # --- Discord ---
    discord_bot_token: str = ""
    discord_bot_user_id: str = ""
    discord_api_base_url: str = "https://discord.com/api/v10"
    discord_timeout_seconds: float = 10.0
    discord_max_retries: int = 3
    discord_ticket_category_id: str = ""
    discord_reviews_channel_id: str = ""

    # --- Ticket rules ---
    max_open_tickets_per_user: int = 3
    ticket_open_cooldown_seconds: int = 60

    # --- Trade / review limits ---
    trade_offer_max_length: int = 1000
    trade_item_name_max_length: int = 240
    review_comment_max_length: int = 500

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
