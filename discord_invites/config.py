from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Required (validated when the issuer is built)
    DISCORD_BOT_TOKEN: Optional[str] = None
    DISCORD_CHANNEL_ID: Optional[str] = None

    # Discord API
    DISCORD_API_BASE: str = "https://discord.com/api/v10"
    DISCORD_TIMEOUT_SECONDS: float = 10.0

    # Cache store: "sqlite", "memory" or "none"
    CACHE_BACKEND: str = "sqlite"
    CACHE_DB_PATH: str = "./data/invites.db"
    CACHE_KEY_PREFIX: str = "discord:invite:"

    # Invite lifecycle
    INVITE_MAX_AGE_SECONDS: int = 120
    VALIDITY_BUFFER_MS: int = 10_000

    # HTTP server
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    # Overrides the request origin used by the same-origin check (reverse proxies)
    ALLOWED_ORIGIN: Optional[str] = None

    # Logging / Observability
    LOG_LEVEL: str = "INFO"
    SENTRY_DSN: Optional[str] = None


@dataclass(frozen=True)
class IssuerConfig:
    """Validated configuration handed to the invite issuer at construction."""

    bot_token: str
    channel_id: str
    max_age_seconds: int = 120
    validity_buffer_ms: int = 10_000
    key_prefix: str = "discord:invite:"

    def __post_init__(self) -> None:
        if not self.bot_token:
            raise ConfigurationError("DISCORD_BOT_TOKEN is not set")
        if not self.channel_id:
            raise ConfigurationError("DISCORD_CHANNEL_ID is not set")
        if self.max_age_seconds <= 0:
            raise ConfigurationError("INVITE_MAX_AGE_SECONDS must be positive")
        if self.validity_buffer_ms < 0:
            raise ConfigurationError("VALIDITY_BUFFER_MS must not be negative")
        if self.validity_buffer_ms >= self.max_age_seconds * 1000:
            raise ConfigurationError("VALIDITY_BUFFER_MS must be shorter than the invite lifetime")

    @property
    def max_age_ms(self) -> int:
        return self.max_age_seconds * 1000

    @classmethod
    def from_settings(cls, settings: Settings) -> "IssuerConfig":
        return cls(
            bot_token=settings.DISCORD_BOT_TOKEN or "",
            channel_id=settings.DISCORD_CHANNEL_ID or "",
            max_age_seconds=settings.INVITE_MAX_AGE_SECONDS,
            validity_buffer_ms=settings.VALIDITY_BUFFER_MS,
            key_prefix=settings.CACHE_KEY_PREFIX,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and cache application settings from environment/.env."""
    return Settings()  # type: ignore[call-arg]
