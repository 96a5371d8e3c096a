"""Tracker settings, read from environment variables and an optional `.env`.

Each concern (database, Redis, Koios, pricing, Discord, snapshots, alert
formatting) is its own settings group; `get_settings` returns one cached
instance per process.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


def _nested(settings_cls: type[BaseSettings]) -> Any:
    """Field for a settings group loaded from the environment and `.env`."""
    return Field(
        default_factory=lambda: settings_cls(_env_file=_ENV_FILE, _env_file_encoding=_ENV_FILE_ENCODING)
    )


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL (or SQLite for local runs) connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string for the reference-rate cache",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is not None and not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v

    @property
    def enabled(self) -> bool:
        return self.url is not None


class KoiosSettings(BaseSettings):
    """Koios chain indexer settings."""

    model_config = SettingsConfigDict(env_prefix="KOIOS_", extra="ignore")

    base_url: str = Field(
        default="https://api.koios.rest/api/v1",
        alias="KOIOS_BASE_URL",
        description="Koios REST API base URL",
    )
    api_key: SecretStr | None = Field(
        default=None,
        alias="KOIOS_API_KEY",
        description="Optional Koios bearer token",
    )
    timeout_seconds: float = Field(
        default=20.0,
        alias="KOIOS_TIMEOUT_SECONDS",
        gt=0.0,
        le=300.0,
        description="HTTP timeout for Koios requests",
    )
    max_retries: int = Field(
        default=2,
        alias="KOIOS_MAX_RETRIES",
        ge=0,
        le=10,
        description="Retries on transient Koios failures",
    )


class PricingSettings(BaseSettings):
    """Price source settings (Kraken ticker, CoinGecko aggregator)."""

    model_config = SettingsConfigDict(env_prefix="PRICING_", extra="ignore")

    kraken_base_url: str = Field(
        default="https://api.kraken.com/0/public",
        alias="PRICING_KRAKEN_BASE_URL",
        description="Kraken public REST API base URL",
    )
    coingecko_base_url: str = Field(
        default="https://api.coingecko.com/api/v3",
        alias="PRICING_COINGECKO_BASE_URL",
        description="CoinGecko REST API base URL",
    )
    timeout_seconds: float = Field(
        default=10.0,
        alias="PRICING_TIMEOUT_SECONDS",
        gt=0.0,
        le=120.0,
        description="HTTP timeout for price source requests",
    )
    max_retries: int = Field(
        default=2,
        alias="PRICING_MAX_RETRIES",
        ge=0,
        le=10,
        description="Retries on transient price source failures",
    )

    ada_kraken_pair: str = Field(default="ADAUSD", alias="PRICING_ADA_KRAKEN_PAIR")
    ada_kraken_result_key_hint: str = Field(default="ADAUSD", alias="PRICING_ADA_KRAKEN_RESULT_KEY_HINT")
    ada_coingecko_id: str = Field(default="cardano", alias="PRICING_ADA_COINGECKO_ID")
    btc_kraken_pair: str = Field(default="XBTUSD", alias="PRICING_BTC_KRAKEN_PAIR")
    # Kraken answers XBTUSD queries under the legacy XXBTZUSD key.
    btc_kraken_result_key_hint: str = Field(default="XXBTZUSD", alias="PRICING_BTC_KRAKEN_RESULT_KEY_HINT")
    btc_coingecko_id: str = Field(default="bitcoin", alias="PRICING_BTC_COINGECKO_ID")

    reference_cache_ttl_seconds: int = Field(
        default=300,
        alias="PRICING_REFERENCE_CACHE_TTL_SECONDS",
        ge=1,
        le=7 * 24 * 3600,
        description="How long cached ADA/BTC reference rates stay usable",
    )
    token_usd_price_overrides_json: str | None = Field(
        default=None,
        alias="TOKEN_USD_PRICE_OVERRIDES_JSON",
        description='One-time import of manual prices: {"<unit>": {"priceUsd": 1.0}}',
    )


class DiscordSettings(BaseSettings):
    """Discord notification settings."""

    model_config = SettingsConfigDict(env_prefix="DISCORD_", extra="ignore")

    webhook_url: SecretStr | None = Field(
        default=None,
        alias="DISCORD_WEBHOOK_URL",
        description="Discord webhook URL for threshold alerts",
    )
    timeout_seconds: float = Field(
        default=10.0,
        alias="DISCORD_TIMEOUT_SECONDS",
        gt=0.0,
        le=120.0,
    )

    @property
    def enabled(self) -> bool:
        """Check if Discord notifications are enabled."""
        return self.webhook_url is not None


class SnapshotSettings(BaseSettings):
    """Snapshot pipeline settings."""

    model_config = SettingsConfigDict(env_prefix="SNAPSHOT_", extra="ignore")

    auth_token: SecretStr | None = Field(
        default=None,
        alias="SNAPSHOT_AUTH_TOKEN",
        description="Shared secret required by scheduled snapshot callers",
    )
    manual_cooldown_minutes: int = Field(
        default=10,
        alias="SNAPSHOT_MANUAL_COOLDOWN_MINUTES",
        ge=0,
        le=24 * 60,
        description="Minimum minutes between manual snapshots",
    )
    batch_size: int = Field(
        default=25,
        alias="SNAPSHOT_BATCH_SIZE",
        ge=1,
        le=500,
        description="Wallets per paginated snapshot batch",
    )
    series_default_hours: int = Field(
        default=168,
        alias="SNAPSHOT_SERIES_DEFAULT_HOURS",
        ge=1,
        le=24 * 365,
        description="Default lookback window for allocation charts",
    )


class AlertSettings(BaseSettings):
    """Threshold alert message settings."""

    model_config = SettingsConfigDict(env_prefix="ALERT_", extra="ignore")

    max_suggestions: int = Field(
        default=10,
        alias="ALERT_MAX_SUGGESTIONS",
        ge=0,
        le=100,
        description="Swap suggestions listed per alert message",
    )
    max_notes: int = Field(
        default=5,
        alias="ALERT_MAX_NOTES",
        ge=0,
        le=100,
        description="Planner notes listed per alert message",
    )


class Settings(BaseSettings):
    """Root settings object holding every group plus process-wide flags.

    Example:
        ```python
        from cardano_portfolio_tracker.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # Nested groups read the same .env file as the root settings.
    database: DatabaseSettings = _nested(DatabaseSettings)
    redis: RedisSettings = _nested(RedisSettings)
    koios: KoiosSettings = _nested(KoiosSettings)
    pricing: PricingSettings = _nested(PricingSettings)
    discord: DiscordSettings = _nested(DiscordSettings)
    snapshot: SnapshotSettings = _nested(SnapshotSettings)
    alert: AlertSettings = _nested(AlertSettings)

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Evaluate alerts without persisting or sending them",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "koios": {
                "base_url": self.koios.base_url,
                "api_key": "(set)" if self.koios.api_key else "(not set)",
            },
            "pricing": {
                "kraken_base_url": self.pricing.kraken_base_url,
                "coingecko_base_url": self.pricing.coingecko_base_url,
                "reference_cache_ttl_seconds": str(self.pricing.reference_cache_ttl_seconds),
                "overrides": "(set)" if self.pricing.token_usd_price_overrides_json else "(not set)",
            },
            "snapshot": {
                "auth_token": "(set)" if self.snapshot.auth_token else "(not set)",
                "manual_cooldown_minutes": str(self.snapshot.manual_cooldown_minutes),
                "batch_size": str(self.snapshot.batch_size),
            },
            "discord_enabled": str(self.discord.enabled),
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    def validate_requirements(
        self, *, command: Literal["snapshot", "check-thresholds", "test-price", "init-db", "seed-tokens"]
    ) -> None:
        """Validate command-specific requirements.

        A command refuses to run when a capability it needs is not configured.
        """
        if command == "check-thresholds" and not self.dry_run and not self.discord.enabled:
            raise ValueError("DISCORD_WEBHOOK_URL is required for check-thresholds (or set DRY_RUN=true)")

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
