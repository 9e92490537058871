"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Token Whale Tracker pipeline, loading and validating environment
variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from token_whale_tracker.errors import ConfigurationError

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="sqlite+aiosqlite:///token_whale_tracker.db",
        alias="DATABASE_URL",
        description="PostgreSQL (or sqlite+aiosqlite for local runs) connection string",
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

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string (single-flight job locks)",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class HeliusSettings(BaseSettings):
    """Solana chain-data provider (Helius JSON-RPC) settings."""

    model_config = SettingsConfigDict(env_prefix="HELIUS_", extra="ignore")

    api_key: SecretStr | None = Field(
        default=None,
        alias="HELIUS_API_KEY",
        description="Helius API key; whale tracking is disabled without it",
    )
    rpc_url: str = Field(
        default="https://mainnet.helius-rpc.com",
        alias="HELIUS_RPC_URL",
        description="Helius RPC endpoint (api-key is appended as a query parameter)",
    )
    max_retries: int = Field(
        default=3,
        alias="HELIUS_MAX_RETRIES",
        ge=1,
        le=10,
        description="Attempts per call before giving up on throttling/timeouts",
    )
    retry_base_delay_seconds: float = Field(
        default=1.0,
        alias="HELIUS_RETRY_BASE_DELAY_SECONDS",
        ge=0.0,
        le=60.0,
        description="Linear backoff step: delay = base * attempt",
    )
    signatures_timeout_seconds: float = Field(
        default=8.0,
        alias="HELIUS_SIGNATURES_TIMEOUT_SECONDS",
        gt=0.0,
        le=60.0,
        description="Timeout for getSignaturesForAddress",
    )
    transaction_timeout_seconds: float = Field(
        default=10.0,
        alias="HELIUS_TRANSACTION_TIMEOUT_SECONDS",
        gt=0.0,
        le=60.0,
        description="Timeout for getTransaction",
    )

    @field_validator("rpc_url")
    @classmethod
    def validate_rpc_url(cls, v: str) -> str:
        """Validate RPC URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("HELIUS_RPC_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class DexScreenerSettings(BaseSettings):
    """Market-pair data provider settings."""

    model_config = SettingsConfigDict(env_prefix="DEXSCREENER_", extra="ignore")

    base_url: str = Field(
        default="https://api.dexscreener.com",
        alias="DEXSCREENER_BASE_URL",
        description="DexScreener API host",
    )
    chunk_size: int = Field(
        default=30,
        alias="DEXSCREENER_CHUNK_SIZE",
        ge=1,
        le=30,
        description="Addresses per batched lookup (upstream limit is 30)",
    )
    chunk_delay_seconds: float = Field(
        default=1.0,
        alias="DEXSCREENER_CHUNK_DELAY_SECONDS",
        ge=0.0,
        le=30.0,
        description="Delay between batched lookups",
    )
    timeout_seconds: float = Field(
        default=10.0,
        alias="DEXSCREENER_TIMEOUT_SECONDS",
        gt=0.0,
        le=60.0,
        description="Per-request timeout",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("DEXSCREENER_BASE_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class MoralisSettings(BaseSettings):
    """Bonding-curve candidate feed settings."""

    model_config = SettingsConfigDict(env_prefix="MORALIS_", extra="ignore")

    api_key: SecretStr | None = Field(
        default=None,
        alias="MORALIS_API_KEY",
        description="Moralis API key for the pump.fun bonding feed",
    )
    base_url: str = Field(
        default="https://solana-gateway.moralis.io",
        alias="MORALIS_BASE_URL",
        description="Moralis Solana gateway host",
    )
    bonding_limit: int = Field(
        default=100,
        alias="MORALIS_BONDING_LIMIT",
        ge=1,
        le=100,
        description="Bonding tokens requested per refresh",
    )
    timeout_seconds: float = Field(
        default=15.0,
        alias="MORALIS_TIMEOUT_SECONDS",
        gt=0.0,
        le=60.0,
        description="Per-request timeout",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("MORALIS_BASE_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class AggregatorSettings(BaseSettings):
    """Market data aggregation and snapshot caching."""

    model_config = SettingsConfigDict(env_prefix="AGGREGATOR_", extra="ignore")

    cache_ttl_seconds: float = Field(
        default=30.0,
        alias="AGGREGATOR_CACHE_TTL_SECONDS",
        ge=0.0,
        le=3600.0,
        description="Snapshot reuse window for refresh() callers",
    )
    stale_window_seconds: float = Field(
        default=600.0,
        alias="AGGREGATOR_STALE_WINDOW_SECONDS",
        ge=0.0,
        le=86_400.0,
        description="Max snapshot age served when the candidate feed is down",
    )
    min_progress: float = Field(
        default=90.0,
        alias="AGGREGATOR_MIN_PROGRESS",
        ge=0.0,
        le=100.0,
        description="Bonding progress floor for King-of-the-Hill candidates",
    )
    max_tokens: int = Field(
        default=50,
        alias="AGGREGATOR_MAX_TOKENS",
        ge=1,
        le=1000,
        description="Tokens kept per snapshot, ranked by score",
    )
    transfer_summary_enabled: bool = Field(
        default=True,
        alias="AGGREGATOR_TRANSFER_SUMMARY_ENABLED",
        description="Fetch per-token transfer summaries for whale inflow",
    )
    transfer_summary_top_n: int = Field(
        default=30,
        alias="AGGREGATOR_TRANSFER_SUMMARY_TOP_N",
        ge=0,
        le=200,
        description="Tokens (by progress) that get a transfer summary",
    )
    transfer_signature_limit: int = Field(
        default=3,
        alias="AGGREGATOR_TRANSFER_SIGNATURE_LIMIT",
        ge=1,
        le=100,
        description="Recent signatures inspected per token summary",
    )
    transfer_token_delay_seconds: float = Field(
        default=1.5,
        alias="AGGREGATOR_TRANSFER_TOKEN_DELAY_SECONDS",
        ge=0.0,
        le=60.0,
        description="Delay between per-token summary lookups",
    )
    whale_floor_usd: float = Field(
        default=500.0,
        alias="AGGREGATOR_WHALE_FLOOR_USD",
        ge=0.0,
        description="Inbound transfer value that counts toward whale inflow",
    )


class ScoringSettings(BaseSettings):
    """Opportunity score weight table."""

    model_config = SettingsConfigDict(env_prefix="SCORING_", extra="ignore")

    progress_weight: float = Field(default=0.4, alias="SCORING_PROGRESS_WEIGHT", ge=0.0)
    speed_weight: float = Field(default=2.0, alias="SCORING_SPEED_WEIGHT", ge=0.0)
    whale_max_points: float = Field(default=15.0, alias="SCORING_WHALE_MAX_POINTS", ge=0.0)
    whale_saturation_usd: float = Field(
        default=2000.0,
        alias="SCORING_WHALE_SATURATION_USD",
        gt=0.0,
        description="Whale inflow that earns the full whale component",
    )
    momentum_weight: float = Field(default=0.15, alias="SCORING_MOMENTUM_WEIGHT", ge=0.0)
    rug_penalty_max_points: float = Field(
        default=10.0,
        alias="SCORING_RUG_PENALTY_MAX_POINTS",
        ge=0.0,
        description="Points subtracted for a token with rug_risk 0",
    )


class WhaleSettings(BaseSettings):
    """Whale detector settings."""

    model_config = SettingsConfigDict(env_prefix="WHALE_", extra="ignore")

    min_alert_usd: float = Field(
        default=10_000.0,
        alias="MIN_WHALE_ALERT_USD",
        gt=0.0,
        description="USD floor for a transfer to count as a whale event",
    )
    signature_limit: int = Field(
        default=2,
        alias="WHALE_SIGNATURE_LIMIT",
        ge=1,
        le=100,
        description="Recent signatures fetched per token",
    )
    token_limit: int = Field(
        default=10,
        alias="WHALE_TOKEN_LIMIT",
        ge=1,
        le=500,
        description="Top tokens reviewed per detector run",
    )
    token_delay_seconds: float = Field(
        default=1.5,
        alias="WHALE_TOKEN_DELAY_SECONDS",
        ge=0.0,
        le=60.0,
        description="Delay between tokens in one detector run",
    )
    stale_token_hours: float = Field(
        default=4.0,
        alias="WHALE_STALE_TOKEN_HOURS",
        gt=0.0,
        le=168.0,
        description="Top tokens older than this are not reviewed",
    )
    trending_limit: int = Field(
        default=50,
        alias="WHALE_TRENDING_LIMIT",
        ge=1,
        le=200,
        description="Trending pairs requested by the top-token refresh",
    )


class AlertSettings(BaseSettings):
    """Alert dispatch settings and per-tier limits."""

    model_config = SettingsConfigDict(env_prefix="ALERTS_", extra="ignore")

    delivery_delay_seconds: float = Field(
        default=1.2,
        alias="ALERTS_DELIVERY_DELAY_SECONDS",
        ge=0.0,
        le=60.0,
        description="Spacing between deliveries (channel rate limits)",
    )
    free_threshold: float = Field(default=95.0, alias="ALERTS_FREE_THRESHOLD", ge=0.0, le=100.0)
    free_daily_quota: int = Field(default=1, alias="ALERTS_FREE_DAILY_QUOTA", ge=0)
    pro_threshold: float = Field(default=85.0, alias="ALERTS_PRO_THRESHOLD", ge=0.0, le=100.0)
    pro_daily_quota: int = Field(default=100, alias="ALERTS_PRO_DAILY_QUOTA", ge=0)
    ultimate_threshold: float = Field(
        default=80.0, alias="ALERTS_ULTIMATE_THRESHOLD", ge=0.0, le=100.0
    )
    ultimate_daily_quota: int = Field(default=10_000, alias="ALERTS_ULTIMATE_DAILY_QUOTA", ge=0)


class DiscordSettings(BaseSettings):
    """Discord bot settings."""

    model_config = SettingsConfigDict(env_prefix="DISCORD_", extra="ignore")

    enabled: bool = Field(default=False, alias="DISCORD_ENABLED")
    bot_token: SecretStr | None = Field(default=None, alias="DISCORD_BOT_TOKEN")
    whale_channel_id: str | None = Field(
        default=None,
        alias="DISCORD_WHALE_CHANNEL_ID",
        description="Channel that receives whale event posts",
    )

    @field_validator("whale_channel_id")
    @classmethod
    def validate_channel_id(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not v.isdigit():
            raise ValueError("DISCORD_WHALE_CHANNEL_ID must be a numeric snowflake")
        return v


class TelegramSettings(BaseSettings):
    """Telegram bot settings."""

    model_config = SettingsConfigDict(env_prefix="TELEGRAM_", extra="ignore")

    enabled: bool = Field(default=False, alias="TELEGRAM_ENABLED")
    bot_token: SecretStr | None = Field(default=None, alias="TELEGRAM_BOT_TOKEN")


class CronSettings(BaseSettings):
    """Cron trigger surface settings."""

    model_config = SettingsConfigDict(env_prefix="CRON_", extra="ignore")

    secret: SecretStr | None = Field(
        default=None,
        alias="CRON_SECRET",
        description="Shared secret expected in the Authorization header",
    )
    lock_ttl_seconds: int = Field(
        default=600,
        alias="CRON_LOCK_TTL_SECONDS",
        ge=10,
        le=86_400,
        description="Single-flight lock expiry per job name",
    )
    host: str = Field(default="0.0.0.0", alias="CRON_HOST")
    port: int = Field(default=8080, alias="CRON_PORT", ge=1, le=65535)


def _nested(model: type[BaseSettings]):  # noqa: ANN202
    # Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    return Field(
        default_factory=lambda: model(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from token_whale_tracker.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.whale.min_alert_usd)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    database: DatabaseSettings = _nested(DatabaseSettings)
    redis: RedisSettings = _nested(RedisSettings)
    helius: HeliusSettings = _nested(HeliusSettings)
    dexscreener: DexScreenerSettings = _nested(DexScreenerSettings)
    moralis: MoralisSettings = _nested(MoralisSettings)
    aggregator: AggregatorSettings = _nested(AggregatorSettings)
    scoring: ScoringSettings = _nested(ScoringSettings)
    whale: WhaleSettings = _nested(WhaleSettings)
    alerts: AlertSettings = _nested(AlertSettings)
    discord: DiscordSettings = _nested(DiscordSettings)
    telegram: TelegramSettings = _nested(TelegramSettings)
    cron: CronSettings = _nested(CronSettings)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Log notifications instead of sending them",
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
            "redis_url": self._redact_url(self.redis.url),
            "helius": {
                "rpc_url": self.helius.rpc_url,
                "api_key": "(set)" if self.helius.api_key else "(not set)",
                "max_retries": str(self.helius.max_retries),
            },
            "moralis": {
                "base_url": self.moralis.base_url,
                "api_key": "(set)" if self.moralis.api_key else "(not set)",
            },
            "dexscreener": {
                "base_url": self.dexscreener.base_url,
                "chunk_size": str(self.dexscreener.chunk_size),
            },
            "whale": {
                "min_alert_usd": str(self.whale.min_alert_usd),
                "token_limit": str(self.whale.token_limit),
            },
            "cron_secret": "(set)" if self.cron.secret else "(not set)",
            "discord_enabled": str(self.discord.enabled),
            "telegram_enabled": str(self.telegram.enabled),
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    def validate_requirements(self, *, command: Literal["run-job", "serve", "init-db"]) -> None:
        """Validate command-specific requirements.

        If a capability is required for a command and not configured,
        the application must refuse to run.

        Raises:
            ConfigurationError: If a required setting is missing.
        """
        missing: list[str] = []
        if command == "serve" and self.cron.secret is None:
            missing.append("CRON_SECRET")
        if self.discord.enabled and self.discord.bot_token is None:
            missing.append("DISCORD_BOT_TOKEN")
        if self.telegram.enabled and self.telegram.bot_token is None:
            missing.append("TELEGRAM_BOT_TOKEN")
        if missing:
            raise ConfigurationError(f"Missing required settings for {command}: {', '.join(missing)}")

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from a connection URL."""
        if "@" not in url or "://" not in url:
            return url
        scheme, rest = url.split("://", 1)
        credentials, host = rest.rsplit("@", 1)
        if ":" in credentials:
            user = credentials.split(":", 1)[0]
            return f"{scheme}://{user}:****@{host}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings (cached).

    Returns:
        Validated Settings instance.

    Raises:
        pydantic.ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
