"""Tests for configuration management."""

import pytest
from pydantic import SecretStr, ValidationError

from token_whale_tracker.config import (
    CronSettings,
    DatabaseSettings,
    DiscordSettings,
    HeliusSettings,
    RedisSettings,
    Settings,
    TelegramSettings,
    clear_settings_cache,
    get_settings,
)
from token_whale_tracker.errors import ConfigurationError


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Run from an empty directory so no .env file is picked up."""
    monkeypatch.chdir(tmp_path)
    for name in (
        "DATABASE_URL",
        "REDIS_URL",
        "CRON_SECRET",
        "DISCORD_ENABLED",
        "DISCORD_BOT_TOKEN",
        "TELEGRAM_ENABLED",
        "TELEGRAM_BOT_TOKEN",
        "HELIUS_API_KEY",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


class TestSubSettings:
    """Tests for individual settings groups."""

    def test_database_url_validated(self) -> None:
        with pytest.raises(ValidationError):
            DatabaseSettings(DATABASE_URL="mysql://localhost/db")

    def test_database_accepts_postgres(self) -> None:
        settings = DatabaseSettings(DATABASE_URL="postgresql+asyncpg://u:p@h/db")
        assert settings.url.startswith("postgresql+asyncpg")

    def test_redis_url_validated(self) -> None:
        with pytest.raises(ValidationError):
            RedisSettings(REDIS_URL="http://localhost")

    def test_helius_from_env(self, monkeypatch) -> None:
        monkeypatch.setenv("HELIUS_API_KEY", "abc")
        monkeypatch.setenv("HELIUS_RPC_URL", "https://rpc.example.com/")

        settings = HeliusSettings()

        assert settings.api_key == SecretStr("abc")
        assert settings.rpc_url == "https://rpc.example.com"

    def test_discord_channel_must_be_numeric(self) -> None:
        with pytest.raises(ValidationError):
            DiscordSettings(DISCORD_WHALE_CHANNEL_ID="general")

    def test_cron_lock_ttl_bounds(self) -> None:
        with pytest.raises(ValidationError):
            CronSettings(CRON_LOCK_TTL_SECONDS=1)


class TestSettings:
    """Tests for the main Settings class."""

    def test_defaults(self) -> None:
        settings = get_settings()

        assert settings.log_level == "INFO"
        assert settings.alerts.free_daily_quota == 1
        assert settings.scoring.whale_saturation_usd == 2000.0
        assert settings.get_logging_level() == 20

    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()

    def test_redacted_summary_hides_secrets(self, monkeypatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://user:hunter2@db/app")
        monkeypatch.setenv("HELIUS_API_KEY", "key-123")

        summary = Settings().redacted_summary()

        assert summary["database_url"] == "postgresql+asyncpg://user:****@db/app"
        assert summary["helius"]["api_key"] == "(set)"
        assert "key-123" not in str(summary)

    def test_serve_requires_cron_secret(self) -> None:
        with pytest.raises(ConfigurationError, match="CRON_SECRET"):
            Settings().validate_requirements(command="serve")

    def test_run_job_does_not_need_cron_secret(self) -> None:
        Settings().validate_requirements(command="run-job")

    def test_enabled_channel_requires_token(self) -> None:
        settings = Settings(telegram=TelegramSettings(TELEGRAM_ENABLED=True))

        with pytest.raises(ConfigurationError, match="TELEGRAM_BOT_TOKEN"):
            settings.validate_requirements(command="run-job")

    def test_configuration_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            Settings(discord=DiscordSettings(DISCORD_ENABLED=True)).validate_requirements(
                command="init-db"
            )
