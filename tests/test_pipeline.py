"""Tests for the pipeline wiring and jobs."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from token_whale_tracker.alerter.dispatcher import DispatchSummary
from token_whale_tracker.config import (
    DatabaseSettings,
    DiscordSettings,
    HeliusSettings,
    Settings,
    TelegramSettings,
)
from token_whale_tracker.ingestor.aggregator import SnapshotSource
from token_whale_tracker.ingestor.models import TokenRecord
from token_whale_tracker.jobs import (
    JOB_ALERTS_SEND,
    JOB_MARKET_REFRESH,
    JOB_WHALES_DETECT,
    JOB_WHALES_TOP,
)
from token_whale_tracker.pipeline import Pipeline, PipelineState
from token_whale_tracker.storage.repos import TokenSnapshotRepository


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings backed by a local SQLite file with no channels enabled."""
    return Settings(
        database=DatabaseSettings(DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path}/pipeline.db"),
        telegram=TelegramSettings(TELEGRAM_ENABLED=False),
        discord=DiscordSettings(DISCORD_ENABLED=False),
        helius=HeliusSettings(HELIUS_API_KEY=None),
        DRY_RUN=True,
    )


@pytest.fixture
def redis_mock():
    """Patch the Redis client factory used by the pipeline."""
    client = AsyncMock()
    client.set.return_value = True
    with patch("token_whale_tracker.pipeline.Redis") as redis_cls:
        redis_cls.from_url.return_value = client
        yield client


@pytest.fixture
async def started(settings, redis_mock):
    """A started pipeline with its schema created."""
    pipeline = Pipeline(settings)
    await pipeline.start()
    await pipeline._db_manager.init_schema_async()
    yield pipeline
    await pipeline.stop()


def record(address: str, score: float, **kwargs) -> TokenRecord:
    return TokenRecord(address=address, name=address, symbol=address.upper(), progress=95.0, score=score, **kwargs)


class TestPipelineState:
    """Tests for pipeline state management."""

    def test_initial_state_is_stopped(self, settings):
        """Pipeline should start in stopped state."""
        pipeline = Pipeline(settings)
        assert pipeline.state == PipelineState.STOPPED
        assert not pipeline.is_running
        assert pipeline.stats.jobs_run == 0

    def test_dry_run_from_settings(self, settings):
        assert Pipeline(settings)._dry_run is True

    def test_dry_run_override(self, settings):
        assert Pipeline(settings, dry_run=False)._dry_run is False

    def test_uses_get_settings_when_none_provided(self, settings):
        with patch("token_whale_tracker.pipeline.get_settings", return_value=settings) as mock_get:
            Pipeline()
        mock_get.assert_called_once()

    def test_runner_requires_start(self, settings):
        with pytest.raises(RuntimeError):
            _ = Pipeline(settings).runner

    @pytest.mark.parametrize(
        "job",
        ["refresh_market", "refresh_top_tokens", "detect_whales", "send_alerts"],
    )
    async def test_jobs_require_start(self, settings, job):
        with pytest.raises(RuntimeError, match="not started"):
            await getattr(Pipeline(settings), job)()

    async def test_start_and_stop(self, settings, redis_mock):
        pipeline = Pipeline(settings)

        await pipeline.start()
        assert pipeline.is_running
        assert pipeline.stats.started_at is not None
        assert pipeline.runner.job_names == sorted(
            [JOB_ALERTS_SEND, JOB_MARKET_REFRESH, JOB_WHALES_DETECT, JOB_WHALES_TOP]
        )

        await pipeline.stop()
        assert pipeline.state == PipelineState.STOPPED
        redis_mock.aclose.assert_awaited_once()

    async def test_cannot_start_when_not_stopped(self, started):
        with pytest.raises(RuntimeError):
            await started.start()

    async def test_stop_when_already_stopped(self, settings):
        pipeline = Pipeline(settings)
        await pipeline.stop()
        assert pipeline.state == PipelineState.STOPPED


class TestChannels:
    """Tests for notification channel wiring."""

    async def test_no_channels_when_none_enabled(self, started):
        assert started._dispatcher._channels == {}
        assert started._detector._notifier is None

    async def test_both_channels_when_enabled(self, settings, redis_mock):
        settings.telegram = TelegramSettings(TELEGRAM_ENABLED=True, TELEGRAM_BOT_TOKEN="123:abc")
        settings.discord = DiscordSettings(
            DISCORD_ENABLED=True, DISCORD_BOT_TOKEN="tok", DISCORD_WHALE_CHANNEL_ID="42"
        )
        pipeline = Pipeline(settings)

        await pipeline.start()
        try:
            assert set(pipeline._dispatcher._channels) == {"telegram", "discord"}
            assert pipeline._detector._notifier is pipeline._dispatcher._channels["discord"]
        finally:
            await pipeline.stop()


class TestJobs:
    """Tests for the registered jobs."""

    async def test_run_job_updates_stats(self, started):
        started.runner.register("custom", AsyncMock(side_effect=RuntimeError("nope")))

        result = await started.run_job("custom")

        assert not result.ok
        assert started.stats.jobs_run == 1
        assert started.stats.jobs_failed == 1
        assert started.stats.last_job == "custom"
        assert started.stats.last_error == "nope"

    async def test_refresh_market_persists_live_tokens(self, started):
        aggregator = MagicMock()
        aggregator.refresh = AsyncMock(return_value=[record("a", 80.0), record("b", 70.0)])
        aggregator.last_source = SnapshotSource.LIVE
        started._aggregator = aggregator

        result = await started.run_job(JOB_MARKET_REFRESH)

        assert result.ok
        assert result.summary == {"tokens": 2, "persisted": 2, "source": "live"}
        async with started._db_manager.get_async_session() as session:
            stored = await TokenSnapshotRepository(session).list_since(
                started.stats.started_at, limit=10
            )
        assert [s.address for s in stored] == ["a", "b"]

    async def test_refresh_market_does_not_persist_fallbacks(self, started):
        aggregator = MagicMock()
        aggregator.refresh = AsyncMock(return_value=[record("p", 90.0, is_placeholder=True)])
        aggregator.last_source = SnapshotSource.PLACEHOLDER
        started._aggregator = aggregator

        result = await started.run_job(JOB_MARKET_REFRESH)

        assert result.summary == {"tokens": 1, "persisted": 0, "source": "placeholder"}

    async def test_send_alerts_dispatches_snapshot(self, started):
        tokens = [record("a", 99.0)]
        started._aggregator = MagicMock(refresh=AsyncMock(return_value=tokens))
        started._dispatcher = MagicMock(dispatch=AsyncMock(return_value=DispatchSummary(sent=1)))

        result = await started.run_job(JOB_ALERTS_SEND)

        started._dispatcher.dispatch.assert_awaited_once_with(tokens)
        assert result.summary["sent"] == 1
        assert result.summary["tokens"] == 1

    async def test_detect_whales_without_api_key(self, started):
        result = await started.run_job(JOB_WHALES_DETECT)

        assert result.ok
        assert result.summary["errors"] == ["chain-data provider is not configured"]

    async def test_stored_snapshot_loader(self, started):
        aggregator = MagicMock()
        aggregator.refresh = AsyncMock(return_value=[record("a", 80.0)])
        aggregator.last_source = SnapshotSource.LIVE
        started._aggregator = aggregator
        await started.run_job(JOB_MARKET_REFRESH)

        loaded = await started._load_stored_snapshot(600)

        assert [t.address for t in loaded] == ["a"]
        assert loaded[0].score == 80.0
