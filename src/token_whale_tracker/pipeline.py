"""Pipeline wiring for Token Whale Tracker.

This module provides the Pipeline class that builds every component from
Settings and exposes the scheduled jobs:

    market:refresh   aggregate, score and persist the token snapshot
    whales:top       refresh the monitored top-token list
    whales:detect    scan top tokens for whale transfers
    alerts:send      deliver threshold alerts to subscribed users
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

import httpx
from pydantic import SecretStr
from redis.asyncio import Redis

from token_whale_tracker.alerter.channels import (
    DiscordChannel,
    NotificationChannel,
    TelegramChannel,
)
from token_whale_tracker.alerter.dispatcher import AlertDispatcher
from token_whale_tracker.alerter.formatter import AlertFormatter
from token_whale_tracker.alerter.tiers import tiers_from_settings
from token_whale_tracker.config import Settings, get_settings
from token_whale_tracker.detector.scorer import ScoringWeights, TokenScorer
from token_whale_tracker.detector.whale import TopTokenRefresher, WhaleDetector
from token_whale_tracker.ingestor.aggregator import MarketDataAggregator, SnapshotSource
from token_whale_tracker.ingestor.models import TokenRecord
from token_whale_tracker.ingestor.providers import DexScreenerClient, HeliusClient, MoralisClient
from token_whale_tracker.ingestor.rpc_client import RateLimitedClient
from token_whale_tracker.jobs import (
    JOB_ALERTS_SEND,
    JOB_MARKET_REFRESH,
    JOB_WHALES_DETECT,
    JOB_WHALES_TOP,
    JobResult,
    JobRunner,
)
from token_whale_tracker.storage.database import DatabaseManager
from token_whale_tracker.storage.repos import TokenSnapshotDTO, TokenSnapshotRepository

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    jobs_run: int = 0
    jobs_failed: int = 0
    last_job: str | None = None
    last_error: str | None = None


class Pipeline:
    """Builds the pipeline components and runs jobs against them.

    Example:
        ```python
        from token_whale_tracker.config import get_settings
        from token_whale_tracker.pipeline import Pipeline

        pipeline = Pipeline(get_settings())
        await pipeline.start()
        result = await pipeline.run_job("whales:detect")
        await pipeline.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, log notifications instead of sending them.
                Overrides settings.dry_run.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._db_manager: DatabaseManager | None = None
        self._http: httpx.AsyncClient | None = None
        self._aggregator: MarketDataAggregator | None = None
        self._refresher: TopTokenRefresher | None = None
        self._detector: WhaleDetector | None = None
        self._dispatcher: AlertDispatcher | None = None
        self._runner: JobRunner | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._state == PipelineState.RUNNING

    @property
    def runner(self) -> JobRunner:
        if self._runner is None:
            raise RuntimeError("Pipeline is not started")
        return self._runner

    async def start(self) -> None:
        """Initialize all components.

        Raises:
            RuntimeError: If pipeline is already running.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        logger.info("Starting pipeline...")
        try:
            self._initialize_components()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started (dry_run=%s)", self._dry_run)
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Release connections."""
        if self._state == PipelineState.STOPPED:
            return
        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")
        await self._cleanup()
        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def run_job(self, job_name: str) -> JobResult:
        """Run one job through the single-flight runner.

        Raises:
            UnknownJobError: If the job name is not registered.
        """
        result = await self.runner.run(job_name)
        self._stats.jobs_run += 1
        self._stats.last_job = job_name
        if not result.ok:
            self._stats.jobs_failed += 1
            self._stats.last_error = result.error
        return result

    def _initialize_components(self) -> None:
        settings = self._settings

        logger.debug("Initializing Redis connection...")
        self._redis = Redis.from_url(settings.redis.url)

        logger.debug("Initializing database manager...")
        self._db_manager = DatabaseManager(settings.database.url)
        sessions = self._db_manager.get_async_session

        self._http = httpx.AsyncClient()

        helius = HeliusClient(
            RateLimitedClient(
                http_client=self._http,
                max_retries=settings.helius.max_retries,
                base_delay=settings.helius.retry_base_delay_seconds,
            ),
            api_key=_secret(settings.helius.api_key),
            rpc_url=settings.helius.rpc_url,
            signatures_timeout=settings.helius.signatures_timeout_seconds,
            transaction_timeout=settings.helius.transaction_timeout_seconds,
        )
        dexscreener = DexScreenerClient(
            RateLimitedClient(http_client=self._http),
            base_url=settings.dexscreener.base_url,
            chunk_size=settings.dexscreener.chunk_size,
            chunk_delay=settings.dexscreener.chunk_delay_seconds,
            timeout=settings.dexscreener.timeout_seconds,
        )
        moralis = MoralisClient(
            RateLimitedClient(http_client=self._http),
            api_key=_secret(settings.moralis.api_key),
            base_url=settings.moralis.base_url,
            limit=settings.moralis.bonding_limit,
            timeout=settings.moralis.timeout_seconds,
        )

        agg = settings.aggregator
        self._aggregator = MarketDataAggregator(
            candidates=moralis,
            pairs=dexscreener,
            chain=helius if agg.transfer_summary_enabled else None,
            scorer=TokenScorer(ScoringWeights.from_settings(settings.scoring)),
            snapshot_loader=self._load_stored_snapshot,
            cache_ttl_seconds=agg.cache_ttl_seconds,
            stale_window_seconds=agg.stale_window_seconds,
            min_progress=agg.min_progress,
            max_tokens=agg.max_tokens,
            transfer_top_n=agg.transfer_summary_top_n,
            transfer_signature_limit=agg.transfer_signature_limit,
            transfer_token_delay=agg.transfer_token_delay_seconds,
            whale_floor_usd=agg.whale_floor_usd,
        )

        formatter = AlertFormatter()
        channels: list[NotificationChannel] = []
        discord: DiscordChannel | None = None
        if settings.telegram.enabled and settings.telegram.bot_token is not None:
            channels.append(
                TelegramChannel(
                    self._http,
                    bot_token=settings.telegram.bot_token.get_secret_value(),
                    dry_run=self._dry_run,
                )
            )
        if settings.discord.enabled and settings.discord.bot_token is not None:
            discord = DiscordChannel(
                self._http,
                bot_token=settings.discord.bot_token.get_secret_value(),
                whale_channel_id=settings.discord.whale_channel_id,
                formatter=formatter,
                dry_run=self._dry_run,
            )
            channels.append(discord)

        whale = settings.whale
        self._refresher = TopTokenRefresher(dexscreener, sessions, limit=whale.trending_limit)
        self._detector = WhaleDetector(
            helius,
            sessions,
            notifier=discord,
            min_usd=whale.min_alert_usd,
            signature_limit=whale.signature_limit,
            token_limit=whale.token_limit,
            token_delay_seconds=whale.token_delay_seconds,
            stale_token_hours=whale.stale_token_hours,
        )
        self._dispatcher = AlertDispatcher(
            sessions,
            channels,
            tiers=tiers_from_settings(settings.alerts),
            formatter=formatter,
            delivery_delay_seconds=settings.alerts.delivery_delay_seconds,
        )

        self._runner = JobRunner(
            sessions, self._redis, lock_ttl_seconds=settings.cron.lock_ttl_seconds
        )
        self._runner.register(JOB_MARKET_REFRESH, self.refresh_market)
        self._runner.register(JOB_WHALES_TOP, self.refresh_top_tokens)
        self._runner.register(JOB_WHALES_DETECT, self.detect_whales)
        self._runner.register(JOB_ALERTS_SEND, self.send_alerts)

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._http:
            await self._http.aclose()
            self._http = None

        # Close database connections
        if self._db_manager:
            await self._db_manager.dispose_async()
            self._db_manager = None

        # Close Redis connection
        if self._redis:
            await self._redis.aclose()
            self._redis = None

        self._runner = None
        logger.debug("Resources cleaned up")

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def refresh_market(self) -> dict[str, Any]:
        """Aggregate the snapshot and persist the scored tokens."""
        if self._aggregator is None or self._db_manager is None:
            raise RuntimeError("Pipeline is not started")
        tokens = await self._aggregator.refresh()
        real = [t for t in tokens if not t.is_placeholder]
        persisted = 0
        if real and self._aggregator.last_source == SnapshotSource.LIVE:
            async with self._db_manager.get_async_session() as session:
                persisted = await TokenSnapshotRepository(session).upsert_many(
                    [TokenSnapshotDTO.from_record(t) for t in real]
                )
        source = self._aggregator.last_source
        return {
            "tokens": len(tokens),
            "persisted": persisted,
            "source": source.value if source else None,
        }

    async def refresh_top_tokens(self) -> dict[str, Any]:
        if self._refresher is None:
            raise RuntimeError("Pipeline is not started")
        return await self._refresher.run()

    async def detect_whales(self) -> dict[str, Any]:
        if self._detector is None:
            raise RuntimeError("Pipeline is not started")
        summary = await self._detector.run()
        return summary.to_dict()

    async def send_alerts(self) -> dict[str, Any]:
        if self._aggregator is None or self._dispatcher is None:
            raise RuntimeError("Pipeline is not started")
        tokens = await self._aggregator.refresh()
        summary = await self._dispatcher.dispatch(tokens)
        data = summary.to_dict()
        data["tokens"] = len(tokens)
        return data

    async def _load_stored_snapshot(self, max_age_seconds: float) -> list[TokenRecord]:
        if self._db_manager is None:
            raise RuntimeError("Pipeline is not started")
        since = datetime.now(UTC) - timedelta(seconds=max_age_seconds)
        async with self._db_manager.get_async_session() as session:
            stored = await TokenSnapshotRepository(session).list_since(
                since, limit=self._settings.aggregator.max_tokens
            )
        return [s.to_record() for s in stored]


def _secret(value: SecretStr | None) -> str | None:
    return value.get_secret_value() if value is not None else None
