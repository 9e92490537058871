"""Market data aggregation for King-of-the-Hill bonding-curve tokens.

This module merges the bonding-curve candidate feed, batched pair data,
and per-token transfer summaries into scored ``TokenRecord``s, guarded
by a short-lived snapshot cache.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from token_whale_tracker.detector.scorer import TokenScorer
from token_whale_tracker.detector.transfers import diff_token_balances
from token_whale_tracker.errors import PrimaryFeedError
from token_whale_tracker.ingestor.address import recover_address
from token_whale_tracker.ingestor.cache import SnapshotCache
from token_whale_tracker.ingestor.models import (
    BondingToken,
    PairData,
    TokenRecord,
    TransferSummary,
)

if TYPE_CHECKING:
    from token_whale_tracker.ingestor.providers import (
        DexScreenerClient,
        HeliusClient,
        MoralisClient,
    )

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_CACHE_TTL_SECONDS = 30.0
DEFAULT_STALE_WINDOW_SECONDS = 600.0
DEFAULT_MIN_PROGRESS = 90.0
DEFAULT_MAX_TOKENS = 50
DEFAULT_TRANSFER_TOP_N = 30
DEFAULT_TRANSFER_SIGNATURE_LIMIT = 3
DEFAULT_TRANSFER_TOKEN_DELAY = 1.5
DEFAULT_WHALE_FLOOR_USD = 500.0
PLACEHOLDER_COUNT = 10

SNAPSHOT_KEY = "koth_tokens"

SnapshotLoader = Callable[[float], Awaitable[list[TokenRecord]]]

_PLACEHOLDER_NAMES = (
    ("Moon Cat", "MCAT"),
    ("Degen Frog", "DFROG"),
    ("Solar Pepe", "SPEPE"),
    ("Rocket Dog", "RDOG"),
    ("Pixel Ape", "PAPE"),
    ("Hyper Shiba", "HSHIB"),
    ("Turbo Whale", "TWHL"),
    ("Neon Bonk", "NBONK"),
    ("Lunar Duck", "LDUCK"),
    ("Quantum Cow", "QCOW"),
)


class SnapshotSource(Enum):
    """Where the last ``refresh()`` result came from."""

    LIVE = "live"
    CACHE = "cache"
    STALE_CACHE = "stale_cache"
    STORED = "stored"
    PLACEHOLDER = "placeholder"


def placeholder_tokens(count: int = PLACEHOLDER_COUNT) -> list[TokenRecord]:
    """Deterministic stand-in tokens served when no real data is available."""
    tokens = []
    for idx in range(count):
        name, symbol = _PLACEHOLDER_NAMES[idx % len(_PLACEHOLDER_NAMES)]
        tokens.append(
            TokenRecord(
                address=f"placeholder-{idx:02d}",
                name=name,
                symbol=symbol,
                progress=round(99.0 - idx * 0.9, 2),
                liquidity_usd=10_000.0 + idx * 1_000,
                price_usd=0.0001 * (idx + 1),
                volume_24h_usd=20_000.0 - idx * 1_000,
                is_placeholder=True,
            )
        )
    scorer = TokenScorer()
    scored = [scorer.score_token(t) for t in tokens]
    return sorted(scored, key=lambda t: t.score, reverse=True)


class MarketDataAggregator:
    """Builds the scored token snapshot consumed by the dashboard and alerts.

    Concurrent callers inside the cache window share one snapshot; a
    refresh in flight is awaited rather than duplicated.

    Example:
        ```python
        aggregator = MarketDataAggregator(
            candidates=moralis, pairs=dexscreener, chain=helius
        )
        tokens = await aggregator.refresh()
        ```
    """

    def __init__(
        self,
        *,
        candidates: MoralisClient,
        pairs: DexScreenerClient,
        chain: HeliusClient | None = None,
        cache: SnapshotCache[list[TokenRecord]] | None = None,
        scorer: TokenScorer | None = None,
        snapshot_loader: SnapshotLoader | None = None,
        cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        stale_window_seconds: float = DEFAULT_STALE_WINDOW_SECONDS,
        min_progress: float = DEFAULT_MIN_PROGRESS,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        transfer_top_n: int = DEFAULT_TRANSFER_TOP_N,
        transfer_signature_limit: int = DEFAULT_TRANSFER_SIGNATURE_LIMIT,
        transfer_token_delay: float = DEFAULT_TRANSFER_TOKEN_DELAY,
        whale_floor_usd: float = DEFAULT_WHALE_FLOOR_USD,
    ) -> None:
        """Initialize the aggregator.

        Args:
            candidates: Bonding-curve candidate feed (primary source).
            pairs: Batched price/volume/liquidity lookups.
            chain: Chain-data provider for transfer summaries (optional).
            cache: Snapshot cache; a private one is created when omitted.
            scorer: Token scorer with the active weight table.
            snapshot_loader: Loads persisted snapshots no older than the
                given number of seconds, used when the candidate feed fails.
            cache_ttl_seconds: Window in which refresh() reuses the snapshot.
            stale_window_seconds: Max age of a cached snapshot served on failure.
            min_progress: Bonding progress floor for candidates.
            max_tokens: Tokens kept, best score first.
            transfer_top_n: Tokens (highest progress first) summarized on-chain.
            transfer_signature_limit: Signatures inspected per summary.
            transfer_token_delay: Delay between per-token summaries.
            whale_floor_usd: Inflow value that counts toward whale inflow.
        """
        self._candidates = candidates
        self._pairs = pairs
        self._chain = chain
        self._cache: SnapshotCache[list[TokenRecord]] = cache or SnapshotCache()
        self._scorer = scorer or TokenScorer()
        self._snapshot_loader = snapshot_loader
        self._cache_ttl = cache_ttl_seconds
        self._stale_window = stale_window_seconds
        self._min_progress = min_progress
        self._max_tokens = max_tokens
        self._transfer_top_n = transfer_top_n
        self._transfer_signature_limit = transfer_signature_limit
        self._transfer_token_delay = transfer_token_delay
        self._whale_floor_usd = whale_floor_usd

        self._inflight: asyncio.Task[list[TokenRecord]] | None = None
        self.last_source: SnapshotSource | None = None

    async def refresh(self) -> list[TokenRecord]:
        """Return the current scored snapshot, rebuilding it when stale."""
        cached = self._fresh_snapshot()
        if cached is not None:
            self.last_source = SnapshotSource.CACHE
            return cached

        if self._inflight is None:
            self._inflight = asyncio.create_task(self._rebuild())
            self._inflight.add_done_callback(self._clear_inflight)
        # Shielded so one cancelled caller does not cancel the shared rebuild.
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, task: asyncio.Task[list[TokenRecord]]) -> None:
        if self._inflight is task:
            self._inflight = None

    def _fresh_snapshot(self) -> list[TokenRecord] | None:
        if self._cache.is_fresh(SNAPSHOT_KEY, self._cache_ttl):
            return self._cache.get(SNAPSHOT_KEY)
        return None

    async def _rebuild(self) -> list[TokenRecord]:
        try:
            candidates = await self._fetch_candidates()
        except PrimaryFeedError as e:
            logger.warning("Candidate feed unavailable (%s); using fallback snapshot", e)
            return await self._fallback()

        addresses = [c.token_address for c in candidates]

        pairs_result, summaries = await asyncio.gather(
            self._pairs.fetch_pairs(addresses),
            self._transfer_summaries(candidates),
        )
        if pairs_result.ok and pairs_result.value is not None:
            pair_map = pairs_result.value
        else:
            logger.warning(
                "Pair data unavailable (%s); using zero volume defaults",
                pairs_result.kind.value if pairs_result.kind else "unknown",
            )
            pair_map = {}

        records = [
            self._scorer.score_token(
                self._merge(c, pair_map.get(c.token_address), summaries.get(c.token_address))
            )
            for c in candidates
        ]
        records.sort(key=lambda t: t.score, reverse=True)
        snapshot = records[: self._max_tokens]

        self._cache.set(SNAPSHOT_KEY, snapshot)
        self.last_source = SnapshotSource.LIVE
        logger.info(
            "Aggregated %d tokens (pairs=%d, summaries=%d)",
            len(snapshot),
            len(pair_map),
            len(summaries),
        )
        return snapshot

    async def _fetch_candidates(self) -> list[BondingToken]:
        feed = await self._candidates.fetch_bonding_tokens()
        if not feed.ok or feed.value is None:
            raise PrimaryFeedError(feed.error.message if feed.error else "no data")
        candidates = self._select_candidates(feed.value)
        if not candidates:
            raise PrimaryFeedError("no usable candidates")
        return candidates

    def _select_candidates(self, tokens: Sequence[BondingToken]) -> list[BondingToken]:
        """Recover addresses, drop unrecoverable ones, apply the progress floor."""
        selected: dict[str, BondingToken] = {}
        for token in tokens:
            address = recover_address(token.token_address)
            if address is None:
                logger.warning("Skipping token with unrecoverable address %r", token.token_address)
                continue
            if token.progress < self._min_progress or address in selected:
                continue
            selected[address] = token.model_copy(update={"token_address": address})
        return list(selected.values())

    def _merge(
        self,
        candidate: BondingToken,
        pair: PairData | None,
        summary: TransferSummary | None,
    ) -> TokenRecord:
        pair = pair or PairData()
        price = pair.price_usd or candidate.price_usd or 0.0
        whale_count, whale_inflow = (
            summary.whale_stats(price, self._whale_floor_usd) if summary else (0, 0.0)
        )
        return TokenRecord(
            address=candidate.token_address,
            name=candidate.name,
            symbol=candidate.symbol,
            progress=candidate.progress,
            liquidity_usd=pair.liquidity_usd or candidate.liquidity or 0.0,
            price_usd=price,
            volume_24h_usd=pair.volume_24h_usd or 0.0,
            price_change_24h_pct=pair.price_change_24h_pct or 0.0,
            whale_count=whale_count,
            whale_inflow_usd=whale_inflow,
            fdv_usd=pair.fdv_usd or candidate.fully_diluted_valuation,
        )

    async def _transfer_summaries(
        self, candidates: Sequence[BondingToken]
    ) -> dict[str, TransferSummary]:
        """Recent inbound amounts for the highest-progress tokens, one token at a time."""
        if self._chain is None or not self._chain.configured or self._transfer_top_n <= 0:
            return {}

        ranked = sorted(candidates, key=lambda c: c.progress, reverse=True)
        summaries: dict[str, TransferSummary] = {}
        for idx, candidate in enumerate(ranked[: self._transfer_top_n]):
            if idx > 0 and self._transfer_token_delay > 0:
                await asyncio.sleep(self._transfer_token_delay)
            summary = await self._summarize(candidate.token_address)
            if summary is not None:
                summaries[candidate.token_address] = summary
        return summaries

    async def _summarize(self, address: str) -> TransferSummary | None:
        if self._chain is None:
            raise RuntimeError("Chain provider not configured")
        sigs = await self._chain.get_signatures_for_address(
            address, limit=self._transfer_signature_limit
        )
        if not sigs.ok or not sigs.value:
            return None

        signatures = [s.signature for s in sigs.value if s.err is None]
        txs = await self._chain.get_transactions(signatures)
        if not txs.ok or txs.value is None:
            return None

        inflows: list[float] = []
        for tx in txs.value:
            if tx is None:
                continue
            diff = diff_token_balances(tx, address)
            if diff is not None and diff.direction != "burn":
                inflows.extend(diff.inflows)
        return TransferSummary(token_address=address, inflow_amounts=tuple(inflows))

    async def _fallback(self) -> list[TokenRecord]:
        if self._cache.is_fresh(SNAPSHOT_KEY, self._stale_window):
            cached = self._cache.get(SNAPSHOT_KEY)
            if cached:
                self.last_source = SnapshotSource.STALE_CACHE
                return cached

        if self._snapshot_loader is not None:
            try:
                stored = await self._snapshot_loader(self._stale_window)
            except (SQLAlchemyError, OSError) as e:
                logger.warning("Stored snapshot unavailable (%s); serving placeholders", e)
                stored = []
            if stored:
                self.last_source = SnapshotSource.STORED
                return stored

        self.last_source = SnapshotSource.PLACEHOLDER
        return placeholder_tokens()
