"""Whale transfer detection with store-backed deduplication.

Each monitored token goes through:

    FETCH_CANDIDATES -> CHECK_EXISTING -> FILTER_NEW -> PERSIST -> NOTIFY

Tokens are processed one at a time with a fixed delay between them so the
chain-data provider's per-key rate limit is respected. A failure while
handling one token is recorded in the run summary and the run moves on.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy.exc import SQLAlchemyError

from token_whale_tracker.detector.transfers import extract_token_transfer
from token_whale_tracker.ingestor.address import recover_address
from token_whale_tracker.ingestor.models import DexPair, TransferCandidate
from token_whale_tracker.storage.repos import (
    TopTokenDTO,
    TopTokenRepository,
    WhaleEventDTO,
    WhaleEventRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from token_whale_tracker.ingestor.providers import DexScreenerClient, HeliusClient

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_MIN_WHALE_USD = 10_000.0
DEFAULT_SIGNATURE_LIMIT = 2
DEFAULT_TOKEN_LIMIT = 10
DEFAULT_TOKEN_DELAY_SECONDS = 1.5
DEFAULT_STALE_TOKEN_HOURS = 4.0

SessionFactory = Callable[[], AbstractAsyncContextManager["AsyncSession"]]


class WhaleNotifier(Protocol):
    """Posts one whale event to the alert channel."""

    async def post_whale_event(self, event: WhaleEventDTO) -> bool: ...


@dataclass
class WhaleRunSummary:
    """Running totals for one detector run."""

    reviewed_tokens: int = 0
    candidates: int = 0
    inserted: int = 0
    skipped_existing: int = 0
    notified: int = 0
    notify_failures: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "reviewed_tokens": self.reviewed_tokens,
            "candidates": self.candidates,
            "inserted": self.inserted,
            "skipped_existing": self.skipped_existing,
            "notified": self.notified,
            "notify_failures": self.notify_failures,
            "errors": list(self.errors),
        }


def to_whale_event(candidate: TransferCandidate, token: TopTokenDTO) -> WhaleEventDTO:
    return WhaleEventDTO(
        tx_hash=candidate.signature,
        token_address=candidate.token_address,
        event_type=candidate.direction,
        amount_tokens=candidate.amount_tokens,
        amount_usd=round(candidate.amount_usd, 2),
        tx_url=candidate.tx_url,
        token_symbol=token.token_symbol,
        token_name=token.token_name,
        price_usd=token.price_usd,
        liquidity_usd=token.liquidity_usd,
        sender=candidate.sender_account,
        receiver=candidate.receiver_account,
        block_time=candidate.block_time,
        fee_sol=candidate.fee_sol,
    )


class WhaleDetector:
    """Scans top tokens for whale transfers and records each one once.

    Example:
        ```python
        detector = WhaleDetector(helius, db.get_async_session, notifier=discord)
        summary = await detector.run()
        print(summary.inserted)
        ```
    """

    def __init__(
        self,
        chain: HeliusClient,
        session_factory: SessionFactory,
        *,
        notifier: WhaleNotifier | None = None,
        min_usd: float = DEFAULT_MIN_WHALE_USD,
        signature_limit: int = DEFAULT_SIGNATURE_LIMIT,
        token_limit: int = DEFAULT_TOKEN_LIMIT,
        token_delay_seconds: float = DEFAULT_TOKEN_DELAY_SECONDS,
        stale_token_hours: float = DEFAULT_STALE_TOKEN_HOURS,
    ) -> None:
        """Initialize the detector.

        Args:
            chain: Chain-data provider.
            session_factory: Returns an async session context manager
                (e.g. ``DatabaseManager.get_async_session``).
            notifier: Alert channel for new events; None disables posting.
            min_usd: USD floor for a whale transfer.
            signature_limit: Recent signatures inspected per token.
            token_limit: Top tokens reviewed per run.
            token_delay_seconds: Delay between tokens.
            stale_token_hours: Ignore top tokens not refreshed within this window.
        """
        self._chain = chain
        self._session_factory = session_factory
        self._notifier = notifier
        self._min_usd = min_usd
        self._signature_limit = signature_limit
        self._token_limit = token_limit
        self._token_delay = token_delay_seconds
        self._stale_window = timedelta(hours=stale_token_hours)

    async def run(self) -> WhaleRunSummary:
        """Review the freshest top tokens once."""
        summary = WhaleRunSummary()
        if not self._chain.configured:
            summary.errors.append("chain-data provider is not configured")
            logger.warning("Whale detection skipped: chain-data provider is not configured")
            return summary

        async with self._session_factory() as session:
            tokens = await TopTokenRepository(session).list_fresh(
                datetime.now(UTC) - self._stale_window, limit=self._token_limit
            )

        for idx, token in enumerate(tokens):
            if idx > 0 and self._token_delay > 0:
                await asyncio.sleep(self._token_delay)
            summary.reviewed_tokens += 1
            try:
                await self.process_token(token, summary)
            except Exception as e:
                logger.error("Whale detection failed for %s: %s", token.token_address, e)
                summary.errors.append(f"{token.token_address}: {e}")

        logger.info(
            "Whale run done: reviewed=%d candidates=%d inserted=%d skipped=%d errors=%d",
            summary.reviewed_tokens,
            summary.candidates,
            summary.inserted,
            summary.skipped_existing,
            len(summary.errors),
        )
        return summary

    async def process_token(self, token: TopTokenDTO, summary: WhaleRunSummary) -> None:
        """Run the detection state machine for one token."""
        # FETCH_CANDIDATES
        candidates = await self.fetch_candidates(token, summary)
        if not candidates:
            return
        summary.candidates += len(candidates)

        # CHECK_EXISTING / FILTER_NEW
        async with self._session_factory() as session:
            existing = await WhaleEventRepository(session).existing_hashes(
                c.signature for c in candidates
            )
        new = [c for c in candidates if c.signature not in existing]
        summary.skipped_existing += len(candidates) - len(new)
        if not new:
            logger.debug("No new whale events for %s", token.token_address)
            return

        # PERSIST
        events = [to_whale_event(c, token) for c in new]
        try:
            async with self._session_factory() as session:
                inserted = set(await WhaleEventRepository(session).insert_new(events))
        except SQLAlchemyError as e:
            logger.error("Failed to persist %d whale events for %s: %s", len(events), token.token_address, e)
            summary.errors.append(f"{token.token_address}: persist failed: {e}")
            return

        # Rows another writer stored first count as already known.
        summary.skipped_existing += len(events) - len(inserted)
        summary.inserted += len(inserted)

        # NOTIFY
        for event in events:
            if event.tx_hash in inserted:
                await self._notify(event, summary)

    async def fetch_candidates(
        self, token: TopTokenDTO, summary: WhaleRunSummary
    ) -> list[TransferCandidate]:
        """Recent transfers of ``token`` valued at or above the USD floor."""
        address = recover_address(token.token_address)
        if address is None:
            logger.warning("Skipping top token with invalid address %r", token.token_address)
            summary.errors.append(f"{token.token_address}: invalid address")
            return []
        price = token.price_usd or 0.0
        if price <= 0:
            logger.debug("Skipping %s: no price to value transfers", address)
            return []

        sigs = await self._chain.get_signatures_for_address(address, limit=self._signature_limit)
        if not sigs.ok or sigs.value is None:
            kind = sigs.kind.value if sigs.kind else "unknown"
            summary.errors.append(f"{address}: signatures {kind}")
            return []

        candidates: list[TransferCandidate] = []
        for info in sigs.value:
            if info.err is not None:
                continue
            tx = await self._chain.get_transaction(info.signature)
            if not tx.ok:
                logger.debug("Transaction %s unavailable (%s)", info.signature, tx.kind)
                continue
            candidate = extract_token_transfer(
                tx.value, signature=info.signature, mint=address, price_usd=price
            )
            if candidate is not None and candidate.amount_usd >= self._min_usd:
                candidates.append(candidate)
        return candidates

    async def _notify(self, event: WhaleEventDTO, summary: WhaleRunSummary) -> None:
        if self._notifier is None:
            return
        try:
            delivered = await self._notifier.post_whale_event(event)
        except Exception as e:
            logger.error("Whale alert post failed for %s: %s", event.tx_hash, e)
            delivered = False
        if delivered:
            summary.notified += 1
        else:
            summary.notify_failures += 1


# ============================================================================
# Top-token refresh
# ============================================================================


def map_pairs_to_top_tokens(pairs: list[DexPair]) -> list[TopTokenDTO]:
    """One ``TopTokenDTO`` per recoverable base token, first pair wins."""
    now = datetime.now(UTC)
    tokens: dict[str, TopTokenDTO] = {}
    for pair in pairs:
        address = recover_address(pair.base_token.address)
        if address is None:
            logger.warning("Skipping trending pair with invalid address %r", pair.base_token.address)
            continue
        if address in tokens:
            continue
        tokens[address] = TopTokenDTO(
            token_address=address,
            token_symbol=pair.base_token.symbol,
            token_name=pair.base_token.name,
            price_usd=pair.price_usd or None,
            liquidity_usd=pair.liquidity.usd or None,
            volume_24h_usd=pair.volume.h24 or None,
            updated_at=now,
        )
    return list(tokens.values())


class TopTokenRefresher:
    """Refreshes the monitored top-token list from trending pairs."""

    def __init__(
        self,
        pairs: DexScreenerClient,
        session_factory: SessionFactory,
        *,
        limit: int = 50,
    ) -> None:
        self._pairs = pairs
        self._session_factory = session_factory
        self._limit = limit

    async def run(self) -> dict[str, Any]:
        trending = await self._pairs.fetch_trending(limit=self._limit)
        if not trending.ok or trending.value is None:
            message = trending.error.message if trending.error else "no data"
            raise RuntimeError(f"Trending pairs unavailable: {message}")

        tokens = map_pairs_to_top_tokens(trending.value)
        async with self._session_factory() as session:
            stored = await TopTokenRepository(session).upsert_many(tokens)
        logger.info("Refreshed %d top tokens from %d pairs", stored, len(trending.value))
        return {"pairs": len(trending.value), "tokens": stored}
