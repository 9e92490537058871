"""Clients for the chain-data and market-data providers.

Each method returns an ``UpstreamResult``; payloads are validated into
the pydantic models in ``ingestor.models`` before leaving this module.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, ValidationError

from token_whale_tracker.ingestor.models import (
    BondingFeed,
    BondingToken,
    ChainTransaction,
    DexPair,
    DexPairsResponse,
    PairData,
    SignatureInfo,
)
from token_whale_tracker.ingestor.rpc_client import (
    ErrorKind,
    RateLimitedClient,
    UpstreamResult,
)

logger = logging.getLogger(__name__)

DEFAULT_HELIUS_RPC_URL = "https://mainnet.helius-rpc.com"
DEFAULT_DEXSCREENER_URL = "https://api.dexscreener.com"
DEFAULT_MORALIS_URL = "https://solana-gateway.moralis.io"

DEXSCREENER_MAX_ADDRESSES = 30
SOLANA_CHAIN_ID = "solana"


def _validate_items(
    model: type[BaseModel], items: Sequence[Any], *, action: str
) -> list[Any]:
    """Validate list entries one by one, dropping (and logging) bad ones."""
    parsed = []
    for item in items:
        try:
            parsed.append(model.model_validate(item))
        except ValidationError as e:
            logger.warning("Skipping malformed %s entry: %s", action, e.errors()[:1])
    return parsed


def _malformed(action: str, e: ValidationError, *, key: str | None = None) -> UpstreamResult[Any]:
    logger.error("Malformed %s payload (key=%s): %s", action, key, e.errors()[:3])
    return UpstreamResult.failure(ErrorKind.MALFORMED, str(e), action=action, key=key)


class HeliusClient:
    """Solana JSON-RPC access through Helius.

    Example:
        >>> helius = HeliusClient(RateLimitedClient(), api_key="...")
        >>> sigs = await helius.get_signatures_for_address(mint, limit=2)
    """

    def __init__(
        self,
        client: RateLimitedClient,
        *,
        api_key: str | None,
        rpc_url: str = DEFAULT_HELIUS_RPC_URL,
        signatures_timeout: float = 8.0,
        transaction_timeout: float = 10.0,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._rpc_url = rpc_url.rstrip("/")
        self._signatures_timeout = signatures_timeout
        self._transaction_timeout = transaction_timeout

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    @property
    def _url(self) -> str:
        return f"{self._rpc_url}/?api-key={self._api_key}"

    def _unconfigured(self, action: str, key: str | None = None) -> UpstreamResult[Any]:
        return UpstreamResult.failure(
            ErrorKind.UNCONFIGURED, "HELIUS_API_KEY is not set", action=action, key=key
        )

    async def get_signatures_for_address(
        self, address: str, *, limit: int
    ) -> UpstreamResult[list[SignatureInfo]]:
        """Most recent transaction signatures touching ``address``."""
        action = "getSignaturesForAddress"
        if not self.configured:
            return self._unconfigured(action, address)

        result = await self._client.call_rpc(
            self._url,
            action,
            [address, {"limit": limit}],
            action=action,
            key=address,
            timeout=self._signatures_timeout,
        )
        if not result.ok:
            return UpstreamResult(error=result.error)
        if not isinstance(result.value, list):
            return UpstreamResult.failure(
                ErrorKind.MALFORMED, "expected a list", action=action, key=address
            )
        return UpstreamResult.success(_validate_items(SignatureInfo, result.value, action=action))

    async def get_transaction(self, signature: str) -> UpstreamResult[ChainTransaction | None]:
        """Fetch a confirmed transaction; ``None`` when the node does not have it."""
        action = "getTransaction"
        if not self.configured:
            return self._unconfigured(action, signature)

        result = await self._client.call_rpc(
            self._url,
            action,
            [signature, {"encoding": "json", "maxSupportedTransactionVersion": 0}],
            action=action,
            key=signature,
            timeout=self._transaction_timeout,
        )
        if not result.ok:
            return UpstreamResult(error=result.error)
        if result.value is None:
            return UpstreamResult.success(None)
        try:
            return UpstreamResult.success(ChainTransaction.model_validate(result.value))
        except ValidationError as e:
            return _malformed(action, e, key=signature)

    async def get_transactions(
        self, signatures: Sequence[str]
    ) -> UpstreamResult[list[ChainTransaction | None]]:
        """Fetch several transactions in one JSON-RPC batch, preserving order."""
        action = "getTransaction[batch]"
        if not self.configured:
            return self._unconfigured(action)

        calls = [
            ("getTransaction", [sig, {"encoding": "json", "maxSupportedTransactionVersion": 0}])
            for sig in signatures
        ]
        result = await self._client.call_rpc_batch(
            self._url, calls, action=action, timeout=self._transaction_timeout
        )
        if not result.ok or result.value is None:
            return UpstreamResult(error=result.error)

        txs: list[ChainTransaction | None] = []
        for sig, raw in zip(signatures, result.value, strict=True):
            if raw is None:
                txs.append(None)
                continue
            try:
                txs.append(ChainTransaction.model_validate(raw))
            except ValidationError as e:
                logger.warning("Skipping malformed transaction %s: %s", sig, e.errors()[:1])
                txs.append(None)
        return UpstreamResult.success(txs)


class DexScreenerClient:
    """Market-pair and trending-pair lookups."""

    def __init__(
        self,
        client: RateLimitedClient,
        *,
        base_url: str = DEFAULT_DEXSCREENER_URL,
        chunk_size: int = DEXSCREENER_MAX_ADDRESSES,
        chunk_delay: float = 1.0,
        timeout: float = 10.0,
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._chunk_size = max(1, min(chunk_size, DEXSCREENER_MAX_ADDRESSES))
        self._chunk_delay = chunk_delay
        self._timeout = timeout

    async def _get_pairs(self, url: str, *, action: str, key: str | None) -> UpstreamResult[list[DexPair]]:
        result = await self._client.send("GET", url, action=action, key=key, timeout=self._timeout)
        if not result.ok:
            return UpstreamResult(error=result.error)
        try:
            body = DexPairsResponse.model_validate(result.value)
        except ValidationError as e:
            return _malformed(action, e, key=key)
        return UpstreamResult.success(_validate_items(DexPair, body.pairs or [], action=action))

    async def fetch_pairs(self, addresses: Sequence[str]) -> UpstreamResult[dict[str, PairData]]:
        """Price/volume/liquidity for each address, keyed by the input address.

        Addresses are looked up in chunks with a delay between chunks. A
        failed chunk only drops its own addresses; the call fails as a whole
        only when every chunk failed.
        """
        action = "dexscreener.tokens"
        results: dict[str, PairData] = {}
        if not addresses:
            return UpstreamResult.success(results)

        chunks = [
            list(addresses[i : i + self._chunk_size])
            for i in range(0, len(addresses), self._chunk_size)
        ]
        last_failure: UpstreamResult[Any] | None = None
        failed_chunks = 0

        for idx, chunk in enumerate(chunks):
            if idx > 0 and self._chunk_delay > 0:
                await asyncio.sleep(self._chunk_delay)

            url = f"{self._base_url}/latest/dex/tokens/{','.join(chunk)}"
            pairs = await self._get_pairs(url, action=action, key=f"chunk[{idx}]")
            if not pairs.ok or pairs.value is None:
                failed_chunks += 1
                last_failure = pairs
                continue

            by_lower = {addr.lower(): addr for addr in chunk}
            for pair in pairs.value:
                address = by_lower.get(pair.base_token.address.lower())
                if address is None:
                    continue
                results[address] = results.get(address, PairData()).merge(pair)

        if failed_chunks == len(chunks) and last_failure is not None:
            return UpstreamResult(error=last_failure.error)
        return UpstreamResult.success(results)

    async def fetch_trending(self, *, limit: int) -> UpstreamResult[list[DexPair]]:
        """Ranked Solana pairs; falls back to the chain pair list."""
        trending = await self._get_pairs(
            f"{self._base_url}/latest/dex/pairs/trending?limit={limit}",
            action="dexscreener.trending",
            key=None,
        )
        if trending.ok and trending.value:
            pairs = [p for p in trending.value if (p.chain_id or SOLANA_CHAIN_ID) == SOLANA_CHAIN_ID]
            return UpstreamResult.success(pairs[:limit])

        logger.info("Trending pairs unavailable, falling back to the Solana pair list")
        fallback = await self._get_pairs(
            f"{self._base_url}/latest/dex/pairs/{SOLANA_CHAIN_ID}",
            action="dexscreener.pairs",
            key=SOLANA_CHAIN_ID,
        )
        if not fallback.ok or fallback.value is None:
            return fallback
        pairs = [p for p in fallback.value if p.chain_id == SOLANA_CHAIN_ID]
        return UpstreamResult.success(pairs[:limit])


class MoralisClient:
    """Pump.fun bonding-curve candidate feed."""

    def __init__(
        self,
        client: RateLimitedClient,
        *,
        api_key: str | None,
        base_url: str = DEFAULT_MORALIS_URL,
        limit: int = 100,
        timeout: float = 15.0,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._limit = limit
        self._timeout = timeout

    async def fetch_bonding_tokens(self) -> UpstreamResult[list[BondingToken]]:
        """Tokens currently on their bonding curve."""
        action = "moralis.bonding"
        if not self._api_key:
            return UpstreamResult.failure(
                ErrorKind.UNCONFIGURED, "MORALIS_API_KEY is not set", action=action
            )

        result = await self._client.send(
            "GET",
            f"{self._base_url}/token/mainnet/exchange/pumpfun/bonding",
            action=action,
            params={"limit": self._limit},
            headers={"X-API-Key": self._api_key, "Accept": "application/json"},
            timeout=self._timeout,
        )
        if not result.ok:
            return UpstreamResult(error=result.error)
        try:
            feed = BondingFeed.model_validate(result.value)
        except ValidationError as e:
            return _malformed(action, e)

        # Some feed revisions use "mint" instead of "tokenAddress".
        items = [
            {**item, "tokenAddress": item.get("tokenAddress") or item.get("mint")}
            for item in feed.result
        ]
        return UpstreamResult.success(_validate_items(BondingToken, items, action=action))
