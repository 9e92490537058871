"""Data ingestion layer - Upstream providers, address repair and payload models."""

from token_whale_tracker.ingestor.address import is_valid_address, recover_address
from token_whale_tracker.ingestor.cache import SnapshotCache
from token_whale_tracker.ingestor.models import (
    BondingToken,
    ChainTransaction,
    DexPair,
    PairData,
    SignatureInfo,
    TokenRecord,
    TransferCandidate,
    TransferSummary,
)
from token_whale_tracker.ingestor.providers import (
    DexScreenerClient,
    HeliusClient,
    MoralisClient,
)
from token_whale_tracker.ingestor.rpc_client import (
    ErrorKind,
    RateLimitedClient,
    UpstreamError,
    UpstreamResult,
)

__all__ = [
    "BondingToken",
    "ChainTransaction",
    "DexPair",
    "DexScreenerClient",
    "ErrorKind",
    "HeliusClient",
    "MoralisClient",
    "PairData",
    "RateLimitedClient",
    "SignatureInfo",
    "SnapshotCache",
    "TokenRecord",
    "TransferCandidate",
    "TransferSummary",
    "UpstreamError",
    "UpstreamResult",
    "is_valid_address",
    "recover_address",
]
