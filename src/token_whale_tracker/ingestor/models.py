"""Data models for the ingestor module.

Provider payloads are validated with pydantic at the boundary; anything
that fails validation is reported as a malformed upstream response.
Pipeline records are frozen dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Pump.fun curves complete at roughly this much liquidity.
BONDING_COMPLETE_LIQUIDITY = 80.0
MAX_DERIVED_PROGRESS = 99.9

DEFAULT_RUG_RISK = 50.0


def _to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


# ============================================================================
# Provider payloads
# ============================================================================


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class BondingToken(_Payload):
    """One entry of the Moralis pump.fun bonding feed."""

    token_address: str = Field(alias="tokenAddress")
    name: str = "Unknown"
    symbol: str = "UNKNOWN"
    price_native: float = Field(default=0.0, alias="priceNative")
    price_usd: float | None = Field(default=None, alias="priceUsd")
    liquidity: float = 0.0
    fully_diluted_valuation: float | None = Field(default=None, alias="fullyDilutedValuation")
    bonding_curve_progress: float | None = Field(default=None, alias="bondingCurveProgress")

    @field_validator("price_native", "liquidity", mode="before")
    @classmethod
    def _zero_if_missing(cls, v: Any) -> float:
        return _to_float(v) or 0.0

    @field_validator("price_usd", "fully_diluted_valuation", "bonding_curve_progress", mode="before")
    @classmethod
    def _none_if_unparseable(cls, v: Any) -> float | None:
        return _to_float(v)

    @field_validator("name", "symbol", mode="before")
    @classmethod
    def _default_label(cls, v: Any, info: Any) -> str:
        if not v:
            return "Unknown" if info.field_name == "name" else "UNKNOWN"
        return str(v)

    @property
    def progress(self) -> float:
        """Curve completion, derived from liquidity when the feed omits it."""
        if self.bonding_curve_progress is not None:
            return self.bonding_curve_progress
        return min(self.liquidity / BONDING_COMPLETE_LIQUIDITY * 100, MAX_DERIVED_PROGRESS)


class BondingFeed(_Payload):
    result: list[dict[str, Any]] = Field(default_factory=list)
    cursor: str | None = None


class PairToken(_Payload):
    address: str
    name: str | None = None
    symbol: str | None = None


class PairVolume(_Payload):
    h24: float | None = None


class PairPriceChange(_Payload):
    h24: float | None = None


class PairLiquidity(_Payload):
    usd: float | None = None


class DexPair(_Payload):
    """One pair from the DexScreener token or trending endpoints."""

    chain_id: str | None = Field(default=None, alias="chainId")
    pair_address: str | None = Field(default=None, alias="pairAddress")
    base_token: PairToken = Field(alias="baseToken")
    price_usd: float | None = Field(default=None, alias="priceUsd")
    volume: PairVolume = Field(default_factory=PairVolume)
    price_change: PairPriceChange = Field(default_factory=PairPriceChange, alias="priceChange")
    liquidity: PairLiquidity = Field(default_factory=PairLiquidity)
    fdv: float | None = None
    pair_created_at: int | None = Field(default=None, alias="pairCreatedAt")


class DexPairsResponse(_Payload):
    pairs: list[dict[str, Any]] | None = None


class UiTokenAmount(_Payload):
    amount: str = "0"
    decimals: int = 0
    ui_amount: float | None = Field(default=None, alias="uiAmount")
    ui_amount_string: str | None = Field(default=None, alias="uiAmountString")

    @property
    def value(self) -> float:
        if self.ui_amount is not None:
            return self.ui_amount
        parsed = _to_float(self.ui_amount_string)
        if parsed is not None:
            return parsed
        try:
            return int(self.amount) / 10 ** max(self.decimals, 0)
        except ValueError:
            return 0.0


class TokenBalance(_Payload):
    account_index: int = Field(alias="accountIndex")
    mint: str
    owner: str | None = None
    ui_token_amount: UiTokenAmount = Field(alias="uiTokenAmount")


class TransactionMeta(_Payload):
    err: Any = None
    fee: int = 0
    pre_balances: list[int] = Field(default_factory=list, alias="preBalances")
    post_balances: list[int] = Field(default_factory=list, alias="postBalances")
    pre_token_balances: list[TokenBalance] = Field(default_factory=list, alias="preTokenBalances")
    post_token_balances: list[TokenBalance] = Field(default_factory=list, alias="postTokenBalances")


class TransactionMessage(_Payload):
    account_keys: list[Any] = Field(default_factory=list, alias="accountKeys")

    def key_at(self, index: int) -> str | None:
        if not 0 <= index < len(self.account_keys):
            return None
        entry = self.account_keys[index]
        # jsonParsed encoding returns objects, json encoding returns strings.
        if isinstance(entry, dict):
            pubkey = entry.get("pubkey")
            return str(pubkey) if pubkey else None
        return str(entry)


class TransactionBody(_Payload):
    signatures: list[str] = Field(default_factory=list)
    message: TransactionMessage = Field(default_factory=TransactionMessage)


class ChainTransaction(_Payload):
    """Result of ``getTransaction``."""

    slot: int | None = None
    block_time: int | None = Field(default=None, alias="blockTime")
    meta: TransactionMeta | None = None
    transaction: TransactionBody = Field(default_factory=TransactionBody)


class SignatureInfo(_Payload):
    """One entry of ``getSignaturesForAddress``."""

    signature: str
    slot: int | None = None
    block_time: int | None = Field(default=None, alias="blockTime")
    err: Any = None


# ============================================================================
# Pipeline records
# ============================================================================


@dataclass(frozen=True)
class PairData:
    """Market data for one token, merged across its pairs."""

    price_usd: float | None = None
    volume_24h_usd: float | None = None
    price_change_24h_pct: float | None = None
    liquidity_usd: float | None = None
    fdv_usd: float | None = None

    def merge(self, pair: DexPair) -> PairData:
        """Fill fields still missing from another pair of the same token."""
        return PairData(
            price_usd=self.price_usd if self.price_usd else pair.price_usd,
            volume_24h_usd=self.volume_24h_usd if self.volume_24h_usd else pair.volume.h24,
            price_change_24h_pct=(
                self.price_change_24h_pct
                if self.price_change_24h_pct
                else pair.price_change.h24
            ),
            liquidity_usd=self.liquidity_usd if self.liquidity_usd else pair.liquidity.usd,
            fdv_usd=self.fdv_usd if self.fdv_usd else pair.fdv,
        )


TransferDirection = Literal["mint", "burn", "transfer"]


@dataclass(frozen=True)
class TransferCandidate:
    """A token movement observed in one transaction."""

    signature: str
    token_address: str
    direction: TransferDirection
    amount_tokens: float
    amount_usd: float
    sender_account: str | None
    receiver_account: str | None
    block_time: datetime | None
    fee_sol: float = 0.0

    @property
    def tx_url(self) -> str:
        return f"https://solscan.io/tx/{self.signature}"


@dataclass(frozen=True)
class TransferSummary:
    """Recent inbound token amounts for one token (priced at merge time)."""

    token_address: str
    inflow_amounts: tuple[float, ...] = ()

    def whale_stats(self, price_usd: float, floor_usd: float) -> tuple[int, float]:
        """Count and total USD of inflows at or above ``floor_usd``."""
        values = [amount * price_usd for amount in self.inflow_amounts]
        whales = [v for v in values if v >= floor_usd]
        return len(whales), sum(whales)


@dataclass(frozen=True)
class TokenRecord:
    """Unified, scored view of one token for a single aggregation cycle."""

    address: str
    name: str
    symbol: str
    progress: float
    liquidity_usd: float = 0.0
    price_usd: float = 0.0
    volume_24h_usd: float = 0.0
    price_change_24h_pct: float = 0.0
    score: float = 0.0
    whale_count: int = 0
    whale_inflow_usd: float = 0.0
    rug_risk: float = DEFAULT_RUG_RISK
    fdv_usd: float | None = None
    is_placeholder: bool = False
    observed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def with_score(self, score: float) -> TokenRecord:
        return replace(self, score=score)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "address": self.address,
            "name": self.name,
            "symbol": self.symbol,
            "progress": self.progress,
            "liquidity_usd": self.liquidity_usd,
            "price_usd": self.price_usd,
            "volume_24h_usd": self.volume_24h_usd,
            "price_change_24h_pct": self.price_change_24h_pct,
            "score": self.score,
            "whale_count": self.whale_count,
            "whale_inflow_usd": self.whale_inflow_usd,
            "rug_risk": self.rug_risk,
            "is_placeholder": self.is_placeholder,
            "observed_at": self.observed_at.isoformat(),
        }
