"""Composite opportunity scorer for bonding-curve tokens.

The score is a pure function of its inputs. Weights live in a
``ScoringWeights`` table so tuning never touches call sites.

Scoring Formula:
    progress  = min(progress, 100) * progress_weight            (max 40)
    speed     = min(curve_speed, 10) * speed_weight              (max 20)
    whale     = min(inflow / saturation * whale_max, whale_max)  (max 15)
    momentum  = clamp(volume_change_24h, 0, 100) * momentum_w    (max 15)
    rug       = min((100 - rug_risk) / 100 * rug_max, rug_max)    (penalty, max 10)

    score = round(clamp(progress + speed + whale + momentum - rug, 0, 100), 2)

rug_risk runs from 0 (high risk) to 100 (safe), so a fully safe token
tops out at 90 points.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from token_whale_tracker.ingestor.models import DEFAULT_RUG_RISK, TokenRecord

if TYPE_CHECKING:
    from token_whale_tracker.config import ScoringSettings

MAX_SCORE = 100.0
MAX_CURVE_SPEED = 10.0
CURVE_SPEED_FACTOR = 5.0


@dataclass(frozen=True)
class ScoringWeights:
    """Weight table for the composite score."""

    progress_weight: float = 0.4
    speed_weight: float = 2.0
    whale_max_points: float = 15.0
    whale_saturation_usd: float = 2000.0
    momentum_weight: float = 0.15
    rug_penalty_max_points: float = 10.0

    @classmethod
    def from_settings(cls, settings: ScoringSettings) -> ScoringWeights:
        return cls(
            progress_weight=settings.progress_weight,
            speed_weight=settings.speed_weight,
            whale_max_points=settings.whale_max_points,
            whale_saturation_usd=settings.whale_saturation_usd,
            momentum_weight=settings.momentum_weight,
            rug_penalty_max_points=settings.rug_penalty_max_points,
        )


DEFAULT_WEIGHTS = ScoringWeights()


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def curve_speed(*, volume_24h_usd: float, liquidity_usd: float, progress: float) -> float:
    """Volume pressure relative to liquidity, amplified near curve completion.

    Progress is clamped to [0, 100] so the multiplier stays within [1, 2].
    """
    if liquidity_usd <= 0:
        return 0.0
    ratio = volume_24h_usd / liquidity_usd
    multiplier = 1 + _clamp(progress, 0.0, 100.0) / 100
    return _clamp(ratio * CURVE_SPEED_FACTOR * multiplier, 0.0, MAX_CURVE_SPEED)


def score(
    token: TokenRecord,
    curve_speed: float,
    volume_change_24h: float,
    whale_inflow: float,
    rug_risk: float | None = None,
    *,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> float:
    """Composite 0-100 opportunity score for ``token``.

    Args:
        token: Token whose bonding progress is scored.
        curve_speed: Output of ``curve_speed`` (0-10).
        volume_change_24h: 24h momentum in percent.
        whale_inflow: USD inflow from whale-sized transfers.
        rug_risk: 0 (high risk) to 100 (safe); defaults to 50 when unknown.
        weights: Weight table.
    """
    risk = DEFAULT_RUG_RISK if rug_risk is None else _clamp(rug_risk, 0.0, 100.0)

    progress_points = _clamp(token.progress, 0.0, 100.0) * weights.progress_weight
    speed_points = min(max(curve_speed, 0.0), MAX_CURVE_SPEED) * weights.speed_weight
    whale_points = min(
        max(whale_inflow, 0.0) / weights.whale_saturation_usd * weights.whale_max_points,
        weights.whale_max_points,
    )
    momentum_points = _clamp(volume_change_24h, 0.0, 100.0) * weights.momentum_weight
    rug_penalty = min(
        (100 - risk) / 100 * weights.rug_penalty_max_points,
        weights.rug_penalty_max_points,
    )

    total = progress_points + speed_points + whale_points + momentum_points - rug_penalty
    return round(_clamp(total, 0.0, MAX_SCORE), 2)


class TokenScorer:
    """Scores ``TokenRecord``s with an injectable weight table.

    Example:
        ```python
        scorer = TokenScorer()
        scored = scorer.score_token(token)
        print(scored.score)
        ```
    """

    def __init__(self, weights: ScoringWeights | None = None) -> None:
        self._weights = weights or DEFAULT_WEIGHTS

    def get_weights(self) -> ScoringWeights:
        return self._weights

    def set_weights(self, weights: ScoringWeights) -> None:
        self._weights = weights

    def score_token(self, token: TokenRecord) -> TokenRecord:
        """Return a copy of ``token`` with its score filled in."""
        speed = curve_speed(
            volume_24h_usd=token.volume_24h_usd,
            liquidity_usd=token.liquidity_usd,
            progress=token.progress,
        )
        # The 24h price change is the momentum input; feeds expose no volume delta.
        value = score(
            token,
            speed,
            token.price_change_24h_pct,
            token.whale_inflow_usd,
            token.rug_risk,
            weights=self._weights,
        )
        return token.with_score(value)
