"""Tests for the composite token scorer."""

import pytest

from token_whale_tracker.config import ScoringSettings
from token_whale_tracker.detector.scorer import (
    ScoringWeights,
    TokenScorer,
    curve_speed,
    score,
)
from token_whale_tracker.ingestor.models import TokenRecord


def token(progress: float = 95.0, **kwargs) -> TokenRecord:
    return TokenRecord(address="a", name="A", symbol="A", progress=progress, **kwargs)


# ============================================================================
# curve_speed Tests
# ============================================================================


class TestCurveSpeed:
    """Tests for curve_speed."""

    def test_no_liquidity_is_zero(self) -> None:
        assert curve_speed(volume_24h_usd=1000, liquidity_usd=0, progress=90) == 0.0

    def test_ratio_and_multiplier(self) -> None:
        # 0.5 * 5 * (1 + 0.5)
        assert curve_speed(volume_24h_usd=500, liquidity_usd=1000, progress=50) == pytest.approx(3.75)

    def test_capped_at_ten(self) -> None:
        assert curve_speed(volume_24h_usd=1e9, liquidity_usd=1, progress=99) == 10.0

    def test_out_of_range_progress_is_clamped(self) -> None:
        high = curve_speed(volume_24h_usd=100, liquidity_usd=1000, progress=250)
        full = curve_speed(volume_24h_usd=100, liquidity_usd=1000, progress=100)
        low = curve_speed(volume_24h_usd=100, liquidity_usd=1000, progress=-20)
        zero = curve_speed(volume_24h_usd=100, liquidity_usd=1000, progress=0)

        assert high == full == pytest.approx(1.0)
        assert low == zero == pytest.approx(0.5)


# ============================================================================
# score Tests
# ============================================================================


class TestScore:
    """Tests for the pure score function."""

    def test_all_components(self) -> None:
        value = score(token(95), curve_speed=5, volume_change_24h=40, whale_inflow=1000, rug_risk=20)

        # 38 + 10 + 7.5 + 6 - 8
        assert value == 53.5

    def test_safe_token_tops_out_at_ninety(self) -> None:
        value = score(token(100), curve_speed=10, volume_change_24h=100, whale_inflow=10_000, rug_risk=100)
        assert value == 90.0

    def test_high_rug_risk_costs_ten_points(self) -> None:
        safe = score(token(100), curve_speed=10, volume_change_24h=100, whale_inflow=10_000, rug_risk=100)
        risky = score(token(100), curve_speed=10, volume_change_24h=100, whale_inflow=10_000, rug_risk=0)
        assert safe - risky == 10.0

    def test_unknown_rug_risk_defaults_to_fifty(self) -> None:
        # 95 * 0.4 - 5
        assert score(token(95), 0, 0, 0) == 33.0
        assert score(token(95), 0, 0, 0, rug_risk=50) == 33.0

    def test_negative_inputs_clamped(self) -> None:
        value = score(token(-5), curve_speed=-3, volume_change_24h=-50, whale_inflow=-100, rug_risk=-50)
        assert value == 0.0

    def test_whale_saturates(self) -> None:
        at_cap = score(token(0), 0, 0, 2000, rug_risk=100)
        beyond = score(token(0), 0, 0, 50_000, rug_risk=100)
        assert at_cap == beyond == 15.0

    def test_rounded_to_two_decimals(self) -> None:
        value = score(token(33.333), 0, 0, 0, rug_risk=100)
        assert value == 13.33

    def test_custom_weights(self) -> None:
        weights = ScoringWeights(progress_weight=1.0, rug_penalty_max_points=0.0)
        assert score(token(60), 0, 0, 0, weights=weights) == 60.0

    def test_deterministic(self) -> None:
        record = token(91.7, volume_24h_usd=12_345, liquidity_usd=6_789, whale_inflow_usd=321)
        scorer = TokenScorer()

        assert scorer.score_token(record).score == scorer.score_token(record).score


# ============================================================================
# TokenScorer Tests
# ============================================================================


class TestTokenScorer:
    """Tests for TokenScorer."""

    def test_score_token_uses_record_fields(self) -> None:
        record = token(
            100,
            volume_24h_usd=2000,
            liquidity_usd=1000,
            price_change_24h_pct=200,
            whale_inflow_usd=1000,
            rug_risk=50,
        )

        scored = TokenScorer().score_token(record)

        # progress 40, speed 10*2, whale 7.5, momentum 15, rug penalty 5
        assert scored.score == 77.5
        assert scored.address == record.address

    def test_weights_from_settings(self) -> None:
        settings = ScoringSettings(SCORING_PROGRESS_WEIGHT=0.2)

        weights = ScoringWeights.from_settings(settings)

        assert weights.progress_weight == 0.2
        assert weights.whale_saturation_usd == settings.whale_saturation_usd

    def test_set_weights(self) -> None:
        scorer = TokenScorer()
        weights = ScoringWeights(progress_weight=0.0)

        scorer.set_weights(weights)

        assert scorer.get_weights() is weights
        assert scorer.score_token(token(100, rug_risk=100)).score == 0.0
