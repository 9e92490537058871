"""Detection layer - Opportunity scoring and whale transfer detection."""

from token_whale_tracker.detector.scorer import (
    DEFAULT_WEIGHTS,
    ScoringWeights,
    TokenScorer,
    curve_speed,
    score,
)
from token_whale_tracker.detector.transfers import extract_token_transfer
from token_whale_tracker.detector.whale import (
    TopTokenRefresher,
    WhaleDetector,
    WhaleRunSummary,
)

__all__ = [
    "DEFAULT_WEIGHTS",
    "ScoringWeights",
    "TokenScorer",
    "TopTokenRefresher",
    "WhaleDetector",
    "WhaleRunSummary",
    "curve_speed",
    "extract_token_transfer",
    "score",
]
