"""Subscription tiers and their alert limits."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from token_whale_tracker.config import AlertSettings
    from token_whale_tracker.storage.repos import UserDTO

FREE_TIER = "free"
PRO_TIER = "pro"
ULTIMATE_TIER = "ultimate"


@dataclass(frozen=True)
class TierLimits:
    """Default threshold and daily quota for one tier."""

    name: str
    threshold: float
    daily_quota: int


DEFAULT_TIERS: dict[str, TierLimits] = {
    FREE_TIER: TierLimits(FREE_TIER, threshold=95.0, daily_quota=1),
    PRO_TIER: TierLimits(PRO_TIER, threshold=85.0, daily_quota=100),
    ULTIMATE_TIER: TierLimits(ULTIMATE_TIER, threshold=80.0, daily_quota=10_000),
}


def tiers_from_settings(settings: AlertSettings) -> dict[str, TierLimits]:
    return {
        FREE_TIER: TierLimits(FREE_TIER, settings.free_threshold, settings.free_daily_quota),
        PRO_TIER: TierLimits(PRO_TIER, settings.pro_threshold, settings.pro_daily_quota),
        ULTIMATE_TIER: TierLimits(
            ULTIMATE_TIER, settings.ultimate_threshold, settings.ultimate_daily_quota
        ),
    }


def resolve_tier(
    user: UserDTO | None,
    tiers: dict[str, TierLimits] | None = None,
    *,
    now: datetime | None = None,
) -> TierLimits:
    """Limits for ``user`` at ``now``.

    Unknown users, unknown tier names and expired paid tiers all resolve
    to the free tier.
    """
    table = tiers or DEFAULT_TIERS
    free = table[FREE_TIER]
    if user is None:
        return free

    limits = table.get((user.tier or FREE_TIER).lower())
    if limits is None:
        return free

    expires_at = user.tier_expires_at
    if limits.name != FREE_TIER and expires_at is not None:
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        if expires_at <= (now or datetime.now(UTC)):
            return free
    return limits


def start_of_utc_day(now: datetime | None = None) -> datetime:
    current = now or datetime.now(UTC)
    return current.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
