"""Alert dispatch to subscribed users under per-tier daily quotas.

The alert history table is the only record of what was sent, so a
history row is written after every confirmed delivery and never for a
failed one. Subscriptions are handled one at a time because the
notification channels are rate limited per destination.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from token_whale_tracker.alerter.channels import NotificationChannel
from token_whale_tracker.alerter.formatter import AlertFormatter
from token_whale_tracker.alerter.tiers import TierLimits, resolve_tier, start_of_utc_day
from token_whale_tracker.detector.whale import SessionFactory
from token_whale_tracker.ingestor.models import TokenRecord
from token_whale_tracker.storage.repos import (
    AlertHistoryDTO,
    AlertHistoryRepository,
    AlertSubscriptionDTO,
    AlertSubscriptionRepository,
    UserDTO,
    UserRepository,
)

logger = logging.getLogger(__name__)

DEFAULT_DELIVERY_DELAY_SECONDS = 1.2

# Channel preference when a user has more than one linked target.
CHANNEL_ORDER = ("telegram", "discord")


@dataclass
class DispatchSummary:
    """Running totals for one dispatch cycle."""

    subscriptions: int = 0
    matched: int = 0
    sent: int = 0
    failed: int = 0
    skipped_quota: int = 0
    skipped_no_target: int = 0
    history_failures: int = 0
    reason: str | None = None
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "subscriptions": self.subscriptions,
            "matched": self.matched,
            "sent": self.sent,
            "failed": self.failed,
            "skipped_quota": self.skipped_quota,
            "skipped_no_target": self.skipped_no_target,
            "history_failures": self.history_failures,
            "errors": list(self.errors),
        }
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass
class _UserState:
    user: UserDTO | None
    limits: TierLimits
    remaining: int


def matches_subscription(token: TokenRecord, sub: AlertSubscriptionDTO, threshold: float) -> bool:
    """Whether ``token`` satisfies the subscription's criteria."""
    if token.is_placeholder:
        return False
    if sub.token_address and token.address != sub.token_address:
        return False
    if sub.alert_type == "progress":
        return token.progress >= threshold
    return token.score >= threshold


class AlertDispatcher:
    """Matches active subscriptions against a token snapshot and delivers alerts.

    Example:
        ```python
        dispatcher = AlertDispatcher(db.get_async_session, [telegram, discord])
        summary = await dispatcher.dispatch(tokens)
        ```
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        channels: Sequence[NotificationChannel],
        *,
        tiers: dict[str, TierLimits] | None = None,
        formatter: AlertFormatter | None = None,
        delivery_delay_seconds: float = DEFAULT_DELIVERY_DELAY_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            session_factory: Returns an async session context manager.
            channels: Enabled notification channels.
            tiers: Tier limit table; defaults to the built-in tiers.
            formatter: Message formatter.
            delivery_delay_seconds: Delay between consecutive deliveries.
            clock: Returns the current UTC time (quota day boundary).
        """
        self._session_factory = session_factory
        self._channels = {c.name: c for c in channels}
        self._tiers = tiers
        self._formatter = formatter or AlertFormatter()
        self._delay = delivery_delay_seconds
        self._clock = clock or (lambda: datetime.now(UTC))

    async def dispatch(self, tokens: Sequence[TokenRecord]) -> DispatchSummary:
        """Run one dispatch cycle over ``tokens``."""
        summary = DispatchSummary()
        if not tokens:
            summary.reason = "no-tokens"
            return summary
        if not self._channels:
            summary.reason = "no-channels"
            logger.warning("Alert dispatch skipped: no notification channels enabled")
            return summary

        async with self._session_factory() as session:
            subscriptions = await AlertSubscriptionRepository(session).list_active()
        if not subscriptions:
            summary.reason = "no-subscriptions"
            return summary

        now = self._clock()
        day_start = start_of_utc_day(now)
        users: dict[str, _UserState] = {}
        delivered: set[tuple[str, str]] = set()
        attempted = False

        for sub in subscriptions:
            summary.subscriptions += 1
            state = users.get(sub.user_id)
            if state is None:
                state = await self._load_user(sub.user_id, now, day_start)
                users[sub.user_id] = state

            if state.remaining <= 0:
                summary.skipped_quota += 1
                continue

            threshold = (
                sub.threshold_value if sub.threshold_value is not None else state.limits.threshold
            )
            matching = [t for t in tokens if matches_subscription(t, sub, threshold)]
            if not matching:
                continue

            target = self._resolve_target(state.user)
            if target is None:
                summary.skipped_no_target += 1
                continue
            channel, recipient = target

            for token in matching:
                if state.remaining <= 0:
                    break
                key = (sub.user_id, token.address)
                if key in delivered:
                    continue
                summary.matched += 1

                if attempted and self._delay > 0:
                    await asyncio.sleep(self._delay)
                attempted = True

                alert = self._formatter.format_token_alert(token, alert_type=sub.alert_type)
                try:
                    ok = await channel.send(recipient, channel.render(alert))
                except Exception as e:
                    logger.error("Alert delivery to user %s via %s raised: %s", sub.user_id, channel.name, e)
                    ok = False
                if not ok:
                    summary.failed += 1
                    continue

                delivered.add(key)
                summary.sent += 1
                try:
                    await self._record(sub, token, channel.name, now)
                except SQLAlchemyError as e:
                    # Without a history row the quota cannot be trusted.
                    logger.error("Failed to record alert for user %s: %s", sub.user_id, e)
                    summary.history_failures += 1
                    summary.errors.append(f"{sub.user_id}: history write failed")
                    state.remaining = 0
                    break
                state.remaining -= 1

        logger.info(
            "Alert dispatch done: subscriptions=%d sent=%d failed=%d quota_skipped=%d",
            summary.subscriptions,
            summary.sent,
            summary.failed,
            summary.skipped_quota,
        )
        return summary

    async def _load_user(self, user_id: str, now: datetime, day_start: datetime) -> _UserState:
        async with self._session_factory() as session:
            user = await UserRepository(session).get(user_id)
            sent_today = await AlertHistoryRepository(session).count_since(user_id, day_start)
        limits = resolve_tier(user, self._tiers, now=now)
        return _UserState(user=user, limits=limits, remaining=limits.daily_quota - sent_today)

    def _resolve_target(self, user: UserDTO | None) -> tuple[NotificationChannel, str] | None:
        if user is None:
            return None
        recipients = {"telegram": user.telegram_chat_id, "discord": user.discord_user_id}
        for name in CHANNEL_ORDER:
            channel = self._channels.get(name)
            recipient = recipients.get(name)
            if channel is not None and recipient:
                return channel, recipient
        return None

    async def _record(
        self, sub: AlertSubscriptionDTO, token: TokenRecord, channel: str, now: datetime
    ) -> None:
        async with self._session_factory() as session:
            await AlertHistoryRepository(session).append(
                AlertHistoryDTO(
                    user_id=sub.user_id,
                    token_address=token.address,
                    alert_type=sub.alert_type,
                    alert_score=token.score,
                    channel=channel,
                    sent_at=now,
                )
            )
