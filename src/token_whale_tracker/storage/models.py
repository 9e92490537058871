"""SQLAlchemy models for persistent storage.

This module defines the database schema for scored token snapshots,
top tokens, whale events, users and their alert subscriptions, alert
delivery history, and per-job cron run status.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Solana base58 keys are at most 44 chars; signatures at most 88.
ADDRESS_LENGTH = 64
SIGNATURE_LENGTH = 128


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _amount(precision: int = 30, scale: int = 9) -> Numeric:
    return Numeric(precision, scale, asdecimal=False)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TokenSnapshotModel(Base):
    """Last scored snapshot per token (fallback source for the aggregator)."""

    __tablename__ = "token_snapshots"

    address: Mapped[str] = mapped_column(String(ADDRESS_LENGTH), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    symbol: Mapped[str] = mapped_column(String(50), nullable=False)
    progress: Mapped[float] = mapped_column(_amount(10, 4), nullable=False)
    liquidity_usd: Mapped[float] = mapped_column(_amount(), nullable=False, default=0.0)
    price_usd: Mapped[float] = mapped_column(_amount(30, 12), nullable=False, default=0.0)
    volume_24h_usd: Mapped[float] = mapped_column(_amount(), nullable=False, default=0.0)
    price_change_24h_pct: Mapped[float] = mapped_column(_amount(18, 4), nullable=False, default=0.0)
    score: Mapped[float] = mapped_column(_amount(6, 2), nullable=False)
    whale_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    whale_inflow_usd: Mapped[float] = mapped_column(_amount(), nullable=False, default=0.0)
    rug_risk: Mapped[float] = mapped_column(_amount(6, 2), nullable=False)
    observed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_token_snapshots_score", "score"),
        Index("idx_token_snapshots_updated_at", "updated_at"),
    )


class TopTokenModel(Base):
    """Ranked tokens the whale detector monitors."""

    __tablename__ = "top_tokens"

    token_address: Mapped[str] = mapped_column(String(ADDRESS_LENGTH), primary_key=True)
    token_symbol: Mapped[str | None] = mapped_column(String(50), nullable=True)
    token_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    price_usd: Mapped[float | None] = mapped_column(_amount(30, 12), nullable=True)
    liquidity_usd: Mapped[float | None] = mapped_column(_amount(), nullable=True)
    volume_24h_usd: Mapped[float | None] = mapped_column(_amount(), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("idx_top_tokens_updated_at", "updated_at"),)


class WhaleEventModel(Base):
    """A whale-sized transfer. ``tx_hash`` is the dedup boundary."""

    __tablename__ = "whale_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tx_hash: Mapped[str] = mapped_column(String(SIGNATURE_LENGTH), nullable=False)
    token_address: Mapped[str] = mapped_column(String(ADDRESS_LENGTH), nullable=False)
    token_symbol: Mapped[str | None] = mapped_column(String(50), nullable=True)
    token_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    event_type: Mapped[str] = mapped_column(String(16), nullable=False)
    amount_tokens: Mapped[float] = mapped_column(_amount(), nullable=False)
    amount_usd: Mapped[float] = mapped_column(_amount(30, 2), nullable=False)
    price_usd: Mapped[float | None] = mapped_column(_amount(30, 12), nullable=True)
    liquidity_usd: Mapped[float | None] = mapped_column(_amount(), nullable=True)
    sender: Mapped[str | None] = mapped_column(String(ADDRESS_LENGTH), nullable=True)
    receiver: Mapped[str | None] = mapped_column(String(ADDRESS_LENGTH), nullable=True)
    tx_url: Mapped[str] = mapped_column(String(256), nullable=False)
    block_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    fee_sol: Mapped[float | None] = mapped_column(_amount(20, 9), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("tx_hash", name="uq_whale_events_tx_hash"),
        Index("idx_whale_events_token", "token_address"),
        Index("idx_whale_events_created_at", "created_at"),
    )


class UserModel(Base):
    """Tier and notification targets for a user (owned by the web app)."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tier: Mapped[str] = mapped_column(String(16), nullable=False, default="free")
    tier_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    telegram_chat_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    discord_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class AlertSubscriptionModel(Base):
    """A user's alert rule. ``token_address`` NULL means all tokens."""

    __tablename__ = "alert_subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    token_address: Mapped[str | None] = mapped_column(String(ADDRESS_LENGTH), nullable=True)
    alert_type: Mapped[str] = mapped_column(String(16), nullable=False, default="score")
    threshold_value: Mapped[float | None] = mapped_column(_amount(6, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("idx_alert_subscriptions_active", "is_active"),)


class AlertHistoryModel(Base):
    """Append-only delivery log; source of truth for daily quotas."""

    __tablename__ = "alert_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    token_address: Mapped[str] = mapped_column(String(ADDRESS_LENGTH), nullable=False)
    alert_type: Mapped[str] = mapped_column(String(16), nullable=False)
    alert_score: Mapped[float] = mapped_column(_amount(6, 2), nullable=False)
    channel: Mapped[str] = mapped_column(String(16), nullable=False)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("idx_alert_history_user_sent", "user_id", "sent_at"),)


class CronRunStatusModel(Base):
    """Latest outcome per scheduled job (one row per job name)."""

    __tablename__ = "cron_run_status"

    job_name: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_success_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_success_summary: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    last_error_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
