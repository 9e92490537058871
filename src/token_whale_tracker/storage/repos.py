"""Repository pattern implementations for data access.

This module provides data access abstractions for token snapshots, top
tokens, whale events, users, alert subscriptions, alert history, and
cron run status.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from token_whale_tracker.ingestor.models import TokenRecord
from token_whale_tracker.storage.models import (
    AlertHistoryModel,
    AlertSubscriptionModel,
    CronRunStatusModel,
    TokenSnapshotModel,
    TopTokenModel,
    UserModel,
    WhaleEventModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _insert_for(session: AsyncSession, model: type[Any]) -> Any:
    """Dialect-specific INSERT supporting ON CONFLICT clauses."""
    dialect = session.bind.dialect.name if session.bind is not None else "postgresql"
    if dialect == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on read; treat naive timestamps as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# ============================================================================
# Token snapshots
# ============================================================================


@dataclass
class TokenSnapshotDTO:
    """Data transfer object for scored token snapshots."""

    address: str
    name: str
    symbol: str
    progress: float
    liquidity_usd: float
    price_usd: float
    volume_24h_usd: float
    price_change_24h_pct: float
    score: float
    whale_count: int
    whale_inflow_usd: float
    rug_risk: float
    observed_at: datetime
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: TokenSnapshotModel) -> TokenSnapshotDTO:
        return cls(
            address=model.address,
            name=model.name,
            symbol=model.symbol,
            progress=model.progress,
            liquidity_usd=model.liquidity_usd,
            price_usd=model.price_usd,
            volume_24h_usd=model.volume_24h_usd,
            price_change_24h_pct=model.price_change_24h_pct,
            score=model.score,
            whale_count=model.whale_count,
            whale_inflow_usd=model.whale_inflow_usd,
            rug_risk=model.rug_risk,
            observed_at=_as_utc(model.observed_at) or datetime.now(UTC),
            updated_at=_as_utc(model.updated_at),
        )

    @classmethod
    def from_record(cls, record: TokenRecord) -> TokenSnapshotDTO:
        return cls(
            address=record.address,
            name=record.name,
            symbol=record.symbol,
            progress=record.progress,
            liquidity_usd=record.liquidity_usd,
            price_usd=record.price_usd,
            volume_24h_usd=record.volume_24h_usd,
            price_change_24h_pct=record.price_change_24h_pct,
            score=record.score,
            whale_count=record.whale_count,
            whale_inflow_usd=record.whale_inflow_usd,
            rug_risk=record.rug_risk,
            observed_at=record.observed_at,
        )

    def to_record(self) -> TokenRecord:
        return TokenRecord(
            address=self.address,
            name=self.name,
            symbol=self.symbol,
            progress=self.progress,
            liquidity_usd=self.liquidity_usd,
            price_usd=self.price_usd,
            volume_24h_usd=self.volume_24h_usd,
            price_change_24h_pct=self.price_change_24h_pct,
            score=self.score,
            whale_count=self.whale_count,
            whale_inflow_usd=self.whale_inflow_usd,
            rug_risk=self.rug_risk,
            observed_at=self.observed_at,
        )


class TokenSnapshotRepository:
    """Repository for the last scored snapshot of each token."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session.
        """
        self.session = session

    async def upsert_many(self, snapshots: Sequence[TokenSnapshotDTO]) -> int:
        """Insert or refresh snapshots keyed by address."""
        if not snapshots:
            return 0
        now = datetime.now(UTC)
        rows = [
            {
                "address": s.address,
                "name": s.name,
                "symbol": s.symbol,
                "progress": s.progress,
                "liquidity_usd": s.liquidity_usd,
                "price_usd": s.price_usd,
                "volume_24h_usd": s.volume_24h_usd,
                "price_change_24h_pct": s.price_change_24h_pct,
                "score": s.score,
                "whale_count": s.whale_count,
                "whale_inflow_usd": s.whale_inflow_usd,
                "rug_risk": s.rug_risk,
                "observed_at": s.observed_at,
                "updated_at": now,
            }
            for s in snapshots
        ]
        stmt = _insert_for(self.session, TokenSnapshotModel).values(rows)
        updatable = [k for k in rows[0] if k != "address"]
        stmt = stmt.on_conflict_do_update(
            index_elements=["address"],
            set_={k: getattr(stmt.excluded, k) for k in updatable},
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return len(rows)

    async def list_since(self, since: datetime, *, limit: int = 50) -> list[TokenSnapshotDTO]:
        """Snapshots refreshed at or after ``since``, best score first."""
        result = await self.session.execute(
            select(TokenSnapshotModel)
            .where(TokenSnapshotModel.updated_at >= since)
            .order_by(TokenSnapshotModel.score.desc())
            .limit(limit)
        )
        return [TokenSnapshotDTO.from_model(m) for m in result.scalars().all()]


# ============================================================================
# Top tokens
# ============================================================================


@dataclass
class TopTokenDTO:
    """Data transfer object for monitored top tokens."""

    token_address: str
    token_symbol: str | None = None
    token_name: str | None = None
    price_usd: float | None = None
    liquidity_usd: float | None = None
    volume_24h_usd: float | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: TopTokenModel) -> TopTokenDTO:
        return cls(
            token_address=model.token_address,
            token_symbol=model.token_symbol,
            token_name=model.token_name,
            price_usd=model.price_usd,
            liquidity_usd=model.liquidity_usd,
            volume_24h_usd=model.volume_24h_usd,
            updated_at=_as_utc(model.updated_at),
        )


class TopTokenRepository:
    """Repository for the ranked tokens the whale detector reviews."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert_many(self, tokens: Sequence[TopTokenDTO]) -> int:
        if not tokens:
            return 0
        now = datetime.now(UTC)
        rows = [
            {
                "token_address": t.token_address,
                "token_symbol": t.token_symbol,
                "token_name": t.token_name,
                "price_usd": t.price_usd,
                "liquidity_usd": t.liquidity_usd,
                "volume_24h_usd": t.volume_24h_usd,
                "updated_at": t.updated_at or now,
            }
            for t in tokens
        ]
        stmt = _insert_for(self.session, TopTokenModel).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["token_address"],
            set_={
                "token_symbol": stmt.excluded.token_symbol,
                "token_name": stmt.excluded.token_name,
                "price_usd": stmt.excluded.price_usd,
                "liquidity_usd": stmt.excluded.liquidity_usd,
                "volume_24h_usd": stmt.excluded.volume_24h_usd,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return len(rows)

    async def list_fresh(self, since: datetime, *, limit: int) -> list[TopTokenDTO]:
        """Tokens refreshed at or after ``since``, most liquid first."""
        result = await self.session.execute(
            select(TopTokenModel)
            .where(TopTokenModel.updated_at >= since)
            .order_by(TopTokenModel.liquidity_usd.desc().nulls_last())
            .limit(limit)
        )
        return [TopTokenDTO.from_model(m) for m in result.scalars().all()]


# ============================================================================
# Whale events
# ============================================================================


@dataclass
class WhaleEventDTO:
    """Data transfer object for whale events."""

    tx_hash: str
    token_address: str
    event_type: str
    amount_tokens: float
    amount_usd: float
    tx_url: str
    token_symbol: str | None = None
    token_name: str | None = None
    price_usd: float | None = None
    liquidity_usd: float | None = None
    sender: str | None = None
    receiver: str | None = None
    block_time: datetime | None = None
    fee_sol: float | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: WhaleEventModel) -> WhaleEventDTO:
        return cls(
            tx_hash=model.tx_hash,
            token_address=model.token_address,
            event_type=model.event_type,
            amount_tokens=model.amount_tokens,
            amount_usd=model.amount_usd,
            tx_url=model.tx_url,
            token_symbol=model.token_symbol,
            token_name=model.token_name,
            price_usd=model.price_usd,
            liquidity_usd=model.liquidity_usd,
            sender=model.sender,
            receiver=model.receiver,
            block_time=_as_utc(model.block_time),
            fee_sol=model.fee_sol,
            created_at=_as_utc(model.created_at),
        )


class WhaleEventRepository:
    """Append-only store of whale events, deduplicated on ``tx_hash``."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def existing_hashes(self, tx_hashes: Iterable[str]) -> set[str]:
        """Which of ``tx_hashes`` are already stored (one query)."""
        hashes = list(dict.fromkeys(tx_hashes))
        if not hashes:
            return set()
        result = await self.session.execute(
            select(WhaleEventModel.tx_hash).where(WhaleEventModel.tx_hash.in_(hashes))
        )
        return set(result.scalars().all())

    async def insert_new(self, events: Sequence[WhaleEventDTO]) -> list[str]:
        """Insert events, skipping any ``tx_hash`` that already exists.

        Concurrent writers racing on the same signature are absorbed by
        the unique constraint.

        Returns:
            The tx hashes this call actually inserted.
        """
        if not events:
            return []
        now = datetime.now(UTC)
        rows = [
            {
                "tx_hash": e.tx_hash,
                "token_address": e.token_address,
                "token_symbol": e.token_symbol,
                "token_name": e.token_name,
                "event_type": e.event_type,
                "amount_tokens": e.amount_tokens,
                "amount_usd": e.amount_usd,
                "price_usd": e.price_usd,
                "liquidity_usd": e.liquidity_usd,
                "sender": e.sender,
                "receiver": e.receiver,
                "tx_url": e.tx_url,
                "block_time": e.block_time,
                "fee_sol": e.fee_sol,
                "created_at": now,
            }
            for e in {e.tx_hash: e for e in events}.values()
        ]
        stmt = (
            _insert_for(self.session, WhaleEventModel)
            .values(rows)
            .on_conflict_do_nothing(index_elements=["tx_hash"])
            .returning(WhaleEventModel.tx_hash)
        )
        result = await self.session.execute(stmt)
        inserted = list(result.scalars().all())
        await self.session.flush()
        return inserted

    async def count_by_tx_hash(self, tx_hash: str) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(WhaleEventModel).where(WhaleEventModel.tx_hash == tx_hash)
        )
        return int(result.scalar_one())

    async def list_recent(self, *, limit: int = 50) -> list[WhaleEventDTO]:
        result = await self.session.execute(
            select(WhaleEventModel).order_by(WhaleEventModel.created_at.desc()).limit(limit)
        )
        return [WhaleEventDTO.from_model(m) for m in result.scalars().all()]


# ============================================================================
# Users and subscriptions
# ============================================================================


@dataclass
class UserDTO:
    """Data transfer object for users."""

    id: str
    tier: str = "free"
    tier_expires_at: datetime | None = None
    telegram_chat_id: str | None = None
    discord_user_id: str | None = None

    @classmethod
    def from_model(cls, model: UserModel) -> UserDTO:
        return cls(
            id=model.id,
            tier=model.tier,
            tier_expires_at=_as_utc(model.tier_expires_at),
            telegram_chat_id=model.telegram_chat_id,
            discord_user_id=model.discord_user_id,
        )


class UserRepository:
    """Read access to users (written by the web application)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: str) -> UserDTO | None:
        model = await self.session.get(UserModel, user_id)
        return UserDTO.from_model(model) if model else None

    async def create(self, dto: UserDTO) -> UserDTO:
        self.session.add(
            UserModel(
                id=dto.id,
                tier=dto.tier,
                tier_expires_at=dto.tier_expires_at,
                telegram_chat_id=dto.telegram_chat_id,
                discord_user_id=dto.discord_user_id,
            )
        )
        await self.session.flush()
        return dto


@dataclass
class AlertSubscriptionDTO:
    """Data transfer object for alert subscriptions."""

    user_id: str
    alert_type: str = "score"
    token_address: str | None = None
    threshold_value: float | None = None
    is_active: bool = True
    id: int | None = None

    @classmethod
    def from_model(cls, model: AlertSubscriptionModel) -> AlertSubscriptionDTO:
        return cls(
            id=model.id,
            user_id=model.user_id,
            alert_type=model.alert_type,
            token_address=model.token_address,
            threshold_value=model.threshold_value,
            is_active=model.is_active,
        )


class AlertSubscriptionRepository:
    """Read access to alert subscriptions (managed by the web application)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_active(self) -> list[AlertSubscriptionDTO]:
        result = await self.session.execute(
            select(AlertSubscriptionModel)
            .where(AlertSubscriptionModel.is_active.is_(True))
            .order_by(AlertSubscriptionModel.id)
        )
        return [AlertSubscriptionDTO.from_model(m) for m in result.scalars().all()]

    async def create(self, dto: AlertSubscriptionDTO) -> AlertSubscriptionDTO:
        model = AlertSubscriptionModel(
            user_id=dto.user_id,
            alert_type=dto.alert_type,
            token_address=dto.token_address,
            threshold_value=dto.threshold_value,
            is_active=dto.is_active,
        )
        self.session.add(model)
        await self.session.flush()
        dto.id = model.id
        return dto


# ============================================================================
# Alert history
# ============================================================================


@dataclass
class AlertHistoryDTO:
    """Data transfer object for delivered alerts."""

    user_id: str
    token_address: str
    alert_type: str
    alert_score: float
    channel: str
    sent_at: datetime | None = None

    @classmethod
    def from_model(cls, model: AlertHistoryModel) -> AlertHistoryDTO:
        return cls(
            user_id=model.user_id,
            token_address=model.token_address,
            alert_type=model.alert_type,
            alert_score=model.alert_score,
            channel=model.channel,
            sent_at=_as_utc(model.sent_at),
        )


class AlertHistoryRepository:
    """Append-only alert delivery log."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def append(self, dto: AlertHistoryDTO) -> AlertHistoryDTO:
        sent_at = dto.sent_at or datetime.now(UTC)
        self.session.add(
            AlertHistoryModel(
                user_id=dto.user_id,
                token_address=dto.token_address,
                alert_type=dto.alert_type,
                alert_score=dto.alert_score,
                channel=dto.channel,
                sent_at=sent_at,
            )
        )
        await self.session.flush()
        dto.sent_at = sent_at
        return dto

    async def count_since(self, user_id: str, since: datetime) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(AlertHistoryModel)
            .where(AlertHistoryModel.user_id == user_id)
            .where(AlertHistoryModel.sent_at >= since)
        )
        return int(result.scalar_one())

    async def list_for_user(self, user_id: str) -> list[AlertHistoryDTO]:
        result = await self.session.execute(
            select(AlertHistoryModel)
            .where(AlertHistoryModel.user_id == user_id)
            .order_by(AlertHistoryModel.sent_at)
        )
        return [AlertHistoryDTO.from_model(m) for m in result.scalars().all()]


# ============================================================================
# Cron run status
# ============================================================================


@dataclass
class CronRunStatusDTO:
    """Data transfer object for per-job run status."""

    job_name: str
    last_success_at: datetime | None = None
    last_success_summary: dict[str, Any] | None = None
    last_error_at: datetime | None = None
    last_error_message: str | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: CronRunStatusModel) -> CronRunStatusDTO:
        return cls(
            job_name=model.job_name,
            last_success_at=_as_utc(model.last_success_at),
            last_success_summary=model.last_success_summary,
            last_error_at=_as_utc(model.last_error_at),
            last_error_message=model.last_error_message,
            updated_at=_as_utc(model.updated_at),
        )


class CronStatusRepository:
    """Single-row upserts per job; the other outcome's columns are preserved."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, job_name: str) -> CronRunStatusDTO | None:
        result = await self.session.execute(
            select(CronRunStatusModel)
            .where(CronRunStatusModel.job_name == job_name)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return CronRunStatusDTO.from_model(model) if model else None

    async def _upsert(self, job_name: str, values: dict[str, Any]) -> None:
        now = datetime.now(UTC)
        stmt = _insert_for(self.session, CronRunStatusModel).values(
            job_name=job_name, updated_at=now, **values
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["job_name"],
            set_={**values, "updated_at": now},
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def record_success(
        self, job_name: str, summary: dict[str, Any], *, at: datetime | None = None
    ) -> None:
        await self._upsert(
            job_name,
            {"last_success_at": at or datetime.now(UTC), "last_success_summary": summary},
        )

    async def record_failure(
        self, job_name: str, message: str, *, at: datetime | None = None
    ) -> None:
        await self._upsert(
            job_name,
            {"last_error_at": at or datetime.now(UTC), "last_error_message": message[:2000]},
        )
