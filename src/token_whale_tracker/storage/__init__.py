"""Storage layer - Database schemas and repositories."""

from token_whale_tracker.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from token_whale_tracker.storage.models import (
    AlertHistoryModel,
    AlertSubscriptionModel,
    Base,
    CronRunStatusModel,
    TokenSnapshotModel,
    TopTokenModel,
    UserModel,
    WhaleEventModel,
)
from token_whale_tracker.storage.repos import (
    AlertHistoryDTO,
    AlertHistoryRepository,
    AlertSubscriptionDTO,
    AlertSubscriptionRepository,
    CronRunStatusDTO,
    CronStatusRepository,
    TokenSnapshotDTO,
    TokenSnapshotRepository,
    TopTokenDTO,
    TopTokenRepository,
    UserDTO,
    UserRepository,
    WhaleEventDTO,
    WhaleEventRepository,
)

__all__ = [
    "AlertHistoryDTO",
    "AlertHistoryModel",
    "AlertHistoryRepository",
    "AlertSubscriptionDTO",
    "AlertSubscriptionModel",
    "AlertSubscriptionRepository",
    "Base",
    "CronRunStatusDTO",
    "CronRunStatusModel",
    "CronStatusRepository",
    "DatabaseManager",
    "TokenSnapshotDTO",
    "TokenSnapshotModel",
    "TokenSnapshotRepository",
    "TopTokenDTO",
    "TopTokenModel",
    "TopTokenRepository",
    "UserDTO",
    "UserModel",
    "UserRepository",
    "WhaleEventDTO",
    "WhaleEventModel",
    "WhaleEventRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
