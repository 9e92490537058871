"""Single-flight job execution with per-job run status.

Each cron run takes a Redis lock named after the job, so two overlapping
triggers of the same job never run at once. Every run, including one
skipped because the lock was held, leaves exactly one status update.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from token_whale_tracker.errors import UnknownJobError
from token_whale_tracker.storage.repos import CronStatusRepository

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from token_whale_tracker.detector.whale import SessionFactory

logger = logging.getLogger(__name__)

JOB_MARKET_REFRESH = "market:refresh"
JOB_WHALES_TOP = "whales:top"
JOB_WHALES_DETECT = "whales:detect"
JOB_ALERTS_SEND = "alerts:send"

DEFAULT_LOCK_TTL_SECONDS = 600
LOCK_KEY_PREFIX = "token_whale_tracker:lock:"

# Delete the lock only if this run still owns it.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

JobFunc = Callable[[], Awaitable[dict[str, Any]]]


@dataclass
class JobResult:
    """Outcome of one ``JobRunner.run`` call."""

    job_name: str
    ok: bool
    summary: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"job": self.job_name, "ok": self.ok, "summary": self.summary}
        if self.error is not None:
            data["error"] = self.error
        if self.skipped:
            data["skipped"] = True
        return data


class JobRunner:
    """Runs registered jobs under a single-flight lock and records status."""

    def __init__(
        self,
        session_factory: SessionFactory,
        redis: Redis,
        *,
        lock_ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS,
    ) -> None:
        self._session_factory = session_factory
        self._redis = redis
        self._lock_ttl = lock_ttl_seconds
        self._jobs: dict[str, JobFunc] = {}

    def register(self, job_name: str, func: JobFunc) -> None:
        self._jobs[job_name] = func

    @property
    def job_names(self) -> list[str]:
        return sorted(self._jobs)

    def has_job(self, job_name: str) -> bool:
        return job_name in self._jobs

    async def run(self, job_name: str) -> JobResult:
        """Run ``job_name`` once.

        Raises:
            UnknownJobError: If no job is registered under ``job_name``.
        """
        func = self._jobs.get(job_name)
        if func is None:
            raise UnknownJobError(job_name)

        lock_key = f"{LOCK_KEY_PREFIX}{job_name}"
        token = uuid.uuid4().hex
        try:
            acquired = await self._redis.set(lock_key, token, nx=True, ex=self._lock_ttl)
        except RedisError as e:
            message = f"lock unavailable: {e}"
            logger.error("Job %s not started: %s", job_name, message)
            await self._record_failure(job_name, message)
            return JobResult(job_name=job_name, ok=False, error=message)

        if not acquired:
            summary = {"skipped": True, "reason": "already-running"}
            logger.info("Job %s skipped: previous run still holds the lock", job_name)
            await self._record_success(job_name, summary)
            return JobResult(job_name=job_name, ok=True, summary=summary, skipped=True)

        try:
            logger.info("Job %s started", job_name)
            summary = await func()
        except Exception as e:
            logger.exception("Job %s failed", job_name)
            message = str(e) or e.__class__.__name__
            await self._record_failure(job_name, message)
            return JobResult(job_name=job_name, ok=False, error=message)
        finally:
            await self._release(lock_key, token)

        logger.info("Job %s finished: %s", job_name, summary)
        await self._record_success(job_name, summary)
        return JobResult(job_name=job_name, ok=True, summary=summary)

    async def _release(self, lock_key: str, token: str) -> None:
        try:
            await self._redis.eval(_RELEASE_SCRIPT, 1, lock_key, token)
        except RedisError as e:
            # The lock expires on its own after the TTL.
            logger.warning("Failed to release %s: %s", lock_key, e)

    async def _record_success(self, job_name: str, summary: dict[str, Any]) -> None:
        try:
            async with self._session_factory() as session:
                await CronStatusRepository(session).record_success(job_name, summary)
        except SQLAlchemyError as e:
            logger.error("Failed to record success for %s: %s", job_name, e)

    async def _record_failure(self, job_name: str, message: str) -> None:
        try:
            async with self._session_factory() as session:
                await CronStatusRepository(session).record_failure(job_name, message)
        except SQLAlchemyError as e:
            logger.error("Failed to record failure for %s: %s", job_name, e)
