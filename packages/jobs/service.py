"""Scheduled and on-demand background jobs backed by arq and Redis."""

from __future__ import annotations

from datetime import UTC, datetime
from urllib.parse import urlparse
from uuid import uuid4

from arq.connections import ArqRedis, RedisSettings, create_pool

from packages.common.config import Settings, get_settings
from packages.common.exceptions import InfrastructureError
from packages.common.logging import get_logger

logger = get_logger(module=__name__)

QUOTA_SWEEP_TASK = "job_reset_daily_quotas"


class JobBackendUnavailableError(InfrastructureError):
    """Raised when Redis/arq backend is unavailable."""


def build_redis_settings(redis_url: str) -> RedisSettings:
    """Build arq RedisSettings from redis URL."""
    parsed = urlparse(redis_url)
    if parsed.scheme not in {"redis", "rediss"}:
        raise ValueError("redis_url must use redis:// or rediss://")

    database = int(parsed.path.lstrip("/") or "0")
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=database,
        username=parsed.username,
        password=parsed.password,
        ssl=parsed.scheme == "rediss",
        conn_timeout=1,
        conn_retries=1,
        conn_retry_delay=1,
    )


class ArqJobManager:
    """Enqueue background jobs on the worker's queue."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._redis: ArqRedis | None = None

    async def connect(self) -> ArqRedis:
        """Connect to Redis/arq pool if needed."""
        if self._redis is None:
            try:
                redis_settings = build_redis_settings(self.settings.redis_url)
                self._redis = await create_pool(redis_settings)
            except Exception as exc:
                raise JobBackendUnavailableError(
                    f"Failed to connect to Redis: {exc}",
                    context={"redis_url": self.settings.redis_url},
                ) from exc
        return self._redis

    async def close(self) -> None:
        """Close Redis pool."""
        if self._redis is not None:
            await self._redis.close()
            self._redis = None

    async def enqueue_quota_sweep(self, run_at: datetime | None = None) -> str:
        """Queue one run of the daily quota sweep and return its job id."""
        redis = await self.connect()
        if run_at is not None and run_at.tzinfo is None:
            run_at = run_at.replace(tzinfo=UTC)
        job_id = str(uuid4())

        job = await redis.enqueue_job(
            QUOTA_SWEEP_TASK,
            _job_id=job_id,
            _queue_name=self.settings.job_queue_name,
            _defer_until=run_at,
        )
        if job is None:
            raise RuntimeError(f"Failed to enqueue job '{job_id}'")

        logger.info(
            "job_enqueued",
            job_id=job_id,
            task=QUOTA_SWEEP_TASK,
            run_at=run_at.isoformat() if run_at else None,
        )
        return job_id


_job_manager: ArqJobManager | None = None


async def get_job_manager(settings: Settings | None = None) -> ArqJobManager:
    """Get cached job manager."""
    global _job_manager
    if _job_manager is None:
        _job_manager = ArqJobManager(settings)
    return _job_manager


async def close_job_manager() -> None:
    """Close cached job manager resources."""
    global _job_manager
    if _job_manager is not None:
        await _job_manager.close()
        _job_manager = None
