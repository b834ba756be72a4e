"""Background jobs package."""

from packages.jobs.service import (
    QUOTA_SWEEP_TASK,
    ArqJobManager,
    JobBackendUnavailableError,
    build_redis_settings,
    close_job_manager,
    get_job_manager,
)

__all__ = [
    "QUOTA_SWEEP_TASK",
    "ArqJobManager",
    "JobBackendUnavailableError",
    "build_redis_settings",
    "close_job_manager",
    "get_job_manager",
]
