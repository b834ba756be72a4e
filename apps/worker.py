"""arq worker configuration for scheduled jobs."""

from typing import ClassVar

from arq import cron

from packages.common.config import get_settings
from packages.common.logging import configure_logging
from packages.jobs.service import build_redis_settings
from packages.jobs.tasks import job_reset_daily_quotas

settings = get_settings()
configure_logging(debug=settings.debug, json_output=not settings.debug)


class WorkerSettings:
    """arq worker settings."""

    functions: ClassVar = [job_reset_daily_quotas]
    # Hourly; the sweep itself skips users already reset since the daily anchor
    cron_jobs: ClassVar = [cron(job_reset_daily_quotas, minute=0, run_at_startup=True)]
    redis_settings: ClassVar = build_redis_settings(settings.redis_url)
    queue_name: ClassVar = settings.job_queue_name
    max_tries: ClassVar = 3
