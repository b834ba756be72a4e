"""arq worker tasks."""

from __future__ import annotations

from typing import Any

from packages.common.exceptions import InfrastructureError
from packages.common.logging import get_logger, log_failure
from packages.quota.service import get_quota_manager

logger = get_logger(module=__name__)


async def job_reset_daily_quotas(ctx: dict[str, Any]) -> dict[str, Any]:
    """Background task: reset daily counters of users past the daily anchor.

    Users who call ``check_quota`` get reset lazily; this sweep covers the
    ones who have not been seen since the anchor.
    """
    attempt = int(ctx.get("job_try", 1))
    manager = get_quota_manager()

    try:
        reset_count = await manager.reset_all_daily_quotas()
    except InfrastructureError as exc:
        log_failure(logger, "daily_quota_sweep_failed", exc, severity="high", attempt=attempt)
        return {"reset_count": 0, "error": str(exc)}

    logger.info("daily_quota_sweep_finished", reset_count=reset_count, attempt=attempt)
    return {"reset_count": reset_count}
