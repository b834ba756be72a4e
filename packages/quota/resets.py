"""Window, daily, weekly and monthly quota resets."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, tzinfo
from typing import Any

from packages.common.clock import ensure_utc
from packages.quota.anchors import most_recent_anchor
from packages.quota.models import QuotaState
from packages.quota.plans import PlanLimits

WEEKLY_RESET_WEEKDAY = 0  # Monday
MONTHLY_RESET_DAY = 1


@dataclass(frozen=True)
class ResetFlags:
    """Which resets fired during one evaluation."""

    window: bool = False
    daily: bool = False
    weekly: bool = False
    monthly: bool = False

    @property
    def any(self) -> bool:
        return self.window or self.daily or self.weekly or self.monthly


def apply_resets(
    state: QuotaState,
    now: datetime,
    limits: PlanLimits,
    tz: tzinfo,
    reset_hour: int,
) -> tuple[QuotaState, ResetFlags]:
    """Apply every pending reset to ``state``.

    Each rule is independent and moves its own anchor to ``now``, so a
    second call at the same instant changes nothing.
    """
    now = ensure_utc(now)
    flags = ResetFlags(
        window=now - state.window_start_at >= limits.window_duration,
        daily=state.last_reset_at < most_recent_anchor(now, reset_hour, tz),
        weekly=state.last_weekly_reset_at
        < most_recent_anchor(now, 0, tz, weekday=WEEKLY_RESET_WEEKDAY),
        monthly=state.last_monthly_reset_at
        < most_recent_anchor(now, 0, tz, day_of_month=MONTHLY_RESET_DAY),
    )
    if not flags.any:
        return state, flags

    changes: dict[str, Any] = {}
    if flags.window:
        changes.update(window_tokens_used=0, window_start_at=now)
    if flags.daily:
        changes.update(tokens_used_today=0, decks_generated_today=0, last_reset_at=now)
    if flags.weekly:
        changes.update(tokens_used_this_week=0, last_weekly_reset_at=now)
    if flags.monthly:
        changes.update(decks_generated_this_month=0, last_monthly_reset_at=now)
    return replace(state, **changes), flags
