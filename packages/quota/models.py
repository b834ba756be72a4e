"""Quota state and decision records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from packages.common.clock import ensure_utc
from packages.quota.plans import BindingLimit, PlanTier, QuotaMode


@dataclass(frozen=True)
class QuotaState:
    """Token and deck counters of one user.

    Window, daily, weekly and monthly counters are reset relative to their
    anchor timestamps; lifetime totals never reset.
    """

    user_id: str
    plan_tier: PlanTier
    window_start_at: datetime
    last_reset_at: datetime
    last_weekly_reset_at: datetime
    last_monthly_reset_at: datetime
    window_tokens_used: int = 0
    tokens_used_today: int = 0
    tokens_used_this_week: int = 0
    decks_generated_today: int = 0
    decks_generated_this_month: int = 0
    total_tokens_used: int = 0
    total_messages_count: int = 0

    @classmethod
    def new(cls, user_id: str, now: datetime, plan_tier: PlanTier = "free") -> QuotaState:
        """Default state for a user seen for the first time."""
        now = ensure_utc(now)
        return cls(
            user_id=user_id,
            plan_tier=plan_tier,
            window_start_at=now,
            last_reset_at=now,
            last_weekly_reset_at=now,
            last_monthly_reset_at=now,
        )


@dataclass(frozen=True)
class QuotaDecision:
    """Whether a token-consuming request may proceed, with usage details."""

    allowed: bool
    mode: QuotaMode
    plan: PlanTier
    binding_limit: BindingLimit

    window_tokens_used: int
    window_tokens_remaining: int
    window_limit: int
    window_usage_percent: int
    window_refresh_in: str

    daily_tokens_used: int
    daily_tokens_remaining: int
    daily_limit: int
    daily_usage_percent: int
    daily_resets_in: str

    throttle_delay_ms: int | None = None
    message: str | None = None
    # True when the decision is a fail-open default after a store error
    degraded: bool = False


@dataclass(frozen=True)
class UsageResult:
    """Counters right after recording token usage."""

    success: bool
    window_tokens_used: int = 0
    daily_tokens_used: int = 0
    window_tokens_remaining: int = 0
    daily_tokens_remaining: int = 0
    mode: QuotaMode = "normal"
    binding_limit: BindingLimit = "window"
    throttle_delay_ms: int | None = None
    message: str | None = None


@dataclass(frozen=True)
class UsageStats:
    """Dashboard view: the current decision plus informational counters."""

    quota: QuotaDecision
    weekly_tokens_used: int
    total_tokens_used: int
    total_messages_count: int


@dataclass(frozen=True)
class DeckQuotaDecision:
    """Whether the user may generate another deck."""

    allowed: bool
    plan: PlanTier
    decks_remaining_today: int
    decks_remaining_this_month: int
    daily_limit: int
    monthly_limit: int
    message: str | None = None
    degraded: bool = False


@dataclass(frozen=True)
class DeckUsageResult:
    """Deck counters right after recording a generation."""

    success: bool
    decks_generated_today: int = 0
    decks_generated_this_month: int = 0
    decks_remaining_today: int = 0
    decks_remaining_this_month: int = 0
