"""Token and deck-generation quota manager."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from packages.common.clock import Clock, SystemClock, ensure_utc
from packages.common.config import Settings, get_settings
from packages.common.exceptions import InfrastructureError, ValidationError
from packages.common.logging import get_logger, log_failure
from packages.quota.anchors import format_duration, most_recent_anchor, next_anchor
from packages.quota.models import (
    DeckQuotaDecision,
    DeckUsageResult,
    QuotaDecision,
    QuotaState,
    UsageResult,
    UsageStats,
)
from packages.quota.plans import (
    PLAN_LIMITS,
    BindingLimit,
    PlanTier,
    QuotaMode,
    get_plan_limits,
    mode_for_usage,
    parse_plan_tier,
)
from packages.quota.resets import ResetFlags, apply_resets
from packages.quota.store import InMemoryQuotaStore, PostgresQuotaStore, QuotaStore, QuotaUpdate

logger = get_logger(module=__name__)


def _percent(used: int, limit: int) -> int:
    """Usage percentage for display, rounded half up and capped at 100."""
    if limit <= 0:
        return 100
    return min(100, int(used * 100 / limit + 0.5))


def _quota_message(mode: QuotaMode, refresh_in: str, plan: PlanTier) -> str | None:
    if mode == "blocked":
        upsell = " Upgrade to Premium for more questions!" if plan == "free" else ""
        return f"Quota reached. Refreshes in {refresh_in}.{upsell}"
    if mode == "throttle":
        return "Almost at your quota, responses may be slower."
    if mode == "warning":
        return "You are getting close to your question limit."
    return None


def _validate_tokens(tokens: int) -> int:
    if isinstance(tokens, bool) or not isinstance(tokens, int) or tokens < 0:
        raise ValidationError(
            f"tokens_used must be a non-negative integer, got {tokens!r}",
            context={"tokens_used": repr(tokens)},
        )
    return tokens


class QuotaManager:
    """Gates token-consuming operations per user.

    Two horizons are tracked: a rolling window (e.g. 5h) and a daily cap
    anchored to a local hour. The more used of the two decides the mode.
    Reads fail open; lost writes are reported with ``success=False``.
    """

    def __init__(
        self,
        store: QuotaStore,
        *,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
        self.tz = self.settings.timezone
        self.reset_hour = self.settings.quota_daily_reset_hour

    def _now(self, now: datetime | None) -> datetime:
        return ensure_utc(now) if now is not None else self.clock.now()

    def _with_resets(
        self,
        now: datetime,
        then: QuotaUpdate | None = None,
    ) -> tuple[QuotaUpdate, list[ResetFlags]]:
        """Build a store update that applies pending resets, then ``then``."""
        fired: list[ResetFlags] = []

        def update(state: QuotaState) -> QuotaState:
            limits = get_plan_limits(state.plan_tier)
            state, flags = apply_resets(state, now, limits, self.tz, self.reset_hour)
            fired.append(flags)
            return then(state) if then is not None else state

        return update, fired

    def _log_resets(self, user_id: str, fired: list[ResetFlags]) -> None:
        if not fired:
            return
        flags = fired[-1]
        if flags.window:
            logger.debug("quota_window_reset", user_id=user_id)
        if flags.daily:
            logger.info("quota_daily_reset", user_id=user_id)
        if flags.weekly:
            logger.debug("quota_weekly_reset", user_id=user_id)
        if flags.monthly:
            logger.debug("quota_monthly_reset", user_id=user_id)

    async def _refresh(self, user_id: str, now: datetime) -> QuotaState:
        update, fired = self._with_resets(now)
        state = await self.store.modify(user_id, update, now)
        self._log_resets(user_id, fired)
        return state

    def daily_resets_in(self, now: datetime) -> str:
        return format_duration(next_anchor(now, self.reset_hour, self.tz) - now)

    def _decide(self, state: QuotaState, now: datetime) -> QuotaDecision:
        limits = get_plan_limits(state.plan_tier)
        window_used = state.window_tokens_used
        daily_used = state.tokens_used_today
        window_remaining = max(0, limits.window_tokens - window_used)
        daily_remaining = max(0, limits.daily_tokens - daily_used)

        window_fraction = window_used / limits.window_tokens
        daily_fraction = daily_used / limits.daily_tokens
        binding: BindingLimit = "daily" if daily_fraction > window_fraction else "window"
        mode = mode_for_usage(max(window_fraction, daily_fraction))

        window_refresh_in = format_duration(state.window_start_at + limits.window_duration - now)
        daily_resets_in = self.daily_resets_in(now)
        refresh_in = window_refresh_in if binding == "window" else daily_resets_in

        return QuotaDecision(
            allowed=min(window_remaining, daily_remaining) > 0,
            mode=mode,
            plan=state.plan_tier,
            binding_limit=binding,
            window_tokens_used=window_used,
            window_tokens_remaining=window_remaining,
            window_limit=limits.window_tokens,
            window_usage_percent=_percent(window_used, limits.window_tokens),
            window_refresh_in=window_refresh_in,
            daily_tokens_used=daily_used,
            daily_tokens_remaining=daily_remaining,
            daily_limit=limits.daily_tokens,
            daily_usage_percent=_percent(daily_used, limits.daily_tokens),
            daily_resets_in=daily_resets_in,
            throttle_delay_ms=self.settings.throttle_delay_ms if mode == "throttle" else None,
            message=_quota_message(mode, refresh_in, state.plan_tier),
        )

    def _fail_open_decision(self, now: datetime) -> QuotaDecision:
        limits = PLAN_LIMITS["free"]
        return QuotaDecision(
            allowed=True,
            mode="normal",
            plan="free",
            binding_limit="window",
            window_tokens_used=0,
            window_tokens_remaining=limits.window_tokens,
            window_limit=limits.window_tokens,
            window_usage_percent=0,
            window_refresh_in=format_duration(limits.window_duration),
            daily_tokens_used=0,
            daily_tokens_remaining=limits.daily_tokens,
            daily_limit=limits.daily_tokens,
            daily_usage_percent=0,
            daily_resets_in=self.daily_resets_in(now),
            degraded=True,
        )

    async def check_quota(self, user_id: str, now: datetime | None = None) -> QuotaDecision:
        """Decide whether the user may start a token-consuming request.

        Pending resets are applied and persisted; nothing else is written.
        A store failure yields an allowed free-tier decision.
        """
        now = self._now(now)
        try:
            state = await self._refresh(user_id, now)
        except InfrastructureError as exc:
            log_failure(logger, "quota_check_failed", exc, severity="medium", user_id=user_id)
            return self._fail_open_decision(now)
        return self._decide(state, now)

    async def increment_token_usage(
        self,
        user_id: str,
        tokens_used: int,
        now: datetime | None = None,
    ) -> UsageResult:
        """Record tokens already spent on a response.

        Usage may exceed the limit; the result reports it instead of refusing.

        Raises:
            ValidationError: If ``tokens_used`` is negative or not an integer.
        """
        tokens = _validate_tokens(tokens_used)
        now = self._now(now)

        def add(state: QuotaState) -> QuotaState:
            return replace(
                state,
                window_tokens_used=state.window_tokens_used + tokens,
                tokens_used_today=state.tokens_used_today + tokens,
                tokens_used_this_week=state.tokens_used_this_week + tokens,
                total_tokens_used=state.total_tokens_used + tokens,
                total_messages_count=state.total_messages_count + 1,
            )

        update, fired = self._with_resets(now, add)
        try:
            state = await self.store.modify(user_id, update, now)
        except InfrastructureError as exc:
            log_failure(
                logger,
                "token_usage_increment_failed",
                exc,
                severity="high",
                user_id=user_id,
                tokens_used=tokens,
            )
            return UsageResult(success=False)
        self._log_resets(user_id, fired)

        decision = self._decide(state, now)
        logger.debug(
            "token_usage_incremented",
            user_id=user_id,
            tokens_added=tokens,
            window_tokens_used=state.window_tokens_used,
            daily_tokens_used=state.tokens_used_today,
            mode=decision.mode,
        )
        return UsageResult(
            success=True,
            window_tokens_used=state.window_tokens_used,
            daily_tokens_used=state.tokens_used_today,
            window_tokens_remaining=decision.window_tokens_remaining,
            daily_tokens_remaining=decision.daily_tokens_remaining,
            mode=decision.mode,
            binding_limit=decision.binding_limit,
            throttle_delay_ms=decision.throttle_delay_ms,
            message=decision.message,
        )

    async def get_usage_stats(self, user_id: str, now: datetime | None = None) -> UsageStats:
        """Current decision plus weekly and lifetime counters."""
        now = self._now(now)
        try:
            state = await self._refresh(user_id, now)
        except InfrastructureError as exc:
            log_failure(logger, "quota_stats_failed", exc, severity="medium", user_id=user_id)
            return UsageStats(
                quota=self._fail_open_decision(now),
                weekly_tokens_used=0,
                total_tokens_used=0,
                total_messages_count=0,
            )
        return UsageStats(
            quota=self._decide(state, now),
            weekly_tokens_used=state.tokens_used_this_week,
            total_tokens_used=state.total_tokens_used,
            total_messages_count=state.total_messages_count,
        )

    def _decide_decks(self, state: QuotaState, now: datetime) -> DeckQuotaDecision:
        limits = get_plan_limits(state.plan_tier)
        remaining_today = max(0, limits.daily_decks - state.decks_generated_today)
        remaining_month = max(0, limits.monthly_decks - state.decks_generated_this_month)

        message = None
        if not limits.can_generate_decks:
            message = "Deck generation is a Premium feature."
        elif remaining_today == 0:
            message = (
                f"You reached the limit of {limits.daily_decks} decks per day. "
                f"Resets in {self.daily_resets_in(now)}."
            )
        elif remaining_month == 0:
            message = (
                f"You reached the limit of {limits.monthly_decks} decks this month. "
                "Resets on the 1st of next month."
            )

        return DeckQuotaDecision(
            allowed=message is None,
            plan=state.plan_tier,
            decks_remaining_today=remaining_today,
            decks_remaining_this_month=remaining_month,
            daily_limit=limits.daily_decks,
            monthly_limit=limits.monthly_decks,
            message=message,
        )

    async def check_deck_quota(
        self,
        user_id: str,
        now: datetime | None = None,
    ) -> DeckQuotaDecision:
        """Decide whether the user may generate another deck."""
        now = self._now(now)
        try:
            state = await self._refresh(user_id, now)
        except InfrastructureError as exc:
            log_failure(logger, "deck_quota_check_failed", exc, severity="medium", user_id=user_id)
            limits = PLAN_LIMITS["premium"]
            return DeckQuotaDecision(
                allowed=True,
                plan="premium",
                decks_remaining_today=limits.daily_decks,
                decks_remaining_this_month=limits.monthly_decks,
                daily_limit=limits.daily_decks,
                monthly_limit=limits.monthly_decks,
                degraded=True,
            )
        return self._decide_decks(state, now)

    async def increment_deck_usage(
        self,
        user_id: str,
        now: datetime | None = None,
    ) -> DeckUsageResult:
        """Record one generated deck."""
        now = self._now(now)

        def add(state: QuotaState) -> QuotaState:
            return replace(
                state,
                decks_generated_today=state.decks_generated_today + 1,
                decks_generated_this_month=state.decks_generated_this_month + 1,
            )

        update, fired = self._with_resets(now, add)
        try:
            state = await self.store.modify(user_id, update, now)
        except InfrastructureError as exc:
            log_failure(
                logger, "deck_usage_increment_failed", exc, severity="high", user_id=user_id
            )
            return DeckUsageResult(success=False)
        self._log_resets(user_id, fired)

        limits = get_plan_limits(state.plan_tier)
        result = DeckUsageResult(
            success=True,
            decks_generated_today=state.decks_generated_today,
            decks_generated_this_month=state.decks_generated_this_month,
            decks_remaining_today=max(0, limits.daily_decks - state.decks_generated_today),
            decks_remaining_this_month=max(
                0, limits.monthly_decks - state.decks_generated_this_month
            ),
        )
        logger.info(
            "deck_usage_incremented",
            user_id=user_id,
            decks_today=result.decks_generated_today,
            decks_this_month=result.decks_generated_this_month,
        )
        return result

    async def change_plan(
        self,
        user_id: str,
        plan_tier: str,
        now: datetime | None = None,
    ) -> QuotaState:
        """Switch the user's plan; counters are kept."""
        tier = parse_plan_tier(plan_tier)
        now = self._now(now)
        update, fired = self._with_resets(now, lambda state: replace(state, plan_tier=tier))
        state = await self.store.modify(user_id, update, now)
        self._log_resets(user_id, fired)
        logger.info("quota_plan_changed", user_id=user_id, plan_tier=tier)
        return state

    async def reset_all_daily_quotas(self, now: datetime | None = None) -> int:
        """Apply pending resets to every user past the daily anchor.

        Returns the number of users whose daily counters were reset. Safe to
        run repeatedly.
        """
        now = self._now(now)
        anchor = most_recent_anchor(now, self.reset_hour, self.tz)
        reset_count = 0
        for user_id in await self.store.list_stale_daily(anchor):
            update, fired = self._with_resets(now)
            await self.store.modify(user_id, update, now)
            if fired and fired[-1].daily:
                reset_count += 1

        if reset_count:
            logger.info(
                "daily_quota_sweep_completed",
                reset_count=reset_count,
                anchor=anchor.isoformat(),
            )
        return reset_count


def build_quota_store(settings: Settings) -> QuotaStore:
    """Quota store for the configured storage backend."""
    if settings.storage_backend == "memory":
        return InMemoryQuotaStore()
    return PostgresQuotaStore(settings)


_quota_manager: QuotaManager | None = None


def get_quota_manager(settings: Settings | None = None) -> QuotaManager:
    """Get the process-wide quota manager."""
    global _quota_manager
    if _quota_manager is None:
        settings = settings or get_settings()
        _quota_manager = QuotaManager(build_quota_store(settings), settings=settings)
    return _quota_manager


def close_quota_manager() -> None:
    """Drop the process-wide quota manager."""
    global _quota_manager
    _quota_manager = None
