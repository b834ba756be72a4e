"""Plan tiers, their limits and the soft-limit modes."""

from dataclasses import dataclass
from datetime import timedelta
from typing import Literal, get_args

from packages.common.exceptions import ValidationError

PlanTier = Literal["free", "premium"]
QuotaMode = Literal["normal", "warning", "throttle", "blocked"]
BindingLimit = Literal["window", "daily"]

PLAN_TIERS: tuple[PlanTier, ...] = get_args(PlanTier)

# Fractions of the more restrictive limit at which each mode starts
WARNING_THRESHOLD = 0.70
THROTTLE_THRESHOLD = 0.85
BLOCKED_THRESHOLD = 1.00

SOFT_LIMITS: dict[QuotaMode, float] = {
    "warning": WARNING_THRESHOLD,
    "throttle": THROTTLE_THRESHOLD,
    "blocked": BLOCKED_THRESHOLD,
}


@dataclass(frozen=True)
class PlanLimits:
    """Token and deck limits of one plan tier."""

    window_tokens: int
    window_hours: int
    daily_tokens: int
    daily_decks: int = 0
    monthly_decks: int = 0

    @property
    def window_duration(self) -> timedelta:
        return timedelta(hours=self.window_hours)

    @property
    def can_generate_decks(self) -> bool:
        return self.daily_decks > 0 and self.monthly_decks > 0


PLAN_LIMITS: dict[PlanTier, PlanLimits] = {
    "free": PlanLimits(window_tokens=5_000, window_hours=5, daily_tokens=15_000),
    "premium": PlanLimits(
        window_tokens=25_000,
        window_hours=5,
        daily_tokens=75_000,
        daily_decks=5,
        monthly_decks=50,
    ),
}


def parse_plan_tier(value: str) -> PlanTier:
    """Validate a plan tier name.

    Raises:
        ValidationError: If the tier is unknown.
    """
    tier = value.strip().lower() if isinstance(value, str) else value
    if tier not in PLAN_TIERS:
        raise ValidationError(
            f"Unknown plan tier: {value!r}",
            context={"plan_tier": repr(value), "valid": list(PLAN_TIERS)},
        )
    return tier  # type: ignore[return-value]


def get_plan_limits(tier: str) -> PlanLimits:
    """Limits for a plan tier."""
    return PLAN_LIMITS[parse_plan_tier(tier)]


def mode_for_usage(fraction: float) -> QuotaMode:
    """Map a usage fraction of the binding limit to a quota mode.

    Anything from the throttle threshold up to (but excluding) a full
    quota is ``throttle``.
    """
    if fraction >= BLOCKED_THRESHOLD:
        return "blocked"
    if fraction >= THROTTLE_THRESHOLD:
        return "throttle"
    if fraction >= WARNING_THRESHOLD:
        return "warning"
    return "normal"
