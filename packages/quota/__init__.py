"""Per-user token and deck-generation quotas."""

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
    SOFT_LIMITS,
    BindingLimit,
    PlanLimits,
    PlanTier,
    QuotaMode,
    get_plan_limits,
    mode_for_usage,
)
from packages.quota.resets import ResetFlags, apply_resets
from packages.quota.service import QuotaManager, close_quota_manager, get_quota_manager
from packages.quota.store import InMemoryQuotaStore, PostgresQuotaStore, QuotaStore

__all__ = [
    "PLAN_LIMITS",
    "SOFT_LIMITS",
    "BindingLimit",
    "DeckQuotaDecision",
    "DeckUsageResult",
    "InMemoryQuotaStore",
    "PlanLimits",
    "PlanTier",
    "PostgresQuotaStore",
    "QuotaDecision",
    "QuotaManager",
    "QuotaMode",
    "QuotaState",
    "QuotaStore",
    "ResetFlags",
    "UsageResult",
    "UsageStats",
    "apply_resets",
    "close_quota_manager",
    "format_duration",
    "get_plan_limits",
    "get_quota_manager",
    "mode_for_usage",
    "most_recent_anchor",
    "next_anchor",
]
