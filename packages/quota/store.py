"""Per-user quota state persistence."""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import Callable
from dataclasses import asdict, fields
from datetime import datetime
from typing import Any, Protocol

from packages.common.config import Settings, get_settings
from packages.common.database import db_operation
from packages.common.exceptions import CorruptRecordError, ValidationError
from packages.quota.models import QuotaState
from packages.quota.plans import parse_plan_tier

QuotaUpdate = Callable[[QuotaState], QuotaState]


class QuotaStore(Protocol):
    """Storage contract for quota state."""

    async def get(self, user_id: str) -> QuotaState | None:
        """Return the user's state or None."""
        ...

    async def upsert(self, state: QuotaState) -> None:
        """Insert or overwrite a user's state."""
        ...

    async def modify(self, user_id: str, fn: QuotaUpdate, now: datetime) -> QuotaState:
        """Atomically replace a user's state with ``fn(state)``.

        A missing state is created on the free plan first. Concurrent calls
        for the same user are serialized.
        """
        ...

    async def list_stale_daily(self, anchor: datetime) -> list[str]:
        """User ids whose daily counters were last reset before ``anchor``."""
        ...


class InMemoryQuotaStore:
    """Process-local quota store."""

    def __init__(self) -> None:
        self._states: dict[str, QuotaState] = {}
        # Entries vanish once no caller holds or awaits the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    async def get(self, user_id: str) -> QuotaState | None:
        return self._states.get(user_id)

    async def upsert(self, state: QuotaState) -> None:
        async with self._lock(state.user_id):
            self._states[state.user_id] = state

    async def modify(self, user_id: str, fn: QuotaUpdate, now: datetime) -> QuotaState:
        async with self._lock(user_id):
            current = self._states.get(user_id) or QuotaState.new(user_id, now)
            updated = fn(current)
            self._states[user_id] = updated
            return updated

    async def list_stale_daily(self, anchor: datetime) -> list[str]:
        return sorted(uid for uid, s in self._states.items() if s.last_reset_at < anchor)


_QUOTA_FIELDS = [f.name for f in fields(QuotaState)]
_QUOTA_COLUMNS = ", ".join(_QUOTA_FIELDS)
_COUNTER_FIELDS = [
    "window_tokens_used",
    "tokens_used_today",
    "tokens_used_this_week",
    "decks_generated_today",
    "decks_generated_this_month",
    "total_tokens_used",
    "total_messages_count",
]


def _row_to_state(row: dict[str, Any]) -> QuotaState:
    """Validate a persisted row into a ``QuotaState``.

    Raises:
        CorruptRecordError: If the plan tier or a counter is unreadable.
    """
    user_id = row["user_id"]
    data = {name: row[name] for name in _QUOTA_FIELDS}
    try:
        data["plan_tier"] = parse_plan_tier(data["plan_tier"])
    except ValidationError as e:
        raise CorruptRecordError(
            f"Invalid stored plan tier: {data['plan_tier']!r}",
            context={"user_id": user_id, "field": "plan_tier"},
        ) from e
    for name in _COUNTER_FIELDS:
        value = data[name]
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise CorruptRecordError(
                f"Invalid quota counter {name}: {value!r}",
                context={"user_id": user_id, "field": name},
            )
    return QuotaState(**data)


class PostgresQuotaStore:
    """Quota store over the ``user_quotas`` table."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    async def get(self, user_id: str) -> QuotaState | None:
        async with db_operation("get_quota", self.settings) as conn:
            result = await conn.execute(
                f"SELECT {_QUOTA_COLUMNS} FROM user_quotas WHERE user_id = %s",
                (user_id,),
            )
            row = await result.fetchone()
        return _row_to_state(row) if row else None

    async def upsert(self, state: QuotaState) -> None:
        values = asdict(state)
        placeholders = ", ".join(["%s"] * len(_QUOTA_FIELDS))
        assignments = ", ".join(
            f"{name} = EXCLUDED.{name}" for name in _QUOTA_FIELDS if name != "user_id"
        )
        async with db_operation("upsert_quota", self.settings) as conn:
            await conn.execute(
                f"""
                INSERT INTO user_quotas ({_QUOTA_COLUMNS})
                VALUES ({placeholders})
                ON CONFLICT (user_id) DO UPDATE SET {assignments}, updated_at = NOW()
                """,
                tuple(values[name] for name in _QUOTA_FIELDS),
            )

    async def modify(self, user_id: str, fn: QuotaUpdate, now: datetime) -> QuotaState:
        default = QuotaState.new(user_id, now)
        async with db_operation("modify_quota", self.settings) as conn, conn.transaction():
            await conn.execute(
                """
                INSERT INTO user_quotas (
                    user_id, plan_tier, window_start_at, last_reset_at,
                    last_weekly_reset_at, last_monthly_reset_at
                )
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (user_id) DO NOTHING
                """,
                (
                    default.user_id,
                    default.plan_tier,
                    default.window_start_at,
                    default.last_reset_at,
                    default.last_weekly_reset_at,
                    default.last_monthly_reset_at,
                ),
            )
            result = await conn.execute(
                f"SELECT {_QUOTA_COLUMNS} FROM user_quotas WHERE user_id = %s FOR UPDATE",
                (user_id,),
            )
            row = await result.fetchone()
            current = _row_to_state(row)  # type: ignore[arg-type]
            updated = fn(current)
            if updated != current:
                assignments = ", ".join(f"{name} = %s" for name in _QUOTA_FIELDS[1:])
                values = asdict(updated)
                await conn.execute(
                    f"UPDATE user_quotas SET {assignments}, updated_at = NOW() WHERE user_id = %s",
                    (*(values[name] for name in _QUOTA_FIELDS[1:]), user_id),
                )
        return updated

    async def list_stale_daily(self, anchor: datetime) -> list[str]:
        async with db_operation("list_stale_quotas", self.settings) as conn:
            result = await conn.execute(
                "SELECT user_id FROM user_quotas WHERE last_reset_at < %s ORDER BY user_id",
                (anchor,),
            )
            rows = await result.fetchall()
        return [row["user_id"] for row in rows]
