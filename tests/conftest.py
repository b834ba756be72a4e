"""Pytest configuration and fixtures."""

from datetime import UTC, datetime, timedelta

import pytest

from packages.common.config import Settings
from packages.learning.models import CardRecord, DeckRecord
from packages.learning.service import ReviewService
from packages.learning.store import InMemoryCardStore
from packages.quota.service import QuotaManager
from packages.quota.store import InMemoryQuotaStore


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current

    def set(self, now: datetime) -> None:
        self.current = now


@pytest.fixture
def start() -> datetime:
    """Wednesday 2025-01-15 12:00 UTC (13:00 in Paris)."""
    return datetime(2025, 1, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def clock(start: datetime) -> FrozenClock:
    return FrozenClock(start)


@pytest.fixture
def settings() -> Settings:
    """Settings for the in-memory backend, independent of the environment."""
    return Settings(
        storage_backend="memory",
        quota_timezone="Europe/Paris",
        quota_daily_reset_hour=10,
        throttle_delay_ms=2000,
        default_education_level="troisieme",
        scheduler_seed=42,
    )


@pytest.fixture
def card_store() -> InMemoryCardStore:
    return InMemoryCardStore()


@pytest.fixture
async def seeded_card_store(card_store: InMemoryCardStore) -> InMemoryCardStore:
    """Store with one deck of three new cards owned by ``user-1``."""
    await card_store.add_deck(DeckRecord(id="deck-1", user_id="user-1", title="Fractions"))
    await card_store.add_deck(DeckRecord(id="deck-2", user_id="user-2", title="Verbs"))
    for position in range(3):
        await card_store.add_card(
            CardRecord(
                id=f"card-{position}",
                deck_id="deck-1",
                content={"front": f"Q{position}", "back": f"A{position}"},
                position=position,
            )
        )
    await card_store.add_card(CardRecord(id="card-foreign", deck_id="deck-2"))
    return card_store


@pytest.fixture
def review_service(
    seeded_card_store: InMemoryCardStore,
    clock: FrozenClock,
    settings: Settings,
) -> ReviewService:
    return ReviewService(seeded_card_store, clock=clock, settings=settings)


@pytest.fixture
def quota_store() -> InMemoryQuotaStore:
    return InMemoryQuotaStore()


@pytest.fixture
def quota_manager(
    quota_store: InMemoryQuotaStore,
    clock: FrozenClock,
    settings: Settings,
) -> QuotaManager:
    return QuotaManager(quota_store, clock=clock, settings=settings)
