"""Tests for due-card ordering and deck statistics."""

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from packages.learning.models import CardRecord, CardState, MemoryState
from packages.learning.queue import (
    QueueBucket,
    build_review_queue,
    compute_deck_stats,
    end_of_local_day,
    is_overdue,
)

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)
PARIS = ZoneInfo("Europe/Paris")


def _card(
    card_id: str,
    *,
    position: int = 0,
    state: CardState = CardState.REVIEW,
    due: datetime | None = None,
    stability: float = 5.0,
    difficulty: float = 5.0,
    new: bool = False,
) -> CardRecord:
    memory = None
    if not new:
        memory = MemoryState(
            due=due or NOW,
            stability=stability,
            difficulty=difficulty,
            reps=2,
            state=state,
            last_review=(due or NOW) - timedelta(days=1),
        )
    return CardRecord(id=card_id, deck_id="deck-1", position=position, memory=memory)


@pytest.fixture
def mixed_deck() -> list[CardRecord]:
    return [
        _card("new-b", position=6, new=True),
        _card("review-strong", position=1, due=NOW - timedelta(hours=1), stability=20),
        _card("overdue-2d", position=2, due=NOW - timedelta(days=2)),
        _card("new-a", position=5, new=True),
        _card("future", position=7, due=NOW + timedelta(days=1)),
        _card("learning", position=3, state=CardState.LEARNING, due=NOW - timedelta(minutes=5)),
        _card("overdue-3d", position=4, due=NOW - timedelta(days=3)),
        _card("review-weak", position=0, due=NOW - timedelta(hours=2), stability=3),
    ]


class TestIsOverdue:
    """Tests for the overdue threshold."""

    def test_more_than_a_day_late(self) -> None:
        memory = _card("c", due=NOW - timedelta(hours=25)).memory
        assert memory is not None
        assert is_overdue(memory, NOW)

    def test_due_today_is_not_overdue(self) -> None:
        memory = _card("c", due=NOW - timedelta(hours=23)).memory
        assert memory is not None
        assert not is_overdue(memory, NOW)

    def test_new_card_never_overdue(self) -> None:
        assert not is_overdue(MemoryState.new(NOW - timedelta(days=30)), NOW)


class TestBuildReviewQueue:
    """Tests for the ordering of due cards."""

    def test_urgency_order(self, mixed_deck: list[CardRecord]) -> None:
        """Overdue first, then learning, then review by stability, then new."""
        queue = build_review_queue(mixed_deck, NOW, limit=20)
        assert [c.id for c in queue] == [
            "overdue-3d",
            "overdue-2d",
            "learning",
            "review-weak",
            "review-strong",
            "new-a",
            "new-b",
        ]
        assert [c.bucket for c in queue[:3]] == [
            QueueBucket.OVERDUE,
            QueueBucket.OVERDUE,
            QueueBucket.LEARNING,
        ]
        assert queue[0].overdue and not queue[2].overdue

    def test_future_cards_excluded(self, mixed_deck: list[CardRecord]) -> None:
        queue = build_review_queue(mixed_deck, NOW, limit=20)
        assert "future" not in {c.id for c in queue}

    def test_exclude_new(self, mixed_deck: list[CardRecord]) -> None:
        queue = build_review_queue(mixed_deck, NOW, limit=20, include_new=False)
        assert all(c.bucket is not QueueBucket.NEW for c in queue)
        assert len(queue) == 5

    def test_only_new_cards_without_new_is_empty(self) -> None:
        cards = [_card(f"n{i}", position=i, new=True) for i in range(4)]
        assert build_review_queue(cards, NOW, limit=10, include_new=False) == []

    def test_limit_keeps_most_urgent(self, mixed_deck: list[CardRecord]) -> None:
        queue = build_review_queue(mixed_deck, NOW, limit=2)
        assert [c.id for c in queue] == ["overdue-3d", "overdue-2d"]

    def test_zero_limit(self, mixed_deck: list[CardRecord]) -> None:
        assert build_review_queue(mixed_deck, NOW, limit=0) == []

    def test_empty_deck(self) -> None:
        assert build_review_queue([], NOW, limit=10) == []

    def test_new_cards_carry_fresh_memory(self) -> None:
        queue = build_review_queue([_card("n", new=True)], NOW, limit=1)
        assert queue[0].memory.is_new
        assert queue[0].memory.due == NOW

    def test_due_exactly_now_included(self) -> None:
        queue = build_review_queue([_card("c", due=NOW)], NOW, limit=1)
        assert [c.id for c in queue] == ["c"]


class TestEndOfLocalDay:
    def test_paris_winter(self) -> None:
        # 12:00 UTC is 13:00 in Paris (UTC+1); the local day ends at 23:00 UTC
        end = end_of_local_day(NOW, PARIS)
        assert end == datetime(2025, 1, 15, 22, 59, 59, 999999, tzinfo=UTC)

    def test_after_local_midnight(self) -> None:
        late = datetime(2025, 1, 15, 23, 30, tzinfo=UTC)  # 00:30 on the 16th in Paris
        assert end_of_local_day(late, PARIS).date().isoformat() == "2025-01-16"


class TestComputeDeckStats:
    """Tests for per-deck statistics."""

    def test_counts_by_state(self, mixed_deck: list[CardRecord]) -> None:
        stats = compute_deck_stats("deck-1", mixed_deck, NOW, PARIS)
        assert stats.total_cards == 8
        assert stats.new_cards == 2
        assert stats.learning_cards == 1
        assert stats.review_cards == 5
        assert stats.relearning_cards == 0
        assert stats.overdue_cards == 2

    def test_due_today_uses_local_day(self, mixed_deck: list[CardRecord]) -> None:
        stats = compute_deck_stats("deck-1", mixed_deck, NOW, PARIS)
        # Everything reviewed except "future" (due tomorrow)
        assert stats.due_today == 5

    def test_averages_ignore_new_cards(self) -> None:
        cards = [
            _card("a", stability=2, difficulty=4),
            _card("b", stability=6, difficulty=8),
            _card("n", new=True),
        ]
        stats = compute_deck_stats("deck-1", cards, NOW, PARIS)
        assert stats.average_stability == pytest.approx(4.0)
        assert stats.average_difficulty == pytest.approx(6.0)

    def test_empty_deck(self) -> None:
        stats = compute_deck_stats("deck-1", [], NOW, PARIS)
        assert stats.total_cards == 0
        assert stats.average_difficulty == 0.0
