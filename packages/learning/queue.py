"""Due-card ordering and deck statistics."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta, tzinfo
from enum import IntEnum
from typing import Any

from packages.common.clock import ensure_utc
from packages.learning.models import CardRecord, CardState, MemoryState

OVERDUE_AFTER = timedelta(hours=24)


class QueueBucket(IntEnum):
    """Urgency class of a due card; lower is reviewed first."""

    OVERDUE = 0
    LEARNING = 1
    REVIEW = 2
    NEW = 3


@dataclass(frozen=True)
class CardForReview:
    """A card selected for the current study session."""

    id: str
    deck_id: str
    card_type: str
    content: dict[str, Any]
    position: int
    memory: MemoryState
    bucket: QueueBucket
    overdue: bool


@dataclass
class DeckReviewStats:
    """Review statistics for one deck."""

    deck_id: str
    total_cards: int = 0
    new_cards: int = 0
    learning_cards: int = 0
    review_cards: int = 0
    relearning_cards: int = 0
    due_today: int = 0
    overdue_cards: int = 0
    average_difficulty: float = 0.0
    average_stability: float = 0.0


def is_overdue(memory: MemoryState, now: datetime) -> bool:
    """A reviewed card whose due date is more than a day in the past."""
    return not memory.is_new and memory.due < ensure_utc(now) - OVERDUE_AFTER


def _memory_of(card: CardRecord, now: datetime) -> MemoryState:
    return card.memory if card.memory is not None else MemoryState.new(now)


def build_review_queue(
    cards: list[CardRecord],
    now: datetime,
    *,
    limit: int,
    include_new: bool = True,
) -> list[CardForReview]:
    """Select due cards and order them by urgency.

    Order: overdue cards (most overdue first), then learning/relearning
    cards, then review cards by ascending stability, then new cards by
    position. Ties keep display order.
    """
    now = ensure_utc(now)
    ranked: list[tuple[tuple[int, float, int], CardForReview]] = []

    for card in cards:
        memory = _memory_of(card, now)

        if memory.is_new:
            if not include_new:
                continue
            bucket = QueueBucket.NEW
            secondary = 0.0
            overdue = False
        else:
            if memory.due > now:
                continue
            overdue = is_overdue(memory, now)
            if overdue:
                bucket = QueueBucket.OVERDUE
                secondary = -(now - memory.due).total_seconds()
            elif memory.state in (CardState.LEARNING, CardState.RELEARNING):
                bucket = QueueBucket.LEARNING
                secondary = 0.0
            else:
                bucket = QueueBucket.REVIEW
                secondary = memory.stability

        entry = CardForReview(
            id=card.id,
            deck_id=card.deck_id,
            card_type=card.card_type,
            content=card.content,
            position=card.position,
            memory=memory,
            bucket=bucket,
            overdue=overdue,
        )
        ranked.append(((int(bucket), secondary, card.position), entry))

    ranked.sort(key=lambda item: item[0])
    return [entry for _, entry in ranked[: max(limit, 0)]]


def end_of_local_day(now: datetime, tz: tzinfo) -> datetime:
    """Last instant of the calendar day containing ``now`` in ``tz``."""
    local = ensure_utc(now).astimezone(tz)
    next_midnight = datetime.combine(local.date() + timedelta(days=1), time(), tzinfo=tz)
    return ensure_utc(next_midnight) - timedelta(microseconds=1)


def compute_deck_stats(
    deck_id: str,
    cards: list[CardRecord],
    now: datetime,
    tz: tzinfo,
) -> DeckReviewStats:
    """Count cards per state and summarize the reviewed ones."""
    now = ensure_utc(now)
    today_end = end_of_local_day(now, tz)
    stats = DeckReviewStats(deck_id=deck_id, total_cards=len(cards))
    total_difficulty = 0.0
    total_stability = 0.0
    reviewed = 0

    for card in cards:
        memory = _memory_of(card, now)
        if memory.state is CardState.NEW:
            stats.new_cards += 1
            continue
        if memory.state is CardState.LEARNING:
            stats.learning_cards += 1
        elif memory.state is CardState.REVIEW:
            stats.review_cards += 1
        else:
            stats.relearning_cards += 1

        if memory.due <= today_end:
            stats.due_today += 1
        if is_overdue(memory, now):
            stats.overdue_cards += 1
        total_difficulty += memory.difficulty
        total_stability += memory.stability
        reviewed += 1

    if reviewed:
        stats.average_difficulty = total_difficulty / reviewed
        stats.average_stability = total_stability / reviewed
    return stats
