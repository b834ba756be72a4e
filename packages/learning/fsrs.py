"""FSRS review scheduling on top of the ``fsrs`` package.

``fsrs.Scheduler`` owns the memory model: stability, difficulty, learning
steps and day intervals. This module maps ``MemoryState`` to and from
``fsrs.Card``, keeps the rep and lapse counters, and fuzzes day intervals
itself. The jitter for a review is drawn from a generator seeded with the
configured seed, the review instant and the card's memory, so a preview and
the review that follows it at the same instant land on the same date.

State machine:
    NEW -> LEARNING -> REVIEW <-> RELEARNING
    NEW -> REVIEW on Easy (or on any rating when short-term steps are off)
"""

from __future__ import annotations

import random
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

import fsrs

from packages.common.clock import ensure_utc
from packages.common.exceptions import ValidationError
from packages.learning.levels import LearningLevelConfig
from packages.learning.models import CardState, MemoryState, Rating

LEARNING_STEPS = (timedelta(minutes=1), timedelta(minutes=10))
RELEARNING_STEPS = (timedelta(minutes=5),)

# (start_days, end_days, factor): fuzz grows by factor per day inside each band
FUZZ_RANGES: tuple[tuple[float, float, float], ...] = (
    (2.5, 7.0, 0.15),
    (7.0, 20.0, 0.10),
    (20.0, float("inf"), 0.05),
)

STABILITY_MIN = 0.001


@dataclass(frozen=True)
class SchedulerParameters:
    """Tunable parameters of the scheduler."""

    target_retention: float = 0.9
    maximum_interval_days: int = 36500
    enable_fuzz: bool = True
    enable_short_term: bool = True

    def __post_init__(self) -> None:
        if not 0 < self.target_retention < 1:
            raise ValidationError(
                "target_retention must be between 0 and 1 (exclusive)",
                context={"target_retention": self.target_retention},
            )
        if self.maximum_interval_days < 1:
            raise ValidationError(
                "maximum_interval_days must be at least 1",
                context={"maximum_interval_days": self.maximum_interval_days},
            )

    @classmethod
    def from_level(cls, config: LearningLevelConfig) -> SchedulerParameters:
        return cls(
            target_retention=config.target_retention,
            maximum_interval_days=config.maximum_interval_days,
            enable_fuzz=config.enable_fuzz,
            enable_short_term=config.enable_short_term,
        )


@dataclass(frozen=True)
class SchedulingOutcome:
    """What happens to a card if it receives ``rating`` now."""

    rating: Rating
    previous_state: CardState
    memory: MemoryState
    interval_days: int
    elapsed_days: float
    retrievability: float

    @property
    def due(self) -> datetime:
        return self.memory.due


@dataclass(frozen=True)
class IntervalPreview:
    """Projected next review for one rating."""

    due: datetime
    interval_days: int


def fuzz_interval(
    interval_days: int,
    elapsed_days: float,
    maximum_interval_days: int,
    rng: random.Random,
) -> int:
    """Jitter a day interval inside a band that widens with its length.

    Intervals under 2.5 days are returned unchanged.
    """
    if interval_days < 2.5:
        return interval_days

    delta = 1.0
    for start, end, factor in FUZZ_RANGES:
        delta += factor * max(min(interval_days, end) - start, 0.0)

    low = max(2, round(interval_days - delta))
    high = min(round(interval_days + delta), maximum_interval_days)
    if interval_days > elapsed_days:
        low = max(low, int(elapsed_days) + 1)
    low = min(low, high)
    return rng.randint(low, high)


class FSRS:
    """``fsrs.Scheduler`` configured for one education level."""

    def __init__(self, params: SchedulerParameters | None = None, seed: int | None = None) -> None:
        self.params = params or SchedulerParameters()
        self.seed = seed
        short_term = self.params.enable_short_term
        self._scheduler = fsrs.Scheduler(
            desired_retention=self.params.target_retention,
            learning_steps=LEARNING_STEPS if short_term else (),
            relearning_steps=RELEARNING_STEPS if short_term else (),
            maximum_interval=self.params.maximum_interval_days,
            enable_fuzzing=False,
        )

    @property
    def weights(self) -> tuple[float, ...]:
        return tuple(self._scheduler.parameters)

    def retrievability(self, memory: MemoryState, now: datetime) -> float:
        """Current recall probability; 1.0 for cards never reviewed."""
        if memory.is_new or memory.last_review is None:
            return 1.0
        return self._scheduler.get_card_retrievability(
            self._to_card(memory), current_datetime=ensure_utc(now)
        )

    def repeat(self, memory: MemoryState, now: datetime) -> dict[Rating, SchedulingOutcome]:
        """Compute the outcome of every possible rating at ``now``.

        Day intervals of Hard, Good and Easy stay strictly increasing where
        the maximum interval allows it.
        """
        now = ensure_utc(now)
        elapsed = self._elapsed_days(memory, now)
        recall = self.retrievability(memory, now)
        rng = self._fuzz_rng(memory, now)
        cap = self.params.maximum_interval_days

        outcomes: dict[Rating, SchedulingOutcome] = {}
        previous_days: int | None = None
        for rating in Rating:
            card, _ = self._scheduler.review_card(
                self._to_card(memory), fsrs.Rating(int(rating)), review_datetime=now
            )
            state = CardState(int(card.state))

            if state is CardState.REVIEW:
                days = (card.due - now).days
                if self.params.enable_fuzz:
                    days = fuzz_interval(days, elapsed, cap, rng)
                if rating is not Rating.AGAIN:
                    if previous_days is not None:
                        days = min(max(days, previous_days + 1), cap)
                    previous_days = days
                due = now + timedelta(days=days)
            else:
                days = 0
                due = card.due

            lapse = rating is Rating.AGAIN and memory.state in (
                CardState.REVIEW,
                CardState.RELEARNING,
            )
            updated = replace(
                memory,
                due=due,
                stability=card.stability,
                difficulty=card.difficulty,
                reps=memory.reps + 1,
                lapses=memory.lapses + (1 if lapse else 0),
                state=state,
                last_review=now,
                step=card.step if state in (CardState.LEARNING, CardState.RELEARNING) else None,
            )
            outcomes[rating] = SchedulingOutcome(
                rating=rating,
                previous_state=memory.state,
                memory=updated,
                interval_days=days,
                elapsed_days=elapsed,
                retrievability=recall,
            )
        return outcomes

    def review(self, memory: MemoryState, rating: Rating, now: datetime) -> SchedulingOutcome:
        """Apply one rating and return the resulting outcome."""
        return self.repeat(memory, now)[Rating.parse(rating)]

    def preview(self, memory: MemoryState, now: datetime) -> dict[Rating, IntervalPreview]:
        """Project the next review date for all four ratings."""
        return {
            rating: IntervalPreview(due=outcome.due, interval_days=outcome.interval_days)
            for rating, outcome in self.repeat(memory, now).items()
        }

    def _to_card(self, memory: MemoryState) -> fsrs.Card:
        if memory.is_new:
            return fsrs.Card(card_id=0, due=memory.due)
        state = fsrs.State(int(memory.state))
        return fsrs.Card(
            card_id=0,
            state=state,
            step=None if state is fsrs.State.Review else (memory.step or 0),
            stability=max(memory.stability, STABILITY_MIN),
            difficulty=min(max(memory.difficulty, 1.0), 10.0),
            due=memory.due,
            last_review=memory.last_review,
        )

    def _fuzz_rng(self, memory: MemoryState, now: datetime) -> random.Random:
        return random.Random(
            f"{self.seed}:{now.isoformat()}:{memory.reps}:"
            f"{memory.stability * memory.difficulty:.6f}"
        )

    def _elapsed_days(self, memory: MemoryState, now: datetime) -> float:
        if memory.last_review is None:
            return 0.0
        return max((ensure_utc(now) - memory.last_review).total_seconds() / 86400, 0.0)
