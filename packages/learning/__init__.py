"""Spaced-repetition review scheduling for flashcard decks."""

from packages.learning.fsrs import FSRS, IntervalPreview, SchedulerParameters, SchedulingOutcome
from packages.learning.levels import LEARNING_LEVELS, LearningLevelConfig, get_level_config
from packages.learning.models import CardRecord, CardState, DeckRecord, MemoryState, Rating
from packages.learning.queue import CardForReview, DeckReviewStats, QueueBucket
from packages.learning.service import (
    ReviewResult,
    ReviewService,
    close_review_service,
    get_review_service,
)
from packages.learning.store import CardStore, InMemoryCardStore, PostgresCardStore

__all__ = [
    "FSRS",
    "LEARNING_LEVELS",
    "CardForReview",
    "CardRecord",
    "CardState",
    "CardStore",
    "DeckRecord",
    "DeckReviewStats",
    "InMemoryCardStore",
    "IntervalPreview",
    "LearningLevelConfig",
    "MemoryState",
    "PostgresCardStore",
    "QueueBucket",
    "Rating",
    "ReviewResult",
    "ReviewService",
    "SchedulerParameters",
    "SchedulingOutcome",
    "close_review_service",
    "get_level_config",
    "get_review_service",
]
