"""Review scheduling service over a card store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from packages.common.clock import Clock, SystemClock
from packages.common.config import Settings, get_settings
from packages.common.exceptions import AccessDeniedError, NotFoundError, ValidationError
from packages.common.logging import get_logger
from packages.learning.fsrs import FSRS, IntervalPreview, SchedulerParameters, SchedulingOutcome
from packages.learning.levels import get_level_config
from packages.learning.models import CardRecord, CardState, DeckRecord, MemoryState, Rating
from packages.learning.queue import (
    CardForReview,
    DeckReviewStats,
    build_review_queue,
    compute_deck_stats,
)
from packages.learning.store import CardStore, InMemoryCardStore, PostgresCardStore

logger = get_logger(module=__name__)


@dataclass(frozen=True)
class ReviewResult:
    """Outcome of one recorded review."""

    card_id: str
    rating: Rating
    level: str
    previous_state: CardState
    new_state: CardState
    next_due: datetime
    stability: float
    difficulty: float
    reps: int
    lapses: int
    interval_days: int


class ReviewService:
    """Records reviews and builds study sessions.

    Holds only configuration and collaborators; all card state lives in the
    store. Every scheduler it builds fuzzes with the configured seed, so a
    preview and the review that follows it agree.
    """

    def __init__(
        self,
        store: CardStore,
        *,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
        self.seed = self.settings.scheduler_seed

    def _level(self, level: str | None) -> str:
        return level or self.settings.default_education_level

    def scheduler_for(self, level: str | None = None) -> FSRS:
        """Build a scheduler configured for an education level."""
        config = get_level_config(self._level(level))
        return FSRS(SchedulerParameters.from_level(config), seed=self.seed)

    def initialize_memory_state(self) -> MemoryState:
        """Memory state for a freshly created card."""
        return MemoryState.new(self.clock.now())

    async def verify_deck_owner(self, deck_id: str, user_id: str) -> DeckRecord:
        """Load a deck, checking that ``user_id`` owns it.

        Raises:
            NotFoundError: If the deck does not exist.
            AccessDeniedError: If the deck belongs to someone else.
        """
        deck = await self.store.get_deck(deck_id)
        if deck is None:
            raise NotFoundError(f"Deck not found: {deck_id}", context={"deck_id": deck_id})
        if deck.user_id != user_id:
            raise AccessDeniedError(
                f"Deck not accessible: {deck_id}",
                context={"deck_id": deck_id, "user_id": user_id},
            )
        return deck

    async def verify_card_owner(self, card_id: str, user_id: str) -> CardRecord:
        """Load a card, checking that ``user_id`` owns its deck."""
        card = await self._get_card(card_id)
        deck = await self.store.get_deck(card.deck_id)
        if deck is None or deck.user_id != user_id:
            raise AccessDeniedError(
                f"Card not accessible: {card_id}",
                context={"card_id": card_id, "user_id": user_id},
            )
        return card

    async def _get_card(self, card_id: str) -> CardRecord:
        card = await self.store.get(card_id)
        if card is None:
            raise NotFoundError(f"Card not found: {card_id}", context={"card_id": card_id})
        return card

    async def review_card(
        self,
        card_id: str,
        rating: Rating | int | str,
        level: str | None = None,
    ) -> ReviewResult:
        """Apply a rating to a card and persist the new memory state.

        Raises:
            ValidationError: If the rating or level is invalid (nothing is written).
            NotFoundError: If the card does not exist.
        """
        parsed = Rating.parse(rating)
        level = self._level(level)
        scheduler = self.scheduler_for(level)
        now = self.clock.now()
        outcomes: list[SchedulingOutcome] = []

        def apply(card: CardRecord) -> MemoryState:
            memory = card.memory or MemoryState.new(now)
            outcome = scheduler.review(memory, parsed, now)
            outcomes.append(outcome)
            return outcome.memory

        await self.store.modify(card_id, apply, now)
        outcome = outcomes[-1]
        memory = outcome.memory

        logger.info(
            "card_reviewed",
            card_id=card_id,
            rating=parsed.name.lower(),
            level=level,
            previous_state=outcome.previous_state.name.lower(),
            new_state=memory.state.name.lower(),
            next_due=memory.due.isoformat(),
            stability=round(memory.stability, 4),
        )

        return ReviewResult(
            card_id=card_id,
            rating=parsed,
            level=level,
            previous_state=outcome.previous_state,
            new_state=memory.state,
            next_due=memory.due,
            stability=memory.stability,
            difficulty=memory.difficulty,
            reps=memory.reps,
            lapses=memory.lapses,
            interval_days=outcome.interval_days,
        )

    async def get_due_cards(
        self,
        deck_id: str,
        user_id: str,
        *,
        limit: int | None = None,
        include_new: bool = True,
        level: str | None = None,
    ) -> list[CardForReview]:
        """Cards of a deck due now, most urgent first.

        ``limit`` defaults to the level's cards-per-session.
        """
        if limit is None:
            limit = get_level_config(self._level(level)).cards_per_session
        if limit < 0:
            raise ValidationError("limit must not be negative", context={"limit": limit})

        await self.verify_deck_owner(deck_id, user_id)
        cards = await self.store.list_by_deck(deck_id)
        queue = build_review_queue(cards, self.clock.now(), limit=limit, include_new=include_new)
        logger.debug(
            "due_cards_selected",
            deck_id=deck_id,
            total=len(cards),
            selected=len(queue),
            overdue=sum(1 for c in queue if c.overdue),
        )
        return queue

    async def preview_scheduling(
        self,
        card_id: str,
        level: str | None = None,
    ) -> dict[Rating, IntervalPreview]:
        """Next review date per rating, without persisting anything."""
        scheduler = self.scheduler_for(level)
        card = await self._get_card(card_id)
        now = self.clock.now()
        return scheduler.preview(card.memory or MemoryState.new(now), now)

    async def reset_card(self, card_id: str) -> None:
        """Forget all review history of one card."""
        now = self.clock.now()
        await self.store.update(card_id, MemoryState.new(now), now)
        logger.info("card_reset", card_id=card_id)

    async def reset_deck(self, deck_id: str, user_id: str) -> int:
        """Forget the review history of every card in a deck."""
        await self.verify_deck_owner(deck_id, user_id)
        now = self.clock.now()
        count = await self.store.reset_deck(deck_id, MemoryState.new(now), now)
        logger.info("deck_reset", deck_id=deck_id, cards_reset=count)
        return count

    async def get_deck_stats(self, deck_id: str, user_id: str) -> DeckReviewStats:
        """Per-state counts and averages for a deck."""
        await self.verify_deck_owner(deck_id, user_id)
        cards = await self.store.list_by_deck(deck_id)
        return compute_deck_stats(deck_id, cards, self.clock.now(), self.settings.timezone)


def build_card_store(settings: Settings) -> CardStore:
    """Card store for the configured storage backend."""
    if settings.storage_backend == "memory":
        return InMemoryCardStore()
    return PostgresCardStore(settings)


_review_service: ReviewService | None = None


def get_review_service(settings: Settings | None = None) -> ReviewService:
    """Get the process-wide review service."""
    global _review_service
    if _review_service is None:
        settings = settings or get_settings()
        _review_service = ReviewService(build_card_store(settings), settings=settings)
    return _review_service


def close_review_service() -> None:
    """Drop the process-wide review service."""
    global _review_service
    _review_service = None
