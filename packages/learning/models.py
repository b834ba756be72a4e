"""Flashcard memory state and records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum
from typing import Any

from packages.common.clock import ensure_utc
from packages.common.exceptions import ValidationError


class CardState(IntEnum):
    """Position of a card in the learning state machine."""

    NEW = 0
    LEARNING = 1
    REVIEW = 2
    RELEARNING = 3


class Rating(IntEnum):
    """Student self-assessment after seeing the answer."""

    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4

    @classmethod
    def parse(cls, value: object) -> Rating:
        """Coerce an int or name (``"good"``) to a rating.

        Raises:
            ValidationError: If the value is not one of the four ratings.
        """
        if isinstance(value, Rating):
            return value
        if isinstance(value, str) and not value.isdigit():
            try:
                return cls[value.strip().upper()]
            except KeyError:
                pass
        elif isinstance(value, (int, str)) and not isinstance(value, bool):
            try:
                return cls(int(value))
            except ValueError:
                pass
        raise ValidationError(
            f"Invalid rating: {value!r}",
            context={"rating": repr(value), "valid": [r.value for r in cls]},
        )


def _parse_timestamp(value: Any, name: str) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        try:
            return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            pass
    raise ValidationError(f"Invalid timestamp for {name}: {value!r}", context={"field": name})


def _parse_number(value: Any, name: str, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"Invalid number for {name}: {value!r}", context={"field": name})
    return float(value)


def _parse_count(value: Any, name: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"Invalid count for {name}: {value!r}", context={"field": name})
    return value


@dataclass(frozen=True)
class MemoryState:
    """Spaced-repetition memory model of one flashcard.

    A ``NEW`` card has never been reviewed: stability and difficulty are zero
    and ``last_review`` is unset.
    """

    due: datetime
    stability: float = 0.0
    difficulty: float = 0.0
    reps: int = 0
    lapses: int = 0
    state: CardState = CardState.NEW
    last_review: datetime | None = None
    # Index into the (re)learning steps; None outside LEARNING and RELEARNING
    step: int | None = None

    @classmethod
    def new(cls, now: datetime) -> MemoryState:
        """Fresh state for a card that has never been shown."""
        return cls(due=ensure_utc(now))

    @property
    def is_new(self) -> bool:
        return self.state is CardState.NEW

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the persisted JSON shape."""
        return {
            "due": self.due.isoformat(),
            "stability": self.stability,
            "difficulty": self.difficulty,
            "reps": self.reps,
            "lapses": self.lapses,
            "state": int(self.state),
            "lastReview": self.last_review.isoformat() if self.last_review else None,
            "step": self.step,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None, *, now: datetime) -> MemoryState:
        """Parse persisted state, validating every field.

        An empty or missing payload means the card is new.

        Raises:
            ValidationError: If the payload is malformed.
        """
        if not data:
            return cls.new(now)

        raw_state = data.get("state", CardState.NEW)
        if isinstance(raw_state, str) and not raw_state.isdigit():
            try:
                state = CardState[raw_state.strip().upper()]
            except KeyError:
                raise ValidationError(
                    f"Invalid card state: {raw_state!r}", context={"field": "state"}
                ) from None
        else:
            try:
                state = CardState(int(raw_state))
            except (TypeError, ValueError):
                raise ValidationError(
                    f"Invalid card state: {raw_state!r}", context={"field": "state"}
                ) from None

        stability = _parse_number(data.get("stability"), "stability", 0.0)
        if stability < 0:
            raise ValidationError("stability must not be negative", context={"field": "stability"})

        due = _parse_timestamp(data.get("due"), "due") or ensure_utc(now)
        raw_last_review = data.get("lastReview", data.get("last_review"))
        last_review = _parse_timestamp(raw_last_review, "lastReview")
        raw_step = data.get("step")
        step = _parse_count(raw_step, "step") if raw_step is not None else None

        return cls(
            due=due,
            stability=stability,
            difficulty=_parse_number(data.get("difficulty"), "difficulty", 0.0),
            reps=_parse_count(data.get("reps"), "reps"),
            lapses=_parse_count(data.get("lapses"), "lapses"),
            state=state,
            last_review=last_review,
            step=step if state in (CardState.LEARNING, CardState.RELEARNING) else None,
        )


@dataclass
class DeckRecord:
    """A deck of flashcards owned by one user."""

    id: str
    user_id: str
    title: str = ""
    card_count: int = 0


@dataclass
class CardRecord:
    """A stored flashcard with its (optional) memory state."""

    id: str
    deck_id: str
    card_type: str = "flashcard"
    content: dict[str, Any] = field(default_factory=dict)
    position: int = 0
    memory: MemoryState | None = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
