"""Card and deck persistence."""

from __future__ import annotations

import asyncio
import weakref
import json
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from typing import Any, Protocol

from packages.common.config import Settings, get_settings
from packages.common.database import db_operation
from packages.common.exceptions import NotFoundError
from packages.learning.models import CardRecord, DeckRecord, MemoryState

MemoryUpdate = Callable[[CardRecord], MemoryState]


class CardStore(Protocol):
    """Storage contract for decks and their cards."""

    async def get_deck(self, deck_id: str) -> DeckRecord | None:
        """Return the deck or None."""
        ...

    async def get(self, card_id: str) -> CardRecord | None:
        """Return the card or None."""
        ...

    async def list_by_deck(self, deck_id: str) -> list[CardRecord]:
        """Return every card of a deck in display order."""
        ...

    async def update(self, card_id: str, memory: MemoryState, now: datetime) -> None:
        """Overwrite the memory state of one card."""
        ...

    async def modify(self, card_id: str, fn: MemoryUpdate, now: datetime) -> CardRecord:
        """Atomically replace a card's memory with ``fn(card)``.

        Concurrent calls for the same card are serialized.

        Raises:
            NotFoundError: If the card does not exist.
        """
        ...

    async def reset_deck(self, deck_id: str, memory: MemoryState, now: datetime) -> int:
        """Set every card of a deck to ``memory`` and return the count."""
        ...


class InMemoryCardStore:
    """Process-local card store, used for tests and single-node setups."""

    def __init__(self) -> None:
        self._decks: dict[str, DeckRecord] = {}
        self._cards: dict[str, CardRecord] = {}
        # Entries vanish once no caller holds or awaits the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock(self, card_id: str) -> asyncio.Lock:
        lock = self._locks.get(card_id)
        if lock is None:
            lock = self._locks[card_id] = asyncio.Lock()
        return lock

    async def add_deck(self, deck: DeckRecord) -> None:
        self._decks[deck.id] = replace(deck)

    async def add_card(self, card: CardRecord) -> None:
        if card.deck_id not in self._decks:
            raise NotFoundError(
                f"Deck not found: {card.deck_id}", context={"deck_id": card.deck_id}
            )
        self._cards[card.id] = replace(card)
        deck = self._decks[card.deck_id]
        deck.card_count = sum(1 for c in self._cards.values() if c.deck_id == deck.id)

    async def get_deck(self, deck_id: str) -> DeckRecord | None:
        deck = self._decks.get(deck_id)
        return replace(deck) if deck else None

    async def get(self, card_id: str) -> CardRecord | None:
        card = self._cards.get(card_id)
        return replace(card) if card else None

    async def list_by_deck(self, deck_id: str) -> list[CardRecord]:
        cards = [replace(c) for c in self._cards.values() if c.deck_id == deck_id]
        return sorted(cards, key=lambda c: c.position)

    async def update(self, card_id: str, memory: MemoryState, now: datetime) -> None:
        async with self._lock(card_id):
            card = self._cards.get(card_id)
            if card is None:
                raise NotFoundError(f"Card not found: {card_id}", context={"card_id": card_id})
            self._cards[card_id] = replace(card, memory=memory, updated_at=now)

    async def modify(self, card_id: str, fn: MemoryUpdate, now: datetime) -> CardRecord:
        async with self._lock(card_id):
            card = self._cards.get(card_id)
            if card is None:
                raise NotFoundError(f"Card not found: {card_id}", context={"card_id": card_id})
            updated = replace(card, memory=fn(replace(card)), updated_at=now)
            self._cards[card_id] = updated
            return replace(updated)

    async def reset_deck(self, deck_id: str, memory: MemoryState, now: datetime) -> int:
        count = 0
        for card_id, card in list(self._cards.items()):
            if card.deck_id != deck_id:
                continue
            async with self._lock(card_id):
                self._cards[card_id] = replace(self._cards[card_id], memory=memory, updated_at=now)
            count += 1
        return count


_CARD_COLUMNS = "id, deck_id, card_type, content, position, fsrs_data, updated_at"


def _row_to_card(row: dict[str, Any]) -> CardRecord:
    raw_memory = row["fsrs_data"]
    if isinstance(raw_memory, str):
        raw_memory = json.loads(raw_memory)
    return CardRecord(
        id=row["id"],
        deck_id=row["deck_id"],
        card_type=row["card_type"],
        content=row["content"] or {},
        position=row["position"],
        memory=MemoryState.from_dict(raw_memory, now=row["updated_at"]) if raw_memory else None,
        updated_at=row["updated_at"],
    )


class PostgresCardStore:
    """Card store over the ``learning_decks`` / ``learning_cards`` tables."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    async def add_deck(self, deck: DeckRecord) -> None:
        async with db_operation("add_deck", self.settings) as conn:
            await conn.execute(
                """
                INSERT INTO learning_decks (id, user_id, title, card_count)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    title = EXCLUDED.title,
                    card_count = EXCLUDED.card_count
                """,
                (deck.id, deck.user_id, deck.title, deck.card_count),
            )

    async def add_card(self, card: CardRecord) -> None:
        async with db_operation("add_card", self.settings) as conn:
            await conn.execute(
                """
                INSERT INTO learning_cards
                    (id, deck_id, card_type, content, position, fsrs_data, updated_at)
                VALUES (%s, %s, %s, %s::jsonb, %s, %s::jsonb, %s)
                ON CONFLICT (id) DO UPDATE SET
                    card_type = EXCLUDED.card_type,
                    content = EXCLUDED.content,
                    position = EXCLUDED.position,
                    fsrs_data = EXCLUDED.fsrs_data,
                    updated_at = EXCLUDED.updated_at
                """,
                (
                    card.id,
                    card.deck_id,
                    card.card_type,
                    json.dumps(card.content),
                    card.position,
                    json.dumps(card.memory.to_dict()) if card.memory else None,
                    card.updated_at,
                ),
            )
            await conn.execute(
                """
                UPDATE learning_decks
                SET card_count = (SELECT COUNT(*) FROM learning_cards WHERE deck_id = %s)
                WHERE id = %s
                """,
                (card.deck_id, card.deck_id),
            )

    async def get_deck(self, deck_id: str) -> DeckRecord | None:
        async with db_operation("get_deck", self.settings) as conn:
            result = await conn.execute(
                "SELECT id, user_id, title, card_count FROM learning_decks WHERE id = %s",
                (deck_id,),
            )
            row = await result.fetchone()
        if row is None:
            return None
        return DeckRecord(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            card_count=row["card_count"],
        )

    async def get(self, card_id: str) -> CardRecord | None:
        async with db_operation("get_card", self.settings) as conn:
            result = await conn.execute(
                f"SELECT {_CARD_COLUMNS} FROM learning_cards WHERE id = %s",
                (card_id,),
            )
            row = await result.fetchone()
        return _row_to_card(row) if row else None

    async def list_by_deck(self, deck_id: str) -> list[CardRecord]:
        async with db_operation("list_cards", self.settings) as conn:
            result = await conn.execute(
                f"SELECT {_CARD_COLUMNS} FROM learning_cards WHERE deck_id = %s ORDER BY position",
                (deck_id,),
            )
            rows = await result.fetchall()
        return [_row_to_card(row) for row in rows]

    async def update(self, card_id: str, memory: MemoryState, now: datetime) -> None:
        async with db_operation("update_card", self.settings) as conn:
            result = await conn.execute(
                "UPDATE learning_cards SET fsrs_data = %s::jsonb, updated_at = %s WHERE id = %s",
                (json.dumps(memory.to_dict()), now, card_id),
            )
        if not result.rowcount:
            raise NotFoundError(f"Card not found: {card_id}", context={"card_id": card_id})

    async def modify(self, card_id: str, fn: MemoryUpdate, now: datetime) -> CardRecord:
        async with db_operation("modify_card", self.settings) as conn, conn.transaction():
            result = await conn.execute(
                f"SELECT {_CARD_COLUMNS} FROM learning_cards WHERE id = %s FOR UPDATE",
                (card_id,),
            )
            row = await result.fetchone()
            if row is None:
                raise NotFoundError(f"Card not found: {card_id}", context={"card_id": card_id})

            card = _row_to_card(row)
            memory = fn(card)
            await conn.execute(
                "UPDATE learning_cards SET fsrs_data = %s::jsonb, updated_at = %s WHERE id = %s",
                (json.dumps(memory.to_dict()), now, card_id),
            )
        return replace(card, memory=memory, updated_at=now)

    async def reset_deck(self, deck_id: str, memory: MemoryState, now: datetime) -> int:
        async with db_operation("reset_deck", self.settings) as conn:
            result = await conn.execute(
                """
                UPDATE learning_cards SET fsrs_data = %s::jsonb, updated_at = %s
                WHERE deck_id = %s
                """,
                (json.dumps(memory.to_dict()), now, deck_id),
            )
        return result.rowcount or 0
