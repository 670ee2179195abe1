"""CardStore: the authoritative, versioned card collection for one session."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import replace

from .models import AddCard, Card, CardOperation, DeleteCard, EditCard

log = logging.getLogger("flashcouncil")


class CardStore:
    """Applies add/edit/delete batches and hands out ids that are never reused.

    Dangling or malformed operations are dropped, never raised.
    """

    def __init__(self, id_prefix: str = "card") -> None:
        self._id_prefix = id_prefix
        self._counter = 0
        self._cards: tuple[Card, ...] = ()
        self.version = 0

    @property
    def cards(self) -> tuple[Card, ...]:
        return self._cards

    def _next_id(self) -> str:
        self._counter += 1
        return f"{self._id_prefix}-{self._counter}"

    # -- Operations ---------------------------------------------------------

    def apply_operations(
        self,
        cards: Sequence[Card],
        operations: Iterable[CardOperation],
    ) -> tuple[tuple[Card, ...], list[CardOperation]]:
        """Apply *operations* left to right to *cards*.

        Returns the new collection and the operations that took effect. Applied
        ``AddCard`` entries carry the generated id. The input is not mutated.
        """
        updated = list(cards)
        applied: list[CardOperation] = []

        for op in operations:
            match op:
                case AddCard(fields=fields):
                    if not fields.question or not fields.answer:
                        log.debug("dropping add without question/answer: %r", op)
                        continue
                    card = Card(
                        id=self._next_id(),
                        question=fields.question,
                        answer=fields.answer,
                        tags=fields.tags or (),
                        notes=fields.notes,
                    )
                    updated.append(card)
                    applied.append(replace(op, card_id=card.id))
                case EditCard(card_id=card_id, fields=fields):
                    index = _index_of(updated, card_id)
                    changes = {k: v for k, v in fields.provided().items() if v != ""}
                    if index is None or not changes:
                        log.debug("dropping edit for unknown card %s", card_id)
                        continue
                    updated[index] = replace(updated[index], **changes)
                    applied.append(op)
                case DeleteCard(card_id=card_id):
                    index = _index_of(updated, card_id)
                    if index is None:
                        log.debug("dropping delete for unknown card %s", card_id)
                        continue
                    del updated[index]
                    applied.append(op)
                case _:
                    log.debug("dropping unrecognised operation: %r", op)

        return tuple(updated), applied

    def apply(self, operations: Iterable[CardOperation]) -> list[CardOperation]:
        """Apply a batch to the store's own snapshot and return what took effect."""
        self._cards, applied = self.apply_operations(self._cards, operations)
        if applied:
            self.version += 1
            log.info(
                "cards updated: version=%d applied=%d total=%d",
                self.version, len(applied), len(self._cards),
            )
        return applied


def _index_of(cards: list[Card], card_id: str) -> int | None:
    for i, card in enumerate(cards):
        if card.id == card_id:
            return i
    return None


def summarize_cards(cards: Sequence[Card], limit: int | None = None) -> str:
    """Numbered ``[id] Q: ... | A: ...`` lines for inclusion in prompts."""
    if not cards:
        return "No flashcards yet."
    shown = list(cards)[-limit:] if limit else list(cards)
    lines = [
        f"{i}. [{c.id}] Q: {c.question} | A: {c.answer}"
        for i, c in enumerate(shown, start=len(cards) - len(shown) + 1)
    ]
    if len(shown) < len(cards):
        lines.insert(0, f"(showing the last {len(shown)} of {len(cards)} cards)")
    return "\n".join(lines)
