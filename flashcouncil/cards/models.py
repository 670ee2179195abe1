from __future__ import annotations

from dataclasses import dataclass, field


def normalize_tags(tags: object) -> tuple[str, ...]:
    """Return *tags* as an ordered, de-duplicated tuple of non-empty strings."""
    if isinstance(tags, str):
        tags = [tags]
    if not isinstance(tags, (list, tuple)):
        return ()
    cleaned = (t.strip() for t in tags if isinstance(t, str))
    return tuple(dict.fromkeys(t for t in cleaned if t))


@dataclass(frozen=True)
class Card:
    """A question/answer study card owned by a session's CardStore."""

    id: str
    question: str
    answer: str
    tags: tuple[str, ...] = ()
    notes: str | None = None

    def to_dict(self) -> dict:
        """Serialize the card for JSON / SSE transport."""
        data: dict = {"id": self.id, "question": self.question, "answer": self.answer}
        if self.tags:
            data["tags"] = list(self.tags)
        if self.notes:
            data["notes"] = self.notes
        return data


@dataclass(frozen=True)
class CardFields:
    """Card data without an id. ``None`` means "not provided"."""

    question: str | None = None
    answer: str | None = None
    tags: tuple[str, ...] | None = None
    notes: str | None = None

    def provided(self) -> dict:
        return {k: v for k, v in self.__dict__.items() if v is not None}

    def to_dict(self) -> dict:
        data = self.provided()
        if "tags" in data:
            data["tags"] = list(data["tags"])
        return data


@dataclass(frozen=True)
class AddCard:
    fields: CardFields
    reason: str | None = None
    card_id: str | None = None  # assigned by the store when applied

    def to_dict(self) -> dict:
        flashcard = self.fields.to_dict()
        if self.card_id:
            flashcard["id"] = self.card_id
        return _with_reason({"type": "add", "flashcard": flashcard}, self.reason)


@dataclass(frozen=True)
class EditCard:
    card_id: str
    fields: CardFields = field(default_factory=CardFields)
    reason: str | None = None

    def to_dict(self) -> dict:
        return _with_reason(
            {"type": "edit", "flashcard_id": self.card_id, "flashcard": self.fields.to_dict()},
            self.reason,
        )


@dataclass(frozen=True)
class DeleteCard:
    card_id: str
    reason: str | None = None

    def to_dict(self) -> dict:
        return _with_reason({"type": "delete", "flashcard_id": self.card_id}, self.reason)


CardOperation = AddCard | EditCard | DeleteCard


def _with_reason(data: dict, reason: str | None) -> dict:
    if reason:
        data["reason"] = reason
    return data
