"""Download formats for a finished card collection."""

from __future__ import annotations

import csv
import io
import json
from collections.abc import Iterable, Mapping

from .models import Card

EXPORT_FORMATS = frozenset({"csv", "json"})

_MEDIA_TYPES = {"csv": "text/csv", "json": "application/json"}


def _as_dict(card: Card | Mapping) -> dict:
    return card.to_dict() if isinstance(card, Card) else dict(card)


def _cell(value: object) -> str:
    return "" if value is None else str(value)


def export_csv(cards: Iterable[Card | Mapping]) -> str:
    """Question/Answer table, every field quoted, embedded quotes doubled."""
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(["Question", "Answer"])
    for card in cards:
        data = _as_dict(card)
        writer.writerow([_cell(data.get("question")), _cell(data.get("answer"))])
    return buf.getvalue()


def export_json(cards: Iterable[Card | Mapping]) -> str:
    return json.dumps([_as_dict(c) for c in cards], indent=2, ensure_ascii=False)


def export_cards(cards: Iterable[Card | Mapping], fmt: str) -> tuple[str, str, str]:
    """Return ``(body, media_type, filename)`` for *fmt*."""
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Invalid format: {fmt!r}")
    body = export_csv(cards) if fmt == "csv" else export_json(cards)
    return body, _MEDIA_TYPES[fmt], f"flashcards.{fmt}"
