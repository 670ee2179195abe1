from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Protocol

from ..agents import PERSONAS, Persona, display_name
from ..cards.engine import summarize_cards
from ..cards.models import AddCard, Card, CardFields, CardOperation, DeleteCard, EditCard, normalize_tags
from .events import Message

log = logging.getLogger("flashcouncil")

_FENCE_MARKER = "```"
_FENCED_BLOCK_RE = re.compile(r"```[ \t]*[A-Za-z0-9_-]*[ \t]*\r?\n?(.*?)```", re.DOTALL)
_MAX_BRACE_SCANS = 1000
_OBJECT_START_RE = re.compile(r"\{(?=\s*[\"}])")
_DECODER = json.JSONDecoder()
_BLANK_LINES_RE = re.compile(r"\n\s*\n\s*")

_CLOSING_RES = (
    re.compile(r"(?<!\w)that(?:'|’)?s\s+all\s+from\s+me(?!\w)", re.IGNORECASE),
    re.compile(r"(?<!\w)that\s+is\s+all\s+from\s+me(?!\w)", re.IGNORECASE),
)


# ---------------------------------------------------------------------------
# Structured block extraction
# ---------------------------------------------------------------------------


def extract_prose(text: str) -> str:
    """Conversational part of a turn: fenced blocks cut out, text on both sides kept.

    An unterminated fence hides everything after it.
    """
    without_blocks = _FENCED_BLOCK_RE.sub("\n\n", text)
    kept = without_blocks.split(_FENCE_MARKER, 1)[0]
    return _BLANK_LINES_RE.sub("\n\n", kept).strip()


def _loads_operations(raw: str) -> dict | None:
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, ValueError, RecursionError):
        truncated = raw[:200] + "..." if len(raw) > 200 else raw
        log.debug("operations block parse failed: %s", truncated.strip())
        return None
    if isinstance(data, dict) and "operations" in data:
        return data
    return None


def _decode_object_at(text: str, start: int) -> dict | None:
    """Decode the JSON value starting at *start*; string state begins at its ``{``."""
    try:
        data, _ = _DECODER.raw_decode(text, start)
    except (json.JSONDecodeError, ValueError, RecursionError):
        return None
    if isinstance(data, dict) and "operations" in data:
        return data
    return None


def find_operations_block(text: str) -> dict | None:
    """Return the first well-formed ``{"operations": ...}`` object in *text*.

    Fenced blocks are tried first, then every ``{`` in order of position.
    """
    for match in _FENCED_BLOCK_RE.finditer(text):
        data = _loads_operations(match.group(1).strip())
        if data is not None:
            return data

    if '"operations"' not in text:
        return None
    for attempt, match in enumerate(_OBJECT_START_RE.finditer(text)):
        if attempt >= _MAX_BRACE_SCANS:
            log.debug("operations search gave up after %d candidates", attempt)
            break
        data = _decode_object_at(text, match.start())
        if data is not None:
            return data
    return None


def _clean_str(value: Any) -> str | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _parse_fields(raw: Any) -> CardFields:
    if not isinstance(raw, dict):
        return CardFields()
    return CardFields(
        question=_clean_str(raw.get("question")),
        answer=_clean_str(raw.get("answer")),
        tags=normalize_tags(raw["tags"]) if "tags" in raw else None,
        notes=_clean_str(raw.get("notes")),
    )


def _parse_operation(entry: Any) -> CardOperation | None:
    if not isinstance(entry, dict):
        return None
    op_type = _clean_str(entry.get("type"))
    reason = _clean_str(entry.get("reason"))
    raw_card = entry.get("flashcard", entry.get("card"))
    card_id = _clean_str(entry.get("flashcard_id", entry.get("id")))
    if card_id is None and isinstance(raw_card, dict):
        card_id = _clean_str(raw_card.get("id"))

    match (op_type or "").lower():
        case "add":
            fields = _parse_fields(raw_card)
            if fields.question and fields.answer:
                return AddCard(fields=fields, reason=reason)
        case "edit" | "update":
            fields = _parse_fields(raw_card)
            if card_id and fields.provided():
                return EditCard(card_id=card_id, fields=fields, reason=reason)
        case "delete" | "remove":
            if card_id:
                return DeleteCard(card_id=card_id, reason=reason)
    log.debug("dropping malformed operation entry: %r", entry)
    return None


def extract_operations(text: str) -> list[CardOperation]:
    """Parse the card operations in *text*. Never raises; may return []."""
    block = find_operations_block(text)
    if block is None:
        return []
    entries = block.get("operations")
    if not isinstance(entries, list):
        log.debug("operations block has non-list operations: %r", type(entries).__name__)
        return []
    return [op for op in map(_parse_operation, entries) if op is not None]


# ---------------------------------------------------------------------------
# Hand-off detection
# ---------------------------------------------------------------------------


class HandoffDetector(Protocol):
    def __call__(self, text: str, candidates: Sequence[Persona]) -> Persona | None: ...


def persona_aliases(persona: Persona) -> list[str]:
    """Names a persona can be addressed by, most specific first."""
    profile = PERSONAS[persona]
    aliases = [
        profile.display_name,
        profile.short_name,
        persona.value,
        persona.value.replace("_", " "),
        profile.surname,
    ]
    return list(dict.fromkeys(aliases))


@lru_cache(maxsize=None)
def _alias_re(persona: Persona) -> str:
    return "(?:" + "|".join(re.escape(a) for a in persona_aliases(persona)) + ")"


@lru_cache(maxsize=None)
def _cue_patterns(persona: Persona) -> tuple[re.Pattern[str], ...]:
    a = _alias_re(persona)
    patterns = (
        rf"@{a}(?!\w)",
        rf"\[HANDOFF:\s*{a}\s*\]",
        rf"(?<!\w)(?:pass|passing|hand|handing)(?:\s+(?:it|this|things|the\s+floor))?"
        rf"(?:\s+(?:off|over|along|back))?\s+to\s+(?:the\s+|our\s+)?{a}(?!\w)",
        rf"(?<!\w)over\s+to\s+(?:you,?\s+)?(?:the\s+|our\s+)?{a}(?!\w)",
        rf"(?<!\w)back\s+to\s+(?:the\s+|our\s+)?{a}(?!\w)",
        rf"(?<!\w){a}\s*,\s*(?:it'?s\s+|it\s+is\s+)?(?:your\s+turn|over\s+to\s+you)",
    )
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


@dataclass
class PatternHandoffDetector:
    """Earliest addressed mention wins; a closing cue or a cue aimed at the
    moderator means "no hand-off"."""

    closing_patterns: tuple[re.Pattern[str], ...] = field(default=_CLOSING_RES)

    def __call__(self, text: str, candidates: Sequence[Persona]) -> Persona | None:
        prose = extract_prose(text)
        if not prose:
            return None
        best: tuple[int, Persona | None] | None = None
        for persona in [*candidates, Persona.MODERATOR]:
            for pattern in _cue_patterns(persona):
                m = pattern.search(prose)
                if m and (best is None or m.start() < best[0]):
                    best = (m.start(), persona)
        for pattern in self.closing_patterns:
            m = pattern.search(prose)
            if m and (best is None or m.start() < best[0]):
                best = (m.start(), None)
        if best is None or best[1] is Persona.MODERATOR:
            return None
        return best[1]


detect_handoff = PatternHandoffDetector()


@dataclass(frozen=True)
class TurnDirectives:
    operations: list[CardOperation]
    handoff: Persona | None
    prose: str


def parse_turn(
    text: str,
    candidates: Sequence[Persona] = (),
    detector: HandoffDetector = detect_handoff,
) -> TurnDirectives:
    return TurnDirectives(
        operations=extract_operations(text),
        handoff=detector(text, candidates) if candidates else None,
        prose=extract_prose(text),
    )


# ---------------------------------------------------------------------------
# Coordinator selection
# ---------------------------------------------------------------------------


def fallback_persona(candidates: Sequence[Persona], last_speaker: Persona | None) -> Persona:
    if not candidates:
        raise ValueError("No personas available to select from")
    return next((p for p in candidates if p is not last_speaker), candidates[0])


def select_persona(
    text: str,
    candidates: Sequence[Persona],
    last_speaker: Persona | None = None,
) -> tuple[Persona, bool]:
    """Resolve the moderator's pick. Returns ``(persona, matched)``.

    Mentioned personas are ordered by first appearance; the first one that did
    not open the previous round wins.
    """
    found: list[tuple[int, Persona]] = []
    for persona in candidates:
        m = re.search(rf"(?<!\w){_alias_re(persona)}(?!\w)", text, re.IGNORECASE)
        if m:
            found.append((m.start(), persona))
    if not found:
        return fallback_persona(candidates, last_speaker), False
    found.sort(key=lambda item: item[0])
    ordered = [p for _, p in found]
    return next((p for p in ordered if p is not last_speaker), ordered[0]), True


# ---------------------------------------------------------------------------
# Prompt construction
# ---------------------------------------------------------------------------


def format_cards_section(cards: Sequence[Card], limit: int | None = None) -> str:
    return "## Current Flashcards\n" + summarize_cards(cards, limit)


def format_transcript_excerpt(
    messages: Sequence[Message], limit: int = 2, max_chars: int = 800,
) -> str:
    """Recent prose from the shared transcript, machine blocks stripped."""
    lines: list[str] = []
    for msg in list(messages)[-limit:]:
        prose = extract_prose(msg.content)
        if len(prose) > max_chars:
            prose = prose[:max_chars].rstrip() + " ..."
        lines.append(f"[{msg.speaker}]: {prose}")
    if not lines:
        return ""
    return "## Recent Discussion\n" + "\n\n".join(lines)


def _format_panel(candidates: Iterable[Persona]) -> str:
    return "\n".join(
        f"- {p.value} ({display_name(p)}): {PERSONAS[p].description}" for p in candidates
    )


def format_initial_prompt(topic: str, persona: Persona = Persona.GENERATOR) -> str:
    return (
        f"Hello {PERSONAS[persona].short_name}! We need to create comprehensive flashcards for the topic: "
        f'"{topic}". Please create an initial set of flashcards covering the fundamental '
        "concepts. Think out loud about your approach, then provide your flashcard "
        "operations in JSON format."
    )


def format_turn_prompt(
    persona: Persona,
    topic: str,
    cards: Sequence[Card],
    transcript: Sequence[Message] = (),
    *,
    include_transcript: bool = True,
    handoff_from: Persona | None = None,
    peers: Sequence[Persona] = (),
    round_number: int = 1,
) -> str:
    sections: list[str] = []
    if handoff_from is not None:
        sections.append(f"{display_name(handoff_from)} handed the floor to you.")
    sections.append(
        f"{display_name(persona)}, please review the flashcards for \"{topic}\" "
        "from your perspective."
    )
    sections.append(format_cards_section(cards))
    if include_transcript:
        excerpt = format_transcript_excerpt(transcript)
        if excerpt:
            sections.append(excerpt)
    if peers:
        sections.append("## Panel\n" + _format_panel(peers))
    sections.append(
        f"## Your Turn (Round {round_number})\n"
        "Share your thoughts conversationally, then provide any flashcard changes "
        "in JSON format."
    )
    return "\n\n".join(sections)


def format_selection_prompt(
    topic: str,
    round_number: int,
    total_rounds: int,
    cards: Sequence[Card],
    candidates: Sequence[Persona],
    last_speaker: Persona | None = None,
    transcript: Sequence[Message] = (),
    *,
    include_transcript: bool = True,
) -> str:
    sections = [
        f"Round {round_number} of {total_rounds} on \"{topic}\".",
        format_cards_section(cards, limit=20),
    ]
    if include_transcript:
        excerpt = format_transcript_excerpt(transcript)
        if excerpt:
            sections.append(excerpt)
    sections.append("## Panel\n" + _format_panel(candidates))
    preference = (
        f"{last_speaker.value} opened the previous round, so prefer someone else. "
        if last_speaker is not None and len(candidates) > 1 else ""
    )
    sections.append(
        "## Your Turn\n"
        f"{preference}Who should start this round? Name exactly one panelist by id "
        "and say briefly what they should look at."
    )
    return "\n\n".join(sections)


def format_closing_prompt(topic: str, cards: Sequence[Card]) -> str:
    return (
        f"The panel has finished its rounds on \"{topic}\".\n\n"
        f"{format_cards_section(cards)}\n\n"
        "Please close the session with a short summary of the final set. "
        "Do not propose any further changes."
    )
