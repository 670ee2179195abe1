"""Generation request intake: validated topic + per-session configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..agents import DEFAULT_PERSONAS, Persona, parse_persona

MIN_ROUNDS, MAX_ROUNDS = 1, 20
MIN_HANDOFFS, MAX_HANDOFFS = 1, 5
MAX_TOPIC_CHARS = 500

_CONFIG_KEYS = frozenset({
    "roundCount", "maxHandoffsPerRound", "enabledPersonas", "includeTranscriptInPrompts",
})


class RequestError(ValueError):
    """A generation request was rejected before any session work began."""


@dataclass(frozen=True)
class SessionConfig:
    rounds: int = 6
    max_handoffs: int = 2
    personas: tuple[Persona, ...] = field(default=DEFAULT_PERSONAS)
    include_transcript: bool = True

    def to_dict(self) -> dict:
        return {
            "roundCount": self.rounds,
            "maxHandoffsPerRound": self.max_handoffs,
            "enabledPersonas": [p.value for p in self.personas],
            "includeTranscriptInPrompts": self.include_transcript,
        }


def _bounded_int(value: Any, name: str, low: int, high: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise RequestError(f"'{name}' must be an integer")
    if not low <= value <= high:
        raise RequestError(f"'{name}' must be between {low} and {high}")
    return value


def _personas(value: Any) -> tuple[Persona, ...]:
    if not isinstance(value, list) or not value:
        raise RequestError("'enabledPersonas' must be a non-empty array")
    personas: list[Persona] = []
    for i, item in enumerate(value):
        if not isinstance(item, str):
            raise RequestError(f"Invalid enabledPersonas[{i}]: expected a string")
        try:
            persona = parse_persona(item)
        except ValueError as exc:
            raise RequestError(f"Invalid enabledPersonas[{i}]: {exc}") from None
        if persona is Persona.MODERATOR:
            raise RequestError("The moderator is always present and cannot be enabled as a panelist")
        if persona in personas:
            raise RequestError(f"Invalid enabledPersonas: duplicate '{item}'")
        personas.append(persona)
    return tuple(personas)


def default_config(settings: dict[str, Any] | None = None) -> SessionConfig:
    """Session defaults from the settings table."""
    settings = settings or {}
    base = SessionConfig()
    enabled = settings.get("session.enabled_personas")
    return SessionConfig(
        rounds=settings.get("session.rounds", base.rounds),
        max_handoffs=settings.get("session.max_handoffs", base.max_handoffs),
        personas=tuple(parse_persona(p) for p in enabled) if enabled else base.personas,
        include_transcript=settings.get("session.include_transcript", base.include_transcript),
    )


def validate_session_request(
    body: Any, settings: dict[str, Any] | None = None,
) -> tuple[str, SessionConfig]:
    """Return ``(topic, config)`` or raise RequestError."""
    if not isinstance(body, dict):
        raise RequestError("Request body must be a JSON object")
    topic = body.get("topic")
    if not isinstance(topic, str) or not topic.strip():
        raise RequestError("Topic is required")
    topic = topic.strip()
    if len(topic) > MAX_TOPIC_CHARS:
        raise RequestError(f"Topic must be at most {MAX_TOPIC_CHARS} characters")

    defaults = default_config(settings)
    raw = body.get("config") or {}
    if not isinstance(raw, dict):
        raise RequestError("'config' must be an object")
    unknown = sorted(k for k in raw if k not in _CONFIG_KEYS)
    if unknown:
        raise RequestError(f"Unknown config keys: {unknown}")

    rounds = raw.get("roundCount", body.get("rounds", defaults.rounds))
    include = raw.get("includeTranscriptInPrompts", defaults.include_transcript)
    if not isinstance(include, bool):
        raise RequestError("'includeTranscriptInPrompts' must be a boolean")

    config = SessionConfig(
        rounds=_bounded_int(rounds, "roundCount", MIN_ROUNDS, MAX_ROUNDS),
        max_handoffs=_bounded_int(
            raw.get("maxHandoffsPerRound", defaults.max_handoffs),
            "maxHandoffsPerRound", MIN_HANDOFFS, MAX_HANDOFFS,
        ),
        personas=_personas(raw["enabledPersonas"]) if "enabledPersonas" in raw else defaults.personas,
        include_transcript=include,
    )
    return topic, config
