from dataclasses import dataclass
from enum import Enum

from .prompts import (
    CRITIC_PROMPT,
    EXPLAINER_PROMPT,
    GENERATOR_PROMPT,
    MEMORY_EXPERT_PROMPT,
    MODERATOR_PROMPT,
    SUBJECT_EXPERT_PROMPT,
    build_persona_instructions,
)


class Persona(Enum):
    """Closed set of participants a session can include."""

    MODERATOR = "moderator"
    GENERATOR = "generator"
    EXPLAINER = "explainer"
    CRITIC = "critic"
    MEMORY_EXPERT = "memory_expert"
    SUBJECT_EXPERT = "subject_expert"


@dataclass(frozen=True)
class PersonaProfile:
    display_name: str
    prompt: str
    description: str
    writes_cards: bool = True

    @property
    def surname(self) -> str:
        return self.display_name.split()[-1]

    @property
    def short_name(self) -> str:
        """Title and surname, e.g. "Dr. Chen"."""
        return f"{self.display_name.split()[0]} {self.surname}"


PERSONAS: dict[Persona, PersonaProfile] = {
    Persona.MODERATOR: PersonaProfile(
        "Dr. Amara Osei", MODERATOR_PROMPT,
        "keeps the panel moving and picks who speaks next", writes_cards=False,
    ),
    Persona.GENERATOR: PersonaProfile(
        "Dr. Sarah Chen", GENERATOR_PROMPT,
        "drafts new flashcards and organises coverage",
    ),
    Persona.EXPLAINER: PersonaProfile(
        "Prof. Sam Okoye", EXPLAINER_PROMPT,
        "makes answers understandable from first principles",
    ),
    Persona.CRITIC: PersonaProfile(
        "Dr. Hannah Weiss", CRITIC_PROMPT,
        "removes vague, wrong, or duplicate cards",
    ),
    Persona.MEMORY_EXPERT: PersonaProfile(
        "Dr. Marcus Rodriguez", MEMORY_EXPERT_PROMPT,
        "makes cards concise and memorable",
    ),
    Persona.SUBJECT_EXPERT: PersonaProfile(
        "Dr. Elena Vasquez", SUBJECT_EXPERT_PROMPT,
        "checks accuracy and completeness for the topic",
    ),
}

DEFAULT_PERSONAS: tuple[Persona, ...] = (
    Persona.MEMORY_EXPERT,
    Persona.SUBJECT_EXPERT,
    Persona.CRITIC,
)

# The moderator coordinates and never takes part in a hand-off chain.
SELECTABLE_PERSONAS = frozenset(p for p in Persona if p is not Persona.MODERATOR)


def parse_persona(value: str | Persona) -> Persona:
    if isinstance(value, Persona):
        return value
    try:
        return Persona(str(value).strip().lower())
    except ValueError:
        raise ValueError(f"Unknown persona: {value!r}") from None


def display_name(persona: Persona) -> str:
    return PERSONAS[persona].display_name


class PersonaRegistry:
    """Per-persona conditioning threads.

    Threads are append-only and never truncated, so memory grows with the
    number of rounds; the round count is bounded at config validation.
    """

    def __init__(self, threads: dict[Persona, list[dict]]) -> None:
        self._threads = threads

    @classmethod
    def create(cls, topic: str, personas: list[Persona] | None = None) -> "PersonaRegistry":
        members = personas if personas is not None else list(Persona)
        threads: dict[Persona, list[dict]] = {}
        for persona in members:
            profile = PERSONAS[persona]
            instructions = build_persona_instructions(profile.prompt, topic, profile.writes_cards)
            threads[persona] = [{"role": "system", "content": instructions}]
        return cls(threads)

    @property
    def personas(self) -> list[Persona]:
        return list(self._threads)

    def get_thread(self, persona: Persona) -> list[dict]:
        return [dict(m) for m in self._threads[persona]]

    def append_turn(self, persona: Persona, role: str, content: str) -> None:
        if role not in ("user", "assistant"):
            raise ValueError(f"Invalid thread role: {role!r}")
        self._threads[persona].append({"role": role, "content": content})

    def share(self, sender: Persona, recipient: Persona, excerpt: str) -> None:
        """Inject *sender*'s excerpt into *recipient*'s thread only."""
        if sender is recipient or not excerpt:
            return
        self.append_turn(recipient, "user", f"{display_name(sender)} said: {excerpt}")
