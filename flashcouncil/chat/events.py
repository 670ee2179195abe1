from __future__ import annotations

import time
from dataclasses import dataclass, field

from ..agents import Persona, display_name
from ..cards.models import Card, CardOperation


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Message:
    """A finished transcript entry."""

    role: Persona
    speaker: str
    content: str
    timestamp: int
    sequence: int

    def to_dict(self) -> dict:
        return {
            "role": self.role.value,
            "speaker": self.speaker,
            "content": self.content,
            "timestamp": self.timestamp,
            "sequence": self.sequence,
        }


@dataclass
class MessageDraft:
    """The in-progress message of the active turn; only ``content`` grows."""

    message_id: str
    role: Persona
    sequence: int
    speaker: str = ""
    content: str = ""
    timestamp: int = field(default_factory=_now_ms)

    def __post_init__(self) -> None:
        if not self.speaker:
            self.speaker = display_name(self.role)

    def append(self, chunk: str) -> str:
        self.content += chunk
        return self.content

    def freeze(self) -> Message:
        return Message(
            role=self.role,
            speaker=self.speaker,
            content=self.content,
            timestamp=self.timestamp,
            sequence=self.sequence,
        )


@dataclass(frozen=True)
class SessionResult:
    topic: str
    conversation: tuple[Message, ...]
    flashcards: tuple[Card, ...]

    def to_dict(self) -> dict:
        return {
            "topic": self.topic,
            "conversation": [m.to_dict() for m in self.conversation],
            "flashcards": [c.to_dict() for c in self.flashcards],
        }


@dataclass
class ChatEvent:
    """Base class for session events."""


@dataclass
class StatusChanged(ChatEvent):
    message: str
    progress: int


@dataclass
class MessageStarted(ChatEvent):
    message_id: str
    message: Message  # snapshot with empty content
    progress: int


@dataclass
class MessageToken(ChatEvent):
    message_id: str
    delta: str
    content: str  # cumulative
    progress: int


@dataclass
class MessageCompleted(ChatEvent):
    message_id: str
    message: Message
    progress: int


@dataclass
class CardsUpdated(ChatEvent):
    flashcards: tuple[Card, ...]
    operations: list[CardOperation]
    progress: int


@dataclass
class SessionCompleted(ChatEvent):
    result: SessionResult
    progress: int = 100


@dataclass
class SessionFailed(ChatEvent):
    error: str
    progress: int
