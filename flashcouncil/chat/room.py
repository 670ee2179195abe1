from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Sequence
from dataclasses import dataclass, field

from ..agents import Persona, PersonaRegistry, display_name
from ..agents.base import CompletionClient
from ..agents.prompts import REMINDER_PROMPT
from ..cards.engine import CardStore
from ..cards.models import CardOperation
from .events import (
    CardsUpdated,
    ChatEvent,
    Message,
    MessageCompleted,
    MessageDraft,
    MessageStarted,
    MessageToken,
    SessionCompleted,
    SessionResult,
    StatusChanged,
)
from .router import (
    HandoffDetector,
    TurnDirectives,
    detect_handoff,
    format_closing_prompt,
    format_initial_prompt,
    format_selection_prompt,
    format_turn_prompt,
    parse_turn,
    select_persona,
)

log = logging.getLogger("flashcouncil")

_DRAFT_PROGRESS = (5, 10, 15)
_ROUNDS_START = 15
_ROUNDS_SPAN = 70
_FINALIZE_PROGRESS = 95


@dataclass
class RoundState:
    round_index: int
    pass_chain_count: int = 0
    active_agent: Persona | None = None
    last_agent: Persona | None = None  # opener of the previous round


@dataclass
class _TurnOutcome:
    """Collected by a contributor turn (plus its reminder, if one was sent)."""

    messages: list[Message] = field(default_factory=list)
    directives: list[TurnDirectives] = field(default_factory=list)
    applied: list[CardOperation] = field(default_factory=list)
    reminded: bool = False

    @property
    def handoff(self) -> Persona | None:
        return next((d.handoff for d in self.directives if d.handoff is not None), None)

    @property
    def prose(self) -> str:
        return "\n\n".join(d.prose for d in self.directives if d.prose)


class ChatRoom:
    """Runs one flashcard session: initial draft, review rounds, closing remark.

    All turns are sequential. Completion failures propagate out of ``run()``;
    parse failures never do.
    """

    def __init__(
        self,
        topic: str,
        client: CompletionClient,
        personas: Sequence[Persona],
        rounds: int = 6,
        max_handoffs: int = 2,
        include_transcript: bool = True,
        card_store: CardStore | None = None,
        registry: PersonaRegistry | None = None,
        handoff_detector: HandoffDetector = detect_handoff,
    ) -> None:
        if not personas:
            raise ValueError("At least one persona must be enabled")
        if Persona.MODERATOR in personas:
            raise ValueError("The moderator cannot be an enabled panelist")
        self.topic = topic
        self.client = client
        self.personas = list(dict.fromkeys(personas))
        self.rounds = rounds
        self.max_handoffs = max_handoffs
        self.include_transcript = include_transcript
        self.cards = card_store or CardStore()
        roster = list(dict.fromkeys([Persona.MODERATOR, Persona.GENERATOR, *self.personas]))
        self.registry = registry or PersonaRegistry.create(topic, roster)
        missing = [p.value for p in roster if p not in self.registry.personas]
        if missing:
            raise ValueError(f"Registry has no thread for: {', '.join(missing)}")
        self.detect_handoff = handoff_detector
        self.history: list[Message] = []
        self.round_state: RoundState | None = None
        self._progress = 0
        self._last_opener: Persona | None = None

    def _advance(self, progress: int) -> int:
        self._progress = max(self._progress, progress)
        return self._progress

    def _round_progress(self, round_index: int) -> int:
        return _ROUNDS_START + round((round_index - 1) / self.rounds * _ROUNDS_SPAN)

    # -- Turns ----------------------------------------------------------------

    async def _turn(
        self, persona: Persona, prompt: str, progress: int,
    ) -> AsyncGenerator[ChatEvent, None]:
        """Stream one completion for *persona*; the frozen message lands in history."""
        self.registry.append_turn(persona, "user", prompt)
        sequence = len(self.history)
        draft = MessageDraft(
            message_id=f"{persona.value}-{sequence}", role=persona, sequence=sequence,
        )
        log.info("turn start: %s (#%d)", persona.value, sequence)
        yield MessageStarted(message_id=draft.message_id, message=draft.freeze(), progress=progress)

        async for chunk in self.client.stream(self.registry.get_thread(persona)):
            if not chunk:
                continue
            content = draft.append(chunk)
            yield MessageToken(
                message_id=draft.message_id, delta=chunk, content=content, progress=progress,
            )

        message = draft.freeze()
        self.history.append(message)
        self.registry.append_turn(persona, "assistant", message.content)
        log.info("turn complete: %s (#%d) chars=%d", persona.value, sequence, len(message.content))
        yield MessageCompleted(message_id=draft.message_id, message=message, progress=progress)

    async def _contribute(
        self,
        persona: Persona,
        prompt: str,
        progress: int,
        outcome: _TurnOutcome,
        candidates: Sequence[Persona] = (),
    ) -> AsyncGenerator[ChatEvent, None]:
        """A card-writing turn: apply its operations, remind once if it had none,
        then look for a hand-off among *candidates*."""
        async for event in self._turn(persona, prompt, progress):
            yield event
        operations = self._parse_last(outcome, candidates)

        if not operations:
            log.info("no operations from %s; sending format reminder", persona.value)
            outcome.reminded = True
            yield StatusChanged(
                message=f"Reminding {display_name(persona)} about the flashcard format...",
                progress=progress,
            )
            async for event in self._turn(persona, REMINDER_PROMPT, progress):
                yield event
            operations = self._parse_last(outcome, candidates)
            if not operations:
                log.info("still no operations from %s after reminder", persona.value)

        if operations:
            outcome.applied = self.cards.apply(operations)
            if outcome.applied:
                yield CardsUpdated(
                    flashcards=self.cards.cards,
                    operations=outcome.applied,
                    progress=self._advance(min(progress + 5, _FINALIZE_PROGRESS - 1)),
                )

    def _parse_last(self, outcome: _TurnOutcome, candidates: Sequence[Persona]) -> list[CardOperation]:
        message = self.history[-1]
        directives = parse_turn(message.content, candidates, self.detect_handoff)
        outcome.messages.append(message)
        outcome.directives.append(directives)
        return directives.operations

    # -- Session ----------------------------------------------------------------

    async def run(self) -> AsyncGenerator[ChatEvent, None]:
        generator = Persona.GENERATOR
        yield StatusChanged(
            message=f"{display_name(generator)} is creating initial flashcards...",
            progress=self._advance(_DRAFT_PROGRESS[0]),
        )
        async for event in self._contribute(
            generator, format_initial_prompt(self.topic, generator),
            self._advance(_DRAFT_PROGRESS[1]), _TurnOutcome(),
        ):
            yield event
        self._advance(_DRAFT_PROGRESS[2])

        for round_index in range(1, self.rounds + 1):
            async for event in self._run_round(round_index, self._last_opener):
                yield event

        yield StatusChanged(message="Finalizing flashcard set...", progress=self._advance(_FINALIZE_PROGRESS))
        async for event in self._turn(
            Persona.MODERATOR, format_closing_prompt(self.topic, self.cards.cards), self._progress,
        ):
            yield event

        result = SessionResult(
            topic=self.topic,
            conversation=tuple(self.history),
            flashcards=self.cards.cards,
        )
        log.info(
            "session complete: topic=%r turns=%d cards=%d",
            self.topic, len(self.history), len(result.flashcards),
        )
        yield SessionCompleted(result=result, progress=self._advance(100))

    async def _run_round(
        self, round_index: int, last_opener: Persona | None,
    ) -> AsyncGenerator[ChatEvent, None]:
        state = RoundState(round_index=round_index, last_agent=last_opener)
        self.round_state = state
        progress = self._advance(self._round_progress(round_index))
        moderator = Persona.MODERATOR

        yield StatusChanged(
            message=(
                f"Round {round_index} of {self.rounds}: "
                f"{display_name(moderator)} is choosing who speaks next..."
            ),
            progress=progress,
        )
        selection_prompt = format_selection_prompt(
            self.topic, round_index, self.rounds, self.cards.cards, self.personas,
            last_speaker=last_opener, transcript=self.history,
            include_transcript=self.include_transcript,
        )
        async for event in self._turn(moderator, selection_prompt, progress):
            yield event
        opener, matched = select_persona(self.history[-1].content, self.personas, last_opener)
        if not matched:
            log.info("round %d: no persona named by moderator, falling back to %s", round_index, opener.value)
        state.active_agent = opener

        handoff_from: Persona | None = None
        while True:
            speaker = state.active_agent
            candidates = [p for p in self.personas if p is not speaker]
            yield StatusChanged(message=f"{display_name(speaker)} is reviewing...", progress=self._progress)
            prompt = format_turn_prompt(
                speaker, self.topic, self.cards.cards, self.history,
                include_transcript=self.include_transcript,
                handoff_from=handoff_from,
                peers=candidates,
                round_number=round_index,
            )
            outcome = _TurnOutcome()
            async for event in self._contribute(speaker, prompt, self._progress, outcome, candidates):
                yield event

            target = outcome.handoff
            if target is None or target is speaker or target not in self.personas:
                break
            if state.pass_chain_count >= self.max_handoffs:
                log.info(
                    "round %d: hand-off %s -> %s ignored, cap of %d reached",
                    round_index, speaker.value, target.value, self.max_handoffs,
                )
                break
            log.info("round %d: hand-off %s -> %s", round_index, speaker.value, target.value)
            self.registry.share(speaker, target, outcome.prose)
            handoff_from = speaker
            state.active_agent = target
            state.pass_chain_count += 1

        self._last_opener = opener
