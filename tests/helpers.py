"""Shared fakes for the test suite."""

import asyncio
import json

from flashcouncil.agents import PERSONAS, Persona
from flashcouncil.agents.base import CompletionError


class ScriptedClient:
    """Completion fake: replies per persona from scripted queues.

    The persona is recognised from the system message each thread starts with.
    """

    def __init__(
        self,
        scripts: dict[str, list[str]] | None = None,
        defaults: dict[str, str] | None = None,
        fail_on_call: int | None = None,
        chunk_size: int = 16,
    ):
        self.scripts = {k: list(v) for k, v in (scripts or {}).items()}
        self.defaults = defaults or {}
        self.fail_on_call = fail_on_call
        self.chunk_size = chunk_size
        self.calls: list[tuple[Persona, list[dict]]] = []

    @staticmethod
    def persona_for(messages: list[dict]) -> Persona:
        system = messages[0]["content"]
        for persona, profile in PERSONAS.items():
            if system.startswith(f"You are {profile.display_name}"):
                return persona
        raise AssertionError(f"unrecognised thread: {system[:60]!r}")

    def spoken(self) -> list[str]:
        return [p.value for p, _ in self.calls]

    async def stream(self, messages):
        persona = self.persona_for(messages)
        self.calls.append((persona, messages))
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            yield "partial "
            raise CompletionError("provider exploded")
        queue = self.scripts.get(persona.value)
        text = queue.pop(0) if queue else self.defaults.get(persona.value, "Nothing to add.")
        for i in range(0, len(text), self.chunk_size):
            await asyncio.sleep(0)
            yield text[i:i + self.chunk_size]


def ops_block(*operations: dict, prose: str = "Here are my changes.") -> str:
    return f"{prose}\n\n```json\n{json.dumps({'operations': list(operations)}, indent=2)}\n```"


def add_op(question: str, answer: str, **extra) -> dict:
    return {"type": "add", "flashcard": {"question": question, "answer": answer}, **extra}
