from __future__ import annotations

import logging
import os
import time
import uuid
from collections.abc import AsyncGenerator
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any

from ..agents.base import CompletionClient, OpenAIChatClient, ProviderError
from ..chat.events import SessionCompleted, SessionFailed
from ..chat.room import ChatRoom
from ..chat.router import HandoffDetector, detect_handoff
from .protocol import event_to_dict
from .sessions import SessionConfig

log = logging.getLogger("flashcouncil")


def resolve_api_key(settings: dict[str, Any]) -> str | None:
    env_name = settings.get("llm.api_key_env") or "OPENAI_API_KEY"
    key = os.environ.get(env_name, "").strip()
    return key or None


def build_client(settings: dict[str, Any], api_key: str) -> OpenAIChatClient:
    return OpenAIChatClient(
        api_key=api_key,
        base_url=settings["llm.base_url"],
        model=settings["llm.model"],
        temperature=settings["llm.temperature"],
        max_tokens=settings["llm.max_tokens"],
        timeout=settings["llm.timeout"],
    )


@dataclass
class SessionInfo:
    session_id: str
    topic: str
    started_at: float = field(default_factory=time.monotonic)
    events: int = 0
    progress: int = 0


class SessionRunner:
    """Drives one ChatRoom per request and turns its events into wire dicts.

    Every stream ends with exactly one ``complete`` or ``error`` event. Nothing
    is shared between sessions except the bookkeeping in ``_active``.
    """

    def __init__(self, handoff_detector: HandoffDetector = detect_handoff) -> None:
        self.handoff_detector = handoff_detector
        self._active: dict[str, SessionInfo] = {}

    @property
    def active_sessions(self) -> int:
        return len(self._active)

    def create_room(self, topic: str, config: SessionConfig, client: CompletionClient) -> ChatRoom:
        return ChatRoom(
            topic,
            client,
            personas=list(config.personas),
            rounds=config.rounds,
            max_handoffs=config.max_handoffs,
            include_transcript=config.include_transcript,
            handoff_detector=self.handoff_detector,
        )

    async def run(
        self,
        topic: str,
        config: SessionConfig,
        client: CompletionClient,
    ) -> AsyncGenerator[dict, None]:
        info = SessionInfo(session_id=uuid.uuid4().hex[:12], topic=topic)
        room = self.create_room(topic, config, client)
        self._active[info.session_id] = info
        log.info(
            "session %s started: topic=%r rounds=%d max_handoffs=%d personas=%s",
            info.session_id, topic, config.rounds, config.max_handoffs,
            ",".join(p.value for p in config.personas),
        )
        finished = False
        try:
            async with aclosing(room.run()) as events:
                async for event in events:
                    payload = event_to_dict(event)
                    info.events += 1
                    info.progress = payload.get("progress", info.progress)
                    if isinstance(event, SessionCompleted):
                        finished = True
                    yield payload
        except ProviderError as exc:
            log.warning("session %s aborted by provider error: %s", info.session_id, exc)
            if not finished:
                finished = True
                yield event_to_dict(SessionFailed(error=str(exc), progress=info.progress))
        except GeneratorExit:
            log.info("session %s: subscriber disconnected after %d events", info.session_id, info.events)
            raise
        except Exception as exc:
            log.exception("session %s failed", info.session_id)
            if not finished:
                finished = True
                yield event_to_dict(
                    SessionFailed(error=str(exc) or type(exc).__name__, progress=info.progress)
                )
        finally:
            self._active.pop(info.session_id, None)
            log.info(
                "session %s closed: events=%d elapsed=%.1fs",
                info.session_id, info.events, time.monotonic() - info.started_at,
            )
