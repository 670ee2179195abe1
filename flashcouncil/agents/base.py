"""Completion capability: send role-tagged messages, receive a token stream.

The turn engine depends only on the ``CompletionClient`` protocol. Production
code uses ``OpenAIChatClient`` against any OpenAI-compatible
``/v1/chat/completions`` endpoint; tests pass in fakes.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import AsyncIterator
from typing import Any, Protocol

import httpx

log = logging.getLogger("flashcouncil")

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TEMPERATURE = 0.8
DEFAULT_MAX_TOKENS = 2000


class ProviderError(Exception):
    """Infrastructure failure talking to the completion provider. Fatal to a session."""


class CompletionError(ProviderError):
    """Raised when a chat completion request or its stream fails."""


class CompletionClient(Protocol):
    def stream(self, messages: list[dict]) -> AsyncIterator[str]: ...


def _try_parse_json(line: str) -> Any | None:
    try:
        return json.loads(line)
    except (json.JSONDecodeError, ValueError):
        truncated = line[:200] + "..." if len(line) > 200 else line
        log.debug("stream json parse failed: %s", truncated.rstrip())
        return None


def _delta_text(payload: Any) -> str:
    if not isinstance(payload, dict):
        return ""
    choices = payload.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    delta = choices[0].get("delta") or {}
    content = delta.get("content") if isinstance(delta, dict) else None
    return content if isinstance(content, str) else ""


class OpenAIChatClient:
    """Streaming client for OpenAI-compatible chat completion backends.

    Args:
        api_key:     Bearer token.
        base_url:    Backend root, e.g. "https://api.openai.com".
        model:       Model identifier.
        temperature: Sampling temperature.
        max_tokens:  Per-turn completion cap.
        timeout:     HTTP timeout in seconds.
        transport:   Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com",
        model: str = DEFAULT_MODEL,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }

    def _build_body(self, messages: list[dict]) -> dict:
        return {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": True,
        }

    async def stream(self, messages: list[dict]) -> AsyncIterator[str]:
        url = f"{self._base_url}/v1/chat/completions"
        start = time.monotonic()
        chunks = 0
        log.debug("completion request model=%s messages=%d", self.model, len(messages))
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                async with client.stream(
                    "POST", url, json=self._build_body(messages), headers=self._headers(),
                ) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                        raise CompletionError(
                            f"Completion provider returned {resp.status_code}: {resp.text[:200]}"
                        )
                    async for line in resp.aiter_lines():
                        line = line.strip()
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:"):].strip()
                        if data == "[DONE]":
                            break
                        payload = _try_parse_json(data)
                        if isinstance(payload, dict) and payload.get("error"):
                            raise CompletionError(f"Completion provider error: {payload['error']}")
                        text = _delta_text(payload)
                        if text:
                            chunks += 1
                            yield text
        except httpx.ConnectError as e:
            raise CompletionError(f"Cannot connect to completion provider at {self._base_url}") from e
        except httpx.TimeoutException as e:
            raise CompletionError("Completion provider timed out") from e
        except httpx.HTTPError as e:
            raise CompletionError(f"Completion request failed: {e}") from e
        log.debug(
            "completion done model=%s chunks=%d latency_ms=%.0f",
            self.model, chunks, (time.monotonic() - start) * 1000,
        )
