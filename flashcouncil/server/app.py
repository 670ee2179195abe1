from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import aclosing
from typing import Any

from fastapi import FastAPI
from fastapi.responses import JSONResponse, Response, StreamingResponse

from ..agents import PERSONAS, SELECTABLE_PERSONAS
from ..agents.base import CompletionClient
from ..cards.export import EXPORT_FORMATS, export_cards
from .protocol import format_sse
from .runner import SessionRunner, build_client, resolve_api_key
from .sessions import RequestError, SessionConfig, validate_session_request
from .settings import DEFAULTS, SettingsStore, validate_setting

log = logging.getLogger("flashcouncil")

ClientFactory = Callable[[dict[str, Any], str], CompletionClient]

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def create_app(
    settings_store: SettingsStore | None = None,
    client_factory: ClientFactory = build_client,
    runner: SessionRunner | None = None,
    overrides: dict[str, Any] | None = None,
) -> FastAPI:
    settings = settings_store or SettingsStore()
    runner = runner or SessionRunner()

    async def _store_call(fn, *args, **kwargs):
        return await asyncio.to_thread(fn, *args, **kwargs)

    app = FastAPI(title="Flashcouncil")

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "active_sessions": runner.active_sessions}

    @app.get("/api/personas")
    def list_personas():
        return [
            {
                "id": persona.value,
                "name": profile.display_name,
                "description": profile.description,
                "selectable": persona in SELECTABLE_PERSONAS,
            }
            for persona, profile in PERSONAS.items()
        ]

    # --- Generation ---

    @app.post("/api/generate-flashcards")
    async def generate_flashcards(body: dict):
        effective = await _store_call(settings.get_effective, overrides)
        try:
            topic, config = validate_session_request(body, effective)
        except RequestError as exc:
            return JSONResponse(status_code=400, content={"detail": str(exc)})

        api_key = resolve_api_key(effective)
        if not api_key:
            log.error("completion API key not configured (env %s)", effective.get("llm.api_key_env"))
            return JSONResponse(status_code=500, content={"detail": "Completion API key not configured"})

        client = client_factory(effective, api_key)
        return StreamingResponse(
            _sse_stream(runner, topic, config, client),
            media_type="text/event-stream",
            headers=_SSE_HEADERS,
        )

    # --- Export ---

    @app.post("/api/export-flashcards")
    def export_flashcards(body: dict):
        cards = body.get("flashcards")
        if not isinstance(cards, list) or not all(isinstance(c, dict) for c in cards):
            return JSONResponse(status_code=400, content={"detail": "Flashcards array is required"})
        fmt = body.get("format", "json")
        if fmt not in EXPORT_FORMATS:
            return JSONResponse(status_code=400, content={"detail": "Invalid format"})
        content, media_type, filename = export_cards(cards, fmt)
        return Response(
            content=content,
            media_type=media_type,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    # --- Settings REST API ---

    @app.get("/api/settings")
    def get_settings():
        return settings.get_all()

    @app.put("/api/settings")
    def update_settings(body: dict):
        invalid = [k for k in body if k not in DEFAULTS]
        if invalid:
            return JSONResponse(status_code=400, content={"detail": f"Unknown settings keys: {invalid}"})
        try:
            settings.set_many(body)
        except ValueError as exc:
            return JSONResponse(status_code=400, content={"detail": str(exc)})
        return settings.get_all()

    @app.get("/api/settings/{key:path}")
    def get_setting(key: str):
        if key not in DEFAULTS:
            return JSONResponse(status_code=404, content={"detail": f"Unknown settings key: {key}"})
        return {"key": key, "value": settings.get(key)}

    @app.put("/api/settings/{key:path}")
    def update_setting(key: str, body: dict):
        if "value" not in body:
            return JSONResponse(status_code=400, content={"detail": "Missing 'value' in request body"})
        error = validate_setting(key, body["value"])
        if error:
            return JSONResponse(status_code=400, content={"detail": error})
        settings.set(key, body["value"])
        return {"key": key, "value": body["value"]}

    @app.delete("/api/settings/{key:path}")
    def delete_setting(key: str):
        settings.delete(key)
        return {"ok": True}

    return app


async def _sse_stream(
    runner: SessionRunner, topic: str, config: SessionConfig, client: CompletionClient,
) -> AsyncGenerator[str, None]:
    async with aclosing(runner.run(topic, config, client)) as payloads:
        async for payload in payloads:
            yield format_sse(payload)
