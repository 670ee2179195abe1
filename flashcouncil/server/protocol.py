from __future__ import annotations

import json

from ..chat.events import (
    CardsUpdated,
    ChatEvent,
    MessageCompleted,
    MessageStarted,
    MessageToken,
    SessionCompleted,
    SessionFailed,
    StatusChanged,
)

TERMINAL_TYPES = frozenset({"complete", "error"})


def event_to_dict(event: ChatEvent) -> dict:
    match event:
        case StatusChanged(message=msg, progress=progress):
            return {"type": "status", "message": msg, "progress": progress}
        case MessageStarted(message_id=mid, message=message, progress=progress):
            return {
                "type": "message_start",
                "messageId": mid,
                "message": message.to_dict(),
                "progress": progress,
            }
        case MessageToken(message_id=mid, delta=delta, content=content, progress=progress):
            return {
                "type": "message_token",
                "messageId": mid,
                "token": delta,
                "content": content,
                "progress": progress,
            }
        case MessageCompleted(message_id=mid, message=message, progress=progress):
            return {
                "type": "message_complete",
                "messageId": mid,
                "finalContent": message.content,
                "progress": progress,
            }
        case CardsUpdated(flashcards=cards, operations=ops, progress=progress):
            return {
                "type": "flashcards_updated",
                "flashcards": [c.to_dict() for c in cards],
                "operations": [op.to_dict() for op in ops],
                "progress": progress,
            }
        case SessionCompleted(result=result, progress=progress):
            return {"type": "complete", "data": result.to_dict(), "progress": progress}
        case SessionFailed(error=error, progress=progress):
            return {"type": "error", "error": error, "progress": progress}
        case _:
            return {"type": "unknown"}


def format_sse(payload: dict) -> str:
    """Frame one event as a Server-Sent Events ``data:`` record."""
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"
