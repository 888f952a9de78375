from __future__ import annotations
import json
from typing import Any, Awaitable, Callable, Dict, Optional

from chatrelay.core.errors import ChatRelayError
from chatrelay.schemas.conversation import Conversation

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    # Disable proxy buffering (nginx)
    "X-Accel-Buffering": "no",
}


def format_event(event: str, payload: Dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


class EventRelay:
    """Encodes the events of one stream: any number of `message`, then one `done` or `error_event`.

    Each returned string is one event; the response yields it as its own body
    chunk so it goes out immediately.
    """

    def __init__(self, is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None) -> None:
        self._is_disconnected = is_disconnected
        self.closed = False
        self.sent_messages = 0

    def _check_open(self, event: str) -> None:
        if self.closed:
            raise RuntimeError(f"cannot emit '{event}' after the terminal event")

    def message(self, content: str) -> str:
        self._check_open("message")
        self.sent_messages += 1
        return format_event("message", {"content": content})

    def done(self, conversation: Optional[Conversation] = None) -> str:
        self._check_open("done")
        self.closed = True
        payload = {"conversation": conversation.model_dump()} if conversation is not None else {}
        return format_event("done", payload)

    def error(self, exc: ChatRelayError) -> str:
        self._check_open("error_event")
        self.closed = True
        return format_event("error_event", exc.to_payload())

    async def is_disconnected(self) -> bool:
        if self._is_disconnected is None:
            return False
        return await self._is_disconnected()
