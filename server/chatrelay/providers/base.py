from __future__ import annotations
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol
import httpx

from chatrelay.core.errors import UpstreamAPIError, UpstreamError
from chatrelay.schemas.conversation import Conversation

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 10


class ChatBackend(Protocol):
    id: str

    async def get_response(
        self,
        conversation: Conversation,
        content: str,
        model: str,
        system_prompt: str,
        temperature: float,
        timeout: float,
    ) -> str:
        ...

    def stream_response(
        self,
        conversation: Conversation,
        content: str,
        model: str,
        system_prompt: str,
        temperature: float,
        timeout: float,
    ) -> AsyncIterator[str]:
        """Yield text fragments in generation order.

        The caller forwards each fragment before asking for the next one, so
        nothing is buffered here beyond what the transport holds.
        """
        ...


def prepare_messages(
    conversation: Conversation,
    content: str,
    system_prompt: Optional[str],
    window: int = HISTORY_WINDOW,
) -> List[Dict[str, str]]:
    """Build the upstream message list: system prompt, recent history, new user turn.

    The user message is usually persisted before the backend is called, so when
    the newest stored message is that same user turn it is not appended again.
    """
    messages: List[Dict[str, str]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})

    history = conversation.messages[-window:] if window > 0 else []
    for msg in history:
        messages.append({"role": msg.role, "content": msg.content})

    last = history[-1] if history else None
    if last is not None and last.role == "user" and last.content == content:
        logger.debug("skipping duplicate user message conversation=%s", conversation.id)
    else:
        messages.append({"role": "user", "content": content})
    return messages


def client_timeout(timeout: float) -> httpx.Timeout:
    return httpx.Timeout(timeout)


def translate_http_error(service: str, exc: httpx.HTTPError) -> UpstreamError:
    if isinstance(exc, httpx.TimeoutException):
        return UpstreamError(f"[{service}] request timed out", timeout=True)
    return UpstreamError(f"[{service}] request failed: {exc}")


def error_message(body: Any) -> str:
    """Pull the human-readable message out of an upstream error body."""
    if isinstance(body, (bytes, str)):
        try:
            body = json.loads(body)
        except ValueError:
            text = body.decode("utf-8", errors="ignore") if isinstance(body, bytes) else body
            return text.strip() or "Unknown error"
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            return str(err.get("message") or "Unknown error")
        if err:
            return str(err)
    return "Unknown error"


def api_error(service: str, status: int, body: Any) -> UpstreamAPIError:
    return UpstreamAPIError(f"[{service}] HTTP error {status}: {error_message(body)}", upstream_status=status)
