from __future__ import annotations
import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional, Tuple
import httpx

from chatrelay.config import Settings
from chatrelay.core.errors import UpstreamAPIError, UpstreamProtocolError
from chatrelay.providers.base import api_error, client_timeout, error_message, prepare_messages, translate_http_error
from chatrelay.schemas.conversation import Conversation

logger = logging.getLogger(__name__)


class OllamaBackend:
    """Backend for the Ollama /api/chat endpoint.

    A streamed reply is newline-delimited JSON, one object per generated token
    run, ending with an object whose `done` is true. The decoded text is handed
    on in small fixed-size pieces with a short pause between them.
    """

    id = "ollama"

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        self.transport = transport

    @property
    def url(self) -> str:
        base = self.settings.ollama_url
        if not base.endswith("/"):
            base += "/"
        return base + "chat"

    def _payload(
        self,
        conversation: Conversation,
        content: str,
        model: str,
        system_prompt: str,
        temperature: float,
        stream: bool,
    ) -> Dict[str, Any]:
        return {
            "model": model,
            "messages": prepare_messages(conversation, content, system_prompt, self.settings.history_window),
            "stream": stream,
            "options": {"temperature": float(temperature)},
        }

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=client_timeout(timeout), transport=self.transport, trust_env=True)

    async def get_response(
        self,
        conversation: Conversation,
        content: str,
        model: str,
        system_prompt: str,
        temperature: float,
        timeout: float,
    ) -> str:
        payload = self._payload(conversation, content, model, system_prompt, temperature, stream=False)
        try:
            async with self._client(timeout) as client:
                resp = await client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            logger.warning("ollama request failed model=%s: %s", model, e)
            raise translate_http_error(self.id, e) from e

        if not resp.is_success:
            raise api_error(self.id, resp.status_code, resp.content)
        try:
            obj = resp.json()
        except ValueError as e:
            raise UpstreamProtocolError("Invalid response from Ollama API") from e
        if isinstance(obj, dict) and obj.get("error"):
            raise UpstreamAPIError(f"[{self.id}] {error_message(obj)}", upstream_status=resp.status_code)
        try:
            text = obj["message"]["content"]
        except (KeyError, TypeError) as e:
            raise UpstreamProtocolError("Invalid response from Ollama API") from e
        if not isinstance(text, str):
            raise UpstreamProtocolError("Invalid response from Ollama API")
        return text

    async def stream_response(
        self,
        conversation: Conversation,
        content: str,
        model: str,
        system_prompt: str,
        temperature: float,
        timeout: float,
    ) -> AsyncIterator[str]:
        payload = self._payload(conversation, content, model, system_prompt, temperature, stream=True)
        read_size = max(1, self.settings.stream_read_size)
        delay = max(0, self.settings.stream_read_delay_ms) / 1000.0
        logger.debug("ollama stream url=%s model=%s messages=%d", self.url, model, len(payload["messages"]))
        try:
            async with self._client(timeout) as client:
                async with client.stream("POST", self.url, json=payload) as resp:
                    if not resp.is_success:
                        body = await resp.aread()
                        raise api_error(self.id, resp.status_code, body)
                    pending = ""
                    text = ""
                    done = False
                    async for chunk in resp.aiter_text():
                        pending += chunk
                        *lines, pending = pending.split("\n")
                        for line in lines:
                            piece, done = self._parse_line(line)
                            text += piece
                            if done:
                                break
                        while text:
                            yield text[:read_size]
                            text = text[read_size:]
                            # Pace the downstream connection
                            await asyncio.sleep(delay)
                        if done:
                            break
                    if not done:
                        piece, _ = self._parse_line(pending)
                        text += piece
                    while text:
                        yield text[:read_size]
                        text = text[read_size:]
                        await asyncio.sleep(delay)
        except httpx.HTTPError as e:
            logger.warning("ollama stream failed model=%s: %s", model, e)
            raise translate_http_error(self.id, e) from e

    def _parse_line(self, line: str) -> Tuple[str, bool]:
        """(text, done) for one NDJSON line of a streamed chat reply."""
        line = line.strip()
        if not line:
            return "", False
        try:
            obj = json.loads(line)
        except ValueError:
            logger.warning("ollama stream: skipping unparseable line %r", line[:200])
            return "", False
        if not isinstance(obj, dict):
            return "", False
        if obj.get("error"):
            raise UpstreamAPIError(f"[{self.id}] {error_message(obj)}")
        message = obj.get("message")
        piece = message.get("content") if isinstance(message, dict) else None
        return (piece if isinstance(piece, str) else ""), bool(obj.get("done"))
