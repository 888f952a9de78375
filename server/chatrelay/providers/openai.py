from __future__ import annotations
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional, Tuple
import httpx

from chatrelay.config import Settings
from chatrelay.core.errors import BackendConfigurationError, UpstreamAPIError, UpstreamProtocolError
from chatrelay.providers.base import api_error, client_timeout, error_message, prepare_messages, translate_http_error
from chatrelay.schemas.conversation import Conversation

logger = logging.getLogger(__name__)


class OpenAIBackend:
    """Chat-completions backend: one buffered POST, or SSE deltas when streaming."""

    id = "openai"

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        self.transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=client_timeout(timeout), transport=self.transport, trust_env=True)

    def _request(
        self,
        conversation: Conversation,
        content: str,
        model: str,
        system_prompt: str,
        temperature: float,
        stream: bool,
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        api_key = self.settings.openai_api_key
        if not api_key:
            raise BackendConfigurationError("OpenAI API key is not set.")

        payload: Dict[str, Any] = {
            "model": model,
            "messages": prepare_messages(conversation, content, system_prompt, self.settings.history_window),
            "temperature": float(temperature),
        }
        if stream:
            payload["stream"] = True

        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        url = self.settings.openai_base_url.rstrip("/") + "/chat/completions"
        return url, headers, payload

    async def get_response(
        self,
        conversation: Conversation,
        content: str,
        model: str,
        system_prompt: str,
        temperature: float,
        timeout: float,
    ) -> str:
        url, headers, payload = self._request(conversation, content, model, system_prompt, temperature, stream=False)
        try:
            async with self._client(timeout) as client:
                resp = await client.post(url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.warning("openai request failed model=%s: %s", model, e)
            raise translate_http_error(self.id, e) from e

        if not resp.is_success:
            raise api_error(self.id, resp.status_code, resp.content)
        try:
            obj = resp.json()
        except ValueError as e:
            raise UpstreamProtocolError("Invalid response from OpenAI API") from e
        if isinstance(obj, dict) and obj.get("error"):
            raise UpstreamAPIError(f"[{self.id}] {error_message(obj)}", upstream_status=resp.status_code)
        try:
            text = obj["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise UpstreamProtocolError("Invalid response from OpenAI API") from e
        if not isinstance(text, str):
            raise UpstreamProtocolError("Invalid response from OpenAI API")
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
        url, headers, payload = self._request(conversation, content, model, system_prompt, temperature, stream=True)
        try:
            async with self._client(timeout) as client:
                async with client.stream("POST", url, headers=headers, json=payload) as resp:
                    if not resp.is_success:
                        body = await resp.aread()
                        raise api_error(self.id, resp.status_code, body)
                    # A network read may end mid-line; carry the tail into the next read
                    pending = ""
                    async for chunk in resp.aiter_text():
                        pending += chunk
                        *lines, pending = pending.split("\n")
                        for line in lines:
                            delta = self._parse_line(line)
                            if delta:
                                yield delta
                    delta = self._parse_line(pending)
                    if delta:
                        yield delta
        except httpx.HTTPError as e:
            logger.warning("openai stream failed model=%s: %s", model, e)
            raise translate_http_error(self.id, e) from e

    def _parse_line(self, line: str) -> Optional[str]:
        line = line.strip()
        if not line or line.startswith(":"):
            return None
        if line.startswith("data:"):
            line = line[len("data:"):].strip()
        if line == "[DONE]":
            return None
        try:
            obj = json.loads(line)
        except ValueError:
            logger.warning("openai stream: skipping unparseable fragment %r", line[:200])
            return None
        if not isinstance(obj, dict):
            return None
        if obj.get("error"):
            raise UpstreamAPIError(f"[{self.id}] {error_message(obj)}")
        choices = obj.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return None
        delta = (choices[0].get("delta") or {}).get("content")
        return delta if isinstance(delta, str) and delta else None
