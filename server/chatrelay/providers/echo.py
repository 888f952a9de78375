from __future__ import annotations
import asyncio
import random
from typing import AsyncIterator

from chatrelay.config import Settings
from chatrelay.schemas.conversation import Conversation

GREETING_REPLY = "Hello! How can I help you today?"
STATUS_REPLY = "I'm just a test response, but I'm functioning well! How can I assist you?"
HELP_REPLY = (
    "I'm here to help! You can ask me questions, and I'll do my best to provide useful information. "
    "Note that this is a test mode, so my responses are pre-programmed."
)
THANKS_REPLY = "You're welcome! Is there anything else I can help you with?"
QUESTION_REPLY = (
    "That's an interesting question. In test mode, I can only provide pre-programmed responses. "
    "When the actual LLM integration is implemented, I'll be able to give you more specific answers."
)
FALLBACK_REPLY = (
    "I understand you're testing the chat interface. This is a simulated response in test mode. "
    "The actual LLM integration will be implemented in a future update, which will provide more "
    "intelligent and contextual responses."
)


def generate_reply(content: str) -> str:
    text = content.lower()
    # Plain substring match, so "this" and "which" count as greetings
    if "hello" in text or "hi" in text:
        return GREETING_REPLY
    if "how are you" in text:
        return STATUS_REPLY
    if "help" in text:
        return HELP_REPLY
    if "thank" in text:
        return THANKS_REPLY
    if "?" in text:
        return QUESTION_REPLY
    return FALLBACK_REPLY


class EchoBackend:
    """Deterministic keyword responder; streams word by word at a typing pace."""

    id = "test"

    def __init__(self, settings: Settings, transport=None) -> None:
        self.settings = settings

    async def get_response(
        self,
        conversation: Conversation,
        content: str,
        model: str,
        system_prompt: str,
        temperature: float,
        timeout: float,
    ) -> str:
        return generate_reply(content)

    async def stream_response(
        self,
        conversation: Conversation,
        content: str,
        model: str,
        system_prompt: str,
        temperature: float,
        timeout: float,
    ) -> AsyncIterator[str]:
        low = self.settings.echo_delay_ms_min
        high = max(low, self.settings.echo_delay_ms_max)
        for word in generate_reply(content).split():
            yield word + " "
            await asyncio.sleep(random.uniform(low, high) / 1000.0)
