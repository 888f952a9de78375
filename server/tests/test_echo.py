"""Tests for the canned test-service backend."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from chatrelay.providers import echo
from chatrelay.providers.echo import EchoBackend, generate_reply
from chatrelay.schemas.conversation import Conversation


@pytest.mark.parametrize(
    "content, expected",
    [
        ("hello there", echo.GREETING_REPLY),
        ("Hey!", echo.FALLBACK_REPLY),
        ("which one?", echo.GREETING_REPLY),
        ("this is it", echo.GREETING_REPLY),
        ("Thanks, that helped", echo.HELP_REPLY),
        ("how are you doing", echo.STATUS_REPLY),
        ("can you help me", echo.HELP_REPLY),
        ("thanks a lot", echo.THANKS_REPLY),
        ("what is 2+2?", echo.QUESTION_REPLY),
        ("tell me a story", echo.FALLBACK_REPLY),
    ],
)
def test_generate_reply(content, expected):
    assert generate_reply(content) == expected


def _conversation():
    return Conversation(owner="o", created=0, updated=0, llm_service="test", llm_model="test_model")


def test_stream_yields_words_with_pacing(settings):
    backend = EchoBackend(settings.model_copy(update={"echo_delay_ms_min": 50, "echo_delay_ms_max": 150}))

    async def collect():
        return [f async for f in backend.stream_response(_conversation(), "hello", "test_model", "", 0.7, 5)]

    with patch("chatrelay.providers.echo.asyncio.sleep", new=AsyncMock()) as sleep:
        fragments = asyncio.run(collect())

    assert fragments == [w + " " for w in echo.GREETING_REPLY.split()]
    assert "".join(fragments).strip() == echo.GREETING_REPLY
    assert sleep.await_count == len(fragments)
    for call in sleep.await_args_list:
        assert 0.05 <= call.args[0] <= 0.15


def test_buffered_reply(settings):
    backend = EchoBackend(settings)
    text = asyncio.run(backend.get_response(_conversation(), "thanks!", "test_model", "", 0.7, 5))
    assert text == echo.THANKS_REPLY


def test_greeting_wins_over_later_rules():
    assert generate_reply("Hi, how are you?") == echo.GREETING_REPLY
    assert generate_reply("Shipping help?") == echo.GREETING_REPLY
