"""Shared test fixtures."""

import json

import pytest
from fastapi.testclient import TestClient

from chatrelay.config import Settings
from chatrelay.core.conversations import ConversationService
from chatrelay.core.memory_store import MemoryStore
from chatrelay.main import create_app
from chatrelay.providers.router import BackendRegistry

OWNER = "guest-1"
START = 1_700_000_000


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: int = START):
        self.now = now

    def __call__(self) -> float:
        return float(self.now)

    def advance(self, seconds: int) -> None:
        self.now += seconds


class StubBackend:
    """Backend double: yields the given fragments, then optionally raises."""

    id = "stub"

    def __init__(self, fragments=("a", "b", "c"), error=None):
        self.fragments = list(fragments)
        self.error = error
        self.calls = 0
        self.closed = False

    async def get_response(self, conversation, content, model, system_prompt, temperature, timeout):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return "".join(self.fragments)

    async def stream_response(self, conversation, content, model, system_prompt, temperature, timeout):
        self.calls += 1
        try:
            for fragment in self.fragments:
                yield fragment
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True


def parse_sse(body: str):
    """Split an SSE body into (event, data) pairs."""
    events = []
    for block in body.split("\n\n"):
        if not block.strip():
            continue
        name, data = None, None
        for line in block.split("\n"):
            if line.startswith("event: "):
                name = line[len("event: "):]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: "):])
        events.append((name, data))
    return events


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        memory_mode=True,
        rate_limit_seconds=5,
        max_conversations=10,
        max_messages=20,
        echo_delay_ms_min=0,
        echo_delay_ms_max=0,
        stream_read_delay_ms=0,
        openai_enabled=True,
        openai_api_key="sk-test-0000000000000000000000",
        ollama_enabled=True,
        nextauth_secret="chatrelay-test-secret-0123456789abcdef",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def service(store, settings, clock):
    return ConversationService(store, BackendRegistry(settings), settings, clock=clock)


@pytest.fixture
def owner():
    return OWNER


@pytest.fixture
def events():
    return parse_sse


@pytest.fixture
def use_stub(service, monkeypatch):
    """Route every conversation of `service` to a StubBackend built from the given arguments."""

    def install(fragments=("a", "b", "c"), error=None):
        stub = StubBackend(fragments, error)
        monkeypatch.setattr(service.registry, "get_backend", lambda name: stub)
        return stub

    return install


@pytest.fixture
def app(settings, store, clock):
    return create_app(settings=settings, store=store, clock=clock)


@pytest.fixture
def client(app):
    with TestClient(app, headers={"X-Guest-Id": OWNER}) as c:
        yield c
