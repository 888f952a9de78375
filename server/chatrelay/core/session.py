"""One message exchange, from admission to the terminal event.

The session moves strictly forward through SessionState. Admission and the
user-message write happen under the owner's lock so quota checks and the
append are one unit. The lock is released while the backend generates and is
taken again only to append the finished assistant reply. A reply is persisted
whole or not at all: upstream failures, disconnects and cancellations leave the
user message in place with no assistant turn after it.
"""
from __future__ import annotations
import enum
import logging
from contextlib import aclosing
from typing import AsyncIterator, List, Optional

from chatrelay.config import Settings
from chatrelay.core.errors import (
    ChatRelayError,
    ConversationDeleted,
    ConversationNotFound,
    EmptyMessage,
)
from chatrelay.core.locks import KeyedLock
from chatrelay.core.ratelimit import QuotaGuard
from chatrelay.core.sse import EventRelay
from chatrelay.db.store import ConversationStore
from chatrelay.providers.router import BackendRegistry
from chatrelay.schemas.conversation import Conversation

logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    RECEIVED = "received"
    ADMITTED = "admitted"
    PERSISTED_USER_MSG = "persisted_user_msg"
    DISPATCHED = "dispatched"
    STREAMING = "streaming"
    ASSEMBLED = "assembled"
    PERSISTED_FINAL = "persisted_final"
    DONE = "done"
    ERROR = "error"


class StreamSession:
    def __init__(
        self,
        *,
        store: ConversationStore,
        guard: QuotaGuard,
        registry: BackendRegistry,
        locks: KeyedLock,
        settings: Settings,
        owner: str,
        conversation_id: str,
        content: str,
    ) -> None:
        self.store = store
        self.guard = guard
        self.registry = registry
        self.locks = locks
        self.settings = settings
        self.owner = owner
        self.conversation_id = conversation_id
        self.content = (content or "").strip()
        self.state = SessionState.RECEIVED
        self.conversation: Optional[Conversation] = None
        self.error: Optional[ChatRelayError] = None

    def _fail(self, exc: ChatRelayError) -> None:
        self.state = SessionState.ERROR
        self.error = exc
        logger.warning(
            "session failed owner=%s conversation=%s code=%s: %s",
            self.owner, self.conversation_id, exc.code, exc.message,
        )

    def _require(self, state: SessionState) -> Conversation:
        if self.state is not state or self.conversation is None:
            raise RuntimeError(f"session is {self.state.value}, expected {state.value}")
        return self.conversation

    async def admit(self) -> Conversation:
        """Run admission and persist the user message together with the request time."""
        try:
            async with self.locks.hold(self.owner):
                (await self.guard.check_rate_limit(self.owner)).raise_for_rejection()

                conversation = await self.store.get(self.owner, self.conversation_id)
                if conversation is None:
                    raise ConversationNotFound()
                if conversation.deleted:
                    raise ConversationDeleted()

                self.guard.check_message_limit(conversation).raise_for_rejection()
                if not self.content:
                    raise EmptyMessage()
                self.state = SessionState.ADMITTED

                now = self.guard.now()
                conversation.append("user", self.content, now)
                await self.store.put(self.owner, conversation, usage=self.guard.record_request(self.owner, now))
        except ChatRelayError as e:
            self._fail(e)
            raise
        except Exception as e:
            logger.exception("unexpected admission failure owner=%s conversation=%s", self.owner, self.conversation_id)
            err = ChatRelayError("Unexpected server error.")
            self._fail(err)
            raise err from e

        self.conversation = conversation
        self.state = SessionState.PERSISTED_USER_MSG
        logger.info(
            "user message accepted owner=%s conversation=%s messages=%d",
            self.owner, conversation.id, len(conversation.messages),
        )
        return conversation

    async def stream(self, relay: EventRelay) -> AsyncIterator[str]:
        """Relay backend fragments as events and finish with exactly one terminal event."""
        conversation = self._require(SessionState.PERSISTED_USER_MSG)
        try:
            backend = self.registry.get_backend(conversation.llm_service)
            self.state = SessionState.DISPATCHED
            logger.info(
                "dispatch owner=%s conversation=%s service=%s model=%s",
                self.owner, conversation.id, conversation.llm_service, conversation.llm_model,
            )

            parts: List[str] = []
            fragments = backend.stream_response(
                conversation,
                self.content,
                conversation.llm_model,
                conversation.system_prompt,
                conversation.temperature,
                self.settings.connection_timeout_seconds,
            )
            async with aclosing(fragments):
                self.state = SessionState.STREAMING
                async for fragment in fragments:
                    parts.append(fragment)
                    yield relay.message(fragment)
                    if await relay.is_disconnected():
                        # Nobody is listening; drop the partial reply
                        self.state = SessionState.ERROR
                        logger.info(
                            "client disconnected owner=%s conversation=%s after %d fragments",
                            self.owner, conversation.id, len(parts),
                        )
                        return

            self.state = SessionState.ASSEMBLED
            final = await self._persist_reply("".join(parts))
        except ChatRelayError as e:
            self._fail(e)
            yield relay.error(e)
            return
        except Exception:
            logger.exception("unexpected stream failure owner=%s conversation=%s", self.owner, self.conversation_id)
            err = ChatRelayError("Unexpected server error.")
            self._fail(err)
            yield relay.error(err)
            return

        self.state = SessionState.DONE
        yield relay.done(final)

    async def respond(self) -> Conversation:
        """Buffered variant of stream(): one backend call, then the same final write."""
        conversation = self._require(SessionState.PERSISTED_USER_MSG)
        try:
            backend = self.registry.get_backend(conversation.llm_service)
            self.state = SessionState.DISPATCHED
            text = await backend.get_response(
                conversation,
                self.content,
                conversation.llm_model,
                conversation.system_prompt,
                conversation.temperature,
                self.settings.connection_timeout_seconds,
            )
            self.state = SessionState.ASSEMBLED
            final = await self._persist_reply(text)
        except ChatRelayError as e:
            self._fail(e)
            raise
        self.state = SessionState.DONE
        return final

    async def run(self, relay: EventRelay) -> AsyncIterator[str]:
        try:
            await self.admit()
        except ChatRelayError as e:
            yield relay.error(e)
            return
        async for event in self.stream(relay):
            yield event

    async def _persist_reply(self, text: str) -> Conversation:
        async with self.locks.hold(self.owner):
            # Re-read: other requests may have written since admission
            current = await self.store.get(self.owner, self.conversation_id)
            if current is None:
                raise ConversationNotFound()
            if current.deleted:
                raise ConversationDeleted()
            current.append("assistant", text, self.guard.now())
            await self.store.put(self.owner, current)
        self.conversation = current
        self.state = SessionState.PERSISTED_FINAL
        logger.info(
            "assistant reply saved owner=%s conversation=%s chars=%d",
            self.owner, current.id, len(text),
        )
        return current
