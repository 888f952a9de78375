from __future__ import annotations
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from chatrelay.config import Settings
from chatrelay.core.errors import ConversationLimitReached, MessageLimitReached, RateLimited
from chatrelay.db.store import ConversationStore
from chatrelay.schemas.conversation import Conversation, UsageCounter

logger = logging.getLogger(__name__)

RATE_LIMITED = "rate_limited"
CONVERSATION_LIMIT_REACHED = "conversation_limit_reached"
MESSAGE_LIMIT_REACHED = "message_limit_reached"


@dataclass(frozen=True)
class Admission:
    ok: bool
    retry_after: int = 0
    reason: Optional[str] = None

    def raise_for_rejection(self) -> None:
        if self.ok:
            return
        if self.reason == RATE_LIMITED:
            raise RateLimited(self.retry_after)
        if self.reason == CONVERSATION_LIMIT_REACHED:
            raise ConversationLimitReached()
        if self.reason == MESSAGE_LIMIT_REACHED:
            raise MessageLimitReached()
        raise ValueError(f"unknown rejection reason: {self.reason}")


ADMITTED = Admission(ok=True)


class QuotaGuard:
    """Admission decisions from stored counters.

    The guard only reads. Callers serialize admission with the write that
    follows it (see StreamSession.admit), and bundle the new UsageCounter
    from record_request() into the same store call.
    """

    def __init__(self, store: ConversationStore, settings: Settings, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self.settings = settings
        self.clock = clock

    def now(self) -> int:
        return int(self.clock())

    async def check_rate_limit(self, owner: str) -> Admission:
        rate_limit = self.settings.rate_limit_seconds
        if rate_limit <= 0:
            return ADMITTED
        usage = await self.store.get_usage(owner)
        if usage.last_request_time is None:
            return ADMITTED
        elapsed = self.now() - usage.last_request_time
        if elapsed < rate_limit:
            remaining = max(0, rate_limit - elapsed)
            logger.info("rate limited owner=%s remaining=%ss", owner, remaining)
            return Admission(ok=False, retry_after=remaining, reason=RATE_LIMITED)
        return ADMITTED

    async def check_conversation_limit(self, owner: str) -> Admission:
        # Tombstones count against the quota
        count = await self.store.count_by_owner(owner)
        if count >= self.settings.max_conversations:
            logger.info("conversation limit reached owner=%s count=%d", owner, count)
            return Admission(ok=False, reason=CONVERSATION_LIMIT_REACHED)
        return ADMITTED

    def check_message_limit(self, conversation: Conversation) -> Admission:
        if len(conversation.messages) >= self.settings.max_messages:
            logger.info("message limit reached conversation=%s count=%d", conversation.id, len(conversation.messages))
            return Admission(ok=False, reason=MESSAGE_LIMIT_REACHED)
        return ADMITTED

    async def admit(self, owner: str, conversation: Optional[Conversation] = None) -> Admission:
        admission = await self.check_rate_limit(owner)
        if not admission.ok or conversation is None:
            return admission
        return self.check_message_limit(conversation)

    def record_request(self, owner: str, now: Optional[int] = None) -> UsageCounter:
        return UsageCounter(owner=owner, last_request_time=self.now() if now is None else now)
