from __future__ import annotations
import threading
from typing import Dict, List, Optional

from chatrelay.schemas.conversation import Conversation, ConversationSummary, UsageCounter


class MemoryStore:
    """In-process ConversationStore. Stored objects are deep copies, never shared."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        # owner -> conversation id -> Conversation
        self._conversations: Dict[str, Dict[str, Conversation]] = {}
        # owner -> last request time
        self._usage: Dict[str, Optional[int]] = {}

    async def get(self, owner: str, conversation_id: str) -> Optional[Conversation]:
        with self._lock:
            conv = self._conversations.get(owner, {}).get(conversation_id)
            return conv.model_copy(deep=True) if conv else None

    async def put(self, owner: str, conversation: Conversation, usage: Optional[UsageCounter] = None) -> None:
        snapshot = conversation.model_copy(deep=True)
        with self._lock:
            self._conversations.setdefault(owner, {})[snapshot.id] = snapshot
            if usage is not None:
                self._usage[owner] = usage.last_request_time

    async def list_by_owner(self, owner: str, include_deleted: bool = False) -> List[ConversationSummary]:
        with self._lock:
            rows = [c for c in self._conversations.get(owner, {}).values() if include_deleted or not c.deleted]
            rows.sort(key=lambda c: c.updated, reverse=True)
            return [c.summary() for c in rows]

    async def count_by_owner(self, owner: str) -> int:
        with self._lock:
            return len(self._conversations.get(owner, {}))

    async def get_usage(self, owner: str) -> UsageCounter:
        with self._lock:
            return UsageCounter(owner=owner, last_request_time=self._usage.get(owner))
