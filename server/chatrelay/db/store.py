from __future__ import annotations
import logging
from typing import List, Optional, Protocol
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlmodel import select

from chatrelay.config import Settings
from chatrelay.core.errors import PersistenceError
from chatrelay.core.memory_store import MemoryStore
from chatrelay.db.models import ConversationRecord, UsageRecord
from chatrelay.db.session import build_engine, get_session, session_factory
from chatrelay.schemas.conversation import Conversation, ConversationSummary, UsageCounter

logger = logging.getLogger(__name__)


def _read_failed(op: str, owner: str) -> PersistenceError:
    logger.exception("store %s failed owner=%s", op, owner)
    return PersistenceError("Failed to read conversation data.")


class ConversationStore(Protocol):
    """Per-owner keyed storage of conversations and usage counters."""

    async def get(self, owner: str, conversation_id: str) -> Optional[Conversation]:
        ...

    async def put(self, owner: str, conversation: Conversation, usage: Optional[UsageCounter] = None) -> None:
        """Write the conversation, and the usage counter if given, as one unit.

        Raises PersistenceError when the write fails; nothing is written then.
        """
        ...

    async def list_by_owner(self, owner: str, include_deleted: bool = False) -> List[ConversationSummary]:
        ...

    async def count_by_owner(self, owner: str) -> int:
        """Count every conversation of the owner, tombstones included."""
        ...

    async def get_usage(self, owner: str) -> UsageCounter:
        ...


class SQLConversationStore:
    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self._factory = session_factory(engine)

    async def get(self, owner: str, conversation_id: str) -> Optional[Conversation]:
        try:
            async with get_session(self._factory) as session:
                row = await session.get(ConversationRecord, (owner, conversation_id))
        except SQLAlchemyError as e:
            raise _read_failed("get", owner) from e
        return Conversation.model_validate_json(row.data) if row else None

    async def put(self, owner: str, conversation: Conversation, usage: Optional[UsageCounter] = None) -> None:
        try:
            async with get_session(self._factory) as session:
                row = await session.get(ConversationRecord, (owner, conversation.id))
                if row is None:
                    row = ConversationRecord(owner_id=owner, id=conversation.id, data="")
                row.deleted = conversation.deleted
                row.updated = conversation.updated
                row.data = conversation.model_dump_json()
                session.add(row)
                if usage is not None:
                    urow = await session.get(UsageRecord, owner)
                    if urow is None:
                        urow = UsageRecord(owner_id=owner)
                    urow.last_request_time = usage.last_request_time
                    session.add(urow)
        except SQLAlchemyError as e:
            logger.exception("store put failed owner=%s conversation=%s", owner, conversation.id)
            raise PersistenceError() from e

    async def list_by_owner(self, owner: str, include_deleted: bool = False) -> List[ConversationSummary]:
        stmt = select(ConversationRecord).where(ConversationRecord.owner_id == owner)
        if not include_deleted:
            stmt = stmt.where(ConversationRecord.deleted == False)  # noqa: E712
        stmt = stmt.order_by(ConversationRecord.updated.desc())
        try:
            async with get_session(self._factory) as session:
                result = await session.exec(stmt)
                rows = result.all()
        except SQLAlchemyError as e:
            raise _read_failed("list", owner) from e
        return [Conversation.model_validate_json(r.data).summary() for r in rows]

    async def count_by_owner(self, owner: str) -> int:
        stmt = select(func.count()).select_from(ConversationRecord).where(ConversationRecord.owner_id == owner)
        try:
            async with get_session(self._factory) as session:
                result = await session.exec(stmt)
                return int(result.one())
        except SQLAlchemyError as e:
            raise _read_failed("count", owner) from e

    async def get_usage(self, owner: str) -> UsageCounter:
        try:
            async with get_session(self._factory) as session:
                row = await session.get(UsageRecord, owner)
        except SQLAlchemyError as e:
            raise _read_failed("usage", owner) from e
        return UsageCounter(owner=owner, last_request_time=row.last_request_time if row else None)


def build_store(settings: Settings) -> ConversationStore:
    if settings.memory_mode:
        return MemoryStore()
    return SQLConversationStore(build_engine(settings.database_url))
