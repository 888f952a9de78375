from __future__ import annotations
import logging
import re
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List

from chatrelay.config import Settings
from chatrelay.core.errors import ConversationDeleted, ConversationNotFound, InvalidService
from chatrelay.core.locks import KeyedLock
from chatrelay.core.ratelimit import QuotaGuard
from chatrelay.core.session import StreamSession
from chatrelay.db.store import ConversationStore
from chatrelay.providers.router import TEST_MODEL, TEST_SERVICE, BackendRegistry
from chatrelay.schemas.chat import ClientSettings, CreateConversationRequest, UpdateConversationRequest
from chatrelay.schemas.conversation import Conversation, ConversationSummary, clamp_temperature

logger = logging.getLogger(__name__)


def _gmt(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def export_markdown(conversation: Conversation) -> str:
    lines = [
        f"# {conversation.title}",
        "",
        f"**Conversation ID:** {conversation.id}",
        f"**Created:** {_gmt(conversation.created)} GMT",
        f"**LLM Service:** {conversation.llm_service}",
        f"**LLM Model:** {conversation.llm_model}",
        "",
        "---",
        "",
    ]
    for msg in conversation.messages:
        lines += [f"**{msg.role.capitalize()}** ({_gmt(msg.timestamp)} GMT)", "", msg.content, "", "---", ""]
    return "\n".join(lines)


def export_filename(conversation: Conversation, now: int) -> str:
    stem = re.sub(r"[^A-Za-z0-9._-]+", "-", conversation.title).strip("-.") or "conversation"
    return f"{stem}-{datetime.fromtimestamp(now, tz=timezone.utc):%Y-%m-%d}.md"


class ConversationService:
    """Conversation operations for one process; also hands out StreamSessions."""

    def __init__(
        self,
        store: ConversationStore,
        registry: BackendRegistry,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.registry = registry
        self.settings = settings
        self.guard = QuotaGuard(store, settings, clock=clock)
        # One lock per owner guards every read-modify-write of that owner's records
        self.locks = KeyedLock()

    def session(self, owner: str, conversation_id: str, content: str) -> StreamSession:
        return StreamSession(
            store=self.store,
            guard=self.guard,
            registry=self.registry,
            locks=self.locks,
            settings=self.settings,
            owner=owner,
            conversation_id=conversation_id,
            content=content,
        )

    async def _load(self, owner: str, conversation_id: str) -> Conversation:
        conversation = await self.store.get(owner, conversation_id)
        if conversation is None:
            raise ConversationNotFound()
        if conversation.deleted:
            raise ConversationDeleted()
        return conversation

    async def create(self, owner: str, request: CreateConversationRequest) -> Conversation:
        service = (request.llm_service or "").strip()
        model = (request.llm_model or "").strip()
        if not service or (request.test_mode or "").lower() == "true":
            service, model = TEST_SERVICE, TEST_MODEL
        if not self.registry.is_enabled(service):
            logger.info("create rejected owner=%s service=%s not enabled", owner, service)
            raise InvalidService()

        async with self.locks.hold(owner):
            (await self.guard.check_conversation_limit(owner)).raise_for_rejection()
            now = self.guard.now()
            conversation = Conversation(
                owner=owner,
                created=now,
                updated=now,
                llm_service=service,
                llm_model=model,
                system_prompt=(request.system_prompt or "").strip(),
                temperature=0.7 if request.temperature is None else clamp_temperature(request.temperature),
            )
            await self.store.put(owner, conversation)
        logger.info("conversation created owner=%s id=%s service=%s model=%s", owner, conversation.id, service, model)
        return conversation

    async def get(self, owner: str, conversation_id: str) -> Conversation:
        return await self._load(owner, conversation_id)

    async def list_summaries(self, owner: str, include_deleted: bool = False) -> List[ConversationSummary]:
        return await self.store.list_by_owner(owner, include_deleted=include_deleted)

    async def update(self, owner: str, conversation_id: str, request: UpdateConversationRequest) -> Conversation:
        async with self.locks.hold(owner):
            conversation = await self._load(owner, conversation_id)
            if request.title is not None:
                conversation.title = request.title.strip()
            if request.system_prompt is not None:
                conversation.system_prompt = request.system_prompt.strip()
            if request.temperature is not None:
                conversation.temperature = clamp_temperature(request.temperature)
            conversation.touch(self.guard.now())
            await self.store.put(owner, conversation)
        return conversation

    async def delete(self, owner: str, conversation_id: str) -> Dict[str, str]:
        async with self.locks.hold(owner):
            conversation = await self.store.get(owner, conversation_id)
            if conversation is None:
                raise ConversationNotFound()
            if conversation.deleted:
                return {"message": "Conversation already deleted."}
            conversation.deleted = True
            conversation.touch(self.guard.now())
            await self.store.put(owner, conversation)
        logger.info("conversation deleted owner=%s id=%s", owner, conversation_id)
        return {"message": "Conversation deleted successfully."}

    async def export(self, owner: str, conversation_id: str) -> Dict[str, str]:
        conversation = await self._load(owner, conversation_id)
        return {
            "content": export_markdown(conversation),
            "filename": export_filename(conversation, self.guard.now()),
        }

    def client_settings(self) -> ClientSettings:
        return ClientSettings(
            available_llm_services=self.registry.available_services(),
            global_rate_limit=self.settings.rate_limit_seconds,
            global_max_conversations=self.settings.max_conversations,
            global_max_messages=self.settings.max_messages,
        )
