from fastapi import APIRouter, Depends, Query
from typing import Dict, List

from chatrelay.api.deps import get_conversations
from chatrelay.core.auth import require_owner
from chatrelay.core.conversations import ConversationService
from chatrelay.schemas.chat import CreateConversationRequest, UpdateConversationRequest
from chatrelay.schemas.conversation import Conversation, ConversationSummary

router = APIRouter()


@router.get("/conversations", response_model=List[ConversationSummary])
async def list_conversations(
    include_deleted: bool = Query(False),
    owner: str = Depends(require_owner),
    service: ConversationService = Depends(get_conversations),
) -> List[ConversationSummary]:
    """List the owner's conversations (most recently updated first)."""
    return await service.list_summaries(owner, include_deleted=include_deleted)


@router.post("/conversations", status_code=201, response_model=Conversation)
async def create_conversation(
    request: CreateConversationRequest,
    owner: str = Depends(require_owner),
    service: ConversationService = Depends(get_conversations),
) -> Conversation:
    return await service.create(owner, request)


@router.get("/conversations/{conversation_id}", response_model=Conversation)
async def get_conversation(
    conversation_id: str,
    owner: str = Depends(require_owner),
    service: ConversationService = Depends(get_conversations),
) -> Conversation:
    return await service.get(owner, conversation_id)


@router.patch("/conversations/{conversation_id}", response_model=Conversation)
async def update_conversation(
    conversation_id: str,
    request: UpdateConversationRequest,
    owner: str = Depends(require_owner),
    service: ConversationService = Depends(get_conversations),
) -> Conversation:
    """Rename a conversation or change its system prompt / temperature."""
    return await service.update(owner, conversation_id, request)


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    owner: str = Depends(require_owner),
    service: ConversationService = Depends(get_conversations),
) -> Dict[str, str]:
    """Soft-delete: the record stays and still counts toward the owner's quota."""
    return await service.delete(owner, conversation_id)


@router.get("/conversations/{conversation_id}/export")
async def export_conversation(
    conversation_id: str,
    owner: str = Depends(require_owner),
    service: ConversationService = Depends(get_conversations),
) -> Dict[str, str]:
    return await service.export(owner, conversation_id)
