from fastapi import APIRouter, Body, Depends, Query, Request
import logging
from typing import Optional
from fastapi.responses import StreamingResponse

from chatrelay.api.deps import get_conversations
from chatrelay.core.auth import require_owner
from chatrelay.core.conversations import ConversationService
from chatrelay.core.errors import ChatRelayError
from chatrelay.core.sse import SSE_HEADERS, EventRelay
from chatrelay.schemas.chat import MessageRequest
from chatrelay.schemas.conversation import Conversation

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/conversations/{conversation_id}/messages", response_model=Conversation)
async def send_message(
    conversation_id: str,
    request: MessageRequest,
    owner: str = Depends(require_owner),
    service: ConversationService = Depends(get_conversations),
) -> Conversation:
    """Send a message and wait for the whole reply."""
    session = service.session(owner, conversation_id, request.content)
    await session.admit()
    return await session.respond()


async def _stream(
    http_request: Request, service: ConversationService, owner: str, conversation_id: str, content: str
) -> StreamingResponse:
    session = service.session(owner, conversation_id, content)
    relay = EventRelay(http_request.is_disconnected)
    try:
        await session.admit()
    except ChatRelayError as e:
        # Admission failures keep their HTTP status; the body is the single error event
        async def rejected():
            yield relay.error(e)

        return StreamingResponse(
            rejected(),
            status_code=e.status,
            media_type="text/event-stream",
            headers={**SSE_HEADERS, **e.headers()},
        )

    logger.info("/stream start owner=%s conversation=%s", owner, conversation_id)
    return StreamingResponse(session.stream(relay), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/conversations/{conversation_id}/stream")
async def stream_message(
    conversation_id: str,
    http_request: Request,
    request: Optional[MessageRequest] = Body(None),
    content: Optional[str] = Query(None),
    owner: str = Depends(require_owner),
    service: ConversationService = Depends(get_conversations),
) -> StreamingResponse:
    """Send a message and stream the reply as server-sent events."""
    text = request.content if request is not None and request.content else (content or "")
    return await _stream(http_request, service, owner, conversation_id, text)


@router.get("/conversations/{conversation_id}/stream")
async def stream_message_get(
    conversation_id: str,
    http_request: Request,
    content: str = Query(""),
    owner: str = Depends(require_owner),
    service: ConversationService = Depends(get_conversations),
) -> StreamingResponse:
    """EventSource-friendly variant: content travels in the query string."""
    return await _stream(http_request, service, owner, conversation_id, content)
