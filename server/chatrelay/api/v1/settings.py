from fastapi import APIRouter, Depends

from chatrelay.api.deps import get_conversations
from chatrelay.core.conversations import ConversationService
from chatrelay.schemas.chat import ClientSettings

router = APIRouter()


@router.get("/settings", response_model=ClientSettings)
async def get_client_settings(service: ConversationService = Depends(get_conversations)) -> ClientSettings:
    """Enabled services with their models, and the global limits."""
    return service.client_settings()
