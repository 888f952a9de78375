from fastapi import Request

from chatrelay.core.conversations import ConversationService


def get_conversations(request: Request) -> ConversationService:
    return request.app.state.conversations
