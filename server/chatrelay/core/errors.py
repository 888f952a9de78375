from __future__ import annotations
from typing import Any, Dict, Optional


class ChatRelayError(Exception):
    """Base error carrying a machine-readable code and an HTTP-style status."""

    code = "server_error"
    status = 500
    default_message = "Something went wrong."

    def __init__(self, message: Optional[str] = None, **extra: Any) -> None:
        self.message = message or self.default_message
        self.extra: Dict[str, Any] = extra
        super().__init__(self.message)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message, "status": self.status}
        payload.update(self.extra)
        return payload

    def headers(self) -> Dict[str, str]:
        return {}


class RateLimited(ChatRelayError):
    code = "rate_limited"
    status = 429

    def __init__(self, remaining_time: int) -> None:
        self.remaining_time = max(0, int(remaining_time))
        super().__init__(
            f"Rate limited. Please wait {self.remaining_time} seconds before sending another message.",
            remaining_time=self.remaining_time,
        )

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.remaining_time)}


class ConversationNotFound(ChatRelayError):
    code = "conversation_not_found"
    status = 404
    default_message = "Conversation not found."


class ConversationDeleted(ChatRelayError):
    code = "conversation_deleted"
    status = 410
    default_message = "This conversation has been deleted."


class ConversationLimitReached(ChatRelayError):
    code = "conversation_limit_reached"
    status = 403
    default_message = "You have reached the maximum number of conversations allowed."


class MessageLimitReached(ChatRelayError):
    code = "message_limit_reached"
    status = 403
    default_message = "This conversation has reached the maximum number of messages allowed."


class EmptyMessage(ChatRelayError):
    code = "empty_message"
    status = 400
    default_message = "Message content cannot be empty."


class InvalidService(ChatRelayError):
    code = "invalid_llm_service"
    status = 400
    default_message = "The specified LLM service is not enabled."


class UnsupportedServiceError(ChatRelayError):
    code = "unsupported_service"
    status = 500

    def __init__(self, service: str) -> None:
        super().__init__(f"Unsupported LLM service: {service}", service=service)


class UpstreamError(ChatRelayError):
    """Network-level failure talking to a backend (connection, read, timeout)."""

    code = "upstream_error"
    status = 500
    default_message = "The LLM service could not be reached."

    def __init__(self, message: Optional[str] = None, timeout: bool = False, **extra: Any) -> None:
        self.timeout = timeout
        if timeout:
            self.code = "upstream_timeout"
        super().__init__(message, **extra)


class BackendConfigurationError(UpstreamError):
    code = "configuration_error"
    default_message = "The LLM service is not configured."


class UpstreamProtocolError(ChatRelayError):
    code = "upstream_protocol_error"
    status = 500
    default_message = "Invalid response from the LLM service."


class UpstreamAPIError(ChatRelayError):
    code = "api_error"
    status = 500

    def __init__(self, message: str, upstream_status: Optional[int] = None) -> None:
        self.upstream_status = upstream_status
        extra = {"upstream_status": upstream_status} if upstream_status is not None else {}
        super().__init__(message, **extra)


class PersistenceError(ChatRelayError):
    code = "message_addition_failed"
    status = 500
    default_message = "Failed to save the conversation."


class AuthRequired(ChatRelayError):
    code = "rest_forbidden"
    status = 401
    default_message = "You must be logged in to access this endpoint."
