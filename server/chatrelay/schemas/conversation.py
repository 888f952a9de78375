from __future__ import annotations
import uuid
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, field_validator

DEFAULT_TITLE = "New Conversation"
TITLE_LENGTH = 30


def clamp_temperature(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def derive_title(content: str) -> str:
    title = content[:TITLE_LENGTH]
    if len(content) > TITLE_LENGTH:
        title += "..."
    return title


class Message(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: int


class Conversation(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner: str
    title: str = DEFAULT_TITLE
    created: int
    updated: int
    deleted: bool = False
    llm_service: str
    llm_model: str
    system_prompt: str = ""
    temperature: float = 0.7
    messages: List[Message] = Field(default_factory=list)

    @field_validator("temperature")
    @classmethod
    def _clamp_temperature(cls, value: float) -> float:
        return clamp_temperature(value)

    def touch(self, now: int) -> None:
        # updated never moves backwards, even if the clock does
        self.updated = max(self.updated, self.created, now)

    def append(self, role: str, content: str, now: int) -> Message:
        msg = Message(role=role, content=content, timestamp=now)
        self.messages.append(msg)
        if role == "user" and len(self.messages) == 1:
            self.title = derive_title(content)
        self.touch(now)
        return msg

    def summary(self) -> "ConversationSummary":
        return ConversationSummary(
            id=self.id,
            title=self.title,
            created=self.created,
            updated=self.updated,
            deleted=self.deleted,
            llm_service=self.llm_service,
            llm_model=self.llm_model,
            message_count=len(self.messages),
        )


class ConversationSummary(BaseModel):
    id: str
    title: str
    created: int
    updated: int
    deleted: bool
    llm_service: str
    llm_model: str
    message_count: int


class UsageCounter(BaseModel):
    owner: str
    last_request_time: Optional[int] = None
