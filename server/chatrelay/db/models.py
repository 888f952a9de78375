from __future__ import annotations
from typing import Optional
from sqlalchemy import Column, Text
from sqlmodel import SQLModel, Field


class ConversationRecord(SQLModel, table=True):
    """One row per (owner, conversation); the body is the serialized Conversation."""

    __tablename__ = "conversation"  # type: ignore[assignment]

    owner_id: str = Field(primary_key=True)
    id: str = Field(primary_key=True)
    deleted: bool = Field(default=False, index=True)
    updated: int = Field(default=0, index=True)
    data: str = Field(sa_column=Column(Text, nullable=False))


class UsageRecord(SQLModel, table=True):
    __tablename__ = "usage"  # type: ignore[assignment]

    owner_id: str = Field(primary_key=True)
    last_request_time: Optional[int] = None
