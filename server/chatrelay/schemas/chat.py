from __future__ import annotations
from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class CreateConversationRequest(BaseModel):
    llm_service: str = ""
    llm_model: str = ""
    system_prompt: Optional[str] = None
    temperature: Optional[float] = 0.7
    test_mode: Optional[str] = None


class UpdateConversationRequest(BaseModel):
    title: Optional[str] = Field(default=None, max_length=200)
    system_prompt: Optional[str] = None
    temperature: Optional[float] = None


class MessageRequest(BaseModel):
    content: str = ""


class ServiceInfo(BaseModel):
    name: str
    models: List[str] = []


class ClientSettings(BaseModel):
    available_llm_services: Dict[str, ServiceInfo]
    global_rate_limit: int
    global_max_conversations: int
    global_max_messages: int
