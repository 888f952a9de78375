from __future__ import annotations
from typing import Callable, Dict, List, Optional
import httpx

from chatrelay.config import Settings
from chatrelay.core.errors import UnsupportedServiceError
from chatrelay.providers.base import ChatBackend
from chatrelay.providers.echo import EchoBackend
from chatrelay.providers.ollama import OllamaBackend
from chatrelay.providers.openai import OpenAIBackend
from chatrelay.schemas.chat import ServiceInfo

TEST_SERVICE = "test"
TEST_MODEL = "test_model"

# Closed set of service keys; add a backend by adding an entry here
BACKENDS: Dict[str, Callable[..., ChatBackend]] = {
    TEST_SERVICE: EchoBackend,
    "openai": OpenAIBackend,
    "ollama": OllamaBackend,
}

SERVICE_NAMES: Dict[str, str] = {
    TEST_SERVICE: "Test Service",
    "openai": "OpenAI (ChatGPT)",
    "ollama": "Ollama",
}


class BackendRegistry:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        # Shared by every HTTP backend; tests pass an httpx.MockTransport
        self.transport = transport

    def get_backend(self, service: str) -> ChatBackend:
        factory = BACKENDS.get(service)
        if factory is None:
            raise UnsupportedServiceError(service)
        return factory(self.settings, transport=self.transport)

    def is_enabled(self, service: str) -> bool:
        if service == TEST_SERVICE:
            return self.settings.test_service_enabled
        if service == "openai":
            return self.settings.openai_enabled
        if service == "ollama":
            return self.settings.ollama_enabled
        return False

    def models_for(self, service: str) -> List[str]:
        if service == "openai":
            return list(self.settings.openai_models)
        if service == "ollama":
            return list(self.settings.ollama_models)
        return [TEST_MODEL]

    def available_services(self) -> Dict[str, ServiceInfo]:
        return {
            sid: ServiceInfo(name=SERVICE_NAMES[sid], models=self.models_for(sid))
            for sid in BACKENDS
            if self.is_enabled(sid)
        }
