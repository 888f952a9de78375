from functools import lru_cache
from pydantic import AnyHttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


class Settings(BaseSettings):
    server_port: int = 8000
    log_level: str = "INFO"
    # Allow both localhost and 127.0.0.1 for local development
    allowed_origins: List[AnyHttpUrl] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]  # type: ignore

    # Storage: in-process dicts when memory_mode is on, otherwise SQL
    database_url: str = "sqlite+aiosqlite:///./chatrelay.db"
    memory_mode: bool = False

    # Quotas (0 disables the rate limit)
    rate_limit_seconds: int = 5
    max_conversations: int = 10
    max_messages: int = 20

    # Upstream calls
    connection_timeout_seconds: float = 20.0
    history_window: int = 10

    # Echo responder used for development
    test_service_enabled: bool = True
    echo_delay_ms_min: int = 50
    echo_delay_ms_max: int = 150

    # OpenAI-compatible chat completions
    openai_enabled: bool = False
    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_models: List[str] = ["gpt-4o-mini", "gpt-4o"]

    # Ollama (raw text stream)
    ollama_enabled: bool = False
    ollama_url: str = "http://localhost:11434/api/"
    ollama_models: List[str] = ["llama3"]
    stream_read_size: int = 64
    stream_read_delay_ms: int = 5

    # Shared secret for bearer JWTs issued by the front end
    nextauth_secret: Optional[str] = None

    # pydantic-settings v2 style config: load env from both ../.env (repo root) and .env
    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        env_file=("../.env", ".env"),
        extra="ignore",  # ignore env vars not defined as fields
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
