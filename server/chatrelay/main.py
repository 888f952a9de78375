import logging
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

import httpx
import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, get_settings
from .api.v1.settings import router as settings_router
from .api.v1.chat import router as chat_router
from .api.v1.conversations import router as conversations_router
from .core.conversations import ConversationService
from .core.errors import ChatRelayError
from .core.logging import setup_logging
from .db.session import init_db
from .db.store import ConversationStore, SQLConversationStore, build_store
from .providers.router import BackendRegistry

logger = logging.getLogger(__name__)


def error_response(exc: ChatRelayError) -> JSONResponse:
    data = {"status": exc.status}
    data.update(exc.extra)
    return JSONResponse(
        status_code=exc.status,
        content={"code": exc.code, "message": exc.message, "data": data},
        headers=exc.headers(),
    )


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[ConversationStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    settings = settings or get_settings()
    # Setup logging early
    setup_logging(settings.log_level)
    store = store if store is not None else build_store(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if isinstance(store, SQLConversationStore):
            # Ensure SQL tables exist
            await init_db(store.engine)
        logger.info("chatrelay ready store=%s", type(store).__name__)
        yield
        if isinstance(store, SQLConversationStore):
            await store.engine.dispose()

    app = FastAPI(title="ChatRelay Server", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.conversations = ConversationService(
        store, BackendRegistry(settings, transport=transport), settings, clock=clock
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(o).rstrip("/") for o in settings.allowed_origins],
        # Robust local dev: allow both localhost and 127.0.0.1 on port 3000 via regex
        allow_origin_regex=r"https?://(localhost|127\.0\.0\.1):3000",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Retry-After"],
    )

    @app.exception_handler(ChatRelayError)
    async def _chatrelay_error(request: Request, exc: ChatRelayError) -> JSONResponse:
        return error_response(exc)

    # Mount API v1
    api_v1 = APIRouter()
    api_v1.include_router(settings_router, prefix="/v1")
    api_v1.include_router(chat_router, prefix="/v1")
    api_v1.include_router(conversations_router, prefix="/v1")
    app.include_router(api_v1, prefix="/api")

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    @app.get("/")
    def root():
        return {"service": "chatrelay", "version": "0.1.0"}

    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run("chatrelay.main:app", host="0.0.0.0", port=settings.server_port, log_level=settings.log_level.lower())
