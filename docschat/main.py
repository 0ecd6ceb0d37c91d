import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles
from starlette.middleware.base import BaseHTTPMiddleware

from docschat.config import load_settings
from docschat.context import AppContext
from docschat.routers.chat import create_chat_router
from docschat.routers.meetings import create_meetings_router
from docschat.services.broadcast import BroadcastHub
from docschat.services.conversation_store import ConversationStore
from docschat.services.llm import LLMProvider, OllamaProvider
from docschat.services.logging_setup import configure_logging
from docschat.services.meeting_store import MeetingStore
from docschat.services.relay import RealtimeRelay

VERSION = "0.1.0"


def build_context(cwd: Optional[str] = None) -> AppContext:
    """Resolve paths and settings for a server started from cwd."""
    cwd = cwd or os.getcwd()
    data_dir = os.path.join(cwd, "data")
    os.makedirs(data_dir, exist_ok=True)
    config_path = os.path.join(data_dir, "config.json")
    return AppContext(
        cwd=cwd,
        data_dir=data_dir,
        config_path=config_path,
        settings=load_settings(config_path),
    )


def build_provider(ctx: AppContext) -> OllamaProvider:
    settings = ctx.settings
    return OllamaProvider(
        base_url=settings.ollama_url,
        model=settings.model,
        timeout=settings.request_timeout,
    )


def create_app(
    ctx: Optional[AppContext] = None,
    *,
    provider: Optional[LLMProvider] = None,
    meeting_store: Optional[MeetingStore] = None,
) -> FastAPI:
    if ctx is None:
        ctx = build_context()
        configure_logging(ctx.logs_dir)
    logger = logging.getLogger("docschat.boot")
    logger.info("Boot: starting create_app")
    ctx.ensure_dirs()
    settings = ctx.settings
    logger.info(
        "Boot: data_dir=%s database=%s ollama_url=%s model=%s",
        ctx.data_dir, ctx.database_path, settings.ollama_url, settings.model,
    )

    owns_store = meeting_store is None
    if meeting_store is None:
        meeting_store = MeetingStore(ctx.database_path)
        logger.info("Boot: meeting_store ready")
    if provider is None:
        provider = build_provider(ctx)

    conversations = ConversationStore(
        max_conversations=settings.max_conversations,
        idle_ttl=settings.conversation_ttl,
    )
    hub = BroadcastHub()
    relay = RealtimeRelay(
        meeting_store,
        conversations,
        provider,
        hub,
        stream_timeout=settings.stream_timeout,
        error_frames=settings.error_frames,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Boot: conversation store started")
        yield
        conversations.clear()
        if owns_store:
            meeting_store.close()
        logger.info("Shutdown complete")

    app = FastAPI(title="DocsChat", version=VERSION, lifespan=lifespan)
    app.state.version = VERSION
    app.state.ctx = ctx
    app.state.meeting_store = meeting_store
    app.state.conversations = conversations
    app.state.hub = hub
    app.state.relay = relay

    app.include_router(create_meetings_router(meeting_store))
    logger.info("Boot: meetings router mounted")
    app.include_router(create_chat_router(relay, hub))
    logger.info("Boot: chat router mounted")

    class NoCacheMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            response = await call_next(request)
            path = request.url.path
            if path.endswith(('.html', '.js', '.css')) or path == '/':
                response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
                response.headers["Pragma"] = "no-cache"
                response.headers["Expires"] = "0"
            return response

    app.add_middleware(NoCacheMiddleware)

    @app.get("/")
    def root():
        index_path = os.path.join(ctx.static_dir, "index.html")
        if os.path.exists(index_path):
            return FileResponse(index_path)
        return {"message": "DocsChat API running", "version": app.state.version}

    @app.get("/api/health")
    def health() -> dict:
        return {"status": "ok", "version": app.state.version}

    if os.path.exists(ctx.static_dir):
        app.mount("/static", StaticFiles(directory=ctx.static_dir), name="static")
        logger.info("Boot: static mounted at /static")
    else:
        logger.warning("Boot: static directory missing=%s", ctx.static_dir)

    logger.info("Boot: create_app complete")
    return app
