"""
FastAPI main application entry point.

Architecture:
  Browser -> http://localhost:8000/api/...  -> chat API (SSE for streaming turns)

The lifespan loads the user's data (local SQLite first, then the cloud
copy if configured), builds the chat orchestrator around it and wires
debounced persistence to every state mutation.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from perplexsearch import __version__
from perplexsearch.chat.orchestrator import ChatOrchestrator
from perplexsearch.chat.state import AppState
from perplexsearch.chat.titler import AutoTitler
from perplexsearch.config import Settings, get_settings
from perplexsearch.errors import (
    ChatError,
    ConfigurationError,
    ConversationNotFoundError,
    FolderNotFoundError,
    SubmissionRejected,
)
from perplexsearch.llm.factory import CompletionDispatcher
from perplexsearch.routers import conversations, folders, messages
from perplexsearch.routers import settings as settings_router
from perplexsearch.storage.cloud_store import CloudStore
from perplexsearch.storage.local_store import LocalStore
from perplexsearch.storage.sync import PersistenceManager

logger = logging.getLogger(__name__)


# ============================================================
# Logging Configuration
# ============================================================
def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    # Request lines from httpx would leak query-string keys (Veo, Firebase auth)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_persistence(config: Settings) -> PersistenceManager:
    """Create the local store and, when configured, the cloud store."""
    local = LocalStore(config.sqlite_db_path, encryption_secret=config.encryption_key)
    cloud = None
    if config.cloud_store_url:
        cloud = CloudStore(
            config.cloud_store_url,
            auth_token=config.cloud_store_auth,
            encryption_secret=config.encryption_key,
        )
    return PersistenceManager(
        local,
        cloud,
        user_id=config.user_id,
        local_delay=config.local_save_delay,
        remote_delay=config.remote_save_delay,
    )


# ============================================================
# Error Mapping
# ============================================================
ERROR_STATUS = (
    (ConversationNotFoundError, 404),
    (FolderNotFoundError, 404),
    (SubmissionRejected, 409),
    (ConfigurationError, 400),
)


async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    status_code = 500
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break
    if status_code == 500:
        logger.error(f"Unhandled chat error on {request.url.path}: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def create_app(
    config: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Process settings (defaults to get_settings())
        transport: Optional httpx transport for every provider call
    """
    config = config or get_settings()
    configure_logging(config.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle application startup and shutdown events."""
        logger.info("Starting up chat application...")
        if config.encryption_key == "your-32-byte-encryption-key-here":
            logger.warning(
                "ENCRYPTION_KEY is still the default! Stored API keys are only "
                "obfuscated. Set a real secret in .env"
            )

        persistence = build_persistence(config)
        state = AppState(await persistence.load())
        persistence.attach(state)

        orchestrator = ChatOrchestrator(
            state,
            CompletionDispatcher(config, transport=transport),
            titler=AutoTitler(config, transport=transport),
            max_active_streams=config.max_active_streams,
        )
        app.state.chat_state = state
        app.state.orchestrator = orchestrator
        app.state.persistence = persistence
        logger.info(f"Active model: {state.settings.model}")

        yield  # Application runs here

        logger.info("Shutting down chat application...")
        await orchestrator.aclose()
        await persistence.close()

    app = FastAPI(
        title="PerplexSearch API",
        description="Multi-provider AI search chat with streaming answers and citations",
        version=__version__,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ChatError, chat_error_handler)

    # ============================================================
    # API Routes
    # ============================================================
    app.include_router(conversations.router, prefix="/api/conversations", tags=["Conversations"])
    app.include_router(folders.router, prefix="/api/folders", tags=["Folders"])
    app.include_router(messages.router, prefix="/api/messages", tags=["Messages"])
    app.include_router(settings_router.router, prefix="/api/settings", tags=["Settings"])

    @app.get("/api/health")
    async def health_check() -> dict:
        """Liveness probe."""
        return {"status": "healthy", "version": __version__}

    return app


def main() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "perplexsearch.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


# ============================================================
# Run with Uvicorn (for development)
# ============================================================
if __name__ == "__main__":
    main()
