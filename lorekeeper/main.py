"""Main FastAPI application."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lorekeeper import __version__
from lorekeeper.api.endpoints import router
from lorekeeper.clients.anthropic import AnthropicClient, AnthropicConfig
from lorekeeper.clients.backend import DataBackend, HttpBackend, InMemoryBackend
from lorekeeper.config import Settings, load_settings
from lorekeeper.services.conversation import ConversationService
from lorekeeper.services.session_manager import InMemorySessionManager
from lorekeeper.utils.logging import LogConfig, get_logger, setup_logging

logger = get_logger(__name__)


def build_backend(settings: Settings) -> DataBackend:
    if settings.backend_url:
        logger.info(f"Using HTTP data backend at {settings.backend_url}")
        return HttpBackend(settings.backend_url)
    logger.warning("LOREKEEPER_BACKEND_URL not set, using an empty in-memory data backend")
    return InMemoryBackend()


def build_conversation_service(settings: Settings, backend: DataBackend) -> ConversationService:
    client = AnthropicClient(api_key=settings.anthropic_api_key, config=AnthropicConfig(model=settings.model))
    return ConversationService(client, backend, max_iterations=settings.max_iterations)


def create_app(
    settings: Settings | None = None,
    *,
    conversation_service: ConversationService | None = None,
    session_manager: InMemorySessionManager | None = None,
) -> FastAPI:
    """Build the API application.

    Services passed in are used as-is; otherwise they are built from settings when the app starts.
    """
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        backend = None
        if getattr(app.state, "conversation_service", None) is None:
            backend = build_backend(settings)
            app.state.conversation_service = build_conversation_service(settings, backend)
        logger.info(f"Lorekeeper {__version__} started")
        yield
        if isinstance(backend, HttpBackend):
            await backend.aclose()

    app = FastAPI(
        title="Lorekeeper",
        description=(
            "A tabletop RPG campaign assistant: an agent that researches campaign data with tools, "
            "streams its answers and proposes changes for the Game Master to review."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
        openapi_tags=[
            {"name": "Sessions", "description": "Create and inspect campaign conversations."},
            {
                "name": "Conversation",
                "description": "Send messages to the assistant, stream its progress and cancel runs.",
            },
            {"name": "Proposals", "description": "Review, accept or reject changes the assistant proposed."},
            {"name": "Health", "description": "Service health monitoring and status checks."},
        ],
    )

    app.state.settings = settings
    app.state.session_manager = session_manager or InMemorySessionManager(settings.session_timeout_minutes)
    app.state.conversation_service = conversation_service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    return app


_settings = load_settings()
setup_logging(LogConfig(level=_settings.log_level))
app = create_app(_settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("lorekeeper.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
