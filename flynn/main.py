"""Main FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flynn import __version__
from flynn.api.endpoints import router
from flynn.clients.anthropic import AnthropicClient, AnthropicConfig
from flynn.config import load_settings
from flynn.services.authorization import StoreAuthorizationService
from flynn.services.chat import ChatService
from flynn.storage.conversation_repo import ConversationRepository
from flynn.storage.database import Database
from flynn.storage.family_repo import FamilyRepository
from flynn.tools.registry import ToolExecutor, register_default_tools
from flynn.utils.logging import LogConfig, get_logger, setup_logging

settings = load_settings()
setup_logging(LogConfig(level=settings.log_level))

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open storage and build the per-process services."""
    current = load_settings()
    db = Database(current.database_path)
    await db.initialize()

    family_repo = FamilyRepository(db)
    tool_executor = ToolExecutor(tool_timeout_seconds=current.tool_timeout_seconds)
    register_default_tools(tool_executor, family_repo, StoreAuthorizationService(family_repo))

    model = None
    if current.model_configured:
        model = AnthropicClient(
            api_key=current.anthropic_api_key,
            config=AnthropicConfig(
                model=current.model, max_tokens=current.max_tokens, temperature=current.temperature
            ),
        )
    else:
        logger.warning("ANTHROPIC_API_KEY is not set; chat replies will use the fallback message")

    chat_service = ChatService(
        ConversationRepository(db),
        family_repo,
        tool_executor,
        model=model,
        max_turns=current.max_turns,
        model_timeout_seconds=current.model_timeout_seconds,
    )
    app.state.db = db
    app.state.tool_executor = tool_executor
    app.state.chat_service = chat_service
    logger.info(f"Flynn {__version__} started with tools: {', '.join(tool_executor.get_tool_names())}")

    yield

    await chat_service.wait_for_pending()
    await db.close()


# Create FastAPI application
app = FastAPI(
    title="Flynn Chat",
    description=(
        "Conversational AI assistant for families using AAC, with tool calling over "
        "children, therapy goals and notes, streamed as Server-Sent Events."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "Conversations",
            "description": "Create, list, read and delete caregiver conversations.",
        },
        {
            "name": "Chat",
            "description": "Send a message and stream the assistant's reply, including tool activity.",
        },
        {
            "name": "Health",
            "description": "Service health monitoring and status checks.",
        },
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("flynn.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
