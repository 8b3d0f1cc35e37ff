from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from kataba.api.router import api_router
from kataba.config import settings
from kataba.core.database import close_db, init_db
from kataba.core.exceptions import KatabaError, kataba_error_handler, request_validation_handler
from kataba.core.middleware import AuthMiddleware, RequestLoggingMiddleware
from kataba.services.completion.openai_client import OpenAICompletionProvider
from kataba.services.conversations import SQLConversationStore
from kataba.services.persistence import BackgroundSaver
from kataba.services.users import UserService

_NAME_TO_LEVEL = {
    "debug": 10,
    "info": 20,
    "warning": 30,
    "warn": 30,
    "error": 40,
    "critical": 50,
}

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        _NAME_TO_LEVEL.get(settings.kataba_log_level.lower(), 20)
    ),
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    await init_db()

    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=settings.kataba_http_connect_timeout,
            read=settings.kataba_completion_timeout,
            write=5.0,
            pool=5.0,
        )
    )
    provider = OpenAICompletionProvider.from_settings(http_client=http_client)
    if not provider.is_configured:
        logger.error("openai_api_key_missing", hint="Set OPENAI_API_KEY; /chat will answer 500 until then")

    app.state.completion_provider = provider
    app.state.conversation_store = SQLConversationStore()
    app.state.user_service = UserService()
    app.state.background_saver = BackgroundSaver()

    logger.info(
        "kataba_backend_starting",
        completion_url=settings.openai_base_url,
        model=settings.openai_model,
        guest_max_messages=settings.kataba_guest_max_messages,
    )
    yield

    # Let in-flight conversation saves finish before the engine goes away
    await app.state.background_saver.drain()
    await provider.close()
    await close_db()
    logger.info("kataba_backend_stopping")


app = FastAPI(
    title="Kataba Backend",
    description="Conversational therapy assistant: chat, guest quota and conversation history",
    version="0.1.0",
    lifespan=lifespan,
)

# Exception handlers
app.add_exception_handler(KatabaError, kataba_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)

# Middleware (Starlette: last-added = outermost. Execution order top to bottom.)
# 1. RequestLogging (outermost)
# 2. CORS, handles preflight before auth
# 3. Auth, resolves the Bearer token into request.state.user (innermost)
app.add_middleware(AuthMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.kataba_cors_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

# Routes
app.include_router(api_router)


@app.get("/")
async def root():
    return {"service": "kataba-backend", "version": "0.1.0"}
