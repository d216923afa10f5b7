"""
StudyVault Backend — FastAPI Application Factory
==================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() registers middleware, exception handlers and routers;
       the lifespan builds the shared collaborators and stores them on
       app.state so routes receive them through dependencies.
Who:   uvicorn (`uvicorn studyvault.main:app`) and the API tests.

Application Architecture:
    ┌──────────────────────────────────────────────────────┐
    │                     FastAPI App                      │
    │  Middleware:   Request ID → Logging → GZip → CORS    │
    │  Routes:       /api/ai/*   /api/chat/*   /health     │
    │  app.state:    engine, http_client, store, registry, │
    │                error_handler, ai_service,            │
    │                chat_controllers                      │
    │  Exception handlers:                                 │
    │    Validation→400  NotFound→404  Database→500        │
    │    AIProviderError→400/429/502/503 by ErrorCode      │
    └──────────────────────────────────────────────────────┘
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from studyvault import __version__
from studyvault.config import settings
from studyvault.database import async_session_factory, engine as default_engine
from studyvault.exceptions import (
    AIProviderError,
    DatabaseError,
    ErrorCode,
    NotFoundError,
    StudyVaultError,
    ValidationError,
)
from studyvault.middleware.logging import RequestLoggingMiddleware
from studyvault.middleware.request_id import RequestIDMiddleware, request_id_var
from studyvault.routes import ai, chat, health
from studyvault.services.ai_service import AIService
from studyvault.services.chat_service import ChatControllerCache
from studyvault.services.error_handler import AIErrorHandler
from studyvault.services.registry import AIServiceRegistry
from studyvault.services.store import AIStore

logger = logging.getLogger(__name__)

# HTTP status per provider error code
AI_ERROR_STATUS = {
    ErrorCode.NO_CREDENTIAL: 400,
    ErrorCode.INVALID_REQUEST: 400,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.QUOTA_EXCEEDED: 429,
    ErrorCode.UNAVAILABLE: 503,
    ErrorCode.GENERIC: 502,
}


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════


def setup_logging() -> None:
    """Configure the root logger once at startup and quiet chatty libraries."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    # httpx logs full request URLs, which include Gemini's ?key= parameter
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════


def build_lifespan(
    engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
    transport: Optional[httpx.AsyncBaseTransport] = None,
):
    """
    Lifespan bound to a database engine and (optionally) an HTTP transport.

    Tests pass an in-memory sqlite engine and an httpx.MockTransport.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # ── Startup ───────────────────────────────────────────────────────
        setup_logging()
        logger.info("StudyVault backend %s starting up", __version__)

        http_client = httpx.AsyncClient(
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )
        store = AIStore(session_factory)
        registry = AIServiceRegistry(store, http_client)
        error_handler = AIErrorHandler()

        app.state.engine = engine
        app.state.http_client = http_client
        app.state.store = store
        app.state.registry = registry
        app.state.error_handler = error_handler
        app.state.ai_service = AIService(registry, error_handler, http_client=http_client)
        app.state.chat_controllers = ChatControllerCache()

        logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)

        yield

        # ── Shutdown ──────────────────────────────────────────────────────
        logger.info("StudyVault backend shutting down")
        for controller in list(app.state.chat_controllers.values()):
            try:
                await controller.close()
            except StudyVaultError as e:
                logger.warning("Failed to close chat session %s: %s", controller.session_id, e.message)
        app.state.chat_controllers.clear()
        await http_client.aclose()
        await engine.dispose()
        logger.info("Shutdown complete.")

    return lifespan


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════


def _error_body(error: str, message: str, **extra) -> dict:
    body = {"error": error, "message": message, "request_id": request_id_var.get("")}
    body.update({k: v for k, v in extra.items() if v is not None})
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map application exceptions to JSON error responses.

    Internal details (SQL, stack traces, upstream bodies) are logged only.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return JSONResponse(
            status_code=400,
            content=_error_body("validation_error", exc.message, details=exc.context),
        )

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content=_error_body("not_found", exc.message))

    @app.exception_handler(AIProviderError)
    async def handle_ai_provider_error(request: Request, exc: AIProviderError):
        status = AI_ERROR_STATUS[exc.code]
        logger.warning(
            "[%s] AI provider error %s from %s: %s",
            request_id_var.get(""),
            exc.code.value,
            exc.provider or "-",
            exc.message,
        )
        return JSONResponse(
            status_code=status,
            content=_error_body(
                exc.code.value.lower(),
                exc.message,
                details={"provider": exc.provider, "code": exc.code.value},
                requires_config=True if exc.code is ErrorCode.NO_CREDENTIAL else None,
            ),
        )

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error("[%s] Database error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content=_error_body("server_error", "An internal error occurred. Please try again later."),
        )

    @app.exception_handler(StudyVaultError)
    async def handle_app_error(request: Request, exc: StudyVaultError):
        logger.error("[%s] Application error: %s", request_id_var.get(""), exc.message)
        return JSONResponse(status_code=500, content=_error_body("server_error", exc.message))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content=_error_body(
                "internal_server_error",
                "An unexpected error occurred. Please try again or contact support.",
            ),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════


def create_app(
    engine: Optional[AsyncEngine] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    app = FastAPI(
        title="StudyVault AI Gateway",
        description=(
            "Provider-agnostic AI layer for the StudyVault study assistant: "
            "per-user provider configuration, note enhancement, quizzes and chat."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=build_lifespan(
            engine or default_engine,
            session_factory or async_session_factory,
            transport,
        ),
    )

    # Middleware executes in reverse order of addition
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(ai.router)
    app.include_router(chat.router)
    app.include_router(health.router)

    return app


app = create_app()
