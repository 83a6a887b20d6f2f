"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from wiki_chat.api.v1.chat_router import router as chat_router
from wiki_chat.api.v1.session_router import router as session_router
from wiki_chat.core.config import settings
from wiki_chat.core.database import Base, engine
from wiki_chat.core.exceptions import (
    AppException,
    app_exception_handler,
    validation_exception_handler,
)
from wiki_chat.core.logging_config import configure_logging
from wiki_chat.core.middleware import AuthMiddleware
from wiki_chat.core.rate_limit import limiter
from wiki_chat.schemas.response_schema import ApiResponse, success_response

configure_logging(settings.app)
logger = structlog.get_logger()

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Log the effective configuration; create tables in development."""
    knowledge = settings.knowledge
    logger.info(
        "Starting wiki assistant",
        environment=settings.app.env,
        llm_provider=settings.llm.provider,
        llm_model=settings.llm.model,
        api_key=settings.llm.masked_api_key,
        temperature=settings.llm.temperature,
        max_tokens=settings.llm.max_tokens,
        knowledge_remote=knowledge.uses_remote_content,
        knowledge_file=str(knowledge.articles_path) if knowledge.articles_path else None,
    )
    if settings.app.is_development:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()
    logger.info("Wiki assistant stopped")


async def rate_limit_exceeded_handler(
    request: Request, exc: RateLimitExceeded
) -> JSONResponse:
    """Reject over-limit chat traffic in the common error shape."""
    logger.warning(
        "Rate limit exceeded",
        operation=f"{request.method} {request.url.path}",
        code="RATE_LIMIT_EXCEEDED",
        status=429,
        limit=str(exc.detail),
    )
    return JSONResponse(
        status_code=429,
        content={
            "status": 429,
            "message": "Too many messages. Please wait a moment before trying again.",
            "code": "RATE_LIMIT_EXCEEDED",
        },
    )


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.app.name,
        description="Wiki assistant chat service - retrieval-grounded answers over the campus wiki",
        version=VERSION,
        lifespan=lifespan,
        debug=settings.app.debug,
    )
    application.state.limiter = limiter

    application.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
    application.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)  # type: ignore[arg-type]
    application.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]

    # Last added runs first: CORS -> Auth -> rate limit -> routes
    application.add_middleware(SlowAPIMiddleware)
    application.add_middleware(AuthMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.app.is_development else list(settings.app.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    application.include_router(chat_router)
    application.include_router(session_router)
    return application


app = create_app()


@app.get("/health", response_model=ApiResponse[dict])
async def health_check() -> dict:
    """Liveness check."""
    return success_response({"status": "healthy"})


@app.get("/", response_model=ApiResponse[dict])
async def root() -> dict:
    return success_response(
        {"app": settings.app.name, "version": VERSION, "docs": "/docs"}
    )
