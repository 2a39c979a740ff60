"""
Therapy Intake API

FastAPI application: chat intake, therapist search, booking and the admin
overview, plus health checks.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from uuid import uuid4

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.api.routes import admin, appointments, chat, health, therapists
from app.core.conversation.dispatch import get_orchestrator
from app.infra.calendar_sync import close_calendar_sync, get_calendar_sync
from app.infra.claude import ClaudeClient
from app.infra.database import check_db_health, close_db, init_db
from app.infra.redis import LockTimeoutError, RedisClient

API_VERSION = "1.0.0"


def setup_logging() -> None:
    """Configure logging from the DEBUG flag."""
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Quiet third-party loggers
    for name in ("uvicorn.access", "httpx", "anthropic"):
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup: create tables in development, check the collaborators and
    report which fallbacks are active. Shutdown: close every client.
    """
    setup_logging()
    logger.info(f"Starting {settings.app_name} in {settings.app_env} mode")
    health.set_start_time()

    # Schema is managed by migrations outside development
    if settings.is_development:
        try:
            await init_db()
            logger.info("Database tables initialized")
        except Exception as e:
            logger.warning(f"Database init skipped: {e}")

    if not await check_db_health():
        logger.error("Database unreachable at startup; requests will fail until it recovers")

    if await RedisClient.get_client() is None:
        logger.warning("Redis unavailable - session and booking locks are in-process only")

    if not ClaudeClient.is_configured():
        logger.warning("ANTHROPIC_API_KEY not set - rule-based extraction and template replies")

    if not get_calendar_sync().is_configured():
        logger.warning("Google OAuth client not set - bookings will carry a calendar sync warning")

    orchestrator = get_orchestrator()
    logger.info(f"Conversation strategy: {type(orchestrator).__name__}")

    yield

    logger.info("Shutting down...")
    await RedisClient.close()
    await close_calendar_sync()
    await close_db()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Therapy Intake API",
    description="""
    Conversational intake and booking assistant for a therapy practice.

    ## Features
    - Gathers the presenting problem, preferred schedule and insurance
    - Matches therapists by specialty and accepted insurance
    - Books sessions with double-booking protection
    - Mirrors bookings to the therapist's Google Calendar
    - Crisis messages always get hotline information first
    """,
    version=API_VERSION,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================================
# Error handlers
# ==================================


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Validation errors without non-serialisable context objects."""
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422 with a message the chat client can show as-is."""
    logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "success": False,
            "error": "Validation error",
            "message": "Some of the details in that request were missing or invalid.",
            "detail": jsonable_errors(exc),
        },
    )


@app.exception_handler(LockTimeoutError)
async def lock_timeout_handler(request: Request, exc: LockTimeoutError) -> JSONResponse:
    """A booking or message for the same key still holds the lock."""
    logger.warning(f"Lock busy on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "success": False,
            "error": "busy",
            "message": "I'm still finishing your previous request. Please try again in a moment.",
        },
        headers={"Retry-After": "2"},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Top-level catch: log it, answer conversationally."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": "Internal server error",
            "message": "I'm sorry, something went wrong on my side. Please try again in a moment.",
            # Never expose internals outside development
            "detail": str(exc) if settings.is_development else None,
        },
    )


@app.middleware("http")
async def request_lifecycle_middleware(request: Request, call_next):
    """Tag every response with a request id; log durations in debug mode."""
    request_id = request.headers.get("X-Request-ID") or str(uuid4())
    start_time = time.time()

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id

    if settings.debug:
        logger.debug(
            f"{request.method} {request.url.path} -> {response.status_code} "
            f"in {(time.time() - start_time) * 1000:.0f}ms [{request_id}]"
        )
    return response


# ==================================
# Routes
# ==================================

app.include_router(health.router)
app.include_router(chat.router)
app.include_router(therapists.router)
app.include_router(appointments.router)
app.include_router(admin.router)


@app.get("/", tags=["Root"])
async def root() -> dict:
    """Basic API information."""
    return {
        "name": settings.app_name,
        "version": API_VERSION,
        "status": "running",
        "environment": settings.app_env,
        "orchestrationMode": settings.orchestration_mode,
        "docs": "/docs" if settings.is_development else None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )
