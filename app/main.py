"""
Barbershop Booking Bot API

FastAPI application entry point: WhatsApp webhook, health checks and the
idle-conversation sweep.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress
from datetime import timedelta
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.config import settings
from app.api.routes import health, webhook
from app.core.scheduling.maintenance import run_idle_sweeper
from app.core.scheduling.repository import SqlAlchemyBookingRepository
from app.infra.database import init_db, close_db
from app.infra.redis import RedisClient
from app.infra.whatsapp import close_whatsapp_client


def setup_logging() -> None:
    """Configure logging based on environment."""
    log_level = logging.DEBUG if settings.debug else logging.INFO
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # === STARTUP ===
    setup_logging()
    logger.info(f"Starting {settings.app_name} in {settings.app_env} mode")

    health.set_start_time()

    # Initialize database (only in development - use migrations in production)
    if settings.is_development:
        try:
            await init_db()
            logger.info("Database tables initialized")
        except Exception as e:
            logger.warning(f"Database init skipped: {e}")

    # Test Redis connection
    try:
        redis = await RedisClient.get_client()
        if redis:
            logger.info("Redis connection established")
        else:
            logger.warning("Redis unavailable - sender locks are per-process")
    except Exception as e:
        logger.warning(f"Redis connection failed: {e}")

    sweeper = None
    if settings.conversation_sweep_interval_seconds > 0:
        sweeper = asyncio.create_task(
            run_idle_sweeper(
                SqlAlchemyBookingRepository(),
                idle_timeout=timedelta(minutes=settings.conversation_idle_timeout_minutes),
                interval_seconds=settings.conversation_sweep_interval_seconds,
            )
        )

    logger.info(f"Application ready at http://{settings.host}:{settings.port}")

    yield

    # === SHUTDOWN ===
    logger.info("Shutting down application...")

    if sweeper is not None:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper

    await close_whatsapp_client()

    await RedisClient.close()
    logger.info("Redis connection closed")

    await close_db()
    logger.info("Database connections closed")

    logger.info("Shutdown complete")


app = FastAPI(
    title="Barbershop Booking Bot API",
    description="""
    WhatsApp booking assistant for the barbershop.

    Clients can check the location and price list, book an appointment
    with a barber, and cancel it with their booking code.
    """,
    version=health.APP_VERSION,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    logger.warning(f"Validation error: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation error",
            "detail": exc.errors(),
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.exception(f"Unhandled exception: {exc}")

    # Don't expose internal errors in production
    detail = str(exc) if settings.is_development else "Internal server error"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": detail,
        },
    )


@app.middleware("http")
async def request_timing_middleware(request: Request, call_next):
    """Log request duration in debug mode."""
    start_time = time.time()

    try:
        return await call_next(request)
    finally:
        if settings.debug:
            duration = time.time() - start_time
            logger.debug(
                f"{request.method} {request.url.path} "
                f"completed in {duration:.3f}s"
            )


app.include_router(health.router)
app.include_router(webhook.router)


@app.get("/", tags=["Root"])
async def root() -> dict:
    """
    Root endpoint.

    Returns basic API information.
    """
    return {
        "name": settings.app_name,
        "version": health.APP_VERSION,
        "status": "running",
        "environment": settings.app_env,
        "business": settings.business_name,
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
