"""
Washer/Dryer Rental Booking API - Main Application Entry Point

- Eight-step booking wizard driven by a status state machine
- Capacity-checked delivery slot holds under serializable isolation
- Payment webhooks recorded once and processed in the background
- Structured logging with request correlation
"""

import asyncio
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rental_booking.api.middleware import RequestLoggingMiddleware
from rental_booking.api.router import api_router
from rental_booking.core.config import get_settings
from rental_booking.core.errors import AppError, RateLimitedError
from rental_booking.core.logging import get_logger, setup_logging
from rental_booking.core.metrics import metrics_endpoint
from rental_booking.db.base import Base
from rental_booking.db.session import AsyncSessionLocal, engine
from rental_booking.infrastructure.redis_client import close_redis, redis_status
from rental_booking.services.interfaces.memory_task_queue import InMemoryTaskQueue
from rental_booking.services.strategy_factory import (
    build_payment_provider,
    build_rate_limiter,
    build_task_queue,
)
from rental_booking.worker import WORKER_FUNCTIONS, run_sweeps

import rental_booking.models  # noqa: F401  registers tables on Base.metadata

settings = get_settings()
logger = get_logger(__name__)

MEMORY_QUEUE_POLL_SECONDS = 1.0
MEMORY_SWEEP_SECONDS = 60.0


async def _drain_memory_queue(app: FastAPI) -> None:
    """Run in-process jobs and the periodic sweeps when no worker is attached."""
    ctx = {
        "session_factory": AsyncSessionLocal,
        "payment_provider": app.state.payment_provider,
        "task_queue": app.state.task_queue,
    }
    loop = asyncio.get_running_loop()
    next_sweep = loop.time()
    while True:
        if loop.time() >= next_sweep:
            await run_sweeps(ctx)
            next_sweep = loop.time() + MEMORY_SWEEP_SECONDS
        await app.state.task_queue.run_pending(WORKER_FUNCTIONS, ctx)
        await asyncio.sleep(MEMORY_QUEUE_POLL_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )

    if settings.DB_CREATE_ALL:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    app.state.task_queue = await build_task_queue()
    app.state.rate_limiter = await build_rate_limiter()
    app.state.payment_provider = build_payment_provider()

    drain_task = None
    if isinstance(app.state.task_queue, InMemoryTaskQueue):
        drain_task = asyncio.create_task(_drain_memory_queue(app))

    yield

    if drain_task is not None:
        drain_task.cancel()
        with suppress(asyncio.CancelledError):
            await drain_task
    await app.state.task_queue.close()
    await close_redis()
    await engine.dispose()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Washer/dryer rental booking API with capacity-safe delivery scheduling",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS: the booking cookie needs credentials, so origins are explicit
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.APP_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(api_router)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    if exc.status_code >= 500:
        logger.error("request_error", error=exc.message, code=exc.code, status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "redis": await redis_status(),
        "task_queue": settings.TASK_QUEUE_BACKEND,
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
