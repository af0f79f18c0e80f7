"""TrainFit billing — FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from trainfit.api.v1.billing import router as billing_router
from trainfit.api.v1.notifications import router as notifications_router
from trainfit.api.v1.realtime import router as realtime_router
from trainfit.api.v1.trainer import router as trainer_router
from trainfit.api.v1.webhooks import router as webhooks_router
from trainfit.config import settings
from trainfit.ratelimit import create_counter_store
from trainfit.scheduler import create_scheduler

# Configure root logger so all trainfit.* loggers output to stderr (captured by Docker).
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler for startup and shutdown events."""
    # Startup
    app.state.counter_store = create_counter_store()
    scheduler = create_scheduler() if settings.scheduler_enabled else None
    if scheduler is not None:
        scheduler.start()
    yield
    # Shutdown — stop background jobs, then dispose engine connections
    if scheduler is not None:
        await scheduler.stop()
    await app.state.counter_store.close()
    from trainfit.database import engine

    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Subscription billing and payment reconciliation for the TrainFit coaching platform.",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(billing_router)
app.include_router(trainer_router)
app.include_router(notifications_router)
app.include_router(webhooks_router)
app.include_router(realtime_router)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "service": settings.app_name}


@app.get("/", tags=["root"])
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }
