"""
FastAPI application factory and configuration.

This module creates the FastAPI application instance and manages
lifespan events: database pool, migrations, the provisioning service
graph, crash recovery of in-flight runs and the lifecycle scheduler thread.
"""

import logging
import threading
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from psycopg_pool import ConnectionPool

from src.adapters.repository.postgres import run_migrations
from src.api.dependencies import build_services, get_pool
from src.api.v1 import router as v1_router
from src.config.settings import get_settings

logger = logging.getLogger(__name__)

# OpenAPI tags for documentation grouping
tags_metadata = [
    {
        "name": "v1",
        "description": "Domain provisioning and lifecycle API v1 - Fulfil orders, "
        "track runs, quote and pay domain recovery",
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    FastAPI lifespan context manager.

    Manages application startup and shutdown:
    - Creates database connection pool and runs migrations
    - Wires the service graph and re-executes runs left pending
    - Starts the lifecycle scheduler thread when enabled
    - Stops the scheduler, executors and pool on shutdown
    """
    settings = get_settings()

    logger.info("Starting application...")
    logger.info("Connecting to database...")

    # Create connection pool with explicit sizing
    pool = ConnectionPool(
        conninfo=settings.database_url,
        min_size=settings.pool_min_size,
        max_size=settings.pool_max_size,
    )

    logger.info("Running database migrations...")
    run_migrations(pool)

    services = build_services(settings, pool)
    app.state.pool = pool
    app.state.services = services

    recovered = services.provisioning.recover_in_flight()
    if recovered:
        logger.info("Resumed %d in-flight provisioning run(s)", len(recovered))

    stop_event = threading.Event()
    scheduler_thread = None
    if settings.scheduler_enabled:
        scheduler_thread = threading.Thread(
            target=services.scheduler.run_forever,
            args=(stop_event, settings.scheduler_interval_seconds),
            name="lifecycle-scheduler",
            daemon=True,
        )
        scheduler_thread.start()
    app.state.scheduler_thread = scheduler_thread

    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    stop_event.set()
    if scheduler_thread is not None:
        scheduler_thread.join(timeout=5)
    services.shutdown()
    pool.close()
    logger.info("Database connection pool closed")


app = FastAPI(
    title="domain-lifecycle",
    description="Custom domain provisioning saga and post-expiry lifecycle management",
    version="0.1.0",
    openapi_tags=tags_metadata,
    lifespan=lifespan,
)

# Include v1 API routes
app.include_router(v1_router, prefix="/v1")


@app.get("/health")
async def health_check(request: Request, pool: ConnectionPool = Depends(get_pool)) -> dict[str, str]:
    """
    Health check with database validation and scheduler state.

    Raises exception if database connection fails.
    """
    with pool.connection() as conn:
        conn.execute("SELECT 1")

    thread = getattr(request.app.state, "scheduler_thread", None)
    if thread is None:
        scheduler = "disabled"
    else:
        scheduler = "running" if thread.is_alive() else "stopped"
    return {"status": "healthy", "scheduler": scheduler}
