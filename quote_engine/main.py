"""Quote Engine API -- Main Application Entry Point

Creates the FastAPI application, configures CORS middleware, installs the
engine error handlers, registers all API route modules under the /api/v1
prefix, and runs the background jobs (delivery worker, expiry sweep,
notification dispatch) for the lifetime of the process.

Run with::

    uvicorn quote_engine.main:app --host 0.0.0.0 --port 8000 --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from quote_engine.api.errors import install_error_handlers
from quote_engine.core.config import settings
from quote_engine.jobs.scheduler import start_background_jobs, stop_background_jobs

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan: startup / shutdown hooks
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Startup:
      - Configure logging and start the recurring jobs.

    Shutdown:
      - Cancel the recurring jobs and dispose of the connection pool.
    """
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    if settings.run_background_workers:
        await start_background_jobs()
    else:
        logger.info("Background workers disabled by configuration")

    yield

    await stop_background_jobs()

    from quote_engine.api.deps import engine

    await engine.dispose()


# ---------------------------------------------------------------------------
# Application instance
# ---------------------------------------------------------------------------

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# CORS middleware
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

install_error_handlers(app)


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health", tags=["Health"])
async def health():
    """Lightweight health check for load balancers and readiness checks."""
    return {"status": "ok", "version": settings.app_version}


# ---------------------------------------------------------------------------
# Register API route modules
# ---------------------------------------------------------------------------

from quote_engine.api.routes import (  # noqa: E402
    notifications,
    part_requests,
    queue,
    seller,
)

_prefix = settings.api_v1_prefix

app.include_router(part_requests.router, prefix=_prefix)
app.include_router(seller.router, prefix=_prefix)
app.include_router(notifications.router, prefix=_prefix)
app.include_router(queue.router, prefix=_prefix)
