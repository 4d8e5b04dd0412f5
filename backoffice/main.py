"""
FastAPI application entry point.

Creates the app, wires CORS and the import/job/pricing routers, and owns the
lifecycle of the shared import worker pool.
"""
import logging
import os
from collections import Counter
from datetime import datetime
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from .core.config import settings
from .core.logging_config import configure_logging

from .api.routers import imports, jobs, pricing
from .api.dependencies import get_store, get_tracker, shutdown_tracker
from .domain.imports.jobs import ImportJobTracker

configure_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create missing target tables on startup; drain the worker pool on shutdown."""
    if os.getenv("SKIP_DB_INIT") == "1":
        logger.info("SKIP_DB_INIT=1 detected; skipping database bootstrap during startup")
    else:
        try:
            get_store().ensure_tables()
        except Exception:
            logger.exception("Failed to initialize import target tables; the application cannot start")
            raise

    yield

    logger.info("Waiting for running imports to finish before shutdown")
    shutdown_tracker()


app = FastAPI(
    title="Back Office Import API",
    version="1.0.0",
    description="Bulk spreadsheet imports and sale price quotes for retail back-office data",
    lifespan=lifespan
)

allowed_origins = [origin.strip() for origin in settings.cors_allowed_origins.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(imports.router)
app.include_router(jobs.router)
app.include_router(pricing.router)


@app.get("/")
async def root():
    return {
        "message": "Back Office Import API",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check(tracker: ImportJobTracker = Depends(get_tracker)):
    """Liveness probe; also reports how many import jobs are in each state."""
    job_counts = Counter(job.status for job in tracker.list_jobs())
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "service": "backoffice-api",
        "import_jobs": dict(job_counts),
    }
