"""
Content Engine Admin API

FastAPI app exposing AI cost reporting and job status.
"""

import logging
import sys
from datetime import datetime
from typing import Optional

from fastapi import FastAPI

from api.costs import router as costs_router
from api.jobs import router as jobs_router
from src import __version__
from src.cache import close_cache_backend, get_cache_backend
from src.costs import CostStack, build_cost_stack
from src.database import check_db_connection, init_db
from src.persistence import JobTracker
from src.utils.config import get_settings

# Configure logging to stdout
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
    force=True,
)
logger = logging.getLogger(__name__)

# Quiet down chatty loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_app(costs: Optional[CostStack] = None, tracker: Optional[JobTracker] = None) -> FastAPI:
    """
    Build the API app.

    Components not passed in are built from settings on startup.
    """
    app = FastAPI(
        title="Content Engine",
        description="Budget-governed AI content pipeline",
        version=__version__,
    )
    app.state.costs = costs
    app.state.tracker = tracker

    app.include_router(costs_router)
    app.include_router(jobs_router)

    @app.on_event("startup")
    async def startup_event():
        settings = get_settings()

        if app.state.costs is None:
            logger.info("Initializing database...")
            try:
                init_db()
                if not check_db_connection():
                    logger.warning("Database connection check failed - continuing anyway")
            except Exception as e:
                logger.error(f"Database initialization failed: {e}")

            cache = await get_cache_backend()
            app.state.costs = build_cost_stack(settings, cache)

        if app.state.tracker is None:
            app.state.tracker = JobTracker(settings.JOBS_STORAGE_PATH)

    @app.on_event("shutdown")
    async def shutdown_event():
        await close_cache_backend()

    @app.get("/api/health")
    async def health():
        """Health check including budget gate state."""
        report = await app.state.costs.governor.check_budget_status()
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "version": __version__,
            "active_jobs": app.state.tracker.get_active_jobs_count(),
            "can_make_requests": report.can_make_requests,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.app:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
