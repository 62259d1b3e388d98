"""FastAPI application for starting and inspecting crawl runs."""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from fastapi import FastAPI

from app.api.runs import router as runs_router
from app.config import settings
from app.database import engine, init_models

logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create tables in development and dispose of the engine on shutdown."""
    logger.info(
        "Menu discovery service starting (env=%s, workers/run=%d, per-host=%d)",
        settings.app_env,
        settings.competitive_max_concurrency,
        settings.per_host_max_concurrent,
    )
    if settings.osm_user_agent.endswith("unknown-contact"):
        logger.warning(
            "OSM_USER_AGENT has no contact details; Nominatim may refuse requests"
        )

    # Development only; production databases are migrated separately
    if settings.app_env == "development":
        await init_models()
        logger.info("Crawl tables ready")

    yield

    logger.info("Shutting down, closing database engine")
    await engine.dispose()


app = FastAPI(
    title="Restaurant Menu Discovery",
    description="Find official websites and menus of restaurants in an area",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(runs_router)


@app.get("/")
async def index() -> dict[str, Any]:
    """Entry points of the API."""
    return {
        "service": app.title,
        "version": app.version,
        "endpoints": {
            "start_run": "POST /api/runs",
            "runs": "GET /api/runs",
            "run": "GET /api/runs/{run_id}",
            "restaurants": "GET /api/runs/{run_id}/restaurants",
            "checks": "GET /api/restaurants/{restaurant_id}/checks",
        },
    }


@app.get("/health")
async def health() -> dict[str, str]:
    """
    Health check endpoint.

    Returns:
        Status and environment name
    """
    return {"status": "healthy", "environment": settings.app_env}
