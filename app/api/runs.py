"""Crawl run API endpoints."""

import logging
from collections.abc import Awaitable, Callable
from functools import partial

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.database import get_session_factory
from app.repositories import CheckRepository, CrawlRunRepository, RestaurantRepository
from app.schemas.crawl import (
    CrawlRunResponse,
    ExtRestaurantResponse,
    RestaurantCheckResponse,
    RunCreateRequest,
)
from app.services.ingest import execute_run
from scraper.models import RunOptions, RunStats

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["runs"])

RunExecutor = Callable[[str, RunOptions], Awaitable[RunStats]]


def get_run_executor(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> RunExecutor:
    """Callable that executes an already created run in the background."""
    return partial(execute_run, session_factory=session_factory, settings=settings)


@router.post(
    "/runs",
    response_model=CrawlRunResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_run(
    request: RunCreateRequest,
    background_tasks: BackgroundTasks,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    executor: RunExecutor = Depends(get_run_executor),
) -> CrawlRunResponse:
    """
    Start a crawl run for a location.

    The run row is created immediately; discovery continues as a background
    task, so poll ``GET /api/runs/{run_id}`` for progress.
    """
    run = await CrawlRunRepository(session_factory).create(request.location)
    options = RunOptions(
        location=request.location,
        max_concurrency=request.max_concurrency,
        http_timeout_ms=request.http_timeout_ms,
    )
    background_tasks.add_task(executor, run.id, options)
    logger.info("Accepted crawl run %s for %r", run.id, request.location)
    return CrawlRunResponse.model_validate(run)


@router.get("/runs", response_model=list[CrawlRunResponse])
async def list_runs(
    limit: int = 20,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> list[CrawlRunResponse]:
    runs = await CrawlRunRepository(session_factory).list_recent(limit=limit)
    return [CrawlRunResponse.model_validate(r) for r in runs]


@router.get("/runs/{run_id}", response_model=CrawlRunResponse)
async def get_run(
    run_id: str,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> CrawlRunResponse:
    run = await CrawlRunRepository(session_factory).get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Crawl run {run_id} not found")
    return CrawlRunResponse.model_validate(run)


@router.get("/runs/{run_id}/restaurants", response_model=list[ExtRestaurantResponse])
async def list_run_restaurants(
    run_id: str,
    with_website: bool = False,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> list[ExtRestaurantResponse]:
    if await CrawlRunRepository(session_factory).get(run_id) is None:
        raise HTTPException(status_code=404, detail=f"Crawl run {run_id} not found")
    rows = await RestaurantRepository(session_factory).list_for_run(
        run_id, only_with_website=with_website
    )
    return [ExtRestaurantResponse.model_validate(r) for r in rows]


@router.get(
    "/restaurants/{restaurant_id}/checks",
    response_model=list[RestaurantCheckResponse],
)
async def list_restaurant_checks(
    restaurant_id: str,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> list[RestaurantCheckResponse]:
    if await RestaurantRepository(session_factory).get(restaurant_id) is None:
        raise HTTPException(
            status_code=404, detail=f"Restaurant {restaurant_id} not found"
        )
    checks = await CheckRepository(session_factory).list_for_restaurant(restaurant_id)
    return [RestaurantCheckResponse.model_validate(c) for c in checks]
