"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.api.runs import get_run_executor
from app.config import Settings
from app.database import get_session_factory
from app.main import app
from app.models import Base
from scraper.http import HttpFetcher
from scraper.limiter import PerHostLimiter
from scraper.models import RunOptions, RunStats

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
async def session_factory(tmp_path: Path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory bound to a fresh SQLite file per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def test_settings() -> Settings:
    """Settings with every politeness delay switched off and no paid search."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        osm_user_agent="menu-discovery-tests/1.0",
        http_timeout_ms=2_000,
        competitive_max_concurrency=3,
        place_delay_ms=0,
        fallback_search_rate_rps=1_000.0,
        fallback_search_jitter_ms=0,
        fallback_search_block_backoff_s=0.0,
        search_candidate_delay_ms=0,
        fallback_tlds=".nl,.com",
        google_api_key="",
        google_cse_id="",
        serpapi_key="",
    )


@pytest.fixture
async def make_fetcher() -> AsyncGenerator[Callable[..., HttpFetcher], None]:
    """Build :class:`HttpFetcher` instances backed by ``httpx.MockTransport``."""
    fetchers: list[HttpFetcher] = []

    def factory(handler: Handler, *, per_host: int = 2) -> HttpFetcher:
        fetcher = HttpFetcher(
            user_agent="menu-discovery-tests/1.0",
            timeout=2.0,
            limiter=PerHostLimiter(per_host),
            transport=httpx.MockTransport(handler),
        )
        fetchers.append(fetcher)
        return fetcher

    yield factory
    for fetcher in fetchers:
        await fetcher.aclose()


@pytest.fixture
def executed_runs() -> list[tuple[str, RunOptions]]:
    """Runs handed to the background executor by the API."""
    return []


@pytest.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    executed_runs: list[tuple[str, RunOptions]],
) -> AsyncGenerator[AsyncClient, None]:
    """Provide test client with overridden session factory and run executor."""

    async def record_run(run_id: str, options: RunOptions) -> RunStats:
        executed_runs.append((run_id, options))
        return RunStats()

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_run_executor] = lambda: record_run

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()
