"""Repository classes for crawl runs, external restaurants and their checks.

Each method opens its own short-lived session from the injected factory, so
concurrent workers never share a session.
"""

import logging
import secrets
import time
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import desc, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models import CrawlRun, ExtRestaurant, RestaurantCheck
from app.models.restaurant import utc_now

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


def new_run_id() -> str:
    """``cr_<epoch ms>_<random>``: sortable by start time, unique per process."""
    return f"cr_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


class CrawlRunRepository:
    """Create and finalise :class:`CrawlRun` rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(self, location_query: str, provider: str = "overpass") -> CrawlRun:
        run = CrawlRun(
            id=new_run_id(),
            location_query=location_query,
            provider=provider,
            status="running",
            stats={},
            started_at=utc_now(),
        )
        async with self.session_factory() as session:
            session.add(run)
            await session.commit()
        return run

    async def get(self, run_id: str) -> Optional[CrawlRun]:
        async with self.session_factory() as session:
            return await session.get(CrawlRun, run_id)

    async def list_recent(self, limit: int = 20) -> list[CrawlRun]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(CrawlRun).order_by(desc(CrawlRun.started_at)).limit(limit)
            )
            return list(result.scalars().all())

    async def update_area(
        self, run_id: str, area_id: Optional[str], bbox: Optional[list[float]]
    ) -> None:
        await self._update(run_id, area_id=area_id, bbox=bbox)

    async def mark_completed(self, run_id: str, stats: dict[str, Any]) -> None:
        await self._update(
            run_id, status="completed", stats=stats, completed_at=utc_now()
        )

    async def mark_failed(
        self, run_id: str, error_message: str, stats: Optional[dict[str, Any]] = None
    ) -> None:
        values: dict[str, Any] = {
            "status": "failed",
            "error_message": error_message,
            "completed_at": utc_now(),
        }
        if stats is not None:
            values["stats"] = stats
        await self._update(run_id, **values)

    async def _update(self, run_id: str, **values: Any) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(CrawlRun).where(CrawlRun.id == run_id).values(**values)
            )
            await session.commit()


class RestaurantRepository:
    """Idempotent writes and lookups for :class:`ExtRestaurant` rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def upsert(self, values: dict[str, Any]) -> None:
        """
        Insert a restaurant row, or update it when the id already exists.

        Only the columns present in *values* (plus ``updated_at``) are
        overwritten on conflict, so a partial update never clears outcome
        fields written earlier.

        Args:
            values: Column values; must include ``id`` and, for a first
                insert, every non-nullable identity column.

        Raises:
            ValueError: When the configured database is neither SQLite nor
                PostgreSQL.
        """
        values = {**values, "updated_at": utc_now()}
        async with self.session_factory() as session:
            bind = session.get_bind()
            insert = _DIALECT_INSERTS.get(bind.dialect.name)
            if insert is None:
                raise ValueError(
                    f"DATABASE_URL {bind.url.render_as_string(hide_password=True)!r} uses "
                    f"dialect {bind.dialect.name!r}; restaurant upserts need one of "
                    f"{sorted(_DIALECT_INSERTS)}"
                )
            stmt = insert(ExtRestaurant).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[ExtRestaurant.id],
                set_={key: stmt.excluded[key] for key in values if key != "id"},
            )
            await session.execute(stmt)
            await session.commit()

    async def get(self, restaurant_id: str) -> Optional[ExtRestaurant]:
        async with self.session_factory() as session:
            return await session.get(ExtRestaurant, restaurant_id)

    async def list_for_run(
        self, run_id: str, *, only_with_website: bool = False
    ) -> list[ExtRestaurant]:
        query = select(ExtRestaurant).where(ExtRestaurant.run_id == run_id)
        if only_with_website:
            query = query.where(ExtRestaurant.website_is_valid.is_(True))
        async with self.session_factory() as session:
            result = await session.execute(query.order_by(ExtRestaurant.name))
            return list(result.scalars().all())

    async def find_validated_website(
        self, name: str, city: Optional[str], run_id: Optional[str] = None
    ) -> Optional[ExtRestaurant]:
        """
        Most recently validated restaurant with the same name and city.

        Args:
            name: Exact restaurant name.
            city: Exact ``addr:city`` value; ``None`` matches rows without one.
            run_id: Restrict the lookup to one run; ``None`` searches all runs.
        """
        query = select(ExtRestaurant).where(
            ExtRestaurant.name == name,
            ExtRestaurant.website_is_valid.is_(True),
            ExtRestaurant.website_url.is_not(None),
        )
        if city:
            query = query.where(ExtRestaurant.addr_city == city)
        else:
            query = query.where(ExtRestaurant.addr_city.is_(None))
        if run_id is not None:
            query = query.where(ExtRestaurant.run_id == run_id)
        query = query.order_by(desc(ExtRestaurant.website_last_checked_at)).limit(1)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return result.scalars().first()


class CheckRepository:
    """Insert-only audit trail of validation attempts."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def add(
        self,
        restaurant_id: str,
        *,
        target: str,
        candidate_url: str,
        method: str,
        is_valid: bool,
        http_status: Optional[int] = None,
        content_type: Optional[str] = None,
        effective_url: Optional[str] = None,
        error_message: Optional[str] = None,
        checked_at: Optional[datetime] = None,
    ) -> None:
        check = RestaurantCheck(
            restaurant_id=restaurant_id,
            target=target,
            candidate_url=candidate_url,
            method=method,
            http_status=http_status,
            content_type=content_type,
            effective_url=effective_url,
            is_valid=is_valid,
            error_message=error_message,
            checked_at=checked_at or utc_now(),
        )
        async with self.session_factory() as session:
            session.add(check)
            await session.commit()

    async def list_for_restaurant(self, restaurant_id: str) -> list[RestaurantCheck]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(RestaurantCheck)
                .where(RestaurantCheck.restaurant_id == restaurant_id)
                .order_by(RestaurantCheck.checked_at)
            )
            return list(result.scalars().all())
