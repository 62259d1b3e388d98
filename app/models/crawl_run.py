from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.restaurant import Base, utc_now

if TYPE_CHECKING:
    from app.models.restaurant import ExtRestaurant

RUN_STATUSES = ("pending", "running", "completed", "failed")


class CrawlRun(Base):
    """One ingestion run over a single location query."""

    __tablename__ = "crawl_runs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    location_query: Mapped[str] = mapped_column(String(300), nullable=False)
    provider: Mapped[str] = mapped_column(String(40), nullable=False, default="overpass")

    # Overpass area id (relation-backed areas only) and [west, south, east, north]
    area_id: Mapped[Optional[str]] = mapped_column(String(40))
    bbox: Mapped[Optional[list[float]]] = mapped_column(JSON)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    stats: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    started_at: Mapped[datetime] = mapped_column(default=utc_now)
    completed_at: Mapped[Optional[datetime]] = mapped_column()

    restaurants: Mapped[list[ExtRestaurant]] = relationship(
        back_populates="run",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<CrawlRun(id='{self.id}', status='{self.status}')>"
