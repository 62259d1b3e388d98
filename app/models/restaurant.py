from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import JSON, Boolean, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

if TYPE_CHECKING:
    from app.models.crawl_run import CrawlRun
    from app.models.restaurant_check import RestaurantCheck


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def restaurant_id_for(run_id: str, element_type: str, element_id: str) -> str:
    """Deterministic row id so reprocessing a place upserts instead of duplicating."""
    return f"er_{run_id}_{element_type}_{element_id}"


class ExtRestaurant(Base):
    """A restaurant found in OpenStreetMap during one crawl run."""

    __tablename__ = "ext_restaurants"

    id: Mapped[str] = mapped_column(String(200), primary_key=True)
    run_id: Mapped[str] = mapped_column(
        ForeignKey("crawl_runs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="osm")
    source_element_type: Mapped[str] = mapped_column(String(20), nullable=False)
    source_element_id: Mapped[str] = mapped_column(String(40), nullable=False)

    # Identity, straight from OSM tags
    name: Mapped[str] = mapped_column(String(300), nullable=False, index=True)
    addr_street: Mapped[Optional[str]] = mapped_column(String(300))
    addr_housenumber: Mapped[Optional[str]] = mapped_column(String(40))
    addr_postcode: Mapped[Optional[str]] = mapped_column(String(20))
    addr_city: Mapped[Optional[str]] = mapped_column(String(200), index=True)
    addr_country: Mapped[Optional[str]] = mapped_column(String(10))
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)
    phone: Mapped[Optional[str]] = mapped_column(String(100))
    osm_tags: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    # Website outcome
    website_url: Mapped[Optional[str]] = mapped_column(Text)
    website_discovery_method: Mapped[Optional[str]] = mapped_column(String(40))
    website_effective_url: Mapped[Optional[str]] = mapped_column(Text)
    website_http_status: Mapped[Optional[int]] = mapped_column(Integer)
    website_content_type: Mapped[Optional[str]] = mapped_column(String(200))
    website_is_social: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    website_is_valid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    website_last_checked_at: Mapped[Optional[datetime]] = mapped_column()

    # Menu outcome
    menu_url: Mapped[Optional[str]] = mapped_column(Text)
    menu_discovery_method: Mapped[Optional[str]] = mapped_column(String(40))
    menu_http_status: Mapped[Optional[int]] = mapped_column(Integer)
    menu_content_type: Mapped[Optional[str]] = mapped_column(String(200))
    menu_is_pdf: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    menu_is_valid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    menu_last_checked_at: Mapped[Optional[datetime]] = mapped_column()

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now)

    run: Mapped[CrawlRun] = relationship(back_populates="restaurants")
    checks: Mapped[list[RestaurantCheck]] = relationship(
        back_populates="restaurant",
        cascade="all, delete-orphan",
        order_by="RestaurantCheck.checked_at",
    )

    def __repr__(self) -> str:
        return f"<ExtRestaurant(name='{self.name}', website_valid={self.website_is_valid})>"
