from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.restaurant import Base, utc_now

if TYPE_CHECKING:
    from app.models.restaurant import ExtRestaurant


class RestaurantCheck(Base):
    """Append-only audit entry for a single website or menu validation attempt."""

    __tablename__ = "ext_restaurant_checks"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    restaurant_id: Mapped[str] = mapped_column(
        ForeignKey("ext_restaurants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    target: Mapped[str] = mapped_column(String(20), nullable=False)  # website|menu
    candidate_url: Mapped[str] = mapped_column(Text, nullable=False)
    # osm|heuristic|duckduckgo|google|crawl, or "<method>:verify" for score rejections
    method: Mapped[str] = mapped_column(String(40), nullable=False)
    http_status: Mapped[Optional[int]] = mapped_column(Integer)
    content_type: Mapped[Optional[str]] = mapped_column(String(200))
    effective_url: Mapped[Optional[str]] = mapped_column(Text)
    is_valid: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    checked_at: Mapped[datetime] = mapped_column(default=utc_now)

    restaurant: Mapped[ExtRestaurant] = relationship(back_populates="checks")

    def __repr__(self) -> str:
        return (
            f"<RestaurantCheck(target='{self.target}', method='{self.method}', "
            f"valid={self.is_valid})>"
        )
