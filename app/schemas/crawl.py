from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class RunCreateRequest(BaseModel):
    """Request schema for starting a crawl run."""

    location: str = Field(
        ..., min_length=1, max_length=300, description="Free-text area, e.g. 'Utrecht'"
    )
    max_concurrency: Optional[int] = Field(
        default=None, ge=1, le=10, description="Worker pool size for this run"
    )
    http_timeout_ms: Optional[int] = Field(
        default=None, ge=100, description="Per-request timeout override"
    )


class CrawlRunResponse(BaseModel):
    """Response schema for a crawl run and its statistics."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    location_query: str
    provider: str
    area_id: Optional[str] = None
    bbox: Optional[list[float]] = None
    status: str
    stats: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None


class ExtRestaurantResponse(BaseModel):
    """Response schema for a restaurant and its discovery outcome."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    run_id: str
    source_element_type: str
    source_element_id: str
    name: str
    addr_street: Optional[str] = None
    addr_housenumber: Optional[str] = None
    addr_postcode: Optional[str] = None
    addr_city: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    phone: Optional[str] = None

    website_url: Optional[str] = None
    website_effective_url: Optional[str] = None
    website_discovery_method: Optional[str] = None
    website_http_status: Optional[int] = None
    website_is_social: bool = False
    website_is_valid: bool = False

    menu_url: Optional[str] = None
    menu_discovery_method: Optional[str] = None
    menu_http_status: Optional[int] = None
    menu_content_type: Optional[str] = None
    menu_is_pdf: bool = False
    menu_is_valid: bool = False


class RestaurantCheckResponse(BaseModel):
    """Response schema for one audit-trail entry."""

    model_config = ConfigDict(from_attributes=True)

    target: str
    candidate_url: str
    method: str
    http_status: Optional[int] = None
    content_type: Optional[str] = None
    effective_url: Optional[str] = None
    is_valid: bool
    error_message: Optional[str] = None
    checked_at: datetime
