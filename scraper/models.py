"""Transient data structures passed between pipeline stages."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

BBox = tuple[float, float, float, float]  # west, south, east, north


class ErrorKind(str, Enum):
    """Why an outbound request produced no response."""

    TIMEOUT = "timeout"
    NETWORK = "network"
    INVALID_URL = "invalid_url"


@dataclass(slots=True)
class GeocodeResult:
    bbox: BBox
    area_id: Optional[str] = None


@dataclass(slots=True)
class Address:
    street: Optional[str] = None
    housenumber: Optional[str] = None
    postcode: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None


@dataclass(slots=True)
class Place:
    """A restaurant element returned by Overpass."""

    element_type: str
    element_id: str
    name: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    phone: Optional[str]
    tags: dict[str, str] = field(default_factory=dict)
    address: Address = field(default_factory=Address)


@dataclass(slots=True)
class Candidate:
    """An unvalidated URL proposed by a discovery strategy."""

    url: str
    source: str
    is_social: bool = False


@dataclass(slots=True)
class ValidationResult:
    candidate_url: str
    is_valid: bool
    effective_url: Optional[str] = None
    http_status: Optional[int] = None
    content_type: Optional[str] = None
    is_social: bool = False
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None


@dataclass(slots=True)
class MenuDiscoveryResult:
    is_valid: bool = False
    url: Optional[str] = None
    method: Optional[str] = None  # header|nav|footer|link_text|sitemap|slug
    http_status: Optional[int] = None
    content_type: Optional[str] = None
    is_pdf: bool = False


@dataclass(slots=True)
class ExpectedIdentity:
    """What a candidate website should corroborate about the restaurant."""

    name: str
    street: Optional[str] = None
    housenumber: Optional[str] = None
    postcode: Optional[str] = None
    city: Optional[str] = None
    phone: Optional[str] = None

    @classmethod
    def from_place(cls, place: Place) -> ExpectedIdentity:
        return cls(
            name=place.name or "",
            street=place.address.street,
            housenumber=place.address.housenumber,
            postcode=place.address.postcode,
            city=place.address.city,
            phone=place.phone,
        )


@dataclass(slots=True)
class RunOptions:
    location: str
    max_concurrency: Optional[int] = None
    http_timeout_ms: Optional[int] = None


@dataclass(slots=True)
class RunStats:
    total_seen: int = 0
    with_osm_website: int = 0
    validated_website: int = 0
    google_fallback_success: int = 0
    with_menu_url: int = 0
    heuristic_success: int = 0
    duckduckgo_success: int = 0
    reused_website: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)
