"""OpenStreetMap Overpass API client for restaurant enumeration."""

import asyncio
import json
import logging
from typing import Any

from scraper.errors import UpstreamError
from scraper.http import HttpFetcher
from scraper.models import Address, GeocodeResult, Place

logger = logging.getLogger(__name__)

OVERPASS_URL = "https://overpass-api.de/api/interpreter"

# Overpass QL: every restaurant node/way/relation inside a derived area
AREA_QUERY = """
[out:json][timeout:{timeout}];
area({area_id});
nwr["amenity"="restaurant"](area);
out center tags;
""".strip()

# Overpass bbox order is (south, west, north, east)
BBOX_QUERY = """
[out:json][timeout:{timeout}];
nwr["amenity"="restaurant"]({south},{west},{north},{east});
out center tags;
""".strip()

_MAX_RETRIES = 3
_RETRY_BACKOFF = [5, 15, 30]  # seconds between retries
_RETRY_STATUSES = frozenset({429, 504})

# The client waits this long past the server-side query timeout
_DEADLINE_MARGIN_S = 15
_MAX_RESPONSE_BYTES = 64 * 1024 * 1024


def build_query(area: GeocodeResult, timeout: int = 60) -> str:
    """Scope the query to the area id when there is one, else to the bbox."""
    if area.area_id:
        return AREA_QUERY.format(timeout=timeout, area_id=area.area_id)
    west, south, east, north = area.bbox
    return BBOX_QUERY.format(
        timeout=timeout, south=south, west=west, north=north, east=east
    )


def _extract_coords(element: dict[str, Any]) -> tuple[float | None, float | None]:
    """Extract latitude/longitude from an Overpass element.

    Nodes have lat/lon directly. Ways and relations use the 'center'
    field produced by ``out center``.
    """
    if element.get("type") == "node":
        return element.get("lat"), element.get("lon")
    center = element.get("center", {})
    return center.get("lat"), center.get("lon")


def normalize_element(element: dict[str, Any]) -> Place:
    """Turn a raw Overpass element into a :class:`Place`."""
    tags: dict[str, str] = element.get("tags") or {}
    lat, lon = _extract_coords(element)
    return Place(
        element_type=str(element.get("type")),
        element_id=str(element.get("id")),
        name=tags.get("name"),
        latitude=lat,
        longitude=lon,
        phone=tags.get("phone") or tags.get("contact:phone"),
        tags=tags,
        address=Address(
            street=tags.get("addr:street"),
            housenumber=tags.get("addr:housenumber"),
            postcode=tags.get("addr:postcode"),
            city=tags.get("addr:city"),
            country=tags.get("addr:country"),
        ),
    )


class PlaceFetcher:
    """Enumerate ``amenity=restaurant`` elements for an area or bounding box."""

    def __init__(
        self,
        fetcher: HttpFetcher,
        *,
        endpoint: str = OVERPASS_URL,
        timeout: int = 60,
        retry_backoff: list[float] | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._endpoint = endpoint
        self._timeout = timeout
        self._retry_backoff = retry_backoff if retry_backoff is not None else _RETRY_BACKOFF

    async def fetch(self, area: GeocodeResult) -> list[Place]:
        """Query Overpass, retrying up to 3 times on 429/504 and transport errors.

        Raises:
            UpstreamError: On any other non-2xx status or once retries run out.
        """
        query = build_query(area, timeout=self._timeout)
        logger.info(
            "Querying Overpass for restaurants in %s …",
            f"area {area.area_id}" if area.area_id else f"bbox {area.bbox}",
        )

        for attempt in range(_MAX_RETRIES):
            result = await self._fetcher.post(
                self._endpoint,
                data={"data": query},
                deadline=self._timeout + _DEADLINE_MARGIN_S,
                max_bytes=_MAX_RESPONSE_BYTES,
            )
            retryable = result.error is not None or result.status_code in _RETRY_STATUSES
            if result.ok:
                break
            if retryable and attempt < _MAX_RETRIES - 1:
                wait = self._retry_backoff[min(attempt, len(self._retry_backoff) - 1)]
                logger.warning(
                    "Overpass API returned %s — retrying in %ss (attempt %d/%d)",
                    result.error.message if result.error else result.status_code,
                    wait,
                    attempt + 1,
                    _MAX_RETRIES,
                )
                await asyncio.sleep(wait)
                continue
            if result.error is not None:
                raise UpstreamError(f"Overpass request failed: {result.error.message}")
            raise UpstreamError(f"Overpass error: {result.status_code}")

        try:
            data = json.loads(result.text or "")
        except ValueError as exc:
            raise UpstreamError("Overpass returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise UpstreamError("Overpass returned an unexpected payload")
        elements: list[dict[str, Any]] = data.get("elements", [])

        places = [normalize_element(e) for e in elements]
        named = sum(1 for p in places if p.name)
        logger.info(
            "Overpass returned %d elements — %d with name, %d without",
            len(places),
            named,
            len(places) - named,
        )
        return places
