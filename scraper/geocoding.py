"""Nominatim geocoding: location string → Overpass area id and bounding box."""

import json
import logging
from typing import Any

from scraper.errors import GeocodeNotFoundError, UpstreamError
from scraper.http import HttpFetcher
from scraper.models import GeocodeResult

logger = logging.getLogger(__name__)

NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"

# Overpass derives area ids for relation-backed areas with this fixed offset
RELATION_AREA_OFFSET = 3_600_000_000


def area_id_for(osm_type: str | None, osm_id: Any) -> str | None:
    """Overpass area id for a relation; ``None`` for nodes and ways."""
    if osm_type != "relation" or osm_id in (None, ""):
        return None
    return str(RELATION_AREA_OFFSET + int(osm_id))


class GeoResolver:
    """Resolve a free-text location with the top Nominatim result."""

    def __init__(self, fetcher: HttpFetcher, *, endpoint: str = NOMINATIM_URL) -> None:
        self._fetcher = fetcher
        self._endpoint = endpoint

    async def resolve(self, location_query: str) -> GeocodeResult:
        """Geocode *location_query*.

        Raises:
            GeocodeNotFoundError: When Nominatim returns no results.
            UpstreamError: On a non-2xx response or an unreachable service.
        """
        result = await self._fetcher.get(
            self._endpoint,
            params={
                "q": location_query,
                "format": "json",
                "addressdetails": "1",
                "limit": "1",
                "polygon_geojson": "0",
            },
            headers={"Accept": "application/json"},
        )
        if result.error is not None:
            raise UpstreamError(f"Nominatim request failed: {result.error.message}")
        if not result.ok:
            raise UpstreamError(f"Nominatim error: {result.status_code}")

        data = _parse_json(result.text)
        if not data:
            raise GeocodeNotFoundError(f"Nominatim returned no results for {location_query!r}")

        first = data[0]
        # Nominatim order is [south, north, west, east]
        raw_bbox = [float(n) for n in (first.get("boundingbox") or [])]
        if len(raw_bbox) != 4:
            raise UpstreamError("Nominatim result has no usable bounding box")
        south, north, west, east = raw_bbox

        area_id = area_id_for(first.get("osm_type"), first.get("osm_id"))
        logger.info(
            "Geocoded %r → %s (area_id=%s)",
            location_query,
            first.get("display_name", "?"),
            area_id,
        )
        return GeocodeResult(bbox=(west, south, east, north), area_id=area_id)


def _parse_json(text: str | None) -> list[dict[str, Any]]:
    try:
        data = json.loads(text or "")
    except ValueError as exc:
        raise UpstreamError("Nominatim returned invalid JSON") from exc
    if not isinstance(data, list):
        raise UpstreamError("Nominatim returned an unexpected payload")
    return data
