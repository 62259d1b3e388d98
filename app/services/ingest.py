"""Competitive ingest: one crawl run from location query to persisted rows.

For every OSM restaurant in the area the orchestrator resolves an official
website with free strategies before paid ones::

    OSM tags → domain guessing → reuse → DuckDuckGo → Google

and then looks for a menu on the accepted site.  Every candidate tried is
recorded as a :class:`~app.models.RestaurantCheck`, so a run can be audited
after the fact.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings
from app.config import settings as default_settings
from app.database import AsyncSessionLocal
from app.models import CrawlRun, restaurant_id_for
from app.models.restaurant import utc_now
from app.repositories import CheckRepository, CrawlRunRepository, RestaurantRepository
from scraper.domains import generate_domain_candidates
from scraper.errors import UpstreamError
from scraper.geocoding import GeoResolver
from scraper.http import HttpFetcher
from scraper.limiter import PerHostLimiter
from scraper.menu_discovery import MenuDiscoverer
from scraper.models import (
    ExpectedIdentity,
    MenuDiscoveryResult,
    Place,
    RunOptions,
    RunStats,
    ValidationResult,
)
from scraper.overpass import PlaceFetcher
from scraper.search import DuckDuckGoSearch, GoogleSearch, SearchBudget, SearchRateLimiter
from scraper.urls import UrlValidator, is_social, pick_best_osm_website
from scraper.verification import SiteVerifier, is_aggregator_host

logger = logging.getLogger(__name__)

MAX_CONCURRENCY = 10
UNKNOWN_NAME = "Unknown"


@dataclass(slots=True)
class WebsiteOutcome:
    """The accepted website of one place and how it was found."""

    url: str
    effective_url: str
    method: str
    http_status: Optional[int] = None
    content_type: Optional[str] = None


def _base_row(run_id: str, restaurant_id: str, place: Place) -> dict[str, Any]:
    return {
        "id": restaurant_id,
        "run_id": run_id,
        "source": "osm",
        "source_element_type": place.element_type,
        "source_element_id": place.element_id,
        "name": place.name or UNKNOWN_NAME,
        "addr_street": place.address.street,
        "addr_housenumber": place.address.housenumber,
        "addr_postcode": place.address.postcode,
        "addr_city": place.address.city,
        "addr_country": place.address.country,
        "latitude": place.latitude,
        "longitude": place.longitude,
        "phone": place.phone,
        "osm_tags": place.tags,
    }


def _outcome_columns(
    website: Optional[WebsiteOutcome], menu: MenuDiscoveryResult
) -> dict[str, Any]:
    now = utc_now()
    return {
        "website_url": website.url if website else None,
        "website_discovery_method": website.method if website else None,
        "website_effective_url": website.effective_url if website else None,
        "website_http_status": website.http_status if website else None,
        "website_content_type": website.content_type if website else None,
        "website_is_social": is_social(website.effective_url) if website else False,
        "website_is_valid": website is not None,
        "website_last_checked_at": now if website else None,
        "menu_url": menu.url if menu.is_valid else None,
        "menu_discovery_method": menu.method if menu.is_valid else None,
        "menu_http_status": menu.http_status if menu.is_valid else None,
        "menu_content_type": menu.content_type if menu.is_valid else None,
        "menu_is_pdf": menu.is_pdf if menu.is_valid else False,
        "menu_is_valid": menu.is_valid,
        "menu_last_checked_at": now if website else None,
    }


class IngestOrchestrator:
    """Drive crawl runs; the single writer of their ``CrawlRun`` row.

    All collaborators are injected, so one orchestrator can serve several
    runs while the search rate limiter and Google cache stay shared.
    """

    def __init__(
        self,
        *,
        runs: CrawlRunRepository,
        restaurants: RestaurantRepository,
        checks: CheckRepository,
        geo: GeoResolver,
        places: PlaceFetcher,
        validator: UrlValidator,
        verifier: SiteVerifier,
        menus: MenuDiscoverer,
        duckduckgo: Optional[DuckDuckGoSearch] = None,
        google: Optional[GoogleSearch] = None,
        settings: Settings = default_settings,
    ) -> None:
        self.runs = runs
        self.restaurants = restaurants
        self.checks = checks
        self.geo = geo
        self.places = places
        self.validator = validator
        self.verifier = verifier
        self.menus = menus
        self.duckduckgo = duckduckgo
        self.google = google
        self.settings = settings

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    async def run(self, options: RunOptions) -> str:
        """Create a run and execute it to completion; returns the run id.

        Geocoding and place-source failures mark the run failed without
        raising. Any other error marks it failed and propagates.
        """
        run = await self.start_run(options.location)
        await self.execute(run.id, options)
        return run.id

    async def start_run(self, location: str) -> CrawlRun:
        run = await self.runs.create(location)
        logger.info("Created crawl run %s for %r", run.id, location)
        return run

    async def execute(self, run_id: str, options: RunOptions) -> RunStats:
        stats = RunStats()
        try:
            area = await self.geo.resolve(options.location)
            await self.runs.update_area(run_id, area.area_id, list(area.bbox))
            places = await self.places.fetch(area)
            stats.total_seen = len(places)
            await self._process_all(run_id, places, stats, options)
        except UpstreamError as exc:
            logger.error("Crawl run %s failed: %s", run_id, exc)
            await self.runs.mark_failed(run_id, str(exc), stats.as_dict())
            return stats
        except Exception as exc:
            await self.runs.mark_failed(
                run_id, str(exc) or type(exc).__name__, stats.as_dict()
            )
            raise

        await self.runs.mark_completed(run_id, stats.as_dict())
        _log_summary(run_id, stats)
        return stats

    async def _process_all(
        self, run_id: str, places: list[Place], stats: RunStats, options: RunOptions
    ) -> None:
        concurrency = options.max_concurrency or self.settings.competitive_max_concurrency
        concurrency = max(1, min(MAX_CONCURRENCY, concurrency))
        budget = SearchBudget(self.settings.google_search_budget)
        delay = self.settings.place_delay_ms / 1000
        # One iterator shared by all workers acts as the place cursor
        cursor = iter(places)

        async def worker() -> None:
            for place in cursor:
                try:
                    await self.process_place(run_id, place, stats, budget)
                except Exception:
                    logger.warning(
                        "Unexpected error processing %s/%s (%s)",
                        place.element_type,
                        place.element_id,
                        place.name,
                        exc_info=True,
                    )
                if delay:
                    await asyncio.sleep(delay)

        logger.info(
            "Processing %d places with %d workers", len(places), concurrency
        )
        await asyncio.gather(*(worker() for _ in range(concurrency)))

    # ------------------------------------------------------------------
    # Per place
    # ------------------------------------------------------------------

    async def process_place(
        self,
        run_id: str,
        place: Place,
        stats: RunStats,
        budget: Optional[SearchBudget] = None,
    ) -> None:
        """Resolve website and menu for one place and persist the outcome.

        Safe to repeat: the row id is derived from the run and OSM element,
        so a second pass updates the same row.
        """
        if budget is None:
            budget = SearchBudget(self.settings.google_search_budget)
        restaurant_id = restaurant_id_for(run_id, place.element_type, place.element_id)
        base = _base_row(run_id, restaurant_id, place)
        await self.restaurants.upsert(base)

        website = await self._resolve_website(run_id, restaurant_id, place, stats, budget)

        menu = MenuDiscoveryResult()
        if website is not None:
            menu = await self.menus.discover(website.effective_url)
            await self.checks.add(
                restaurant_id,
                target="menu",
                candidate_url=menu.url if menu.is_valid else website.effective_url,
                method="crawl",
                http_status=menu.http_status,
                content_type=menu.content_type,
                effective_url=menu.url,
                is_valid=menu.is_valid,
                error_message=None if menu.is_valid else "menu_not_found",
            )
            if menu.is_valid:
                stats.with_menu_url += 1
                logger.info("%s: menu %s (%s)", base["name"], menu.url, menu.method)

        await self.restaurants.upsert({**base, **_outcome_columns(website, menu)})

    async def _resolve_website(
        self,
        run_id: str,
        restaurant_id: str,
        place: Place,
        stats: RunStats,
        budget: SearchBudget,
    ) -> Optional[WebsiteOutcome]:
        cfg = self.settings

        website = await self._try_osm_tags(restaurant_id, place, stats)
        if website is not None:
            stats.validated_website += 1
            return self._accepted(place, website)

        # Every remaining strategy searches by name
        if not place.name:
            return None
        city = place.address.city
        expected = ExpectedIdentity.from_place(place)

        if cfg.fallback_enable_guess:
            candidates = generate_domain_candidates(
                place.name, city, cfg.fallback_tld_list
            )[: cfg.domain_guess_max_candidates]
            for url in candidates:
                website = await self._try_verified(restaurant_id, url, "heuristic", expected)
                if website is not None:
                    stats.heuristic_success += 1
                    stats.validated_website += 1
                    return self._accepted(place, website)

        if cfg.fallback_enable_reuse and city:
            website = await self._try_reuse(run_id, restaurant_id, place.name, city)
            if website is not None:
                stats.reused_website += 1
                stats.validated_website += 1
                return self._accepted(place, website)

        if cfg.fallback_enable_ddg and self.duckduckgo is not None:
            urls = await self.duckduckgo.search(place.name, city)
            for index, url in enumerate(urls):
                if index and cfg.search_candidate_delay_ms:
                    await asyncio.sleep(cfg.search_candidate_delay_ms / 1000)
                website = await self._try_verified(restaurant_id, url, "duckduckgo", expected)
                if website is not None:
                    stats.duckduckgo_success += 1
                    stats.validated_website += 1
                    return self._accepted(place, website)

        if cfg.fallback_enable_google and self.google is not None and self.google.enabled:
            url = await self.google.search_official_site(place.name, city, budget)
            if url:
                website = await self._try_validated(restaurant_id, url, "google")
                if website is not None:
                    stats.google_fallback_success += 1
                    stats.validated_website += 1
                    return self._accepted(place, website)

        logger.debug("%s: no website found", place.name)
        return None

    @staticmethod
    def _accepted(place: Place, website: WebsiteOutcome) -> WebsiteOutcome:
        logger.info(
            "%s: website %s (%s)", place.name or UNKNOWN_NAME, website.effective_url, website.method
        )
        return website

    async def _try_osm_tags(
        self, restaurant_id: str, place: Place, stats: RunStats
    ) -> Optional[WebsiteOutcome]:
        candidates = pick_best_osm_website(place.tags)
        if not candidates:
            return None
        stats.with_osm_website += 1
        for candidate in candidates:
            result = await self.validator.validate(candidate.url)
            await self._record_website_check(restaurant_id, "osm", result)
            if candidate.is_social or not result.is_valid:
                continue
            if is_aggregator_host(result.effective_url or candidate.url):
                continue
            return _outcome_from(result, "osm")
        return None

    async def _try_validated(
        self, restaurant_id: str, url: str, method: str
    ) -> Optional[WebsiteOutcome]:
        """Validate *url*; aggregator hosts are refused before any request."""
        if is_aggregator_host(url):
            await self.checks.add(
                restaurant_id,
                target="website",
                candidate_url=url,
                method=method,
                is_valid=False,
                error_message="aggregator_host",
            )
            return None
        result = await self.validator.validate(url)
        await self._record_website_check(restaurant_id, method, result)
        if not result.is_valid or is_aggregator_host(result.effective_url or url):
            return None
        return _outcome_from(result, method)

    async def _try_verified(
        self, restaurant_id: str, url: str, method: str, expected: ExpectedIdentity
    ) -> Optional[WebsiteOutcome]:
        """Validate *url*, then require the page to score as this restaurant."""
        website = await self._try_validated(restaurant_id, url, method)
        if website is None:
            return None
        verification = await self.verifier.verify(website.effective_url, expected)
        if not verification.accepted:
            await self.checks.add(
                restaurant_id,
                target="website",
                candidate_url=url,
                method=f"{method}:verify",
                http_status=verification.page.status_code,
                content_type=verification.page.content_type,
                effective_url=website.effective_url,
                is_valid=False,
                error_message=f"score={verification.score}",
            )
            return None
        return website

    async def _try_reuse(
        self, run_id: str, restaurant_id: str, name: str, city: str
    ) -> Optional[WebsiteOutcome]:
        scope = None if self.settings.reuse_across_runs else run_id
        row = await self.restaurants.find_validated_website(name, city, run_id=scope)
        if row is None or row.id == restaurant_id or not row.website_url:
            return None
        effective_url = row.website_effective_url or row.website_url
        await self.checks.add(
            restaurant_id,
            target="website",
            candidate_url=row.website_url,
            method="reuse",
            http_status=row.website_http_status,
            content_type=row.website_content_type,
            effective_url=effective_url,
            is_valid=True,
        )
        return WebsiteOutcome(
            url=row.website_url,
            effective_url=effective_url,
            method="reuse",
            http_status=row.website_http_status,
            content_type=row.website_content_type,
        )

    async def _record_website_check(
        self, restaurant_id: str, method: str, result: ValidationResult
    ) -> None:
        await self.checks.add(
            restaurant_id,
            target="website",
            candidate_url=result.candidate_url,
            method=method,
            http_status=result.http_status,
            content_type=result.content_type,
            effective_url=result.effective_url,
            is_valid=result.is_valid,
            error_message=result.error_message,
        )


def _outcome_from(result: ValidationResult, method: str) -> WebsiteOutcome:
    return WebsiteOutcome(
        url=result.candidate_url,
        effective_url=result.effective_url or result.candidate_url,
        method=method,
        http_status=result.http_status,
        content_type=result.content_type,
    )


def _pct(part: int, total: int) -> float:
    return (part / total * 100) if total else 0.0


def _log_summary(run_id: str, stats: RunStats) -> None:
    """Log coverage statistics for a finished run."""
    total = stats.total_seen
    logger.info("=" * 50)
    logger.info("CRAWL SUMMARY (%s)", run_id)
    logger.info("-" * 50)
    logger.info("Total restaurants: %d", total)
    for label, value in (
        ("With OSM website:   ", stats.with_osm_website),
        ("Validated website: ", stats.validated_website),
        ("  via guessing:    ", stats.heuristic_success),
        ("  via reuse:       ", stats.reused_website),
        ("  via DuckDuckGo:  ", stats.duckduckgo_success),
        ("  via Google:      ", stats.google_fallback_success),
        ("With menu URL:     ", stats.with_menu_url),
    ):
        logger.info("  %s %d (%.0f%%)", label, value, _pct(value, total))
    logger.info("=" * 50)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_orchestrator(
    fetcher: HttpFetcher,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    settings: Settings = default_settings,
    search_rate_limiter: Optional[SearchRateLimiter] = None,
) -> IngestOrchestrator:
    """Assemble an orchestrator whose services all share *fetcher*."""
    rate_limiter = search_rate_limiter or SearchRateLimiter(
        settings.fallback_search_rate_rps, settings.fallback_search_jitter_ms
    )
    return IngestOrchestrator(
        runs=CrawlRunRepository(session_factory),
        restaurants=RestaurantRepository(session_factory),
        checks=CheckRepository(session_factory),
        geo=GeoResolver(fetcher, endpoint=settings.nominatim_url),
        places=PlaceFetcher(
            fetcher, endpoint=settings.overpass_url, timeout=settings.overpass_timeout
        ),
        validator=UrlValidator(fetcher),
        verifier=SiteVerifier(fetcher, min_score=settings.fallback_verify_min_score),
        menus=MenuDiscoverer(fetcher),
        duckduckgo=DuckDuckGoSearch(
            fetcher,
            rate_limiter=rate_limiter,
            max_candidates=settings.fallback_search_max_candidates,
            block_backoff_s=settings.fallback_search_block_backoff_s,
        ),
        google=GoogleSearch(
            fetcher,
            api_key=settings.google_api_key,
            cse_id=settings.google_cse_id,
            serpapi_key=settings.serpapi_key,
        ),
        settings=settings,
    )


def open_fetcher(
    options: RunOptions,
    *,
    settings: Settings = default_settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> HttpFetcher:
    return HttpFetcher(
        user_agent=settings.osm_user_agent,
        timeout=(
            options.http_timeout_ms / 1000
            if options.http_timeout_ms
            else settings.http_timeout
        ),
        limiter=PerHostLimiter(settings.per_host_max_concurrent),
        transport=transport,
    )


async def execute_run(
    run_id: str,
    options: RunOptions,
    *,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings = default_settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> RunStats:
    """Execute an already created run (used by the API background task)."""
    async with open_fetcher(options, settings=settings, transport=transport) as fetcher:
        orchestrator = build_orchestrator(fetcher, session_factory, settings=settings)
        return await orchestrator.execute(run_id, options)


async def run_competitive_ingest(
    options: RunOptions,
    *,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    settings: Settings = default_settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """Create and execute a crawl run for ``options.location``; returns its id."""
    if session_factory is None:
        session_factory = AsyncSessionLocal
    async with open_fetcher(options, settings=settings, transport=transport) as fetcher:
        orchestrator = build_orchestrator(fetcher, session_factory, settings=settings)
        return await orchestrator.run(options)
