"""Search-engine fallbacks for restaurants whose website could not be guessed.

Two providers:

* :class:`DuckDuckGoSearch` scrapes the HTML-only results page (no API key).
  All calls share one :class:`SearchRateLimiter`, so the search rate holds
  for the whole process no matter how many workers are running.
* :class:`GoogleSearch` uses the Custom Search JSON API, or SerpAPI when
  only that key is configured, and spends from a per-run
  :class:`SearchBudget`.

Both rank hits with :func:`score_candidate`; neither raises on network
trouble, they just return fewer results.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import re
from collections.abc import Awaitable, Callable
from urllib.parse import parse_qs, urljoin, urlparse

from bs4 import BeautifulSoup

from scraper.errors import BlockDetectedError
from scraper.http import FetchResult, HttpFetcher
from scraper.text import compact, hostname, normalize

logger = logging.getLogger(__name__)

DUCKDUCKGO_HTML_URL = "https://duckduckgo.com/html/"
GOOGLE_CSE_URL = "https://www.googleapis.com/customsearch/v1"
SERPAPI_URL = "https://serpapi.com/search.json"

# Never an official restaurant site; excluded in the query and penalised
NEGATIVE_SITES = (
    "facebook.com",
    "instagram.com",
    "tripadvisor.com",
    "thefork.nl",
    "ubereats.com",
    "yelp.com",
    "thuisbezorgd.nl",
    "deliveroo.nl",
)

# ---------------------------------------------------------------------------
# Ranking weights
# ---------------------------------------------------------------------------

SCORE_PREFERRED_TLD = 2
SCORE_NAME_IN_HOST = 3
SCORE_NEGATIVE_SITE = -5
SCORE_NAME_IN_TITLE = 2
SCORE_CITY_IN_TITLE = 2
SCORE_CITY_IN_HOST = 1

# Hits scoring at or below this are dropped
_DISCARD_SCORE = -5

_BLOCK_PAGE_RE = re.compile(r"captcha|unusual traffic", re.IGNORECASE)

_RESULT_SELECTOR = (
    'a.result__a, a.result__title, a.result__url, a[class*="result__a" i]'
)


def score_candidate(
    url: str,
    title: str | None,
    name: str,
    city: str | None = None,
    preferred_tlds: tuple[str, ...] = (".nl",),
) -> int:
    """Rank a search hit by how much it looks like the restaurant's own site."""
    host = hostname(url)
    if not host:
        return 0
    host_compact = compact(host)
    score = 0
    if host.endswith(preferred_tlds):
        score += SCORE_PREFERRED_TLD
    name_compact = compact(name)
    if name_compact and name_compact in host_compact:
        score += SCORE_NAME_IN_HOST
    if any(host == site or host.endswith(f".{site}") for site in NEGATIVE_SITES):
        score += SCORE_NEGATIVE_SITE

    if title:
        n_title = normalize(title)
        name_tokens = normalize(name).split()
        city_tokens = normalize(city).split()
        if any(tok in n_title for tok in name_tokens):
            score += SCORE_NAME_IN_TITLE
        if city_tokens and any(tok in n_title for tok in city_tokens):
            score += SCORE_CITY_IN_TITLE

    city_compact = compact(city)
    if city_compact and city_compact in host_compact:
        score += SCORE_CITY_IN_HOST
    return score


def _rank_links(hits: list[tuple[str, str | None]], name: str, city: str | None) -> list[str]:
    scored: list[tuple[int, str]] = []
    for url, title in hits:
        score = score_candidate(url, title, name, city)
        if score > _DISCARD_SCORE:
            scored.append((score, url))
    # sort() is stable, so equal scores keep result-page order
    scored.sort(key=lambda item: item[0], reverse=True)
    ranked: list[str] = []
    for _, url in scored:
        if url not in ranked:
            ranked.append(url)
    return ranked


# ---------------------------------------------------------------------------
# Shared rate limiting and budgeting
# ---------------------------------------------------------------------------


class SearchRateLimiter:
    """Minimum interval between search calls plus random jitter.

    One instance is shared by every worker; a lock serialises the wait so
    the interval is measured from the previous call's start.
    """

    def __init__(
        self,
        rps: float = 0.2,
        jitter_ms: int = 250,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.min_interval = 1.0 / max(0.01, rps)
        self.jitter_ms = jitter_ms
        self._sleep = sleep
        self._last_call: float | None = None
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            loop = asyncio.get_running_loop()
            delay = 0.0
            if self._last_call is not None:
                delay = max(0.0, self.min_interval - (loop.time() - self._last_call))
            if self.jitter_ms:
                delay += random.uniform(0, self.jitter_ms) / 1000
            if delay > 0:
                await self._sleep(delay)
            self._last_call = loop.time()


class SearchBudget:
    """Per-run allowance of paid search calls."""

    def __init__(self, remaining: int) -> None:
        self.remaining = remaining

    def try_consume(self) -> bool:
        if self.remaining <= 0:
            return False
        self.remaining -= 1
        return True


# ---------------------------------------------------------------------------
# DuckDuckGo
# ---------------------------------------------------------------------------


def _unwrap_redirect(href: str) -> str | None:
    """Resolve DDG's ``/l/?uddg=<target>`` redirect links to the target URL."""
    absolute = urljoin("https://duckduckgo.com", href)
    target = parse_qs(urlparse(absolute).query).get("uddg")
    if target:
        return target[0]
    if absolute.startswith(("http://", "https://")) and "duckduckgo.com" not in hostname(absolute):
        return absolute
    return None


def parse_results(html: str) -> list[tuple[str, str | None]]:
    """Extract ``(url, title)`` hits from a DuckDuckGo HTML results page."""
    soup = BeautifulSoup(html, "html.parser")
    hits: list[tuple[str, str | None]] = []
    for anchor in soup.select(_RESULT_SELECTOR):
        href = anchor.get("href")
        target = _unwrap_redirect(href) if href else None
        if target:
            hits.append((target, anchor.get_text(" ", strip=True)))
    if hits:
        return hits

    # Layout changed: fall back to any redirect link on the page
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"]
        if "uddg=" not in href:
            continue
        target = _unwrap_redirect(href)
        if target:
            hits.append((target, anchor.get_text(" ", strip=True)))
    return hits


class DuckDuckGoSearch:
    """Scrape DuckDuckGo's HTML results for a restaurant's official site."""

    def __init__(
        self,
        fetcher: HttpFetcher,
        *,
        rate_limiter: SearchRateLimiter,
        max_candidates: int = 5,
        block_backoff_s: float = 10.0,
        endpoint: str = DUCKDUCKGO_HTML_URL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._fetcher = fetcher
        self._rate_limiter = rate_limiter
        self.max_candidates = max_candidates
        self.block_backoff_s = block_backoff_s
        self._endpoint = endpoint
        self._sleep = sleep

    @staticmethod
    def build_query(name: str, city: str | None) -> str:
        exclusions = " ".join(f"-site:{site}" for site in NEGATIVE_SITES)
        return " ".join(part for part in (name, "restaurant", city or "", exclusions) if part)

    async def search(self, name: str, city: str | None = None) -> list[str]:
        """Return up to ``max_candidates`` ranked result URLs; ``[]`` when blocked."""
        await self._rate_limiter.wait()
        result = await self._fetcher.get(
            self._endpoint,
            params={"q": self.build_query(name, city), "kl": "nl-nl"},
        )
        try:
            html = self._check_response(result)
        except BlockDetectedError as exc:
            logger.warning("%s, backing off %ss", exc, self.block_backoff_s)
            await self._sleep(self.block_backoff_s)
            return []
        if html is None:
            return []

        ranked = _rank_links(parse_results(html), name, city)
        logger.debug("DuckDuckGo: %d candidates for %r", len(ranked), name)
        return ranked[: self.max_candidates]

    @staticmethod
    def _check_response(result: FetchResult) -> str | None:
        if result.error is not None:
            logger.debug("DuckDuckGo request failed: %s", result.error.message)
            return None
        html = result.text or ""
        if result.status_code == 429 or _BLOCK_PAGE_RE.search(html):
            raise BlockDetectedError(f"DuckDuckGo block page (status {result.status_code})")
        if not result.ok:
            logger.debug("DuckDuckGo returned %s", result.status_code)
            return None
        return html


# ---------------------------------------------------------------------------
# Google Custom Search / SerpAPI
# ---------------------------------------------------------------------------


class GoogleSearch:
    """Paid web search, active only when API credentials are configured."""

    def __init__(
        self,
        fetcher: HttpFetcher,
        *,
        api_key: str = "",
        cse_id: str = "",
        serpapi_key: str = "",
        cse_endpoint: str = GOOGLE_CSE_URL,
        serpapi_endpoint: str = SERPAPI_URL,
    ) -> None:
        self._fetcher = fetcher
        self._api_key = api_key
        self._cse_id = cse_id
        self._serpapi_key = serpapi_key
        self._cse_endpoint = cse_endpoint
        self._serpapi_endpoint = serpapi_endpoint
        self._cache: dict[str, str] = {}

    @property
    def enabled(self) -> bool:
        return bool((self._api_key and self._cse_id) or self._serpapi_key)

    async def search_official_site(
        self, name: str, city: str | None, budget: SearchBudget
    ) -> str | None:
        """Best-ranked result URL, or ``None``.

        Cached hits cost nothing; every uncached call consumes one unit of
        *budget* and is refused once the budget is spent.
        """
        key = f"{name}|{city or ''}".lower()
        if key in self._cache:
            return self._cache[key]
        if not self.enabled or not budget.try_consume():
            return None

        query = f"{name} {city or ''}".strip()
        if self._api_key and self._cse_id:
            result = await self._fetcher.get(
                self._cse_endpoint,
                params={
                    "key": self._api_key,
                    "cx": self._cse_id,
                    "q": f"{query} -site:facebook.com -site:instagram.com -site:tripadvisor.com",
                },
                headers={"Accept": "application/json"},
            )
            items_key = "items"
        else:
            result = await self._fetcher.get(
                self._serpapi_endpoint,
                params={"engine": "google", "q": query, "api_key": self._serpapi_key},
                headers={"Accept": "application/json"},
            )
            items_key = "organic_results"

        if not result.ok:
            logger.warning(
                "Google search failed for %r: %s",
                name,
                result.error.message if result.error else result.status_code,
            )
            return None
        try:
            payload = json.loads(result.text or "")
        except ValueError:
            logger.warning("Google search returned invalid JSON for %r", name)
            return None

        if not isinstance(payload, dict):
            return None
        items = payload.get(items_key) or []
        hits = [(item["link"], None) for item in items if isinstance(item, dict) and item.get("link")]
        ranked = _rank_links(hits, name, None)
        if not ranked:
            return None
        self._cache[key] = ranked[0]
        return ranked[0]
