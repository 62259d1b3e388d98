"""Corroborate that a fetched page really belongs to a given restaurant.

Domain guesses and search results are unreliable, so a candidate page only
counts once its hostname, title and visible text point at the expected name
and address.  The score is additive and clamped to 0–100; aggregator hosts
are effectively disqualified.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from bs4 import BeautifulSoup

from scraper.http import FetchResult, HttpFetcher, is_html_content_type
from scraper.models import ExpectedIdentity
from scraper.text import compact, core_tokens, host_matches, hostname, normalize

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Scoring weights
# ---------------------------------------------------------------------------

WEIGHT_HOST_FULL_NAME = 30
WEIGHT_HOST_CORE_NAME = 28
WEIGHT_HOST_CORE_TOKEN = 22
WEIGHT_TITLE_SIMILARITY = 20
WEIGHT_TITLE_CORE_TOKEN = 15
WEIGHT_STREET_HOUSENUMBER = 25
WEIGHT_POSTCODE = 15
WEIGHT_CITY = 10
WEIGHT_CORE_TOKEN_IN_TEXT = 10
WEIGHT_PHONE = 10
PENALTY_NEGATIVE_KEYWORD = -20
PENALTY_AGGREGATOR_HOST = -60

TITLE_SIMILARITY_THRESHOLD = 0.6
MIN_PHONE_DIGITS = 6

# Visible text beyond this is ignored when scoring
_MAX_TEXT_CHARS = 200_000

AGGREGATOR_HOSTS = frozenset(
    {
        "restaurantgids.nl",
        "restaurants.nl",
        "cylex.nl",
        "oozo.nl",
        "telefoonboek.nl",
        "resto.nl",
        "eet.nu",
        "linkedin.com",
        "tripadvisor.com",
        "tripadvisor.nl",
        "yelp.com",
        "ubereats.com",
        "thuisbezorgd.nl",
        "deliveroo.nl",
        "thefork.nl",
        "thefork.com",
        "google.com",
        "foursquare.com",
        "restaurantguru.com",
    }
)

# Social / marketplace / review-aggregator terms; pages of official sites
# rarely mention these in body text, directory listings almost always do.
NEGATIVE_KEYWORDS = (
    "facebook",
    "instagram",
    "tripadvisor",
    "thuisbezorgd",
    "deliveroo",
    "ubereats",
    "yelp",
    "thefork",
    "restaurantgids",
    "cylex",
    "oozo",
    "telefoonboek",
    "eet nu",
    "resto nl",
    "restaurants nl",
)

# Dutch-style postal code: four digits (no leading zero) and two letters
_POSTCODE_RE = re.compile(r"\b[1-9][0-9]{3}\s?[a-z]{2}\b")
_DIGIT_RUN_RE = re.compile(r"\+?\d[\d\s\-().]{4,}\d")


def is_aggregator_host(url: str) -> bool:
    """True for directory/review/delivery hosts that are never an official site."""
    host = hostname(url)
    return bool(host) and host_matches(host, AGGREGATOR_HOSTS)


def _visible_text(soup: BeautifulSoup) -> str:
    for tag in soup(["script", "style", "noscript", "svg"]):
        tag.decompose()
    root = soup.body or soup
    return root.get_text(separator=" ")[:_MAX_TEXT_CHARS]


def _jaccard(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    set_a, set_b = set(a.split()), set(b.split())
    union = set_a | set_b
    return len(set_a & set_b) / len(union) if union else 0.0


def _phone_matches(expected_phone: str | None, raw_text: str) -> bool:
    digits = re.sub(r"\D+", "", expected_phone or "")
    if len(digits) < MIN_PHONE_DIGITS:
        return False
    # Compare subscriber-number tails so +31 70 … and 070 … both match
    tail = digits[-MIN_PHONE_DIGITS:]
    for match in _DIGIT_RUN_RE.finditer(raw_text):
        run = re.sub(r"\D+", "", match.group(0))
        if len(run) >= MIN_PHONE_DIGITS and tail in run:
            return True
    return False


def compute_match_score(url: str, html: str, expected: ExpectedIdentity) -> int:
    """Score how well the page at *url* matches *expected* (0–100)."""
    soup = BeautifulSoup(html, "html.parser")
    title = soup.title.get_text() if soup.title else ""
    h1_tag = soup.find("h1")
    h1 = h1_tag.get_text() if h1_tag else ""
    raw_text = _visible_text(soup)

    n_name = normalize(expected.name)
    n_title = normalize(title)
    n_h1 = normalize(h1)
    n_text = normalize(raw_text)

    host_compact = compact(hostname(url))
    name_compact = n_name.replace(" ", "")
    core = core_tokens(expected.name)
    core_compact = "".join(core)
    core_joined = " ".join(core)

    score = 0

    # Hostname carries the (core) business name
    if host_compact and name_compact and (
        name_compact in host_compact or host_compact in name_compact
    ):
        score += WEIGHT_HOST_FULL_NAME
    elif core_compact and core_compact in host_compact:
        score += WEIGHT_HOST_CORE_NAME
    elif any(tok in host_compact for tok in core):
        score += WEIGHT_HOST_CORE_TOKEN

    # Title / H1 similarity
    similarity = max(
        _jaccard(n_title, n_name),
        _jaccard(n_title, core_joined),
        _jaccard(n_h1, n_name),
        _jaccard(n_h1, core_joined),
    )
    if similarity >= TITLE_SIMILARITY_THRESHOLD:
        score += WEIGHT_TITLE_SIMILARITY
    if core and any(tok in n_title or tok in n_h1 for tok in core):
        score += WEIGHT_TITLE_CORE_TOKEN

    # Address and contact details in the visible text
    n_street = normalize(expected.street)
    n_house = normalize(expected.housenumber)
    if n_street and n_house and n_street in n_text and n_house in n_text:
        score += WEIGHT_STREET_HOUSENUMBER
    if expected.postcode and _POSTCODE_RE.search(n_text):
        score += WEIGHT_POSTCODE
    n_city = normalize(expected.city)
    if n_city and n_city in n_text:
        score += WEIGHT_CITY
    if core and any(tok in n_text for tok in core):
        score += WEIGHT_CORE_TOKEN_IN_TEXT
    if _phone_matches(expected.phone, raw_text):
        score += WEIGHT_PHONE

    # Penalties
    if any(keyword in n_text for keyword in NEGATIVE_KEYWORDS):
        score += PENALTY_NEGATIVE_KEYWORD
    if is_aggregator_host(url):
        score += PENALTY_AGGREGATOR_HOST

    return max(0, min(100, score))


@dataclass(slots=True)
class Verification:
    score: int
    accepted: bool
    page: FetchResult


class SiteVerifier:
    """Fetch candidate pages and score them against a known identity."""

    def __init__(self, fetcher: HttpFetcher, *, min_score: int = 60) -> None:
        self._fetcher = fetcher
        self.min_score = min_score

    async def fetch_html(self, url: str) -> FetchResult:
        """GET *url*; ``text`` is kept only when the response is HTML-like."""
        result = await self._fetcher.get(url)
        if result.error is None and not is_html_content_type(result.content_type):
            result.text = None
        return result

    async def verify(self, url: str, expected: ExpectedIdentity) -> Verification:
        page = await self.fetch_html(url)
        if not page.text:
            return Verification(score=0, accepted=False, page=page)
        score = compute_match_score(page.final_url or url, page.text, expected)
        accepted = score >= self.min_score
        logger.debug("Identity score for %s (%s): %d", url, expected.name, score)
        return Verification(score=score, accepted=accepted, page=page)
