"""Find the menu page (or PDF) on a restaurant's validated homepage.

Cascade, stopping at the first hit:

1. **DOM scan**: anchors on the homepage whose text, title, aria-label or
   ``data-*`` attributes contain a Dutch/English menu keyword, grouped by
   scope in priority order: ``header`` > ``nav`` > ``footer`` > rest of the
   page (reported as ``link_text``).  Within a scope an HTML page beats a
   PDF even when the PDF link comes first.
2. **Sitemap**: ``/sitemap.xml`` (or ``/sitemap_index.xml``) entries whose
   path contains a menu keyword.
3. **Slug probing**: ``/menu``, ``/menukaart``, ``/kaart`` …

Every candidate is checked with HEAD, then GET when HEAD is not 2xx, and
finally by sniffing the body when the content-type does not say HTML or PDF.
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from urllib.parse import unquote, urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from scraper.errors import SitemapParseError
from scraper.http import FetchResult, HttpFetcher, is_html_content_type
from scraper.models import MenuDiscoveryResult
from scraper.text import hostname, normalize

logger = logging.getLogger(__name__)

MENU_KEYWORDS = (
    "menukaart",
    "menu",
    "kaart",
    "gerechten",
    "wijnkaart",
    "drinken",
    "dranken",
    "lunch",
    "diner",
    "dinner",
    "eten",
    "food",
    "drinks",
)

# Short words that occur inside unrelated Dutch words ("weten", "geweten")
_WHOLE_WORD_KEYWORDS = frozenset({"eten", "food"})

MENU_SLUGS = (
    "/menu",
    "/menukaart",
    "/kaart",
    "/eten",
    "/dranken",
    "/drinken",
    "/lunch",
    "/diner",
    "/food",
    "/drinks",
)

# (tag name, method reported when an anchor inside it wins)
SCOPES = (("header", "header"), ("nav", "nav"), ("footer", "footer"))
BODY_METHOD = "link_text"

MAX_NESTED_SITEMAPS = 10
MAX_SITEMAP_CANDIDATES = 20

_SKIPPED_SCHEMES = ("mailto:", "tel:", "javascript:", "sms:", "whatsapp:")
_PDF_CONTENT_TYPE_RE = re.compile(r"application/(x-)?pdf", re.IGNORECASE)


def matches_menu_keyword(text: str) -> bool:
    """Diacritic-insensitive keyword test: ``"Dránkkaart"`` matches ``kaart``."""
    normalized = normalize(text)
    if not normalized:
        return False
    tokens = set(normalized.split())
    for keyword in MENU_KEYWORDS:
        if keyword in _WHOLE_WORD_KEYWORDS:
            if keyword in tokens:
                return True
        elif keyword in normalized:
            return True
    return False


def _anchor_text(anchor: Tag) -> str:
    parts = [
        anchor.get_text(" ", strip=True),
        anchor.get("title") or "",
        anchor.get("aria-label") or "",
    ]
    for attr, value in anchor.attrs.items():
        if attr.startswith("data-"):
            parts.append(attr[len("data-"):])
            parts.append(value if isinstance(value, str) else " ".join(value))
    return " ".join(parts)


def _scope_of(anchor: Tag) -> str:
    ancestors = {parent.name for parent in anchor.parents}
    for tag_name, method in SCOPES:
        if tag_name in ancestors:
            return method
    return BODY_METHOD


def _page_key(url: str) -> str:
    """Host, path and query of *url*, with an empty path read as ``/``."""
    parsed = urlparse(url)
    key = f"{hostname(url)}{parsed.path or '/'}"
    return f"{key}?{parsed.query}" if parsed.query else key


def extract_menu_links(html: str, base_url: str) -> dict[str, list[str]]:
    """Menu-looking links by scope method, each list in document order.

    Links back to the page itself (``/#menu`` on the homepage) are skipped.
    """
    soup = BeautifulSoup(html, "html.parser")
    page_key = _page_key(base_url)
    by_scope: dict[str, list[str]] = {method: [] for _, method in SCOPES}
    by_scope[BODY_METHOD] = []
    seen: dict[str, set[str]] = {method: set() for method in by_scope}

    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.startswith("#") or href.lower().startswith(_SKIPPED_SCHEMES):
            continue
        if not matches_menu_keyword(_anchor_text(anchor)):
            continue
        absolute, _ = urldefrag(urljoin(base_url, href))
        if urlparse(absolute).scheme not in ("http", "https"):
            continue
        key = _page_key(absolute)
        if key == page_key:
            continue
        method = _scope_of(anchor)
        if key in seen[method]:
            continue
        seen[method].add(key)
        by_scope[method].append(absolute)
    return by_scope


def parse_sitemap(xml_text: str) -> tuple[list[str], list[str]]:
    """Split a sitemap document into ``(page_urls, nested_sitemap_urls)``.

    Raises:
        SitemapParseError: When the document is not well-formed XML.
    """
    try:
        root = ET.fromstring(xml_text.strip())
    except ET.ParseError as exc:
        raise SitemapParseError(str(exc)) from exc

    pages: list[str] = []
    nested: list[str] = []
    for elem in root.iter():
        if not elem.tag.lower().endswith("loc") or not (elem.text or "").strip():
            continue
        loc = elem.text.strip()
        if root.tag.lower().endswith("sitemapindex"):
            nested.append(loc)
        else:
            pages.append(loc)
    return pages, nested


@dataclass(slots=True)
class _CheckedLink:
    url: str
    status: int | None
    content_type: str | None
    is_pdf: bool


def _sniff(result: FetchResult) -> tuple[bool, bool]:
    """Return ``(is_html, is_pdf)`` from the first bytes of the body."""
    head = result.head_bytes.lstrip()
    if head.startswith(b"%PDF-"):
        return False, True
    lowered = head[:1024].lower()
    return b"<html" in lowered or b"<!doctype html" in lowered, False


class MenuDiscoverer:
    """Locate a menu page or PDF for an already validated homepage."""

    def __init__(self, fetcher: HttpFetcher) -> None:
        self._fetcher = fetcher

    async def discover(self, homepage_url: str) -> MenuDiscoveryResult:
        homepage = await self._fetcher.get(homepage_url)
        base_url = homepage.final_url or homepage_url

        if homepage.ok and homepage.text and is_html_content_type(homepage.content_type or "text/html"):
            by_scope = extract_menu_links(homepage.text, base_url)
            for method, links in by_scope.items():
                found = await self._first_valid(links)
                if found:
                    return self._result(found, method)
        else:
            logger.debug(
                "Homepage %s not usable for DOM scan (%s)",
                homepage_url,
                homepage.error.message if homepage.error else homepage.status_code,
            )

        sitemap_links = await self._sitemap_candidates(base_url)
        found = await self._first_valid(sitemap_links)
        if found:
            return self._result(found, "sitemap")

        for slug in MENU_SLUGS:
            checked = await self.check_candidate(urljoin(base_url, slug))
            if checked:
                return self._result(checked, "slug")

        return MenuDiscoveryResult(is_valid=False)

    async def _first_valid(self, links: list[str]) -> _CheckedLink | None:
        """First HTML hit in *links*; the first PDF hit only if no HTML validates."""
        first_pdf: _CheckedLink | None = None
        for url in links:
            checked = await self.check_candidate(url)
            if checked is None:
                continue
            if not checked.is_pdf:
                return checked
            if first_pdf is None:
                first_pdf = checked
        return first_pdf

    async def check_candidate(self, url: str) -> _CheckedLink | None:
        """Validate one menu candidate; ``None`` unless it is a 2xx HTML page or PDF."""
        result = await self._fetcher.head(url)
        if result.error is None and not result.ok:
            result = await self._fetcher.get(url)
        if not result.ok:
            return None

        content_type = result.content_type
        is_pdf = bool(content_type) and bool(_PDF_CONTENT_TYPE_RE.search(content_type))
        is_html = is_html_content_type(content_type)
        if not is_pdf and not is_html:
            # Missing or ambiguous type: look at the body itself
            if result.method == "HEAD":
                result = await self._fetcher.get(url)
                if not result.ok:
                    return None
            is_html, is_pdf = _sniff(result)
            if not is_html and not is_pdf:
                return None
            content_type = "application/pdf" if is_pdf else "text/html"

        return _CheckedLink(
            url=result.final_url or url,
            status=result.status_code,
            content_type=content_type,
            is_pdf=is_pdf,
        )

    async def _sitemap_candidates(self, base_url: str) -> list[str]:
        site_host = hostname(base_url)
        pages = await self._read_sitemaps(urljoin(base_url, "/sitemap.xml"))
        if not pages:
            pages = await self._read_sitemaps(urljoin(base_url, "/sitemap_index.xml"))

        candidates: list[str] = []
        for url in pages:
            if hostname(url) != site_host:
                continue
            if not matches_menu_keyword(unquote(urlparse(url).path)):
                continue
            if url not in candidates:
                candidates.append(url)
            if len(candidates) >= MAX_SITEMAP_CANDIDATES:
                break
        return candidates

    async def _read_sitemaps(self, root_url: str) -> list[str]:
        """Page URLs from *root_url*, following up to 10 nested sitemaps."""
        queue = [root_url]
        visited: set[str] = set()
        pages: list[str] = []
        while queue and len(visited) <= MAX_NESTED_SITEMAPS:
            sitemap_url = queue.pop(0)
            if sitemap_url in visited:
                continue
            visited.add(sitemap_url)

            result = await self._fetcher.get(sitemap_url)
            if not result.ok or not result.text:
                continue
            try:
                found, nested = parse_sitemap(result.text)
            except SitemapParseError as exc:
                logger.debug("Skipping malformed sitemap %s: %s", sitemap_url, exc)
                continue
            pages.extend(found)
            queue.extend(nested)
        return pages

    @staticmethod
    def _result(found: _CheckedLink, method: str) -> MenuDiscoveryResult:
        return MenuDiscoveryResult(
            is_valid=True,
            url=found.url,
            method=method,
            http_status=found.status,
            content_type=found.content_type,
            is_pdf=found.is_pdf,
        )
