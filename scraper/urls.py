"""URL normalisation, OSM website-tag ranking and HEAD/GET validation."""

from __future__ import annotations

import logging
import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from scraper.http import HttpFetcher, is_html_content_type
from scraper.models import Candidate, ValidationResult
from scraper.text import host_matches

logger = logging.getLogger(__name__)

SOCIAL_HOSTS = frozenset(
    {
        "facebook.com",
        "fb.com",
        "instagram.com",
        "twitter.com",
        "x.com",
        "tiktok.com",
        "youtube.com",
        "linkedin.com",
    }
)

# OSM tags that may carry a website, in preference order
WEBSITE_TAG_KEYS = ("website", "contact:website", "url", "contact:url")

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)


def normalize_url(raw: str) -> str:
    """Add ``https://`` when missing, lowercase the host and drop ``utm_*`` params.

    Input that cannot be parsed is returned unchanged.
    """
    if not raw:
        return raw
    raw = raw.strip()
    if raw.startswith("//"):
        raw = f"https:{raw}"
    elif not _SCHEME_RE.match(raw):
        raw = f"https://{raw}"
    try:
        parts = urlsplit(raw)
        host = parts.hostname
        port = parts.port
    except ValueError:
        return raw
    if not host:
        return raw

    netloc = host.lower()
    if port is not None:
        netloc = f"{netloc}:{port}"
    if parts.username:
        netloc = f"{parts.username}@{netloc}"

    pairs = parse_qsl(parts.query, keep_blank_values=True)
    kept = [(key, value) for key, value in pairs if not key.lower().startswith("utm_")]
    query = urlencode(kept) if len(kept) != len(pairs) else parts.query
    return urlunsplit((parts.scheme.lower(), netloc, parts.path or "/", query, parts.fragment))


def _host(url: str) -> str:
    try:
        return (urlsplit(normalize_url(url)).hostname or "").lower()
    except ValueError:
        return url


def is_social(url: str) -> bool:
    """True for facebook/instagram/… hosts, including subdomains like ``m.facebook.com``."""
    host = _host(url)
    if host.startswith("www."):
        host = host[4:]
    return bool(host) and host_matches(host, SOCIAL_HOSTS)


def _rank(candidate: Candidate) -> int:
    score = 0
    if candidate.is_social:
        score -= 10
    if candidate.source in ("website", "contact:website"):
        score += 5
    elif candidate.source in ("url", "contact:url"):
        score += 2
    return score


def pick_best_osm_website(tags: dict[str, str]) -> list[Candidate]:
    """Website candidates from OSM tags, deduplicated by host and ranked.

    Non-social ``website``/``contact:website`` values come first, then
    ``url``/``contact:url`` values, then social profiles.
    """
    candidates: list[Candidate] = []
    seen_hosts: set[str] = set()
    for key in WEBSITE_TAG_KEYS:
        value = tags.get(key)
        if not value or not isinstance(value, str):
            continue
        # OSM allows several values separated by ";"
        for part in value.split(";"):
            part = part.strip()
            if not part:
                continue
            url = normalize_url(part)
            host = _host(url)
            if host in seen_hosts:
                continue
            seen_hosts.add(host)
            candidates.append(Candidate(url=url, source=key, is_social=is_social(url)))
    # sorted() is stable, so tag order breaks ties
    return sorted(candidates, key=_rank, reverse=True)


class UrlValidator:
    """Check that a candidate URL answers 2xx with an HTML-like, non-social page."""

    def __init__(self, fetcher: HttpFetcher) -> None:
        self._fetcher = fetcher

    async def validate(self, url: str) -> ValidationResult:
        """HEAD the URL, falling back to GET when HEAD answers non-2xx (405 included).

        Never raises: network failures come back as ``is_valid=False`` with
        ``error_kind``/``error_message`` set.
        """
        result = await self._fetcher.head(url)
        if result.error is None and not result.ok:
            result = await self._fetcher.get(url)

        if result.error is not None:
            logger.debug("Validation of %s failed: %s", url, result.error.message)
            return ValidationResult(
                candidate_url=url,
                is_valid=False,
                error_kind=result.error.kind,
                error_message=result.error.message,
            )

        effective_url = result.final_url or url
        content_type = result.content_type
        # A missing content-type is given the benefit of the doubt
        html_like = is_html_content_type(content_type) if content_type else True
        social = is_social(effective_url)
        valid = result.ok and html_like and not social
        logger.debug(
            "Validated %s → %s (status=%s, type=%s, valid=%s)",
            url,
            effective_url,
            result.status_code,
            content_type,
            valid,
        )
        return ValidationResult(
            candidate_url=url,
            is_valid=valid,
            effective_url=effective_url,
            http_status=result.status_code,
            content_type=content_type,
            is_social=social,
        )

