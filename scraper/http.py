"""Shared outbound HTTP session for every site, search and sitemap request."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx

from scraper.limiter import PerHostLimiter
from scraper.models import ErrorKind

logger = logging.getLogger(__name__)

DEFAULT_ACCEPT_HEADER = (
    "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
)

_HTML_CONTENT_TYPE_RE = re.compile(r"text/html|application/(xhtml\+xml|html)", re.IGNORECASE)

# Bytes kept from every response body for content sniffing
_SNIFF_BYTES = 1024

# Bodies are read up to this size and truncated beyond it
DEFAULT_MAX_BODY_BYTES = 2 * 1024 * 1024


def is_html_content_type(content_type: str | None) -> bool:
    return bool(content_type) and bool(_HTML_CONTENT_TYPE_RE.search(content_type or ""))


@dataclass(slots=True)
class FetchError:
    kind: ErrorKind
    message: str


@dataclass(slots=True)
class FetchResult:
    """Outcome of one request: either a response summary or a typed error."""

    url: str
    method: str
    final_url: str | None = None
    status_code: int | None = None
    content_type: str | None = None
    text: str | None = None
    head_bytes: bytes = b""
    truncated: bool = False
    error: FetchError | None = None

    @property
    def ok(self) -> bool:
        return (
            self.error is None
            and self.status_code is not None
            and 200 <= self.status_code < 300
        )


@dataclass(slots=True)
class _Body:
    response: httpx.Response
    content: bytes
    truncated: bool


class HttpFetcher:
    """httpx client wrapper that routes every request through a :class:`PerHostLimiter`.

    Each call has a hard deadline of *timeout* seconds covering connect,
    redirects and the body read, and reads at most *max_body_bytes* of the
    body. Network failures never raise; they come back as ``FetchResult.error``.
    """

    def __init__(
        self,
        *,
        user_agent: str,
        timeout: float = 15.0,
        max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
        limiter: PerHostLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.user_agent = user_agent
        self.timeout = timeout
        self.max_body_bytes = max_body_bytes
        self.limiter = limiter or PerHostLimiter()
        self._client = httpx.AsyncClient(
            headers={
                "User-Agent": user_agent,
                "Accept": DEFAULT_ACCEPT_HEADER,
                "Accept-Language": "nl-NL,nl;q=0.9,en;q=0.8",
            },
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            transport=transport,
        )

    async def __aenter__(self) -> HttpFetcher:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def head(self, url: str) -> FetchResult:
        return await self.request("HEAD", url)

    async def get(self, url: str, **kwargs: Any) -> FetchResult:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> FetchResult:
        return await self.request("POST", url, **kwargs)

    async def request(
        self,
        method: str,
        url: str,
        *,
        deadline: float | None = None,
        max_bytes: int | None = None,
        **kwargs: Any,
    ) -> FetchResult:
        """Send one request; *deadline* and *max_bytes* override the fetcher defaults."""
        url = _sanitize_url(url)
        deadline = deadline if deadline is not None else self.timeout
        max_bytes = max_bytes if max_bytes is not None else self.max_body_bytes
        kwargs.setdefault("timeout", deadline)

        async def send() -> _Body:
            # The deadline starts once the per-host slot is held
            async with asyncio.timeout(deadline):
                async with self._client.stream(method, url, **kwargs) as response:
                    content, truncated = await _read_capped(response, max_bytes)
                    return _Body(response, content, truncated)

        try:
            body = await self.limiter.with_limit(url, send)
        except httpx.TimeoutException as exc:
            logger.debug("%s %s timed out", method, url)
            return FetchResult(
                url=url, method=method, error=FetchError(ErrorKind.TIMEOUT, _describe(exc))
            )
        except TimeoutError:
            logger.debug("%s %s exceeded its %.1fs deadline", method, url, deadline)
            return FetchResult(
                url=url,
                method=method,
                error=FetchError(ErrorKind.TIMEOUT, f"deadline of {deadline:g}s exceeded"),
            )
        except httpx.InvalidURL as exc:
            return FetchResult(
                url=url, method=method, error=FetchError(ErrorKind.INVALID_URL, _describe(exc))
            )
        except httpx.HTTPError as exc:
            logger.debug("%s %s failed: %s", method, url, exc)
            kind = (
                ErrorKind.INVALID_URL
                if isinstance(exc, httpx.UnsupportedProtocol)
                else ErrorKind.NETWORK
            )
            return FetchResult(
                url=url, method=method, error=FetchError(kind, _describe(exc))
            )
        return _build_result(url, method, body)


def _describe(exc: Exception) -> str:
    return str(exc) or type(exc).__name__


async def _read_capped(response: httpx.Response, max_bytes: int) -> tuple[bytes, bool]:
    """Read the body until *max_bytes*; the rest is never downloaded."""
    if response.request.method == "HEAD":
        return b"", False
    chunks: list[bytes] = []
    size = 0
    async for chunk in response.aiter_bytes():
        chunks.append(chunk)
        size += len(chunk)
        if size > max_bytes:
            return b"".join(chunks)[:max_bytes], True
    return b"".join(chunks), False


def _build_result(url: str, method: str, body: _Body) -> FetchResult:
    response = body.response
    content_type = response.headers.get("content-type")
    text: str | None = None
    if method != "HEAD" and (
        content_type is None
        or any(token in content_type.lower() for token in ("text", "html", "xml", "json"))
    ):
        try:
            text = body.content.decode(response.encoding or "utf-8", errors="replace")
        except LookupError:
            # Unknown charset in the content-type header
            text = body.content.decode("utf-8", errors="replace")
    if body.truncated:
        logger.debug("Body of %s truncated at %d bytes", url, len(body.content))
    return FetchResult(
        url=url,
        method=method,
        final_url=str(response.url),
        status_code=response.status_code,
        content_type=content_type,
        text=text,
        head_bytes=body.content[:_SNIFF_BYTES],
        truncated=body.truncated,
    )


def _sanitize_url(url: str) -> str:
    """Remove control characters and encode literal spaces."""
    if not url:
        return url
    cleaned = re.sub(r"[\x00-\x1f\x7f]", "", url).strip()
    if " " in cleaned:
        cleaned = cleaned.replace(" ", "%20")
    return cleaned
