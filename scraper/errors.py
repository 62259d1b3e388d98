"""Exception hierarchy for the discovery pipeline."""


class ScraperError(Exception):
    """Base class for pipeline errors."""

    pass


class UpstreamError(ScraperError):
    """Raised when the geocoder or place source is unavailable or returns garbage."""

    pass


class GeocodeNotFoundError(UpstreamError):
    """Raised when the geocoder returns no results for a location query."""

    pass


class BlockDetectedError(ScraperError):
    """Raised when a search engine answers with HTTP 429 or a block page."""

    pass


class SitemapParseError(ScraperError):
    """Raised when a sitemap document is not well-formed XML."""

    pass
