"""Restaurant website and menu discovery.

HTTP-facing building blocks of the competitive ingest pipeline: geocoding
(Nominatim), place enumeration (Overpass), URL validation, identity
scoring, domain guessing, search fallbacks and menu discovery.  Every
request goes through one shared :class:`scraper.http.HttpFetcher`.
The run orchestration and persistence live in :mod:`app.services.ingest`.
"""
