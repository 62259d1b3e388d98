"""Text normalisation shared by the name, domain and keyword matchers."""

import re
import unicodedata
from urllib.parse import urlparse

# Generic words ignored when matching restaurant names
GENERIC_BUSINESS_WORDS = frozenset(
    {
        "restaurant", "eetcafe", "cafe", "cafeteria", "bistro", "brasserie",
        "bar", "grill", "kitchen", "keuken", "lounge", "pizzeria", "sushi",
        "ramen", "thai", "thais", "indonesian", "indonesisch", "indian",
        "indiaas", "chinese", "chinees", "pizza", "burger", "steakhouse",
        "steak", "bakery", "bakkerij", "broodjes", "doner",
    }
)

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def strip_diacritics(text: str) -> str:
    """Remove combining marks: ``"Dránkkaart"`` → ``"Drankkaart"``."""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize(text: str | None) -> str:
    """Lowercase, strip diacritics and collapse everything else to single spaces."""
    if not text:
        return ""
    lowered = strip_diacritics(str(text).lower())
    return _NON_ALNUM_RE.sub(" ", lowered).strip()


def compact(text: str | None) -> str:
    """Like :func:`normalize` but without any separators."""
    return normalize(text).replace(" ", "")


def core_tokens(text: str | None) -> list[str]:
    """Name tokens with generic business words removed."""
    return [tok for tok in normalize(text).split() if tok not in GENERIC_BUSINESS_WORDS]


def hostname(url: str) -> str:
    """Lowercased hostname without a leading ``www.``; empty for garbage input."""
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return ""
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def host_matches(host: str, domains: frozenset[str]) -> bool:
    """True if *host* is one of *domains* or a subdomain of one."""
    return host in domains or any(host.endswith(f".{d}") for d in domains)
