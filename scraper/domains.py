"""Heuristic domain guessing from a restaurant name and city."""

import re

from scraper.text import core_tokens, strip_diacritics

DEFAULT_TLDS = (".nl", ".com", ".eu", ".be")

# DNS labels are capped at 63 characters
_MAX_LABEL_LENGTH = 63

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def _name_forms(text: str | None) -> tuple[str, str]:
    """Return the compact and hyphenated forms of *text*."""
    lowered = strip_diacritics((text or "").lower())
    compact = _NON_ALNUM_RE.sub("", lowered)
    hyphenated = _NON_ALNUM_RE.sub(" ", lowered.replace("&", " en ")).strip()
    return compact, re.sub(r"\s+", "-", hyphenated)


def _clean_host(seed: str, tld: str) -> str:
    host = re.sub(r"-{2,}", "-", f"{seed}{tld}")
    return host.strip("-")


def generate_domain_candidates(
    name: str,
    city: str | None = None,
    tlds: list[str] | tuple[str, ...] | None = None,
) -> list[str]:
    """Guess homepage URLs for a restaurant, most name-faithful first.

    Seeds are the compact and hyphenated forms of the full name and of its
    core tokens (generic words such as "restaurant" removed), combined with
    the city and with a "restaurant" prefix/suffix.  Every seed is crossed
    with *tlds*, each host also gets a ``www.`` variant, and the result is
    deduplicated in generation order.
    """
    tlds = tlds or DEFAULT_TLDS
    name_compact, name_hyph = _name_forms(name)
    if not name_compact:
        return []
    city_compact, city_hyph = _name_forms(city)
    core = core_tokens(name)
    core_compact = "".join(core)
    core_hyph = "-".join(core)

    seeds: list[str] = [name_compact, name_hyph]
    if core_compact:
        seeds += [core_compact, core_hyph]
    if city_compact:
        seeds += [name_compact + city_compact, f"{name_hyph}-{city_hyph}"]
        if core_compact:
            seeds += [core_compact + city_compact, f"{core_hyph}-{city_hyph}"]
    seeds += [
        name_compact + "restaurant",
        "restaurant" + name_compact,
        f"{name_hyph}-restaurant",
        f"restaurant-{name_hyph}",
    ]
    if core_compact:
        seeds += [
            core_compact + "restaurant",
            "restaurant" + core_compact,
            f"{core_hyph}-restaurant",
            f"restaurant-{core_hyph}",
        ]

    hosts: list[str] = []
    seen: set[str] = set()
    for seed in seeds:
        label = seed.strip("-")
        if not label or len(label) > _MAX_LABEL_LENGTH:
            continue
        for tld in tlds:
            tld = tld.strip()
            if not tld:
                continue
            if not tld.startswith("."):
                tld = f".{tld}"
            host = _clean_host(label, tld)
            for variant in (host, f"www.{host}"):
                if variant not in seen:
                    seen.add(variant)
                    hosts.append(variant)

    return [f"https://{host}/" for host in hosts]
