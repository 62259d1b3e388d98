"""Tests for heuristic domain guessing."""

from urllib.parse import urlparse

from scraper.domains import generate_domain_candidates


def _hosts(urls: list[str]) -> list[str]:
    return [urlparse(u).hostname or "" for u in urls]


def test_generates_compact_hyphenated_and_city_variants() -> None:
    urls = generate_domain_candidates("De Gouden Leeuw", "Amsterdam")
    hosts = _hosts(urls)

    assert "degoudenleeuw.nl" in hosts
    assert "de-gouden-leeuw.nl" in hosts
    assert "www.degoudenleeuw.nl" in hosts
    assert "degoudenleeuwamsterdam.nl" in hosts
    assert "de-gouden-leeuw-amsterdam.nl" in hosts
    assert "degoudenleeuwrestaurant.com" in hosts
    assert "restaurant-de-gouden-leeuw.be" in hosts


def test_no_duplicate_or_empty_hosts() -> None:
    urls = generate_domain_candidates("De Gouden Leeuw", "Amsterdam")
    hosts = _hosts(urls)

    assert len(hosts) == len(set(hosts))
    assert all(hosts)
    assert all(u.startswith("https://") and u.endswith("/") for u in urls)


def test_most_faithful_variant_comes_first() -> None:
    urls = generate_domain_candidates("De Gouden Leeuw", "Amsterdam", [".nl", ".com"])
    assert urls[:4] == [
        "https://degoudenleeuw.nl/",
        "https://www.degoudenleeuw.nl/",
        "https://degoudenleeuw.com/",
        "https://www.degoudenleeuw.com/",
    ]


def test_core_tokens_drop_generic_words_and_diacritics() -> None:
    hosts = _hosts(generate_domain_candidates("Eetcafé De Brug", None, [".nl"]))

    assert "eetcafedebrug.nl" in hosts
    assert "debrug.nl" in hosts
    assert "de-brug.nl" in hosts
    # No city given, so no city variants
    assert not any("none" in h for h in hosts)


def test_ampersand_becomes_en_in_hyphenated_form() -> None:
    hosts = _hosts(generate_domain_candidates("Stout & Zoet", None, [".nl"]))
    assert "stout-en-zoet.nl" in hosts
    assert "stoutzoet.nl" in hosts


def test_tlds_without_leading_dot_are_accepted() -> None:
    hosts = _hosts(generate_domain_candidates("Bolle", None, ["nl"]))
    assert hosts[0] == "bolle.nl"


def test_empty_name_yields_nothing() -> None:
    assert generate_domain_candidates("", "Utrecht") == []
    assert generate_domain_candidates("!!!", "Utrecht") == []


def test_overlong_labels_are_skipped() -> None:
    name = "Restaurant Het Allerlangste Eethuis Van Heel Nederland En Ver Daarbuiten Ook"
    hosts = _hosts(generate_domain_candidates(name, None, [".nl"]))
    assert hosts
    assert all(len(h.split(".")[-2]) <= 63 for h in hosts)
