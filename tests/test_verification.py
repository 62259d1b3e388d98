"""Tests for identity scoring of candidate websites."""

import httpx

from scraper.models import ExpectedIdentity
from scraper.verification import SiteVerifier, compute_match_score, is_aggregator_host

EXPECTED = ExpectedIdentity(
    name="Restaurant De Gouden Leeuw",
    street="Prinsengracht",
    housenumber="123",
    postcode="1015 DV",
    city="Amsterdam",
    phone="+31 20 123 4567",
)


def _page(body: str, title: str = "Welkom") -> str:
    return f"<html><head><title>{title}</title></head><body>{body}</body></html>"


def test_official_site_scores_high() -> None:
    html = _page(
        "<h1>De Gouden Leeuw</h1><p>Prinsengracht 123, 1015 DV Amsterdam</p>"
        "<p>Bel ons: 020 123 4567</p>",
        title="De Gouden Leeuw | Restaurant in Amsterdam",
    )
    score = compute_match_score("https://degoudenleeuw.nl/", html, EXPECTED)
    assert score >= 90


def test_unrelated_page_scores_low() -> None:
    html = _page("<h1>Autogarage Jansen</h1><p>APK keuring</p>", title="Garage Jansen")
    assert compute_match_score("https://garagejansen.nl/", html, EXPECTED) < 20


def test_adding_street_and_housenumber_never_lowers_score() -> None:
    base = "<p>Lekker eten in Amsterdam</p>"
    without = compute_match_score("https://leeuw.nl/", _page(base), EXPECTED)
    with_address = compute_match_score(
        "https://leeuw.nl/", _page(base + "<p>Prinsengracht 123</p>"), EXPECTED
    )
    assert with_address >= without
    assert with_address > without


def test_negative_keyword_never_raises_score() -> None:
    body = "<h1>De Gouden Leeuw</h1><p>Prinsengracht 123 Amsterdam</p>"
    clean = compute_match_score("https://degoudenleeuw.nl/", _page(body), EXPECTED)
    flagged = compute_match_score(
        "https://degoudenleeuw.nl/",
        _page(body + "<p>Lees onze reviews op Tripadvisor</p>"),
        EXPECTED,
    )
    assert flagged <= clean
    assert flagged < clean


def test_aggregator_host_is_disqualified() -> None:
    html = _page(
        "<h1>De Gouden Leeuw</h1><p>Prinsengracht 123, 1015 DV Amsterdam</p>",
        title="De Gouden Leeuw Amsterdam",
    )
    score = compute_match_score("https://www.tripadvisor.com/leeuw", html, EXPECTED)
    assert score < 60


def test_script_text_is_not_visible_text() -> None:
    hidden = _page("<script>var street = 'Prinsengracht 123';</script>")
    visible = _page("<p>Prinsengracht 123</p>")
    url = "https://example.nl/"
    assert compute_match_score(url, hidden, EXPECTED) < compute_match_score(url, visible, EXPECTED)


def test_score_is_clamped() -> None:
    html = _page(
        "<h1>De Gouden Leeuw</h1><p>Prinsengracht 123, 1015 DV Amsterdam</p>"
        "<p>Tel 020 123 4567</p>",
        title="De Gouden Leeuw",
    )
    assert compute_match_score("https://degoudenleeuw.nl/", html, EXPECTED) == 100
    assert compute_match_score("https://thuisbezorgd.nl/x", _page("facebook"), EXPECTED) == 0


def test_is_aggregator_host() -> None:
    assert is_aggregator_host("https://www.thuisbezorgd.nl/menu/leeuw")
    assert is_aggregator_host("https://nl.tripadvisor.com/Restaurant")
    assert not is_aggregator_host("https://degoudenleeuw.nl/")
    assert not is_aggregator_host("not a url")


async def test_verify_fetches_and_applies_threshold(make_fetcher) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "degoudenleeuw.nl":
            return httpx.Response(
                200,
                html=_page(
                    "<h1>De Gouden Leeuw</h1><p>Prinsengracht 123 Amsterdam</p>",
                    title="De Gouden Leeuw",
                ),
            )
        return httpx.Response(200, html=_page("Parkeren in Amsterdam"))

    verifier = SiteVerifier(make_fetcher(handler), min_score=60)

    good = await verifier.verify("https://degoudenleeuw.nl/", EXPECTED)
    bad = await verifier.verify("https://parkeren.nl/", EXPECTED)

    assert good.accepted and good.score >= 60
    assert not bad.accepted


async def test_fetch_html_drops_non_html_bodies(make_fetcher) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"name": "De Gouden Leeuw"})

    verifier = SiteVerifier(make_fetcher(handler))
    page = await verifier.fetch_html("https://api.example.nl/")
    assert page.ok
    assert page.text is None

    result = await verifier.verify("https://api.example.nl/", EXPECTED)
    assert result.score == 0
    assert not result.accepted
