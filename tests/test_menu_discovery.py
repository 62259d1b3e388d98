"""Tests for the menu discovery cascade."""

import httpx

from scraper.menu_discovery import (
    MenuDiscoverer,
    extract_menu_links,
    matches_menu_keyword,
    parse_sitemap,
)

SITEMAP_NS = 'xmlns="http://www.sitemaps.org/schemas/sitemap/0.9"'


def _routes(
    pages: dict[str, httpx.Response], calls: list[str] | None = None
):
    """Handler serving ``pages`` keyed by ``"METHOD path"`` or ``path``; 404 otherwise."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(f"{request.method} {request.url.path}")
        key = f"{request.method} {request.url.path}"
        template = pages.get(key) or pages.get(request.url.path)
        if template is None:
            return httpx.Response(404)
        # Fresh response per request; httpx binds a response to its request
        return httpx.Response(
            template.status_code, headers=template.headers, content=template.content
        )

    return handler


def _html(body: str) -> httpx.Response:
    return httpx.Response(200, html=f"<html><body>{body}</body></html>")


def test_keyword_matching_is_diacritic_insensitive() -> None:
    assert matches_menu_keyword("Dránkkaart")
    assert matches_menu_keyword("Onze MENUKAART")
    assert matches_menu_keyword("eten & drinken")
    assert not matches_menu_keyword("Meer weten?")
    assert not matches_menu_keyword("Contact")


def test_extract_menu_links_groups_by_scope_and_skips_non_pages() -> None:
    html = """
    <html><body>
      <header><nav><a href="/menu">Menu</a></nav></header>
      <nav><a href="/kaart" title="Onze kaart">X</a><a href="/kaart#top">Kaart</a></nav>
      <main>
        <a href="mailto:info@leeuw.nl">Menu per mail</a>
        <a href="tel:+31201234567">Menu bestellen</a>
        <a href="#menu">Menu</a>
        <a href="javascript:void(0)">Menu</a>
        <a href="/over-ons">Over ons</a>
        <a href="https://other.nl/menu" data-section="lunch">Y</a>
      </main>
      <footer><a href="/menu.pdf" aria-label="Menukaart (PDF)">PDF</a></footer>
    </body></html>
    """
    links = extract_menu_links(html, "https://leeuw.nl/")

    assert links["header"] == ["https://leeuw.nl/menu"]
    assert links["nav"] == ["https://leeuw.nl/kaart"]
    assert links["footer"] == ["https://leeuw.nl/menu.pdf"]
    assert links["link_text"] == ["https://other.nl/menu"]


def test_extract_menu_links_skips_links_to_the_page_itself() -> None:
    html = """
    <nav>
      <a href="/#menu">Menu</a>
      <a href="https://www.x.nl/">Menukaart</a>
      <a href="/?page_id=12">Menu</a>
    </nav>
    """
    links = extract_menu_links(html, "https://x.nl")

    assert links["nav"] == ["https://x.nl/?page_id=12"]


async def test_fragment_link_on_bare_host_is_not_the_menu(make_fetcher) -> None:
    pages = {
        "GET /": _html('<nav><a href="/#menu">Menu</a></nav>'),
        "GET /menukaart": _html("<h1>Kaart</h1>"),
    }
    result = await MenuDiscoverer(make_fetcher(_routes(pages))).discover("https://x.nl")

    assert result.is_valid
    assert result.method == "slug"
    assert result.url == "https://x.nl/menukaart"


def test_parse_sitemap_splits_pages_and_nested_sitemaps() -> None:
    index = f"""<?xml version="1.0" encoding="UTF-8"?>
    <sitemapindex {SITEMAP_NS}>
      <sitemap><loc>https://leeuw.nl/sitemap-pages.xml</loc></sitemap>
    </sitemapindex>"""
    urlset = f"""<urlset {SITEMAP_NS}><url><loc> https://leeuw.nl/menukaart </loc></url></urlset>"""

    assert parse_sitemap(index) == ([], ["https://leeuw.nl/sitemap-pages.xml"])
    assert parse_sitemap(urlset) == (["https://leeuw.nl/menukaart"], [])


async def test_header_anchor_validated_via_head_then_get(make_fetcher) -> None:
    pages = {
        "GET /": _html('<header><a href="/menukaart" title="Onze menukaart">Menukaart</a></header>'),
        "HEAD /menukaart": httpx.Response(405, headers={"content-type": "text/plain"}),
        "GET /menukaart": _html("kaart"),
    }
    result = await MenuDiscoverer(make_fetcher(_routes(pages))).discover("https://example.com")

    assert result.is_valid
    assert result.method == "header"
    assert result.url == "https://example.com/menukaart"
    assert not result.is_pdf


async def test_html_preferred_over_earlier_pdf_in_same_scope(make_fetcher) -> None:
    pages = {
        "GET /": _html('<nav><a href="/menu.pdf">Menu</a><a href="/menu">Menu</a></nav>'),
        "HEAD /menu.pdf": httpx.Response(200, headers={"content-type": "application/pdf"}),
        "HEAD /menu": httpx.Response(200, headers={"content-type": "text/html"}),
    }
    result = await MenuDiscoverer(make_fetcher(_routes(pages))).discover("https://example.com")

    assert result.is_valid
    assert result.method == "nav"
    assert result.url == "https://example.com/menu"
    assert result.is_pdf is False


async def test_pdf_accepted_when_scope_has_no_html(make_fetcher) -> None:
    pages = {
        "GET /": _html('<nav><a href="/menu.pdf">Menu</a><a href="/kaart">Kaart</a></nav>'),
        "HEAD /menu.pdf": httpx.Response(200, headers={"content-type": "application/pdf"}),
    }
    result = await MenuDiscoverer(make_fetcher(_routes(pages))).discover("https://example.com")

    assert result.is_valid
    assert result.method == "nav"
    assert result.is_pdf
    assert result.url == "https://example.com/menu.pdf"


async def test_header_scope_wins_over_nav_and_footer(make_fetcher) -> None:
    pages = {
        "GET /": _html(
            '<nav><a href="/nav-menu">Menu</a></nav>'
            '<header><a href="/header-menu">Menu</a></header>'
            '<footer><a href="/footer-menu">Menu</a></footer>'
        ),
        "HEAD /nav-menu": httpx.Response(200, headers={"content-type": "text/html"}),
        "HEAD /header-menu": httpx.Response(200, headers={"content-type": "text/html"}),
        "HEAD /footer-menu": httpx.Response(200, headers={"content-type": "text/html"}),
    }
    result = await MenuDiscoverer(make_fetcher(_routes(pages))).discover("https://example.com")

    assert result.method == "header"
    assert result.url == "https://example.com/header-menu"


async def test_matches_on_attributes_and_diacritics_in_nav(make_fetcher) -> None:
    pages = {
        "GET /": _html(
            '<nav><a href="/kaart" title="Dránkkaart" aria-label="Wijnkaart" data-menu="true">X</a></nav>'
        ),
        "/kaart": _html("kaart"),
    }
    result = await MenuDiscoverer(make_fetcher(_routes(pages))).discover("https://attr.com")

    assert result.is_valid
    assert result.method == "nav"


async def test_body_match_reports_link_text(make_fetcher) -> None:
    pages = {
        "GET /": _html('<main><a href="/menu">Menu</a></main>'),
        "HEAD /menu": httpx.Response(200, headers={"content-type": "text/html"}),
    }
    result = await MenuDiscoverer(make_fetcher(_routes(pages))).discover("https://body.com")

    assert result.method == "link_text"
    assert result.url == "https://body.com/menu"


async def test_skips_mailto_tel_fragment_and_falls_back_to_slug(make_fetcher) -> None:
    calls: list[str] = []
    pages = {
        "GET /": _html(
            '<main><a href="mailto:test@slug.com">Email</a>'
            '<a href="tel:+3112345678">Phone</a>'
            '<a href="#menu">Menu Fragment</a></main>'
        ),
        "HEAD /menu": httpx.Response(404),
        "GET /menu": httpx.Response(200, headers={"content-type": "text/html"}),
    }
    result = await MenuDiscoverer(make_fetcher(_routes(pages, calls))).discover("https://slug.com")

    assert result.is_valid
    assert result.method == "slug"
    assert result.url == "https://slug.com/menu"
    assert calls == [
        "GET /",
        "GET /sitemap.xml",
        "GET /sitemap_index.xml",
        "HEAD /menu",
        "GET /menu",
    ]


async def test_sitemap_fallback_returns_validated_metadata(make_fetcher) -> None:
    sitemap = '<?xml version="1.0"?><urlset><url><loc>https://example.com/menukaart</loc></url></urlset>'
    pages = {
        "GET /": _html("No links"),
        "GET /sitemap.xml": httpx.Response(
            200, content=sitemap.encode(), headers={"content-type": "application/xml"}
        ),
        "HEAD /menukaart": httpx.Response(200, headers={"content-type": "text/html"}),
    }
    result = await MenuDiscoverer(make_fetcher(_routes(pages))).discover("https://example.com")

    assert result.is_valid
    assert result.method == "sitemap"
    assert result.url == "https://example.com/menukaart"
    assert result.http_status == 200
    assert "html" in result.content_type


async def test_sitemap_index_with_nested_sitemap(make_fetcher) -> None:
    index = (
        f'<?xml version="1.0"?><sitemapindex {SITEMAP_NS}>'
        "<sitemap><loc>https://example.com/sitemap-pages.xml</loc></sitemap>"
        "</sitemapindex>"
    )
    nested = (
        f"<urlset {SITEMAP_NS}>"
        "<url><loc>https://example.com/over-ons</loc></url>"
        "<url><loc>https://example.com/menukaart</loc></url>"
        "</urlset>"
    )
    xml = {"content-type": "application/xml"}
    pages = {
        "GET /": _html("Welkom"),
        "GET /sitemap_index.xml": httpx.Response(200, content=index.encode(), headers=xml),
        "GET /sitemap-pages.xml": httpx.Response(200, content=nested.encode(), headers=xml),
        "HEAD /menukaart": httpx.Response(200, headers={"content-type": "text/html"}),
    }
    result = await MenuDiscoverer(make_fetcher(_routes(pages))).discover("https://example.com/")

    assert result.is_valid
    assert result.method == "sitemap"
    assert result.url == "https://example.com/menukaart"


async def test_malformed_sitemap_is_skipped(make_fetcher) -> None:
    pages = {
        "GET /": _html("Welkom"),
        "GET /sitemap.xml": httpx.Response(
            200, content=b"<urlset><url><loc>broken", headers={"content-type": "application/xml"}
        ),
        "HEAD /kaart": httpx.Response(200, headers={"content-type": "text/html"}),
    }
    result = await MenuDiscoverer(make_fetcher(_routes(pages))).discover("https://example.com/")

    assert result.is_valid
    assert result.method == "slug"
    assert result.url == "https://example.com/kaart"


async def test_content_sniffing_detects_pdf_without_header(make_fetcher) -> None:
    pages = {
        "GET /": _html('<footer><a href="/menu.pdf">Menu</a></footer>'),
        "/menu.pdf": httpx.Response(200, content=b"%PDF-1.7\n binary"),
    }
    result = await MenuDiscoverer(make_fetcher(_routes(pages))).discover("https://example.com")

    assert result.is_valid
    assert result.is_pdf
    assert result.method == "footer"
    assert result.content_type == "application/pdf"


async def test_homepage_failure_still_probes_slugs(make_fetcher) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/":
            raise httpx.ConnectError("reset", request=request)
        if request.url.path == "/menu":
            return _html("Menu")
        return httpx.Response(404)

    result = await MenuDiscoverer(make_fetcher(handler)).discover("https://flaky.nl/")
    assert result.method == "slug"
    assert result.url == "https://flaky.nl/menu"


async def test_nothing_found(make_fetcher) -> None:
    pages = {"GET /": _html("<p>Welkom</p>")}
    result = await MenuDiscoverer(make_fetcher(_routes(pages))).discover("https://empty.nl/")

    assert not result.is_valid
    assert result.url is None
    assert result.method is None
