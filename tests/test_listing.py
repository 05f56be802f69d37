"""Tests for listing page parsing and the listing walker."""

import httpx
import pytest

from guide_tracker.core.enums import Distinction
from guide_tracker.ingestion.adapters import ListingWalker, parse_listing_page
from guide_tracker.ingestion.crawler import Fetcher
from guide_tracker.ingestion.registry import PolitenessProfile
from guide_tracker.ingestion.session import CrawlSession

BASE = "https://guide.michelin.com"
START_URL = f"{BASE}/en/restaurants/3-stars-michelin"


def listing_html(slugs: list[str], next_href: str | None = None) -> str:
    """Render a listing page with one card per slug."""
    cards = "\n".join(
        f"""
        <div class="card__menu" data-lat="48.8{i}" data-lng="2.3{i}">
          <a class="link" href="/en/ile-de-france/paris/restaurant/{slug}"></a>
          <h3 class="card__menu-content--title">{slug}</h3>
          <div class="card__menu-footer--score">Paris, France</div>
        </div>
        """
        for i, slug in enumerate(slugs)
    )
    pagination = ""
    if next_href:
        pagination = f"""
        <a class="btn btn-outline-secondary" href="{START_URL}/page/1"><i class="fa fa-angle-left"></i></a>
        <a class="btn btn-outline-secondary" href="{next_href}"><i class="fa fa-angle-right"></i></a>
        """
    return f"<html><body>{cards}<div class='pagination'>{pagination}</div></body></html>"


def _profile() -> PolitenessProfile:
    return PolitenessProfile(delay=0.0, random_delay=0.0, blocked_backoff=0.0, max_retries=1)


def _pages_transport(pages: dict[str, str]) -> tuple[httpx.MockTransport, list[str]]:
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        requested.append(url)
        if url not in pages:
            return httpx.Response(404)
        return httpx.Response(200, content=pages[url].encode())

    return httpx.MockTransport(handler), requested


class TestParseListingPage:
    """Tests for parse_listing_page()."""

    def test_cards_and_next_link(self) -> None:
        page = parse_listing_page(
            listing_html(["le-cinq", "arpege"], next_href="/en/restaurants/3-stars-michelin/page/2"),
            START_URL,
            Distinction.THREE_STARS,
        )

        assert [e.url for e in page.entries] == [
            f"{BASE}/en/ile-de-france/paris/restaurant/le-cinq",
            f"{BASE}/en/ile-de-france/paris/restaurant/arpege",
        ]
        first = page.entries[0]
        assert first.location == "Paris, France"
        assert (first.latitude, first.longitude) == ("48.80", "2.30")
        assert first.distinction == Distinction.THREE_STARS
        assert page.next_url == f"{BASE}/en/restaurants/3-stars-michelin/page/2"

    def test_last_page_has_no_next(self) -> None:
        page = parse_listing_page(listing_html(["le-cinq"]), START_URL)
        assert page.next_url is None

    def test_cards_without_links_are_skipped(self) -> None:
        html = '<div class="card__menu"><h3>No link</h3></div>' + listing_html(["le-cinq"])
        page = parse_listing_page(html, START_URL)
        assert len(page.entries) == 1

    def test_entry_context(self) -> None:
        page = parse_listing_page(listing_html(["le-cinq"]), START_URL, Distinction.ONE_STAR)
        context = page.entries[0].to_context()

        assert context.url == page.entries[0].url
        assert context.location == "Paris, France"
        assert context.listing_distinction == "1 Star"
        assert context.attempt == 1


class TestListingWalker:
    """Tests for ListingWalker.walk()."""

    @pytest.mark.asyncio
    async def test_follows_pagination(self) -> None:
        page_two = f"{START_URL}/page/2"
        transport, requested = _pages_transport(
            {
                START_URL: listing_html(["a", "b"], next_href=page_two),
                page_two: listing_html(["c"]),
            }
        )
        session = CrawlSession()

        async with Fetcher(_profile(), ["guide.michelin.com"], session, transport=transport) as fetcher:
            entries = [e async for e in ListingWalker(fetcher, session).walk(START_URL, Distinction.THREE_STARS)]

        assert [e.url.rsplit("/", 1)[-1] for e in entries] == ["a", "b", "c"]
        assert requested == [START_URL, page_two]
        assert session.get("queued") == 3

    @pytest.mark.asyncio
    async def test_budget_stops_mid_page(self) -> None:
        page_two = f"{START_URL}/page/2"
        transport, requested = _pages_transport(
            {
                START_URL: listing_html(["a", "b", "c"], next_href=page_two),
                page_two: listing_html(["d"]),
            }
        )
        session = CrawlSession(max_items=2)

        async with Fetcher(_profile(), ["guide.michelin.com"], session, transport=transport) as fetcher:
            entries = [e async for e in ListingWalker(fetcher, session).walk(START_URL)]

        assert len(entries) == 2
        assert requested == [START_URL]

    @pytest.mark.asyncio
    async def test_failed_page_ends_walk(self) -> None:
        transport, _ = _pages_transport({})
        session = CrawlSession()

        async with Fetcher(_profile(), ["guide.michelin.com"], session, transport=transport) as fetcher:
            entries = [e async for e in ListingWalker(fetcher, session).walk(START_URL)]

        assert entries == []
        assert session.get("errors") == 1
        assert "HTTP 404" in session.errors[0]

    @pytest.mark.asyncio
    async def test_stopped_session_yields_nothing(self) -> None:
        transport, requested = _pages_transport({START_URL: listing_html(["a"])})
        session = CrawlSession()
        session.request_stop()

        async with Fetcher(_profile(), ["guide.michelin.com"], session, transport=transport) as fetcher:
            entries = [e async for e in ListingWalker(fetcher, session).walk(START_URL)]

        assert entries == []
        assert requested == []
