"""
Listing Walker Module
=====================

Walks the paginated category listings of the live guide and yields one
entry per restaurant card: the detail URL plus the coarse location and
coordinates shown on the card.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from urllib.parse import urljoin

from guide_tracker.core.enums import Distinction
from guide_tracker.ingestion.adapters.base import make_soup, select_attr, select_text
from guide_tracker.ingestion.crawler import Fetcher
from guide_tracker.ingestion.session import CrawlSession, RequestContext

logger = logging.getLogger(__name__)

CARD_SELECTOR = "div.card__menu"
LINK_SELECTOR = "a.link"
LOCATION_SELECTOR = ".card__menu-footer--score"
NEXT_PAGE_SELECTOR = "a.btn:has(i.fa-angle-right)"


@dataclass
class ListingEntry:
    """One restaurant card on a listing page."""

    url: str
    location: str = ""
    latitude: str = ""
    longitude: str = ""
    distinction: Distinction | None = None

    def to_context(self) -> RequestContext:
        return RequestContext(
            url=self.url,
            location=self.location,
            latitude=self.latitude,
            longitude=self.longitude,
            listing_distinction=self.distinction.value if self.distinction else "",
        )


@dataclass
class ListingPage:
    """Parsed listing page: cards in document order and the next page link."""

    entries: list[ListingEntry] = field(default_factory=list)
    next_url: str | None = None


def parse_listing_page(
    content: bytes | str,
    base_url: str,
    distinction: Distinction | None = None,
) -> ListingPage:
    """
    Parse one listing page.

    Cards without a detail link are skipped. Relative links are resolved
    against ``base_url``.
    """
    soup = make_soup(content)
    page = ListingPage()

    for card in soup.select(CARD_SELECTOR):
        href = select_attr(card, LINK_SELECTOR, "href")
        if not href:
            continue
        page.entries.append(
            ListingEntry(
                url=urljoin(base_url, href),
                location=select_text(card, LOCATION_SELECTOR),
                latitude=(card.get("data-lat") or "").strip(),
                longitude=(card.get("data-lng") or "").strip(),
                distinction=distinction,
            )
        )

    next_href = select_attr(soup, NEXT_PAGE_SELECTOR, "href")
    if next_href:
        page.next_url = urljoin(base_url, next_href)
    return page


class ListingWalker:
    """Follows "next page" links from a category start URL."""

    def __init__(self, fetcher: Fetcher, session: CrawlSession) -> None:
        self.fetcher = fetcher
        self.session = session

    async def walk(self, start_url: str, distinction: Distinction | None = None) -> AsyncIterator[ListingEntry]:
        """
        Yield listing entries lazily, page by page.

        Stops when there is no next page, when a listing page cannot be
        fetched, when a stop is requested, or as soon as the session's item
        budget is reached, even in the middle of a page.
        """
        url: str | None = start_url
        page_number = 0
        while url and not self.session.stopped:
            result = await self.fetcher.fetch(url, RequestContext(url=url))
            if not result.success:
                if not (result.skipped or result.cancelled):
                    self.session.record_error(f"listing {url}: {result.error}")
                return

            page_number += 1
            page = parse_listing_page(result.content, url, distinction)
            logger.info(f"Listing page {page_number} for {distinction.value if distinction else start_url}: {len(page.entries)} restaurants")

            for entry in page.entries:
                if self.session.stopped or not self.session.try_queue_item():
                    return
                yield entry

            url = page.next_url
