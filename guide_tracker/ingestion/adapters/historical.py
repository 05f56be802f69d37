"""
Historical Snapshot Extractors
==============================

Archived detail pages come in several markup generations. A format
detection step picks one extractor per page:

- current:        today's "data-sheet" layout
- legacy_b:       the "restaurant-details" layout
- legacy_a:       the older "poi_intro" layout
- inline_script:  data only in ``dLayer['key'] = 'value'`` script assignments
- unknown:        none of the above; a partial fact is still produced
"""

from __future__ import annotations

import logging

from bs4 import BeautifulSoup

from guide_tracker.core.enums import PageFormat, Provenance
from guide_tracker.core.schema import RestaurantFact
from guide_tracker.ingestion.adapters.base import (
    BaseExtractor,
    guide_year_from_text,
    make_soup,
    select_all_text,
    select_attr,
    select_text,
)
from guide_tracker.ingestion.adapters.detail import CurrentDetailExtractor
from guide_tracker.ingestion.normalizer import (
    DEFAULT_POLICY,
    DistinctionPolicy,
    clean_text,
    map_price,
    parse_distinction,
    parse_green_star,
    parse_inline_value,
    parse_phone_number,
    parse_year,
    split_unpack,
)
from guide_tracker.ingestion.wayback import Snapshot

logger = logging.getLogger(__name__)

# Markers checked in order; the first hit decides the format
FORMAT_MARKERS: tuple[tuple[PageFormat, str], ...] = (
    (PageFormat.CURRENT, "data-sheet__"),
    (PageFormat.LEGACY_B, "restaurant-details__heading"),
    (PageFormat.LEGACY_A, "poi_intro"),
    (PageFormat.INLINE_SCRIPT, "dLayer["),
)


def detect_format(content: bytes | str) -> PageFormat:
    """Detect which markup generation an archived page uses."""
    text = content.decode("utf-8", errors="replace") if isinstance(content, bytes) else content
    for page_format, marker in FORMAT_MARKERS:
        if marker in text:
            return page_format
    return PageFormat.UNKNOWN


def _page_year(fact: RestaurantFact, soup: BeautifulSoup) -> None:
    if fact.year <= 0:
        fact.year = guide_year_from_text(soup.get_text(" "))


class LegacyBExtractor(BaseExtractor):
    """Extractor for the "restaurant-details" layout."""

    FORMAT = PageFormat.LEGACY_B

    def extract(self, content: bytes | str, url: str) -> RestaurantFact:
        soup = make_soup(content)
        fact = RestaurantFact(url=url)

        fact.name = select_text(soup, ".restaurant-details__heading--title")
        items = select_all_text(soup, ".restaurant-details__heading--list li")
        if items:
            fact.address = items[0]
        if len(items) > 1:
            price, cuisine = split_unpack(items[1], "•")
            fact.price = map_price(price)
            fact.cuisine = cuisine

        for label in select_all_text(soup, ".restaurant-details__classification--list li"):
            if parse_green_star(label):
                fact.green_star = True
            elif fact.distinction is None:
                fact.distinction = parse_distinction(label, self.policy)

        fact.description = select_text(soup, ".restaurant-details__description--text")
        fact.facilities_and_services = ",".join(select_all_text(soup, ".restaurant-details__services li"))
        fact.phone_number = parse_phone_number(select_attr(soup, 'a[href^="tel:"]', "href"))
        fact.website_url = select_attr(soup, 'a[data-event="CTA_website"]', "href")

        self.apply_jsonld(fact, soup)
        _page_year(fact, soup)
        return fact


class LegacyAExtractor(BaseExtractor):
    """Extractor for the oldest "poi_intro" layout."""

    FORMAT = PageFormat.LEGACY_A

    def extract(self, content: bytes | str, url: str) -> RestaurantFact:
        soup = make_soup(content)
        fact = RestaurantFact(url=url)

        fact.name = select_text(soup, ".poi_intro-display-title")
        fact.address = select_text(soup, ".poi_intro-display-address")
        fact.cuisine = select_text(soup, ".poi_intro-display-cuisines")
        fact.price = map_price(select_text(soup, ".poi_intro-display-prices"))
        fact.description = select_text(soup, ".poi_intro-description")

        labels = select_all_text(soup, ".michelin-poi-distinctions-list li")
        for label in labels:
            if parse_green_star(label):
                fact.green_star = True
            elif fact.distinction is None:
                fact.distinction = parse_distinction(label, self.policy)

        fact.phone_number = parse_phone_number(select_text(soup, ".poi_intro-display-phone"))

        self.apply_jsonld(fact, soup)
        _page_year(fact, soup)
        return fact


class InlineScriptExtractor(BaseExtractor):
    """
    Extractor for pages that carry their data in inline script assignments.

    Only ``dLayer['key'] = 'value'`` is understood. Object literals are
    not parsed; their fields are simply absent.
    """

    FORMAT = PageFormat.INLINE_SCRIPT

    KEYS = {
        "name": "restaurant_name",
        "distinction": "distinction",
        "price": "price",
        "cuisine": "cuisine",
        "location": "city",
        "green_star": "green_star",
        "year": "published_date",
    }

    def extract(self, content: bytes | str, url: str) -> RestaurantFact:
        soup = make_soup(content)
        fact = RestaurantFact(url=url)
        scripts = [s.string or "" for s in soup.find_all("script")]
        script = "\n".join(s for s in scripts if "dLayer" in s)

        def value(field_name: str) -> str:
            return clean_text(parse_inline_value(script, self.KEYS[field_name]))

        fact.name = value("name") or select_text(soup, "h1")
        fact.cuisine = value("cuisine")
        fact.location = value("location")
        fact.price = map_price(value("price"))
        fact.green_star = value("green_star").lower() in ("1", "true", "yes")
        fact.year = parse_year(value("year"))

        distinction = value("distinction")
        if distinction:
            fact.distinction = parse_distinction(distinction, self.policy)
        else:
            fact.extraction_errors.append("distinction not found in inline script")

        self.apply_jsonld(fact, soup)
        _page_year(fact, soup)
        return fact


class UnknownFormatExtractor(BaseExtractor):
    """Best-effort extractor for unrecognized markup: no year, no distinction."""

    FORMAT = PageFormat.UNKNOWN

    def extract(self, content: bytes | str, url: str) -> RestaurantFact:
        soup = make_soup(content)
        fact = RestaurantFact(url=url)
        fact.name = select_text(soup, "h1") or clean_text(soup.title.get_text() if soup.title else "")
        fact.description = select_attr(soup, 'meta[name="description"]', "content")
        fact.image_url = select_attr(soup, 'meta[property="og:image"]', "content")
        fact.extraction_errors.append("unrecognized page format")
        return fact


EXTRACTOR_REGISTRY: dict[PageFormat, type[BaseExtractor]] = {
    PageFormat.CURRENT: CurrentDetailExtractor,
    PageFormat.LEGACY_B: LegacyBExtractor,
    PageFormat.LEGACY_A: LegacyAExtractor,
    PageFormat.INLINE_SCRIPT: InlineScriptExtractor,
    PageFormat.UNKNOWN: UnknownFormatExtractor,
}


def get_extractor(page_format: PageFormat, policy: DistinctionPolicy = DEFAULT_POLICY) -> BaseExtractor:
    """Get an extractor instance for a detected format."""
    return EXTRACTOR_REGISTRY[page_format](policy)


def extract_snapshot(
    content: bytes | str,
    snapshot: Snapshot,
    policy: DistinctionPolicy = DEFAULT_POLICY,
) -> RestaurantFact:
    """
    Extract a backfill fact from an archived page.

    The fact is keyed by the restaurant's canonical guide URL and carries
    the snapshot's archive URL as provenance. Unknown formats keep no year
    and no distinction so the store writes no award for them.
    """
    page_format = detect_format(content)
    extractor = get_extractor(page_format, policy)
    fact = extractor.extract(content, snapshot.url)

    if page_format == PageFormat.UNKNOWN:
        fact.year = 0
        fact.distinction = None

    fact.provenance = Provenance.BACKFILL
    fact.wayback_url = snapshot.archive_url
    logger.debug(
        f"Snapshot {snapshot.timestamp} of {snapshot.url}: format={page_format.value} "
        f"year={fact.year} distinction={fact.distinction.value if fact.distinction else None}"
    )
    return fact
