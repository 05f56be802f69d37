"""
Current Detail Page Extractor
=============================

Extracts a restaurant fact from a live guide detail page (the
"data-sheet" markup), falling back to the page's JSON-LD for anything the
markup lacks. Also used for archived snapshots in the same format.
"""

from __future__ import annotations

from guide_tracker.core.enums import Distinction, PageFormat
from guide_tracker.core.schema import RestaurantFact
from guide_tracker.ingestion.adapters.base import (
    BaseExtractor,
    coordinates_from_maps_url,
    make_soup,
    select_all_text,
    select_attr,
    select_text,
)
from guide_tracker.ingestion.normalizer import (
    clean_text,
    map_price,
    parse_distinction,
    parse_green_star,
    parse_phone_number,
    split_unpack,
)
from guide_tracker.ingestion.session import RequestContext

DEFAULT_SEED_DESCRIPTION = "Restaurant information from Michelin Guide"
PLACEHOLDER_COORDINATE = "0.0"


class CurrentDetailExtractor(BaseExtractor):
    """Extractor for the current detail page layout."""

    FORMAT = PageFormat.CURRENT

    def extract(self, content: bytes | str, url: str) -> RestaurantFact:
        soup = make_soup(content)
        fact = RestaurantFact(url=url)

        fact.name = select_text(soup, "h1.data-sheet__title")

        blocks = select_all_text(soup, ".data-sheet__block--text")
        if blocks:
            fact.address = blocks[0]
        if len(blocks) > 1:
            price, cuisine = split_unpack(blocks[1], "·")
            fact.price = map_price(price)
            fact.cuisine = cuisine

        for label in select_all_text(soup, ".data-sheet__classification-item--content"):
            if parse_green_star(label):
                fact.green_star = True
            elif fact.distinction is None:
                fact.distinction = parse_distinction(label, self.policy)

        fact.description = select_text(soup, ".data-sheet__description")
        fact.facilities_and_services = ",".join(
            select_all_text(soup, ".restaurant-details__services li")
        )
        fact.phone_number = parse_phone_number(select_attr(soup, 'a[data-event="CTA_tel"]', "href"))
        fact.website_url = select_attr(soup, 'a[data-event="CTA_website"]', "href")
        fact.image_url = select_attr(soup, 'meta[property="og:image"]', "content")
        fact.latitude, fact.longitude = coordinates_from_maps_url(
            select_attr(soup, 'iframe[src*="google.com/maps"]', "src")
        )

        self.apply_jsonld(fact, soup)
        return fact


def apply_context(fact: RestaurantFact, context: RequestContext | None, *, seeded: bool = False) -> RestaurantFact:
    """
    Merge what the crawl already knew about a URL into an extracted fact.

    Listing context fills location, coordinates and distinction where the
    page had none. A CSV-seeded request also gets placeholder coordinates,
    a default description and the seed row's name and location.
    """
    if context is not None:
        if not fact.location:
            fact.location = context.location or context.seed_location
        if not fact.latitude and not fact.longitude and context.latitude and context.longitude:
            fact.latitude = context.latitude
            fact.longitude = context.longitude
        if fact.distinction is None and context.listing_distinction:
            fact.distinction = Distinction(context.listing_distinction)
        if not fact.name:
            fact.name = context.seed_name

    if seeded:
        fact.latitude = fact.latitude or PLACEHOLDER_COORDINATE
        fact.longitude = fact.longitude or PLACEHOLDER_COORDINATE
        fact.description = fact.description or DEFAULT_SEED_DESCRIPTION

    fact.name = clean_text(fact.name)
    return fact
