"""
Extractor Base Module
=====================

Defines the abstract base class for page extractors. Each extractor
understands one page format and turns a fetched page into a
RestaurantFact; shared helpers cover HTML parsing and the JSON-LD block
most formats embed.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import parse_qs, urlparse

from bs4 import BeautifulSoup, Tag

from guide_tracker.core.enums import PageFormat
from guide_tracker.core.schema import RestaurantFact
from guide_tracker.ingestion.normalizer import (
    DEFAULT_POLICY,
    DistinctionPolicy,
    clean_text,
    parse_phone_number,
    parse_published_year_from_jsonld,
)

logger = logging.getLogger(__name__)

# Fields a live detail page is expected to provide
REQUIRED_FIELDS = ("name", "address", "location", "latitude", "longitude", "cuisine")

_RE_GUIDE_YEAR = re.compile(r"(?:MICHELIN\s+Guide|Guide\s+MICHELIN)\D{0,30}?((?:19|20)\d{2})", re.IGNORECASE)
_RE_COORDINATE = re.compile(r"^-?\d{1,3}(?:\.\d+)?$")


def make_soup(content: bytes | str) -> BeautifulSoup:
    """Parse page content with the stdlib-backed HTML parser."""
    return BeautifulSoup(content, "html.parser")


def select_text(soup: BeautifulSoup | Tag, selector: str) -> str:
    """Cleaned text of the first element matching ``selector``, or ""."""
    node = soup.select_one(selector)
    if node is None:
        return ""
    return clean_text(node.get_text(" "))


def select_all_text(soup: BeautifulSoup | Tag, selector: str) -> list[str]:
    """Cleaned, non-empty texts of all elements matching ``selector``."""
    texts = [clean_text(node.get_text(" ")) for node in soup.select(selector)]
    return [text for text in texts if text]


def select_attr(soup: BeautifulSoup | Tag, selector: str, attr: str) -> str:
    node = soup.select_one(selector)
    if node is None:
        return ""
    value = node.get(attr)
    if isinstance(value, list):
        value = " ".join(value)
    return (value or "").strip()


def jsonld_blocks(soup: BeautifulSoup) -> list[str]:
    """Raw contents of every ``application/ld+json`` script."""
    blocks = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        text = script.string or script.get_text()
        if text and text.strip():
            blocks.append(text)
    return blocks


def _find_typed(data: Any, type_name: str) -> dict[str, Any] | None:
    if isinstance(data, list):
        for item in data:
            found = _find_typed(item, type_name)
            if found is not None:
                return found
        return None
    if not isinstance(data, dict):
        return None
    if "@graph" in data:
        return _find_typed(data["@graph"], type_name)
    declared = data.get("@type")
    types = declared if isinstance(declared, list) else [declared]
    if type_name in types:
        return data
    return None


def coordinates_from_maps_url(src: str) -> tuple[str, str]:
    """
    Read "lat,lng" from a Google Maps embed URL's ``q`` or ``center`` parameter.

    Returns:
        (latitude, longitude), empty strings if absent
    """
    if not src:
        return "", ""
    query = parse_qs(urlparse(src).query)
    for key in ("q", "center"):
        for value in query.get(key, []):
            parts = [part.strip() for part in value.split(",")]
            if len(parts) == 2 and all(_RE_COORDINATE.match(part) for part in parts):
                return parts[0], parts[1]
    return "", ""


def guide_year_from_text(text: str) -> int:
    """Year of a "MICHELIN Guide 2019" mention, or 0."""
    match = _RE_GUIDE_YEAR.search(text or "")
    return int(match.group(1)) if match else 0


class BaseExtractor(ABC):
    """
    Abstract base class for page extractors.

    Subclasses must implement ``extract``. Extraction never raises on
    missing markup: absent fields stay empty and problems are recorded in
    ``RestaurantFact.extraction_errors``.
    """

    FORMAT: PageFormat = PageFormat.UNKNOWN

    def __init__(self, policy: DistinctionPolicy = DEFAULT_POLICY) -> None:
        self.policy = policy

    @abstractmethod
    def extract(self, content: bytes | str, url: str) -> RestaurantFact:
        """
        Extract a fact from page content.

        Args:
            content: Raw page content
            url: Canonical guide URL of the restaurant

        Returns:
            RestaurantFact, possibly partial
        """
        pass

    def apply_jsonld(self, fact: RestaurantFact, soup: BeautifulSoup) -> None:
        """
        Fill the award year, and any still-empty descriptive fields, from
        the page's JSON-LD blocks.
        """
        for block in jsonld_blocks(soup):
            try:
                data = json.loads(block)
            except ValueError as e:
                fact.extraction_errors.append(f"invalid JSON-LD: {e}")
                continue

            if fact.year <= 0:
                try:
                    fact.year = parse_published_year_from_jsonld(block)
                except ValueError:
                    pass

            restaurant = _find_typed(data, "Restaurant")
            if restaurant is None:
                continue
            self._fill_from_restaurant_object(fact, restaurant)

    def _fill_from_restaurant_object(self, fact: RestaurantFact, data: dict[str, Any]) -> None:
        if not fact.name and isinstance(data.get("name"), str):
            fact.name = clean_text(data["name"])

        address = data.get("address")
        if isinstance(address, dict):
            if not fact.address and address.get("streetAddress"):
                parts = [
                    address.get("streetAddress"),
                    address.get("addressLocality"),
                    address.get("postalCode"),
                    _country_name(address.get("addressCountry")),
                ]
                fact.address = ", ".join(clean_text(str(p)) for p in parts if p)
            if not fact.location and address.get("addressLocality"):
                parts = [address.get("addressLocality"), _country_name(address.get("addressCountry"))]
                fact.location = ", ".join(clean_text(str(p)) for p in parts if p)

        geo = data.get("geo")
        if isinstance(geo, dict) and not fact.latitude and not fact.longitude:
            if geo.get("latitude") is not None and geo.get("longitude") is not None:
                fact.latitude = str(geo["latitude"])
                fact.longitude = str(geo["longitude"])

        cuisine = data.get("servesCuisine")
        if not fact.cuisine and cuisine:
            if isinstance(cuisine, list):
                fact.cuisine = ", ".join(clean_text(str(c)) for c in cuisine if c)
            else:
                fact.cuisine = clean_text(str(cuisine))

        if not fact.phone_number and data.get("telephone"):
            fact.phone_number = parse_phone_number(str(data["telephone"]))

        if not fact.image_url and isinstance(data.get("image"), str):
            fact.image_url = data["image"]

    def record_missing(self, fact: RestaurantFact, required: tuple[str, ...] = REQUIRED_FIELDS) -> None:
        """Log and record required fields the page did not provide."""
        missing = fact.missing_fields(required)
        if missing:
            logger.debug(f"{fact.url}: missing {', '.join(missing)}")
            fact.extraction_errors.extend(f"missing field: {name}" for name in missing)


def _country_name(country: Any) -> str:
    if isinstance(country, dict):
        return str(country.get("name", ""))
    return str(country or "")
