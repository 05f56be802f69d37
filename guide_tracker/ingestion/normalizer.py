"""
Field Normalizer Module
=======================

Pure functions turning raw extracted strings into canonical values:
distinction labels, price tiers, phone numbers, published years and
dataset file dates. Nothing in here performs I/O except the filename
date fallback, which stats the file.
"""

from __future__ import annotations

import html
import json
import re
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any

import phonenumbers

from guide_tracker.core.enums import Distinction

# Date layouts tried, in order, for published dates
DATE_LAYOUTS = ("%Y-%m-%d", "%Y-%m-%dT%H:%M", "%Y-%m-%dT%H:%M:%S")

PRICE_CODES = {
    "CAT_P01": "$",
    "CAT_P02": "$$",
    "CAT_P03": "$$$",
    "CAT_P04": "$$$$",
}

_RE_THREE_STARS = re.compile(r"\b(three|3)\b.*?\bstars?\b", re.IGNORECASE)
_RE_TWO_STARS = re.compile(r"\b(two|2)\b.*?\bstars?\b", re.IGNORECASE)
_RE_ONE_STAR = re.compile(r"\b(one|1)\b.*?\bstar\b", re.IGNORECASE)
_RE_BIB_GOURMAND = re.compile(r"\bbib\b", re.IGNORECASE)
_RE_SELECTED = re.compile(r"\bselected\s*restaurants?\b|\bplate\b", re.IGNORECASE)

_DISTINCTION_PATTERNS: tuple[tuple[re.Pattern[str], Distinction], ...] = (
    (_RE_THREE_STARS, Distinction.THREE_STARS),
    (_RE_TWO_STARS, Distinction.TWO_STARS),
    (_RE_ONE_STAR, Distinction.ONE_STAR),
    (_RE_BIB_GOURMAND, Distinction.BIB_GOURMAND),
    (_RE_SELECTED, Distinction.SELECTED_RESTAURANTS),
)

_RE_FILENAME_DATE = re.compile(r"(\d{4})-(\d{2})-(\d{2})")
_RE_WHITESPACE = re.compile(r"\s+")
_RE_YEAR = re.compile(r"^\d{4}$")


@dataclass(frozen=True)
class DistinctionPolicy:
    """
    Classification policy for distinction strings.

    ``fallback`` is what unrecognized input maps to. The guide's lowest tier
    is the historical default; set it to None to leave such facts without a
    distinction instead of guessing.
    """

    fallback: Distinction | None = Distinction.SELECTED_RESTAURANTS

    @classmethod
    def from_name(cls, name: str | None) -> DistinctionPolicy:
        """Build a policy from a config value ("none" disables the fallback)."""
        if name is None or name.strip().lower() in ("", "none", "null"):
            return cls(fallback=None)
        for distinction in Distinction:
            if distinction.value.lower() == name.strip().lower() or distinction.name.lower() == name.strip().lower():
                return cls(fallback=distinction)
        raise ValueError(f"Unknown distinction fallback: {name}")


DEFAULT_POLICY = DistinctionPolicy()


def clean_text(text: str | None) -> str:
    """Decode HTML entities and collapse runs of whitespace."""
    if not text:
        return ""
    return _RE_WHITESPACE.sub(" ", html.unescape(text)).strip()


def split_unpack(text: str, separator: str) -> tuple[str, str]:
    """
    Split a string once on ``separator`` and trim both halves.

    A string without the separator is assumed to be missing its first part,
    e.g. "French" from a "price · cuisine" block with no price.
    """
    if not text:
        return "", ""
    parts = [part.strip() for part in text.split(separator, 1)]
    if len(parts) == 1:
        return "", parts[0]
    return parts[0], parts[1]


def parse_distinction(text: str | None, policy: DistinctionPolicy = DEFAULT_POLICY) -> Distinction | None:
    """
    Classify a free-text distinction label.

    Args:
        text: Raw label such as "Two MICHELIN Stars" or "Bib Gourmand"
        policy: What to return when nothing matches

    Returns:
        The matching Distinction, or ``policy.fallback``
    """
    s = html.unescape(text or "").lower()
    s = s.replace("•", "")
    s = s.strip(" .!?,;:-").strip()

    for pattern, distinction in _DISTINCTION_PATTERNS:
        if pattern.search(s):
            return distinction
    return policy.fallback


def parse_green_star(text: str | None) -> bool:
    """Check whether a classification line is the green star."""
    return clean_text(text).lower() == "michelin green star"


def map_price(code: str | None) -> str:
    """Map CAT_P01..CAT_P04 to $..$$$$; anything else passes through."""
    if not code:
        return ""
    return PRICE_CODES.get(code.strip(), code.strip())


def parse_phone_number(raw: str | None) -> str:
    """
    Normalize a phone number to E.164.

    Example input: "+81 3-3874-1552". Unparseable or invalid numbers
    become an empty string.
    """
    if not raw:
        return ""
    raw = raw.strip()
    if raw.lower().startswith("tel:"):
        raw = raw[4:]
    try:
        number = phonenumbers.parse(raw, None)
    except phonenumbers.NumberParseException:
        return ""
    if not phonenumbers.is_possible_number(number):
        return ""
    return phonenumbers.format_number(number, phonenumbers.PhoneNumberFormat.E164)


def parse_year(value: str | None) -> int:
    """
    Parse a year from a published date or a bare 4-digit string.

    Returns:
        The year, or 0 when no known layout matches
    """
    if not value:
        return 0
    value = value.strip()
    for layout in DATE_LAYOUTS:
        try:
            return datetime.strptime(value, layout).year
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).year
    except ValueError:
        pass
    if _RE_YEAR.match(value):
        return int(value)
    return 0


def _find_review(data: Any) -> dict[str, Any] | None:
    """Locate the review object in a JSON-LD document."""
    if isinstance(data, list):
        for item in data:
            review = _find_review(item)
            if review is not None:
                return review
        return None
    if not isinstance(data, dict):
        return None
    if "@graph" in data:
        return _find_review(data["@graph"])
    review = data.get("review")
    if isinstance(review, list):
        review = review[0] if review else None
    return review if isinstance(review, dict) else None


def parse_published_year_from_jsonld(json_ld: str | None) -> int:
    """
    Extract the guide year from a JSON-LD block's ``review.datePublished``.

    Raises:
        ValueError: If the block is not valid JSON
    """
    if not json_ld or not json_ld.strip():
        return 0
    data = json.loads(json_ld)
    review = _find_review(data)
    if review is None:
        return 0
    published = review.get("datePublished")
    if not isinstance(published, str):
        return 0
    return parse_year(published)


def parse_date_from_filename(filename: str) -> date:
    """
    Extract a YYYY-MM-DD date from a filename.

    Example: "2022-03-13_michelin_my_maps 2.csv" -> date(2022, 3, 13)

    Raises:
        ValueError: If no valid date pattern is present
    """
    match = _RE_FILENAME_DATE.search(filename)
    if match is None:
        raise ValueError(f"No date pattern found in filename: {filename}")
    return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))


def parse_date_from_path(path: Path | str) -> date:
    """Date from the filename, falling back to the file's modification time."""
    path = Path(path)
    try:
        return parse_date_from_filename(path.name)
    except ValueError:
        return datetime.fromtimestamp(path.stat().st_mtime).date()


def parse_inline_value(script: str, key: str) -> str:
    """
    Read a value from an inline ``dLayer['key'] = 'value'`` assignment.

    Only the assignment form is understood; an object literal such as
    ``dLayer = {'distinction': '1 star'}`` yields an empty string.
    """
    pattern = re.compile(re.escape(key) + r"'\]\s*=\s*'([^']*)'")
    match = pattern.search(script)
    return match.group(1) if match else ""
