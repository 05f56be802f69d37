"""Enums for restaurant guide fields."""

from enum import Enum


class Distinction(str, Enum):
    """Award tier published by the guide."""

    THREE_STARS = "3 Stars"
    TWO_STARS = "2 Stars"
    ONE_STAR = "1 Star"
    BIB_GOURMAND = "Bib Gourmand"
    SELECTED_RESTAURANTS = "Selected Restaurants"


class Provenance(str, Enum):
    """Where a fact came from, as far as merging is concerned."""

    SCRAPE = "scrape"  # live crawl or recent dataset row
    BACKFILL = "backfill"  # archive snapshot or historical dataset row


class DatasetClass(str, Enum):
    """Age classification of a bulk dataset file."""

    RECENT = "recent"
    HISTORICAL = "historical"


class PageFormat(str, Enum):
    """Markup variant of a detail page."""

    CURRENT = "current"
    LEGACY_A = "legacy_a"
    LEGACY_B = "legacy_b"
    INLINE_SCRIPT = "inline_script"
    UNKNOWN = "unknown"


class JobStatus(str, Enum):
    """Status of a crawl job."""

    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
