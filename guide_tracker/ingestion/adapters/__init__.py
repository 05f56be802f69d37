"""
Extractor Registry Module
=========================

Page extractors, one per page format, and the listing walker that feeds
the current-format extractor.
"""

from __future__ import annotations

from guide_tracker.ingestion.adapters.base import BaseExtractor
from guide_tracker.ingestion.adapters.detail import CurrentDetailExtractor, apply_context
from guide_tracker.ingestion.adapters.historical import (
    EXTRACTOR_REGISTRY,
    InlineScriptExtractor,
    LegacyAExtractor,
    LegacyBExtractor,
    UnknownFormatExtractor,
    detect_format,
    extract_snapshot,
    get_extractor,
)
from guide_tracker.ingestion.adapters.listing import (
    ListingEntry,
    ListingPage,
    ListingWalker,
    parse_listing_page,
)

__all__ = [
    # Registry
    "EXTRACTOR_REGISTRY",
    "detect_format",
    "extract_snapshot",
    "get_extractor",
    # Base class
    "BaseExtractor",
    # Concrete extractors
    "CurrentDetailExtractor",
    "LegacyAExtractor",
    "LegacyBExtractor",
    "InlineScriptExtractor",
    "UnknownFormatExtractor",
    "apply_context",
    # Listing
    "ListingEntry",
    "ListingPage",
    "ListingWalker",
    "parse_listing_page",
]
