"""
Crawl Session Module
====================

Per-run state shared by every worker of a crawl: counters, the set of URLs
already visited, per-URL request contexts and the shutdown signal. All
mutable counters sit behind a single lock.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, fields
from typing import Any

from guide_tracker.ingestion.merge import MergeDecision, MergeOutcome, MergeStats

logger = logging.getLogger(__name__)


@dataclass
class CrawlCounters:
    """Run-level counters exposed to reports."""

    discovered: int = 0
    queued: int = 0
    fetched: int = 0
    from_cache: int = 0
    processed: int = 0
    restaurants_created: int = 0
    restaurants_updated: int = 0
    awards_created: int = 0
    awards_updated: int = 0
    awards_unchanged: int = 0
    skipped: int = 0
    rejected: int = 0
    errors: int = 0
    requests_reserved: int = 0

    def to_dict(self) -> dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class RequestContext:
    """
    Typed context carried with one URL from discovery to persistence.

    ``attempt`` counts tries for this URL only, so retries are bounded per
    URL rather than per run.
    """

    url: str
    attempt: int = 1
    location: str = ""
    latitude: str = ""
    longitude: str = ""
    listing_distinction: str = ""
    # Values from a CSV seed row, used where the page lacks them
    seed_name: str = ""
    seed_location: str = ""


class CrawlSession:
    """
    Shared state of one crawl run.

    The shutdown event stops new requests from being dispatched and cuts
    politeness sleeps short; requests already in flight finish on their own.
    """

    def __init__(self, max_items: int = 0) -> None:
        self.max_items = max_items
        self.counters = CrawlCounters()
        self.merge_stats = MergeStats()
        self.errors: list[str] = []
        self._lock = threading.Lock()
        self._visited: set[str] = set()
        self._shutdown = asyncio.Event()

    # Cancellation

    @property
    def stopped(self) -> bool:
        return self._shutdown.is_set()

    def request_stop(self) -> None:
        """Ask every worker to stop dispatching new requests."""
        if not self._shutdown.is_set():
            logger.info("Stop requested, finishing in-flight requests")
        self._shutdown.set()

    async def sleep(self, seconds: float) -> bool:
        """
        Sleep unless a stop is requested first.

        Returns:
            True if the full delay elapsed, False if interrupted by a stop
        """
        if seconds <= 0:
            return not self.stopped
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False

    # Counters

    def increment(self, name: str, amount: int = 1) -> int:
        """Increment a counter and return its new value."""
        with self._lock:
            value = getattr(self.counters, name) + amount
            setattr(self.counters, name, value)
            return value

    def get(self, name: str) -> int:
        with self._lock:
            return getattr(self.counters, name)

    def record_error(self, message: str) -> None:
        with self._lock:
            self.counters.errors += 1
            self.errors.append(message)

    def mark_visited(self, url: str) -> bool:
        """Record a URL as visited; returns False if it already was."""
        with self._lock:
            if url in self._visited:
                return False
            self._visited.add(url)
            return True

    def reserve_request(self, budget: int) -> bool:
        """Take one URL from the run's request budget (0 = unlimited)."""
        with self._lock:
            if budget and self.counters.requests_reserved >= budget:
                return False
            self.counters.requests_reserved += 1
            return True

    def try_queue_item(self) -> bool:
        """
        Claim a slot for one more detail page under the item budget.

        Returns:
            False once processed + queued items reach ``max_items``
        """
        with self._lock:
            if self.max_items and self.counters.queued >= self.max_items:
                return False
            self.counters.queued += 1
            self.counters.discovered += 1
            return True

    def budget_reached(self) -> bool:
        with self._lock:
            return bool(self.max_items) and self.counters.queued >= self.max_items

    def record_outcome(self, outcome: MergeOutcome) -> None:
        """Fold one merge outcome into the counters."""
        with self._lock:
            self.merge_stats.record(outcome.decision)
            self.counters.processed += 1
            if outcome.restaurant_created:
                self.counters.restaurants_created += 1
            elif outcome.restaurant_updated:
                self.counters.restaurants_updated += 1
            if outcome.decision == MergeDecision.CREATE:
                self.counters.awards_created += 1
            elif outcome.decision == MergeDecision.UPDATE:
                self.counters.awards_updated += 1
            elif outcome.decision == MergeDecision.UNCHANGED:
                self.counters.awards_unchanged += 1
            else:
                self.counters.rejected += 1

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                **self.counters.to_dict(),
                "merge": self.merge_stats.to_dict(),
                "error_messages": list(self.errors),
            }
