"""
Merge Policy Module
===================

Decides what happens when a fact for a (restaurant, year) slot arrives.

Each slot is in one of three states: absent, present-from-scrape (the stored
award has no archive reference) or present-from-backfill. Live data always
wins over archive data for the same year, and re-applying an identical fact
is a no-op, so the outcome does not depend on the order in which concurrent
workers deliver facts from different sources.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from guide_tracker.core.enums import Provenance
from guide_tracker.core.schema import Award, RestaurantFact

logger = logging.getLogger(__name__)


class MergeDecision(str, Enum):
    """Outcome of applying a fact to an award slot."""

    CREATE = "create"  # slot was absent
    UPDATE = "update"  # slot overwritten with fresher data
    UNCHANGED = "unchanged"  # identical fact re-applied
    REJECT_STALE = "reject_stale"  # backfill would clobber live data
    REJECT_INVALID_YEAR = "reject_invalid_year"  # year <= 0
    REJECT_NO_DISTINCTION = "reject_no_distinction"  # nothing to record

    @property
    def rejected(self) -> bool:
        """Whether the fact was discarded."""
        return self.value.startswith("reject")


@dataclass
class MergeOutcome:
    """Result of merging one fact into the store."""

    decision: MergeDecision
    restaurant_id: int | None = None
    year: int = 0
    restaurant_created: bool = False
    restaurant_updated: bool = False


def _same_values(existing: Award, fact: RestaurantFact) -> bool:
    """Check whether a fact would leave the stored award untouched."""
    return (
        existing.distinction == (fact.distinction.value if fact.distinction else "")
        and existing.price == fact.price
        and existing.green_star == fact.green_star
        and existing.wayback_url == fact.wayback_url
    )


def decide(existing: Award | None, fact: RestaurantFact) -> MergeDecision:
    """
    Decide how an incoming fact affects an award slot.

    Args:
        existing: Award currently stored for (restaurant, fact.year), if any
        fact: Incoming fact, tagged with its provenance

    Returns:
        The merge decision; only CREATE and UPDATE write anything
    """
    if fact.year <= 0:
        return MergeDecision.REJECT_INVALID_YEAR
    if fact.distinction is None:
        return MergeDecision.REJECT_NO_DISTINCTION
    if existing is None:
        return MergeDecision.CREATE
    if _same_values(existing, fact):
        return MergeDecision.UNCHANGED
    if existing.provenance == Provenance.SCRAPE and fact.provenance == Provenance.BACKFILL:
        return MergeDecision.REJECT_STALE
    return MergeDecision.UPDATE


@dataclass
class MergeStats:
    """Counters of merge decisions over a run."""

    counts: dict[MergeDecision, int] = field(default_factory=lambda: {d: 0 for d in MergeDecision})

    def record(self, decision: MergeDecision) -> None:
        self.counts[decision] += 1

    @property
    def created(self) -> int:
        return self.counts[MergeDecision.CREATE]

    @property
    def updated(self) -> int:
        return self.counts[MergeDecision.UPDATE]

    @property
    def unchanged(self) -> int:
        return self.counts[MergeDecision.UNCHANGED]

    @property
    def rejected(self) -> int:
        return sum(n for d, n in self.counts.items() if d.rejected)

    def to_dict(self) -> dict[str, int]:
        return {d.value: n for d, n in self.counts.items()}
