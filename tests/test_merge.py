"""Tests for the award merge policy."""

import pytest

from guide_tracker.core.enums import Distinction, Provenance
from guide_tracker.core.schema import Award, RestaurantFact
from guide_tracker.ingestion.merge import MergeDecision, MergeStats, decide

URL = "https://guide.michelin.com/en/tokyo-region/tokyo/restaurant/sushi-place"
ARCHIVE_URL = "https://web.archive.org/web/20190301000000id_/" + URL


def _fact(**kwargs) -> RestaurantFact:
    values = {
        "url": URL,
        "year": 2024,
        "distinction": Distinction.ONE_STAR,
        "price": "$$$",
    }
    values.update(kwargs)
    return RestaurantFact(**values)


def _award(**kwargs) -> Award:
    values = {
        "restaurant_id": 1,
        "year": 2024,
        "distinction": Distinction.ONE_STAR.value,
        "price": "$$$",
    }
    values.update(kwargs)
    return Award(**values)


class TestDecide:
    """Tests for decide()."""

    def test_absent_slot_is_created(self) -> None:
        """Any valid fact fills an empty slot."""
        assert decide(None, _fact()) == MergeDecision.CREATE
        backfill = _fact(provenance=Provenance.BACKFILL, wayback_url=ARCHIVE_URL)
        assert decide(None, backfill) == MergeDecision.CREATE

    @pytest.mark.parametrize("year", [0, -1])
    def test_invalid_year_is_rejected(self, year: int) -> None:
        assert decide(None, _fact(year=year)) == MergeDecision.REJECT_INVALID_YEAR

    def test_missing_distinction_is_rejected(self) -> None:
        assert decide(None, _fact(distinction=None)) == MergeDecision.REJECT_NO_DISTINCTION

    def test_invalid_year_checked_before_distinction(self) -> None:
        assert decide(None, _fact(year=0, distinction=None)) == MergeDecision.REJECT_INVALID_YEAR

    def test_backfill_never_overwrites_scrape(self) -> None:
        """Archive data for a year already scraped live is stale."""
        existing = _award()
        backfill = _fact(
            distinction=Distinction.BIB_GOURMAND,
            provenance=Provenance.BACKFILL,
            wayback_url=ARCHIVE_URL,
        )
        assert decide(existing, backfill) == MergeDecision.REJECT_STALE

    def test_scrape_overwrites_backfill(self) -> None:
        existing = _award(distinction=Distinction.BIB_GOURMAND.value, wayback_url=ARCHIVE_URL)
        assert decide(existing, _fact()) == MergeDecision.UPDATE

    def test_scrape_overwrites_scrape(self) -> None:
        existing = _award(distinction=Distinction.TWO_STARS.value)
        assert decide(existing, _fact()) == MergeDecision.UPDATE

    def test_backfill_overwrites_backfill(self) -> None:
        existing = _award(wayback_url=ARCHIVE_URL)
        later = _fact(
            distinction=Distinction.TWO_STARS,
            provenance=Provenance.BACKFILL,
            wayback_url=ARCHIVE_URL.replace("20190301", "20190901"),
        )
        assert decide(existing, later) == MergeDecision.UPDATE

    def test_identical_fact_is_unchanged(self) -> None:
        """Re-applying the same fact is a no-op for either provenance."""
        assert decide(_award(), _fact()) == MergeDecision.UNCHANGED
        existing = _award(wayback_url=ARCHIVE_URL)
        same = _fact(provenance=Provenance.BACKFILL, wayback_url=ARCHIVE_URL)
        assert decide(existing, same) == MergeDecision.UNCHANGED

    def test_price_or_green_star_change_is_an_update(self) -> None:
        assert decide(_award(), _fact(price="$$$$")) == MergeDecision.UPDATE
        assert decide(_award(), _fact(green_star=True)) == MergeDecision.UPDATE


class TestMergeDecision:
    """Tests for MergeDecision helpers."""

    def test_rejected(self) -> None:
        assert MergeDecision.REJECT_STALE.rejected
        assert MergeDecision.REJECT_INVALID_YEAR.rejected
        assert MergeDecision.REJECT_NO_DISTINCTION.rejected
        assert not MergeDecision.CREATE.rejected


class TestMergeStats:
    """Tests for MergeStats."""

    def test_counts(self) -> None:
        stats = MergeStats()
        for decision in (
            MergeDecision.CREATE,
            MergeDecision.CREATE,
            MergeDecision.UPDATE,
            MergeDecision.UNCHANGED,
            MergeDecision.REJECT_STALE,
            MergeDecision.REJECT_INVALID_YEAR,
        ):
            stats.record(decision)

        assert stats.created == 2
        assert stats.updated == 1
        assert stats.unchanged == 1
        assert stats.rejected == 2
        assert stats.to_dict()["reject_stale"] == 1
        assert stats.to_dict()["reject_no_distinction"] == 0
