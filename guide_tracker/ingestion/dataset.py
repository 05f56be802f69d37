"""
Dataset Ingestion Module
========================

Bulk-imports dated CSV snapshots of the guide. Files are processed oldest
first; each one is classified as recent (dated within the last month) or
historical, which decides how restaurants' in-guide flags move:

- recent:      rows mark their restaurants in the guide, and after the
               whole file is applied every in-guide restaurant missing
               from it is marked out of the guide
- historical:  new restaurants are created out of the guide and existing
               ones keep their flag; only award timelines grow
"""

from __future__ import annotations

import calendar
import csv
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from pathlib import Path

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from guide_tracker.core.enums import DatasetClass, Provenance
from guide_tracker.core.schema import RestaurantFact
from guide_tracker.db.repositories import FactStore
from guide_tracker.ingestion.merge import MergeDecision
from guide_tracker.ingestion.normalizer import (
    DEFAULT_POLICY,
    DistinctionPolicy,
    clean_text,
    map_price,
    parse_date_from_path,
    parse_distinction,
    parse_phone_number,
)

logger = logging.getLogger(__name__)

DATASET_COLUMNS = (
    "Name",
    "Address",
    "Location",
    "Price",
    "Type",
    "Longitude",
    "Latitude",
    "PhoneNumber",
    "Url",
    "WebsiteUrl",
    "Classification",
)


@dataclass
class DatasetRow:
    """One restaurant row of a dataset CSV."""

    name: str
    address: str
    location: str
    price: str
    cuisine: str
    longitude: str
    latitude: str
    phone_number: str
    url: str
    website_url: str
    classification: str


@dataclass
class DatasetFile:
    path: Path
    file_date: date

    @property
    def year(self) -> int:
        return self.file_date.year


@dataclass
class FileStats:
    """Counters for one dataset file."""

    file_name: str
    file_date: date
    dataset_class: DatasetClass
    restaurants_found: int = 0
    records_skipped: int = 0
    new_restaurants: int = 0
    existing_restaurants: int = 0
    awards_added: int = 0
    awards_updated: int = 0
    awards_skipped: int = 0
    processing_errors: int = 0
    removed_from_guide: int = 0

    @property
    def year(self) -> int:
        return self.file_date.year


@dataclass
class ProcessingStats:
    """Counters for a whole dataset run."""

    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    files_processed: int = 0
    files_skipped: int = 0
    files: list[FileStats] = field(default_factory=list)
    award_counts: Counter[str] = field(default_factory=Counter)

    def total(self, name: str) -> int:
        """Sum one FileStats counter over all processed files."""
        return sum(getattr(f, name) for f in self.files)

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.now(UTC)
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, int]:
        return {
            "files_processed": self.files_processed,
            "files_skipped": self.files_skipped,
            "restaurants_found": self.total("restaurants_found"),
            "records_skipped": self.total("records_skipped"),
            "new_restaurants": self.total("new_restaurants"),
            "existing_restaurants": self.total("existing_restaurants"),
            "awards_added": self.total("awards_added"),
            "awards_updated": self.total("awards_updated"),
            "awards_skipped": self.total("awards_skipped"),
            "processing_errors": self.total("processing_errors"),
            "removed_from_guide": self.total("removed_from_guide"),
        }


def one_month_before(day: date) -> date:
    """Same day one calendar month earlier, clamped to the month's length."""
    year, month_index = divmod(day.year * 12 + day.month - 2, 12)
    month = month_index + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def classify_file(file_date: date, today: date | None = None) -> DatasetClass:
    """Recent if dated after the same day last month, else historical."""
    today = today or datetime.now(UTC).date()
    if file_date > one_month_before(today):
        return DatasetClass.RECENT
    return DatasetClass.HISTORICAL


def find_dataset_files(directory: Path | str) -> list[Path]:
    """All ``*.csv`` files below ``directory``."""
    return sorted(Path(directory).rglob("*.csv"))


def sort_files_by_date(paths: list[Path]) -> list[DatasetFile]:
    """Date each file (filename first, then mtime) and order oldest first."""
    files = [DatasetFile(path=path, file_date=parse_date_from_path(path)) for path in paths]
    return sorted(files, key=lambda f: (f.file_date, f.path.name))


def parse_dataset_csv(path: Path | str) -> tuple[list[DatasetRow], int]:
    """
    Read a dataset CSV.

    Rows with fewer than eleven columns, or with an empty name or URL,
    are skipped.

    Returns:
        (rows, number of skipped records)

    Raises:
        ValueError: If the file is empty
        OSError: If the file cannot be read
    """
    with open(path, newline="", encoding="utf-8") as f:
        records = list(csv.reader(f))
    if not records:
        raise ValueError(f"Dataset file is empty: {path}")

    rows: list[DatasetRow] = []
    skipped = 0
    for line_number, record in enumerate(records[1:], start=2):
        if len(record) < len(DATASET_COLUMNS):
            logger.warning(f"{Path(path).name}:{line_number}: skipping row with {len(record)} columns")
            skipped += 1
            continue
        values = [value.strip() for value in record[: len(DATASET_COLUMNS)]]
        row = DatasetRow(*values)
        if not row.name or not row.url:
            logger.warning(f"{Path(path).name}:{line_number}: skipping row with empty name or URL")
            skipped += 1
            continue
        rows.append(row)
    return rows, skipped


def row_to_fact(
    row: DatasetRow,
    dataset_file: DatasetFile,
    dataset_class: DatasetClass,
    policy: DistinctionPolicy = DEFAULT_POLICY,
) -> RestaurantFact:
    """
    Build a fact from a dataset row.

    Recent rows count as live data; historical rows are archival and carry
    a ``dataset:<file name>`` provenance marker.
    """
    recent = dataset_class == DatasetClass.RECENT
    return RestaurantFact(
        url=row.url,
        name=clean_text(row.name),
        address=clean_text(row.address),
        location=clean_text(row.location),
        latitude=row.latitude or "0.0",
        longitude=row.longitude or "0.0",
        cuisine=clean_text(row.cuisine) or "Unknown",
        phone_number=parse_phone_number(row.phone_number),
        website_url=row.website_url,
        description=f"Restaurant from {'current' if recent else 'historical'} dataset",
        distinction=parse_distinction(row.classification, policy),
        price=map_price(row.price) or "$",
        year=dataset_file.year,
        provenance=Provenance.SCRAPE if recent else Provenance.BACKFILL,
        wayback_url="" if recent else f"dataset:{dataset_file.path.name}",
        in_guide=True if recent else None,
    )


class DatasetProcessor:
    """Applies dataset files to the fact store in chronological order."""

    def __init__(
        self,
        store: FactStore,
        policy: DistinctionPolicy = DEFAULT_POLICY,
        today: date | None = None,
    ) -> None:
        self.store = store
        self.policy = policy
        self.today = today
        self.stats = ProcessingStats()

    def process(self, directory: Path | str, limit: int = 0) -> ProcessingStats:
        """
        Process every dataset file under ``directory``.

        Args:
            directory: Directory searched recursively for ``*.csv``
            limit: Maximum rows per file (0 = all), for test runs

        Returns:
            Run statistics
        """
        self.stats = ProcessingStats()
        files = sort_files_by_date(find_dataset_files(directory))
        logger.info(f"Found {len(files)} dataset files in {directory}")

        for dataset_file in files:
            try:
                self.process_file(dataset_file, limit)
            except (OSError, ValueError, csv.Error) as e:
                logger.error(f"Skipping dataset file {dataset_file.path.name}: {e}")
                self.stats.files_skipped += 1

        self.stats.finished_at = datetime.now(UTC)
        return self.stats

    def process_file(self, dataset_file: DatasetFile, limit: int = 0) -> FileStats:
        """Apply one file's rows, then the out-of-guide pass for recent files."""
        dataset_class = classify_file(dataset_file.file_date, self.today)
        rows, skipped = parse_dataset_csv(dataset_file.path)
        file_stats = FileStats(
            file_name=dataset_file.path.name,
            file_date=dataset_file.file_date,
            dataset_class=dataset_class,
            restaurants_found=len(rows),
            records_skipped=skipped,
        )
        logger.info(
            f"Processing {file_stats.file_name} ({dataset_class.value}, year {dataset_file.year}): {len(rows)} rows"
        )

        truncated = bool(limit) and len(rows) > limit
        if truncated:
            rows = rows[:limit]

        present: set[str] = set()
        for row in rows:
            present.add(row.url)
            if row.website_url:
                present.add(row.website_url)
            self._apply_row(row, dataset_file, dataset_class, file_stats)

        if dataset_class == DatasetClass.RECENT:
            if truncated:
                logger.info(f"{file_stats.file_name}: row limit applied, not marking absent restaurants")
            else:
                removed = self.store.mark_out_of_guide_except(present)
                file_stats.removed_from_guide = len(removed)
                if removed:
                    logger.info(f"{file_stats.file_name}: {len(removed)} restaurants no longer in the guide")

        self.stats.files.append(file_stats)
        self.stats.files_processed += 1
        return file_stats

    def _apply_row(
        self,
        row: DatasetRow,
        dataset_file: DatasetFile,
        dataset_class: DatasetClass,
        file_stats: FileStats,
    ) -> None:
        try:
            fact = row_to_fact(row, dataset_file, dataset_class, self.policy)
            outcome = self.store.apply_fact(fact, update_restaurant=False, match_website_url=True)
        except (ValidationError, SQLAlchemyError) as e:
            logger.error(f"Failed to apply dataset row {row.url}: {e}")
            file_stats.processing_errors += 1
            return

        if outcome.restaurant_created:
            file_stats.new_restaurants += 1
        else:
            file_stats.existing_restaurants += 1

        if outcome.decision == MergeDecision.CREATE:
            file_stats.awards_added += 1
            self.stats.award_counts[fact.distinction.value if fact.distinction else ""] += 1
        elif outcome.decision == MergeDecision.UPDATE:
            file_stats.awards_updated += 1
        else:
            file_stats.awards_skipped += 1


def _format_duration(seconds: float) -> str:
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{seconds:.3f}s"


def render_markdown_report(stats: ProcessingStats) -> str:
    """Render an end-of-run markdown report."""
    totals = stats.to_dict()
    generated = (stats.finished_at or datetime.now(UTC)).strftime("%Y-%m-%d %H:%M:%S %Z")
    lines = [
        "# Dataset Processing Report",
        "",
        f"**Generated:** {generated}",
        f"**Processing Duration:** {_format_duration(stats.duration_seconds)}",
        "",
        "## Processing Overview",
        "",
        "| Metric | Count |",
        "|--------|-------|",
        f"| Files Processed | {stats.files_processed} |",
        f"| Files Skipped | {stats.files_skipped} |",
        f"| Total Restaurants Found | {totals['restaurants_found']} |",
        f"| New Restaurants Added | {totals['new_restaurants']} |",
        f"| Existing Restaurants | {totals['existing_restaurants']} |",
        f"| Awards Added | {totals['awards_added']} |",
        f"| Awards Updated | {totals['awards_updated']} |",
        f"| Awards Skipped | {totals['awards_skipped']} |",
        f"| Processing Errors | {totals['processing_errors']} |",
        f"| Records Skipped | {totals['records_skipped']} |",
        "",
        "## File Processing Details",
        "",
        "*Files processed in chronological order (oldest first)*",
        "",
    ]

    for f in sorted(stats.files, key=lambda s: s.file_date):
        lines += [
            f"### {f.file_name} (Year: {f.year}, Date: {f.file_date.isoformat()}, {f.dataset_class.value})",
            "",
            "| Metric | Count |",
            "|--------|-------|",
            f"| Restaurants Found | {f.restaurants_found} |",
            f"| New Restaurants | {f.new_restaurants} |",
            f"| Existing Restaurants | {f.existing_restaurants} |",
            f"| Awards Added | {f.awards_added} |",
            f"| Awards Updated | {f.awards_updated} |",
            f"| Awards Skipped | {f.awards_skipped} |",
            f"| Processing Errors | {f.processing_errors} |",
            f"| Records Skipped | {f.records_skipped} |",
        ]
        if f.removed_from_guide:
            lines.append(f"| Restaurants Removed from Guide | {f.removed_from_guide} |")
        lines.append("")

    if stats.award_counts:
        lines += ["## Awards Distribution", "", "| Award Type | Count |", "|------------|-------|"]
        for award, count in stats.award_counts.most_common():
            lines.append(f"| {award or 'No Award/Unknown'} | {count} |")
        lines.append("")

    found = totals["restaurants_found"]
    if found:
        ok = found - totals["processing_errors"]
        lines += ["## Summary", "", f"- **Success Rate:** {ok / found * 100:.2f}% of rows applied", ""]

    return "\n".join(lines)


def write_report(stats: ProcessingStats, directory: Path | str = "data") -> Path:
    """Write the markdown report to ``directory`` and return its path."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    stamp = (stats.finished_at or datetime.now(UTC)).strftime("%Y%m%d_%H%M%S")
    path = directory / f"dataset_processing_report_{stamp}.md"
    path.write_text(render_markdown_report(stats))
    logger.info(f"Report written to {path}")
    return path
