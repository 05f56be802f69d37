"""
Crawl Jobs Module
=================

Top-level crawl runs:

- run_scrape: walk the category listings and merge every detail page
- run_scrape_from_csv: same, for a CSV-seeded subset of detail pages
- run_backfill: merge archived snapshots of known restaurants

Each run drives a small pool of worker tasks sized by the politeness
profile. Writes go through the shared FactStore one restaurant at a time.
"""

from __future__ import annotations

import asyncio
import csv
import logging
import signal
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TypeVar
from uuid import uuid4

import httpx
from sqlalchemy.exc import SQLAlchemyError

from guide_tracker.core.enums import Distinction, JobStatus
from guide_tracker.core.schema import RestaurantFact
from guide_tracker.db.repositories import FactStore
from guide_tracker.ingestion.adapters.detail import CurrentDetailExtractor, apply_context
from guide_tracker.ingestion.adapters.historical import extract_snapshot
from guide_tracker.ingestion.adapters.listing import ListingWalker
from guide_tracker.ingestion.crawler import Fetcher
from guide_tracker.ingestion.normalizer import parse_distinction
from guide_tracker.ingestion.registry import CrawlConfig
from guide_tracker.ingestion.session import CrawlSession, RequestContext
from guide_tracker.ingestion.storage import LocalFileCache, ResponseCache
from guide_tracker.ingestion.wayback import Snapshot, SnapshotDiscoverer

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEED_COLUMNS = ("Name", "Location", "URL", "Cuisine", "Award", "Price", "Address")

_DONE = object()


@dataclass
class JobResult:
    """Result of a crawl run."""

    job_id: str
    job_type: str
    status: JobStatus
    started_at: datetime | None = None
    completed_at: datetime | None = None
    counters: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    duration_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "job_id": self.job_id,
            "job_type": self.job_type,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "counters": self.counters,
            "errors": self.errors,
            "duration_seconds": self.duration_seconds,
        }


def install_signal_handlers(session: CrawlSession) -> None:
    """Turn SIGINT/SIGTERM into a stop request for the running session."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, session.request_stop)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform or outside the main thread
            pass


async def _aiter(items: Iterable[T]) -> AsyncIterator[T]:
    for item in items:
        yield item


def _describe(item: Any) -> str:
    return str(getattr(item, "archive_url", None) or getattr(item, "url", None) or item)


async def run_workers(
    items: AsyncIterator[T] | Iterable[T],
    handler: Callable[[T], Awaitable[None]],
    concurrency: int,
    session: CrawlSession,
) -> None:
    """
    Feed items to ``concurrency`` worker tasks in the order produced.

    Items are dispatched in order; completion order is not guaranteed.
    An exception from one item is logged and counted as an error; the
    worker moves on to the next item. Once a stop is requested, queued
    items are dropped without running.
    """
    queue: asyncio.Queue[Any] = asyncio.Queue()
    source = items if hasattr(items, "__aiter__") else _aiter(items)

    async def worker() -> None:
        while True:
            item = await queue.get()
            try:
                if item is _DONE:
                    return
                if not session.stopped:
                    await handler(item)
            except Exception as e:
                label = _describe(item)
                logger.exception(f"Unexpected error processing {label}")
                session.record_error(f"{label}: {type(e).__name__}: {e}")
            finally:
                queue.task_done()

    workers = [asyncio.create_task(worker()) for _ in range(max(1, concurrency))]
    try:
        async for item in source:
            await queue.put(item)
            if session.stopped:
                break
    finally:
        for _ in workers:
            queue.put_nowait(_DONE)
        await asyncio.gather(*workers)


async def _persist(store: FactStore, session: CrawlSession, fact: RestaurantFact) -> None:
    try:
        outcome = await asyncio.to_thread(store.apply_fact, fact)
    except SQLAlchemyError as e:
        logger.error(f"Failed to store {fact.url}: {e}")
        session.record_error(f"store {fact.url}: {e}")
        return
    session.record_outcome(outcome)


def _finish(result: JobResult, session: CrawlSession, failure: Exception | None = None) -> JobResult:
    result.completed_at = datetime.now(UTC)
    if failure is not None:
        session.record_error(f"{result.job_type} aborted: {type(failure).__name__}: {failure}")
        result.status = JobStatus.FAILED
    else:
        result.status = JobStatus.CANCELLED if session.stopped else JobStatus.COMPLETED
    if result.started_at:
        result.duration_seconds = (result.completed_at - result.started_at).total_seconds()
    summary = session.to_dict()
    result.errors = summary.pop("error_messages")
    result.counters = summary
    logger.info(
        f"{result.job_type} {result.status.value}: "
        f"{summary['processed']} processed, {summary['awards_created']} awards created, "
        f"{summary['awards_updated']} updated, {summary['rejected']} rejected, {summary['errors']} errors"
    )
    return result


def _new_result(job_type: str) -> JobResult:
    return JobResult(
        job_id=str(uuid4()),
        job_type=job_type,
        status=JobStatus.RUNNING,
        started_at=datetime.now(UTC),
    )


def _live_fetcher(
    config: CrawlConfig,
    session: CrawlSession,
    profile_name: str,
    cache: ResponseCache | None,
    transport: httpx.AsyncBaseTransport | None,
) -> Fetcher:
    return Fetcher(
        profile=config.profile(profile_name),
        allowed_domains=config.allowed_domains,
        session=session,
        cache=cache if cache is not None else LocalFileCache(config.cache_path),
        user_agents=config.user_agents or None,
        transport=transport,
    )


class DetailProcessor:
    """Fetches one detail page, extracts its fact and merges it."""

    def __init__(
        self,
        fetcher: Fetcher,
        store: FactStore,
        session: CrawlSession,
        extractor: CurrentDetailExtractor,
        seeded: bool = False,
    ) -> None:
        self.fetcher = fetcher
        self.store = store
        self.session = session
        self.extractor = extractor
        self.seeded = seeded

    async def __call__(self, context: RequestContext) -> None:
        result = await self.fetcher.fetch(context.url, context)
        if result.skipped:
            self.session.increment("skipped")
            return
        if result.cancelled:
            return
        if not result.success:
            self.session.record_error(f"{context.url}: {result.error}")
            return

        fact = self.extractor.extract(result.content, context.url)
        apply_context(fact, context, seeded=self.seeded)
        if not self.seeded:
            self.extractor.record_missing(fact)
        if fact.extraction_errors:
            logger.warning(f"{context.url}: {'; '.join(fact.extraction_errors)}")

        await _persist(self.store, self.session, fact)


async def run_scrape(
    config: CrawlConfig,
    store: FactStore,
    *,
    max_restaurants: int = 0,
    profile_name: str = "default",
    categories: list[Distinction] | None = None,
    session: CrawlSession | None = None,
    cache: ResponseCache | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> JobResult:
    """
    Crawl the live guide's category listings and merge every restaurant.

    Args:
        config: Crawler configuration
        store: Shared fact store
        max_restaurants: Stop after this many detail pages (0 = no limit)
        profile_name: Politeness profile ("default" or "conservative")
        categories: Restrict the crawl to these distinctions
        session: Session to report into (a new one by default)
        cache: Response cache (the configured on-disk cache by default)
        transport: httpx transport override

    Returns:
        JobResult with the session's counters
    """
    session = session or CrawlSession(max_items=max_restaurants)
    session.max_items = max_restaurants
    result = _new_result("scrape")
    selected = [
        (distinction, url)
        for distinction, url in config.category_urls.items()
        if categories is None or distinction in categories
    ]

    async with _live_fetcher(config, session, profile_name, cache, transport) as fetcher:
        walker = ListingWalker(fetcher, session)
        processor = DetailProcessor(fetcher, store, session, CurrentDetailExtractor(config.distinction_policy))

        async def entries() -> AsyncIterator[RequestContext]:
            for distinction, start_url in selected:
                if session.stopped or session.budget_reached():
                    return
                logger.info(f"Walking {distinction.value} listings from {start_url}")
                async for entry in walker.walk(start_url, distinction):
                    yield entry.to_context()

        try:
            await run_workers(entries(), processor, fetcher.profile.concurrency, session)
        except Exception as e:
            logger.exception(f"{result.job_type} run aborted")
            return _finish(result, session, e)

    return _finish(result, session)


def read_seed_csv(path: Path | str, config: CrawlConfig) -> list[RequestContext]:
    """
    Read a seed CSV (Name,Location,URL,Cuisine,Award,Price,Address).

    Rows whose URL is not on an allowed guide domain are skipped.
    """
    contexts: list[RequestContext] = []
    with open(path, newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        missing = [c for c in ("Name", "URL") if c not in (reader.fieldnames or [])]
        if missing:
            raise ValueError(f"Seed CSV {path} is missing columns: {', '.join(missing)}")
        for row in reader:
            url = (row.get("URL") or "").strip()
            if not url or not config.is_url_allowed(url):
                logger.info(f"Skipping seed row with non-guide URL {url!r}")
                continue
            award = (row.get("Award") or "").strip()
            distinction = parse_distinction(award, config.distinction_policy) if award else None
            contexts.append(
                RequestContext(
                    url=url,
                    listing_distinction=distinction.value if distinction else "",
                    seed_name=(row.get("Name") or "").strip(),
                    seed_location=(row.get("Location") or "").strip(),
                )
            )
    return contexts


async def run_scrape_from_csv(
    config: CrawlConfig,
    store: FactStore,
    csv_path: Path | str,
    *,
    max_restaurants: int = 0,
    profile_name: str = "default",
    session: CrawlSession | None = None,
    cache: ResponseCache | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> JobResult:
    """Scrape the detail pages listed in a seed CSV instead of walking listings."""
    session = session or CrawlSession(max_items=max_restaurants)
    session.max_items = max_restaurants
    result = _new_result("scrape_csv")

    contexts = read_seed_csv(csv_path, config)
    logger.info(f"Loaded {len(contexts)} seed URLs from {csv_path}")

    def budgeted() -> Iterable[RequestContext]:
        for context in contexts:
            if not session.try_queue_item():
                return
            yield context

    async with _live_fetcher(config, session, profile_name, cache, transport) as fetcher:
        processor = DetailProcessor(
            fetcher, store, session, CurrentDetailExtractor(config.distinction_policy), seeded=True
        )
        try:
            await run_workers(budgeted(), processor, fetcher.profile.concurrency, session)
        except Exception as e:
            logger.exception(f"{result.job_type} run aborted")
            return _finish(result, session, e)

    return _finish(result, session)


async def run_backfill(
    config: CrawlConfig,
    store: FactStore,
    *,
    url: str | None = None,
    session: CrawlSession | None = None,
    cache: ResponseCache | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> JobResult:
    """
    Merge archived snapshots of known restaurants (or of ``url`` alone).

    Backfill facts never refresh restaurant fields; an unknown ``url`` is
    created as a restaurant that is not in the guide.
    """
    session = session or CrawlSession()
    result = _new_result("backfill")
    archive = config.archive

    urls = [url] if url else [r.url for r in await asyncio.to_thread(store.list_restaurants)]
    logger.info(f"Backfilling {len(urls)} restaurants from the web archive")

    fetcher = Fetcher(
        profile=archive.profile,
        allowed_domains=archive.allowed_domains,
        session=session,
        cache=cache if cache is not None else LocalFileCache(config.archive_cache_path),
        user_agents=config.user_agents or None,
        referer=None,
        transport=transport,
    )

    async with fetcher:
        discoverer = SnapshotDiscoverer(fetcher, archive)

        async def process_snapshot(snapshot: Snapshot) -> None:
            fetched = await fetcher.fetch(snapshot.archive_url, RequestContext(url=snapshot.archive_url))
            if fetched.skipped:
                session.increment("skipped")
                return
            if fetched.cancelled:
                return
            if not fetched.success:
                session.record_error(f"{snapshot.archive_url}: {fetched.error}")
                return
            fact = extract_snapshot(fetched.content, snapshot, config.distinction_policy)
            await _persist(store, session, fact)

        async def snapshots() -> AsyncIterator[Snapshot]:
            for restaurant_url in urls:
                if session.stopped:
                    return
                found = await discoverer.discover(restaurant_url)
                session.increment("discovered", len(found))
                for snapshot in found:
                    session.increment("queued")
                    yield snapshot

        try:
            await run_workers(snapshots(), process_snapshot, archive.profile.concurrency, session)
        except Exception as e:
            logger.exception(f"{result.job_type} run aborted")
            return _finish(result, session, e)

    return _finish(result, session)
