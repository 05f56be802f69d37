"""
Page Fetcher Module
===================

Polite HTTP fetching for both the live guide and the web archive:
domain allow-list, per-request delay with jitter, bounded concurrency,
a response cache, a per-run URL budget and a retry loop with
failure-specific backoff.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from urllib.parse import urlparse

import httpx

from guide_tracker.ingestion.registry import PolitenessProfile
from guide_tracker.ingestion.session import CrawlSession, RequestContext
from guide_tracker.ingestion.storage import NullCache, ResponseCache

logger = logging.getLogger(__name__)

DEFAULT_REFERER = "https://guide.michelin.com/"

DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) "
    "Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36",
]

BLOCKED_STATUS_CODES = frozenset({403, 429})
CANCELLED = "cancelled"


class FailureKind(str, Enum):
    """How a failed request should be treated by the retry loop."""

    BLOCKED = "blocked"
    GENERIC = "generic"
    ALREADY_VISITED = "already_visited"


def classify_failure(status_code: int) -> FailureKind:
    """Classify a failed response by status code (0 = transport error)."""
    if status_code in BLOCKED_STATUS_CODES:
        return FailureKind.BLOCKED
    return FailureKind.GENERIC


def backoff_delay(kind: FailureKind, attempt: int, base: float) -> float | None:
    """
    Seconds to wait before retrying a failed request.

    Args:
        kind: Failure classification
        attempt: The attempt that just failed (1-based)
        base: Base delay in seconds for this failure kind

    Returns:
        The delay, or None when the request must not be retried
    """
    if kind == FailureKind.ALREADY_VISITED:
        return None
    if kind == FailureKind.BLOCKED:
        return base * attempt * attempt
    return attempt * base


@dataclass
class FetchResult:
    """Result of fetching a URL."""

    url: str
    content: bytes
    status_code: int
    fetched_at: datetime
    attempts: int = 0
    from_cache: bool = False
    skipped: bool = False
    error: str | None = None

    @property
    def success(self) -> bool:
        """Check if fetch was successful."""
        return self.error is None and 200 <= self.status_code < 300

    @property
    def cancelled(self) -> bool:
        """Check if the fetch was abandoned because the run is stopping."""
        return self.error == CANCELLED

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    @classmethod
    def failed(cls, url: str, error: str, *, status_code: int = 0, attempts: int = 0, skipped: bool = False) -> FetchResult:
        return cls(
            url=url,
            content=b"",
            status_code=status_code,
            fetched_at=datetime.now(UTC),
            attempts=attempts,
            skipped=skipped,
            error=error,
        )


class Fetcher:
    """
    Fetches pages under one politeness profile.

    Use as an async context manager so the underlying ``httpx.AsyncClient``
    is opened and closed with the run. Every network request waits
    ``delay + uniform(0, random_delay)`` seconds first, and at most
    ``profile.concurrency`` requests are in flight at once.
    """

    def __init__(
        self,
        profile: PolitenessProfile,
        allowed_domains: list[str],
        session: CrawlSession,
        cache: ResponseCache | None = None,
        user_agents: list[str] | None = None,
        referer: str | None = DEFAULT_REFERER,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.profile = profile
        self.allowed_domains = list(allowed_domains)
        self.session = session
        self.cache = cache or NullCache()
        self.user_agents = list(user_agents or DEFAULT_USER_AGENTS)
        self.referer = referer
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._semaphore = asyncio.Semaphore(profile.concurrency)

    async def __aenter__(self) -> Fetcher:
        self._client = httpx.AsyncClient(
            timeout=self.profile.timeout,
            follow_redirects=True,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def is_url_allowed(self, url: str) -> bool:
        """Check the URL's host against the allow-list."""
        return urlparse(url).netloc in self.allowed_domains

    def build_headers(self) -> dict[str, str]:
        """Browser-like request headers with a rotating User-Agent."""
        headers = {
            "User-Agent": random.choice(self.user_agents),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
            "Accept-Encoding": "gzip, deflate",
            "Connection": "keep-alive",
            "Upgrade-Insecure-Requests": "1",
        }
        if self.referer:
            headers["Referer"] = self.referer
        return headers

    def _politeness_delay(self) -> float:
        return self.profile.delay + random.uniform(0, self.profile.random_delay)

    def _backoff_base(self, kind: FailureKind) -> float:
        if kind == FailureKind.BLOCKED:
            return self.profile.blocked_backoff
        return self.profile.delay

    async def fetch(
        self,
        url: str,
        context: RequestContext | None = None,
        *,
        use_cache: bool = True,
        dedupe: bool = True,
    ) -> FetchResult:
        """
        Fetch a URL with caching, pacing and retries.

        Args:
            url: URL to fetch
            context: Per-URL context; its ``attempt`` counter is advanced
            use_cache: Serve from and store into the response cache
            dedupe: Skip URLs already visited in this session

        Returns:
            FetchResult with content or error
        """
        context = context or RequestContext(url=url)

        if not self.is_url_allowed(url):
            logger.warning(f"Refusing to fetch {url}: domain not allowed")
            return FetchResult.failed(url, f"Domain not allowed: {urlparse(url).netloc}")

        if dedupe and not self.session.mark_visited(url):
            # Already visited: skip silently, never retried
            logger.debug(f"Already visited {url}, skipping")
            return FetchResult.failed(url, FailureKind.ALREADY_VISITED.value, skipped=True)

        if use_cache:
            cached = self.cache.get(url)
            if cached is not None:
                self.session.increment("from_cache")
                return FetchResult(
                    url=url,
                    content=cached.content,
                    status_code=cached.status_code,
                    fetched_at=cached.fetched_at,
                    from_cache=True,
                )

        if not self.session.reserve_request(self.profile.max_urls):
            logger.warning(f"URL budget of {self.profile.max_urls} exhausted, not fetching {url}")
            return FetchResult.failed(url, "URL budget exhausted")

        if self._client is None:
            raise RuntimeError("Fetcher must be used as an async context manager")

        last_error = "Unknown error"
        status_code = 0
        while True:
            async with self._semaphore:
                if not await self.session.sleep(self._politeness_delay()):
                    return FetchResult.failed(url, CANCELLED, attempts=context.attempt)
                try:
                    response = await self._client.get(url, headers=self.build_headers())
                    status_code = response.status_code
                    if 200 <= status_code < 300:
                        self.session.increment("fetched")
                        if use_cache:
                            self.cache.put(url, status_code, response.content)
                        return FetchResult(
                            url=url,
                            content=response.content,
                            status_code=status_code,
                            fetched_at=datetime.now(UTC),
                            attempts=context.attempt,
                        )
                    last_error = f"HTTP {status_code}"
                except httpx.TimeoutException:
                    status_code = 0
                    last_error = f"Timeout after {self.profile.timeout}s"
                except httpx.HTTPError as e:
                    status_code = 0
                    last_error = str(e) or type(e).__name__

            kind = classify_failure(status_code)
            if context.attempt >= self.profile.max_retries:
                logger.error(f"Giving up on {url} after {context.attempt} attempts: {last_error}")
                return FetchResult.failed(url, last_error, status_code=status_code, attempts=context.attempt)

            delay = backoff_delay(kind, context.attempt, self._backoff_base(kind))
            if delay is None:
                return FetchResult.failed(url, last_error, status_code=status_code, attempts=context.attempt)

            logger.warning(
                f"{kind.value} failure fetching {url} ({last_error}), "
                f"attempt {context.attempt}/{self.profile.max_retries}, retrying in {delay:.1f}s"
            )
            self.cache.clear(url)
            if not await self.session.sleep(delay):
                return FetchResult.failed(url, CANCELLED, status_code=status_code, attempts=context.attempt)
            context.attempt += 1
