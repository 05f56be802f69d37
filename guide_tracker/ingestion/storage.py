"""
Response Cache Module
=====================

Filesystem cache of fetched pages, keyed by a stable hash of the URL so a
re-run does not hit the site again for pages it already has.
"""

from __future__ import annotations

import gzip
import hashlib
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class CachedResponse:
    """A cached page and the metadata it was fetched with."""

    url: str
    status_code: int
    content: bytes
    fetched_at: datetime


def url_key(url: str) -> str:
    """Stable cache key for a URL (hex SHA-1)."""
    return hashlib.sha1(url.encode("utf-8")).hexdigest()


class ResponseCache(ABC):
    """Abstract base class for response caches."""

    @abstractmethod
    def get(self, url: str) -> CachedResponse | None:
        """Return the cached response for a URL, if any."""
        pass

    @abstractmethod
    def put(self, url: str, status_code: int, content: bytes) -> None:
        """Store a response."""
        pass

    @abstractmethod
    def clear(self, url: str) -> bool:
        """Drop the cached response for a URL; returns True if one existed."""
        pass


class LocalFileCache(ResponseCache):
    """
    Local filesystem cache.

    Directory structure:
        {base_path}/{key[:2]}/{key}        gzip-compressed body
        {base_path}/{key[:2]}/{key}.json   status code, URL, fetch time
    """

    def __init__(self, base_path: str | Path) -> None:
        self.base_path = Path(base_path).expanduser().resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _paths(self, url: str) -> tuple[Path, Path]:
        key = url_key(url)
        directory = self.base_path / key[:2]
        return directory / key, directory / f"{key}.json"

    def get(self, url: str) -> CachedResponse | None:
        body_path, meta_path = self._paths(url)
        if not body_path.exists() or not meta_path.exists():
            return None
        try:
            meta = json.loads(meta_path.read_text())
            return CachedResponse(
                url=url,
                status_code=int(meta.get("status_code", 200)),
                content=gzip.decompress(body_path.read_bytes()),
                fetched_at=datetime.fromisoformat(meta["fetched_at"]),
            )
        except (OSError, ValueError, KeyError, EOFError) as e:
            logger.warning(f"Discarding unreadable cache entry for {url}: {e}")
            self.clear(url)
            return None

    def put(self, url: str, status_code: int, content: bytes) -> None:
        body_path, meta_path = self._paths(url)
        body_path.parent.mkdir(parents=True, exist_ok=True)
        body_path.write_bytes(gzip.compress(content, compresslevel=6))
        meta_path.write_text(
            json.dumps(
                {
                    "url": url,
                    "status_code": status_code,
                    "fetched_at": datetime.now(UTC).isoformat(),
                }
            )
        )

    def clear(self, url: str) -> bool:
        existed = False
        for path in self._paths(url):
            if path.exists():
                path.unlink()
                existed = True
        return existed


class NullCache(ResponseCache):
    """Cache that stores nothing, for runs that must always hit the network."""

    def get(self, url: str) -> CachedResponse | None:
        return None

    def put(self, url: str, status_code: int, content: bytes) -> None:
        return None

    def clear(self, url: str) -> bool:
        return False
