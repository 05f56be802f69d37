"""
Snapshot Discovery Module
=========================

Lists the archived captures of a guide detail page through the web
archive's CDX index and filters out captures that cannot yield a usable
page.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from urllib.parse import urlencode

from guide_tracker.ingestion.crawler import Fetcher
from guide_tracker.ingestion.registry import ArchiveConfig
from guide_tracker.ingestion.session import RequestContext

logger = logging.getLogger(__name__)

CDX_FIELDS = ("timestamp", "original", "statuscode", "mimetype", "length", "digest")


@dataclass(frozen=True)
class Snapshot:
    """One archived capture of a restaurant page."""

    url: str
    timestamp: str
    original_url: str
    digest: str
    archive_url: str

    @property
    def captured_at(self) -> datetime:
        return datetime.strptime(self.timestamp, "%Y%m%d%H%M%S")


def _valid_timestamp(timestamp: str) -> bool:
    if len(timestamp) != 14 or not timestamp.isdigit():
        return False
    try:
        datetime.strptime(timestamp, "%Y%m%d%H%M%S")
    except ValueError:
        return False
    return True


def _valid_length(length: str | None) -> bool:
    if not length:
        return False
    try:
        return int(length) > 0
    except ValueError:
        return False


def filter_snapshots(
    rows: list[dict[str, Any]],
    url: str,
    snapshot_url_template: str = ArchiveConfig.snapshot_url_template,
) -> list[Snapshot]:
    """
    Turn raw CDX rows into snapshots, dropping unusable captures.

    A row is dropped when its status is not 200, its stored length is
    missing or zero, its timestamp is malformed, its digest is empty, or
    its digest repeats the previous kept capture's digest (same content).

    Args:
        rows: CDX rows as dicts keyed by field name
        url: Canonical guide URL the captures belong to
        snapshot_url_template: Format string with ``timestamp`` and ``original``

    Returns:
        Snapshots in index order
    """
    snapshots: list[Snapshot] = []
    previous_digest: str | None = None

    for row in rows:
        timestamp = str(row.get("timestamp") or "").strip()
        original = str(row.get("original") or "").strip() or url
        digest = str(row.get("digest") or "").strip()

        if str(row.get("statuscode") or "").strip() != "200":
            continue
        if not _valid_length(str(row.get("length") or "").strip()):
            continue
        if not _valid_timestamp(timestamp):
            logger.debug(f"Dropping capture of {url} with malformed timestamp {timestamp!r}")
            continue
        if not digest:
            continue
        if digest == previous_digest:
            continue

        previous_digest = digest
        snapshots.append(
            Snapshot(
                url=url,
                timestamp=timestamp,
                original_url=original,
                digest=digest,
                archive_url=snapshot_url_template.format(timestamp=timestamp, original=original),
            )
        )
    return snapshots


def parse_cdx_response(content: bytes | str) -> list[dict[str, Any]]:
    """
    Parse a CDX ``output=json`` body: a header row followed by value rows.

    Raises:
        ValueError: If the body is not a JSON list of rows
    """
    data = json.loads(content or "[]")
    if not isinstance(data, list):
        raise ValueError("CDX response is not a list")
    if not data:
        return []
    if not all(isinstance(row, list) for row in data):
        raise ValueError("CDX response rows must be lists")
    header = [str(name) for name in data[0]]
    return [dict(zip(header, row)) for row in data[1:]]


class SnapshotDiscoverer:
    """Queries the CDX index for one detail URL at a time."""

    def __init__(self, fetcher: Fetcher, config: ArchiveConfig | None = None) -> None:
        self.fetcher = fetcher
        self.config = config or ArchiveConfig()

    def build_query_url(self, url: str) -> str:
        params: dict[str, Any] = {
            "url": url,
            "output": "json",
            "fl": ",".join(CDX_FIELDS),
        }
        if self.config.from_year:
            params["from"] = str(self.config.from_year)
        return f"{self.config.cdx_url}?{urlencode(params)}"

    async def discover(self, url: str) -> list[Snapshot]:
        """
        List usable snapshots of ``url``, oldest first.

        Index failures are logged and yield an empty list; calling again
        repeats the lookup.
        """
        query_url = self.build_query_url(url)
        result = await self.fetcher.fetch(query_url, RequestContext(url=query_url), use_cache=False, dedupe=False)
        if not result.success:
            logger.warning(f"Snapshot index lookup failed for {url}: {result.error}")
            return []

        try:
            rows = parse_cdx_response(result.content)
        except ValueError as e:
            logger.warning(f"Unreadable snapshot index for {url}: {e}")
            return []

        snapshots = filter_snapshots(rows, url, self.config.snapshot_url_template)
        logger.info(f"{url}: {len(snapshots)} usable snapshots of {len(rows)} indexed")
        return snapshots
