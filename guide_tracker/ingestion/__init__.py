"""
Guide Tracker Ingestion Framework
=================================

This package crawls the restaurant guide and its web-archive history and
reconciles what it finds into the fact store.

Pipeline Stages:
1. Discovery - Listing walker pages through category listings; the
   snapshot discoverer lists archived captures of known restaurants
2. Fetch - Fetcher applies the domain allow-list, politeness delays,
   the response cache, the URL budget and retry/backoff
3. Extract - Extractors turn current or legacy page formats into facts
4. Merge - The merge policy decides create/update/reject per award year
5. Persist - FactStore writes one restaurant and its award per transaction

Bulk CSV datasets go through the same merge policy (see ``dataset``);
run entry points live in ``jobs``.
"""

from guide_tracker.ingestion.crawler import (
    FailureKind,
    Fetcher,
    FetchResult,
    backoff_delay,
)
from guide_tracker.ingestion.merge import (
    MergeDecision,
    MergeOutcome,
    MergeStats,
    decide,
)
from guide_tracker.ingestion.registry import (
    ArchiveConfig,
    ConfigError,
    CrawlConfig,
    PolitenessProfile,
    get_default_config,
    load_config,
)
from guide_tracker.ingestion.session import (
    CrawlSession,
    RequestContext,
)
from guide_tracker.ingestion.storage import (
    LocalFileCache,
    NullCache,
    ResponseCache,
)
from guide_tracker.ingestion.wayback import (
    Snapshot,
    SnapshotDiscoverer,
    filter_snapshots,
)

__all__ = [
    # Config
    "ArchiveConfig",
    "ConfigError",
    "CrawlConfig",
    "PolitenessProfile",
    "get_default_config",
    "load_config",
    # Fetcher
    "FailureKind",
    "Fetcher",
    "FetchResult",
    "backoff_delay",
    # Session
    "CrawlSession",
    "RequestContext",
    # Cache
    "LocalFileCache",
    "NullCache",
    "ResponseCache",
    # Merge
    "MergeDecision",
    "MergeOutcome",
    "MergeStats",
    "decide",
    # Archive
    "Snapshot",
    "SnapshotDiscoverer",
    "filter_snapshots",
]
