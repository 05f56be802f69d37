"""
Crawl Configuration Module
==========================

Loads crawler settings from a YAML file: politeness profiles for the live
guide, archive settings for backfills, the category listing URLs to start
from, and storage locations.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml

from guide_tracker.core.enums import Distinction
from guide_tracker.ingestion.normalizer import DistinctionPolicy

DEFAULT_CATEGORY_URLS: dict[Distinction, str] = {
    Distinction.THREE_STARS: "https://guide.michelin.com/en/restaurants/3-stars-michelin",
    Distinction.TWO_STARS: "https://guide.michelin.com/en/restaurants/2-stars-michelin",
    Distinction.ONE_STAR: "https://guide.michelin.com/en/restaurants/1-star-michelin",
    Distinction.BIB_GOURMAND: "https://guide.michelin.com/en/restaurants/bib-gourmand",
    Distinction.SELECTED_RESTAURANTS: "https://guide.michelin.com/en/restaurants/the-plate-michelin",
}


class ConfigError(Exception):
    """Raised when the crawler configuration is invalid."""


@dataclass
class PolitenessProfile:
    """
    Request pacing for one target site.

    Every request waits ``delay`` plus a random share of ``random_delay``
    seconds; ``concurrency`` bounds in-flight requests.
    """

    delay: float = 4.0
    random_delay: float = 4.0
    concurrency: int = 1
    max_retries: int = 3
    max_urls: int = 30_000
    timeout: float = 30.0
    blocked_backoff: float = 8.0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None, defaults: PolitenessProfile | None = None) -> PolitenessProfile:
        """Create from dictionary, using ``defaults`` for missing values."""
        base = defaults or cls()
        if data is None:
            return cls(**vars(base))
        profile = cls(
            delay=float(data.get("delay", base.delay)),
            random_delay=float(data.get("random_delay", base.random_delay)),
            concurrency=int(data.get("concurrency", base.concurrency)),
            max_retries=int(data.get("max_retries", base.max_retries)),
            max_urls=int(data.get("max_urls", base.max_urls)),
            timeout=float(data.get("timeout", base.timeout)),
            blocked_backoff=float(data.get("blocked_backoff", base.blocked_backoff)),
        )
        if profile.concurrency < 1:
            raise ConfigError("concurrency must be at least 1")
        if profile.max_retries < 1:
            raise ConfigError("max_retries must be at least 1")
        return profile


@dataclass
class ArchiveConfig:
    """Settings for the web archive used by backfills."""

    cdx_url: str = "https://web.archive.org/cdx/search/cdx"
    snapshot_url_template: str = "https://web.archive.org/web/{timestamp}id_/{original}"
    allowed_domains: list[str] = field(default_factory=lambda: ["web.archive.org"])
    profile: PolitenessProfile = field(
        default_factory=lambda: PolitenessProfile(delay=1.0, random_delay=1.0, concurrency=4, max_urls=100_000)
    )
    from_year: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ArchiveConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        default = cls()
        return cls(
            cdx_url=data.get("cdx_url", default.cdx_url),
            snapshot_url_template=data.get("snapshot_url_template", default.snapshot_url_template),
            allowed_domains=data.get("allowed_domains", default.allowed_domains),
            profile=PolitenessProfile.from_dict(data.get("politeness"), default.profile),
            from_year=data.get("from_year"),
        )


@dataclass
class CrawlConfig:
    """Complete crawler configuration."""

    allowed_domains: list[str] = field(default_factory=lambda: ["guide.michelin.com"])
    database_path: str = "data/michelin.db"
    cache_path: str = "cache/scrape"
    archive_cache_path: str = "cache/wayback"
    profiles: dict[str, PolitenessProfile] = field(
        default_factory=lambda: {
            "default": PolitenessProfile(),
            "conservative": PolitenessProfile(delay=8.0, random_delay=8.0),
        }
    )
    archive: ArchiveConfig = field(default_factory=ArchiveConfig)
    category_urls: dict[Distinction, str] = field(default_factory=lambda: dict(DEFAULT_CATEGORY_URLS))
    distinction_policy: DistinctionPolicy = field(default_factory=DistinctionPolicy)
    user_agents: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CrawlConfig:
        """Create from dictionary."""
        if data is None:
            return cls()
        default = cls()

        global_data = data.get("global", {}) or {}
        base_profile = PolitenessProfile.from_dict(global_data.get("politeness"))
        profiles = {"default": base_profile}
        for name, profile_data in (data.get("profiles") or {}).items():
            profiles[name] = PolitenessProfile.from_dict(profile_data, base_profile)
        profiles.setdefault("conservative", default.profiles["conservative"])

        category_urls: dict[Distinction, str] = {}
        for key, url in (data.get("categories") or {}).items():
            try:
                category_urls[Distinction(key)] = url
            except ValueError as e:
                raise ConfigError(f"Unknown distinction in categories: {key}") from e

        try:
            policy = DistinctionPolicy.from_name(global_data.get("distinction_fallback", "Selected Restaurants"))
        except ValueError as e:
            raise ConfigError(str(e)) from e

        return cls(
            allowed_domains=global_data.get("allowed_domains", default.allowed_domains),
            database_path=global_data.get("database_path", default.database_path),
            cache_path=global_data.get("cache_path", default.cache_path),
            archive_cache_path=global_data.get("archive_cache_path", default.archive_cache_path),
            profiles=profiles,
            archive=ArchiveConfig.from_dict(data.get("archive")),
            category_urls=category_urls or default.category_urls,
            distinction_policy=policy,
            user_agents=global_data.get("user_agents", []),
        )

    def profile(self, name: str = "default") -> PolitenessProfile:
        """Get a politeness profile by name."""
        if name not in self.profiles:
            raise ConfigError(f"Unknown politeness profile: {name}")
        return self.profiles[name]

    def is_url_allowed(self, url: str) -> bool:
        """Check that a URL points at one of the live guide's domains."""
        return urlparse(url).netloc in self.allowed_domains


def load_config(config_path: Path | str) -> CrawlConfig:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist
        ConfigError: If the file is not valid configuration
    """
    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if data is not None and not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping at the top of {config_path}")
    return CrawlConfig.from_dict(data)


# Global config instance
_default_config: CrawlConfig | None = None


def get_default_config() -> CrawlConfig:
    """
    Get the default crawler configuration.

    Loads from the path in the GUIDE_TRACKER_CONFIG environment variable,
    falling back to config/crawler.yaml, then to built-in defaults.
    """
    global _default_config

    if _default_config is None:
        config_path = os.environ.get("GUIDE_TRACKER_CONFIG")
        if config_path:
            path = Path(config_path)
        else:
            project_root = Path(__file__).parent.parent.parent
            path = project_root / "config" / "crawler.yaml"

        _default_config = load_config(path) if path.exists() else CrawlConfig()

    return _default_config


def reset_default_config() -> None:
    """Reset the default config (useful for testing)."""
    global _default_config
    _default_config = None
