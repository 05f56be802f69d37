"""Tests for the crawler configuration module."""

import tempfile
from pathlib import Path

import pytest
import yaml

from guide_tracker.core.enums import Distinction
from guide_tracker.ingestion.registry import (
    DEFAULT_CATEGORY_URLS,
    ArchiveConfig,
    ConfigError,
    CrawlConfig,
    PolitenessProfile,
    get_default_config,
    load_config,
    reset_default_config,
)

PROJECT_CONFIG = Path(__file__).parent.parent / "config" / "crawler.yaml"


class TestPolitenessProfile:
    """Tests for PolitenessProfile."""

    def test_default_values(self) -> None:
        """Test the default pacing for the live guide."""
        profile = PolitenessProfile()
        assert profile.delay == 4.0
        assert profile.random_delay == 4.0
        assert profile.concurrency == 1
        assert profile.max_retries == 3
        assert profile.max_urls == 30_000
        assert profile.blocked_backoff == 8.0

    def test_from_dict_with_defaults(self) -> None:
        """Test that missing keys inherit from the given defaults."""
        base = PolitenessProfile(delay=2.0, concurrency=3)
        profile = PolitenessProfile.from_dict({"delay": 8.0}, base)
        assert profile.delay == 8.0
        assert profile.concurrency == 3

    def test_from_dict_none(self) -> None:
        """Test creating from None returns a copy of the defaults."""
        base = PolitenessProfile(delay=1.0)
        profile = PolitenessProfile.from_dict(None, base)
        assert profile == base
        assert profile is not base

    def test_invalid_values(self) -> None:
        """Test that nonsensical pacing is rejected."""
        with pytest.raises(ConfigError):
            PolitenessProfile.from_dict({"concurrency": 0})
        with pytest.raises(ConfigError):
            PolitenessProfile.from_dict({"max_retries": 0})


class TestCrawlConfig:
    """Tests for CrawlConfig."""

    def test_defaults(self) -> None:
        """Test the built-in configuration."""
        config = CrawlConfig()
        assert config.profile("default").delay == 4.0
        assert config.profile("conservative").delay == 8.0
        assert config.profile("conservative").random_delay == 8.0
        assert config.category_urls == DEFAULT_CATEGORY_URLS
        assert config.distinction_policy.fallback == Distinction.SELECTED_RESTAURANTS
        assert isinstance(config.archive, ArchiveConfig)

    def test_unknown_profile(self) -> None:
        """Test asking for a profile that does not exist."""
        with pytest.raises(ConfigError):
            CrawlConfig().profile("reckless")

    def test_is_url_allowed(self) -> None:
        """Test the guide domain allow-list."""
        config = CrawlConfig()
        assert config.is_url_allowed("https://guide.michelin.com/en/restaurants")
        assert not config.is_url_allowed("https://web.archive.org/web/2019/https://guide.michelin.com/")
        assert not config.is_url_allowed("not a url")

    def test_from_dict(self) -> None:
        """Test building a full configuration from a dictionary."""
        data = {
            "global": {
                "database_path": "/tmp/guide.db",
                "distinction_fallback": "none",
                "politeness": {"delay": 1.0, "random_delay": 0.5},
            },
            "profiles": {"conservative": {"delay": 10.0}},
            "archive": {"from_year": 2010, "politeness": {"concurrency": 8}},
            "categories": {"Bib Gourmand": "https://guide.michelin.com/en/restaurants/bib-gourmand"},
        }
        config = CrawlConfig.from_dict(data)

        assert config.database_path == "/tmp/guide.db"
        assert config.distinction_policy.fallback is None
        assert config.profile("default").delay == 1.0
        conservative = config.profile("conservative")
        assert conservative.delay == 10.0
        assert conservative.random_delay == 0.5
        assert config.archive.from_year == 2010
        assert config.archive.profile.concurrency == 8
        assert config.archive.profile.delay == 1.0
        assert list(config.category_urls) == [Distinction.BIB_GOURMAND]

    def test_unknown_category(self) -> None:
        """Test that categories must name a known distinction."""
        with pytest.raises(ConfigError):
            CrawlConfig.from_dict({"categories": {"4 Stars": "https://guide.michelin.com/x"}})

    def test_unknown_fallback(self) -> None:
        """Test that the distinction fallback must be known."""
        with pytest.raises(ConfigError):
            CrawlConfig.from_dict({"global": {"distinction_fallback": "Four Stars"}})


class TestLoadConfig:
    """Tests for loading YAML files."""

    def test_project_config(self) -> None:
        """Test that the shipped configuration loads."""
        config = load_config(PROJECT_CONFIG)
        assert config.allowed_domains == ["guide.michelin.com"]
        assert config.profile("default").blocked_backoff == 8.0
        assert config.profile("conservative").delay == 8.0
        assert config.archive.profile.concurrency == 4
        assert len(config.category_urls) == 5

    def test_load_from_file(self) -> None:
        """Test loading a configuration written to disk."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "crawler.yaml"
            path.write_text(yaml.dump({"global": {"cache_path": "/tmp/cache"}}))
            config = load_config(path)
        assert config.cache_path == "/tmp/cache"

    def test_missing_file(self) -> None:
        """Test loading a file that does not exist."""
        with pytest.raises(FileNotFoundError):
            load_config("/nonexistent/crawler.yaml")

    def test_invalid_yaml(self) -> None:
        """Test loading a file that is not YAML."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "crawler.yaml"
            path.write_text("global: [unclosed")
            with pytest.raises(ConfigError):
                load_config(path)

    def test_not_a_mapping(self) -> None:
        """Test loading a YAML list instead of a mapping."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "crawler.yaml"
            path.write_text("- a\n- b\n")
            with pytest.raises(ConfigError):
                load_config(path)

    def test_empty_file(self) -> None:
        """Test that an empty file gives the defaults."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "crawler.yaml"
            path.write_text("")
            config = load_config(path)
        assert config.database_path == "data/michelin.db"


class TestDefaultConfig:
    """Tests for the global default configuration."""

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that GUIDE_TRACKER_CONFIG picks the file."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "crawler.yaml"
            path.write_text(yaml.dump({"global": {"database_path": "custom.db"}}))
            monkeypatch.setenv("GUIDE_TRACKER_CONFIG", str(path))
            reset_default_config()
            try:
                assert get_default_config().database_path == "custom.db"
                assert get_default_config() is get_default_config()
            finally:
                reset_default_config()
