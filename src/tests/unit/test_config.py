"""Unit tests for Config class configuration properties.

Each property is tested for:
- Default values when no environment variables set
- Environment variable overrides
- Invalid value handling (fallback to defaults with warning)
"""

import logging

import pytest

from src.utils.config import Config, get_config, reset_config


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Reset the config singleton and clear overrides around each test."""
    for name in (
        "PRODUCTION_COSTING_ENV",
        "PRODUCTION_COSTING_DATABASE_URL",
        "PRODUCTION_COSTING_CATALOG_TTL",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


class TestDatabaseUrl:
    """Tests for database location."""

    def test_default_is_sqlite_file(self):
        config = Config()
        assert config.database_url.startswith("sqlite:///")
        assert config.database_url.endswith("production_costing.db")

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("PRODUCTION_COSTING_DATABASE_URL", "postgresql://mill@localhost/costing")
        assert Config().database_url == "postgresql://mill@localhost/costing"

    def test_development_uses_project_data_dir(self):
        config = Config("development")
        assert config.is_development
        assert config.database_path.parent.name == "data"


class TestCatalogFreshness:
    """Tests for catalog_freshness_seconds."""

    def test_default(self):
        assert Config().catalog_freshness_seconds == 300

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("PRODUCTION_COSTING_CATALOG_TTL", "60")
        assert Config().catalog_freshness_seconds == 60

    def test_zero_disables_caching(self, monkeypatch):
        monkeypatch.setenv("PRODUCTION_COSTING_CATALOG_TTL", "0")
        assert Config().catalog_freshness_seconds == 0

    @pytest.mark.parametrize("raw", ["invalid", "-5"])
    def test_invalid_uses_default(self, monkeypatch, caplog, raw):
        monkeypatch.setenv("PRODUCTION_COSTING_CATALOG_TTL", raw)
        with caplog.at_level(logging.WARNING):
            assert Config().catalog_freshness_seconds == 300
        assert "Invalid PRODUCTION_COSTING_CATALOG_TTL" in caplog.text


class TestGetConfig:
    """Tests for the config singleton."""

    def test_singleton(self):
        assert get_config() is get_config()

    def test_environment_from_env_var(self, monkeypatch):
        monkeypatch.setenv("PRODUCTION_COSTING_ENV", "development")
        assert get_config().is_development

    def test_environment_cannot_switch(self, caplog):
        config = get_config("production")
        with caplog.at_level(logging.WARNING):
            assert get_config("development") is config
        assert "singleton already exists" in caplog.text
