"""
Configuration management for the production costing engine.

This module handles:
- Database location (file-backed SQLite by default, any SQLAlchemy URL by override)
- Rate catalog freshness window
- Environment-specific configuration (development vs. production)
"""

import logging
import os
from pathlib import Path
from typing import Optional

from .constants import (
    APP_NAME,
    APP_VERSION,
    DATABASE_FILENAME,
    DATABASE_VERSION,
    DEFAULT_CATALOG_FRESHNESS_SECONDS,
)

ENV_VAR_ENVIRONMENT = "PRODUCTION_COSTING_ENV"
ENV_VAR_DATABASE_URL = "PRODUCTION_COSTING_DATABASE_URL"
ENV_VAR_CATALOG_TTL = "PRODUCTION_COSTING_CATALOG_TTL"

logger = logging.getLogger(__name__)


class Config:
    """
    Application configuration manager.

    Handles database location, catalog cache settings and environment mode.
    """

    def __init__(self, environment: str = "production"):
        """
        Initialize configuration.

        Args:
            environment: Environment mode - 'production' or 'development'
        """
        self.environment = environment
        self._app_name = APP_NAME
        self._app_version = APP_VERSION
        self._database_version = DATABASE_VERSION

        if environment == "development":
            self._base_dir = self._get_project_data_dir()
        else:
            self._base_dir = self._get_user_data_dir()

        self._database_path = self._base_dir / DATABASE_FILENAME
        self._database_url_override = os.environ.get(ENV_VAR_DATABASE_URL)
        self._catalog_freshness_seconds = self._read_catalog_ttl()

    def _get_project_data_dir(self) -> Path:
        """Get the project's data/ directory for development."""
        project_root = Path(__file__).parent.parent.parent
        return project_root / "data"

    def _get_user_data_dir(self) -> Path:
        """Get the per-user data directory for production."""
        return Path.home() / ".production_costing"

    def _read_catalog_ttl(self) -> int:
        raw = os.environ.get(ENV_VAR_CATALOG_TTL)
        if raw is None or raw.strip() == "":
            return DEFAULT_CATALOG_FRESHNESS_SECONDS
        try:
            value = int(raw)
        except ValueError:
            value = -1
        if value < 0:
            logger.warning(
                f"Invalid {ENV_VAR_CATALOG_TTL}='{raw}', "
                f"using default {DEFAULT_CATALOG_FRESHNESS_SECONDS}"
            )
            return DEFAULT_CATALOG_FRESHNESS_SECONDS
        return value

    def ensure_directories(self) -> None:
        """Create the data directory if it doesn't exist."""
        self._base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def app_name(self) -> str:
        """Application name."""
        return self._app_name

    @property
    def app_version(self) -> str:
        """Application version."""
        return self._app_version

    @property
    def database_version(self) -> str:
        """Database schema version."""
        return self._database_version

    @property
    def database_path(self) -> Path:
        """Full path to the default SQLite database file."""
        return self._database_path

    @property
    def database_url(self) -> str:
        """
        SQLAlchemy database URL.

        Returns:
            The URL from PRODUCTION_COSTING_DATABASE_URL when set, otherwise a
            SQLite URL for database_path.
        """
        if self._database_url_override:
            return self._database_url_override
        db_path_str = str(self._database_path).replace("\\", "/")
        return f"sqlite:///{db_path_str}"

    @property
    def catalog_freshness_seconds(self) -> int:
        """Seconds a rate catalog snapshot is served before refreshing."""
        return self._catalog_freshness_seconds

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    def __repr__(self) -> str:
        """String representation of config."""
        return f"Config(environment='{self.environment}', database_url='{self.database_url}')"


_config_instance: Optional[Config] = None


def get_config(environment: Optional[str] = None) -> Config:
    """
    Get the global configuration instance.

    Once created, the singleton's environment cannot be changed by passing
    a different environment argument.

    Args:
        environment: Optional environment for initial creation. If None, uses
                    PRODUCTION_COSTING_ENV or defaults to production. Ignored if
                    singleton already exists.

    Returns:
        Config instance
    """
    global _config_instance

    if _config_instance is None:
        if environment is None:
            environment = os.environ.get(ENV_VAR_ENVIRONMENT, "production")
        _config_instance = Config(environment)
    elif environment is not None and environment != _config_instance.environment:
        logger.warning(
            f"get_config() called with environment='{environment}' but singleton "
            f"already exists with environment='{_config_instance.environment}'. "
            f"Returning existing singleton to prevent database switching."
        )

    return _config_instance


def reset_config():
    """
    Reset the global configuration instance.

    Useful for testing.
    """
    global _config_instance
    _config_instance = None


def get_database_url() -> str:
    """Get the database URL."""
    return get_config().database_url
