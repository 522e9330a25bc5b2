"""
Configuration Loader for WSO Region Assignment & Analytics

This module provides a centralized way to load and access configuration
settings from a config.yaml file.

Usage:
    from wso_regions.config_loader import Config

    config = Config()
    page_size = config.get("pagination.page_size")
    meets = config.get_entity_settings("meets")
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml  # type: ignore[import-untyped]
from loguru import logger

from .errors import ConfigurationError

PACKAGE_DIR = Path(__file__).parent
DEFAULT_CONFIG_PATH = PACKAGE_DIR / "config.yaml"


class Config:
    """Configuration manager for region assignment and analytics runs."""

    # Default values that can be overridden in config
    DEFAULTS: Dict[str, Any] = {
        "geography": {"catalog_path": "data/geography.yaml", "boundaries_geojson": None},
        "pagination": {
            "page_size": 1000,
            "hard_cap": 50000,
            "id_batch_size": 200,
            "max_retries": 3,
            "retry_delay": 2.0,
            "backoff": "exponential",
        },
        "regions_table": {
            "table": "wso_information",
            "name_column": "name",
            "states_column": "states",
            "boundary_column": "territory_geojson",
        },
        "analytics": {
            "window_months": 12,
            "events_table": "meets",
            "event_id_column": "meet_id",
            "event_date_column": "Date",
            "participations_table": "meet_results",
            "participation_id_column": "result_id",
            "participant_column": "lifter_id",
            "entities_table": "clubs",
            "entity_id_column": "club_name",
            "latitude_column": "latitude",
            "longitude_column": "longitude",
            "metrics_table": "wso_information",
            "metrics_key_column": "name",
            "legacy_page_limits": [1000],
        },
    }

    ENTITY_DEFAULTS: Dict[str, Any] = {
        "latitude_column": "latitude",
        "longitude_column": "longitude",
        "region_column": "wso_geography",
        "address_fields": ["address", "city", "state", "location_text", "street_address"],
    }

    def __init__(
        self,
        config_file: Optional[Union[str, Path]] = None,
        data: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize configuration manager.

        Args:
            config_file: Path to config file. If None, looks for:
                        1. Environment variable WSO_REGIONS_CONFIG
                        2. config.yaml in current directory
                        3. the config.yaml shipped with the package
            data: Already-parsed configuration (used by tests and CLI overrides).
                  Takes precedence over config_file.
        """
        if data is not None:
            self.config_path = DEFAULT_CONFIG_PATH
            self.data = data
            logger.debug("Using in-memory configuration")
            return

        if config_file is None:
            env_config = os.environ.get("WSO_REGIONS_CONFIG")
            if env_config and Path(env_config).exists():
                config_file = env_config
                logger.debug(f"Using config from environment: {config_file}")
            elif Path("config.yaml").exists():
                config_file = "config.yaml"
            else:
                config_file = DEFAULT_CONFIG_PATH

        self.config_path = Path(config_file).resolve()
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        logger.debug(f"Loading config from: {self.config_path}")

        with open(self.config_path, "r") as f:
            self.data = yaml.safe_load(f) or {}

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation with intelligent defaults.

        Args:
            key_path: Dot-separated path to the configuration value
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key_path.split(".")

        # Try to get from config first
        value: Any = self.data
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                value = None
                break

        # If not found in config, try defaults
        if value is None:
            value = self.DEFAULTS
            for key in keys:
                if isinstance(value, dict) and key in value:
                    value = value[key]
                else:
                    return default

        return value if value is not None else default

    def resolve_path(self, relative: Union[str, Path]) -> Path:
        """Resolve a config-relative path against the package directory."""
        path = Path(relative)
        if path.is_absolute():
            return path
        return PACKAGE_DIR / path

    def get_catalog_path(self) -> Path:
        """Get path to the static geography catalog."""
        return self.resolve_path(self.get("geography.catalog_path"))

    def get_boundaries_geojson_path(self) -> Optional[Path]:
        """Get path to a boundary GeoJSON file, if one is configured."""
        relative = self.get("geography.boundaries_geojson")
        return self.resolve_path(relative) if relative else None

    def get_pagination_setting(self, setting_key: str) -> Any:
        """Get pagination setting with intelligent defaults."""
        return self.get(f"pagination.{setting_key}")

    def get_analytics_setting(self, setting_key: str) -> Any:
        """Get analytics setting with intelligent defaults."""
        return self.get(f"analytics.{setting_key}")

    def get_entity_settings(self, entity: str) -> Dict[str, Any]:
        """
        Get the table description for an assignable entity ('meets', 'clubs').

        Raises:
            ConfigurationError: If the entity is not configured or lacks a table/id column.
        """
        entity_config = self.get(f"entities.{entity}")
        if not isinstance(entity_config, dict):
            raise ConfigurationError(f"Unknown entity '{entity}' (not found under 'entities')")

        settings = {**self.ENTITY_DEFAULTS, **entity_config}
        missing = [key for key in ("table", "id_column", "name_column") if not settings.get(key)]
        if missing:
            raise ConfigurationError(f"Entity '{entity}' is missing required keys: {missing}")
        return settings

    def get_history_settings(self, entity: str) -> Optional[Dict[str, Any]]:
        """Get the historical assignment source for an entity, or None if not configured."""
        history = self.get(f"history.{entity}")
        return history if isinstance(history, dict) else None

    def list_entities(self) -> List[str]:
        """List configured entity names."""
        return sorted((self.get("entities", {}) or {}).keys())
