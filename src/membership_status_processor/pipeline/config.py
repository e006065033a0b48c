"""
Configuration Loader Module

This module handles loading the YAML configuration that sets the job's
default request parameters, the membership store backend, logging and run
summary output.
"""

import yaml
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from pydantic import BaseModel, Field, ValidationError

from membership_status_processor.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/config.yaml"


class JobDefaults(BaseModel):
    """Defaults applied to unset recalculation request fields."""

    exclude_test_memberships: bool = True
    only_active_membership_types: bool = True
    excluded_status_names: List[str] = Field(
        default_factory=lambda: ["Pending", "Cancelled", "Expired"]
    )


class ConfigLoader:
    """Handles loading and reading the YAML configuration file."""

    def __init__(self, config_file_path: str = DEFAULT_CONFIG_PATH):
        """
        Initialize the configuration loader.

        Args:
            config_file_path: Path to the YAML configuration file
        """
        self.config_file_path = Path(config_file_path)
        self.config_data: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from YAML file; a missing file leaves built-in defaults."""
        if not self.config_file_path.exists():
            logger.warning(
                f"Configuration file not found: {self.config_file_path}, using built-in defaults"
            )
            self.config_data = {}
            return

        try:
            with open(self.config_file_path, "r", encoding="utf-8") as f:
                self.config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error(f"YAML parsing error in {self.config_file_path}: {str(e)}")
            raise ConfigurationError(
                f"Invalid YAML in {self.config_file_path}: {str(e)}"
            ) from e

        if not isinstance(self.config_data, dict):
            raise ConfigurationError(
                f"Configuration root in {self.config_file_path} must be a mapping"
            )

        logger.info(f"Successfully loaded configuration from {self.config_file_path}")

    def reload_config(self) -> None:
        """Reload configuration from file."""
        self._load_config()

    def get_config_value(self, key_path: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Args:
            key_path: Dot-separated path to the configuration value (e.g., 'store.backend')
            default: Default value if key not found

        Returns:
            Any: Configuration value or default
        """
        value: Any = self.config_data
        for key in key_path.split("."):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def get_job_defaults(self) -> JobDefaults:
        """
        Get the default recalculation request parameters.

        Returns:
            JobDefaults: Validated defaults

        Raises:
            ConfigurationError: If the ``job`` section is malformed
        """
        job_config = self.config_data.get("job") or {}
        try:
            return JobDefaults(**job_config)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid 'job' configuration: {e}") from e

    def get_store_config(self) -> Dict[str, Any]:
        return self.config_data.get("store") or {}

    def get_backend(self) -> str:
        return str(self.get_store_config().get("backend", "json")).lower()

    def get_json_store_path(self) -> str:
        return self.get_config_value("store.json.path", "data/memberships.json")

    def get_supabase_config(self) -> Dict[str, Any]:
        return self.get_config_value("store.supabase", {}) or {}

    def get_status_catalog_config(self) -> Optional[List[Dict[str, Any]]]:
        """Status rows overriding the stock catalog for the json backend, if any."""
        return self.config_data.get("status_catalog") or None

    def get_logging_config(self) -> Dict[str, Any]:
        return self.config_data.get("logging") or {}

    def get_run_summary_config(self) -> Dict[str, Any]:
        defaults = {"enabled": False, "base_dir": "var/logs/runs"}
        return {**defaults, **(self.config_data.get("run_summary") or {})}

    def validate_configuration(self) -> Dict[str, Any]:
        """
        Validate the configuration and return a report.

        Returns:
            Dict[str, Any]: Validation report
        """
        report: Dict[str, Any] = {"valid": True, "issues": [], "warnings": [], "statistics": {}}

        if not self.config_data:
            report["warnings"].append("Configuration is empty; built-in defaults apply")

        try:
            defaults = self.get_job_defaults()
            report["statistics"]["default_excluded_statuses"] = len(defaults.excluded_status_names)
        except ConfigurationError as e:
            report["issues"].append(str(e))

        backend = self.get_backend()
        if backend not in ("json", "supabase"):
            report["issues"].append(f"Unknown store backend: {backend}")
        elif backend == "json":
            json_path = Path(self.get_json_store_path())
            if not json_path.exists():
                report["warnings"].append(f"Membership snapshot not found: {json_path}")

        catalog_rows = self.get_status_catalog_config()
        if catalog_rows is not None:
            if not isinstance(catalog_rows, list):
                report["issues"].append("'status_catalog' must be a list of status rows")
            else:
                report["statistics"]["configured_statuses"] = len(catalog_rows)

        if report["issues"]:
            report["valid"] = False

        logger.info(
            f"Configuration validation complete: {len(report['issues'])} issues, "
            f"{len(report['warnings'])} warnings"
        )
        return report


def create_config_loader(config_file_path: Optional[str] = None) -> ConfigLoader:
    """
    Factory function to create a ConfigLoader instance.

    Args:
        config_file_path: Optional custom path to configuration file

    Returns:
        ConfigLoader: Configured loader instance
    """
    if config_file_path is None:
        config_file_path = DEFAULT_CONFIG_PATH

    return ConfigLoader(config_file_path)
