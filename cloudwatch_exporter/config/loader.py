"""Configuration loader with YAML parsing and environment variable substitution."""

import yaml
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional
from .models import ExporterConfig


ENV_PREFIX = "CLOUDWATCH_EXPORTER_"

# Environment override -> (section, key)
ENV_OVERRIDES = {
    "LOG_LEVEL": ("server", "log_level"),
    "LOG_FORMAT": ("server", "log_format"),
    "PORT": ("server", "port"),
    "LISTEN_ADDRESS": ("server", "listen_address"),
    "REGION": ("aws", "region"),
}


class ConfigLoader:
    """Load and validate exporter configuration."""

    @staticmethod
    def load(config_path: Optional[str] = None) -> ExporterConfig:
        """
        Load configuration from an optional YAML file plus environment overrides.

        Args:
            config_path: Path to YAML configuration file; defaults are used if None

        Returns:
            ExporterConfig: Validated configuration object

        Raises:
            FileNotFoundError: If config_path is given but doesn't exist
            yaml.YAMLError: If YAML parsing fails
            pydantic.ValidationError: If configuration validation fails
        """
        raw_config: Dict[str, Any] = {}
        if config_path:
            raw_config = ConfigLoader._read_yaml(config_path)

        raw_config = ConfigLoader._apply_env_overrides(raw_config)
        return ExporterConfig(**raw_config)

    @staticmethod
    def load_from_file(config_path: str) -> ExporterConfig:
        """
        Load configuration from YAML file with environment variable substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            ExporterConfig: Validated configuration object

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML parsing fails
            pydantic.ValidationError: If configuration validation fails
        """
        return ExporterConfig(**ConfigLoader._read_yaml(config_path))

    @staticmethod
    def _read_yaml(config_path: str) -> Dict[str, Any]:
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_file, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        if not isinstance(raw_config, dict):
            raise ValueError(f"Configuration root must be a mapping: {config_path}")

        return ConfigLoader._substitute_env_vars(raw_config)

    @staticmethod
    def _apply_env_overrides(raw_config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply CLOUDWATCH_EXPORTER_* variables on top of the file values."""
        for suffix, (section, key) in ENV_OVERRIDES.items():
            value = os.getenv(ENV_PREFIX + suffix)
            if value:
                raw_config.setdefault(section, {})[key] = value
        return raw_config

    @staticmethod
    def _substitute_env_vars(obj: Any) -> Any:
        """
        Recursively substitute ${ENV_VAR} placeholders with environment values.

        Args:
            obj: Object to process (str, dict, list, or primitive)

        Returns:
            Object with environment variables substituted
        """
        if isinstance(obj, str):
            pattern = r'\$\{(\w+)\}'
            return re.sub(pattern, lambda m: os.getenv(m.group(1), ''), obj)

        elif isinstance(obj, dict):
            return {k: ConfigLoader._substitute_env_vars(v) for k, v in obj.items()}

        elif isinstance(obj, list):
            return [ConfigLoader._substitute_env_vars(item) for item in obj]

        return obj
