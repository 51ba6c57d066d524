"""Environment settings read before a config file is loaded."""

import os
from typing import Optional


ENV_PREFIX = "CLOUDWATCH_EXPORTER_"


class Settings:
    """
    Process-level settings from environment variables.

    Only what the CLI needs before the configuration exists: where the
    config file is and how to log while loading it.
    """

    @staticmethod
    def get(key: str, default: Optional[str] = None, required: bool = False) -> str:
        """
        Get an environment variable, ignoring surrounding whitespace.

        Raises:
            ValueError: If required and unset or blank
        """
        value = (os.getenv(key) or "").strip() or (default or "")
        if required and not value:
            raise ValueError(f"Required environment variable not set: {key}")
        return value

    @staticmethod
    def config_path() -> Optional[str]:
        """Config file from CLOUDWATCH_EXPORTER_CONFIG, if set."""
        return Settings.get(ENV_PREFIX + "CONFIG") or None

    @staticmethod
    def log_level() -> str:
        """Bootstrap log level: CLOUDWATCH_EXPORTER_LOG_LEVEL, then LOG_LEVEL, then INFO."""
        return (Settings.get(ENV_PREFIX + "LOG_LEVEL") or Settings.get("LOG_LEVEL", "INFO")).upper()

    @staticmethod
    def log_format() -> str:
        return Settings.get(ENV_PREFIX + "LOG_FORMAT", "json").lower()
