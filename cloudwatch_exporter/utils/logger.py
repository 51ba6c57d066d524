"""Structured JSON logging configuration."""

import logging
import sys
from pythonjsonlogger import jsonlogger


TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
JSON_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

# JSON keys: time, level, msg
JSON_RENAMES = {"asctime": "time", "levelname": "level", "message": "msg"}

# Third-party loggers that are too chatty at DEBUG
QUIET_LOGGERS = ("botocore", "boto3", "urllib3", "apscheduler", "aiohttp.access")


def build_formatter(fmt: str = "json") -> logging.Formatter:
    """
    Formatter for the given log format.

    Args:
        fmt: "json" for JSON lines, "text" for human-readable output

    Returns:
        logging.Formatter: Formatter instance
    """
    if fmt == "text":
        return logging.Formatter(TEXT_FORMAT)
    return jsonlogger.JsonFormatter(JSON_FORMAT, rename_fields=JSON_RENAMES)


def setup_logger(
    name: str = "cloudwatch_exporter",
    level: str = "INFO",
    fmt: str = "json"
) -> logging.Logger:
    """
    Configure the exporter logger.

    Child loggers (cloudwatch_exporter.*) propagate into it; it does not
    propagate to the root logger.

    Args:
        name: Logger name
        level: Log level name, any case (debug, info, warning, error)
        fmt: "json" or "text"

    Returns:
        logging.Logger: Configured logger instance
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)

    # Remove existing handlers to avoid duplicates
    logger.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter(fmt))
    logger.addHandler(handler)
    logger.propagate = False

    for quiet in QUIET_LOGGERS:
        logging.getLogger(quiet).setLevel(max(numeric_level, logging.WARNING))

    return logger
