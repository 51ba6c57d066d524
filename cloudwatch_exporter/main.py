"""Command-line entry point for the CloudWatch exporter."""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

import yaml
from pydantic import ValidationError

from .collectors.base import build_fq_name, sanitize_metric_name
from .collectors.catalog import CATALOGS, DESCRIPTIONS
from .config.loader import ConfigLoader
from .config.models import ExporterConfig, ServerConfig
from .config.settings import Settings
from .exporter import Exporter
from .server import ExporterServer
from .services.maintenance import CacheMaintenance
from .utils.logger import setup_logger
from .version import __version__


# Errors reported as an invalid configuration instead of a traceback
CONFIG_ERRORS = (FileNotFoundError, ValueError, ValidationError, yaml.YAMLError)


class ExporterApp:
    """
    Long-running exporter process.

    Serves HTTP until SIGINT/SIGTERM, sweeps caches in the background and
    shuts everything down in reverse order.
    """

    def __init__(self, config: ExporterConfig, logger: Optional[logging.Logger] = None):
        """
        Initialize exporter application.

        Args:
            config: Validated exporter configuration
            logger: Optional logger instance
        """
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.exporter: Optional[Exporter] = None
        self.server: Optional[ExporterServer] = None
        self.maintenance: Optional[CacheMaintenance] = None
        self._stop_event: Optional[asyncio.Event] = None

    def request_stop(self, signum: Optional[int] = None) -> None:
        """Ask the running application to shut down."""
        if signum is not None:
            self.logger.info(f"Received {signal.Signals(signum).name}, initiating graceful shutdown...")
        if self._stop_event is not None:
            self._stop_event.set()

    async def run(self) -> None:
        """Serve until a stop is requested."""
        loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()

        handled = []
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self.request_stop, signum)
                handled.append(signum)
            except (NotImplementedError, RuntimeError):
                # No signal support (e.g. not on the main thread)
                pass

        self.exporter = Exporter(self.config, logger=self.logger)
        self.maintenance = CacheMaintenance(
            self.exporter.client,
            interval_seconds=self.config.scrape.cache_sweep_interval_seconds,
            logger=self.logger
        )
        self.server = ExporterServer(self.exporter, self.config.server, self.config.prometheus)

        try:
            await self.server.start()
            self.maintenance.start()
            await self._stop_event.wait()
        finally:
            self.maintenance.stop()
            await self.server.stop()
            await self.exporter.close()
            for signum in handled:
                loop.remove_signal_handler(signum)
            self.logger.info("Shutdown completed")


def _apply_cli_overrides(config: ExporterConfig, args: argparse.Namespace) -> ExporterConfig:
    """Command-line flags win over file and environment values."""
    overrides = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_format:
        overrides["log_format"] = args.log_format
    if not overrides:
        return config

    server = ServerConfig(**{**config.server.model_dump(), **overrides})
    return config.model_copy(update={"server": server})


def load_config(args: argparse.Namespace) -> ExporterConfig:
    """
    Load configuration for the CLI.

    Raises:
        FileNotFoundError: If --config names a missing file
        ValidationError: If the configuration is invalid
    """
    return _apply_cli_overrides(ConfigLoader.load(args.config), args)


def cmd_run(args: argparse.Namespace) -> int:
    bootstrap = setup_logger(level=Settings.log_level(), fmt=args.log_format or Settings.log_format())
    try:
        config = load_config(args)
    except CONFIG_ERRORS as e:
        bootstrap.error(f"Failed to load configuration: {e}")
        return 1

    logger = setup_logger(level=config.server.log_level, fmt=config.server.log_format)
    logger.info(
        "Starting cloudwatch-exporter",
        extra={
            "version": __version__,
            "region": config.aws.region,
            "services": list(config.services.enabled_services()),
        }
    )

    app = ExporterApp(config, logger)
    try:
        asyncio.run(app.run())
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except Exception as e:
        logger.error(f"Exporter failed: {e}", exc_info=True)
        return 1
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    try:
        config = load_config(args)
    except CONFIG_ERRORS as e:
        print(f"Configuration invalid: {e}", file=sys.stderr)
        return 1

    print("Configuration is valid")
    print(f"  Listen:   {config.server.listen_address}:{config.server.port}{config.server.metrics_path}")
    print(f"  Region:   {config.aws.region} (tags: {', '.join(config.aws.regions)})")
    print(f"  Prefix:   {config.prometheus.metric_prefix}")
    enabled = config.services.enabled_services()
    if not enabled:
        print("  Services: none enabled")
    for name, service in enabled.items():
        print(f"  Service:  {name} ({service.namespace}, {len(service.metrics)} metrics)")
    return 0


def cmd_metrics(args: argparse.Namespace) -> int:
    # Exposed names follow the configured prefix when a config is given
    prefix = ExporterConfig().prometheus.metric_prefix
    if args.config:
        try:
            prefix = load_config(args).prometheus.metric_prefix
        except CONFIG_ERRORS as e:
            print(f"Configuration invalid: {e}", file=sys.stderr)
            return 1

    services = [args.service] if args.service else list(CATALOGS)
    for service in services:
        print(f"{service}: {DESCRIPTIONS[service]}")
        for metric_name in CATALOGS[service]:
            exposed = build_fq_name(prefix, service, sanitize_metric_name(metric_name))
            print(f"  {metric_name:<50} {exposed}")
    return 0


def cmd_version(args: argparse.Namespace) -> int:
    print(f"cloudwatch-exporter {__version__}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='cloudwatch-exporter',
        description='Prometheus exporter for AWS CloudWatch metrics (ELB, ElastiCache, RDS)',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve metrics (default command)
  cloudwatch-exporter --config config/config.yaml

  # Check a configuration file
  cloudwatch-exporter validate -c config/config.yaml

  # List the known metrics of one service
  cloudwatch-exporter metrics --service rds
        """
    )

    parser.add_argument(
        '-c', '--config',
        default=Settings.config_path(),
        help='Path to configuration file (default: CLOUDWATCH_EXPORTER_CONFIG env var, else built-in defaults)'
    )
    parser.add_argument(
        '--log-level',
        type=str.lower,
        choices=['debug', 'info', 'warn', 'warning', 'error'],
        help='Override the configured log level'
    )
    parser.add_argument(
        '--log-format',
        type=str.lower,
        choices=['json', 'text'],
        help='Override the configured log format'
    )

    parser.set_defaults(func=cmd_run)

    # Also accepted after the subcommand; only set when given there
    config_option = argparse.ArgumentParser(add_help=False)
    config_option.add_argument(
        '-c', '--config',
        default=argparse.SUPPRESS,
        help='Path to configuration file'
    )

    subparsers = parser.add_subparsers(dest='command')
    subparsers.add_parser(
        'run', parents=[config_option], help='Serve metrics over HTTP (default)'
    ).set_defaults(func=cmd_run)
    subparsers.add_parser(
        'validate', parents=[config_option], help='Validate the configuration and print a summary'
    ).set_defaults(func=cmd_validate)
    metrics_parser = subparsers.add_parser(
        'metrics', parents=[config_option], help='List known CloudWatch metrics per service'
    )
    metrics_parser.add_argument('--service', choices=sorted(CATALOGS), help='Only list one service')
    metrics_parser.set_defaults(func=cmd_metrics)
    subparsers.add_parser('version', help='Print the version').set_defaults(func=cmd_version)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    CLI entry point.

    Returns:
        int: Process exit code
    """
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
