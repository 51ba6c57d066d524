"""Scrape orchestration across all enabled service collectors."""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Sequence

from .client.api_client import CloudWatchClient
from .collectors.base import ServiceCollector, build_fq_name
from .collectors.elasticache_collector import ElastiCacheCollector
from .collectors.elb_collector import LoadBalancerCollector
from .collectors.rds_collector import RDSCollector
from .config.models import ExporterConfig
from .services.retry_handler import RetryHandler, is_transient
from .utils.metrics import COUNTER, GAUGE, CollectorResult, MetricDescriptor, Sample, ScrapeOutcome
from .utils.status import HealthStatus


# Grace period for cancelled collectors to unwind after the deadline
CANCEL_GRACE_SECONDS = 1.0


class Exporter:
    """
    Runs scrapes across every enabled collector.

    One task per collector, bounded by a scrape-wide deadline. A failing or
    hung collector only adds to the error count; the scrape always completes
    and always reports the internal health samples. The internal counters
    live on the instance.
    """

    def __init__(
        self,
        config: ExporterConfig,
        client: Optional[CloudWatchClient] = None,
        logger: Optional[logging.Logger] = None,
        collectors: Optional[Sequence[ServiceCollector]] = None
    ):
        """
        Initialize exporter.

        Args:
            config: Exporter configuration
            client: CloudWatch client (built from config.aws if None)
            logger: Optional logger instance
            collectors: Collectors to run (built from config.services if None)
        """
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.client = client or CloudWatchClient(config.aws, self.logger)

        if collectors is None:
            collectors = self._init_collectors()
        self._collectors: List[ServiceCollector] = list(collectors)

        # Internal scrape metrics
        self.total_scrapes = 0
        self.scrape_errors_total = 0
        self.up = False
        self.last_scrape_error = False
        self.last_scrape_duration = 0.0
        self.last_scrape_timestamp = 0.0

        self._descriptors = self._internal_descriptors()

        self.logger.info(
            f"Initialized {len(self._collectors)} collector(s)",
            extra={"collectors": [c.name for c in self._collectors]}
        )

    def _init_collectors(self) -> List[ServiceCollector]:
        """Build a collector for every enabled service."""
        services = self.config.services
        prom = self.config.prometheus
        collectors: List[ServiceCollector] = []

        if services.elb.enabled:
            collectors.append(LoadBalancerCollector(
                self.client,
                services.elb,
                metric_prefix=prom.metric_prefix,
                global_labels=prom.global_labels,
                logger=self.logger,
                include_region=prom.include_region_label
            ))

        if services.elasticache.enabled:
            collectors.append(ElastiCacheCollector(
                self.client,
                services.elasticache,
                metric_prefix=prom.metric_prefix,
                global_labels=prom.global_labels,
                logger=self.logger
            ))

        if services.rds.enabled:
            collectors.append(RDSCollector(
                self.client,
                services.rds,
                metric_prefix=prom.metric_prefix,
                global_labels=prom.global_labels,
                logger=self.logger
            ))

        return collectors

    @property
    def collectors(self) -> List[ServiceCollector]:
        return list(self._collectors)

    def _internal_descriptors(self) -> Dict[str, MetricDescriptor]:
        prefix = self.config.prometheus.metric_prefix
        const_labels = tuple(sorted(self.config.prometheus.global_labels.items()))

        def descriptor(name, help_text, kind=GAUGE, label_names=()):
            return MetricDescriptor(
                name=build_fq_name(prefix, name),
                help=help_text,
                label_names=tuple(label_names),
                kind=kind,
                const_labels=const_labels,
            )

        return {
            "up": descriptor("up", "Was the last scrape of CloudWatch successful."),
            "scrapes_total": descriptor(
                "scrapes_total", "Total number of times CloudWatch was scraped for metrics.", COUNTER
            ),
            "scrape_errors_total": descriptor(
                "scrape_errors_total", "Total number of collector errors while scraping CloudWatch.", COUNTER
            ),
            "scrape_duration_seconds": descriptor(
                "scrape_duration_seconds", "Time spent on the last scrape of CloudWatch."
            ),
            "last_scrape_timestamp_seconds": descriptor(
                "last_scrape_timestamp_seconds", "Unix timestamp of the last scrape of CloudWatch."
            ),
            "last_scrape_error": descriptor(
                "last_scrape_error",
                "Whether the last scrape of CloudWatch resulted in an error (1 for error, 0 for success)."
            ),
            "collector_duration_seconds": descriptor(
                "collector_duration_seconds", "Time spent by each collector in the last scrape.",
                label_names=("collector",)
            ),
            "collector_success": descriptor(
                "collector_success", "Whether each collector succeeded in the last scrape.",
                label_names=("collector",)
            ),
        }

    def describe(self) -> List[MetricDescriptor]:
        """Descriptors for the internal metrics and every collector's series."""
        descriptors = list(self._descriptors.values())
        for collector in self._collectors:
            descriptors.extend(collector.describe())
        return descriptors

    async def scrape(self) -> ScrapeOutcome:
        """
        Run one scrape.

        Probes CloudWatch (if enabled), runs every enabled collector
        concurrently under the scrape deadline and merges their results.
        Never raises for collector or probe failures.

        Returns:
            ScrapeOutcome: Samples from every collector plus internal samples
        """
        start = time.monotonic()
        self.total_scrapes += 1

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.scrape.timeout_seconds

        probe_ok = True
        if self.config.scrape.health_check:
            probe_ok = await self._probe_health(deadline - loop.time())
        self.up = probe_ok

        results = await self._run_collectors(max(0.0, deadline - loop.time()))

        samples: List[Sample] = []
        collector_errors: Dict[str, str] = {}
        for result in results:
            samples.extend(result.samples)
            if result.error is not None:
                collector_errors[result.collector_name] = str(result.error) or type(result.error).__name__
                self.logger.error(
                    f"Collector {result.collector_name} failed: {result.error}",
                    extra={"collector": result.collector_name, "samples": len(result.samples)}
                )

        error_count = len(collector_errors)
        self.scrape_errors_total += error_count
        self.last_scrape_error = error_count > 0
        self.last_scrape_duration = time.monotonic() - start
        self.last_scrape_timestamp = time.time()

        samples.extend(self._internal_samples(results))

        outcome = ScrapeOutcome(
            samples=samples,
            collector_errors=collector_errors,
            error_count=error_count,
            duration=self.last_scrape_duration,
            health_status=HealthStatus.from_scrape(probe_ok, error_count),
            up=probe_ok,
            timestamp=self.last_scrape_timestamp
        )

        self.logger.info(
            f"Scrape complete: {outcome.total_samples} samples, {error_count} error(s) "
            f"in {outcome.duration:.2f}s",
            extra={"health_status": outcome.health_status.value}
        )
        return outcome

    async def _probe_health(self, timeout: float) -> bool:
        """Check CloudWatch reachability, retrying transient network errors."""
        try:
            await asyncio.wait_for(
                RetryHandler.with_retry(
                    self.client.health,
                    max_attempts=self.config.scrape.health_check_attempts,
                    base_delay=0.5,
                    max_delay=5.0,
                    retry_if=is_transient,
                    logger=self.logger
                ),
                timeout=max(0.0, timeout)
            )
        except asyncio.TimeoutError:
            self.logger.error("CloudWatch health check timed out")
            return False
        except Exception as e:
            self.logger.error(f"CloudWatch health check failed: {e}", extra={"error": str(e)})
            return False
        return True

    async def _run_collectors(self, timeout: float) -> List[CollectorResult]:
        """
        Run every enabled collector as its own task and wait up to timeout.

        Collectors still running at the deadline are cancelled and reported
        as failed.
        """
        tasks = {
            asyncio.create_task(collector.collect(), name=f"collect-{collector.name}"): collector
            for collector in self._collectors
            if collector.enabled
        }
        if not tasks:
            return []

        try:
            _, pending = await asyncio.wait(tasks, timeout=timeout)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending, timeout=CANCEL_GRACE_SECONDS)

        results = []
        for task, collector in tasks.items():
            if task in pending or task.cancelled():
                results.append(CollectorResult(
                    collector_name=collector.name,
                    error=asyncio.TimeoutError(
                        f"collector {collector.name} exceeded the scrape deadline of {timeout:.1f}s"
                    ),
                    duration=timeout
                ))
            elif task.exception() is not None:
                results.append(CollectorResult(collector_name=collector.name, error=task.exception()))
            else:
                results.append(task.result())
        return results

    def _internal_samples(self, results: List[CollectorResult]) -> List[Sample]:
        const_labels = tuple(sorted(self.config.prometheus.global_labels.items()))
        now = self.last_scrape_timestamp

        def sample(key: str, value: float, labels=()):
            descriptor = self._descriptors[key]
            return Sample(
                name=descriptor.name,
                value=float(value),
                labels=tuple(labels) + const_labels,
                timestamp=now,
                kind=descriptor.kind,
                help=descriptor.help,
            )

        samples = [
            sample("up", 1 if self.up else 0),
            sample("scrapes_total", self.total_scrapes),
            sample("scrape_errors_total", self.scrape_errors_total),
            sample("scrape_duration_seconds", self.last_scrape_duration),
            sample("last_scrape_timestamp_seconds", self.last_scrape_timestamp),
            sample("last_scrape_error", 1 if self.last_scrape_error else 0),
        ]
        for result in results:
            labels = (("collector", result.collector_name),)
            samples.append(sample("collector_duration_seconds", result.duration, labels))
            samples.append(sample("collector_success", 1 if result.ok else 0, labels))
        return samples

    async def close(self) -> None:
        """Release the client (stops the rate limiter)."""
        await self.client.close()
