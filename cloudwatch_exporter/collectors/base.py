"""Collector interface and the shared collection support used by every service."""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
import asyncio
import logging
import re
import time
from functools import wraps

from ..client.errors import CollectionError
from ..config.models import ServiceConfig
from ..utils.metrics import CollectorResult, DataPoint, GAUGE, MetricDescriptor, Sample


def sanitize_metric_name(metric_name: str) -> str:
    """
    Convert a CloudWatch metric name to a Prometheus-safe snake_case name.

    CPUUtilization -> cpu_utilization, HTTPCode_ELB_5XX_Count ->
    http_code_elb_5xx_count, EBSIOBalance% -> ebsio_balance_percent.
    """
    name = metric_name.replace('%', '_percent')
    name = re.sub(r'(.)([A-Z][a-z]+)', r'\1_\2', name)
    name = re.sub(r'([a-z])([A-Z])', r'\1_\2', name)
    name = re.sub(r'[^a-zA-Z0-9_]', '_', name)
    return re.sub(r'_+', '_', name).strip('_').lower()


def build_fq_name(*parts: str) -> str:
    """Join non-empty name parts with underscores."""
    return "_".join(part for part in parts if part)


class CollectionSupport:
    """
    Shared machinery for service collectors.

    Holds the client, the service configuration and the metric descriptors,
    and runs per-metric fetches with bounded parallelism. Service collectors
    own one instance and delegate to it.
    """

    def __init__(
        self,
        client,
        config: ServiceConfig,
        service_name: str,
        label_names: Sequence[str],
        metric_prefix: str = "aws",
        global_labels: Optional[Dict[str, str]] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize collection support.

        Args:
            client: CloudWatchClient (or anything with the same fetch methods)
            config: Service configuration, read-only during a scrape
            service_name: Short service name used in metric names (e.g. "rds")
            label_names: Per-sample label names, in order
            metric_prefix: Prefix for every metric name
            global_labels: Constant labels added to every sample
            logger: Logger instance
        """
        self.client = client
        self.config = config
        self.service_name = service_name
        self.metric_prefix = metric_prefix
        self.global_labels: Tuple[Tuple[str, str], ...] = tuple(sorted((global_labels or {}).items()))
        self.label_names = tuple(label_names)
        self.logger = logger or logging.getLogger(__name__)

        self.descriptors: Dict[str, MetricDescriptor] = {
            metric_name: MetricDescriptor(
                name=build_fq_name(metric_prefix, service_name, sanitize_metric_name(metric_name)),
                help=f"{metric_name} metric from CloudWatch namespace {config.namespace}",
                label_names=self.label_names,
                kind=GAUGE,
                const_labels=self.global_labels,
            )
            for metric_name in config.metrics
        }

    def describe(self) -> List[MetricDescriptor]:
        return list(self.descriptors.values())

    async def fetch_datapoints(self, metric_name: str) -> List[DataPoint]:
        """
        Fetch and decode one metric.

        An empty result is valid and returns an empty list.

        Raises:
            RateLimitError, RemoteCallError, DecodeError: Propagated from the
                client or from decoding
        """
        response = await self.client.fetch_metric(self.config.namespace, metric_name)
        return [DataPoint.from_dict(raw) for raw in response.datapoints]

    def build_sample(self, metric_name: str, point: DataPoint, label_values: Sequence[str]) -> Sample:
        """
        Build a sample from a datapoint.

        Raises:
            KeyError: If metric_name has no descriptor
            ValueError: If the number of label values doesn't match the descriptor
        """
        descriptor = self.descriptors[metric_name]
        if len(label_values) != len(descriptor.label_names):
            raise ValueError(
                f"{descriptor.name}: expected {len(descriptor.label_names)} label values, "
                f"got {len(label_values)}"
            )

        labels = tuple(zip(descriptor.label_names, (str(v) for v in label_values)))
        return Sample(
            name=descriptor.name,
            value=point.value,
            labels=labels + self.global_labels,
            instance_id=point.instance_id,
            timestamp=point.timestamp,
            kind=descriptor.kind,
            help=descriptor.help,
        )

    async def collect_metrics(
        self,
        collect_one: Callable[[str], Awaitable[List[Sample]]]
    ) -> CollectorResult:
        """
        Run collect_one for every configured metric, at most max_concurrency at a time.

        A failing metric doesn't stop the others. Failures are logged and
        reported as a single CollectionError next to the samples that
        succeeded.

        Args:
            collect_one: Coroutine function producing the samples of one metric

        Returns:
            CollectorResult: Samples plus an aggregate error if any metric failed
        """
        start = time.monotonic()
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def run(metric_name: str) -> List[Sample]:
            async with semaphore:
                return await collect_one(metric_name)

        metric_names = list(self.config.metrics)
        results = await asyncio.gather(
            *(run(metric_name) for metric_name in metric_names),
            return_exceptions=True
        )

        samples: List[Sample] = []
        failures: Dict[str, str] = {}
        for metric_name, result in zip(metric_names, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                failures[metric_name] = str(result) or type(result).__name__
                self.logger.error(
                    f"Error collecting {self.service_name} metric {metric_name}: {result}",
                    extra={"service": self.service_name, "metric": metric_name}
                )
                continue
            samples.extend(result)

        error = CollectionError(self.service_name, failures) if failures else None
        return CollectorResult(
            collector_name=self.service_name,
            samples=samples,
            error=error,
            duration=time.monotonic() - start
        )


class ServiceCollector(ABC):
    """Abstract base class for all service collectors."""

    def __init__(self, support: CollectionSupport):
        """
        Args:
            support: Collection support bound to this service
        """
        self.support = support
        self.logger = support.logger.getChild(self.__class__.__name__)

    @property
    def name(self) -> str:
        return self.support.service_name

    @property
    def enabled(self) -> bool:
        return self.support.config.enabled

    def describe(self) -> List[MetricDescriptor]:
        """Descriptors of every series this collector can produce."""
        return self.support.describe()

    @abstractmethod
    async def collect(self) -> CollectorResult:
        """
        Collect every configured metric.

        Returns:
            CollectorResult: Samples that succeeded and an aggregate error, if any

        Note:
            Implementations should use @safe_collect so unexpected exceptions
            become a failed CollectorResult instead of propagating.
        """
        pass


def safe_collect(func):
    """
    Decorator turning unexpected collector exceptions into a failed CollectorResult.

    Cancellation is not caught.
    """
    @wraps(func)
    async def wrapper(self, *args, **kwargs):
        start = time.monotonic()
        try:
            return await func(self, *args, **kwargs)
        except Exception as e:
            self.logger.error(f"Collection failed: {e}", exc_info=True)
            return CollectorResult(
                collector_name=self.name,
                samples=[],
                error=e,
                duration=time.monotonic() - start
            )
    return wrapper
