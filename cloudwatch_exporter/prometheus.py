"""Bridge from scrape outcomes to the Prometheus text exposition format."""

import logging
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Sequence

from prometheus_client import (
    CollectorRegistry,
    GCCollector,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric

from .utils.metrics import COUNTER, MetricDescriptor, ScrapeOutcome


logger = logging.getLogger(__name__)


def _family(name: str, help_text: str, kind: str, label_names: Sequence[str]) -> Metric:
    if kind == COUNTER:
        return CounterMetricFamily(name, help_text, labels=list(label_names))
    return GaugeMetricFamily(name, help_text, labels=list(label_names))


class SnapshotCollector:
    """
    prometheus_client custom collector over one finished scrape.

    Samples are grouped into one metric family per name. Registering it on a
    private registry keeps exporter series away from the process-wide
    default registry.
    """

    def __init__(
        self,
        outcome: ScrapeOutcome,
        descriptors: Optional[Iterable[MetricDescriptor]] = None
    ):
        self.outcome = outcome
        self.descriptors: List[MetricDescriptor] = list(descriptors or [])

    def describe(self) -> List[Metric]:
        """Empty families for every known descriptor (used at registration)."""
        families: Dict[str, Metric] = OrderedDict()
        for descriptor in self.descriptors:
            label_names = list(descriptor.label_names) + [k for k, _ in descriptor.const_labels]
            families.setdefault(
                descriptor.name,
                _family(descriptor.name, descriptor.help, descriptor.kind, label_names)
            )
        for sample in self.outcome.samples:
            families.setdefault(
                sample.name, _family(sample.name, sample.help, sample.kind, sample.label_names)
            )
        return list(families.values())

    def collect(self) -> List[Metric]:
        families: Dict[str, Metric] = OrderedDict()
        label_sets: Dict[str, tuple] = {}
        seen = set()

        for sample in self.outcome.samples:
            series = (sample.name, sample.labels)
            if series in seen:
                logger.warning(
                    f"Dropping duplicate sample of {sample.name}",
                    extra={"labels": dict(sample.labels)}
                )
                continue
            seen.add(series)

            family = families.get(sample.name)
            if family is None:
                family = _family(sample.name, sample.help, sample.kind, sample.label_names)
                families[sample.name] = family
                label_sets[sample.name] = sample.label_names
            elif label_sets[sample.name] != sample.label_names:
                logger.warning(
                    f"Dropping sample of {sample.name} with inconsistent labels",
                    extra={"labels": list(sample.label_names)}
                )
                continue
            family.add_metric(list(sample.label_values), sample.value)

        return list(families.values())


def render(
    outcome: ScrapeOutcome,
    descriptors: Optional[Iterable[MetricDescriptor]] = None,
    include_runtime: bool = False,
    include_process: bool = False
) -> bytes:
    """
    Render a scrape outcome in the Prometheus text format.

    Args:
        outcome: Finished scrape
        descriptors: Optional descriptors, registered so that empty series
            still get their HELP/TYPE lines checked for name clashes
        include_runtime: Add the interpreter's python_info and python_gc_* series
        include_process: Add the process_* series of the exporter process

    Returns:
        bytes: Exposition body, served with CONTENT_TYPE_LATEST
    """
    registry = CollectorRegistry(auto_describe=False)
    registry.register(SnapshotCollector(outcome, descriptors))
    if include_runtime:
        PlatformCollector(registry=registry)
        GCCollector(registry=registry)
    if include_process:
        ProcessCollector(registry=registry)
    return generate_latest(registry)
