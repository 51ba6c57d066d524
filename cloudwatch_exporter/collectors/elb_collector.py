"""Application Load Balancer metrics collector with tag and region enrichment."""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from ..config.models import ServiceConfig
from ..utils.metrics import CollectorResult, DataPoint, Sample
from .base import CollectionSupport, ServiceCollector, safe_collect


RESOURCE_TYPE = "elasticloadbalancing:loadbalancer"

# Only these tags are surfaced as labels
TAG_KEYS = ("Team", "Group", "Name")


def tag_value(tags: Optional[Dict[str, str]], key: str) -> str:
    """Look a tag up under its capitalised key, then its lower-case key."""
    if not tags:
        return ""
    for candidate in (key, key.lower()):
        if candidate in tags:
            return tags[candidate]
    return ""


class LoadBalancerCollector(ServiceCollector):
    """
    Collector for load balancer metrics.

    Each sample carries the load balancer identity, protocol, port and
    virtual address, plus the Team/Group/Name tags and (optionally) the
    region the load balancer was found in. Tag lookup is best-effort: if it
    fails, samples are still published with empty enrichment labels.
    """

    SERVICE_NAME = "elb"

    def __init__(
        self,
        client,
        config: ServiceConfig,
        metric_prefix: str = "aws",
        global_labels: Optional[Dict[str, str]] = None,
        logger: Optional[logging.Logger] = None,
        include_region: bool = True
    ):
        """
        Initialize load balancer collector.

        Args:
            client: CloudWatchClient
            config: ELB service configuration
            metric_prefix: Prefix for every metric name
            global_labels: Constant labels added to every sample
            logger: Logger instance
            include_region: Add a per-instance region label
        """
        self.include_region = include_region
        super().__init__(CollectionSupport(
            client,
            config,
            self.SERVICE_NAME,
            self.label_names(include_region),
            metric_prefix=metric_prefix,
            global_labels=global_labels,
            logger=logger or logging.getLogger(__name__),
        ))

    @staticmethod
    def label_names(include_region: bool = True) -> List[str]:
        labels = ["instance_id", "protocol", "port", "vip"]
        if include_region:
            labels.append("region")
        labels.extend(key.lower() for key in TAG_KEYS)
        return labels

    @safe_collect
    async def collect(self) -> CollectorResult:
        """
        Collect every configured load balancer metric.

        Returns:
            CollectorResult: Enriched samples and an aggregate error, if any
        """
        if not self.enabled:
            return CollectorResult(collector_name=self.name)

        self.logger.debug("Starting ELB metrics collection")
        return await self.support.collect_metrics(self.collect_metric)

    async def collect_metric(self, metric_name: str) -> List[Sample]:
        """Fetch one metric and join tag/region data onto its datapoints."""
        points = await self.support.fetch_datapoints(metric_name)
        if not points:
            return []

        instance_ids = sorted({point.instance_id for point in points if point.instance_id})
        tags_by_id, region_by_id = await self._lookup_tags(instance_ids)

        return [
            self.support.build_sample(
                metric_name,
                point,
                self._label_values(point, tags_by_id.get(point.instance_id), region_by_id.get(point.instance_id, ""))
            )
            for point in points
        ]

    async def _lookup_tags(
        self,
        instance_ids: Sequence[str]
    ) -> Tuple[Dict[str, Dict[str, str]], Dict[str, str]]:
        """Tags and regions for the given IDs; empty maps if the lookup fails."""
        if not instance_ids:
            return {}, {}

        try:
            return await self.support.client.fetch_tags_with_region(instance_ids, RESOURCE_TYPE)
        except Exception as e:
            self.logger.warning(
                f"Failed to get load balancer tags, continuing without tags: {e}",
                extra={"instances": len(instance_ids)}
            )
            return {}, {}

    def _label_values(self, point: DataPoint, tags: Optional[Dict[str, str]], region: str) -> List[str]:
        values = [point.instance_id, point.protocol, point.port, point.vip]
        if self.include_region:
            values.append(region or self.support.client.region)
        values.extend(tag_value(tags, key) for key in TAG_KEYS)
        return values
