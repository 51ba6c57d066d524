"""ElastiCache (Redis) metrics collector."""

import logging
from typing import Dict, List, Optional

from ..config.models import ServiceConfig
from ..utils.metrics import CollectorResult, Sample
from .base import CollectionSupport, ServiceCollector, safe_collect


class ElastiCacheCollector(ServiceCollector):
    """Collector for ElastiCache cluster metrics, labeled by cluster ID only."""

    SERVICE_NAME = "elasticache"

    def __init__(
        self,
        client,
        config: ServiceConfig,
        metric_prefix: str = "aws",
        global_labels: Optional[Dict[str, str]] = None,
        logger: Optional[logging.Logger] = None
    ):
        super().__init__(CollectionSupport(
            client,
            config,
            self.SERVICE_NAME,
            ["instance_id"],
            metric_prefix=metric_prefix,
            global_labels=global_labels,
            logger=logger or logging.getLogger(__name__),
        ))

    @safe_collect
    async def collect(self) -> CollectorResult:
        if not self.enabled:
            return CollectorResult(collector_name=self.name)

        self.logger.debug("Starting ElastiCache metrics collection")
        return await self.support.collect_metrics(self.collect_metric)

    async def collect_metric(self, metric_name: str) -> List[Sample]:
        points = await self.support.fetch_datapoints(metric_name)
        return [
            self.support.build_sample(metric_name, point, [point.instance_id])
            for point in points
        ]
