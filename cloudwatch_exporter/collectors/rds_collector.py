"""RDS metrics collector."""

import logging
from typing import Dict, List, Optional

from ..config.models import ServiceConfig
from ..utils.metrics import CollectorResult, Sample
from .base import CollectionSupport, ServiceCollector, safe_collect


class RDSCollector(ServiceCollector):
    """
    Collector for RDS instance metrics.

    Datapoints are keyed by DBInstanceIdentifier (or DBClusterIdentifier for
    cluster-level series); both end up in the instance_id label.
    """

    SERVICE_NAME = "rds"

    def __init__(
        self,
        client,
        config: ServiceConfig,
        metric_prefix: str = "aws",
        global_labels: Optional[Dict[str, str]] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize RDS collector.

        Args:
            client: CloudWatchClient
            config: RDS service configuration
            metric_prefix: Prefix for every metric name
            global_labels: Constant labels added to every sample
            logger: Logger instance
        """
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
        """
        Collect every configured RDS metric concurrently.

        Returns:
            CollectorResult: RDS samples and an aggregate error, if any
        """
        if not self.enabled:
            return CollectorResult(collector_name=self.name)

        self.logger.debug("Starting RDS metrics collection")
        result = await self.support.collect_metrics(self.collect_metric)
        if result.error is not None:
            self.logger.warning(
                f"RDS collection finished with errors: {result.error}",
                extra={"samples": len(result.samples)}
            )
        return result

    async def collect_metric(self, metric_name: str) -> List[Sample]:
        points = await self.support.fetch_datapoints(metric_name)
        samples = []
        for point in points:
            if not point.instance_id:
                # Engine-wide aggregates (e.g. by DatabaseClass) have no instance
                continue
            samples.append(self.support.build_sample(metric_name, point, [point.instance_id]))
        return samples
