"""CloudWatch API client with rate limiting, response caching and tag enrichment."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..collectors.catalog import IDENTITY_DIMENSIONS
from ..config.models import AWSConfig
from ..utils.metrics import MetricResponse
from .cache import ResourceTags, ResponseCache, TagCache
from .errors import DecodeError, RemoteCallError
from .rate_limiter import RateLimiter


# GetMetricData accepts at most 500 queries per request
MAX_QUERIES_PER_REQUEST = 500
STATISTICS = ("Average", "Maximum", "Minimum", "Sum")
LOOKBACK = timedelta(minutes=10)
PERIOD_SECONDS = 60

REMOTE_ERRORS = (BotoCoreError, ClientError)


def resource_id_from_arn(arn: str) -> str:
    """
    Extract the identifier CloudWatch uses as a dimension value from an ARN.

    arn:aws:elasticloadbalancing:us-east-1:123:loadbalancer/app/web/50dc6c495c0c9188
    maps to "app/web/50dc6c495c0c9188"; arn:aws:rds:us-east-1:123:db:orders maps
    to "orders".
    """
    parts = arn.split(":", 5)
    if len(parts) < 6:
        return arn
    resource = parts[5]
    if "/" in resource:
        return resource.split("/", 1)[1]
    if ":" in resource:
        return resource.split(":", 1)[1]
    return resource


class CloudWatchClient:
    """
    Shared client for every collector.

    Owns the rate limiter, the response cache, the tag cache and one
    tagging-API client per configured region. Region clients are read-only
    after construction.
    """

    def __init__(
        self,
        config: AWSConfig,
        logger: Optional[logging.Logger] = None,
        response_cache: Optional[ResponseCache] = None,
        tag_cache: Optional[TagCache] = None,
        rate_limiter: Optional[RateLimiter] = None
    ):
        """
        Initialize client.

        Args:
            config: AWS configuration (regions, credentials, rate limit)
            logger: Optional logger instance
            response_cache: Metric response cache (30s TTL by default)
            tag_cache: Resource tag cache (5 minute TTL by default)
            rate_limiter: Rate limiter (built from config.rate_limit by default)
        """
        self.config = config
        self.logger = logger or logging.getLogger(__name__)

        self.cache = response_cache or ResponseCache()
        self.tag_cache = tag_cache or TagCache()
        self.rate_limiter = rate_limiter or RateLimiter(
            config.rate_limit.requests_per_second,
            config.rate_limit.burst,
            max_wait=config.rate_limit.max_wait_seconds
        )

        # Serializes region listings; created on first use inside the loop
        self._tag_lock: Optional[asyncio.Lock] = None

        self._session = self._create_session()
        boto_config = BotoConfig(retries={"max_attempts": 1, "mode": "standard"})
        self._cloudwatch = self._session.client(
            'cloudwatch', region_name=config.region, config=boto_config
        )

        self._tagging_clients: Dict[str, Any] = {}
        for region in config.regions:
            try:
                self._tagging_clients[region] = self._session.client(
                    'resourcegroupstaggingapi', region_name=region, config=boto_config
                )
            except REMOTE_ERRORS as e:
                # Continue with the remaining regions
                self.logger.warning(
                    f"Failed to create tagging client for region {region}: {e}",
                    extra={"region": region}
                )

    def _create_session(self):
        kwargs = {}
        if self.config.profile:
            kwargs["profile_name"] = self.config.profile
        if self.config.has_static_credentials:
            kwargs["aws_access_key_id"] = self.config.access_key_id
            kwargs["aws_secret_access_key"] = self.config.secret_access_key
            if self.config.session_token:
                kwargs["aws_session_token"] = self.config.session_token
        return boto3.Session(**kwargs)

    @property
    def region(self) -> str:
        """Primary region, used as fallback region label."""
        return self.config.region

    @property
    def regions(self) -> List[str]:
        """Regions that have a working tagging client, in configuration order."""
        return list(self._tagging_clients)

    async def fetch_metric(self, namespace: str, metric_name: str) -> MetricResponse:
        """
        Fetch the latest datapoints of one metric for every resource.

        Checks the response cache first; on a miss takes one rate limiter
        token, calls CloudWatch and caches the result. Errors are not retried.

        Args:
            namespace: CloudWatch namespace (e.g. AWS/RDS)
            metric_name: Metric name (e.g. CPUUtilization)

        Returns:
            MetricResponse: Raw datapoints, one per resource

        Raises:
            RateLimitTimeout: No token within the configured wait
            RateLimiterClosed: Client is shutting down
            RemoteCallError: CloudWatch call failed
            DecodeError: CloudWatch returned a malformed payload
        """
        cache_key = ResponseCache.key(namespace, metric_name)
        cached, found = self.cache.get(cache_key)
        if found:
            return cached

        await self.rate_limiter.acquire()

        try:
            datapoints = await self._run(
                self._describe_metric_last, namespace, metric_name
            )
        except REMOTE_ERRORS as e:
            raise RemoteCallError(f"get metric data for {namespace}/{metric_name}", e) from e
        except (KeyError, TypeError, AttributeError) as e:
            raise DecodeError(f"malformed CloudWatch response for {namespace}/{metric_name}: {e!r}") from e

        response = MetricResponse(
            namespace=namespace,
            metric_name=metric_name,
            datapoints=datapoints
        )
        self.cache.set(cache_key, response)
        return response

    async def fetch_tags_with_region(
        self,
        instance_ids: Iterable[str],
        resource_type: str
    ) -> Tuple[Dict[str, Dict[str, str]], Dict[str, str]]:
        """
        Look up tags and region for a set of resources.

        Cached IDs are served from the tag cache. The rest are resolved by
        listing every configured region once (the tagging API has no filter
        by ID) and matching client-side, stopping as soon as every ID is
        found. A failing region is logged and skipped. IDs found nowhere are
        cached with empty tags.

        Only one lookup lists regions at a time. Concurrent callers wait for
        it and re-check the cache, so a cold cache costs one listing per
        region rather than one per caller.

        Args:
            instance_ids: Resource IDs as they appear in CloudWatch dimensions
            resource_type: Tagging API resource type filter
                (e.g. "elasticloadbalancing:loadbalancer")

        Returns:
            Tuple of (tags by instance ID, region by instance ID)

        Raises:
            RateLimitTimeout: No token within the configured wait
            RateLimiterClosed: Client is shutting down
        """
        tags_by_id: Dict[str, Dict[str, str]] = {}
        region_by_id: Dict[str, str] = {}

        outstanding = self._read_tag_cache(instance_ids, tags_by_id, region_by_id)
        if not outstanding:
            return tags_by_id, region_by_id

        if self._tag_lock is None:
            self._tag_lock = asyncio.Lock()

        async with self._tag_lock:
            # Another caller may have listed the regions while we waited
            outstanding = self._read_tag_cache(outstanding, tags_by_id, region_by_id)
            if outstanding:
                await self._list_outstanding_tags(
                    outstanding, resource_type, tags_by_id, region_by_id
                )

        return tags_by_id, region_by_id

    def _read_tag_cache(
        self,
        instance_ids: Iterable[str],
        tags_by_id: Dict[str, Dict[str, str]],
        region_by_id: Dict[str, str]
    ) -> Set[str]:
        """Copy cached entries into the result maps. Returns the IDs not cached."""
        missing = set()
        for instance_id in instance_ids:
            entry, found = self.tag_cache.get(instance_id)
            if found:
                tags_by_id[instance_id] = dict(entry.tags)
                if entry.region:
                    region_by_id[instance_id] = entry.region
            else:
                missing.add(instance_id)
        return missing

    async def _list_outstanding_tags(
        self,
        outstanding: Set[str],
        resource_type: str,
        tags_by_id: Dict[str, Dict[str, str]],
        region_by_id: Dict[str, str]
    ) -> None:
        """List regions in order until every outstanding ID is found. Caller holds the tag lock."""
        failed_regions = []
        for region, tagging_client in self._tagging_clients.items():
            if not outstanding:
                break

            await self.rate_limiter.acquire()

            try:
                resources = await self._run(
                    self._list_tagged_resources, tagging_client, resource_type
                )
            except REMOTE_ERRORS + (KeyError, TypeError) as e:
                failed_regions.append(region)
                self.logger.warning(
                    f"Failed to list tagged resources in region {region}: {e}",
                    extra={"region": region, "resource_type": resource_type}
                )
                continue

            for resource_id, tags in resources:
                if resource_id not in outstanding:
                    continue
                tags_by_id[resource_id] = tags
                region_by_id[resource_id] = region
                self.tag_cache.set(resource_id, ResourceTags(tags=dict(tags), region=region))
                outstanding.discard(resource_id)

        for remaining_id in outstanding:
            tags_by_id[remaining_id] = {}
            self.tag_cache.set(remaining_id, ResourceTags())

        if outstanding:
            self.logger.debug(
                f"{len(outstanding)} resource(s) not found in any region",
                extra={"failed_regions": failed_regions}
            )

    async def health(self) -> None:
        """
        Check that CloudWatch is reachable with the configured credentials.

        Raises:
            RemoteCallError: If the probe call fails
        """
        try:
            await self._run(partial(self._cloudwatch.describe_alarms, MaxRecords=1))
        except REMOTE_ERRORS as e:
            raise RemoteCallError("health check", e) from e

    def sweep_caches(self) -> Tuple[int, int]:
        """Drop expired cache entries. Returns (responses removed, tags removed)."""
        return self.cache.sweep(), self.tag_cache.sweep()

    async def close(self) -> None:
        """Stop the rate limiter refill task."""
        await self.rate_limiter.close()

    async def _run(self, func: Callable, *args):
        """Run a blocking boto3 call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args))

    def _describe_metric_last(self, namespace: str, metric_name: str) -> List[Dict[str, Any]]:
        """
        Latest Average/Maximum/Minimum/Sum for every resource of a metric.

        For known namespaces only the dimension sets listed in
        IDENTITY_DIMENSIONS are kept, so each resource yields one datapoint.

        Blocking; runs in the executor.
        """
        identities = IDENTITY_DIMENSIONS.get(namespace)
        list_kwargs: Dict[str, Any] = {
            'Namespace': namespace,
            'MetricName': metric_name,
            'RecentlyActive': 'PT3H',
        }
        if identities and len(identities) == 1:
            # Server-side filter; still matches supersets, checked below
            list_kwargs['Dimensions'] = [{'Name': name} for name in sorted(identities[0])]

        dimension_sets = []
        paginator = self._cloudwatch.get_paginator('list_metrics')
        for page in paginator.paginate(**list_kwargs):
            for metric in page.get('Metrics', []):
                dimensions = metric.get('Dimensions', [])
                if identities and frozenset(d['Name'] for d in dimensions) not in identities:
                    continue
                dimension_sets.append(dimensions)

        if not dimension_sets:
            return []

        queries = []
        for index, dimensions in enumerate(dimension_sets):
            for statistic in STATISTICS:
                queries.append({
                    'Id': f"m{index}_{statistic.lower()}",
                    'MetricStat': {
                        'Metric': {
                            'Namespace': namespace,
                            'MetricName': metric_name,
                            'Dimensions': dimensions,
                        },
                        'Period': PERIOD_SECONDS,
                        'Stat': statistic,
                    },
                    'ReturnData': True,
                })

        end_time = datetime.now(timezone.utc)
        start_time = end_time - LOOKBACK

        latest: Dict[str, Tuple[float, datetime]] = {}
        for offset in range(0, len(queries), MAX_QUERIES_PER_REQUEST):
            batch = queries[offset:offset + MAX_QUERIES_PER_REQUEST]
            kwargs = {
                'MetricDataQueries': batch,
                'StartTime': start_time,
                'EndTime': end_time,
                'ScanBy': 'TimestampDescending',
            }
            while True:
                response = self._cloudwatch.get_metric_data(**kwargs)
                for result in response.get('MetricDataResults', []):
                    values = result.get('Values', [])
                    timestamps = result.get('Timestamps', [])
                    # TimestampDescending: first value is the latest
                    if values and timestamps and result['Id'] not in latest:
                        latest[result['Id']] = (values[0], timestamps[0])
                next_token = response.get('NextToken')
                if not next_token:
                    break
                kwargs['NextToken'] = next_token

        datapoints = []
        for index, dimensions in enumerate(dimension_sets):
            point: Dict[str, Any] = {
                'dimensions': {d['Name']: d['Value'] for d in dimensions},
            }
            newest = None
            for statistic in STATISTICS:
                found = latest.get(f"m{index}_{statistic.lower()}")
                if found is None:
                    continue
                value, timestamp = found
                point[statistic] = value
                if newest is None or timestamp > newest:
                    newest = timestamp
            if newest is None:
                continue
            point['timestamp'] = newest.timestamp()
            datapoints.append(point)

        return datapoints

    @staticmethod
    def _list_tagged_resources(tagging_client, resource_type: str) -> List[Tuple[str, Dict[str, str]]]:
        """Full tagged-resource listing for one region. Blocking; runs in the executor."""
        resources = []
        paginator = tagging_client.get_paginator('get_resources')
        for page in paginator.paginate(ResourceTypeFilters=[resource_type]):
            for mapping in page.get('ResourceTagMappingList', []):
                tags = {tag['Key']: tag['Value'] for tag in mapping.get('Tags', [])}
                resources.append((resource_id_from_arn(mapping['ResourceARN']), tags))
        return resources
