"""Tests for CloudWatchClient with boto3 mocked out."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from cloudwatch_exporter.client.api_client import CloudWatchClient, resource_id_from_arn
from cloudwatch_exporter.client.errors import DecodeError, RateLimitTimeout, RemoteCallError
from cloudwatch_exporter.collectors.catalog import ELB_METRICS, ELB_NAMESPACE
from cloudwatch_exporter.collectors.elb_collector import LoadBalancerCollector
from cloudwatch_exporter.config.models import ServiceConfig
from cloudwatch_exporter.prometheus import render
from cloudwatch_exporter.utils.metrics import ScrapeOutcome
from cloudwatch_exporter.utils.status import HealthStatus

RESOURCE_TYPE = "elasticloadbalancing:loadbalancer"
LB_ARN = "arn:aws:elasticloadbalancing:eu-west-1:123456789012:loadbalancer/app/web/50dc6c495c0c9188"
LB_DIMENSION = {"Name": "LoadBalancer", "Value": "app/web/50dc6c495c0c9188"}


def client_error(operation="GetResources"):
    return ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, operation)


def tagging_client(mappings=None, error=None):
    """Mock tagging API client returning one page of mappings, or raising."""
    client = MagicMock()
    paginator = client.get_paginator.return_value
    if error is not None:
        paginator.paginate.side_effect = error
    else:
        paginator.paginate.return_value = [{"ResourceTagMappingList": mappings or []}]
    return client


def listing_count(tagging):
    """Full region listings made across the mocked tagging clients."""
    return sum(t.get_paginator.return_value.paginate.call_count for t in tagging.values())


def fake_limiter():
    limiter = MagicMock()
    limiter.acquire = AsyncMock(return_value=None)
    limiter.close = AsyncMock(return_value=None)
    return limiter


def build_client(aws_config, cloudwatch=None, tagging=None, limiter=None):
    cloudwatch = cloudwatch or MagicMock()
    tagging = tagging or {}

    def make_client(service, region_name=None, config=None):
        if service == "cloudwatch":
            return cloudwatch
        return tagging.get(region_name) or MagicMock()

    with patch("cloudwatch_exporter.client.api_client.boto3") as mock_boto3:
        mock_boto3.Session.return_value.client.side_effect = make_client
        return CloudWatchClient(aws_config, rate_limiter=limiter or fake_limiter())


def cloudwatch_with_one_lb(extra_sets=None):
    """
    Mock CloudWatch with one load balancer.

    extra_sets are listed after the load balancer's own dimension set and get
    no datapoints of their own.
    """
    cloudwatch = MagicMock()
    metrics = [{"Dimensions": [LB_DIMENSION]}]
    metrics.extend({"Dimensions": dimensions} for dimensions in extra_sets or [])
    cloudwatch.get_paginator.return_value.paginate.return_value = [{"Metrics": metrics}]
    ts_new = datetime(2024, 1, 1, 10, 5, tzinfo=timezone.utc)
    ts_old = datetime(2024, 1, 1, 10, 4, tzinfo=timezone.utc)
    cloudwatch.get_metric_data.return_value = {
        "MetricDataResults": [
            {"Id": "m0_average", "Values": [0.0, 3.0], "Timestamps": [ts_new, ts_old]},
            {"Id": "m0_maximum", "Values": [7.0], "Timestamps": [ts_new]},
            {"Id": "m0_minimum", "Values": [], "Timestamps": []},
            {"Id": "m0_sum", "Values": [12.0], "Timestamps": [ts_new]},
        ]
    }
    return cloudwatch, ts_new


class TestResourceIdFromArn:

    def test_load_balancer_arn(self):
        assert resource_id_from_arn(LB_ARN) == "app/web/50dc6c495c0c9188"

    def test_colon_separated_resource(self):
        assert resource_id_from_arn("arn:aws:rds:us-east-1:123456789012:db:orders") == "orders"

    def test_cache_cluster_arn(self):
        arn = "arn:aws:elasticache:us-east-1:123456789012:cluster:sessions-001"
        assert resource_id_from_arn(arn) == "sessions-001"

    def test_not_an_arn(self):
        assert resource_id_from_arn("plain-id") == "plain-id"


class TestFetchMetric:

    @pytest.mark.asyncio
    async def test_decodes_latest_datapoint_per_dimension_set(self, aws_config):
        cloudwatch, ts_new = cloudwatch_with_one_lb()
        client = build_client(aws_config, cloudwatch=cloudwatch)

        response = await client.fetch_metric("AWS/ApplicationELB", "RequestCount")

        assert response.namespace == "AWS/ApplicationELB"
        assert response.metric_name == "RequestCount"
        assert response.datapoints == [{
            "dimensions": {"LoadBalancer": "app/web/50dc6c495c0c9188"},
            "Average": 0.0,
            "Maximum": 7.0,
            "Sum": 12.0,
            "timestamp": ts_new.timestamp(),
        }]

        kwargs = cloudwatch.get_metric_data.call_args.kwargs
        assert kwargs["ScanBy"] == "TimestampDescending"
        assert len(kwargs["MetricDataQueries"]) == 4

    @pytest.mark.asyncio
    async def test_only_identity_dimension_set_is_fetched(self, aws_config):
        cloudwatch, _ = cloudwatch_with_one_lb(extra_sets=[
            [LB_DIMENSION, {"Name": "AvailabilityZone", "Value": "us-east-1a"}],
            [{"Name": "TargetGroup", "Value": "targetgroup/web/73e2d6bc24d8a067"}, LB_DIMENSION],
        ])
        client = build_client(aws_config, cloudwatch=cloudwatch)

        response = await client.fetch_metric("AWS/ApplicationELB", "RequestCount")

        assert [p["dimensions"] for p in response.datapoints] == [{"LoadBalancer": "app/web/50dc6c495c0c9188"}]
        assert len(cloudwatch.get_metric_data.call_args.kwargs["MetricDataQueries"]) == 4
        list_kwargs = cloudwatch.get_paginator.return_value.paginate.call_args.kwargs
        assert list_kwargs["Dimensions"] == [{"Name": "LoadBalancer"}]

    @pytest.mark.asyncio
    async def test_cache_node_sets_skipped(self, aws_config):
        cloudwatch = MagicMock()
        cloudwatch.get_paginator.return_value.paginate.return_value = [{"Metrics": [
            {"Dimensions": [{"Name": "CacheClusterId", "Value": "sessions-001"},
                            {"Name": "CacheNodeId", "Value": "0001"}]},
            {"Dimensions": [{"Name": "CacheClusterId", "Value": "sessions-001"}]},
        ]}]
        ts = datetime(2024, 1, 1, 10, 5, tzinfo=timezone.utc)
        cloudwatch.get_metric_data.return_value = {"MetricDataResults": [
            {"Id": "m0_average", "Values": [12.5], "Timestamps": [ts]},
        ]}
        client = build_client(aws_config, cloudwatch=cloudwatch)

        response = await client.fetch_metric("AWS/ElastiCache", "CPUUtilization")

        assert response.datapoints == [{
            "dimensions": {"CacheClusterId": "sessions-001"},
            "Average": 12.5,
            "timestamp": ts.timestamp(),
        }]

    @pytest.mark.asyncio
    async def test_rds_keeps_instance_and_cluster_sets(self, aws_config):
        cloudwatch = MagicMock()
        cloudwatch.get_paginator.return_value.paginate.return_value = [{"Metrics": [
            {"Dimensions": [{"Name": "DBInstanceIdentifier", "Value": "orders-1"}]},
            {"Dimensions": [{"Name": "DBClusterIdentifier", "Value": "orders"}]},
            {"Dimensions": [{"Name": "DatabaseClass", "Value": "db.r6g.large"}]},
            {"Dimensions": [{"Name": "DBClusterIdentifier", "Value": "orders"},
                            {"Name": "Role", "Value": "WRITER"}]},
        ]}]
        ts = datetime(2024, 1, 1, 10, 5, tzinfo=timezone.utc)
        cloudwatch.get_metric_data.return_value = {"MetricDataResults": [
            {"Id": "m0_average", "Values": [40.0], "Timestamps": [ts]},
            {"Id": "m1_average", "Values": [35.0], "Timestamps": [ts]},
        ]}
        client = build_client(aws_config, cloudwatch=cloudwatch)

        response = await client.fetch_metric("AWS/RDS", "CPUUtilization")

        assert [p["dimensions"] for p in response.datapoints] == [
            {"DBInstanceIdentifier": "orders-1"},
            {"DBClusterIdentifier": "orders"},
        ]
        # Two identities: no server-side dimension filter
        assert "Dimensions" not in cloudwatch.get_paginator.return_value.paginate.call_args.kwargs

    @pytest.mark.asyncio
    async def test_second_call_served_from_cache(self, aws_config):
        cloudwatch, _ = cloudwatch_with_one_lb()
        limiter = fake_limiter()
        client = build_client(aws_config, cloudwatch=cloudwatch, limiter=limiter)

        first = await client.fetch_metric("AWS/ApplicationELB", "RequestCount")
        second = await client.fetch_metric("AWS/ApplicationELB", "RequestCount")

        assert first is second
        assert cloudwatch.get_metric_data.call_count == 1
        assert limiter.acquire.await_count == 1

    @pytest.mark.asyncio
    async def test_no_active_metrics_returns_empty(self, aws_config):
        cloudwatch = MagicMock()
        cloudwatch.get_paginator.return_value.paginate.return_value = [{"Metrics": []}]
        client = build_client(aws_config, cloudwatch=cloudwatch)

        response = await client.fetch_metric("AWS/RDS", "CPUUtilization")

        assert response.datapoints == []
        cloudwatch.get_metric_data.assert_not_called()

    @pytest.mark.asyncio
    async def test_remote_failure_raises_remote_call_error(self, aws_config):
        cloudwatch = MagicMock()
        cloudwatch.get_paginator.return_value.paginate.side_effect = client_error("ListMetrics")
        client = build_client(aws_config, cloudwatch=cloudwatch)

        with pytest.raises(RemoteCallError) as exc_info:
            await client.fetch_metric("AWS/RDS", "CPUUtilization")

        assert isinstance(exc_info.value.cause, ClientError)
        # Failures are not cached
        assert "AWS/RDS:CPUUtilization" not in client.cache

    @pytest.mark.asyncio
    async def test_malformed_payload_raises_decode_error(self, aws_config):
        cloudwatch = MagicMock()
        cloudwatch.get_paginator.return_value.paginate.return_value = [{
            "Metrics": [{"Dimensions": [{"Value": "no-name"}]}]
        }]
        cloudwatch.get_metric_data.return_value = {"MetricDataResults": []}
        client = build_client(aws_config, cloudwatch=cloudwatch)

        with pytest.raises(DecodeError):
            await client.fetch_metric("AWS/RDS", "CPUUtilization")

    @pytest.mark.asyncio
    async def test_rate_limit_timeout_propagates(self, aws_config):
        cloudwatch, _ = cloudwatch_with_one_lb()
        limiter = fake_limiter()
        limiter.acquire.side_effect = RateLimitTimeout("no token")
        client = build_client(aws_config, cloudwatch=cloudwatch, limiter=limiter)

        with pytest.raises(RateLimitTimeout):
            await client.fetch_metric("AWS/ApplicationELB", "RequestCount")
        cloudwatch.get_metric_data.assert_not_called()


class TestFetchTagsWithRegion:

    @pytest.mark.asyncio
    async def test_failed_region_skipped_and_other_region_used(self, aws_config):
        tagging = {
            "us-east-1": tagging_client(error=client_error()),
            "eu-west-1": tagging_client([{
                "ResourceARN": LB_ARN,
                "Tags": [{"Key": "Team", "Value": "payments"}, {"Key": "Name", "Value": "web"}],
            }]),
        }
        client = build_client(aws_config, tagging=tagging)

        tags, regions = await client.fetch_tags_with_region(["app/web/50dc6c495c0c9188"], RESOURCE_TYPE)

        assert tags == {"app/web/50dc6c495c0c9188": {"Team": "payments", "Name": "web"}}
        assert regions == {"app/web/50dc6c495c0c9188": "eu-west-1"}

    @pytest.mark.asyncio
    async def test_second_lookup_makes_no_remote_calls(self, aws_config):
        tagging = {
            "us-east-1": tagging_client([]),
            "eu-west-1": tagging_client([{"ResourceARN": LB_ARN, "Tags": [{"Key": "Team", "Value": "a"}]}]),
        }
        limiter = fake_limiter()
        client = build_client(aws_config, tagging=tagging, limiter=limiter)
        ids = ["app/web/50dc6c495c0c9188", "app/missing/1"]

        first = await client.fetch_tags_with_region(ids, RESOURCE_TYPE)
        calls_after_first = sum(t.get_paginator.return_value.paginate.call_count for t in tagging.values())
        acquired_after_first = limiter.acquire.await_count

        second = await client.fetch_tags_with_region(ids, RESOURCE_TYPE)

        assert first == second
        assert first[0]["app/missing/1"] == {}
        assert "app/missing/1" not in first[1]
        assert sum(t.get_paginator.return_value.paginate.call_count for t in tagging.values()) == calls_after_first
        assert limiter.acquire.await_count == acquired_after_first

    @pytest.mark.asyncio
    async def test_stops_once_every_id_is_found(self, aws_config):
        tagging = {
            "us-east-1": tagging_client([{"ResourceARN": LB_ARN, "Tags": []}]),
            "eu-west-1": tagging_client([]),
        }
        client = build_client(aws_config, tagging=tagging)

        _, regions = await client.fetch_tags_with_region(["app/web/50dc6c495c0c9188"], RESOURCE_TYPE)

        assert regions == {"app/web/50dc6c495c0c9188": "us-east-1"}
        tagging["eu-west-1"].get_paginator.return_value.paginate.assert_not_called()

    @pytest.mark.asyncio
    async def test_not_found_is_cached_even_when_a_region_failed(self, aws_config):
        tagging = {
            "us-east-1": tagging_client(error=client_error()),
            "eu-west-1": tagging_client([]),
        }
        limiter = fake_limiter()
        client = build_client(aws_config, tagging=tagging, limiter=limiter)

        tags, _ = await client.fetch_tags_with_region(["app/missing/1"], RESOURCE_TYPE)
        listings_after_first = listing_count(tagging)
        second, _ = await client.fetch_tags_with_region(["app/missing/1"], RESOURCE_TYPE)

        assert tags == second == {"app/missing/1": {}}
        assert listings_after_first == 2
        assert listing_count(tagging) == listings_after_first
        assert limiter.acquire.await_count == 2

    @pytest.mark.asyncio
    async def test_concurrent_lookups_list_each_region_once(self, aws_config):
        tagging = {
            "us-east-1": tagging_client([]),
            "eu-west-1": tagging_client([{"ResourceARN": LB_ARN, "Tags": [{"Key": "Team", "Value": "a"}]}]),
        }
        client = build_client(aws_config, tagging=tagging)

        results = await asyncio.gather(*(
            client.fetch_tags_with_region(["app/web/50dc6c495c0c9188"], RESOURCE_TYPE)
            for _ in range(5)
        ))

        assert listing_count(tagging) == 2
        assert all(regions == {"app/web/50dc6c495c0c9188": "eu-west-1"} for _, regions in results)
        assert all(tags["app/web/50dc6c495c0c9188"] == {"Team": "a"} for tags, _ in results)

    @pytest.mark.asyncio
    async def test_all_regions_failing_returns_empty_tags(self, aws_config):
        tagging = {
            "us-east-1": tagging_client(error=client_error()),
            "eu-west-1": tagging_client(error=client_error()),
        }
        client = build_client(aws_config, tagging=tagging)

        tags, regions = await client.fetch_tags_with_region(["app/web/1"], RESOURCE_TYPE)

        assert tags == {"app/web/1": {}}
        assert regions == {}


class TestHealthAndLifecycle:

    @pytest.mark.asyncio
    async def test_health_success(self, aws_config):
        cloudwatch = MagicMock()
        client = build_client(aws_config, cloudwatch=cloudwatch)

        await client.health()

        cloudwatch.describe_alarms.assert_called_once_with(MaxRecords=1)

    @pytest.mark.asyncio
    async def test_health_failure(self, aws_config):
        cloudwatch = MagicMock()
        cloudwatch.describe_alarms.side_effect = client_error("DescribeAlarms")
        client = build_client(aws_config, cloudwatch=cloudwatch)

        with pytest.raises(RemoteCallError):
            await client.health()

    @pytest.mark.asyncio
    async def test_close_closes_rate_limiter(self, aws_config):
        limiter = fake_limiter()
        client = build_client(aws_config, limiter=limiter)

        await client.close()

        limiter.close.assert_awaited_once()

    def test_regions_follow_configuration_order(self, aws_config):
        client = build_client(aws_config, tagging={"us-east-1": MagicMock(), "eu-west-1": MagicMock()})

        assert client.region == "us-east-1"
        assert client.regions == ["us-east-1", "eu-west-1"]


class TestLoadBalancerScrape:
    """LoadBalancerCollector on top of a real client with boto3 mocked out."""

    @pytest.mark.asyncio
    async def test_one_series_per_load_balancer_and_one_listing_per_region(self, aws_config):
        cloudwatch, _ = cloudwatch_with_one_lb(extra_sets=[
            [LB_DIMENSION, {"Name": "AvailabilityZone", "Value": "us-east-1a"}],
            [LB_DIMENSION, {"Name": "TargetGroup", "Value": "targetgroup/web/73e2d6bc24d8a067"}],
        ])
        tagging = {
            "us-east-1": tagging_client([]),
            "eu-west-1": tagging_client([{"ResourceARN": LB_ARN, "Tags": [{"Key": "Team", "Value": "payments"}]}]),
        }
        client = build_client(aws_config, cloudwatch=cloudwatch, tagging=tagging)
        config = ServiceConfig(enabled=True, namespace=ELB_NAMESPACE, metrics=ELB_METRICS[:5])
        collector = LoadBalancerCollector(client, config)

        result = await collector.collect()

        assert result.ok
        assert len(result.samples) == 5
        assert listing_count(tagging) == 2
        assert all(s.label("team") == "payments" and s.label("region") == "eu-west-1" for s in result.samples)

        outcome = ScrapeOutcome(
            samples=result.samples,
            collector_errors={},
            error_count=0,
            duration=result.duration,
            health_status=HealthStatus.UP,
            up=True,
        )
        lines = [line for line in render(outcome).decode().splitlines() if line.startswith("aws_elb_request_count{")]
        assert len(lines) == 1
