"""Shared pytest configuration and fixtures."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from cloudwatch_exporter.collectors.catalog import ELASTICACHE_NAMESPACE, ELB_NAMESPACE, RDS_NAMESPACE
from cloudwatch_exporter.config.models import AWSConfig, ServiceConfig
from cloudwatch_exporter.utils.logger import setup_logger
from cloudwatch_exporter.utils.metrics import MetricResponse


@pytest.fixture
def logger():
    """Create logger for tests."""
    return setup_logger("test", level="DEBUG", fmt="text")


@pytest.fixture
def aws_config():
    """AWS configuration with two tag lookup regions."""
    return AWSConfig(region="us-east-1", regions=["us-east-1", "eu-west-1"])


@pytest.fixture
def elb_config():
    return ServiceConfig(
        enabled=True,
        namespace=ELB_NAMESPACE,
        metrics=["RequestCount", "HTTPCode_ELB_5XX_Count"]
    )


@pytest.fixture
def elasticache_config():
    return ServiceConfig(
        enabled=True,
        namespace=ELASTICACHE_NAMESPACE,
        metrics=["CPUUtilization", "CurrConnections"]
    )


@pytest.fixture
def rds_config():
    return ServiceConfig(
        enabled=True,
        namespace=RDS_NAMESPACE,
        metrics=["CPUUtilization", "DatabaseConnections", "FreeStorageSpace"]
    )


@pytest.fixture
def make_response():
    """Factory for MetricResponse payloads as returned by the client."""
    def _make(namespace, metric_name, datapoints):
        return MetricResponse(namespace=namespace, metric_name=metric_name, datapoints=list(datapoints))
    return _make


@pytest.fixture
def fake_client():
    """
    Stand-in for CloudWatchClient.

    fetch_metric returns empty responses and tag lookups find nothing
    unless a test overrides them.
    """
    client = MagicMock()
    client.region = "us-east-1"
    client.regions = ["us-east-1", "eu-west-1"]
    client.fetch_metric = AsyncMock(
        side_effect=lambda namespace, metric_name: MetricResponse(namespace, metric_name, [])
    )
    client.fetch_tags_with_region = AsyncMock(return_value=({}, {}))
    client.health = AsyncMock(return_value=None)
    client.close = AsyncMock(return_value=None)
    client.sweep_caches = MagicMock(return_value=(0, 0))
    return client
