"""Exception hierarchy for the CloudWatch client and collectors."""

from typing import Dict, Optional


class ExporterError(Exception):
    """Base class for all exporter errors."""


class RateLimitError(ExporterError):
    """Admission to the remote API was refused by the rate limiter."""


class RateLimitTimeout(RateLimitError):
    """No token became available within the allowed wait."""


class RateLimiterClosed(RateLimitError):
    """The rate limiter was closed before a token could be handed out."""


class RemoteCallError(ExporterError):
    """Transport or API-level failure from a remote call."""

    def __init__(self, operation: str, cause: Exception):
        """
        Args:
            operation: Short description of the failed call
            cause: Underlying boto3/botocore exception
        """
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.cause = cause


class DecodeError(ExporterError):
    """A remote payload could not be decoded into datapoints."""


class CollectionError(ExporterError):
    """Aggregate error for a collection run where some metrics failed."""

    def __init__(self, service: str, failures: Dict[str, str]):
        """
        Args:
            service: Collector name
            failures: Metric name -> error message for every failed metric
        """
        self.service = service
        self.failures = dict(failures)
        super().__init__(f"failed to collect {self.failures_count} {service} metrics")

    @property
    def failures_count(self) -> int:
        return len(self.failures)

    def first_failure(self) -> Optional[str]:
        for metric_name in sorted(self.failures):
            return f"{metric_name}: {self.failures[metric_name]}"
        return None
