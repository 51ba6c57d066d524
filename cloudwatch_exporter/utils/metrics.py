"""Metric data structures shared by the client, collectors and exporter."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple
import time

from ..client.errors import DecodeError
from .status import HealthStatus


GAUGE = "gauge"
COUNTER = "counter"

# CloudWatch dimension name -> DataPoint field (matched case-insensitively)
DIMENSION_FIELDS = {
    "loadbalancer": "instance_id",
    "loadbalancername": "instance_id",
    "cacheclusterid": "instance_id",
    "dbinstanceidentifier": "instance_id",
    "dbclusteridentifier": "instance_id",
    "instanceid": "instance_id",
    "protocol": "protocol",
    "port": "port",
    "vip": "vip",
}


def resolve_value(average: float, maximum: float, total: float) -> float:
    """
    Pick the value published for a datapoint.

    Average wins unless it is zero, then maximum, then sum. This is a strict
    precedence, never an addition of the fallbacks.
    """
    if average != 0:
        return average
    if maximum != 0:
        return maximum
    return total


@dataclass(frozen=True)
class Sample:
    """One labeled numeric sample produced during a scrape."""

    name: str
    value: float
    labels: Tuple[Tuple[str, str], ...] = ()
    instance_id: str = ""
    timestamp: Optional[float] = None
    kind: str = GAUGE
    help: str = ""

    @property
    def label_names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.labels)

    @property
    def label_values(self) -> Tuple[str, ...]:
        return tuple(value for _, value in self.labels)

    def label(self, name: str) -> Optional[str]:
        for key, value in self.labels:
            if key == name:
                return value
        return None


@dataclass(frozen=True)
class MetricDescriptor:
    """Shape of a series: fully-qualified name, help and label names."""

    name: str
    help: str
    label_names: Tuple[str, ...]
    kind: str = GAUGE
    const_labels: Tuple[Tuple[str, str], ...] = ()


@dataclass
class MetricResponse:
    """Raw result of one fetch-metric call, as cached by the client."""

    namespace: str
    metric_name: str
    datapoints: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class DataPoint:
    """Decoded CloudWatch datapoint for a single dimension set."""

    instance_id: str = ""
    protocol: str = ""
    port: str = ""
    vip: str = ""
    dimensions: Dict[str, str] = field(default_factory=dict)
    average: float = 0.0
    maximum: float = 0.0
    minimum: float = 0.0
    sum: float = 0.0
    timestamp: Optional[float] = None

    @property
    def value(self) -> float:
        return resolve_value(self.average, self.maximum, self.sum)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "DataPoint":
        """
        Decode one raw datapoint.

        Args:
            raw: Mapping with "dimensions" and any of the statistic keys
                Average/Maximum/Minimum/Sum plus an optional "timestamp"

        Raises:
            DecodeError: If the payload is not a mapping, the dimensions are
                malformed or a statistic is not numeric
        """
        if not isinstance(raw, Mapping):
            raise DecodeError(f"datapoint must be a mapping, got {type(raw).__name__}")

        dimensions = raw.get("dimensions") or {}
        if not isinstance(dimensions, Mapping):
            raise DecodeError("datapoint dimensions must be a mapping")

        point = cls(dimensions={str(k): str(v) for k, v in dimensions.items()})
        for name, value in point.dimensions.items():
            target = DIMENSION_FIELDS.get(name.lower())
            if target and not getattr(point, target):
                setattr(point, target, value)

        for key, attr in (("Average", "average"), ("Maximum", "maximum"),
                          ("Minimum", "minimum"), ("Sum", "sum")):
            if raw.get(key) is None:
                continue
            try:
                setattr(point, attr, float(raw[key]))
            except (TypeError, ValueError):
                raise DecodeError(f"statistic {key} is not numeric: {raw[key]!r}") from None

        if raw.get("timestamp") is not None:
            try:
                point.timestamp = float(raw["timestamp"])
            except (TypeError, ValueError):
                raise DecodeError(f"timestamp is not numeric: {raw['timestamp']!r}") from None

        return point


@dataclass
class CollectorResult:
    """Result of one collector run: whatever succeeded plus an optional aggregate error."""

    collector_name: str
    samples: List[Sample] = field(default_factory=list)
    error: Optional[Exception] = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ScrapeOutcome:
    """Aggregate outcome of one scrape across all enabled collectors."""

    samples: List[Sample]
    collector_errors: Dict[str, str]
    error_count: int
    duration: float
    health_status: HealthStatus
    up: bool
    timestamp: Optional[float] = None

    def __post_init__(self):
        """Set timestamp if not provided."""
        if self.timestamp is None:
            self.timestamp = time.time()

    @property
    def total_samples(self) -> int:
        return len(self.samples)
