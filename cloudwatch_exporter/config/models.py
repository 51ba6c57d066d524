"""Pydantic configuration models for the CloudWatch exporter."""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Dict, List, Optional
import re

from ..collectors.catalog import (
    ELASTICACHE_METRICS,
    ELASTICACHE_NAMESPACE,
    ELB_METRICS,
    ELB_NAMESPACE,
    RDS_METRICS,
    RDS_NAMESPACE,
)


VALID_LOG_LEVELS = ("debug", "info", "warning", "error")
VALID_LOG_FORMATS = ("json", "text")


class ServerConfig(BaseModel):
    """HTTP server and logging configuration."""
    listen_address: str = "0.0.0.0"
    port: int = Field(default=9100, ge=1, le=65535)
    metrics_path: str = "/metrics"
    log_level: str = "info"
    log_format: str = "json"

    @field_validator('metrics_path')
    @classmethod
    def validate_metrics_path(cls, v: str) -> str:
        """Metrics path must be absolute."""
        if not v.startswith('/'):
            raise ValueError('metrics_path must start with /')
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Accept the usual level names, including the "warn" alias."""
        level = v.lower()
        if level == "warn":
            level = "warning"
        if level not in VALID_LOG_LEVELS:
            raise ValueError(f"invalid log level: {v}, must be one of {list(VALID_LOG_LEVELS)}")
        return level

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        fmt = v.lower()
        if fmt not in VALID_LOG_FORMATS:
            raise ValueError(f"invalid log format: {v}, must be one of {list(VALID_LOG_FORMATS)}")
        return fmt


class RateLimitConfig(BaseModel):
    """Token bucket settings for outbound CloudWatch calls."""
    requests_per_second: float = Field(default=10, gt=0)
    burst: int = Field(default=20, ge=1)
    max_wait_seconds: float = Field(default=5.0, gt=0)


class AWSConfig(BaseModel):
    """AWS credentials and regions."""
    region: str = "us-east-1"
    regions: List[str] = Field(default_factory=list)  # Tag lookup regions, defaults to [region]
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None
    profile: Optional[str] = None
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)

    @field_validator('region')
    @classmethod
    def validate_region(cls, v: str) -> str:
        """Basic AWS region format check (e.g. us-east-1)."""
        if not re.match(r'^[a-z]{2}(-[a-z]+)+-\d+$', v):
            raise ValueError(f'invalid AWS region: {v}')
        return v

    @model_validator(mode='after')
    def default_regions(self) -> 'AWSConfig':
        """Fall back to the primary region when no lookup regions are listed."""
        if not self.regions:
            self.regions = [self.region]
        return self

    @property
    def has_static_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)


class ServiceConfig(BaseModel):
    """Configuration for a single monitored service. Read-only once built."""
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    namespace: str
    metrics: List[str] = Field(default_factory=list)
    max_concurrency: int = Field(default=10, ge=1, le=100)


class ServicesConfig(BaseModel):
    """All monitored services."""
    elb: ServiceConfig = Field(
        default_factory=lambda: ServiceConfig(namespace=ELB_NAMESPACE, metrics=list(ELB_METRICS))
    )
    elasticache: ServiceConfig = Field(
        default_factory=lambda: ServiceConfig(namespace=ELASTICACHE_NAMESPACE, metrics=list(ELASTICACHE_METRICS))
    )
    rds: ServiceConfig = Field(
        default_factory=lambda: ServiceConfig(namespace=RDS_NAMESPACE, metrics=list(RDS_METRICS))
    )

    @field_validator('elb', 'elasticache', 'rds', mode='before')
    @classmethod
    def fill_service_defaults(cls, v, info):
        """Partial service sections inherit the default namespace and metric catalog."""
        if not isinstance(v, dict):
            return v
        defaults = {
            "elb": (ELB_NAMESPACE, ELB_METRICS),
            "elasticache": (ELASTICACHE_NAMESPACE, ELASTICACHE_METRICS),
            "rds": (RDS_NAMESPACE, RDS_METRICS),
        }
        namespace, metrics = defaults[info.field_name]
        merged = dict(v)
        if not merged.get("namespace"):
            merged["namespace"] = namespace
        if not merged.get("metrics"):
            merged["metrics"] = list(metrics)
        return merged

    def enabled_services(self) -> Dict[str, ServiceConfig]:
        return {
            name: service
            for name, service in (("elb", self.elb), ("elasticache", self.elasticache), ("rds", self.rds))
            if service.enabled
        }


class PrometheusConfig(BaseModel):
    """Exposition settings."""
    metric_prefix: str = "aws"
    global_labels: Dict[str, str] = Field(default_factory=dict)
    include_region_label: bool = True  # Per-instance region label on enriched services
    include_runtime_metrics: bool = False  # python_info and python_gc_* series
    include_process_metrics: bool = False  # process_* series (CPU, memory, fds)

    @field_validator('metric_prefix')
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        if v and not re.match(r'^[a-zA-Z_][a-zA-Z0-9_]*$', v):
            raise ValueError('metric_prefix must be a valid Prometheus metric name fragment')
        return v


class ScrapeConfig(BaseModel):
    """Scrape cycle settings."""
    timeout_seconds: float = Field(default=120.0, gt=0)
    health_check: bool = True
    health_check_attempts: int = Field(default=2, ge=1, le=10)
    cache_sweep_interval_seconds: int = Field(default=300, ge=10)


class ExporterConfig(BaseModel):
    """Root configuration model for the exporter."""
    server: ServerConfig = Field(default_factory=ServerConfig)
    aws: AWSConfig = Field(default_factory=AWSConfig)
    services: ServicesConfig = Field(default_factory=ServicesConfig)
    prometheus: PrometheusConfig = Field(default_factory=PrometheusConfig)
    scrape: ScrapeConfig = Field(default_factory=ScrapeConfig)
