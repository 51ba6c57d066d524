"""Scrape health status enumeration."""

from enum import Enum


class HealthStatus(Enum):
    """Overall outcome of one scrape."""

    UP = "up"
    DEGRADED = "degraded"
    DOWN = "down"

    @classmethod
    def from_scrape(cls, probe_ok: bool, error_count: int) -> "HealthStatus":
        """
        Derive the status of a finished scrape.

        Args:
            probe_ok: Whether the remote API health probe succeeded
            error_count: Number of failed collectors

        Returns:
            HealthStatus: DOWN if the probe failed, DEGRADED if any
            collector failed, UP otherwise
        """
        if not probe_ok:
            return cls.DOWN
        if error_count > 0:
            return cls.DEGRADED
        return cls.UP
