"""Periodic cache maintenance driven by APScheduler."""

import logging
from typing import Optional, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger


SWEEP_JOB_ID = "cache_sweep"


class CacheMaintenance:
    """
    Sweeps expired entries from the client caches on a fixed interval.

    Expired entries are never served, but they stay in memory until a sweep
    removes them.
    """

    def __init__(
        self,
        client,
        interval_seconds: int = 300,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize cache maintenance.

        Args:
            client: CloudWatchClient exposing sweep_caches()
            interval_seconds: Seconds between sweeps
            logger: Optional logger instance
        """
        self.client = client
        self.interval_seconds = interval_seconds
        self.logger = logger or logging.getLogger(__name__)
        self.scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def sweep(self) -> Tuple[int, int]:
        """
        Remove expired entries now.

        Returns:
            Tuple of (response entries removed, tag entries removed)
        """
        removed_responses, removed_tags = self.client.sweep_caches()
        if removed_responses or removed_tags:
            self.logger.debug(
                f"Swept {removed_responses} response and {removed_tags} tag cache entries",
                extra={"responses": removed_responses, "tags": removed_tags}
            )
        return removed_responses, removed_tags

    def start(self) -> None:
        """Schedule the sweep job. Must be called with a running event loop."""
        if self.running:
            return

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.sweep,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=SWEEP_JOB_ID,
            name='Cache sweep',
            max_instances=1,
            coalesce=True
        )
        self.scheduler.start()
        self.logger.info(f"Cache sweep scheduled every {self.interval_seconds}s")

    def stop(self) -> None:
        if self.running:
            self.scheduler.shutdown(wait=False)
            self.logger.info("Cache sweep stopped")
        self.scheduler = None
