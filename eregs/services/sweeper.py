"""
Periodic removal of expired cache entries.
Uses APScheduler so the sweep runs independently of request traffic.
"""

from typing import Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from eregs.services.cache import DurableCache
from eregs.utils import safe_job

SWEEP_JOB_ID = "cache_sweep_job"


class CacheSweeper:
    """
    Runs clean_expired() on the current store at a fixed interval.

    The store is looked up on every run, so a rebind between runs is picked
    up without rescheduling.
    """

    def __init__(
        self,
        get_store: Callable[[], DurableCache | None],
        interval_hours: float = 24.0,
    ):
        self._get_store = get_store
        self._interval_hours = interval_hours
        self.scheduler: AsyncIOScheduler | None = None

    @safe_job
    async def sweep_job(self) -> int:
        """Sweep task"""
        return await self.run_once()

    async def run_once(self) -> int:
        """Sweep the current store now. Returns the number of removed entries."""
        store = self._get_store()
        if store is None or store.is_closed:
            return 0

        removed = await store.clean_expired()
        if removed > 0:
            logger.debug(f"Cache cleanup: removed {removed} expired items")
        return removed

    def start(self) -> None:
        """Start the scheduler. Must be called from a running event loop."""
        if self.is_running():
            logger.warning("Cache sweeper is already running")
            return

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.sweep_job,
            trigger="interval",
            hours=self._interval_hours,
            id=SWEEP_JOB_ID,
            name="Cache Expiry Sweep",
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(
            f"Cache sweeper started: sweeping every {self._interval_hours} hours"
        )

    def stop(self) -> None:
        if not self.is_running():
            return

        self.scheduler.shutdown(wait=False)
        self.scheduler = None
        logger.info("Cache sweeper stopped")

    def is_running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running
