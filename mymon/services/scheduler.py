"""Interval scheduler fanning targets out to the worker pool."""

import logging
import math
import time
from datetime import datetime, timezone
from typing import List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config.models import MonitorSettings, TargetConfig
from ..pipeline import CollectorPipeline
from ..utils.errors import ConfigSourceError
from ..utils.metrics import CollectionResult
from .enumerator import TargetEnumerator
from .worker_pool import WorkerPool


class MonitorScheduler:
    """
    Fires every `interval` seconds on wall-clock boundaries.

    A tick only enumerates and submits; it never awaits a pipeline, so a
    hanging target cannot delay anybody's next tick. At most one pipeline
    per target key is in flight: a target still running from an earlier
    tick is skipped.
    """

    TICK_JOB_ID = "monitor_tick"
    STATS_JOB_ID = "pool_stats"

    def __init__(
        self,
        settings: MonitorSettings,
        enumerator: TargetEnumerator,
        pool: WorkerPool,
        pipeline: CollectorPipeline,
        logger: logging.Logger
    ):
        self.settings = settings
        self.enumerator = enumerator
        self.pool = pool
        self.pipeline = pipeline
        self.logger = logger.getChild(self.__class__.__name__)
        self.scheduler: Optional[AsyncIOScheduler] = None
        # Touched only from the event loop thread
        self._in_flight: Set[str] = set()

    @property
    def in_flight(self) -> Set[str]:
        return set(self._in_flight)

    def aligned_start(self, now: Optional[float] = None) -> datetime:
        """
        Next wall-clock multiple of the interval.

        Args:
            now: Epoch seconds, defaults to current time

        Returns:
            datetime: Timezone-aware UTC start date for the trigger
        """
        now = time.time() if now is None else now
        interval = self.settings.interval
        start = math.ceil(now / interval) * interval
        return datetime.fromtimestamp(start, tz=timezone.utc)

    def is_due(self, target: TargetConfig, tick_time: float) -> bool:
        """
        Whether a target with its own step is polled on this tick.

        Targets without a step override, or with a step not longer than
        the interval, are polled every tick.
        """
        step = target.step
        interval = self.settings.interval
        if not step or step <= interval:
            return True
        return int(round(tick_time)) % step < interval

    async def tick(self, tick_time: Optional[float] = None) -> List[str]:
        """
        One scheduler firing: enumerate and submit without waiting.

        Args:
            tick_time: Epoch seconds of this tick, defaults to now

        Returns:
            List[str]: Keys of the targets submitted
        """
        tick_time = time.time() if tick_time is None else tick_time

        try:
            targets = self.enumerator.enumerate()
        except ConfigSourceError as e:
            self.logger.error(f"Skipping tick: {e}", extra={"error_type": "ConfigSourceError"})
            return []

        submitted = []
        for target in targets:
            if not self.is_due(target, tick_time):
                continue
            if self._submit(target):
                submitted.append(target.key)

        self.logger.debug(
            f"Tick submitted {len(submitted)}/{len(targets)} target(s)",
            extra=self.pool.stats().__dict__
        )
        return submitted

    def _submit(self, target: TargetConfig) -> bool:
        key = target.key
        if key in self._in_flight:
            self.logger.warning(
                f"Skipping {key}: previous run still in progress",
                extra={"target": key, "config": target.source}
            )
            return False

        self._in_flight.add(key)
        if not self.pool.submit(key, lambda: self._run_target(target)):
            self._in_flight.discard(key)
            return False
        return True

    async def _run_target(self, target: TargetConfig) -> CollectionResult:
        try:
            return await self.pipeline.run(target, self.pool.executor)
        finally:
            self._in_flight.discard(target.key)

    async def log_stats(self) -> None:
        stats = self.pool.stats()
        self.logger.debug(
            f"Cap: {stats.capacity}, Free: {stats.free}, Running: {stats.running}, "
            f"Queued: {stats.queued}, Dropped: {stats.dropped}",
            extra=stats.__dict__
        )

    async def run_once(self) -> List[CollectionResult]:
        """
        Run a single tick and wait for all of its pipelines.

        Returns:
            List[CollectionResult]: One result per submitted target
        """
        await self.tick()
        return [result for result in await self.pool.join() if result is not None]

    def start(self) -> None:
        """Start the interval jobs on the running event loop."""
        self.scheduler = AsyncIOScheduler(timezone=timezone.utc)

        start_date = self.aligned_start()
        self.scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(
                seconds=self.settings.interval,
                start_date=start_date,
                timezone=timezone.utc
            ),
            id=self.TICK_JOB_ID,
            name='MySQL Monitor Tick',
            max_instances=1,  # A tick only submits, so overlap means a stalled loop
            coalesce=True,
            misfire_grace_time=self.settings.interval
        )
        self.scheduler.add_job(
            self.log_stats,
            trigger=IntervalTrigger(seconds=self.settings.stats_interval, timezone=timezone.utc),
            id=self.STATS_JOB_ID,
            name='Worker Pool Stats',
            max_instances=1,
            coalesce=True
        )

        self.scheduler.start()
        self.logger.info(
            f"Scheduler started: every {self.settings.interval}s, first tick at {start_date.isoformat()}"
        )

    def shutdown(self) -> None:
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            self.logger.info("Scheduler stopped")
