"""Bounded-concurrency pool for collector pipelines."""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Set


@dataclass(frozen=True)
class PoolStats:
    """Point-in-time view of pool occupancy."""

    capacity: int
    free: int
    running: int
    queued: int
    dropped: int


class WorkerPool:
    """
    Runs at most `capacity` jobs at once on the event loop.

    Each job is an async callable; its blocking work goes to the pool's own
    thread executor, sized to the same capacity. Submissions beyond
    capacity wait in a queue of `queue_size`; with the "drop" overflow
    policy anything beyond that is rejected and logged, so a backlog of
    slow targets never grows without bound.
    """

    def __init__(
        self,
        capacity: int,
        logger: logging.Logger,
        queue_size: int = 0,
        overflow: str = "drop"
    ):
        """
        Initialize worker pool.

        Args:
            capacity: Maximum concurrently running jobs
            logger: Logger instance
            queue_size: Waiting jobs allowed before dropping (0 = capacity)
            overflow: "drop" to reject beyond the queue, "queue" to always wait
        """
        if capacity < 1:
            raise ValueError("Worker pool capacity must be at least 1")
        if overflow not in ("drop", "queue"):
            raise ValueError(f"Unknown overflow policy: {overflow}")

        self.capacity = capacity
        self.queue_size = queue_size or capacity
        self.overflow = overflow
        self.logger = logger.getChild(self.__class__.__name__)
        self.executor = ThreadPoolExecutor(max_workers=capacity, thread_name_prefix="mymon-worker")

        self._semaphore = asyncio.Semaphore(capacity)
        self._running = 0
        self._queued = 0
        self._dropped = 0
        self._tasks: Set[asyncio.Task] = set()

    def submit(self, key: str, job: Callable[[], Awaitable[Any]]) -> bool:
        """
        Schedule a job without waiting for it.

        Args:
            key: Target key, used for logging
            job: Zero-argument async callable

        Returns:
            bool: False if the job was dropped because the queue is full
        """
        pending = self._queued + self._running
        if self.overflow == "drop" and pending >= self.capacity + self.queue_size:
            self._dropped += 1
            self.logger.warning(
                f"Pool full, dropping job for {key}",
                extra={"target": key, **self.stats().__dict__}
            )
            return False

        self._queued += 1
        task = asyncio.get_running_loop().create_task(self._run(key, job), name=f"pipeline:{key}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _run(self, key: str, job: Callable[[], Awaitable[Any]]) -> Any:
        try:
            await self._semaphore.acquire()
        finally:
            self._queued -= 1

        self._running += 1
        try:
            return await job()
        except Exception as e:
            # Target-scoped: never let one job take the scheduler down
            self.logger.error(
                f"Job for {key} failed: {e}",
                exc_info=True,
                extra={"target": key, "error_type": type(e).__name__}
            )
            return None
        finally:
            self._running -= 1
            self._semaphore.release()

    def stats(self) -> PoolStats:
        return PoolStats(
            capacity=self.capacity,
            free=self.capacity - self._running,
            running=self._running,
            queued=self._queued,
            dropped=self._dropped,
        )

    async def join(self) -> List[Any]:
        """
        Wait for every job submitted so far.

        Returns:
            List of job return values (None for jobs that raised)
        """
        tasks = list(self._tasks)
        if not tasks:
            return []
        return list(await asyncio.gather(*tasks))

    def shutdown(self, wait: bool = False) -> None:
        for task in list(self._tasks):
            task.cancel()
        self.executor.shutdown(wait=wait, cancel_futures=True)
