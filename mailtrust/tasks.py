"""Background work queue for fire-and-forget jobs with bounded retries."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[Any]]

MAX_BACKOFF_SECONDS = 60.0


@dataclass
class Job:
    name: str
    factory: JobFactory
    attempts: int = 0


@dataclass
class QueueStats:
    submitted: int = 0
    completed: int = 0
    failed: int = 0
    retried: int = 0
    dropped: int = 0
    last_error: Optional[str] = field(default=None, repr=False)


class BackgroundQueue:
    """
    Bounded queue drained by a fixed pool of workers.

    A job is a zero-argument coroutine factory; it is retried when it raises,
    up to `max_attempts` times with capped exponential backoff, then dropped
    with an error log. Callers never wait on job outcomes.

    Usage:
        queue = BackgroundQueue(workers=2)
        await queue.start()
        queue.submit("classify:abc", lambda: pipeline.classify_or_raise(user, message))
        await queue.stop()
    """

    def __init__(
        self,
        workers: int = 2,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        maxsize: int = 1000,
    ):
        self.workers = max(1, int(workers))
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_seconds = max(0.0, float(backoff_seconds))
        self._queue: asyncio.Queue[Job] = asyncio.Queue(maxsize=maxsize)
        self._tasks: list[asyncio.Task] = []
        self._running = False
        self.stats = QueueStats()

    def _backoff(self, attempts: int) -> float:
        exponent = min(max(0, attempts - 1), 6)
        return min(self.backoff_seconds * (2**exponent), MAX_BACKOFF_SECONDS)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._tasks = [asyncio.create_task(self._worker(i)) for i in range(self.workers)]
        logger.info("Background queue started with %d workers", self.workers)

    def submit(self, name: str, factory: JobFactory) -> bool:
        """Enqueue a job; False when the queue is full."""
        try:
            self._queue.put_nowait(Job(name=name, factory=factory))
        except asyncio.QueueFull:
            self.stats.dropped += 1
            logger.warning("Background queue full, dropping job %s", name)
            return False
        self.stats.submitted += 1
        return True

    async def join(self) -> None:
        """Wait until every submitted job has finished or been dropped."""
        await self._queue.join()

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Background queue stopped")

    async def _run(self, job: Job) -> None:
        while True:
            job.attempts += 1
            try:
                await job.factory()
            except Exception as exc:
                self.stats.last_error = str(exc)
                if job.attempts >= self.max_attempts:
                    self.stats.failed += 1
                    logger.error("Job %s failed after %d attempts: %s", job.name, job.attempts, exc)
                    return
                delay = self._backoff(job.attempts)
                self.stats.retried += 1
                logger.warning(
                    "Job %s failed (attempt %d/%d), retrying in %.1fs: %s",
                    job.name,
                    job.attempts,
                    self.max_attempts,
                    delay,
                    exc,
                )
                await asyncio.sleep(delay)
                continue
            self.stats.completed += 1
            return

    async def _worker(self, index: int) -> None:
        logger.debug("Background worker %d started", index)
        while self._running:
            try:
                job = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            try:
                await self._run(job)
            finally:
                self._queue.task_done()
