"""Bounded background work queue.

Journal appends and relevance indexing run off the agent's critical path.
Instead of fire-and-forget tasks whose errors vanish, work goes through a
bounded asyncio.Queue drained by a fixed pool of workers. Callers see
backpressure (``pending`` / ``saturated``) and rejections
(BackgroundQueueFull); failures are counted and logged rather than lost.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from roomagent.errors import BackgroundQueueFull
from roomagent.logging import get_logger

log = get_logger("background")

JobFactory = Callable[[], Awaitable[object]]


@dataclass
class _Job:
    name: str
    factory: JobFactory


class BackgroundQueue:
    """Fixed-size worker pool over a bounded queue.

    Workers start lazily on the first submission made from inside a running
    event loop, so the queue can be built before the loop exists.
    """

    def __init__(self, max_pending: int = 256, workers: int = 2) -> None:
        """Initialize the queue.

        Args:
            max_pending: Queue capacity. Submissions beyond it are rejected.
            workers: Number of concurrent worker tasks.
        """
        if max_pending < 1 or workers < 1:
            raise ValueError("max_pending and workers must be positive")
        self._max_pending = max_pending
        self._worker_count = workers
        self._queue: asyncio.Queue[_Job] | None = None
        self._workers: list[asyncio.Task[None]] = []
        self.completed = 0
        self.failed = 0
        self.rejected = 0
        self.last_error: BaseException | None = None

    # -------------------------------------------------------------------------
    # Signals
    # -------------------------------------------------------------------------

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    @property
    def saturated(self) -> bool:
        """True when the next non-blocking submission would be rejected."""
        return self.pending >= self._max_pending

    @property
    def running(self) -> bool:
        return bool(self._workers)

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    def submit(self, factory: JobFactory, name: str = "job") -> None:
        """Queue a job without waiting.

        Raises:
            BackgroundQueueFull: The queue is at capacity.
        """
        queue = self._ensure_started()
        try:
            queue.put_nowait(_Job(name, factory))
        except asyncio.QueueFull:
            self.rejected += 1
            log.warning("Background queue full (%d pending), rejected %s", self.pending, name)
            raise BackgroundQueueFull(f"background queue full, rejected {name}") from None

    async def submit_wait(self, factory: JobFactory, name: str = "job") -> None:
        """Queue a job, waiting for room when the queue is full."""
        queue = self._ensure_started()
        await queue.put(_Job(name, factory))

    async def join(self) -> None:
        """Wait until everything submitted so far has been processed."""
        if self._queue is not None:
            await self._queue.join()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the workers. Must be called from within an async context."""
        self._ensure_started()

    async def stop(self, drain: bool = True) -> None:
        """Stop the workers.

        Args:
            drain: Process everything already queued before stopping.
        """
        if drain:
            await self.join()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        log.debug("Background queue stopped (completed=%d failed=%d)", self.completed, self.failed)

    async def __aenter__(self) -> BackgroundQueue:
        self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.stop()

    def _ensure_started(self) -> asyncio.Queue[_Job]:
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self._max_pending)
        queue = self._queue
        if not self._workers:
            self._workers = [
                asyncio.create_task(self._worker(queue), name=f"roomagent-background-{i}")
                for i in range(self._worker_count)
            ]
        return queue

    async def _worker(self, queue: asyncio.Queue[_Job]) -> None:
        while True:
            job = await queue.get()
            try:
                await job.factory()
                self.completed += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failed += 1
                self.last_error = e
                log.error("Background job %s failed: %s", job.name, e, exc_info=True)
            finally:
                queue.task_done()
