"""
Dedup-by-key work queue feeding the reconciliation dispatcher.

Semantics follow the controller-runtime work queue:
  - a key is queued at most once; re-adding a queued key is a no-op
  - a key is processed by at most one worker at a time; adding it while it
    is being processed marks it dirty and it runs once more afterwards
  - failures back off exponentially per key until forgotten

All methods must be called from the event loop thread.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Hashable, Iterable, Optional, TypeVar

from ncp_operator import config
from ncp_operator.dispatcher import DispatchResult

logger = logging.getLogger("ncp-operator.workqueue")

K = TypeVar("K", bound=Hashable)

DEFAULT_BASE_DELAY = 0.005
DEFAULT_MAX_DELAY = 1000.0


class WorkQueue(Generic[K]):
    def __init__(
        self,
        handler: Callable[[K], Awaitable[DispatchResult]],
        workers: int = config.WORKERS,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
    ):
        self._handler = handler
        self._workers_count = max(1, workers)
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._queue: Optional[asyncio.Queue] = None
        self._queued: set[K] = set()
        self._processing: set[K] = set()
        self._dirty: set[K] = set()
        self._failures: dict[K, int] = {}
        self._timers: dict[K, tuple[float, asyncio.TimerHandle]] = {}
        self._workers: list[asyncio.Task] = []
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        if self._running:
            return
        self._queue = asyncio.Queue()
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker(), name=f"ncp-worker-{i}")
            for i in range(self._workers_count)
        ]
        logger.info(f"Work queue started with {self._workers_count} workers")

    async def stop(self):
        self._running = False
        for _, handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        for task in self._workers:
            task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Work queue stopped")

    async def join(self):
        """Wait until every queued key has been processed (timers excluded)."""
        if self._queue is None:
            return
        # Dirty keys are re-added after task_done, so a single join can return early
        while self._queued or self._processing:
            await self._queue.join()

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def add(self, key: K):
        if not self._running:
            return
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.put_nowait(key)

    def add_after(self, key: K, delay: float):
        if not self._running:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        deadline = loop.time() + delay
        pending = self._timers.get(key)
        if pending is not None:
            if pending[0] <= deadline:
                return
            pending[1].cancel()
        handle = loop.call_at(deadline, self._fire, key)
        self._timers[key] = (deadline, handle)

    def add_rate_limited(self, key: K):
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        self.add_after(key, self.backoff(failures))

    def forget(self, key: K):
        self._failures.pop(key, None)

    def backoff(self, failures: int) -> float:
        return min(self._base_delay * (2 ** failures), self._max_delay)

    def failures(self, key: K) -> int:
        return self._failures.get(key, 0)

    def scheduled(self, key: K) -> bool:
        return key in self._timers

    def __len__(self) -> int:
        return len(self._queued)

    def _fire(self, key: K):
        self._timers.pop(key, None)
        self.add(key)

    # ------------------------------------------------------------------
    # Consumer
    # ------------------------------------------------------------------

    async def _worker(self):
        while True:
            key = await self._queue.get()
            self._queued.discard(key)
            self._processing.add(key)
            result: Optional[DispatchResult] = None
            try:
                result = await self._handler(key)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Unhandled error reconciling {key}: {e}")
            finally:
                self._processing.discard(key)
                self._queue.task_done()
            self._requeue(key, result)
            if key in self._dirty:
                self._dirty.discard(key)
                self.add(key)

    def _requeue(self, key: K, result: Optional[DispatchResult]):
        if result is None:
            self.add_rate_limited(key)
        elif result.requeue_after is not None:
            self.forget(key)
            self.add_after(key, result.requeue_after)
        elif result.requeue:
            self.add_rate_limited(key)
        else:
            self.forget(key)


async def run_resync(queue: WorkQueue, keys: Iterable, period: float = config.RESYNC_PERIOD):
    """Enqueue every key now and then every `period` seconds, independent of watch events."""
    keys = list(keys)
    while True:
        for key in keys:
            queue.add(key)
        await asyncio.sleep(period)
