"""Integration tests for the dedup work queue and the resync producer."""

from __future__ import annotations

import asyncio
from collections import Counter

import pytest

from ncp_operator.dispatcher import DispatchResult
from ncp_operator.errors import ErrorKind, ReconcileError
from ncp_operator.resources import ResourceKey
from ncp_operator.workqueue import WorkQueue, run_resync

KEY = ResourceKey("nsx-system", "nsx-node-agent")
OTHER = ResourceKey("nsx-system", "nsx-ncp")


class RecordingHandler:
    """Counts calls per key and tracks per-key concurrency."""

    def __init__(self, result: DispatchResult | None = None, gate: asyncio.Event | None = None):
        self.result = result or DispatchResult()
        self.gate = gate
        self.calls: Counter = Counter()
        self.active: Counter = Counter()
        self.max_active: Counter = Counter()
        self.started = asyncio.Event()

    async def __call__(self, key):
        self.calls[key] += 1
        self.active[key] += 1
        self.max_active[key] = max(self.max_active[key], self.active[key])
        self.started.set()
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            return self.result
        finally:
            self.active[key] -= 1


@pytest.fixture
async def make_queue():
    queues: list[WorkQueue] = []

    async def _make(handler, **kwargs) -> WorkQueue:
        queue = WorkQueue(handler, **kwargs)
        await queue.start()
        queues.append(queue)
        return queue

    yield _make
    for queue in queues:
        await queue.stop()


class TestDedup:
    async def test_queued_key_is_processed_once(self, make_queue) -> None:
        handler = RecordingHandler()
        queue = await make_queue(handler, workers=2)

        queue.add(KEY)
        queue.add(KEY)
        queue.add(KEY)
        queue.add(OTHER)
        assert len(queue) == 2
        await queue.join()

        assert handler.calls == {KEY: 1, OTHER: 1}

    async def test_add_during_processing_runs_once_more(self, make_queue) -> None:
        gate = asyncio.Event()
        handler = RecordingHandler(gate=gate)
        queue = await make_queue(handler, workers=2)

        queue.add(KEY)
        await handler.started.wait()
        queue.add(KEY)
        queue.add(KEY)
        gate.set()
        await queue.join()

        assert handler.calls[KEY] == 2

    async def test_key_never_processed_concurrently(self, make_queue) -> None:
        gate = asyncio.Event()
        handler = RecordingHandler(gate=gate)
        queue = await make_queue(handler, workers=4)

        queue.add(KEY)
        await handler.started.wait()
        for _ in range(10):
            queue.add(KEY)
            await asyncio.sleep(0)
        gate.set()
        await queue.join()

        assert handler.max_active[KEY] == 1

    async def test_add_before_start_is_ignored(self) -> None:
        queue = WorkQueue(RecordingHandler())
        queue.add(KEY)
        assert len(queue) == 0


class TestBackoff:
    def test_exponential_and_capped(self) -> None:
        queue = WorkQueue(RecordingHandler(), base_delay=0.005, max_delay=1000.0)
        assert queue.backoff(0) == 0.005
        assert queue.backoff(1) == 0.01
        assert queue.backoff(4) == 0.08
        assert queue.backoff(30) == 1000.0

    async def test_failures_grow_and_forget_resets(self, make_queue) -> None:
        queue = await make_queue(RecordingHandler(), base_delay=10.0)

        queue.add_rate_limited(KEY)
        queue.add_rate_limited(KEY)
        assert queue.failures(KEY) == 2
        assert queue.scheduled(KEY)

        queue.forget(KEY)
        assert queue.failures(KEY) == 0

    async def test_error_result_is_rate_limited(self, make_queue) -> None:
        err = ReconcileError(ErrorKind.APPLY_ERROR, "boom")
        handler = RecordingHandler(result=DispatchResult(requeue=True, error=err))
        queue = await make_queue(handler, base_delay=10.0)

        queue.add(KEY)
        await queue.join()

        assert queue.failures(KEY) == 1
        assert queue.scheduled(KEY)

    async def test_handler_exception_is_rate_limited(self, make_queue) -> None:
        async def explode(key):
            raise RuntimeError("unexpected")

        queue = await make_queue(explode, base_delay=10.0)

        queue.add(KEY)
        await queue.join()

        assert queue.failures(KEY) == 1
        assert queue.scheduled(KEY)

    async def test_failed_key_is_retried(self, make_queue) -> None:
        err = ReconcileError(ErrorKind.LOOKUP_ERROR, "transient")
        handler = RecordingHandler(result=DispatchResult(requeue=True, error=err))
        queue = await make_queue(handler, base_delay=0.001)

        queue.add(KEY)
        for _ in range(100):
            if handler.calls[KEY] >= 3:
                break
            await asyncio.sleep(0.01)

        assert handler.calls[KEY] >= 3


class TestRequeueAfter:
    async def test_requeue_after_schedules_and_forgets(self, make_queue) -> None:
        handler = RecordingHandler(result=DispatchResult(requeue_after=60.0))
        queue = await make_queue(handler, base_delay=10.0)
        queue.add_rate_limited(KEY)
        assert queue.failures(KEY) == 1

        queue.add(KEY)
        await queue.join()

        assert queue.failures(KEY) == 0
        assert queue.scheduled(KEY)

    async def test_success_without_requeue_is_not_scheduled(self, make_queue) -> None:
        queue = await make_queue(RecordingHandler(result=DispatchResult()))

        queue.add(KEY)
        await queue.join()

        assert not queue.scheduled(KEY)

    async def test_add_after_keeps_earliest_deadline(self, make_queue) -> None:
        handler = RecordingHandler()
        queue = await make_queue(handler)

        queue.add_after(KEY, 60.0)
        queue.add_after(KEY, 0.01)
        queue.add_after(KEY, 30.0)
        await asyncio.sleep(0.05)
        await queue.join()

        assert handler.calls[KEY] == 1
        assert not queue.scheduled(KEY)

    async def test_non_positive_delay_adds_immediately(self, make_queue) -> None:
        queue = await make_queue(RecordingHandler())

        queue.add_after(KEY, 0)

        assert len(queue) == 1
        assert not queue.scheduled(KEY)


class TestResync:
    async def test_resync_enqueues_every_key_periodically(self, make_queue) -> None:
        handler = RecordingHandler()
        queue = await make_queue(handler)

        task = asyncio.create_task(run_resync(queue, [KEY, OTHER], period=0.02))
        await asyncio.sleep(0.09)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        await queue.join()

        assert handler.calls[KEY] >= 2
        assert handler.calls[OTHER] >= 2
