"""In-process worker pool.

Runs the same Processor the Celery worker runs, against a MemoryBroker. Used
for local runs (``python -m trivia.scheduler --local``) and in tests.
"""
from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import structlog

from trivia.tasks.broker import MemoryBroker
from trivia.tasks.processor import ProcessResult, Processor
from trivia.tasks.retry import AttemptOutcome, RetryDelayFunc, linear_backoff
from trivia.tasks.types import Task

log = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkerPool:
    def __init__(
        self,
        broker: MemoryBroker,
        processor: Processor,
        *,
        concurrency: int = 10,
        retry_delay: RetryDelayFunc | None = None,
        poll_interval: float = 0.05,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._broker = broker
        self._processor = processor
        self._concurrency = concurrency
        self._retry_delay = retry_delay or linear_backoff()
        self._poll_interval = poll_interval
        self._clock = clock

        self._workers: list[asyncio.Task] = []
        self._in_flight: dict[str, Task] = {}
        self._stopping = asyncio.Event()
        self.outcomes: Counter[AttemptOutcome] = Counter()
        self.max_in_flight = 0

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def running(self) -> bool:
        return bool(self._workers) and not self._stopping.is_set()

    def start(self) -> None:
        """Spawn the workers on the running event loop and return immediately."""

        if self._workers:
            raise RuntimeError("worker pool already started")
        # a pool that was shut down may be started again
        self._stopping.clear()
        self._workers = [
            asyncio.create_task(self._run(n), name=f"worker-{n}") for n in range(self._concurrency)
        ]
        log.info("worker pool started", concurrency=self._concurrency)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait until the broker has nothing pending and no attempt is running."""

        async def _wait() -> None:
            while self._broker.pending() or self._in_flight:
                await asyncio.sleep(self._poll_interval)

        await asyncio.wait_for(_wait(), timeout=timeout)

    async def shutdown(self, grace: float = 8.0) -> None:
        """Stop fetching, give in-flight attempts `grace` seconds, then cancel them.

        Cancelled attempts are put back on the broker without consuming a retry.
        """

        if not self._workers:
            return
        self._stopping.set()
        log.info("worker pool shutting down", in_flight=self.in_flight, grace=grace)

        _, pending = await asyncio.wait(self._workers, timeout=grace)
        for w in pending:
            w.cancel()
        if pending:
            log.warning("force-stopping workers", count=len(pending))
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        log.info("worker pool stopped")

    async def _run(self, n: int) -> None:
        while not self._stopping.is_set():
            task = self._broker.fetch()
            if task is None:
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=self._poll_interval)
                except asyncio.TimeoutError:
                    pass
                continue

            self._in_flight[task.id] = task
            self.max_in_flight = max(self.max_in_flight, len(self._in_flight))
            try:
                result = await self._processor.process(task)
            except asyncio.CancelledError:
                self._broker.requeue(task)
                raise
            finally:
                self._in_flight.pop(task.id, None)

            self._settle(task, result)

    def _settle(self, task: Task, result: ProcessResult) -> None:
        self.outcomes[result.outcome] += 1

        if result.outcome is AttemptOutcome.SUCCESS:
            self._broker.complete(task)
        elif result.outcome is AttemptOutcome.RETRY:
            delay = self._retry_delay(task.retried + 1, result.error, task)
            eta = self._clock() + max(delay, timedelta(0))
            self._broker.retry(task, eta=eta)
        else:
            self._broker.archive(task, str(result.error))
