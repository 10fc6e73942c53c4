from __future__ import annotations

import heapq
import itertools
import random
import threading
from collections import deque
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Deque, Optional, Protocol

import structlog
from kombu.exceptions import OperationalError

from trivia.tasks.errors import EnqueueError
from trivia.tasks.types import DEFAULT_QUEUE_WEIGHTS, QueueName, Task

logger = structlog.get_logger(__name__)

# Hard kill margin on top of the task timeout. The processor enforces the
# timeout itself; the Celery time limit only reaps handlers that ignore it.
HARD_TIME_LIMIT_MARGIN = timedelta(seconds=30)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Broker(Protocol):
    """Where the client puts tasks."""

    def publish(self, task: Task, *, eta: datetime | None = None) -> None:
        ...

    def ping(self) -> bool:
        ...


class CeleryBroker:
    """Publishes tasks to the Celery/Redis broker.

    The message body carries the payload JSON as its only positional argument
    and the delivery policy as keyword arguments; see trivia.worker.tasks for
    the receiving side.
    """

    def __init__(self, celery_app) -> None:
        self._app = celery_app

    def publish(self, task: Task, *, eta: datetime | None = None) -> None:
        options: dict = {
            "task_id": task.id,
            "queue": task.queue.value,
            "time_limit": (task.timeout + HARD_TIME_LIMIT_MARGIN).total_seconds(),
        }
        if eta is not None:
            options["eta"] = eta

        try:
            self._app.send_task(
                task.type,
                args=[task.payload.decode("utf-8")],
                kwargs={
                    "max_retry": task.max_retry,
                    "timeout": task.timeout.total_seconds(),
                    "created_at": task.created_at.isoformat(),
                },
                **options,
            )
        except (OperationalError, ConnectionError, OSError) as e:
            raise EnqueueError(f"broker unavailable: {e}") from e

    def ping(self) -> bool:
        try:
            with self._app.connection_for_write() as conn:
                conn.ensure_connection(max_retries=1)
            return True
        except (OperationalError, ConnectionError, OSError):
            logger.warning("broker ping failed", exc_info=True)
            return False


class MemoryBroker:
    """A thread-safe in-process broker.

    Used by the local WorkerPool and by tests. Mirrors the broker behaviour the
    pipeline relies on: FIFO per queue, weighted selection across queues,
    delayed (eta) tasks, retry re-insertion, a dead-letter list, and one
    terminal success report per completed task.
    """

    def __init__(
        self,
        *,
        weights: Mapping[str, int] | None = None,
        clock: Callable[[], datetime] = _utcnow,
        rng: random.Random | None = None,
    ) -> None:
        self._weights = {QueueName(k): int(v) for k, v in (weights or DEFAULT_QUEUE_WEIGHTS).items()}
        self._clock = clock
        self._rng = rng or random.Random()
        self._ready: dict[QueueName, Deque[Task]] = {q: deque() for q in QueueName}
        self._scheduled: list[tuple[datetime, int, Task]] = []
        self._seq = itertools.count()
        self._lock = threading.Lock()

        self.online = True
        self.completed: list[str] = []
        self.archived: list[tuple[Task, str]] = []

    # -- Broker protocol --

    def publish(self, task: Task, *, eta: datetime | None = None) -> None:
        if not self.online:
            raise EnqueueError("broker unavailable")
        with self._lock:
            if eta is not None and eta > self._clock():
                heapq.heappush(self._scheduled, (eta, next(self._seq), task))
            else:
                self._ready[task.queue].append(task)

    def ping(self) -> bool:
        return self.online

    # -- consumer side --

    def fetch(self) -> Optional[Task]:
        """Pop the next ready task, or None if nothing is due."""

        with self._lock:
            self._promote_due()
            candidates = [q for q, items in self._ready.items() if items and self._weights.get(q, 0) > 0]
            if not candidates:
                return None
            if len(candidates) == 1:
                queue = candidates[0]
            else:
                queue = self._rng.choices(candidates, weights=[self._weights[q] for q in candidates])[0]
            return self._ready[queue].popleft()

    def retry(self, task: Task, *, eta: datetime | None = None) -> None:
        with self._lock:
            retried = task.next_attempt()
            if eta is not None and eta > self._clock():
                heapq.heappush(self._scheduled, (eta, next(self._seq), retried))
            else:
                self._ready[retried.queue].append(retried)

    def requeue(self, task: Task) -> None:
        """Put back a task whose attempt was interrupted (not counted as a retry)."""

        with self._lock:
            self._ready[task.queue].appendleft(task)

    def complete(self, task: Task) -> None:
        with self._lock:
            self.completed.append(task.id)

    def archive(self, task: Task, reason: str) -> None:
        with self._lock:
            self.archived.append((task, reason))

    def pending(self) -> int:
        with self._lock:
            return sum(len(q) for q in self._ready.values()) + len(self._scheduled)

    def next_eta(self) -> datetime | None:
        with self._lock:
            return self._scheduled[0][0] if self._scheduled else None

    def _promote_due(self) -> None:
        now = self._clock()
        while self._scheduled and self._scheduled[0][0] <= now:
            _, _, task = heapq.heappop(self._scheduled)
            self._ready[task.queue].append(task)
