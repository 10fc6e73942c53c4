from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from pydantic import BaseModel

from trivia.tasks.errors import (
    PayloadError,
    PermanentTaskError,
    TransientTaskError,
    UnknownTaskTypeError,
)
from trivia.tasks.payloads import decode_payload, payload_model_for
from trivia.tasks.retry import AttemptOutcome, resolve_attempt
from trivia.tasks.types import Task

log = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TaskContext:
    """Execution context handed to a handler for one attempt."""

    task_id: str
    task_type: str
    attempt: int
    max_retry: int
    deadline: datetime
    clock: Callable[[], datetime] = _utcnow

    def remaining(self) -> timedelta:
        return max(self.deadline - self.clock(), timedelta(0))

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt > self.max_retry


Handler = Callable[[TaskContext, Any], Awaitable[None]]


@dataclass(frozen=True)
class ProcessResult:
    outcome: AttemptOutcome
    error: BaseException | None = None


class Processor:
    """Routes delivered tasks to the handler registered for their type.

    Handlers are coroutines ``handler(ctx, payload)``. They must be safe to run
    more than once for the same payload: delivery is at-least-once.
    """

    def __init__(
        self,
        handlers: Mapping[str, Handler] | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._handlers: dict[str, Handler] = {}
        self._clock = clock
        for task_type, handler in (handlers or {}).items():
            self.register(task_type, handler)

    def register(self, task_type: str, handler: Handler) -> None:
        payload_model_for(task_type)  # unknown types are rejected up front
        self._handlers[task_type] = handler

    @property
    def task_types(self) -> list[str]:
        return sorted(self._handlers)

    async def dispatch(self, task: Task) -> None:
        """Run one attempt of `task`.

        Raises PermanentTaskError when the task can never succeed (unknown type,
        malformed payload, handler said so) and TransientTaskError for every
        other failure, including a handler exceeding the task timeout.
        """

        handler = self._handlers.get(task.type)
        if handler is None:
            raise UnknownTaskTypeError(task.type)

        try:
            payload: BaseModel = decode_payload(task.type, task.payload)
        except PayloadError:
            log.error("failed to decode payload", task_id=task.id, type=task.type)
            raise

        timeout = task.timeout.total_seconds()
        ctx = TaskContext(
            task_id=task.id,
            task_type=task.type,
            attempt=task.attempt,
            max_retry=task.max_retry,
            deadline=self._clock() + task.timeout,
            clock=self._clock,
        )

        try:
            await asyncio.wait_for(handler(ctx, payload), timeout=timeout)
        except (PermanentTaskError, TransientTaskError):
            raise
        except asyncio.TimeoutError as e:
            raise TransientTaskError(f"{task.type} exceeded timeout of {timeout:g}s") from e
        except Exception as e:
            # A crashing handler costs one attempt, never the worker.
            raise TransientTaskError(f"{task.type} handler failed: {e!r}") from e

    async def process(self, task: Task) -> ProcessResult:
        """Dispatch `task` and classify the attempt."""

        error: BaseException | None = None
        try:
            await self.dispatch(task)
        except (PermanentTaskError, TransientTaskError) as e:
            error = e

        outcome = resolve_attempt(task, error)
        fields = {
            "task_id": task.id,
            "type": task.type,
            "queue": task.queue.value,
            "attempt": task.attempt,
            "max_retry": task.max_retry,
        }

        if outcome is AttemptOutcome.SUCCESS:
            log.info("task processed", **fields)
        elif outcome is AttemptOutcome.RETRY:
            log.warning("task failed, will retry", error=error, **fields)
        elif outcome is AttemptOutcome.DISCARDED:
            log.error("task failed permanently, discarding", error=error, **fields)
        else:
            log.error("task retries exhausted, dead-lettered", error=error, **fields)

        return ProcessResult(outcome=outcome, error=error)
