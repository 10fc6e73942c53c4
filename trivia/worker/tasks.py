"""Celery side of the pipeline.

One Celery task is registered per task type, named after the type. The
message carries the payload JSON as its only positional argument and the
delivery policy as keyword arguments (see CeleryBroker.publish). Each
delivery is turned back into a Task and run through the shared Processor.

Start a worker with::

    celery -A trivia.worker.celery_app worker -Q critical,default,low
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import structlog

from trivia.config import settings
from trivia.infrastructure import Infrastructure, build_infrastructure
from trivia.tasks.broker import CeleryBroker
from trivia.tasks.processor import ProcessResult, Processor
from trivia.tasks.retry import AttemptOutcome, retry_delay_from_settings
from trivia.tasks.types import TASK_TYPES, QueueName, Task, parse_queue
from trivia.worker.celery_app import celery_app

logger = structlog.get_logger(__name__)

_infra: Infrastructure | None = None
_retry_delay = retry_delay_from_settings(settings)


def get_infrastructure() -> Infrastructure:
    global _infra
    if _infra is None:
        # Every delivery runs in a fresh event loop; pooled connections would
        # outlive the loop they were opened on.
        _infra = build_infrastructure(CeleryBroker(celery_app), pooled=False)
    return _infra


def task_from_request(
    request,
    task_type: str,
    payload: str,
    *,
    max_retry: int,
    timeout: float,
    created_at: str | None,
) -> Task:
    """Rebuild the Task for one Celery delivery."""

    routing_key = (getattr(request, "delivery_info", None) or {}).get("routing_key")
    try:
        queue = parse_queue(routing_key or QueueName.DEFAULT.value)
    except ValueError:
        queue = QueueName.DEFAULT

    created = datetime.fromisoformat(created_at) if created_at else datetime.now(timezone.utc)
    return Task(
        type=task_type,
        payload=payload.encode("utf-8"),
        queue=queue,
        max_retry=max_retry,
        timeout=timedelta(seconds=timeout),
        id=request.id,
        created_at=created,
        retried=request.retries or 0,
    )


def run_attempt(processor: Processor, task: Task) -> ProcessResult:
    return asyncio.run(processor.process(task))


def _execute(self, task_type: str, payload: str, max_retry: int, timeout: float, created_at: str | None) -> str:
    task = task_from_request(
        self.request,
        task_type,
        payload,
        max_retry=max_retry,
        timeout=timeout,
        created_at=created_at,
    )
    result = run_attempt(get_infrastructure().processor, task)

    if result.outcome is AttemptOutcome.RETRY:
        delay = _retry_delay(task.retried + 1, result.error, task)
        logger.info("celery retry scheduled", task_id=task.id, type=task.type, countdown=delay.total_seconds())
        raise self.retry(
            exc=result.error,
            countdown=delay.total_seconds(),
            max_retries=max_retry,
        )

    # Terminal failures were logged by the processor; ack them so the broker
    # stops redelivering.
    return result.outcome.value


def _register(task_type: str):
    @celery_app.task(name=task_type, bind=True)
    def run(
        self,
        payload: str,
        max_retry: int = 3,
        timeout: float = settings.default_task_timeout_seconds,
        created_at: str | None = None,
    ) -> str:
        return _execute(self, task_type, payload, max_retry, timeout, created_at)

    return run


registered = {task_type: _register(task_type) for task_type in TASK_TYPES}
