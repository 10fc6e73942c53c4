from __future__ import annotations

from celery import Celery
from celery.signals import setup_logging
from kombu import Queue

from trivia.config import settings
from trivia.logging_setup import configure_logging
from trivia.tasks.types import QueueName


def make_celery() -> Celery:
    """Create the Celery app.

    Kept in a function so tests can build an app without touching the
    module-level one.
    """

    celery = Celery(
        "trivia",
        broker=settings.redis_url,
        backend=settings.redis_url,
        include=["trivia.worker.tasks"],
    )

    celery.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
        task_ignore_result=True,
        # At-least-once: ack after the handler ran, redeliver if the worker dies.
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        worker_concurrency=settings.worker_concurrency,
        task_queues=[Queue(q.value, routing_key=q.value) for q in QueueName],
        task_default_queue=QueueName.DEFAULT.value,
        # Redis has no weighted consumption; drain critical, then default, then low.
        broker_transport_options={"queue_order_strategy": "priority"},
    )

    return celery


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    configure_logging(settings.log_level)


celery_app = make_celery()
