"""Cron process: ``python -m trivia.scheduler``.

By default jobs enqueue into Redis for the Celery workers. ``--local`` runs an
in-memory broker and an in-process worker pool instead, which is handy for
development without Redis.
"""
from __future__ import annotations

import argparse
import asyncio
import signal
from zoneinfo import ZoneInfo

import structlog

from trivia.config import settings
from trivia.database import create_all
from trivia.infrastructure import build_infrastructure
from trivia.logging_setup import configure_logging
from trivia.scheduler.jobs import default_jobs
from trivia.scheduler.scheduler import Scheduler
from trivia.tasks.broker import CeleryBroker, MemoryBroker
from trivia.tasks.retry import retry_delay_from_settings
from trivia.tasks.worker import WorkerPool

logger = structlog.get_logger("trivia.scheduler")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="python -m trivia.scheduler")
    parser.add_argument("--local", action="store_true", help="run an in-process broker and worker pool")
    parser.add_argument("--create-tables", action="store_true", help="create missing tables before starting")
    parser.add_argument("--log-level", default=settings.log_level)
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> None:
    if args.local:
        broker = MemoryBroker(weights=settings.queue_weights)
    else:
        from trivia.worker.celery_app import celery_app

        broker = CeleryBroker(celery_app)

    infra = build_infrastructure(broker)
    if args.create_tables:
        await create_all(infra.engine)

    pool: WorkerPool | None = None
    if isinstance(broker, MemoryBroker):
        pool = WorkerPool(
            broker,
            infra.processor,
            concurrency=settings.worker_concurrency,
            retry_delay=retry_delay_from_settings(settings),
        )
        pool.start()

    scheduler = Scheduler(infra.client, default_jobs(infra), tz=ZoneInfo(settings.scheduler_timezone))
    handle = scheduler.start()

    logger.info("cron service started", environment=settings.environment, local=args.local)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle.stop)

    try:
        await handle.join()
    finally:
        logger.info("cron service shutting down")
        if pool is not None:
            await pool.shutdown(grace=settings.shutdown_grace_seconds)
        await infra.aclose()
        logger.info("cron service stopped")


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    configure_logging(args.log_level)
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
