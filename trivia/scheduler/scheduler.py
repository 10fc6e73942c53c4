from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo

import structlog
from structlog.typing import BindableLogger

from trivia.scheduler.triggers import Trigger
from trivia.tasks.client import TaskClient

log = structlog.get_logger(__name__)


def _utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc)


def seconds_until(fire_at: datetime, now: datetime) -> float:
    """Real seconds from `now` to `fire_at`, never negative.

    Both are converted to UTC first: aware datetimes sharing one tzinfo
    subtract as wall-clock times, which is an hour off across a DST change.
    """

    return max((_utc(fire_at) - _utc(now)).total_seconds(), 0.0)


@dataclass(frozen=True)
class JobContext:
    """What a job action gets to work with on one firing."""

    client: TaskClient
    now: datetime
    log: BindableLogger


JobAction = Callable[[JobContext], Awaitable[None]]


@dataclass(frozen=True)
class ScheduledJob:
    name: str
    trigger: Trigger
    action: JobAction


class SchedulerHandle:
    """Controls a started scheduler.

    stop() asks every job to exit at its next wake point and may be called any
    number of times; join() waits until all of them have.
    """

    def __init__(self, tasks: list[asyncio.Task], stop_event: asyncio.Event) -> None:
        self._tasks = tasks
        self._stop_event = stop_event
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._stop_event.set()
        log.info("scheduler stop requested", jobs=len(self._tasks))

    async def join(self, timeout: float | None = None) -> None:
        """Wait for every job to exit.

        Raises TimeoutError if some are still running after `timeout`; those
        keep running and a later join() can wait for them again.
        """

        if not self._tasks:
            return
        _, pending = await asyncio.wait(self._tasks, timeout=timeout)
        if pending:
            raise TimeoutError(f"{len(pending)} scheduler job(s) still running")
        for task in self._tasks:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()


class Scheduler:
    """Runs each registered job as its own asyncio task.

    A job sleeps until its trigger's next fire time, runs its action, and
    re-arms from the time the action finished. A failing action is logged and
    the job simply waits for its next firing; other jobs are unaffected.
    """

    def __init__(
        self,
        client: TaskClient,
        jobs: Iterable[ScheduledJob] = (),
        *,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._tz = tz
        self._clock = clock or (lambda: datetime.now(self._tz))
        self._jobs: dict[str, ScheduledJob] = {}
        self._handle: SchedulerHandle | None = None
        for job in jobs:
            self.add_job(job)

    @property
    def jobs(self) -> list[ScheduledJob]:
        return list(self._jobs.values())

    def add_job(self, job: ScheduledJob) -> None:
        if self._handle is not None:
            raise RuntimeError("cannot add jobs to a running scheduler")
        if job.name in self._jobs:
            raise ValueError(f"duplicate job name {job.name!r}")
        self._jobs[job.name] = job

    def start(self) -> SchedulerHandle:
        """Spawn one task per job on the running loop and return immediately."""

        if self._handle is not None:
            raise RuntimeError("scheduler already started")

        stop_event = asyncio.Event()
        tasks = [
            asyncio.create_task(self._job_loop(job, stop_event), name=f"job-{job.name}")
            for job in self._jobs.values()
        ]
        self._handle = SchedulerHandle(tasks, stop_event)
        log.info("scheduler started", jobs=len(tasks))
        return self._handle

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.stop()

    async def join(self, timeout: float | None = None) -> None:
        if self._handle is not None:
            await self._handle.join(timeout)

    async def run_job(self, job: ScheduledJob) -> bool:
        """Run one firing of `job`. Returns False if the action failed."""

        job_log = log.bind(job=job.name)
        ctx = JobContext(client=self._client, now=self._clock(), log=job_log)
        job_log.info("job started")
        try:
            await job.action(ctx)
        except Exception:
            job_log.exception("job failed")
            return False
        job_log.info("job finished")
        return True

    async def _job_loop(self, job: ScheduledJob, stop: asyncio.Event) -> None:
        last_fire: datetime | None = None
        while not stop.is_set():
            now = self._clock()
            if last_fire is not None and _utc(now) < _utc(last_fire):
                # Woke marginally early; never fire the same slot twice.
                now = last_fire
            fire_at = job.trigger.next_fire(now)
            log.debug("job armed", job=job.name, next_fire=fire_at.isoformat())

            try:
                await asyncio.wait_for(stop.wait(), timeout=seconds_until(fire_at, self._clock()))
                break
            except asyncio.TimeoutError:
                pass

            last_fire = fire_at
            await self.run_job(job)

        log.info("job stopped", job=job.name)
