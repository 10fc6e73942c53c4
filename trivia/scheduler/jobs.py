"""The recurring jobs of the cron process."""
from __future__ import annotations

import asyncio
from datetime import timedelta, timezone

from trivia.infrastructure import Infrastructure
from trivia.scheduler.scheduler import JobContext, ScheduledJob
from trivia.scheduler.triggers import SUNDAY, DailyAt, Hourly, WeeklyAt


async def enqueue_daily_statistics(ctx: JobContext) -> None:
    task_id = ctx.client.enqueue_user_statistics_update(
        0,
        "daily_batch_update",
        {"type": "daily_update", "date": ctx.now.date().isoformat()},
    )
    ctx.log.info("daily statistics update queued", task_id=task_id)


async def enqueue_weekly_analytics(ctx: JobContext) -> None:
    today = ctx.now.date()
    task_id = ctx.client.enqueue_quiz_analytics(
        0,
        "weekly_batch_analytics",
        {
            "type": "weekly_analytics",
            "week_start": (today - timedelta(days=7)).isoformat(),
            "week_end": today.isoformat(),
        },
    )
    ctx.log.info("weekly quiz analytics queued", task_id=task_id)


def default_jobs(infra: Infrastructure) -> list[ScheduledJob]:
    retention = timedelta(days=infra.settings.data_retention_days)

    async def cleanup(ctx: JobContext) -> None:
        cutoff = ctx.now.astimezone(timezone.utc) - retention
        tokens = await infra.users.cleanup_expired_tokens(sent_before=cutoff)
        answers = await infra.quizzes.cleanup_old_answers(cutoff=cutoff)
        ctx.log.info("data cleanup done", cutoff=cutoff.isoformat(), tokens=tokens, answers=answers)

    async def health_check(ctx: JobContext) -> None:
        if not await asyncio.to_thread(ctx.client.broker.ping):
            raise RuntimeError("task broker unreachable")
        await infra.ping_database()
        ctx.log.info("health check ok")

    return [
        ScheduledJob("daily_user_statistics", DailyAt(2, 0), enqueue_daily_statistics),
        ScheduledJob("weekly_quiz_analytics", WeeklyAt(SUNDAY, 3, 0), enqueue_weekly_analytics),
        ScheduledJob("daily_data_cleanup", DailyAt(1, 0), cleanup),
        ScheduledJob("hourly_health_check", Hourly(), health_check),
    ]
