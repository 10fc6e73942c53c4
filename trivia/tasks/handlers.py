"""Handlers for every registered task type.

Each handler may run more than once for the same payload (redelivery after a
worker crash, retry after a transient error), so each one either checks what
is already done or recomputes from source rows instead of incrementing.
"""
from __future__ import annotations

import structlog

from trivia.services.errors import NotFoundError
from trivia.services.mailer import Mailer
from trivia.services.quiz_service import QuizService
from trivia.services.user_service import UserService
from trivia.tasks.client import TaskClient
from trivia.tasks.errors import EnqueueError, TransientTaskError, skip_retry
from trivia.tasks.payloads import (
    EmailVerificationPayload,
    ImageUploadPayload,
    QuizAnalyticsPayload,
    QuizSubmissionPayload,
    UserStatisticsUpdatePayload,
)
from trivia.tasks.processor import Handler, Processor, TaskContext
from trivia.tasks.types import (
    TYPE_EMAIL_VERIFICATION,
    TYPE_IMAGE_UPLOAD,
    TYPE_QUIZ_ANALYTICS,
    TYPE_QUIZ_SUBMISSION,
    TYPE_USER_STATISTICS_UPDATE,
)

log = structlog.get_logger(__name__)

ALL = 0


class TaskHandlers:
    def __init__(
        self,
        users: UserService,
        quizzes: QuizService,
        client: TaskClient,
        mailer: Mailer,
    ) -> None:
        self.users = users
        self.quizzes = quizzes
        self.client = client
        self.mailer = mailer

    async def email_verification(self, ctx: TaskContext, p: EmailVerificationPayload) -> None:
        try:
            pending = await self.users.should_send_verification(
                user_id=p.user_id, email=p.email, token=p.token
            )
        except (NotFoundError, ValueError) as e:
            raise skip_retry(str(e)) from e

        if not pending:
            log.info("verification email already handled", task_id=ctx.task_id, user_id=p.user_id)
            return

        await self.mailer.send_verification(user_id=p.user_id, email=p.email, token=p.token)
        await self.users.mark_verification_sent(user_id=p.user_id, token=p.token)

    async def quiz_submission(self, ctx: TaskContext, p: QuizSubmissionPayload) -> None:
        try:
            recorded = await self.quizzes.record_attempt(
                user_id=p.user_id,
                quiz_id=p.quiz_id,
                answers=p.answers,
                submitted_at=p.submitted_at,
            )
        except NotFoundError as e:
            raise skip_retry(str(e)) from e

        attempt = recorded.attempt
        log.info(
            "quiz submission graded",
            task_id=ctx.task_id,
            attempt_id=attempt.id,
            score=attempt.score,
            created=recorded.created,
        )

        # Follow-ups are enqueued on every run, including a redelivery that found
        # the attempt already stored: the previous run may have died before this
        # point. Both follow-ups recompute, so duplicates are harmless.
        try:
            self.client.enqueue_user_statistics_update(
                p.user_id,
                "quiz_completed",
                {"quiz_id": p.quiz_id, "attempt_id": attempt.id, "score": attempt.score},
            )
            self.client.enqueue_quiz_analytics(
                p.quiz_id,
                "quiz_completed",
                {"attempt_id": attempt.id, "user_id": p.user_id, "score": attempt.score},
            )
        except EnqueueError as e:
            raise TransientTaskError(f"failed to enqueue follow-up tasks: {e}") from e

    async def user_statistics_update(self, ctx: TaskContext, p: UserStatisticsUpdatePayload) -> None:
        if p.user_id == ALL:
            n = await self.users.recompute_all_statistics()
            log.info("user statistics recomputed", task_id=ctx.task_id, action=p.action, users=n)
            return

        try:
            user = await self.users.recompute_statistics(p.user_id)
        except NotFoundError as e:
            raise skip_retry(str(e)) from e
        log.info(
            "user statistics recomputed",
            task_id=ctx.task_id,
            action=p.action,
            user_id=user.id,
            total_score=user.total_score,
            quizzes_completed=user.quizzes_completed,
        )

    async def quiz_analytics(self, ctx: TaskContext, p: QuizAnalyticsPayload) -> None:
        if p.quiz_id == ALL:
            n = await self.quizzes.recompute_all_quiz_statistics()
            log.info("quiz analytics recomputed", task_id=ctx.task_id, event_type=p.event_type, quizzes=n)
            return

        try:
            stats = await self.quizzes.recompute_quiz_statistics(p.quiz_id)
        except NotFoundError as e:
            raise skip_retry(str(e)) from e
        log.info(
            "quiz analytics recomputed",
            task_id=ctx.task_id,
            event_type=p.event_type,
            quiz_id=p.quiz_id,
            attempts=stats.attempts,
        )

    async def image_upload(self, ctx: TaskContext, p: ImageUploadPayload) -> None:
        if p.type == "avatar":
            try:
                await self.users.set_avatar_url(p.user_id, p.image_url)
            except NotFoundError as e:
                raise skip_retry(str(e)) from e
            log.info("avatar updated", task_id=ctx.task_id, user_id=p.user_id)
            return

        # Quiz images are served straight from their upload URL.
        log.info("quiz image accepted", task_id=ctx.task_id, user_id=p.user_id, url=p.image_url)

    def as_mapping(self) -> dict[str, Handler]:
        return {
            TYPE_EMAIL_VERIFICATION: self.email_verification,
            TYPE_QUIZ_SUBMISSION: self.quiz_submission,
            TYPE_USER_STATISTICS_UPDATE: self.user_statistics_update,
            TYPE_QUIZ_ANALYTICS: self.quiz_analytics,
            TYPE_IMAGE_UPLOAD: self.image_upload,
        }


def build_processor(handlers: TaskHandlers) -> Processor:
    return Processor(handlers.as_mapping())
