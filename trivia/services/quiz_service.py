from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trivia.crud.quiz import (
    attempt_aggregates,
    delete_answers_before,
    get_attempt_for_submission,
    list_questions,
    list_quiz_ids,
    quizzes,
)
from trivia.crud.user import users
from trivia.models.quiz import Question, Quiz
from trivia.models.quiz_attempt import QuizAttempt, UserAnswer
from trivia.models.quiz_statistics import QuizStatistics
from trivia.schemas.quiz import QuizCreate
from trivia.services.errors import NotFoundError
from trivia.tasks.client import TaskClient
from trivia.tasks.errors import TaskError

logger = structlog.get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def answer_key(question: Question) -> str:
    """Key under which a submission carries the answer to `question`."""

    return f"q{question.order_index}"


def is_correct(question: Question, answer: str) -> bool:
    return answer.strip().casefold() == question.correct_answer.strip().casefold()


@dataclass(frozen=True)
class RecordedAttempt:
    attempt: QuizAttempt
    created: bool


class QuizService:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        task_client: TaskClient | None = None,
    ) -> None:
        self._sessions = sessions
        self._tasks = task_client

    async def create_quiz(self, obj_in: QuizCreate) -> Quiz:
        async with self._sessions() as session:
            creator = await users.get(session, id=obj_in.created_by)
            if creator is None:
                raise NotFoundError("user", obj_in.created_by)

            quiz = await quizzes.create(session, obj_in=obj_in.model_dump(exclude={"questions"}))
            for q in obj_in.questions:
                session.add(Question(quiz_id=quiz.id, **q.model_dump()))
            await session.commit()

        if self._tasks is not None:
            try:
                self._tasks.enqueue_quiz_analytics(quiz.id, "quiz_created", {"created_by": quiz.created_by})
            except TaskError:
                logger.exception("failed to enqueue quiz analytics", quiz_id=quiz.id)

        logger.info("quiz created", quiz_id=quiz.id, questions=len(obj_in.questions))
        return quiz

    async def get_quiz(self, quiz_id: int) -> Quiz:
        async with self._sessions() as session:
            quiz = await quizzes.get(session, id=quiz_id)
        if quiz is None:
            raise NotFoundError("quiz", quiz_id)
        return quiz

    async def get_questions(self, quiz_id: int) -> list[Question]:
        async with self._sessions() as session:
            return await list_questions(session, quiz_id=quiz_id)

    async def submit_quiz(
        self,
        *,
        user_id: int,
        quiz_id: int,
        answers: dict[str, str],
        submitted_at: datetime | None = None,
    ) -> str:
        """Accept a submission and hand grading to the worker.

        Unlike the other enqueue points, a failed enqueue is raised here: the
        submission exists only as the task, so dropping it would lose it.
        """

        async with self._sessions() as session:
            if await users.get(session, id=user_id) is None:
                raise NotFoundError("user", user_id)
            if await quizzes.get(session, id=quiz_id) is None:
                raise NotFoundError("quiz", quiz_id)

        if self._tasks is None:
            raise RuntimeError("QuizService has no task client")
        submitted_at = _as_utc(submitted_at or datetime.now(timezone.utc))
        return self._tasks.enqueue_quiz_submission(user_id, quiz_id, answers, submitted_at)

    async def record_attempt(
        self,
        *,
        user_id: int,
        quiz_id: int,
        answers: dict[str, str],
        submitted_at: datetime,
    ) -> RecordedAttempt:
        """Grade a submission and store it as a quiz attempt.

        Idempotent on (user_id, quiz_id, submitted_at): a second call for the
        same submission returns the stored attempt with created=False.
        """

        submitted_at = _as_utc(submitted_at)

        async with self._sessions() as session:
            existing = await get_attempt_for_submission(
                session, user_id=user_id, quiz_id=quiz_id, submitted_at=submitted_at
            )
            if existing is not None:
                return RecordedAttempt(attempt=existing, created=False)

            if await users.get(session, id=user_id) is None:
                raise NotFoundError("user", user_id)
            quiz = await quizzes.get(session, id=quiz_id)
            if quiz is None:
                raise NotFoundError("quiz", quiz_id)

            questions = await list_questions(session, quiz_id=quiz_id)
            score = 0
            max_score = 0
            graded: list[tuple[Question, str, bool]] = []
            for question in questions:
                max_score += question.points
                answer = answers.get(answer_key(question))
                if answer is None:
                    continue
                correct = is_correct(question, answer)
                if correct:
                    score += question.points
                graded.append((question, answer, correct))

            attempt = QuizAttempt(
                user_id=user_id,
                quiz_id=quiz_id,
                score=score,
                max_score=max_score,
                submitted_at=submitted_at,
            )
            session.add(attempt)
            await session.flush()
            for question, answer, correct in graded:
                session.add(
                    UserAnswer(
                        attempt_id=attempt.id,
                        question_id=question.id,
                        user_answer=answer[:500],
                        is_correct=correct,
                        points_earned=question.points if correct else 0,
                    )
                )

            try:
                await session.commit()
            except IntegrityError:
                # Lost a race with a concurrent delivery of the same submission.
                await session.rollback()
                existing = await get_attempt_for_submission(
                    session, user_id=user_id, quiz_id=quiz_id, submitted_at=submitted_at
                )
                if existing is None:
                    raise
                return RecordedAttempt(attempt=existing, created=False)

        logger.info(
            "attempt recorded",
            attempt_id=attempt.id,
            user_id=user_id,
            quiz_id=quiz_id,
            score=score,
            max_score=max_score,
        )
        return RecordedAttempt(attempt=attempt, created=True)

    async def recompute_quiz_statistics(self, quiz_id: int) -> QuizStatistics:
        async with self._sessions() as session:
            if await quizzes.get(session, id=quiz_id) is None:
                raise NotFoundError("quiz", quiz_id)

            values = await attempt_aggregates(session, quiz_id=quiz_id)
            stats = await session.get(QuizStatistics, quiz_id)
            if stats is None:
                stats = QuizStatistics(quiz_id=quiz_id, **values)
                session.add(stats)
            else:
                for field, value in values.items():
                    setattr(stats, field, value)
            await session.commit()
        return stats

    async def recompute_all_quiz_statistics(self) -> int:
        async with self._sessions() as session:
            ids = await list_quiz_ids(session)
        for quiz_id in ids:
            await self.recompute_quiz_statistics(quiz_id)
        return len(ids)

    async def cleanup_old_answers(self, *, cutoff: datetime) -> int:
        async with self._sessions() as session:
            n = await delete_answers_before(session, cutoff=cutoff)
            await session.commit()
        return n
