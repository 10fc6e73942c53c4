from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from trivia.crud.base import BaseCRUD
from trivia.models.quiz import Question, Quiz
from trivia.models.quiz_attempt import QuizAttempt, UserAnswer

quizzes = BaseCRUD[Quiz, dict](Quiz)


async def list_questions(session: AsyncSession, *, quiz_id: int) -> list[Question]:
    stmt = select(Question).where(Question.quiz_id == quiz_id).order_by(Question.order_index.asc())
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def list_quiz_ids(session: AsyncSession) -> list[int]:
    res = await session.execute(select(Quiz.id).order_by(Quiz.id))
    return list(res.scalars().all())


async def get_attempt_for_submission(
    session: AsyncSession,
    *,
    user_id: int,
    quiz_id: int,
    submitted_at: datetime,
) -> QuizAttempt | None:
    stmt = select(QuizAttempt).where(
        QuizAttempt.user_id == user_id,
        QuizAttempt.quiz_id == quiz_id,
        QuizAttempt.submitted_at == submitted_at,
    )
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def attempt_aggregates(session: AsyncSession, *, quiz_id: int) -> dict:
    stmt = select(
        func.count(QuizAttempt.id),
        func.count(func.distinct(QuizAttempt.user_id)),
        func.avg(QuizAttempt.score),
        func.max(QuizAttempt.score),
    ).where(QuizAttempt.quiz_id == quiz_id)
    attempts, players, avg_score, best = (await session.execute(stmt)).one()
    return {
        "attempts": int(attempts or 0),
        "unique_players": int(players or 0),
        "average_score": float(avg_score or 0.0),
        "best_score": int(best or 0),
    }


async def delete_answers_before(session: AsyncSession, *, cutoff: datetime) -> int:
    """Drop per-question answer rows of attempts completed before `cutoff`.

    Attempts themselves are kept: user and quiz statistics are recomputed from them.
    """

    old_ids = select(QuizAttempt.id).where(QuizAttempt.completed_at < cutoff)
    stmt = (
        delete(UserAnswer)
        .where(UserAnswer.attempt_id.in_(old_ids))
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return int(res.rowcount or 0)
