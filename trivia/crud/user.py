from __future__ import annotations

from datetime import datetime

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from trivia.crud.base import BaseCRUD
from trivia.models.quiz_attempt import QuizAttempt
from trivia.models.user import User

users = BaseCRUD[User, dict](User)


async def get_user_by_email_or_username(
    session: AsyncSession,
    *,
    email: str,
    username: str,
) -> User | None:
    stmt = select(User).where(or_(User.email == email, User.username == username)).limit(1)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def list_user_ids(session: AsyncSession) -> list[int]:
    res = await session.execute(select(User.id).order_by(User.id))
    return list(res.scalars().all())


async def attempt_totals_for_user(session: AsyncSession, *, user_id: int) -> tuple[int, int]:
    """Return (total_score, quizzes_completed) aggregated from quiz_attempts.

    quizzes_completed counts distinct quizzes; total_score sums the best score
    per quiz, so replaying a quiz does not inflate the total.
    """

    best = (
        select(QuizAttempt.quiz_id, func.max(QuizAttempt.score).label("best"))
        .where(QuizAttempt.user_id == user_id)
        .group_by(QuizAttempt.quiz_id)
        .subquery()
    )
    stmt = select(func.coalesce(func.sum(best.c.best), 0), func.count(best.c.quiz_id))
    total, completed = (await session.execute(stmt)).one()
    return int(total or 0), int(completed or 0)


async def clear_stale_verification_tokens(session: AsyncSession, *, sent_before: datetime) -> int:
    stmt = (
        update(User)
        .where(User.email_verified.is_(False))
        .where(User.verification_token.is_not(None))
        .where(
            or_(
                User.verification_sent_at < sent_before,
                # the email task never delivered (e.g. dead-lettered)
                and_(User.verification_sent_at.is_(None), User.created_at < sent_before),
            )
        )
        .values(verification_token=None)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return int(res.rowcount or 0)
