from __future__ import annotations

import secrets
from collections.abc import Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trivia.crud.user import (
    attempt_totals_for_user,
    clear_stale_verification_tokens,
    get_user_by_email_or_username,
    list_user_ids,
    users,
)
from trivia.models.user import User
from trivia.schemas.user import UserCreate
from trivia.services.errors import AlreadyExistsError, NotFoundError
from trivia.tasks.client import TaskClient
from trivia.tasks.errors import TaskError

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserService:
    """User accounts and the per-user side of the task pipeline.

    Every write that triggers background work commits first and enqueues
    afterwards. Enqueue failures are logged, never raised: creating a user
    must not fail because Redis is down.
    """

    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        task_client: TaskClient | None = None,
        *,
        token_factory: Callable[[], str] = lambda: secrets.token_urlsafe(32),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._sessions = sessions
        self._tasks = task_client
        self._token_factory = token_factory
        self._clock = clock

    async def create_user(self, obj_in: UserCreate) -> User:
        token = self._token_factory()

        async with self._sessions() as session:
            existing = await get_user_by_email_or_username(
                session, email=obj_in.email, username=obj_in.username
            )
            if existing is not None:
                raise AlreadyExistsError("user already exists")

            user = await users.create(
                session,
                obj_in={**obj_in.model_dump(), "verification_token": token},
            )
            await session.commit()

        if self._tasks is not None:
            try:
                self._tasks.enqueue_email_verification(user.id, user.email, token)
            except TaskError:
                logger.exception("failed to enqueue email verification", user_id=user.id)

        logger.info("user created", user_id=user.id, username=user.username)
        return user

    async def get_user(self, user_id: int) -> User:
        async with self._sessions() as session:
            user = await users.get(session, id=user_id)
        if user is None:
            raise NotFoundError("user", user_id)
        return user

    async def update_avatar(self, user_id: int, image_url: str) -> str | None:
        """Queue processing of a freshly uploaded avatar image."""

        await self.get_user(user_id)
        if self._tasks is None:
            return None
        try:
            return self._tasks.enqueue_image_upload(user_id, image_url, "avatar")
        except TaskError:
            logger.exception("failed to enqueue image upload", user_id=user_id)
            return None

    async def set_avatar_url(self, user_id: int, image_url: str) -> User:
        async with self._sessions() as session:
            user = await users.get(session, id=user_id)
            if user is None:
                raise NotFoundError("user", user_id)
            if user.avatar_url != image_url:
                user.avatar_url = image_url
                await session.commit()
        return user

    # -- email verification --

    async def should_send_verification(self, *, user_id: int, email: str, token: str) -> bool:
        """Return True if this verification email still needs to go out.

        Raises NotFoundError for a missing user and ValueError when the task was
        built for an email address the user no longer has.
        """

        async with self._sessions() as session:
            user = await users.get(session, id=user_id)
        if user is None:
            raise NotFoundError("user", user_id)
        if user.email != email:
            raise ValueError(f"user {user_id} email changed since the task was queued")
        if user.email_verified:
            return False
        if user.verification_token != token:
            # A newer token superseded this one.
            return False
        return user.verification_sent_at is None

    async def mark_verification_sent(self, *, user_id: int, token: str) -> None:
        async with self._sessions() as session:
            user = await users.get(session, id=user_id)
            if user is None or user.verification_token != token:
                return
            user.verification_sent_at = self._clock()
            await session.commit()

    async def verify_email(self, *, user_id: int, token: str) -> bool:
        async with self._sessions() as session:
            user = await users.get(session, id=user_id)
            if user is None:
                raise NotFoundError("user", user_id)
            if user.email_verified:
                return True
            if not user.verification_token or not secrets.compare_digest(user.verification_token, token):
                return False
            user.email_verified = True
            user.verification_token = None
            await session.commit()
            return True

    async def cleanup_expired_tokens(self, *, sent_before: datetime) -> int:
        async with self._sessions() as session:
            n = await clear_stale_verification_tokens(session, sent_before=sent_before)
            await session.commit()
        return n

    # -- statistics --

    async def recompute_statistics(self, user_id: int) -> User:
        """Rebuild a user's totals from quiz_attempts.

        Recomputing instead of incrementing keeps redelivered
        user:statistics_update tasks from double counting.
        """

        async with self._sessions() as session:
            user = await users.get(session, id=user_id)
            if user is None:
                raise NotFoundError("user", user_id)
            total, completed = await attempt_totals_for_user(session, user_id=user_id)
            user.total_score = total
            user.quizzes_completed = completed
            await session.commit()
        return user

    async def recompute_all_statistics(self) -> int:
        async with self._sessions() as session:
            ids = await list_user_ids(session)
        for user_id in ids:
            await self.recompute_statistics(user_id)
        return len(ids)
