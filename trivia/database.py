from __future__ import annotations

import os
import sys

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from trivia.config import settings
from trivia.models import Base


def make_engine(database_url: str | None = None, *, pooled: bool = True) -> AsyncEngine:
    """Create an async engine.

    Celery runs every task in its own event loop (asyncio.run per delivery), and
    asyncpg connections from a pooled engine cannot be reused across loops:
        RuntimeError: got Future attached to a different loop
    The worker therefore asks for pooled=False. Under pytest pooling is also
    disabled; PYTEST_CURRENT_TEST is only set while a test runs, so
    sys.modules is checked as well.
    """

    url = database_url or settings.database_url
    kwargs: dict = {}
    if not pooled or os.getenv("PYTEST_CURRENT_TEST") or ("pytest" in sys.modules):
        kwargs["poolclass"] = NullPool
    if not url.startswith("sqlite"):
        kwargs["pool_pre_ping"] = True
    return create_async_engine(url, **kwargs)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def create_all(engine: AsyncEngine) -> None:
    """Create missing tables. Local runs and tests only; production schema is migrated."""

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

