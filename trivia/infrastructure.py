from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from trivia.config import Settings, settings as default_settings
from trivia.database import make_engine, make_session_factory
from trivia.services.mailer import LoggingMailer, Mailer
from trivia.services.quiz_service import QuizService
from trivia.services.user_service import UserService
from trivia.tasks.broker import Broker
from trivia.tasks.client import TaskClient
from trivia.tasks.handlers import TaskHandlers, build_processor
from trivia.tasks.processor import Processor


@dataclass
class Infrastructure:
    """Everything a worker or scheduler process needs, wired once at startup."""

    settings: Settings
    engine: AsyncEngine
    sessions: async_sessionmaker[AsyncSession]
    broker: Broker
    client: TaskClient
    users: UserService
    quizzes: QuizService
    processor: Processor
    mailer: Mailer

    async def ping_database(self) -> bool:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def aclose(self) -> None:
        await self.engine.dispose()


def build_infrastructure(
    broker: Broker,
    *,
    settings: Settings | None = None,
    database_url: str | None = None,
    pooled: bool = True,
    mailer: Mailer | None = None,
) -> Infrastructure:
    settings = settings or default_settings
    engine = make_engine(database_url or settings.database_url, pooled=pooled)
    sessions = make_session_factory(engine)
    client = TaskClient(broker, default_timeout=timedelta(seconds=settings.default_task_timeout_seconds))

    users = UserService(sessions, client)
    quizzes = QuizService(sessions, client)
    mailer = mailer or LoggingMailer()
    handlers = TaskHandlers(users, quizzes, client, mailer)

    return Infrastructure(
        settings=settings,
        engine=engine,
        sessions=sessions,
        broker=broker,
        client=client,
        users=users,
        quizzes=quizzes,
        processor=build_processor(handlers),
        mailer=mailer,
    )
