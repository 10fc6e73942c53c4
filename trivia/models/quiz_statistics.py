from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Float, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, utcnow


class QuizStatistics(Base):
    """Aggregates over quiz_attempts, rebuilt by the quiz:analytics handler."""

    __tablename__ = "quiz_statistics"

    quiz_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("quizzes.id", ondelete="CASCADE"), primary_key=True)

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unique_players: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    best_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
