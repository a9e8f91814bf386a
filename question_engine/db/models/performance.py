"""
Learner performance models.

Implements:
- Learner: provisioned idempotently the first time an answer is recorded
- AdaptiveAnswer: append-only answer outcomes read by the difficulty controller
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Learner(Base):
    """Learner known to the question engine (external id from the auth layer)."""

    __tablename__ = "learners"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())

    def __repr__(self) -> str:
        return f"<Learner id={self.id} external_id={self.external_id}>"


class AdaptiveAnswer(Base):
    """One recorded answer outcome."""

    __tablename__ = "adaptive_answers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(
        ForeignKey("learners.external_id", ondelete="CASCADE"), nullable=False
    )
    topic_id: Mapped[str | None] = mapped_column(Text)
    subtopic_id: Mapped[str | None] = mapped_column(Text)
    difficulty: Mapped[str] = mapped_column(Text, nullable=False)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    time_taken_ms: Mapped[int] = mapped_column(Integer, default=0)
    hints_used: Mapped[int] = mapped_column(Integer, default=0)
    attempts: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())

    __table_args__ = (Index("idx_adaptive_answers_recent", "learner_id", "topic_id", "created_at"),)

    def __repr__(self) -> str:
        return f"<AdaptiveAnswer learner={self.learner_id} topic={self.topic_id} correct={self.is_correct}>"
