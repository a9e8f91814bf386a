"""
Durable question exposure history.

Rows are append-only and queried by recency window per learner (and
optionally topic) to keep generated questions from repeating across sessions.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class QuestionHistory(Base):
    """One exposure of a question to a learner."""

    __tablename__ = "question_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(Text, nullable=False)
    topic_id: Mapped[str | None] = mapped_column(Text)
    subtopic_id: Mapped[str | None] = mapped_column(Text)
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    question_hash: Mapped[str] = mapped_column(Text, nullable=False)
    difficulty: Mapped[str] = mapped_column(Text, nullable=False)
    is_correct: Mapped[bool | None] = mapped_column(Boolean)
    asked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())

    __table_args__ = (Index("idx_question_history_recent", "learner_id", "topic_id", "asked_at"),)

    def __repr__(self) -> str:
        return f"<QuestionHistory learner={self.learner_id} topic={self.topic_id} hash={self.question_hash[:8]}>"
