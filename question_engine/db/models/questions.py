"""
Question models for the cache, the curated bank and usage tracking.

Implements:
- CachedQuestion: system-generated or ingested questions, deduplicated by content_hash
- CuratedQuestion: read-only curated bank, matched by topic label
- QuestionUsage: one answered use of a cached question (feeds quality scoring)

Quality score bounds: 30-100. Generated questions start at a fixed baseline and
move as usage accumulates.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class CachedQuestion(Base):
    """
    Cached practice question.

    hints and solution_steps are JSONB arrays of strings. content_hash is the
    SHA-256 of the normalized question text and is unique: a second insert of
    textually-equivalent content resolves to the existing row.
    """

    __tablename__ = "question_cache"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Content
    question: Mapped[str] = mapped_column(Text, nullable=False)
    correct_answer: Mapped[str] = mapped_column(Text, nullable=False)
    hints: Mapped[list] = mapped_column(JSONB, default=list)
    explanation: Mapped[str | None] = mapped_column(Text, default="")
    solution_steps: Mapped[list] = mapped_column(JSONB, default=list)

    # Classification
    topic_id: Mapped[str | None] = mapped_column(Text, index=True)
    topic_name: Mapped[str | None] = mapped_column(Text)
    subtopic_id: Mapped[str | None] = mapped_column(Text)
    subtopic_name: Mapped[str | None] = mapped_column(Text)
    difficulty: Mapped[str] = mapped_column(Text, nullable=False)  # 'easy', 'medium', 'hard'
    grade_level: Mapped[int | None] = mapped_column(Integer)

    # Dedup + quality
    content_hash: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    source: Mapped[str] = mapped_column(Text, default="cache-generated")
    quality_score: Mapped[float] = mapped_column(Numeric(5, 2), default=70)
    usage_count: Mapped[int] = mapped_column(Integer, default=0)
    success_rate: Mapped[float] = mapped_column(Numeric(5, 2), default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Timestamps
    last_used: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now(), onupdate=func.now())

    usages: Mapped[list[QuestionUsage]] = relationship(back_populates="question")

    __table_args__ = (
        CheckConstraint("quality_score >= 30 AND quality_score <= 100", name="ck_question_cache_quality"),
        Index("idx_question_cache_lookup", "is_active", "difficulty", "topic_id", "subtopic_id"),
    )

    def __repr__(self) -> str:
        return f"<CachedQuestion id={self.id} difficulty={self.difficulty} quality={self.quality_score}>"


class CuratedQuestion(Base):
    """Curated bank question. This core only reads these rows."""

    __tablename__ = "question_bank"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    correct_answer: Mapped[str] = mapped_column(Text, nullable=False)
    hints: Mapped[list] = mapped_column(JSONB, default=list)
    explanation: Mapped[str | None] = mapped_column(Text, default="")
    solution_steps: Mapped[list] = mapped_column(JSONB, default=list)
    topic: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    subtopic: Mapped[str | None] = mapped_column(Text)
    difficulty: Mapped[str | None] = mapped_column(Text)
    grade_level: Mapped[int | None] = mapped_column(Integer)
    content_hash: Mapped[str | None] = mapped_column(Text)
    source: Mapped[str] = mapped_column(Text, default="curated")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())

    def __repr__(self) -> str:
        return f"<CuratedQuestion id={self.id} topic={self.topic}>"


class QuestionUsage(Base):
    """One answered use of a cached question."""

    __tablename__ = "question_usage_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    question_id: Mapped[int] = mapped_column(
        ForeignKey("question_cache.id", ondelete="CASCADE"), nullable=False, index=True
    )
    learner_id: Mapped[str | None] = mapped_column(Text)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    time_spent_ms: Mapped[int] = mapped_column(Integer, default=0)
    hints_used: Mapped[int] = mapped_column(Integer, default=0)
    attempts: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())

    question: Mapped[CachedQuestion] = relationship(back_populates="usages")

    __table_args__ = (Index("idx_usage_learner_recent", "learner_id", "created_at"),)

    def __repr__(self) -> str:
        return f"<QuestionUsage question={self.question_id} learner={self.learner_id} correct={self.is_correct}>"
