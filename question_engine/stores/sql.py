"""
SQLAlchemy (async, PostgreSQL) store implementations.

Each operation runs in its own short transaction obtained from an
async_sessionmaker. SQLAlchemy and connection errors are wrapped in
StoreError so callers can fall back without knowing the backend.

Question ids are exposed as strings: cache rows use their integer key,
curated rows are prefixed with "curated_" so both can share one exclusion set.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Iterable

from loguru import logger
from sqlalchemy import case, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from question_engine.db.models import (
    AdaptiveAnswer,
    CachedQuestion,
    CuratedQuestion,
    Learner,
    QuestionHistory,
    QuestionUsage,
)
from question_engine.errors import StoreError
from question_engine.models import (
    HIGH_QUALITY_THRESHOLD,
    MID_QUALITY_THRESHOLD,
    Difficulty,
    PerformanceSample,
    PersistedHistoryEntry,
    QuestionRecord,
    SourceTag,
    UsageEvent,
)

from .base import CuratedFilter, QuestionFilter

CURATED_ID_PREFIX = "curated_"


@asynccontextmanager
async def _transaction(factory: async_sessionmaker[AsyncSession], operation: str) -> AsyncGenerator[AsyncSession, None]:
    """Session scope that commits on success and raises StoreError on failure."""
    try:
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    except (SQLAlchemyError, OSError) as e:
        logger.debug(f"Store operation '{operation}' failed: {e}")
        raise StoreError(operation, e) from e


def _parse_difficulty(value: str | None, default: Difficulty = Difficulty.MEDIUM) -> Difficulty:
    try:
        return Difficulty((value or "").strip().lower())
    except ValueError:
        return default


def _int_ids(ids: Iterable[str], prefix: str = "") -> list[int]:
    """Integer keys for the ids that belong to this table (others are ignored)."""
    keys: list[int] = []
    for raw in ids:
        if prefix:
            if not raw.startswith(prefix):
                continue
            raw = raw[len(prefix):]
        if raw.isdigit():
            keys.append(int(raw))
    return keys


def _to_ms(value: datetime | None) -> int:
    if value is None:
        return 0
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def _from_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def cached_to_record(row: CachedQuestion) -> QuestionRecord:
    try:
        source = SourceTag(row.source)
    except ValueError:
        source = SourceTag.CACHE_GENERATED
    return QuestionRecord(
        id=str(row.id),
        text=row.question,
        correct_answer=row.correct_answer,
        topic_id=row.topic_id,
        topic_name=row.topic_name,
        difficulty=_parse_difficulty(row.difficulty),
        content_hash=row.content_hash,
        hints=list(row.hints or []),
        explanation=row.explanation or "",
        solution_steps=list(row.solution_steps or []),
        subtopic_id=row.subtopic_id,
        subtopic_name=row.subtopic_name,
        grade_level=row.grade_level,
        quality_score=float(row.quality_score if row.quality_score is not None else 50),
        usage_count=row.usage_count or 0,
        success_rate=float(row.success_rate or 0),
        source_tag=source,
        is_active=bool(row.is_active),
    )


def curated_to_record(row: CuratedQuestion) -> QuestionRecord:
    return QuestionRecord(
        id=f"{CURATED_ID_PREFIX}{row.id}",
        text=row.question_text,
        correct_answer=row.correct_answer,
        topic_id=None,
        topic_name=row.topic,
        difficulty=_parse_difficulty(row.difficulty),
        content_hash=row.content_hash or "",
        hints=list(row.hints or []),
        explanation=row.explanation or "",
        solution_steps=list(row.solution_steps or []),
        subtopic_name=row.subtopic,
        grade_level=row.grade_level,
        source_tag=SourceTag.CURATED,
        is_active=bool(row.is_active),
    )


class SqlQuestionStore:
    """Question cache backed by the question_cache table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def find_candidates(self, query: QuestionFilter) -> list[QuestionRecord]:
        quality_tier = case(
            (CachedQuestion.quality_score >= HIGH_QUALITY_THRESHOLD, 2),
            (CachedQuestion.quality_score >= MID_QUALITY_THRESHOLD, 1),
            else_=0,
        )
        stmt = select(CachedQuestion).where(
            CachedQuestion.is_active.is_(True),
            CachedQuestion.difficulty == query.difficulty.value,
        )
        if query.topic_id is not None:
            stmt = stmt.where(CachedQuestion.topic_id == query.topic_id)
        if query.subtopic_id is not None:
            stmt = stmt.where(CachedQuestion.subtopic_id == query.subtopic_id)
        if query.grade_level is not None:
            stmt = stmt.where(
                (CachedQuestion.grade_level == query.grade_level) | CachedQuestion.grade_level.is_(None)
            )
        excluded = _int_ids(query.exclude_ids)
        if excluded:
            stmt = stmt.where(CachedQuestion.id.not_in(excluded))
        stmt = stmt.order_by(quality_tier.desc(), CachedQuestion.usage_count.asc(), func.random()).limit(query.limit)

        async with _transaction(self.session_factory, "find_candidates") as session:
            result = await session.execute(stmt)
            return [cached_to_record(row) for row in result.scalars().all()]

    async def get(self, question_id: str) -> QuestionRecord | None:
        keys = _int_ids([question_id])
        if not keys:
            return None
        async with _transaction(self.session_factory, "get_question") as session:
            row = await session.get(CachedQuestion, keys[0])
            return cached_to_record(row) if row is not None else None

    async def find_by_hash(self, content_hash: str) -> QuestionRecord | None:
        async with _transaction(self.session_factory, "find_by_hash") as session:
            result = await session.execute(select(CachedQuestion).where(CachedQuestion.content_hash == content_hash))
            row = result.scalar_one_or_none()
            return cached_to_record(row) if row is not None else None

    async def insert_if_absent(self, record: QuestionRecord) -> tuple[str, bool]:
        values: dict[str, Any] = {
            "question": record.text,
            "correct_answer": record.correct_answer,
            "hints": list(record.hints),
            "explanation": record.explanation,
            "solution_steps": list(record.solution_steps),
            "topic_id": record.topic_id,
            "topic_name": record.topic_name,
            "subtopic_id": record.subtopic_id,
            "subtopic_name": record.subtopic_name,
            "difficulty": record.difficulty.value,
            "grade_level": record.grade_level,
            "content_hash": record.content_hash,
            "source": record.source_tag.value,
            "quality_score": record.quality_score,
            "usage_count": record.usage_count,
            "success_rate": record.success_rate,
            "is_active": record.is_active,
        }
        stmt = (
            pg_insert(CachedQuestion)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["content_hash"])
            .returning(CachedQuestion.id)
        )
        async with _transaction(self.session_factory, "insert_question") as session:
            new_id = (await session.execute(stmt)).scalar_one_or_none()
            if new_id is not None:
                return str(new_id), True
            existing = await session.execute(
                select(CachedQuestion.id).where(CachedQuestion.content_hash == record.content_hash)
            )
            return str(existing.scalar_one()), False

    async def increment_usage(self, question_id: str) -> int | None:
        keys = _int_ids([question_id])
        if not keys:
            return None
        stmt = (
            update(CachedQuestion)
            .where(CachedQuestion.id == keys[0])
            .values(usage_count=CachedQuestion.usage_count + 1, last_used=func.now())
            .returning(CachedQuestion.usage_count)
        )
        async with _transaction(self.session_factory, "increment_usage") as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    async def append_usage(self, event: UsageEvent) -> None:
        keys = _int_ids([event.question_id])
        if not keys:
            return
        async with _transaction(self.session_factory, "append_usage") as session:
            session.add(
                QuestionUsage(
                    question_id=keys[0],
                    learner_id=event.learner_id,
                    is_correct=event.is_correct,
                    time_spent_ms=event.time_spent_ms,
                    hints_used=event.hints_used,
                    attempts=event.attempts,
                    created_at=event.recorded_at,
                )
            )

    async def usage_outcomes(self, question_id: str) -> list[bool]:
        keys = _int_ids([question_id])
        if not keys:
            return []
        stmt = (
            select(QuestionUsage.is_correct)
            .where(QuestionUsage.question_id == keys[0])
            .order_by(QuestionUsage.created_at.asc(), QuestionUsage.id.asc())
        )
        async with _transaction(self.session_factory, "usage_outcomes") as session:
            return [bool(value) for value in (await session.execute(stmt)).scalars().all()]

    async def update_metrics(self, question_id: str, success_rate: float, quality_score: float) -> None:
        keys = _int_ids([question_id])
        if not keys:
            return
        stmt = (
            update(CachedQuestion)
            .where(CachedQuestion.id == keys[0])
            .values(success_rate=success_rate, quality_score=quality_score, updated_at=func.now())
        )
        async with _transaction(self.session_factory, "update_metrics") as session:
            await session.execute(stmt)

    async def recent_usage_ids(self, learner_id: str, limit: int = 100) -> list[str]:
        stmt = (
            select(QuestionUsage.question_id)
            .where(QuestionUsage.learner_id == learner_id)
            .order_by(QuestionUsage.created_at.desc(), QuestionUsage.id.desc())
            .limit(limit)
        )
        async with _transaction(self.session_factory, "recent_usage_ids") as session:
            return [str(value) for value in (await session.execute(stmt)).scalars().all()]


class SqlCuratedBank:
    """Curated bank backed by the question_bank table (read-only)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def find_candidates(self, query: CuratedFilter) -> list[QuestionRecord]:
        if not query.topic_labels:
            return []
        stmt = select(CuratedQuestion).where(
            CuratedQuestion.is_active.is_(True),
            CuratedQuestion.topic.in_(query.topic_labels),
        )
        if query.difficulty is not None:
            stmt = stmt.where(CuratedQuestion.difficulty == query.difficulty.value)
        if query.min_grade is not None:
            stmt = stmt.where(CuratedQuestion.grade_level >= query.min_grade)
        if query.max_grade is not None:
            stmt = stmt.where(CuratedQuestion.grade_level <= query.max_grade)
        excluded = _int_ids(query.exclude_ids, prefix=CURATED_ID_PREFIX)
        if excluded:
            stmt = stmt.where(CuratedQuestion.id.not_in(excluded))
        stmt = stmt.order_by(func.random()).limit(query.limit)

        async with _transaction(self.session_factory, "find_curated") as session:
            result = await session.execute(stmt)
            return [curated_to_record(row) for row in result.scalars().all()]


class SqlHistoryStore:
    """Durable exposure history backed by the question_history table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def append(self, entry: PersistedHistoryEntry) -> None:
        async with _transaction(self.session_factory, "append_history") as session:
            session.add(
                QuestionHistory(
                    learner_id=entry.learner_id,
                    topic_id=entry.topic_id,
                    subtopic_id=entry.subtopic_id,
                    question_text=entry.question_text,
                    question_hash=entry.question_hash,
                    difficulty=entry.difficulty.value,
                    is_correct=entry.is_correct,
                    asked_at=entry.asked_at,
                )
            )

    async def recent(
        self,
        learner_id: str,
        topic_id: str | None,
        since: datetime,
        limit: int = 20,
    ) -> list[PersistedHistoryEntry]:
        stmt = select(QuestionHistory).where(
            QuestionHistory.learner_id == learner_id,
            QuestionHistory.asked_at > since,
        )
        if topic_id is not None:
            stmt = stmt.where(QuestionHistory.topic_id == topic_id)
        stmt = stmt.order_by(QuestionHistory.asked_at.desc()).limit(limit)

        async with _transaction(self.session_factory, "recent_history") as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [
                PersistedHistoryEntry(
                    learner_id=row.learner_id,
                    topic_id=row.topic_id,
                    question_text=row.question_text,
                    question_hash=row.question_hash,
                    difficulty=_parse_difficulty(row.difficulty),
                    subtopic_id=row.subtopic_id,
                    is_correct=row.is_correct,
                    asked_at=row.asked_at,
                )
                for row in rows
            ]


class SqlPerformanceStore:
    """Answer outcomes backed by the learners and adaptive_answers tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def ensure_learner(self, learner_id: str) -> None:
        stmt = pg_insert(Learner).values(external_id=learner_id).on_conflict_do_nothing(index_elements=["external_id"])
        async with _transaction(self.session_factory, "ensure_learner") as session:
            await session.execute(stmt)

    async def append_sample(self, sample: PerformanceSample) -> None:
        async with _transaction(self.session_factory, "append_sample") as session:
            session.add(
                AdaptiveAnswer(
                    learner_id=sample.learner_id,
                    topic_id=sample.topic_id,
                    subtopic_id=sample.subtopic_id,
                    difficulty=sample.difficulty.value,
                    is_correct=sample.is_correct,
                    time_taken_ms=sample.time_taken_ms,
                    hints_used=sample.hints_used,
                    attempts=sample.attempts,
                    created_at=_from_ms(sample.timestamp_ms),
                )
            )

    async def recent_samples(
        self,
        learner_id: str,
        topic_id: str | None,
        limit: int,
    ) -> list[PerformanceSample]:
        stmt = select(AdaptiveAnswer).where(AdaptiveAnswer.learner_id == learner_id)
        if topic_id is not None:
            stmt = stmt.where(AdaptiveAnswer.topic_id == topic_id)
        stmt = stmt.order_by(AdaptiveAnswer.created_at.desc(), AdaptiveAnswer.id.desc()).limit(limit)

        async with _transaction(self.session_factory, "recent_samples") as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [
                PerformanceSample(
                    learner_id=row.learner_id,
                    topic_id=row.topic_id,
                    difficulty=_parse_difficulty(row.difficulty),
                    is_correct=bool(row.is_correct),
                    subtopic_id=row.subtopic_id,
                    time_taken_ms=row.time_taken_ms or 0,
                    hints_used=row.hints_used or 0,
                    attempts=row.attempts or 1,
                    timestamp_ms=_to_ms(row.created_at),
                )
                for row in rows
            ]
