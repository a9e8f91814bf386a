"""
Store protocols consumed by the question engine.

- QuestionStore: cached questions (query, insert-with-dedup, usage/quality updates)
- CuratedBank: read-only curated questions, queried by mapped topic labels
- HistoryStore: durable, append-only exposure history
- PerformanceStore: append-only answer outcomes per learner and topic

Every implementation raises StoreError on persistence failure.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Protocol

from question_engine.models import (
    Difficulty,
    PerformanceSample,
    PersistedHistoryEntry,
    QuestionRecord,
    UsageEvent,
)


@dataclass
class QuestionFilter:
    """Filter for the question cache."""

    difficulty: Difficulty
    topic_id: str | None = None
    subtopic_id: str | None = None  # None = any subtopic
    grade_level: int | None = None  # matches equal grade or records without a grade
    exclude_ids: set[str] = field(default_factory=set)
    limit: int = 5


@dataclass
class CuratedFilter:
    """Filter for the curated bank."""

    topic_labels: list[str]
    difficulty: Difficulty | None = None
    min_grade: int | None = None
    max_grade: int | None = None
    exclude_ids: set[str] = field(default_factory=set)
    limit: int = 5


def rank_candidates(records: Iterable[QuestionRecord], rng: random.Random | None = None) -> list[QuestionRecord]:
    """
    Order cached questions for delivery.

    Quality tier descending, then usage count ascending (underused first),
    then random.
    """
    rng = rng or random.Random()
    keyed = [(-record.quality_tier(), record.usage_count, rng.random(), record) for record in records]
    keyed.sort(key=lambda item: item[:3])
    return [item[3] for item in keyed]


class QuestionStore(Protocol):
    """Question cache written to by ingestion and the feedback loop."""

    async def find_candidates(self, query: QuestionFilter) -> list[QuestionRecord]:
        """Active records matching the filter, ranked, at most query.limit."""
        ...

    async def get(self, question_id: str) -> QuestionRecord | None:
        ...

    async def find_by_hash(self, content_hash: str) -> QuestionRecord | None:
        ...

    async def insert_if_absent(self, record: QuestionRecord) -> tuple[str, bool]:
        """Insert unless the content hash exists. Returns (id, created)."""
        ...

    async def increment_usage(self, question_id: str) -> int | None:
        """Increment usage_count and return the new value (None if unknown)."""
        ...

    async def append_usage(self, event: UsageEvent) -> None:
        ...

    async def usage_outcomes(self, question_id: str) -> list[bool]:
        ...

    async def update_metrics(self, question_id: str, success_rate: float, quality_score: float) -> None:
        ...

    async def recent_usage_ids(self, learner_id: str, limit: int = 100) -> list[str]:
        """Question ids from the learner's most recent uses, newest first."""
        ...


class CuratedBank(Protocol):
    """Read-only curated question bank."""

    async def find_candidates(self, query: CuratedFilter) -> list[QuestionRecord]:
        """Active curated records matching the filter in random order, at most query.limit."""
        ...


class HistoryStore(Protocol):
    """Durable exposure history."""

    async def append(self, entry: PersistedHistoryEntry) -> None:
        ...

    async def recent(
        self,
        learner_id: str,
        topic_id: str | None,
        since: datetime,
        limit: int = 20,
    ) -> list[PersistedHistoryEntry]:
        """Entries asked after `since`, newest first."""
        ...


class PerformanceStore(Protocol):
    """Answer outcomes feeding the difficulty controller."""

    async def ensure_learner(self, learner_id: str) -> None:
        """Idempotently create the learner record on first reference."""
        ...

    async def append_sample(self, sample: PerformanceSample) -> None:
        ...

    async def recent_samples(
        self,
        learner_id: str,
        topic_id: str | None,
        limit: int,
    ) -> list[PerformanceSample]:
        """Most recent samples, newest first (all topics when topic_id is None)."""
        ...
