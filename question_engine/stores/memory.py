"""
In-memory store implementations.

Used by tests and by single-process deployments that do not need durability.
They honor the same contracts as the SQL stores, including the atomic
check-then-insert on content hash.
"""

from __future__ import annotations

import asyncio
import itertools
import random
from collections import defaultdict
from dataclasses import replace
from datetime import datetime

from question_engine.models import (
    PerformanceSample,
    PersistedHistoryEntry,
    QuestionRecord,
    UsageEvent,
)

from .base import CuratedFilter, QuestionFilter, rank_candidates


class InMemoryQuestionStore:
    """Question cache held in a dict keyed by id."""

    def __init__(self, records: list[QuestionRecord] | None = None, rng: random.Random | None = None):
        self._records: dict[str, QuestionRecord] = {}
        self._by_hash: dict[str, str] = {}
        self._usage: list[UsageEvent] = []
        self._ids = itertools.count(1)
        self._insert_lock = asyncio.Lock()
        self._rng = rng or random.Random()
        for record in records or []:
            self._records[record.id] = record
            self._by_hash[record.content_hash] = record.id

    @property
    def records(self) -> list[QuestionRecord]:
        return list(self._records.values())

    @property
    def usage_events(self) -> list[UsageEvent]:
        return list(self._usage)

    def _matches(self, record: QuestionRecord, query: QuestionFilter) -> bool:
        if not record.is_active or record.id in query.exclude_ids:
            return False
        if record.difficulty != query.difficulty:
            return False
        if query.topic_id is not None and record.topic_id != query.topic_id:
            return False
        if query.subtopic_id is not None and record.subtopic_id != query.subtopic_id:
            return False
        if query.grade_level is not None and record.grade_level not in (None, query.grade_level):
            return False
        return True

    async def find_candidates(self, query: QuestionFilter) -> list[QuestionRecord]:
        matches = [record for record in self._records.values() if self._matches(record, query)]
        return rank_candidates(matches, self._rng)[: query.limit]

    async def get(self, question_id: str) -> QuestionRecord | None:
        return self._records.get(question_id)

    async def find_by_hash(self, content_hash: str) -> QuestionRecord | None:
        question_id = self._by_hash.get(content_hash)
        return self._records.get(question_id) if question_id else None

    async def insert_if_absent(self, record: QuestionRecord) -> tuple[str, bool]:
        async with self._insert_lock:
            existing = self._by_hash.get(record.content_hash)
            if existing is not None:
                return existing, False
            question_id = record.id or str(next(self._ids))
            while question_id in self._records:
                question_id = str(next(self._ids))
            stored = replace(record, id=question_id)
            self._records[question_id] = stored
            self._by_hash[stored.content_hash] = question_id
            return question_id, True

    async def increment_usage(self, question_id: str) -> int | None:
        record = self._records.get(question_id)
        if record is None:
            return None
        record.usage_count += 1
        return record.usage_count

    async def append_usage(self, event: UsageEvent) -> None:
        self._usage.append(event)

    async def usage_outcomes(self, question_id: str) -> list[bool]:
        return [event.is_correct for event in self._usage if event.question_id == question_id]

    async def update_metrics(self, question_id: str, success_rate: float, quality_score: float) -> None:
        record = self._records.get(question_id)
        if record is not None:
            record.success_rate = success_rate
            record.quality_score = quality_score

    async def recent_usage_ids(self, learner_id: str, limit: int = 100) -> list[str]:
        events = [event for event in reversed(self._usage) if event.learner_id == learner_id]
        events.sort(key=lambda event: event.recorded_at, reverse=True)
        return [event.question_id for event in events[:limit]]


class InMemoryCuratedBank:
    """Read-only curated bank; records are indexed by their topic label."""

    def __init__(self, records_by_label: dict[str, list[QuestionRecord]] | None = None, rng: random.Random | None = None):
        self._by_label: dict[str, list[QuestionRecord]] = defaultdict(list)
        self._rng = rng or random.Random()
        for label, records in (records_by_label or {}).items():
            self._by_label[label].extend(records)

    async def find_candidates(self, query: CuratedFilter) -> list[QuestionRecord]:
        seen: set[str] = set()
        matches: list[QuestionRecord] = []
        for label in query.topic_labels:
            for record in self._by_label.get(label, []):
                if record.id in seen or not record.is_active or record.id in query.exclude_ids:
                    continue
                if query.difficulty is not None and record.difficulty != query.difficulty:
                    continue
                if query.min_grade is not None and (record.grade_level is None or record.grade_level < query.min_grade):
                    continue
                if query.max_grade is not None and (record.grade_level is None or record.grade_level > query.max_grade):
                    continue
                seen.add(record.id)
                matches.append(record)
        self._rng.shuffle(matches)
        return matches[: query.limit]


class InMemoryHistoryStore:
    """Append-only exposure history."""

    def __init__(self):
        self.entries: list[PersistedHistoryEntry] = []

    async def append(self, entry: PersistedHistoryEntry) -> None:
        self.entries.append(entry)

    async def recent(
        self,
        learner_id: str,
        topic_id: str | None,
        since: datetime,
        limit: int = 20,
    ) -> list[PersistedHistoryEntry]:
        rows = [
            entry
            for entry in self.entries
            if entry.learner_id == learner_id
            and entry.asked_at > since
            and (topic_id is None or entry.topic_id == topic_id)
        ]
        rows.sort(key=lambda entry: entry.asked_at, reverse=True)
        return rows[:limit]


class InMemoryPerformanceStore:
    """Append-only answer outcomes."""

    def __init__(self):
        self.learners: set[str] = set()
        self.samples: list[PerformanceSample] = []

    async def ensure_learner(self, learner_id: str) -> None:
        self.learners.add(learner_id)

    async def append_sample(self, sample: PerformanceSample) -> None:
        self.samples.append(sample)

    async def recent_samples(
        self,
        learner_id: str,
        topic_id: str | None,
        limit: int,
    ) -> list[PerformanceSample]:
        rows = [
            sample
            for sample in self.samples
            if sample.learner_id == learner_id and (topic_id is None or sample.topic_id == topic_id)
        ]
        # Later inserts win timestamp ties
        rows = list(reversed(rows))
        rows.sort(key=lambda sample: sample.timestamp_ms, reverse=True)
        return rows[:limit]
