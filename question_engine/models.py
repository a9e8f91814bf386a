"""
Core data models for adaptive question delivery.

Implements:
- QuestionRecord: cached or curated practice question with quality metadata
- HistoryEntry / PersistedHistoryEntry: one exposure of a question to a learner
- PerformanceSample: one recorded answer outcome
- UsageEvent: one answered use of a cached question
- DifficultyAdjustment / DifficultyRecommendation: difficulty controller output
- Resolution outcomes: ExactHit, CuratedHit, BroadHit, GenerationRequired

Quality tiers (used for ranking cached questions):
- high: quality_score >= 80
- mid: quality_score >= 60
- low: everything else
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from .errors import ErrorClass

QUALITY_FLOOR = 30.0
QUALITY_CEILING = 100.0
HIGH_QUALITY_THRESHOLD = 80.0
MID_QUALITY_THRESHOLD = 60.0


def now_ms() -> int:
    """Current wall-clock time in milliseconds."""
    return int(time.time() * 1000)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Difficulty(str, Enum):
    """Difficulty tiers, ordered easy < medium < hard."""

    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"

    def harder(self) -> Difficulty:
        """One tier up (hard stays hard)."""
        return Difficulty.MEDIUM if self is Difficulty.EASY else Difficulty.HARD

    def easier(self) -> Difficulty:
        """One tier down (easy stays easy)."""
        return Difficulty.MEDIUM if self is Difficulty.HARD else Difficulty.EASY

    @property
    def label(self) -> str:
        return {"easy": "Easy", "medium": "Medium", "hard": "Challenging"}[self.value]


class SourceTag(str, Enum):
    """Where a question record came from."""

    CACHE_GENERATED = "cache-generated"
    CURATED = "curated"
    INGESTED = "ingested"


class MatchType(str, Enum):
    """Which resolution tier produced a question."""

    EXACT = "exact"
    CURATED = "curated"
    TOPIC_LEVEL = "topic_level"


@dataclass
class QuestionRecord:
    """A cached or curated practice question."""

    id: str
    text: str
    correct_answer: str
    topic_id: str | None
    topic_name: str | None
    difficulty: Difficulty
    content_hash: str
    hints: list[str] = field(default_factory=list)
    explanation: str = ""
    solution_steps: list[str] = field(default_factory=list)
    subtopic_id: str | None = None
    subtopic_name: str | None = None
    grade_level: int | None = None
    quality_score: float = 50.0
    usage_count: int = 0
    success_rate: float = 0.0
    source_tag: SourceTag = SourceTag.CACHE_GENERATED
    is_active: bool = True

    def quality_tier(self) -> int:
        """2 for high quality, 1 for mid, 0 for low."""
        if self.quality_score >= HIGH_QUALITY_THRESHOLD:
            return 2
        if self.quality_score >= MID_QUALITY_THRESHOLD:
            return 1
        return 0

    def as_delivered(self) -> DeliveredQuestion:
        return DeliveredQuestion(
            question_text=self.text,
            difficulty=self.difficulty,
            source_tag=self.source_tag,
            question_id=self.id,
            subtopic_id=self.subtopic_id,
        )


@dataclass
class DeliveredQuestion:
    """A question as handed to a learner; the id is absent for uncached content."""

    question_text: str
    difficulty: Difficulty
    source_tag: SourceTag
    question_id: str | None = None
    subtopic_id: str | None = None


@dataclass
class HistoryEntry:
    """One exposure of a question within a learner's session window."""

    question_id: str | None
    question_text: str
    timestamp_ms: int
    difficulty: Difficulty
    source_tag: SourceTag
    keywords: list[str] = field(default_factory=list)
    numbers: list[str] = field(default_factory=list)


@dataclass
class PersistedHistoryEntry:
    """Durable copy of a history entry, keyed by hashed question text."""

    learner_id: str
    topic_id: str | None
    question_text: str
    question_hash: str
    difficulty: Difficulty
    subtopic_id: str | None = None
    is_correct: bool | None = None
    asked_at: datetime = field(default_factory=utcnow)


@dataclass
class PerformanceSample:
    """One recorded answer outcome."""

    learner_id: str
    topic_id: str | None
    difficulty: Difficulty
    is_correct: bool
    subtopic_id: str | None = None
    time_taken_ms: int = 0
    hints_used: int = 0
    attempts: int = 1
    timestamp_ms: int = field(default_factory=now_ms)


@dataclass
class UsageEvent:
    """One answered use of a cached question, feeding the quality loop."""

    question_id: str
    learner_id: str | None
    is_correct: bool
    time_spent_ms: int = 0
    hints_used: int = 0
    attempts: int = 1
    recorded_at: datetime = field(default_factory=utcnow)


@dataclass
class QuestionMetrics:
    """Usage and quality metrics after a feedback update."""

    question_id: str
    usage_count: int
    success_rate: float
    quality_score: float


@dataclass
class DifficultyAdjustment:
    """Result of an adjustment evaluation."""

    should_adjust: bool
    new_difficulty: Difficulty
    reason: str
    confidence: float
    stats: dict[str, Any] = field(default_factory=dict)


@dataclass
class DifficultyRecommendation:
    """Starting difficulty for a fresh session."""

    difficulty: Difficulty
    confidence: float
    reason: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class RetryAttempt:
    """One failed attempt made by the call executor (transient)."""

    attempt_index: int
    computed_delay_ms: float
    classified_error: ErrorClass
    status_code: int | None = None
    message: str = ""


# ========================================
# Resolution Outcomes
# ========================================


@dataclass
class ExactHit:
    record: QuestionRecord
    match_type: MatchType = MatchType.EXACT


@dataclass
class CuratedHit:
    record: QuestionRecord
    match_type: MatchType = MatchType.CURATED


@dataclass
class BroadHit:
    record: QuestionRecord
    match_type: MatchType = MatchType.TOPIC_LEVEL


@dataclass
class GenerationRequired:
    """No cached or curated question matched; new content must be generated."""

    params: dict[str, Any]
    reason: str = "no_matching_cached_questions"


Outcome = Union[ExactHit, CuratedHit, BroadHit, GenerationRequired]
