"""
Store protocols and implementations.
"""
from question_engine.stores.base import (
    CuratedBank,
    CuratedFilter,
    HistoryStore,
    PerformanceStore,
    QuestionFilter,
    QuestionStore,
    rank_candidates,
)
from question_engine.stores.memory import (
    InMemoryCuratedBank,
    InMemoryHistoryStore,
    InMemoryPerformanceStore,
    InMemoryQuestionStore,
)

__all__ = [
    # Protocols
    "QuestionStore",
    "CuratedBank",
    "HistoryStore",
    "PerformanceStore",
    # Filters
    "QuestionFilter",
    "CuratedFilter",
    "rank_candidates",
    # In-memory implementations
    "InMemoryQuestionStore",
    "InMemoryCuratedBank",
    "InMemoryHistoryStore",
    "InMemoryPerformanceStore",
]
