"""
Question Engine: adaptive practice-question delivery.

This package contains:
- history: session window + durable exposure history, near-duplicate check
- resolution: tiered lookup (exact cache, curated bank, broad cache, generate)
- difficulty: rolling-accuracy difficulty controller
- feedback: usage/quality metrics for cached questions
- generation: resilient calls to the generative service and output parsing
- service: facade wiring the above together
"""

# Re-export key components for convenience
from question_engine.difficulty import DifficultyController
from question_engine.errors import InvalidQuestionError, QuestionEngineError, StoreError
from question_engine.feedback import QualityFeedbackLoop, compute_quality_score
from question_engine.history import HistoryTracker, SessionHistoryState
from question_engine.models import (
    BroadHit,
    CuratedHit,
    Difficulty,
    ExactHit,
    GenerationRequired,
    QuestionRecord,
    SourceTag,
)
from question_engine.resolution import QuestionResolver
from question_engine.schemas import AnswerOutcome, GeneratedQuestion, QuestionRequest
from question_engine.service import QuestionService, create_service

__all__ = [
    # Components
    "DifficultyController",
    "HistoryTracker",
    "SessionHistoryState",
    "QualityFeedbackLoop",
    "QuestionResolver",
    "QuestionService",
    "create_service",
    "compute_quality_score",
    # Models
    "Difficulty",
    "SourceTag",
    "QuestionRecord",
    "ExactHit",
    "CuratedHit",
    "BroadHit",
    "GenerationRequired",
    # Boundary DTOs
    "QuestionRequest",
    "GeneratedQuestion",
    "AnswerOutcome",
    # Errors
    "QuestionEngineError",
    "StoreError",
    "InvalidQuestionError",
]
