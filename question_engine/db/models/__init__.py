# SQLAlchemy models
from .base import Base
from .history import QuestionHistory
from .performance import AdaptiveAnswer, Learner
from .questions import CachedQuestion, CuratedQuestion, QuestionUsage

__all__ = [
    # Base
    "Base",
    # Questions
    "CachedQuestion",
    "CuratedQuestion",
    "QuestionUsage",
    # History
    "QuestionHistory",
    # Performance
    "Learner",
    "AdaptiveAnswer",
]
