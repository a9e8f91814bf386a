"""Database layer: SQLAlchemy models and engine/session management."""

from question_engine.db.database import (
    async_session_scope,
    create_async_session_factory,
    dispose_engines,
    get_async_session_factory,
    get_engine,
    init_db,
    session_scope,
)
from question_engine.db.models import (
    AdaptiveAnswer,
    Base,
    CachedQuestion,
    CuratedQuestion,
    Learner,
    QuestionHistory,
    QuestionUsage,
)

__all__ = [
    "AdaptiveAnswer",
    "Base",
    "CachedQuestion",
    "CuratedQuestion",
    "Learner",
    "QuestionHistory",
    "QuestionUsage",
    "async_session_scope",
    "create_async_session_factory",
    "dispose_engines",
    "get_async_session_factory",
    "get_engine",
    "init_db",
    "session_scope",
]
