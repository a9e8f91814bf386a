"""
Question history tracking.

Two layers:
- Session window: per (learner, topic) bounded deque of recent exposures,
  authoritative for the current interaction. Oldest entries are evicted first.
- Durable history: hashed exposures written best-effort to a HistoryStore and
  read back by recency window for cross-session avoidance.

Persistence never blocks delivery: durable writes run as background tasks and
store failures are logged, not raised.
"""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from datetime import timedelta

from loguru import logger

from .errors import InvalidQuestionError, StoreError
from .fingerprint import content_hash, extract_keywords, extract_numbers, overlap_ratio
from .models import DeliveredQuestion, HistoryEntry, PersistedHistoryEntry, now_ms, utcnow
from .stores.base import HistoryStore

SessionKey = tuple[str, str | None]

SESSION_PREVIEW_COUNT = 5
PERSISTED_PREVIEW_COUNT = 5


class SessionHistoryState:
    """
    Injectable container for session windows.

    One deque and one asyncio.Lock per (learner, topic). Different keys never
    contend; the threading lock only guards creation of new keys.
    """

    def __init__(self, window_size: int = 30):
        if window_size < 1:
            raise ValueError("window_size must be positive")
        self.window_size = window_size
        self._windows: dict[SessionKey, deque[HistoryEntry]] = {}
        self._locks: dict[SessionKey, asyncio.Lock] = {}
        self._guard = threading.Lock()

    def lock_for(self, key: SessionKey) -> asyncio.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[key] = lock
            return lock

    def window(self, key: SessionKey) -> deque[HistoryEntry]:
        with self._guard:
            window = self._windows.get(key)
            if window is None:
                window = deque(maxlen=self.window_size)
                self._windows[key] = window
            return window

    def snapshot(self, key: SessionKey) -> list[HistoryEntry]:
        with self._guard:
            return list(self._windows.get(key, ()))

    def drop(self, learner_id: str, topic_id: str | None = None, all_topics: bool = False) -> int:
        """Remove session windows; returns how many were dropped."""
        with self._guard:
            if all_topics:
                keys = [key for key in self._windows if key[0] == learner_id]
            else:
                keys = [(learner_id, topic_id)] if (learner_id, topic_id) in self._windows else []
            for key in keys:
                self._windows.pop(key, None)
                self._locks.pop(key, None)
            return len(keys)

    def sizes(self) -> dict[SessionKey, int]:
        with self._guard:
            return {key: len(window) for key, window in self._windows.items()}


class HistoryTracker:
    """Session and durable question history for one process."""

    def __init__(
        self,
        history_store: HistoryStore | None = None,
        state: SessionHistoryState | None = None,
        window_size: int = 30,
        retention_days: int = 14,
        persisted_limit: int = 20,
        similarity_threshold: float = 0.5,
        avoidance_days: int = 7,
    ):
        self.history_store = history_store
        self.state = state or SessionHistoryState(window_size)
        self.retention_days = retention_days
        self.persisted_limit = persisted_limit
        self.similarity_threshold = similarity_threshold
        self.avoidance_days = avoidance_days
        self._pending: set[asyncio.Task] = set()

    # ========================================
    # Session window
    # ========================================

    async def record(
        self,
        learner_id: str,
        topic_id: str | None,
        delivered: DeliveredQuestion,
    ) -> HistoryEntry:
        """
        Append a delivered question to the learner's session window.

        Also schedules a best-effort durable write when a history store is
        configured.

        Raises:
            InvalidQuestionError: If the delivered question has no hashable text
        """
        text = (delivered.question_text or "").strip()
        if not text:
            raise InvalidQuestionError("Cannot record a question without text")
        question_hash = content_hash(text)

        entry = HistoryEntry(
            question_id=delivered.question_id,
            question_text=text,
            timestamp_ms=now_ms(),
            difficulty=delivered.difficulty,
            source_tag=delivered.source_tag,
            keywords=extract_keywords(text),
            numbers=extract_numbers(text),
        )

        key = (learner_id, topic_id)
        async with self.state.lock_for(key):
            window = self.state.window(key)
            window.append(entry)
            size = len(window)

        logger.debug(f"History {learner_id}/{topic_id}: recorded question {entry.question_id} ({size} in window)")
        if entry.question_id is None:
            logger.warning(
                f"History {learner_id}/{topic_id}: question recorded without id, "
                f"it cannot be excluded from cache lookups: {text[:50]!r}"
            )

        if self.history_store is not None:
            persisted = PersistedHistoryEntry(
                learner_id=learner_id,
                topic_id=topic_id,
                question_text=text,
                question_hash=question_hash,
                difficulty=delivered.difficulty,
                subtopic_id=delivered.subtopic_id,
            )
            task = asyncio.get_running_loop().create_task(self._persist(persisted))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        return entry

    async def _persist(self, entry: PersistedHistoryEntry) -> None:
        try:
            await self.history_store.append(entry)
        except StoreError as e:
            logger.warning(f"Could not persist history for learner {entry.learner_id}: {e}")

    async def drain(self) -> None:
        """Wait for scheduled durable writes to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    def exclusion_set(self, learner_id: str, topic_id: str | None, limit: int = 30) -> set[str]:
        """Ids of the most recent `limit` session entries that carry an id."""
        entries = self.state.snapshot((learner_id, topic_id))
        recent = entries[-limit:] if limit > 0 else []
        return {entry.question_id for entry in recent if entry.question_id is not None}

    def recent(self, learner_id: str, topic_id: str | None, count: int = 10) -> list[HistoryEntry]:
        """Last `count` session entries, oldest first."""
        entries = self.state.snapshot((learner_id, topic_id))
        return entries[-count:] if count > 0 else []

    def is_similar(
        self,
        candidate_text: str,
        recent_entries: list[HistoryEntry],
        threshold: float | None = None,
    ) -> bool:
        """
        Cheap near-duplicate check against recent entries.

        Similar when both the number overlap and the keyword overlap with any
        single entry exceed the threshold.
        """
        threshold = self.similarity_threshold if threshold is None else threshold
        numbers = set(extract_numbers(candidate_text))
        keywords = set(extract_keywords(candidate_text))

        for entry in recent_entries:
            number_ratio = overlap_ratio(numbers, set(entry.numbers))
            keyword_ratio = overlap_ratio(keywords, set(entry.keywords))
            if number_ratio > threshold and keyword_ratio > threshold:
                logger.debug(
                    f"Candidate similar to {entry.question_id} "
                    f"(numbers={number_ratio:.2f}, keywords={keyword_ratio:.2f})"
                )
                return True
        return False

    def clear(self, learner_id: str, topic_id: str | None = None) -> int:
        """Drop one topic's session window, or all of the learner's windows when topic_id is None."""
        dropped = self.state.drop(learner_id, topic_id, all_topics=topic_id is None)
        logger.info(f"Cleared {dropped} history window(s) for learner {learner_id}")
        return dropped

    # ========================================
    # Durable history
    # ========================================

    async def persisted_history(
        self,
        learner_id: str,
        topic_id: str | None = None,
        days: int | None = None,
    ) -> list[PersistedHistoryEntry]:
        """Most recent persisted exposures within the retention window (empty on store failure)."""
        if self.history_store is None:
            return []
        days = self.retention_days if days is None else days
        since = utcnow() - timedelta(days=days)
        try:
            return await self.history_store.recent(learner_id, topic_id, since, limit=self.persisted_limit)
        except StoreError as e:
            logger.warning(f"Could not load persisted history for learner {learner_id}: {e}")
            return []

    async def build_avoidance_prompt(self, learner_id: str, topic_id: str | None) -> str:
        """
        Prompt fragment listing questions the generator must not repeat.

        Combines the last few session questions with recent persisted ones.
        Returns an empty string when there is nothing to avoid.
        """
        lines: list[str] = []

        session_entries = self.recent(learner_id, topic_id, SESSION_PREVIEW_COUNT)
        if session_entries:
            lines.append("CRITICAL: never repeat these questions from this session:")
            for index, entry in enumerate(session_entries, start=1):
                lines.append(f'{index}. "{entry.question_text[:80]}..."')

        persisted = await self.persisted_history(learner_id, topic_id, days=self.avoidance_days)
        if persisted:
            now = utcnow()
            lines.append("")
            lines.append("Also avoid questions from the past week:")
            for index, entry in enumerate(persisted[:PERSISTED_PREVIEW_COUNT], start=1):
                days_ago = max((now - entry.asked_at).days, 0)
                lines.append(f'{index}. "{entry.question_text[:60]}..." ({days_ago}d ago)')

        if not lines:
            return ""

        lines.extend(
            [
                "",
                "Create something completely different:",
                "- Different numbers",
                "- Different context",
                "- Different approach",
            ]
        )
        return "\n".join(lines) + "\n"

    def stats(self) -> dict[str, float | int]:
        sizes = self.state.sizes()
        total_sessions = len(sizes)
        total_questions = sum(sizes.values())
        return {
            "total_sessions": total_sessions,
            "total_questions": total_questions,
            "avg_questions_per_session": round(total_questions / total_sessions, 1) if total_sessions else 0.0,
        }
