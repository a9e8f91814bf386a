"""
Tiered question resolution.

Tiers, first hit wins:
1. Exact: cache filtered by difficulty, topic, subtopic (when requested),
   grade (equal or unset), minus the exclusion set and the learner's recent
   usage. Random pick among the top-ranked candidates.
2. Curated: read-only bank, topic keys translated to curated labels,
   grade within a tolerance window. Random pick.
3. Broad: exact tier again without the subtopic (only when one was requested).
4. GenerationRequired: the caller generates new content and ingests it.

A store failure empties its tier; resolution continues with the next one.
"""

from __future__ import annotations

import random

from loguru import logger

from .errors import StoreError
from .fingerprint import content_hash
from .models import (
    BroadHit,
    CuratedHit,
    Difficulty,
    ExactHit,
    GenerationRequired,
    Outcome,
    QuestionRecord,
    SourceTag,
)
from .schemas import GeneratedQuestion, QuestionRequest
from .stores.base import CuratedBank, CuratedFilter, QuestionFilter, QuestionStore
from .topics import TopicMapper


class QuestionResolver:
    """Resolves a request to a cached or curated question, or asks for generation."""

    def __init__(
        self,
        question_store: QuestionStore,
        curated_bank: CuratedBank | None = None,
        topic_mapper: TopicMapper | None = None,
        rng: random.Random | None = None,
        top_candidates: int = 5,
        usage_history_limit: int = 100,
        curated_grade_tolerance: int = 1,
        curated_min_grade: int = 7,
        generated_quality_baseline: float = 70.0,
    ):
        self.question_store = question_store
        self.curated_bank = curated_bank
        self.topic_mapper = topic_mapper or TopicMapper()
        self._rng = rng or random.Random()
        self.top_candidates = top_candidates
        self.usage_history_limit = usage_history_limit
        self.curated_grade_tolerance = curated_grade_tolerance
        self.curated_min_grade = curated_min_grade
        self.generated_quality_baseline = generated_quality_baseline

    # ========================================
    # Resolution
    # ========================================

    async def resolve(self, request: QuestionRequest) -> Outcome:
        difficulty = request.difficulty or Difficulty.MEDIUM
        exclusions = set(request.exclusion_ids)
        logger.debug(
            f"Resolving {request.topic_id}/{request.subtopic_id} at {difficulty.value} "
            f"(grade={request.grade_level}, excluded={len(exclusions)})"
        )

        cache_exclusions = exclusions | await self._recent_usage(request.learner_id)

        record = await self._pick_cached(request, difficulty, request.subtopic_id, cache_exclusions, "exact")
        if record is not None:
            logger.info(f"Exact cache hit: {record.id}")
            return ExactHit(record)

        record = await self._pick_curated(request, difficulty, exclusions)
        if record is not None:
            logger.info(f"Curated bank hit: {record.id}")
            return CuratedHit(record)

        if request.subtopic_id is not None:
            record = await self._pick_cached(request, difficulty, None, cache_exclusions, "broad")
            if record is not None:
                logger.info(f"Topic-level cache hit: {record.id}")
                return BroadHit(record)

        logger.info(f"No cached question for {request.topic_id}/{request.subtopic_id}, generation required")
        params = request.echoed_params()
        params["difficulty"] = difficulty.value
        return GenerationRequired(params=params)

    async def _recent_usage(self, learner_id: str | None) -> set[str]:
        if not learner_id or self.usage_history_limit <= 0:
            return set()
        try:
            return set(await self.question_store.recent_usage_ids(learner_id, self.usage_history_limit))
        except StoreError as e:
            logger.warning(f"Usage history unavailable for {learner_id}: {e}")
            return set()

    def _pick(self, candidates: list[QuestionRecord], exclusions: set[str]) -> QuestionRecord | None:
        eligible = [record for record in candidates if record.id not in exclusions]
        if not eligible:
            return None
        return self._rng.choice(eligible[: self.top_candidates])

    async def _pick_cached(
        self,
        request: QuestionRequest,
        difficulty: Difficulty,
        subtopic_id: str | None,
        exclusions: set[str],
        tier: str,
    ) -> QuestionRecord | None:
        query = QuestionFilter(
            difficulty=difficulty,
            topic_id=request.topic_id,
            subtopic_id=subtopic_id,
            grade_level=request.grade_level,
            exclude_ids=exclusions,
            limit=self.top_candidates,
        )
        try:
            candidates = await self.question_store.find_candidates(query)
        except StoreError as e:
            logger.warning(f"Cache lookup failed ({tier} tier): {e}")
            return None
        return self._pick(candidates, exclusions)

    async def _pick_curated(
        self,
        request: QuestionRequest,
        difficulty: Difficulty,
        exclusions: set[str],
    ) -> QuestionRecord | None:
        if self.curated_bank is None:
            return None
        labels = self.topic_mapper.curated_labels(request.topic_name, request.subtopic_name)
        if not labels:
            logger.debug(f"No curated labels for topic '{request.topic_name}'")
            return None

        min_grade = max_grade = None
        if request.grade_level is not None:
            min_grade = max(self.curated_min_grade, request.grade_level - self.curated_grade_tolerance)
            max_grade = request.grade_level + self.curated_grade_tolerance

        query = CuratedFilter(
            topic_labels=labels,
            difficulty=difficulty,
            min_grade=min_grade,
            max_grade=max_grade,
            exclude_ids=exclusions,
            limit=self.top_candidates,
        )
        try:
            candidates = await self.curated_bank.find_candidates(query)
        except StoreError as e:
            logger.warning(f"Curated bank lookup failed: {e}")
            return None
        return self._pick(candidates, exclusions)

    # ========================================
    # Ingestion
    # ========================================

    async def ingest_generated(self, candidate: GeneratedQuestion) -> str | None:
        """
        Cache a generated question, deduplicating on its content hash.

        Returns the id of the new record, the id of the existing record when
        equivalent text is already cached, or None when the store failed.

        Raises:
            InvalidQuestionError: If the text normalizes to nothing
        """
        record = QuestionRecord(
            id="",
            text=candidate.question,
            correct_answer=candidate.correct_answer,
            topic_id=candidate.topic_id,
            topic_name=candidate.topic_name,
            difficulty=candidate.difficulty,
            content_hash=content_hash(candidate.question),
            hints=list(candidate.hints),
            explanation=candidate.explanation,
            solution_steps=list(candidate.solution_steps),
            subtopic_id=candidate.subtopic_id,
            subtopic_name=candidate.subtopic_name,
            grade_level=candidate.grade_level,
            quality_score=self.generated_quality_baseline,
            source_tag=SourceTag.CACHE_GENERATED,
        )
        try:
            question_id, created = await self.question_store.insert_if_absent(record)
        except StoreError as e:
            logger.warning(f"Could not cache generated question: {e}")
            return None

        if created:
            logger.info(f"Cached generated question {question_id}")
        else:
            logger.info(f"Generated question already cached as {question_id}")
        return question_id
