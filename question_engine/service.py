"""
Question delivery service.

Facade over the history tracker, resolver, difficulty controller, feedback
loop and (optionally) the generator. Routes and workers talk to this class;
it never raises for store or provider failures on the delivery path.

next_question() control flow:
1. Pick a difficulty (request value, else recommendation, else medium)
2. Merge the session exclusion set into the request
3. Resolve through the cache tiers
4. On GenerationRequired: generate, then ingest with dedup
5. Record the delivered question in the session history
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from loguru import logger
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import Settings, get_settings

from .db.database import create_async_session_factory, get_async_session_factory
from .difficulty import DifficultyController
from .errors import InvalidQuestionError
from .feedback import QualityFeedbackLoop
from .generation.client import GenerativeClient
from .generation.executor import ResilientCallExecutor, get_rate_limiter
from .generation.generator import QuestionGenerator
from .history import HistoryTracker
from .models import (
    DeliveredQuestion,
    Difficulty,
    DifficultyAdjustment,
    DifficultyRecommendation,
    GenerationRequired,
    Outcome,
    QuestionMetrics,
    QuestionRecord,
    SourceTag,
    UsageEvent,
)
from .resolution import QuestionResolver
from .schemas import AnswerOutcome, GeneratedQuestion, QuestionRequest
from .stores.sql import SqlCuratedBank, SqlHistoryStore, SqlPerformanceStore, SqlQuestionStore


@dataclass
class AnswerRecordResult:
    """What recording an answer changed."""

    adjustment: DifficultyAdjustment
    metrics: QuestionMetrics | None = None


@dataclass
class DeliveryResult:
    """Result of next_question(); `question` is None when nothing could be delivered."""

    difficulty: Difficulty
    outcome: Outcome
    question: DeliveredQuestion | None = None
    record: QuestionRecord | None = None
    generated: GeneratedQuestion | None = None
    recommendation: DifficultyRecommendation | None = None
    error: str | None = None

    @property
    def delivered(self) -> bool:
        return self.question is not None


class QuestionService:
    """Adaptive question delivery for one process."""

    def __init__(
        self,
        resolver: QuestionResolver,
        history: HistoryTracker,
        difficulty: DifficultyController,
        feedback: QualityFeedbackLoop,
        generator: QuestionGenerator | None = None,
        executor: ResilientCallExecutor | None = None,
    ):
        self.resolver = resolver
        self.history = history
        self.difficulty = difficulty
        self.feedback = feedback
        self.generator = generator
        self.executor = executor

    async def close(self) -> None:
        await self.history.drain()
        if self.executor is not None:
            await self.executor.close()

    # ========================================
    # Exposed operations
    # ========================================

    async def resolve_question(self, request: QuestionRequest) -> Outcome:
        return await self.resolver.resolve(request)

    async def ingest_generated(self, candidate: GeneratedQuestion | dict[str, Any]) -> str | None:
        """
        Cache generated content; returns the new or existing id (None on store failure).

        Raises:
            InvalidQuestionError: If the candidate has no usable text or answer
        """
        if not isinstance(candidate, GeneratedQuestion):
            try:
                candidate = GeneratedQuestion.model_validate(candidate)
            except ValidationError as e:
                raise InvalidQuestionError(f"Invalid generated question: {e.errors()[0]['msg']}") from e
        return await self.resolver.ingest_generated(candidate)

    async def record_answer(self, learner_id: str, topic_id: str | None, outcome: AnswerOutcome) -> AnswerRecordResult:
        adjustment = await self.difficulty.evaluate_adjustment(
            learner_id,
            topic_id,
            outcome.current_difficulty,
            outcome.is_correct,
            subtopic_id=outcome.subtopic_id,
            time_taken_ms=outcome.time_taken_ms,
            hints_used=outcome.hints_used,
            attempts=outcome.attempts,
        )

        metrics = None
        if outcome.question_id is not None:
            metrics = await self.feedback.record_usage(
                UsageEvent(
                    question_id=outcome.question_id,
                    learner_id=learner_id,
                    is_correct=outcome.is_correct,
                    time_spent_ms=outcome.time_taken_ms,
                    hints_used=outcome.hints_used,
                    attempts=outcome.attempts,
                )
            )
        return AnswerRecordResult(adjustment=adjustment, metrics=metrics)

    async def recommend_difficulty(self, learner_id: str, topic_id: str | None = None) -> DifficultyRecommendation:
        return await self.difficulty.recommend(learner_id, topic_id)

    def get_exclusion_set(self, learner_id: str, topic_id: str | None) -> set[str]:
        return self.history.exclusion_set(learner_id, topic_id)

    def reset_session(self, learner_id: str, topic_id: str | None = None) -> int:
        return self.history.clear(learner_id, topic_id)

    # ========================================
    # Full delivery flow
    # ========================================

    async def next_question(self, request: QuestionRequest) -> DeliveryResult:
        recommendation = None
        difficulty = request.difficulty
        if difficulty is None:
            if request.learner_id:
                recommendation = await self.difficulty.recommend(request.learner_id, request.topic_id)
                difficulty = recommendation.difficulty
            else:
                difficulty = Difficulty.MEDIUM

        exclusions = list(request.exclusion_ids)
        if request.learner_id:
            session_ids = self.history.exclusion_set(request.learner_id, request.topic_id)
            exclusions.extend(sorted(session_ids - set(exclusions)))

        resolved = request.model_copy(update={"difficulty": difficulty, "exclusion_ids": exclusions})
        outcome = await self.resolver.resolve(resolved)

        result = DeliveryResult(difficulty=difficulty, outcome=outcome, recommendation=recommendation)

        if isinstance(outcome, GenerationRequired):
            if self.generator is None:
                result.error = "generation_unavailable"
                return result

            generation = await self.generator.generate(resolved, difficulty)
            if not generation.success or generation.question is None:
                logger.warning(f"Generation failed for {request.topic_id}: {generation.error}")
                result.error = generation.error or "generation_failed"
                return result

            try:
                question_id = await self.resolver.ingest_generated(generation.question)
            except InvalidQuestionError as e:
                logger.warning(f"Generated question rejected for {request.topic_id}: {e}")
                result.error = f"invalid question: {e}"
                return result
            result.generated = generation.question
            result.question = DeliveredQuestion(
                question_text=generation.question.question,
                difficulty=difficulty,
                source_tag=SourceTag.CACHE_GENERATED,
                question_id=question_id,
                subtopic_id=request.subtopic_id,
            )
        else:
            result.record = outcome.record
            result.question = outcome.record.as_delivered()

        if request.learner_id:
            try:
                await self.history.record(request.learner_id, request.topic_id, result.question)
            except InvalidQuestionError as e:
                logger.warning(f"Delivered question not added to history for {request.learner_id}: {e}")
        return result


def create_service(
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> QuestionService:
    """Wire a QuestionService on the SQL stores and the configured generative service."""
    if session_factory is None:
        session_factory = (
            get_async_session_factory() if settings is None else create_async_session_factory(settings.database_url)
        )
    settings = settings or get_settings()

    question_store = SqlQuestionStore(session_factory)
    history = HistoryTracker(
        SqlHistoryStore(session_factory),
        window_size=settings.history_window_size,
        retention_days=settings.history_retention_days,
        persisted_limit=settings.history_persisted_limit,
        similarity_threshold=settings.history_similarity_threshold,
        avoidance_days=settings.history_avoidance_days,
    )
    resolver = QuestionResolver(
        question_store,
        SqlCuratedBank(session_factory),
        top_candidates=settings.resolution_top_candidates,
        usage_history_limit=settings.resolution_usage_history_limit,
        curated_grade_tolerance=settings.curated_grade_tolerance,
        curated_min_grade=settings.curated_min_grade,
        generated_quality_baseline=settings.generated_quality_baseline,
    )
    difficulty = DifficultyController(
        SqlPerformanceStore(session_factory),
        adjustment_window=settings.difficulty_adjustment_window,
        min_samples=settings.difficulty_min_samples,
        recommendation_window=settings.difficulty_recommendation_window,
    )
    feedback = QualityFeedbackLoop(question_store, min_samples=settings.quality_min_samples)

    executor = generator = None
    if settings.has_ai_configured():
        executor = ResilientCallExecutor(
            settings.ai_api_url,
            settings.anthropic_api_key,
            settings.ai_api_version,
            rate_limiter=get_rate_limiter(settings.executor_min_interval_ms),
            max_retries=settings.executor_max_retries,
            timeout_ms=settings.executor_timeout_ms,
            base_delay_ms=settings.executor_base_delay_ms,
            max_delay_ms=settings.executor_max_delay_ms,
            max_jitter_ms=settings.executor_max_jitter_ms,
        )
        client = GenerativeClient(
            executor,
            model=settings.ai_model,
            max_tokens=settings.ai_max_tokens,
            temperature=settings.ai_temperature,
            vision_temperature=settings.ai_vision_temperature,
        )
        generator = QuestionGenerator(client, history)
    else:
        logger.warning("No API key configured, question generation disabled")

    logger.info("Question service initialized")
    return QuestionService(resolver, history, difficulty, feedback, generator=generator, executor=executor)
