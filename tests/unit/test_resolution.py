"""
Unit tests for tiered question resolution and generated-content ingestion.
"""

import asyncio
import random

import pytest

from question_engine.errors import InvalidQuestionError, StoreError
from question_engine.models import (
    BroadHit,
    CuratedHit,
    Difficulty,
    ExactHit,
    GenerationRequired,
    MatchType,
    SourceTag,
    UsageEvent,
)
from question_engine.resolution import QuestionResolver
from question_engine.schemas import GeneratedQuestion, QuestionRequest
from question_engine.stores.memory import InMemoryCuratedBank, InMemoryQuestionStore


class UnavailableQuestionStore(InMemoryQuestionStore):
    async def find_candidates(self, query):
        raise StoreError("question lookup", OSError("connection refused"))

    async def recent_usage_ids(self, learner_id, limit=100):
        raise StoreError("usage lookup", OSError("connection refused"))

    async def insert_if_absent(self, record):
        raise StoreError("question insert", OSError("connection refused"))


class InterleavingQuestionStore(InMemoryQuestionStore):
    """Yields to the event loop before every insert so concurrent ingests overlap."""

    async def insert_if_absent(self, record):
        await asyncio.sleep(0)
        return await super().insert_if_absent(record)

@pytest.fixture
def resolver(question_store, curated_bank, rng):
    return QuestionResolver(question_store, curated_bank, rng=rng)


def curated(make_record, question_id, label_grade=8, difficulty=Difficulty.MEDIUM):
    return make_record(
        f"curated_{question_id}",
        difficulty=difficulty,
        grade_level=label_grade,
        source_tag=SourceTag.CURATED,
        topic_id=None,
    )


class TestExactTier:
    @pytest.mark.asyncio
    async def test_exact_hit(self, make_record, rng):
        store = InMemoryQuestionStore([make_record("1")], rng=rng)
        resolver = QuestionResolver(store, rng=rng)

        outcome = await resolver.resolve(QuestionRequest(topic_id="algebra", difficulty="medium"))

        assert isinstance(outcome, ExactHit)
        assert outcome.record.id == "1"
        assert outcome.match_type is MatchType.EXACT

    @pytest.mark.asyncio
    async def test_default_difficulty_is_medium(self, make_record, rng):
        store = InMemoryQuestionStore([make_record("1", difficulty=Difficulty.EASY), make_record("2")], rng=rng)

        outcome = await QuestionResolver(store, rng=rng).resolve(QuestionRequest(topic_id="algebra"))

        assert outcome.record.id == "2"

    @pytest.mark.asyncio
    async def test_excluded_ids_are_never_returned(self, make_record):
        records = [make_record(str(index)) for index in range(1, 9)]
        for seed in range(50):
            rng = random.Random(seed)
            excluded = {str(index) for index in rng.sample(range(1, 9), 6)}
            resolver = QuestionResolver(InMemoryQuestionStore(records, rng=rng), rng=rng)

            outcome = await resolver.resolve(
                QuestionRequest(topic_id="algebra", difficulty="medium", exclusion_ids=sorted(excluded))
            )

            assert isinstance(outcome, ExactHit)
            assert outcome.record.id not in excluded

    @pytest.mark.asyncio
    async def test_all_excluded_requires_generation(self, make_record, rng):
        store = InMemoryQuestionStore([make_record("1"), make_record("2")], rng=rng)

        outcome = await QuestionResolver(store, rng=rng).resolve(
            QuestionRequest(topic_id="algebra", difficulty="medium", exclusion_ids=["1", "2"])
        )

        assert isinstance(outcome, GenerationRequired)

    @pytest.mark.asyncio
    async def test_recent_usage_is_excluded(self, make_record, rng):
        store = InMemoryQuestionStore([make_record("1"), make_record("2")], rng=rng)
        await store.append_usage(UsageEvent("1", "learner-1", True))

        for _ in range(10):
            outcome = await QuestionResolver(store, rng=rng).resolve(
                QuestionRequest(topic_id="algebra", difficulty="medium", learner_id="learner-1")
            )
            assert outcome.record.id == "2"

    @pytest.mark.asyncio
    async def test_grade_matches_equal_or_unset(self, make_record, rng):
        store = InMemoryQuestionStore(
            [make_record("1", grade_level=9), make_record("2", grade_level=8), make_record("3")],
            rng=rng,
        )
        resolver = QuestionResolver(store, rng=rng)

        seen = set()
        for _ in range(30):
            outcome = await resolver.resolve(QuestionRequest(topic_id="algebra", difficulty="medium", grade_level=8))
            seen.add(outcome.record.id)

        assert seen == {"2", "3"}

    @pytest.mark.asyncio
    async def test_inactive_records_are_skipped(self, make_record, rng):
        store = InMemoryQuestionStore([make_record("1", is_active=False)], rng=rng)

        outcome = await QuestionResolver(store, rng=rng).resolve(QuestionRequest(topic_id="algebra", difficulty="medium"))

        assert isinstance(outcome, GenerationRequired)

    @pytest.mark.asyncio
    async def test_high_quality_ranked_first(self, make_record, rng):
        store = InMemoryQuestionStore(
            [make_record("low", quality_score=40), make_record("high", quality_score=90, usage_count=50)],
            rng=rng,
        )
        resolver = QuestionResolver(store, rng=rng, top_candidates=1)

        for _ in range(10):
            outcome = await resolver.resolve(QuestionRequest(topic_id="algebra", difficulty="medium"))
            assert outcome.record.id == "high"

    @pytest.mark.asyncio
    async def test_underused_ranked_first_within_tier(self, make_record, rng):
        store = InMemoryQuestionStore(
            [make_record("busy", quality_score=85, usage_count=40), make_record("fresh", quality_score=82, usage_count=1)],
            rng=rng,
        )
        resolver = QuestionResolver(store, rng=rng, top_candidates=1)

        outcome = await resolver.resolve(QuestionRequest(topic_id="algebra", difficulty="medium"))

        assert outcome.record.id == "fresh"


class TestFallbackTiers:
    @pytest.mark.asyncio
    async def test_curated_hit(self, make_record, question_store, rng):
        bank = InMemoryCuratedBank({"הסתברות": [curated(make_record, 1)]}, rng=rng)
        resolver = QuestionResolver(question_store, bank, rng=rng)

        outcome = await resolver.resolve(
            QuestionRequest(topic_id="stats", topic_name="probability", difficulty="medium", grade_level=8)
        )

        assert isinstance(outcome, CuratedHit)
        assert outcome.record.id == "curated_1"
        assert outcome.match_type is MatchType.CURATED

    @pytest.mark.asyncio
    async def test_curated_grade_window(self, make_record, question_store, rng):
        bank = InMemoryCuratedBank(
            {"הסתברות": [curated(make_record, 1, label_grade=10), curated(make_record, 2, label_grade=6)]},
            rng=rng,
        )
        resolver = QuestionResolver(question_store, bank, rng=rng)

        too_hard = await resolver.resolve(QuestionRequest(topic_name="probability", difficulty="medium", grade_level=8))
        floor = await resolver.resolve(QuestionRequest(topic_name="probability", difficulty="medium", grade_level=7))
        in_window = await resolver.resolve(QuestionRequest(topic_name="probability", difficulty="medium", grade_level=9))

        assert isinstance(too_hard, GenerationRequired)
        assert isinstance(floor, GenerationRequired)
        assert in_window.record.id == "curated_1"

    @pytest.mark.asyncio
    async def test_curated_respects_exclusions(self, make_record, question_store, rng):
        bank = InMemoryCuratedBank({"הסתברות": [curated(make_record, 1)]}, rng=rng)
        resolver = QuestionResolver(question_store, bank, rng=rng)

        outcome = await resolver.resolve(
            QuestionRequest(topic_name="probability", difficulty="medium", exclusion_ids=["curated_1"])
        )

        assert isinstance(outcome, GenerationRequired)

    @pytest.mark.asyncio
    async def test_exact_tier_wins_over_curated(self, make_record, rng):
        store = InMemoryQuestionStore([make_record("1", topic_id="stats")], rng=rng)
        bank = InMemoryCuratedBank({"הסתברות": [curated(make_record, 1)]}, rng=rng)

        outcome = await QuestionResolver(store, bank, rng=rng).resolve(
            QuestionRequest(topic_id="stats", topic_name="probability", difficulty="medium")
        )

        assert isinstance(outcome, ExactHit)

    @pytest.mark.asyncio
    async def test_broad_hit_drops_subtopic(self, make_record, rng):
        store = InMemoryQuestionStore([make_record("1", subtopic_id="other")], rng=rng)

        outcome = await QuestionResolver(store, rng=rng).resolve(
            QuestionRequest(topic_id="algebra", subtopic_id="wanted", difficulty="medium")
        )

        assert isinstance(outcome, BroadHit)
        assert outcome.record.id == "1"
        assert outcome.match_type is MatchType.TOPIC_LEVEL

    @pytest.mark.asyncio
    async def test_subtopic_match_is_exact(self, make_record, rng):
        store = InMemoryQuestionStore(
            [make_record("1", subtopic_id="other"), make_record("2", subtopic_id="wanted")], rng=rng
        )

        outcome = await QuestionResolver(store, rng=rng).resolve(
            QuestionRequest(topic_id="algebra", subtopic_id="wanted", difficulty="medium")
        )

        assert isinstance(outcome, ExactHit)
        assert outcome.record.id == "2"

    @pytest.mark.asyncio
    async def test_generation_required_echoes_params(self, resolver):
        outcome = await resolver.resolve(
            QuestionRequest(topic_id="algebra", topic_name="calculus", subtopic_id="s", grade_level=10)
        )

        assert isinstance(outcome, GenerationRequired)
        assert outcome.reason == "no_matching_cached_questions"
        assert outcome.params["difficulty"] == "medium"
        assert outcome.params["topic_id"] == "algebra"
        assert outcome.params["subtopic_id"] == "s"
        assert outcome.params["grade_level"] == 10

    @pytest.mark.asyncio
    async def test_store_failure_degrades_to_next_tier(self, make_record, rng):
        bank = InMemoryCuratedBank({"הסתברות": [curated(make_record, 1)]}, rng=rng)
        resolver = QuestionResolver(UnavailableQuestionStore(), bank, rng=rng)

        outcome = await resolver.resolve(
            QuestionRequest(topic_id="stats", topic_name="probability", difficulty="medium", learner_id="learner-1")
        )

        assert isinstance(outcome, CuratedHit)

    @pytest.mark.asyncio
    async def test_store_failure_everywhere_requires_generation(self, rng):
        resolver = QuestionResolver(UnavailableQuestionStore(), rng=rng)

        outcome = await resolver.resolve(QuestionRequest(topic_id="algebra", subtopic_id="s", difficulty="hard"))

        assert isinstance(outcome, GenerationRequired)
        assert outcome.params["difficulty"] == "hard"


class TestIngestGenerated:
    @pytest.mark.asyncio
    async def test_ingest_twice_yields_same_id(self, resolver, question_store):
        candidate = GeneratedQuestion(question="Solve: 2x+3=7", correct_answer="x = 2", topic_id="algebra")
        variant = GeneratedQuestion(question="solve:   2X +3=7  ", correct_answer="2", topic_id="algebra")

        first = await resolver.ingest_generated(candidate)
        second = await resolver.ingest_generated(candidate)
        third = await resolver.ingest_generated(variant)

        assert first is not None
        assert first == second == third
        assert len(question_store.records) == 1

    @pytest.mark.asyncio
    async def test_concurrent_ingest_of_equivalent_text(self, rng):
        store = InterleavingQuestionStore(rng=rng)
        resolver = QuestionResolver(store, rng=rng)
        candidate = GeneratedQuestion(question="What is 7 x 8?", correct_answer="56", topic_id="times")
        variant = GeneratedQuestion(question="what is 7 X 8", correct_answer="56", topic_id="times")

        ids = await asyncio.gather(*(resolver.ingest_generated(c) for c in (candidate, variant, candidate)))

        assert ids[0] is not None
        assert len(set(ids)) == 1
        assert len(store.records) == 1

    @pytest.mark.asyncio
    async def test_ingested_record_defaults(self, resolver, question_store):
        question_id = await resolver.ingest_generated(
            GeneratedQuestion(
                question="A bag has 3 red and 5 blue marbles. What is P(red)?",
                correct_answer="3/8",
                hints=["Count all marbles"],
                topic_id="stats",
                difficulty=Difficulty.HARD,
                grade_level=9,
            )
        )

        record = await question_store.get(question_id)
        assert record.source_tag is SourceTag.CACHE_GENERATED
        assert record.quality_score == 70.0
        assert record.usage_count == 0
        assert record.difficulty is Difficulty.HARD
        assert record.hints == ["Count all marbles"]

    @pytest.mark.asyncio
    async def test_ingested_question_is_resolvable(self, resolver):
        question_id = await resolver.ingest_generated(
            GeneratedQuestion(question="What is 15% of 80?", correct_answer="12", topic_id="percent")
        )

        outcome = await resolver.resolve(QuestionRequest(topic_id="percent", difficulty="medium"))

        assert outcome.record.id == question_id

    @pytest.mark.asyncio
    async def test_text_without_content_is_rejected(self, resolver):
        with pytest.raises(InvalidQuestionError):
            await resolver.ingest_generated(GeneratedQuestion.model_construct(question="?!", correct_answer="4"))

    @pytest.mark.asyncio
    async def test_store_failure_returns_none(self, rng):
        resolver = QuestionResolver(UnavailableQuestionStore(), rng=rng)

        result = await resolver.ingest_generated(GeneratedQuestion(question="What is 2 + 2?", correct_answer="4"))

        assert result is None
