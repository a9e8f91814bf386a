"""
Adaptive difficulty controller.

Moves a learner between easy, medium and hard from rolling accuracy over
their most recent answers for a topic.

Adjustment (last 5 answers, at least 3 required), first matching rule wins:
- accuracy >= 90 and not hard      -> one tier up
- 70 <= accuracy < 90 and easy     -> medium
- accuracy < 40 and not easy       -> one tier down
- accuracy < 50 and medium         -> easy
- otherwise                        -> no change
confidence = min(samples / 5, 1)

Recommendation for a fresh session (last 10 answers):
- accuracy >= 85 -> hard, >= 60 -> medium, else easy
- no answers -> medium with confidence 0
confidence = min(samples / 10, 1)
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from .errors import StoreError
from .models import (
    Difficulty,
    DifficultyAdjustment,
    DifficultyRecommendation,
    PerformanceSample,
    now_ms,
)
from .stores.base import PerformanceStore

ESCALATE_ACCURACY = 90.0
EASY_PROMOTE_ACCURACY = 70.0
DEESCALATE_ACCURACY = 40.0
MEDIUM_DEMOTE_ACCURACY = 50.0

RECOMMEND_HARD_ACCURACY = 85.0
RECOMMEND_MEDIUM_ACCURACY = 60.0


def accuracy_of(samples: list[PerformanceSample]) -> tuple[float, int]:
    """(accuracy percent, correct count); 0.0 for no samples."""
    correct = sum(1 for sample in samples if sample.is_correct)
    return (correct / len(samples) * 100 if samples else 0.0), correct


def calculate_streak(samples: list[PerformanceSample]) -> dict[str, Any]:
    """
    Run of identical results starting at the newest sample.

    Samples must be newest first. Returns {"count": n, "type": "correct" |
    "incorrect" | None}.
    """
    if not samples:
        return {"count": 0, "type": None}
    first = samples[0].is_correct
    count = 0
    for sample in samples:
        if sample.is_correct != first:
            break
        count += 1
    return {"count": count, "type": "correct" if first else "incorrect"}


def decide(accuracy: float, current: Difficulty) -> tuple[Difficulty, str]:
    """Apply the adjustment rule cascade; returns (new difficulty, reason)."""
    if accuracy >= ESCALATE_ACCURACY and current is not Difficulty.HARD:
        return current.harder(), f"Excellent accuracy ({accuracy:.0f}%), time to level up"
    if EASY_PROMOTE_ACCURACY <= accuracy < ESCALATE_ACCURACY and current is Difficulty.EASY:
        return Difficulty.MEDIUM, f"Good work ({accuracy:.0f}%), trying medium"
    if accuracy < DEESCALATE_ACCURACY and current is not Difficulty.EASY:
        return current.easier(), f"Accuracy {accuracy:.0f}%, strengthening the basics"
    if accuracy < MEDIUM_DEMOTE_ACCURACY and current is Difficulty.MEDIUM:
        return Difficulty.EASY, f"Accuracy {accuracy:.0f}%, practicing at an easier level"
    return current, f"Continuing at {current.label}"


class DifficultyController:
    """Rolling-accuracy difficulty state machine backed by a PerformanceStore."""

    def __init__(
        self,
        performance_store: PerformanceStore,
        adjustment_window: int = 5,
        min_samples: int = 3,
        recommendation_window: int = 10,
    ):
        self.performance_store = performance_store
        self.adjustment_window = adjustment_window
        self.min_samples = min_samples
        self.recommendation_window = recommendation_window

    async def evaluate_adjustment(
        self,
        learner_id: str,
        topic_id: str | None,
        current_difficulty: Difficulty,
        latest_is_correct: bool,
        subtopic_id: str | None = None,
        time_taken_ms: int = 0,
        hints_used: int = 0,
        attempts: int = 1,
    ) -> DifficultyAdjustment:
        """
        Record the latest answer and decide whether to change difficulty.

        Store failures produce "no adjustment" with confidence 0.
        """
        sample = PerformanceSample(
            learner_id=learner_id,
            topic_id=topic_id,
            difficulty=current_difficulty,
            is_correct=latest_is_correct,
            subtopic_id=subtopic_id,
            time_taken_ms=time_taken_ms,
            hints_used=hints_used,
            attempts=attempts,
            timestamp_ms=now_ms(),
        )
        try:
            await self.performance_store.ensure_learner(learner_id)
            await self.performance_store.append_sample(sample)
            samples = await self.performance_store.recent_samples(learner_id, topic_id, self.adjustment_window)
        except StoreError as e:
            logger.warning(f"Difficulty evaluation failed for {learner_id}/{topic_id}: {e}")
            return DifficultyAdjustment(
                should_adjust=False,
                new_difficulty=current_difficulty,
                reason="Could not load performance, staying at current difficulty",
                confidence=0.0,
            )

        count = len(samples)
        confidence = min(count / self.adjustment_window, 1.0)

        if count < self.min_samples:
            missing = self.min_samples - count
            logger.debug(f"Not enough answers for {learner_id}/{topic_id} ({count}/{self.min_samples})")
            return DifficultyAdjustment(
                should_adjust=False,
                new_difficulty=current_difficulty,
                reason=f"Need {missing} more answer{'s' if missing != 1 else ''}",
                confidence=confidence,
                stats={"total_count": count},
            )

        accuracy, correct = accuracy_of(samples)
        new_difficulty, reason = decide(accuracy, current_difficulty)
        should_adjust = new_difficulty is not current_difficulty

        if should_adjust:
            logger.info(f"Difficulty {learner_id}/{topic_id}: {current_difficulty.value} -> {new_difficulty.value} ({accuracy:.1f}%)")
        else:
            logger.debug(f"Difficulty {learner_id}/{topic_id}: staying at {current_difficulty.value} ({accuracy:.1f}%)")

        return DifficultyAdjustment(
            should_adjust=should_adjust,
            new_difficulty=new_difficulty,
            reason=reason,
            confidence=confidence,
            stats={
                "accuracy": round(accuracy, 1),
                "correct_count": correct,
                "total_count": count,
                "streak": calculate_streak(samples),
            },
        )

    async def recommend(self, learner_id: str, topic_id: str | None = None) -> DifficultyRecommendation:
        """Starting difficulty for a fresh session."""
        try:
            samples = await self.performance_store.recent_samples(learner_id, topic_id, self.recommendation_window)
        except StoreError as e:
            logger.warning(f"Difficulty recommendation failed for {learner_id}/{topic_id}: {e}")
            return DifficultyRecommendation(Difficulty.MEDIUM, 0.0, "error")

        if not samples:
            return DifficultyRecommendation(
                Difficulty.MEDIUM, 0.0, "no_data", {"message": "Starting at medium"}
            )

        accuracy, correct = accuracy_of(samples)
        if accuracy >= RECOMMEND_HARD_ACCURACY:
            difficulty, message = Difficulty.HARD, "Excellent, ready for challenges"
        elif accuracy >= RECOMMEND_MEDIUM_ACCURACY:
            difficulty, message = Difficulty.MEDIUM, "Very good, keep going"
        else:
            difficulty, message = Difficulty.EASY, "Let's strengthen the basics"

        return DifficultyRecommendation(
            difficulty=difficulty,
            confidence=min(len(samples) / self.recommendation_window, 1.0),
            reason="performance",
            details={
                "accuracy": round(accuracy, 1),
                "correct_count": correct,
                "total_count": len(samples),
                "message": message,
            },
        )
