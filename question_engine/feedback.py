"""
Quality and usage feedback loop.

After every answered use of a cached question:
- usage_count += 1
- the outcome is appended to the question's usage stream
- success_rate = mean of all outcomes (correct = 100, incorrect = 0)
- quality_score = clamp(30, 100, 50 + success adjustment + volume bonus)

The success adjustment, (success_rate - 50) / 2, only applies from 5 uses on.
Volume bonus: +20 at 20 uses, +10 at 10, +5 at 5.
"""

from __future__ import annotations

from loguru import logger

from .errors import StoreError
from .models import QUALITY_CEILING, QUALITY_FLOOR, QuestionMetrics, UsageEvent
from .stores.base import QuestionStore

BASE_QUALITY = 50.0
VOLUME_BONUSES = ((20, 20.0), (10, 10.0), (5, 5.0))


def compute_quality_score(usage_count: int, success_rate: float, min_samples: int = 5) -> float:
    score = BASE_QUALITY
    if usage_count >= min_samples:
        score += (success_rate - 50.0) / 2.0
    for threshold, bonus in VOLUME_BONUSES:
        if usage_count >= threshold:
            score += bonus
            break
    return max(QUALITY_FLOOR, min(QUALITY_CEILING, score))


def success_rate_of(outcomes: list[bool]) -> float:
    if not outcomes:
        return 0.0
    return sum(100.0 for outcome in outcomes if outcome) / len(outcomes)


class QualityFeedbackLoop:
    """Keeps cached question metrics fresh as answers come in."""

    def __init__(self, question_store: QuestionStore, min_samples: int = 5):
        self.question_store = question_store
        self.min_samples = min_samples

    async def record_usage(self, event: UsageEvent) -> QuestionMetrics | None:
        """
        Apply one answered use.

        Returns the updated metrics, or None when the question is not in the
        cache (curated questions, generated-but-uncached ones) or the store
        failed.
        """
        try:
            usage_count = await self.question_store.increment_usage(event.question_id)
            if usage_count is None:
                logger.debug(f"Usage for unknown question {event.question_id} ignored")
                return None

            await self.question_store.append_usage(event)
            outcomes = await self.question_store.usage_outcomes(event.question_id)
            success_rate = round(success_rate_of(outcomes), 2)
            quality_score = round(compute_quality_score(usage_count, success_rate, self.min_samples), 2)
            await self.question_store.update_metrics(event.question_id, success_rate, quality_score)
        except StoreError as e:
            logger.warning(f"Could not update metrics for question {event.question_id}: {e}")
            return None

        logger.debug(
            f"Question {event.question_id}: usage={usage_count}, "
            f"success={success_rate:.1f}%, quality={quality_score:.1f}"
        )
        return QuestionMetrics(
            question_id=event.question_id,
            usage_count=usage_count,
            success_rate=success_rate,
            quality_score=quality_score,
        )
