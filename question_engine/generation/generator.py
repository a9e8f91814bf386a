"""
Question generation through the generative service.

Flow: build prompt (with avoidance list) -> complete -> salvage-parse ->
validate into GeneratedQuestion -> optional near-duplicate check against the
learner's session window, regenerating a bounded number of times.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from loguru import logger
from pydantic import ValidationError

from question_engine.history import HistoryTracker
from question_engine.models import Difficulty
from question_engine.schemas import GeneratedQuestion, QuestionRequest

from .client import GenerativeClient
from .parsing import ParserChain
from .prompts import SYSTEM_PROMPT, build_question_prompt

SIMILARITY_RETRY_NOTE = (
    "Your previous attempt was too similar to a recent question. "
    "Use completely different numbers and a different context."
)


@dataclass
class GenerationResult:
    """Outcome of a generation request; failure is a value, not an exception."""

    success: bool
    question: GeneratedQuestion | None = None
    error: str | None = None
    attempts: int = 0
    rejected_similar: int = 0


def _first_object(value: Any) -> dict[str, Any] | None:
    if isinstance(value, dict):
        return value
    if isinstance(value, list):
        for item in value:
            if isinstance(item, dict):
                return item
    return None


class QuestionGenerator:
    """Generates one question per call for a request and difficulty."""

    def __init__(
        self,
        client: GenerativeClient,
        history: HistoryTracker | None = None,
        parser: ParserChain | None = None,
        max_similarity_retries: int = 1,
        max_tokens: int = 3000,
    ):
        self.client = client
        self.history = history
        self.parser = parser or ParserChain()
        self.max_similarity_retries = max_similarity_retries
        self.max_tokens = max_tokens

    async def generate(self, request: QuestionRequest, difficulty: Difficulty) -> GenerationResult:
        avoidance = ""
        if self.history is not None and request.learner_id:
            avoidance = await self.history.build_avoidance_prompt(request.learner_id, request.topic_id)

        prompt = build_question_prompt(request, difficulty, avoidance)
        total_attempts = 0
        rejected = 0

        for round_index in range(self.max_similarity_retries + 1):
            if round_index > 0:
                prompt = f"{prompt}\n\n{SIMILARITY_RETRY_NOTE}"

            call = await self.client.complete(prompt, SYSTEM_PROMPT, max_tokens=self.max_tokens)
            total_attempts += call.attempts
            if not call.success:
                return GenerationResult(success=False, error=call.error, attempts=total_attempts, rejected_similar=rejected)

            parsed = self.parser.parse(call.text)
            data = _first_object(parsed.value) if parsed.ok else None
            if data is None:
                reason = parsed.error if not parsed.ok else "output is not a JSON object"
                logger.warning(f"Generated output unusable: {reason}")
                return GenerationResult(
                    success=False,
                    error=f"unparseable output: {reason}",
                    attempts=total_attempts,
                    rejected_similar=rejected,
                )

            try:
                question = GeneratedQuestion.from_model_output(data, request, difficulty)
            except ValidationError as e:
                logger.warning(f"Generated question failed validation: {e.error_count()} error(s)")
                return GenerationResult(
                    success=False,
                    error=f"invalid question: {e.errors()[0]['msg']}",
                    attempts=total_attempts,
                    rejected_similar=rejected,
                )

            if self.history is None or not request.learner_id:
                return GenerationResult(success=True, question=question, attempts=total_attempts)

            recent = self.history.recent(request.learner_id, request.topic_id)
            if not self.history.is_similar(question.question, recent):
                return GenerationResult(
                    success=True, question=question, attempts=total_attempts, rejected_similar=rejected
                )

            rejected += 1
            logger.info(f"Generated question too similar to recent history (round {round_index + 1})")

        # Similar on every round: keep the last one rather than fail delivery
        return GenerationResult(success=True, question=question, attempts=total_attempts, rejected_similar=rejected)
