"""
Boundary DTOs for the question engine.

Callers (routes, workers) construct these once at the system boundary. Each
carries exactly one identifier field, so downstream code never has to guess
which key holds a question's id.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from .fingerprint import normalize_question_text
from .models import Difficulty


def _clean_optional(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class QuestionRequest(BaseModel):
    """Request for the next practice question."""

    topic_id: str | None = Field(None, description="Caller's topic identifier")
    topic_name: str | None = Field(None, description="Topic key used for curated-bank mapping")
    subtopic_id: str | None = Field(None, description="Optional subtopic identifier")
    subtopic_name: str | None = Field(None, description="Optional subtopic key")
    difficulty: Difficulty | None = Field(None, description="Target difficulty (None = recommend)")
    grade_level: int | None = Field(None, ge=1, le=12, description="Learner grade level")
    learner_id: str | None = Field(None, description="Learner identifier")
    exclusion_ids: list[str] = Field(default_factory=list, description="Question ids that must not be returned")

    @field_validator("topic_id", "topic_name", "subtopic_id", "subtopic_name", "learner_id", mode="before")
    @classmethod
    def _strip_identifiers(cls, value: Any) -> Any:
        if isinstance(value, int):
            value = str(value)
        return _clean_optional(value)

    @field_validator("exclusion_ids", mode="before")
    @classmethod
    def _clean_exclusion_ids(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, (str, int)):
            value = [value]
        cleaned: list[str] = []
        for item in value:
            if item is None:
                continue
            text = str(item).strip()
            if text and text not in cleaned:
                cleaned.append(text)
        return cleaned

    def echoed_params(self) -> dict[str, Any]:
        """Parameters handed back to the caller when generation is required."""
        return {
            "topic_id": self.topic_id,
            "topic_name": self.topic_name,
            "subtopic_id": self.subtopic_id,
            "subtopic_name": self.subtopic_name,
            "difficulty": self.difficulty.value if self.difficulty else None,
            "grade_level": self.grade_level,
        }


class GeneratedQuestion(BaseModel):
    """Candidate question obtained from the generative service (or another ingest path)."""

    question: str = Field(..., description="Question text shown to the learner")
    correct_answer: str = Field(..., description="Reference answer")
    hints: list[str] = Field(default_factory=list)
    explanation: str = ""
    solution_steps: list[str] = Field(default_factory=list)
    topic_id: str | None = None
    topic_name: str | None = None
    subtopic_id: str | None = None
    subtopic_name: str | None = None
    difficulty: Difficulty = Difficulty.MEDIUM
    grade_level: int | None = None

    @field_validator("question", "correct_answer", mode="before")
    @classmethod
    def _require_text(cls, value: Any) -> str:
        if value is None:
            raise ValueError("text must not be empty")
        text = str(value).strip()
        if not text:
            raise ValueError("text must not be empty or whitespace")
        return text

    @field_validator("question")
    @classmethod
    def _require_hashable_question(cls, value: str) -> str:
        if not normalize_question_text(value):
            raise ValueError("question must contain words or numbers")
        return value

    @field_validator("explanation", mode="before")
    @classmethod
    def _strip_explanation(cls, value: Any) -> str:
        return str(value).strip() if value else ""

    @field_validator("hints", "solution_steps", mode="before")
    @classmethod
    def _coerce_string_list(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        return [str(item).strip() for item in value if item is not None and str(item).strip()]

    @field_validator("topic_id", "topic_name", "subtopic_id", "subtopic_name", mode="before")
    @classmethod
    def _strip_topics(cls, value: Any) -> Any:
        if isinstance(value, int):
            value = str(value)
        return _clean_optional(value)

    @classmethod
    def from_model_output(cls, data: dict[str, Any], request: QuestionRequest, difficulty: Difficulty) -> GeneratedQuestion:
        """Build a candidate from parsed model JSON, filling topic fields from the request."""
        return cls(
            question=data.get("question") or data.get("question_text"),
            correct_answer=data.get("correct_answer") or data.get("correctAnswer"),
            hints=data.get("hints"),
            explanation=data.get("explanation"),
            solution_steps=data.get("solution_steps") or data.get("solutionSteps"),
            topic_id=request.topic_id,
            topic_name=request.topic_name,
            subtopic_id=request.subtopic_id,
            subtopic_name=request.subtopic_name,
            difficulty=difficulty,
            grade_level=request.grade_level,
        )


class AnswerOutcome(BaseModel):
    """A learner's answer to a delivered question."""

    question_id: str | None = Field(None, description="Id of the answered question, if it was cached")
    current_difficulty: Difficulty = Field(..., description="Difficulty the learner was practicing at")
    is_correct: bool
    subtopic_id: str | None = None
    time_taken_ms: int = Field(0, ge=0)
    hints_used: int = Field(0, ge=0)
    attempts: int = Field(1, ge=1)

    @field_validator("question_id", "subtopic_id", mode="before")
    @classmethod
    def _strip_ids(cls, value: Any) -> Any:
        if isinstance(value, int):
            value = str(value)
        return _clean_optional(value)
