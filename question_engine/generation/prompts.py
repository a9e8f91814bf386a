"""Prompt templates for question generation."""

from __future__ import annotations

from question_engine.models import Difficulty
from question_engine.schemas import QuestionRequest

SYSTEM_PROMPT = (
    "You are an experienced mathematics teacher writing practice questions for the "
    "national curriculum. Write every question in the learner's language, make it "
    "original, and make sure it ends with a complete sentence. Respond with JSON only."
)

RESPONSE_FORMAT = """Required JSON format:
{
  "question": "The full question text",
  "correctAnswer": "The correct answer",
  "hints": ["Hint 1", "Hint 2", "Hint 3"],
  "explanation": "A step-by-step explanation of how to solve it",
  "solutionSteps": ["Step 1", "Step 2"]
}

Use \\n for line breaks inside strings. Return only the JSON, with no other text."""


def build_question_prompt(request: QuestionRequest, difficulty: Difficulty, avoidance: str = "") -> str:
    """Prompt asking for one new question matching the request."""
    focus = request.subtopic_name or request.topic_name or request.topic_id or "general mathematics"
    lines = [
        "Create a new, original mathematics question.",
        "",
        f"Topic: {request.topic_name or request.topic_id or 'general'}",
    ]
    if request.subtopic_name:
        lines.append(f"Subtopic (main focus): {request.subtopic_name}")
    lines.append(f"Difficulty: {difficulty.label} ({difficulty.value})")
    if request.grade_level:
        lines.append(f"Grade: {request.grade_level}")
    if avoidance:
        lines.extend(["", avoidance.rstrip()])
    lines.extend(
        [
            "",
            "Requirements:",
            f'1. The question must be directly about "{focus}"',
            "2. Use varied numbers, not ones from previous questions",
            "3. Add a real-life context (sports, shopping, school, hobbies)",
            f"4. Pitch it at {difficulty.value} difficulty",
            "5. Make sure the question is complete and ends with a full sentence",
            "",
            RESPONSE_FORMAT,
        ]
    )
    return "\n".join(lines)
