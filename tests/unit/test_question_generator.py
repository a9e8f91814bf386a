"""
Unit tests for question generation and the generative client payloads.
"""

import json

import pytest

from question_engine.errors import ErrorClass
from question_engine.generation.client import GenerativeClient
from question_engine.generation.executor import CallResult
from question_engine.generation.generator import SIMILARITY_RETRY_NOTE, QuestionGenerator
from question_engine.generation.prompts import SYSTEM_PROMPT, build_question_prompt
from question_engine.models import DeliveredQuestion, Difficulty, SourceTag
from question_engine.schemas import QuestionRequest


def ok(text, attempts=1):
    return CallResult(success=True, data={"content": [{"type": "text", "text": text}]}, text=text, attempts=attempts)


def question_json(question, answer="42", **extra):
    return json.dumps({"question": question, "correctAnswer": answer, **extra})


class FakeClient:
    """Returns queued CallResults and records every prompt."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    async def complete(self, prompt, system_prompt="", **options):
        self.calls.append({"prompt": prompt, "system_prompt": system_prompt, **options})
        return self.results.pop(0)


class RecordingExecutor:
    def __init__(self):
        self.calls = []

    async def execute(self, payload, max_retries=None, timeout_ms=None, on_retry=None):
        self.calls.append({"payload": payload, "max_retries": max_retries, "timeout_ms": timeout_ms})
        return ok("{}")


@pytest.fixture
def question_request():
    return QuestionRequest(
        topic_id="algebra",
        topic_name="linear-equations",
        subtopic_name="two-step equations",
        grade_level=8,
        learner_id="learner-1",
    )


class TestQuestionGenerator:
    @pytest.mark.asyncio
    async def test_generates_question_with_request_fields(self, question_request):
        client = FakeClient(
            ok(question_json("Solve 3x + 4 = 19", "x = 5", hints=["Subtract 4"], solutionSteps=["3x = 15", "x = 5"]))
        )
        generator = QuestionGenerator(client)

        result = await generator.generate(question_request, Difficulty.HARD)

        assert result.success is True
        question = result.question
        assert question.question == "Solve 3x + 4 = 19"
        assert question.correct_answer == "x = 5"
        assert question.hints == ["Subtract 4"]
        assert question.solution_steps == ["3x = 15", "x = 5"]
        assert question.difficulty is Difficulty.HARD
        assert question.topic_id == "algebra"
        assert question.grade_level == 8
        assert client.calls[0]["system_prompt"] == SYSTEM_PROMPT
        assert client.calls[0]["max_tokens"] == 3000

    @pytest.mark.asyncio
    async def test_provider_failure_is_returned(self, question_request):
        client = FakeClient(
            CallResult(success=False, error="API error 503: overloaded", error_class=ErrorClass.RETRYABLE, attempts=6)
        )

        result = await QuestionGenerator(client).generate(question_request, Difficulty.MEDIUM)

        assert result.success is False
        assert result.error == "API error 503: overloaded"
        assert result.attempts == 6

    @pytest.mark.asyncio
    async def test_unparseable_output(self, question_request):
        client = FakeClient(ok("Sorry, I cannot write that question."))

        result = await QuestionGenerator(client).generate(question_request, Difficulty.MEDIUM)

        assert result.success is False
        assert result.error.startswith("unparseable output")

    @pytest.mark.asyncio
    async def test_missing_answer_is_invalid(self, question_request):
        client = FakeClient(ok('{"question": "What is 6 * 7?"}'))

        result = await QuestionGenerator(client).generate(question_request, Difficulty.MEDIUM)

        assert result.success is False
        assert result.error.startswith("invalid question")

    @pytest.mark.asyncio
    async def test_punctuation_only_question_is_invalid(self, question_request):
        client = FakeClient(ok(question_json("?? ... !!", "4")))

        result = await QuestionGenerator(client).generate(question_request, Difficulty.MEDIUM)

        assert result.success is False
        assert result.question is None
        assert result.error.startswith("invalid question")

    @pytest.mark.asyncio
    async def test_single_quoted_output_is_repaired(self, question_request):
        client = FakeClient(ok("{'question': 'What is 2+2?', 'correct_answer': '4'}"))

        result = await QuestionGenerator(client).generate(question_request, Difficulty.EASY)

        assert result.success is True
        assert result.question.question == "What is 2+2?"
        assert result.question.correct_answer == "4"

    @pytest.mark.asyncio
    async def test_array_output_uses_first_object(self, question_request):
        client = FakeClient(ok("```json\n[" + question_json("What is 6 * 7?") + "]\n```"))

        result = await QuestionGenerator(client).generate(question_request, Difficulty.EASY)

        assert result.success is True
        assert result.question.question == "What is 6 * 7?"

    @pytest.mark.asyncio
    async def test_similar_question_is_regenerated(self, question_request, history):
        await history.record(
            "learner-1",
            "algebra",
            DeliveredQuestion("Train speed 60 over 2 hours", Difficulty.MEDIUM, SourceTag.CACHE_GENERATED, "7"),
        )
        client = FakeClient(
            ok(question_json("Train speed 60 over 2 minutes")),
            ok(question_json("apple 60 pears 7 grapes 8 9")),
        )

        result = await QuestionGenerator(client, history).generate(question_request, Difficulty.MEDIUM)

        assert result.success is True
        assert result.question.question == "apple 60 pears 7 grapes 8 9"
        assert result.rejected_similar == 1
        assert result.attempts == 2
        assert SIMILARITY_RETRY_NOTE not in client.calls[0]["prompt"]
        assert SIMILARITY_RETRY_NOTE in client.calls[1]["prompt"]
        # Avoidance list built from the session window
        assert "Train speed 60 over 2 hours" in client.calls[0]["prompt"]

    @pytest.mark.asyncio
    async def test_similar_on_every_round_keeps_last(self, question_request, history):
        await history.record(
            "learner-1",
            "algebra",
            DeliveredQuestion("Train speed 60 over 2 hours", Difficulty.MEDIUM, SourceTag.CACHE_GENERATED, "7"),
        )
        client = FakeClient(
            ok(question_json("Train speed 60 over 2 minutes")),
            ok(question_json("Train speed 60 over 2 days")),
        )

        result = await QuestionGenerator(client, history).generate(question_request, Difficulty.MEDIUM)

        assert result.success is True
        assert result.question.question == "Train speed 60 over 2 days"
        assert result.rejected_similar == 2


class TestPrompts:
    def test_prompt_mentions_focus_and_difficulty(self, question_request):
        prompt = build_question_prompt(question_request, Difficulty.HARD)

        assert "Subtopic (main focus): two-step equations" in prompt
        assert "Difficulty: Challenging (hard)" in prompt
        assert "Grade: 8" in prompt
        assert '"correctAnswer"' in prompt

    def test_prompt_includes_avoidance(self, question_request):
        prompt = build_question_prompt(question_request, Difficulty.EASY, "Avoid: question one\n")

        assert "Avoid: question one" in prompt


class TestGenerativeClient:
    @pytest.mark.asyncio
    async def test_complete_payload(self):
        executor = RecordingExecutor()
        client = GenerativeClient(executor, model="test-model", max_tokens=100, temperature=0.7)

        await client.complete("Write a question", "Be brief", max_retries=2, temperature=0)

        call = executor.calls[0]
        assert call["max_retries"] == 2
        assert call["payload"] == {
            "model": "test-model",
            "max_tokens": 100,
            "temperature": 0,
            "system": "Be brief",
            "messages": [{"role": "user", "content": "Write a question"}],
        }

    @pytest.mark.asyncio
    async def test_vision_payload(self):
        executor = RecordingExecutor()
        client = GenerativeClient(executor, model="test-model", vision_temperature=0.5)

        await client.vision("aGVsbG8=", "What is in this image?", media_type="image/png", timeout_ms=1000)

        call = executor.calls[0]
        payload = call["payload"]
        assert call["timeout_ms"] == 1000
        assert payload["temperature"] == 0.5
        image, text = payload["messages"][0]["content"]
        assert image["source"] == {"type": "base64", "media_type": "image/png", "data": "aGVsbG8="}
        assert text == {"type": "text", "text": "What is in this image?"}
