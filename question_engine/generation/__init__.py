"""
Generative service integration.

- executor: resilient HTTP calls (timeout, retry, backoff, rate limiting)
- client: completion and vision payloads over the executor
- parsing: salvage parsing of model output
- generator: question generation with near-duplicate rejection
"""
from question_engine.generation.client import GenerativeClient
from question_engine.generation.executor import (
    CallResult,
    RateLimiter,
    ResilientCallExecutor,
    classify_status,
    compute_backoff,
    get_rate_limiter,
)
from question_engine.generation.generator import GenerationResult, QuestionGenerator
from question_engine.generation.parsing import ParserChain, ParseResult

__all__ = [
    "CallResult",
    "GenerationResult",
    "GenerativeClient",
    "ParseResult",
    "ParserChain",
    "QuestionGenerator",
    "RateLimiter",
    "ResilientCallExecutor",
    "classify_status",
    "compute_backoff",
    "get_rate_limiter",
]
