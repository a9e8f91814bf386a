"""
Error taxonomy for the question engine.

Stores raise StoreError; components that prioritize availability catch it and
fall back to a safe default. Provider failures never escape the executor as
exceptions; they are reported through CallResult.error_class.
"""

from __future__ import annotations

from enum import Enum


class QuestionEngineError(Exception):
    """Base class for question engine errors."""


class StoreError(QuestionEngineError):
    """A persistence operation failed (lookup, insert or update)."""

    def __init__(self, operation: str, cause: BaseException | None = None):
        self.operation = operation
        self.cause = cause
        message = f"{operation} failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class InvalidQuestionError(QuestionEngineError, ValueError):
    """Question content rejected at the system boundary."""


class ErrorClass(str, Enum):
    """Classification of a failed outbound call."""

    RETRYABLE = "retryable"
    FATAL = "fatal"
    TIMEOUT = "timeout"
