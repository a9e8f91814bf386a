"""
Resilient executor for calls to the generative service.

Content-agnostic: it POSTs a JSON payload and hands back the decoded body.
Every outbound call goes through a process-wide rate limiter, is bounded by
a hard timeout, and is retried with capped exponential backoff plus jitter
when the failure is transient. Provider failures are returned as a typed
CallResult; nothing here raises for them.

Retry schedule for attempt N (N > 0): sleep compute_backoff(N - 1) first.
With the defaults that is 2-3s, 4-5s, 8-9s, 16-17s, then capped at 30-31s.
"""

from __future__ import annotations

import asyncio
import random
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger

from question_engine.errors import ErrorClass
from question_engine.models import RetryAttempt, now_ms

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504, 529})

DEFAULT_BASE_DELAY_MS = 2000
DEFAULT_MAX_DELAY_MS = 30000
DEFAULT_MAX_JITTER_MS = 1000
DEFAULT_MIN_INTERVAL_MS = 500

SleepFn = Callable[[float], Awaitable[Any]]
RetryCallback = Callable[[int, int, float], Any]


def compute_backoff(
    attempt: int,
    base_delay_ms: float = DEFAULT_BASE_DELAY_MS,
    max_delay_ms: float = DEFAULT_MAX_DELAY_MS,
    max_jitter_ms: float = DEFAULT_MAX_JITTER_MS,
    rng: random.Random | None = None,
) -> float:
    """
    Backoff delay in milliseconds for zero-based retry index `attempt`.

    min(base * 2^attempt, max_delay) + uniform jitter in [0, max_jitter).
    """
    rng = rng or random
    exponential = min(base_delay_ms * (2 ** max(attempt, 0)), max_delay_ms)
    return exponential + rng.random() * max_jitter_ms


def classify_status(status_code: int) -> ErrorClass:
    """Classify a non-2xx status code."""
    if status_code in RETRYABLE_STATUS_CODES:
        return ErrorClass.RETRYABLE
    return ErrorClass.FATAL


class RateLimiter:
    """
    Enforces a minimum spacing between outbound calls.

    Callers reserve the next free slot atomically and then sleep outside the
    lock until it arrives, so concurrent callers are spaced one interval apart
    regardless of which event loop or thread they run on.
    """

    def __init__(self, min_interval_ms: float = DEFAULT_MIN_INTERVAL_MS, clock: Callable[[], float] = time.monotonic):
        self.min_interval_ms = min_interval_ms
        self._clock = clock
        self._lock = threading.Lock()
        self._next_slot: float | None = None
        self.last_request_time_ms: int = 0

    def reserve(self) -> float:
        """Claim the next slot; returns seconds to wait before issuing."""
        with self._lock:
            interval = self.min_interval_ms / 1000.0
            now = self._clock()
            slot = now if self._next_slot is None else max(now, self._next_slot)
            self._next_slot = slot + interval
            wait = slot - now
            self.last_request_time_ms = now_ms() + int(wait * 1000)
            return wait

    async def acquire(self, sleep: SleepFn = asyncio.sleep) -> float:
        wait = self.reserve()
        if wait > 0:
            logger.debug(f"Rate limiter: waiting {wait * 1000:.0f}ms")
            await sleep(wait)
        return wait

    def status(self) -> dict[str, Any]:
        last = self.last_request_time_ms
        return {
            "last_request_time_ms": last,
            "time_since_last_request_ms": now_ms() - last if last else None,
            "min_interval_ms": self.min_interval_ms,
        }


_rate_limiter: RateLimiter | None = None
_rate_limiter_guard = threading.Lock()


def get_rate_limiter(min_interval_ms: float | None = None) -> RateLimiter:
    """
    Process-wide rate limiter shared by every executor that is not given its own.

    Passing an interval that differs from the shared instance's reconfigures it;
    None keeps the current interval.
    """
    global _rate_limiter
    with _rate_limiter_guard:
        if _rate_limiter is None:
            _rate_limiter = RateLimiter(DEFAULT_MIN_INTERVAL_MS if min_interval_ms is None else min_interval_ms)
        elif min_interval_ms is not None and min_interval_ms != _rate_limiter.min_interval_ms:
            logger.info(
                f"Rate limiter interval changed from {_rate_limiter.min_interval_ms}ms to {min_interval_ms}ms"
            )
            _rate_limiter.min_interval_ms = min_interval_ms
        return _rate_limiter


@dataclass
class CallResult:
    """Outcome of an executor call."""

    success: bool
    data: dict[str, Any] | None = None
    text: str = ""
    error: str | None = None
    error_class: ErrorClass | None = None
    status_code: int | None = None
    attempts: int = 0
    history: list[RetryAttempt] = field(default_factory=list)


def extract_text(data: dict[str, Any]) -> str:
    """Concatenate the text blocks of a messages-style response body."""
    blocks = data.get("content") or []
    if isinstance(blocks, str):
        return blocks
    parts = [block.get("text", "") for block in blocks if isinstance(block, dict) and block.get("type", "text") == "text"]
    return "".join(parts)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    message = None
    if isinstance(body, dict):
        error = body.get("error")
        message = error.get("message") if isinstance(error, dict) else error
    return f"API error {response.status_code}: {message or 'unknown error'}"


def _retry_after_seconds(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds > 0 else None


@dataclass
class _Failure:
    error_class: ErrorClass
    message: str
    status_code: int | None = None
    retry_after: float | None = None


class ResilientCallExecutor:
    """HTTP executor with timeout, retry, backoff, jitter and rate limiting."""

    def __init__(
        self,
        api_url: str,
        api_key: str | None,
        api_version: str = "2023-06-01",
        client: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
        sleep: SleepFn = asyncio.sleep,
        rng: random.Random | None = None,
        max_retries: int = 5,
        timeout_ms: int = 90000,
        base_delay_ms: float = DEFAULT_BASE_DELAY_MS,
        max_delay_ms: float = DEFAULT_MAX_DELAY_MS,
        max_jitter_ms: float = DEFAULT_MAX_JITTER_MS,
    ):
        """
        Initialize the executor.

        Args:
            api_url: Endpoint every payload is POSTed to
            api_key: Credential sent as x-api-key
            api_version: Value of the anthropic-version header
            client: Shared httpx client (one is created when omitted)
            rate_limiter: Limiter to use instead of the process-wide one
            sleep: Awaitable sleep, injectable for tests
            rng: Jitter source
            max_retries: Default retries after the first attempt
            timeout_ms: Default hard timeout per attempt
        """
        self.api_url = api_url
        self.api_key = api_key
        self.api_version = api_version
        self.max_retries = max_retries
        self.timeout_ms = timeout_ms
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.max_jitter_ms = max_jitter_ms
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_ms / 1000.0),
            follow_redirects=True,
        )

    async def close(self) -> None:
        """Close the HTTP client if this executor created it."""
        if self._owns_client:
            await self.client.aclose()

    def _headers(self) -> dict[str, str]:
        return {
            "content-type": "application/json",
            "x-api-key": self.api_key or "",
            "anthropic-version": self.api_version,
        }

    async def _attempt(self, payload: dict[str, Any], timeout_s: float) -> dict[str, Any] | _Failure:
        try:
            response = await asyncio.wait_for(
                self.client.post(self.api_url, json=payload, headers=self._headers(), timeout=timeout_s),
                timeout=timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return _Failure(ErrorClass.TIMEOUT, f"Request timeout after {timeout_s * 1000:.0f}ms")
        except httpx.RequestError as e:
            return _Failure(ErrorClass.RETRYABLE, f"Transport error: {e}")

        if response.is_success:
            try:
                data = response.json()
            except ValueError:
                return _Failure(ErrorClass.FATAL, "Response body is not valid JSON", response.status_code)
            if not isinstance(data, dict):
                return _Failure(ErrorClass.FATAL, "Response body is not a JSON object", response.status_code)
            return data

        error_class = classify_status(response.status_code)
        retry_after = _retry_after_seconds(response) if response.status_code == 429 else None
        return _Failure(error_class, _error_message(response), response.status_code, retry_after)

    async def execute(
        self,
        payload: dict[str, Any],
        max_retries: int | None = None,
        timeout_ms: int | None = None,
        on_retry: RetryCallback | None = None,
    ) -> CallResult:
        """
        POST `payload`, retrying transient failures.

        Args:
            payload: JSON body
            max_retries: Retries after the first attempt (total = max_retries + 1)
            timeout_ms: Hard timeout per attempt
            on_retry: Called as on_retry(attempt, max_retries, delay_ms) before each backoff

        Returns:
            CallResult; success=False carries the last error and the attempt count
        """
        max_retries = self.max_retries if max_retries is None else max(max_retries, 0)
        timeout_s = (self.timeout_ms if timeout_ms is None else timeout_ms) / 1000.0
        history: list[RetryAttempt] = []
        next_delay_ms = 0.0
        last: _Failure | None = None

        logger.debug(f"Generative call: model={payload.get('model')}, max_retries={max_retries}")

        for attempt in range(max_retries + 1):
            if attempt > 0:
                logger.info(f"Retry {attempt}/{max_retries} after {next_delay_ms:.0f}ms")
                if on_retry is not None:
                    on_retry(attempt, max_retries, next_delay_ms)
                await self._sleep(next_delay_ms / 1000.0)

            await self.rate_limiter.acquire(self._sleep)
            outcome = await self._attempt(payload, timeout_s)

            if not isinstance(outcome, _Failure):
                logger.debug(f"Generative call succeeded after {attempt + 1} attempt(s)")
                return CallResult(
                    success=True,
                    data=outcome,
                    text=extract_text(outcome),
                    attempts=attempt + 1,
                    history=history,
                )

            last = outcome
            if outcome.error_class is ErrorClass.FATAL:
                logger.error(f"Non-retryable provider error: {outcome.message}")
                return CallResult(
                    success=False,
                    error=outcome.message,
                    error_class=outcome.error_class,
                    status_code=outcome.status_code,
                    attempts=attempt + 1,
                    history=history,
                )

            will_retry = attempt < max_retries
            next_delay_ms = (
                compute_backoff(attempt, self.base_delay_ms, self.max_delay_ms, self.max_jitter_ms, self._rng)
                if will_retry
                else 0.0
            )
            history.append(
                RetryAttempt(
                    attempt_index=attempt,
                    computed_delay_ms=next_delay_ms,
                    classified_error=outcome.error_class,
                    status_code=outcome.status_code,
                    message=outcome.message,
                )
            )
            logger.warning(f"Attempt {attempt + 1}/{max_retries + 1} failed ({outcome.error_class.value}): {outcome.message}")

            if will_retry and outcome.retry_after:
                logger.info(f"Rate limited, honoring retry-after of {outcome.retry_after:.1f}s")
                await self._sleep(outcome.retry_after)

        logger.error(f"All {max_retries + 1} attempts failed: {last.message if last else 'unknown error'}")
        return CallResult(
            success=False,
            error=last.message if last else "All retry attempts failed",
            error_class=last.error_class if last else None,
            status_code=last.status_code if last else None,
            attempts=max_retries + 1,
            history=history,
        )

    def status(self) -> dict[str, Any]:
        """Rate limiter state (last request time, time since, minimum interval)."""
        return self.rate_limiter.status()
