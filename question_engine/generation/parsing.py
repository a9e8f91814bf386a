"""
Salvage parsing for structured output from the generative service.

Model output is usually JSON, sometimes wrapped in a markdown code fence,
surrounded by prose, or cut off mid-object. Each parser below handles one
of those shapes; ParserChain tries them in order and returns the first
success or an explicit unparseable result.

Order:
1. DirectJsonParser: the whole text is JSON
2. CodeFenceParser: JSON inside a ``` / ```json fence
3. EmbeddedJsonParser: outermost {...} or [...] inside surrounding prose
4. RepairJsonParser: json_repair for trailing commas, single or unescaped
   quotes, raw newlines in strings and brackets left open by truncation
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Protocol

from json_repair import repair_json
from loguru import logger

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)
_OPEN_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?")

_CLOSERS = {"{": "}", "[": "]"}


@dataclass
class ParseResult:
    """Result of one parse attempt; `value` is only meaningful when ok."""

    ok: bool
    value: Any = None
    strategy: str | None = None
    error: str | None = None

    @classmethod
    def success(cls, value: Any, strategy: str) -> ParseResult:
        return cls(ok=True, value=value, strategy=strategy)

    @classmethod
    def unparseable(cls, reason: str, strategy: str | None = None) -> ParseResult:
        return cls(ok=False, strategy=strategy, error=reason)


class OutputParser(Protocol):
    """Protocol for one salvage strategy."""

    name: str

    def parse(self, text: str) -> ParseResult:
        """Parse text, returning an unparseable result instead of raising."""
        ...


def _loads(text: str, strategy: str) -> ParseResult:
    try:
        return ParseResult.success(json.loads(text), strategy)
    except (json.JSONDecodeError, ValueError) as e:
        return ParseResult.unparseable(str(e), strategy)


def _outermost(text: str) -> str | None:
    """Slice from the first opening bracket to its matching last closing bracket."""
    starts = [index for index in (text.find("{"), text.find("[")) if index != -1]
    if not starts:
        return None
    start = min(starts)
    end = text.rfind(_CLOSERS[text[start]])
    if end <= start:
        return None
    return text[start : end + 1]


class DirectJsonParser:
    name = "direct"

    def parse(self, text: str) -> ParseResult:
        return _loads(text.strip(), self.name)


class CodeFenceParser:
    name = "code_fence"

    def parse(self, text: str) -> ParseResult:
        match = _FENCE_RE.search(text)
        if not match:
            return ParseResult.unparseable("no code fence", self.name)
        return _loads(match.group(1).strip(), self.name)


class EmbeddedJsonParser:
    name = "embedded"

    def parse(self, text: str) -> ParseResult:
        candidate = _outermost(text)
        if candidate is None:
            return ParseResult.unparseable("no JSON object or array found", self.name)
        return _loads(candidate, self.name)


class RepairJsonParser:
    """Last-resort repair of nearly-valid or truncated JSON."""

    name = "repair"

    def parse(self, text: str) -> ParseResult:
        cleaned = _OPEN_FENCE_RE.sub("", text).replace("```", "").strip()
        starts = [index for index in (cleaned.find("{"), cleaned.find("[")) if index != -1]
        if not starts:
            return ParseResult.unparseable("no JSON object or array found", self.name)

        try:
            repaired = repair_json(cleaned[min(starts) :])
        except (ValueError, RecursionError) as e:
            return ParseResult.unparseable(f"repair failed: {e}", self.name)

        result = _loads(repaired, self.name)
        if result.ok and not isinstance(result.value, (dict, list)):
            return ParseResult.unparseable("repair produced no JSON object or array", self.name)
        return result


DEFAULT_PARSERS: tuple[type, ...] = (DirectJsonParser, CodeFenceParser, EmbeddedJsonParser, RepairJsonParser)


class ParserChain:
    """Ordered salvage parsers; never raises, never returns None."""

    def __init__(self, parsers: list[OutputParser] | None = None):
        self.parsers: list[OutputParser] = parsers if parsers is not None else [cls() for cls in DEFAULT_PARSERS]

    def parse(self, text: str | None) -> ParseResult:
        if not text or not text.strip():
            return ParseResult.unparseable("empty output")

        errors: list[str] = []
        for parser in self.parsers:
            result = parser.parse(text)
            if result.ok:
                if parser is not self.parsers[0]:
                    logger.debug(f"Model output recovered by '{parser.name}' parser")
                return result
            errors.append(f"{parser.name}: {result.error}")

        logger.warning(f"Model output unparseable ({len(text)} chars)")
        return ParseResult.unparseable("; ".join(errors))
