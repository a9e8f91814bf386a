"""
Question text fingerprinting.

Normalization used for the content hash:
1. Case-fold
2. Drop whitespace next to punctuation ("2x +3" and "2x+3" collide)
3. Strip punctuation, keeping word characters, whitespace and Hebrew script
4. Collapse whitespace runs and trim

Keyword and number extraction feed the cheap near-duplicate heuristic used by
the history tracker.
"""

from __future__ import annotations

import hashlib
import re

from .errors import InvalidQuestionError

# Word characters, whitespace and the Hebrew block survive normalization
_PUNCTUATION = r"[^\w\s\u0590-\u05FF]"
_SPACED_PUNCTUATION_RE = re.compile(rf"\s*({_PUNCTUATION})\s*")
_PUNCTUATION_RE = re.compile(_PUNCTUATION)
_WHITESPACE_RE = re.compile(r"\s+")
_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")
_KEYWORD_RE = re.compile(r"[^\W\d_]{3,}")

MAX_KEYWORDS = 8


def normalize_question_text(text: str) -> str:
    """Canonical form of question text used for deduplication."""
    if not text:
        return ""
    normalized = text.casefold()
    normalized = _SPACED_PUNCTUATION_RE.sub(r"\1", normalized)
    normalized = _PUNCTUATION_RE.sub("", normalized)
    normalized = _WHITESPACE_RE.sub(" ", normalized)
    return normalized.strip()


def content_hash(text: str) -> str:
    """
    SHA-256 fingerprint of normalized question text.

    Raises:
        InvalidQuestionError: If nothing is left after normalization
    """
    normalized = normalize_question_text(text)
    if not normalized:
        raise InvalidQuestionError("Cannot hash empty question text")
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def extract_numbers(text: str) -> list[str]:
    """Numeric tokens in order of appearance (integers and decimals)."""
    if not text:
        return []
    return _NUMBER_RE.findall(text)


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> list[str]:
    """First `limit` distinct topical words (letter runs of 3+ characters)."""
    if not text:
        return []
    keywords: list[str] = []
    for match in _KEYWORD_RE.finditer(text):
        word = match.group(0).casefold()
        if word not in keywords:
            keywords.append(word)
            if len(keywords) >= limit:
                break
    return keywords


def overlap_ratio(left: set[str], right: set[str]) -> float:
    """|left & right| / max(|left|, |right|, 1)."""
    return len(left & right) / max(len(left), len(right), 1)
