"""
Topic key to curated-bank label mapping.

Requests carry curriculum keys ("linear-equations"); the curated bank is
labelled in Hebrew. A key maps to one or more labels. Keys that already are
labels (Hebrew text) pass through. Unmapped keys fall back to substring
matching against the known mapping keys.
"""

from __future__ import annotations

import re

from loguru import logger

_HEBREW_RE = re.compile(r"[\u0590-\u05FF]")

DEFAULT_TOPIC_LABELS: dict[str, list[str]] = {
    "linear-equations": ["אלגברה", "משוואות לינאריות", "משוואות"],
    "multi-step-equations": ["אלגברה", "משוואות"],
    "inequalities": ["אי-שוויונות", "משוואות ואי-שוויונות"],
    "systems-of-equations": ["אלגברה", "מערכות משוואות"],
    "proportions-ratios": ["יחסים ופרופורציות", "פרופורציה", "אחוזים"],
    "exponents": ["חזקות", "חזקות ושורשים"],
    "polynomials": ["אלגברה", "פולינומים"],
    "functions": ["פונקציות", "כללי"],
    "linear-functions": ["פונקציות לינאריות", "פונקציות"],
    "similarity-congruence": ["גיאומטריה", "דמיון"],
    "pythagorean-theorem": ["גיאומטריה", "משפט פיתגורס", "גאומטריה"],
    "volume-surface-area": ["נפח", "מדידה", "גיאומטריה"],
    "data-analysis": ["סטטיסטיקה", "ניתוח נתונים"],
    "probability": ["הסתברות"],
}


def _normalize_key(key: str) -> str:
    return re.sub(r"[\s_]+", "-", key.strip().casefold())


class TopicMapper:
    """Translates request topic keys into curated-bank labels."""

    def __init__(self, mapping: dict[str, list[str]] | None = None):
        source = DEFAULT_TOPIC_LABELS if mapping is None else mapping
        self.mapping = {_normalize_key(key): list(labels) for key, labels in source.items()}

    def labels_for(self, key: str | None) -> list[str]:
        if not key or not key.strip():
            return []
        key = key.strip()
        if _HEBREW_RE.search(key):
            return [key]

        normalized = _normalize_key(key)
        if normalized in self.mapping:
            return list(self.mapping[normalized])

        labels: list[str] = []
        for known, known_labels in self.mapping.items():
            if normalized in known or known in normalized:
                labels.extend(known_labels)
        if labels:
            logger.debug(f"Topic key '{key}' matched by substring")
        return labels

    def curated_labels(self, topic_key: str | None, subtopic_key: str | None = None) -> list[str]:
        """De-duplicated labels for the topic and subtopic keys, in insertion order."""
        labels: list[str] = []
        for label in self.labels_for(topic_key) + self.labels_for(subtopic_key):
            if label not in labels:
                labels.append(label)
        return labels
