"""Trait, interest, style and sentiment extraction hooks.

Each hook is ``derive(content, prior) -> value``; the aggregator seeds it with
the profile's current values so real NLP can replace the keyword default
without touching the memory engine.
"""

from __future__ import annotations

import re
from typing import Protocol, runtime_checkable

_HASHTAG_RE = re.compile(r"#([A-Za-z][A-Za-z0-9_]{1,40})")

_TRAIT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "curious": ("why", "how", "wonder", "?"),
    "enthusiastic": ("!", "love", "amazing", "awesome"),
    "analytical": ("data", "chart", "analysis", "metrics"),
    "builder": ("build", "ship", "deploy", "code"),
    "risk-taker": ("degen", "ape", "leverage", "yolo"),
}

_POSITIVE_WORDS = ("love", "great", "amazing", "awesome", "bullish", "thanks", "nice")
_NEGATIVE_WORDS = ("hate", "bad", "awful", "bearish", "scam", "rug", "angry")


@runtime_checkable
class ProfileExtractor(Protocol):
    def derive_traits(self, content: str, prior: list[str]) -> list[str]: ...

    def derive_interests(self, content: str, prior: list[str], hints: list[str]) -> list[str]: ...

    def analyze_style(self, content: str, prior: str) -> str: ...

    def analyze_sentiment(self, content: str, prior: str | None) -> str: ...


def _ordered_union(*groups: list[str]) -> list[str]:
    seen: set[str] = set()
    merged: list[str] = []
    for group in groups:
        for item in group:
            value = item.strip()
            if value and value.lower() not in seen:
                seen.add(value.lower())
                merged.append(value)
    return merged


class KeywordProfileExtractor:
    """Best-effort keyword heuristics; deterministic for the same input."""

    def derive_traits(self, content: str, prior: list[str]) -> list[str]:
        lowered = content.lower()
        found = [
            trait
            for trait, keywords in _TRAIT_KEYWORDS.items()
            if any(keyword in lowered for keyword in keywords)
        ]
        return _ordered_union(prior, found)

    def derive_interests(self, content: str, prior: list[str], hints: list[str]) -> list[str]:
        hashtags = [tag.lower() for tag in _HASHTAG_RE.findall(content)]
        return _ordered_union(prior, hints, hashtags)

    def analyze_style(self, content: str, prior: str) -> str:
        stripped = content.strip()
        if not stripped:
            return prior
        if stripped.count("!") >= 2 or (stripped.isupper() and len(stripped) > 3):
            return "energetic"
        if stripped.endswith("?"):
            return "inquisitive"
        return prior or "casual"

    def analyze_sentiment(self, content: str, prior: str | None) -> str:
        lowered = content.lower()
        score = sum(word in lowered for word in _POSITIVE_WORDS) - sum(word in lowered for word in _NEGATIVE_WORDS)
        if score > 0:
            return "positive"
        if score < 0:
            return "negative"
        return prior or "neutral"
