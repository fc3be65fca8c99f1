"""Similarity and keyword scoring primitives."""

from __future__ import annotations

from math import sqrt
from typing import Sequence, TypeVar

T = TypeVar("T")


def cosine_similarity(a: Sequence[float] | None, b: Sequence[float] | None) -> float:
    """Cosine of two vectors; 0.0 for empty, mismatched or zero-norm input."""
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)


def query_terms(query: str, min_length: int = 4) -> list[str]:
    return [token.lower() for token in query.split() if len(token) >= min_length]


def keyword_score(
    query: str,
    text: str,
    *,
    min_length: int = 4,
    exact_match_bonus: int = 5,
) -> int:
    """Weighted term-hit count of `query` inside `text`.

    Every occurrence of every query term counts once (case-insensitive
    substring match); the whole query appearing verbatim adds a bonus.
    """
    haystack = text.lower()
    score = sum(haystack.count(term) for term in query_terms(query, min_length))
    phrase = query.strip().lower()
    if phrase and phrase in haystack:
        score += exact_match_bonus
    return score


def representative_sample(items: Sequence[T], count: int) -> list[T]:
    """Evenly spaced items across the whole sequence, at most `count`."""
    if count <= 0 or not items:
        return []
    if len(items) <= count:
        return list(items)
    stride = max(1, len(items) // count)
    return [items[i] for i in range(0, len(items), stride)][:count]
