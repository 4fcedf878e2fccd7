"""Title normalization and match strategies used by the identity resolver.

``containment`` is the historical behaviour: both titles are reduced to
lower-case letters and digits and a candidate matches when either string
contains the other. It over-matches short common titles and under-matches
heavily reworded ones, so two scored strategies backed by rapidfuzz are
available as well; they compare against a 0-100 threshold.
"""

from __future__ import annotations

import re
from typing import Callable

from rapidfuzz import fuzz

TitleMatcher = Callable[[str, str], bool]


def normalize_title(value: str | None) -> str:
    """Lower-case ``value`` and strip every character that is not a letter or digit."""

    if not value:
        return ""
    return "".join(ch for ch in str(value).lower() if ch.isalnum())


def containment_match(query: str, candidate: str) -> bool:
    normalized_query = normalize_title(query)
    normalized_candidate = normalize_title(candidate)
    if not normalized_query or not normalized_candidate:
        return False
    return (
        normalized_query in normalized_candidate
        or normalized_candidate in normalized_query
    )


def _tokens(value: str) -> str:
    return " ".join(re.findall(r"[^\W_]+", str(value or "").lower()))


def token_set_score(query: str, candidate: str) -> float:
    return float(fuzz.token_set_ratio(_tokens(query), _tokens(candidate)))


def edit_distance_score(query: str, candidate: str) -> float:
    return float(fuzz.ratio(normalize_title(query), normalize_title(candidate)))


def build_matcher(strategy: str = "containment", threshold: float = 90.0) -> TitleMatcher:
    """Return a predicate implementing ``strategy``."""

    if strategy == "containment":
        return containment_match
    if strategy == "token_set":
        return lambda query, candidate: bool(_tokens(query) and _tokens(candidate)) and (
            token_set_score(query, candidate) >= threshold
        )
    if strategy == "edit_distance":
        return lambda query, candidate: bool(
            normalize_title(query) and normalize_title(candidate)
        ) and (edit_distance_score(query, candidate) >= threshold)
    raise ValueError(f"unknown match strategy: {strategy}")


__all__ = [
    "TitleMatcher",
    "build_matcher",
    "containment_match",
    "edit_distance_score",
    "normalize_title",
    "token_set_score",
]
