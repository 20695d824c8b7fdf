"""Keyword heuristics for free-text speech transcripts.

Everything here is pure and deterministic: the same transcript against the
same directory list always produces the same answer, so a retried webhook
delivery recomputes identical results.
"""

from __future__ import annotations

from typing import Sequence, TypeVar

from pydantic import BaseModel

_T = TypeVar("_T", bound=BaseModel)

NAME_STOP_WORDS = frozenset(
    {"my", "name", "is", "i'm", "im", "this", "it's", "its", "the", "a", "an"}
)


def contains_any(text: str, keywords) -> bool:
    """True if any keyword is a substring of the lower-cased text."""
    lowered = text.lower()
    return any(keyword in lowered for keyword in keywords)


def extract_name(text: str) -> str:
    """Pull a caller's name out of an utterance like "my name is Jane Doe".

    Drops filler words and single-letter tokens, keeps the first two
    remaining words.  Falls back to the trimmed utterance.
    """
    words = [w for w in text.split() if len(w) > 1]
    name_words = [w for w in words if w.lower() not in NAME_STOP_WORDS]
    return " ".join(name_words[:2]) or text.strip()


def find_best_match(text: str, items: Sequence[_T], field: str = "name") -> _T | None:
    """Resolve ``text`` to one of ``items`` by its ``field`` attribute.

    Tried in order, first hit wins:
      1. case-insensitive exact match
      2. substring either way ("cardio" ↔ "Cardiology")
      3. any shared word longer than two letters

    There is no scoring; when several items match the same rule, the first
    one in list order wins.
    """
    needle = text.lower().strip()
    if not needle:
        return None

    for item in items:
        if getattr(item, field).lower() == needle:
            return item

    for item in items:
        value = getattr(item, field).lower()
        if value in needle or needle in value:
            return item

    input_words = needle.split()
    for item in items:
        item_words = getattr(item, field).lower().split()
        for input_word in input_words:
            if len(input_word) > 2 and input_word in item_words:
                return item

    return None
