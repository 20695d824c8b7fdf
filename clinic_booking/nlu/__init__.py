"""Deterministic parsing of caller speech: names, directory entries, dates, times."""

from .dates import format_spoken_date, format_spoken_time, match_time, parse_date
from .matching import contains_any, extract_name, find_best_match

__all__ = [
    "contains_any",
    "extract_name",
    "find_best_match",
    "format_spoken_date",
    "format_spoken_time",
    "match_time",
    "parse_date",
]
