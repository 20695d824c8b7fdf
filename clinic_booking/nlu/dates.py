"""Spoken date and time parsing for the booking FSM.

``parse_date`` turns "next Monday" / "January 15th" / "03/14/2027" into a
``datetime.date``; ``match_time`` picks one of a doctor's open ``HH:MM``
slots from "2pm" / "in the morning" / "14:30".
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Sequence

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

MONTHS = (
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
)

# (pattern, field order) — tried in order
_NUMERIC_DATE_FORMATS = (
    (re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})"), "mdy"),  # MM/DD/YYYY
    (re.compile(r"(\d{1,2})-(\d{1,2})-(\d{4})"), "mdy"),  # MM-DD-YYYY
    (re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})"), "ymd"),  # YYYY-MM-DD
)

_DAY_NUMBER = re.compile(r"(\d{1,2})")
_CLOCK_TIME = re.compile(r"(\d{1,2})[:\s]?(\d{2})?")

NEAREST_SLOT_TOLERANCE_MINUTES = 30

# Day-part keyword → [start_hour, end_hour)
DAY_PARTS = {
    "morning": (8, 12),
    "afternoon": (12, 17),
    "evening": (17, 24),
}


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_date(text: str, today: date | None = None) -> date | None:
    """Parse a spoken date. Returns None if nothing recognisable is found.

    Rules are checked in priority order and the first one that fires decides
    the result: today, tomorrow, next week, weekday name, month name + day,
    then numeric MM/DD/YYYY, MM-DD-YYYY, YYYY-MM-DD.

    Relative and named dates never resolve to the past.  A weekday name
    always means the *next* such day, so "Monday" said on a Monday is a week
    away.  Explicit numeric dates are returned as spoken; callers range-check
    them.
    """
    if today is None:
        today = date.today()

    normalized = text.lower().strip()

    if "today" in normalized:
        return today

    if "tomorrow" in normalized:
        return today + timedelta(days=1)

    if "next week" in normalized:
        return today + timedelta(days=7)

    for day_num, day_name in enumerate(WEEKDAYS):
        if day_name in normalized:
            days_ahead = day_num - today.weekday()
            if days_ahead <= 0:
                days_ahead += 7
            return today + timedelta(days=days_ahead)

    for month_num, month_name in enumerate(MONTHS, start=1):
        if month_name in normalized:
            day_match = _DAY_NUMBER.search(normalized)
            if not day_match:
                continue
            candidate = _safe_date(today.year, month_num, int(day_match.group(1)))
            if candidate is None:
                return None
            if candidate < today:
                candidate = _safe_date(today.year + 1, month_num, candidate.day)
            return candidate

    for pattern, order in _NUMERIC_DATE_FORMATS:
        match = pattern.search(text)
        if match:
            a, b, c = (int(g) for g in match.groups())
            if order == "ymd":
                return _safe_date(a, b, c)
            return _safe_date(c, a, b)

    return None


def format_spoken_date(value: date) -> str:
    """Render a date for TTS, e.g. "Monday, October 19, 2026"."""
    return f"{value.strftime('%A, %B')} {value.day}, {value.year}"


def format_spoken_time(slot: str) -> str:
    """Render an ``HH:MM`` slot for TTS, e.g. "2:30 PM"."""
    parsed = datetime.strptime(slot, "%H:%M")
    return f"{parsed.hour % 12 or 12}:{parsed.minute:02d} {'AM' if parsed.hour < 12 else 'PM'}"


def _slot_minutes(slot: str) -> int:
    hour, minute = slot.split(":")
    return int(hour) * 60 + int(minute)


def match_time(text: str, available_slots: Sequence[str]) -> str | None:
    """Pick the open slot the caller asked for, or None.

    ``available_slots`` must be ascending ``HH:MM`` strings.  Tried in order:

      1. a spoken clock time ("2", "2:15pm", "14:30"), exact or nearest slot
         within 30 minutes (earliest slot wins a tie)
      2. "morning" / "afternoon" / "evening" → first slot in that window
      3. the transcript containing a slot string, or vice versa
    """
    lowered = text.lower()

    match = _CLOCK_TIME.search(lowered)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2)) if match.group(2) else 0

        if "pm" in lowered and hour < 12:
            hour += 12
        elif "am" in lowered and hour == 12:
            hour = 0

        wanted = f"{hour:02d}:{minute:02d}"
        if wanted in available_slots:
            return wanted

        target = hour * 60 + minute
        closest: str | None = None
        closest_diff = NEAREST_SLOT_TOLERANCE_MINUTES + 1
        for slot in available_slots:
            diff = abs(target - _slot_minutes(slot))
            if diff < closest_diff:
                closest, closest_diff = slot, diff
        if closest is not None:
            return closest

    for keyword, (start_hour, end_hour) in DAY_PARTS.items():
        if keyword in lowered:
            for slot in available_slots:
                if start_hour <= int(slot.split(":")[0]) < end_hour:
                    return slot

    stripped = lowered.strip()
    if stripped:
        for slot in available_slots:
            if slot in stripped or stripped in slot:
                return slot

    return None
