"""Tests for spoken date parsing and time-slot matching."""

from datetime import date

import pytest

from clinic_booking.nlu import format_spoken_date, format_spoken_time, match_time, parse_date

SUNDAY = date(2026, 10, 18)
WEDNESDAY = date(2026, 10, 21)


class TestParseDate:
    def test_today(self):
        assert parse_date("today please", SUNDAY) == SUNDAY

    def test_tomorrow(self):
        assert parse_date("Tomorrow", SUNDAY) == date(2026, 10, 19)

    def test_next_week(self):
        assert parse_date("sometime next week", SUNDAY) == date(2026, 10, 25)

    def test_next_weekday(self):
        assert parse_date("next Monday", SUNDAY) == date(2026, 10, 19)

    def test_earlier_weekday_rolls_to_next_week(self):
        assert parse_date("monday", WEDNESDAY) == date(2026, 10, 26)

    def test_same_weekday_is_a_week_away(self):
        assert parse_date("wednesday", WEDNESDAY) == date(2026, 10, 28)

    def test_month_and_day(self):
        assert parse_date("November 3rd", SUNDAY) == date(2026, 11, 3)

    def test_past_month_day_rolls_to_next_year(self):
        assert parse_date("January 15th", SUNDAY) == date(2027, 1, 15)

    def test_impossible_month_day(self):
        assert parse_date("February 31", SUNDAY) is None

    def test_month_without_day_falls_through(self):
        assert parse_date("sometime in march", SUNDAY) is None

    @pytest.mark.parametrize("text,expected", [
        ("12/03/2026", date(2026, 12, 3)),
        ("12-03-2026", date(2026, 12, 3)),
        ("2026-12-03", date(2026, 12, 3)),
    ])
    def test_numeric_formats(self, text, expected):
        assert parse_date(text, SUNDAY) == expected

    def test_numeric_date_may_be_in_the_past(self):
        assert parse_date("01/02/2020", SUNDAY) == date(2020, 1, 2)

    def test_invalid_numeric_date(self):
        assert parse_date("13/40/2026", SUNDAY) is None

    def test_first_rule_wins(self):
        # "today" beats the weekday name
        assert parse_date("today or friday", SUNDAY) == SUNDAY

    def test_gibberish(self):
        assert parse_date("whenever works", SUNDAY) is None


class TestFormatting:
    def test_spoken_date(self):
        assert format_spoken_date(date(2026, 10, 19)) == "Monday, October 19, 2026"

    @pytest.mark.parametrize("slot,spoken", [
        ("09:00", "9:00 AM"),
        ("12:00", "12:00 PM"),
        ("00:30", "12:30 AM"),
        ("14:30", "2:30 PM"),
    ])
    def test_spoken_time(self, slot, spoken):
        assert format_spoken_time(slot) == spoken


class TestMatchTime:
    SLOTS = ["09:00", "10:30", "14:00", "14:30", "17:30"]

    def test_exact_slot_string(self):
        assert match_time("14:30", self.SLOTS) == "14:30"

    def test_pm_hour(self):
        assert match_time("2pm", self.SLOTS) == "14:00"

    def test_nearest_within_tolerance_prefers_earliest(self):
        assert match_time("2:15pm", ["14:00", "14:30"]) == "14:00"

    def test_nearest_slot(self):
        assert match_time("10:20 am", self.SLOTS) == "10:30"

    def test_twelve_am_is_midnight(self):
        assert match_time("12am", ["00:00", "12:00"]) == "00:00"

    def test_too_far_falls_through_to_day_part(self):
        assert match_time("7 in the evening", self.SLOTS) == "17:30"

    def test_too_far_and_no_other_rule(self):
        assert match_time("4pm", self.SLOTS) is None

    @pytest.mark.parametrize("text,expected", [
        ("morning please", "09:00"),
        ("in the afternoon", "14:00"),
        ("evening", "17:30"),
    ])
    def test_day_parts(self, text, expected):
        assert match_time(text, self.SLOTS) == expected

    def test_day_part_without_slot(self):
        assert match_time("evening", ["09:00", "10:00"]) is None

    def test_nothing_recognisable(self):
        assert match_time("whatever", self.SLOTS) is None
