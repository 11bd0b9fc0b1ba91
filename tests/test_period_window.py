"""
Weekly period window tests.

Covers:
    - window resolution for every anchor / offset edge
    - neighbouring windows and labels
    - custom week-of-year numbering
    - auto-generated weekly period ids
"""

from datetime import date, datetime, timezone

import pytest

from bcl_workflow.services.period_window import (
    WeekAnchor,
    WeeklyWindow,
    build_auto_weekly_period_id,
    custom_week_of_year,
    date_within_window,
    extract_auto_weekly_start,
    format_weekly_label,
    is_auto_weekly_period_id,
    list_weekly_windows_around,
    local_date,
    resolve_weekly_window,
    window_offset,
)

# Wednesday 2026-02-11 10:00 at UTC+7
WEDNESDAY = datetime(2026, 2, 11, 3, 0, tzinfo=timezone.utc)


class TestResolveWeeklyWindow:
    def test_monday_anchor_on_wednesday(self):
        """Window starts on the Monday two days earlier and ends the following Sunday."""
        window = resolve_weekly_window(WEDNESDAY, WeekAnchor.MONDAY)
        assert window.start_date == date(2026, 2, 9)
        assert window.end_date == date(2026, 2, 15)
        assert (window.end_date - window.start_date).days == 6

    def test_now_on_anchor_day_starts_that_day(self):
        monday = datetime(2026, 2, 9, 1, 0, tzinfo=timezone.utc)
        window = resolve_weekly_window(monday, WeekAnchor.MONDAY)
        assert window.start_date == date(2026, 2, 9)

    def test_sunday_anchor(self):
        window = resolve_weekly_window(WEDNESDAY, WeekAnchor.SUNDAY)
        assert window.start_date == date(2026, 2, 8)
        assert window.end_date == date(2026, 2, 14)

    def test_offset_moves_instant_into_next_local_day(self):
        """17:30 UTC Sunday is already 00:30 Monday at +7."""
        instant = datetime(2026, 2, 8, 17, 30, tzinfo=timezone.utc)
        assert local_date(instant) == date(2026, 2, 9)
        assert resolve_weekly_window(instant, WeekAnchor.MONDAY).start_date == date(2026, 2, 9)

    def test_last_minute_before_local_midnight_stays_in_previous_window(self):
        instant = datetime(2026, 2, 8, 16, 59, tzinfo=timezone.utc)
        window = resolve_weekly_window(instant, WeekAnchor.MONDAY)
        assert window.start_date == date(2026, 2, 2)
        assert window.end_date == date(2026, 2, 8)

    def test_naive_datetime_is_read_as_utc(self):
        naive = datetime(2026, 2, 8, 17, 30)
        assert local_date(naive) == date(2026, 2, 9)

    def test_zero_offset(self):
        instant = datetime(2026, 2, 8, 17, 30, tzinfo=timezone.utc)
        window = resolve_weekly_window(instant, WeekAnchor.MONDAY, offset_hours=0)
        assert window.start_date == date(2026, 2, 2)

    def test_year_boundary(self):
        instant = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)  # Thursday
        window = resolve_weekly_window(instant, WeekAnchor.MONDAY)
        assert window.start_date == date(2025, 12, 29)
        assert window.end_date == date(2026, 1, 4)


class TestNeighbouringWindows:
    def test_window_offset_back_and_forward(self):
        assert window_offset(WEDNESDAY, WeekAnchor.MONDAY, -1).start_date == date(2026, 2, 2)
        assert window_offset(WEDNESDAY, WeekAnchor.MONDAY, 2).start_date == date(2026, 2, 23)

    def test_list_around_is_chronological(self):
        windows = list_weekly_windows_around(WEDNESDAY, WeekAnchor.MONDAY, 1, 1)
        assert [w.start_date for w in windows] == [date(2026, 2, 2), date(2026, 2, 9), date(2026, 2, 16)]

    def test_negative_counts_are_treated_as_zero(self):
        windows = list_weekly_windows_around(WEDNESDAY, WeekAnchor.MONDAY, -3, -1)
        assert len(windows) == 1

    def test_label_and_containment(self):
        window = WeeklyWindow(date(2026, 2, 9), date(2026, 2, 15))
        assert format_weekly_label(window) == "2026-02-09 - 2026-02-15"
        assert window.to_dict()["label"] == "2026-02-09 - 2026-02-15"
        assert date_within_window(date(2026, 2, 15), window)
        assert not date_within_window(date(2026, 2, 16), window)


class TestCustomWeekOfYear:
    def test_first_anchor_is_week_one(self):
        assert custom_week_of_year(date(2026, 1, 5), WeekAnchor.MONDAY) == (2026, 1)

    def test_days_before_first_anchor_count_as_week_one(self):
        assert custom_week_of_year(date(2026, 1, 2), WeekAnchor.MONDAY) == (2026, 1)

    def test_later_week(self):
        assert custom_week_of_year(date(2026, 2, 9), WeekAnchor.MONDAY) == (2026, 6)

    def test_anchor_on_january_first(self):
        # 2026-01-01 is a Thursday
        assert custom_week_of_year(date(2026, 1, 8), WeekAnchor.THURSDAY) == (2026, 2)


class TestWeekAnchorParse:
    @pytest.mark.parametrize("raw,expected", [
        ("sunday", WeekAnchor.SUNDAY),
        (" Friday ", WeekAnchor.FRIDAY),
        (WeekAnchor.TUESDAY, WeekAnchor.TUESDAY),
        ("someday", WeekAnchor.MONDAY),
        (None, WeekAnchor.MONDAY),
    ])
    def test_parse(self, raw, expected):
        assert WeekAnchor.parse(raw) == expected

    def test_parse_uses_given_default(self):
        assert WeekAnchor.parse("", WeekAnchor.SATURDAY) == WeekAnchor.SATURDAY

    def test_weekday_numbers(self):
        assert WeekAnchor.MONDAY.weekday == 0
        assert WeekAnchor.SUNDAY.weekday == 6


class TestAutoWeeklyPeriodIds:
    def test_build_and_extract(self):
        period_id = build_auto_weekly_period_id("p-1", date(2026, 2, 9))
        assert period_id == "auto-weekly:p-1:2026-02-09"
        assert is_auto_weekly_period_id(period_id)
        assert extract_auto_weekly_start(period_id) == date(2026, 2, 9)

    def test_prefix_is_case_insensitive(self):
        assert is_auto_weekly_period_id("AUTO-WEEKLY:p-1:2026-02-09")

    def test_blank_project_uses_placeholder(self):
        assert build_auto_weekly_period_id("  ", "2026-02-09") == "auto-weekly:UNKNOWN_PROJECT:2026-02-09"

    @pytest.mark.parametrize("period_id", ["w6", None, "auto-weekly:p-1", "auto-weekly:p-1:not-a-date"])
    def test_extract_rejects_other_ids(self, period_id):
        assert extract_auto_weekly_start(period_id) is None
