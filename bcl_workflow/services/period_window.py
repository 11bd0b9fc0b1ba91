"""
Weekly period windows — canonical calendar buckets for evaluation cycles.

A period is the inclusive 7-day window [start_date, end_date] that contains
"now", where start_date is the most recent occurrence of the project's anchor
weekday on or before "now".  "Now" is read in a fixed UTC offset (+7h, no
daylight saving); after that conversion every computation is plain calendar
arithmetic on ``datetime.date`` values.

Usage:
    from bcl_workflow.services.period_window import WeekAnchor, resolve_weekly_window

    window = resolve_weekly_window(datetime.now(timezone.utc), WeekAnchor.MONDAY)
    window.start_date, window.end_date
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum

DEFAULT_UTC_OFFSET_HOURS = 7
_AUTO_WEEKLY_PREFIX = "auto-weekly:"


class WeekAnchor(str, Enum):
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @property
    def weekday(self) -> int:
        """Python weekday number (Monday=0 … Sunday=6)."""
        return _ANCHOR_ORDER.index(self)

    @classmethod
    def parse(cls, raw, default: "WeekAnchor | None" = None) -> "WeekAnchor":
        """Lenient parse; unknown input falls back to ``default`` (MONDAY)."""
        text = raw.value if isinstance(raw, Enum) else raw
        text = text.strip().upper() if isinstance(text, str) else ""
        try:
            return cls(text)
        except ValueError:
            return default or cls.MONDAY


_ANCHOR_ORDER = list(WeekAnchor)


@dataclass(frozen=True)
class WeeklyWindow:
    """Inclusive calendar window in the offset timezone."""

    start_date: date
    end_date: date

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def shifted(self, weeks: int) -> "WeeklyWindow":
        start = self.start_date + timedelta(days=7 * weeks)
        return WeeklyWindow(start, start + timedelta(days=6))

    @property
    def label(self) -> str:
        return format_weekly_label(self)

    def to_dict(self) -> dict:
        return {
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "label": self.label,
        }


def local_date(now: datetime, offset_hours: int = DEFAULT_UTC_OFFSET_HOURS) -> date:
    """Calendar date of ``now`` in the fixed offset zone.

    Naive datetimes are taken to be UTC.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone(timedelta(hours=offset_hours))).date()


def resolve_weekly_window(
    now: datetime,
    anchor: WeekAnchor = WeekAnchor.MONDAY,
    offset_hours: int = DEFAULT_UTC_OFFSET_HOURS,
) -> WeeklyWindow:
    """Return the window containing ``now``."""
    today = local_date(now, offset_hours)
    delta = (today.weekday() - anchor.weekday) % 7
    start = today - timedelta(days=delta)
    return WeeklyWindow(start, start + timedelta(days=6))


def window_offset(
    now: datetime,
    anchor: WeekAnchor,
    weeks: int,
    offset_hours: int = DEFAULT_UTC_OFFSET_HOURS,
) -> WeeklyWindow:
    """Window ``weeks`` away from the current one (negative = past)."""
    return resolve_weekly_window(now, anchor, offset_hours).shifted(weeks)


def list_weekly_windows_around(
    now: datetime,
    anchor: WeekAnchor,
    back_weeks: int,
    forward_weeks: int,
    offset_hours: int = DEFAULT_UTC_OFFSET_HOURS,
) -> list[WeeklyWindow]:
    """Chronological windows from ``back_weeks`` before to ``forward_weeks`` after now."""
    base = resolve_weekly_window(now, anchor, offset_hours)
    return [base.shifted(i) for i in range(-max(0, back_weeks), max(0, forward_weeks) + 1)]


def format_weekly_label(window: WeeklyWindow) -> str:
    return f"{window.start_date.isoformat()} - {window.end_date.isoformat()}"


def date_within_window(day: date, window: WeeklyWindow) -> bool:
    return window.contains(day)


def custom_week_of_year(start_date: date, anchor: WeekAnchor) -> tuple[int, int]:
    """Week number anchored to the project's weekday instead of ISO weeks.

    The week-year is the year of ``start_date``.  Week 1 begins at the first
    anchor weekday on or after 1 January; days before it also count as week 1.

    Returns:
        (year, week)
    """
    year = start_date.year
    jan1 = date(year, 1, 1)
    first_anchor = jan1 + timedelta(days=(anchor.weekday - jan1.weekday()) % 7)
    diff_weeks = (start_date - first_anchor).days // 7
    return year, 1 + max(0, diff_weeks)


# ── Auto-generated weekly period ids ──────────────────────────────────────────


def build_auto_weekly_period_id(project_id: str, start_date: date | str) -> str:
    pid = str(project_id or "").strip() or "UNKNOWN_PROJECT"
    start = start_date.isoformat() if isinstance(start_date, date) else str(start_date or "").strip()
    return f"{_AUTO_WEEKLY_PREFIX}{pid}:{start or 'UNKNOWN_START'}"


def is_auto_weekly_period_id(period_id: str | None) -> bool:
    return isinstance(period_id, str) and period_id.strip().lower().startswith(_AUTO_WEEKLY_PREFIX)


def extract_auto_weekly_start(period_id: str | None) -> date | None:
    """Start date encoded in an auto-weekly id, or None if absent / malformed."""
    if not is_auto_weekly_period_id(period_id):
        return None
    parts = period_id.split(":")
    if len(parts) < 3:
        return None
    try:
        return date.fromisoformat(":".join(parts[2:]).strip())
    except ValueError:
        return None
