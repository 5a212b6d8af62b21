"""ISO week keys and week columns.

A week key is ``"{ISOYear}-W{NN}"``: the ISO year and the zero-padded ISO week
number of a Monday-start week. It is the wire format for every per-week value
(``weeklyAllocations`` maps, heatmap buckets, alert breakdowns), so every
helper here works from ``date.isocalendar()`` and never from the calendar
year of the date.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from capacity_planner.utils.common import app_today, to_local_date

WEEKS_PER_TABLE_YEAR = 52
DEFAULT_WINDOW_WEEKS = 16

_WEEK_KEY_RE = re.compile(r"^(\d{4})-W(\d{2})$")

DateLike = Union[date, datetime]


@dataclass(frozen=True)
class WeekColumn:
    """One column of the weekly allocation table."""

    key: str
    label: str
    week_start: date
    week_end: date

    @property
    def date_label(self) -> str:
        """Short start-date label, e.g. ``"Mar 3"``."""
        return f"{self.week_start:%b} {self.week_start.day}"

    def contains(self, day: date) -> bool:
        return self.week_start <= day <= self.week_end

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "date": self.date_label,
            "weekStart": self.week_start.isoformat(),
            "weekEnd": self.week_end.isoformat(),
        }


def format_week_key(iso_year: int, iso_week: int) -> str:
    return f"{iso_year}-W{iso_week:02d}"


def week_key_of(value: DateLike, tz: Optional[tzinfo] = None) -> str:
    """Return the ISO week key for a date or datetime.

    Args:
        value: Calendar date, naive datetime, or timezone-aware datetime
        tz: Timezone used to resolve aware datetimes (defaults to the app TZ)

    Returns:
        Week key such as ``"2025-W10"``
    """
    day = to_local_date(value, tz)
    iso_year, iso_week, _ = day.isocalendar()[:3]
    return format_week_key(iso_year, iso_week)


def iso_weeks_in_year(iso_year: int) -> int:
    """Number of ISO weeks (52 or 53) in ``iso_year``."""
    return date(iso_year, 12, 28).isocalendar()[1]


def parse_week_key(key: Any) -> Optional[Tuple[int, int]]:
    """Parse ``"YYYY-WNN"`` into ``(iso_year, iso_week)``.

    Returns None for anything that is not a valid ISO week of its year.
    """
    if not isinstance(key, str):
        return None
    match = _WEEK_KEY_RE.match(key.strip())
    if not match:
        return None
    iso_year, iso_week = int(match.group(1)), int(match.group(2))
    if iso_week < 1 or iso_week > iso_weeks_in_year(iso_year):
        return None
    return iso_year, iso_week


def is_week_key(key: Any) -> bool:
    return parse_week_key(key) is not None


def week_start_of(key: str) -> date:
    """Monday of the week identified by ``key``.

    Raises:
        ValueError: If ``key`` is not a valid week key
    """
    parsed = parse_week_key(key)
    if parsed is None:
        raise ValueError(f"Invalid week key: {key!r}")
    return date.fromisocalendar(parsed[0], parsed[1], 1)


def monday_of(day: date) -> date:
    return day - timedelta(days=day.weekday())


def week_column_for(monday: date) -> WeekColumn:
    iso_year, iso_week, _ = monday.isocalendar()[:3]
    return WeekColumn(
        key=format_week_key(iso_year, iso_week),
        label=f"W{iso_week}",
        week_start=monday,
        week_end=monday + timedelta(days=6),
    )


def weeks_in_year(year: int) -> List[WeekColumn]:
    """Return the 52 table columns for ``year``.

    Columns start at the Monday of ISO week 1 (which can fall in late
    December of the previous calendar year) and run for 52 consecutive
    weeks. In 53-week ISO years the final week is not shown.
    """
    first_monday = date.fromisocalendar(year, 1, 1)
    return [
        week_column_for(first_monday + timedelta(weeks=i))
        for i in range(WEEKS_PER_TABLE_YEAR)
    ]


def week_keys_in_range(start: DateLike, end: DateLike) -> List[str]:
    """Week keys from the week containing ``start`` through the week containing ``end``."""
    start_day = to_local_date(start)
    end_day = to_local_date(end)
    keys: List[str] = []
    current = monday_of(start_day)
    while current <= end_day:
        keys.append(week_key_of(current))
        current += timedelta(weeks=1)
    return keys


def current_week_key(today: Optional[date] = None) -> str:
    return week_key_of(today or app_today())


def is_past_week(key: str, today: Optional[date] = None) -> bool:
    """True if ``key`` is strictly before the current ISO week.

    Malformed keys are never considered past.
    """
    parsed = parse_week_key(key)
    if parsed is None:
        return False
    current = parse_week_key(current_week_key(today))
    return parsed < current


def current_week_offset(
    year: int,
    today: Optional[date] = None,
    window_size: int = DEFAULT_WINDOW_WEEKS,
) -> int:
    """Offset that centres the current week in a window over ``weeks_in_year(year)``.

    Returns 0 when ``today`` is not inside ``year``'s ISO calendar.
    """
    iso_year, iso_week, _ = (today or app_today()).isocalendar()[:3]
    if iso_year != year:
        return 0
    upper = max(0, WEEKS_PER_TABLE_YEAR - window_size)
    return max(0, min(upper, iso_week - window_size // 2))


def window(columns: Sequence[WeekColumn], offset: int, size: int = DEFAULT_WINDOW_WEEKS) -> List[WeekColumn]:
    """Slice a window of ``size`` columns starting at ``offset`` (clamped)."""
    if size <= 0:
        return []
    offset = max(0, min(offset, max(0, len(columns) - size)))
    return list(columns[offset:offset + size])


__all__ = [
    "WeekColumn",
    "WEEKS_PER_TABLE_YEAR",
    "DEFAULT_WINDOW_WEEKS",
    "format_week_key",
    "week_key_of",
    "iso_weeks_in_year",
    "parse_week_key",
    "is_week_key",
    "week_start_of",
    "monday_of",
    "week_column_for",
    "weeks_in_year",
    "week_keys_in_range",
    "current_week_key",
    "is_past_week",
    "current_week_offset",
    "window",
]
