"""Reporting periods for dashboard and alert queries."""

import calendar
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from capacity_planner.core.week_keys import monday_of, week_keys_in_range
from capacity_planner.utils.common import app_today, parse_iso_date

logger = logging.getLogger(__name__)

CURRENT_WEEK = "currentWeek"
THIS_MONTH = "thisMonth"
QUARTER = "quarter"
YEAR = "year"

PERIOD_FILTERS = (CURRENT_WEEK, THIS_MONTH, QUARTER, YEAR)

# Periods that look forward from today; their past weeks are dropped for alerts
FORWARD_LOOKING_FILTERS = {THIS_MONTH, QUARTER, YEAR}


@dataclass(frozen=True)
class PeriodInfo:
    start_date: date
    end_date: date
    label: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "label": self.label,
        }


@dataclass(frozen=True)
class AlertsPeriodInfo:
    """A reporting period after current-date adjustment for alerts."""

    start_date: date
    end_date: date
    label: str
    is_forward_looking: bool = False
    excluded_past_weeks: int = 0

    @property
    def description(self) -> str:
        if self.is_forward_looking and self.excluded_past_weeks > 0:
            return (
                f"{self.label} (from current week, "
                f"{self.excluded_past_weeks} past weeks excluded)"
            )
        return self.label

    def week_keys(self) -> List[str]:
        return week_keys_in_range(self.start_date, self.end_date)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "label": self.label,
            "description": self.description,
            "isForwardLooking": self.is_forward_looking,
            "excludedPastWeeks": self.excluded_past_weeks,
        }


def get_period_info(period_filter: str, today: Optional[date] = None) -> PeriodInfo:
    """Start, end and label for a period filter.

    Unknown filters fall back to the current week.
    """
    today = today or app_today()

    if period_filter == THIS_MONTH:
        last_day = calendar.monthrange(today.year, today.month)[1]
        return PeriodInfo(
            start_date=today.replace(day=1),
            end_date=today.replace(day=last_day),
            label=f"{today:%B} {today.year}",
        )
    if period_filter == QUARTER:
        quarter = (today.month - 1) // 3
        first_month = quarter * 3 + 1
        last_month = first_month + 2
        return PeriodInfo(
            start_date=date(today.year, first_month, 1),
            end_date=date(today.year, last_month, calendar.monthrange(today.year, last_month)[1]),
            label=f"Q{quarter + 1} {today.year}",
        )
    if period_filter == YEAR:
        return PeriodInfo(
            start_date=date(today.year, 1, 1),
            end_date=date(today.year, 12, 31),
            label=str(today.year),
        )

    monday = monday_of(today)
    return PeriodInfo(start_date=monday, end_date=monday + timedelta(days=6), label="Current Week")


def period_from_dates(start: Any, end: Any, label: Optional[str] = None) -> Optional[PeriodInfo]:
    """Build an explicit period from ISO date strings; None if unparseable or inverted."""
    start_date = parse_iso_date(start)
    end_date = parse_iso_date(end)
    if start_date is None or end_date is None or end_date < start_date:
        return None
    return PeriodInfo(
        start_date=start_date,
        end_date=end_date,
        label=label or f"{start_date.isoformat()} to {end_date.isoformat()}",
    )


def adjust_period_for_alerts(
    period_filter: str,
    period: PeriodInfo,
    today: Optional[date] = None,
) -> AlertsPeriodInfo:
    """Drop past weeks from forward-looking multi-week periods.

    A month/quarter/year period that contains today and started before the
    current week is moved to start at the current week's Monday.
    """
    today = today or app_today()
    current_week_start = monday_of(today)

    is_multi_week = (period.end_date - period.start_date).days > 7
    includes_past_weeks = period.start_date < current_week_start
    includes_today = period.start_date <= today <= period.end_date

    if (
        period_filter in FORWARD_LOOKING_FILTERS
        and is_multi_week
        and includes_past_weeks
        and includes_today
    ):
        excluded = (current_week_start - period.start_date).days // 7
        logger.info(
            "Adjusted %s period: excluded %d past weeks (%s -> %s)",
            period_filter,
            excluded,
            period.start_date.isoformat(),
            current_week_start.isoformat(),
        )
        return AlertsPeriodInfo(
            start_date=current_week_start,
            end_date=period.end_date,
            label=period.label,
            is_forward_looking=True,
            excluded_past_weeks=excluded,
        )

    return AlertsPeriodInfo(
        start_date=period.start_date,
        end_date=period.end_date,
        label=period.label,
    )


def period_multiplier(start_date: date, end_date: date) -> int:
    """Number of weeks in a period, rounded to nearest, minimum 1."""
    weeks = (end_date - start_date).days / 7
    return max(1, int(round(weeks)))


__all__ = [
    "CURRENT_WEEK",
    "THIS_MONTH",
    "QUARTER",
    "YEAR",
    "PERIOD_FILTERS",
    "FORWARD_LOOKING_FILTERS",
    "PeriodInfo",
    "AlertsPeriodInfo",
    "get_period_info",
    "period_from_dates",
    "adjust_period_for_alerts",
    "period_multiplier",
]
