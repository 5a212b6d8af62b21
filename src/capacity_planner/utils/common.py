"""Common utility functions used across the application."""

import math
import os
from datetime import date, datetime, tzinfo
from typing import Any, Optional
from zoneinfo import ZoneInfo

# Application timezone; week boundaries for "today" are evaluated here
APP_TZ = ZoneInfo(os.environ.get("APP_TIMEZONE", "UTC"))


def app_now(tz: Optional[tzinfo] = None) -> datetime:
    """Return current datetime in the application timezone."""
    return datetime.now(tz or APP_TZ)


def app_today(tz: Optional[tzinfo] = None) -> date:
    """Return current date in the application timezone."""
    return app_now(tz).date()


def to_local_date(value: Any, tz: Optional[tzinfo] = None) -> date:
    """Reduce a date or datetime to a calendar date.

    Aware datetimes are converted to the application timezone first so the
    same instant always maps to the same calendar day. Naive datetimes keep
    their own calendar date.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(tz or APP_TZ).date()
        return value.date()
    if isinstance(value, date):
        return value
    raise TypeError("value must be a date or datetime")


def parse_iso_date(value: Any) -> Optional[date]:
    """Parse a YYYY-MM-DD (or full ISO timestamp) string into a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def to_float(value: Any, default: float = 0.0) -> float:
    """Coerce a wire value (number or numeric string) to a finite float.

    Booleans, blanks, non-numeric strings and NaN/inf fall back to ``default``.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return default
    else:
        return default
    if not math.isfinite(number):
        return default
    return number


__all__ = [
    "APP_TZ",
    "app_now",
    "app_today",
    "to_local_date",
    "parse_iso_date",
    "to_float",
]
