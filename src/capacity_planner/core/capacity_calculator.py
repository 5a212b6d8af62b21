"""Effective capacity, utilization and classification for resources."""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from capacity_planner.core.models import (
    DEFAULT_WEEKLY_CAPACITY,
    NonProjectActivity,
    parse_capacity,
)
from capacity_planner.utils.common import to_float

logger = logging.getLogger(__name__)

# Subtracted when a resource's non-project activities have not been fetched
DEFAULT_NON_PROJECT_HOURS = 8.0

MAX_CELL_HOURS = 40.0

NEAR_FULL_THRESHOLD = 80.0
FULL_THRESHOLD = 100.0


class UtilizationStatus:
    """Utilization bands for a single week."""

    NO_DATA = "no-data"
    HEALTHY = "healthy"
    NEAR_FULL = "near-full"
    OVERALLOCATED = "overallocated"

    ALL = (NO_DATA, HEALTHY, NEAR_FULL, OVERALLOCATED)


def non_project_hours(
    activities: Optional[Iterable[NonProjectActivity]],
    default_hours: float = DEFAULT_NON_PROJECT_HOURS,
) -> float:
    """Weekly hours taken by active non-project activities.

    Args:
        activities: The resource's activities, or None if they are unknown
        default_hours: Hours assumed when activities are unknown

    Returns:
        Total hours per week (never negative)
    """
    if activities is None:
        return max(0.0, default_hours)
    return sum(a.hours_per_week for a in activities if a.is_active and a.hours_per_week > 0)


def effective_capacity(
    weekly_capacity: Any,
    activities: Optional[Iterable[NonProjectActivity]] = None,
    default_capacity: float = DEFAULT_WEEKLY_CAPACITY,
    default_non_project_hours: float = DEFAULT_NON_PROJECT_HOURS,
) -> float:
    """Weekly hours actually available for project work.

    ``max(0, capacity - non-project hours)``. Capacity may arrive as a numeric
    string; missing or invalid values use ``default_capacity``.
    """
    capacity = parse_capacity(weekly_capacity, default=default_capacity)
    deducted = non_project_hours(activities, default_hours=default_non_project_hours)
    return max(0.0, capacity - deducted)


def utilization_percentage(allocated_hours: float, effective: float) -> float:
    """Allocated hours as a percentage of effective capacity (0 when capacity is 0)."""
    if effective <= 0:
        return 0.0
    return allocated_hours / effective * 100


def classify_utilization(allocated_hours: float, effective: float) -> str:
    """Bucket a week's allocation into a :class:`UtilizationStatus` value."""
    utilization = utilization_percentage(allocated_hours, effective)
    if utilization <= 0:
        return UtilizationStatus.NO_DATA
    if utilization >= FULL_THRESHOLD:
        return UtilizationStatus.OVERALLOCATED
    if utilization >= NEAR_FULL_THRESHOLD:
        return UtilizationStatus.NEAR_FULL
    return UtilizationStatus.HEALTHY


def remaining_capacity(effective: float, allocated_hours: float) -> float:
    """Hours left this week; negative when overallocated."""
    return effective - allocated_hours


def capacity_breakdown(
    weekly_capacity: Any,
    activities: Optional[Iterable[NonProjectActivity]],
    allocated_hours: float,
    default_non_project_hours: float = DEFAULT_NON_PROJECT_HOURS,
) -> Dict[str, Any]:
    """Summary of one resource-week as shown in the capacity panel."""
    activities = list(activities) if activities is not None else None
    base = parse_capacity(weekly_capacity)
    deducted = non_project_hours(activities, default_hours=default_non_project_hours)
    effective = max(0.0, base - deducted)
    return {
        "baseCapacity": base,
        "nonProjectHours": deducted,
        "effectiveCapacity": effective,
        "totalAllocatedHours": allocated_hours,
        "remainingCapacity": remaining_capacity(effective, allocated_hours),
        "utilizationPercentage": round(utilization_percentage(allocated_hours, effective), 1),
        "status": classify_utilization(allocated_hours, effective),
    }


@dataclass(frozen=True)
class OverallocationWarning:
    """Advisory result of checking a proposed edit against capacity."""

    has_warning: bool
    severity: Optional[str]
    message: str
    projected_total: float
    effective_capacity: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hasWarning": self.has_warning,
            "severity": self.severity,
            "message": self.message,
            "projectedTotal": self.projected_total,
            "effectiveCapacity": self.effective_capacity,
        }


def check_overallocation_warning(effective: float, projected_total: float) -> OverallocationWarning:
    """Warn when a projected weekly total nears or exceeds effective capacity.

    Never blocks the edit.

    Args:
        effective: Effective weekly capacity
        projected_total: Weekly total including the proposed edit

    Returns:
        OverallocationWarning with severity ``"error"``, ``"warning"`` or None
    """
    remaining = effective - projected_total

    if projected_total > effective:
        return OverallocationWarning(
            has_warning=True,
            severity="error",
            message=(
                f"Would exceed capacity by {projected_total - effective:.1f}h "
                f"({projected_total:.1f}h / {effective:g}h effective)"
            ),
            projected_total=projected_total,
            effective_capacity=effective,
        )

    if projected_total > effective * NEAR_FULL_THRESHOLD / 100:
        utilization = utilization_percentage(projected_total, effective)
        return OverallocationWarning(
            has_warning=True,
            severity="warning",
            message=f"Near capacity: {utilization:.1f}% utilization ({remaining:.1f}h remaining)",
            projected_total=projected_total,
            effective_capacity=effective,
        )

    return OverallocationWarning(
        has_warning=False,
        severity=None,
        message=f"{remaining:.1f}h remaining this week",
        projected_total=projected_total,
        effective_capacity=effective,
    )


def clamp_cell_hours(hours: Any, max_hours: float = MAX_CELL_HOURS) -> float:
    """Clamp a cell value into ``[0, max_hours]``; invalid input becomes 0."""
    return min(max_hours, max(0.0, to_float(hours, default=0.0)))


_HOURS_INPUT_RE = re.compile(r"^\s*([-+]?\d*\.?\d+)\s*(?:h|hrs?|hours?)?\s*$", re.IGNORECASE)


def parse_hours_input(raw: Any, max_hours: float = MAX_CELL_HOURS) -> float:
    """Parse what a user typed into a cell (``"7.5"``, ``"8h"``, ``""``).

    Blank or unparseable input is 0; the result is clamped to the cell range.
    """
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return clamp_cell_hours(raw, max_hours)
    if raw is None:
        return 0.0
    match = _HOURS_INPUT_RE.match(str(raw))
    if not match:
        return 0.0
    return clamp_cell_hours(match.group(1), max_hours)


__all__ = [
    "DEFAULT_NON_PROJECT_HOURS",
    "MAX_CELL_HOURS",
    "NEAR_FULL_THRESHOLD",
    "FULL_THRESHOLD",
    "UtilizationStatus",
    "OverallocationWarning",
    "non_project_hours",
    "effective_capacity",
    "utilization_percentage",
    "classify_utilization",
    "remaining_capacity",
    "capacity_breakdown",
    "check_overallocation_warning",
    "clamp_cell_hours",
    "parse_hours_input",
]
