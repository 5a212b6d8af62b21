"""Capacity alerts categorized by peak weekly utilization.

A resource lands in at most one category, chosen by the highest weekly
utilization it reaches inside the reporting period. A single overloaded week
makes a resource critical even when its average looks healthy.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from capacity_planner.core.aggregation import ResourceUtilization
from capacity_planner.core.periods import AlertsPeriodInfo, period_multiplier
from capacity_planner.utils.common import app_now

logger = logging.getLogger(__name__)

CRITICAL = "critical"
ERROR = "error"
WARNING = "warning"
INFO = "info"
UNASSIGNED = "unassigned"
UNTAPPED = "untapped"

CATEGORY_PRIORITY = {
    CRITICAL: 0,
    ERROR: 1,
    WARNING: 2,
    INFO: 3,
    UNASSIGNED: 4,
}

CATEGORY_ORDER = (CRITICAL, ERROR, WARNING, INFO, UNASSIGNED, UNTAPPED)

CATEGORY_DETAILS = {
    CRITICAL: ("Critical Overallocation", "Resources severely overallocated"),
    ERROR: ("Overallocation Detected", "Resources over capacity"),
    WARNING: ("Near Capacity", "Resources approaching capacity limits"),
    INFO: ("Under-utilized", "Resources available for additional work"),
    UNASSIGNED: ("Unassigned Resources", "Resources with no project allocations"),
    UNTAPPED: ("Untapped Potential", "Allocated resources with no hours booked this period"),
}

SORT_FIELDS = ("name", "utilization", "department")


@dataclass(frozen=True)
class AlertThresholds:
    """Peak-utilization cutoffs, in percent.

    ``critical``: peak above this is critical.
    ``error``: optional; peak above this (and up to ``critical``) is error.
    ``warning``: peak at or above this is warning.
    ``under_utilization``: peak above 0 and below this is info.
    """

    critical: float = 100.0
    warning: float = 85.0
    under_utilization: float = 70.0
    error: Optional[float] = None

    def __post_init__(self):
        if self.under_utilization < 0:
            raise ValueError("under_utilization threshold must not be negative")
        if self.under_utilization > self.warning:
            raise ValueError("under_utilization threshold must not exceed warning threshold")
        if self.warning > self.critical:
            raise ValueError("warning threshold must not exceed critical threshold")
        if self.error is not None and not (self.warning < self.error < self.critical):
            raise ValueError("error threshold must lie between warning and critical thresholds")

    @classmethod
    def from_settings(cls, settings) -> "AlertThresholds":
        return cls(
            critical=settings.alert_critical_threshold,
            warning=settings.alert_warning_threshold,
            under_utilization=settings.alert_under_utilization_threshold,
            error=settings.alert_error_threshold,
        )

    def threshold_for(self, category_type: str) -> Optional[float]:
        return {
            CRITICAL: self.critical,
            ERROR: self.error,
            WARNING: self.warning,
            INFO: self.under_utilization,
        }.get(category_type)


def categorize_peak(
    peak_utilization: float,
    has_active_allocations: bool,
    thresholds: AlertThresholds,
) -> Optional[str]:
    """Category type for a peak utilization, or None when healthy."""
    if peak_utilization > thresholds.critical:
        return CRITICAL
    if thresholds.error is not None and peak_utilization > thresholds.error:
        return ERROR
    if peak_utilization >= thresholds.warning:
        return WARNING
    if peak_utilization <= 0:
        return UNTAPPED if has_active_allocations else UNASSIGNED
    if peak_utilization < thresholds.under_utilization:
        return INFO
    return None


@dataclass(frozen=True)
class AlertResource:
    id: int
    name: str
    utilization: float
    allocated_hours: float
    capacity: float
    department: Optional[str] = None
    role: Optional[str] = None
    peak_week: Optional[str] = None
    weekly_breakdown: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def group(self) -> str:
        return self.department or self.role or ""

    @classmethod
    def from_utilization(cls, usage: ResourceUtilization, weeks_in_period: int) -> "AlertResource":
        resource = usage.resource
        return cls(
            id=resource.id,
            name=resource.name,
            utilization=round(usage.peak_utilization, 1),
            allocated_hours=round(usage.total_allocated_hours, 2),
            capacity=round(usage.effective_capacity * weeks_in_period, 2),
            department=resource.department,
            role=resource.role,
            peak_week=usage.peak_week,
            weekly_breakdown=[week.to_dict() for week in usage.weeks],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "utilization": self.utilization,
            "allocatedHours": self.allocated_hours,
            "capacity": self.capacity,
            "department": self.department,
            "role": self.role,
            "peakWeek": self.peak_week,
            "weeklyBreakdown": list(self.weekly_breakdown),
        }


@dataclass
class AlertCategory:
    type: str
    title: str
    description: str
    resources: List[AlertResource] = field(default_factory=list)
    threshold: Optional[float] = None

    @property
    def count(self) -> int:
        return len(self.resources)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "count": self.count,
            "resources": [r.to_dict() for r in self.resources],
        }
        if self.threshold is not None:
            data["threshold"] = self.threshold
        return data


def _new_category(category_type: str, thresholds: AlertThresholds) -> AlertCategory:
    title, description = CATEGORY_DETAILS[category_type]
    return AlertCategory(
        type=category_type,
        title=title,
        description=description,
        threshold=thresholds.threshold_for(category_type),
    )


def categorize_resources(
    usages: Iterable[ResourceUtilization],
    thresholds: Optional[AlertThresholds] = None,
    weeks_in_period: int = 1,
) -> List[AlertCategory]:
    """Partition resources into alert categories by peak utilization.

    Inactive resources are skipped. Only non-empty categories are returned,
    in display order. Resources keep their input order within a category.
    """
    thresholds = thresholds or AlertThresholds()
    categories: Dict[str, AlertCategory] = {}

    for usage in usages:
        if not usage.resource.is_active:
            continue
        category_type = categorize_peak(
            usage.peak_utilization, usage.has_active_allocations, thresholds
        )
        if category_type is None:
            continue
        if category_type not in categories:
            categories[category_type] = _new_category(category_type, thresholds)
        categories[category_type].resources.append(
            AlertResource.from_utilization(usage, weeks_in_period)
        )

    return sort_categories(categories.values())


def sort_categories(categories: Iterable[AlertCategory]) -> List[AlertCategory]:
    """Order by fixed priority; unlisted types follow in their original order."""
    return sorted(categories, key=lambda c: CATEGORY_PRIORITY.get(c.type, len(CATEGORY_PRIORITY)))


def sort_resources(
    resources: Sequence[AlertResource],
    sort_by: str = "utilization",
    descending: bool = True,
) -> List[AlertResource]:
    """Sort alert resources by name, utilization or department (stable).

    Raises:
        ValueError: If ``sort_by`` is not a supported field
    """
    if sort_by == "name":
        key = lambda r: r.name.lower()  # noqa: E731
    elif sort_by == "utilization":
        key = lambda r: r.utilization  # noqa: E731
    elif sort_by == "department":
        key = lambda r: r.group.lower()  # noqa: E731
    else:
        raise ValueError(f"Unsupported sort field: {sort_by!r}")

    return sorted(resources, key=key, reverse=descending)


def build_capacity_alerts(
    usages: Iterable[ResourceUtilization],
    period: AlertsPeriodInfo,
    thresholds: Optional[AlertThresholds] = None,
    department: Optional[str] = None,
    severity: Optional[str] = None,
    generated_at: Optional[datetime] = None,
    sort_by: Optional[str] = None,
    descending: bool = True,
) -> Dict[str, Any]:
    """Assemble the dashboard alerts payload.

    Args:
        usages: Per-resource utilization over the period's weeks
        period: Reporting period (after forward-looking adjustment)
        thresholds: Threshold table (defaults apply when None)
        department: Keep only resources whose department (or role, or
            ``"General"``) matches
        severity: Keep only this category type
        generated_at: Timestamp for the metadata block
        sort_by: Resource order inside each category (name, utilization or
            department); None keeps categorization order
        descending: Sort direction for ``sort_by``

    Returns:
        Dict with ``categories``, ``summary`` and ``metadata``

    Raises:
        ValueError: If ``sort_by`` is not a supported field
    """
    if sort_by is not None and sort_by not in SORT_FIELDS:
        raise ValueError(f"Unsupported sort field: {sort_by!r}")
    usages = list(usages)
    if department and department.lower() != "all":
        usages = [u for u in usages if u.resource.group == department]

    weeks = period_multiplier(period.start_date, period.end_date)
    categories = categorize_resources(usages, thresholds, weeks_in_period=weeks)
    if severity and severity.lower() != "all":
        categories = [c for c in categories if c.type == severity]
    if sort_by is not None:
        for category in categories:
            category.resources = sort_resources(category.resources, sort_by, descending)

    counts = {c.type: c.count for c in categories}
    summary = {
        "totalAlerts": sum(counts.values()),
        "criticalCount": counts.get(CRITICAL, 0),
        "errorCount": counts.get(ERROR, 0),
        "warningCount": counts.get(WARNING, 0),
        "infoCount": counts.get(INFO, 0),
        "unassignedCount": counts.get(UNASSIGNED, 0),
        "untappedCount": counts.get(UNTAPPED, 0),
    }
    logger.info(
        "Built capacity alerts for %s: %d alerts across %d resources",
        period.label,
        summary["totalAlerts"],
        len(usages),
    )

    return {
        "categories": [c.to_dict() for c in categories],
        "summary": summary,
        "metadata": {
            "department": department or "All",
            "severity": severity or "All",
            "sortBy": sort_by,
            "sortOrder": "desc" if descending else "asc",
            "period": period.to_dict(),
            "weeksInPeriod": weeks,
            "generatedAt": (generated_at or app_now()).isoformat(),
        },
    }


__all__ = [
    "CRITICAL",
    "ERROR",
    "WARNING",
    "INFO",
    "UNASSIGNED",
    "UNTAPPED",
    "CATEGORY_PRIORITY",
    "CATEGORY_ORDER",
    "SORT_FIELDS",
    "AlertThresholds",
    "AlertResource",
    "AlertCategory",
    "categorize_peak",
    "categorize_resources",
    "sort_categories",
    "sort_resources",
    "build_capacity_alerts",
]
