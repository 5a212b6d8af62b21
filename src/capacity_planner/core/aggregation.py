"""Weekly allocation totals, with and without unsaved edits.

All functions are pure: they read a snapshot of allocation records and never
mutate it, so calling them twice on the same snapshot gives the same result.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from capacity_planner.core.capacity_calculator import (
    DEFAULT_NON_PROJECT_HOURS,
    classify_utilization,
    effective_capacity,
    utilization_percentage,
)
from capacity_planner.core.models import (
    NonProjectActivity,
    PendingChange,
    Resource,
    ResourceAllocation,
)

logger = logging.getLogger(__name__)

PendingChanges = Union[Mapping[str, PendingChange], Iterable[PendingChange]]


def _active(
    allocations: Iterable[ResourceAllocation],
    project_id: Optional[int] = None,
) -> List[ResourceAllocation]:
    return [
        a for a in allocations
        if a.is_active and (project_id is None or a.project_id == project_id)
    ]


def _iter_changes(pending_changes: Optional[PendingChanges]) -> Iterable[PendingChange]:
    if not pending_changes:
        return []
    if isinstance(pending_changes, Mapping):
        return pending_changes.values()
    return pending_changes


def weekly_totals(
    allocations: Iterable[ResourceAllocation],
    week_keys: Optional[Sequence[str]] = None,
    project_id: Optional[int] = None,
) -> Dict[str, float]:
    """Sum hours per week across active allocations.

    Args:
        allocations: Allocation snapshot (inactive entries are skipped)
        week_keys: Weeks to report; each is present with a 0 default. When
            None, every week seen in the data is reported.
        project_id: Restrict to a single project

    Returns:
        Mapping of week key to total hours
    """
    totals: Dict[str, float] = {key: 0.0 for key in week_keys} if week_keys is not None else {}
    for allocation in _active(allocations, project_id):
        for key, hours in allocation.weekly_allocations.items():
            if week_keys is not None and key not in totals:
                continue
            totals[key] = totals.get(key, 0.0) + hours
    return totals


def project_weekly_totals(
    allocations: Iterable[ResourceAllocation],
    project_id: int,
    week_keys: Sequence[str],
) -> Dict[str, float]:
    """Per-week total for one project across every resource allocated to it."""
    return weekly_totals(allocations, week_keys=week_keys, project_id=project_id)


def realtime_weekly_totals(
    allocations: Iterable[ResourceAllocation],
    pending_changes: Optional[PendingChanges],
    week_keys: Optional[Sequence[str]] = None,
    project_id: Optional[int] = None,
) -> Dict[str, float]:
    """Weekly totals with unsaved edits applied on top of the snapshot.

    Each pending change replaces the stored value of its cell:
    ``total[week] += change.hours - stored``. Changes for projects with no
    allocation in the (filtered) snapshot are ignored.
    """
    active = _active(allocations, project_id)
    totals = weekly_totals(active, week_keys=week_keys)

    by_project: Dict[int, ResourceAllocation] = {}
    for allocation in active:
        by_project.setdefault(allocation.project_id, allocation)

    for change in _iter_changes(pending_changes):
        allocation = by_project.get(change.project_id)
        if allocation is None:
            logger.debug("Pending change %s has no matching allocation", change.key)
            continue
        if week_keys is not None and change.week_key not in totals:
            continue
        original = allocation.hours_for(change.week_key)
        totals[change.week_key] = totals.get(change.week_key, 0.0) - original + change.hours
    return totals


@dataclass(frozen=True)
class WeekUtilization:
    week_key: str
    allocated_hours: float
    effective_capacity: float
    utilization: float
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "weekKey": self.week_key,
            "allocatedHours": self.allocated_hours,
            "effectiveCapacity": self.effective_capacity,
            "utilization": round(self.utilization, 1),
            "status": self.status,
        }


def week_utilizations(
    totals: Mapping[str, float],
    effective: float,
    week_keys: Optional[Sequence[str]] = None,
) -> List[WeekUtilization]:
    """Classify each week's total against a flat effective capacity."""
    keys = list(week_keys) if week_keys is not None else sorted(totals)
    result = []
    for key in keys:
        hours = totals.get(key, 0.0)
        result.append(
            WeekUtilization(
                week_key=key,
                allocated_hours=hours,
                effective_capacity=effective,
                utilization=utilization_percentage(hours, effective),
                status=classify_utilization(hours, effective),
            )
        )
    return result


@dataclass(frozen=True)
class ResourceUtilization:
    """One resource's per-week utilization over a reporting period."""

    resource: Resource
    effective_capacity: float
    weeks: List[WeekUtilization] = field(default_factory=list)
    has_active_allocations: bool = False

    @property
    def peak(self) -> Optional[WeekUtilization]:
        """Week with the highest utilization; earliest week wins ties."""
        best = None
        for week in self.weeks:
            if best is None or week.utilization > best.utilization:
                best = week
        return best

    @property
    def peak_utilization(self) -> float:
        peak = self.peak
        return peak.utilization if peak else 0.0

    @property
    def peak_week(self) -> Optional[str]:
        peak = self.peak
        return peak.week_key if peak and peak.utilization > 0 else None

    @property
    def total_allocated_hours(self) -> float:
        return sum(week.allocated_hours for week in self.weeks)


def build_resource_utilization(
    resource: Resource,
    allocations: Iterable[ResourceAllocation],
    activities: Optional[Iterable[NonProjectActivity]],
    week_keys: Sequence[str],
    default_non_project_hours: float = DEFAULT_NON_PROJECT_HOURS,
) -> ResourceUtilization:
    """Aggregate a resource's allocations over ``week_keys``.

    ``allocations`` may contain other resources' records; only this
    resource's are used.
    """
    own = [a for a in allocations if a.resource_id == resource.id]
    effective = effective_capacity(
        resource.weekly_capacity,
        activities,
        default_non_project_hours=default_non_project_hours,
    )
    totals = weekly_totals(own, week_keys=week_keys)
    return ResourceUtilization(
        resource=resource,
        effective_capacity=effective,
        weeks=week_utilizations(totals, effective, week_keys),
        has_active_allocations=any(a.is_active for a in own),
    )


__all__ = [
    "WeekUtilization",
    "ResourceUtilization",
    "weekly_totals",
    "project_weekly_totals",
    "realtime_weekly_totals",
    "week_utilizations",
    "build_resource_utilization",
]
