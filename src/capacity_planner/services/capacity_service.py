"""Capacity pipeline over backend data: fetch, aggregate, classify, categorize."""

import logging
import threading
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from capacity_planner.config import Settings
from capacity_planner.core.aggregation import (
    build_resource_utilization,
    project_weekly_totals,
    week_utilizations,
    weekly_totals,
)
from capacity_planner.core.alerts import AlertThresholds, build_capacity_alerts
from capacity_planner.core.capacity_calculator import capacity_breakdown
from capacity_planner.core.models import NonProjectActivity, Resource, ResourceAllocation
from capacity_planner.core.periods import (
    adjust_period_for_alerts,
    get_period_info,
    period_from_dates,
)
from capacity_planner.core.week_keys import (
    DEFAULT_WINDOW_WEEKS,
    current_week_key,
    current_week_offset,
    weeks_in_year,
    window,
)
from capacity_planner.services.allocation_client import CapacityApiClient, CapacityApiError
from capacity_planner.services.save_session import ExplicitSaveSession, SaveResult
from capacity_planner.utils.cache_utils import ReadThroughCache
from capacity_planner.utils.common import app_today

logger = logging.getLogger(__name__)

ALL_RESOURCES_KEY = "resources:all"
ALL_ALLOCATIONS_KEY = "allocations:all"


def resource_key(resource_id: int) -> str:
    return f"resource:{resource_id}"


def allocations_key(resource_id: int) -> str:
    return f"allocations:{resource_id}"


def activities_key(resource_id: int) -> str:
    return f"activities:{resource_id}"


class CapacityService:
    """Reads backend data through a TTL cache and runs the capacity pipeline.

    Also owns one explicit-save session per resource being edited.
    """

    def __init__(
        self,
        client: CapacityApiClient,
        settings: Optional[Settings] = None,
        cache: Optional[ReadThroughCache] = None,
    ):
        self.client = client
        self.settings = settings or Settings()
        self.cache = cache or ReadThroughCache(ttl=self.settings.cache_ttl)
        self.thresholds = AlertThresholds.from_settings(self.settings)
        self._sessions: Dict[int, ExplicitSaveSession] = {}
        self._sessions_lock = threading.Lock()

    # Cached reads

    def get_resource(self, resource_id: int) -> Resource:
        return self.cache.get_or_load(
            resource_key(resource_id), lambda: self.client.get_resource(resource_id)
        )

    def list_resources(self) -> List[Resource]:
        return self.cache.get_or_load(ALL_RESOURCES_KEY, self.client.list_resources)

    def get_allocations(self, resource_id: int) -> List[ResourceAllocation]:
        return self.cache.get_or_load(
            allocations_key(resource_id),
            lambda: self.client.get_resource_allocations(resource_id),
        )

    def list_allocations(self) -> List[ResourceAllocation]:
        return self.cache.get_or_load(ALL_ALLOCATIONS_KEY, self.client.list_allocations)

    def get_activities(self, resource_id: int) -> Optional[List[NonProjectActivity]]:
        """Active and inactive activities, or None if they could not be fetched."""
        try:
            return self.cache.get_or_load(
                activities_key(resource_id),
                lambda: self.client.get_non_project_activities(resource_id),
            )
        except CapacityApiError as exc:
            logger.warning(
                "Non-project activities unavailable for resource %s, using default deduction: %s",
                resource_id,
                exc,
            )
            return None

    def invalidate_resource(self, resource_id: int) -> None:
        """Drop cached data for a resource and refresh its edit session snapshot."""
        for key in (
            resource_key(resource_id),
            allocations_key(resource_id),
            activities_key(resource_id),
            ALL_ALLOCATIONS_KEY,
        ):
            self.cache.invalidate(key)
        self._refresh_session(resource_id)

    # Pipeline

    def resource_capacity(
        self,
        resource_id: int,
        year: Optional[int] = None,
        offset: Optional[int] = None,
        weeks: int = DEFAULT_WINDOW_WEEKS,
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        """Weekly allocation table for one resource over a window of weeks."""
        today = today or app_today()
        year = year or today.isocalendar()[0]
        if offset is None:
            offset = current_week_offset(year, today, weeks)
        columns = window(weeks_in_year(year), offset, weeks)
        keys = [column.key for column in columns]

        resource = self.get_resource(resource_id)
        allocations = [a for a in self.get_allocations(resource_id) if a.resource_id == resource.id]
        activities = self.get_activities(resource_id)

        session = self.get_session(resource_id)
        if session is not None:
            totals = session.weekly_totals(week_keys=keys)
            pending = session.pending_changes
        else:
            totals = weekly_totals(allocations, week_keys=keys)
            pending = {}

        breakdown = capacity_breakdown(
            resource.weekly_capacity,
            activities,
            totals.get(current_week_key(today), 0.0),
            default_non_project_hours=self.settings.default_non_project_hours,
        )
        effective = breakdown["effectiveCapacity"]

        rows = [a for a in allocations if a.is_active]
        if session is not None:
            rows = session.stable_order(rows, key=lambda a: a.project_id)

        return {
            "resource": resource.to_dict(),
            "year": year,
            "offset": offset,
            "currentWeek": current_week_key(today),
            "capacity": breakdown,
            "columns": [column.to_dict() for column in columns],
            "weeks": [w.to_dict() for w in week_utilizations(totals, effective, keys)],
            "rows": [
                {
                    "allocationId": a.id,
                    "projectId": a.project_id,
                    "projectName": a.project.name if a.project else None,
                    "role": a.role,
                    "weeklyAllocations": {key: a.hours_for(key) for key in keys},
                }
                for a in rows
            ],
            "pendingChanges": {key: change.to_dict() for key, change in pending.items()},
        }

    def project_weekly_totals(
        self,
        project_id: int,
        year: Optional[int] = None,
        resource_ids: Optional[Iterable[int]] = None,
    ) -> Dict[str, Any]:
        """Per-week hours for one project across its resources."""
        year = year or app_today().isocalendar()[0]
        keys = [column.key for column in weeks_in_year(year)]
        allocations = self.list_allocations()
        if resource_ids is not None:
            wanted = set(resource_ids)
            allocations = [a for a in allocations if a.resource_id in wanted]
        totals = project_weekly_totals(allocations, project_id, keys)
        return {
            "projectId": project_id,
            "year": year,
            "weeklyTotals": totals,
            "totalHours": sum(totals.values()),
        }

    def dashboard_alerts(
        self,
        period_filter: str = "currentWeek",
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        department: Optional[str] = None,
        severity: Optional[str] = None,
        today: Optional[date] = None,
        sort_by: Optional[str] = None,
        descending: bool = True,
    ) -> Dict[str, Any]:
        """Capacity alerts for every active resource in a reporting period.

        Raises:
            ValueError: If only one of ``start_date``/``end_date`` is given or
                they do not form a valid range, or ``sort_by`` is unsupported
        """
        today = today or app_today()
        if start_date or end_date:
            period = period_from_dates(start_date, end_date)
            if period is None:
                raise ValueError("startDate and endDate must be ISO dates with startDate <= endDate")
        else:
            period = get_period_info(period_filter, today)
        adjusted = adjust_period_for_alerts(
            "custom" if (start_date or end_date) else period_filter, period, today
        )
        keys = adjusted.week_keys()

        allocations = self.list_allocations()
        usages = [
            build_resource_utilization(
                resource,
                allocations,
                self.get_activities(resource.id),
                keys,
                default_non_project_hours=self.settings.default_non_project_hours,
            )
            for resource in self.list_resources()
            if resource.is_active
        ]
        return build_capacity_alerts(
            usages,
            adjusted,
            thresholds=self.thresholds,
            department=department,
            severity=severity,
            sort_by=sort_by,
            descending=descending,
        )

    # Edit sessions

    def get_session(self, resource_id: int) -> Optional[ExplicitSaveSession]:
        with self._sessions_lock:
            return self._sessions.get(resource_id)

    def start_session(self, resource_id: int) -> ExplicitSaveSession:
        """Return the resource's edit session, creating it on first use."""
        existing = self.get_session(resource_id)
        if existing is not None:
            return existing

        resource = self.get_resource(resource_id)
        session = ExplicitSaveSession(
            resource,
            self.get_allocations(resource_id),
            save_fn=lambda change: self.client.update_weekly_allocation(resource_id, change),
            activities=self.get_activities(resource_id),
            on_all_saved=lambda: self.invalidate_resource(resource_id),
            max_workers=self.settings.save_max_workers,
            max_cell_hours=self.settings.max_cell_hours,
            row_lock_release_seconds=self.settings.row_lock_release_seconds,
            default_non_project_hours=self.settings.default_non_project_hours,
        )
        with self._sessions_lock:
            session = self._sessions.setdefault(resource_id, session)
        session.start_editing_session()
        logger.info("Started edit session for resource %s", resource_id)
        return session

    def save_changes(self, resource_id: int, failed_only: bool = False) -> Optional[SaveResult]:
        """Run a save (or retry) batch for the resource's session.

        A batch whose successful writes landed after a discard leaves the
        snapshot stale, so the resource is refetched.

        Returns:
            The batch result, or None when there is no session
        """
        session = self.get_session(resource_id)
        if session is None:
            return None
        result = session.retry_failed_saves() if failed_only else session.save_all_changes()
        if result.stale and session.needs_refresh:
            self.invalidate_resource(resource_id)
        return result

    def discard_changes(self, resource_id: int) -> Optional[ExplicitSaveSession]:
        """Drop unsaved edits; refetch if earlier saves already reached the backend."""
        session = self.get_session(resource_id)
        if session is None:
            return None
        if session.discard_all_changes():
            self.invalidate_resource(resource_id)
        return session

    def end_session(self, resource_id: int) -> bool:
        with self._sessions_lock:
            session = self._sessions.pop(resource_id, None)
        if session is None:
            return False
        if session.discard_all_changes():
            self.invalidate_resource(resource_id)
        session.end_editing_session()
        return True

    def _refresh_session(self, resource_id: int) -> None:
        session = self.get_session(resource_id)
        if session is None:
            return
        try:
            session.replace_snapshot(
                self.get_allocations(resource_id),
                self.get_activities(resource_id),
            )
        except CapacityApiError as exc:
            logger.error("Could not refresh snapshot for resource %s: %s", resource_id, exc)

    # Non-project activities

    def create_activity(self, payload: Dict[str, Any]) -> Optional[NonProjectActivity]:
        activity = self.client.create_non_project_activity(payload)
        self._invalidate_activity_owner(payload, activity)
        return activity

    def update_activity(self, activity_id: int, payload: Dict[str, Any]) -> Optional[NonProjectActivity]:
        activity = self.client.update_non_project_activity(activity_id, payload)
        self._invalidate_activity_owner(payload, activity)
        return activity

    def delete_activity(self, activity_id: int, resource_id: Optional[int] = None) -> None:
        self.client.delete_non_project_activity(activity_id)
        if resource_id is not None:
            self.invalidate_resource(resource_id)
        else:
            self.cache.invalidate_prefix("activities:")

    def _invalidate_activity_owner(
        self, payload: Dict[str, Any], activity: Optional[NonProjectActivity]
    ) -> None:
        if activity is not None:
            self.invalidate_resource(activity.resource_id)
            return
        try:
            self.invalidate_resource(int(payload.get("resourceId")))
        except (TypeError, ValueError):
            self.cache.invalidate_prefix("activities:")


__all__ = [
    "CapacityService",
    "ALL_RESOURCES_KEY",
    "ALL_ALLOCATIONS_KEY",
    "resource_key",
    "allocations_key",
    "activities_key",
]
