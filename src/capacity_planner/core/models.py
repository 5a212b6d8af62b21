"""Domain records and wire-payload parsing.

Backend payloads are camelCase JSON. They are parsed here, once, into frozen
dataclasses; nothing past this module handles raw dicts.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Mapping, Optional

from capacity_planner.core.week_keys import is_week_key
from capacity_planner.utils.common import parse_iso_date, to_float

logger = logging.getLogger(__name__)

DEFAULT_WEEKLY_CAPACITY = 40.0

ACTIVITY_TYPES = ("Meetings", "Administration", "Training", "Support", "Other")

ALLOCATION_STATUS_ACTIVE = "active"
ALLOCATION_STATUS_PLANNED = "planned"
ALLOCATION_STATUS_COMPLETED = "completed"

PROJECT_TYPES = ("business", "change")


def _require_id(payload: Mapping[str, Any], key: str) -> int:
    value = payload.get(key)
    if isinstance(value, bool):
        raise ValueError(f"{key} must be an integer id")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be an integer id, got {value!r}") from None


def _optional_id(payload: Mapping[str, Any], key: str) -> Optional[int]:
    if payload.get(key) is None:
        return None
    try:
        return _require_id(payload, key)
    except ValueError:
        return None


def _as_bool(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_weekly_allocations(raw: Any) -> Dict[str, float]:
    """Validate a ``weeklyAllocations`` map.

    Keys must be well-formed week keys; values must be finite, non-negative
    numbers (numeric strings accepted). Anything else is dropped.
    """
    if not isinstance(raw, Mapping):
        if raw is not None:
            logger.debug("Dropping non-mapping weeklyAllocations: %r", type(raw).__name__)
        return {}

    parsed: Dict[str, float] = {}
    for key, value in raw.items():
        if not is_week_key(key):
            logger.debug("Dropping weekly allocation with bad week key %r", key)
            continue
        hours = to_float(value, default=-1.0)
        if hours < 0:
            logger.debug("Dropping weekly allocation %s with bad hours %r", key, value)
            continue
        parsed[key.strip()] = hours
    return parsed


def parse_capacity(value: Any, default: float = DEFAULT_WEEKLY_CAPACITY) -> float:
    """Declared weekly capacity; missing, invalid or negative values become ``default``."""
    capacity = to_float(value, default=-1.0)
    if capacity < 0:
        return default
    return capacity


@dataclass(frozen=True)
class Resource:
    id: int
    name: str
    weekly_capacity: float = DEFAULT_WEEKLY_CAPACITY
    department: Optional[str] = None
    role: Optional[str] = None
    email: Optional[str] = None
    is_active: bool = True

    @property
    def group(self) -> str:
        """Department used for filtering and sorting; falls back to role."""
        return self.department or self.role or "General"

    @classmethod
    def from_dict(
        cls, payload: Mapping[str, Any], default_capacity: float = DEFAULT_WEEKLY_CAPACITY
    ) -> "Resource":
        return cls(
            id=_require_id(payload, "id"),
            name=_as_text(payload.get("name")) or "",
            weekly_capacity=parse_capacity(payload.get("weeklyCapacity"), default_capacity),
            department=_as_text(payload.get("department")),
            role=_as_text(payload.get("role")),
            email=_as_text(payload.get("email")),
            is_active=_as_bool(payload.get("isActive"), default=True),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "weeklyCapacity": self.weekly_capacity,
            "department": self.department,
            "role": self.role,
            "email": self.email,
            "isActive": self.is_active,
        }


@dataclass(frozen=True)
class NonProjectActivity:
    """Recurring non-project time (meetings, admin, ...) for a resource."""

    id: Optional[int]
    resource_id: int
    activity_type: str
    hours_per_week: float
    description: Optional[str] = None
    is_active: bool = True

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "NonProjectActivity":
        activity_type = _as_text(payload.get("activityType")) or "Other"
        if activity_type not in ACTIVITY_TYPES:
            logger.debug("Unknown activity type %r, treating as Other", activity_type)
            activity_type = "Other"
        hours = to_float(payload.get("hoursPerWeek"), default=0.0)
        return cls(
            id=_optional_id(payload, "id"),
            resource_id=_require_id(payload, "resourceId"),
            activity_type=activity_type,
            hours_per_week=max(0.0, hours),
            description=_as_text(payload.get("description")),
            is_active=_as_bool(payload.get("isActive"), default=True),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "resourceId": self.resource_id,
            "activityType": self.activity_type,
            "hoursPerWeek": self.hours_per_week,
            "description": self.description,
            "isActive": self.is_active,
        }
        if self.id is not None:
            data["id"] = self.id
        return data


@dataclass(frozen=True)
class Project:
    id: int
    name: str
    type: str = "business"
    status: Optional[str] = None
    priority: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    director_id: Optional[int] = None
    change_lead_id: Optional[int] = None
    business_lead_id: Optional[int] = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Project":
        project_type = _as_text(payload.get("type")) or "business"
        return cls(
            id=_require_id(payload, "id"),
            name=_as_text(payload.get("name")) or "",
            type=project_type if project_type in PROJECT_TYPES else "business",
            status=_as_text(payload.get("status")),
            priority=_as_text(payload.get("priority")),
            start_date=parse_iso_date(payload.get("startDate")),
            end_date=parse_iso_date(payload.get("endDate")),
            director_id=_optional_id(payload, "directorId"),
            change_lead_id=_optional_id(payload, "changeLeadId"),
            business_lead_id=_optional_id(payload, "businessLeadId"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "status": self.status,
            "priority": self.priority,
            "startDate": self.start_date.isoformat() if self.start_date else None,
            "endDate": self.end_date.isoformat() if self.end_date else None,
            "directorId": self.director_id,
            "changeLeadId": self.change_lead_id,
            "businessLeadId": self.business_lead_id,
        }


@dataclass(frozen=True)
class ResourceAllocation:
    """A resource's assignment to a project with sparse per-week hours."""

    id: int
    resource_id: int
    project_id: int
    status: str = ALLOCATION_STATUS_ACTIVE
    role: Optional[str] = None
    allocated_hours: float = 0.0
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    weekly_allocations: Dict[str, float] = field(default_factory=dict)
    project: Optional[Project] = None

    @property
    def is_active(self) -> bool:
        return self.status == ALLOCATION_STATUS_ACTIVE

    def hours_for(self, week_key: str) -> float:
        return self.weekly_allocations.get(week_key, 0.0)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ResourceAllocation":
        project = None
        project_payload = payload.get("project")
        if isinstance(project_payload, Mapping):
            try:
                project = Project.from_dict(project_payload)
            except ValueError as exc:
                logger.debug("Ignoring malformed nested project: %s", exc)

        project_id = _optional_id(payload, "projectId")
        if project_id is None:
            if project is None:
                raise ValueError("projectId must be an integer id")
            project_id = project.id

        return cls(
            id=_require_id(payload, "id"),
            resource_id=_require_id(payload, "resourceId"),
            project_id=project_id,
            status=(_as_text(payload.get("status")) or ALLOCATION_STATUS_ACTIVE).lower(),
            role=_as_text(payload.get("role")),
            allocated_hours=max(0.0, to_float(payload.get("allocatedHours"), default=0.0)),
            start_date=parse_iso_date(payload.get("startDate")),
            end_date=parse_iso_date(payload.get("endDate")),
            weekly_allocations=parse_weekly_allocations(payload.get("weeklyAllocations")),
            project=project,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "resourceId": self.resource_id,
            "projectId": self.project_id,
            "status": self.status,
            "role": self.role,
            "allocatedHours": self.allocated_hours,
            "startDate": self.start_date.isoformat() if self.start_date else None,
            "endDate": self.end_date.isoformat() if self.end_date else None,
            "weeklyAllocations": dict(self.weekly_allocations),
            "project": self.project.to_dict() if self.project else None,
        }


def cell_key(project_id: int, week_key: str) -> str:
    """Key of one editable table cell: ``"{projectId}-{weekKey}"``."""
    return f"{project_id}-{week_key}"


def parse_cell_key(key: str) -> Optional[tuple]:
    """Split a cell key into ``(project_id, week_key)``.

    The week key itself contains a hyphen, so only the first one separates
    the two parts.
    """
    project_part, sep, week_part = str(key).partition("-")
    if not sep or not is_week_key(week_part):
        return None
    try:
        return int(project_part), week_part
    except ValueError:
        return None


@dataclass(frozen=True)
class PendingChange:
    """An unsaved edit of one (project, week) cell."""

    project_id: int
    week_key: str
    hours: float
    old_value: float = 0.0

    @property
    def key(self) -> str:
        return cell_key(self.project_id, self.week_key)

    def to_payload(self) -> Dict[str, Any]:
        """Body of the weekly-allocation PUT."""
        return {
            "projectId": self.project_id,
            "weekKey": self.week_key,
            "hours": self.hours,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "projectId": self.project_id,
            "weekKey": self.week_key,
            "hours": self.hours,
            "oldValue": self.old_value,
        }


__all__ = [
    "ACTIVITY_TYPES",
    "ALLOCATION_STATUS_ACTIVE",
    "ALLOCATION_STATUS_PLANNED",
    "ALLOCATION_STATUS_COMPLETED",
    "DEFAULT_WEEKLY_CAPACITY",
    "Resource",
    "NonProjectActivity",
    "Project",
    "ResourceAllocation",
    "PendingChange",
    "cell_key",
    "parse_cell_key",
    "parse_capacity",
    "parse_weekly_allocations",
]
