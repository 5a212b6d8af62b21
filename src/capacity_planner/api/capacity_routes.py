"""JSON API for capacity tables, alerts and explicit-save editing."""

import logging
from functools import wraps
from typing import Any, Dict, Optional

from flask import Blueprint, jsonify, request

from capacity_planner.core.alerts import CATEGORY_ORDER, SORT_FIELDS
from capacity_planner.core.models import ACTIVITY_TYPES
from capacity_planner.core.periods import CURRENT_WEEK, PERIOD_FILTERS
from capacity_planner.core.week_keys import WEEKS_PER_TABLE_YEAR
from capacity_planner.middleware.rate_limiter import rate_limiter
from capacity_planner.services.allocation_client import CapacityApiError
from capacity_planner.services.save_session import SaveResult
from capacity_planner.utils.common import to_float

capacity_bp = Blueprint("capacity_api", __name__, url_prefix="/api")
logger = logging.getLogger(__name__)

_service = None


def init_capacity_routes(service):
    global _service
    _service = service
    return capacity_bp


class BadRequest(ValueError):
    """Client input that cannot be processed."""


def api_errors(func):
    """Map bad input to 400 and backend failures to 502 (404 passes through)."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except BadRequest as exc:
            return jsonify({"message": str(exc)}), 400
        except CapacityApiError as exc:
            if exc.status_code == 404:
                return jsonify({"message": "Not found"}), 404
            logger.error("Backend call failed in %s: %s", func.__name__, exc)
            return jsonify({"message": "Capacity backend unavailable"}), 502

    return wrapper


def _int_arg(name: str, default: Optional[int] = None, minimum: Optional[int] = None,
             maximum: Optional[int] = None) -> Optional[int]:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise BadRequest(f"{name} must be an integer") from None
    if (minimum is not None and value < minimum) or (maximum is not None and value > maximum):
        raise BadRequest(f"{name} is out of range")
    return value


def _json_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise BadRequest("Request body must be a JSON object")
    return body


def _session_or_404(resource_id: int):
    session = _service.get_session(resource_id)
    if session is None:
        return None, (jsonify({"message": "No edit session for this resource"}), 404)
    return session, None


@capacity_bp.route("/resources/<int:resource_id>/capacity", methods=["GET"])
@api_errors
def resource_capacity(resource_id):
    """Weekly allocation table for a resource.

    Query Parameters:
        year (int, optional): ISO year of the table (defaults to this year)
        offset (int, optional): First week shown (defaults to centring today)
        weeks (int, optional): Window size, 1-52 (default 16)
    """
    year = _int_arg("year", minimum=1900, maximum=9999)
    offset = _int_arg("offset", minimum=0, maximum=WEEKS_PER_TABLE_YEAR - 1)
    weeks = _int_arg("weeks", default=16, minimum=1, maximum=WEEKS_PER_TABLE_YEAR)
    return jsonify(_service.resource_capacity(resource_id, year=year, offset=offset, weeks=weeks))


@capacity_bp.route("/projects/<int:project_id>/weekly-totals", methods=["GET"])
@api_errors
def project_totals(project_id):
    year = _int_arg("year", minimum=1900, maximum=9999)
    raw_ids = request.args.get("resourceIds")
    resource_ids = None
    if raw_ids:
        try:
            resource_ids = [int(part) for part in raw_ids.split(",") if part.strip()]
        except ValueError:
            raise BadRequest("resourceIds must be a comma-separated list of integers") from None
    return jsonify(_service.project_weekly_totals(project_id, year=year, resource_ids=resource_ids))


@capacity_bp.route("/dashboard/alerts", methods=["GET"])
@api_errors
def dashboard_alerts():
    """Capacity alerts categorized by peak weekly utilization.

    Query Parameters:
        period (str, optional): currentWeek, thisMonth, quarter or year
        startDate, endDate (str, optional): Explicit ISO date range
        department (str, optional): Department filter ("All" for none)
        severity (str, optional): Category type filter
        sortBy (str, optional): Resource order in each category: name,
            utilization or department
        sortOrder (str, optional): asc or desc (default desc)
    """
    period = request.args.get("period", CURRENT_WEEK)
    if period not in PERIOD_FILTERS:
        raise BadRequest(f"period must be one of {', '.join(PERIOD_FILTERS)}")
    severity = request.args.get("severity")
    if severity and severity.lower() != "all" and severity not in CATEGORY_ORDER:
        raise BadRequest(f"severity must be one of {', '.join(CATEGORY_ORDER)}")
    sort_by = request.args.get("sortBy") or None
    if sort_by is not None and sort_by not in SORT_FIELDS:
        raise BadRequest(f"sortBy must be one of {', '.join(SORT_FIELDS)}")
    sort_order = request.args.get("sortOrder", "desc").lower()
    if sort_order not in ("asc", "desc"):
        raise BadRequest("sortOrder must be asc or desc")
    start_date = request.args.get("startDate")
    end_date = request.args.get("endDate")
    if bool(start_date) != bool(end_date):
        raise BadRequest("startDate and endDate must be provided together")
    try:
        payload = _service.dashboard_alerts(
            period_filter=period,
            start_date=start_date,
            end_date=end_date,
            department=request.args.get("department"),
            severity=severity,
            sort_by=sort_by,
            descending=sort_order == "desc",
        )
    except ValueError as exc:
        raise BadRequest(str(exc)) from exc
    return jsonify(payload)


@capacity_bp.route("/resources/<int:resource_id>/edit-session", methods=["GET"])
def get_edit_session(resource_id):
    session, error = _session_or_404(resource_id)
    if error:
        return error
    return jsonify(session.to_dict())


@capacity_bp.route("/resources/<int:resource_id>/edit-session", methods=["POST"])
@api_errors
def start_edit_session(resource_id):
    session = _service.start_session(resource_id)
    return jsonify(session.to_dict()), 201


@capacity_bp.route("/resources/<int:resource_id>/edit-session", methods=["DELETE"])
def end_edit_session(resource_id):
    if not _service.end_session(resource_id):
        return jsonify({"message": "No edit session for this resource"}), 404
    return jsonify({"message": "Edit session closed"})


@capacity_bp.route("/resources/<int:resource_id>/edit-session/changes", methods=["POST"])
@api_errors
def add_change(resource_id):
    """Record one cell edit. Body: ``{"projectId", "weekKey", "hours"}``."""
    session, error = _session_or_404(resource_id)
    if error:
        return error
    body = _json_body()
    try:
        project_id = int(body.get("projectId"))
    except (TypeError, ValueError):
        raise BadRequest("projectId must be an integer") from None
    try:
        warning = session.edit_cell(project_id, body.get("weekKey"), body.get("hours"))
    except ValueError as exc:
        raise BadRequest(str(exc)) from exc
    return jsonify({"warning": warning.to_dict(), "session": session.to_dict()})


@capacity_bp.route("/resources/<int:resource_id>/edit-session/save", methods=["POST"])
@rate_limiter.limit_writes()
def save_changes(resource_id):
    session, error = _session_or_404(resource_id)
    if error:
        return error
    result = _service.save_changes(resource_id) or SaveResult()
    return jsonify({"result": result.to_dict(), "session": session.to_dict()})


@capacity_bp.route("/resources/<int:resource_id>/edit-session/retry", methods=["POST"])
@rate_limiter.limit_writes()
def retry_changes(resource_id):
    session, error = _session_or_404(resource_id)
    if error:
        return error
    result = _service.save_changes(resource_id, failed_only=True) or SaveResult()
    return jsonify({"result": result.to_dict(), "session": session.to_dict()})


@capacity_bp.route("/resources/<int:resource_id>/edit-session/discard", methods=["POST"])
def discard_changes(resource_id):
    session = _service.discard_changes(resource_id)
    if session is None:
        return jsonify({"message": "No edit session for this resource"}), 404
    return jsonify(session.to_dict())


def _activity_payload(body: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    if "resourceId" in body or not partial:
        try:
            payload["resourceId"] = int(body.get("resourceId"))
        except (TypeError, ValueError):
            raise BadRequest("resourceId must be an integer") from None
    if "activityType" in body or not partial:
        activity_type = body.get("activityType")
        if activity_type not in ACTIVITY_TYPES:
            raise BadRequest(f"activityType must be one of {', '.join(ACTIVITY_TYPES)}")
        payload["activityType"] = activity_type
    if "hoursPerWeek" in body or not partial:
        hours = to_float(body.get("hoursPerWeek"), default=-1.0)
        if hours < 0:
            raise BadRequest("hoursPerWeek must be a non-negative number")
        payload["hoursPerWeek"] = hours
    if "description" in body:
        payload["description"] = body.get("description")
    if "isActive" in body:
        payload["isActive"] = bool(body.get("isActive"))
    return payload


@capacity_bp.route("/non-project-activities", methods=["POST"])
@rate_limiter.limit_writes()
@api_errors
def create_activity():
    payload = _activity_payload(_json_body())
    activity = _service.create_activity(payload)
    logger.info("Created non-project activity for resource %s", payload["resourceId"])
    return jsonify(activity.to_dict() if activity else payload), 201


@capacity_bp.route("/non-project-activities/<int:activity_id>", methods=["PUT"])
@rate_limiter.limit_writes()
@api_errors
def update_activity(activity_id):
    payload = _activity_payload(_json_body(), partial=True)
    activity = _service.update_activity(activity_id, payload)
    return jsonify(activity.to_dict() if activity else {"id": activity_id, **payload})


@capacity_bp.route("/non-project-activities/<int:activity_id>", methods=["DELETE"])
@rate_limiter.limit_writes()
@api_errors
def delete_activity(activity_id):
    resource_id = _int_arg("resourceId")
    _service.delete_activity(activity_id, resource_id=resource_id)
    return "", 204


__all__ = [
    "capacity_bp",
    "init_capacity_routes",
]
