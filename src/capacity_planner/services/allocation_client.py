"""REST client for the resource/allocation backend."""

import logging
from typing import Any, Callable, Dict, List, Optional, TypeVar

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from capacity_planner.core.models import (
    DEFAULT_WEEKLY_CAPACITY,
    NonProjectActivity,
    PendingChange,
    Resource,
    ResourceAllocation,
)
from capacity_planner.utils.http_client import DEFAULT_TIMEOUT, build_backend_session

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CapacityApiError(RuntimeError):
    """Raised when a backend call fails or returns an unusable payload."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _parse_records(payload: Any, parser: Callable[[Dict[str, Any]], T], label: str) -> List[T]:
    if not isinstance(payload, list):
        raise CapacityApiError(f"Expected a list of {label}, got {type(payload).__name__}")
    records: List[T] = []
    for item in payload:
        if not isinstance(item, dict):
            logger.debug("Skipping non-object %s record: %r", label, item)
            continue
        try:
            records.append(parser(item))
        except ValueError as exc:
            logger.debug("Skipping malformed %s record: %s", label, exc)
    return records


class CapacityApiClient:
    """Thin wrapper over the backend's resource and allocation endpoints.

    Reads go through a pooled session with urllib3 retries on transient
    statuses; connection errors on reads are additionally retried with
    exponential backoff. Writes are sent once per call.
    """

    def __init__(
        self,
        *,
        base_url: str,
        token: Optional[str] = None,
        timeout: int = DEFAULT_TIMEOUT,
        retries: int = 3,
        default_capacity: float = DEFAULT_WEEKLY_CAPACITY,
        session: Optional[requests.Session] = None,
    ):
        if not base_url:
            raise CapacityApiError("Capacity API base URL is not configured")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._default_capacity = default_capacity
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if session is None:
            session = build_backend_session(retries=retries, headers=headers)
        else:
            session.headers.update(headers)
        self._session = session

    @classmethod
    def from_settings(cls, settings) -> "CapacityApiClient":
        return cls(
            base_url=settings.api_base_url,
            token=settings.api_token,
            timeout=settings.http_timeout,
            retries=settings.http_retries,
            default_capacity=settings.default_weekly_capacity,
        )

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = self._url(path)
        try:
            resp = self._session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.ConnectionError:
            raise
        except requests.RequestException as exc:
            logger.error("%s %s failed: %s", method, url, exc)
            raise CapacityApiError(f"{method} {path} failed: {exc}") from exc

        try:
            resp.raise_for_status()
        except requests.HTTPError as exc:
            logger.error("%s %s returned %s", method, url, resp.status_code)
            raise CapacityApiError(
                f"{method} {path} returned {resp.status_code}",
                status_code=resp.status_code,
            ) from exc

        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise CapacityApiError(f"{method} {path} returned invalid JSON") from exc

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(requests.ConnectionError),
        reraise=True,
    )
    def _get_with_backoff(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("GET", path, params=params)

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            return self._get_with_backoff(path, params=params)
        except requests.ConnectionError as exc:
            logger.error("GET %s unreachable after retries: %s", path, exc)
            raise CapacityApiError(f"GET {path} failed: {exc}") from exc

    def _send(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        try:
            return self._request(method, path, json=json)
        except requests.ConnectionError as exc:
            logger.error("%s %s unreachable: %s", method, path, exc)
            raise CapacityApiError(f"{method} {path} failed: {exc}") from exc

    # Reads

    def _parse_resource(self, payload: Dict[str, Any]) -> Resource:
        return Resource.from_dict(payload, self._default_capacity)

    def list_resources(self) -> List[Resource]:
        return _parse_records(self._get("/resources"), self._parse_resource, "resource")

    def get_resource(self, resource_id: int) -> Resource:
        payload = self._get(f"/resources/{resource_id}")
        if not isinstance(payload, dict):
            raise CapacityApiError(f"Resource {resource_id} payload is not an object")
        try:
            return self._parse_resource(payload)
        except ValueError as exc:
            raise CapacityApiError(f"Resource {resource_id} payload is malformed: {exc}") from exc

    def get_resource_allocations(self, resource_id: int) -> List[ResourceAllocation]:
        payload = self._get(f"/resources/{resource_id}/allocations")
        return _parse_records(payload, ResourceAllocation.from_dict, "allocation")

    def list_allocations(self) -> List[ResourceAllocation]:
        return _parse_records(self._get("/allocations"), ResourceAllocation.from_dict, "allocation")

    def get_non_project_activities(self, resource_id: int) -> List[NonProjectActivity]:
        payload = self._get(f"/resources/{resource_id}/non-project-activities")
        return _parse_records(payload, NonProjectActivity.from_dict, "non-project activity")

    # Writes

    def update_weekly_allocation(self, resource_id: int, change: PendingChange) -> Any:
        """Persist one (project, week) cell for a resource."""
        logger.debug(
            "Saving resource %s project %s week %s = %s",
            resource_id,
            change.project_id,
            change.week_key,
            change.hours,
        )
        return self._send(
            "PUT",
            f"/resources/{resource_id}/weekly-allocations",
            json=change.to_payload(),
        )

    def create_non_project_activity(self, payload: Dict[str, Any]) -> Optional[NonProjectActivity]:
        created = self._send("POST", "/non-project-activities", json=payload)
        return self._activity_or_none(created)

    def update_non_project_activity(
        self, activity_id: int, payload: Dict[str, Any]
    ) -> Optional[NonProjectActivity]:
        updated = self._send("PUT", f"/non-project-activities/{activity_id}", json=payload)
        return self._activity_or_none(updated)

    def delete_non_project_activity(self, activity_id: int) -> None:
        self._send("DELETE", f"/non-project-activities/{activity_id}")

    @staticmethod
    def _activity_or_none(payload: Any) -> Optional[NonProjectActivity]:
        if not isinstance(payload, dict):
            return None
        try:
            return NonProjectActivity.from_dict(payload)
        except ValueError as exc:
            logger.debug("Backend returned malformed activity: %s", exc)
            return None


__all__ = [
    "CapacityApiClient",
    "CapacityApiError",
]
