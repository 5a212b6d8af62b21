"""Explicit-save editing session for a resource's weekly allocation table.

Edits are held locally as pending changes keyed by ``"{projectId}-{weekKey}"``
and only sent to the backend when the user saves. Every cell carries one
status at a time (pending, saving, saved or failed), so a cell can never be
both saving and failed.

Completions are matched against a session generation and a per-cell
revision. Discarding bumps the generation and editing a cell bumps its
revision, so a save that finishes after either is ignored.

Changes the backend has accepted stay in the totals overlay until a fresh
snapshot replaces the stale one, so a partial save never shows pre-save
hours for cells that did persist.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Sequence, Set, Tuple, TypeVar

from capacity_planner.core.aggregation import realtime_weekly_totals
from capacity_planner.core.capacity_calculator import (
    DEFAULT_NON_PROJECT_HOURS,
    MAX_CELL_HOURS,
    OverallocationWarning,
    check_overallocation_warning,
    clamp_cell_hours,
    effective_capacity,
    parse_hours_input,
)
from capacity_planner.core.models import (
    NonProjectActivity,
    PendingChange,
    Resource,
    ResourceAllocation,
)
from capacity_planner.core.week_keys import is_week_key

logger = logging.getLogger(__name__)

SAVE_FAILED_MESSAGE = "Failed to update weekly allocation"
PARTIAL_SAVE_MESSAGE = "Some changes failed to save"

ROW_LOCK_RELEASE_SECONDS = 2.0

R = TypeVar("R")


class CellStatus(Enum):
    CLEAN = "clean"
    PENDING = "pending"
    SAVING = "saving"
    SAVED = "saved"
    FAILED = "failed"


UNSAVED_STATUSES = (CellStatus.PENDING, CellStatus.SAVING, CellStatus.FAILED)


@dataclass
class _Cell:
    change: PendingChange
    status: CellStatus
    revision: int


@dataclass(frozen=True)
class SaveResult:
    """Outcome of one save batch."""

    saved: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    stale: List[str] = field(default_factory=list)
    all_saved_fired: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def message(self) -> Optional[str]:
        return PARTIAL_SAVE_MESSAGE if self.failed else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "saved": list(self.saved),
            "failed": list(self.failed),
            "stale": list(self.stale),
            "ok": self.ok,
            "allSavedFired": self.all_saved_fired,
            "message": self.message,
            "errors": {key: SAVE_FAILED_MESSAGE for key in self.failed},
        }


class ExplicitSaveSession:
    """Pending-edit overlay over one resource's allocation snapshot.

    Args:
        resource: The resource whose table is being edited
        allocations: Server snapshot of the resource's allocations
        save_fn: Persists one change; raises on failure
        activities: Non-project activities (None when not fetched)
        on_all_saved: Called once when a batch leaves nothing unsaved
        max_workers: Concurrent saves per batch (1 means sequential)
        max_cell_hours: Upper clamp for cell values
        row_lock_release_seconds: Idle time with no unsaved changes before
            the row order unlocks
        default_non_project_hours: Deduction used when activities are unknown
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        resource: Resource,
        allocations: Iterable[ResourceAllocation],
        save_fn: Callable[[PendingChange], Any],
        activities: Optional[Iterable[NonProjectActivity]] = None,
        on_all_saved: Optional[Callable[[], None]] = None,
        *,
        max_workers: int = 1,
        max_cell_hours: float = MAX_CELL_HOURS,
        row_lock_release_seconds: float = ROW_LOCK_RELEASE_SECONDS,
        default_non_project_hours: float = DEFAULT_NON_PROJECT_HOURS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.resource = resource
        self._save_fn = save_fn
        self._on_all_saved = on_all_saved
        self._max_workers = max(1, int(max_workers))
        self._max_cell_hours = max_cell_hours
        self._release_after = row_lock_release_seconds
        self._default_non_project_hours = default_non_project_hours
        self._clock = clock

        self._lock = threading.Lock()
        self._cells: Dict[str, _Cell] = {}
        self._generation = 0
        self._next_revision = 0
        self._inflight_batches = 0
        # Accepted by the backend but not yet in the snapshot: key -> (revision, change)
        self._confirmed: Dict[str, Tuple[int, PendingChange]] = {}

        self._row_order: Optional[List[Hashable]] = None
        self._clean_since: Optional[float] = None

        self._allocations: List[ResourceAllocation] = []
        self._effective_capacity = 0.0
        self.replace_snapshot(allocations, activities)

    # Snapshot

    def replace_snapshot(
        self,
        allocations: Iterable[ResourceAllocation],
        activities: Optional[Iterable[NonProjectActivity]] = None,
    ) -> None:
        """Swap in a freshly fetched server snapshot.

        Pending edits are kept; confirmed saves are now part of the snapshot.
        """
        own = [a for a in allocations if a.resource_id == self.resource.id]
        effective = effective_capacity(
            self.resource.weekly_capacity,
            activities,
            default_non_project_hours=self._default_non_project_hours,
        )
        with self._lock:
            self._allocations = own
            self._effective_capacity = effective
            self._confirmed.clear()

    @property
    def allocations(self) -> List[ResourceAllocation]:
        with self._lock:
            return list(self._allocations)

    @property
    def effective_capacity(self) -> float:
        return self._effective_capacity

    # Derived views

    def _keys_with(self, *statuses: CellStatus) -> Set[str]:
        return {key for key, cell in self._cells.items() if cell.status in statuses}

    @property
    def pending_changes(self) -> Dict[str, PendingChange]:
        """Every change not yet confirmed saved (pending, saving or failed)."""
        with self._lock:
            return {
                key: cell.change
                for key, cell in self._cells.items()
                if cell.status in UNSAVED_STATUSES
            }

    @property
    def saving_cells(self) -> Set[str]:
        with self._lock:
            return self._keys_with(CellStatus.SAVING)

    @property
    def saved_cells(self) -> Set[str]:
        with self._lock:
            return self._keys_with(CellStatus.SAVED)

    @property
    def failed_cells(self) -> Set[str]:
        with self._lock:
            return self._keys_with(CellStatus.FAILED)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._keys_with(*UNSAVED_STATUSES))

    @property
    def has_unsaved_changes(self) -> bool:
        return self.pending_count > 0

    def status_of(self, key: str) -> CellStatus:
        with self._lock:
            cell = self._cells.get(key)
            return cell.status if cell else CellStatus.CLEAN

    @property
    def needs_refresh(self) -> bool:
        """True while saved changes are missing from the server snapshot."""
        with self._lock:
            return bool(self._confirmed)

    def _overlay(self) -> Dict[str, PendingChange]:
        # Caller holds the lock; unsaved edits win over confirmed saves
        overlay = {key: change for key, (_, change) in self._confirmed.items()}
        overlay.update(
            (key, cell.change)
            for key, cell in self._cells.items()
            if cell.status in UNSAVED_STATUSES
        )
        return overlay

    def weekly_totals(self, week_keys: Optional[Sequence[str]] = None) -> Dict[str, float]:
        """Real-time weekly totals: snapshot plus confirmed saves plus unsaved edits."""
        with self._lock:
            allocations = list(self._allocations)
            overlay = self._overlay()
        return realtime_weekly_totals(allocations, overlay, week_keys=week_keys)

    # Editing

    def add_pending_change(self, key: str, change: PendingChange) -> OverallocationWarning:
        """Record an edit locally and return the advisory capacity warning.

        Hours are clamped to the cell range. No network call is made.

        Raises:
            ValueError: If ``key`` does not match the change's cell
        """
        if key != change.key:
            raise ValueError(f"Cell key {key!r} does not match change for {change.key!r}")
        change = replace(change, hours=clamp_cell_hours(change.hours, self._max_cell_hours))

        with self._lock:
            self._next_revision += 1
            self._cells[key] = _Cell(
                change=change,
                status=CellStatus.PENDING,
                revision=self._next_revision,
            )
            if self._row_order is None:
                self._row_order = self._default_row_ids()
            self._touch()

        totals = self.weekly_totals(week_keys=[change.week_key])
        return check_overallocation_warning(self._effective_capacity, totals[change.week_key])

    def edit_cell(self, project_id: int, week_key: str, raw_value: Any) -> OverallocationWarning:
        """Apply what the user typed into a (project, week) cell.

        Raises:
            ValueError: If the week key is malformed or the resource has no
                active allocation on the project
        """
        if not is_week_key(week_key):
            raise ValueError(f"Invalid week key: {week_key!r}")
        allocation = self._allocation_for(project_id)
        if allocation is None:
            raise ValueError(f"No active allocation for project {project_id}")
        change = PendingChange(
            project_id=allocation.project_id,
            week_key=week_key,
            hours=parse_hours_input(raw_value, self._max_cell_hours),
            old_value=allocation.hours_for(week_key),
        )
        return self.add_pending_change(change.key, change)

    def _allocation_for(self, project_id: int) -> Optional[ResourceAllocation]:
        with self._lock:
            for allocation in self._allocations:
                if allocation.is_active and allocation.project_id == project_id:
                    return allocation
        return None

    # Saving

    def save_all_changes(self) -> SaveResult:
        """Persist every unsaved cell (pending or previously failed)."""
        return self._run_batch((CellStatus.PENDING, CellStatus.FAILED))

    def retry_failed_saves(self) -> SaveResult:
        """Re-attempt only the cells whose last save failed."""
        return self._run_batch((CellStatus.FAILED,))

    def _run_batch(self, statuses: Tuple[CellStatus, ...]) -> SaveResult:
        with self._lock:
            generation = self._generation
            targets = [
                (key, cell.change, cell.revision)
                for key, cell in self._cells.items()
                if cell.status in statuses
            ]
            if not targets:
                return SaveResult()
            for key, _, _ in targets:
                self._cells[key].status = CellStatus.SAVING
            self._inflight_batches += 1

        logger.info(
            "Saving %d weekly allocation changes for resource %s",
            len(targets),
            self.resource.id,
        )

        if self._max_workers > 1 and len(targets) > 1:
            with ThreadPoolExecutor(max_workers=self._max_workers) as executor:
                outcomes = list(executor.map(self._attempt, targets))
        else:
            outcomes = [self._attempt(target) for target in targets]

        saved: List[str] = []
        failed: List[str] = []
        stale: List[str] = []
        for (key, change, revision), succeeded in zip(targets, outcomes):
            applied = self._complete(key, change, revision, generation, succeeded)
            if not applied:
                stale.append(key)
            elif succeeded:
                saved.append(key)
            else:
                failed.append(key)

        fired = self._finish_batch(generation)
        if failed:
            logger.warning(
                "%d of %d changes failed to save for resource %s",
                len(failed),
                len(targets),
                self.resource.id,
            )
        return SaveResult(saved=saved, failed=failed, stale=stale, all_saved_fired=fired)

    def _attempt(self, target: Tuple[str, PendingChange, int]) -> bool:
        key, change, _ = target
        try:
            self._save_fn(change)
        except Exception as exc:
            logger.warning("Save failed for cell %s: %s", key, exc)
            return False
        return True

    def _complete(
        self, key: str, change: PendingChange, revision: int, generation: int, succeeded: bool
    ) -> bool:
        with self._lock:
            if succeeded:
                # The backend holds this value even when the completion is stale
                known = self._confirmed.get(key)
                if known is None or known[0] <= revision:
                    self._confirmed[key] = (revision, change)
            cell = self._cells.get(key)
            if generation != self._generation or cell is None or cell.revision != revision:
                logger.debug("Ignoring stale save completion for %s", key)
                return False
            cell.status = CellStatus.SAVED if succeeded else CellStatus.FAILED
            self._touch()
            return True

    def _finish_batch(self, generation: int) -> bool:
        with self._lock:
            self._inflight_batches -= 1
            should_fire = (
                generation == self._generation
                and self._inflight_batches == 0
                and not self._keys_with(*UNSAVED_STATUSES)
                and bool(self._keys_with(CellStatus.SAVED))
            )

        if not should_fire:
            return False

        if self._on_all_saved is not None:
            try:
                self._on_all_saved()
            except Exception:
                logger.exception("on_all_saved callback failed for resource %s", self.resource.id)

        with self._lock:
            if generation == self._generation:
                for key in self._keys_with(CellStatus.SAVED):
                    del self._cells[key]
                self._touch()
        return True

    def discard_all_changes(self) -> bool:
        """Drop every local edit and status; in-flight saves are ignored when they land.

        Changes the backend already accepted cannot be discarded and stay in
        the totals until the snapshot is refreshed.

        Returns:
            True if the server snapshot is stale and should be refetched
        """
        with self._lock:
            self._generation += 1
            discarded = len(self._cells)
            self._cells.clear()
            self._touch()
            stale_snapshot = bool(self._confirmed)
        logger.info("Discarded %d cell changes for resource %s", discarded, self.resource.id)
        return stale_snapshot

    # Row order lock

    def _default_row_ids(self) -> List[Hashable]:
        return [a.project_id for a in self._allocations if a.is_active]

    def _touch(self) -> None:
        # Caller holds the lock
        if self._keys_with(*UNSAVED_STATUSES):
            self._clean_since = None
        elif self._clean_since is None:
            self._clean_since = self._clock()

    def start_editing_session(self, row_ids: Optional[Iterable[Hashable]] = None) -> None:
        """Freeze the current row order; no-op if already frozen."""
        with self._lock:
            if self._row_order is None:
                self._row_order = list(row_ids) if row_ids is not None else self._default_row_ids()
                self._touch()

    def end_editing_session(self) -> None:
        with self._lock:
            self._row_order = None
            self._clean_since = None

    @property
    def is_order_locked(self) -> bool:
        with self._lock:
            self._maybe_release()
            return self._row_order is not None

    def _maybe_release(self) -> None:
        if self._row_order is None or self._clean_since is None:
            return
        if self._clock() - self._clean_since >= self._release_after:
            logger.debug("Releasing row order lock for resource %s", self.resource.id)
            self._row_order = None
            self._clean_since = None

    def stable_order(self, rows: Sequence[R], key: Callable[[R], Hashable]) -> List[R]:
        """Return ``rows`` in the frozen order while an editing session is active.

        Rows that disappeared are dropped; rows not seen when the order was
        frozen are appended in their incoming order. Without a lock the rows
        are returned unchanged.
        """
        with self._lock:
            self._maybe_release()
            order = list(self._row_order) if self._row_order is not None else None
        if order is None:
            return list(rows)

        positions = {row_id: index for index, row_id in enumerate(order)}
        known = [row for row in rows if key(row) in positions]
        new_rows = [row for row in rows if key(row) not in positions]
        return sorted(known, key=lambda row: positions[key(row)]) + new_rows

    def to_dict(self, week_keys: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        """Serializable snapshot of the session state."""
        with self._lock:
            cells = {key: (cell.change, cell.status) for key, cell in self._cells.items()}
            allocations = list(self._allocations)
            overlay = self._overlay()
            needs_refresh = bool(self._confirmed)
        pending = {k: c for k, (c, s) in cells.items() if s in UNSAVED_STATUSES}
        return {
            "resourceId": self.resource.id,
            "effectiveCapacity": self._effective_capacity,
            "pendingChanges": {k: c.to_dict() for k, c in sorted(pending.items())},
            "savingCells": sorted(k for k, (_, s) in cells.items() if s is CellStatus.SAVING),
            "savedCells": sorted(k for k, (_, s) in cells.items() if s is CellStatus.SAVED),
            "failedCells": sorted(k for k, (_, s) in cells.items() if s is CellStatus.FAILED),
            "pendingCount": len(pending),
            "hasUnsavedChanges": bool(pending),
            "isOrderLocked": self.is_order_locked,
            "needsRefresh": needs_refresh,
            "weeklyTotals": realtime_weekly_totals(allocations, overlay, week_keys=week_keys),
        }


__all__ = [
    "CellStatus",
    "SaveResult",
    "ExplicitSaveSession",
    "SAVE_FAILED_MESSAGE",
    "PARTIAL_SAVE_MESSAGE",
    "ROW_LOCK_RELEASE_SECONDS",
]
