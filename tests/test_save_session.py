"""Tests for the explicit-save editing session."""

import threading
import unittest
from dataclasses import replace

from capacity_planner.core.models import (
    NonProjectActivity,
    PendingChange,
    Resource,
    ResourceAllocation,
)
from capacity_planner.services.allocation_client import CapacityApiError
from capacity_planner.services.save_session import (
    SAVE_FAILED_MESSAGE,
    CellStatus,
    ExplicitSaveSession,
)

RESOURCE = Resource(id=1, name="Ada", weekly_capacity=40)
MEETINGS = [NonProjectActivity(id=1, resource_id=1, activity_type="Meetings", hours_per_week=8)]


def allocations():
    return [
        ResourceAllocation(id=1, resource_id=1, project_id=10, weekly_allocations={"2025-W10": 30.0}),
        ResourceAllocation(id=2, resource_id=1, project_id=20, weekly_allocations={}),
        ResourceAllocation(id=3, resource_id=1, project_id=30, weekly_allocations={}),
    ]


class RecordingBackend:
    """Stands in for the weekly-allocation PUT; fails for chosen weeks."""

    def __init__(self, failing_weeks=()):
        self.failing_weeks = set(failing_weeks)
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, change):
        with self._lock:
            self.calls.append(change)
        if change.week_key in self.failing_weeks:
            raise CapacityApiError("backend exploded", status_code=500)
        return {"ok": True}


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


def make_session(backend=None, on_all_saved=None, **kwargs):
    return ExplicitSaveSession(
        RESOURCE,
        allocations(),
        save_fn=backend or RecordingBackend(),
        activities=MEETINGS,
        on_all_saved=on_all_saved,
        **kwargs,
    )


def change(week, hours, project_id=10):
    return PendingChange(project_id=project_id, week_key=week, hours=hours)


class PendingChangeTests(unittest.TestCase):
    def test_add_pending_change_makes_no_network_call(self):
        """Recording an edit stays local and marks the cell pending."""
        backend = RecordingBackend()
        session = make_session(backend)
        pending = change("2025-W11", 6)
        session.add_pending_change(pending.key, pending)
        self.assertEqual(backend.calls, [])
        self.assertEqual(session.pending_count, 1)
        self.assertTrue(session.has_unsaved_changes)
        self.assertEqual(session.status_of(pending.key), CellStatus.PENDING)

    def test_overallocation_scenario(self):
        """40h capacity less 8h meetings; 30h booked, edited to 35h, is an error."""
        session = make_session()
        self.assertEqual(session.effective_capacity, 32.0)
        self.assertEqual(session.weekly_totals(["2025-W10"]), {"2025-W10": 30.0})
        warning = session.edit_cell(10, "2025-W10", "35")
        self.assertTrue(warning.has_warning)
        self.assertEqual(warning.severity, "error")
        self.assertEqual(warning.projected_total, 35.0)
        self.assertEqual(session.weekly_totals(["2025-W10"]), {"2025-W10": 35.0})

    def test_edit_cell_records_old_value(self):
        """edit_cell parses the input and remembers the stored value."""
        session = make_session()
        session.edit_cell(10, "2025-W10", "12h")
        pending = session.pending_changes["10-2025-W10"]
        self.assertEqual(pending.hours, 12.0)
        self.assertEqual(pending.old_value, 30.0)

    def test_hours_are_clamped(self):
        """Hours above the cell maximum are clamped to 40."""
        session = make_session()
        pending = change("2025-W11", 55)
        session.add_pending_change(pending.key, pending)
        self.assertEqual(session.pending_changes[pending.key].hours, 40.0)

    def test_overwrite_keeps_single_entry(self):
        """Editing the same cell twice keeps one pending change."""
        session = make_session()
        session.edit_cell(10, "2025-W11", "4")
        session.edit_cell(10, "2025-W11", "9")
        self.assertEqual(session.pending_count, 1)
        self.assertEqual(session.pending_changes["10-2025-W11"].hours, 9.0)

    def test_mismatched_key_is_rejected(self):
        """A key that does not match the change is a ValueError."""
        session = make_session()
        with self.assertRaises(ValueError):
            session.add_pending_change("20-2025-W11", change("2025-W11", 4))

    def test_edit_cell_validates_input(self):
        """Unknown projects and malformed week keys are rejected."""
        session = make_session()
        with self.assertRaises(ValueError):
            session.edit_cell(99, "2025-W11", "4")
        with self.assertRaises(ValueError):
            session.edit_cell(10, "2025-11", "4")


class SaveTests(unittest.TestCase):
    def _queue_five(self, session):
        for week in ("2025-W10", "2025-W11", "2025-W12", "2025-W13", "2025-W14"):
            session.edit_cell(10, week, "5")

    def test_two_of_five_fail_then_discard(self):
        """Two failed cells stay unsaved until discard clears everything."""
        backend = RecordingBackend(failing_weeks={"2025-W11", "2025-W13"})
        fired = []
        session = make_session(backend, on_all_saved=lambda: fired.append(True))
        self._queue_five(session)

        result = session.save_all_changes()

        self.assertEqual(len(backend.calls), 5)
        self.assertEqual(sorted(result.failed), ["10-2025-W11", "10-2025-W13"])
        self.assertEqual(len(result.saved), 3)
        self.assertEqual(session.pending_count, 2)
        self.assertEqual(len(session.failed_cells), 2)
        self.assertTrue(session.has_unsaved_changes)
        self.assertEqual(session.saving_cells, set())
        self.assertEqual(fired, [])
        self.assertEqual(result.to_dict()["errors"]["10-2025-W11"], SAVE_FAILED_MESSAGE)
        self.assertEqual(result.message, "Some changes failed to save")

        session.discard_all_changes()

        self.assertEqual(session.pending_changes, {})
        self.assertEqual(session.saving_cells, set())
        self.assertEqual(session.saved_cells, set())
        self.assertEqual(session.failed_cells, set())
        self.assertFalse(session.has_unsaved_changes)

    def test_all_saved_fires_once_and_resets_cells(self):
        """The all-saved callback fires once and saved cells return to clean."""
        fired = []
        session = make_session(on_all_saved=lambda: fired.append(True))
        self._queue_five(session)

        result = session.save_all_changes()

        self.assertTrue(result.ok)
        self.assertTrue(result.all_saved_fired)
        self.assertEqual(fired, [True])
        self.assertEqual(session.saved_cells, set())
        self.assertEqual(session.pending_count, 0)
        self.assertEqual(session.status_of("10-2025-W10"), CellStatus.CLEAN)

        # Nothing left to save; the callback does not fire again
        self.assertEqual(session.save_all_changes().saved, [])
        self.assertEqual(fired, [True])

    def test_retry_only_resends_failed_cells(self):
        """Retry sends only the cells whose save failed."""
        backend = RecordingBackend(failing_weeks={"2025-W11"})
        fired = []
        session = make_session(backend, on_all_saved=lambda: fired.append(True))
        self._queue_five(session)
        session.save_all_changes()

        backend.failing_weeks.clear()
        backend.calls.clear()
        result = session.retry_failed_saves()

        self.assertEqual([c.week_key for c in backend.calls], ["2025-W11"])
        self.assertEqual(result.saved, ["10-2025-W11"])
        self.assertEqual(session.pending_count, 0)
        self.assertEqual(fired, [True])

    def test_discard_during_save_ignores_late_completions(self):
        """Completions landing after a discard are ignored."""
        session = None
        fired = []

        def discard_mid_flight(pending):
            session.discard_all_changes()

        session = make_session(discard_mid_flight, on_all_saved=lambda: fired.append(True))
        session.edit_cell(10, "2025-W11", "4")
        session.edit_cell(10, "2025-W12", "4")

        result = session.save_all_changes()

        self.assertEqual(sorted(result.stale), ["10-2025-W11", "10-2025-W12"])
        self.assertEqual(session.pending_changes, {})
        self.assertEqual(session.saved_cells, set())
        self.assertEqual(fired, [])

    def test_edit_during_save_keeps_newer_value_pending(self):
        """A newer edit made mid-save stays pending."""
        session = None

        def edit_mid_flight(pending):
            if pending.hours == 4.0:
                session.edit_cell(10, "2025-W11", "7")

        session = make_session(edit_mid_flight)
        session.edit_cell(10, "2025-W11", "4")

        result = session.save_all_changes()

        self.assertEqual(result.stale, ["10-2025-W11"])
        self.assertEqual(session.status_of("10-2025-W11"), CellStatus.PENDING)
        self.assertEqual(session.pending_changes["10-2025-W11"].hours, 7.0)

    def test_new_edit_clears_failed_status(self):
        """Editing a failed cell moves it back to pending."""
        backend = RecordingBackend(failing_weeks={"2025-W11"})
        session = make_session(backend)
        session.edit_cell(10, "2025-W11", "4")
        session.save_all_changes()
        self.assertEqual(session.status_of("10-2025-W11"), CellStatus.FAILED)
        session.edit_cell(10, "2025-W11", "5")
        self.assertEqual(session.status_of("10-2025-W11"), CellStatus.PENDING)
        self.assertEqual(session.failed_cells, set())

    def test_parallel_saves(self):
        """Saves run through a worker pool when configured."""
        backend = RecordingBackend()
        fired = []
        session = make_session(backend, on_all_saved=lambda: fired.append(True), max_workers=3)
        self._queue_five(session)

        result = session.save_all_changes()

        self.assertEqual(len(backend.calls), 5)
        self.assertEqual(len(result.saved), 5)
        self.assertEqual(fired, [True])

    def test_callback_failure_does_not_fail_saves(self):
        """An exception in the all-saved callback does not fail the batch."""
        def explode():
            raise RuntimeError("refetch failed")

        session = make_session(on_all_saved=explode)
        session.edit_cell(10, "2025-W11", "4")
        result = session.save_all_changes()
        self.assertTrue(result.ok)
        self.assertEqual(session.pending_count, 0)

    def test_to_dict(self):
        """to_dict exposes counts, totals and old values."""
        session = make_session()
        session.edit_cell(10, "2025-W10", "35")
        state = session.to_dict(week_keys=["2025-W10"])
        self.assertEqual(state["pendingCount"], 1)
        self.assertTrue(state["hasUnsavedChanges"])
        self.assertEqual(state["weeklyTotals"], {"2025-W10": 35.0})
        self.assertEqual(state["pendingChanges"]["10-2025-W10"]["oldValue"], 30.0)


class PartialSaveTests(unittest.TestCase):
    def setUp(self):
        self.backend = RecordingBackend(failing_weeks={"2025-W11"})
        self.stored = [
            ResourceAllocation(
                id=1,
                resource_id=1,
                project_id=10,
                weekly_allocations={"2025-W10": 10.0, "2025-W11": 10.0},
            )
        ]
        self.session = ExplicitSaveSession(
            RESOURCE, self.stored, save_fn=self.backend, activities=MEETINGS
        )
        self.session.edit_cell(10, "2025-W10", "30")
        self.session.edit_cell(10, "2025-W11", "30")
        self.weeks = ["2025-W10", "2025-W11"]

    def test_saved_cells_stay_in_totals(self):
        """After a partial save, persisted cells keep their new hours in the totals."""
        self.session.save_all_changes()

        self.assertEqual(self.session.saved_cells, {"10-2025-W10"})
        self.assertEqual(self.session.weekly_totals(self.weeks), {"2025-W10": 30.0, "2025-W11": 30.0})
        self.assertEqual(self.session.to_dict(self.weeks)["weeklyTotals"]["2025-W10"], 30.0)
        self.assertEqual(self.session.pending_count, 1)
        self.assertTrue(self.session.needs_refresh)

    def test_discard_after_partial_save_reports_stale_snapshot(self):
        """Discard drops unsaved edits but the saved value remains until refetch."""
        self.session.save_all_changes()

        self.assertTrue(self.session.discard_all_changes())
        self.assertEqual(self.session.pending_changes, {})
        self.assertEqual(self.session.weekly_totals(self.weeks), {"2025-W10": 30.0, "2025-W11": 10.0})

        refreshed = [replace(self.stored[0], weekly_allocations={"2025-W10": 30.0, "2025-W11": 10.0})]
        self.session.replace_snapshot(refreshed, MEETINGS)
        self.assertFalse(self.session.needs_refresh)
        self.assertEqual(self.session.weekly_totals(self.weeks), {"2025-W10": 30.0, "2025-W11": 10.0})

    def test_discard_without_saves_needs_no_refresh(self):
        """Discarding edits that never reached the backend leaves the snapshot valid."""
        self.assertFalse(self.session.discard_all_changes())
        self.assertEqual(self.session.weekly_totals(self.weeks), {"2025-W10": 10.0, "2025-W11": 10.0})


class RowOrderLockTests(unittest.TestCase):
    def test_order_is_frozen_while_editing(self):
        """Known rows keep the frozen order and new rows go last."""
        session = make_session()
        session.start_editing_session([10, 20, 30])
        rows = [{"id": 30}, {"id": 40}, {"id": 10}]
        ordered = session.stable_order(rows, key=lambda r: r["id"])
        self.assertEqual([r["id"] for r in ordered], [10, 30, 40])

    def test_unlocked_order_passes_through(self):
        """Without a lock rows are returned unchanged."""
        session = make_session()
        rows = [{"id": 30}, {"id": 10}]
        self.assertEqual(session.stable_order(rows, key=lambda r: r["id"]), rows)
        self.assertFalse(session.is_order_locked)

    def test_first_edit_locks_order(self):
        """The first edit freezes the row order."""
        session = make_session()
        session.edit_cell(10, "2025-W11", "4")
        self.assertTrue(session.is_order_locked)

    def test_lock_releases_after_idle_window(self):
        """The lock releases two seconds after the last unsaved change clears."""
        clock = FakeClock()
        session = make_session(clock=clock)
        session.edit_cell(10, "2025-W11", "4")

        clock.now += 10
        self.assertTrue(session.is_order_locked, "unsaved changes keep the lock")

        session.save_all_changes()
        clock.now += 1.5
        self.assertTrue(session.is_order_locked)
        clock.now += 0.5
        self.assertFalse(session.is_order_locked)

    def test_end_editing_session_releases(self):
        """Ending the editing session releases the lock."""
        session = make_session()
        session.edit_cell(10, "2025-W11", "4")
        session.end_editing_session()
        self.assertFalse(session.is_order_locked)


if __name__ == "__main__":
    unittest.main()
