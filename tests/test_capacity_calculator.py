"""Tests for effective capacity, utilization classification and warnings."""

import unittest

from capacity_planner.core.capacity_calculator import (
    UtilizationStatus,
    capacity_breakdown,
    check_overallocation_warning,
    clamp_cell_hours,
    classify_utilization,
    effective_capacity,
    non_project_hours,
    parse_hours_input,
    utilization_percentage,
)
from capacity_planner.core.models import NonProjectActivity


def activity(hours, active=True, activity_type="Meetings"):
    return NonProjectActivity(
        id=None,
        resource_id=1,
        activity_type=activity_type,
        hours_per_week=hours,
        is_active=active,
    )


class EffectiveCapacityTests(unittest.TestCase):
    def test_subtracts_active_activities(self):
        self.assertEqual(effective_capacity(40, [activity(5), activity(3, activity_type="Administration")]), 32.0)

    def test_inactive_activities_do_not_reduce_capacity(self):
        self.assertEqual(effective_capacity(40, [activity(5), activity(10, active=False)]), 35.0)

    def test_never_negative(self):
        self.assertEqual(effective_capacity(10, [activity(25)]), 0.0)
        self.assertEqual(effective_capacity("0", [activity(1)]), 0.0)

    def test_numeric_string_capacity(self):
        self.assertEqual(effective_capacity("37.5", []), 37.5)

    def test_invalid_capacity_defaults_to_forty(self):
        self.assertEqual(effective_capacity(None, []), 40.0)
        self.assertEqual(effective_capacity("full-time", []), 40.0)

    def test_unknown_activities_use_default_deduction(self):
        self.assertEqual(non_project_hours(None), 8.0)
        self.assertEqual(effective_capacity(40, None), 32.0)
        self.assertEqual(effective_capacity(40, None, default_non_project_hours=0), 40.0)

    def test_empty_activity_list_deducts_nothing(self):
        self.assertEqual(effective_capacity(40, []), 40.0)


class UtilizationTests(unittest.TestCase):
    def test_zero_capacity_gives_zero_utilization(self):
        self.assertEqual(utilization_percentage(10, 0), 0.0)
        self.assertEqual(classify_utilization(10, 0), UtilizationStatus.NO_DATA)

    def test_no_allocation_is_no_data(self):
        self.assertEqual(classify_utilization(0, 32), UtilizationStatus.NO_DATA)

    def test_band_boundaries(self):
        self.assertEqual(classify_utilization(79.99, 100), UtilizationStatus.HEALTHY)
        self.assertEqual(classify_utilization(80.0, 100), UtilizationStatus.NEAR_FULL)
        self.assertEqual(classify_utilization(99.999, 100), UtilizationStatus.NEAR_FULL)
        self.assertEqual(classify_utilization(100.0, 100), UtilizationStatus.OVERALLOCATED)
        self.assertEqual(classify_utilization(150, 100), UtilizationStatus.OVERALLOCATED)

    def test_scenario_thirty_of_thirty_two_is_near_full(self):
        effective = effective_capacity(40, [activity(8)])
        self.assertEqual(effective, 32.0)
        self.assertAlmostEqual(utilization_percentage(30, effective), 93.75)
        self.assertEqual(classify_utilization(30, effective), UtilizationStatus.NEAR_FULL)
        self.assertAlmostEqual(utilization_percentage(35, effective), 109.375)
        self.assertEqual(classify_utilization(35, effective), UtilizationStatus.OVERALLOCATED)

    def test_capacity_breakdown(self):
        breakdown = capacity_breakdown("40", [activity(8)], 30)
        self.assertEqual(breakdown["baseCapacity"], 40.0)
        self.assertEqual(breakdown["nonProjectHours"], 8.0)
        self.assertEqual(breakdown["effectiveCapacity"], 32.0)
        self.assertEqual(breakdown["remainingCapacity"], 2.0)
        self.assertEqual(breakdown["utilizationPercentage"], 93.8)
        self.assertEqual(breakdown["status"], UtilizationStatus.NEAR_FULL)


class OverallocationWarningTests(unittest.TestCase):
    def test_exceeding_capacity_is_an_error(self):
        warning = check_overallocation_warning(32, 35)
        self.assertTrue(warning.has_warning)
        self.assertEqual(warning.severity, "error")
        self.assertEqual(warning.message, "Would exceed capacity by 3.0h (35.0h / 32h effective)")

    def test_near_capacity_is_a_warning(self):
        warning = check_overallocation_warning(32, 30)
        self.assertEqual(warning.severity, "warning")
        self.assertEqual(warning.message, "Near capacity: 93.8% utilization (2.0h remaining)")

    def test_comfortable_allocation_has_no_warning(self):
        warning = check_overallocation_warning(32, 20)
        self.assertFalse(warning.has_warning)
        self.assertIsNone(warning.severity)
        self.assertEqual(warning.message, "12.0h remaining this week")
        self.assertFalse(warning.to_dict()["hasWarning"])

    def test_exactly_at_capacity_is_a_warning_not_error(self):
        self.assertEqual(check_overallocation_warning(32, 32).severity, "warning")


class CellInputTests(unittest.TestCase):
    def test_clamp(self):
        self.assertEqual(clamp_cell_hours(-3), 0.0)
        self.assertEqual(clamp_cell_hours(55), 40.0)
        self.assertEqual(clamp_cell_hours("12.5"), 12.5)
        self.assertEqual(clamp_cell_hours("abc"), 0.0)

    def test_parse_hours_input(self):
        self.assertEqual(parse_hours_input("7.5"), 7.5)
        self.assertEqual(parse_hours_input("8h"), 8.0)
        self.assertEqual(parse_hours_input(" 6 hours "), 6.0)
        self.assertEqual(parse_hours_input(""), 0.0)
        self.assertEqual(parse_hours_input(None), 0.0)
        self.assertEqual(parse_hours_input("lots"), 0.0)
        self.assertEqual(parse_hours_input("60"), 40.0)
        self.assertEqual(parse_hours_input(-2), 0.0)


if __name__ == "__main__":
    unittest.main()
