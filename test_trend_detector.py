"""
Tests for spike/dip detection, trend changes, periodicity, volatility and
emerging/declining topic classification.
"""

import os
import sys
import unittest
from datetime import datetime

# Ensure the project root is on the path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from topic_trends.models import TopicTimeseries
from topic_trends.series_builder import build_grid
from topic_trends.trend_detector import (
    TrendDetector,
    calculate_volatility,
    detect_cyclic_patterns,
    detect_dips,
    detect_spikes,
    detect_trend_changes,
    identify_declining_topics,
    identify_emerging_topics,
    summarize_topic_trends,
)
from topic_trends.tuning import ConfigValidationError, DetectionSettings


class TestSpikesAndDips(unittest.TestCase):

    def test_single_spike(self):
        # mean 25, std ~33.5 -> z(100) ~2.24
        self.assertEqual(detect_spikes([10, 10, 10, 100, 10, 10]), [3])

    def test_flat_series_has_no_spikes(self):
        self.assertEqual(detect_spikes([4, 4, 4, 4]), [])

    def test_short_series_has_no_spikes(self):
        self.assertEqual(detect_spikes([1, 100]), [])

    def test_min_value_filters_small_spikes(self):
        self.assertEqual(detect_spikes([0, 0, 0, 0, 0, 0.5], threshold=2.0, min_value=1.0), [])

    def test_consecutive_mode_ignores_isolated_spike(self):
        self.assertEqual(detect_spikes([10, 10, 10, 100, 10, 10], consecutive=True), [])

    def test_dip_after_steady_volume(self):
        self.assertEqual(detect_dips([50, 50, 50, 50, 50, 0, 50]), [5])

    def test_dip_needs_previous_volume(self):
        self.assertEqual(detect_dips([50, 50, 50, 50, 50, 0, 50], min_previous_value=100), [])


class TestTrendChanges(unittest.TestCase):

    def test_acceleration_between_windows(self):
        changes = detect_trend_changes([1, 2, 3, 10, 20, 30], window_size=3)
        self.assertEqual(len(changes), 1)
        self.assertEqual(changes[0].index, 3)
        self.assertEqual(changes[0].type, "acceleration")
        self.assertAlmostEqual(changes[0].prev_slope, 1.0)
        self.assertAlmostEqual(changes[0].curr_slope, 10.0)

    def test_trend_change_payload_keys(self):
        change = detect_trend_changes([1, 2, 3, 10, 20, 30], window_size=3)[0]
        payload = change.to_dict()
        for key in ("index", "prev_slope", "curr_slope", "type"):
            self.assertIn(key, payload)
        self.assertEqual(payload["type"], "acceleration")

    def test_deceleration(self):
        changes = detect_trend_changes([10, 20, 30, 31, 31, 31], window_size=3)
        self.assertEqual([c.type for c in changes], ["deceleration"])

    def test_too_short_for_two_windows(self):
        self.assertEqual(detect_trend_changes([1, 2, 3, 4, 5], window_size=3), [])

    def test_window_below_two_raises(self):
        with self.assertRaises(ConfigValidationError):
            detect_trend_changes([1, 2, 3, 4], window_size=1)


class TestCyclicPatterns(unittest.TestCase):

    def test_alternating_series_has_period_two(self):
        pattern = detect_cyclic_patterns([1, 5, 1, 5, 1, 5, 1, 5], max_period=4)
        self.assertTrue(pattern.has_pattern)
        self.assertEqual(pattern.period, 2)
        self.assertAlmostEqual(pattern.correlation, 0.75)

    def test_flat_series_has_no_pattern(self):
        pattern = detect_cyclic_patterns([3, 3, 3, 3, 3, 3])
        self.assertFalse(pattern.has_pattern)
        self.assertIsNone(pattern.period)

    def test_too_short(self):
        self.assertFalse(detect_cyclic_patterns([1, 2, 3]).has_pattern)


class TestVolatility(unittest.TestCase):

    def test_swinging_series_is_volatile(self):
        result = calculate_volatility([10, 20, 10, 20])
        # changes 1.0, 0.5, 1.0
        self.assertAlmostEqual(result.volatility, 2.5 / 3)
        self.assertTrue(result.is_volatile)
        self.assertEqual(len(result.window_volatility), 1)

    def test_flat_series_is_calm(self):
        result = calculate_volatility([5, 5, 5, 5])
        self.assertEqual(result.volatility, 0.0)
        self.assertFalse(result.is_volatile)

    def test_rise_from_zero_counts_as_full_change(self):
        result = calculate_volatility([0, 4, 4], window_size=2)
        self.assertEqual(result.percent_changes, [1.0, 0.0])


class TestEmergingAndDeclining(unittest.TestCase):

    def test_doubling_topic_is_emerging(self):
        runs = identify_emerging_topics({"ai": [1, 1, 2, 4, 8], "flat": [3, 3, 3, 3, 3]})
        self.assertEqual([r.topic for r in runs], ["ai"])
        run = runs[0]
        self.assertEqual(run.consecutive_periods, 3)
        self.assertEqual(run.start_index, 1)
        self.assertEqual(run.end_index, 4)
        self.assertAlmostEqual(run.total_growth, 7.0)
        self.assertAlmostEqual(run.percentage, 700.0)

    def test_short_growth_run_is_not_emerging(self):
        self.assertEqual(identify_emerging_topics({"blip": [1, 1, 1, 2, 4]}), [])

    def test_shrinking_topic_is_declining(self):
        runs = identify_declining_topics({"old": [10, 8, 6, 4, 2], "ai": [1, 2, 4, 8, 16]})
        self.assertEqual([r.topic for r in runs], ["old"])
        self.assertEqual(runs[0].consecutive_periods, 4)
        self.assertAlmostEqual(runs[0].total_decline, 0.8)

    def test_grid_times_attached(self):
        grid = build_grid(datetime(2024, 1, 1), datetime(2024, 1, 5), "day")
        runs = identify_emerging_topics({"ai": [1, 1, 2, 4, 8]}, grid)
        self.assertEqual(runs[0].start_time, grid[1])
        self.assertEqual(runs[0].end_time, grid[4])


class TestSummaryAndDetector(unittest.TestCase):

    def test_half_over_half_trend(self):
        summary = summarize_topic_trends({"b": [1, 1, 1, 1], "a": [1, 1, 3, 3]})
        by_topic = {s.topic: s for s in summary}
        self.assertAlmostEqual(by_topic["a"].trend, 200.0)
        self.assertEqual(by_topic["a"].direction, "up")
        self.assertEqual(by_topic["b"].direction, "stable")
        # sorted by total volume
        self.assertEqual(summary[0].topic, "a")

    def test_detector_report(self):
        detector = TrendDetector(DetectionSettings(trend_window=3))
        report = detector.detect([10, 10, 10, 100, 10, 10], topic="ai")
        self.assertEqual(report.topic, "ai")
        self.assertEqual(report.spikes, [3])
        self.assertTrue(report.is_volatile)
        self.assertIn("cyclic", report.to_dict())

    def test_detector_emerging_uses_timeseries_grid(self):
        grid = build_grid(datetime(2024, 1, 1), datetime(2024, 1, 5), "day")
        timeseries = TopicTimeseries(grid=grid, series={"ai": [1, 1, 2, 4, 8]})
        runs = TrendDetector().emerging(timeseries)
        self.assertEqual(runs[0].end_time, grid[4])
        self.assertEqual(TrendDetector().declining(timeseries), [])


if __name__ == "__main__":
    unittest.main()
