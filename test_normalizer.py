"""
Tests for series smoothing, outlier clipping and the cohort normalizers.
"""

import math
import os
import sys
import unittest
from datetime import datetime

# Ensure the project root is on the path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from topic_trends import stats
from topic_trends.models import RecordValidationError, TopicFrequency, TopicTimeseries
from topic_trends.normalizer import (
    Normalizer,
    clip_outliers_iqr,
    cross_platform_relevance,
    moving_average,
    normalize_by_baseline,
    normalize_by_volume,
    normalize_by_zscore,
    normalize_series,
    share_of_volume,
)
from topic_trends.series_builder import build_grid
from topic_trends.tuning import ConfigValidationError, NormalizationSettings


class TestMovingAverage(unittest.TestCase):

    def test_constant_series_unchanged(self):
        self.assertEqual(moving_average([5, 5, 5, 5], 3), [5.0, 5.0, 5.0, 5.0])

    def test_edges_use_fewer_points(self):
        self.assertEqual(moving_average([1, 2, 3], 3), [1.5, 2.0, 2.5])

    def test_short_series_returned_as_is(self):
        self.assertEqual(moving_average([1, 9], 3), [1.0, 9.0])

    def test_zero_window_raises(self):
        with self.assertRaises(ConfigValidationError):
            moving_average([1, 2, 3], 0)


class TestClipOutliers(unittest.TestCase):

    def test_outlier_clamped_to_upper_fence(self):
        # Q1 = 2, Q3 = 4, IQR = 2 -> upper fence 7
        self.assertEqual(clip_outliers_iqr([1, 2, 3, 4, 100]), [1.0, 2.0, 3.0, 4.0, 7.0])

    def test_bounded_series_untouched(self):
        values = [3, 4, 5, 4, 3, 5]
        self.assertEqual(clip_outliers_iqr(values), [float(v) for v in values])

    def test_fewer_than_four_points_untouched(self):
        self.assertEqual(clip_outliers_iqr([1, 1, 50]), [1.0, 1.0, 50.0])


class TestStats(unittest.TestCase):

    def test_population_mean_and_std(self):
        mu, sd = stats.mean_and_std([10, 10, 10, 10, 100])
        self.assertAlmostEqual(mu, 28.0)
        self.assertAlmostEqual(sd, 36.0)

    def test_constant_series_has_exactly_zero_spread(self):
        self.assertEqual(stats.mean_and_std([0.1, 0.1, 0.1])[1], 0.0)

    def test_empty_input(self):
        self.assertEqual(stats.mean([]), 0.0)
        self.assertEqual(stats.mean_and_std([]), (0.0, 0.0))


class TestShareOfVolume(unittest.TestCase):

    def test_percent_of_bucket_total(self):
        shares = share_of_volume({"a": [1, 0], "b": [3, 0]})
        self.assertEqual(shares["a"], [25.0, 0.0])
        self.assertEqual(shares["b"], [75.0, 0.0])

    def test_mismatched_lengths_raise(self):
        with self.assertRaises(RecordValidationError):
            share_of_volume({"a": [1, 2], "b": [1]})


class TestCohortNormalizers(unittest.TestCase):

    def test_zscore_flags_outlying_topic(self):
        result = normalize_by_zscore({"a": 10, "b": 10, "c": 10, "d": 10, "e": 100})
        by_topic = {f.topic: f for f in result}
        # mean 28, population std 36
        self.assertAlmostEqual(by_topic["e"].z_score, 2.0)
        self.assertTrue(by_topic["e"].is_significant)
        self.assertAlmostEqual(by_topic["a"].z_score, -0.5)
        self.assertFalse(by_topic["a"].is_significant)

    def test_zscore_zero_variance_returns_cohort_unchanged(self):
        result = normalize_by_zscore({"a": 5, "b": 5})
        self.assertTrue(all(f.z_score is None for f in result))

    def test_zscore_accepts_frequency_records(self):
        cohort = [TopicFrequency("a", 1.0), TopicFrequency("b", 3.0)]
        result = normalize_by_zscore(cohort)
        self.assertAlmostEqual(result[0].z_score, -1.0)
        self.assertAlmostEqual(result[1].z_score, 1.0)

    def test_volume_shares(self):
        result = normalize_by_volume({"a": 1, "b": 3})
        self.assertEqual([f.normalized_frequency for f in result], [25.0, 75.0])
        result = normalize_by_volume({"a": 1, "b": 3}, as_percentage=False)
        self.assertEqual([f.normalized_frequency for f in result], [0.25, 0.75])

    def test_baseline_same_period_is_stable(self):
        change = normalize_by_baseline({"a": 10}, {"a": 10})[0]
        self.assertEqual(change.percent_change, 0.0)
        self.assertEqual(change.trend, "stable")
        self.assertEqual(change.change_ratio, 1.0)

    def test_baseline_new_topic(self):
        change = normalize_by_baseline({"b": 5}, {})[0]
        self.assertTrue(change.is_new)
        self.assertTrue(math.isinf(change.percent_change))
        self.assertEqual(change.trend, "up")

    def test_baseline_gone_topic(self):
        change = normalize_by_baseline({"a": 0}, {"a": 4})[0]
        self.assertTrue(change.is_gone)
        self.assertEqual(change.percent_change, -100.0)
        self.assertEqual(change.trend, "down")

    def test_cross_platform_dominant_platform(self):
        result = cross_platform_relevance({
            "tiktok": {"dance": 8, "news": 2},
            "x": {"dance": 2, "news": 8},
        })
        self.assertEqual(result["dance"].dominant_platform, "tiktok")
        self.assertEqual(result["news"].dominant_platform, "x")
        self.assertAlmostEqual(result["dance"].platforms["tiktok"].relative_affinity, 1.6)
        self.assertAlmostEqual(result["dance"].platforms["tiktok"].percentage, 80.0)

    def test_cross_platform_single_platform_has_no_affinity(self):
        result = cross_platform_relevance({"web": {"ai": 1, "chips": 3}})
        self.assertIsNone(result["ai"].dominant_platform)
        self.assertIsNone(result["ai"].platforms["web"].relative_affinity)


class TestNormalizeSeries(unittest.TestCase):

    def setUp(self):
        grid = build_grid(datetime(2024, 1, 1), datetime(2024, 1, 6), "day")
        self.timeseries = TopicTimeseries(grid=grid, series={
            "ai": [1, 2, 3, 4, 50, 5],
            "web": [2, 2, 2, 2, 2, 2],
        })

    def test_lengths_and_raw_preserved(self):
        result = normalize_series(self.timeseries)
        self.assertEqual(result.raw["ai"], [1, 2, 3, 4, 50, 5])
        for values in result.series.values():
            self.assertEqual(len(values), len(self.timeseries.grid))
        self.assertEqual(result.series["web"], [2.0] * 6)

    def test_outlier_removal_can_be_switched_off(self):
        clipped = normalize_series(self.timeseries, window_size=1, remove_outliers=True)
        raw = normalize_series(self.timeseries, window_size=1, remove_outliers=False)
        # sorted [1, 2, 3, 4, 5, 50]: Q1 = 2, Q3 = 5 -> upper fence 9.5
        self.assertEqual(clipped.series["ai"][4], 9.5)
        self.assertEqual(raw.series["ai"][4], 50.0)

    def test_normalizer_uses_settings(self):
        normalizer = Normalizer(NormalizationSettings(window_size=1, remove_outliers=False))
        result = normalizer.normalize(self.timeseries)
        self.assertEqual(result.series["ai"], [1.0, 2.0, 3.0, 4.0, 50.0, 5.0])
        self.assertIn("ai", result.z_scores)


if __name__ == "__main__":
    unittest.main()
