"""
Tests for bucketing mentions onto the time grid and for the whole-period
topic frequency counts.
"""

import os
import sys
import unittest
from datetime import datetime, timedelta, timezone

# Ensure the project root is on the path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from topic_trends.models import Mention, RecordValidationError, TimeGrid
from topic_trends.series_builder import (
    TimeSeriesBuilder,
    build_grid,
    build_series,
    topic_frequency,
)
from topic_trends.tuning import ConfigValidationError, SeriesSettings

UTC = timezone.utc


def _mention(labels, when, **kwargs):
    return Mention(topic_labels=labels, timestamp=when, **kwargs)


class TestBuildGrid(unittest.TestCase):

    def test_end_is_inclusive(self):
        grid = build_grid(datetime(2024, 1, 1), datetime(2024, 1, 3), "day")
        self.assertEqual(len(grid), 3)
        self.assertEqual(grid[0], datetime(2024, 1, 1, tzinfo=UTC))
        self.assertEqual(grid[-1], datetime(2024, 1, 3, tzinfo=UTC))

    def test_month_is_thirty_days(self):
        grid = build_grid(datetime(2024, 1, 1), datetime(2024, 3, 1), "month")
        self.assertEqual(grid.step, timedelta(days=30))
        self.assertEqual(len(grid), 3)

    def test_start_after_end_raises(self):
        with self.assertRaises(ConfigValidationError):
            build_grid(datetime(2024, 1, 5), datetime(2024, 1, 1))

    def test_unknown_interval_raises(self):
        with self.assertRaises(ConfigValidationError):
            build_grid(datetime(2024, 1, 1), datetime(2024, 1, 2), "fortnight")

    def test_uneven_grid_is_rejected(self):
        with self.assertRaises(RecordValidationError):
            TimeGrid(points=(datetime(2024, 1, 1, tzinfo=UTC),
                             datetime(2024, 1, 3, tzinfo=UTC)), interval="day")


class TestBuildSeries(unittest.TestCase):

    def setUp(self):
        self.mentions = [
            _mention(("ai",), "2024-01-01T10:00:00Z"),
            _mention(("ai",), "2024-01-01T12:00:00Z"),
            _mention(("ai", "chips"), "2024-01-03T09:00:00Z"),
        ]

    def test_zero_filled_and_aligned(self):
        result = build_series(self.mentions, "day",
                              start=datetime(2024, 1, 1), end=datetime(2024, 1, 3))
        self.assertEqual(len(result.grid), 3)
        self.assertEqual(result.series["ai"], [2.0, 0.0, 1.0])
        self.assertEqual(result.series["chips"], [0.0, 0.0, 1.0])
        for values in result.series.values():
            self.assertEqual(len(values), len(result.grid))

    def test_multi_label_mention_counts_for_each_topic(self):
        result = build_series(self.mentions, "day",
                              start=datetime(2024, 1, 1), end=datetime(2024, 1, 3))
        self.assertEqual(sum(result.series["ai"]), 3)
        self.assertEqual(sum(result.series["chips"]), 1)

    def test_out_of_range_mentions_are_dropped(self):
        mentions = self.mentions + [_mention(("ai",), "2024-01-09T00:00:00Z")]
        result = build_series(mentions, "day",
                              start=datetime(2024, 1, 1), end=datetime(2024, 1, 3))
        self.assertEqual(sum(result.series["ai"]), 3)

    def test_mention_at_end_lands_in_last_bucket(self):
        mentions = [_mention(("ai",), "2024-01-03T00:00:00Z")]
        result = build_series(mentions, "day",
                              start=datetime(2024, 1, 1), end=datetime(2024, 1, 3))
        self.assertEqual(result.series["ai"], [0.0, 0.0, 1.0])

    def test_top_n_keeps_most_frequent(self):
        result = build_series(self.mentions, "day", top_n=1,
                              start=datetime(2024, 1, 1), end=datetime(2024, 1, 3))
        self.assertEqual(result.topics, ["ai"])

    def test_explicit_topics_are_tracked_even_when_silent(self):
        result = build_series(self.mentions, "day", topics=["quantum"],
                              start=datetime(2024, 1, 1), end=datetime(2024, 1, 3))
        self.assertEqual(result.series, {"quantum": [0.0, 0.0, 0.0]})

    def test_bounds_default_to_mention_range(self):
        result = build_series(self.mentions, "hour")
        self.assertEqual(result.grid[0], datetime(2024, 1, 1, 10, tzinfo=UTC))
        self.assertEqual(result.grid[-1], datetime(2024, 1, 3, 9, tzinfo=UTC))

    def test_empty_input(self):
        result = build_series([], "day")
        self.assertEqual(len(result.grid), 0)
        self.assertEqual(result.series, {})

    def test_start_after_end_raises(self):
        with self.assertRaises(ConfigValidationError):
            build_series(self.mentions, start=datetime(2024, 2, 1), end=datetime(2024, 1, 1))


class TestTopicFrequency(unittest.TestCase):

    def test_percentage_of_mentions(self):
        mentions = [
            _mention(("ai",), "2024-01-01"),
            _mention(("ai", "chips"), "2024-01-02"),
            _mention(("chips",), "2024-01-03"),
            _mention(("ai",), "2024-01-04"),
        ]
        result = topic_frequency(mentions)
        self.assertEqual(result[0].topic, "ai")
        self.assertEqual(result[0].frequency, 3.0)
        self.assertAlmostEqual(result[0].percentage, 75.0)
        self.assertAlmostEqual(result[1].percentage, 50.0)

    def test_period_filter(self):
        mentions = [_mention(("ai",), "2024-01-01"), _mention(("web",), "2024-03-01")]
        result = topic_frequency(mentions, start="2024-02-01")
        self.assertEqual([f.topic for f in result], ["web"])


class TestTimeSeriesBuilder(unittest.TestCase):

    def test_builds_from_records_with_custom_fields(self):
        settings = SeriesSettings(
            interval="day", topic_field="tags", timestamp_field="created_at",
            start="2024-01-01", end="2024-01-02",
        )
        records = [
            {"tags": ["x", "y"], "created_at": "2024-01-01T05:00:00Z"},
            {"tags": "x", "created_at": "2024-01-02T05:00:00Z"},
        ]
        result = TimeSeriesBuilder(settings).build(records)
        self.assertEqual(result.series["x"], [1.0, 1.0])
        self.assertEqual(result.series["y"], [1.0, 0.0])

    def test_record_without_topic_raises(self):
        with self.assertRaises(RecordValidationError):
            TimeSeriesBuilder().build([{"timestamp": "2024-01-01"}])


if __name__ == "__main__":
    unittest.main()
