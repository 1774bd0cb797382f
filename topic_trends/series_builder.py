"""
Time Series Builder -- buckets topic-tagged mentions onto a fixed time grid.

The grid runs from start to end (inclusive) in equal interval steps;
bucket i covers [grid[i], grid[i] + interval). Every selected topic gets
a zero-filled series of len(grid) values, so a quiet bucket reads 0.
"""

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

from .models import (
    INTERVALS,
    Mention,
    TimeGrid,
    TopicFrequency,
    TopicTimeseries,
    parse_timestamp,
)
from .tuning import (
    ConfigValidationError,
    SeriesSettings,
    check_interval,
    check_positive_int,
)

logger = logging.getLogger(__name__)

MentionLike = Union[Mention, Mapping[str, Any]]


def _in_period(mention: Mention, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is not None and mention.timestamp < start:
        return False
    if end is not None and mention.timestamp > end:
        return False
    return True


def topic_frequency(mentions: Sequence[Mention],
                    start: Optional[datetime] = None,
                    end: Optional[datetime] = None,
                    max_topics: int = 50) -> List[TopicFrequency]:
    """
    Whole-period mention count per topic label, ignoring time buckets.

    Args:
        mentions: Mentions to count.
        start, end: Optional inclusive period bounds.
        max_topics: Keep at most this many labels.

    Returns:
        TopicFrequency records sorted by frequency descending, with
        percentage = share of in-period mentions carrying the label.
    """
    check_positive_int("max_topics", max_topics)
    start = parse_timestamp(start) if start is not None else None
    end = parse_timestamp(end) if end is not None else None

    in_period = [m for m in mentions if _in_period(m, start, end)]
    if not in_period:
        return []

    counts = Counter()
    for mention in in_period:
        counts.update(mention.topic_labels)

    total = len(in_period)
    ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)[:max_topics]
    return [
        TopicFrequency(topic=label, frequency=float(count),
                       percentage=count / total * 100)
        for label, count in ranked
    ]


def build_grid(start: datetime, end: datetime, interval: str = "day") -> TimeGrid:
    """Grid points start, start+interval, ... up to and including end."""
    check_interval(interval)
    start = parse_timestamp(start)
    end = parse_timestamp(end)
    if start > end:
        raise ConfigValidationError(
            f"start ({start.isoformat()}) is after end ({end.isoformat()})"
        )

    step = INTERVALS[interval]
    points = []
    current = start
    while current <= end:
        points.append(current)
        current += step
    return TimeGrid(points=tuple(points), interval=interval, start=start, end=end)


def build_series(mentions: Sequence[Mention],
                 interval: str = "day",
                 start: Optional[datetime] = None,
                 end: Optional[datetime] = None,
                 topics: Optional[Iterable[str]] = None,
                 top_n: int = 10) -> TopicTimeseries:
    """
    Count mentions per topic per time bucket.

    Args:
        mentions: Topic-tagged mentions.
        interval: "hour", "day", "week" or "month" (30 days).
        start, end: Grid bounds; default to the earliest/latest mention.
                    Mentions outside [start, end] are not counted.
        topics: Labels to track. When omitted, the top_n most frequent
                labels over the period are tracked.
        top_n: Number of labels to auto-select.

    Returns:
        TopicTimeseries whose series all have len(grid) values.

    Raises:
        ConfigValidationError: On an unknown interval, bad top_n, or start > end.
    """
    check_interval(interval)
    check_positive_int("top_n", top_n)

    start = parse_timestamp(start) if start is not None else None
    end = parse_timestamp(end) if end is not None else None
    if start is not None and end is not None and start > end:
        raise ConfigValidationError(
            f"start ({start.isoformat()}) is after end ({end.isoformat()})"
        )

    if not mentions:
        logger.debug("No mentions to bucket, returning an empty series")
        return TopicTimeseries(
            grid=TimeGrid(points=(), interval=interval, start=start, end=end),
            series={},
        )

    if start is None:
        start = min(m.timestamp for m in mentions)
    if end is None:
        end = max(m.timestamp for m in mentions)
    if start > end:
        # only one bound was supplied and it lies past every mention
        logger.debug("Requested period contains no mentions, returning an empty series")
        return TopicTimeseries(
            grid=TimeGrid(points=(), interval=interval, start=start, end=end),
            series={},
        )

    grid = build_grid(start, end, interval)

    if topics:
        tracked = list(dict.fromkeys(t for t in topics if t))
    else:
        tracked = [f.topic for f in topic_frequency(mentions, start, end, max_topics=top_n)]

    n = len(grid)
    series = {topic: [0.0] * n for topic in tracked}
    step = grid.step
    dropped = 0

    for mention in mentions:
        if not _in_period(mention, start, end):
            dropped += 1
            continue
        index = (mention.timestamp - start) // step
        if index < 0 or index >= n:
            dropped += 1
            continue
        for label in mention.topic_labels:
            if label in series:
                series[label][index] += 1

    if dropped:
        logger.debug(f"Dropped {dropped} mentions outside the grid period")
    logger.info(
        f"Built {len(series)} topic series over {n} {interval} buckets "
        f"from {len(mentions) - dropped} mentions"
    )
    return TopicTimeseries(grid=grid, series=series)


class TimeSeriesBuilder:
    """Builds topic series with one SeriesSettings configuration."""

    def __init__(self, settings: Optional[SeriesSettings] = None):
        self.settings = settings or SeriesSettings()

    def to_mentions(self, items: Iterable[MentionLike]) -> List[Mention]:
        """Accept Mentions or raw records using the configured field names."""
        mentions = []
        for item in items:
            if isinstance(item, Mention):
                mentions.append(item)
            else:
                mentions.append(Mention.from_record(
                    item,
                    topic_field=self.settings.topic_field,
                    timestamp_field=self.settings.timestamp_field,
                ))
        return mentions

    def build(self, items: Iterable[MentionLike]) -> TopicTimeseries:
        s = self.settings
        return build_series(
            self.to_mentions(items),
            interval=s.interval,
            start=s.start,
            end=s.end,
            topics=s.topics or None,
            top_n=s.top_n,
        )
