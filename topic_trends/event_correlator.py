"""
Event Correlator -- lines external events up with topic activity.

Each event is pinned to its nearest grid bucket. Its impact on a topic
is the change between the average of the before_window buckets
preceding it and the after_window buckets following it (the event's
own bucket is excluded from both).
"""

import logging
from collections import Counter
from concurrent.futures import Executor
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from . import stats
from .models import (
    Annotation,
    CorrelatedEvent,
    CorrelationResult,
    Event,
    EventImpactGroups,
    ImpactResult,
    KeyEvent,
    TimeGrid,
    TopicEventSummary,
    TopicTimeseries,
    parse_timestamp,
    series_values,
)
from .tuning import CorrelationSettings, check_non_negative, check_positive_int

logger = logging.getLogger(__name__)

EventLike = Union[Event, Mapping[str, Any]]

IMPACT_THRESHOLD = 10.0  # percent

# avg_impact floors for group_events_by_impact
IMPACT_LEVELS = (("high", 50.0), ("medium", 20.0), ("low", 5.0))


def annotate_events(grid: TimeGrid, events: Iterable[Event]) -> List[Annotation]:
    """
    Pin each event to the grid point nearest its timestamp.

    Events before or after the grid snap to the first or last bucket.
    """
    if not len(grid):
        return []

    annotations = []
    for event in events:
        index = grid.nearest_index(event.timestamp)
        annotations.append(Annotation(index=index, event=event, grid_time=grid[index]))
    return annotations


def calculate_event_impact(values: Sequence[float], event_index: int,
                           before_window: int = 3, after_window: int = 5,
                           impact_threshold: float = IMPACT_THRESHOLD,
                           topic: str = "", event_id: str = "") -> ImpactResult:
    """
    Before/after comparison of one topic around one event bucket.

    Needs event_index >= before_window and event_index + after_window < len(values);
    otherwise the result is neutral with evaluated=False. percent_change is
    0 when the before average is 0.
    """
    check_positive_int("before_window", before_window)
    check_positive_int("after_window", after_window)
    check_non_negative("impact_threshold", impact_threshold)
    values = series_values(values)

    if event_index < before_window or event_index + after_window >= len(values):
        return ImpactResult(event_id=event_id, topic=topic, evaluated=False)

    before_avg = stats.mean(values[event_index - before_window:event_index])
    after_avg = stats.mean(values[event_index + 1:event_index + 1 + after_window])

    absolute_change = after_avg - before_avg
    percent_change = absolute_change / before_avg * 100 if before_avg > 0 else 0.0

    if percent_change > 0:
        direction = "positive"
    elif percent_change < 0:
        direction = "negative"
    else:
        direction = "neutral"

    return ImpactResult(
        event_id=event_id,
        topic=topic,
        before_avg=before_avg,
        after_avg=after_avg,
        absolute_change=absolute_change,
        percent_change=percent_change,
        direction=direction,
        significant=abs(percent_change) >= impact_threshold,
    )


def event_impacts(series: Mapping[str, Sequence[float]], event_index: int,
                  event_id: str = "", before_window: int = 3, after_window: int = 5,
                  impact_threshold: float = IMPACT_THRESHOLD) -> Dict[str, ImpactResult]:
    """Impact of one event bucket on every topic."""
    return {
        topic: calculate_event_impact(values, event_index, before_window, after_window,
                                      impact_threshold, topic=topic, event_id=event_id)
        for topic, values in series.items()
    }


def identify_key_events(series: Mapping[str, Sequence[float]], grid: TimeGrid,
                        events: Iterable[Event], before_window: int = 3,
                        after_window: int = 5, impact_threshold: float = IMPACT_THRESHOLD,
                        min_impact: float = 20.0, max_events: int = 10) -> List[KeyEvent]:
    """
    Rank events by how strongly they moved topics.

    For each event, topics whose |percent_change| >= min_impact count as
    impacted; avg_impact is the mean of their |percent_change|. Events that
    moved no topic are left out.
    """
    check_non_negative("min_impact", min_impact)
    check_positive_int("max_events", max_events)

    key_events = []
    for annotation in annotate_events(grid, events):
        impacts = event_impacts(series, annotation.index, annotation.event.id,
                                before_window, after_window, impact_threshold)
        key_event = _key_event(annotation, impacts.values(), min_impact)
        if key_event is not None:
            key_events.append(key_event)

    key_events.sort(key=lambda k: k.avg_impact, reverse=True)
    return key_events[:max_events]


def _key_event(annotation: Annotation, impacts: Iterable[ImpactResult],
               min_impact: float) -> Optional[KeyEvent]:
    impacted = [
        r for r in impacts
        if r.evaluated and abs(r.percent_change) >= min_impact
    ]
    if not impacted:
        return None
    impacted.sort(key=lambda r: abs(r.percent_change), reverse=True)
    return KeyEvent(
        event=annotation.event,
        index=annotation.index,
        impacted_topics=impacted,
        avg_impact=stats.mean([abs(r.percent_change) for r in impacted]),
    )


def find_correlated_events(spike_time: datetime, events: Iterable[Event],
                           window_days: float = 1.0) -> List[CorrelatedEvent]:
    """
    Events within +/- window_days of a spike, nearest first.

    relation is "same_day" when the event is less than 24 hours from the
    spike, otherwise "before" or "after".
    """
    check_non_negative("window_days", window_days)
    spike_time = parse_timestamp(spike_time)
    window = timedelta(days=window_days)

    matches = []
    for event in events:
        difference = event.timestamp - spike_time
        if abs(difference) > window:
            continue
        if abs(difference) < timedelta(days=1):
            relation = "same_day"
        elif difference < timedelta(0):
            relation = "before"
        else:
            relation = "after"
        matches.append(CorrelatedEvent(
            event=event,
            distance_seconds=abs(difference).total_seconds(),
            time_difference_seconds=difference.total_seconds(),
            relation=relation,
        ))

    matches.sort(key=lambda m: m.distance_seconds)
    return matches


def summarize_topic_events(topic: str, values: Sequence[float], grid: TimeGrid,
                           events: Iterable[Event], start: Optional[datetime] = None,
                           end: Optional[datetime] = None, before_window: int = 3,
                           after_window: int = 5, impact_threshold: float = IMPACT_THRESHOLD,
                           max_events: int = 5) -> TopicEventSummary:
    """
    How did the events of a timeframe relate to one topic?

    Keeps the max_events events with the largest |impact| inside
    [start, end] (defaults: the grid bounds), groups them by category and
    averages their signed impact.
    """
    check_positive_int("max_events", max_events)
    if start is None:
        start = grid.start if grid.start is not None else (grid[0] if len(grid) else None)
    if end is None:
        end = grid.end if grid.end is not None else (grid[-1] if len(grid) else None)
    start = parse_timestamp(start) if start is not None else None
    end = parse_timestamp(end) if end is not None else None

    in_frame = [
        e for e in events
        if (start is None or e.timestamp >= start) and (end is None or e.timestamp <= end)
    ]
    by_id = {e.id: e for e in in_frame}

    results = [
        calculate_event_impact(values, a.index, before_window, after_window,
                               impact_threshold, topic=topic, event_id=a.event.id)
        for a in annotate_events(grid, in_frame)
    ]
    results.sort(key=lambda r: abs(r.percent_change), reverse=True)
    results = results[:max_events]

    by_category: Dict[str, List[str]] = {}
    for result in results:
        category = by_id[result.event_id].category
        by_category.setdefault(category, []).append(result.event_id)

    dominant = "general"
    if by_category:
        dominant = Counter({c: len(ids) for c, ids in by_category.items()}).most_common(1)[0][0]

    avg_impact = stats.mean([r.percent_change for r in results])
    return TopicEventSummary(
        topic=topic,
        related_events=results,
        events_by_category=by_category,
        dominant_category=dominant,
        avg_impact=avg_impact,
        has_positive_correlation=avg_impact > IMPACT_THRESHOLD,
        has_negative_correlation=avg_impact < -IMPACT_THRESHOLD,
        start=start,
        end=end,
    )


def group_events_by_impact(key_events: Sequence[KeyEvent]) -> EventImpactGroups:
    """Bucket key events into high/medium/low/negligible and by category."""
    by_impact: Dict[str, List[KeyEvent]] = {"high": [], "medium": [], "low": [], "negligible": []}
    by_category: Dict[str, List[KeyEvent]] = {}

    for key_event in key_events:
        impact = abs(key_event.avg_impact)
        level = next((name for name, floor in IMPACT_LEVELS if impact >= floor), "negligible")
        by_impact[level].append(key_event)
        by_category.setdefault(key_event.event.category or "general", []).append(key_event)

    for group in list(by_impact.values()) + list(by_category.values()):
        group.sort(key=lambda k: abs(k.avg_impact), reverse=True)

    return EventImpactGroups(
        by_impact=by_impact,
        by_category=by_category,
        top_events=(by_impact["high"] + by_impact["medium"])[:5],
    )


def correlate(series: Mapping[str, Sequence[float]], grid: TimeGrid,
              events: Iterable[Event], before_window: int = 3, after_window: int = 5,
              impact_threshold: float = IMPACT_THRESHOLD, min_impact: float = 20.0,
              max_events: int = 10, executor: Optional[Executor] = None) -> CorrelationResult:
    """
    Annotate events, score every event x topic impact and rank key events.

    When an executor is given, topics are scored in parallel; results are
    keyed by topic so their order matches the series order regardless.
    """
    check_positive_int("before_window", before_window)
    check_positive_int("after_window", after_window)
    check_non_negative("min_impact", min_impact)
    check_positive_int("max_events", max_events)

    annotations = annotate_events(grid, list(events))
    if not annotations:
        return CorrelationResult(annotations=[], impacts=[], key_events=[])

    def score_topic(topic: str) -> List[ImpactResult]:
        values = series[topic]
        return [
            calculate_event_impact(values, a.index, before_window, after_window,
                                   impact_threshold, topic=topic, event_id=a.event.id)
            for a in annotations
        ]

    topics = list(series)
    if executor is not None:
        per_topic = dict(zip(topics, executor.map(score_topic, topics)))
    else:
        per_topic = {topic: score_topic(topic) for topic in topics}

    impacts = []
    key_events = []
    for i, annotation in enumerate(annotations):
        for_event = [per_topic[topic][i] for topic in topics]
        impacts.extend(for_event)
        key_event = _key_event(annotation, for_event, min_impact)
        if key_event is not None:
            key_events.append(key_event)

    key_events.sort(key=lambda k: k.avg_impact, reverse=True)
    key_events = key_events[:max_events]

    logger.info(
        f"Correlated {len(annotations)} events with {len(topics)} topics: "
        f"{sum(1 for r in impacts if r.significant)} significant impacts, "
        f"{len(key_events)} key events"
    )
    return CorrelationResult(annotations=annotations, impacts=impacts, key_events=key_events)


class EventCorrelator:
    """Correlates events with topic series using one CorrelationSettings configuration."""

    def __init__(self, settings: Optional[CorrelationSettings] = None):
        self.settings = settings or CorrelationSettings()

    def to_events(self, items: Iterable[EventLike]) -> List[Event]:
        """Accept Events or raw records using the configured field names."""
        events = []
        for i, item in enumerate(items):
            if isinstance(item, Event):
                events.append(item)
            else:
                events.append(Event.from_record(item, default_id=f"event-{i}",
                                                **self.settings.event_fields))
        return events

    def correlate(self, timeseries: TopicTimeseries, items: Iterable[EventLike],
                  executor: Optional[Executor] = None) -> CorrelationResult:
        s = self.settings
        return correlate(
            timeseries.series, timeseries.grid, self.to_events(items),
            before_window=s.before_window,
            after_window=s.after_window,
            impact_threshold=s.impact_threshold,
            min_impact=s.min_impact,
            max_events=s.max_events,
            executor=executor,
        )

    def impact(self, values: Sequence[float], event_index: int,
               topic: str = "", event_id: str = "") -> ImpactResult:
        s = self.settings
        return calculate_event_impact(values, event_index, s.before_window, s.after_window,
                                      s.impact_threshold, topic=topic, event_id=event_id)

    def nearby_events(self, spike_time: datetime,
                      items: Iterable[EventLike]) -> List[CorrelatedEvent]:
        return find_correlated_events(spike_time, self.to_events(items), self.settings.window_days)
