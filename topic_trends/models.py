"""
Records shared by every stage of the engine.

All records are frozen dataclasses: each stage builds new records from
its inputs and never mutates what it was given. Every record exposes
to_dict() for JSON output to a dashboard or report generator.

Loosely-typed input (dicts from a collector or an API payload) enters
through Mention.from_record / Event.from_record, which validate the
required fields once at the boundary.
"""

import math
from dataclasses import dataclass, field, asdict
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

# Bucket widths for the time grid. "month" is a fixed 30 days so that
# every grid step is the same length.
INTERVALS = {
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
    "month": timedelta(days=30),
}


class RecordValidationError(ValueError):
    """Raised when an input record is missing a required field."""
    pass


def parse_timestamp(value: Any) -> datetime:
    """
    Coerce a timestamp value to a timezone-aware UTC datetime.

    Accepts datetime/date objects, ISO 8601 strings (a trailing "Z" is
    fine) and epoch seconds. Naive values are taken to be UTC.
    """
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, date):
        ts = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        if not math.isfinite(value):
            raise RecordValidationError(f"Timestamp is not finite: {value!r}")
        return datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str) and value.strip():
        text = value.strip().replace("Z", "+00:00")
        try:
            ts = datetime.fromisoformat(text)
        except ValueError:
            raise RecordValidationError(f"Unparseable timestamp: {value!r}") from None
    else:
        raise RecordValidationError(f"Unsupported timestamp value: {value!r}")

    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _jsonable(value: Any) -> Any:
    """Convert asdict() output into plain JSON-friendly values."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class _Serializable:
    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(asdict(self))


def _unique_labels(labels: Iterable[Any]) -> Tuple[str, ...]:
    seen = []
    for label in labels:
        if label is None:
            continue
        text = str(label).strip()
        if text and text not in seen:
            seen.append(text)
    return tuple(seen)


# ── Ingestion records ──

@dataclass(frozen=True)
class Mention(_Serializable):
    """One topic-tagged content item (post, article, comment)."""
    topic_labels: Tuple[str, ...]
    timestamp: datetime
    source: str = ""
    text: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.topic_labels, str):
            labels = _unique_labels([self.topic_labels])
        else:
            labels = _unique_labels(self.topic_labels)
        if not labels:
            raise RecordValidationError("A mention needs at least one topic label.")
        object.__setattr__(self, "topic_labels", labels)
        object.__setattr__(self, "timestamp", parse_timestamp(self.timestamp))

    @classmethod
    def from_record(cls, record: Mapping[str, Any],
                    topic_field: str = "topic",
                    timestamp_field: str = "timestamp",
                    source_field: str = "source",
                    text_field: str = "text") -> "Mention":
        """
        Build a Mention from a dict-like record.

        The topic field may hold a single label or a list of labels.

        Raises:
            RecordValidationError: If the topic or timestamp field is missing.
        """
        missing = [f for f in (topic_field, timestamp_field)
                   if f not in record or record[f] in (None, "", [])]
        if missing:
            raise RecordValidationError(f"Mention record is missing: {missing}")

        return cls(
            topic_labels=record[topic_field],
            timestamp=record[timestamp_field],
            source=str(record.get(source_field) or ""),
            text=record.get(text_field),
        )


def mentions_from_records(records: Iterable[Mapping[str, Any]], **fields) -> List[Mention]:
    """Convert raw records to Mentions; keyword args pick the field names."""
    return [Mention.from_record(r, **fields) for r in records]


@dataclass(frozen=True)
class Event(_Serializable):
    """An external real-world event (launch, news story, campaign)."""
    id: str
    title: str
    timestamp: datetime
    description: str = ""
    category: str = "general"

    def __post_init__(self):
        object.__setattr__(self, "timestamp", parse_timestamp(self.timestamp))

    @classmethod
    def from_record(cls, record: Mapping[str, Any],
                    id_field: str = "id",
                    title_field: str = "title",
                    description_field: str = "description",
                    category_field: str = "category",
                    timestamp_field: str = "date",
                    default_id: Optional[str] = None) -> "Event":
        """
        Build an Event from a dict-like record.

        Raises:
            RecordValidationError: If the record has no usable timestamp.
        """
        if timestamp_field not in record or record[timestamp_field] in (None, ""):
            raise RecordValidationError(
                f"Event record is missing its '{timestamp_field}' field."
            )

        event_id = record.get(id_field)
        if event_id in (None, ""):
            event_id = default_id or str(record.get(title_field) or "event")

        return cls(
            id=str(event_id),
            title=str(record.get(title_field) or "Unknown event"),
            timestamp=record[timestamp_field],
            description=str(record.get(description_field) or ""),
            category=str(record.get(category_field) or "general"),
        )


def events_from_records(records: Iterable[Mapping[str, Any]], **fields) -> List[Event]:
    """Convert raw event records; records without an id get "event-<n>"."""
    return [
        Event.from_record(r, default_id=f"event-{i}", **fields)
        for i, r in enumerate(records)
    ]


# ── Topic extraction ──

@dataclass(frozen=True)
class TopicCandidate(_Serializable):
    label: str
    score: float
    method: str  # "tfidf", "frequency", "ngram"
    words: int = 1


@dataclass(frozen=True)
class TopicFrequency(_Serializable):
    """One topic's volume in a cohort, optionally carrying normalized values."""
    topic: str
    frequency: float
    percentage: Optional[float] = None
    normalized_frequency: Optional[float] = None
    z_score: Optional[float] = None
    is_significant: Optional[bool] = None


# ── Time series ──

@dataclass(frozen=True)
class TimeGrid(_Serializable):
    """Equally spaced bucket start times shared by every series of one run."""
    points: Tuple[datetime, ...]
    interval: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def __post_init__(self):
        points = tuple(self.points)
        object.__setattr__(self, "points", points)
        if self.interval not in INTERVALS:
            raise RecordValidationError(f"Unknown grid interval: {self.interval!r}")
        step = INTERVALS[self.interval]
        for prev, curr in zip(points, points[1:]):
            if curr - prev != step:
                raise RecordValidationError(
                    f"Grid points must be exactly one {self.interval} apart "
                    f"({prev.isoformat()} -> {curr.isoformat()})"
                )

    def __len__(self) -> int:
        return len(self.points)

    def __getitem__(self, index: int) -> datetime:
        return self.points[index]

    @property
    def step(self) -> timedelta:
        return INTERVALS[self.interval]

    def nearest_index(self, when: datetime) -> int:
        """
        Index of the grid point closest to `when`, or -1 for an empty grid.

        The first point wins on an exact tie.
        """
        when = parse_timestamp(when)
        best_index = -1
        best_distance = None
        for i, point in enumerate(self.points):
            distance = abs(point - when)
            if best_distance is None or distance < best_distance:
                best_distance = distance
                best_index = i
        return best_index


@dataclass(frozen=True)
class TopicTimeseries(_Serializable):
    """The canonical {grid, series} payload; every series has len(grid) values."""
    grid: TimeGrid
    series: Dict[str, List[float]]

    def __post_init__(self):
        n = len(self.grid)
        for topic, values in self.series.items():
            if len(values) != n:
                raise RecordValidationError(
                    f"Series '{topic}' has {len(values)} values for a grid of {n}"
                )

    @property
    def topics(self) -> List[str]:
        return list(self.series)


@dataclass(frozen=True)
class NormalizedSeries(_Serializable):
    grid: TimeGrid
    raw: Dict[str, List[float]]
    series: Dict[str, List[float]]  # smoothed, outliers clipped
    share_of_volume: Dict[str, List[float]] = field(default_factory=dict)
    z_scores: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class BaselineChange(_Serializable):
    topic: str
    frequency: float
    baseline_frequency: float
    absolute_change: float
    percent_change: float  # math.inf for a topic with no baseline volume
    change_ratio: float
    trend: str  # "up", "down", "stable"
    is_new: bool
    is_gone: bool


@dataclass(frozen=True)
class PlatformShare(_Serializable):
    frequency: float
    normalized_frequency: float
    percentage: float
    relative_affinity: Optional[float] = None
    affinity_score: Optional[float] = None


@dataclass(frozen=True)
class PlatformAffinity(_Serializable):
    topic: str
    platforms: Dict[str, PlatformShare]
    dominant_platform: Optional[str] = None


# ── Trend detection ──

@dataclass(frozen=True)
class TrendChange(_Serializable):
    index: int
    prev_slope: float
    curr_slope: float
    change: float
    type: str  # "acceleration" or "deceleration"


@dataclass(frozen=True)
class CyclicPattern(_Serializable):
    has_pattern: bool
    period: Optional[int] = None
    correlation: float = 0.0
    correlations: List[Tuple[int, float]] = field(default_factory=list)


@dataclass(frozen=True)
class Volatility(_Serializable):
    volatility: float
    is_volatile: bool
    percent_changes: List[float] = field(default_factory=list)
    window_volatility: List[float] = field(default_factory=list)
    avg_window_volatility: float = 0.0
    max_window_volatility: float = 0.0

    @property
    def volatility_score(self) -> float:
        """Volatility on a rough 0-10 scale."""
        return self.volatility * 10


@dataclass(frozen=True)
class AnomalyReport(_Serializable):
    topic: str
    spikes: List[int]
    dips: List[int]
    trend_changes: List[TrendChange]
    cyclic: CyclicPattern
    volatility: float
    is_volatile: bool
    window_volatility: List[float] = field(default_factory=list)


@dataclass(frozen=True)
class GrowthRun(_Serializable):
    """The longest run of consecutive growth (or decline) in one topic."""
    topic: str
    direction: str  # "emerging" or "declining"
    consecutive_periods: int
    total_change: float  # fraction, 7.0 == +700%
    start_index: int
    end_index: int
    start_value: float
    end_value: float
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def percentage(self) -> float:
        return self.total_change * 100

    @property
    def total_growth(self) -> float:
        return self.total_change

    @property
    def total_decline(self) -> float:
        return self.total_change


@dataclass(frozen=True)
class TopicTrendSummary(_Serializable):
    topic: str
    total: float
    trend: float  # percent, second half vs first half
    first_half_avg: float
    second_half_avg: float
    direction: str  # "up", "down", "stable"


# ── Event correlation ──

@dataclass(frozen=True)
class Annotation(_Serializable):
    index: int
    event: Event
    grid_time: datetime


@dataclass(frozen=True)
class ImpactResult(_Serializable):
    event_id: str
    topic: str
    before_avg: float = 0.0
    after_avg: float = 0.0
    absolute_change: float = 0.0
    percent_change: float = 0.0
    direction: str = "neutral"  # "positive", "negative", "neutral"
    significant: bool = False
    evaluated: bool = True  # False when the event sits too close to a grid edge

    @property
    def has_impact(self) -> bool:
        return self.significant

    @property
    def impact(self) -> float:
        return self.percent_change

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["has_impact"] = self.significant
        return data


@dataclass(frozen=True)
class KeyEvent(_Serializable):
    event: Event
    index: int
    impacted_topics: List[ImpactResult]
    avg_impact: float

    @property
    def top_impacted_topic(self) -> Optional[ImpactResult]:
        return self.impacted_topics[0] if self.impacted_topics else None


@dataclass(frozen=True)
class CorrelatedEvent(_Serializable):
    event: Event
    distance_seconds: float
    time_difference_seconds: float  # negative: event happened before the spike
    relation: str  # "before", "after", "same_day"


@dataclass(frozen=True)
class TopicEventSummary(_Serializable):
    topic: str
    related_events: List[ImpactResult]
    events_by_category: Dict[str, List[str]]
    dominant_category: str
    avg_impact: float
    has_positive_correlation: bool
    has_negative_correlation: bool
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @property
    def event_count(self) -> int:
        return len(self.related_events)


@dataclass(frozen=True)
class EventImpactGroups(_Serializable):
    by_impact: Dict[str, List[KeyEvent]]
    by_category: Dict[str, List[KeyEvent]]
    top_events: List[KeyEvent]


@dataclass(frozen=True)
class CorrelationResult(_Serializable):
    annotations: List[Annotation]
    impacts: List[ImpactResult]
    key_events: List[KeyEvent]


@dataclass(frozen=True)
class TrendAnalysis(_Serializable):
    """Everything one pipeline run produces."""
    timeseries: TopicTimeseries
    normalized: NormalizedSeries
    reports: Dict[str, AnomalyReport]
    emerging: List[GrowthRun]
    declining: List[GrowthRun]
    trend_summary: List[TopicTrendSummary]
    correlation: Optional[CorrelationResult] = None


def series_values(values: Sequence[float]) -> List[float]:
    """Copy a numeric sequence as floats, rejecting NaN and infinities."""
    out = []
    for v in values:
        f = float(v)
        if not math.isfinite(f):
            raise RecordValidationError(f"Series values must be finite, got {v!r}")
        out.append(f)
    return out
