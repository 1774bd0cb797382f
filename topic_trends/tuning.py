"""
Tuning Loader -- typed per-stage settings, loaded from YAML or defaults.

Every threshold, window size and count the engine uses is a field on
one of the frozen dataclasses below, with the documented default. To
retune, point TOPIC_TRENDS_SETTINGS at a YAML file such as:

    series:
      interval: week
      top_n: 20
    detection:
      spike_threshold: 2.5
    correlation:
      before_window: 2
      after_window: 3

Any section or key may be omitted.
"""

import logging
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

from . import config
from .models import INTERVALS, RecordValidationError, parse_timestamp

logger = logging.getLogger(__name__)


class ConfigValidationError(ValueError):
    """Raised when a caller passes settings the engine cannot work with."""
    pass


EXTRACTION_METHODS = ("tfidf", "frequency", "ngram")
METHOD_ALIASES = {"count": "frequency"}


# ── Boundary checks (shared by the settings classes and the stage functions) ──

def check_positive_int(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigValidationError(f"{name} must be a positive integer, got {value!r}")


def check_non_negative(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ConfigValidationError(f"{name} must be a non-negative number, got {value!r}")


def check_interval(interval: Any) -> None:
    if interval not in INTERVALS:
        raise ConfigValidationError(
            f"interval must be one of {sorted(INTERVALS)}, got {interval!r}"
        )


def check_ngram_range(min_n: Any, max_n: Any) -> None:
    check_positive_int("min_n", min_n)
    check_positive_int("max_n", max_n)
    if max_n < min_n:
        raise ConfigValidationError(f"max_n ({max_n}) must be >= min_n ({min_n})")


def resolve_method(method: Any) -> str:
    resolved = METHOD_ALIASES.get(method, method)
    if resolved not in EXTRACTION_METHODS:
        raise ConfigValidationError(
            f"Unknown extraction method {method!r}; expected one of {list(EXTRACTION_METHODS)}"
        )
    return resolved


# ── Settings ──

@dataclass(frozen=True)
class ExtractionSettings:
    method: str = "tfidf"
    min_frequency: int = 2
    max_topics: int = 50
    min_n: int = 1
    max_n: int = 2
    stop_words: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "method", resolve_method(self.method))
        object.__setattr__(self, "stop_words", tuple(self.stop_words or ()))
        check_positive_int("min_frequency", self.min_frequency)
        check_positive_int("max_topics", self.max_topics)
        check_ngram_range(self.min_n, self.max_n)


@dataclass(frozen=True)
class SeriesSettings:
    interval: str = "day"
    top_n: int = 10
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    topics: Tuple[str, ...] = ()
    topic_field: str = "topic"
    timestamp_field: str = "timestamp"

    def __post_init__(self):
        check_interval(self.interval)
        check_positive_int("top_n", self.top_n)
        object.__setattr__(self, "topics", tuple(self.topics or ()))
        try:
            if self.start is not None:
                object.__setattr__(self, "start", parse_timestamp(self.start))
            if self.end is not None:
                object.__setattr__(self, "end", parse_timestamp(self.end))
        except RecordValidationError as e:
            raise ConfigValidationError(str(e)) from None
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ConfigValidationError(
                f"start ({self.start.isoformat()}) is after end ({self.end.isoformat()})"
            )


@dataclass(frozen=True)
class NormalizationSettings:
    window_size: int = 3
    remove_outliers: bool = True
    iqr_multiplier: float = 1.5
    significance_z: float = 1.96
    as_percentage: bool = True

    def __post_init__(self):
        check_positive_int("window_size", self.window_size)
        check_non_negative("iqr_multiplier", self.iqr_multiplier)
        check_non_negative("significance_z", self.significance_z)


@dataclass(frozen=True)
class DetectionSettings:
    spike_threshold: float = 2.0
    min_spike_value: float = 1.0
    dip_threshold: float = 2.0
    min_previous_value: float = 1.0
    consecutive: bool = False
    trend_window: int = 3
    min_trend_change: float = 0.2
    max_period: int = 12
    min_correlation: float = 0.5
    volatility_window: int = 3
    volatility_threshold: float = 0.2
    min_consecutive_growth: int = 3
    min_growth_rate: float = 0.1
    min_total_growth: float = 0.5
    min_consecutive_decline: int = 3
    min_decline_rate: float = 0.1
    min_total_decline: float = 0.3

    def __post_init__(self):
        for name in ("spike_threshold", "min_spike_value", "dip_threshold",
                     "min_previous_value", "min_trend_change", "min_correlation",
                     "volatility_threshold", "min_growth_rate", "min_total_growth",
                     "min_decline_rate", "min_total_decline"):
            check_non_negative(name, getattr(self, name))
        for name in ("volatility_window", "min_consecutive_growth",
                     "min_consecutive_decline"):
            check_positive_int(name, getattr(self, name))
        if isinstance(self.trend_window, bool) or not isinstance(self.trend_window, int) \
                or self.trend_window < 2:
            raise ConfigValidationError(
                f"trend_window must be an integer >= 2, got {self.trend_window!r}"
            )
        if isinstance(self.max_period, bool) or not isinstance(self.max_period, int) \
                or self.max_period < 2:
            raise ConfigValidationError(
                f"max_period must be an integer >= 2, got {self.max_period!r}"
            )


@dataclass(frozen=True)
class CorrelationSettings:
    before_window: int = 3
    after_window: int = 5
    impact_threshold: float = field(default_factory=lambda: config.SIGNIFICANCE_THRESHOLD)
    min_impact: float = 20.0
    max_events: int = 10
    window_days: float = 1.0
    id_field: str = "id"
    title_field: str = "title"
    description_field: str = "description"
    category_field: str = "category"
    timestamp_field: str = "date"

    def __post_init__(self):
        check_positive_int("before_window", self.before_window)
        check_positive_int("after_window", self.after_window)
        check_non_negative("impact_threshold", self.impact_threshold)
        check_non_negative("min_impact", self.min_impact)
        check_positive_int("max_events", self.max_events)
        check_non_negative("window_days", self.window_days)

    @property
    def event_fields(self) -> Dict[str, str]:
        """Keyword arguments for Event.from_record."""
        return {
            "id_field": self.id_field,
            "title_field": self.title_field,
            "description_field": self.description_field,
            "category_field": self.category_field,
            "timestamp_field": self.timestamp_field,
        }


@dataclass(frozen=True)
class TrendSettings:
    extraction: ExtractionSettings = field(default_factory=ExtractionSettings)
    series: SeriesSettings = field(default_factory=SeriesSettings)
    normalization: NormalizationSettings = field(default_factory=NormalizationSettings)
    detection: DetectionSettings = field(default_factory=DetectionSettings)
    correlation: CorrelationSettings = field(default_factory=CorrelationSettings)
    max_workers: int = field(default_factory=lambda: config.MAX_WORKERS)

    def __post_init__(self):
        check_positive_int("max_workers", self.max_workers)

    def with_overrides(self, **sections) -> "TrendSettings":
        """Return a copy with whole sections replaced, e.g. detection=DetectionSettings(...)."""
        return replace(self, **sections)


SECTION_CLASSES = {
    "extraction": ExtractionSettings,
    "series": SeriesSettings,
    "normalization": NormalizationSettings,
    "detection": DetectionSettings,
    "correlation": CorrelationSettings,
}
TOP_LEVEL_KEYS = set(SECTION_CLASSES) | {"max_workers"}


def load_settings(path: Optional[Union[str, Path]] = None) -> TrendSettings:
    """
    Load engine settings from YAML, falling back to defaults.

    Args:
        path: YAML file to read. Defaults to TOPIC_TRENDS_SETTINGS from the
              environment; when that is unset too, defaults are returned.

    Returns:
        TrendSettings with every stage section populated.

    Raises:
        FileNotFoundError: If a path is given but does not exist.
        ConfigValidationError: If the file has unknown sections/keys or bad values.
    """
    if path is None:
        path = config.SETTINGS_PATH
    if path is None:
        logger.debug("No settings file configured, using defaults")
        return TrendSettings()

    yaml_path = Path(path)
    if not yaml_path.exists():
        raise FileNotFoundError(f"Settings file not found: {yaml_path}")

    with open(yaml_path, "r") as f:
        data = yaml.safe_load(f)

    if data is None:
        logger.info(f"Settings file {yaml_path} is empty, using defaults")
        return TrendSettings()

    _validate_settings(data, str(yaml_path))
    settings = _build_settings(data)
    logger.info(f"Loaded engine settings from {yaml_path}")
    return settings


def _validate_settings(data: Any, source: str) -> None:
    """Reject documents with unknown sections or keys."""
    if not isinstance(data, dict):
        raise ConfigValidationError(f"Settings in '{source}' must be a mapping.")

    unknown_sections = sorted(set(data) - TOP_LEVEL_KEYS)
    if unknown_sections:
        raise ConfigValidationError(
            f"Settings in '{source}' have unknown sections: {unknown_sections}"
        )

    for name, cls in SECTION_CLASSES.items():
        section = data.get(name)
        if section is None:
            continue
        if not isinstance(section, dict):
            raise ConfigValidationError(
                f"Settings section '{name}' in '{source}' must be a mapping."
            )
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(section) - known)
        if unknown:
            raise ConfigValidationError(
                f"Settings section '{name}' in '{source}' has unknown keys: {unknown}"
            )


def _build_settings(data: Dict[str, Any]) -> TrendSettings:
    """Construct TrendSettings from a validated YAML mapping."""
    sections = {}
    for name, cls in SECTION_CLASSES.items():
        values = dict(data.get(name) or {})
        for key in ("stop_words", "topics"):
            if key in values and values[key] is not None:
                values[key] = tuple(values[key])
        try:
            sections[name] = cls(**values)
        except TypeError as e:
            raise ConfigValidationError(f"Settings section '{name}': {e}") from None

    if "max_workers" in data:
        sections["max_workers"] = data["max_workers"]

    return TrendSettings(**sections)
