"""
Trend Detector -- statistical anomaly and trend detection on topic series.

Works on one series at a time, always in index order:
  spikes / dips      -- single buckets far above / below the series mean
  trend changes      -- OLS slope shifts between adjacent windows
  cyclic patterns    -- best autocorrelation lag
  volatility         -- mean absolute step-to-step relative change

Across topics it classifies emerging and declining topics from their
longest run of consecutive growth or decline.
"""

import logging
from typing import Callable, List, Mapping, Optional, Sequence, Tuple

from . import stats
from .models import (
    AnomalyReport,
    CyclicPattern,
    GrowthRun,
    TimeGrid,
    TopicTimeseries,
    TopicTrendSummary,
    TrendChange,
    Volatility,
    series_values,
)
from .tuning import (
    ConfigValidationError,
    DetectionSettings,
    check_non_negative,
    check_positive_int,
)

logger = logging.getLogger(__name__)


def _check_window(name: str, value: int, minimum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ConfigValidationError(f"{name} must be an integer >= {minimum}, got {value!r}")


# ── Spikes and dips ──

def detect_spikes(values: Sequence[float], threshold: float = 2.0,
                  min_value: float = 1.0, consecutive: bool = False) -> List[int]:
    """
    Indices whose z-score exceeds threshold and whose value is >= min_value.

    In consecutive mode a bucket only counts when the bucket before it was
    already above the threshold, so isolated one-bucket blips are ignored.
    """
    check_non_negative("threshold", threshold)
    values = series_values(values)
    if len(values) < 3:
        return []

    mu, sd = stats.mean_and_std(values)
    if sd == 0:
        return []

    spikes = []
    run = 0
    for i, value in enumerate(values):
        z = (value - mu) / sd
        if z > threshold and value >= min_value:
            if not consecutive or run > 0:
                spikes.append(i)
            run += 1
        else:
            run = 0
    return spikes


def detect_dips(values: Sequence[float], threshold: float = 2.0,
                min_previous_value: float = 1.0, consecutive: bool = False) -> List[int]:
    """
    Indices whose value sits more than threshold std devs below the mean,
    provided the previous bucket held at least min_previous_value.
    """
    check_non_negative("threshold", threshold)
    values = series_values(values)
    if len(values) < 3:
        return []

    mu, sd = stats.mean_and_std(values)
    if sd == 0:
        return []

    dips = []
    run = 0
    for i in range(1, len(values)):
        z = (mu - values[i]) / sd
        if z > threshold and values[i - 1] >= min_previous_value:
            if not consecutive or run > 0:
                dips.append(i)
            run += 1
        else:
            run = 0
    return dips


# ── Trend changes ──

def detect_trend_changes(values: Sequence[float], window_size: int = 3,
                         min_change: float = 0.2) -> List[TrendChange]:
    """
    Compare the OLS slope of values[i-w:i] with values[i:i+w] at every
    boundary i where both windows fit, reporting shifts >= min_change.
    """
    _check_window("window_size", window_size, 2)
    check_non_negative("min_change", min_change)
    values = series_values(values)
    n = len(values)
    if n < window_size * 2:
        return []

    changes = []
    for i in range(window_size, n - window_size + 1):
        previous = stats.linear_slope(values[i - window_size:i])
        current = stats.linear_slope(values[i:i + window_size])
        delta = current - previous
        if abs(delta) >= min_change:
            changes.append(TrendChange(
                index=i,
                prev_slope=previous,
                curr_slope=current,
                change=delta,
                type="acceleration" if current > previous else "deceleration",
            ))
    return changes


# ── Periodicity ──

def detect_cyclic_patterns(values: Sequence[float], max_period: int = 12,
                           min_correlation: float = 0.5) -> CyclicPattern:
    """
    Try every lag in [2, min(max_period, n // 2)] and keep the one with the
    highest autocorrelation; it is a pattern when that r >= min_correlation.
    """
    _check_window("max_period", max_period, 2)
    check_non_negative("min_correlation", min_correlation)
    values = series_values(values)
    highest_lag = min(max_period, len(values) // 2)
    if highest_lag < 2:
        return CyclicPattern(has_pattern=False)

    correlations = []
    best_period = None
    best_r = 0.0
    for lag in range(2, highest_lag + 1):
        r = stats.autocorrelation(values, lag)
        correlations.append((lag, r))
        if r > best_r:
            best_r = r
            best_period = lag

    correlations.sort(key=lambda pair: pair[1], reverse=True)
    return CyclicPattern(
        has_pattern=best_period is not None and best_r >= min_correlation,
        period=best_period,
        correlation=best_r,
        correlations=correlations,
    )


# ── Volatility ──

def percent_changes(values: Sequence[float]) -> List[float]:
    """|change| / previous per step; 0 -> positive counts as 1.0 (100%)."""
    changes = []
    for prev, curr in zip(values, values[1:]):
        if prev > 0:
            changes.append(abs((curr - prev) / prev))
        elif curr > 0:
            changes.append(1.0)
        else:
            changes.append(0.0)
    return changes


def calculate_volatility(values: Sequence[float], window_size: int = 3,
                         threshold: float = 0.2) -> Volatility:
    """
    Mean absolute relative change, plus a rolling-window profile of it.

    A topic is volatile when the overall mean exceeds threshold.
    """
    check_positive_int("window_size", window_size)
    check_non_negative("threshold", threshold)
    values = series_values(values)
    if len(values) < max(window_size, 2):
        return Volatility(volatility=0.0, is_volatile=False)

    changes = percent_changes(values)
    volatility = stats.mean(changes)

    windows = [
        stats.mean(changes[i:i + window_size])
        for i in range(len(changes) - window_size + 1)
    ]

    return Volatility(
        volatility=volatility,
        is_volatile=volatility > threshold,
        percent_changes=changes,
        window_volatility=windows,
        avg_window_volatility=stats.mean(windows),
        max_window_volatility=max(windows) if windows else 0.0,
    )


# ── Emerging / declining topics ──

def _growth_rate(prev: float, curr: float) -> float:
    return (curr - prev) / max(prev, 1) if curr > 0 else 0.0


def _decline_rate(prev: float, curr: float) -> float:
    return (prev - curr) / prev if prev > 0 else 0.0


def _longest_run(values: Sequence[float], rate: Callable[[float, float], float],
                 min_rate: float) -> Tuple[int, int]:
    """(length, start index) of the longest run of steps with rate >= min_rate."""
    best_length, best_start = 0, -1
    length, start = 0, -1
    for i in range(1, len(values)):
        if rate(values[i - 1], values[i]) >= min_rate:
            if length == 0:
                start = i - 1
            length += 1
            if length > best_length:
                best_length, best_start = length, start
        else:
            length = 0
    return best_length, best_start


def _classify_runs(series: Mapping[str, Sequence[float]], grid: Optional[TimeGrid],
                   direction: str, min_periods: int, min_rate: float,
                   min_total: float) -> List[GrowthRun]:
    check_positive_int("min_consecutive_periods", min_periods)
    check_non_negative("min_rate", min_rate)
    check_non_negative("min_total", min_total)

    emerging = direction == "emerging"
    rate = _growth_rate if emerging else _decline_rate

    runs = []
    for topic, raw in series.items():
        values = series_values(raw)
        if len(values) < min_periods + 1:
            continue

        length, start = _longest_run(values, rate, min_rate)
        if length < min_periods or start < 0:
            continue

        end = start + length
        start_value, end_value = values[start], values[end]
        if start_value > 0:
            delta = end_value - start_value if emerging else start_value - end_value
            total = delta / start_value
        else:
            total = 0.0
        if total < min_total:
            continue

        has_times = grid is not None and len(grid) == len(values)
        runs.append(GrowthRun(
            topic=topic,
            direction=direction,
            consecutive_periods=length,
            total_change=total,
            start_index=start,
            end_index=end,
            start_value=start_value,
            end_value=end_value,
            start_time=grid[start] if has_times else None,
            end_time=grid[end] if has_times else None,
        ))

    runs.sort(key=lambda r: r.total_change, reverse=True)
    return runs


def identify_emerging_topics(series: Mapping[str, Sequence[float]],
                             grid: Optional[TimeGrid] = None,
                             min_consecutive_growth: int = 3,
                             min_growth_rate: float = 0.1,
                             min_total_growth: float = 0.5) -> List[GrowthRun]:
    """
    Topics with at least min_consecutive_growth straight periods of growth
    >= min_growth_rate whose run grew by >= min_total_growth overall
    (0.5 == +50%). Sorted by total growth, largest first.
    """
    return _classify_runs(series, grid, "emerging", min_consecutive_growth,
                          min_growth_rate, min_total_growth)


def identify_declining_topics(series: Mapping[str, Sequence[float]],
                              grid: Optional[TimeGrid] = None,
                              min_consecutive_decline: int = 3,
                              min_decline_rate: float = 0.1,
                              min_total_decline: float = 0.3) -> List[GrowthRun]:
    """Mirror of identify_emerging_topics for sustained declines."""
    return _classify_runs(series, grid, "declining", min_consecutive_decline,
                          min_decline_rate, min_total_decline)


def summarize_topic_trends(series: Mapping[str, Sequence[float]]) -> List[TopicTrendSummary]:
    """
    Second-half vs first-half average per topic, sorted by topic total.

    trend is a percent; a topic that starts from nothing reads +100.
    """
    summaries = []
    for topic, raw in series.items():
        values = series_values(raw)
        total = sum(values)
        if len(values) < 2:
            summaries.append(TopicTrendSummary(topic, total, 0.0, 0.0, 0.0, "stable"))
            continue

        mid = len(values) // 2
        first = stats.mean(values[:mid])
        second = stats.mean(values[mid:])
        if first > 0:
            trend = (second - first) / first * 100
        elif second > 0:
            trend = 100.0
        else:
            trend = 0.0

        direction = "up" if trend > 0 else "down" if trend < 0 else "stable"
        summaries.append(TopicTrendSummary(topic, total, trend, first, second, direction))

    summaries.sort(key=lambda s: s.total, reverse=True)
    return summaries


class TrendDetector:
    """Runs every per-series detector with one DetectionSettings configuration."""

    def __init__(self, settings: Optional[DetectionSettings] = None):
        self.settings = settings or DetectionSettings()

    def detect(self, values: Sequence[float], topic: str = "") -> AnomalyReport:
        """Build the full AnomalyReport for one series."""
        s = self.settings
        values = series_values(values)

        volatility = calculate_volatility(values, s.volatility_window, s.volatility_threshold)
        report = AnomalyReport(
            topic=topic,
            spikes=detect_spikes(values, s.spike_threshold, s.min_spike_value, s.consecutive),
            dips=detect_dips(values, s.dip_threshold, s.min_previous_value, s.consecutive),
            trend_changes=detect_trend_changes(values, s.trend_window, s.min_trend_change),
            cyclic=detect_cyclic_patterns(values, s.max_period, s.min_correlation),
            volatility=volatility.volatility,
            is_volatile=volatility.is_volatile,
            window_volatility=volatility.window_volatility,
        )

        logger.debug(
            f"{topic or 'series'}: {len(report.spikes)} spikes, {len(report.dips)} dips, "
            f"{len(report.trend_changes)} trend changes, volatility {report.volatility:.2f}"
        )
        return report

    def emerging(self, timeseries: TopicTimeseries) -> List[GrowthRun]:
        s = self.settings
        return identify_emerging_topics(
            timeseries.series, timeseries.grid,
            s.min_consecutive_growth, s.min_growth_rate, s.min_total_growth,
        )

    def declining(self, timeseries: TopicTimeseries) -> List[GrowthRun]:
        s = self.settings
        return identify_declining_topics(
            timeseries.series, timeseries.grid,
            s.min_consecutive_decline, s.min_decline_rate, s.min_total_decline,
        )
