"""
Normalizer -- cleans and rescales topic counts for fair comparison.

Series transforms (length and grid alignment always preserved):
  moving_average       -- symmetric window, narrower at the edges
  clip_outliers_iqr    -- clamp values outside [Q1 - k*IQR, Q3 + k*IQR]
  share_of_volume      -- each topic's share of all topics in a bucket

Cohort transforms (one value per topic, e.g. whole-period frequency):
  normalize_by_zscore, normalize_by_volume, normalize_by_baseline,
  cross_platform_relevance

Degenerate cohorts (zero variance, zero total) come back unchanged.
"""

import logging
import math
from dataclasses import replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from . import stats
from .models import (
    BaselineChange,
    NormalizedSeries,
    PlatformAffinity,
    PlatformShare,
    RecordValidationError,
    TopicFrequency,
    TopicTimeseries,
    series_values,
)
from .tuning import NormalizationSettings, check_non_negative, check_positive_int

logger = logging.getLogger(__name__)

Cohort = Union[Sequence[TopicFrequency], Mapping[str, float]]

SIGNIFICANCE_Z = 1.96  # two-sided 95%


def _as_cohort(cohort: Optional[Cohort]) -> List[TopicFrequency]:
    if not cohort:
        return []
    if isinstance(cohort, Mapping):
        return [TopicFrequency(topic=t, frequency=float(v or 0)) for t, v in cohort.items()]
    return list(cohort)


# ── Series transforms ──

def moving_average(values: Sequence[float], window_size: int = 3) -> List[float]:
    """
    Centered moving average over [i - w//2, i + w//2], clipped to the array.

    Edge points average over fewer values rather than padding with zeros.
    A series shorter than the window is returned unchanged.
    """
    check_positive_int("window_size", window_size)
    values = series_values(values)
    n = len(values)
    if n < window_size:
        return values

    half = window_size // 2
    result = []
    for i in range(n):
        lo = max(0, i - half)
        hi = min(n - 1, i + half)
        window = values[lo:hi + 1]
        result.append(sum(window) / len(window))
    return result


def iqr_bounds(values: Sequence[float], multiplier: float = 1.5) -> Tuple[float, float]:
    """Lower/upper fences from Q1/Q3 taken at floor(n*0.25)/floor(n*0.75) of the sorted values."""
    ordered = sorted(values)
    n = len(ordered)
    q1 = ordered[int(n * 0.25)]
    q3 = ordered[int(n * 0.75)]
    iqr = q3 - q1
    return q1 - multiplier * iqr, q3 + multiplier * iqr


def clip_outliers_iqr(values: Sequence[float], multiplier: float = 1.5) -> List[float]:
    """
    Clamp outliers to the IQR fences; points are never dropped.

    Series with fewer than 4 values are returned unchanged.
    """
    check_non_negative("iqr_multiplier", multiplier)
    values = series_values(values)
    if len(values) < 4:
        return values

    lower, upper = iqr_bounds(values, multiplier)
    return [min(max(v, lower), upper) for v in values]


def share_of_volume(series: Mapping[str, Sequence[float]],
                    as_percentage: bool = True) -> Dict[str, List[float]]:
    """
    Each topic's share of the bucket total across all topics.

    Buckets where every topic is zero keep their zero values.
    """
    if not series:
        return {}
    lengths = {len(v) for v in series.values()}
    if len(lengths) > 1:
        raise RecordValidationError(f"Series must share one grid, got lengths {sorted(lengths)}")

    n = lengths.pop()
    scale = 100.0 if as_percentage else 1.0
    totals = [sum(values[i] for values in series.values()) for i in range(n)]

    result = {}
    for topic, values in series.items():
        result[topic] = [
            (values[i] / totals[i]) * scale if totals[i] else float(values[i])
            for i in range(n)
        ]
    return result


# ── Cohort transforms ──

def standardize(values: Sequence[float]) -> List[float]:
    """
    z = (x - mean) / std for each value.

    With fewer than two values or zero spread the input comes back unchanged.
    """
    values = [float(v) for v in values]
    if len(values) < 2:
        return values
    mu, sd = stats.mean_and_std(values)
    if sd == 0:
        return values
    return [(v - mu) / sd for v in values]


def normalize_by_zscore(frequencies: Cohort,
                        significance: float = SIGNIFICANCE_Z) -> List[TopicFrequency]:
    """
    Attach z_score and is_significant (|z| > significance) to each topic.

    Returns the cohort unchanged when it has fewer than two topics or
    every topic has the same frequency.
    """
    check_non_negative("significance", significance)
    cohort = _as_cohort(frequencies)
    if len(cohort) < 2:
        return cohort

    mu, sd = stats.mean_and_std([f.frequency for f in cohort])
    if sd == 0:
        logger.debug("Zero variance across topics, z-scores skipped")
        return cohort

    result = []
    for item in cohort:
        z = (item.frequency - mu) / sd
        result.append(replace(item, z_score=z, is_significant=abs(z) > significance))
    return result


def normalize_by_volume(frequencies: Cohort, as_percentage: bool = True) -> List[TopicFrequency]:
    """Attach normalized_frequency = frequency / cohort total (x100 as percentage)."""
    cohort = _as_cohort(frequencies)
    total = sum(f.frequency for f in cohort)
    if total == 0:
        return cohort

    scale = 100.0 if as_percentage else 1.0
    return [
        replace(item, normalized_frequency=item.frequency / total * scale)
        for item in cohort
    ]


def normalize_by_baseline(current: Cohort, baseline: Cohort) -> List[BaselineChange]:
    """
    Compare each current topic against the same topic in a baseline period.

    A topic absent from the baseline counts as baseline 0: it is flagged
    is_new and its percent_change/change_ratio are math.inf. A topic whose
    current volume drops to 0 is flagged is_gone.
    """
    baseline_map = {f.topic: f.frequency for f in _as_cohort(baseline)}

    changes = []
    for item in _as_cohort(current):
        curr = item.frequency
        base = baseline_map.get(item.topic, 0.0)

        absolute_change = curr - base
        if base > 0:
            percent_change = absolute_change / base * 100
            change_ratio = curr / base
        elif curr > 0:
            percent_change = math.inf
            change_ratio = math.inf
        else:
            percent_change = 0.0
            change_ratio = 1.0

        if percent_change > 0:
            trend = "up"
        elif percent_change < 0:
            trend = "down"
        else:
            trend = "stable"

        changes.append(BaselineChange(
            topic=item.topic,
            frequency=curr,
            baseline_frequency=base,
            absolute_change=absolute_change,
            percent_change=percent_change,
            change_ratio=change_ratio,
            trend=trend,
            is_new=base == 0 and curr > 0,
            is_gone=base > 0 and curr == 0,
        ))
    return changes


def cross_platform_relevance(platform_data: Mapping[str, Cohort]) -> Dict[str, PlatformAffinity]:
    """
    Where is each topic relatively most popular?

    Each platform's frequencies are divided by that platform's total.
    With more than one platform, every topic also gets
    relative_affinity = share / mean share across platforms,
    affinity_score = log2(relative_affinity + 0.1), and the platform
    with the largest share as dominant_platform.
    """
    if not platform_data:
        return {}

    cohorts = {platform: _as_cohort(items) for platform, items in platform_data.items()}
    platforms = list(cohorts)

    topics: List[str] = []
    for items in cohorts.values():
        for item in items:
            if item.topic not in topics:
                topics.append(item.topic)

    totals = {p: sum(f.frequency for f in items) for p, items in cohorts.items()}
    lookup = {p: {f.topic: f.frequency for f in items} for p, items in cohorts.items()}

    result = {}
    for topic in topics:
        shares = {}
        for platform in platforms:
            freq = lookup[platform].get(topic, 0.0)
            normalized = freq / totals[platform] if totals[platform] > 0 else 0.0
            shares[platform] = (freq, normalized)

        dominant = None
        entries = {}
        if len(platforms) > 1:
            dominant = platforms[0]
            for platform in platforms[1:]:
                if shares[platform][1] > shares[dominant][1]:
                    dominant = platform
            avg = stats.mean([normalized for _, normalized in shares.values()])
            for platform, (freq, normalized) in shares.items():
                relative = normalized / avg if avg > 0 else 1.0
                entries[platform] = PlatformShare(
                    frequency=freq,
                    normalized_frequency=normalized,
                    percentage=normalized * 100,
                    relative_affinity=relative,
                    affinity_score=math.log2(relative + 0.1),
                )
        else:
            for platform, (freq, normalized) in shares.items():
                entries[platform] = PlatformShare(
                    frequency=freq,
                    normalized_frequency=normalized,
                    percentage=normalized * 100,
                )

        result[topic] = PlatformAffinity(topic=topic, platforms=entries,
                                         dominant_platform=dominant)
    return result


# ── Whole payload ──

def normalize_series(timeseries: TopicTimeseries,
                     window_size: int = 3,
                     remove_outliers: bool = True,
                     iqr_multiplier: float = 1.5,
                     as_percentage: bool = True) -> NormalizedSeries:
    """
    Smooth and (optionally) clip every topic series of a payload.

    Also computes per-bucket share of volume on the raw counts and
    z-scores of topic totals across topics.
    """
    check_positive_int("window_size", window_size)
    check_non_negative("iqr_multiplier", iqr_multiplier)

    cleaned = {}
    for topic, values in timeseries.series.items():
        smoothed = moving_average(values, window_size)
        cleaned[topic] = clip_outliers_iqr(smoothed, iqr_multiplier) if remove_outliers else smoothed

    totals = {topic: sum(values) for topic, values in timeseries.series.items()}
    z_scores = {
        f.topic: f.z_score
        for f in normalize_by_zscore(totals)
        if f.z_score is not None
    }

    return NormalizedSeries(
        grid=timeseries.grid,
        raw={topic: list(values) for topic, values in timeseries.series.items()},
        series=cleaned,
        share_of_volume=share_of_volume(timeseries.series, as_percentage),
        z_scores=z_scores,
    )


class Normalizer:
    """Applies one NormalizationSettings configuration to series payloads."""

    def __init__(self, settings: Optional[NormalizationSettings] = None):
        self.settings = settings or NormalizationSettings()

    def normalize(self, timeseries: TopicTimeseries) -> NormalizedSeries:
        s = self.settings
        result = normalize_series(
            timeseries,
            window_size=s.window_size,
            remove_outliers=s.remove_outliers,
            iqr_multiplier=s.iqr_multiplier,
            as_percentage=s.as_percentage,
        )
        logger.debug(f"Normalized {len(result.series)} topic series")
        return result

    def zscores(self, frequencies: Cohort) -> List[TopicFrequency]:
        return normalize_by_zscore(frequencies, self.settings.significance_z)

    def volume_shares(self, frequencies: Cohort) -> List[TopicFrequency]:
        return normalize_by_volume(frequencies, self.settings.as_percentage)
