"""
Trend Pipeline -- runs the whole engine over one closed batch.

mentions -> series -> normalized series -> per-topic anomaly reports
         -> emerging/declining topics -> (optional) event correlation

Per-topic work is independent, so detection and impact scoring fan out
over a thread pool. Each topic's series is always processed in index
order; only the order in which topics finish varies, and results are
keyed by topic.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable, Mapping, Optional, Union

from . import config
from .event_correlator import EventCorrelator, EventLike
from .models import TopicTimeseries, TrendAnalysis
from .normalizer import Normalizer
from .series_builder import MentionLike, TimeSeriesBuilder
from .topic_extractor import TopicExtractor
from .trend_detector import TrendDetector, summarize_topic_trends
from .tuning import TrendSettings, load_settings

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[Union[str, int]] = None) -> None:
    """Console logging for scripts; the library itself never adds handlers."""
    logging.basicConfig(
        level=level or config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


class TrendPipeline:
    """
    Wires the five stages together with one TrendSettings configuration.

    Process:
    1. Bucket mentions onto a time grid (or take a pre-built payload)
    2. Smooth and clip each series
    3. Detect anomalies per topic on the cleaned series
    4. Classify emerging/declining topics on the raw counts
    5. Correlate events with the raw counts, when events are supplied
    """

    def __init__(self, settings: Optional[TrendSettings] = None):
        self.settings = settings or TrendSettings()
        self.extractor = TopicExtractor(self.settings.extraction)
        self.builder = TimeSeriesBuilder(self.settings.series)
        self.normalizer = Normalizer(self.settings.normalization)
        self.detector = TrendDetector(self.settings.detection)
        self.correlator = EventCorrelator(self.settings.correlation)

    @classmethod
    def from_settings_file(cls, path=None) -> "TrendPipeline":
        """Build a pipeline from YAML (default: TOPIC_TRENDS_SETTINGS)."""
        return cls(load_settings(path))

    def run(self, mentions: Optional[Iterable[MentionLike]] = None,
            events: Optional[Iterable[EventLike]] = None,
            timeseries: Optional[TopicTimeseries] = None) -> TrendAnalysis:
        """
        Analyze one batch.

        Args:
            mentions: Mentions or raw mention records to bucket.
            events: Optional Events or raw event records to correlate.
            timeseries: A pre-built payload from an external collector;
                        used instead of mentions when given.

        Returns:
            TrendAnalysis with every stage's output.
        """
        if timeseries is None:
            timeseries = self.builder.build(mentions or [])

        normalized = self.normalizer.normalize(timeseries)
        workers = self.settings.max_workers

        if workers > 1 and len(normalized.series) > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                reports = self._detect_all(normalized.series, executor)
                correlation = self._correlate(timeseries, events, executor)
        else:
            reports = self._detect_all(normalized.series)
            correlation = self._correlate(timeseries, events)

        emerging = self.detector.emerging(timeseries)
        declining = self.detector.declining(timeseries)

        spikes = sum(len(r.spikes) for r in reports.values())
        logger.info(
            f"Analyzed {len(reports)} topics over {len(timeseries.grid)} buckets: "
            f"{spikes} spikes, {len(emerging)} emerging, {len(declining)} declining"
        )

        return TrendAnalysis(
            timeseries=timeseries,
            normalized=normalized,
            reports=reports,
            emerging=emerging,
            declining=declining,
            trend_summary=summarize_topic_trends(timeseries.series),
            correlation=correlation,
        )

    def extract_topics(self, documents):
        """Topic candidates for raw documents, using the extraction settings."""
        return self.extractor.extract(documents)

    def _detect_all(self, series: Mapping[str, Any], executor=None) -> dict:
        topics = list(series)
        if executor is None:
            results = [self.detector.detect(series[t], topic=t) for t in topics]
        else:
            results = list(executor.map(lambda t: self.detector.detect(series[t], topic=t), topics))
        return dict(zip(topics, results))

    def _correlate(self, timeseries: TopicTimeseries, events, executor=None):
        if events is None:
            return None
        return self.correlator.correlate(timeseries, events, executor=executor)


def analyze(mentions: Optional[Iterable[MentionLike]] = None,
            events: Optional[Iterable[EventLike]] = None,
            settings: Optional[TrendSettings] = None,
            timeseries: Optional[TopicTimeseries] = None) -> TrendAnalysis:
    """One-call convenience wrapper around TrendPipeline.run."""
    return TrendPipeline(settings).run(mentions, events, timeseries=timeseries)
