"""
Topic Trend Engine -- trend intelligence from topic-tagged mentions.

Turns a closed batch of mentions into per-topic time series, cleans and
normalizes them, flags spikes, dips, trend changes, cycles and volatile
topics, and measures how external events moved each topic.

Components:
  topic_extractor.py  -- TF-IDF / frequency / n-gram topic candidates from text
  series_builder.py   -- buckets mentions onto a shared time grid
  normalizer.py       -- smoothing, IQR clipping, z-scores, volume and baseline shares
  trend_detector.py   -- spikes, dips, slope changes, cycles, volatility, emerging topics
  event_correlator.py -- event annotation, before/after impact, key events
  pipeline.py         -- runs every stage over one batch
"""

from .event_correlator import EventCorrelator
from .models import Event, Mention, events_from_records, mentions_from_records
from .normalizer import Normalizer
from .pipeline import TrendPipeline, analyze, configure_logging
from .series_builder import TimeSeriesBuilder
from .topic_extractor import TopicExtractor
from .trend_detector import TrendDetector
from .tuning import ConfigValidationError, TrendSettings, load_settings

__version__ = "0.1.0"

__all__ = [
    "ConfigValidationError",
    "Event",
    "EventCorrelator",
    "Mention",
    "Normalizer",
    "TimeSeriesBuilder",
    "TopicExtractor",
    "TrendDetector",
    "TrendPipeline",
    "TrendSettings",
    "analyze",
    "configure_logging",
    "events_from_records",
    "load_settings",
    "mentions_from_records",
]
