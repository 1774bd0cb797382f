"""
Topic Extractor -- turns raw text into weighted topic candidates.

Three bag-of-words methods, no language models:
  tfidf      -- per-document counts weighted by ln(D / df), summed over documents
  frequency  -- raw token counts across the whole batch
  ngram      -- counts of contiguous token windows (n in [min_n, max_n])

Candidates come back sorted by score, highest first.
"""

import logging
import math
import re
from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence, Union

from .models import TopicCandidate
from .tuning import (
    ExtractionSettings,
    check_ngram_range,
    check_positive_int,
    resolve_method,
)

logger = logging.getLogger(__name__)

# Built-in Dutch + English stop words; callers add their own on top.
DEFAULT_STOP_WORDS = frozenset({
    "de", "het", "een", "en", "is", "dat", "in", "op", "voor", "met", "van", "te", "aan",
    "the", "a", "an", "and", "that", "on", "for", "with", "to", "of", "at",
})

_NON_WORD = re.compile(r"[^\w\s]")


def build_stop_words(extra: Optional[Iterable[str]] = None) -> frozenset:
    """Union of the built-in list and caller-supplied words (lower-cased)."""
    if not extra:
        return DEFAULT_STOP_WORDS
    return DEFAULT_STOP_WORDS | {w.strip().lower() for w in extra if w and w.strip()}


def tokenize(text: Optional[str], stop_words: Optional[frozenset] = None) -> List[str]:
    """
    Lower-case, turn punctuation into spaces, split on whitespace, and drop
    single-character tokens and stop words.
    """
    if not text:
        return []
    if stop_words is None:
        stop_words = DEFAULT_STOP_WORDS
    clean = _NON_WORD.sub(" ", text.lower())
    return [t for t in clean.split() if len(t) > 1 and t not in stop_words]


def inverse_document_frequency(tokenized_documents: Sequence[Sequence[str]]) -> Dict[str, float]:
    """idf(t) = ln(D / df(t)); D counts every document, blank ones included."""
    total = len(tokenized_documents)
    doc_freq = Counter()
    for tokens in tokenized_documents:
        doc_freq.update(set(tokens))
    return {term: math.log(total / df) for term, df in doc_freq.items()}


def _top(scores: Dict[str, float], max_topics: int, min_score: Optional[float] = None):
    items = scores.items()
    if min_score is not None:
        items = [(term, score) for term, score in items if score >= min_score]
    # sorted() is stable, so equal scores keep first-seen order
    return sorted(items, key=lambda kv: kv[1], reverse=True)[:max_topics]


def _tfidf(tokenized: List[List[str]], max_topics: int) -> List[TopicCandidate]:
    idf = inverse_document_frequency(tokenized)
    scores: Dict[str, float] = {}
    for tokens in tokenized:
        for term, tf in Counter(tokens).items():
            scores[term] = scores.get(term, 0.0) + tf * idf[term]

    return [
        TopicCandidate(label=term, score=score, method="tfidf")
        for term, score in _top(scores, max_topics)
    ]


def _frequency(tokenized: List[List[str]], min_frequency: int,
               max_topics: int) -> List[TopicCandidate]:
    counts = Counter()
    for tokens in tokenized:
        counts.update(tokens)

    return [
        TopicCandidate(label=term, score=float(count), method="frequency")
        for term, count in _top(counts, max_topics, min_score=min_frequency)
    ]


def _ngrams(tokenized: List[List[str]], min_n: int, max_n: int,
            min_frequency: int, max_topics: int) -> List[TopicCandidate]:
    counts = Counter()
    for tokens in tokenized:
        for n in range(min_n, max_n + 1):
            for i in range(len(tokens) - n + 1):
                counts[" ".join(tokens[i:i + n])] += 1

    return [
        TopicCandidate(label=gram, score=float(count), method="ngram",
                       words=len(gram.split(" ")))
        for gram, count in _top(counts, max_topics, min_score=min_frequency)
    ]


def extract_topics(documents: Union[str, Sequence[Optional[str]]],
                   method: str = "tfidf",
                   min_frequency: int = 2,
                   max_topics: int = 50,
                   min_n: int = 1,
                   max_n: int = 2,
                   stop_words: Optional[Iterable[str]] = None) -> List[TopicCandidate]:
    """
    Extract topic candidates from a batch of documents.

    Args:
        documents: Texts to analyze (a single string is treated as one document).
        method: "tfidf", "frequency" (alias "count") or "ngram".
        min_frequency: Minimum count for frequency/ngram candidates.
        max_topics: Maximum number of candidates returned.
        min_n, max_n: Inclusive n-gram size range (ngram method only).
        stop_words: Extra stop words on top of the built-in list.

    Returns:
        Candidates sorted by score descending; empty when no document has tokens.

    Raises:
        ConfigValidationError: On an unknown method or invalid counts/ranges.
    """
    method = resolve_method(method)
    check_positive_int("min_frequency", min_frequency)
    check_positive_int("max_topics", max_topics)
    check_ngram_range(min_n, max_n)

    if isinstance(documents, str):
        documents = [documents]

    stops = build_stop_words(stop_words)
    tokenized = [tokenize(doc, stops) for doc in (documents or [])]

    if not any(tokenized):
        logger.debug("No tokens in any document, nothing to extract")
        return []

    if method == "tfidf":
        candidates = _tfidf(tokenized, max_topics)
    elif method == "ngram":
        candidates = _ngrams(tokenized, min_n, max_n, min_frequency, max_topics)
    else:
        candidates = _frequency(tokenized, min_frequency, max_topics)

    logger.debug(
        f"Extracted {len(candidates)} {method} candidates from {len(tokenized)} documents"
    )
    return candidates


class TopicExtractor:
    """Extracts topic candidates using one ExtractionSettings configuration."""

    def __init__(self, settings: Optional[ExtractionSettings] = None):
        self.settings = settings or ExtractionSettings()

    def extract(self, documents: Union[str, Sequence[Optional[str]]]) -> List[TopicCandidate]:
        s = self.settings
        return extract_topics(
            documents,
            method=s.method,
            min_frequency=s.min_frequency,
            max_topics=s.max_topics,
            min_n=s.min_n,
            max_n=s.max_n,
            stop_words=s.stop_words,
        )

    def extract_from_mentions(self, mentions) -> List[TopicCandidate]:
        """Run extraction over the text of mentions that carry any."""
        return self.extract([m.text for m in mentions if m.text])
