"""
Metadata enrichment with confidence scoring

EnrichmentClient looks a release up in the metadata cache, then in each
enabled catalog source, scores every candidate against the local tags and
returns the best one. Results, including "no match", are cached.
"""

import dataclasses
import logging
import threading
from typing import Dict, List, Optional, Tuple

from ..core.constants import (
    DEFAULT_SCORING_WEIGHTS, EXACT_MATCH_SCORE, CONTAINS_MATCH_SCORE,
    TOKEN_OVERLAP_FACTOR, YEAR_TOLERANCE, YEAR_NEAR_SCORE, PLACEHOLDER_ARTISTS,
    METADATA_CACHE_TTL_HOURS,
)
from ..core.exceptions import EnrichmentError, ConfigurationError
from ..core.models import MetadataRecord
from ..core.state_store import StateStore
from ..utils.naming import normalize_text, tokenize
from .api_services import MetadataSource


def text_similarity(local: Optional[str], remote: Optional[str]) -> float:
    """Exact 1.0, containment 0.7, otherwise scaled token overlap"""
    a, b = normalize_text(local), normalize_text(remote)
    if not a or not b:
        return 0.0
    if a == b:
        return EXACT_MATCH_SCORE
    if a in b or b in a:
        return CONTAINS_MATCH_SCORE

    tokens_a, tokens_b = tokenize(local), tokenize(remote)
    if not tokens_a or not tokens_b:
        return 0.0
    overlap = len(tokens_a & tokens_b) / len(tokens_a | tokens_b)
    return overlap * TOKEN_OVERLAP_FACTOR


def year_similarity(local: Optional[int], remote: Optional[int]) -> float:
    if not local or not remote:
        return 0.0
    if local == remote:
        return EXACT_MATCH_SCORE
    if abs(local - remote) <= YEAR_TOLERANCE:
        return YEAR_NEAR_SCORE
    return 0.0


class MatchScorer:
    """
    Weighted similarity between local metadata and a catalog candidate.

    Weights must cover title, artist, year and label, be non-negative and
    sum to 1.0. Fields absent from the local record are left out and the
    remaining weights renormalized, so the score always lies in [0, 1].
    """

    FIELDS = ('title', 'artist', 'year', 'label')

    def __init__(self, weights: Optional[Dict[str, float]] = None):
        weights = dict(weights or DEFAULT_SCORING_WEIGHTS)
        missing = set(self.FIELDS) - set(weights)
        if missing:
            raise ConfigurationError(f"Scoring weights missing: {', '.join(sorted(missing))}")
        if any(weights[f] < 0 for f in self.FIELDS):
            raise ConfigurationError("Scoring weights must be non-negative")
        total = sum(weights[f] for f in self.FIELDS)
        if abs(total - 1.0) > 1e-6:
            raise ConfigurationError(f"Scoring weights must sum to 1.0, got {total:.4f}")
        self.weights = {f: weights[f] for f in self.FIELDS}

    def score(self, local: MetadataRecord, candidate: MetadataRecord) -> float:
        parts = {
            'title': (local.album_title, lambda: text_similarity(local.album_title, candidate.album_title)),
            'artist': (local.artist, lambda: text_similarity(local.artist, candidate.artist)),
            'year': (local.year, lambda: year_similarity(local.year, candidate.year)),
            'label': (local.label, lambda: text_similarity(local.label, candidate.label)),
        }

        weighted = 0.0
        available = 0.0
        for name, (local_value, similarity) in parts.items():
            if not local_value:
                continue
            available += self.weights[name]
            weighted += self.weights[name] * similarity()

        if available <= 0:
            return 0.0
        return max(0.0, min(1.0, weighted / available))


def cache_key(artist: Optional[str], title: Optional[str], year: Optional[int]) -> str:
    return f"{normalize_text(artist)}_{normalize_text(title)}_{year or ''}"


def apply_enrichment(local: MetadataRecord, record: Optional[MetadataRecord],
                     threshold: float) -> Tuple[MetadataRecord, bool]:
    """
    Merge an enrichment result into the local record when it clears the threshold.

    Returns:
        (record to use, whether enrichment was applied)
    """
    if record is None or record.confidence < threshold:
        return local, False

    merged = dataclasses.replace(local)
    for field in ('artist', 'album_title', 'year', 'label', 'catalog_number', 'genre',
                  'style', 'series', 'source_id'):
        value = getattr(record, field)
        if value:
            setattr(merged, field, value)
    merged.remix_artists = list(record.remix_artists or local.remix_artists)
    merged.track_artists = list(local.track_artists)
    merged.confidence = record.confidence
    merged.source_name = record.source_name
    return merged, True


class EnrichmentClient:
    """
    Queries catalog sources for the best match of a local release.

    Features:
    - Cache first (positive and negative entries, TTL)
    - Per-source token buckets shared across workers
    - Weighted confidence scoring
    """

    def __init__(self, sources: List[MetadataSource], state_store: StateStore,
                 scorer: Optional[MatchScorer] = None,
                 cache_ttl_hours: float = METADATA_CACHE_TTL_HOURS,
                 placeholder_artists: Optional[List[str]] = None):
        self.sources = [s for s in sources if s.enabled]
        self.state_store = state_store
        self.scorer = scorer or MatchScorer()
        self.cache_ttl_seconds = cache_ttl_hours * 3600
        self.placeholder_artists = {a.lower() for a in (placeholder_artists or PLACEHOLDER_ARTISTS)}
        self.logger = logging.getLogger(__name__)
        self.stats = {'cache_hits': 0, 'lookups': 0, 'matches': 0, 'errors': 0}
        self._stats_lock = threading.Lock()

    def _count(self, name: str):
        with self._stats_lock:
            self.stats[name] += 1

    @property
    def enabled(self) -> bool:
        return bool(self.sources)

    def can_enrich(self, artist: Optional[str], title: Optional[str]) -> bool:
        if not title or not title.strip():
            return False
        if not artist or artist.strip().lower() in self.placeholder_artists:
            return False
        return True

    def enrich(self, artist: Optional[str], title: Optional[str], year: Optional[int] = None,
               label: Optional[str] = None) -> Optional[MetadataRecord]:
        """
        Find the best catalog match.

        Returns:
            Best candidate with confidence set, or None when nothing matched
            or the input is too sparse to query.

        Raises:
            EnrichmentError: every queried source failed
        """
        if not self.enabled or not self.can_enrich(artist, title):
            return None

        key = cache_key(artist, title, year)
        found, cached = self.state_store.cache_get(key)
        if found:
            self._count('cache_hits')
            self.logger.debug(f"Metadata cache hit for {artist} - {title}")
            return MetadataRecord.from_dict(cached) if cached else None

        local = MetadataRecord(artist=artist, album_title=title, year=year, label=label)
        self._count('lookups')

        best: Optional[MetadataRecord] = None
        best_source: Optional[MetadataSource] = None
        failures: List[EnrichmentError] = []

        for source in self.sources:
            try:
                candidates = source.search(artist, title, year)
            except EnrichmentError as e:
                self.logger.warning(f"⚠️ {source.name} lookup failed for {artist} - {title}: {e}")
                failures.append(e)
                continue

            for candidate in candidates:
                candidate.confidence = round(self.scorer.score(local, candidate), 4)
                if best is None or candidate.confidence > best.confidence:
                    best, best_source = candidate, source

        if failures and len(failures) == len(self.sources):
            self._count('errors')
            raise EnrichmentError(
                "; ".join(str(f) for f in failures),
                source=",".join(f.source or '' for f in failures)
            )

        if best is not None and best.confidence <= 0:
            best = None

        if best is not None:
            try:
                best = best_source.fetch_details(best)
            except EnrichmentError as e:
                self.logger.warning(f"⚠️ Could not fetch release details from {best_source.name}: {e}")
            self._count('matches')
            self.logger.info(f"🔍 {artist} - {title}: {best.source_name} match "
                             f"'{best.artist} - {best.album_title}' ({best.confidence:.2f})")

        # Negative results are cached only when every source answered
        if best is not None or not failures:
            self.state_store.cache_put(key, best.to_dict() if best else None, self.cache_ttl_seconds)

        return best
