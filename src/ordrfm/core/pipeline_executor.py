"""
Album Pipeline

Runs one album through scan -> classify -> enrich -> decide -> move,
strictly in that order. Cancellation is checked before every stage, never
in the middle of a filesystem move. Per-album problems are returned as an
AlbumResult; only FatalError and JobCancelledError escape.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .classifier import AlbumScanner, Classifier, classify_quality
from .decision_engine import DecisionEngine
from .exceptions import (
    ScanError, ClassificationError, EnrichmentError, DecisionAmbiguityError,
    MoveError, FatalError, JobCancelledError,
)
from .models import (
    AlbumDirectory, AlbumOutcome, MetadataRecord, MoveOperation, OrganizationDecision,
    OrganizationMode, QualityClass,
)
from .move_executor import MoveExecutor
from .state_store import StateStore
from ..metadata.enrichment import EnrichmentClient, apply_enrichment
from ..utils.integrity import directory_content_hash


@dataclass
class PipelineOptions:
    """Per-batch switches"""
    batch_id: str
    dry_run: bool = True
    enrichment_enabled: bool = True
    mode: Optional[str] = None
    incremental: bool = True
    scan_root: Optional[str] = None


@dataclass
class AlbumResult:
    """What happened to one album"""
    album_path: str
    outcome: AlbumOutcome
    decision: Optional[OrganizationDecision] = None
    operations: List[MoveOperation] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class AlbumPipeline:
    """Classifier -> EnrichmentClient -> DecisionEngine -> MoveExecutor for one album"""

    def __init__(self, scanner: AlbumScanner, classifier: Classifier,
                 decision_engine: DecisionEngine, move_executor: MoveExecutor,
                 state_store: StateStore, enrichment_client: Optional[EnrichmentClient] = None,
                 confidence_threshold: float = 0.7):
        self.scanner = scanner
        self.classifier = classifier
        self.decision_engine = decision_engine
        self.move_executor = move_executor
        self.state_store = state_store
        self.enrichment_client = enrichment_client
        self.confidence_threshold = confidence_threshold
        self.logger = logging.getLogger(__name__)

    def process(self, album_path: str, options: PipelineOptions,
                is_cancelled: Callable[[], bool] = lambda: False) -> AlbumResult:
        """
        Process one album directory.

        Raises:
            JobCancelledError: cancellation was requested before a stage
            FatalError: state store unavailable or disk full
        """
        def checkpoint(stage: str):
            if is_cancelled():
                raise JobCancelledError(f"Cancelled before {stage}: {album_path}")

        result = AlbumResult(album_path=album_path, outcome=AlbumOutcome.FAILED)

        # Scan
        checkpoint("scan")
        try:
            album = self.scanner.scan(album_path)
            content_hash = directory_content_hash(album.path)
        except (ScanError, OSError) as e:
            result.outcome = AlbumOutcome.SKIPPED
            result.errors.append(f"ScanError: {e}")
            self.logger.warning(f"⚠️ Skipping unreadable album {album_path}: {e}")
            return result

        if options.incremental and self.state_store.is_directory_processed(album.path, content_hash):
            result.outcome = AlbumOutcome.SKIPPED
            result.warnings.append("already processed (unchanged since last run)")
            self.logger.debug(f"Incremental skip: {album.path}")
            return result

        # Classify
        checkpoint("classify")
        quality: Optional[QualityClass] = None
        metadata: Optional[MetadataRecord] = None
        decision: Optional[OrganizationDecision] = None
        try:
            quality, metadata = self.classifier.classify(album)
        except ClassificationError as e:
            result.warnings.append(f"ClassificationError: {e}; routed to unsorted")
            decision = self.decision_engine.unsorted_decision(album, str(e))

        # Enrich
        if decision is None:
            checkpoint("enrich")
            metadata = self._enrich(metadata, options, result)

        # Decide
        if decision is None:
            checkpoint("decide")
            try:
                decision = self.decision_engine.decide(album, quality, metadata, mode=options.mode)
            except DecisionAmbiguityError as e:
                result.warnings.append(f"DecisionAmbiguityError: {e}; routed to unsorted")
                decision = self.decision_engine.unsorted_decision(
                    album, str(e), trace=e.rule_trace, quality=quality, metadata=metadata
                )

        result.decision = decision

        # Move
        checkpoint("move")
        return self._move(album, quality, decision, content_hash, options, result)

    def _enrich(self, metadata: MetadataRecord, options: PipelineOptions,
                result: AlbumResult) -> MetadataRecord:
        client = self.enrichment_client
        if not options.enrichment_enabled or client is None or not client.enabled:
            return metadata

        try:
            match = client.enrich(metadata.artist, metadata.album_title, metadata.year, metadata.label)
        except EnrichmentError as e:
            result.warnings.append(f"EnrichmentError: {e}; using local tags")
            return metadata

        enriched, applied = apply_enrichment(metadata, match, self.confidence_threshold)
        if match is not None and not applied:
            result.warnings.append(
                f"{match.source_name} match confidence {match.confidence:.2f} below "
                f"threshold {self.confidence_threshold:.2f}; not applied"
            )
        return enriched

    def _move(self, album: AlbumDirectory, quality: Optional[QualityClass],
              decision: OrganizationDecision, content_hash: str,
              options: PipelineOptions, result: AlbumResult) -> AlbumResult:
        unsorted = decision.mode == OrganizationMode.UNSORTED
        executor = self.move_executor

        with executor.destination_lock(decision.destination_path):
            if unsorted:
                destination = decision.destination_path
                if os.path.exists(destination):
                    destination = executor.free_directory(destination)
            else:
                destination = executor.resolve_destination(
                    album, quality, decision.destination_path, decision.rule_trace,
                    scan=self.scanner.scan,
                    classify_quality=lambda a: classify_quality(f.format for f in a.audio_files),
                )

            if destination is None:
                result.outcome = AlbumOutcome.SKIPPED
                result.warnings.append(decision.rule_trace[-1])
                if not options.dry_run:
                    self.state_store.mark_directory_processed(
                        album.path, content_hash, options.batch_id, result.outcome.value
                    )
                return result

            decision.destination_path = destination

            if options.dry_run:
                result.outcome = AlbumOutcome.UNSORTED if unsorted else AlbumOutcome.PLANNED
                self.logger.info(f"[DRY RUN] {album.path} -> {destination} ({decision.mode.value})")
                return result

            try:
                result.operations = executor.move_album(album, destination, options.batch_id,
                                                        scan_root=options.scan_root)
            except FatalError:
                raise
            except MoveError as e:
                result.outcome = AlbumOutcome.FAILED
                result.errors.append(f"MoveError: {e}")
                self.logger.error(f"❌ {e}")
                return result

        if not unsorted:
            md = decision.metadata
            self.state_store.record_album({
                'source_path': album.path,
                'dest_path': destination,
                'artist': md.artist,
                'title': md.album_title,
                'year': md.year,
                'label': md.label,
                'catalog_number': md.catalog_number,
                'genre': md.genre,
                'quality': quality.value,
                'organization_mode': decision.mode.value,
                'confidence': md.confidence,
                'metadata_source': md.source_name,
                'batch_id': options.batch_id,
            })

        result.outcome = AlbumOutcome.UNSORTED if unsorted else AlbumOutcome.ORGANIZED
        self.state_store.mark_directory_processed(album.path, content_hash, options.batch_id,
                                                  result.outcome.value)
        return result
