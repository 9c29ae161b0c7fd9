"""
Organization Service

Entry point for callers (CLI or embedding code). Accepts a source directory
plus options, fans it out into one child job per album directory, runs the
children on a worker pool and reports progress to registered listeners.
"""

import logging
import os
import threading
from typing import Any, Callable, Dict, List, Optional

from .classifier import AlbumScanner, Classifier
from .config_manager import OrdrConfig, ORGANIZATION_MODES
from .decision_engine import DecisionEngine
from .exceptions import ConfigurationError, FatalError, JobCancelledError, ScanError
from .job_queue import JobQueue, JobRegistry, WorkerPool
from .models import AlbumOutcome, BatchSummary, Job, JobStatus
from .move_executor import MoveExecutor
from .pipeline_executor import AlbumPipeline, PipelineOptions
from .rollback import RollbackManager
from .state_store import StateStore
from ..metadata.api_services import DiscogsService, MusicBrainzService, MetadataSource
from ..metadata.enrichment import EnrichmentClient, MatchScorer
from ..metadata.rate_limiter import get_rate_limiter_registry
from ..metadata.tag_reader import TagReader

ProgressCallback = Callable[[Dict[str, Any]], None]

_OPTION_ALIASES = {
    'dryRun': 'dry_run',
    'enrichmentEnabled': 'enrichment_enabled',
    'workerCount': 'worker_count',
}
_OPTION_KEYS = ('dry_run', 'enrichment_enabled', 'mode', 'worker_count', 'incremental')


def build_sources(config: OrdrConfig) -> List[MetadataSource]:
    """Catalog sources enabled in the configuration, sharing process-wide buckets"""
    enrichment = config.enrichment
    registry = get_rate_limiter_registry()
    common = {'timeout': enrichment.timeout, 'user_agent': enrichment.user_agent}
    sources: List[MetadataSource] = []

    if enrichment.discogs_enabled:
        bucket = registry.get('discogs', enrichment.discogs_rate_per_second, enrichment.discogs_bucket_size)
        sources.append(DiscogsService(bucket, enrichment.discogs_token, **common))
    if enrichment.musicbrainz_enabled:
        bucket = registry.get('musicbrainz', enrichment.musicbrainz_rate_per_second,
                              enrichment.musicbrainz_bucket_size)
        sources.append(MusicBrainzService(bucket, **common))

    return sources


class OrganizationService:
    """
    Job submission, control and rollback for album organization.

    Features:
    - One background thread per submitted batch, N pool workers per batch
    - Progress events every progress_interval albums and on every transition
    - Cooperative cancellation at stage boundaries
    - Bounded history of finished batches
    """

    def __init__(self, config: OrdrConfig, state_store: Optional[StateStore] = None,
                 enrichment_client: Optional[EnrichmentClient] = None,
                 tag_reader: Optional[TagReader] = None):
        self.config = config
        self.logger = logging.getLogger(__name__)

        self.state_store = state_store or StateStore(config.processing.state_db_path)
        organization = config.organization

        self.rollback_manager = RollbackManager(
            self.state_store,
            cleanup_empty_dirs=organization.cleanup_empty_dirs,
            protected_roots=[organization.destination_dir, organization.unsorted_dir],
        )
        self.move_executor = MoveExecutor(
            self.state_store, self.rollback_manager, cleanup_empty_dirs=organization.cleanup_empty_dirs
        )
        self.scanner = AlbumScanner(tag_reader or TagReader())
        self.decision_engine = DecisionEngine(organization, self.state_store)

        if enrichment_client is None:
            enrichment_client = EnrichmentClient(
                build_sources(config), self.state_store,
                scorer=MatchScorer(config.enrichment.scoring_weights),
                cache_ttl_hours=config.enrichment.cache_ttl_hours,
                placeholder_artists=organization.placeholder_artists,
            )
        self.enrichment_client = enrichment_client

        self.pipeline = AlbumPipeline(
            self.scanner, Classifier(), self.decision_engine, self.move_executor,
            self.state_store, enrichment_client,
            confidence_threshold=config.enrichment.confidence_threshold,
        )

        self.registry = JobRegistry(config.processing.history_size)
        self._listeners: List[ProgressCallback] = []
        self._listeners_lock = threading.Lock()
        self._threads: Dict[str, threading.Thread] = {}

    # ===== LISTENERS =====

    def add_listener(self, callback: ProgressCallback):
        with self._listeners_lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: ProgressCallback):
        with self._listeners_lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def _emit(self, event: Dict[str, Any]):
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                self.logger.warning(f"⚠️ Progress listener failed: {e}")

    # ===== SUBMISSION =====

    def normalize_options(self, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Fill defaults from config and accept camelCase keys"""
        raw = {_OPTION_ALIASES.get(k, k): v for k, v in (options or {}).items()}
        unknown = set(raw) - set(_OPTION_KEYS)
        if unknown:
            raise ConfigurationError(f"Unknown job options: {', '.join(sorted(unknown))}")

        normalized = {
            'dry_run': bool(raw.get('dry_run', self.config.processing.dry_run)),
            'enrichment_enabled': bool(raw.get('enrichment_enabled', self.config.enrichment.enabled)),
            'mode': raw.get('mode') or self.config.organization.organization_mode,
            'worker_count': self._worker_count(raw.get('worker_count')),
            'incremental': bool(raw.get('incremental', self.config.processing.incremental)),
        }
        if normalized['mode'] not in ORGANIZATION_MODES:
            raise ConfigurationError(f"Unknown organization mode: {normalized['mode']}")
        return normalized

    def _worker_count(self, requested: Optional[int]) -> int:
        if requested:
            if int(requested) < 1:
                raise ConfigurationError(f"worker_count must be >= 1, got {requested}")
            return int(requested)
        return max(1, min(os.cpu_count() or 1, self.config.processing.max_workers))

    def submit_job(self, source_directory: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, str]:
        """
        Queue a batch for a source directory and start it in the background.

        Returns:
            {"job_id": <batch job id>}

        Raises:
            ConfigurationError: invalid options
        """
        normalized = self.normalize_options(options)
        parent = self.registry.create_batch(os.path.abspath(source_directory), normalized)
        self._emit(parent.to_event())

        thread = threading.Thread(target=self._run_batch, args=(parent,),
                                  name=f"ordrfm-batch-{parent.id}", daemon=True)
        self._threads[parent.id] = thread
        thread.start()

        self.logger.info(f"Submitted batch {parent.id} for {parent.source_directory}"
                         f"{' (dry run)' if normalized['dry_run'] else ''}")
        return {'job_id': parent.id}

    def run(self, source_directory: str, options: Optional[Dict[str, Any]] = None) -> BatchSummary:
        """Submit a batch and block until it finishes"""
        job_id = self.submit_job(source_directory, options)['job_id']
        self.wait(job_id)
        return self.summary(job_id)

    # ===== BATCH EXECUTION =====

    def _run_batch(self, parent: Job):
        try:
            self._execute_batch(parent)
        finally:
            self._threads.pop(parent.id, None)

    def _execute_batch(self, parent: Job):
        options = parent.options
        self._emit(self.registry.transition(parent, JobStatus.RUNNING))

        try:
            albums = list(self.scanner.discover(parent.source_directory))
        except ScanError as e:
            self.logger.error(f"❌ Cannot scan {parent.source_directory}: {e}")
            self._emit(self.registry.transition(parent, JobStatus.FAILED,
                                                errors=parent.errors + [f"ScanError: {e}"]))
            return

        self.logger.info(f"🔍 Found {len(albums)} album directories in {parent.source_directory}")
        job_queue = JobQueue()
        for album_path in albums:
            child = self.registry.create_child(parent, album_path)
            job_queue.put(child.id)
        self._emit(parent.to_event())

        pipeline_options = PipelineOptions(
            batch_id=parent.id,
            dry_run=options['dry_run'],
            enrichment_enabled=options['enrichment_enabled'],
            mode=options['mode'],
            incremental=options['incremental'],
            scan_root=parent.source_directory,
        )
        pool = WorkerPool(options['worker_count'],
                          lambda child_id: self._process_child(parent, child_id, pipeline_options))

        fatal: Optional[FatalError] = None
        try:
            pool.run(job_queue, should_stop=lambda: parent.cancel_requested)
        except FatalError as e:
            fatal = e

        for child_id in job_queue.drain():
            child = self.registry.get(child_id)
            self._emit(self.registry.transition(child, JobStatus.CANCELLED, outcome=AlbumOutcome.CANCELLED))

        if fatal is not None:
            self._emit(self.registry.transition(parent, JobStatus.FAILED, current_album=None,
                                                errors=parent.errors + [f"{type(fatal).__name__}: {fatal}"]))
        elif parent.cancel_requested:
            self._emit(self.registry.transition(parent, JobStatus.CANCELLED, current_album=None))
        else:
            self._emit(self.registry.transition(parent, JobStatus.COMPLETED, current_album=None))

        summary = self.summary(parent.id)
        self.logger.info(f"✅ Batch {parent.id} {parent.status.value}: {summary.succeeded} succeeded, "
                         f"{summary.failed} failed, {summary.skipped} skipped, "
                         f"{summary.unsorted} unsorted, {summary.cancelled} cancelled")

    def _process_child(self, parent: Job, child_id: str, options: PipelineOptions):
        child = self.registry.get(child_id)
        if child.cancel_requested or parent.cancel_requested:
            self._finish_child(parent, child, JobStatus.CANCELLED, outcome=AlbumOutcome.CANCELLED)
            return

        self._emit(self.registry.transition(child, JobStatus.RUNNING, current_album=child.album_directory))
        self.registry.update(parent, current_album=child.album_directory)

        try:
            result = self.pipeline.process(
                child.album_directory, options,
                is_cancelled=lambda: child.cancel_requested or parent.cancel_requested,
            )
        except JobCancelledError as e:
            self.logger.info(str(e))
            self._finish_child(parent, child, JobStatus.CANCELLED, outcome=AlbumOutcome.CANCELLED)
            return
        except FatalError as e:
            self._finish_child(parent, child, JobStatus.FAILED, outcome=AlbumOutcome.FAILED,
                               errors=[f"{type(e).__name__}: {e}"])
            raise
        except Exception as e:
            self.logger.exception(f"❌ Unexpected error processing {child.album_directory}")
            self._finish_child(parent, child, JobStatus.FAILED, outcome=AlbumOutcome.FAILED,
                               errors=[f"{type(e).__name__}: {e}"])
            return

        status = JobStatus.FAILED if result.outcome == AlbumOutcome.FAILED else JobStatus.COMPLETED
        self._finish_child(parent, child, status, outcome=result.outcome, decision=result.decision,
                           errors=result.errors, warnings=result.warnings)

    def _finish_child(self, parent: Job, child: Job, status: JobStatus, **changes):
        self._emit(self.registry.transition(child, status, processed_count=1, current_album=None, **changes))
        event = self.registry.record_child_result(parent, child)

        interval = max(1, self.config.processing.progress_interval)
        if event['processedItems'] % interval == 0 or event['processedItems'] == event['totalItems']:
            self._emit(event)

    # ===== JOB CONTROL =====

    def cancel(self, job_id: str) -> bool:
        """Request cancellation; running albums stop at their next stage boundary"""
        cancelled = self.registry.request_cancel(job_id)
        if cancelled:
            self.logger.info(f"Cancellation requested for {job_id}")
            snapshot = self.registry.snapshot(job_id)
            self._emit({k: snapshot[k] for k in ('jobId', 'status', 'processedItems', 'totalItems',
                                                 'currentAlbum', 'errors', 'warnings')})
        return cancelled

    def status(self, job_id: str) -> Optional[Dict[str, Any]]:
        return self.registry.snapshot(job_id)

    def list_active(self) -> List[Dict[str, Any]]:
        return self.registry.list_active()

    def history(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return self.registry.history(limit)

    def wait(self, job_id: str, timeout: Optional[float] = None) -> bool:
        """Block until the job reaches a terminal status; False on timeout"""
        return self.registry.wait(job_id, timeout)

    def summary(self, job_id: str) -> BatchSummary:
        job = self.registry.get(job_id)
        if job is None:
            raise KeyError(job_id)
        if not job.is_batch:
            return BatchSummary.from_outcomes([job.outcome])
        return BatchSummary.from_outcomes([c.outcome for c in self.registry.children(job)])

    # ===== ROLLBACK & MAINTENANCE =====

    def rollback(self, command: Dict[str, Any], dry_run: bool = False) -> Dict[str, Any]:
        """
        Roll back a batch or a single move.

        Args:
            command: {"batchId": ...} or {"operationId": ...}
        """
        batch_id = command.get('batchId') or command.get('batch_id')
        operation_id = command.get('operationId') or command.get('operation_id')
        if bool(batch_id) == bool(operation_id):
            raise ValueError("rollback command needs exactly one of batchId or operationId")

        report = self.rollback_manager.rollback(batch_id=batch_id, operation_id=operation_id, dry_run=dry_run)
        return report.to_dict()

    def recover(self) -> Dict[str, int]:
        """Resolve journal entries left pending by an interrupted run and drop expired cache entries"""
        recovered = self.rollback_manager.recover_pending()
        recovered['cache_purged'] = self.state_store.purge_expired_cache()
        return recovered

    def shutdown(self, timeout: Optional[float] = None):
        """Cancel every active batch and wait for its thread to exit"""
        for job in self.list_active():
            self.cancel(job['jobId'])
        for thread in list(self._threads.values()):
            thread.join(timeout)

    def stats(self) -> Dict[str, Any]:
        stats = self.state_store.get_organization_stats()
        stats['batches'] = self.state_store.list_batches(limit=10)
        stats['enrichment'] = dict(self.enrichment_client.stats)
        stats['rate_limiters'] = {
            name: vars(state) for name, state in get_rate_limiter_registry().states().items()
        }
        return stats
