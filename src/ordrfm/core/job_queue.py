"""
Job Queue, Registry and Worker Pool

JobQueue is a FIFO of job ids; claim() hands each id to exactly one worker.
JobRegistry owns every Job object and serializes all mutations behind one
lock, so status snapshots are always internally consistent.
WorkerPool runs N worker loops on a ThreadPoolExecutor until the queue is
drained or a stop is requested.
"""

import logging
import queue
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Deque, Dict, List, Optional

from .constants import JOB_HISTORY_SIZE, MAX_WORKER_THREADS
from .exceptions import FatalError
from .models import Job, JobStatus
from ..utils.naming import generate_id


class JobQueue:
    """Thread-safe FIFO of job ids"""

    def __init__(self):
        self._queue: "queue.Queue[str]" = queue.Queue()

    def put(self, job_id: str):
        self._queue.put(job_id)

    def claim(self) -> Optional[str]:
        """Remove and return the oldest job id, or None when empty"""
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def drain(self) -> List[str]:
        """Remove and return every remaining job id"""
        remaining = []
        while True:
            job_id = self.claim()
            if job_id is None:
                return remaining
            remaining.append(job_id)

    def __len__(self) -> int:
        return self._queue.qsize()


class JobRegistry:
    """
    All known jobs plus a bounded history of finished batches.

    Jobs are mutated only through update()/transition() so readers on other
    threads never see a half-applied change.
    """

    def __init__(self, history_size: int = JOB_HISTORY_SIZE):
        self._jobs: Dict[str, Job] = {}
        self._history: Deque[Dict[str, Any]] = deque(maxlen=history_size)
        self._finished: Dict[str, threading.Event] = {}
        self._lock = threading.RLock()

    # ===== CREATION =====

    def create_batch(self, source_directory: str, options: Dict[str, Any]) -> Job:
        job = Job(id=generate_id(), source_directory=source_directory, options=dict(options))
        with self._lock:
            self._jobs[job.id] = job
            self._finished[job.id] = threading.Event()
        return job

    def create_child(self, parent: Job, album_directory: str) -> Job:
        child = Job(id=generate_id(), album_directory=album_directory, parent_id=parent.id,
                    source_directory=parent.source_directory, options=parent.options, total_count=1)
        with self._lock:
            self._jobs[child.id] = child
            self._finished[child.id] = threading.Event()
            parent.child_ids.append(child.id)
            parent.total_count = len(parent.child_ids)
        return child

    # ===== MUTATION =====

    def update(self, job: Job, **changes) -> Dict[str, Any]:
        """Apply attribute changes atomically; returns the resulting progress event"""
        with self._lock:
            for name, value in changes.items():
                setattr(job, name, value)
            return job.to_event()

    def transition(self, job: Job, status: JobStatus, **changes) -> Dict[str, Any]:
        """
        Move a job to a new status.

        Terminal statuses are final; a second transition out of one is ignored.
        """
        with self._lock:
            if job.status.is_terminal:
                return job.to_event()

            for name, value in changes.items():
                setattr(job, name, value)
            job.status = status

            now = time.time()
            if status == JobStatus.RUNNING and job.started_at is None:
                job.started_at = now
            if status.is_terminal:
                job.finished_at = now
                if job.is_batch:
                    if len(self._history) == self._history.maxlen:
                        self._forget(self._history[0]['jobId'])
                    self._history.append(job.to_dict())
                self._finished[job.id].set()
            return job.to_event()

    def _forget(self, batch_id: str):
        """Drop a batch that fell out of the history, together with its children"""
        batch = self._jobs.pop(batch_id, None)
        self._finished.pop(batch_id, None)
        for child_id in (batch.child_ids if batch else []):
            self._jobs.pop(child_id, None)
            self._finished.pop(child_id, None)

    def record_child_result(self, parent: Job, child: Job) -> Dict[str, Any]:
        """Fold a finished child into its parent's counters and messages"""
        with self._lock:
            parent.processed_count += 1
            name = child.album_directory
            parent.errors.extend(f"{name}: {e}" for e in child.errors)
            parent.warnings.extend(f"{name}: {w}" for w in child.warnings)
            return parent.to_event()

    def request_cancel(self, job_id: str) -> bool:
        """
        Flag a job (and, for a batch, all of its children) for cancellation.

        Returns:
            False when the job is unknown or already finished
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status.is_terminal:
                return False
            job.cancel_requested = True
            for child_id in job.child_ids:
                child = self._jobs[child_id]
                if not child.status.is_terminal:
                    child.cancel_requested = True
            return True

    # ===== QUERIES =====

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def snapshot(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.to_dict() if job else None

    def children(self, parent: Job) -> List[Job]:
        with self._lock:
            return [self._jobs[c] for c in parent.child_ids]

    def list_active(self) -> List[Dict[str, Any]]:
        """Batches that are queued or running"""
        with self._lock:
            return [j.to_dict() for j in self._jobs.values()
                    if j.is_batch and not j.status.is_terminal]

    def history(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Finished batches, most recent first"""
        with self._lock:
            items = list(reversed(self._history))
        return items[:limit] if limit else items

    def wait(self, job_id: str, timeout: Optional[float] = None) -> bool:
        with self._lock:
            event = self._finished.get(job_id)
        if event is None:
            raise KeyError(job_id)
        return event.wait(timeout)


class WorkerPool:
    """
    Fixed number of worker loops pulling from a JobQueue.

    A FatalError raised by the handler stops every loop; the first one is
    re-raised from run() once all workers have exited.
    """

    def __init__(self, worker_count: int, handler: Callable[[str], None],
                 name: str = "ordrfm-worker"):
        self.worker_count = max(1, min(worker_count, MAX_WORKER_THREADS))
        self.handler = handler
        self.name = name
        self.logger = logging.getLogger(__name__)
        self._stop = threading.Event()
        self._fatal: Optional[FatalError] = None
        self._fatal_lock = threading.Lock()

    def stop(self):
        self._stop.set()

    @property
    def fatal_error(self) -> Optional[FatalError]:
        return self._fatal

    def run(self, job_queue: JobQueue, should_stop: Callable[[], bool] = lambda: False):
        """Block until the queue is drained or a stop was requested"""
        def worker_loop():
            while not self._stop.is_set() and not should_stop():
                job_id = job_queue.claim()
                if job_id is None:
                    return
                try:
                    self.handler(job_id)
                except FatalError as e:
                    with self._fatal_lock:
                        if self._fatal is None:
                            self._fatal = e
                    self._stop.set()
                    self.logger.error(f"❌ Fatal error in worker, stopping batch: {e}")
                    return

        self.logger.debug(f"Starting {self.worker_count} workers")
        with ThreadPoolExecutor(max_workers=self.worker_count, thread_name_prefix=self.name) as executor:
            futures = [executor.submit(worker_loop) for _ in range(self.worker_count)]
            for future in futures:
                future.result()

        if self._fatal is not None:
            raise self._fatal
