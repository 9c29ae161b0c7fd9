"""
Journal replay and crash recovery

Rollback moves files from their journaled destination back to their
source, newest entry first, and appends a rolled_back entry for each.
It halts at the first entry whose destination is missing or was modified
after the move instead of skipping it.
"""

import logging
import os
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Any

from .exceptions import RollbackError
from .models import MoveOperation, MoveStatus
from .state_store import StateStore
from ..utils.fileops import transfer_file, remove_empty_parents
from ..utils.integrity import IntegrityStatus, FileFingerprint, check_file
from ..utils.naming import generate_id


@dataclass
class RollbackResult:
    """Outcome for a single journal entry"""
    operation_id: str
    source_path: str
    dest_path: str
    success: bool
    error: Optional[str] = None


@dataclass
class RollbackReport:
    """Per-operation results of a rollback command"""
    batch_id: Optional[str] = None
    operation_id: Optional[str] = None
    dry_run: bool = False
    results: List[RollbackResult] = field(default_factory=list)
    halted: bool = False
    error: Optional[str] = None

    @property
    def restored(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['restored'] = self.restored
        data['failed'] = self.failed
        return data


class RollbackManager:
    """
    Replays the move journal backwards.

    Features:
    - Batch or single-operation scope
    - Size/mtime verification before every restore
    - Dry-run preview
    - Recovery of entries left pending by a crash
    """

    def __init__(self, state_store: StateStore, force_copy: bool = False,
                 cleanup_empty_dirs: bool = True, protected_roots: Optional[List[str]] = None):
        self.state_store = state_store
        self.protected_roots = [os.path.abspath(r) for r in (protected_roots or [])]
        self.force_copy = force_copy
        self.cleanup_empty_dirs = cleanup_empty_dirs
        self.logger = logging.getLogger(__name__)

    def rollback(self, batch_id: Optional[str] = None, operation_id: Optional[str] = None,
                 dry_run: bool = False) -> RollbackReport:
        """
        Roll back a batch or a single operation.

        Returns:
            RollbackReport; report.halted is set when an inconsistency stopped the replay
        """
        if not batch_id and not operation_id:
            raise ValueError("rollback needs a batch_id or an operation_id")

        report = RollbackReport(batch_id=batch_id, operation_id=operation_id, dry_run=dry_run)

        if operation_id:
            operation = self.state_store.get_operation(operation_id)
            problem = None
            if operation is None:
                problem = f"Unknown operation {operation_id}"
            elif operation.status != MoveStatus.COMPLETED:
                problem = f"Operation {operation_id} is {operation.status.value}, only completed moves can be rolled back"
            elif self.state_store.is_rolled_back(operation_id):
                problem = f"Operation {operation_id} was already rolled back"
            if problem:
                report.halted = True
                report.error = problem
                self.logger.error(f"❌ {problem}")
                return report

        operations = self.state_store.get_rollback_candidates(batch_id=batch_id, operation_id=operation_id)
        scope = f"batch {batch_id}" if batch_id else f"operation {operation_id}"
        self.logger.info(f"Rolling back {len(operations)} moves of {scope}"
                         f"{' (dry run)' if dry_run else ''}")

        return self._replay(operations, report)

    def revert(self, operations: List[MoveOperation]) -> RollbackReport:
        """Undo specific completed moves, newest first (used for partial album moves)"""
        ordered = sorted(operations, key=lambda op: (op.timestamp, op.seq or 0), reverse=True)
        return self._replay(ordered, RollbackReport())

    def _replay(self, operations: List[MoveOperation], report: RollbackReport) -> RollbackReport:
        touched_dirs = set()

        for operation in operations:
            try:
                self._verify(operation)
                if not report.dry_run:
                    transfer_file(operation.dest_path, operation.source_path, force_copy=self.force_copy)
                    self.state_store.record_rollback(operation, generate_id())
                    touched_dirs.add(os.path.dirname(operation.dest_path))
            except (RollbackError, OSError) as e:
                error = e if isinstance(e, RollbackError) else RollbackError(
                    f"Cannot restore {operation.dest_path}: {e}", operation.operation_id)
                report.results.append(RollbackResult(
                    operation.operation_id, operation.source_path, operation.dest_path,
                    success=False, error=str(error)
                ))
                report.halted = True
                report.error = str(error)
                self.logger.error(f"❌ Rollback halted at {operation.operation_id}: {error}")
                break

            report.results.append(RollbackResult(
                operation.operation_id, operation.source_path, operation.dest_path, success=True
            ))
            self.logger.debug(f"Restored {operation.dest_path} -> {operation.source_path}")

        if self.cleanup_empty_dirs:
            for directory in sorted(touched_dirs, reverse=True):
                remove_empty_parents(directory, stop_at=self._root_for(directory))

        if not report.halted:
            self.logger.info(f"✅ Rollback finished: {report.restored} restored")
        return report

    def _root_for(self, directory: str) -> Optional[str]:
        for root in self.protected_roots:
            if directory.startswith(root + os.sep):
                return root
        return None

    def _verify(self, operation: MoveOperation):
        """Raise RollbackError unless the destination is exactly as journaled"""
        status = check_file(operation.dest_path, operation.dest_fingerprint)
        if status == IntegrityStatus.MISSING:
            raise RollbackError(f"Destination missing: {operation.dest_path}", operation.operation_id)
        if status == IntegrityStatus.MODIFIED:
            raise RollbackError(f"Destination modified since move: {operation.dest_path}",
                                operation.operation_id)
        if status == IntegrityStatus.INACCESSIBLE:
            raise RollbackError(f"Destination not accessible: {operation.dest_path}", operation.operation_id)
        if os.path.lexists(operation.source_path):
            raise RollbackError(f"Original path is occupied: {operation.source_path}", operation.operation_id)

    def recover_pending(self) -> Dict[str, int]:
        """
        Resolve journal entries left pending by an interrupted run.

        A pending entry whose file already sits at the destination (and no
        longer at the source) is completed; anything else is marked failed.
        """
        recovered = {'completed': 0, 'failed': 0}

        for operation in self.state_store.get_pending_moves():
            source_exists = os.path.lexists(operation.source_path)
            dest_exists = os.path.lexists(operation.dest_path)

            if dest_exists and not source_exists:
                fp = FileFingerprint.of(operation.dest_path)
                self.state_store.mark_move_completed(operation.operation_id, fp.size, fp.mtime, fp.digest)
                recovered['completed'] += 1
                self.logger.info(f"Recovered interrupted move {operation.operation_id} as completed")
            else:
                reason = "interrupted before move" if source_exists else "file lost during interrupted move"
                self.state_store.mark_move_failed(operation.operation_id, reason)
                recovered['failed'] += 1
                self.logger.warning(f"⚠️ Interrupted move {operation.operation_id}: {reason}")

        return recovered
