"""
Journaled album moves

Ordering for every file: pending journal row committed -> filesystem move
-> row marked completed (with a size/mtime fingerprint) or failed.
"""

import logging
import os
import threading
from contextlib import contextmanager
from typing import Callable, Dict, List, Optional, Tuple

from .exceptions import MoveError, DiskFullError
from .constants import AUDIO_FORMATS
from .models import AlbumDirectory, MoveOperation, MoveStatus, QualityClass
from .rollback import RollbackManager
from .state_store import StateStore
from ..utils.fileops import transfer_file, remove_empty_parents, is_disk_full
from ..utils.integrity import FileFingerprint
from ..utils.naming import generate_id


def album_quality_key(album: AlbumDirectory, quality: QualityClass) -> Tuple[int, int, int]:
    """(quality rank, average bitrate, track count) used to compare duplicates"""
    return quality.rank, album.average_bitrate, album.track_count


def existing_dominates(existing: Tuple[int, int, int], incoming: Tuple[int, int, int]) -> bool:
    """True when the existing copy is at least as good in every dimension"""
    return all(e >= i for e, i in zip(existing, incoming))


class MoveExecutor:
    """
    Moves album directories file by file under the journal.

    Features:
    - Rename within a volume, verified copy across volumes
    - Duplicate destination handling (skip or suffix)
    - Revert of already-moved files when an album move fails midway
    - Empty source directory cleanup
    """

    def __init__(self, state_store: StateStore, rollback_manager: Optional[RollbackManager] = None,
                 force_copy: bool = False, cleanup_empty_dirs: bool = True):
        self.state_store = state_store
        self.rollback_manager = rollback_manager or RollbackManager(state_store, force_copy=force_copy)
        self.force_copy = force_copy
        self.cleanup_empty_dirs = cleanup_empty_dirs
        self.logger = logging.getLogger(__name__)
        # destination key -> [lock, holders and waiters]
        self._dest_locks: Dict[str, list] = {}
        self._dest_locks_guard = threading.Lock()

    @contextmanager
    def destination_lock(self, destination: str):
        """Serialize duplicate resolution and moves into the same destination"""
        key = os.path.normcase(os.path.abspath(destination))
        with self._dest_locks_guard:
            entry = self._dest_locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._dest_locks_guard:
                entry[1] -= 1
                if not entry[1]:
                    del self._dest_locks[key]

    def resolve_destination(self, album: AlbumDirectory, quality: QualityClass, destination: str,
                            trace: List[str],
                            scan: Callable[[str], AlbumDirectory],
                            classify_quality: Callable[[AlbumDirectory], QualityClass]) -> Optional[str]:
        """
        Pick the directory to move into when the destination already holds music.

        Returns:
            destination (free), a suffixed sibling, or None to skip the album
        """
        if os.path.abspath(destination) == os.path.abspath(album.path):
            trace.append("duplicate: album already at destination")
            return None

        if not self._holds_audio(destination):
            return destination

        existing = scan(destination)
        existing_key = album_quality_key(existing, classify_quality(existing))
        incoming_key = album_quality_key(album, quality)

        if existing_dominates(existing_key, incoming_key):
            trace.append(f"duplicate: existing copy {existing_key} >= incoming {incoming_key}, skipped")
            return None

        candidate = self.free_directory(destination)
        trace.append(f"duplicate: incoming {incoming_key} not dominated by existing {existing_key}, "
                     f"moved to {os.path.basename(candidate)}")
        return candidate

    def move_album(self, album: AlbumDirectory, destination: str, batch_id: str,
                   scan_root: Optional[str] = None) -> List[MoveOperation]:
        """
        Move every file of an album into destination.

        Raises:
            MoveError: a file could not be moved; files already moved for this
                album are moved back first
            DiskFullError: destination volume is full (fatal for the batch)
        """
        files = [f.path for f in album.audio_files] + list(album.other_files)
        completed: List[MoveOperation] = []

        for source in files:
            dest = self._free_file_name(os.path.join(destination, os.path.basename(source)))
            try:
                completed.append(self.move_file(source, dest, batch_id))
            except MoveError:
                if completed:
                    self._revert(album, completed)
                raise

        if self.cleanup_empty_dirs:
            remove_empty_parents(album.path, stop_at=scan_root)

        self.logger.info(f"📁 Moved {len(completed)} files: {album.path} -> {destination}")
        return completed

    def move_file(self, source: str, dest: str, batch_id: str) -> MoveOperation:
        """Journal and move a single file"""
        operation = MoveOperation(
            operation_id=generate_id(),
            batch_id=batch_id,
            source_path=os.path.abspath(source),
            dest_path=os.path.abspath(dest),
        )
        self.state_store.record_move_pending(operation)

        try:
            strategy = transfer_file(operation.source_path, operation.dest_path, force_copy=self.force_copy)
        except OSError as e:
            self.state_store.mark_move_failed(operation.operation_id, str(e))
            if is_disk_full(e):
                raise DiskFullError(f"Disk full while moving {source}: {e}", operation.operation_id) from e
            raise MoveError(f"Failed to move {source} -> {dest}: {e}", operation.operation_id) from e

        fingerprint = FileFingerprint.of(operation.dest_path)
        self.state_store.mark_move_completed(
            operation.operation_id, fingerprint.size, fingerprint.mtime, fingerprint.digest
        )
        operation.dest_size = fingerprint.size
        operation.dest_mtime = fingerprint.mtime
        operation.dest_fingerprint = fingerprint.digest
        operation.status = MoveStatus.COMPLETED

        self.logger.debug(f"{strategy}: {source} -> {dest}")
        return operation

    def _revert(self, album: AlbumDirectory, completed: List[MoveOperation]):
        report = self.rollback_manager.revert(completed)
        if report.halted:
            self.logger.error(f"❌ Could not restore {album.path} after failed move: {report.error}")
        else:
            self.logger.warning(f"⚠️ Restored {report.restored} files of {album.path} after failed move")

    @staticmethod
    def _holds_audio(directory: str) -> bool:
        if not os.path.isdir(directory):
            return False
        with os.scandir(directory) as entries:
            return any(
                e.is_file() and os.path.splitext(e.name)[1].lower().lstrip('.') in AUDIO_FORMATS
                for e in entries
            )

    @staticmethod
    def free_directory(destination: str) -> str:
        counter = 2
        while True:
            candidate = f"{destination} ({counter})"
            if not os.path.exists(candidate):
                return candidate
            counter += 1

    @staticmethod
    def _free_file_name(path: str) -> str:
        if not os.path.lexists(path):
            return path
        base, ext = os.path.splitext(path)
        counter = 1
        while True:
            candidate = f"{base} ({counter}){ext}"
            if not os.path.lexists(candidate):
                return candidate
            counter += 1
