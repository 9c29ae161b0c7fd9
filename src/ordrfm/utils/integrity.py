"""
File integrity helpers

Cheap size/mtime fingerprints used to detect whether a moved file was
touched after the move, and content hashes for incremental-mode markers.
"""

import hashlib
import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class IntegrityStatus(Enum):
    """File integrity status"""
    HEALTHY = "healthy"
    MODIFIED = "modified"
    MISSING = "missing"
    INACCESSIBLE = "inaccessible"


@dataclass(frozen=True)
class FileFingerprint:
    """Size and modification time of a file, with a short digest of both"""
    size: int
    mtime_ns: int

    @property
    def mtime(self) -> float:
        return self.mtime_ns / 1e9

    @property
    def digest(self) -> str:
        return hashlib.sha256(f"{self.size}:{self.mtime_ns}".encode()).hexdigest()[:16]

    @classmethod
    def of(cls, path: str) -> 'FileFingerprint':
        stat = os.stat(path)
        return cls(size=stat.st_size, mtime_ns=stat.st_mtime_ns)


def check_file(path: str, expected_digest: Optional[str]) -> IntegrityStatus:
    """Compare a file against the digest recorded when it was moved"""
    if not os.path.lexists(path):
        return IntegrityStatus.MISSING
    try:
        current = FileFingerprint.of(path)
    except OSError:
        return IntegrityStatus.INACCESSIBLE

    if expected_digest and current.digest != expected_digest:
        return IntegrityStatus.MODIFIED
    return IntegrityStatus.HEALTHY


def directory_content_hash(path: str) -> str:
    """
    Hash of the file names, sizes and mtimes directly inside a directory.

    Any added, removed or rewritten file changes the hash, which makes a
    processed-directory marker stale.
    """
    h = hashlib.sha256()
    with os.scandir(path) as entries:
        files = sorted((e for e in entries if e.is_file(follow_symlinks=False)),
                       key=lambda e: e.name)
        for entry in files:
            stat = entry.stat(follow_symlinks=False)
            h.update(f"{entry.name}\0{stat.st_size}\0{stat.st_mtime_ns}\n".encode('utf-8', 'surrogateescape'))
    return h.hexdigest()
