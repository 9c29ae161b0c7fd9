"""
Low-level file transfer helpers

transfer_file() moves a single file either by rename (same volume) or by
copy-verify-rename-delete (cross volume). A failed transfer never leaves
a partial file at the destination and never touches the source.
"""

import errno
import logging
import os
import shutil
import uuid
from typing import Optional

from ..core.constants import TEMP_FILE_PREFIX, EMPTY_DIR_CLEANUP_DEPTH

logger = logging.getLogger(__name__)


class CopyVerificationError(OSError):
    """Copied file does not match the source"""
    pass


def _existing_ancestor(path: str) -> str:
    current = os.path.abspath(path)
    while not os.path.exists(current):
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent
    return current


def same_volume(source: str, dest_dir: str) -> bool:
    """True when a rename from source into dest_dir cannot cross devices"""
    return os.stat(source).st_dev == os.stat(_existing_ancestor(dest_dir)).st_dev


def is_disk_full(error: OSError) -> bool:
    return getattr(error, 'errno', None) in (errno.ENOSPC, getattr(errno, 'EDQUOT', None))


def copy_verified(source: str, dest: str) -> None:
    """
    Copy to a temp name next to dest, verify size, then atomically rename.

    The temp file is removed on any failure.
    """
    dest_dir = os.path.dirname(dest)
    temp_path = os.path.join(dest_dir, f"{TEMP_FILE_PREFIX}{uuid.uuid4().hex[:8]}-{os.path.basename(dest)}")

    try:
        shutil.copy2(source, temp_path)

        source_size = os.path.getsize(source)
        temp_size = os.path.getsize(temp_path)
        if source_size != temp_size:
            raise CopyVerificationError(
                errno.EIO, f"Copy verification failed: size mismatch ({source_size} != {temp_size})", dest
            )

        os.replace(temp_path, dest)
    except Exception:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise


def transfer_file(source: str, dest: str, force_copy: bool = False) -> str:
    """
    Move one file, creating the destination directory.

    Returns:
        "rename" or "copy", the strategy used

    Raises:
        FileExistsError: dest already exists
        OSError: any filesystem failure; the source is left in place
    """
    if os.path.lexists(dest):
        raise FileExistsError(errno.EEXIST, "Destination exists", dest)

    os.makedirs(os.path.dirname(dest), exist_ok=True)

    if not force_copy and same_volume(source, os.path.dirname(dest)):
        os.rename(source, dest)
        return "rename"

    copy_verified(source, dest)
    try:
        os.remove(source)
    except OSError:
        # Source must stay authoritative if it cannot be removed
        os.remove(dest)
        raise
    return "copy"


def remove_empty_parents(directory: str, stop_at: Optional[str] = None,
                         max_depth: int = EMPTY_DIR_CLEANUP_DEPTH) -> int:
    """
    Remove directory and its parents while they are empty.

    Never removes stop_at or anything above it; at most max_depth levels.

    Returns:
        Number of directories removed
    """
    stop = os.path.abspath(stop_at) if stop_at else None
    current = os.path.abspath(directory)
    removed = 0

    for _ in range(max_depth):
        if stop and (current == stop or not current.startswith(stop + os.sep)):
            break
        try:
            if os.listdir(current):
                break
            os.rmdir(current)
        except FileNotFoundError:
            current = os.path.dirname(current)
            continue
        except OSError as e:
            logger.debug(f"Stopped empty-directory cleanup at {current}: {e}")
            break
        removed += 1
        current = os.path.dirname(current)

    return removed
