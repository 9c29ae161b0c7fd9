"""
State Store

Single SQLite database shared by all workers:
- albums (organized releases with their chosen mode)
- moves (append-only move journal)
- processed_directories (incremental-mode markers)
- metadata_cache (enrichment results with TTL)
- release_counts (label/artist counters used by the label rule)
"""

import json
import logging
import os
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List, Optional, Any, Tuple

from .constants import DB_TIMEOUT
from .exceptions import StateStoreError
from .models import MoveOperation, MoveStatus


def normalize_key(value: Optional[str]) -> str:
    """Case-folded, whitespace-collapsed key for counters"""
    return " ".join((value or "").lower().split())


class StateStore:
    """
    Transactional persistence for the organization pipeline.

    Every public method opens its own connection under a shared RLock, so
    concurrent workers never interleave writes. Read-modify-write sequences
    run inside BEGIN IMMEDIATE transactions.
    """

    def __init__(self, db_path: str = "ordrfm_state.db"):
        self.db_path = Path(db_path)
        self.logger = logging.getLogger(__name__)
        self._lock = threading.RLock()

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StateStoreError(f"Cannot create state directory {self.db_path.parent}: {e}") from e

        self._init_database()
        self.logger.info(f"StateStore initialized: {self.db_path}")

    def _init_database(self):
        """Initialize database with all required schemas"""
        with self._get_connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS albums (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source_path TEXT NOT NULL,
                    dest_path TEXT NOT NULL,
                    artist TEXT,
                    title TEXT,
                    year INTEGER,
                    label TEXT,
                    catalog_number TEXT,
                    genre TEXT,
                    quality TEXT NOT NULL,
                    organization_mode TEXT NOT NULL,
                    confidence REAL NOT NULL,
                    metadata_source TEXT NOT NULL,
                    batch_id TEXT,
                    organized_at REAL NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_albums_label
                ON albums(label)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS moves (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    operation_id TEXT NOT NULL UNIQUE,
                    batch_id TEXT NOT NULL,
                    source_path TEXT NOT NULL,
                    dest_path TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    timestamp REAL NOT NULL,
                    dest_size INTEGER,
                    dest_mtime REAL,
                    dest_fingerprint TEXT,
                    ref_operation_id TEXT,
                    error TEXT
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_moves_batch
                ON moves(batch_id, status)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_moves_ref
                ON moves(ref_operation_id)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS processed_directories (
                    path TEXT NOT NULL,
                    content_hash TEXT NOT NULL,
                    batch_id TEXT,
                    outcome TEXT,
                    processed_at REAL NOT NULL,
                    PRIMARY KEY (path, content_hash)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS metadata_cache (
                    cache_key TEXT PRIMARY KEY,
                    record_json TEXT,
                    is_negative INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL,
                    expires_at REAL NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS release_counts (
                    kind TEXT NOT NULL,
                    name_key TEXT NOT NULL,
                    name TEXT NOT NULL,
                    count INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (kind, name_key)
                )
            """)

            conn.execute("""
                CREATE VIEW IF NOT EXISTS organization_stats AS
                SELECT organization_mode, quality, COUNT(*) AS albums
                FROM albums
                GROUP BY organization_mode, quality
            """)

            conn.commit()

    @contextmanager
    def _get_connection(self):
        """Get database connection; sqlite failures surface as StateStoreError"""
        conn = None
        with self._lock:
            try:
                conn = sqlite3.connect(str(self.db_path), timeout=DB_TIMEOUT)
                conn.row_factory = sqlite3.Row
                yield conn
            except sqlite3.Error as e:
                if conn:
                    conn.rollback()
                self.logger.error(f"Database error: {e}")
                raise StateStoreError(f"State store unavailable: {e}") from e
            finally:
                if conn:
                    conn.close()

    @contextmanager
    def _transaction(self):
        """Write transaction holding the database write lock"""
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    # ===== MOVE JOURNAL =====

    def record_move_pending(self, operation: MoveOperation) -> MoveOperation:
        """Append a pending journal entry; committed before any file is touched"""
        with self._transaction() as conn:
            cursor = conn.execute("""
                INSERT INTO moves
                (operation_id, batch_id, source_path, dest_path, status, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                operation.operation_id,
                operation.batch_id,
                operation.source_path,
                operation.dest_path,
                MoveStatus.PENDING.value,
                operation.timestamp,
            ))
            operation.seq = cursor.lastrowid
            operation.status = MoveStatus.PENDING
        return operation

    def mark_move_completed(self, operation_id: str, dest_size: int,
                            dest_mtime: float, dest_fingerprint: str) -> bool:
        """Confirm a pending move"""
        with self._transaction() as conn:
            cursor = conn.execute("""
                UPDATE moves
                SET status = ?, dest_size = ?, dest_mtime = ?, dest_fingerprint = ?
                WHERE operation_id = ? AND status = ?
            """, (MoveStatus.COMPLETED.value, dest_size, dest_mtime, dest_fingerprint,
                  operation_id, MoveStatus.PENDING.value))
            updated = cursor.rowcount == 1

        if not updated:
            self.logger.warning(f"Move {operation_id} was not pending; completion ignored")
        return updated

    def mark_move_failed(self, operation_id: str, error: str) -> bool:
        """Mark a pending move as failed"""
        with self._transaction() as conn:
            cursor = conn.execute("""
                UPDATE moves SET status = ?, error = ?
                WHERE operation_id = ? AND status = ?
            """, (MoveStatus.FAILED.value, error, operation_id, MoveStatus.PENDING.value))
            return cursor.rowcount == 1

    def record_rollback(self, original: MoveOperation, operation_id: str,
                        timestamp: Optional[float] = None) -> MoveOperation:
        """
        Append a rolled_back entry superseding a completed move.

        The restored album no longer counts as organized: its processed
        marker and album row are dropped and its label/artist counters
        decremented in the same transaction.
        """
        entry = MoveOperation(
            operation_id=operation_id,
            batch_id=original.batch_id,
            source_path=original.dest_path,
            dest_path=original.source_path,
            status=MoveStatus.ROLLED_BACK,
            timestamp=timestamp or time.time(),
            ref_operation_id=original.operation_id,
        )
        with self._transaction() as conn:
            cursor = conn.execute("""
                INSERT INTO moves
                (operation_id, batch_id, source_path, dest_path, status, timestamp,
                 ref_operation_id)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (entry.operation_id, entry.batch_id, entry.source_path, entry.dest_path,
                  entry.status.value, entry.timestamp, entry.ref_operation_id))
            entry.seq = cursor.lastrowid
            self._forget_album(conn, os.path.dirname(original.source_path), original.batch_id)
        return entry

    def _forget_album(self, conn: sqlite3.Connection, album_path: str, batch_id: str):
        conn.execute("DELETE FROM processed_directories WHERE path = ?", (album_path,))

        row = conn.execute(
            "SELECT id, label, artist FROM albums WHERE source_path = ? AND batch_id = ?",
            (album_path, batch_id)
        ).fetchone()
        if row is None:
            return

        conn.execute("DELETE FROM albums WHERE id = ?", (row['id'],))
        if row['label']:
            self.decrement_release_count('label', row['label'], conn)
        if row['artist']:
            self.decrement_release_count('artist', row['artist'], conn)
        self.logger.debug(f"Forgot organized album {album_path} (batch {batch_id})")

    def get_operation(self, operation_id: str) -> Optional[MoveOperation]:
        """Get a journal entry by id"""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM moves WHERE operation_id = ?", (operation_id,)
            ).fetchone()
        return self._row_to_operation(row) if row else None

    def get_batch_operations(self, batch_id: str,
                             status: Optional[MoveStatus] = None) -> List[MoveOperation]:
        """All journal entries of a batch in journal order"""
        query = "SELECT * FROM moves WHERE batch_id = ?"
        params: List[Any] = [batch_id]
        if status:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY seq ASC"

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_operation(row) for row in rows]

    def get_rollback_candidates(self, batch_id: Optional[str] = None,
                                operation_id: Optional[str] = None) -> List[MoveOperation]:
        """Completed, not yet rolled back entries, newest first"""
        query = """
            SELECT m.* FROM moves m
            WHERE m.status = ?
            AND NOT EXISTS (
                SELECT 1 FROM moves r
                WHERE r.ref_operation_id = m.operation_id AND r.status = ?
            )
        """
        params: List[Any] = [MoveStatus.COMPLETED.value, MoveStatus.ROLLED_BACK.value]
        if batch_id:
            query += " AND m.batch_id = ?"
            params.append(batch_id)
        if operation_id:
            query += " AND m.operation_id = ?"
            params.append(operation_id)
        query += " ORDER BY m.timestamp DESC, m.seq DESC"

        with self._get_connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_operation(row) for row in rows]

    def is_rolled_back(self, operation_id: str) -> bool:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM moves WHERE ref_operation_id = ? AND status = ?",
                (operation_id, MoveStatus.ROLLED_BACK.value)
            ).fetchone()
        return row is not None

    def get_pending_moves(self) -> List[MoveOperation]:
        """Entries left pending by an interrupted run"""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM moves WHERE status = ? ORDER BY seq ASC",
                (MoveStatus.PENDING.value,)
            ).fetchall()
        return [self._row_to_operation(row) for row in rows]

    def list_batches(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Recent batches with per-status counts"""
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT batch_id,
                       MIN(timestamp) AS started,
                       SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END) AS completed,
                       SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END) AS failed,
                       SUM(CASE WHEN status = 'rolled_back' THEN 1 ELSE 0 END) AS rolled_back
                FROM moves
                GROUP BY batch_id
                ORDER BY started DESC
                LIMIT ?
            """, (limit,)).fetchall()
        return [dict(row) for row in rows]

    def _row_to_operation(self, row: sqlite3.Row) -> MoveOperation:
        return MoveOperation(
            operation_id=row['operation_id'],
            batch_id=row['batch_id'],
            source_path=row['source_path'],
            dest_path=row['dest_path'],
            status=MoveStatus(row['status']),
            timestamp=row['timestamp'],
            seq=row['seq'],
            dest_size=row['dest_size'],
            dest_mtime=row['dest_mtime'],
            dest_fingerprint=row['dest_fingerprint'],
            ref_operation_id=row['ref_operation_id'],
            error=row['error'],
        )

    # ===== PROCESSED DIRECTORIES =====

    def is_directory_processed(self, path: str, content_hash: str) -> bool:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM processed_directories WHERE path = ? AND content_hash = ?",
                (path, content_hash)
            ).fetchone()
        return row is not None

    def mark_directory_processed(self, path: str, content_hash: str,
                                 batch_id: Optional[str] = None,
                                 outcome: Optional[str] = None):
        with self._transaction() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO processed_directories
                (path, content_hash, batch_id, outcome, processed_at)
                VALUES (?, ?, ?, ?, ?)
            """, (path, content_hash, batch_id, outcome, time.time()))

    # ===== METADATA CACHE =====

    def cache_get(self, cache_key: str) -> Tuple[bool, Optional[Dict[str, Any]]]:
        """
        Look up a cached enrichment result.

        Returns:
            (found, record_dict). A negative entry is (True, None).
        """
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM metadata_cache WHERE cache_key = ? AND expires_at > ?",
                (cache_key, time.time())
            ).fetchone()

        if row is None:
            return False, None
        if row['is_negative']:
            return True, None
        return True, json.loads(row['record_json'])

    def cache_put(self, cache_key: str, record: Optional[Dict[str, Any]], ttl_seconds: float):
        """Store a result; None stores a negative entry"""
        now = time.time()
        with self._transaction() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO metadata_cache
                (cache_key, record_json, is_negative, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?)
            """, (
                cache_key,
                json.dumps(record) if record is not None else None,
                1 if record is None else 0,
                now,
                now + ttl_seconds,
            ))

    def purge_expired_cache(self) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM metadata_cache WHERE expires_at <= ?", (time.time(),)
            )
            removed = cursor.rowcount
        if removed:
            self.logger.info(f"Purged {removed} expired metadata cache entries")
        return removed

    # ===== RELEASE COUNTERS & ALBUMS =====

    def increment_release_count(self, kind: str, name: str, conn: Optional[sqlite3.Connection] = None) -> int:
        """Atomically increment a label/artist counter and return the new value"""
        if conn is None:
            with self._transaction() as own_conn:
                return self.increment_release_count(kind, name, own_conn)

        key = normalize_key(name)
        conn.execute("""
            INSERT INTO release_counts (kind, name_key, name, count)
            VALUES (?, ?, ?, 1)
            ON CONFLICT(kind, name_key) DO UPDATE SET count = count + 1
        """, (kind, key, name))
        row = conn.execute(
            "SELECT count FROM release_counts WHERE kind = ? AND name_key = ?", (kind, key)
        ).fetchone()
        return row['count']

    def decrement_release_count(self, kind: str, name: str, conn: Optional[sqlite3.Connection] = None):
        """Undo one increment; counters never drop below zero"""
        if conn is None:
            with self._transaction() as own_conn:
                return self.decrement_release_count(kind, name, own_conn)

        conn.execute("""
            UPDATE release_counts SET count = MAX(count - 1, 0)
            WHERE kind = ? AND name_key = ?
        """, (kind, normalize_key(name)))

    def get_release_count(self, kind: str, name: Optional[str]) -> int:
        if not name:
            return 0
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT count FROM release_counts WHERE kind = ? AND name_key = ?",
                (kind, normalize_key(name))
            ).fetchone()
        return row['count'] if row else 0

    def record_album(self, album: Dict[str, Any]) -> int:
        """
        Persist an organized release and bump its label/artist counters
        in the same transaction.
        """
        with self._transaction() as conn:
            cursor = conn.execute("""
                INSERT INTO albums
                (source_path, dest_path, artist, title, year, label, catalog_number,
                 genre, quality, organization_mode, confidence,
                 metadata_source, batch_id, organized_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                album['source_path'],
                album['dest_path'],
                album.get('artist'),
                album.get('title'),
                album.get('year'),
                album.get('label'),
                album.get('catalog_number'),
                album.get('genre'),
                album['quality'],
                album['organization_mode'],
                album.get('confidence', 0.0),
                album.get('metadata_source', 'local-tags'),
                album.get('batch_id'),
                time.time(),
            ))
            if album.get('label'):
                self.increment_release_count('label', album['label'], conn)
            if album.get('artist'):
                self.increment_release_count('artist', album['artist'], conn)
            return cursor.lastrowid

    def get_organization_stats(self) -> Dict[str, Any]:
        """Album counts per organization mode and per quality"""
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM organization_stats").fetchall()

        by_mode: Dict[str, int] = {}
        by_quality: Dict[str, int] = {}
        for row in rows:
            by_mode[row['organization_mode']] = by_mode.get(row['organization_mode'], 0) + row['albums']
            by_quality[row['quality']] = by_quality.get(row['quality'], 0) + row['albums']

        return {
            'total': sum(by_mode.values()),
            'by_mode': by_mode,
            'by_quality': by_quality,
        }
