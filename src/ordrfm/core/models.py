"""
Data model for albums, metadata, decisions, journal entries and jobs.
"""

import time
from collections import Counter
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, List, Optional, Any

from .constants import LOCAL_CONFIDENCE_BASELINE


class QualityClass(Enum):
    """Quality tier of an album, derived from its file formats"""
    LOSSLESS = "Lossless"
    LOSSY = "Lossy"
    MIXED = "Mixed"

    @property
    def rank(self) -> int:
        return {"Lossless": 3, "Mixed": 2, "Lossy": 1}[self.value]


class OrganizationMode(Enum):
    """Routing strategy chosen for a release"""
    ARTIST = "artist"
    LABEL = "label"
    SERIES = "series"
    REMIX = "remix"
    UNDERGROUND = "underground"
    COMPILATION = "compilation"
    UNSORTED = "unsorted"


class MoveStatus(Enum):
    """Journal entry states"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class JobStatus(Enum):
    """Job lifecycle states"""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class AlbumOutcome(Enum):
    """What happened to an album inside a batch"""
    ORGANIZED = "organized"
    PLANNED = "planned"       # dry run
    SKIPPED = "skipped"
    UNSORTED = "unsorted"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class AudioFile:
    """Single audio file with its tags"""
    path: str
    format: str
    size: int = 0
    bitrate: int = 0
    tags: Dict[str, str] = field(default_factory=dict)
    readable: bool = True


@dataclass
class AlbumDirectory:
    """One album directory found at scan time"""
    path: str
    audio_files: List[AudioFile] = field(default_factory=list)
    other_files: List[str] = field(default_factory=list)
    disc_number: Optional[int] = None

    @property
    def name(self) -> str:
        return self.path.rstrip("/\\").replace("\\", "/").split("/")[-1]

    @property
    def track_count(self) -> int:
        return len(self.audio_files)

    @property
    def total_size(self) -> int:
        return sum(f.size for f in self.audio_files)

    @property
    def formats(self) -> List[str]:
        return sorted({f.format for f in self.audio_files})

    @property
    def average_bitrate(self) -> int:
        rates = [f.bitrate for f in self.audio_files if f.bitrate]
        return int(sum(rates) / len(rates)) if rates else 0


@dataclass
class MetadataRecord:
    """Album-level metadata from local tags or an external catalog"""
    artist: Optional[str] = None
    album_title: Optional[str] = None
    year: Optional[int] = None
    label: Optional[str] = None
    catalog_number: Optional[str] = None
    genre: Optional[str] = None
    source_id: Optional[str] = None
    confidence: float = LOCAL_CONFIDENCE_BASELINE
    source_name: str = "local-tags"
    style: Optional[str] = None
    series: Optional[str] = None
    remix_artists: List[str] = field(default_factory=list)
    track_artists: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MetadataRecord':
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)

    @property
    def distinct_track_artists(self) -> int:
        return len({a.strip().lower() for a in self.track_artists if a and a.strip()})


@dataclass
class OrganizationDecision:
    """Chosen mode, rendered destination and the rules that produced it"""
    mode: OrganizationMode
    destination_path: str
    rule_trace: List[str] = field(default_factory=list)
    metadata: Optional[MetadataRecord] = None
    quality: Optional[QualityClass] = None


@dataclass
class MoveOperation:
    """Journal entry for a single file move"""
    operation_id: str
    batch_id: str
    source_path: str
    dest_path: str
    status: MoveStatus = MoveStatus.PENDING
    timestamp: float = 0
    seq: Optional[int] = None
    dest_size: Optional[int] = None
    dest_mtime: Optional[float] = None
    dest_fingerprint: Optional[str] = None
    ref_operation_id: Optional[str] = None
    error: Optional[str] = None

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = time.time()


@dataclass
class RateLimiterState:
    """Snapshot of a token bucket"""
    source: str
    tokens_available: float
    last_refill: float
    min_interval_ms: float
    capacity: int


@dataclass
class BatchSummary:
    """Outcome counts for a finished batch"""
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    unsorted: int = 0
    cancelled: int = 0

    @classmethod
    def from_outcomes(cls, outcomes: List[Optional[AlbumOutcome]]) -> 'BatchSummary':
        counts = Counter(outcomes)
        return cls(
            total=len(outcomes),
            succeeded=counts[AlbumOutcome.ORGANIZED] + counts[AlbumOutcome.PLANNED],
            failed=counts[AlbumOutcome.FAILED],
            skipped=counts[AlbumOutcome.SKIPPED],
            unsorted=counts[AlbumOutcome.UNSORTED],
            cancelled=counts[AlbumOutcome.CANCELLED] + counts[None],
        )

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class Job:
    """A unit of work: one album, or a batch parent aggregating children"""
    id: str
    album_directory: Optional[str] = None
    status: JobStatus = JobStatus.QUEUED
    parent_id: Optional[str] = None
    source_directory: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)
    processed_count: int = 0
    total_count: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    outcome: Optional[AlbumOutcome] = None
    decision: Optional[OrganizationDecision] = None
    current_album: Optional[str] = None
    child_ids: List[str] = field(default_factory=list)
    cancel_requested: bool = False
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def is_batch(self) -> bool:
        return self.album_directory is None

    def to_event(self) -> Dict[str, Any]:
        """Progress event payload"""
        return {
            'jobId': self.id,
            'status': self.status.value,
            'processedItems': self.processed_count,
            'totalItems': self.total_count,
            'currentAlbum': self.current_album,
            'errors': list(self.errors),
            'warnings': list(self.warnings),
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.to_event()
        data.update({
            'albumDirectory': self.album_directory,
            'parentId': self.parent_id,
            'outcome': self.outcome.value if self.outcome else None,
            'mode': self.decision.mode.value if self.decision else None,
            'destination': self.decision.destination_path if self.decision else None,
            'createdAt': self.created_at,
            'startedAt': self.started_at,
            'finishedAt': self.finished_at,
        })
        return data
