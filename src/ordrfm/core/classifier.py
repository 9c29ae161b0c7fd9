"""
Album scanning and quality classification
"""

import logging
import os
import re
from collections import Counter
from typing import Iterator, List, Optional, Tuple

from .constants import AUDIO_FORMATS, LOSSLESS_FORMATS, LOSSY_FORMATS, LOCAL_CONFIDENCE_BASELINE
from .exceptions import ScanError, ClassificationError, TagReadError
from .models import AlbumDirectory, AudioFile, MetadataRecord, QualityClass
from ..metadata.tag_reader import TagReader
from ..utils.naming import parse_year

DISC_DIR_PATTERN = re.compile(r'^(?:disc|disk|cd)\s*[-_.]?\s*(\d{1,2})$', re.IGNORECASE)


def detect_disc_number(dir_name: str) -> Optional[int]:
    match = DISC_DIR_PATTERN.match(dir_name.strip())
    return int(match.group(1)) if match else None


def classify_quality(formats) -> QualityClass:
    """
    Quality tier from the set of file formats present.

    Raises:
        ClassificationError: no audio format in the set
    """
    present = {f.lower().lstrip('.') for f in formats}
    has_lossless = bool(present & LOSSLESS_FORMATS)
    has_lossy = bool(present & LOSSY_FORMATS)

    if has_lossless and has_lossy:
        return QualityClass.MIXED
    if has_lossless:
        return QualityClass.LOSSLESS
    if has_lossy:
        return QualityClass.LOSSY
    raise ClassificationError(f"No audio formats among: {sorted(present)}")


class AlbumScanner:
    """Finds album directories and reads their files"""

    def __init__(self, tag_reader: Optional[TagReader] = None):
        self.tag_reader = tag_reader or TagReader()
        self.logger = logging.getLogger(__name__)

    def discover(self, root: str) -> Iterator[str]:
        """
        Yield every directory under root that directly holds audio files.

        Unreadable subdirectories are logged and skipped; an unreadable root
        raises ScanError.
        """
        if not os.path.isdir(root):
            raise ScanError(f"Source directory does not exist: {root}", path=root)

        def on_error(error: OSError):
            if os.path.abspath(error.filename or '') == os.path.abspath(root):
                raise ScanError(f"Cannot read source directory {root}: {error}", path=root)
            self.logger.warning(f"⚠️ Skipping unreadable directory {error.filename}: {error.strerror}")

        for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
            dirnames.sort()
            if any(self._is_audio(name) for name in filenames):
                yield os.path.abspath(dirpath)

    def scan(self, path: str) -> AlbumDirectory:
        """Build an AlbumDirectory for one directory"""
        try:
            with os.scandir(path) as entries:
                names = sorted(e.name for e in entries if e.is_file())
        except OSError as e:
            raise ScanError(f"Cannot read album directory {path}: {e}", path=path) from e

        album = AlbumDirectory(
            path=os.path.abspath(path),
            disc_number=detect_disc_number(os.path.basename(os.path.normpath(path))),
        )

        for name in names:
            file_path = os.path.join(album.path, name)
            if not self._is_audio(name):
                album.other_files.append(file_path)
                continue
            try:
                album.audio_files.append(self.tag_reader.read(file_path))
            except TagReadError as e:
                self.logger.warning(f"⚠️ {e}")
                album.audio_files.append(AudioFile(
                    path=file_path,
                    format=os.path.splitext(name)[1].lower().lstrip('.'),
                    size=self._safe_size(file_path),
                    readable=False,
                ))

        return album

    @staticmethod
    def _is_audio(name: str) -> bool:
        return os.path.splitext(name)[1].lower().lstrip('.') in AUDIO_FORMATS

    @staticmethod
    def _safe_size(path: str) -> int:
        try:
            return os.path.getsize(path)
        except OSError:
            return 0


class Classifier:
    """Derives the quality tier and a local metadata record for an album"""

    def __init__(self, various_artists_name: str = "Various Artists"):
        self.various_artists_name = various_artists_name
        self.logger = logging.getLogger(__name__)

    def classify(self, album: AlbumDirectory) -> Tuple[QualityClass, MetadataRecord]:
        """
        Classify an album.

        Raises:
            ClassificationError: no audio files, or none could be read
        """
        if not album.audio_files:
            raise ClassificationError(f"No audio files in {album.path}")

        readable = [f for f in album.audio_files if f.readable]
        if not readable:
            raise ClassificationError(f"No readable audio files in {album.path}")

        quality = classify_quality(f.format for f in album.audio_files)
        record = self._aggregate_metadata(album, readable)

        self.logger.debug(f"Classified {album.path}: {quality.value}, "
                          f"artist={record.artist!r} title={record.album_title!r}")
        return quality, record

    def _aggregate_metadata(self, album: AlbumDirectory, files: List[AudioFile]) -> MetadataRecord:
        album_artists = self._distinct(f.tags.get('albumartist') for f in files)
        track_artists = [f.tags.get('artist') for f in files if f.tags.get('artist')]
        distinct_track_artists = self._distinct(track_artists)

        if len(album_artists) == 1:
            artist = album_artists[0]
        elif len(distinct_track_artists) == 1:
            artist = distinct_track_artists[0]
        elif len(distinct_track_artists) > 1:
            artist = self.various_artists_name
        else:
            artist = None

        title = self._most_common(f.tags.get('album') for f in files)
        if not title:
            title = self._title_from_directory(album)

        years = [y for y in (parse_year(f.tags.get('date')) for f in files) if y]

        return MetadataRecord(
            artist=artist,
            album_title=title,
            year=min(years) if years else None,
            label=self._most_common(f.tags.get('label') for f in files),
            catalog_number=self._most_common(f.tags.get('catalognumber') for f in files),
            genre=self._most_common(f.tags.get('genre') for f in files),
            confidence=LOCAL_CONFIDENCE_BASELINE,
            source_name="local-tags",
            track_artists=track_artists,
        )

    def _title_from_directory(self, album: AlbumDirectory) -> str:
        path = os.path.normpath(album.path)
        if album.disc_number is not None:
            path = os.path.dirname(path)
        return os.path.basename(path)

    @staticmethod
    def _distinct(values) -> List[str]:
        seen = {}
        for value in values:
            if value and value.strip():
                seen.setdefault(value.strip().lower(), value.strip())
        return list(seen.values())

    @staticmethod
    def _most_common(values) -> Optional[str]:
        counter = Counter(v.strip() for v in values if v and v.strip())
        if not counter:
            return None
        # Ties resolve alphabetically for deterministic output
        best = max(counter.values())
        return sorted(v for v, n in counter.items() if n == best)[0]
