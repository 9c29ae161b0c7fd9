"""
Tag reading via mutagen

Resolves album-level tags across ID3, Vorbis comment and MP4 key spellings.
"""

import logging
import os
from typing import Dict, Optional

import mutagen
from mutagen import File as MutagenFile

from ..core.exceptions import TagReadError
from ..core.models import AudioFile

TAG_MAPPING = {
    'artist': ['TPE1', 'artist', 'Artist', '\xa9ART'],
    'albumartist': ['TPE2', 'albumartist', 'album artist', 'AlbumArtist', 'aART'],
    'album': ['TALB', 'album', 'Album', '\xa9alb'],
    'title': ['TIT2', 'title', 'Title', '\xa9nam'],
    'date': ['TDRC', 'TYER', 'date', 'year', 'Year', '\xa9day'],
    'genre': ['TCON', 'genre', 'Genre', '\xa9gen'],
    'label': ['TPUB', 'label', 'organization', 'publisher', 'Label',
              '----:com.apple.iTunes:LABEL'],
    'catalognumber': ['TXXX:CATALOGNUMBER', 'TXXX:CATALOG', 'catalognumber',
                      'catalog', 'CatalogNumber', '----:com.apple.iTunes:CATALOGNUMBER'],
    'tracknumber': ['TRCK', 'tracknumber', 'Track', 'trkn'],
}


class TagReader:
    """Reads format, bitrate and album-level tags from one audio file"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def read(self, file_path: str) -> AudioFile:
        """
        Read an audio file.

        Raises:
            TagReadError: the file exists but cannot be parsed or opened
        """
        ext = os.path.splitext(file_path)[1].lower().lstrip('.')
        try:
            size = os.path.getsize(file_path)
            audio = MutagenFile(file_path)
        except (mutagen.MutagenError, OSError) as e:
            raise TagReadError(f"Cannot read tags from {file_path}: {e}", path=file_path) from e

        if audio is None:
            self.logger.debug(f"Unrecognized audio container, using extension only: {file_path}")
            return AudioFile(path=file_path, format=ext, size=size)

        tags = self._extract_tags(audio.tags) if audio.tags else {}
        bitrate = int(getattr(audio.info, 'bitrate', 0) or 0)

        return AudioFile(path=file_path, format=ext, size=size, bitrate=bitrate, tags=tags)

    def _extract_tags(self, raw_tags) -> Dict[str, str]:
        tags = {}
        for key, candidates in TAG_MAPPING.items():
            for candidate in candidates:
                value = self._lookup(raw_tags, candidate)
                if value:
                    tags[key] = value
                    break
        return tags

    def _lookup(self, raw_tags, key: str) -> Optional[str]:
        try:
            if key not in raw_tags:
                return None
            value = raw_tags[key]
        except (KeyError, ValueError, TypeError):
            return None

        if isinstance(value, list):
            if not value:
                return None
            value = value[0]
        if isinstance(value, tuple):  # MP4 track number (n, total)
            value = value[0]
        if isinstance(value, bytes):
            value = value.decode('utf-8', errors='replace')

        text = str(value).replace('\x00', ' ').strip()
        return text or None
