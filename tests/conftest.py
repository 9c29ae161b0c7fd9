"""
Shared pytest fixtures for ordrfm tests.

Provides temporary workspaces, a state store and a small library builder
that writes placeholder audio files and serves their tags through a mocked
TagReader.
"""

import os
import shutil
import tempfile
from typing import Dict, Iterable, List, Optional, Tuple
from unittest.mock import Mock

import pytest

from ordrfm.core.config_manager import (
    OrdrConfig, OrganizationConfig, EnrichmentConfig, ProcessingConfig, UIConfig
)
from ordrfm.core.models import AudioFile
from ordrfm.core.state_store import StateStore
from ordrfm.metadata.tag_reader import TagReader


class LibraryBuilder:
    """
    Writes album directories with fake audio files.

    Tags are registered by file name, so they follow a file when it is
    moved; use unique track file names across a test library.
    """

    def __init__(self, root: str):
        self.root = root
        self.tags: Dict[str, Tuple[Dict[str, str], int]] = {}

    def album(self, rel_path: str, tracks: List[Tuple[str, Dict[str, str]]],
              extras: Iterable[str] = ("cover.jpg",), bitrate: int = 320000,
              root: Optional[str] = None) -> str:
        album_dir = os.path.join(root or self.root, rel_path)
        os.makedirs(album_dir, exist_ok=True)

        for name, tags in tracks:
            with open(os.path.join(album_dir, name), 'wb') as f:
                f.write(b"fake audio data " + name.encode())
            self.tags[name] = (dict(tags), bitrate)

        for extra in extras:
            with open(os.path.join(album_dir, extra), 'wb') as f:
                f.write(b"companion " + extra.encode())

        return album_dir

    def read(self, path: str) -> AudioFile:
        tags, bitrate = self.tags.get(os.path.basename(path), ({}, 0))
        return AudioFile(
            path=path,
            format=os.path.splitext(path)[1].lower().lstrip('.'),
            size=os.path.getsize(path),
            bitrate=bitrate,
            tags=dict(tags),
        )

    def tag_reader(self) -> Mock:
        reader = Mock(spec=TagReader)
        reader.read.side_effect = self.read
        return reader


def tracks(artist: str, album: str, count: int = 3, ext: str = "flac", prefix: str = "",
           **extra_tags) -> List[Tuple[str, Dict[str, str]]]:
    """Track list with consistent album tags; file names are prefix + number"""
    prefix = prefix or album.lower().replace(' ', '_')
    result = []
    for i in range(1, count + 1):
        tags = {'artist': artist, 'album': album, 'title': f"Track {i}"}
        tags.update(extra_tags)
        result.append((f"{prefix}_{i:02d}.{ext}", tags))
    return result


@pytest.fixture
def temp_workspace():
    """Create temporary workspace directory."""
    workspace = tempfile.mkdtemp()
    yield workspace
    shutil.rmtree(workspace, ignore_errors=True)


@pytest.fixture
def state_store(temp_workspace):
    """State store in the temporary workspace."""
    return StateStore(os.path.join(temp_workspace, "state", "ordrfm_state.db"))


@pytest.fixture
def library(temp_workspace):
    """Library builder rooted at <workspace>/source."""
    root = os.path.join(temp_workspace, "source")
    os.makedirs(root)
    return LibraryBuilder(root)


@pytest.fixture
def make_config(temp_workspace):
    """Factory for a config pointing at the temporary workspace."""
    def factory(organization: Optional[dict] = None, enrichment: Optional[dict] = None,
                processing: Optional[dict] = None) -> OrdrConfig:
        org = {
            'destination_dir': os.path.join(temp_workspace, "organized"),
            'unsorted_dir': os.path.join(temp_workspace, "unsorted"),
        }
        org.update(organization or {})
        enr = {'enabled': False, 'musicbrainz_enabled': False, 'discogs_enabled': False}
        enr.update(enrichment or {})
        proc = {
            'dry_run': False,
            'max_workers': 2,
            'progress_interval': 1,
            'state_db_path': os.path.join(temp_workspace, "ordrfm_state.db"),
        }
        proc.update(processing or {})
        return OrdrConfig(
            organization=OrganizationConfig(**org),
            enrichment=EnrichmentConfig(**enr),
            processing=ProcessingConfig(**proc),
            ui=UIConfig(),
        )

    return factory


@pytest.fixture
def organization_config(make_config):
    """Organization section of the default test config."""
    return make_config().organization


@pytest.fixture
def make_tracks():
    """Factory for track lists, see tracks()."""
    return tracks
