"""Core components for ordrfm."""

from .config_manager import get_config_manager, OrdrConfig
from .exceptions import OrdrError, FatalError
from .models import AlbumDirectory, MetadataRecord, OrganizationDecision, MoveOperation, Job
from .state_store import StateStore

__all__ = [
    "OrdrConfig",
    "get_config_manager",
    "OrdrError",
    "FatalError",
    "AlbumDirectory",
    "MetadataRecord",
    "OrganizationDecision",
    "MoveOperation",
    "Job",
    "StateStore",
]
