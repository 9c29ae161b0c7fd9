"""
ordrfm

Organizes album directories into a quality-first library layout.

Features:
- Lossless / Lossy / Mixed quality classification from file formats
- Artist, label, series, remix, underground and compilation layouts
- Optional Discogs / MusicBrainz enrichment with confidence gating
- Parallel album processing with cooperative cancellation
- Journaled moves with batch and single-operation rollback
"""

__version__ = "1.0.0"

from .core.config_manager import get_config_manager, OrdrConfig
from .core.models import QualityClass, OrganizationMode, BatchSummary
from .core.orchestrator import OrganizationService
from .core.rollback import RollbackManager
from .core.state_store import StateStore

__all__ = [
    "__version__",
    "OrdrConfig",
    "get_config_manager",
    "QualityClass",
    "OrganizationMode",
    "BatchSummary",
    "OrganizationService",
    "RollbackManager",
    "StateStore",
]
