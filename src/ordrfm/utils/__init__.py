"""Utility functions for ordrfm."""

from .integrity import FileFingerprint, IntegrityStatus
from .progress import ProgressListener, ProgressReporter

__all__ = [
    "FileFingerprint",
    "IntegrityStatus",
    "ProgressListener",
    "ProgressReporter",
]
