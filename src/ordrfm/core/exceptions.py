"""
Error taxonomy for the album organization pipeline.

Per-album errors stay local to their job; only FatalError subclasses
abort a whole batch.
"""

from typing import Optional


class OrdrError(Exception):
    """Base exception for ordrfm errors"""
    pass


class ConfigurationError(OrdrError):
    """Invalid configuration values"""
    pass


class ScanError(OrdrError):
    """Directory or file could not be read; the album is skipped"""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class TagReadError(ScanError):
    """A single audio file could not be parsed"""
    pass


class ClassificationError(OrdrError):
    """No usable audio files; the album is routed to unsorted"""
    pass


class EnrichmentError(OrdrError):
    """External lookup failed (timeout, HTTP error, rate limit rejection)"""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class DecisionAmbiguityError(OrdrError):
    """A required path placeholder could not be resolved"""

    def __init__(self, message: str, placeholder: Optional[str] = None):
        super().__init__(message)
        self.placeholder = placeholder
        self.rule_trace = []


class MoveError(OrdrError):
    """Filesystem move failed; the source is preserved"""

    def __init__(self, message: str, operation_id: Optional[str] = None):
        super().__init__(message)
        self.operation_id = operation_id


class RollbackError(OrdrError):
    """Journal inconsistency found while rolling back"""

    def __init__(self, message: str, operation_id: Optional[str] = None):
        super().__init__(message)
        self.operation_id = operation_id


class JobCancelledError(OrdrError):
    """Raised at a stage boundary when the job was cancelled"""
    pass


class FatalError(OrdrError):
    """Errors that abort the whole batch"""
    pass


class StateStoreError(FatalError):
    """State database unavailable or write failed"""
    pass


class DiskFullError(FatalError, MoveError):
    """No space left on the destination volume"""
    pass
