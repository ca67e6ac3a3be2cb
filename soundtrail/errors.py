"""
Exception hierarchy shared by the import pipeline, storage and providers.
"""
from typing import Any, Dict, Optional


class SoundtrailError(Exception):
    """Base class for all soundtrail errors"""
    pass


class HistoryImportError(SoundtrailError):
    """Raised when an export file cannot be turned into listening events"""
    pass


class UnrecognizedFormatError(HistoryImportError):
    """Raised when the payload shape matches no supported export format"""
    pass


class InvalidJSONError(HistoryImportError):
    """Raised when a file is not valid JSON at all"""
    pass


class UnsupportedFormatError(HistoryImportError):
    """Raised when a detected format has no parser"""
    pass


class FileSizeLimitError(HistoryImportError):
    """Raised when the aggregate import size exceeds the configured cap"""
    pass


class NoListensError(HistoryImportError):
    """Raised when parsing produced zero listening events"""
    pass


class DataValidationError(HistoryImportError):
    """Raised when a merged dataset fails the batch-level sanity checks"""

    def __init__(
        self,
        message: str,
        details: str = "",
        debug_info: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        self.debug_info = debug_info or {}


class StorageError(SoundtrailError):
    """Raised when the history store rejects an operation"""
    pass


class ProviderRequestError(SoundtrailError):
    """Raised when a metadata provider request fails"""
    pass


class RetryableProviderError(ProviderRequestError):
    """Raised for failures worth retrying (timeouts, 429, 5xx)"""
    pass


class ClassificationCancelled(SoundtrailError):
    """Raised when a classification run is cancelled by the user"""

    def __init__(self, message: str = "Classification cancelled"):
        super().__init__(message)
