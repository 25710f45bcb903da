# mediaclean/errors.py
"""
Typed failures raised while sanitizing media.

Every error carries a stable ``kind`` so callers can branch on it, and a
human-readable message that can be shown as-is.
"""
from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    FILE_NOT_FOUND = "fileNotFound"
    UNSUPPORTED_FORMAT = "unsupportedFormat"
    CORRUPTED_FILE = "corruptedFile"
    INSUFFICIENT_SPACE = "insufficientSpace"
    DRM_PROTECTED = "drmProtected"
    PROCESSING_FAILED = "processingFailed"
    CANCELLED = "cancelled"
    NETWORK_REQUIRED = "networkRequired"
    PERMISSION_DENIED = "permissionDenied"


class CleaningError(Exception):
    """Base exception for all sanitization failures."""

    kind: ErrorKind = ErrorKind.PROCESSING_FAILED
    message: str = "Processing failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)


class MediaNotFoundError(CleaningError):
    kind = ErrorKind.FILE_NOT_FOUND
    message = "File not found"


class UnsupportedFormatError(CleaningError):
    kind = ErrorKind.UNSUPPORTED_FORMAT
    message = "Unsupported file format"


class CorruptedFileError(CleaningError):
    kind = ErrorKind.CORRUPTED_FILE
    message = "File is corrupted or unreadable"


class InsufficientSpaceError(CleaningError):
    kind = ErrorKind.INSUFFICIENT_SPACE
    message = "Insufficient storage space"


class DrmProtectedError(CleaningError):
    kind = ErrorKind.DRM_PROTECTED
    message = "File is DRM protected"


class ProcessingFailedError(CleaningError):
    """Raised for decode/encode faults, writer errors and verification mismatches."""

    kind = ErrorKind.PROCESSING_FAILED

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Processing failed: {reason}")


class CleaningCancelledError(CleaningError):
    kind = ErrorKind.CANCELLED
    message = "Operation was cancelled"


class NetworkRequiredError(CleaningError):
    """Raised when the source is not materialized locally (e.g. a remote URL)."""

    kind = ErrorKind.NETWORK_REQUIRED
    message = "Network connection required to download the source"


class PermissionDeniedError(CleaningError):
    kind = ErrorKind.PERMISSION_DENIED
    message = "Permission denied"
