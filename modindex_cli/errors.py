"""Error kinds surfaced by ingestion.

Callers branch on :attr:`IngestError.kind` (or ``isinstance``) rather than on
message text, so that "we declined to overwrite good data" can be told apart
from "we could not reach the source".
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    FETCH_FAILED = "fetch_failed"
    EXTRACTION_FAILED = "extraction_failed"
    VALIDATION_REJECTED = "validation_rejected"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    CANCELLED = "cancelled"

    @property
    def retryable(self) -> bool:
        """Whether repeating the same request may succeed without new input."""
        return self in (ErrorKind.FETCH_FAILED, ErrorKind.STORAGE_UNAVAILABLE, ErrorKind.CANCELLED)


class IngestError(Exception):
    """Base class for every failure of one ingestion attempt."""

    kind: ErrorKind

    def __init__(self, message: str, module_path: str = "", version: str = "") -> None:
        super().__init__(message)
        self.module_path = module_path
        self.version = version

    def __str__(self) -> str:
        message = super().__str__()
        if self.module_path:
            return f"{self.module_path}@{self.version}: {message}"
        return message


class FetchFailed(IngestError):
    """The module could not be fetched (transport error or not found)."""

    kind = ErrorKind.FETCH_FAILED

    def __init__(self, message: str, module_path: str = "", version: str = "", not_found: bool = False) -> None:
        super().__init__(message, module_path, version)
        self.not_found = not_found


class ExtractionFailed(IngestError):
    """The fetched contents are malformed (bad manifest, unreadable files)."""

    kind = ErrorKind.EXTRACTION_FAILED


class ValidationRejected(IngestError):
    """The candidate records are degenerate; the stored state was kept."""

    kind = ErrorKind.VALIDATION_REJECTED


class StorageUnavailable(IngestError):
    """The store failed; no partial write happened."""

    kind = ErrorKind.STORAGE_UNAVAILABLE


class Cancelled(IngestError):
    """The caller's deadline passed or the caller cancelled the request."""

    kind = ErrorKind.CANCELLED


class ManifestSyntaxError(ValueError):
    """Raised by the go.mod parser; carries the offending line number."""

    def __init__(self, filename: str, line: int, message: str) -> None:
        super().__init__(f"{filename}:{line}: {message}")
        self.filename = filename
        self.line = line
