"""Error taxonomy for the upload pipeline."""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Stable machine-readable codes for every upload failure."""
    TRANSPORT_ERROR = "transport_error"
    DECODE_ERROR = "decode_error"
    TYPE_REJECTED = "type_rejected"
    STRUCTURAL_INVALID = "structural_invalid"
    PATH_SECURITY_VIOLATION = "path_security_violation"
    ALREADY_EXISTS = "already_exists"
    STORAGE_IO_ERROR = "storage_io_error"


class UploadError(Exception):
    """Base class for errors raised by the upload pipeline."""

    code: ErrorCode | None = None

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PathSecurityViolation(UploadError):
    """Raised when a path would resolve outside the storage base directory."""
    code = ErrorCode.PATH_SECURITY_VIOLATION


class AlreadyExistsError(UploadError):
    """Raised when the target file exists and overwriting is disabled."""
    code = ErrorCode.ALREADY_EXISTS

    def __init__(self, path: str):
        super().__init__(f"File already exists: {path}")
        self.path = path


class StorageIOError(UploadError):
    """Raised when the filesystem fails during a write, read or delete."""
    code = ErrorCode.STORAGE_IO_ERROR


class StorageConfigurationError(UploadError):
    """Raised when the storage base directory is missing or inaccessible."""
    pass


class DataUriError(UploadError):
    """Raised when a data URI cannot be decoded."""
    code = ErrorCode.DECODE_ERROR
