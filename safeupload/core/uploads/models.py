"""
Upload data models.

Content always arrives through an explicit source type: either bytes held
in memory or a path to a file on disk. Nothing downstream has to guess
whether a string is a path or raw content.
"""

from __future__ import annotations

import base64
import binascii
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Any

from .errors import DataUriError, ErrorCode
from .registry import FileCategory, extension_for_mime_type
from .sanitizer import FilenameSanitizer

DEFAULT_MAX_FILE_SIZE = 100 * 1024 * 1024  # 100 MB

DATA_URI_PATTERN = re.compile(r"^data:([^;,]+);base64,", re.IGNORECASE)
DATA_URI_DEFAULT_NAME = "data_uri_file"


@dataclass(frozen=True)
class BytesSource:
    """Content held in memory."""
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class PathSource:
    """
    Content stored in a file.

    ``is_platform_upload`` marks files handed over by the upload transport
    (a request's temporary file). Storage may move such files into place
    instead of copying them.
    """
    path: Path
    is_platform_upload: bool = False

    @property
    def size(self) -> int:
        return os.stat(self.path).st_size


ContentSource = BytesSource | PathSource


class UploadErrorCode(IntEnum):
    """Upload transport status codes reported alongside multipart uploads."""
    OK = 0
    INI_SIZE = 1
    FORM_SIZE = 2
    PARTIAL = 3
    NO_FILE = 4
    NO_TMP_DIR = 6
    CANT_WRITE = 7
    EXTENSION = 8

    @property
    def message(self) -> str:
        return _UPLOAD_ERROR_MESSAGES[self]

    @classmethod
    def describe(cls, code: int) -> str:
        """Message for any integer code, including unknown ones."""
        try:
            return cls(code).message
        except ValueError:
            return "Unknown upload error"


_UPLOAD_ERROR_MESSAGES = {
    UploadErrorCode.OK: "No error",
    UploadErrorCode.INI_SIZE: "File exceeds upload_max_filesize directive",
    UploadErrorCode.FORM_SIZE: "File exceeds MAX_FILE_SIZE directive",
    UploadErrorCode.PARTIAL: "File was only partially uploaded",
    UploadErrorCode.NO_FILE: "No file was uploaded",
    UploadErrorCode.NO_TMP_DIR: "Missing temporary folder",
    UploadErrorCode.CANT_WRITE: "Failed to write file to disk",
    UploadErrorCode.EXTENSION: "File upload stopped by extension",
}


def format_size(size: int | None) -> str:
    """Human readable size, e.g. ``1.5 KB``."""
    if size is None:
        return "Unknown size"
    value = float(size)
    units = ["B", "KB", "MB", "GB", "TB"]
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"


def decode_data_uri(data_uri: str, max_size: int = DEFAULT_MAX_FILE_SIZE) -> tuple[str, bytes]:
    """
    Decode a base64 data URI.

    Args:
        data_uri: String of the form ``data:<mime>;base64,<payload>``
        max_size: Maximum decoded size in bytes

    Returns:
        Tuple of (declared MIME type, decoded bytes)

    Raises:
        DataUriError: If the prefix is malformed, the payload is not strict
            base64, or the decoded data is empty or too large
    """
    match = DATA_URI_PATTERN.match(data_uri)
    if not match:
        raise DataUriError("Invalid data URI format")

    mime_type = match.group(1).strip().lower()
    payload = re.sub(r"\s+", "", data_uri[match.end():])

    # Reject oversized payloads before decoding them
    if len(payload) * 3 // 4 > max_size + 2:
        raise DataUriError(f"Data URI exceeds maximum size of {format_size(max_size)}")

    try:
        data = base64.b64decode(payload, validate=True)
    except binascii.Error as e:
        raise DataUriError(f"Invalid base64 data in data URI: {e}") from e

    if not data:
        raise DataUriError("Data URI contains no data")
    if len(data) > max_size:
        raise DataUriError(f"Data URI exceeds maximum size of {format_size(max_size)}")

    return mime_type, data


@dataclass(frozen=True)
class UploadCandidate:
    """A single untrusted file waiting for validation."""
    declared_filename: str
    source: ContentSource
    declared_mime_hint: str | None = None
    upload_error_code: int = UploadErrorCode.OK

    @classmethod
    def from_bytes(
        cls,
        filename: str,
        data: bytes,
        mime_hint: str | None = None,
    ) -> UploadCandidate:
        return cls(filename, BytesSource(data), mime_hint)

    @classmethod
    def from_path(
        cls,
        filename: str,
        path: str | os.PathLike,
        mime_hint: str | None = None,
        is_platform_upload: bool = False,
    ) -> UploadCandidate:
        return cls(filename, PathSource(Path(path), is_platform_upload), mime_hint)

    @classmethod
    def from_upload(cls, upload: Mapping[str, Any]) -> UploadCandidate:
        """
        Build a candidate from a multipart upload mapping.

        Args:
            upload: Mapping with ``name``, ``tmp_name``, ``type``, ``error``
                and ``size`` keys, as produced by a web framework for a
                single uploaded file

        Returns:
            UploadCandidate whose content source is the temporary file
        """
        name = upload.get("name") or ""
        tmp_name = upload.get("tmp_name") or ""
        error = upload.get("error", UploadErrorCode.OK)
        try:
            error = int(error)
        except (TypeError, ValueError):
            error = UploadErrorCode.OK

        return cls(
            declared_filename=name if isinstance(name, str) else "",
            source=PathSource(Path(tmp_name), is_platform_upload=True),
            declared_mime_hint=upload.get("type") or None,
            upload_error_code=error,
        )

    @classmethod
    def from_data_uri(
        cls,
        data_uri: str,
        filename: str = "",
        max_size: int = DEFAULT_MAX_FILE_SIZE,
    ) -> UploadCandidate:
        """
        Build a candidate from a base64 data URI.

        The URI's MIME type is only used to pick an extension when the
        requested filename has none. It is never trusted for validation.

        Raises:
            DataUriError: If the data URI cannot be decoded
        """
        mime_type, data = decode_data_uri(data_uri, max_size)

        filename = filename or DATA_URI_DEFAULT_NAME
        if not FilenameSanitizer.split_name(filename)[1]:
            extension = extension_for_mime_type(mime_type)
            if extension:
                filename = f"{filename}.{extension}"

        return cls(filename, BytesSource(data), mime_type)

    @property
    def extension(self) -> str:
        """Lowercased last extension of the declared filename."""
        return FilenameSanitizer.split_name(os.path.basename(self.declared_filename))[1]

    @property
    def formatted_size(self) -> str:
        try:
            return format_size(self.source.size)
        except OSError:
            return format_size(None)


def expand_upload_fields(fields: Mapping[str, Any]) -> list[dict[str, Any]]:
    """
    Split a multi-file upload mapping into single-file mappings.

    ``{"name": ["a.jpg", "b.png"], "tmp_name": [...], ...}`` becomes
    ``[{"name": "a.jpg", ...}, {"name": "b.png", ...}]``. A single-file
    mapping is returned as a one-element list.
    """
    names = fields.get("name")
    if not isinstance(names, (list, tuple)):
        return [dict(fields)]

    uploads = []
    for index in range(len(names)):
        upload = {}
        for key, values in fields.items():
            if isinstance(values, (list, tuple)):
                upload[key] = values[index] if index < len(values) else None
            else:
                upload[key] = values
        uploads.append(upload)
    return uploads


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of validating one candidate. Rejections carry a reason code."""
    accepted: bool
    normalized_extension: str
    detected_category: FileCategory | None = None
    detected_mime: str | None = None
    reason: ErrorCode | None = None
    message: str | None = None

    @classmethod
    def accept(
        cls,
        extension: str,
        category: FileCategory | None = None,
        mime_type: str | None = None,
    ) -> ValidationOutcome:
        return cls(True, extension, category, mime_type)

    @classmethod
    def reject(
        cls,
        reason: ErrorCode,
        message: str,
        extension: str = "",
        mime_type: str | None = None,
    ) -> ValidationOutcome:
        return cls(False, extension, None, mime_type, reason, message)

    @property
    def needs_transcoding(self) -> bool:
        """True for HEIC/HEIF content, which most clients cannot display."""
        return self.accepted and self.detected_mime in ("image/heic", "image/heif")


@dataclass(frozen=True)
class FileUploadError:
    """A failed file in a batch."""
    filename: str
    message: str
    code: str = ""

    def description(self) -> str:
        if self.code:
            return f"{self.filename}: {self.message} (Code: {self.code})"
        return f"{self.filename}: {self.message}"


@dataclass
class FileUploadResult:
    """Outcome of a batch save."""
    successful_files: list[str] = field(default_factory=list)
    errors: list[FileUploadError] = field(default_factory=list)
    total_files: int = 0

    @property
    def successful_count(self) -> int:
        return len(self.successful_files)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def is_complete_success(self) -> bool:
        return self.successful_count == self.total_files and not self.errors

    @property
    def has_successful_uploads(self) -> bool:
        return self.successful_count > 0

    @property
    def error_messages(self) -> list[str]:
        return [error.message for error in self.errors]

    def error_for_file(self, filename: str) -> FileUploadError | None:
        for error in self.errors:
            if error.filename == filename:
                return error
        return None
