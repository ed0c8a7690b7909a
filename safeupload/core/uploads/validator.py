"""File validation for secure file uploads."""

from __future__ import annotations

import io
import os
import stat
from typing import Any

from PIL import Image, UnidentifiedImageError

from safeupload.logging.setup import get_logger

from . import registry
from .errors import ErrorCode
from .models import (
    DEFAULT_MAX_FILE_SIZE,
    BytesSource,
    ContentSource,
    PathSource,
    UploadCandidate,
    UploadErrorCode,
    ValidationOutcome,
    format_size,
)
from .policy import AllowedPolicy
from .registry import FileCategory
from .sniffer import OCTET_STREAM, ContentSniffer

logger = get_logger(__name__)

# Raster formats whose dimensions Pillow must be able to read
RASTER_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp", "bmp", "tiff", "tif"}

# Header checks for formats Pillow cannot open
IMAGE_SIGNATURE_CHECKS = {
    "jxl": lambda h: h.startswith(b"\xff\x0a") or h.startswith(b"\x00\x00\x00\x0cJXL "),
    "heic": lambda h: h[4:8] == b"ftyp",
    "heif": lambda h: h[4:8] == b"ftyp",
    "avif": lambda h: h[4:8] == b"ftyp",
}

# Older QuickTime files start with a moov/mdat/wide/free atom instead of ftyp
_ISO_ATOMS = (b"ftyp", b"moov", b"mdat", b"wide", b"free", b"skip")

VIDEO_SIGNATURE_CHECKS = {
    "mp4": lambda h: h[4:8] == b"ftyp",
    "m4v": lambda h: h[4:8] == b"ftyp",
    "3gp": lambda h: h[4:8] == b"ftyp",
    "mov": lambda h: h[4:8] in _ISO_ATOMS,
    "avi": lambda h: h.startswith(b"RIFF") and h[8:12] == b"AVI ",
    "webm": lambda h: h.startswith(b"\x1a\x45\xdf\xa3"),
    "mkv": lambda h: h.startswith(b"\x1a\x45\xdf\xa3"),
    "flv": lambda h: h.startswith(b"FLV"),
    "ogv": lambda h: h.startswith(b"OggS"),
    "mpeg": lambda h: h.startswith(b"\x00\x00\x01\xba") or h.startswith(b"\x00\x00\x01\xb3"),
    "mpg": lambda h: h.startswith(b"\x00\x00\x01\xba") or h.startswith(b"\x00\x00\x01\xb3"),
    "wmv": lambda h: h.startswith(b"\x30\x26\xb2\x75\x8e\x66\xcf\x11"),
}

# Known formats with no magic bytes (binary STL starts with a free-form header)
SIGNATURELESS_EXTENSIONS = {"stl"}

# Content that is never trusted on the strength of a whitelisted extension
EXECUTABLE_MIME_TYPES = {
    "text/x-php",
    "text/x-shellscript",
    "text/html",
    "image/svg+xml",
    "application/x-dosexec",
    "application/x-executable",
    "application/x-mach-binary",
}


class ContentValidator:
    """
    Decides whether an upload's real content satisfies an allowed policy.

    Validation layers:
    1. Upload transport status
    2. Basic file properties (readable, non-empty, size limit)
    3. Content type: sniffed MIME type checked against the declared
       extension and the policy
    4. Structure: readable image dimensions, PDF and video headers

    Expected rejections are reported through ``ValidationOutcome``;
    nothing in this class raises for a bad file.
    """

    def __init__(
        self,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        sniffer: ContentSniffer | None = None,
    ):
        """
        Initialize content validator.

        Args:
            max_file_size: Maximum accepted size in bytes
            sniffer: Content sniffer, a default one is created if omitted
        """
        self.max_file_size = max_file_size
        self.sniffer = sniffer or ContentSniffer()

    @classmethod
    def from_settings(cls, settings: Any) -> ContentValidator:
        """
        Build a validator from ``ValidationSettings``.

        Args:
            settings: Object with max_file_size_mb, sniff_bytes and
                use_libmagic attributes
        """
        sniffer = ContentSniffer(
            sniff_bytes=settings.sniff_bytes,
            use_libmagic=settings.use_libmagic,
        )
        return cls(max_file_size=settings.max_file_size_mb * 1024 * 1024, sniffer=sniffer)

    def validate(self, candidate: UploadCandidate, policy: AllowedPolicy) -> ValidationOutcome:
        """
        Validate one upload candidate against a policy.

        Args:
            candidate: Untrusted file
            policy: Allowed file types

        Returns:
            ValidationOutcome, accepted or carrying a rejection reason
        """
        extension = candidate.extension
        name = candidate.declared_filename

        # 1. Transport status
        if candidate.upload_error_code != UploadErrorCode.OK:
            message = UploadErrorCode.describe(candidate.upload_error_code)
            logger.warning(f"Upload of {name!r} failed in transport: {message}")
            return ValidationOutcome.reject(ErrorCode.TRANSPORT_ERROR, message, extension)

        # 2. Basic properties
        error = self._check_basic_properties(candidate.source)
        if error:
            logger.warning(f"Rejected {name!r}: {error}")
            return ValidationOutcome.reject(ErrorCode.STRUCTURAL_INVALID, error, extension)

        # 3. Content type
        try:
            detected = self.sniffer.sniff(candidate.source, extension)
        except OSError as e:
            logger.warning(f"Could not read {name!r} for type detection: {e}")
            return ValidationOutcome.reject(
                ErrorCode.STRUCTURAL_INVALID, "File could not be read", extension)

        allowed, reason = self.is_type_allowed(extension, detected, policy)
        if not allowed:
            logger.warning(f"Rejected {name!r}: {reason}")
            return ValidationOutcome.reject(ErrorCode.TYPE_REJECTED, reason, extension, detected)

        # 4. Structure
        if not self.check_structure(candidate.source, extension, detected):
            logger.warning(f"Rejected {name!r}: structural check failed")
            return ValidationOutcome.reject(
                ErrorCode.STRUCTURAL_INVALID, "Invalid or corrupted file", extension, detected)

        category = registry.category_for_mime_type(detected) if _conclusive(detected) else None
        if category is None:
            category = registry.category_for_extension(extension)

        logger.debug(f"Accepted {name!r} as {detected or 'unknown type'}")
        return ValidationOutcome.accept(extension, category, detected)

    def _check_basic_properties(self, source: ContentSource) -> str | None:
        """Return an error message if the content fails basic checks."""
        if isinstance(source, PathSource):
            try:
                info = os.stat(source.path)
            except OSError:
                return "Uploaded file not found"
            if not stat.S_ISREG(info.st_mode):
                return "Uploaded file is not a regular file"
            size = info.st_size
        else:
            size = len(source.data)

        if size == 0:
            return "File is empty"
        if size > self.max_file_size:
            return (f"File too large ({format_size(size)}, "
                    f"max {format_size(self.max_file_size)})")
        return None

    def is_type_allowed(
            self,
            extension: str,
            detected: str | None,
            policy: AllowedPolicy) -> tuple[bool, str]:
        """
        Decide whether a declared extension and detected MIME type pass.

        Args:
            extension: Declared extension (last segment, lowercase)
            detected: Sniffed MIME type, None if inconclusive
            policy: Allowed file types

        Returns:
            Tuple of (allowed, reason). The reason is empty when allowed.
        """
        if policy.allows_all:
            return True, ""
        if policy.is_empty:
            return False, "No file types are allowed"

        expected = registry.mime_type_for_extension(extension) if extension else None

        # Unrecognised binary under a known extension is a mismatch
        if (detected == OCTET_STREAM and expected
                and extension not in SIGNATURELESS_EXTENSIONS):
            return False, (f"File content does not match extension '.{extension}' "
                           f"(unrecognised binary content, expected {expected})")

        if _conclusive(detected):
            # HEIC/HEIF is converted downstream, so any image policy takes it
            if detected in ("image/heic", "image/heif") and policy.allows_any_image():
                return True, ""

            if expected and not registry.mime_types_equivalent(expected, detected):
                return False, (f"File content ({detected}) does not match "
                               f"extension '.{extension}' ({expected})")

            if policy.allows_mime_type(detected):
                return True, ""

        if extension and extension in policy.allowed_extensions:
            if detected in EXECUTABLE_MIME_TYPES:
                return False, f"Executable content ({detected}) is not allowed"
            return True, ""

        if _conclusive(detected):
            return False, f"File type {detected} is not allowed"
        label = f"'.{extension}'" if extension else "without extension"
        return False, f"File type {label} is not allowed"

    def is_extension_allowed(self, extension: str, policy: AllowedPolicy) -> bool:
        """Extension-only check, used before content is available."""
        return policy.allows_extension(extension)

    def check_structure(
            self,
            source: ContentSource,
            extension: str,
            detected: str | None) -> bool:
        """
        Shallow structural check after the type was accepted.

        The check is chosen by the detected MIME type when there is one, and
        by the declared extension otherwise. Archive, CAD and office formats
        pass without parsing.
        """
        key = extension
        if _conclusive(detected):
            key = registry.extension_for_mime_type(detected) or extension

        try:
            head = self.sniffer.read_head(source)
        except OSError as e:
            logger.warning(f"Could not read file for structural check: {e}")
            return False

        if key in RASTER_EXTENSIONS:
            return self._has_image_dimensions(source)
        if key in IMAGE_SIGNATURE_CHECKS:
            return IMAGE_SIGNATURE_CHECKS[key](head)
        if key == "pdf":
            return head.startswith(b"%PDF")
        if registry.category_for_extension(key) is FileCategory.VIDEO:
            check = VIDEO_SIGNATURE_CHECKS.get(key)
            return check(head) if check else True
        return True

    @staticmethod
    def _has_image_dimensions(source: ContentSource) -> bool:
        """Check that Pillow can read positive image dimensions."""
        try:
            if isinstance(source, BytesSource):
                img = Image.open(io.BytesIO(source.data))
            else:
                img = Image.open(source.path)
            with img:
                width, height = img.size
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError,
                Image.DecompressionBombError) as e:
            logger.debug(f"Image dimensions unreadable: {e}")
            return False
        return width > 0 and height > 0


def _conclusive(detected: str | None) -> bool:
    return bool(detected) and detected != OCTET_STREAM
