"""
Secure file upload pipeline.

Provides:
- Content-based type validation against allowed file type policies
- Collision-free filename generation
- Path-contained, atomic local storage
- A batch upload service tying the pieces together
"""

from .backend import StorageBackend
from .collision import CollisionResolver, CollisionStrategy, CustomStrategy
from .errors import (
    AlreadyExistsError,
    DataUriError,
    ErrorCode,
    PathSecurityViolation,
    StorageConfigurationError,
    StorageIOError,
    UploadError,
)
from .local_backend import SecureStorage
from .manager import FileUploadService, Transcoder
from .models import (
    BytesSource,
    FileUploadError,
    FileUploadResult,
    PathSource,
    UploadCandidate,
    UploadErrorCode,
    ValidationOutcome,
    expand_upload_fields,
)
from .policy import AllowedPolicy
from .registry import FileCategory, TypeDescriptor
from .sanitizer import FilenameSanitizer
from .sniffer import ContentSniffer
from .validator import ContentValidator

__all__ = [
    "AllowedPolicy",
    "AlreadyExistsError",
    "BytesSource",
    "CollisionResolver",
    "CollisionStrategy",
    "ContentSniffer",
    "ContentValidator",
    "CustomStrategy",
    "DataUriError",
    "ErrorCode",
    "FileCategory",
    "FileUploadError",
    "FileUploadResult",
    "FileUploadService",
    "FilenameSanitizer",
    "PathSecurityViolation",
    "PathSource",
    "SecureStorage",
    "StorageBackend",
    "StorageConfigurationError",
    "StorageIOError",
    "Transcoder",
    "TypeDescriptor",
    "UploadCandidate",
    "UploadError",
    "UploadErrorCode",
    "ValidationOutcome",
    "expand_upload_fields",
]
