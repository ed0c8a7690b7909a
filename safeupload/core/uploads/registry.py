"""
Registry of supported file types.

The table is a module-level tuple built once at import time. Every lookup
is a pure function over that tuple, so the registry can be shared freely
between threads and callers.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache


class FileCategory(str, Enum):
    """Coarse file type groupings usable as policy tokens."""
    IMAGE = "image"
    PDF = "pdf"
    DOC = "doc"
    CAD = "cad"
    ARCHIVE = "archive"
    VIDEO = "video"


@dataclass(frozen=True)
class TypeDescriptor:
    """One extension/MIME/category triple."""
    extension: str
    mime_type: str
    category: FileCategory


def _types(category: FileCategory, *pairs: tuple[str, str]) -> tuple[TypeDescriptor, ...]:
    return tuple(TypeDescriptor(ext, mime, category) for ext, mime in pairs)


# First row for an extension is its canonical MIME type, first row for a
# MIME type is its canonical extension.
SUPPORTED_TYPES: tuple[TypeDescriptor, ...] = (
    _types(
        FileCategory.IMAGE,
        ("jpg", "image/jpeg"),
        ("jpeg", "image/jpeg"),
        ("png", "image/png"),
        ("gif", "image/gif"),
        ("webp", "image/webp"),
        ("avif", "image/avif"),
        ("jxl", "image/jxl"),
        ("bmp", "image/bmp"),
        ("tiff", "image/tiff"),
        ("tif", "image/tiff"),
        ("heic", "image/heic"),
        ("heif", "image/heif"),
    )
    + _types(
        FileCategory.PDF,
        ("pdf", "application/pdf"),
        ("pdf", "application/x-pdf"),
        ("pdf", "application/acrobat"),
        ("pdf", "application/vnd.pdf"),
    )
    + _types(
        FileCategory.DOC,
        ("doc", "application/msword"),
        ("docx", "application/vnd.openxmlformats-officedocument.wordprocessingml.document"),
        ("xls", "application/vnd.ms-excel"),
        ("xlsx", "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"),
        ("ppt", "application/vnd.ms-powerpoint"),
        ("pptx", "application/vnd.openxmlformats-officedocument.presentationml.presentation"),
        ("txt", "text/plain"),
        ("rtf", "application/rtf"),
        ("csv", "text/csv"),
        ("xml", "application/xml"),
        ("json", "application/json"),
        ("odt", "application/vnd.oasis.opendocument.text"),
        ("ods", "application/vnd.oasis.opendocument.spreadsheet"),
        ("odp", "application/vnd.oasis.opendocument.presentation"),
    )
    + _types(
        FileCategory.CAD,
        ("dwg", "application/dwg"),
        ("dxf", "application/dxf"),
        ("step", "application/step"),
        ("stp", "application/step"),
        ("iges", "application/iges"),
        ("igs", "application/iges"),
        ("stl", "application/stl"),
        ("sldprt", "application/sldprt"),
        ("sldasm", "application/sldasm"),
    )
    + _types(
        FileCategory.ARCHIVE,
        ("zip", "application/zip"),
        ("rar", "application/x-rar-compressed"),
        ("7z", "application/x-7z-compressed"),
        ("tar", "application/x-tar"),
        ("gz", "application/gzip"),
    )
    + _types(
        FileCategory.VIDEO,
        ("mp4", "video/mp4"),
        ("avi", "video/x-msvideo"),
        ("mov", "video/quicktime"),
        ("wmv", "video/x-ms-wmv"),
        ("flv", "video/x-flv"),
        ("webm", "video/webm"),
        ("mkv", "video/x-matroska"),
        ("mpeg", "video/mpeg"),
        ("mpg", "video/mpeg"),
        ("3gp", "video/3gpp"),
        ("m4v", "video/x-m4v"),
        ("ogv", "video/ogg"),
    )
)

# MIME types that name the same underlying format
EQUIVALENT_MIME_TYPES: tuple[frozenset[str], ...] = (
    frozenset({"application/pdf", "application/x-pdf",
               "application/acrobat", "application/vnd.pdf"}),
    frozenset({"application/xml", "text/xml"}),
    frozenset({"text/plain", "text/csv"}),
    frozenset({"image/heic", "image/heif"}),
    frozenset({"video/mp4", "video/quicktime", "video/3gpp", "video/x-m4v"}),
    frozenset({"application/rtf", "text/rtf"}),
    frozenset({"application/gzip", "application/x-gzip"}),
    frozenset({"application/x-rar-compressed", "application/vnd.rar",
               "application/x-rar"}),
)


def find_by_extension(extension: str) -> TypeDescriptor | None:
    """Return the canonical descriptor for an extension (case-insensitive)."""
    extension = extension.lower().lstrip(".")
    for descriptor in SUPPORTED_TYPES:
        if descriptor.extension == extension:
            return descriptor
    return None


def find_by_mime_type(mime_type: str) -> TypeDescriptor | None:
    """Return the canonical descriptor for a MIME type (case-insensitive)."""
    mime_type = mime_type.lower()
    for descriptor in SUPPORTED_TYPES:
        if descriptor.mime_type == mime_type:
            return descriptor
    return None


def is_category(token: str) -> bool:
    return token.lower() in {c.value for c in FileCategory}


@lru_cache(maxsize=None)
def types_for_category(category: FileCategory | str) -> tuple[TypeDescriptor, ...]:
    """All descriptors of a category, in table order."""
    category = FileCategory(category)
    return tuple(d for d in SUPPORTED_TYPES if d.category is category)


def extensions_for_category(category: FileCategory | str) -> tuple[str, ...]:
    return tuple(dict.fromkeys(d.extension for d in types_for_category(category)))


def mime_types_for_category(category: FileCategory | str) -> tuple[str, ...]:
    return tuple(dict.fromkeys(d.mime_type for d in types_for_category(category)))


def category_for_extension(extension: str) -> FileCategory | None:
    descriptor = find_by_extension(extension)
    return descriptor.category if descriptor else None


def category_for_mime_type(mime_type: str) -> FileCategory | None:
    descriptor = find_by_mime_type(mime_type)
    return descriptor.category if descriptor else None


def mime_type_for_extension(extension: str) -> str | None:
    descriptor = find_by_extension(extension)
    return descriptor.mime_type if descriptor else None


def extension_for_mime_type(mime_type: str) -> str | None:
    descriptor = find_by_mime_type(mime_type)
    return descriptor.extension if descriptor else None


@lru_cache(maxsize=None)
def all_extensions() -> tuple[str, ...]:
    """Every registered extension once, in table order."""
    return tuple(dict.fromkeys(d.extension for d in SUPPORTED_TYPES))


def is_known_extension(extension: str) -> bool:
    return find_by_extension(extension) is not None


def mime_types_equivalent(first: str, second: str) -> bool:
    """
    Check whether two MIME types name the same format.

    Args:
        first: MIME type
        second: MIME type

    Returns:
        True if equal (case-insensitive) or in the same equivalence group
    """
    first, second = first.lower(), second.lower()
    if first == second:
        return True
    return any(first in group and second in group
               for group in EQUIVALENT_MIME_TYPES)
