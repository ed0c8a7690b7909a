"""
Filename sanitization for uploaded files.

Client-supplied filenames are reduced to a single, filesystem-safe path
segment before they reach the storage layer.
"""

from __future__ import annotations

import re
import unicodedata

from safeupload.logging.setup import get_logger

logger = get_logger(__name__)


class FilenameSanitizer:
    """
    Cleans untrusted filenames.

    All methods are static for easy use throughout the package.
    """

    # Characters that are unsafe on at least one common filesystem or shell
    DANGEROUS_CHARACTERS = '\\/:*?"<>|#%&+=;!@$^`~'

    CONTROL_CHARACTERS_PATTERN = re.compile(r"[\x00-\x1f\x7f-\x9f]")
    DOT_RUN_PATTERN = re.compile(r"\.{2,}")

    MAX_FILENAME_LENGTH = 200
    FALLBACK_NAME = "unnamed"

    @staticmethod
    def remove_control_characters(text: str) -> str:
        """Remove NUL, C0, DEL and C1 control characters."""
        return FilenameSanitizer.CONTROL_CHARACTERS_PATTERN.sub("", text)

    @staticmethod
    def split_name(filename: str) -> tuple[str, str]:
        """
        Split a filename into stem and last extension.

        Only the last dot-delimited segment counts as the extension, so
        ``evil.php.jpg`` splits into ``("evil.php", "jpg")``. A leading dot
        does not start an extension.

        Args:
            filename: Filename without directory components

        Returns:
            Tuple of (stem, extension) with the extension lowercased and
            without the dot, or empty if there is none
        """
        dot = filename.rfind(".")
        if dot <= 0 or dot == len(filename) - 1:
            return filename, ""
        return filename[:dot], filename[dot + 1:].lower()

    @staticmethod
    def clean_filename(
        filename: str,
        remove_underscores: bool = False,
        remove_spaces: bool = False,
        custom_chars: str = "",
    ) -> str:
        """
        Make a filename safe to store.

        Args:
            filename: Untrusted filename
            remove_underscores: Also strip underscores
            remove_spaces: Also strip spaces
            custom_chars: Additional characters to strip

        Returns:
            Cleaned filename, never empty
        """
        original = filename
        filename = unicodedata.normalize("NFC", filename)

        removed = FilenameSanitizer.DANGEROUS_CHARACTERS + custom_chars
        if remove_underscores:
            removed += "_"
        if remove_spaces:
            removed += " "
        filename = filename.translate({ord(c): None for c in removed})

        filename = FilenameSanitizer.remove_control_characters(filename)
        filename = FilenameSanitizer.DOT_RUN_PATTERN.sub(".", filename)
        filename = filename.strip(". ")

        if not filename:
            filename = FilenameSanitizer.FALLBACK_NAME

        if len(filename) > FilenameSanitizer.MAX_FILENAME_LENGTH:
            stem, extension = FilenameSanitizer.split_name(filename)
            suffix = filename[len(stem):] if extension else ""
            if len(suffix) >= FilenameSanitizer.MAX_FILENAME_LENGTH:
                stem, suffix = filename, ""
            filename = stem[:FilenameSanitizer.MAX_FILENAME_LENGTH - len(suffix)] + suffix

        if filename != original:
            logger.debug(f"Sanitized filename {original!r} -> {filename!r}")

        return filename
