"""Abstract storage backend for uploaded files."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from .models import ContentSource


class StorageBackend(ABC):
    """
    Abstract base class for upload storage backends.

    Locations are given as a directory relative to the backend's base
    directory plus a single-segment filename. Implementations must keep
    every resolved location inside the base directory and must never expose
    a partially written file.
    """

    @property
    @abstractmethod
    def base_dir(self) -> Path:
        """Canonical base directory all files live under."""
        pass

    @abstractmethod
    def resolve_directory(self, directory: str) -> Path:
        """
        Resolve a virtual directory to an absolute path inside the base.

        Raises:
            PathSecurityViolation: If the directory escapes the base
        """
        pass

    @abstractmethod
    def resolve_target_path(self, directory: str, filename: str) -> Path:
        """
        Resolve a virtual directory and filename to an absolute path.

        Raises:
            PathSecurityViolation: If the filename navigates or the path
                escapes the base
        """
        pass

    @abstractmethod
    def ensure_directory(self, directory: str) -> Path:
        """
        Make sure a destination directory exists.

        Raises:
            PathSecurityViolation: If the directory escapes the base
            StorageIOError: If it is missing and cannot or may not be created
        """
        pass

    @abstractmethod
    def write(
        self,
        directory: str,
        filename: str,
        source: ContentSource,
        overwrite: bool = False,
    ) -> Path:
        """
        Store content atomically.

        Args:
            directory: Virtual directory relative to the base
            filename: Single path segment
            source: Content to store
            overwrite: Replace an existing file

        Returns:
            Absolute path of the stored file

        Raises:
            PathSecurityViolation: If the location escapes the base
            AlreadyExistsError: If the file exists and overwrite is False
            StorageIOError: If the write fails
        """
        pass

    @abstractmethod
    def read(self, directory: str, filename: str) -> bytes:
        """Read a stored file."""
        pass

    @abstractmethod
    def exists(self, directory: str, filename: str) -> bool:
        """Check whether a file exists."""
        pass

    @abstractmethod
    def delete(self, directory: str, filename: str) -> bool:
        """
        Delete a file.

        Returns:
            True if a file was deleted, False if there was none
        """
        pass
