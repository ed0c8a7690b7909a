"""Local filesystem storage backend."""

from __future__ import annotations

import errno
import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import Any

from safeupload.logging.setup import get_logger

from .backend import StorageBackend
from .errors import (
    AlreadyExistsError,
    PathSecurityViolation,
    StorageConfigurationError,
    StorageIOError,
)
from .models import BytesSource, ContentSource, PathSource
from .sanitizer import FilenameSanitizer

logger = get_logger(__name__)

_DRIVE_PATTERN = re.compile(r"^[A-Za-z]:")

# Errors meaning "hard links are not available here"
_NO_LINK_ERRNOS = {errno.EPERM, errno.ENOTSUP, errno.EOPNOTSUPP, errno.ENOSYS, errno.EXDEV}


class SecureStorage(StorageBackend):
    """
    Local filesystem storage confined to one base directory.

    Layout: ``base_dir/<virtual directory>/<filename>``. No sidecar metadata
    is written.

    Security features:
    - Filenames are single path segments, ``..`` and ``./`` are refused
    - Directories may navigate with ``..`` as long as they end up inside
      the base directory
    - Symlinks are resolved before the containment check
    - Content is staged in a temporary file in the target directory and
      renamed into place, so readers never see a partial file
    - Without overwrite, the final link step fails if the target appeared
      in the meantime
    """

    def __init__(
        self,
        base_dir: str | os.PathLike,
        create_missing_directories: bool = True,
        directory_permissions: int = 0o755,
        file_permissions: int | None = 0o644,
    ):
        """
        Initialize secure storage.

        Args:
            base_dir: Base directory for file storage
            create_missing_directories: Create missing directories on write
                (the base directory included)
            directory_permissions: Mode for created directories
            file_permissions: Mode for stored files, None keeps the
                temporary file's mode

        Raises:
            StorageConfigurationError: If the base directory is missing and
                may not be created, or is not a writable directory
        """
        self.create_missing_directories = create_missing_directories
        self.directory_permissions = directory_permissions
        self.file_permissions = file_permissions

        base = Path(base_dir).expanduser()
        if not base.exists():
            if not create_missing_directories:
                raise StorageConfigurationError(f"Storage base directory does not exist: {base}")
            try:
                os.makedirs(base, mode=directory_permissions, exist_ok=True)
            except OSError as e:
                raise StorageConfigurationError(
                    f"Cannot create storage base directory {base}: {e}") from e

        self._base = base.resolve(strict=True)
        if not self._base.is_dir():
            raise StorageConfigurationError(f"Storage base path is not a directory: {self._base}")
        if not os.access(self._base, os.W_OK | os.X_OK):
            raise StorageConfigurationError(f"Storage base directory is not writable: {self._base}")

    @classmethod
    def from_settings(cls, settings: Any) -> SecureStorage:
        """Build storage from ``StorageSettings``."""
        return cls(
            base_dir=settings.base_dir,
            create_missing_directories=settings.create_missing_directories,
            directory_permissions=settings.directory_permissions,
            file_permissions=settings.file_permissions,
        )

    @property
    def base_dir(self) -> Path:
        return self._base

    # Path resolution

    def resolve_directory(self, directory: str) -> Path:
        """
        Resolve a virtual directory to a canonical path inside the base.

        Absolute directories are kept only if they already lie inside the
        base directory; any other absolute path is read as relative to it.

        Raises:
            PathSecurityViolation: If the result is outside the base
        """
        normalized = self._normalize_directory(directory)

        if normalized.startswith("/") or _DRIVE_PATTERN.match(normalized):
            candidate = self._canonicalize(Path(os.path.normpath(normalized)))
            if self._contains(candidate):
                return candidate
            logger.debug(f"Absolute directory {normalized!r} is outside the base, using it as relative")
            normalized = _DRIVE_PATTERN.sub("", normalized).lstrip("/")

        joined = os.path.normpath(os.path.join(self._base, normalized))
        candidate = self._canonicalize(Path(joined))
        if not self._contains(candidate):
            logger.warning(f"Blocked directory outside storage base: {directory!r}")
            raise PathSecurityViolation("Path resolves outside the storage base directory")
        return candidate

    def resolve_target_path(self, directory: str, filename: str) -> Path:
        """
        Resolve a virtual directory and filename to a path inside the base.

        Raises:
            PathSecurityViolation: If the filename is not a single safe
                segment or the location escapes the base
        """
        name = self._check_filename(filename)
        target = self.resolve_directory(directory) / name

        # An existing symlink must not lead out of the base
        if target.is_symlink() and not self._contains(target.resolve()):
            logger.warning(f"Blocked symlink leaving storage base: {target}")
            raise PathSecurityViolation("Path resolves outside the storage base directory")
        return target

    @staticmethod
    def _normalize_directory(directory: str) -> str:
        """Remove control characters, unify separators and drop empty or ``.`` segments."""
        directory = FilenameSanitizer.remove_control_characters(directory or "").strip()
        directory = directory.replace("\\", "/")
        absolute = directory.startswith("/")
        parts = [p for p in directory.split("/") if p not in ("", ".")]
        return ("/" if absolute else "") + "/".join(parts)

    @staticmethod
    def _check_filename(filename: str) -> str:
        name = FilenameSanitizer.remove_control_characters(filename or "").strip()
        if ".." in name or "./" in name or ".\\" in name:
            logger.warning(f"Blocked path traversal in filename: {filename!r}")
            raise PathSecurityViolation("Path traversal detected in filename")
        if "/" in name or "\\" in name:
            logger.warning(f"Blocked filename with directory separators: {filename!r}")
            raise PathSecurityViolation("Filename must be a single path segment")
        if name in ("", "."):
            raise PathSecurityViolation("Filename is empty")
        return name

    @staticmethod
    def _canonicalize(path: Path) -> Path:
        """
        Resolve symlinks in the deepest existing ancestor of ``path``.

        Segments that do not exist yet are appended unchanged.
        """
        existing = path
        missing: list[str] = []
        while not os.path.lexists(existing) and existing.parent != existing:
            missing.append(existing.name)
            existing = existing.parent

        resolved = existing.resolve()
        for name in reversed(missing):
            resolved = resolved / name
        return resolved

    def _contains(self, path: Path) -> bool:
        base = os.path.normcase(str(self._base))
        target = os.path.normcase(str(path))
        return target == base or target.startswith(base.rstrip(os.sep) + os.sep)

    # Directory management

    def ensure_directory(self, directory: str) -> Path:
        """
        Resolve a virtual directory and create it if allowed.

        Raises:
            PathSecurityViolation: If the directory escapes the base
            StorageIOError: If the directory is missing and cannot or may
                not be created
        """
        path = self.resolve_directory(directory)
        if path.is_dir():
            return path
        if path.exists():
            raise StorageIOError(f"Destination is not a directory: {path}")
        if not self.create_missing_directories:
            raise StorageIOError(f"Destination directory does not exist: {path}")

        try:
            os.makedirs(path, mode=self.directory_permissions, exist_ok=True)
        except OSError as e:
            raise StorageIOError(f"Failed to create directory {path}: {e}") from e

        # Re-check after creation in case an ancestor was swapped for a symlink
        if not self._contains(path.resolve()):
            raise PathSecurityViolation("Path resolves outside the storage base directory")

        logger.debug(f"Created directory {path}")
        return path

    # File operations

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
        target = self.resolve_target_path(directory, filename)
        self.ensure_directory(directory)

        if not overwrite and os.path.lexists(target):
            raise AlreadyExistsError(str(target))

        if (isinstance(source, PathSource) and source.is_platform_upload
                and self._same_device(source.path, target.parent)):
            self._adopt_upload(source.path, target, overwrite)
        else:
            self._write_via_temp(source, target, overwrite)
            if isinstance(source, PathSource) and source.is_platform_upload:
                _remove_quietly(source.path)

        logger.info(f"Stored file {target}")
        return target

    def _write_via_temp(self, source: ContentSource, target: Path, overwrite: bool) -> None:
        """Stage content next to the target, then rename it into place."""
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                if isinstance(source, BytesSource):
                    f.write(source.data)
                else:
                    with open(source.path, "rb") as src:
                        shutil.copyfileobj(src, f)
                f.flush()
                os.fsync(f.fileno())

            if self.file_permissions is not None:
                os.chmod(tmp_path, self.file_permissions)

            self._commit(tmp_path, target, overwrite)
        except OSError as e:
            raise StorageIOError(f"Failed to save file: {e}") from e
        finally:
            _remove_quietly(tmp_path)

    def _commit(self, staged: Path, target: Path, overwrite: bool) -> None:
        """
        Move a staged file onto the target path.

        With overwrite the rename replaces the target atomically. Without it
        a hard link is created, which fails if the target exists.

        Raises:
            AlreadyExistsError: If the target exists and overwrite is False
            OSError: If the filesystem operation fails
        """
        if overwrite:
            os.replace(staged, target)
            return

        try:
            os.link(staged, target)
        except FileExistsError as e:
            raise AlreadyExistsError(str(target)) from e
        except OSError as e:
            if e.errno not in _NO_LINK_ERRNOS:
                raise
            # No hard links on this filesystem: check, then rename
            if os.path.lexists(target):
                raise AlreadyExistsError(str(target)) from e
            os.replace(staged, target)

    def _adopt_upload(self, upload_path: Path, target: Path, overwrite: bool) -> None:
        """Move a transport-provided temporary file into place."""
        try:
            if self.file_permissions is not None:
                os.chmod(upload_path, self.file_permissions)
            self._commit(upload_path, target, overwrite)
        except OSError as e:
            raise StorageIOError(f"Failed to move uploaded file: {e}") from e
        _remove_quietly(upload_path)

    @staticmethod
    def _same_device(source: Path, directory: Path) -> bool:
        try:
            return os.stat(source).st_dev == os.stat(directory).st_dev
        except OSError:
            return False

    def read(self, directory: str, filename: str) -> bytes:
        """
        Read a stored file.

        Raises:
            PathSecurityViolation: If the location escapes the base
            StorageIOError: If the file is missing or unreadable
        """
        target = self.resolve_target_path(directory, filename)
        try:
            with open(target, "rb") as f:
                return f.read()
        except OSError as e:
            raise StorageIOError(f"Failed to read file: {e}") from e

    def exists(self, directory: str, filename: str) -> bool:
        return self.resolve_target_path(directory, filename).is_file()

    def delete(self, directory: str, filename: str) -> bool:
        target = self.resolve_target_path(directory, filename)
        try:
            os.unlink(target)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageIOError(f"Failed to delete file: {e}") from e
        logger.info(f"Deleted file {target}")
        return True


def _remove_quietly(path: Path) -> None:
    """Remove a file that may already be gone."""
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
