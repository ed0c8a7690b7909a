"""Upload service: validates, names and stores batches of files."""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any, Protocol

from safeupload.logging.setup import get_logger

from .backend import StorageBackend
from .collision import CollisionResolver
from .errors import AlreadyExistsError, DataUriError, ErrorCode, StorageIOError
from .local_backend import SecureStorage
from .models import (
    DATA_URI_DEFAULT_NAME,
    FileUploadError,
    FileUploadResult,
    UploadCandidate,
    ValidationOutcome,
)
from .policy import AllowedPolicy
from .registry import FileCategory
from .sanitizer import FilenameSanitizer
from .validator import ContentValidator

logger = get_logger(__name__)

DEFAULT_FILE_TYPES = (FileCategory.IMAGE, FileCategory.PDF, FileCategory.CAD)

UploadInput = UploadCandidate | Mapping[str, Any] | str | bytes


class Transcoder(Protocol):
    """
    Post-validation conversion step, e.g. HEIC to JPEG.

    Called with the stored file and its validation outcome; returns the path
    of the file that should be reported instead. The returned file must live
    inside the storage base directory. If the input is left on disk it is
    still removed on rollback.
    """

    def __call__(self, stored_path: Path, outcome: ValidationOutcome) -> Path:
        ...


class FileUploadService:
    """
    High-level upload service.

    Features:
    - Content-based validation against an allowed file type policy
    - Optional collision-free filename generation, batch aware
    - Atomic storage confined to the storage base directory
    - Optional rollback of a batch when any file fails
    - Optional transcoding hook for HEIC/HEIF content

    Per-file problems end up in the returned ``FileUploadResult``. Path
    security violations and storage configuration errors are raised.
    """

    def __init__(
        self,
        storage: StorageBackend,
        validator: ContentValidator | None = None,
        resolver: CollisionResolver | None = None,
        allowed_file_types: Iterable[FileCategory | str] | None = None,
        rollback_on_error: bool = False,
        generate_unique_filenames: bool = False,
        overwrite: bool = False,
        filter_collision_extensions: bool = False,
        transcoder: Transcoder | None = None,
    ):
        """
        Initialize upload service.

        Args:
            storage: Storage backend
            validator: Content validator, default one if omitted
            resolver: Collision resolver, increment strategy if omitted
            allowed_file_types: Policy tokens; None or empty applies the
                default image, pdf and cad policy
            rollback_on_error: Delete the whole batch if any file fails
            generate_unique_filenames: Default for ``save``
            overwrite: Default for ``save``
            filter_collision_extensions: Probe only extensions the policy
                can accept when generating names
            transcoder: Optional conversion step for HEIC/HEIF content
        """
        self.storage = storage
        self.validator = validator or ContentValidator()
        self.resolver = resolver or CollisionResolver()
        self.rollback_on_error = rollback_on_error
        self.generate_unique_filenames = generate_unique_filenames
        self.overwrite = overwrite
        self.filter_collision_extensions = filter_collision_extensions
        self.transcoder = transcoder
        self._policy = AllowedPolicy()
        self.set_allowed_file_types(allowed_file_types or ())

    @classmethod
    def from_settings(cls, settings: Any, transcoder: Transcoder | None = None) -> FileUploadService:
        """
        Build a service and its collaborators from ``AppSettings``.

        Raises:
            StorageConfigurationError: If the storage base directory is unusable
        """
        return cls(
            storage=SecureStorage.from_settings(settings.storage),
            validator=ContentValidator.from_settings(settings.validation),
            resolver=CollisionResolver.from_settings(settings.collision),
            allowed_file_types=settings.validation.allowed_file_types,
            rollback_on_error=settings.upload.rollback_on_error,
            generate_unique_filenames=settings.upload.generate_unique_filenames,
            overwrite=settings.storage.overwrite,
            filter_collision_extensions=settings.collision.filter_by_policy,
            transcoder=transcoder,
        )

    # Policy management

    @property
    def policy(self) -> AllowedPolicy:
        return self._policy

    @property
    def allowed_file_types(self) -> list[str]:
        return list(self._policy.tokens)

    def set_allowed_file_types(self, file_types: Iterable[FileCategory | str]) -> None:
        """Replace the policy. An empty list applies the default policy."""
        file_types = list(file_types)
        if not file_types:
            file_types = list(DEFAULT_FILE_TYPES)
        self._policy = AllowedPolicy.from_tokens(file_types)

    def allow_file_type(self, file_types: FileCategory | str | Iterable[FileCategory | str]) -> None:
        for token in _as_tokens(file_types):
            self._policy = self._policy.with_token(token)

    def disallow_file_type(self, file_types: FileCategory | str | Iterable[FileCategory | str]) -> None:
        for token in _as_tokens(file_types):
            self._policy = self._policy.without_token(token)

    def is_unrestricted(self) -> bool:
        return self._policy.allows_all

    def restriction_description(self) -> str:
        return self._policy.describe()

    def is_file_type_allowed(self, filename: str) -> bool:
        """Extension-only pre-check, content is not inspected."""
        extension = FilenameSanitizer.split_name(filename)[1]
        return self.validator.is_extension_allowed(extension, self._policy)

    # Saving

    def save(
        self,
        inputs: Iterable[UploadInput],
        destination: str = "",
        filenames: Sequence[str | None] | None = None,
        overwrite: bool | None = None,
        generate_unique_filenames: bool | None = None,
    ) -> FileUploadResult:
        """
        Validate and store a batch of files.

        Args:
            inputs: Upload candidates, multipart upload mappings, data URI
                strings or raw bytes
            destination: Virtual directory relative to the storage base
            filenames: Requested names, matched to inputs by position;
                missing entries fall back to the declared filename
            overwrite: Replace existing files (default from constructor)
            generate_unique_filenames: Rename on collision (default from
                constructor)

        Returns:
            FileUploadResult with stored paths and per-file errors

        Raises:
            PathSecurityViolation: If the destination escapes the base
            StorageIOError: If the destination directory is unusable
        """
        overwrite = self.overwrite if overwrite is None else overwrite
        if generate_unique_filenames is None:
            generate_unique_filenames = self.generate_unique_filenames

        items = list(inputs)
        result = FileUploadResult(total_files=len(items))

        # 1. Destination must resolve inside the base directory
        directory = self.storage.ensure_directory(destination)

        resolver = self.resolver
        if self.filter_collision_extensions:
            resolver = resolver.for_policy(self._policy)

        used_names: list[str] = []
        stored: list[Path] = []

        for index, item in enumerate(items):
            requested = filenames[index] if filenames and index < len(filenames) else None

            # 2. Decode input into a candidate with its final filename
            try:
                candidate = self._prepare_candidate(item, requested)
            except DataUriError as e:
                name = requested or DATA_URI_DEFAULT_NAME
                logger.warning(f"Rejected {name!r}: {e.message}")
                result.errors.append(FileUploadError(name, e.message, e.code.value))
                continue

            name = candidate.declared_filename

            # 3. Validate content against the policy
            outcome = self.validator.validate(candidate, self._policy)
            if not outcome.accepted:
                result.errors.append(FileUploadError(name, outcome.message or "", outcome.reason.value))
                continue

            # 4. Pick a free name
            if generate_unique_filenames:
                name = resolver.resolve(directory, name, used_names)
            used_names.append(name)

            # 5. Store
            try:
                path = self.storage.write(destination, name, candidate.source, overwrite)
            except (AlreadyExistsError, StorageIOError) as e:
                logger.warning(f"Could not store {name!r}: {e.message}")
                result.errors.append(FileUploadError(name, e.message, e.code.value))
                continue

            # 6. Optional transcoding
            if outcome.needs_transcoding and self.transcoder is not None:
                try:
                    converted = self._transcode(path, outcome)
                except Exception as e:
                    logger.exception(f"Transcoding failed for {name!r}")
                    result.errors.append(FileUploadError(
                        name, f"Transcoding failed: {e}", ErrorCode.STRUCTURAL_INVALID.value))
                    continue
                # Keep the input tracked for rollback if the transcoder left it
                if converted != path and path.exists():
                    stored.append(path)
                path = converted

            stored.append(path)
            result.successful_files.append(str(path))

        # 7. Rollback
        if self.rollback_on_error and result.errors and stored:
            self._rollback(stored, result)

        logger.info(
            f"Upload batch finished: {result.successful_count}/{result.total_files} stored, "
            f"{result.error_count} errors")
        return result

    def save_one(
        self,
        item: UploadInput,
        destination: str = "",
        filename: str | None = None,
        overwrite: bool | None = None,
        generate_unique_filename: bool | None = None,
    ) -> FileUploadResult:
        """Convenience wrapper around ``save`` for a single input."""
        return self.save(
            [item],
            destination,
            [filename] if filename else None,
            overwrite=overwrite,
            generate_unique_filenames=generate_unique_filename,
        )

    def _prepare_candidate(self, item: UploadInput, requested: str | None) -> UploadCandidate:
        """
        Turn an input into a candidate named as it will be stored.

        The final name is validated, not the client's name, so content
        always matches the extension it is stored under.
        """
        if isinstance(item, UploadCandidate):
            candidate = item
        elif isinstance(item, Mapping):
            candidate = UploadCandidate.from_upload(item)
        elif isinstance(item, str):
            candidate = UploadCandidate.from_data_uri(
                item, requested or "", max_size=self.validator.max_file_size)
        elif isinstance(item, (bytes, bytearray)):
            candidate = UploadCandidate.from_bytes(requested or "", bytes(item))
        else:
            raise TypeError(f"Unsupported upload input: {type(item).__name__}")

        name = FilenameSanitizer.clean_filename(requested or candidate.declared_filename)
        if not FilenameSanitizer.split_name(name)[1] and candidate.extension:
            name = f"{name}.{candidate.extension}"
        return dataclasses.replace(candidate, declared_filename=name)

    def _transcode(self, path: Path, outcome: ValidationOutcome) -> Path:
        try:
            converted = Path(self.transcoder(path, outcome)).resolve()
            if not converted.parent.is_relative_to(self.storage.base_dir):
                raise StorageIOError(
                    f"Transcoder output is outside the storage base directory: {converted}")
        except Exception:
            self.storage.delete(self._virtual_directory(path), path.name)
            raise
        return converted

    def _virtual_directory(self, path: Path) -> str:
        """Directory of a stored file relative to the storage base."""
        return path.parent.relative_to(self.storage.base_dir).as_posix()

    def _rollback(self, stored: list[Path], result: FileUploadResult) -> None:
        """Delete every file stored in this batch."""
        logger.warning(f"Rolling back {len(stored)} stored files after upload errors")
        for path in stored:
            try:
                self.storage.delete(self._virtual_directory(path), path.name)
            except StorageIOError as e:
                result.errors.append(FileUploadError(
                    path.name, f"Rollback failed: {e.message}", e.code.value))
        result.successful_files.clear()


def _as_tokens(file_types: FileCategory | str | Iterable[FileCategory | str]) -> list[FileCategory | str]:
    if isinstance(file_types, (str, FileCategory)):
        return [file_types]
    return list(file_types)
