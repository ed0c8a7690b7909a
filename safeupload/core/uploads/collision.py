"""
Filename collision resolution.

A name counts as taken when a file with the same stem exists under any
extension of the known universe, or when the current batch already used
it. Checking every extension keeps ``photo.jpg`` from shadowing an
existing ``photo.png``.

No lock is held between probing and writing. Two writers can still race
for the same generated name; the storage layer's no-clobber write is what
prevents one from silently replacing the other.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable, Collection, Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from safeupload.logging.setup import get_logger

from . import registry
from .policy import AllowedPolicy
from .sanitizer import FilenameSanitizer

logger = get_logger(__name__)


class CollisionStrategy(str, Enum):
    """Built-in ways of deriving a free name from a taken one."""
    INCREMENT = "increment"
    UUID = "uuid"
    TIMESTAMP = "timestamp"


NameGenerator = Callable[[str, Path, tuple[str, ...], frozenset[str]], str]


@dataclass(frozen=True)
class CustomStrategy:
    """
    Caller-supplied naming function.

    The function receives ``(base, directory, extension_universe,
    used_in_batch)`` and returns a new base name. Its result is used as is.
    """
    generate: NameGenerator


StrategySpec = CollisionStrategy | CustomStrategy


class CollisionResolver:
    """Finds filenames that are free on disk and within the current batch."""

    def __init__(
        self,
        strategy: StrategySpec = CollisionStrategy.INCREMENT,
        extensions: Iterable[str] | None = None,
        max_increment_attempts: int = 1000,
        max_uuid_attempts: int = 100,
        max_timestamp_attempts: int = 1000,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Any] = time.sleep,
    ):
        """
        Initialize collision resolver.

        Args:
            strategy: Active naming strategy
            extensions: Extension universe checked for every stem,
                defaults to every registered extension
            max_increment_attempts: Probes before the random fallback
            max_uuid_attempts: Probes before the random fallback
            max_timestamp_attempts: Probes before the random fallback
            clock: Source of unix time for the timestamp strategy
            sleep: Delay function used between timestamp probes
        """
        if isinstance(strategy, str) and not isinstance(strategy, CollisionStrategy):
            strategy = CollisionStrategy(strategy)
        self.strategy = strategy
        self.extensions = tuple(
            e.lower().lstrip(".")
            for e in (extensions if extensions is not None else registry.all_extensions())
        )
        self.max_increment_attempts = max_increment_attempts
        self.max_uuid_attempts = max_uuid_attempts
        self.max_timestamp_attempts = max_timestamp_attempts
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Any, policy: AllowedPolicy | None = None) -> CollisionResolver:
        """
        Build a resolver from ``CollisionSettings``.

        High-performance mode always uses the uuid strategy. When
        ``filter_by_policy`` is set and a policy is given, only extensions
        the policy can accept are probed.
        """
        strategy = CollisionStrategy(settings.strategy)
        if settings.high_performance:
            strategy = CollisionStrategy.UUID

        resolver = cls(
            strategy=strategy,
            max_increment_attempts=settings.max_increment_attempts,
            max_uuid_attempts=settings.max_uuid_attempts,
            max_timestamp_attempts=settings.max_timestamp_attempts,
        )
        if settings.filter_by_policy and policy is not None:
            resolver = resolver.for_policy(policy)
        return resolver

    def for_policy(self, policy: AllowedPolicy) -> CollisionResolver:
        """Copy of this resolver probing only extensions the policy reaches."""
        return CollisionResolver(
            strategy=self.strategy,
            extensions=policy.reachable_extensions(self.extensions),
            max_increment_attempts=self.max_increment_attempts,
            max_uuid_attempts=self.max_uuid_attempts,
            max_timestamp_attempts=self.max_timestamp_attempts,
            clock=self._clock,
            sleep=self._sleep,
        )

    def is_unique(
            self,
            directory: str | Path,
            base: str,
            used_in_batch: Collection[str] = (),
            extension: str = "") -> bool:
        """
        Check whether a stem is free.

        Args:
            directory: Target directory
            base: Filename stem without extension
            used_in_batch: Filenames already assigned in this batch
            extension: Extension the file will get, checked in addition to
                the universe

        Returns:
            True if no file in the batch or on disk uses the stem
        """
        return self._is_free(Path(directory), base, extension, _stems(used_in_batch))

    def _is_free(self, directory: Path, base: str, extension: str, used: set[str]) -> bool:
        # 1. Batch, no I/O
        if base.casefold() in used:
            return False

        # 2. Disk, first hit wins
        if not extension and (directory / base).exists():
            return False
        extensions = self.extensions
        if extension and extension not in extensions:
            extensions = extensions + (extension,)
        for ext in extensions:
            if (directory / f"{base}.{ext}").exists():
                logger.debug(f"Name collision: {base}.{ext} exists in {directory}")
                return False
        return True

    def resolve(
            self,
            directory: str | Path,
            filename: str,
            used_in_batch: Collection[str] = ()) -> str:
        """
        Return ``filename`` if free, otherwise a free variant of it.

        Args:
            directory: Target directory
            filename: Requested filename, with or without extension
            used_in_batch: Filenames already assigned in this batch

        Returns:
            Free filename keeping the requested extension
        """
        directory = Path(directory)
        stem, extension = FilenameSanitizer.split_name(filename)
        suffix = filename[len(stem):]
        used = _stems(used_in_batch)

        if self._is_free(directory, stem, extension, used):
            return filename

        new_stem = self._generate(directory, stem, extension, used, used_in_batch)
        logger.debug(f"Resolved collision for {filename!r} -> {new_stem + suffix!r}")
        return new_stem + suffix

    def resolve_many(self, directory: str | Path, filenames: Iterable[str]) -> list[str]:
        """Resolve a batch so that no two results share a stem."""
        resolved: list[str] = []
        for filename in filenames:
            resolved.append(self.resolve(directory, filename, resolved))
        return resolved

    def _generate(
            self,
            directory: Path,
            base: str,
            extension: str,
            used: set[str],
            used_in_batch: Collection[str]) -> str:
        strategy = self.strategy
        if isinstance(strategy, CustomStrategy):
            return strategy.generate(base, directory, self.extensions, frozenset(used_in_batch))
        if strategy is CollisionStrategy.INCREMENT:
            return self._resolve_with_increment(directory, base, extension, used)
        if strategy is CollisionStrategy.UUID:
            return self._resolve_with_uuid(directory, base, extension, used)
        if strategy is CollisionStrategy.TIMESTAMP:
            return self._resolve_with_timestamp(directory, base, extension, used)
        raise ValueError(f"Unknown collision strategy: {strategy!r}")

    def _resolve_with_increment(self, directory: Path, base: str, extension: str, used: set[str]) -> str:
        for counter in range(self.max_increment_attempts):
            candidate = base if counter == 0 else f"{base}_{counter}"
            if self._is_free(directory, candidate, extension, used):
                return candidate
        return self._random_fallback(base)

    def _resolve_with_uuid(self, directory: Path, base: str, extension: str, used: set[str]) -> str:
        for _ in range(self.max_uuid_attempts):
            candidate = f"{base}_{secrets.token_hex(4)}"
            if self._is_free(directory, candidate, extension, used):
                return candidate
        return self._random_fallback(base)

    def _resolve_with_timestamp(self, directory: Path, base: str, extension: str, used: set[str]) -> str:
        second = None
        counter = 0
        for _ in range(self.max_timestamp_attempts):
            now = int(self._clock())
            if now != second:
                second, counter = now, 0
                candidate = f"{base}_{second}"
            else:
                counter += 1
                candidate = f"{base}_{second}_{counter}"
            if self._is_free(directory, candidate, extension, used):
                return candidate
            self._sleep(0.001)
        return self._random_fallback(base)

    @staticmethod
    def _random_fallback(base: str) -> str:
        logger.warning(f"Collision attempts exhausted for {base!r}, using random suffix")
        return f"{base}_{secrets.token_hex(4)}"


def _stems(filenames: Iterable[str]) -> set[str]:
    return {FilenameSanitizer.split_name(name)[0].casefold() for name in filenames}
