"""Allowed file type policies."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from functools import cached_property

from . import registry
from .registry import FileCategory

ALL_TYPES = "all"
MIME_PREFIX = "mime:"


def normalize_token(token: FileCategory | str) -> str:
    """
    Normalize one policy token.

    Categories and extensions are lowercased and extensions lose a leading
    dot. ``mime:`` tokens keep their prefix with a lowercased MIME type.
    """
    if isinstance(token, FileCategory):
        return token.value
    token = token.strip()
    if token.lower().startswith(MIME_PREFIX):
        return MIME_PREFIX + token[len(MIME_PREFIX):].strip().lower()
    return token.lower().lstrip(".")


@dataclass(frozen=True)
class AllowedPolicy:
    """
    Ordered set of tokens describing acceptable files.

    A token is a category name (``image``), a bare extension (``dwg``), a
    marked MIME type (``mime:text/csv``) or ``all``. An empty policy
    accepts nothing.
    """
    tokens: tuple[str, ...] = ()

    @classmethod
    def from_tokens(cls, tokens: Iterable[FileCategory | str]) -> AllowedPolicy:
        normalized = (normalize_token(t) for t in tokens)
        return cls(tuple(dict.fromkeys(t for t in normalized if t and t != MIME_PREFIX)))

    @classmethod
    def unrestricted(cls) -> AllowedPolicy:
        return cls((ALL_TYPES,))

    @property
    def allows_all(self) -> bool:
        return ALL_TYPES in self.tokens

    @property
    def is_empty(self) -> bool:
        return not self.tokens

    @cached_property
    def categories(self) -> tuple[FileCategory, ...]:
        return tuple(FileCategory(t) for t in self.tokens if registry.is_category(t))

    @cached_property
    def extension_tokens(self) -> tuple[str, ...]:
        """Bare extension tokens, known to the registry or not."""
        return tuple(
            t for t in self.tokens
            if t != ALL_TYPES and not t.startswith(MIME_PREFIX) and not registry.is_category(t)
        )

    @cached_property
    def mime_tokens(self) -> tuple[str, ...]:
        return tuple(t[len(MIME_PREFIX):] for t in self.tokens if t.startswith(MIME_PREFIX))

    @cached_property
    def allowed_mime_types(self) -> frozenset[str]:
        """
        MIME types reachable from the policy.

        Categories contribute every MIME type they contain, marked tokens
        contribute themselves and known bare extensions contribute their
        registered MIME type.
        """
        mime_types: set[str] = set(self.mime_tokens)
        for category in self.categories:
            mime_types.update(registry.mime_types_for_category(category))
        for extension in self.extension_tokens:
            mime_type = registry.mime_type_for_extension(extension)
            if mime_type:
                mime_types.add(mime_type)
        return frozenset(mime_types)

    @cached_property
    def allowed_extensions(self) -> frozenset[str]:
        """Extensions of allowed categories plus every bare extension token."""
        extensions: set[str] = set(self.extension_tokens)
        for category in self.categories:
            extensions.update(registry.extensions_for_category(category))
        return frozenset(extensions)

    def allows_mime_type(self, mime_type: str) -> bool:
        return any(registry.mime_types_equivalent(mime_type, allowed)
                   for allowed in self.allowed_mime_types)

    def allows_extension(self, extension: str) -> bool:
        return self.allows_all or extension.lower().lstrip(".") in self.allowed_extensions

    def allows_any_image(self) -> bool:
        return any(m.startswith("image/") for m in self.allowed_mime_types)

    def reachable_extensions(self, universe: Iterable[str]) -> tuple[str, ...]:
        """
        Filter an extension universe down to what this policy can accept.

        Extensions of allowed MIME types are included too, so a
        ``mime:image/png`` policy still reaches ``png``.
        """
        universe = tuple(universe)
        if self.allows_all:
            return universe
        reachable = set(self.allowed_extensions)
        for mime_type in self.allowed_mime_types:
            extension = registry.extension_for_mime_type(mime_type)
            if extension:
                reachable.add(extension)
        return tuple(e for e in universe if e in reachable)

    def with_token(self, token: FileCategory | str) -> AllowedPolicy:
        return AllowedPolicy.from_tokens(self.tokens + (normalize_token(token),))

    def without_token(self, token: FileCategory | str) -> AllowedPolicy:
        token = normalize_token(token)
        return AllowedPolicy(tuple(t for t in self.tokens if t != token))

    def describe(self) -> str:
        """
        Human readable summary, e.g. ``Image and pdf files``.
        """
        if self.allows_all:
            return "All file types allowed"
        if self.is_empty:
            return "No file types allowed"

        names = list(self.tokens)
        if len(names) == 1:
            text = names[0]
            return f"{text[0].upper()}{text[1:]} files only"
        if len(names) == 2:
            text = f"{names[0]} and {names[1]}"
        else:
            text = ", ".join(names[:-1]) + f", and {names[-1]}"
        return f"{text[0].upper()}{text[1:]} files"
