"""Tests for the supported file type registry."""

from __future__ import annotations

import pytest

from safeupload.core.uploads import registry
from safeupload.core.uploads.registry import FileCategory


class TestLookups:
    """Lookups by extension and MIME type."""

    def test_find_by_extension_is_case_insensitive(self):
        descriptor = registry.find_by_extension("PNG")

        assert descriptor is not None
        assert descriptor.mime_type == "image/png"
        assert descriptor.category is FileCategory.IMAGE

    def test_find_by_extension_strips_leading_dot(self):
        assert registry.find_by_extension(".pdf").mime_type == "application/pdf"

    def test_unknown_extension(self):
        assert registry.find_by_extension("exe") is None
        assert registry.category_for_extension("php") is None
        assert not registry.is_known_extension("php")

    def test_alias_extensions_share_a_mime_type(self):
        assert registry.mime_type_for_extension("jpg") == "image/jpeg"
        assert registry.mime_type_for_extension("jpeg") == "image/jpeg"
        assert registry.mime_type_for_extension("tif") == "image/tiff"
        assert registry.mime_type_for_extension("stp") == "application/step"
        assert registry.mime_type_for_extension("igs") == "application/iges"

    def test_canonical_extension_for_mime_type(self):
        assert registry.extension_for_mime_type("image/jpeg") == "jpg"
        assert registry.extension_for_mime_type("application/x-pdf") == "pdf"
        assert registry.extension_for_mime_type("text/x-php") is None

    def test_category_for_mime_type(self):
        assert registry.category_for_mime_type("application/dwg") is FileCategory.CAD
        assert registry.category_for_mime_type("video/quicktime") is FileCategory.VIDEO
        assert registry.category_for_mime_type("text/csv") is FileCategory.DOC


class TestCategories:
    """Category membership."""

    def test_is_category(self):
        assert registry.is_category("image")
        assert registry.is_category("CAD")
        assert not registry.is_category("png")

    def test_extensions_for_category_have_no_duplicates(self):
        extensions = registry.extensions_for_category(FileCategory.PDF)
        assert extensions == ("pdf",)

    def test_category_accepts_plain_string(self):
        assert "dwg" in registry.extensions_for_category("cad")
        assert "image/heic" in registry.mime_types_for_category("image")

    def test_unknown_category(self):
        with pytest.raises(ValueError):
            registry.types_for_category("audio")

    def test_all_extensions_cover_every_category(self):
        extensions = registry.all_extensions()

        assert len(extensions) == len(set(extensions))
        for category in FileCategory:
            assert set(registry.extensions_for_category(category)) <= set(extensions)


class TestEquivalence:
    """MIME equivalence groups."""

    @pytest.mark.parametrize("first,second", [
        ("application/pdf", "application/x-pdf"),
        ("application/xml", "text/xml"),
        ("text/plain", "text/csv"),
        ("image/heic", "image/heif"),
        ("video/mp4", "video/quicktime"),
        ("application/gzip", "application/x-gzip"),
        ("IMAGE/PNG", "image/png"),
    ])
    def test_equivalent(self, first, second):
        assert registry.mime_types_equivalent(first, second)
        assert registry.mime_types_equivalent(second, first)

    @pytest.mark.parametrize("first,second", [
        ("image/png", "image/jpeg"),
        ("text/plain", "text/x-php"),
        ("application/zip", "application/pdf"),
    ])
    def test_not_equivalent(self, first, second):
        assert not registry.mime_types_equivalent(first, second)
