"""Tests for allowed file type policies."""

from __future__ import annotations

from safeupload.core.uploads import AllowedPolicy, FileCategory
from safeupload.core.uploads.policy import normalize_token


def test_normalize_token():
    assert normalize_token(FileCategory.IMAGE) == "image"
    assert normalize_token(" .DWG ") == "dwg"
    assert normalize_token("MIME:Text/CSV") == "mime:text/csv"


def test_from_tokens_deduplicates_in_order():
    policy = AllowedPolicy.from_tokens(["pdf", "image", "PDF", FileCategory.IMAGE])
    assert policy.tokens == ("pdf", "image")


def test_empty_policy_allows_nothing():
    policy = AllowedPolicy()

    assert policy.is_empty
    assert not policy.allows_extension("png")
    assert not policy.allows_mime_type("image/png")
    assert policy.describe() == "No file types allowed"


def test_unrestricted_policy():
    policy = AllowedPolicy.unrestricted()

    assert policy.allows_all
    assert policy.allows_extension("anything")
    assert policy.describe() == "All file types allowed"


def test_category_tokens_expand_to_mime_types_and_extensions():
    policy = AllowedPolicy.from_tokens(["image"])

    assert policy.categories == (FileCategory.IMAGE,)
    assert "image/png" in policy.allowed_mime_types
    assert {"jpg", "jpeg", "png", "heic"} <= policy.allowed_extensions
    assert policy.allows_any_image()


def test_bare_extension_token():
    policy = AllowedPolicy.from_tokens(["dwg", "xyz"])

    assert policy.extension_tokens == ("dwg", "xyz")
    assert policy.allowed_mime_types == frozenset({"application/dwg"})
    assert policy.allows_extension(".XYZ")


def test_mime_token_uses_equivalence():
    policy = AllowedPolicy.from_tokens(["mime:application/pdf"])

    assert policy.mime_tokens == ("application/pdf",)
    assert policy.allows_mime_type("application/x-pdf")
    assert not policy.allows_mime_type("image/png")
    assert not policy.allows_any_image()


def test_with_and_without_token():
    policy = AllowedPolicy.from_tokens(["image"])

    extended = policy.with_token("pdf")
    reduced = extended.without_token("IMAGE")

    assert policy.tokens == ("image",)
    assert extended.tokens == ("image", "pdf")
    assert reduced.tokens == ("pdf",)


def test_reachable_extensions():
    universe = ("jpg", "png", "pdf", "dwg", "zip")

    assert AllowedPolicy.from_tokens(["pdf", "dwg"]).reachable_extensions(universe) == ("pdf", "dwg")
    assert AllowedPolicy.from_tokens(["mime:image/png"]).reachable_extensions(universe) == ("png",)
    assert AllowedPolicy.unrestricted().reachable_extensions(universe) == universe


def test_describe():
    assert AllowedPolicy.from_tokens(["image"]).describe() == "Image files only"
    assert AllowedPolicy.from_tokens(["image", "pdf"]).describe() == "Image and pdf files"
    assert AllowedPolicy.from_tokens(["image", "pdf", "cad"]).describe() == "Image, pdf, and cad files"
