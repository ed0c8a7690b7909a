"""Tests for upload data models and data URI decoding."""

from __future__ import annotations

import base64

import pytest

from safeupload.core.uploads import (
    BytesSource,
    DataUriError,
    FileUploadError,
    FileUploadResult,
    PathSource,
    UploadCandidate,
    UploadErrorCode,
    ValidationOutcome,
    expand_upload_fields,
)
from safeupload.core.uploads.errors import ErrorCode
from safeupload.core.uploads.models import decode_data_uri, format_size


class TestDataUri:

    def test_decode(self):
        mime_type, data = decode_data_uri("data:Image/PNG;base64," + base64.b64encode(b"abc").decode())

        assert mime_type == "image/png"
        assert data == b"abc"

    def test_whitespace_in_payload(self):
        assert decode_data_uri("data:text/plain;base64,aGVs\nbG8=")[1] == b"hello"

    @pytest.mark.parametrize("uri,message", [
        ("hello", "Invalid data URI format"),
        ("data:image/png,abc", "Invalid data URI format"),
        ("data:image/png;base64,", "Data URI contains no data"),
    ])
    def test_errors(self, uri, message):
        with pytest.raises(DataUriError) as exc_info:
            decode_data_uri(uri)

        assert exc_info.value.message == message
        assert exc_info.value.code is ErrorCode.DECODE_ERROR

    def test_invalid_base64(self):
        with pytest.raises(DataUriError, match="Invalid base64 data"):
            decode_data_uri("data:image/png;base64,abc$")

    def test_too_large(self):
        uri = "data:text/plain;base64," + base64.b64encode(b"x" * 100).decode()

        with pytest.raises(DataUriError, match="exceeds maximum size"):
            decode_data_uri(uri, max_size=10)

    def test_candidate_from_data_uri(self):
        uri = "data:application/pdf;base64," + base64.b64encode(b"%PDF-1.4").decode()
        candidate = UploadCandidate.from_data_uri(uri)

        assert candidate.declared_filename == "data_uri_file.pdf"
        assert candidate.declared_mime_hint == "application/pdf"
        assert candidate.source == BytesSource(b"%PDF-1.4")

    def test_candidate_keeps_given_extension(self):
        uri = "data:image/png;base64," + base64.b64encode(b"abc").decode()
        assert UploadCandidate.from_data_uri(uri, "shot.jpg").declared_filename == "shot.jpg"

    def test_unknown_mime_adds_no_extension(self):
        uri = "data:application/x-custom;base64," + base64.b64encode(b"abc").decode()
        assert UploadCandidate.from_data_uri(uri, "blob").declared_filename == "blob"


class TestCandidate:

    def test_extension_uses_last_segment(self):
        assert UploadCandidate.from_bytes("evil.PHP.Jpg", b"x").extension == "jpg"

    def test_from_upload(self, tmp_path):
        upload = UploadCandidate.from_upload({
            "name": "a.png", "type": "image/png", "tmp_name": str(tmp_path / "tmp1"), "error": "0",
        })

        assert upload.source == PathSource(tmp_path / "tmp1", is_platform_upload=True)
        assert upload.declared_mime_hint == "image/png"
        assert upload.upload_error_code == UploadErrorCode.OK

    def test_formatted_size(self, tmp_path):
        assert UploadCandidate.from_bytes("a", b"x" * 1536).formatted_size == "1.5 KB"
        assert UploadCandidate.from_path("a", tmp_path / "missing").formatted_size == "Unknown size"

    def test_path_source_size(self, tmp_path):
        path = tmp_path / "f"
        path.write_bytes(b"12345")
        assert PathSource(path).size == 5


class TestUploadErrorCode:

    def test_messages(self):
        assert UploadErrorCode.PARTIAL.message == "File was only partially uploaded"
        assert UploadErrorCode.describe(4) == "No file was uploaded"
        assert UploadErrorCode.describe(5) == "Unknown upload error"
        assert UploadErrorCode.describe(99) == "Unknown upload error"


def test_format_size():
    assert format_size(0) == "0 B"
    assert format_size(1024) == "1 KB"
    assert format_size(5 * 1024 * 1024) == "5 MB"
    assert format_size(None) == "Unknown size"


def test_expand_upload_fields():
    fields = {
        "name": ["a.png", "b.pdf"],
        "type": ["image/png", "application/pdf"],
        "tmp_name": ["/tmp/1", "/tmp/2"],
        "error": [0, 4],
        "size": [10, 0],
    }

    uploads = expand_upload_fields(fields)

    assert uploads == [
        {"name": "a.png", "type": "image/png", "tmp_name": "/tmp/1", "error": 0, "size": 10},
        {"name": "b.pdf", "type": "application/pdf", "tmp_name": "/tmp/2", "error": 4, "size": 0},
    ]
    assert expand_upload_fields({"name": "one.png"}) == [{"name": "one.png"}]


def test_validation_outcome():
    rejected = ValidationOutcome.reject(ErrorCode.TYPE_REJECTED, "nope", "png", "text/x-php")
    heic = ValidationOutcome.accept("heic", mime_type="image/heif")

    assert not rejected.accepted
    assert rejected.reason is ErrorCode.TYPE_REJECTED
    assert not rejected.needs_transcoding
    assert heic.needs_transcoding


def test_upload_result():
    result = FileUploadResult(total_files=2)
    result.successful_files.append("/base/a.png")
    result.errors.append(FileUploadError("b.png", "File is empty", "structural_invalid"))

    assert result.successful_count == 1
    assert result.has_errors
    assert not result.is_complete_success
    assert result.error_messages == ["File is empty"]
    assert result.error_for_file("b.png").description() == (
        "b.png: File is empty (Code: structural_invalid)")
    assert result.error_for_file("a.png") is None
    assert FileUploadError("c.png", "bad").description() == "c.png: bad"
