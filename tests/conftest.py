"""
safeupload test configuration.

This module provides pytest fixtures for:
- Isolation from SAFEUPLOAD_* environment variables
- Temporary storage directories and storage backends
- Small but real image payloads generated with Pillow
"""

import io
import os

import pytest
from PIL import Image

from safeupload.config.settings import ConfigManager
from safeupload.core.uploads import ContentSniffer, ContentValidator, SecureStorage


# Session-level fixture to clear environment variables before any tests run
@pytest.fixture(scope="session", autouse=True)
def clear_env_vars():
    """
    Clear SAFEUPLOAD environment variables at session start.

    Keeps a developer's shell or .env file from leaking into the tests.
    """
    original_values = {
        name: value for name, value in os.environ.items()
        if name.startswith("SAFEUPLOAD_")
    }
    for name in original_values:
        del os.environ[name]

    yield

    for name, value in original_values.items():
        os.environ[name] = value


@pytest.fixture(autouse=True)
def reset_config():
    """Reset config manager before and after each test."""
    ConfigManager.reset_instance()
    yield
    ConfigManager.reset_instance()


@pytest.fixture
def storage_dir(tmp_path):
    """Empty storage base directory."""
    base = tmp_path / "uploads"
    base.mkdir()
    return base


@pytest.fixture
def storage(storage_dir):
    """SecureStorage rooted at a temporary directory."""
    return SecureStorage(storage_dir)


@pytest.fixture
def validator():
    """Validator that relies on built-in detection only."""
    return ContentValidator(sniffer=ContentSniffer(use_libmagic=False))


def _image_bytes(fmt: str, color: str, size: tuple[int, int] = (8, 6)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def png_bytes():
    """A valid 8x6 PNG image."""
    return _image_bytes("PNG", "red")


@pytest.fixture
def jpeg_bytes():
    """A valid 8x6 JPEG image."""
    return _image_bytes("JPEG", "blue")


@pytest.fixture
def make_png():
    """Factory for PNG images with distinct content."""
    def _make(color: str = "green", size: tuple[int, int] = (4, 4)) -> bytes:
        return _image_bytes("PNG", color, size)
    return _make


@pytest.fixture
def pdf_bytes():
    """Minimal PDF document header and body."""
    return (b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\n"
            b"trailer\n<< /Root 1 0 R >>\n%%EOF\n")


@pytest.fixture
def heic_bytes():
    """ISO-BMFF header with a HEIC major brand."""
    return (b"\x00\x00\x00\x18ftypheic\x00\x00\x00\x00mif1heic"
            + b"\x00\x00\x00\x08free" + b"\x00" * 64)
