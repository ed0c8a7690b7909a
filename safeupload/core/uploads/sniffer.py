"""Content sniffing: detect the real type of a file from its bytes."""

from __future__ import annotations

import csv
import io
import json
import re
import zipfile
from contextlib import contextmanager
from typing import BinaryIO, Iterator

from PIL import Image, UnidentifiedImageError

from safeupload.logging.setup import get_logger

from . import registry
from .models import BytesSource, ContentSource, PathSource

try:
    import magic
    HAS_MAGIC = True
except ImportError:
    HAS_MAGIC = False

logger = get_logger(__name__)

OCTET_STREAM = "application/octet-stream"

# Raster formats Pillow is allowed to probe, with their MIME types
RASTER_FORMATS = {
    "JPEG": "image/jpeg",
    "MPO": "image/jpeg",
    "PNG": "image/png",
    "GIF": "image/gif",
    "WEBP": "image/webp",
    "BMP": "image/bmp",
    "TIFF": "image/tiff",
    "ICO": "image/x-icon",
}
# Pillow plugin ids to try; MPO is reached through the JPEG plugin
PROBE_FORMATS = ("JPEG", "PNG", "GIF", "WEBP", "BMP", "TIFF", "ICO")

# ISO base media file format brands (ftyp box)
HEIC_BRANDS = {b"heic", b"heix", b"hevc", b"hevx", b"heim", b"heis"}
HEIF_BRANDS = {b"mif1", b"msf1", b"heif"}
AVIF_BRANDS = {b"avif", b"avis"}
M4V_BRANDS = {b"M4V ", b"M4VH", b"M4VP"}
AUDIO_BRANDS = {b"M4A ", b"M4B ", b"M4P "}

OLE2_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"
# Extensions that are all stored as OLE2 compound files
OLE2_EXTENSIONS = {"doc", "xls", "ppt", "sldprt", "sldasm"}

ASF_SIGNATURE = b"\x30\x26\xb2\x75\x8e\x66\xcf\x11"
EBML_SIGNATURE = b"\x1a\x45\xdf\xa3"
JXL_CONTAINER_SIGNATURE = b"\x00\x00\x00\x0cJXL "

OOXML_PREFIXES = {
    "word/": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xl/": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt/": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
}

PHP_PATTERN = re.compile(r"<\?(php|=)", re.IGNORECASE)
HTML_PATTERN = re.compile(r"<(html|head|body|script|iframe|object|embed)\b", re.IGNORECASE)
JSON_START_PATTERN = re.compile(r'^(\{\s*("|\})|\[)')

TEXT_MIME_TYPES = {"text/plain", "text/csv", "application/json",
                   "application/xml", "text/xml", "application/rtf"}


def is_textual_mime_type(mime_type: str | None) -> bool:
    """Check whether a MIME type denotes plain, inert text."""
    return bool(mime_type) and mime_type in TEXT_MIME_TYPES


class ContentSniffer:
    """
    Detects MIME types from file content.

    Detection layers, first match wins:
    1. Binary signatures (PDF, ISO-BMFF brands, JPEG XL, video containers,
       archives, OLE2, DWG, executables)
    2. Raster image probing with Pillow
    3. Text classification (scripts, markup, JSON, CAD text formats, CSV)
    4. libmagic, when installed and enabled

    ``None`` means detection was inconclusive. Undecodable binary content
    that nothing recognises is reported as ``application/octet-stream``.
    """

    def __init__(self, sniff_bytes: int = 8192, use_libmagic: bool = True):
        """
        Initialize content sniffer.

        Args:
            sniff_bytes: Number of leading bytes inspected
            use_libmagic: Consult libmagic for binary content that the
                built-in signatures do not cover
        """
        self.sniff_bytes = sniff_bytes
        self.magic_detector = None

        if HAS_MAGIC and use_libmagic:
            try:
                self.magic_detector = magic.Magic(mime=True)
            except magic.MagicException as e:
                logger.warning(f"libmagic unavailable, using built-in signatures only: {e}")

    def read_head(self, source: ContentSource) -> bytes:
        """Read the leading bytes of a content source."""
        if isinstance(source, BytesSource):
            return source.data[:self.sniff_bytes]
        with open(source.path, "rb") as f:
            return f.read(self.sniff_bytes)

    def sniff(self, source: ContentSource, extension_hint: str = "") -> str | None:
        """
        Detect the MIME type of a content source.

        Args:
            source: Content to inspect
            extension_hint: Declared extension. Only used to tell apart
                formats that share one container and carry no marker of
                their own (OLE2 compound files)

        Returns:
            Detected MIME type, or None if inconclusive

        Raises:
            OSError: If a path source cannot be read
        """
        head = self.read_head(source)
        if not head:
            return None

        mime_type = self._sniff_signature(head, source, extension_hint)
        if mime_type:
            return mime_type

        mime_type = self._probe_raster(source)
        if mime_type:
            return mime_type

        truncated = source.size > len(head)
        text = self._decode_text(head, truncated)
        if text is not None:
            return self._classify_text(text, truncated)

        mime_type = self._sniff_with_libmagic(head)
        if mime_type:
            return mime_type

        return OCTET_STREAM

    def _sniff_signature(
            self,
            head: bytes,
            source: ContentSource,
            extension_hint: str) -> str | None:
        """Match binary signatures at fixed offsets."""
        if head.startswith(b"%PDF"):
            return "application/pdf"

        if head[4:8] == b"ftyp":
            return self._sniff_ftyp(head)

        if head.startswith(b"\xff\x0a") or head.startswith(JXL_CONTAINER_SIGNATURE):
            return "image/jxl"

        if head.startswith(b"RIFF"):
            kind = head[8:12]
            if kind == b"AVI ":
                return "video/x-msvideo"
            if kind == b"WEBP":
                return "image/webp"
            if kind == b"WAVE":
                return "audio/wav"
            return None

        if head.startswith(EBML_SIGNATURE):
            return "video/webm" if b"webm" in head[:128] else "video/x-matroska"

        if head.startswith(b"FLV\x01"):
            return "video/x-flv"
        if head.startswith(b"OggS"):
            return "video/ogg"
        if head.startswith(b"\x00\x00\x01\xba") or head.startswith(b"\x00\x00\x01\xb3"):
            return "video/mpeg"
        if head.startswith(ASF_SIGNATURE):
            return "video/x-ms-wmv"

        if head.startswith(b"PK\x03\x04") or head.startswith(b"PK\x05\x06"):
            return self._sniff_zip(source)
        if head.startswith(b"\x1f\x8b"):
            return "application/gzip"
        if head.startswith(b"7z\xbc\xaf\x27\x1c"):
            return "application/x-7z-compressed"
        if head.startswith(b"Rar!\x1a\x07"):
            return "application/x-rar-compressed"
        if head[257:262] == b"ustar":
            return "application/x-tar"

        if head.startswith(OLE2_SIGNATURE):
            if extension_hint in OLE2_EXTENSIONS:
                return registry.mime_type_for_extension(extension_hint)
            return "application/x-ole-storage"

        if re.match(rb"AC10\d\d", head):
            return "application/dwg"

        if head.startswith(b"MZ") and b"\x00" in head[:64]:
            return "application/x-dosexec"
        if head.startswith(b"\x7fELF"):
            return "application/x-executable"
        if head[:4] in (b"\xfe\xed\xfa\xce", b"\xfe\xed\xfa\xcf",
                        b"\xce\xfa\xed\xfe", b"\xcf\xfa\xed\xfe"):
            return "application/x-mach-binary"

        return None

    def _sniff_ftyp(self, head: bytes) -> str:
        """Map ISO-BMFF major and compatible brands to a MIME type."""
        major = head[8:12]
        box_size = int.from_bytes(head[0:4], "big")
        end = min(max(box_size, 16), len(head))
        compatible = {head[i:i + 4] for i in range(16, end - 3, 4)}

        if major in AVIF_BRANDS or (major in HEIF_BRANDS and compatible & AVIF_BRANDS):
            return "image/avif"
        if major in HEIC_BRANDS or (major in HEIF_BRANDS and compatible & HEIC_BRANDS):
            return "image/heic"
        if major in HEIF_BRANDS:
            return "image/heif"
        if major == b"qt  ":
            return "video/quicktime"
        if major.startswith(b"3gp") or major.startswith(b"3g2"):
            return "video/3gpp"
        if major in M4V_BRANDS:
            return "video/x-m4v"
        if major in AUDIO_BRANDS:
            return "audio/mp4"
        return "video/mp4"

    def _sniff_zip(self, source: ContentSource) -> str:
        """Look at archive member names to recognise office formats."""
        try:
            with _open_binary(source) as f, zipfile.ZipFile(f) as zf:
                names = zf.namelist()
                if "mimetype" in names and zf.getinfo("mimetype").file_size < 256:
                    declared = zf.read("mimetype").decode("ascii", "replace").strip()
                    if declared.startswith("application/vnd.oasis.opendocument."):
                        return declared
        except (zipfile.BadZipFile, OSError, KeyError) as e:
            logger.debug(f"Could not inspect zip members: {e}")
            return "application/zip"

        if "[Content_Types].xml" in names:
            for prefix, mime_type in OOXML_PREFIXES.items():
                if any(name.startswith(prefix) for name in names):
                    return mime_type
        return "application/zip"

    def _probe_raster(self, source: ContentSource) -> str | None:
        """Let Pillow identify standard raster formats from their headers."""
        try:
            with _open_binary(source) as f:
                with Image.open(f, formats=PROBE_FORMATS) as img:
                    return RASTER_FORMATS.get(img.format or "")
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
            return None
        except Image.DecompressionBombError as e:
            logger.warning(f"Refusing to probe oversized image: {e}")
            return None

    @staticmethod
    def _decode_text(head: bytes, truncated: bool) -> str | None:
        """Decode bytes as text, or return None for binary content."""
        if b"\x00" in head:
            return None
        try:
            text = head.decode("utf-8")
        except UnicodeDecodeError as e:
            if truncated and e.start >= len(head) - 3 and e.reason == "unexpected end of data":
                text = head[:e.start].decode("utf-8", "replace")
            else:
                control = sum(1 for b in head if (b < 32 and b not in b"\t\n\r\f\x1b") or b == 0x7f)
                if control:
                    return None
                text = head.decode("latin-1")
        return text.lstrip("\ufeff")

    def _classify_text(self, text: str, truncated: bool) -> str:
        """Classify decoded text content."""
        stripped = text.lstrip()
        lower = stripped[:2048].lower()

        if PHP_PATTERN.search(text):
            return "text/x-php"
        if text.startswith("#!"):
            return "text/x-shellscript"
        if "<svg" in lower and lower.startswith(("<svg", "<?xml", "<!doctype svg")):
            return "image/svg+xml"
        if lower.startswith(("<!doctype html", "<html")) or HTML_PATTERN.search(text):
            return "text/html"
        if lower.startswith("<?xml"):
            return "application/xml"
        if stripped.startswith("{\\rtf"):
            return "application/rtf"
        if stripped[:1] in ("{", "[") and self._looks_like_json(stripped, truncated):
            return "application/json"
        if stripped.startswith("ISO-10303-21;"):
            return "application/step"

        lines = [line.strip() for line in text.splitlines()]
        if self._looks_like_dxf(lines):
            return "application/dxf"
        if lower.startswith("solid") and ("facet" in lower or "endsolid" in lower):
            return "application/stl"
        if self._looks_like_iges(text):
            return "application/iges"
        if self._looks_like_csv(lines, truncated):
            return "text/csv"
        return "text/plain"

    @staticmethod
    def _looks_like_json(text: str, truncated: bool) -> bool:
        if truncated:
            return bool(JSON_START_PATTERN.match(text))
        try:
            json.loads(text)
        except ValueError:
            return False
        return True

    @staticmethod
    def _looks_like_dxf(lines: list[str]) -> bool:
        head = lines[:12]
        for i in range(len(head) - 1):
            if head[i] == "0" and head[i + 1] == "SECTION":
                return True
        return False

    @staticmethod
    def _looks_like_iges(text: str) -> bool:
        first = text.split("\n", 1)[0].rstrip("\r")
        return len(first) == 80 and first[72] == "S" and first[73:].strip().isdigit()

    @staticmethod
    def _looks_like_csv(lines: list[str], truncated: bool) -> bool:
        """Two or more rows splitting into the same number (>1) of fields."""
        rows = [line for line in lines if line]
        if truncated:
            rows = rows[:-1]
        rows = rows[:50]
        if len(rows) < 2:
            return False

        for delimiter in (",", ";", "\t"):
            try:
                counts = {len(fields) for fields in csv.reader(rows, delimiter=delimiter)}
            except csv.Error:
                continue
            if len(counts) == 1 and counts.pop() > 1:
                return True
        return False

    def _sniff_with_libmagic(self, head: bytes) -> str | None:
        if self.magic_detector is None:
            return None
        try:
            mime_type = self.magic_detector.from_buffer(head)
        except magic.MagicException as e:
            logger.debug(f"libmagic detection failed: {e}")
            return None
        if not mime_type or mime_type == OCTET_STREAM:
            return None
        return mime_type


@contextmanager
def _open_binary(source: ContentSource) -> Iterator[BinaryIO]:
    """Open a content source as a binary file object."""
    if isinstance(source, PathSource):
        with open(source.path, "rb") as f:
            yield f
    else:
        yield io.BytesIO(source.data)
