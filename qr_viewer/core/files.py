"""
File signature checks

Identifies the real image format from leading bytes, independent of the
declared MIME type or the filename extension.
"""

from pathlib import Path
from typing import Optional

JPEG = "jpeg"
PNG = "png"
GIF = "gif"
WEBP = "webp"

MIME_TO_FORMAT = {
    "image/jpeg": JPEG,
    "image/jpg": JPEG,
    "image/pjpeg": JPEG,
    "image/png": PNG,
    "image/gif": GIF,
    "image/webp": WEBP,
}

EXTENSION_TO_FORMAT = {
    ".jpg": JPEG,
    ".jpeg": JPEG,
    ".png": PNG,
    ".gif": GIF,
    ".webp": WEBP,
}

_PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
_JPEG_SIGNATURE = b"\xff\xd8\xff"


def sniff_image_format(data: bytes) -> Optional[str]:
    """Return the format name for known image signatures, else None."""
    if data.startswith(_JPEG_SIGNATURE):
        return JPEG
    if data.startswith(_PNG_SIGNATURE):
        return PNG
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return GIF
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return WEBP
    return None


def format_for_mime(mime_type: Optional[str]) -> Optional[str]:
    if not mime_type:
        return None
    return MIME_TO_FORMAT.get(mime_type.split(";")[0].strip().lower())


def format_for_extension(filename: Optional[str]) -> Optional[str]:
    if not filename:
        return None
    return EXTENSION_TO_FORMAT.get(Path(filename).suffix.lower())


def safe_original_name(filename: Optional[str], fallback: str = "upload") -> str:
    """Strip any directory part from a client-supplied filename."""
    if not filename:
        return fallback
    name = Path(filename.replace("\\", "/")).name.strip()
    return name or fallback


def format_megabytes(size: int) -> str:
    return f"{size / (1024 * 1024):.1f}MB"
