"""
imagegen_core - Generated Image Persistence
===========================================

Saves generated images as ``<output_dir>/<YYYY-MM-DD>_<8 hex>.<ext>``.

Usage:
    saver = ImageSaver("~/Pictures/imagegen")
    path = saver.save(result.image_bytes, result.mime_type)
"""

import secrets
from datetime import date
from pathlib import Path

from .config import get_settings
from .logging_config import get_logger

logger = get_logger(__name__)

__all__ = [
    "ImageSaver",
    "extension_for_mime",
    "sniff_mime_type",
    "mime_from_filename",
]

_EXTENSIONS = {
    "image/png": "png",
    "image/webp": "webp",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/gif": "gif",
}

_FILENAME_MIME = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
}


def extension_for_mime(mime_type: str | None) -> str:
    """File extension for an image mime type; unknown types fall back to ``jpg``."""
    return _EXTENSIONS.get((mime_type or "").split(";")[0].strip().lower(), "jpg")


def mime_from_filename(filename: str | None, default: str = "image/png") -> str:
    if filename and "." in filename:
        return _FILENAME_MIME.get(filename.rsplit(".", 1)[-1].lower(), default)
    return default


def sniff_mime_type(data: bytes, default: str = "image/png") -> str:
    """Identify PNG, JPEG, WEBP and GIF data from their magic bytes."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    return default


class ImageSaver:
    """Writes images to a dated, randomly-suffixed file name."""

    def __init__(self, output_dir: str | Path | None = None):
        if output_dir is None:
            output_dir = get_settings().storage.output_dir
        self.output_dir = Path(output_dir).expanduser()

    def filename_for(self, mime_type: str | None, today: date | None = None) -> str:
        today = today or date.today()
        return f"{today.isoformat()}_{secrets.token_hex(4)}.{extension_for_mime(mime_type)}"

    def save(self, image_bytes: bytes, mime_type: str | None) -> Path:
        """
        Write ``image_bytes`` and return the path.

        Raises:
            OSError: directory not creatable or file not writable
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / self.filename_for(mime_type)
        # "x" so a random-suffix collision never overwrites an earlier image
        with open(path, "xb") as f:
            f.write(image_bytes)
        logger.debug("Image saved", extra={"path": str(path), "size_bytes": len(image_bytes)})
        return path
