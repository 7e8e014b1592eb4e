"""
file_service.py — Upload checks that run before anything reaches storage.

Extension and media type are checked against allow-lists, the declared type
is filled in from the extension when the client sends nothing useful, and
the body is read in chunks so an oversize upload is refused early.
"""
import logging
import posixpath
import re
import unicodedata
from typing import BinaryIO, Optional

import config
from errors import RejectedError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024

GENERIC_TYPES = {"", "application/octet-stream", "binary/octet-stream"}

# Extension → MIME type map (browsers rarely know .mobi or .cbr)
MIME_MAP = {
    "epub": config.TYPE_EPUB,
    "mobi": config.TYPE_MOBI,
    "pdf":  "application/pdf",
    "cbz":  "application/vnd.comicbook+zip",
    "cbr":  "application/vnd.comicbook-rar",
    "html": "text/html",
    "txt":  "text/plain",
}


def extension_of(filename: str) -> str:
    if "." in filename:
        return filename.rsplit(".", 1)[-1].lower()
    return ""


def detect_mime(filename: str) -> str:
    """Detect MIME type from file extension."""
    return MIME_MAP.get(extension_of(filename), "application/octet-stream")


def base_name(filename: Optional[str]) -> str:
    """Strip any client-side directory part, Windows or POSIX."""
    return posixpath.basename((filename or "").replace("\\", "/")).strip()


def transliterate(filename: str) -> str:
    """ASCII-only version of a filename, extension kept as-is."""
    stem, dot, ext = filename.rpartition(".")
    if not dot:
        stem, ext = filename, ""
    ascii_stem = unicodedata.normalize("NFKD", stem).encode("ascii", "ignore").decode("ascii")
    ascii_stem = re.sub(r"[^a-zA-Z0-9]", "-", ascii_stem) or "file"
    return f"{ascii_stem}.{ext}" if dot else ascii_stem


class UploadValidator:

    def __init__(
        self,
        allowed_extensions=None,
        allowed_types=None,
        max_size: int = config.MAX_FILE_SIZE,
    ):
        self.allowed_extensions = {e.lower() for e in (allowed_extensions or config.ALLOWED_EXTENSIONS)}
        self.allowed_types = {t.lower() for t in (allowed_types or config.ALLOWED_TYPES)}
        self.max_size = max_size

    def check_name(self, filename: Optional[str]) -> str:
        name = base_name(filename)
        if not name:
            raise RejectedError("No file uploaded")
        if extension_of(name) not in self.allowed_extensions:
            logger.warning(f"Rejected upload {name!r}: extension not allowed")
            raise RejectedError("Invalid file type")
        return name

    def check_type(self, filename: str, declared: Optional[str]) -> str:
        """Return the media type to store for ``filename``."""
        media_type = (declared or "").split(";", 1)[0].strip().lower()
        if media_type in GENERIC_TYPES:
            media_type = detect_mime(filename)
        if media_type not in self.allowed_types:
            logger.warning(f"Rejected upload {filename!r}: type {media_type!r} not allowed")
            raise RejectedError("Invalid file type")
        return media_type

    def check_size(self, size: int) -> None:
        if size > self.max_size:
            raise RejectedError(f"File too large (limit {self.max_size} bytes)")

    def read_limited(self, stream: BinaryIO) -> bytes:
        """Read ``stream`` to the end, refusing as soon as the ceiling is passed."""
        chunks = []
        total = 0
        while True:
            chunk = stream.read(CHUNK_SIZE)
            if not chunk:
                break
            total += len(chunk)
            self.check_size(total)
            chunks.append(chunk)
        return b"".join(chunks)


validator = UploadValidator()


def get_validator() -> UploadValidator:
    return validator
