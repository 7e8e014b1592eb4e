"""
config.py — Runtime settings for the e-reader transfer service.

Values come from the process environment, with a `.env` file in the working
directory loaded first.
"""

import logging
import os
import sys

from dotenv import load_dotenv

load_dotenv()


def _csv(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# ─── Keys & sessions ──────────────────────────────────────────────────────────

KEY_CHARS = os.getenv("KEY_CHARS", "23456789ACDEFGHJKLMNPRSTUVWXYZ")
KEY_LENGTH = int(os.getenv("KEY_LENGTH", "4"))
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", str(60 * 60)))

# ─── Uploads ──────────────────────────────────────────────────────────────────

MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE", str(1024 * 1024 * 800)))

TYPE_EPUB = "application/epub+zip"
TYPE_MOBI = "application/x-mobipocket-ebook"

ALLOWED_TYPES = _csv(
    "ALLOWED_TYPES",
    ",".join([
        TYPE_EPUB,
        TYPE_MOBI,
        "application/pdf",
        "application/vnd.comicbook+zip",
        "application/vnd.comicbook-rar",
        "text/html",
        "text/plain",
        "application/zip",
        "application/x-rar-compressed",
    ]),
)
ALLOWED_EXTENSIONS = _csv("ALLOWED_EXTENSIONS", "epub,mobi,pdf,cbz,cbr,html,txt")

STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "memory").lower()
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")

# ─── Server ───────────────────────────────────────────────────────────────────

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3001"))
CORS_ORIGINS = _csv("CORS_ORIGINS", "*")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_logging_configured = False


def setup_logging(level_name: str = LOG_LEVEL) -> None:
    """Install a single stdout handler on the root logger. Safe to call twice."""
    global _logging_configured
    level = getattr(logging, level_name.upper(), logging.INFO)
    root = logging.getLogger()
    if _logging_configured:
        root.setLevel(level)
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root.handlers[:] = [handler]
    root.setLevel(level)
    _logging_configured = True
