from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv


# clipboard_backend/ -> project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Optional .env next to the project; real environment variables win.
load_dotenv(PROJECT_ROOT / ".env", override=False)


def _env_path(name: str, default: Path) -> Path:
    raw = os.environ.get(name)
    if raw and raw.strip():
        return Path(raw).resolve()
    return default.resolve()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


DEFAULT_API_KEY = "default-insecure-key"
API_KEY = os.environ.get("API_KEY", DEFAULT_API_KEY)

HOST = os.environ.get("HOST", "127.0.0.1")
PORT = int(os.environ.get("PORT", "3000"))
BASE_URL = os.environ.get("BASE_URL", f"http://localhost:{PORT}").rstrip("/")

# Where uploaded file payloads live. Override with CLIPBOARD_UPLOADS_ROOT.
UPLOADS_ROOT = _env_path("CLIPBOARD_UPLOADS_ROOT", PROJECT_ROOT / "uploads")

# SQLite by default; any SQLAlchemy URL works.
DATA_DIR = _env_path("CLIPBOARD_DATA_DIR", PROJECT_ROOT / "data")
DATABASE_URL = os.environ.get("DATABASE_URL") or f"sqlite:///{DATA_DIR / 'clipboard.db'}"

# Item lifetime bounds, in minutes.
DEFAULT_TTL_MINUTES = 60
MIN_TTL_MINUTES = 1
MAX_TTL_MINUTES = 7 * 24 * 60  # 10080

DEFAULT_OWNER_LABEL = "web client"
MAX_OWNER_LABEL_CHARS = 50
MAX_FILENAME_CHARS = 255
MAX_MIME_TYPE_CHARS = 255
MAX_TEXT_CHARS = int(os.environ.get("CLIPBOARD_MAX_TEXT_CHARS", str(10 * 1024 * 1024)))

# How often the sweeper removes expired items (hourly by default).
CLEANUP_INTERVAL_SECONDS = int(os.environ.get("CLIPBOARD_CLEANUP_INTERVAL_SECONDS", "3600"))
MIN_CLEANUP_INTERVAL_SECONDS = 30

# Upload limit, enforced while streaming the multipart body to disk.
MAX_UPLOAD_BYTES = int(os.environ.get("CLIPBOARD_MAX_UPLOAD_BYTES", str(500 * 1024 * 1024)))  # 500MB
UPLOAD_CHUNK_BYTES = 1024 * 1024

RATE_LIMIT_ENABLED = _env_bool("CLIPBOARD_RATE_LIMIT_ENABLED", True)
RATE_LIMIT = os.environ.get("CLIPBOARD_RATE_LIMIT", "100/15minutes")

# Built browser client. Served only if it exists.
FRONTEND_DIST = _env_path("CLIPBOARD_FRONTEND_DIST", PROJECT_ROOT / "frontend" / "dist")
AUTH_COOKIE_NAME = "auth_token"
AUTH_COOKIE_MAX_AGE_SECONDS = 7 * 24 * 60 * 60

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()


def configure_logging(level: str | None = None) -> None:
    """Install a single stream handler on the root logger (idempotent)."""
    root = logging.getLogger()
    root.setLevel(level or LOG_LEVEL)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
        root.addHandler(handler)
