from __future__ import annotations

import hmac
import re
import uuid
from pathlib import Path
from typing import Optional


_ITEM_ID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}$")
_UNSAFE_FILENAME_CHARS_RE = re.compile(r"[^A-Za-z0-9._ ()+\-]")


def new_item_id() -> str:
    return str(uuid.uuid4())


def normalize_item_id(item_id: str) -> str:
    """Validate and normalize an item id.

    Item ids double as download capability tokens: anyone holding the id can
    fetch the item. Only canonical UUID strings are accepted.
    """
    if not isinstance(item_id, str):
        raise ValueError("Invalid item id")
    item_id = item_id.strip()
    if not _ITEM_ID_RE.match(item_id):
        raise ValueError("Invalid item id")
    return str(uuid.UUID(item_id))


def is_safe_basename(name: str) -> bool:
    """Allow only simple filenames (no directories)."""
    if not isinstance(name, str) or not name:
        return False
    if name in {".", ".."}:
        return False
    if name != Path(name).name:
        return False
    if "/" in name or "\\" in name:
        return False
    return True


def sanitize_filename(name: Optional[str], max_chars: int = 100) -> str:
    """Reduce a client-supplied filename to a short, disk-safe basename."""
    base = (name or "").replace("\\", "/").split("/")[-1].strip()
    base = _UNSAFE_FILENAME_CHARS_RE.sub("_", base).lstrip(".")
    if len(base) > max_chars:
        stem, dot, ext = base.rpartition(".")
        if dot and len(ext) < 16:
            base = stem[: max_chars - len(ext) - 1] + "." + ext
        else:
            base = base[:max_chars]
    return base or "file"


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir."""
    base_dir = base_dir.resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise ValueError("Path traversal attempt")
    return resolved


def api_key_matches(provided: Optional[str], expected: str) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def is_authorized(
    expected_key: str,
    header_key: Optional[str] = None,
    query_key: Optional[str] = None,
    cookie_key: Optional[str] = None,
) -> bool:
    """Collapse every channel the shared key may arrive on into one decision.

    Header, query parameter and cookie carry the same privilege; the first
    one present is the one checked.
    """
    provided = header_key or query_key or cookie_key
    return api_key_matches(provided, expected_key)
