from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path
from typing import BinaryIO, Optional

from .errors import NotFound, PayloadTooLarge
from .security import is_safe_basename, safe_join, sanitize_filename

logger = logging.getLogger(__name__)

_PARTIAL_SUFFIX = ".part"


class BlobStore:
    """Flat directory of uploaded file payloads.

    A blob reference is the basename of the stored file
    (``<uuid4>-<sanitized original name>``). References never contain
    directories, and every lookup goes through ``safe_join`` so a tampered
    row cannot point outside the root.
    """

    def __init__(self, root: Path, chunk_size: int = 1024 * 1024):
        self.root = Path(root).resolve()
        self.chunk_size = chunk_size

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def _new_ref(self, filename: Optional[str]) -> str:
        return f"{uuid.uuid4()}-{sanitize_filename(filename)}"

    def path_for(self, ref: str) -> Path:
        if not is_safe_basename(ref) or ref.endswith(_PARTIAL_SUFFIX):
            raise ValueError("Invalid blob reference")
        return safe_join(self.root, ref)

    def put(self, data: bytes, filename: Optional[str] = None) -> str:
        self.ensure_root()
        ref = self._new_ref(filename)
        path = self.path_for(ref)
        path.write_bytes(data)
        return ref

    def put_fileobj(self, src: BinaryIO, filename: Optional[str] = None, max_bytes: Optional[int] = None) -> str:
        """Copy a file object into the store in chunks.

        The blob is written under a temporary name and renamed when complete,
        so a reference is only ever handed out for a fully written file.
        Raises PayloadTooLarge (leaving nothing behind) past ``max_bytes``.
        """
        self.ensure_root()
        ref = self._new_ref(filename)
        path = self.path_for(ref)
        partial = path.with_name(path.name + _PARTIAL_SUFFIX)
        written = 0
        try:
            with open(partial, "wb") as dst:
                while True:
                    chunk = src.read(self.chunk_size)
                    if not chunk:
                        break
                    written += len(chunk)
                    if max_bytes is not None and written > max_bytes:
                        raise PayloadTooLarge(max_bytes)
                    dst.write(chunk)
            os.replace(partial, path)
        except BaseException:
            try:
                partial.unlink()
            except FileNotFoundError:
                pass
            raise
        logger.debug("Stored blob %s (%d bytes)", ref, written)
        return ref

    def exists(self, ref: str) -> bool:
        try:
            return self.path_for(ref).is_file()
        except ValueError:
            return False

    def read(self, ref: str) -> bytes:
        try:
            return self.path_for(ref).read_bytes()
        except (ValueError, FileNotFoundError, IsADirectoryError):
            raise NotFound(ref) from None

    def delete_if_exists(self, ref: str) -> bool:
        """Remove a blob. Returns True if a file was removed.

        A missing blob is a normal outcome, not an error. Any other failure is
        logged and reported as False; callers never have to handle it.
        """
        try:
            path = self.path_for(ref)
        except ValueError:
            logger.warning("Refusing to delete invalid blob reference %r", ref)
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError:
            logger.warning("Failed to delete blob %s", ref, exc_info=True)
            return False
        return True
