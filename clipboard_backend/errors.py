from __future__ import annotations

from typing import Any


class ClipboardError(Exception):
    """Base class for errors raised by the clipboard core."""


class ValidationError(ClipboardError):
    """Bad input: missing payload, oversized fields, unknown kind."""


class NotFound(ClipboardError):
    def __init__(self, item_id: str):
        super().__init__(f"Item not found: {item_id}")
        self.item_id = item_id


class Expired(ClipboardError):
    """The id is known but the item is past its expiry."""

    def __init__(self, item: Any):
        super().__init__(f"Item expired: {item.id}")
        self.item = item


class StoreError(ClipboardError):
    """Persistence failure. Always surfaced, never swallowed on write paths."""


class PayloadTooLarge(ValidationError):
    def __init__(self, limit_bytes: int):
        super().__init__(f"Payload exceeds {limit_bytes} bytes")
        self.limit_bytes = limit_bytes
