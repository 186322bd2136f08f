import enum
import time
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import BigInteger, Column, String, Text
from sqlmodel import Field, SQLModel

from .config import (
    DEFAULT_OWNER_LABEL,
    MAX_OWNER_LABEL_CHARS,
    MAX_TTL_MINUTES,
    MIN_TTL_MINUTES,
)
from .errors import Expired

MS_PER_MINUTE = 60_000


class ItemKind(str, enum.Enum):
    TEXT = "text"
    FILE = "file"


class Item(SQLModel, table=True):
    """One uploaded clipboard entry. Rows are never updated after insert."""

    __tablename__ = "items"

    id: str = Field(sa_column=Column(String(36), primary_key=True))
    kind: str = Field(sa_column=Column(String(8), nullable=False))
    # Literal text for text items, blob reference for file items.
    payload: str = Field(sa_column=Column(Text, nullable=False))
    filename: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))
    mime_type: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))
    created_at: int = Field(sa_column=Column(BigInteger, nullable=False))
    expires_at: int = Field(sa_column=Column(BigInteger, nullable=False, index=True))
    owner_label: str = Field(
        default=DEFAULT_OWNER_LABEL,
        sa_column=Column(String(MAX_OWNER_LABEL_CHARS), nullable=False),
    )

    @property
    def is_file(self) -> bool:
        return self.kind == ItemKind.FILE.value

    def is_live(self, now_ms: int) -> bool:
        return self.expires_at > now_ms


@dataclass(frozen=True)
class ItemSummary:
    """Listing projection of an Item. Carries no payload."""

    id: str
    kind: str
    created_at: int
    expires_at: int
    filename: Optional[str]
    owner_label: str


def now_ms() -> int:
    return int(time.time() * 1000)


def clamp_ttl_minutes(ttl_minutes: int) -> int:
    return max(MIN_TTL_MINUTES, min(MAX_TTL_MINUTES, int(ttl_minutes)))


def compute_expiry(created_at: int, ttl_minutes: int) -> int:
    return created_at + clamp_ttl_minutes(ttl_minutes) * MS_PER_MINUTE


def normalize_owner_label(label: Optional[str]) -> str:
    label = (label or "").strip()
    if not label:
        return DEFAULT_OWNER_LABEL
    return label[:MAX_OWNER_LABEL_CHARS]


def require_live(item: Item, at_ms: Optional[int] = None) -> Item:
    """Return the item if it has not expired, else raise Expired."""
    at_ms = now_ms() if at_ms is None else at_ms
    if not item.is_live(at_ms):
        raise Expired(item)
    return item
