from __future__ import annotations

import logging
import threading
from contextlib import nullcontext
from pathlib import Path
from typing import List, Optional, Union

from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from .blobs import BlobStore
from .config import DEFAULT_TTL_MINUTES, MAX_FILENAME_CHARS, MAX_MIME_TYPE_CHARS, MAX_TEXT_CHARS
from .errors import NotFound, StoreError, ValidationError
from .models import (
    Item,
    ItemKind,
    ItemSummary,
    compute_expiry,
    normalize_owner_label,
    now_ms,
)
from .security import new_item_id, normalize_item_id

logger = logging.getLogger(__name__)


def _create_engine(database_url: str, echo: bool = False) -> Engine:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(database_url, echo=echo, pool_pre_ping=True)

    # Requests run on a thread pool; the store's lock serializes access.
    connect_args = {"check_same_thread": False}
    if url.database in (None, "", ":memory:"):
        return create_engine(database_url, echo=echo, connect_args=connect_args, poolclass=StaticPool)
    Path(url.database).resolve().parent.mkdir(parents=True, exist_ok=True)
    return create_engine(database_url, echo=echo, connect_args=connect_args)


def _coerce_kind(kind: Union[ItemKind, str]) -> ItemKind:
    try:
        return ItemKind(kind)
    except ValueError:
        raise ValidationError(f"Unknown item kind: {kind!r}") from None


def _validate_new_item(
    kind: ItemKind,
    payload: Optional[str],
    filename: Optional[str],
    mime_type: Optional[str],
) -> None:
    if kind is ItemKind.TEXT:
        if not payload:
            raise ValidationError("No file or text provided")
        if len(payload) > MAX_TEXT_CHARS:
            raise ValidationError("Text too large")
        return

    if not payload:
        raise ValidationError("No file or text provided")
    if not filename:
        raise ValidationError("File items need a filename")
    if len(filename) > MAX_FILENAME_CHARS:
        raise ValidationError("Filename too long")
    if mime_type and len(mime_type) > MAX_MIME_TYPE_CHARS:
        raise ValidationError("MIME type too long")


class ItemStore:
    """Durable table of expiring clipboard items.

    The store owns item rows and, for file items, the lifecycle of the blob a
    row references: every path that deletes a row first tries to delete its
    blob. Writes run under one lock. Reads rely on database transactions and
    take no lock, so a long sweep never holds up downloads or listings. The
    exception is an in-memory database, whose single shared connection is
    guarded by the writer lock.

    Liveness is never stored. ``get`` returns expired rows as well; the caller
    decides what an expired item means for it.
    """

    def __init__(self, database_url: str, blobs: BlobStore, echo: bool = False):
        self.database_url = database_url
        self.blobs = blobs
        self._echo = echo
        self._engine: Optional[Engine] = None
        self._lock = threading.Lock()
        self._shared_connection = False

    # -- lifecycle -----------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def open(self) -> "ItemStore":
        if self._engine is not None:
            return self
        try:
            engine = _create_engine(self.database_url, echo=self._echo)
            SQLModel.metadata.create_all(engine, tables=[Item.__table__])
        except SQLAlchemyError as exc:
            raise StoreError("Could not open item database") from exc
        self.blobs.ensure_root()
        self._shared_connection = isinstance(engine.pool, StaticPool)
        self._engine = engine
        logger.info("Item store opened (%s)", make_url(self.database_url).render_as_string(hide_password=True))
        return self

    def close(self) -> None:
        engine, self._engine = self._engine, None
        if engine is not None:
            engine.dispose()
            logger.info("Item store closed")

    def __enter__(self) -> "ItemStore":
        return self.open()

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _session(self) -> Session:
        if self._engine is None:
            raise StoreError("Item store is not open")
        return Session(self._engine, expire_on_commit=False)

    def _read_guard(self):
        return self._lock if self._shared_connection else nullcontext()

    def _delete_blob(self, item_id: str, ref: str) -> None:
        # Blob faults never fail the row operation; an orphaned blob is acceptable.
        try:
            self.blobs.delete_if_exists(ref)
        except Exception:
            logger.exception("Failed to delete blob for item %s", item_id)

    # -- operations ----------------------------------------------------------

    def create(
        self,
        kind: Union[ItemKind, str],
        payload: Optional[str],
        filename: Optional[str] = None,
        mime_type: Optional[str] = None,
        ttl_minutes: Optional[int] = DEFAULT_TTL_MINUTES,
        owner_label: Optional[str] = None,
        now: Optional[int] = None,
    ) -> Item:
        """Insert a new item and return it.

        ``payload`` is the text itself for text items and the blob reference
        for file items. Input is validated before anything is written; the TTL
        is clamped to the allowed range rather than rejected.
        """
        kind = _coerce_kind(kind)
        _validate_new_item(kind, payload, filename, mime_type)

        created_at = now_ms() if now is None else int(now)
        is_file = kind is ItemKind.FILE
        item = Item(
            id=new_item_id(),
            kind=kind.value,
            payload=payload,
            filename=filename if is_file else None,
            mime_type=(mime_type or "application/octet-stream") if is_file else None,
            created_at=created_at,
            expires_at=compute_expiry(created_at, DEFAULT_TTL_MINUTES if ttl_minutes is None else ttl_minutes),
            owner_label=normalize_owner_label(owner_label),
        )

        with self._lock, self._session() as session:
            try:
                session.add(item)
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                logger.error("Failed to insert item %s: %s", item.id, exc)
                raise StoreError("Database error") from exc

        logger.info("Created %s item %s (expires_at=%d)", item.kind, item.id, item.expires_at)
        return item

    def get(self, item_id: str) -> Item:
        item_id = self._coerce_id(item_id)
        with self._read_guard(), self._session() as session:
            try:
                item = session.get(Item, item_id)
            except SQLAlchemyError as exc:
                raise StoreError("Database error") from exc
        if item is None:
            raise NotFound(item_id)
        return item

    def list_live(self, now: Optional[int] = None) -> List[ItemSummary]:
        now = now_ms() if now is None else int(now)
        stmt = (
            select(Item.id, Item.kind, Item.created_at, Item.expires_at, Item.filename, Item.owner_label)
            .where(Item.expires_at > now)
            .order_by(Item.created_at.desc(), Item.id)
        )
        with self._read_guard(), self._session() as session:
            try:
                rows = session.exec(stmt).all()
            except SQLAlchemyError as exc:
                raise StoreError("Database error") from exc
        return [ItemSummary(*row) for row in rows]

    def delete(self, item_id: str) -> None:
        """Delete one item. Raises NotFound if no such row exists.

        A racing second delete of the same id therefore sees NotFound and
        never touches the blob again.
        """
        item_id = self._coerce_id(item_id)
        with self._lock, self._session() as session:
            try:
                item = session.get(Item, item_id)
                if item is None:
                    raise NotFound(item_id)
                if item.is_file:
                    self._delete_blob(item.id, item.payload)
                session.delete(item)
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                logger.error("Failed to delete item %s: %s", item_id, exc)
                raise StoreError("Database error deleting item") from exc
        logger.info("Deleted item %s", item_id)

    def delete_expired(self, now: Optional[int] = None) -> int:
        """Remove every item with ``expires_at <= now``; return the row count.

        Runs in three steps: select the expired rows, delete their blobs with
        no lock held, then delete those rows. Only the lookup and the final
        delete hold the writer lock. A row that a concurrent ``delete``
        removed in between is not counted. A failure on one blob is logged
        and the sweep moves on.
        """
        now = now_ms() if now is None else int(now)
        stmt = select(Item.id, Item.kind, Item.payload).where(Item.expires_at <= now)
        with self._lock, self._session() as session:
            try:
                expired = session.exec(stmt).all()
            except SQLAlchemyError as exc:
                raise StoreError("Database error") from exc
        if not expired:
            return 0

        logger.info("Found %d expired items", len(expired))
        for item_id, kind, payload in expired:
            if kind == ItemKind.FILE.value:
                self._delete_blob(item_id, payload)

        deleted = 0
        with self._lock, self._session() as session:
            try:
                for item_id, _, _ in expired:
                    item = session.get(Item, item_id)
                    if item is None:
                        continue
                    session.delete(item)
                    deleted += 1
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                logger.error("Error deleting expired items from DB: %s", exc)
                raise StoreError("Database error deleting expired items") from exc

        logger.info("Cleanup complete. Deleted %d items.", deleted)
        return deleted

    @staticmethod
    def _coerce_id(item_id: str) -> str:
        # Malformed ids cannot exist in the table.
        try:
            return normalize_item_id(item_id)
        except ValueError:
            raise NotFound(str(item_id)) from None
