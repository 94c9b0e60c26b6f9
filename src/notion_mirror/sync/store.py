"""Local content store collaborator.

The sync engine mirrors Notion pages into *some* local persistence layer
it does not own.  ``LocalContentStore`` is the protocol it talks to; two
reference implementations are provided:

- ``InMemoryContentStore``: dict-backed, with an explicit remote-id
  index table so remote-to-local lookups never scan entities.
- ``JsonContentStore``: the same structure persisted atomically to a
  JSON file after every mutation.

Creating an entity and linking it to its remote id is one atomic
operation (``create``), so a crash can never leave an unlinked entity
behind that the next run would duplicate.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from ..errors import StoreError

logger = logging.getLogger(__name__)


class LocalEntity(BaseModel):
    """A local record mirroring one remote page.

    Attributes:
        local_id: Store-assigned id.
        remote_id: Linked Notion page id (``None`` once unlinked).
        collection_id: Database the remote page belongs to.
        fields: Content written by the sync engine.
        local_fields: Content owned by the local side; never touched
            by updates.
        archived: Soft-deleted flag.
        protected: Never deleted by reconciliation.
        last_edited_at: Remote edit time of the mirrored revision.
    """

    local_id: str
    remote_id: str | None = None
    collection_id: str
    fields: dict[str, Any] = Field(default_factory=dict)
    local_fields: dict[str, Any] = Field(default_factory=dict)
    archived: bool = False
    protected: bool = False
    last_edited_at: datetime | None = None

    model_config = {"frozen": True}


@runtime_checkable
class LocalContentStore(Protocol):
    """Operations the sync engine needs from local persistence.

    Implementations raise ``StoreError`` for every failure.
    """

    def get(self, local_id: str) -> LocalEntity | None: ...

    def find_by_remote_id(self, remote_id: str) -> LocalEntity | None: ...

    def create(
        self,
        payload: dict[str, Any],
        remote_id: str,
        collection_id: str,
    ) -> LocalEntity: ...

    def update(
        self, local_id: str, payload: dict[str, Any]
    ) -> LocalEntity: ...

    def soft_delete(self, local_id: str) -> None: ...

    def hard_delete(self, local_id: str) -> None: ...

    def linked_entities(self, collection_id: str) -> list[LocalEntity]: ...


def _edited_at(payload: dict[str, Any]) -> datetime | None:
    value = payload.get("last_edited_at")
    if isinstance(value, datetime):
        return value
    return None


class InMemoryContentStore:
    """Thread-safe dict-backed ``LocalContentStore``."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entities: dict[str, LocalEntity] = {}
        self._remote_index: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, local_id: str) -> LocalEntity | None:
        with self._lock:
            return self._entities.get(local_id)

    def find_by_remote_id(self, remote_id: str) -> LocalEntity | None:
        with self._lock:
            local_id = self._remote_index.get(remote_id)
            if local_id is None:
                return None
            return self._entities.get(local_id)

    def linked_entities(self, collection_id: str) -> list[LocalEntity]:
        with self._lock:
            return [
                self._entities[local_id]
                for local_id in self._remote_index.values()
                if self._entities[local_id].collection_id == collection_id
            ]

    def all(self) -> list[LocalEntity]:
        with self._lock:
            return list(self._entities.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entities)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        payload: dict[str, Any],
        remote_id: str,
        collection_id: str,
    ) -> LocalEntity:
        """Create an entity already linked to *remote_id*.

        Raises:
            StoreError: If *remote_id* is already linked.
        """
        with self._write():
            if remote_id in self._remote_index:
                raise StoreError(
                    f"Remote id {remote_id} is already linked to "
                    f"{self._remote_index[remote_id]}"
                )
            entity = LocalEntity(
                local_id=uuid.uuid4().hex,
                remote_id=remote_id,
                collection_id=collection_id,
                fields=dict(payload),
                last_edited_at=_edited_at(payload),
            )
            self._entities[entity.local_id] = entity
            self._remote_index[remote_id] = entity.local_id
        return entity

    def update(
        self, local_id: str, payload: dict[str, Any]
    ) -> LocalEntity:
        """Replace the synced fields of an entity.

        Local-only fields and the protected flag are kept; an archived
        entity whose remote page reappeared is restored.
        """
        with self._write():
            entity = self._require(local_id)
            updated = entity.model_copy(
                update={
                    "fields": dict(payload),
                    "archived": False,
                    "last_edited_at": _edited_at(payload)
                    or entity.last_edited_at,
                }
            )
            self._entities[local_id] = updated
        return updated

    def soft_delete(self, local_id: str) -> None:
        with self._write():
            entity = self._require(local_id)
            self._entities[local_id] = entity.model_copy(
                update={"archived": True}
            )

    def hard_delete(self, local_id: str) -> None:
        """Delete an entity and remove its remote link."""
        with self._write():
            entity = self._require(local_id)
            del self._entities[local_id]
            if entity.remote_id is not None:
                self._remote_index.pop(entity.remote_id, None)

    def add(self, entity: LocalEntity) -> LocalEntity:
        """Insert a pre-built entity (e.g. a protected or local-only one)."""
        with self._write():
            if entity.remote_id is not None:
                owner = self._remote_index.get(entity.remote_id)
                if owner is not None and owner != entity.local_id:
                    raise StoreError(
                        f"Remote id {entity.remote_id} is already linked "
                        f"to {owner}"
                    )
                self._remote_index[entity.remote_id] = entity.local_id
            self._entities[entity.local_id] = entity
        return entity

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require(self, local_id: str) -> LocalEntity:
        entity = self._entities.get(local_id)
        if entity is None:
            raise StoreError(f"Unknown local entity: {local_id}")
        return entity

    @contextmanager
    def _write(self) -> Iterator[None]:
        """Hold the lock for one mutation, then persist it.

        If persisting fails, the entities and the remote-id index are
        put back as they were before the mutation.
        """
        with self._lock:
            entities = dict(self._entities)
            remote_index = dict(self._remote_index)
            try:
                yield
                self._persist()
            except StoreError:
                self._entities = entities
                self._remote_index = remote_index
                raise

    def _persist(self) -> None:
        """Hook for persistent subclasses. Caller holds the lock."""


class JsonContentStore(InMemoryContentStore):
    """``InMemoryContentStore`` persisted to ``content.json``.

    The whole store is rewritten atomically (temp file then
    ``os.replace()``) after every mutation.

    Args:
        state_dir: Directory holding ``content.json``.
    """

    FILENAME = "content.json"

    def __init__(self, state_dir: Path | str) -> None:
        super().__init__()
        self._state_dir = Path(state_dir)
        self._load()

    @property
    def path(self) -> Path:
        return self._state_dir / self.FILENAME

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, encoding="utf-8") as fh:
                data = json.load(fh)
            entities = [
                LocalEntity.model_validate(raw)
                for raw in data.get("entities", [])
            ]
        except (OSError, ValueError) as exc:
            raise StoreError(
                f"Cannot read content store {self.path}: {exc}"
            ) from exc
        for entity in entities:
            self._entities[entity.local_id] = entity
            if entity.remote_id is not None:
                self._remote_index[entity.remote_id] = entity.local_id
        logger.debug(
            "Loaded %d local entities from %s", len(entities), self.path
        )

    def _persist(self) -> None:
        data = {
            "version": 1,
            "entities": [
                e.model_dump(mode="json") for e in self._entities.values()
            ],
        }
        try:
            self._state_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self._state_dir), suffix=".tmp"
            )
        except OSError as exc:
            raise StoreError(
                f"Cannot write content store in {self._state_dir}: {exc}"
            ) from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise StoreError(
                f"Cannot write content store {self.path}: {exc}"
            ) from exc
