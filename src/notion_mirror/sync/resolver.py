"""Create-or-update resolution of remote items against the local store.

``ContentResolver`` maps each fetched ``RemoteItem`` to a local entity:

- No entity linked to the remote id: create one, linked atomically.
- Linked entity found: update it in place.

Resolution of the same remote id is serialised by a per-id lock, so two
concurrent resolutions of one page yield exactly one create and one
update.  Distinct ids never wait on each other.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from ..errors import ResolutionError, StoreError
from .models import RemoteItem, ResolutionOutcome, ResolutionResult
from .store import LocalContentStore

logger = logging.getLogger(__name__)

PayloadBuilder = Callable[[RemoteItem], dict[str, Any]]


def page_title(properties: dict[str, Any]) -> str:
    """Return the plain text of a page's ``title`` property."""
    for prop in properties.values():
        if isinstance(prop, dict) and prop.get("type") == "title":
            return "".join(
                part.get("plain_text", "")
                for part in prop.get("title") or []
            )
    return ""


def default_payload(item: RemoteItem) -> dict[str, Any]:
    """Build the local payload for *item*.

    Keeps the raw API object and edit time; pages also get their
    properties and plain-text title, and fetched nested blocks are
    exposed under ``blocks``.
    """
    payload: dict[str, Any] = {
        "remote_id": item.id,
        "last_edited_at": item.last_edited_at,
        "raw": item.raw,
    }
    if item.raw.get("object") == "page":
        properties = item.raw.get("properties") or {}
        payload["properties"] = properties
        payload["title"] = page_title(properties)
    if "children" in item.raw:
        payload["blocks"] = item.raw["children"]
    return payload


class ContentResolver:
    """Mirror remote items into a ``LocalContentStore``.

    Args:
        store: Local persistence collaborator.
        payload_builder: Maps a remote item to the stored payload.
    """

    def __init__(
        self,
        store: LocalContentStore,
        payload_builder: PayloadBuilder | None = None,
    ) -> None:
        self.store = store
        self.payload_builder = payload_builder or default_payload
        self._locks_guard = threading.Lock()
        # remote_id -> [lock, number of holders/waiters]
        self._locks: dict[str, list] = {}

    @contextmanager
    def _locked(self, remote_id: str) -> Iterator[None]:
        with self._locks_guard:
            slot = self._locks.setdefault(
                remote_id, [threading.Lock(), 0]
            )
            slot[1] += 1
        try:
            with slot[0]:
                yield
        finally:
            with self._locks_guard:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._locks[remote_id]

    def resolve_or_raise(self, item: RemoteItem) -> ResolutionResult:
        """Create or update the local entity for *item*.

        Raises:
            ResolutionError: If the payload cannot be built or the store
                rejects the write.
        """
        try:
            payload = self.payload_builder(item)
        except Exception as exc:
            raise ResolutionError(item.id, exc) from exc

        with self._locked(item.id):
            try:
                existing = self.store.find_by_remote_id(item.id)
                if existing is None:
                    entity = self.store.create(
                        payload, item.id, item.collection_id
                    )
                    outcome = ResolutionOutcome.CREATED
                else:
                    entity = self.store.update(existing.local_id, payload)
                    outcome = ResolutionOutcome.UPDATED
            except StoreError as exc:
                raise ResolutionError(item.id, exc) from exc

        logger.debug(
            "%s local entity %s for remote %s",
            outcome.value.capitalize(),
            entity.local_id,
            item.id,
        )
        return ResolutionResult(
            remote_id=item.id, local_id=entity.local_id, outcome=outcome
        )

    def resolve(self, item: RemoteItem) -> ResolutionResult:
        """Like ``resolve_or_raise`` but reports failure as a result."""
        try:
            return self.resolve_or_raise(item)
        except ResolutionError as exc:
            logger.error("%s", exc)
            return ResolutionResult(
                remote_id=item.id,
                outcome=ResolutionOutcome.FAILED,
                error=str(exc),
            )
