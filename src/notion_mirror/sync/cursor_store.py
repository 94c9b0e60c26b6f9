"""Sync cursor persistence layer.

Keeps one last-synced watermark per collection (Notion database) so the
next run can fetch only what changed.  Cursors live in a single JSON file
(``cursors.json``) inside the state directory, or purely in memory when
no directory is given.

Key design choices:

* **Atomic writes** -- every mutation writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.  A failed
  write leaves the in-memory state as it was.
* **TTL** -- each entry carries an ``expires_at``; an expired cursor
  reads as absent (forcing a full resync).  Reads never write.
* **Bounded** -- at most ``max_entries`` cursors are kept; the least
  recently set ones are evicted first.
* **Lossy on corruption** -- an unreadable file reads as empty.  Losing
  cursors only costs a full resync, never correctness.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from ..errors import StoreError
from .models import SyncCursor, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

STATE_VERSION = 1
DEFAULT_TTL = 30 * 24 * 3600


class SyncCursorStore:
    """Load, save, and query per-collection sync cursors.

    Args:
        state_dir: Directory for ``cursors.json``.  ``None`` keeps
            cursors in memory only.
        default_ttl: Seconds a cursor stays valid unless ``set`` is
            given an explicit ``ttl``.
        max_entries: Capacity before least-recently-set eviction.
        clock: Wall clock in epoch seconds, injectable for tests.
    """

    FILENAME = "cursors.json"

    def __init__(
        self,
        state_dir: Path | str | None = None,
        default_ttl: float = DEFAULT_TTL,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._state_dir = Path(state_dir) if state_dir is not None else None
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, dict] = self._load()

    @property
    def path(self) -> Path | None:
        if self._state_dir is None:
            return None
        return self._state_dir / self.FILENAME

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, collection_id: str) -> datetime | None:
        """Return the cursor for *collection_id*, or ``None``.

        Expired entries read as ``None`` and are dropped from memory; the
        file catches up on the next successful write.
        """
        with self._lock:
            entry = self._entries.get(collection_id)
            if entry is None:
                return None
            if self._expired(entry):
                logger.info(
                    "Sync cursor for %s expired, next run is a full sync",
                    collection_id,
                )
                del self._entries[collection_id]
                return None
            return parse_timestamp(entry["last_synced_at"])

    def set(
        self,
        collection_id: str,
        timestamp: datetime,
        ttl: float | None = None,
    ) -> None:
        """Record *timestamp* as the cursor for *collection_id*.

        Args:
            collection_id: Database id.
            timestamp: New watermark.
            ttl: Seconds until the cursor expires (defaults to
                ``default_ttl``).

        Raises:
            StoreError: If the file cannot be written; the previous
                cursor stays in effect.
        """
        now = self._clock()
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            previous = dict(self._entries)
            # Re-insert so dict order tracks recency of set().
            self._entries.pop(collection_id, None)
            self._entries[collection_id] = {
                "last_synced_at": format_timestamp(timestamp),
                "set_at": now,
                "expires_at": now + ttl,
            }
            self._evict()
            self._save_or_restore(previous)
        logger.debug(
            "Sync cursor for %s set to %s",
            collection_id,
            format_timestamp(timestamp),
        )

    def delete(self, collection_id: str) -> bool:
        """Remove the cursor for *collection_id*.

        Returns:
            ``True`` if a cursor was removed.
        """
        with self._lock:
            previous = dict(self._entries)
            if self._entries.pop(collection_id, None) is None:
                return False
            self._save_or_restore(previous)
            return True

    def all(self) -> list[SyncCursor]:
        """Return every unexpired cursor."""
        with self._lock:
            expired = [
                cid for cid, e in self._entries.items() if self._expired(e)
            ]
            for cid in expired:
                del self._entries[cid]
            return [
                SyncCursor(
                    collection_id=cid,
                    last_synced_at=parse_timestamp(e["last_synced_at"]),
                )
                for cid, e in self._entries.items()
            ]

    def clear(self) -> None:
        """Forget every cursor; the next run of each collection is full."""
        with self._lock:
            previous = dict(self._entries)
            self._entries.clear()
            self._save_or_restore(previous)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _expired(self, entry: dict) -> bool:
        return self._clock() >= float(entry.get("expires_at", 0))

    def _evict(self) -> None:
        overflow = len(self._entries) - self.max_entries
        if overflow <= 0:
            return
        victims = sorted(
            self._entries, key=lambda cid: self._entries[cid]["set_at"]
        )[:overflow]
        for cid in victims:
            del self._entries[cid]
        logger.info("Evicted %d sync cursor(s): %s", overflow, victims)

    def _load(self) -> dict[str, dict]:
        path = self.path
        if path is None or not path.exists():
            return {}
        try:
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
            entries = data["cursors"]
            if not isinstance(entries, dict):
                raise TypeError("'cursors' is not a mapping")
            for entry in entries.values():
                parse_timestamp(entry["last_synced_at"])
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning(
                "Ignoring unreadable cursor file %s (%s); "
                "affected collections will fully resync",
                path,
                exc,
            )
            return {}
        # Oldest first so insertion order matches set() recency.
        return dict(
            sorted(entries.items(), key=lambda kv: kv[1].get("set_at", 0))
        )

    def _save(self) -> None:
        """Persist cursors atomically. Caller holds the lock."""
        if self._state_dir is None:
            return
        try:
            self._state_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self._state_dir), suffix=".tmp"
            )
        except OSError as exc:
            raise StoreError(
                f"Cannot write cursor file in {self._state_dir}: {exc}"
            ) from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(
                    {"version": STATE_VERSION, "cursors": self._entries},
                    fh,
                    indent=2,
                )
            os.replace(tmp_path, self.path)
        except OSError as exc:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise StoreError(
                f"Cannot write cursor file {self.path}: {exc}"
            ) from exc

    def _save_or_restore(self, previous: dict[str, dict]) -> None:
        """Persist, or put *previous* back if the write fails."""
        try:
            self._save()
        except StoreError:
            self._entries = previous
            raise
