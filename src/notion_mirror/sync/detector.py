"""Full-vs-incremental fetch planning.

``ChangeDetector`` turns a collection's stored cursor into a
``FetchPlan``: a full enumeration when there is no usable cursor (or a
full resync was requested), otherwise an incremental fetch restricted to
pages edited strictly after the cursor.
"""

from __future__ import annotations

import logging
from typing import Any

from .cursor_store import SyncCursorStore
from .models import FetchMode, FetchPlan, RemoteItem, format_timestamp

logger = logging.getLogger(__name__)


def last_edited_after(timestamp: Any) -> dict[str, Any]:
    """Notion database filter matching pages edited after *timestamp*."""
    return {
        "timestamp": "last_edited_time",
        "last_edited_time": {"after": format_timestamp(timestamp)},
    }


class ChangeDetector:
    """Decide how each collection is fetched in a run."""

    def __init__(self, cursors: SyncCursorStore) -> None:
        self.cursors = cursors

    def plan_fetch(
        self, collection_id: str, force_full: bool = False
    ) -> FetchPlan:
        """Return the fetch plan for *collection_id*.

        Args:
            collection_id: Database id.
            force_full: Ignore any stored cursor.
        """
        if force_full:
            logger.info("Full sync of %s (forced)", collection_id)
            return FetchPlan(collection_id=collection_id, mode=FetchMode.FULL)

        cursor = self.cursors.get(collection_id)
        if cursor is None:
            logger.info("Full sync of %s (no cursor)", collection_id)
            return FetchPlan(collection_id=collection_id, mode=FetchMode.FULL)

        logger.info(
            "Incremental sync of %s since %s",
            collection_id,
            format_timestamp(cursor),
        )
        return FetchPlan(
            collection_id=collection_id,
            mode=FetchMode.INCREMENTAL,
            filter=last_edited_after(cursor),
            cursor=cursor,
        )

    @staticmethod
    def is_changed(item: RemoteItem, plan: FetchPlan) -> bool:
        """Return ``True`` if *item* must be resolved under *plan*.

        Notion compares ``last_edited_time`` at minute granularity, so an
        incremental query can return pages edited at the cursor itself.
        Those are dropped here.
        """
        if plan.mode is FetchMode.FULL or plan.cursor is None:
            return True
        return item.last_edited_at > plan.cursor
