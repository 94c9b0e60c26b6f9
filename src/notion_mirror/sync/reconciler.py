"""Deletion reconciliation.

After a *full* enumeration of a collection, every local entity linked to
that collection whose remote id was not seen has been deleted (or moved
out of the database) in Notion.  ``DeletionReconciler`` finds those
entities and applies the configured ``DeletionPolicy``:

- ``soft_delete``: archive the entity, keep its remote link.
- ``hard_delete``: delete the entity and drop its remote link.
- ``report_only``: change nothing, only report.

Incremental fetches only see changed pages, so they never produce
deletion candidates.  Protected and already-archived entities are never
candidates.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from ..errors import ReconciliationError, StoreError
from .models import (
    DeletionCandidate,
    DeletionFailure,
    DeletionPolicy,
    FetchMode,
    ReconciliationResult,
)
from .store import LocalContentStore

logger = logging.getLogger(__name__)


class DeletionReconciler:
    """Detect and apply remote deletions to the local store.

    Args:
        store: Local persistence collaborator.
        policy: Default deletion policy.
        allow_empty_enumeration: Apply destructive policies even when the
            remote enumeration came back empty.
    """

    def __init__(
        self,
        store: LocalContentStore,
        policy: DeletionPolicy = DeletionPolicy.SOFT_DELETE,
        allow_empty_enumeration: bool = False,
    ) -> None:
        self.store = store
        self.policy = policy
        self.allow_empty_enumeration = allow_empty_enumeration

    def find_candidates(
        self,
        collection_id: str,
        seen_remote_ids: Iterable[str],
        mode: FetchMode = FetchMode.FULL,
    ) -> list[DeletionCandidate]:
        """Return local entities missing from a full enumeration."""
        if mode is not FetchMode.FULL:
            return []
        seen = set(seen_remote_ids)
        return [
            DeletionCandidate(
                local_id=entity.local_id, remote_id=entity.remote_id
            )
            for entity in self.store.linked_entities(collection_id)
            if entity.remote_id is not None
            and entity.remote_id not in seen
            and not entity.archived
            and not entity.protected
        ]

    def reconcile(
        self,
        collection_id: str,
        seen_remote_ids: Iterable[str],
        mode: FetchMode = FetchMode.FULL,
        policy: DeletionPolicy | None = None,
    ) -> ReconciliationResult:
        """Find deletion candidates and apply the policy to each.

        Per-candidate failures are logged and collected; the remaining
        candidates are still processed.
        """
        policy = policy or self.policy
        seen = set(seen_remote_ids)
        candidates = self.find_candidates(collection_id, seen, mode)
        result = ReconciliationResult(
            collection_id=collection_id,
            policy=policy,
            candidates=candidates,
        )
        if not candidates:
            return result

        if policy is DeletionPolicy.REPORT_ONLY:
            for candidate in candidates:
                logger.info(
                    "Remote page %s deleted; local entity %s kept "
                    "(report only)",
                    candidate.remote_id,
                    candidate.local_id,
                )
            return result

        if not seen and not self.allow_empty_enumeration:
            reason = (
                f"remote enumeration of {collection_id} was empty; "
                f"refusing to {policy.value.replace('_', ' ')} "
                f"{len(candidates)} local entities"
            )
            logger.warning("Skipping deletion reconciliation: %s", reason)
            return result.model_copy(update={"skipped_reason": reason})

        applied: list[DeletionCandidate] = []
        failures: list[DeletionFailure] = []
        for candidate in candidates:
            try:
                self._apply(candidate, policy)
            except ReconciliationError as exc:
                logger.error("%s", exc)
                failures.append(
                    DeletionFailure(
                        local_id=candidate.local_id,
                        remote_id=candidate.remote_id,
                        error=str(exc.cause),
                    )
                )
            else:
                applied.append(candidate)

        logger.info(
            "Reconciled %s: %d candidate(s), %d applied, %d failed",
            collection_id,
            len(candidates),
            len(applied),
            len(failures),
        )
        return result.model_copy(
            update={"applied": applied, "failures": failures}
        )

    def _apply(
        self, candidate: DeletionCandidate, policy: DeletionPolicy
    ) -> None:
        try:
            if policy is DeletionPolicy.HARD_DELETE:
                self.store.hard_delete(candidate.local_id)
                action = "Deleted"
            else:
                self.store.soft_delete(candidate.local_id)
                action = "Archived"
        except StoreError as exc:
            raise ReconciliationError(candidate, exc) from exc
        logger.info(
            "%s local entity %s (remote page %s gone)",
            action,
            candidate.local_id,
            candidate.remote_id,
        )
