"""Sync orchestrator: the per-run pipeline.

``SyncOrchestrator`` drives one sync task over a set of collections
(Notion databases)::

    plan (cursor) -> fetch pages -> resolve items -> reconcile deletions
                                                  -> commit cursor

The first page of every collection is fetched in a single batch wave;
each collection then pages on by itself, collections running
concurrently.  Every HTTP attempt, in a batch or not, counts against
the client's ``max_parallel_requests`` ceiling.

Failures are isolated: a failed item is recorded and the run continues,
a failed page fetch aborts only its collection, and a collection's
cursor only moves when that collection was enumerated completely with
no failed items.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Iterator
from datetime import datetime
from typing import TYPE_CHECKING, Any

from ..errors import RemoteError, StoreError
from .cursor_store import SyncCursorStore
from .detector import ChangeDetector
from .models import (
    BatchResponse,
    CollectionSummary,
    FetchMode,
    FetchPlan,
    Page,
    RemoteItem,
    ResolutionOutcome,
    ResolutionResult,
    SyncOptions,
    SyncSummary,
    TaskState,
    utcnow,
)
from .reconciler import DeletionReconciler
from .resolver import ContentResolver
from .tasks import CancellationToken, TaskController

if TYPE_CHECKING:
    from ..core.client import NotionClient

logger = logging.getLogger(__name__)


class _Progress:
    """Task-wide item counters shared by all collections of a run."""

    def __init__(self, controller: TaskController, task_id: str) -> None:
        self._controller = controller
        self._task_id = task_id
        self.processed = 0
        self.total = 0

    def discovered(self, count: int) -> None:
        self.total += count
        self._report()

    def advance(self) -> None:
        self.processed += 1
        self._report()

    def _report(self) -> None:
        self._controller.report_progress(
            self._task_id, self.processed, self.total
        )


class SyncOrchestrator:
    """Run sync tasks against Notion and a local content store.

    Args:
        client: Notion API client.
        detector: Fetch planner (owns cursor reads).
        resolver: Create-or-update resolver.
        reconciler: Deletion reconciler.
        cursors: Cursor store the run commits to.
        controller: Task state owner.
        default_options: Options used when a run passes none.
        max_block_depth: Depth limit for ``include_children`` fetches.
    """

    def __init__(
        self,
        client: NotionClient,
        detector: ChangeDetector,
        resolver: ContentResolver,
        reconciler: DeletionReconciler,
        cursors: SyncCursorStore,
        controller: TaskController,
        default_options: SyncOptions | None = None,
        max_block_depth: int = 5,
    ) -> None:
        self.client = client
        self.detector = detector
        self.resolver = resolver
        self.reconciler = reconciler
        self.cursors = cursors
        self.controller = controller
        self.default_options = default_options or SyncOptions()
        self.max_block_depth = max_block_depth
        self._background: dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run_sync(
        self,
        collection_ids: Iterable[str],
        options: SyncOptions | None = None,
    ) -> SyncSummary:
        """Run one sync task to completion.

        Raises:
            ConflictError: If a requested collection is already syncing.
        """
        ids = list(dict.fromkeys(collection_ids))
        task_id = self.controller.start(ids)
        return await self._run(task_id, ids, options or self.default_options)

    def start_sync(
        self,
        collection_ids: Iterable[str],
        options: SyncOptions | None = None,
    ) -> tuple[str, asyncio.Task]:
        """Register a task and run it in the background.

        Must be called from a running event loop.  ``ConflictError`` is
        raised here, before anything is scheduled.
        """
        ids = list(dict.fromkeys(collection_ids))
        task_id = self.controller.start(ids)
        task = asyncio.create_task(
            self._run(task_id, ids, options or self.default_options),
            name=f"sync-{task_id}",
        )
        self._background[task_id] = task
        task.add_done_callback(
            lambda t, tid=task_id: self._on_background_done(tid, t)
        )
        return task_id, task

    def _on_background_done(self, task_id: str, task: asyncio.Task) -> None:
        self._background.pop(task_id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Background sync %s ended with an error: %s",
                task_id,
                task.exception(),
            )

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def _run(
        self,
        task_id: str,
        collection_ids: list[str],
        options: SyncOptions,
    ) -> SyncSummary:
        started_at = utcnow()
        self.controller.mark_running(task_id)
        token = self.controller.token(task_id)
        logger.info(
            "Sync %s started: %d collection(s), force_full=%s",
            task_id,
            len(collection_ids),
            options.force_full,
        )

        try:
            plans = await asyncio.gather(
                *(
                    asyncio.to_thread(
                        self.detector.plan_fetch, cid, options.force_full
                    )
                    for cid in collection_ids
                )
            )
            fetch_started = utcnow()
            first_pages = await self.client.batch_send(
                [
                    self.client.query_spec(p.collection_id, p.filter)
                    for p in plans
                ]
            )
            progress = _Progress(self.controller, task_id)
            collections = await asyncio.gather(
                *(
                    self._sync_collection(
                        plan, first, fetch_started, options, token, progress
                    )
                    for plan, first in zip(plans, first_pages)
                )
            )
        except asyncio.CancelledError:
            self.controller.fail(task_id, "Sync interrupted")
            raise
        except Exception as exc:
            logger.exception("Sync %s failed", task_id)
            self.controller.fail(task_id, str(exc))
            raise

        aborted = [c for c in collections if c.error is not None]
        if aborted and len(aborted) == len(collections):
            error = "; ".join(
                f"{c.collection_id}: {c.error}" for c in aborted
            )
            snapshot = self.controller.fail(task_id, error)
        else:
            snapshot = self.controller.complete(task_id)

        summary = SyncSummary(
            task_id=task_id,
            state=snapshot.state,
            collections=list(collections),
            started_at=started_at,
            completed_at=utcnow(),
        )
        logger.info(
            "Sync %s %s: %d created, %d updated, %d failed, %d deleted%s",
            task_id,
            summary.state.value,
            summary.created,
            summary.updated,
            summary.failed,
            summary.deleted,
            " (cancelled)" if summary.cancelled else "",
        )
        return summary

    async def _sync_collection(
        self,
        plan: FetchPlan,
        first: BatchResponse,
        fetch_started: datetime,
        options: SyncOptions,
        token: CancellationToken,
        progress: _Progress,
    ) -> CollectionSummary:
        cid = plan.collection_id
        if not first.ok:
            error = first.to_error(f"databases/{cid}/query")
            logger.error("Fetching %s failed: %s", cid, error)
            return CollectionSummary(
                collection_id=cid, mode=plan.mode, error=str(error)
            )

        results: list[ResolutionResult] = []
        seen: set[str] = set()
        fetched = 0
        cancelled = False
        error: str | None = None
        page = Page.from_body(first.body or {})
        pages: Iterator[Page] | None = None

        while True:
            fetched += len(page.results)
            progress.discovered(len(page.results))
            for obj in page.results:
                if await token.checkpoint():
                    cancelled = True
                    break
                result = await self._process(obj, plan, options, seen)
                if result is not None:
                    results.append(result)
                progress.advance()
            if cancelled or not page.has_more or not page.next_cursor:
                break
            if await token.checkpoint():
                cancelled = True
                break
            if pages is None:
                pages = self.client.query_database(
                    cid, plan.filter, start_cursor=page.next_cursor
                )
            try:
                next_page = await asyncio.to_thread(next, pages, None)
            except RemoteError as exc:
                logger.error(
                    "Fetching %s failed after %d item(s): %s",
                    cid,
                    fetched,
                    exc,
                )
                error = str(exc)
                break
            if next_page is None:
                break
            page = next_page

        if cancelled:
            logger.info("Sync of %s cancelled after %d item(s)", cid, fetched)

        complete = error is None and not cancelled
        deletions = None
        if (
            complete
            and plan.mode is FetchMode.FULL
            and options.check_deletions
        ):
            deletions = await asyncio.to_thread(
                self.reconciler.reconcile,
                cid,
                seen,
                plan.mode,
                options.deletion_policy,
            )

        has_failures = any(
            r.outcome is ResolutionOutcome.FAILED for r in results
        )
        cursor_advanced = False
        if complete and not has_failures:
            try:
                await asyncio.to_thread(self.cursors.set, cid, fetch_started)
                cursor_advanced = True
            except StoreError as exc:
                logger.error("Could not save cursor for %s: %s", cid, exc)
        elif complete:
            logger.warning(
                "Cursor for %s not advanced: %d item(s) failed",
                cid,
                sum(
                    1
                    for r in results
                    if r.outcome is ResolutionOutcome.FAILED
                ),
            )

        return CollectionSummary(
            collection_id=cid,
            mode=plan.mode,
            fetched=fetched,
            results=results,
            deletions=deletions,
            cursor_advanced=cursor_advanced,
            new_cursor=fetch_started if cursor_advanced else None,
            error=error,
            cancelled=cancelled,
        )

    async def _process(
        self,
        obj: dict[str, Any],
        plan: FetchPlan,
        options: SyncOptions,
        seen: set[str],
    ) -> ResolutionResult | None:
        """Resolve one fetched object; ``None`` means it was unchanged."""
        try:
            item = RemoteItem.from_api(obj, plan.collection_id)
        except (KeyError, TypeError, ValueError) as exc:
            remote_id = (
                str(obj.get("id") or "<unknown>")
                if isinstance(obj, dict)
                else "<unknown>"
            )
            logger.error("Malformed item %s: %s", remote_id, exc)
            if plan.mode is FetchMode.FULL and remote_id != "<unknown>":
                seen.add(remote_id)
            return ResolutionResult(
                remote_id=remote_id,
                outcome=ResolutionOutcome.FAILED,
                error=f"Malformed item: {exc}",
            )

        if plan.mode is FetchMode.FULL:
            seen.add(item.id)
        if not self.detector.is_changed(item, plan):
            return None

        if options.include_children and item.has_children:
            try:
                tree = await self.client.fetch_block_tree(
                    item.id, self.max_block_depth
                )
            except RemoteError as exc:
                logger.error(
                    "Fetching blocks of %s failed: %s", item.id, exc
                )
                return ResolutionResult(
                    remote_id=item.id,
                    outcome=ResolutionOutcome.FAILED,
                    error=str(exc),
                )
            item = item.model_copy(
                update={"raw": {**item.raw, "children": tree}}
            )

        return await asyncio.to_thread(self.resolver.resolve, item)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def running_task_ids(self) -> list[str]:
        """Ids of background runs still executing."""
        return list(self._background)

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Stop every background run.

        Runs are first asked to cancel at their next checkpoint, so
        their partial results are recorded and no cursor moves.  Runs
        still going after *timeout* seconds are cancelled outright.
        """
        task_ids = self.running_task_ids()
        if not task_ids:
            return
        logger.info("Stopping %d background sync(s)", len(task_ids))
        for task_id in task_ids:
            state = self.controller.state_of(task_id)
            if not state.is_terminal and state is not TaskState.CANCELLING:
                self.controller.cancel(task_id)

        tasks = [
            self._background[t] for t in task_ids if t in self._background
        ]
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            logger.warning(
                "Sync %s did not stop within %.1fs, cancelling",
                task.get_name(),
                timeout,
            )
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
