"""Sync task lifecycle, progress and cooperative cancellation.

State machine::

    pending --> running <--> paused
       |           |           |
       +-----------+-----------+--> cancelling --> completed
                   |
                   +--> completed | failed

At most one non-terminal task may cover a given collection at a time.
Pause and cancel are cooperative: the running sync observes them through
its ``CancellationToken`` at item and page boundaries.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime

from ..errors import (
    ConflictError,
    InvalidTransitionError,
    TaskNotFoundError,
)
from .models import (
    ProgressEvent,
    SyncTask,
    TaskProgress,
    TaskState,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = 7 * 24 * 3600

ProgressSubscriber = Callable[[ProgressEvent], None]


@dataclass
class _TaskRecord:
    task_id: str
    collection_ids: frozenset[str]
    state: TaskState = TaskState.PENDING
    processed: int = 0
    total: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    error: str | None = None
    finished_at: float | None = None

    def snapshot(self) -> SyncTask:
        return SyncTask(
            task_id=self.task_id,
            state=self.state,
            collection_ids=self.collection_ids,
            progress=TaskProgress(
                processed=self.processed, total=self.total
            ),
            created_at=self.created_at,
            updated_at=self.updated_at,
            error=self.error,
        )

    def event(self) -> ProgressEvent:
        return ProgressEvent(
            task_id=self.task_id,
            processed=self.processed,
            total=self.total,
            state=self.state,
        )


class CancellationToken:
    """A running sync's view of its task's control state."""

    def __init__(
        self,
        controller: TaskController,
        task_id: str,
        poll_interval: float = 0.05,
    ) -> None:
        self._controller = controller
        self.task_id = task_id
        self._poll_interval = poll_interval

    @property
    def cancelled(self) -> bool:
        return self._controller.state_of(self.task_id) is TaskState.CANCELLING

    @property
    def paused(self) -> bool:
        return self._controller.state_of(self.task_id) is TaskState.PAUSED

    async def checkpoint(self) -> bool:
        """Wait while paused, then return whether to stop."""
        while self.paused:
            await asyncio.sleep(self._poll_interval)
        return self.cancelled


class TaskController:
    """Owns every sync task's state.

    All methods are thread-safe; the lock is never held while calling
    subscribers.

    Args:
        retention: Seconds a finished task stays queryable.
        clock: Monotonic clock used for retention, injectable for tests.
    """

    def __init__(
        self,
        retention: float = DEFAULT_RETENTION,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.retention = retention
        self._clock = clock
        self._lock = threading.Lock()
        self._tasks: dict[str, _TaskRecord] = {}
        self._subscribers: list[ProgressSubscriber] = []

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, task_id: str) -> SyncTask:
        with self._lock:
            return self._require(task_id).snapshot()

    def state_of(self, task_id: str) -> TaskState:
        with self._lock:
            return self._require(task_id).state

    def list_tasks(self) -> list[SyncTask]:
        """Return snapshots of every known task, oldest first."""
        with self._lock:
            return [r.snapshot() for r in self._tasks.values()]

    def token(self, task_id: str) -> CancellationToken:
        with self._lock:
            self._require(task_id)
        return CancellationToken(self, task_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, collection_ids: Iterable[str]) -> str:
        """Register a new pending task for *collection_ids*.

        Raises:
            ValueError: If *collection_ids* is empty.
            ConflictError: If any collection already has a non-terminal
                task.
        """
        requested = frozenset(collection_ids)
        if not requested:
            raise ValueError("A sync task needs at least one collection")
        self.purge_expired()
        with self._lock:
            for record in self._tasks.values():
                if record.state.is_terminal:
                    continue
                overlap = requested & record.collection_ids
                if overlap:
                    raise ConflictError(overlap, record.task_id)
            record = _TaskRecord(
                task_id=uuid.uuid4().hex, collection_ids=requested
            )
            self._tasks[record.task_id] = record
            event = record.event()
        logger.info(
            "Task %s created for %d collection(s)",
            record.task_id,
            len(requested),
        )
        self._publish(event)
        return record.task_id

    def mark_running(self, task_id: str) -> SyncTask:
        """Move a pending task to running.

        A task cancelled before it started stays ``cancelling`` so the
        run stops at its first checkpoint.
        """
        with self._lock:
            record = self._require(task_id)
            if record.state is TaskState.CANCELLING:
                return record.snapshot()
        return self._transition(
            task_id, "start", {TaskState.PENDING}, TaskState.RUNNING
        )

    def pause(self, task_id: str) -> SyncTask:
        return self._transition(
            task_id, "pause", {TaskState.RUNNING}, TaskState.PAUSED
        )

    def resume(self, task_id: str) -> SyncTask:
        return self._transition(
            task_id, "resume", {TaskState.PAUSED}, TaskState.RUNNING
        )

    def cancel(self, task_id: str) -> SyncTask:
        return self._transition(
            task_id,
            "cancel",
            {TaskState.PENDING, TaskState.RUNNING, TaskState.PAUSED},
            TaskState.CANCELLING,
        )

    def complete(self, task_id: str) -> SyncTask:
        return self._transition(
            task_id,
            "complete",
            {
                TaskState.PENDING,
                TaskState.RUNNING,
                TaskState.PAUSED,
                TaskState.CANCELLING,
            },
            TaskState.COMPLETED,
        )

    def fail(self, task_id: str, error: str) -> SyncTask:
        return self._transition(
            task_id,
            "fail",
            {
                TaskState.PENDING,
                TaskState.RUNNING,
                TaskState.PAUSED,
                TaskState.CANCELLING,
            },
            TaskState.FAILED,
            error=error,
        )

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def report_progress(
        self, task_id: str, processed: int, total: int | None = None
    ) -> SyncTask:
        """Record progress; ``processed`` never decreases."""
        with self._lock:
            record = self._require(task_id)
            record.processed = max(record.processed, processed)
            if total is not None:
                record.total = total
            record.total = max(record.total, record.processed)
            record.updated_at = utcnow()
            snapshot = record.snapshot()
            event = record.event()
        self._publish(event)
        return snapshot

    def subscribe(
        self, callback: ProgressSubscriber
    ) -> Callable[[], None]:
        """Register a progress subscriber; returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def purge_expired(self) -> int:
        """Forget finished tasks older than ``retention`` seconds."""
        now = self._clock()
        with self._lock:
            expired = [
                task_id
                for task_id, r in self._tasks.items()
                if r.finished_at is not None
                and now - r.finished_at >= self.retention
            ]
            for task_id in expired:
                del self._tasks[task_id]
        if expired:
            logger.debug("Purged %d finished task(s)", len(expired))
        return len(expired)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require(self, task_id: str) -> _TaskRecord:
        record = self._tasks.get(task_id)
        if record is None:
            raise TaskNotFoundError(task_id)
        return record

    def _transition(
        self,
        task_id: str,
        action: str,
        allowed: set[TaskState],
        target: TaskState,
        error: str | None = None,
    ) -> SyncTask:
        with self._lock:
            record = self._require(task_id)
            if record.state not in allowed:
                raise InvalidTransitionError(
                    task_id, record.state.value, action
                )
            previous = record.state
            record.state = target
            record.updated_at = utcnow()
            if error is not None:
                record.error = error
            if target.is_terminal:
                record.finished_at = self._clock()
            snapshot = record.snapshot()
            event = record.event()
        logger.info(
            "Task %s: %s -> %s", task_id, previous.value, target.value
        )
        self._publish(event)
        return snapshot

    def _publish(self, event: ProgressEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Progress subscriber failed for task %s",
                    event.task_id,
                )
