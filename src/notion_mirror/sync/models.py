"""Pydantic models for the sync engine.

Defines the data contracts used across all sync modules:

- ``RemoteItem``: One fetched Notion page or block.
- ``SyncCursor``: Last-synced watermark for a collection (database).
- ``FetchPlan``: Full or incremental fetch decision for a collection.
- ``ResolutionResult``: Outcome of mirroring one remote item locally.
- ``DeletionCandidate`` / ``ReconciliationResult``: Deletion reconciliation.
- ``SyncTask`` / ``ProgressEvent``: Task snapshots and progress ticks.
- ``BatchRequestSpec`` / ``BatchResponse`` / ``Page``: Remote access.
- ``CollectionSummary`` / ``SyncSummary``: Aggregate run results.

All models are frozen (immutable); ``SyncTask`` is a snapshot of state
owned by the ``TaskController``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ..errors import (
    PermanentRemoteError,
    RemoteError,
    TransientRemoteError,
)


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse a Notion ISO 8601 timestamp into an aware UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    else:
        raise TypeError(
            f"Expected an ISO 8601 string, got {type(value).__name__}"
        )
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime the way Notion filters expect (UTC, ``Z`` suffix)."""
    return (
        parse_timestamp(value)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class FetchMode(str, Enum):
    """How a collection is enumerated in a run."""

    FULL = "full"
    INCREMENTAL = "incremental"


class ResolutionOutcome(str, Enum):
    """What happened to one remote item in the local store."""

    CREATED = "created"
    UPDATED = "updated"
    FAILED = "failed"


class DeletionPolicy(str, Enum):
    """What to do with local entities whose remote page disappeared."""

    SOFT_DELETE = "soft_delete"
    HARD_DELETE = "hard_delete"
    REPORT_ONLY = "report_only"


class TaskState(str, Enum):
    """Lifecycle states of a sync task."""

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    CANCELLING = "cancelling"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.COMPLETED, TaskState.FAILED)


# ---------------------------------------------------------------------------
# Remote data
# ---------------------------------------------------------------------------


class RemoteItem(BaseModel):
    """One fetched unit of remote content.

    Attributes:
        id: Notion object id (identity of the item).
        collection_id: Database the item was enumerated from.
        last_edited_at: Remote ``last_edited_time`` (UTC).
        raw: The API object as returned by Notion.
        has_children: Whether the object has nested blocks.
    """

    id: str
    collection_id: str
    last_edited_at: datetime
    raw: dict[str, Any] = Field(default_factory=dict)
    has_children: bool = False

    model_config = {"frozen": True}

    @classmethod
    def from_api(
        cls, obj: dict[str, Any], collection_id: str
    ) -> RemoteItem:
        """Build a ``RemoteItem`` from a Notion page or block object."""
        return cls(
            id=obj["id"],
            collection_id=collection_id,
            last_edited_at=parse_timestamp(obj["last_edited_time"]),
            raw=obj,
            has_children=bool(obj.get("has_children", False)),
        )


class Page(BaseModel):
    """One page of a paginated Notion list response."""

    results: list[dict[str, Any]] = Field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False

    model_config = {"frozen": True}

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> Page:
        """Build a ``Page`` from a Notion list response."""
        return cls(
            results=list(body.get("results") or []),
            next_cursor=body.get("next_cursor") or None,
            has_more=bool(body.get("has_more", False)),
        )


class BatchRequestSpec(BaseModel):
    """A single call inside a batch. Transient, never persisted."""

    endpoint: str
    method: str = "GET"
    params: dict[str, Any] | None = None

    model_config = {"frozen": True}


class BatchResponse(BaseModel):
    """Result of one ``BatchRequestSpec``.

    Attributes:
        status: HTTP status of the last attempt (``None`` for network
            failures).
        body: Decoded JSON body on success.
        error: Error message on failure.
        error_kind: ``"transient"`` or ``"permanent"`` on failure.
        attempt_count: Number of attempts made.
    """

    status: int | None = None
    body: dict[str, Any] | None = None
    error: str | None = None
    error_kind: str | None = None
    attempt_count: int = 1

    model_config = {"frozen": True}

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_error(self, endpoint: str | None = None) -> RemoteError:
        """Rebuild the ``RemoteError`` a failed response stands for."""
        message = self.error or "Request failed"
        if self.error_kind == "transient":
            return TransientRemoteError(
                message, status=self.status, endpoint=endpoint
            )
        return PermanentRemoteError(
            message, status=self.status, endpoint=endpoint
        )


# ---------------------------------------------------------------------------
# Change detection
# ---------------------------------------------------------------------------


class SyncCursor(BaseModel):
    """Last successful sync watermark for one collection."""

    collection_id: str
    last_synced_at: datetime

    model_config = {"frozen": True}


class FetchPlan(BaseModel):
    """Fetch decision for one collection.

    Attributes:
        collection_id: Database id.
        mode: Full enumeration or incremental fetch.
        filter: Notion query filter (``None`` for full fetches).
        cursor: Watermark the incremental filter was built from.
    """

    collection_id: str
    mode: FetchMode
    filter: dict[str, Any] | None = None
    cursor: datetime | None = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Resolution and reconciliation
# ---------------------------------------------------------------------------


class ResolutionResult(BaseModel):
    """Outcome of resolving one remote item against the local store."""

    remote_id: str
    local_id: str | None = None
    outcome: ResolutionOutcome
    error: str | None = None

    model_config = {"frozen": True}


class DeletionCandidate(BaseModel):
    """A local entity whose remote counterpart was not enumerated."""

    local_id: str
    remote_id: str

    model_config = {"frozen": True}


class DeletionFailure(BaseModel):
    """A deletion candidate the store refused to archive or delete."""

    local_id: str
    remote_id: str
    error: str

    model_config = {"frozen": True}


class ReconciliationResult(BaseModel):
    """Result of one reconciliation pass over a collection.

    Attributes:
        collection_id: Database id.
        policy: Policy that was applied.
        candidates: Every local entity found missing remotely.
        applied: Candidates the policy was successfully applied to.
        failures: Candidates whose archive/delete failed.
        skipped_reason: Set when the pass was skipped entirely.
    """

    collection_id: str
    policy: DeletionPolicy
    candidates: list[DeletionCandidate] = Field(default_factory=list)
    applied: list[DeletionCandidate] = Field(default_factory=list)
    failures: list[DeletionFailure] = Field(default_factory=list)
    skipped_reason: str | None = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Tasks and progress
# ---------------------------------------------------------------------------


class TaskProgress(BaseModel):
    processed: int = 0
    total: int = 0

    model_config = {"frozen": True}

    @property
    def percentage(self) -> float:
        if self.total <= 0:
            return 0.0
        return round(min(self.processed / self.total, 1.0) * 100, 1)


class SyncTask(BaseModel):
    """Snapshot of a sync task."""

    task_id: str
    state: TaskState
    collection_ids: frozenset[str]
    progress: TaskProgress = Field(default_factory=TaskProgress)
    created_at: datetime
    updated_at: datetime
    error: str | None = None

    model_config = {"frozen": True}


class ProgressEvent(BaseModel):
    """Progress tick pushed to subscribers.

    Subscribers may see duplicates or out-of-order ticks and should rely
    on ``processed`` being monotonic per task.
    """

    task_id: str
    processed: int
    total: int
    state: TaskState

    model_config = {"frozen": True}


class SyncOptions(BaseModel):
    """Per-run options.

    Attributes:
        force_full: Ignore cursors and enumerate every collection fully.
        check_deletions: Reconcile deletions after full enumerations.
        include_children: Fetch nested blocks for each page before
            resolving it.
        deletion_policy: Override the configured deletion policy.
    """

    force_full: bool = False
    check_deletions: bool = True
    include_children: bool = False
    deletion_policy: DeletionPolicy | None = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


class CollectionSummary(BaseModel):
    """Results for one collection within a run."""

    collection_id: str
    mode: FetchMode
    fetched: int = 0
    results: list[ResolutionResult] = Field(default_factory=list)
    deletions: ReconciliationResult | None = None
    cursor_advanced: bool = False
    new_cursor: datetime | None = None
    error: str | None = None
    cancelled: bool = False

    model_config = {"frozen": True}

    def count(self, outcome: ResolutionOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)


class SyncSummary(BaseModel):
    """Aggregate report for a full sync run."""

    task_id: str
    state: TaskState
    collections: list[CollectionSummary] = Field(default_factory=list)
    started_at: datetime
    completed_at: datetime | None = None

    model_config = {"frozen": True}

    @property
    def processed(self) -> int:
        return sum(len(c.results) for c in self.collections)

    @property
    def created(self) -> int:
        return sum(
            c.count(ResolutionOutcome.CREATED) for c in self.collections
        )

    @property
    def updated(self) -> int:
        return sum(
            c.count(ResolutionOutcome.UPDATED) for c in self.collections
        )

    @property
    def succeeded(self) -> int:
        return self.created + self.updated

    @property
    def failed(self) -> int:
        return sum(
            c.count(ResolutionOutcome.FAILED) for c in self.collections
        )

    @property
    def deleted(self) -> int:
        return sum(
            len(c.deletions.applied)
            for c in self.collections
            if c.deletions is not None
        )

    @property
    def cancelled(self) -> bool:
        return any(c.cancelled for c in self.collections)

    @property
    def errors(self) -> list[ResolutionResult]:
        return [
            r
            for c in self.collections
            for r in c.results
            if r.outcome == ResolutionOutcome.FAILED
        ]
