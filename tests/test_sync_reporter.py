"""Tests for sync reporter formatting functions.

Covers:
- format_sync_summary with various result combinations
- format_task status output
- summary_to_json / task_to_json structure and completeness
- Empty summary produces concise output
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

from notion_mirror.sync.models import (
    CollectionSummary,
    DeletionCandidate,
    DeletionFailure,
    DeletionPolicy,
    FetchMode,
    ReconciliationResult,
    ResolutionOutcome,
    ResolutionResult,
    SyncSummary,
    SyncTask,
    TaskProgress,
    TaskState,
)
from notion_mirror.sync.reporter import (
    format_sync_summary,
    format_task,
    summary_to_json,
    task_to_json,
)

STARTED = datetime(2026, 2, 7, 10, 0, tzinfo=timezone.utc)
COMPLETED = datetime(2026, 2, 7, 10, 1, tzinfo=timezone.utc)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _result(
    remote_id: str,
    outcome: ResolutionOutcome = ResolutionOutcome.CREATED,
    error: str | None = None,
) -> ResolutionResult:
    return ResolutionResult(
        remote_id=remote_id,
        local_id=None if error else f"L-{remote_id}",
        outcome=outcome,
        error=error,
    )


def _collection(**kwargs) -> CollectionSummary:
    defaults = dict(
        collection_id="db1",
        mode=FetchMode.FULL,
        fetched=3,
        results=[
            _result("p1"),
            _result("p2", ResolutionOutcome.UPDATED),
            _result("p3", ResolutionOutcome.FAILED, "disk full"),
        ],
    )
    defaults.update(kwargs)
    return CollectionSummary(**defaults)


def _summary(
    collections: list[CollectionSummary] | None = None,
    state: TaskState = TaskState.COMPLETED,
) -> SyncSummary:
    """Build a SyncSummary with sensible defaults."""
    return SyncSummary(
        task_id="t1",
        state=state,
        collections=collections if collections is not None else [],
        started_at=STARTED,
        completed_at=COMPLETED,
    )


def _deletions(**kwargs) -> ReconciliationResult:
    candidate = DeletionCandidate(local_id="L9", remote_id="r9")
    defaults = dict(
        collection_id="db1",
        policy=DeletionPolicy.SOFT_DELETE,
        candidates=[candidate],
        applied=[candidate],
    )
    defaults.update(kwargs)
    return ReconciliationResult(**defaults)


# ---------------------------------------------------------------------------
# format_sync_summary
# ---------------------------------------------------------------------------


class TestFormatSyncSummary:
    def test_header_and_counts(self):
        text = format_sync_summary(_summary([_collection()]))
        lines = text.splitlines()
        assert lines[0] == "Sync t1: completed"
        assert "Started: 2026-02-07T10:00:00.000Z" in text
        assert "Processed 3 items: 1 created, 1 updated, 1 failed, 0 deleted" in text

    def test_errors_listed(self):
        text = format_sync_summary(_summary([_collection()]))
        assert "Errors:" in text
        assert "p3: disk full" in text
        assert "p1" not in text

    def test_cursor_lines(self):
        advanced = _collection(
            results=[_result("p1")],
            cursor_advanced=True,
            new_cursor=COMPLETED,
        )
        text = format_sync_summary(_summary([advanced]))
        assert "Cursor advanced to 2026-02-07T10:01:00.000Z" in text

        text = format_sync_summary(_summary([_collection()]))
        assert "Cursor unchanged" in text

    def test_cancelled_marker(self):
        text = format_sync_summary(
            _summary([_collection(cancelled=True)])
        )
        assert text.splitlines()[0] == "Sync t1: completed (cancelled)"
        assert "Cancelled before completion" in text

    def test_fetch_error(self):
        aborted = _collection(fetched=0, results=[], error="HTTP 503")
        text = format_sync_summary(_summary([aborted], TaskState.FAILED))
        assert "Sync t1: failed" in text
        assert "Fetch aborted: HTTP 503" in text

    def test_deletions_section(self):
        failure = DeletionFailure(local_id="L8", remote_id="r8", error="locked")
        collection = _collection(
            deletions=_deletions(
                candidates=[
                    DeletionCandidate(local_id="L9", remote_id="r9"),
                    DeletionCandidate(local_id="L8", remote_id="r8"),
                ],
                failures=[failure],
            )
        )
        text = format_sync_summary(_summary([collection]))
        assert "Deletions (soft_delete): 2 candidate(s), 1 applied" in text
        assert "L8 (remote r8): locked" in text

    def test_skipped_deletions(self):
        collection = _collection(
            deletions=_deletions(
                applied=[], skipped_reason="empty enumeration"
            )
        )
        text = format_sync_summary(_summary([collection]))
        assert "Deletions skipped: empty enumeration" in text

    def test_empty_summary_is_concise(self):
        text = format_sync_summary(_summary())
        assert "Processed 0 items" in text
        assert len(text.splitlines()) == 4
        assert not text.endswith("\n")


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


def _task(**kwargs) -> SyncTask:
    defaults = dict(
        task_id="t1",
        state=TaskState.RUNNING,
        collection_ids=frozenset({"db2", "db1"}),
        progress=TaskProgress(processed=1, total=3),
        created_at=STARTED,
        updated_at=COMPLETED,
    )
    defaults.update(kwargs)
    return SyncTask(**defaults)


class TestFormatTask:
    def test_fields(self):
        text = format_task(_task())
        assert "Task t1: running" in text
        assert "Collections: db1, db2" in text
        assert "Progress: 1/3 (33.3%)" in text
        assert "Error" not in text

    def test_error_shown(self):
        text = format_task(_task(state=TaskState.FAILED, error="boom"))
        assert "Error: boom" in text


class TestTaskToJson:
    def test_structure(self):
        data = task_to_json(_task())
        assert data == {
            "task_id": "t1",
            "state": "running",
            "collection_ids": ["db1", "db2"],
            "processed": 1,
            "total": 3,
            "percentage": 33.3,
            "created_at": "2026-02-07T10:00:00.000Z",
            "updated_at": "2026-02-07T10:01:00.000Z",
            "error": None,
        }


# ---------------------------------------------------------------------------
# summary_to_json
# ---------------------------------------------------------------------------


class TestSummaryToJson:
    def test_counts(self):
        data = summary_to_json(_summary([_collection()]))
        assert data["counts"] == {
            "processed": 3,
            "created": 1,
            "updated": 1,
            "failed": 1,
            "deleted": 0,
        }
        assert data["state"] == "completed"
        assert data["cancelled"] is False

    def test_collection_entry(self):
        collection = _collection(
            deletions=_deletions(),
            cursor_advanced=True,
            new_cursor=COMPLETED,
        )
        (entry,) = summary_to_json(_summary([collection]))["collections"]
        assert entry["mode"] == "full"
        assert entry["new_cursor"] == "2026-02-07T10:01:00.000Z"
        assert entry["errors"] == [
            {"remote_id": "p3", "error": "disk full"}
        ]
        assert entry["deletions"]["applied"] == 1
        assert entry["deletions"]["candidates"] == [
            {"local_id": "L9", "remote_id": "r9"}
        ]
        assert "error" not in entry

    def test_is_json_serialisable(self):
        collection = _collection(deletions=_deletions())
        json.dumps(summary_to_json(_summary([collection])))

    def test_no_completion_time(self):
        summary = SyncSummary(
            task_id="t1", state=TaskState.RUNNING, started_at=STARTED
        )
        assert summary_to_json(summary)["completed_at"] is None
