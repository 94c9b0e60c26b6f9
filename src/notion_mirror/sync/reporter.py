"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync runs:

- ``format_sync_summary`` -- full post-sync summary.
- ``format_task`` -- one-line-per-field task status.
- ``summary_to_json`` / ``task_to_json`` -- structured dicts for MCP
  tool output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .models import ResolutionOutcome, format_timestamp

if TYPE_CHECKING:
    from .models import CollectionSummary, SyncSummary, SyncTask

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_summary(summary: SyncSummary) -> str:
    """Format a completed sync run as human-readable text.

    Per-collection sections list failures and deletions only; successful
    items are summarised by count to avoid excessive output.

    Args:
        summary: The finished run's summary.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = f"Sync {summary.task_id}: {summary.state.value}"
    if summary.cancelled:
        header += " (cancelled)"
    lines.append(header)
    lines.append(f"Started: {format_timestamp(summary.started_at)}")
    if summary.completed_at:
        lines.append(
            f"Completed: {format_timestamp(summary.completed_at)}"
        )
    lines.append("")

    lines.append(
        f"Processed {summary.processed} items: "
        f"{summary.created} created, {summary.updated} updated, "
        f"{summary.failed} failed, {summary.deleted} deleted"
    )
    lines.append("")

    for collection in summary.collections:
        lines.extend(_collection_lines(collection))
        lines.append("")

    return "\n".join(lines).rstrip()


def _collection_lines(collection: CollectionSummary) -> list[str]:
    lines = [
        f"{collection.collection_id} ({collection.mode.value}): "
        f"{collection.fetched} fetched, "
        f"{collection.count(ResolutionOutcome.CREATED)} created, "
        f"{collection.count(ResolutionOutcome.UPDATED)} updated, "
        f"{collection.count(ResolutionOutcome.FAILED)} failed"
    ]
    if collection.error:
        lines.append(f"  Fetch aborted: {collection.error}")
    if collection.cancelled:
        lines.append("  Cancelled before completion")

    failed = [
        r
        for r in collection.results
        if r.outcome is ResolutionOutcome.FAILED
    ]
    if failed:
        lines.append("  Errors:")
        for r in failed:
            lines.append(f"    {r.remote_id}: {r.error}")

    deletions = collection.deletions
    if deletions is not None:
        if deletions.skipped_reason:
            lines.append(f"  Deletions skipped: {deletions.skipped_reason}")
        elif deletions.candidates:
            lines.append(
                f"  Deletions ({deletions.policy.value}): "
                f"{len(deletions.candidates)} candidate(s), "
                f"{len(deletions.applied)} applied"
            )
            for failure in deletions.failures:
                lines.append(
                    f"    {failure.local_id} (remote "
                    f"{failure.remote_id}): {failure.error}"
                )

    if collection.cursor_advanced and collection.new_cursor:
        lines.append(
            f"  Cursor advanced to {format_timestamp(collection.new_cursor)}"
        )
    else:
        lines.append("  Cursor unchanged")
    return lines


def format_task(task: SyncTask) -> str:
    """Format a task snapshot for status output."""
    lines = [
        f"Task {task.task_id}: {task.state.value}",
        f"Collections: {', '.join(sorted(task.collection_ids))}",
        f"Progress: {task.progress.processed}/{task.progress.total} "
        f"({task.progress.percentage}%)",
        f"Updated: {format_timestamp(task.updated_at)}",
    ]
    if task.error:
        lines.append(f"Error: {task.error}")
    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def task_to_json(task: SyncTask) -> dict:
    """Convert a task snapshot to a JSON-serialisable dict."""
    return {
        "task_id": task.task_id,
        "state": task.state.value,
        "collection_ids": sorted(task.collection_ids),
        "processed": task.progress.processed,
        "total": task.progress.total,
        "percentage": task.progress.percentage,
        "created_at": format_timestamp(task.created_at),
        "updated_at": format_timestamp(task.updated_at),
        "error": task.error,
    }


def summary_to_json(summary: SyncSummary) -> dict:
    """Convert a sync summary to a structured dict for JSON serialisation.

    Suitable for MCP ``structuredContent`` output.

    Args:
        summary: The sync summary.

    Returns:
        Dict with task info, counts, and per-collection details.
    """
    collections = []
    for c in summary.collections:
        entry: dict = {
            "collection_id": c.collection_id,
            "mode": c.mode.value,
            "fetched": c.fetched,
            "created": c.count(ResolutionOutcome.CREATED),
            "updated": c.count(ResolutionOutcome.UPDATED),
            "failed": c.count(ResolutionOutcome.FAILED),
            "cursor_advanced": c.cursor_advanced,
            "cancelled": c.cancelled,
        }
        if c.new_cursor:
            entry["new_cursor"] = format_timestamp(c.new_cursor)
        if c.error:
            entry["error"] = c.error
        if c.deletions is not None:
            entry["deletions"] = {
                "policy": c.deletions.policy.value,
                "candidates": [
                    d.model_dump() for d in c.deletions.candidates
                ],
                "applied": len(c.deletions.applied),
                "failures": [
                    f.model_dump() for f in c.deletions.failures
                ],
                "skipped_reason": c.deletions.skipped_reason,
            }
        errors = [
            {"remote_id": r.remote_id, "error": r.error}
            for r in c.results
            if r.outcome is ResolutionOutcome.FAILED
        ]
        if errors:
            entry["errors"] = errors
        collections.append(entry)

    return {
        "task_id": summary.task_id,
        "state": summary.state.value,
        "started_at": format_timestamp(summary.started_at),
        "completed_at": format_timestamp(summary.completed_at)
        if summary.completed_at
        else None,
        "counts": {
            "processed": summary.processed,
            "created": summary.created,
            "updated": summary.updated,
            "failed": summary.failed,
            "deleted": summary.deleted,
        },
        "cancelled": summary.cancelled,
        "collections": collections,
    }
