"""MCP tool handlers for the sync control surface.

Defines the tools an agent uses to drive the mirror:

- ``sync_start`` -- start a sync of one or more databases.
- ``sync_status`` -- show one task, or list all known tasks.
- ``sync_pause`` / ``sync_resume`` / ``sync_cancel`` -- task control.
- ``sync_cursor`` -- show the last-synced cursor per database.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import mcp.types as types

from ...sync.models import DeletionPolicy, SyncOptions, format_timestamp
from ...sync.reporter import (
    format_sync_summary,
    format_task,
    summary_to_json,
    task_to_json,
)
from ...validators import normalize_object_id, validate_collection_ids
from .registry import SYNC_RUN, SYNC_VIEW, ToolSpec

if TYPE_CHECKING:
    from ..lifespan import ServerContext

logger = logging.getLogger(__name__)

_TASK_ID_SCHEMA = {
    "type": "object",
    "properties": {
        "task_id": {
            "type": "string",
            "description": "Task id returned by sync_start",
        },
    },
    "required": ["task_id"],
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _task_result(task) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_task(task))],
        structuredContent=task_to_json(task),
    )


def _require_task_id(args: dict[str, Any]) -> str:
    task_id = args.get("task_id")
    if not task_id or not str(task_id).strip():
        raise ValueError("task_id is required")
    return str(task_id).strip()


def _options_from_args(
    ctx: ServerContext, args: dict[str, Any]
) -> SyncOptions:
    defaults = ctx.orchestrator.default_options
    policy = args.get("deletion_policy")
    return SyncOptions(
        force_full=bool(args.get("force_full", defaults.force_full)),
        check_deletions=bool(
            args.get("check_deletions", defaults.check_deletions)
        ),
        include_children=bool(
            args.get("include_children", defaults.include_children)
        ),
        deletion_policy=DeletionPolicy(policy) if policy else None,
    )


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _handle_sync_start(
    ctx: ServerContext, args: dict[str, Any]
) -> types.CallToolResult:
    """Start a sync; waits for the summary when ``wait`` is set."""
    requested = args.get("collection_ids") or ctx.settings.sync.database_ids
    collection_ids = validate_collection_ids(list(requested))
    options = _options_from_args(ctx, args)

    if args.get("wait", False):
        summary = await ctx.orchestrator.run_sync(collection_ids, options)
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text", text=format_sync_summary(summary)
                )
            ],
            structuredContent=summary_to_json(summary),
        )

    task_id, _ = ctx.orchestrator.start_sync(collection_ids, options)
    logger.info("Started background sync %s", task_id)
    return _task_result(ctx.controller.get(task_id))


async def _handle_sync_status(
    ctx: ServerContext, args: dict[str, Any]
) -> types.CallToolResult:
    """Show one task, or list every known task."""
    task_id = args.get("task_id")
    if task_id:
        return _task_result(ctx.controller.get(str(task_id)))

    tasks = ctx.controller.list_tasks()
    if not tasks:
        text = "No sync tasks."
    else:
        text = "\n\n".join(format_task(t) for t in tasks)
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent={"tasks": [task_to_json(t) for t in tasks]},
    )


async def _handle_sync_pause(
    ctx: ServerContext, args: dict[str, Any]
) -> types.CallToolResult:
    return _task_result(ctx.controller.pause(_require_task_id(args)))


async def _handle_sync_resume(
    ctx: ServerContext, args: dict[str, Any]
) -> types.CallToolResult:
    return _task_result(ctx.controller.resume(_require_task_id(args)))


async def _handle_sync_cancel(
    ctx: ServerContext, args: dict[str, Any]
) -> types.CallToolResult:
    return _task_result(ctx.controller.cancel(_require_task_id(args)))


async def _handle_sync_cursor(
    ctx: ServerContext, args: dict[str, Any]
) -> types.CallToolResult:
    """Show the cursor for one database, or every stored cursor."""
    collection_id = args.get("collection_id")
    if collection_id:
        cid = normalize_object_id(collection_id)
        cursor = ctx.cursors.get(cid)
        cursors = {cid: format_timestamp(cursor) if cursor else None}
    else:
        cursors = {
            c.collection_id: format_timestamp(c.last_synced_at)
            for c in ctx.cursors.all()
        }

    if not cursors:
        text = "No sync cursors stored; the next sync of every database is full."
    else:
        text = "\n".join(
            f"{cid}: {value or 'none (next sync is full)'}"
            for cid, value in cursors.items()
        )
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent={"cursors": cursors},
    )


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


SYNC_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=types.Tool(
            name="sync_start",
            description=(
                "Mirror one or more Notion databases into the local "
                "store. Incremental when a cursor exists, full otherwise. "
                "Runs in the background unless wait=true."
            ),
            annotations=types.ToolAnnotations(
                readOnlyHint=False,
                destructiveHint=True,
                idempotentHint=True,
                openWorldHint=True,
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "collection_ids": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": (
                            "Notion database ids. Defaults to the "
                            "configured sync.database_ids."
                        ),
                    },
                    "force_full": {
                        "type": "boolean",
                        "default": False,
                        "description": "Ignore cursors and fetch everything",
                    },
                    "check_deletions": {
                        "type": "boolean",
                        "description": "Reconcile deletions after full fetches",
                    },
                    "include_children": {
                        "type": "boolean",
                        "description": "Fetch nested blocks of each page",
                    },
                    "deletion_policy": {
                        "type": "string",
                        "enum": [p.value for p in DeletionPolicy],
                        "description": "Override the configured policy",
                    },
                    "wait": {
                        "type": "boolean",
                        "default": False,
                        "description": "Wait for the run and return its summary",
                    },
                },
                "required": [],
            },
        ),
        permissions=frozenset({SYNC_RUN}),
        handler=_handle_sync_start,
    ),
    ToolSpec(
        tool=types.Tool(
            name="sync_status",
            description=(
                "Show state and progress of a sync task, or list all "
                "known tasks when no task_id is given."
            ),
            annotations=types.ToolAnnotations(
                readOnlyHint=True,
                destructiveHint=False,
                idempotentHint=True,
                openWorldHint=False,
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "task_id": {
                        "type": "string",
                        "description": "Task id returned by sync_start",
                    },
                },
                "required": [],
            },
        ),
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_sync_status,
    ),
    ToolSpec(
        tool=types.Tool(
            name="sync_pause",
            description="Pause a running sync at its next item boundary.",
            inputSchema=_TASK_ID_SCHEMA,
        ),
        permissions=frozenset({SYNC_RUN}),
        handler=_handle_sync_pause,
    ),
    ToolSpec(
        tool=types.Tool(
            name="sync_resume",
            description="Resume a paused sync.",
            inputSchema=_TASK_ID_SCHEMA,
        ),
        permissions=frozenset({SYNC_RUN}),
        handler=_handle_sync_resume,
    ),
    ToolSpec(
        tool=types.Tool(
            name="sync_cancel",
            description=(
                "Cancel a sync. Work already done is kept; the cursor "
                "is not advanced."
            ),
            inputSchema=_TASK_ID_SCHEMA,
        ),
        permissions=frozenset({SYNC_RUN}),
        handler=_handle_sync_cancel,
    ),
    ToolSpec(
        tool=types.Tool(
            name="sync_cursor",
            description=(
                "Show the last-synced cursor of a database, or of every "
                "database with a stored cursor."
            ),
            annotations=types.ToolAnnotations(
                readOnlyHint=True,
                destructiveHint=False,
                idempotentHint=True,
                openWorldHint=False,
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "collection_id": {
                        "type": "string",
                        "description": "Notion database id",
                    },
                },
                "required": [],
            },
        ),
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_sync_cursor,
    ),
]
