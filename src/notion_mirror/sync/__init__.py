"""Incremental Notion-to-local sync engine.

Public API for mirroring Notion databases into a local content store
and keeping the mirror consistent as pages change or disappear.

Architecture
------------
Each run plans every collection from its stored cursor (full or
incremental), fetches pages through the batched client, resolves every
changed page to a local entity (create or update), reconciles deletions
after full enumerations and finally commits the collection's cursor.

Modules:

- ``engine``       -- ``SyncOrchestrator``: runs sync tasks end to end.
- ``cursor_store`` -- ``SyncCursorStore``: per-collection watermarks.
- ``detector``     -- ``ChangeDetector``: full vs incremental planning.
- ``resolver``     -- ``ContentResolver``: create-or-update resolution.
- ``reconciler``   -- ``DeletionReconciler``: deletion policies.
- ``tasks``        -- ``TaskController``: lifecycle, progress, cancel.
- ``store``        -- ``LocalContentStore`` protocol and reference stores.
- ``models``       -- Pydantic data contracts.
- ``reporter``     -- Human-readable and JSON summary formatting.

Usage example
-------------
::

    from notion_mirror.core.client import NotionClient
    from notion_mirror.sync import (
        ChangeDetector, ContentResolver, DeletionReconciler,
        InMemoryContentStore, SyncCursorStore, SyncOrchestrator,
        TaskController, format_sync_summary,
    )

    cursors = SyncCursorStore(".notion_mirror")
    store = InMemoryContentStore()
    orchestrator = SyncOrchestrator(
        client=NotionClient(config),
        detector=ChangeDetector(cursors),
        resolver=ContentResolver(store),
        reconciler=DeletionReconciler(store),
        cursors=cursors,
        controller=TaskController(),
    )

    summary = await orchestrator.run_sync([database_id])
    print(format_sync_summary(summary))
"""

from .cursor_store import SyncCursorStore
from .detector import ChangeDetector
from .engine import SyncOrchestrator
from .models import (
    DeletionPolicy,
    FetchMode,
    ResolutionOutcome,
    SyncOptions,
    SyncSummary,
    SyncTask,
    TaskState,
)
from .reconciler import DeletionReconciler
from .reporter import (
    format_sync_summary,
    format_task,
    summary_to_json,
    task_to_json,
)
from .resolver import ContentResolver
from .store import (
    InMemoryContentStore,
    JsonContentStore,
    LocalContentStore,
    LocalEntity,
)
from .tasks import CancellationToken, TaskController

__all__ = [
    "CancellationToken",
    "ChangeDetector",
    "ContentResolver",
    "DeletionPolicy",
    "DeletionReconciler",
    "FetchMode",
    "InMemoryContentStore",
    "JsonContentStore",
    "LocalContentStore",
    "LocalEntity",
    "ResolutionOutcome",
    "SyncCursorStore",
    "SyncOptions",
    "SyncOrchestrator",
    "SyncSummary",
    "SyncTask",
    "TaskController",
    "TaskState",
    "format_sync_summary",
    "format_task",
    "summary_to_json",
    "task_to_json",
]
