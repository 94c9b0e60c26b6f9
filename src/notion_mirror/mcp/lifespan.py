"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from ..config import Config, load_config
from ..config_loader import (
    discover_config_files,
    load_hierarchical_config,
)
from ..config_schema import UnifiedConfig, build_config
from ..core.async_utils import run_sync
from ..core.client import NotionClient
from ..sync.cursor_store import SyncCursorStore
from ..sync.detector import ChangeDetector
from ..sync.engine import SyncOrchestrator
from ..sync.models import SyncOptions
from ..sync.reconciler import DeletionReconciler
from ..sync.resolver import ContentResolver
from ..sync.store import JsonContentStore, LocalContentStore
from ..sync.tasks import TaskController

logger = logging.getLogger(__name__)


@dataclass
class ServerContext:
    """Everything tool handlers need, built once at startup."""

    config: Config
    settings: UnifiedConfig
    client: NotionClient
    store: LocalContentStore
    cursors: SyncCursorStore
    controller: TaskController
    orchestrator: SyncOrchestrator


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


def build_context(
    config: Config,
    settings: UnifiedConfig,
    client: NotionClient | None = None,
    store: LocalContentStore | None = None,
) -> ServerContext:
    """Wire the client, stores and sync components together.

    Args:
        config: Validated connection settings.
        settings: Unified config (``sync`` section drives the engine).
        client: Pre-built client (defaults to one built from *config*).
        store: Local content store (defaults to ``JsonContentStore``
            in the configured state directory).
    """
    sync = settings.sync
    state_dir = Path(sync.state_dir)
    client = client or NotionClient(config)
    store = store if store is not None else JsonContentStore(state_dir)
    cursors = SyncCursorStore(
        state_dir,
        default_ttl=sync.cursor_ttl,
        max_entries=sync.cursor_max_entries,
    )
    controller = TaskController(retention=sync.task_retention)
    orchestrator = SyncOrchestrator(
        client=client,
        detector=ChangeDetector(cursors),
        resolver=ContentResolver(store),
        reconciler=DeletionReconciler(store, policy=sync.deletion_policy),
        cursors=cursors,
        controller=controller,
        default_options=SyncOptions(
            check_deletions=sync.check_deletions,
            include_children=sync.include_children,
        ),
        max_block_depth=sync.max_block_depth,
    )
    return ServerContext(
        config=config,
        settings=settings,
        client=client,
        store=store,
        cursors=cursors,
        controller=controller,
        orchestrator=orchestrator,
    )


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[ServerContext]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config files if present (``notion`` section as fallbacks)
    - Merge all sources via load_config(): CLI > env vars > .env > YAML > defaults
    - Build the sync components and validate the Notion token
    - Fail fast if Notion is unreachable

    On shutdown:
    - Stop background syncs (cancel at a checkpoint, then outright)
    - Close HTTP sessions

    Args:
        config_overrides: Optional dict with config values from CLI (token, api_url, debug)

    Yields:
        The initialized ``ServerContext``

    Raises:
        RuntimeError: If configuration is invalid or the Notion connection fails.
    """
    logger.info("MCP server starting...")
    _stderr_print("Notion Mirror Server starting...")

    try:
        # .env first so ${VAR} interpolation in YAML can see its values
        load_dotenv()

        settings = UnifiedConfig()
        yaml_fallbacks: dict[str, Any] | None = None
        sources = []
        config_files = discover_config_files()
        if config_files:
            settings = build_config(load_hierarchical_config(config_files))
            yaml_fallbacks = {
                k: v
                for k, v in settings.notion.model_dump().items()
                if v is not None
            }
            sources.append(f"config file: {config_files[0]}")

        overrides = config_overrides or {}
        config = load_config(
            token=overrides.get("token"),
            api_url=overrides.get("api_url"),
            debug=overrides.get("debug", False),
            yaml_fallbacks=yaml_fallbacks,
        )

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
        logger.info("Notion API URL: %s", config.api_url)
        _stderr_print(f"  Notion API URL: {config.api_url}")
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        _stderr_print("  Ensure NOTION_TOKEN is set.")
        raise RuntimeError(
            f"Configuration error: {e}. Ensure NOTION_TOKEN is set."
        ) from e

    logger.info("Validating Notion connection...")
    _stderr_print("  Validating Notion connection...")
    try:
        ctx = build_context(config, settings)
        name = await run_sync(ctx.client.validate_connection)
        logger.info("Connected to Notion as %s", name)
        _stderr_print(f"  Connected to Notion as {name}")
        _stderr_print(
            f"  Parallel requests: {config.max_parallel_requests}"
        )
        _stderr_print(
            "Server ready. Waiting for MCP client connection..."
        )
    except Exception as e:
        logger.error("Failed to connect to Notion: %s", e)
        _stderr_print("ERROR: Notion connection failed.")
        _stderr_print(f"  {e}")
        _stderr_print("  Check NOTION_TOKEN and NOTION_API_URL.")
        raise RuntimeError(
            f"Notion connection failed: {e}. Check NOTION_TOKEN and NOTION_API_URL."
        ) from e

    try:
        yield ctx
    finally:
        logger.info("MCP server shutting down")
        _stderr_print("Notion Mirror Server shutting down.")
        try:
            await ctx.orchestrator.shutdown()
        finally:
            ctx.client.close()
