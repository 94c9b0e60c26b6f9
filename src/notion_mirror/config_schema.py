"""Unified configuration schema for notion_mirror.

Defines Pydantic models for the unified config structure with dedicated
sections for the Notion connection, sync behaviour and logging.

Usage:
    from notion_mirror.config_schema import UnifiedConfig, build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
"""

from __future__ import annotations

import logging
from pydantic import BaseModel, Field, field_validator

from .sync.models import DeletionPolicy
from .validators import normalize_object_id

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class NotionConfig(BaseModel):
    """Notion API connection settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    token: str | None = Field(
        default=None, description="Notion integration token"
    )
    api_url: str | None = Field(
        default=None, description="Notion API base URL"
    )
    notion_version: str = Field(
        default="2022-06-28", description="Notion-Version header"
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    max_parallel_requests: int = Field(
        default=5,
        ge=1,
        le=10,
        description="Maximum concurrent calls per batch (1-10)",
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries for transient failures (0-10)",
    )
    base_delay: float = Field(
        default=1.0, ge=0, description="First backoff delay in seconds"
    )
    max_delay: float = Field(
        default=60.0, ge=0, description="Backoff delay cap in seconds"
    )
    rate_limit_requests: int = Field(
        default=3,
        ge=0,
        description="Requests per rate-limit window (0 disables)",
    )
    rate_limit_window: float = Field(
        default=1.0, gt=0, description="Rate-limit window in seconds"
    )
    page_size: int = Field(
        default=100, ge=1, le=100, description="Results per list page"
    )

    model_config = {"frozen": True}


class SyncConfig(BaseModel):
    """Sync engine settings.

    Attributes:
        database_ids: Databases synced when a request names none.
        state_dir: Directory for cursor and content state files.
        cursor_ttl: Seconds a cursor stays valid; an expired cursor
            forces a full resync.
        cursor_max_entries: Cursor cache capacity before eviction.
        deletion_policy: What to do with pages deleted in Notion.
        check_deletions: Reconcile deletions after full enumerations.
        include_children: Fetch nested blocks for every page.
        max_block_depth: Depth limit for nested block fetches.
        task_retention: Seconds finished tasks are kept for status queries.
    """

    database_ids: list[str] = Field(default_factory=list)
    state_dir: str = ".notion_mirror"
    cursor_ttl: int = Field(default=30 * 24 * 3600, gt=0)
    cursor_max_entries: int = Field(default=1000, ge=1)
    deletion_policy: DeletionPolicy = DeletionPolicy.SOFT_DELETE
    check_deletions: bool = True
    include_children: bool = False
    max_block_depth: int = Field(default=5, ge=1, le=20)
    task_retention: int = Field(default=7 * 24 * 3600, ge=0)

    model_config = {"frozen": True}

    @field_validator("database_ids")
    @classmethod
    def _normalize_ids(cls, value: list[str]) -> list[str]:
        return [normalize_object_id(v) for v in value]


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            ``None`` keeps the per-mode default.  ``LOG_LEVEL`` wins.
        file: Optional log file path.  ``--log-file`` and ``LOG_FILE``
            win.
    """

    level: str | None = Field(default=None, description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has sensible defaults, so ``UnifiedConfig()`` is valid.
    """

    notion: NotionConfig = Field(default_factory=NotionConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the merged YAML dict.

    Handles missing sections gracefully; anything absent gets defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)
