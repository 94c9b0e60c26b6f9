"""MCP tool handlers for the Notion mirror.

This package contains the MCP tool implementations that expose the sync
control surface with permission filtering and structured error responses.
"""

from .errors import build_error_response, translate_error
from .registry import (
    SYNC_RUN,
    SYNC_VIEW,
    ToolRegistry,
    ToolSpec,
    load_permissions_file,
)
from .sync import SYNC_SPECS

ALL_SPECS: list[ToolSpec] = list(SYNC_SPECS)

__all__ = [
    "ALL_SPECS",
    "SYNC_RUN",
    "SYNC_SPECS",
    "SYNC_VIEW",
    "ToolRegistry",
    "ToolSpec",
    "build_error_response",
    "load_permissions_file",
    "translate_error",
]
