"""Tool registry gated by sync permissions.

Each tool declares the permissions it needs.  Operators grant a subset
through a permissions file; tools needing anything outside the grant
are hidden from ``list_tools`` and refused by ``call_tool``.

Two permissions exist:

``SYNC_VIEW``
    Read task status and cursors.
``SYNC_RUN``
    Start, pause, resume and cancel syncs.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import mcp.types as types

from ...errors import NotionMirrorError
from .errors import build_error_response, translate_error

if TYPE_CHECKING:
    from ..lifespan import ServerContext

logger = logging.getLogger(__name__)

SYNC_VIEW = "SYNC_VIEW"
SYNC_RUN = "SYNC_RUN"
KNOWN_PERMISSIONS = frozenset({SYNC_VIEW, SYNC_RUN})

Handler = Callable[["ServerContext", dict], Awaitable[types.CallToolResult]]


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """A tool definition, the permissions it needs, and its handler.

    An empty ``permissions`` set makes the tool available under any
    grant (``ping``).
    """

    tool: types.Tool
    permissions: frozenset[str]
    handler: Handler

    @property
    def name(self) -> str:
        return self.tool.name

    def missing(self, granted: frozenset[str] | None) -> frozenset[str]:
        """Permissions this tool needs that *granted* lacks.

        ``None`` grants everything.
        """
        if granted is None:
            return frozenset()
        return self.permissions - granted


class ToolRegistry:
    """Permitted tools, keyed by name.

    Args:
        specs: Every tool the server knows.
        allowed_permissions: The grant; ``None`` exposes all tools.

    Raises:
        ValueError: If two specs share a name.
    """

    def __init__(
        self,
        specs: Iterable[ToolSpec],
        allowed_permissions: frozenset[str] | None = None,
    ):
        self.granted = allowed_permissions
        self._enabled: dict[str, ToolSpec] = {}
        self._withheld: dict[str, frozenset[str]] = {}
        for spec in specs:
            if spec.name in self._enabled or spec.name in self._withheld:
                raise ValueError(f"Duplicate tool name: {spec.name}")
            missing = spec.missing(allowed_permissions)
            if missing:
                self._withheld[spec.name] = missing
            else:
                self._enabled[spec.name] = spec
        if self._withheld:
            logger.debug("Withheld tools: %s", ", ".join(self._withheld))

    def list_tools(self) -> list[types.Tool]:
        return [spec.tool for spec in self._enabled.values()]

    def tool_count(self) -> int:
        return len(self._enabled)

    def withheld(self) -> list[str]:
        """Names of tools hidden by the permission grant."""
        return list(self._withheld)

    def _lookup(self, name: str) -> ToolSpec:
        spec = self._enabled.get(name)
        if spec is not None:
            return spec
        missing = self._withheld.get(name)
        if missing is not None:
            raise ValueError(
                f"Tool {name} needs {', '.join(sorted(missing))}, "
                "which the permissions file does not grant"
            )
        raise ValueError(f"Unknown tool: {name}")

    async def call_tool(
        self,
        name: str,
        arguments: dict | None,
        ctx: ServerContext,
    ) -> types.CallToolResult:
        """Run a permitted tool and turn its failures into error results.

        Sync errors keep their own category.  A ``ValueError`` from the
        handler is bad input; anything else is a server error and is
        logged with its traceback.

        Raises:
            ValueError: If *name* is unknown or withheld.
        """
        spec = self._lookup(name)
        try:
            return await spec.handler(ctx, arguments or {})
        except NotionMirrorError as e:
            logger.warning("Tool %s failed: %s", name, e)
            return translate_error(e)
        except ValueError as e:
            return build_error_response(
                "validation_error", str(e), "Check parameter values and retry."
            )
        except Exception as e:
            logger.exception("Unexpected error in tool %s", name)
            return build_error_response(
                "server_error",
                str(e),
                "Check the server log for details and retry.",
            )


def load_permissions_file(path: str | Path) -> frozenset[str]:
    """Read a permission grant.

    One permission name per line; ``#`` starts a comment.  For a
    read-only agent::

        # status and cursors only
        SYNC_VIEW

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If a line names an unknown permission or the file
            grants nothing.
    """
    path = Path(path)
    granted: set[str] = set()
    for line_num, line in enumerate(path.read_text().splitlines(), 1):
        entry = line.split("#", 1)[0].strip()
        if not entry:
            continue
        if entry not in KNOWN_PERMISSIONS:
            raise ValueError(
                f"Invalid permission '{entry}' at {path}:{line_num}; "
                f"expected one of {', '.join(sorted(KNOWN_PERMISSIONS))}"
            )
        granted.add(entry)
    if not granted:
        raise ValueError(f"No permissions found in {path}")
    return frozenset(granted)
