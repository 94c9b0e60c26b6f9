"""Tests for permission-gated tool dispatch.

Covers:
- Which tools a grant exposes and which it withholds
- Refusal of unknown and withheld tools
- Handler failures turned into error results
- Permissions file parsing
"""

from pathlib import Path
from unittest.mock import MagicMock

import mcp.types as types
import pytest

from notion_mirror.errors import ConflictError, StoreError
from notion_mirror.mcp.tools.registry import (
    SYNC_RUN,
    SYNC_VIEW,
    ToolRegistry,
    ToolSpec,
    load_permissions_file,
)


def _text_result(text: str) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)]
    )


def _spec(name: str, *permissions: str, handler=None) -> ToolSpec:
    async def echo(ctx, args):
        return _text_result(f"{name}:{sorted(args)}")

    return ToolSpec(
        tool=types.Tool(
            name=name,
            description=name,
            inputSchema={"type": "object", "properties": {}},
        ),
        permissions=frozenset(permissions),
        handler=handler or echo,
    )


def _raising(exc):
    async def handler(ctx, args):
        raise exc

    return handler


@pytest.fixture
def specs() -> list[ToolSpec]:
    return [
        _spec("ping"),
        _spec("sync_status", SYNC_VIEW),
        _spec("sync_start", SYNC_RUN),
        _spec("sync_start_and_report", SYNC_RUN, SYNC_VIEW),
    ]


def _names(registry: ToolRegistry) -> list[str]:
    return [tool.name for tool in registry.list_tools()]


class TestGrant:
    def test_no_grant_exposes_everything(self, specs):
        registry = ToolRegistry(specs)
        assert registry.tool_count() == 4
        assert registry.withheld() == []

    def test_view_only(self, specs):
        registry = ToolRegistry(specs, frozenset({SYNC_VIEW}))
        assert _names(registry) == ["ping", "sync_status"]
        assert registry.withheld() == ["sync_start", "sync_start_and_report"]

    def test_tool_needs_every_permission(self, specs):
        run_only = ToolRegistry(specs, frozenset({SYNC_RUN}))
        assert "sync_start" in _names(run_only)
        assert "sync_start_and_report" not in _names(run_only)

        both = ToolRegistry(specs, frozenset({SYNC_RUN, SYNC_VIEW}))
        assert "sync_start_and_report" in _names(both)

    def test_missing_permissions(self):
        spec = _spec("sync_start_and_report", SYNC_RUN, SYNC_VIEW)
        assert spec.missing(None) == frozenset()
        assert spec.missing(frozenset({SYNC_VIEW})) == {SYNC_RUN}

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError, match="Duplicate tool name: ping"):
            ToolRegistry([_spec("ping"), _spec("ping", SYNC_VIEW)])

    def test_spec_is_frozen(self):
        spec = _spec("ping")
        with pytest.raises(AttributeError):
            spec.permissions = frozenset({SYNC_RUN})


class TestDispatch:
    async def test_handler_gets_context_and_arguments(self):
        seen = []

        async def handler(ctx, args):
            seen.append((ctx, args))
            return _text_result("done")

        ctx = MagicMock()
        registry = ToolRegistry([_spec("sync_status", handler=handler)])
        result = await registry.call_tool(
            "sync_status", {"task_id": "t1"}, ctx
        )
        assert seen == [(ctx, {"task_id": "t1"})]
        assert result.content[0].text == "done"

    async def test_missing_arguments_become_empty(self):
        registry = ToolRegistry([_spec("ping")])
        result = await registry.call_tool("ping", None, MagicMock())
        assert result.content[0].text == "ping:[]"

    async def test_unknown_tool(self, specs):
        registry = ToolRegistry(specs)
        with pytest.raises(ValueError, match="Unknown tool: page_get"):
            await registry.call_tool("page_get", {}, MagicMock())

    async def test_withheld_tool_names_missing_permission(self, specs):
        registry = ToolRegistry(specs, frozenset({SYNC_VIEW}))
        with pytest.raises(ValueError, match="sync_start needs SYNC_RUN"):
            await registry.call_tool("sync_start", {}, MagicMock())


class TestHandlerFailures:
    async def _call(self, exc) -> types.CallToolResult:
        registry = ToolRegistry([_spec("t", handler=_raising(exc))])
        return await registry.call_tool("t", {}, MagicMock())

    async def test_sync_error_keeps_its_category(self):
        result = await self._call(ConflictError(["db"], "task-1"))
        assert result.isError
        assert "Error (conflict)" in result.content[0].text

    async def test_bad_input(self):
        result = await self._call(ValueError("task_id is required"))
        assert result.isError
        assert (
            "Error (validation_error): task_id is required"
            in result.content[0].text
        )

    async def test_bug_is_server_error(self):
        result = await self._call(RuntimeError("bug"))
        assert result.isError
        assert "Error (server_error): bug" in result.content[0].text

    async def test_store_error_is_server_error(self):
        result = await self._call(StoreError("disk full"))
        assert "server_error" in result.content[0].text


class TestPermissionsFile:
    def _write(self, tmp_path: Path, *lines: str) -> Path:
        path = tmp_path / "agent.permissions"
        path.write_text("\n".join(lines) + "\n")
        return path

    def test_comments_and_blanks_skipped(self, tmp_path):
        path = self._write(
            tmp_path,
            "# read-only",
            "SYNC_VIEW",
            "",
            "SYNC_RUN  # start and cancel",
        )
        assert load_permissions_file(path) == {SYNC_VIEW, SYNC_RUN}

    def test_duplicates_collapse(self, tmp_path):
        path = self._write(tmp_path, "SYNC_VIEW", "  SYNC_VIEW  ")
        assert load_permissions_file(path) == {SYNC_VIEW}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_permissions_file(tmp_path / "absent.permissions")

    def test_nothing_granted(self, tmp_path):
        path = self._write(tmp_path, "# nothing yet", "")
        with pytest.raises(ValueError, match="No permissions found"):
            load_permissions_file(path)

    @pytest.mark.parametrize("entry", ["sync_view", "TICKET_VIEW"])
    def test_unknown_permission(self, tmp_path, entry):
        path = self._write(tmp_path, "SYNC_VIEW", entry)
        with pytest.raises(ValueError, match="Invalid permission") as exc:
            load_permissions_file(path)
        assert f"{entry}' at {path}:2" in str(exc.value)
