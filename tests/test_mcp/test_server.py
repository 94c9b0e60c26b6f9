"""Tests for tool registration and routing in the MCP server.

Verifies:
- Sync tools and ping appear in handle_list_tools
- Tool calls route through the global ToolRegistry
- Unknown tools return an error response
- Global accessors fail clearly before startup
- The config file's logging section reaches setup_logging

Note: Detailed handler behavior is tested in
tests/test_mcp/tools/test_sync.py -- this file only tests the server
routing layer.
"""

from unittest.mock import MagicMock, patch

import pytest

from notion_mirror.config_schema import LoggingConfig
from notion_mirror.errors import PermanentRemoteError
from notion_mirror.mcp.server import (
    PING_SPEC,
    build_registry,
    get_context,
    get_registry,
    handle_call_tool,
    handle_list_tools,
    load_logging_settings,
    main,
    set_context,
    set_registry,
)
from notion_mirror.mcp.tools import ALL_SPECS
from notion_mirror.mcp.tools.registry import ToolRegistry

MODULE = "notion_mirror.mcp.server"


@pytest.fixture
def server_state():
    """Install a registry and a mock context for one test."""
    ctx = MagicMock()
    ctx.client.validate_connection.return_value = "Mirror Bot"
    set_registry(ToolRegistry([PING_SPEC] + ALL_SPECS))
    set_context(ctx)
    yield ctx
    set_context(None)
    set_registry(None)


def _text(result) -> str:
    return result.content[0].text


class TestRegistration:
    async def test_all_tools_listed(self, server_state):
        names = [t.name for t in await handle_list_tools()]
        assert names[0] == "ping"
        assert set(names) == {
            "ping",
            "sync_start",
            "sync_status",
            "sync_pause",
            "sync_resume",
            "sync_cancel",
            "sync_cursor",
        }

    def test_build_registry_without_permissions(self):
        assert build_registry().tool_count() == 1 + len(ALL_SPECS)

    def test_build_registry_with_permissions(self, tmp_path, capsys):
        path = tmp_path / "view.permissions"
        path.write_text("# read only\nSYNC_VIEW\n")
        registry = build_registry(str(path))
        assert sorted(t.name for t in registry.list_tools()) == [
            "ping",
            "sync_cursor",
            "sync_status",
        ]
        assert "3 of 7 tools enabled" in capsys.readouterr().err


class TestRouting:
    async def test_ping(self, server_state):
        result = await handle_call_tool("ping", {})
        assert not result.isError
        assert _text(result) == (
            "Notion mirror server connected successfully as Mirror Bot."
        )

    async def test_ping_failure(self, server_state):
        server_state.client.validate_connection.side_effect = (
            PermanentRemoteError("API token is invalid.", status=401)
        )
        result = await handle_call_tool("ping", None)
        assert result.isError
        assert "Notion connection failed: API token is invalid." in _text(
            result
        )

    async def test_unknown_tool(self, server_state):
        result = await handle_call_tool("page_get", {})
        assert result.isError
        assert "Error (unknown_tool): Unknown tool: page_get" in _text(result)
        assert "list_tools" in _text(result)

    async def test_sync_tool_routed(self, server_state):
        server_state.controller.list_tasks.return_value = []
        result = await handle_call_tool("sync_status", {})
        assert _text(result) == "No sync tasks."


class TestAccessors:
    def test_context_not_initialized(self):
        set_context(None)
        with pytest.raises(RuntimeError, match="not initialized"):
            get_context()

    def test_registry_not_initialized(self):
        set_registry(None)
        with pytest.raises(RuntimeError, match="not initialized"):
            get_registry()


class TestLoggingSettings:
    """The YAML ``logging`` section drives MCP-mode logging."""

    @pytest.fixture(autouse=True)
    def _no_dotenv(self):
        with patch(f"{MODULE}.load_dotenv"):
            yield

    def test_defaults_without_config_file(self):
        with patch(f"{MODULE}.discover_config_files", return_value=[]):
            assert load_logging_settings() == LoggingConfig()

    def test_reads_logging_section(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text(
            "logging:\n  level: DEBUG\n  file: /var/log/mirror.log\n"
        )
        with patch(f"{MODULE}.discover_config_files", return_value=[path]):
            settings = load_logging_settings()
        assert settings.level == "DEBUG"
        assert settings.file == "/var/log/mirror.log"

    def test_broken_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text("logging: [unclosed\n")
        with patch(f"{MODULE}.discover_config_files", return_value=[path]):
            assert load_logging_settings() == LoggingConfig()

    async def _run_main(self, settings, overrides=None):
        with patch(
            f"{MODULE}.load_logging_settings", return_value=settings
        ), patch(f"{MODULE}.setup_logging") as setup, patch(
            f"{MODULE}.server_lifespan", side_effect=RuntimeError("stop")
        ):
            try:
                with pytest.raises(RuntimeError, match="stop"):
                    await main(overrides)
            finally:
                set_registry(None)
        return setup

    async def test_main_applies_yaml_level_and_file(self, monkeypatch):
        monkeypatch.delenv("LOG_FILE", raising=False)
        setup = await self._run_main(
            LoggingConfig(level="ERROR", file="/var/log/mirror.log")
        )
        setup.assert_called_once_with(
            mode="mcp",
            debug=False,
            log_file="/var/log/mirror.log",
            level="ERROR",
        )

    async def test_cli_log_file_wins(self, monkeypatch):
        monkeypatch.setenv("LOG_FILE", "/env.log")
        setup = await self._run_main(
            LoggingConfig(file="/yaml.log"), {"log_file": "/cli.log"}
        )
        assert setup.call_args.kwargs["log_file"] == "/cli.log"

    async def test_env_log_file_beats_yaml(self, monkeypatch):
        monkeypatch.setenv("LOG_FILE", "/env.log")
        setup = await self._run_main(LoggingConfig(file="/yaml.log"))
        assert setup.call_args.kwargs["log_file"] == "/env.log"
