"""MCP Server for the Notion mirror using stdio transport.

This module implements the Model Context Protocol server that lets AI
agents start, watch and control Notion sync tasks.

Transport: stdio (for Claude Desktop/Code integration)
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import os
import sys

import mcp.server.stdio
import mcp.types as types
import yaml
from dotenv import load_dotenv
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..config_loader import discover_config_files, load_hierarchical_config
from ..config_schema import LoggingConfig, build_config
from ..core.async_utils import run_sync
from ..logger import setup_logging
from .lifespan import ServerContext, server_lifespan
from .tools import (
    ALL_SPECS,
    ToolRegistry,
    build_error_response,
    load_permissions_file,
)
from .tools.registry import ToolSpec

logger = logging.getLogger(__name__)

# Initialize server instance
server = Server("notion-mirror-server")

# Global context (initialized in main via the lifespan)
_context: ServerContext | None = None

# Global registry instance (initialized in main)
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Ping tool (always available, no permission required)
# ---------------------------------------------------------------------------


async def _handle_ping(
    ctx: ServerContext, args: dict
) -> types.CallToolResult:
    """Handle ping tool -- test Notion connectivity."""
    try:
        name = await run_sync(ctx.client.validate_connection)
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"Notion mirror server connected successfully as {name}.",
                )
            ]
        )
    except Exception as e:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"Notion connection failed: {e}. Check NOTION_TOKEN.",
                )
            ],
            isError=True,
        )


PING_SPEC = ToolSpec(
    tool=types.Tool(
        name="ping",
        description="Test Notion connectivity and return the integration name",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    permissions=frozenset(),
    handler=_handle_ping,
)


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_context() -> ServerContext:
    """Get the global ServerContext instance.

    Raises:
        RuntimeError: If the context is not initialized
    """
    if _context is None:
        raise RuntimeError(
            "Server context not initialized. Server lifespan not started."
        )
    return _context


def set_context(ctx: ServerContext | None) -> None:
    """Set (or clear with None) the global ServerContext instance."""
    global _context
    _context = ctx


def get_registry() -> ToolRegistry:
    """Get the global ToolRegistry instance.

    Raises:
        RuntimeError: If registry is not initialized
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    """Set (or clear with None) the global ToolRegistry instance."""
    global _registry
    _registry = registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List every registered (and permitted) tool."""
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch.

    Args:
        name: The name of the tool to execute.
        arguments: Tool arguments (optional).

    Returns:
        CallToolResult with tool output content and optional isError flag.
    """
    ctx = get_context()
    try:
        return await get_registry().call_tool(name, arguments, ctx)
    except ValueError as e:
        # Unknown or filtered-out tool name
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


def load_logging_settings() -> LoggingConfig:
    """Read the ``logging`` section of the YAML config, if any.

    Runs before logging is configured.  A broken config file yields the
    defaults here; the lifespan loads it again and reports the error.
    """
    load_dotenv()
    config_files = discover_config_files()
    if not config_files:
        return LoggingConfig()
    try:
        return build_config(load_hierarchical_config(config_files)).logging
    except (OSError, ValueError, yaml.YAMLError):
        return LoggingConfig()


def build_registry(permissions_file: str | None = None) -> ToolRegistry:
    """Build the ToolRegistry, filtered by a permissions file if given."""
    allowed_permissions = None
    if permissions_file:
        allowed_permissions = load_permissions_file(permissions_file)
        logger.info(
            "Loaded %d permissions from %s",
            len(allowed_permissions),
            permissions_file,
        )

    all_specs = [PING_SPEC] + ALL_SPECS
    registry = ToolRegistry(all_specs, allowed_permissions)
    logger.info(
        "Registered %d tools (of %d total)",
        registry.tool_count(),
        len(all_specs),
    )
    if permissions_file:
        print(
            f"Permissions file: {permissions_file} "
            f"({registry.tool_count()} of {len(all_specs)} tools enabled)",
            file=sys.stderr,
        )
    return registry


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Sets up logging for MCP mode (file only, never stdout) from the CLI,
    the environment and the config file's ``logging`` section, builds the
    sync components and validates the Notion token via the lifespan
    manager, then serves JSON-RPC over stdio.

    Args:
        config_overrides: Optional dict with config values to override (token, api_url, debug, log_file, permissions_file)
    """
    overrides = config_overrides or {}
    logging_settings = load_logging_settings()

    # Must run before stdio_server so nothing reaches stdout
    setup_logging(
        mode="mcp",
        debug=overrides.get("debug", False),
        log_file=overrides.get("log_file")
        or os.getenv("LOG_FILE")
        or logging_settings.file,
        level=logging_settings.level,
    )

    set_registry(build_registry(overrides.get("permissions_file")))

    # set_context() is called here rather than in the lifespan so that
    # running this file as __main__ updates the right module's globals.
    async with server_lifespan(config_overrides=overrides) as ctx:
        set_context(ctx)
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name="notion-mirror-server",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(
                    read_stream, write_stream, init_options
                )
        finally:
            set_context(None)
            set_registry(None)


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Notion Mirror Server - MCP server for incremental Notion database sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (from .env or .notion_mirror/config.yml)
  notion-mirror-server

  # Override the integration token
  notion-mirror-server --token secret_xxx

  # Custom log file location
  notion-mirror-server --log-file /var/log/notion-mirror-server.log

  # Read-only tools only
  notion-mirror-server --permissions-file /etc/notion-mirror/read-only.permissions

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr. Do not pipe stdin/stdout manually.
        """,
    )

    parser.add_argument(
        "--token",
        help="Override Notion integration token (takes precedence over NOTION_TOKEN and config files)"
        " (visible in process list -- prefer NOTION_TOKEN env var)",
    )
    parser.add_argument(
        "--api-url",
        help="Override Notion API base URL (takes precedence over NOTION_API_URL and config files)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-file",
        help="Log file path (default: LOG_FILE, then logging.file from the "
        "config file, then /tmp/notion-mirror-server.log)",
    )
    parser.add_argument(
        "--permissions-file",
        help="Path to permissions file restricting available tools. "
        "Format: one permission per line (SYNC_VIEW, SYNC_RUN), # for comments. "
        "If not specified, all tools are available.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"notion-mirror-server version {__version__}",
    )

    args = parser.parse_args()

    config_overrides: dict = {}
    if args.token:
        config_overrides["token"] = args.token
    if args.api_url:
        config_overrides["api_url"] = args.api_url
    if args.debug:
        config_overrides["debug"] = True
    if args.log_file:
        config_overrides["log_file"] = args.log_file
    if args.permissions_file:
        config_overrides["permissions_file"] = args.permissions_file

    cli_keys = [k for k in config_overrides if k not in ("token", "log_file")]
    if cli_keys:
        print(
            f"Config overrides from CLI: {', '.join(cli_keys)}",
            file=sys.stderr,
        )

    try:
        asyncio.run(main(config_overrides=config_overrides))
    except RuntimeError:
        # Error already printed to stderr by lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
