"""Error response builders for MCP tool handlers.

This module provides structured error responses with corrective actions
to help AI agents recover from errors without human intervention, and
maps the notion_mirror exception hierarchy onto them.
"""

import mcp.types as types

from ...errors import (
    ConflictError,
    InvalidTransitionError,
    NotionMirrorError,
    PermanentRemoteError,
    RemoteError,
    TaskNotFoundError,
)


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (conflict, not_found, invalid_state, remote_error, validation_error, server_error)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("not_found", "Unknown task: abc", "Use sync_status to list tasks.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


def translate_error(error: NotionMirrorError) -> types.CallToolResult:
    """Translate a notion_mirror exception into a structured error response."""
    match error:
        case ConflictError():
            return build_error_response(
                "conflict",
                str(error),
                f"Wait for task {error.task_id} to finish "
                f"(sync_status(task_id='{error.task_id}')) or cancel it "
                "with sync_cancel.",
            )
        case TaskNotFoundError():
            return build_error_response(
                "not_found",
                str(error),
                "Use sync_status without arguments to list known tasks.",
            )
        case InvalidTransitionError():
            return build_error_response(
                "invalid_state",
                str(error),
                "Check the task state with sync_status before retrying.",
            )
        case PermanentRemoteError() if error.status in (401, 403):
            return build_error_response(
                "remote_error",
                str(error),
                "Check NOTION_TOKEN and that the integration is shared "
                "with the database.",
            )
        case PermanentRemoteError() if error.status == 404:
            return build_error_response(
                "not_found",
                str(error),
                "Verify the database id and that the integration can "
                "access it.",
            )
        case RemoteError():
            return build_error_response(
                "remote_error",
                str(error),
                "Notion is unavailable or rate limiting; retry later.",
            )
        case _:
            return build_error_response(
                "server_error",
                str(error),
                "Check the server log for details and retry.",
            )
