"""Exception hierarchy shared by the client, the sync engine and the MCP tools.

Remote failures are split by whether retrying can help:

- ``TransientRemoteError``: timeouts, connection resets, HTTP 408/429/5xx.
  Retried by ``RetryPolicy`` and only surfaced once the budget is spent.
- ``PermanentRemoteError``: authentication, permission, not-found and
  malformed-request failures.  Never retried.

Local failures are reported per item (``ResolutionError``,
``ReconciliationError``) so one bad entity never aborts a run, while
``ConflictError`` rejects a sync request before it starts.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

import requests

if TYPE_CHECKING:
    from .sync.models import DeletionCandidate


class NotionMirrorError(Exception):
    """Base class for all notion-mirror errors."""


# ---------------------------------------------------------------------------
# Remote errors
# ---------------------------------------------------------------------------


class RemoteError(NotionMirrorError):
    """A call to the Notion API failed.

    Attributes:
        status: HTTP status code, or ``None`` for network-level failures.
        endpoint: API endpoint that was called.
    """

    def __init__(
        self,
        message: str,
        status: int | None = None,
        endpoint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.endpoint = endpoint


class TransientRemoteError(RemoteError):
    """Retryable remote failure (timeouts, rate limiting, 5xx).

    Attributes:
        retry_after: Seconds the server asked us to wait, if it said so.
    """

    def __init__(
        self,
        message: str,
        status: int | None = None,
        endpoint: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status=status, endpoint=endpoint)
        self.retry_after = retry_after

    @property
    def rate_limited(self) -> bool:
        return self.status == 429


class PermanentRemoteError(RemoteError):
    """Non-retryable remote failure (401/403/404, malformed request)."""


# ---------------------------------------------------------------------------
# Local errors
# ---------------------------------------------------------------------------


class StoreError(NotionMirrorError):
    """Raised by local content store implementations."""


class ResolutionError(NotionMirrorError):
    """The local store rejected a create or update for one remote item."""

    def __init__(self, remote_id: str, cause: BaseException) -> None:
        super().__init__(f"Failed to resolve {remote_id}: {cause}")
        self.remote_id = remote_id
        self.cause = cause


class ReconciliationError(NotionMirrorError):
    """Archiving or deleting one deletion candidate failed."""

    def __init__(
        self, candidate: DeletionCandidate, cause: BaseException
    ) -> None:
        super().__init__(
            f"Failed to reconcile local entity {candidate.local_id} "
            f"(remote {candidate.remote_id}): {cause}"
        )
        self.candidate = candidate
        self.cause = cause


# ---------------------------------------------------------------------------
# Task errors
# ---------------------------------------------------------------------------


class ConflictError(NotionMirrorError):
    """A sync was requested for a collection that already has an active task."""

    def __init__(self, collection_ids: Iterable[str], task_id: str) -> None:
        self.collection_ids = sorted(collection_ids)
        self.task_id = task_id
        super().__init__(
            f"Collection(s) {', '.join(self.collection_ids)} already "
            f"being synced by task {task_id}"
        )


class TaskNotFoundError(NotionMirrorError, KeyError):
    """No task with the given id is known to the controller."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Unknown task: {task_id}")
        self.task_id = task_id

    def __str__(self) -> str:
        return self.args[0]


class InvalidTransitionError(NotionMirrorError):
    """A task control request is not valid from the task's current state."""

    def __init__(self, task_id: str, state: str, action: str) -> None:
        super().__init__(
            f"Cannot {action} task {task_id} in state '{state}'"
        )
        self.task_id = task_id
        self.state = state
        self.action = action


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

TRANSIENT_STATUSES = frozenset({408, 429})


def is_transient_status(status: int) -> bool:
    """Return ``True`` if an HTTP status code is worth retrying."""
    return status in TRANSIENT_STATUSES or 500 <= status <= 599


def parse_retry_after(value: str | None) -> float | None:
    """Parse a ``Retry-After`` header given in seconds.

    HTTP-date values are not used by Notion and are ignored.
    """
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return max(seconds, 0.0)


def error_for_status(
    status: int,
    message: str,
    endpoint: str | None = None,
    retry_after: float | None = None,
) -> RemoteError:
    """Build the right ``RemoteError`` subclass for an HTTP status."""
    if is_transient_status(status):
        return TransientRemoteError(
            message,
            status=status,
            endpoint=endpoint,
            retry_after=retry_after,
        )
    return PermanentRemoteError(message, status=status, endpoint=endpoint)


def classify_exception(
    exc: BaseException, endpoint: str | None = None
) -> RemoteError:
    """Map a transport exception to a ``RemoteError``.

    ``RemoteError`` instances pass through unchanged.  Timeouts and
    connection failures are transient; anything else raised by
    ``requests`` (invalid URL, too many redirects) is permanent.
    """
    if isinstance(exc, RemoteError):
        return exc
    if isinstance(exc, (requests.Timeout, requests.ConnectionError)):
        return TransientRemoteError(
            f"Network error: {exc}", endpoint=endpoint
        )
    return PermanentRemoteError(
        f"Request failed: {exc}", endpoint=endpoint
    )
