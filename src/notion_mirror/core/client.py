import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable, Iterable, Iterator
from typing import Any

import requests

from ..config import Config
from ..errors import (
    PermanentRemoteError,
    RemoteError,
    TransientRemoteError,
    classify_exception,
    error_for_status,
    parse_retry_after,
)
from ..sync.models import BatchRequestSpec, BatchResponse, Page
from .async_utils import map_limited
from .retry import RateLimiter, RetryPolicy

logger = logging.getLogger(__name__)

# (connect, read) timeouts in seconds
REQUEST_TIMEOUT = (10, 45)

# Block types whose children belong to another object (or cannot be
# listed at all) and are never descended into.
SKIP_DESCEND_TYPES = frozenset(
    {"child_page", "child_database", "link_preview", "unsupported"}
)


class NotionClient:
    """Blocking + batched access to the Notion REST API.

    Every call goes through one ``RetryPolicy`` and one shared
    ``RateLimiter``, whether it is made through ``send`` from a worker
    thread or as part of a ``batch_send`` on the event loop.
    """

    def __init__(
        self,
        config: Config,
        retry_policy: RetryPolicy | None = None,
        rate_limiter: RateLimiter | None = None,
        session_factory: Callable[[], requests.Session] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        async_sleep: Callable[
            [float], Awaitable[None]
        ] = asyncio.sleep,
    ):
        self.config = config
        self.base_url = config.api_url.rstrip("/")
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=config.max_retries,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
        )
        self.rate_limiter = rate_limiter or RateLimiter(
            max_requests=config.rate_limit_requests,
            window=config.rate_limit_window,
        )
        self._session_factory = session_factory or self._create_session
        self._sleep = sleep
        self._async_sleep = async_sleep
        self._thread_local = threading.local()
        # Bounds every HTTP attempt, from batches and worker threads alike.
        self._in_flight = threading.BoundedSemaphore(
            max(1, config.max_parallel_requests)
        )
        self._sessions: list[requests.Session] = []
        self._sessions_lock = threading.Lock()

    @property
    def session(self) -> requests.Session:
        """Session of the calling thread."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            session = self._session_factory()
            self._thread_local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {
                "Authorization": f"Bearer {self.config.notion_token}",
                "Notion-Version": self.config.notion_version,
                "Content-Type": "application/json",
            }
        )
        return session

    def close(self) -> None:
        """Close every session opened by any thread."""
        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()

    # ------------------------------------------------------------------
    # Single attempt
    # ------------------------------------------------------------------

    def _request(
        self,
        endpoint: str,
        method: str = "GET",
        data: dict[str, Any] | None = None,
    ) -> tuple[int, dict[str, Any]]:
        """
        Make one HTTP attempt and return ``(status, body)``.

        GET sends *data* as query parameters, every other method as a
        JSON body.  Failures are raised already classified.
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        method = method.upper()
        kwargs: dict[str, Any] = {"timeout": REQUEST_TIMEOUT}
        if method == "GET":
            if data:
                kwargs["params"] = data
        else:
            kwargs["json"] = data or {}

        session = self._get_session()
        try:
            with self._in_flight:
                response = session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise classify_exception(exc, endpoint) from exc

        status = response.status_code
        if status >= 400:
            error = error_for_status(
                status,
                self._error_message(response),
                endpoint=endpoint,
                retry_after=parse_retry_after(
                    response.headers.get("Retry-After")
                ),
            )
            if isinstance(error, TransientRemoteError) and error.rate_limited:
                self.rate_limiter.pause(
                    self.retry_policy.compute_delay(0, error.retry_after)
                )
            raise error

        try:
            body = response.json()
        except ValueError as exc:
            raise PermanentRemoteError(
                f"Malformed JSON response from {endpoint}",
                status=status,
                endpoint=endpoint,
            ) from exc
        if not isinstance(body, dict):
            raise PermanentRemoteError(
                f"Unexpected response shape from {endpoint}",
                status=status,
                endpoint=endpoint,
            )
        return status, body

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        """Extract Notion's error message, falling back to the status."""
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("message"):
            return f"HTTP {response.status_code}: {body['message']}"
        return f"HTTP {response.status_code}"

    def _on_retry(
        self, attempt: int, error: RemoteError, delay: float
    ) -> None:
        if isinstance(error, TransientRemoteError) and error.rate_limited:
            self.rate_limiter.pause(delay)

    # ------------------------------------------------------------------
    # Public calls
    # ------------------------------------------------------------------

    def send(
        self,
        endpoint: str,
        method: str = "GET",
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Perform one API call with retries and return the decoded body.

        Raises:
            TransientRemoteError: If every attempt failed transiently.
            PermanentRemoteError: On the first non-retryable failure.
        """

        def attempt() -> dict[str, Any]:
            self.rate_limiter.acquire(self._sleep)
            return self._request(endpoint, method, data)[1]

        return self.retry_policy.call(
            attempt,
            sleep=self._sleep,
            on_retry=self._on_retry,
            description=f"{method.upper()} {endpoint}",
        )

    async def batch_send(
        self,
        specs: Iterable[BatchRequestSpec],
        max_retries: int | None = None,
        base_delay: float | None = None,
    ) -> list[BatchResponse]:
        """
        Execute several calls concurrently.

        Returns one ``BatchResponse`` per spec in the order given.  At
        most ``max_parallel_requests`` calls are in flight; each call
        retries on its own so a slow one never blocks the rest, while a
        429 on any of them pauses dispatch for all.  Never raises for
        per-call failures.
        """
        specs = list(specs)
        if not specs:
            return []
        policy = self.retry_policy.with_overrides(max_retries, base_delay)

        async def _one(spec: BatchRequestSpec) -> BatchResponse:
            attempts = 0

            async def attempt() -> tuple[int, dict[str, Any]]:
                nonlocal attempts
                await self.rate_limiter.acquire_async(self._async_sleep)
                attempts += 1
                return await asyncio.to_thread(
                    self._request, spec.endpoint, spec.method, spec.params
                )

            try:
                status, body = await policy.acall(
                    attempt,
                    sleep=self._async_sleep,
                    on_retry=self._on_retry,
                    description=f"{spec.method} {spec.endpoint}",
                )
            except RemoteError as exc:
                return BatchResponse(
                    status=exc.status,
                    error=str(exc),
                    error_kind="transient"
                    if isinstance(exc, TransientRemoteError)
                    else "permanent",
                    attempt_count=attempts,
                )
            return BatchResponse(
                status=status, body=body, attempt_count=attempts
            )

        logger.debug("Dispatching batch of %d request(s)", len(specs))
        return await map_limited(
            _one, specs, self.config.max_parallel_requests
        )

    def fetch_paginated(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        method: str = "POST",
        start_cursor: str | None = None,
    ) -> Iterator[Page]:
        """
        Lazily walk a paginated list endpoint.

        POST endpoints (``databases/{id}/query``) carry the cursor in the
        body, GET endpoints (``blocks/{id}/children``) in the query
        string.  Iteration can be restarted from any ``next_cursor``.
        """
        cursor = start_cursor
        while True:
            data = dict(params or {})
            data.setdefault("page_size", self.config.page_size)
            if cursor:
                data["start_cursor"] = cursor
            page = Page.from_body(self.send(endpoint, method, data))
            yield page
            if not page.has_more or not page.next_cursor:
                return
            cursor = page.next_cursor

    # ------------------------------------------------------------------
    # Notion endpoints
    # ------------------------------------------------------------------

    def query_spec(
        self,
        database_id: str,
        filter: dict[str, Any] | None = None,
        start_cursor: str | None = None,
    ) -> BatchRequestSpec:
        """Request spec for one page of a database query."""
        params: dict[str, Any] = {"page_size": self.config.page_size}
        if filter:
            params["filter"] = filter
        if start_cursor:
            params["start_cursor"] = start_cursor
        return BatchRequestSpec(
            endpoint=f"databases/{database_id}/query",
            method="POST",
            params=params,
        )

    def children_spec(
        self, block_id: str, start_cursor: str | None = None
    ) -> BatchRequestSpec:
        """Request spec for one page of a block's children."""
        params: dict[str, Any] = {"page_size": self.config.page_size}
        if start_cursor:
            params["start_cursor"] = start_cursor
        return BatchRequestSpec(
            endpoint=f"blocks/{block_id}/children",
            method="GET",
            params=params,
        )

    def query_database(
        self,
        database_id: str,
        filter: dict[str, Any] | None = None,
        start_cursor: str | None = None,
    ) -> Iterator[Page]:
        """
        Query a database page by page.

        Args:
            database_id: Notion database id
            filter: Optional Notion filter object
            start_cursor: Resume from this cursor

        Returns:
            Lazy iterator of result pages
        """
        params = {"filter": filter} if filter else None
        return self.fetch_paginated(
            f"databases/{database_id}/query",
            params=params,
            method="POST",
            start_cursor=start_cursor,
        )

    def get_page(self, page_id: str) -> dict[str, Any]:
        """
        Get a page object (properties only, no content blocks).
        """
        return self.send(f"pages/{page_id}")

    def get_block_children(self, block_id: str) -> list[dict[str, Any]]:
        """
        Get every direct child block of a block or page.
        """
        return [
            block
            for page in self.fetch_paginated(
                f"blocks/{block_id}/children", method="GET"
            )
            for block in page.results
        ]

    def _remaining_children(
        self, block_id: str, start_cursor: str
    ) -> list[dict[str, Any]]:
        return [
            block
            for page in self.fetch_paginated(
                f"blocks/{block_id}/children",
                method="GET",
                start_cursor=start_cursor,
            )
            for block in page.results
        ]

    async def fetch_block_tree(
        self, block_id: str, max_depth: int = 5
    ) -> list[dict[str, Any]]:
        """
        Fetch nested blocks below *block_id*, breadth first.

        Each depth level is fetched as one ``batch_send`` wave.  Returned
        blocks are copies of the API objects; descended blocks carry
        their own blocks under a ``"children"`` key.

        Args:
            block_id: Page or block to start from
            max_depth: Number of levels to fetch (1 = direct children)

        Raises:
            RemoteError: If a child listing fails for a reason other
                than 404.
        """
        tree: list[dict[str, Any]] = []
        frontier: list[tuple[str, list[dict[str, Any]]]] = [
            (block_id, tree)
        ]
        depth = 0
        while frontier and depth < max_depth:
            responses = await self.batch_send(
                [self.children_spec(parent) for parent, _ in frontier]
            )
            next_frontier: list[tuple[str, list[dict[str, Any]]]] = []
            for (parent, sink), response in zip(frontier, responses):
                endpoint = f"blocks/{parent}/children"
                if not response.ok:
                    if response.status == 404:
                        logger.warning(
                            "Skipping children of block %s: not found",
                            parent,
                        )
                        continue
                    raise response.to_error(endpoint)

                body = response.body or {}
                blocks = list(body.get("results") or [])
                if body.get("has_more") and body.get("next_cursor"):
                    blocks.extend(
                        await asyncio.to_thread(
                            self._remaining_children,
                            parent,
                            body["next_cursor"],
                        )
                    )
                for block in blocks:
                    node = dict(block)
                    sink.append(node)
                    if (
                        node.get("has_children")
                        and node.get("type") not in SKIP_DESCEND_TYPES
                    ):
                        node["children"] = []
                        next_frontier.append((node["id"], node["children"]))
            frontier = next_frontier
            depth += 1
        return tree

    def validate_connection(self) -> str:
        """
        Validate the token by calling ``users/me``.
        Returns the integration's name (or id) if successful.
        """
        me = self.send("users/me")
        return str(me.get("name") or me.get("id") or "")
