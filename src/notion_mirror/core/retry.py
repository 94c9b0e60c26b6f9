"""Backoff policy and shared rate limiter for Notion API calls.

``RetryPolicy`` is the single place retry semantics are defined: which
errors are retried, how long to wait between attempts and how many
attempts are made.  It works for blocking callables (``call``) and
coroutine functions (``acall``) so the same policy drives ``send`` and
``batch_send``.

``RateLimiter`` is shared by every call a client makes.  A 429 on any
call pauses *all* subsequent dispatches, and a rolling-window budget
keeps the request rate under Notion's documented average.
"""

from __future__ import annotations

import asyncio
import logging
import random
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from ..errors import RemoteError, TransientRemoteError, classify_exception

T = TypeVar("T")
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with jitter, parameterised by error class.

    Attributes:
        max_retries: Retries after the first attempt; a call is tried at
            most ``max_retries + 1`` times.
        base_delay: Delay in seconds before the first retry.
        max_delay: Upper bound for a single computed delay.
        jitter: Fraction of the computed delay added at random
            (``0.1`` adds up to 10%).
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: float = 0.1

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if not 0 <= self.jitter <= 1:
            raise ValueError("jitter must be between 0 and 1")

    def is_retryable(self, error: BaseException) -> bool:
        """Return ``True`` if *error* belongs to a transient class."""
        return isinstance(error, TransientRemoteError)

    def compute_delay(
        self, attempt: int, retry_after: float | None = None
    ) -> float:
        """Delay before retry number *attempt* (0-based).

        ``base_delay * 2**attempt`` plus jitter, capped at ``max_delay``.
        A server-supplied ``retry_after`` is honoured as a minimum.
        """
        delay = self.base_delay * (2**attempt)
        if self.jitter:
            delay += random.uniform(0, delay * self.jitter)
        delay = min(delay, self.max_delay)
        if retry_after is not None:
            delay = max(delay, retry_after)
        return delay

    def with_overrides(
        self,
        max_retries: int | None = None,
        base_delay: float | None = None,
    ) -> RetryPolicy:
        """Return a copy with some fields replaced."""
        return RetryPolicy(
            max_retries=self.max_retries
            if max_retries is None
            else max_retries,
            base_delay=self.base_delay
            if base_delay is None
            else base_delay,
            max_delay=self.max_delay,
            jitter=self.jitter,
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def call(
        self,
        func: Callable[[], T],
        *,
        sleep: Callable[[float], None] = time.sleep,
        on_retry: Callable[[int, RemoteError, float], None] | None = None,
        description: str = "request",
    ) -> T:
        """Run blocking *func* until it succeeds or the budget is spent.

        Exceptions raised by *func* are classified first, so callers get
        ``TransientRemoteError`` / ``PermanentRemoteError`` regardless of
        what the transport raised.

        Args:
            func: Zero-argument callable performing one attempt.
            sleep: Used to wait between attempts.
            on_retry: Called with ``(attempt, error, delay)`` before each
                wait; the client uses it to pause its rate limiter on 429.
            description: Label for log messages.

        Raises:
            TransientRemoteError: After ``max_retries + 1`` failed attempts.
            PermanentRemoteError: On the first non-retryable failure.
        """
        attempt = 0
        while True:
            try:
                return func()
            except Exception as exc:
                error = classify_exception(exc)
                delay = self._next_delay(attempt, error, description)
                if delay is None:
                    if error is exc:
                        raise
                    raise error from exc
                if on_retry is not None:
                    on_retry(attempt, error, delay)
                sleep(delay)
                attempt += 1

    async def acall(
        self,
        func: Callable[[], Awaitable[T]],
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_retry: Callable[[int, RemoteError, float], None] | None = None,
        description: str = "request",
    ) -> T:
        """Async counterpart of ``call`` for coroutine functions."""
        attempt = 0
        while True:
            try:
                return await func()
            except Exception as exc:
                error = classify_exception(exc)
                delay = self._next_delay(attempt, error, description)
                if delay is None:
                    if error is exc:
                        raise
                    raise error from exc
                if on_retry is not None:
                    on_retry(attempt, error, delay)
                await sleep(delay)
                attempt += 1

    def _next_delay(
        self, attempt: int, error: RemoteError, description: str
    ) -> float | None:
        """Return the wait before the next attempt, or ``None`` to give up."""
        if not self.is_retryable(error):
            logger.debug(
                "%s failed permanently: %s", description, error
            )
            return None
        if attempt >= self.max_retries:
            logger.warning(
                "%s failed after %d attempt(s): %s",
                description,
                attempt + 1,
                error,
            )
            return None
        retry_after = getattr(error, "retry_after", None)
        delay = self.compute_delay(attempt, retry_after)
        logger.info(
            "%s failed (%s), retry %d/%d in %.2fs",
            description,
            error,
            attempt + 1,
            self.max_retries,
            delay,
        )
        return delay


class RateLimiter:
    """Shared dispatch gate: rate-limit pauses plus a rolling request budget.

    ``reserve()`` books a dispatch slot and returns how long the caller
    must wait before sending.  It never sleeps itself, so the lock is
    only held for bookkeeping.

    Args:
        max_requests: Requests allowed per window (``0`` disables the
            budget; pauses still apply).
        window: Window length in seconds.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        max_requests: int = 0,
        window: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._lock = threading.Lock()
        self._paused_until = 0.0
        self._slots: list[float] = []

    def pause(self, seconds: float) -> None:
        """Hold every dispatch for at least *seconds* from now."""
        with self._lock:
            until = self._clock() + seconds
            if until > self._paused_until:
                self._paused_until = until
                logger.warning(
                    "Rate limited by Notion, pausing dispatch for %.2fs",
                    seconds,
                )

    def reserve(self) -> float:
        """Book the next dispatch slot and return the required wait."""
        with self._lock:
            now = self._clock()
            wait = max(0.0, self._paused_until - now)
            if self.max_requests > 0:
                horizon = now - self.window
                self._slots = [s for s in self._slots if s > horizon]
                if len(self._slots) >= self.max_requests:
                    # The slot that frees up for us is the oldest one
                    # still inside the window.
                    ordered = sorted(self._slots)
                    oldest = ordered[len(ordered) - self.max_requests]
                    wait = max(wait, oldest + self.window - now)
                self._slots.append(now + wait)
            return wait

    def acquire(self, sleep: Callable[[float], None] = time.sleep) -> None:
        """Block the calling thread until a dispatch slot is available."""
        wait = self.reserve()
        if wait > 0:
            sleep(wait)

    async def acquire_async(
        self,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Wait on the event loop until a dispatch slot is available."""
        wait = self.reserve()
        if wait > 0:
            await sleep(wait)
