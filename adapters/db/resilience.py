"""
Connection supervision for pooled backends.

The supervisor owns a single handle (a pool or engine) and its lifecycle:

    DISCONNECTED --connect()--> CONNECTING --ok--> CONNECTED
                                    |                  |
                                  error      fault / invalidate()
                                    v                  v
                               DISCONNECTED       DISCONNECTED

Only one connection attempt is ever in flight. Callers that find the state
CONNECTING wait for that attempt instead of starting their own. Faults and
invalidation only ever move CONNECTED to DISCONNECTED; they never touch an
attempt in progress.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import (
    Awaitable,
    Callable,
    Generic,
    Iterable,
    Optional,
    Sequence,
    TypeVar,
)

from sqlgate.errors.exceptions import (
    BackendConnectionError,
    ConnectTimeoutError,
    TransientConnectionError,
)

log = logging.getLogger(__name__)

H = TypeVar("H")
T = TypeVar("T")

DEFAULT_FAULT_MARKERS: Sequence[str] = (
    "connection reset",
    "connection refused",
    "econnreset",
    "econnrefused",
    "etimedout",
    "esocket",
    "socket",
    "timeout",
    "timed out",
    "closed",
    "network",
    "failed to connect",
    "communication link failure",
    "08s01",
    "08001",
)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def _on_loop(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 2
    backoff_base: float = 1.0  # seconds, multiplied by the attempt number
    poll_interval: float = 0.1
    connect_wait_timeout: float = 30.0


class MessageFaultClassifier:
    """Classify an exception as connection-class by substring match on its message."""

    def __init__(self, markers: Iterable[str] = DEFAULT_FAULT_MARKERS):
        self.markers = tuple(m.lower() for m in markers)

    def __call__(self, exc: BaseException) -> bool:
        text = str(exc).lower()
        return any(m in text for m in self.markers)


class ConnectionSupervisor(Generic[H]):
    def __init__(
        self,
        *,
        open_handle: Callable[[], Awaitable[H]],
        close_handle: Callable[[H], Awaitable[None]],
        policy: Optional[RetryPolicy] = None,
        is_connection_error: Optional[Callable[[BaseException], bool]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_retry: Optional[Callable[[int, BaseException], None]] = None,
        name: str = "backend",
    ):
        self._open_handle = open_handle
        self._close_handle = close_handle
        self.policy = policy or RetryPolicy()
        self.is_connection_error = is_connection_error or MessageFaultClassifier()
        self._sleep = sleep
        self._on_retry = on_retry
        self.name = name

        self.state = ConnectionState.DISCONNECTED
        self._handle: Optional[H] = None
        # bumped by close() and by a wait timeout; an attempt that sees it
        # change was abandoned
        self._epoch = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def connect(self) -> H:
        if self.state is ConnectionState.CONNECTING:
            return await self._wait_for_attempt()

        self._loop = asyncio.get_running_loop()
        self.state = ConnectionState.CONNECTING
        epoch = self._epoch
        stale, self._handle = self._handle, None
        if stale is not None:
            try:
                await self._close_handle(stale)
            except Exception as exc:
                log.warning(
                    "Error closing stale %s connection: %s",
                    self.name,
                    exc,
                    extra={"backend": self.name},
                )

        try:
            handle = await self._open_handle()
        except Exception as exc:
            if epoch == self._epoch:
                self.state = ConnectionState.DISCONNECTED
            log.error("%s connection failed: %s", self.name, exc)
            if isinstance(exc, BackendConnectionError):
                raise
            raise BackendConnectionError(
                f"Failed to connect to {self.name}: {exc}"
            ) from exc

        if epoch != self._epoch:
            log.info("%s connection attempt abandoned; discarding it", self.name)
            await self._close_handle(handle)
            raise BackendConnectionError(f"{self.name} connection attempt was abandoned")

        self._handle = handle
        self.state = ConnectionState.CONNECTED
        log.info("%s connection established", self.name)
        return handle

    async def _wait_for_attempt(self) -> H:
        polls = max(1, math.ceil(self.policy.connect_wait_timeout / self.policy.poll_interval))
        for _ in range(polls):
            await self._sleep(self.policy.poll_interval)
            if self.state is not ConnectionState.CONNECTING:
                break
        else:
            # the timed-out attempt may still finish; it must not install its handle
            self._epoch += 1
            self.state = ConnectionState.DISCONNECTED
            raise ConnectTimeoutError(
                "Connection timeout: waited too long for an in-flight connection attempt"
            )

        if self.state is ConnectionState.CONNECTED and self._handle is not None:
            return self._handle
        raise BackendConnectionError("Connection attempt failed while waiting")

    async def acquire(self) -> H:
        if self.state is ConnectionState.CONNECTED and self._handle is not None:
            return self._handle
        return await self.connect()

    def mark_disconnected(self, reason: object = None) -> None:
        """
        Out-of-band fault hook.

        Driver callbacks (SQLAlchemy's `handle_error`) call this from worker
        threads; the state change is then handed to the event loop.
        """
        loop = self._loop
        if loop is not None and not loop.is_closed() and not _on_loop(loop):
            loop.call_soon_threadsafe(self._fault, reason)
        else:
            self._fault(reason)

    def _fault(self, reason: object) -> None:
        if self.state is ConnectionState.CONNECTED:
            log.warning(
                "%s connection fault: %s", self.name, reason, extra={"backend": self.name}
            )
            self.state = ConnectionState.DISCONNECTED

    def invalidate(self, handle: Optional[H] = None) -> None:
        """
        Drop the current handle so the next acquire() reconnects.

        With `handle`, only that handle is dropped: a newer connection made by
        another caller is kept. An attempt in progress is left alone. The
        stale handle is closed by the next connect().
        """
        if self.state is not ConnectionState.CONNECTED:
            return
        if handle is not None and handle is not self._handle:
            return
        self.state = ConnectionState.DISCONNECTED

    async def run(self, operation: Callable[[H], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            attempt += 1
            # acquisition failures propagate untouched
            handle = await self.acquire()
            try:
                return await operation(handle)
            except Exception as exc:
                if not self.is_connection_error(exc):
                    raise
                if attempt > self.policy.max_retries:
                    log.error(
                        "%s operation failed after %d retries: %s",
                        self.name,
                        self.policy.max_retries,
                        exc,
                    )
                    raise TransientConnectionError(
                        f"{self.name} connection lost: {exc}",
                        extra={"attempts": attempt},
                    ) from exc

                delay = self.policy.backoff_base * attempt
                log.warning(
                    "Connection error on %s, retrying (%d/%d) in %.1fs: %s",
                    self.name,
                    attempt,
                    self.policy.max_retries,
                    delay,
                    exc,
                    extra={"backend": self.name, "attempt": attempt},
                )
                if self._on_retry is not None:
                    self._on_retry(attempt, exc)
                self.invalidate(handle)
                await self._sleep(delay)

    async def close(self) -> None:
        self._epoch += 1
        handle, self._handle = self._handle, None
        self.state = ConnectionState.DISCONNECTED
        if handle is not None:
            await self._close_handle(handle)
            log.info("%s connection closed", self.name)
