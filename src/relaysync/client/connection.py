"""
Supervised WebSocket session to one relay.

[RelayConnection][relaysync.client.connection.RelayConnection] owns a single
background supervisor task that dials the relay, reads frames, and redials
after failures with exponential backoff and jitter (see
[RetryConfig][relaysync.client.configs.RetryConfig]). After
``max_attempts`` consecutive failures the connection is marked
``DEGRADED`` and redialed every ``degraded_interval`` seconds; it is never
abandoned.

Inbound frames are parsed with
[parse_message()][relaysync.nips.nip01.parse_message] and fanned out to
registered [ConnectionListener][relaysync.client.connection.ConnectionListener]
objects in arrival order. A malformed frame is logged, counted in
``protocol_errors`` and dropped; the session continues. Any other failure
while dialing or reading is logged and handled like a lost connection, so
the supervisor keeps redialing. Every failed dial is reported to listeners
through ``on_connect_failed``.

Listener callbacks run synchronously on the event loop. A listener that needs
to send must schedule a task.

See Also:
    [AuthSession][relaysync.client.auth.AuthSession]: Per-connection NIP-42
        state machine registered as a listener.
    [RelayPool][relaysync.client.pool.RelayPool]: Owns one connection per
        relay endpoint.
"""

from __future__ import annotations

import asyncio
import contextlib
import random
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

from relaysync.core.exceptions import ConnectivityError, ProtocolViolation, RelayConnectionError
from relaysync.core.logger import Logger
from relaysync.nips.nip01 import RelayMessage, parse_message

from .configs import ConnectionConfig, RetryConfig


if TYPE_CHECKING:
    from relaysync.utils.transport import Transport, WebSocketSession


class ConnectionState(StrEnum):
    """Lifecycle state of a [RelayConnection][relaysync.client.connection.RelayConnection]."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEGRADED = "degraded"
    CLOSED = "closed"


class ConnectionListener(Protocol):
    """Receiver of connection lifecycle events and inbound messages."""

    def on_connected(self, connection: RelayConnection) -> None: ...

    def on_message(self, connection: RelayConnection, message: RelayMessage) -> None: ...

    def on_disconnected(self, connection: RelayConnection) -> None: ...

    def on_connect_failed(self, connection: RelayConnection, error: ConnectivityError) -> None: ...


def backoff_delay(retry: RetryConfig, failures: int, rng: random.Random | None = None) -> float:
    """Delay before the next dial after *failures* consecutive failures.

    Degraded connections (``failures >= max_attempts``) wait
    ``degraded_interval``; otherwise the delay grows exponentially (or
    linearly) from ``initial_delay`` up to ``max_delay``. Jitter is added
    in both cases.
    """
    if failures >= retry.max_attempts:
        delay = retry.degraded_interval
    elif retry.exponential_backoff:
        delay = min(retry.initial_delay * (2 ** max(failures - 1, 0)), retry.max_delay)
    else:
        delay = min(retry.initial_delay * max(failures, 1), retry.max_delay)
    uniform = rng.uniform if rng is not None else random.uniform
    return delay + uniform(0, retry.jitter)


class RelayConnection:
    """One logical connection to a relay, reconnecting until closed.

    Args:
        url: Normalized relay URL.
        transport: Factory for WebSocket sessions.
        config: Timeouts and retry policy.
        logger: Parent logger; the connection binds ``relay=<url>``.

    Examples:
        ```python
        connection = RelayConnection("wss://nos.lol", AiohttpTransport())
        connection.add_listener(listener)
        await connection.connect()
        if await connection.wait_connected(timeout=10):
            await connection.send('["REQ","s1",{"kinds":[1],"limit":5}]')
        await connection.close()
        ```
    """

    def __init__(
        self,
        url: str,
        transport: Transport,
        config: ConnectionConfig | None = None,
        *,
        logger: Logger | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._url = url
        self._transport = transport
        self._config = config or ConnectionConfig()
        self._logger = (logger or Logger("relaysync.client.connection")).bind(relay=url)
        self._rng = rng

        self._state = ConnectionState.DISCONNECTED
        self._session: WebSocketSession | None = None
        self._task: asyncio.Task[None] | None = None
        self._connected = asyncio.Event()
        self._listeners: list[ConnectionListener] = []
        self._closing = False

        self._failures = 0
        self._epoch = 0
        self.protocol_errors = 0
        self.frames_received = 0
        self.connect_failures = 0

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def is_degraded(self) -> bool:
        return self._state is ConnectionState.DEGRADED

    @property
    def epoch(self) -> int:
        """Incremented on every successful connect; identifies the current session."""
        return self._epoch

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def add_listener(self, listener: ConnectionListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: ConnectionListener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(listener)

    def _notify(self, method: str, *args: object) -> None:
        for listener in list(self._listeners):
            try:
                getattr(listener, method)(self, *args)
            except Exception:  # Intentionally broad: one listener must not break the session
                self._logger.exception("listener_failed", callback=method)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Start the supervisor task. Idempotent; returns without waiting."""
        if self._closing:
            raise RelayConnectionError("connection is closed", url=self._url)
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._supervise(), name=f"relay:{self._url}")

    async def wait_connected(self, timeout: float | None = None) -> bool:  # noqa: ASYNC109
        """Wait until the session is open. Returns ``False`` on timeout or close."""
        if self._closing:
            return False
        try:
            await asyncio.wait_for(self._connected.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return self.is_connected

    async def send(self, frame: str) -> None:
        """Transmit one text frame on the open session.

        Raises:
            RelayConnectionError: If the connection is not open or the send
                fails.
        """
        session = self._session
        if session is None or not self.is_connected:
            raise RelayConnectionError("relay is not connected", url=self._url)
        await session.send(frame)

    async def close(self) -> None:
        """Stop the supervisor and close the session. Idempotent."""
        if self._closing:
            return
        self._closing = True
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._teardown()
        self._state = ConnectionState.CLOSED
        self._connected.set()
        self._logger.debug("connection_closed")

    # -------------------------------------------------------------------------
    # Supervisor
    # -------------------------------------------------------------------------

    async def _supervise(self) -> None:
        while not self._closing:
            self._state = ConnectionState.CONNECTING
            try:
                session = await self._transport.connect(
                    self._url, timeout=self._config.connect_timeout
                )
            except ConnectivityError as e:
                await self._on_connect_failed(e)
                continue
            except Exception as e:  # Intentionally broad: a faulty transport must not stop redialing
                self._logger.exception("connect_error", error_type=type(e).__name__)
                await self._on_connect_failed(RelayConnectionError(str(e), url=self._url))
                continue

            self._session = session
            self._failures = 0
            self._epoch += 1
            self._state = ConnectionState.CONNECTED
            self._connected.set()
            self._logger.info("connected", epoch=self._epoch)
            self._notify("on_connected")

            try:
                await self._read_loop(session)
            except ConnectivityError as e:
                self._logger.warning("session_error", error=str(e))
            except Exception as e:  # Intentionally broad: the session is torn down and redialed
                self._logger.exception("session_failed", error_type=type(e).__name__)
            finally:
                await self._teardown()

            if self._closing:
                return
            self._logger.info("disconnected", epoch=self._epoch)
            await asyncio.sleep(backoff_delay(self._config.retry, 1, self._rng))

    async def _on_connect_failed(self, error: ConnectivityError) -> None:
        retry = self._config.retry
        self._failures += 1
        self.connect_failures += 1
        entering_degraded = self._failures == retry.max_attempts
        if self._failures >= retry.max_attempts:
            self._state = ConnectionState.DEGRADED
        else:
            self._state = ConnectionState.DISCONNECTED

        delay = backoff_delay(retry, self._failures, self._rng)
        self._notify("on_connect_failed", error)
        if entering_degraded:
            self._logger.warning(
                "connection_degraded",
                failures=self._failures,
                error=str(error),
                retry_in_s=round(delay, 2),
            )
        else:
            self._logger.debug(
                "connect_failed",
                attempt=self._failures,
                error_type=type(error).__name__,
                error=str(error),
                retry_in_s=round(delay, 2),
            )
        await asyncio.sleep(delay)

    async def _read_loop(self, session: WebSocketSession) -> None:
        while True:
            raw = await session.receive()
            if raw is None:
                return
            self.frames_received += 1
            try:
                message = parse_message(raw)
            except ProtocolViolation as e:
                self.protocol_errors += 1
                self._logger.warning("frame_dropped", error=str(e), frame=raw)
                continue
            self._notify("on_message", message)

    async def _teardown(self) -> None:
        session, self._session = self._session, None
        was_connected = self._state is ConnectionState.CONNECTED
        self._connected.clear()
        if session is not None:
            await session.close()
        if was_connected:
            self._state = ConnectionState.DISCONNECTED
            self._notify("on_disconnected")
