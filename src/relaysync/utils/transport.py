"""WebSocket transport for relay sessions.

Defines the minimal transport interface consumed by
[RelayConnection][relaysync.client.connection.RelayConnection] and its
aiohttp implementation. Overlay networks (Tor, I2P, Lokinet) are dialed
through a SOCKS5 proxy via ``aiohttp_socks.ProxyConnector``; clearnet and
local relays use a plain ``aiohttp.TCPConnector``.

Transport failures are mapped onto the connectivity branch of the exception
hierarchy so the connection supervisor only has to handle
[ConnectivityError][relaysync.core.exceptions.ConnectivityError]:

* ``TimeoutError`` -> [RelayTimeoutError][relaysync.core.exceptions.RelayTimeoutError]
* ``aiohttp.ClientError``, ``ssl.SSLError``, ``OSError`` ->
  [RelayConnectionError][relaysync.core.exceptions.RelayConnectionError]

``asyncio.CancelledError`` always propagates after the session is closed.

Examples:
    ```python
    transport = AiohttpTransport(NetworksConfig())
    session = await transport.connect("wss://nos.lol", timeout=10.0)
    await session.send('["REQ","s1",{"limit":1}]')
    frame = await session.receive()
    await session.close()
    ```
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import ssl
from typing import Final, Protocol

import aiohttp
from aiohttp_socks import ProxyConnector

from relaysync.core.exceptions import RelayConnectionError, RelayTimeoutError
from relaysync.models.relay import Relay

from .network import NetworksConfig


logger = logging.getLogger("relaysync.utils.transport")

DEFAULT_HEARTBEAT: Final[float] = 30.0
DEFAULT_MAX_MESSAGE_SIZE: Final[int] = 4 * 1024 * 1024
_WS_CLOSE_TIMEOUT: Final[float] = 5.0


class WebSocketSession(Protocol):
    """One open WebSocket to a relay."""

    @property
    def closed(self) -> bool: ...

    async def send(self, text: str) -> None:
        """Send a text frame.

        Raises:
            RelayConnectionError: If the socket is closed or the send fails.
        """
        ...

    async def receive(self) -> str | None:
        """Return the next text frame, or ``None`` once the socket is closed."""
        ...

    async def close(self) -> None:
        """Close the socket. Idempotent; never raises."""
        ...


class Transport(Protocol):
    """Factory for [WebSocketSession][relaysync.utils.transport.WebSocketSession] objects."""

    async def connect(self, url: str, timeout: float) -> WebSocketSession:  # noqa: ASYNC109
        """Open a session to *url* within *timeout* seconds.

        Raises:
            RelayTimeoutError: If the handshake does not finish in time.
            RelayConnectionError: On any other connection failure.
        """
        ...


class AiohttpWebSocketSession:
    """[WebSocketSession][relaysync.utils.transport.WebSocketSession] backed by aiohttp.

    Owns both the ``ClientWebSocketResponse`` and its ``ClientSession``;
    closing the session object closes both.
    """

    def __init__(
        self,
        ws: aiohttp.ClientWebSocketResponse,
        session: aiohttp.ClientSession,
        close_timeout: float = _WS_CLOSE_TIMEOUT,
    ) -> None:
        self._ws = ws
        self._session = session
        self._close_timeout = close_timeout

    @property
    def closed(self) -> bool:
        return self._ws.closed

    async def send(self, text: str) -> None:
        if self._ws.closed:
            raise RelayConnectionError("websocket is closed")
        try:
            await self._ws.send_str(text)
        except (aiohttp.ClientError, ConnectionResetError, RuntimeError) as e:
            raise RelayConnectionError(f"send failed: {e}") from e

    async def receive(self) -> str | None:
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                return str(msg.data)
            if msg.type == aiohttp.WSMsgType.BINARY:
                return bytes(msg.data).decode("utf-8", errors="replace")
            if msg.type in (aiohttp.WSMsgType.PING, aiohttp.WSMsgType.PONG):
                continue
            # CLOSE, CLOSING, CLOSED, ERROR -> connection terminated
            return None

    async def close(self) -> None:
        # aiohttp can raise ClientError, ServerDisconnectedError, etc. during
        # close; teardown must not fail.
        with contextlib.suppress(Exception):
            await asyncio.wait_for(self._ws.close(), timeout=self._close_timeout)
        with contextlib.suppress(Exception):
            await asyncio.wait_for(self._session.close(), timeout=self._close_timeout)


class AiohttpTransport:
    """aiohttp-based [Transport][relaysync.utils.transport.Transport].

    Args:
        networks: Per-network proxy settings. Overlay relays on a disabled
            network are refused.
        heartbeat: WebSocket ping interval in seconds.
        max_message_size: Largest accepted inbound frame in bytes.
    """

    def __init__(
        self,
        networks: NetworksConfig | None = None,
        *,
        heartbeat: float = DEFAULT_HEARTBEAT,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
    ) -> None:
        self._networks = networks or NetworksConfig()
        self._heartbeat = heartbeat
        self._max_message_size = max_message_size

    def _connector(self, relay: Relay) -> aiohttp.BaseConnector:
        if not self._networks.is_enabled(relay.network):
            raise RelayConnectionError(f"network {relay.network} is disabled", url=relay.url)
        proxy_url = self._networks.get_proxy_url(relay.network)
        if proxy_url:
            return ProxyConnector.from_url(proxy_url)
        return aiohttp.TCPConnector()

    async def connect(self, url: str, timeout: float) -> AiohttpWebSocketSession:  # noqa: ASYNC109
        """Open a WebSocket to *url*.

        Raises:
            RelayTimeoutError: If the handshake exceeds *timeout* (raised to
                the network's ``connect_timeout`` floor for overlays).
            RelayConnectionError: On refused, reset, TLS, or DNS failures.
        """
        relay = Relay(url)
        timeout = self._networks.connect_timeout(relay.network, timeout)
        session = aiohttp.ClientSession(connector=self._connector(relay))

        try:
            async with asyncio.timeout(timeout):
                ws = await session.ws_connect(
                    relay.url,
                    heartbeat=self._heartbeat,
                    max_msg_size=self._max_message_size,
                    autoping=True,
                )
        except TimeoutError:
            await session.close()
            logger.debug("ws_connect_timeout url=%s", relay.url)
            raise RelayTimeoutError(f"connect timeout after {timeout}s", url=relay.url) from None
        except asyncio.CancelledError:
            await session.close()
            raise
        except aiohttp.ClientError as e:
            await session.close()
            logger.debug("ws_connect_failed url=%s error=%s", relay.url, e)
            raise RelayConnectionError(f"connection failed: {e}", url=relay.url) from e
        except (ssl.SSLError, OSError) as e:
            await session.close()
            logger.debug("ws_connect_error url=%s error=%s", relay.url, e)
            raise RelayConnectionError(f"connection failed: {e}", url=relay.url) from e

        return AiohttpWebSocketSession(ws, session)
