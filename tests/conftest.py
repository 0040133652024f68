"""
Pytest configuration and shared fixtures for relaysync tests.

Provides:
- In-memory WebSocket transport (``FakeTransport``/``FakeSession``)
- Event factories with valid ids (placeholder signatures) and real
  ``nostr_sdk`` signed events
- Scriptable signer and a minimal connection stub for auth sessions
- ``wait_until`` polling helper for asynchronous assertions
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import Counter
from collections.abc import Callable, Iterable
from typing import Any

import pytest
from nostr_sdk import Keys

from relaysync.core.exceptions import RelayConnectionError, SignerRejected, SignerUnavailable
from relaysync.models.event import Event, EventDraft, compute_event_id
from relaysync.utils.keys import KeysSigner


# Placeholder keys and signature; accepted structurally, never verified.
PUBKEY_A = "a" * 64
PUBKEY_B = "b" * 64
PUBKEY_C = "c" * 64
DUMMY_SIG = "0" * 128
BASE_TIME = 1_700_000_000

RELAY_1 = "wss://relay1.example.com"
RELAY_2 = "wss://relay2.example.com"
RELAY_3 = "wss://relay3.example.com"


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    """Configure logging for tests."""
    logging.basicConfig(level=logging.DEBUG)


# ============================================================================
# Event Factories
# ============================================================================


def _make_event(
    *,
    pubkey: str = PUBKEY_A,
    created_at: int = BASE_TIME,
    kind: int = 1,
    tags: Iterable[Iterable[str]] = (),
    content: str = "",
    sig: str = DUMMY_SIG,
) -> Event:
    tag_list = [list(tag) for tag in tags]
    return Event(
        id=compute_event_id(pubkey, created_at, kind, tag_list, content),
        pubkey=pubkey,
        created_at=created_at,
        kind=kind,
        tags=tag_list,
        content=content,
        sig=sig,
    )


@pytest.fixture
def make_event() -> Callable[..., Event]:
    """Factory for events with a correct id and a placeholder signature.

    Use with ``IngestConfig(verify_signatures=False)``.
    """
    return _make_event


@pytest.fixture
def keys() -> Keys:
    """Freshly generated secp256k1 keys (test only)."""
    return Keys.generate()


@pytest.fixture
def sign_event(keys: Keys) -> Callable[..., Any]:
    """Async factory for events signed with ``keys`` through ``KeysSigner``."""
    signer = KeysSigner(keys)

    async def factory(
        *,
        kind: int = 1,
        content: str = "",
        tags: Iterable[Iterable[str]] = (),
        created_at: int = BASE_TIME,
    ) -> Event:
        draft = EventDraft(
            pubkey=signer.pubkey,
            kind=kind,
            content=content,
            tags=[list(tag) for tag in tags],
            created_at=created_at,
        )
        return draft.finalize(await signer.sign(draft))

    return factory


# ============================================================================
# Transport
# ============================================================================


class FakeSession:
    """Scripted WebSocket session. ``push()`` feeds relay frames."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.sent: list[str] = []
        self._inbox: asyncio.Queue[str | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, text: str) -> None:
        if self._closed:
            raise RelayConnectionError("session closed", url=self.url)
        self.sent.append(text)

    async def receive(self) -> str | None:
        if self._closed and self._inbox.empty():
            return None
        return await self._inbox.get()

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._inbox.put_nowait(None)

    def push(self, frame: list[Any] | str) -> None:
        self._inbox.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self) -> None:
        """Simulate the relay closing the socket."""
        self._closed = True
        self._inbox.put_nowait(None)

    def frames(self, label: str | None = None) -> list[list[Any]]:
        decoded = [json.loads(text) for text in self.sent]
        if label is None:
            return decoded
        return [frame for frame in decoded if frame[0] == label]


class FakeTransport:
    """Transport handing out ``FakeSession`` objects, one per successful dial."""

    def __init__(self) -> None:
        self.sessions: dict[str, list[FakeSession]] = {}
        self.attempts: Counter[str] = Counter()
        self.refuse: set[str] = set()

    async def connect(self, url: str, timeout: float) -> FakeSession:  # noqa: ASYNC109
        self.attempts[url] += 1
        if url in self.refuse:
            raise RelayConnectionError("connection refused", url=url)
        session = FakeSession(url)
        self.sessions.setdefault(url, []).append(session)
        return session

    def session(self, url: str) -> FakeSession:
        return self.sessions[url][-1]


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


# ============================================================================
# Signing
# ============================================================================


class FakeSigner:
    """Scriptable signer.

    ``mode`` is ``"approve"`` (returns a placeholder signature), ``"reject"``
    (raises ``SignerRejected``), ``"unavailable"`` (raises
    ``SignerUnavailable``) or ``"block"`` (waits on ``release``).
    """

    def __init__(self, pubkey: str = PUBKEY_A, mode: str = "approve") -> None:
        self.pubkey = pubkey
        self.mode = mode
        self.calls = 0
        self.drafts: list[EventDraft] = []
        self.release = asyncio.Event()

    async def public_key(self) -> str:
        return self.pubkey

    async def sign(self, draft: EventDraft) -> str:
        self.calls += 1
        self.drafts.append(draft)
        if self.mode == "reject":
            raise SignerRejected("user declined")
        if self.mode == "unavailable":
            raise SignerUnavailable("signer offline")
        if self.mode == "block":
            await self.release.wait()
        return DUMMY_SIG


@pytest.fixture
def fake_signer() -> FakeSigner:
    return FakeSigner()


class StubConnection:
    """Connection stand-in for driving an ``AuthSession`` directly."""

    def __init__(self, url: str = RELAY_1) -> None:
        self.url = url
        self.epoch = 1
        self.is_connected = True
        self.sent: list[str] = []
        self.listeners: list[Any] = []

    async def send(self, frame: str) -> None:
        if not self.is_connected:
            raise RelayConnectionError("relay is not connected", url=self.url)
        self.sent.append(frame)

    def add_listener(self, listener: Any) -> None:
        self.listeners.append(listener)

    def remove_listener(self, listener: Any) -> None:
        if listener in self.listeners:
            self.listeners.remove(listener)

    def frames(self, label: str) -> list[list[Any]]:
        return [frame for frame in map(json.loads, self.sent) if frame[0] == label]


@pytest.fixture
def stub_connection() -> StubConnection:
    return StubConnection()


# ============================================================================
# Async helpers
# ============================================================================


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:  # noqa: ASYNC109
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_until() -> Callable[..., Any]:
    """Poll *predicate* until it holds (fails the test after *timeout*)."""
    return _wait_until
