"""
Relay addresses.

A [Relay][relaysync.models.relay.Relay] is the canonical form of a relay
WebSocket URL. The canonical URL keys the endpoint registry of
[RelayPool][relaysync.client.pool.RelayPool] and the inbox/outbox tables of
[RelaySelector][relaysync.client.selection.RelaySelector], so every URL that
reaches the client (configuration, NIP-65 ``r`` tags, explicit ``relays=``
arguments) goes through [normalize_relay_url()][relaysync.models.relay.normalize_relay_url]
first. ``wss://Relay.Example.com/`` and ``ws://relay.example.com`` are the
same relay.

Canonicalization rules:

* scheme and host are lower-cased, surrounding whitespace is dropped;
* public hosts always use ``wss``; overlay hosts (``.onion``, ``.i2p``,
  ``.loki``) always use ``ws``; loopback and private addresses keep the
  scheme they were given;
* the port is dropped when it is the scheme default;
* repeated slashes in the path collapse and a trailing slash is removed;
* query strings, fragments and NUL bytes are refused.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import ClassVar

from rfc3986 import uri_reference
from rfc3986.exceptions import UnpermittedComponentError, ValidationError
from rfc3986.validators import Validator

from .constants import NetworkType


_OVERLAY_SUFFIXES: dict[str, NetworkType] = {
    ".onion": NetworkType.TOR,
    ".i2p": NetworkType.I2P,
    ".loki": NetworkType.LOKI,
}

_LOCAL_NAMES = frozenset({"localhost", "localhost.localdomain"})

_DEFAULT_PORTS: dict[str, int] = {"ws": 80, "wss": 443}


def classify_host(host: str) -> NetworkType:
    """Return the network *host* lives on, ``UNKNOWN`` if it is not addressable.

    Examples:
        ```python
        classify_host("relay.damus.io")   # NetworkType.CLEARNET
        classify_host("abc.onion")        # NetworkType.TOR
        classify_host("10.0.0.7")         # NetworkType.LOCAL
        classify_host("relay")            # NetworkType.UNKNOWN
        ```
    """
    name = host.lower().strip("[]")
    if not name:
        return NetworkType.UNKNOWN
    for suffix, network in _OVERLAY_SUFFIXES.items():
        if name.endswith(suffix):
            return network
    if name in _LOCAL_NAMES:
        return NetworkType.LOCAL

    try:
        address = ipaddress.ip_address(name)
    except ValueError:
        address = None
    if address is not None:
        # is_global is False for loopback, RFC 1918, CGNAT, link-local and ULA ranges.
        return NetworkType.CLEARNET if address.is_global else NetworkType.LOCAL

    labels = name.split(".")
    if len(labels) < 2:
        return NetworkType.UNKNOWN
    if any(not label or label[0] == "-" or label[-1] == "-" for label in labels):
        return NetworkType.UNKNOWN
    return NetworkType.CLEARNET


def _collapse_path(path: str | None) -> str | None:
    segments = [segment for segment in (path or "").split("/") if segment]
    return "/" + "/".join(segments) if segments else None


@dataclass(frozen=True, slots=True)
class Relay:
    """Canonical relay address.

    Two ``Relay`` objects are equal (and hash equal) when their canonical
    ``url`` is the same; every other attribute is derived from it.

    Attributes:
        url: Canonical URL, scheme included.
        network: Network the host belongs to.
        scheme: ``ws`` or ``wss`` after the per-network rule is applied.
        host: Lower-cased host, IPv6 brackets removed.
        port: Explicit non-default port, else ``None``.
        path: Collapsed path without trailing slash, else ``None``.

    Raises:
        TypeError: If *raw_url* is not a string.
        ValueError: If the URL does not name a WebSocket relay.

    Examples:
        ```python
        Relay("ws://Relay.Example.com/").url     # 'wss://relay.example.com'
        Relay("wss://" + "a" * 56 + ".onion").scheme   # 'ws'
        Relay("ws://127.0.0.1:7777").network     # NetworkType.LOCAL
        ```
    """

    raw_url: str = field(repr=False, compare=False)
    url: str = field(init=False)
    network: NetworkType = field(init=False, compare=False)
    scheme: str = field(init=False, compare=False)
    host: str = field(init=False, compare=False)
    port: int | None = field(init=False, compare=False)
    path: str | None = field(init=False, compare=False)

    _VALIDATOR: ClassVar[Validator] = (
        Validator()
        .require_presence_of("scheme", "host")
        .allow_schemes("ws", "wss")
        .check_validity_of("scheme", "host", "port", "path")
    )

    def __post_init__(self) -> None:
        if not isinstance(self.raw_url, str):
            raise TypeError(f"Relay URL must be a str, got {type(self.raw_url).__name__}")
        if "\x00" in self.raw_url:
            raise ValueError("Relay URL contains null bytes")

        uri = uri_reference(self.raw_url.strip()).normalize()
        try:
            self._VALIDATOR.validate(uri)
        except UnpermittedComponentError:
            raise ValueError(f"Not a WebSocket relay URL: {self.raw_url!r}") from None
        except ValidationError as e:
            raise ValueError(f"Invalid relay URL {self.raw_url!r}: {e}") from None
        if uri.query:
            raise ValueError(f"Relay URL must not contain a query string: ?{uri.query}")
        if uri.fragment:
            raise ValueError(f"Relay URL must not contain a fragment: #{uri.fragment}")

        host = uri.host.strip("[]")
        network = classify_host(host)
        if network is NetworkType.UNKNOWN:
            raise ValueError(f"Invalid host: '{host}'")

        if network is NetworkType.CLEARNET:
            scheme = "wss"
        elif network is NetworkType.LOCAL:
            scheme = uri.scheme
        else:
            scheme = "ws"

        port = int(uri.port) if uri.port else None
        if port == _DEFAULT_PORTS[scheme]:
            port = None
        path = _collapse_path(uri.path)

        netloc = f"[{host}]" if ":" in host else host
        if port is not None:
            netloc = f"{netloc}:{port}"

        object.__setattr__(self, "url", f"{scheme}://{netloc}{path or ''}")
        object.__setattr__(self, "network", network)
        object.__setattr__(self, "scheme", scheme)
        object.__setattr__(self, "host", host)
        object.__setattr__(self, "port", port)
        object.__setattr__(self, "path", path)

    def __str__(self) -> str:
        return self.url

    @property
    def is_overlay(self) -> bool:
        """``True`` for Tor, I2P and Lokinet relays (dialed through a proxy)."""
        return self.network in (NetworkType.TOR, NetworkType.I2P, NetworkType.LOKI)


def normalize_relay_url(raw: str) -> str:
    """Return the canonical form of *raw* (see [Relay][relaysync.models.relay.Relay])."""
    return Relay(raw).url
