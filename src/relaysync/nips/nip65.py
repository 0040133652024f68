"""
NIP-65 relay list metadata (kind 10002).

Turns an author's relay-list event into inbox (read) and outbox (write)
relay URLs. Invalid URLs are skipped rather than failing the whole list:
relay lists are user-authored and frequently contain junk.

Examples:
    ```python
    relay_list = parse_relay_list(event)
    relay_list.read    # ('wss://inbox.example.com',)
    relay_list.write   # ('wss://nos.lol',)
    ```
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from relaysync.models.constants import EventKind
from relaysync.models.event import Event
from relaysync.models.relay import normalize_relay_url


logger = logging.getLogger("relaysync.nips.nip65")


@dataclass(frozen=True, slots=True)
class RelayList:
    """Normalized per-author relay assignment.

    Attributes:
        read: Inbox relays (where the author reads mentions; where others
            read from when fetching events addressed to this author).
        write: Outbox relays (where the author publishes; where others
            read the author's own events from).
    """

    read: tuple[str, ...] = ()
    write: tuple[str, ...] = ()


def parse_relay_list(event: Event) -> RelayList:
    """Extract read/write relays from a kind 10002 event.

    An ``r`` tag without a marker means both read and write.

    Raises:
        ValueError: If *event* is not a relay-list event.
    """
    if event.kind != EventKind.RELAY_LIST:
        raise ValueError(f"expected kind {EventKind.RELAY_LIST}, got {event.kind}")

    read: list[str] = []
    write: list[str] = []
    for tag in event.tags:
        if len(tag) < 2 or tag[0] != "r":  # noqa: PLR2004
            continue
        try:
            url = normalize_relay_url(tag[1])
        except ValueError as e:
            logger.debug("relay_list_url_skipped url=%s error=%s", tag[1], e)
            continue
        marker = tag[2] if len(tag) > 2 else None  # noqa: PLR2004
        if marker in (None, "", "read") and url not in read:
            read.append(url)
        if marker in (None, "", "write") and url not in write:
            write.append(url)
    return RelayList(read=tuple(read), write=tuple(write))
