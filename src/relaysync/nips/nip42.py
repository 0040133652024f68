"""
NIP-42 client authentication events.

Builds the kind 22242 draft that answers a relay's ``AUTH`` challenge. The
draft carries exactly two tags, ``["relay", <url>]`` and
``["challenge", <nonce>]``, and is handed to the external signer by
[AuthSession][relaysync.client.auth.AuthSession].

See Also:
    [AuthSession][relaysync.client.auth.AuthSession]: The per-connection
        state machine that drives the challenge-response exchange.
"""

from __future__ import annotations

import time

from relaysync.models.constants import EventKind
from relaysync.models.event import Event, EventDraft


# Challenges older than this are not answered, even if never used.
CHALLENGE_TTL_SECONDS = 300.0


def build_auth_draft(
    pubkey: str,
    relay_url: str,
    challenge: str,
    created_at: int | None = None,
) -> EventDraft:
    """Return the unsigned kind 22242 event answering *challenge*.

    Args:
        pubkey: Public key of the signer that will sign the draft.
        relay_url: Normalized URL of the relay that issued the challenge.
        challenge: The challenge string from the ``AUTH`` frame.
        created_at: Override the timestamp (defaults to now).
    """
    return EventDraft(
        pubkey=pubkey,
        kind=EventKind.CLIENT_AUTH,
        content="",
        tags=(("relay", relay_url), ("challenge", challenge)),
        created_at=int(time.time()) if created_at is None else created_at,
    )


def is_auth_event_for(event: Event, relay_url: str, challenge: str) -> bool:
    """Whether *event* is a kind 22242 answer to *challenge* on *relay_url*."""
    return (
        event.kind == EventKind.CLIENT_AUTH
        and event.first_tag_value("relay") == relay_url
        and event.first_tag_value("challenge") == challenge
    )
