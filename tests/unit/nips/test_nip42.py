"""
Unit tests for nips.nip42 module.

Tests:
- build_auth_draft() shape
- is_auth_event_for() matching
"""

from relaysync.models.constants import EventKind
from relaysync.nips.nip42 import build_auth_draft, is_auth_event_for


PUBKEY = "a" * 64
SIG = "0" * 128
RELAY = "wss://relay.example.com"


class TestBuildAuthDraft:
    """Tests for the kind 22242 draft."""

    def test_shape(self) -> None:
        draft = build_auth_draft(PUBKEY, RELAY, "nonce", created_at=10)
        assert draft.kind == EventKind.CLIENT_AUTH
        assert draft.content == ""
        assert draft.tags == (("relay", RELAY), ("challenge", "nonce"))
        assert draft.created_at == 10

    def test_default_timestamp(self) -> None:
        assert build_auth_draft(PUBKEY, RELAY, "nonce").created_at > 1_600_000_000


class TestIsAuthEventFor:
    """Tests for matching a signed answer to its challenge."""

    def test_match(self) -> None:
        event = build_auth_draft(PUBKEY, RELAY, "nonce").finalize(SIG)
        assert is_auth_event_for(event, RELAY, "nonce")

    def test_other_challenge(self) -> None:
        event = build_auth_draft(PUBKEY, RELAY, "nonce").finalize(SIG)
        assert not is_auth_event_for(event, RELAY, "other")

    def test_other_relay(self) -> None:
        event = build_auth_draft(PUBKEY, RELAY, "nonce").finalize(SIG)
        assert not is_auth_event_for(event, "wss://other.example.com", "nonce")

    def test_wrong_kind(self, make_event) -> None:
        event = make_event(kind=1, tags=[["relay", RELAY], ["challenge", "nonce"]])
        assert not is_auth_event_for(event, RELAY, "nonce")
