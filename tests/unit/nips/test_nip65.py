"""
Unit tests for nips.nip65 module.

Tests:
- Read/write markers
- URL normalization and deduplication
- Invalid URLs skipped
- Wrong kind rejected
"""

import pytest

from relaysync.nips.nip65 import RelayList, parse_relay_list


class TestParseRelayList:
    """Tests for parse_relay_list()."""

    def test_markers(self, make_event) -> None:
        event = make_event(
            kind=10_002,
            tags=[
                ["r", "wss://both.example.com"],
                ["r", "wss://in.example.com", "read"],
                ["r", "wss://out.example.com", "write"],
            ],
        )
        assert parse_relay_list(event) == RelayList(
            read=("wss://both.example.com", "wss://in.example.com"),
            write=("wss://both.example.com", "wss://out.example.com"),
        )

    def test_normalized_and_deduplicated(self, make_event) -> None:
        event = make_event(
            kind=10_002,
            tags=[["r", "ws://Relay.Example.com/"], ["r", "wss://relay.example.com"]],
        )
        result = parse_relay_list(event)
        assert result.read == ("wss://relay.example.com",)
        assert result.write == ("wss://relay.example.com",)

    def test_invalid_urls_skipped(self, make_event) -> None:
        event = make_event(
            kind=10_002,
            tags=[["r", "https://web.example.com"], ["r", "junk"], ["r"], ["p", "x"]],
        )
        assert parse_relay_list(event) == RelayList()

    def test_wrong_kind(self, make_event) -> None:
        with pytest.raises(ValueError, match="expected kind"):
            parse_relay_list(make_event(kind=3))
