"""
Unit tests for nips.nip01 module.

Tests:
- parse_message() for every relay frame type
- ProtocolViolation on malformed frames
- Machine-readable prefixes on OK/CLOSED
- Outbound frame encoding (REQ, CLOSE, EVENT, AUTH)
"""

import json

import pytest

from relaysync.core.exceptions import ProtocolViolation
from relaysync.models.filter import Filter
from relaysync.nips.nip01 import (
    AuthMessage,
    ClosedMessage,
    CountMessage,
    EoseMessage,
    EventMessage,
    MachinePrefix,
    NoticeMessage,
    OkMessage,
    encode_auth,
    encode_close,
    encode_event,
    encode_req,
    parse_message,
    split_prefix,
)


# =============================================================================
# Inbound Frames
# =============================================================================


class TestParseMessage:
    """Tests for parse_message()."""

    def test_event(self, make_event) -> None:
        event = make_event(content="hi")
        msg = parse_message(json.dumps(["EVENT", "sub1", event.to_dict()]))
        assert msg == EventMessage("sub1", event)

    def test_eose(self) -> None:
        assert parse_message('["EOSE","sub1"]') == EoseMessage("sub1")

    def test_ok(self) -> None:
        msg = parse_message(json.dumps(["OK", "f" * 64, False, "blocked: spam"]))
        assert msg == OkMessage("f" * 64, False, "blocked: spam")
        assert msg.prefix is MachinePrefix.BLOCKED

    def test_ok_without_message(self) -> None:
        assert parse_message(json.dumps(["OK", "f" * 64, True])) == OkMessage("f" * 64, True)

    def test_notice(self) -> None:
        assert parse_message('["NOTICE","slow down"]') == NoticeMessage("slow down")

    def test_auth(self) -> None:
        assert parse_message('["AUTH","nonce"]') == AuthMessage("nonce")

    def test_closed(self) -> None:
        msg = parse_message('["CLOSED","sub1","auth-required: log in"]')
        assert msg == ClosedMessage("sub1", "auth-required: log in")
        assert msg.auth_required

    def test_count(self) -> None:
        assert parse_message('["COUNT","sub1",{"count":7}]') == CountMessage("sub1", 7)

    def test_bytes_accepted(self) -> None:
        assert parse_message(b'["EOSE","s"]') == EoseMessage("s")

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            '{"EVENT": 1}',
            "[]",
            '["UNKNOWN","x"]',
            '[1,"x"]',
            '["EOSE"]',
            '["EOSE",5]',
            '["OK","id","yes"]',
            '["AUTH",""]',
            '["COUNT","s",{"count":true}]',
            '["EVENT","s",{"id":"x"}]',
        ],
    )
    def test_malformed(self, raw: str) -> None:
        with pytest.raises(ProtocolViolation):
            parse_message(raw)

    def test_deeply_nested_frame(self) -> None:
        with pytest.raises(ProtocolViolation, match="nested too deeply"):
            parse_message("[" * 200_000 + "]" * 200_000)

    def test_event_rejected_by_sdk(self, make_event) -> None:
        data = make_event().to_dict()
        data["created_at"] = "soon"
        with pytest.raises(ProtocolViolation, match="malformed event"):
            parse_message(json.dumps(["EVENT", "s", data]))


class TestPrefixes:
    """Tests for machine-readable prefixes."""

    def test_split_known(self) -> None:
        assert split_prefix("rate-limited: slow down") == (MachinePrefix.RATE_LIMITED, "slow down")

    def test_split_unknown(self) -> None:
        assert split_prefix("custom: thing") == (None, "custom: thing")

    def test_split_none(self) -> None:
        assert split_prefix("plain text") == (None, "plain text")

    def test_ok_auth_required(self) -> None:
        assert OkMessage("f" * 64, False, "auth-required: please").auth_required
        assert not OkMessage("f" * 64, True, "auth-required: please").auth_required
        assert not OkMessage("f" * 64, False, "blocked: no").auth_required


# =============================================================================
# Outbound Frames
# =============================================================================


class TestEncode:
    """Tests for outbound encoders."""

    def test_req(self) -> None:
        raw = encode_req("sub1", [Filter(kinds=[1]), Filter(tags={"h": ["g"]})])
        assert json.loads(raw) == ["REQ", "sub1", {"kinds": [1]}, {"#h": ["g"]}]

    def test_req_requires_filter(self) -> None:
        with pytest.raises(ValueError):
            encode_req("sub1", [])

    @pytest.mark.parametrize("sub_id", ["", "x" * 65])
    def test_req_subscription_id_bounds(self, sub_id: str) -> None:
        with pytest.raises(ValueError):
            encode_req(sub_id, [Filter()])

    def test_close(self) -> None:
        assert encode_close("sub1") == '["CLOSE","sub1"]'

    def test_event(self, make_event) -> None:
        event = make_event(content="é")
        raw = encode_event(event)
        assert json.loads(raw) == ["EVENT", event.to_dict()]
        assert "é" in raw

    def test_auth(self, make_event) -> None:
        event = make_event(kind=22_242)
        assert json.loads(encode_auth(event)) == ["AUTH", event.to_dict()]
