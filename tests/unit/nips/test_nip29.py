"""
Unit tests for nips.nip29 module.

Tests:
- Group id extraction
- put-user role parsing
- Target and deleted-event extraction
- Metadata edits
"""

from relaysync.models.group import GroupMetadata, GroupRole
from relaysync.nips.nip29 import (
    GROUP_KINDS,
    apply_metadata_edit,
    group_id_of,
    parse_deleted_event_ids,
    parse_put_user,
    parse_targets,
)


PUBKEY_A = "a" * 64
PUBKEY_B = "b" * 64


class TestTagHelpers:
    """Tests for tag extraction."""

    def test_group_id(self, make_event) -> None:
        assert group_id_of(make_event(kind=9, tags=[["h", "g1"]])) == "g1"
        assert group_id_of(make_event(kind=9, tags=[["h", ""]])) is None
        assert group_id_of(make_event(kind=9)) is None

    def test_group_kinds(self) -> None:
        assert {9, 11, 9000, 9001, 9007, 9021, 9022} <= GROUP_KINDS
        assert 1 not in GROUP_KINDS

    def test_put_user_roles(self, make_event) -> None:
        event = make_event(
            kind=9000,
            tags=[
                ["h", "g"],
                ["p", PUBKEY_A],
                ["p", PUBKEY_B, "moderator", "admin"],
                ["p", ""],
            ],
        )
        assert parse_put_user(event) == [
            (PUBKEY_A, GroupRole.MEMBER),
            (PUBKEY_B, GroupRole.ADMIN),
        ]

    def test_targets_deduplicated(self, make_event) -> None:
        event = make_event(kind=9001, tags=[["p", PUBKEY_B], ["p", PUBKEY_A], ["p", PUBKEY_B]])
        assert parse_targets(event) == [PUBKEY_B, PUBKEY_A]

    def test_deleted_event_ids(self, make_event) -> None:
        event = make_event(kind=9005, tags=[["e", "1" * 64], ["e", ""]])
        assert parse_deleted_event_ids(event) == ["1" * 64]


class TestMetadataEdit:
    """Tests for apply_metadata_edit()."""

    def test_fields_and_flags(self, make_event) -> None:
        event = make_event(
            kind=9002, tags=[["h", "g"], ["name", "Club"], ["private"], ["closed"]]
        )
        assert apply_metadata_edit(GroupMetadata(about="x"), event) == GroupMetadata(
            name="Club", about="x", is_private=True, is_closed=True
        )

    def test_flags_cleared(self, make_event) -> None:
        event = make_event(kind=9002, tags=[["public"], ["open"]])
        current = GroupMetadata(name="Club", is_private=True, is_closed=True)
        assert apply_metadata_edit(current, event) == GroupMetadata(name="Club")
