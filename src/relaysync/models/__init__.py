"""Pure frozen dataclasses for Nostr events, filters, relays, and group state.

The models layer is the foundation of the diamond DAG. It has no dependencies
on any other relaysync package. Every model uses
``@dataclass(frozen=True, slots=True)`` for immutability, and all structural
validation happens in ``__post_init__`` so invalid instances never escape the
constructor.

Attributes:
    Event: Content-addressed, signed Nostr event whose id, parsing and
        signature checks go through ``nostr_sdk``.
    EventDraft: Unsigned event handed to an external signer.
    Filter: NIP-01 subscription filter backed by ``nostr_sdk.Filter``.
    Relay: Validated relay URL with
        [NetworkType][relaysync.models.constants.NetworkType] detection.
    GroupState: Frozen NIP-29 group membership/moderation snapshot.

Note:
    All models use ``object.__setattr__`` in ``__post_init__`` to set computed
    or normalized fields on frozen dataclasses.
"""

from .constants import (
    EVENT_KIND_MAX,
    EventKind,
    KindClass,
    NetworkType,
    ServiceName,
    kind_class,
)
from .event import (
    Event,
    EventDraft,
    IdentityKey,
    SortKey,
    compute_event_id,
)
from .filter import Filter
from .group import GroupMetadata, GroupRole, GroupState, ModerationAction, ModerationEntry
from .relay import Relay, normalize_relay_url


__all__ = [
    "EVENT_KIND_MAX",
    "Event",
    "EventDraft",
    "EventKind",
    "Filter",
    "GroupMetadata",
    "GroupRole",
    "GroupState",
    "IdentityKey",
    "KindClass",
    "ModerationAction",
    "ModerationEntry",
    "NetworkType",
    "Relay",
    "ServiceName",
    "SortKey",
    "compute_event_id",
    "kind_class",
    "normalize_relay_url",
]
