"""
NIP-29 group state reducer with authority checks and out-of-order replay.

Group events arrive from several relays, late, duplicated, and in any order.
The reducer keeps, per group, the events sorted by ``(created_at, id)`` and
derives [GroupState][relaysync.models.group.GroupState] by applying them in
that order. Each event's authority is evaluated against the state
immediately before it:

| Kind | Action | Required |
|---|---|---|
| 9007 | create group | no admin yet (creator becomes admin), else admin |
| 9000 | put user | admin to grant ``admin``, moderator otherwise |
| 9001 | remove user | moderator; admin to remove an admin; self always |
| 9002 | edit metadata | admin |
| 9005 | delete event | moderator, or the author of every deleted event |
| 9008 | delete group | admin |
| 9021 | join request | anyone not removed (and the group not closed) |
| 9022 | leave request | current member |
| 9-12 | chat and threads | member |

An action that fails its check is recorded in the moderation log with
``accepted=False`` and changes nothing else. Keys listed in
``relay_pubkeys`` (the group relay's own key) act with admin authority.

Late events are inserted at their sorted position and everything after them
is recomputed from the nearest frozen snapshot (taken every
``snapshot_interval`` events), so the final state depends only on the *set*
of events, never on arrival order.

Memory is bounded by ``max_log_events``: once the log exceeds it, the
oldest events (in whole snapshot intervals) are folded into the base state
and the position of the last folded event becomes the horizon. A late event
at or before the horizon can no longer be replayed correctly; it is dropped
with a warning. Folded events also leave the author index, so a later
deletion of one needs a moderator even when its author asks.

See Also:
    [relaysync.nips.nip29][]: Tag parsing helpers.
    [ReducerRegistry][relaysync.reducers.registry.ReducerRegistry]: Routes
        group kinds to [GroupReducer.apply()][relaysync.reducers.group.GroupReducer.apply].
"""

from __future__ import annotations

import bisect
from collections.abc import Mapping
from dataclasses import dataclass, field

from pydantic import BaseModel, Field

from relaysync.core.logger import Logger
from relaysync.models.constants import EventKind
from relaysync.models.event import Event, SortKey
from relaysync.models.filter import Filter
from relaysync.models.group import (
    GroupMetadata,
    GroupRole,
    GroupState,
    ModerationAction,
    ModerationEntry,
)
from relaysync.nips.nip29 import (
    GROUP_KINDS,
    MESSAGE_KINDS,
    apply_metadata_edit,
    group_id_of,
    parse_deleted_event_ids,
    parse_put_user,
    parse_targets,
)

from .registry import ReducerRegistry


class GroupReducerConfig(BaseModel):
    """Group reducer settings.

    Attributes:
        groups: Group ids to track; ``None`` tracks every group seen.
        relay_pubkeys: Keys with admin authority in every group.
        snapshot_interval: Applied events between frozen snapshots.
        max_log_events: Events kept per group before folding into the base.
    """

    groups: list[str] | None = Field(default=None, description="Group ids to track")
    relay_pubkeys: list[str] = Field(
        default_factory=list, description="Keys acting with admin authority"
    )
    snapshot_interval: int = Field(default=64, ge=1, le=10_000)
    max_log_events: int = Field(default=10_000, ge=1)


_ACTIONS: dict[int, ModerationAction] = {
    EventKind.GROUP_CREATE: ModerationAction.CREATE_GROUP,
    EventKind.GROUP_PUT_USER: ModerationAction.PUT_USER,
    EventKind.GROUP_REMOVE_USER: ModerationAction.REMOVE_USER,
    EventKind.GROUP_EDIT_METADATA: ModerationAction.EDIT_METADATA,
    EventKind.GROUP_DELETE_EVENT: ModerationAction.DELETE_EVENT,
    EventKind.GROUP_DELETE: ModerationAction.DELETE_GROUP,
    EventKind.GROUP_JOIN_REQUEST: ModerationAction.JOIN,
    EventKind.GROUP_LEAVE_REQUEST: ModerationAction.LEAVE,
    **{kind: ModerationAction.MESSAGE for kind in MESSAGE_KINDS},
}


# ---------------------------------------------------------------------------
# Working state
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class _WorkingState:
    """Mutable counterpart of [GroupState][relaysync.models.group.GroupState] used during replay."""

    group_id: str
    members: dict[str, GroupRole] = field(default_factory=dict)
    removed: set[str] = field(default_factory=set)
    log: list[ModerationEntry] = field(default_factory=list)
    metadata: GroupMetadata = field(default_factory=GroupMetadata)
    deleted_events: set[str] = field(default_factory=set)
    deleted: bool = False
    position: SortKey | None = None

    @classmethod
    def from_state(cls, state: GroupState) -> _WorkingState:
        return cls(
            group_id=state.group_id,
            members=dict(state.members),
            removed=set(state.removed),
            log=list(state.moderation_log),
            metadata=state.metadata,
            deleted_events=set(state.deleted_events),
            deleted=state.deleted,
            position=state.position,
        )

    def freeze(self) -> GroupState:
        return GroupState(
            group_id=self.group_id,
            members=self.members,
            removed=frozenset(self.removed),
            moderation_log=tuple(self.log),
            metadata=self.metadata,
            deleted_events=frozenset(self.deleted_events),
            deleted=self.deleted,
            position=self.position,
        )


# ---------------------------------------------------------------------------
# Reduction
# ---------------------------------------------------------------------------


class _Step:
    """Applies one event to a working state, appending log entries."""

    def __init__(
        self,
        state: _WorkingState,
        event: Event,
        relay_keys: frozenset[str],
        event_authors: Mapping[str, str],
    ) -> None:
        self.state = state
        self.event = event
        self.event_authors = event_authors
        self.actor = event.pubkey
        self.role = GroupRole.ADMIN if event.pubkey in relay_keys else state.members.get(event.pubkey)
        self.entries: list[ModerationEntry] = []

    def has(self, required: GroupRole) -> bool:
        return self.role is not None and self.role.at_least(required)

    def accept(self, action: ModerationAction, target: str | None = None) -> None:
        self._log(action, target, accepted=True, reason=None)

    def reject(self, action: ModerationAction, reason: str, target: str | None = None) -> None:
        self._log(action, target, accepted=False, reason=reason)

    def _log(
        self, action: ModerationAction, target: str | None, *, accepted: bool, reason: str | None
    ) -> None:
        entry = ModerationEntry(
            event_id=self.event.id,
            created_at=self.event.created_at,
            actor=self.actor,
            action=action,
            target=target,
            accepted=accepted,
            reason=reason,
        )
        self.state.log.append(entry)
        self.entries.append(entry)

    def run(self) -> list[ModerationEntry]:
        action = _ACTIONS[self.event.kind]
        self.state.position = self.event.sort_key
        if self.state.deleted:
            self.reject(action, "group deleted")
            return self.entries

        handler = getattr(self, f"_{action.value}")
        handler(action)
        return self.entries

    # -- moderation -----------------------------------------------------------

    def _create_group(self, action: ModerationAction) -> None:
        has_admin = any(role is GroupRole.ADMIN for role in self.state.members.values())
        if not has_admin:
            self.state.members[self.actor] = GroupRole.ADMIN
            self.state.removed.discard(self.actor)
            self.accept(action, self.actor)
        elif self.has(GroupRole.ADMIN):
            self.accept(action)
        else:
            self.reject(action, "group already has an admin")

    def _put_user(self, action: ModerationAction) -> None:
        grants = parse_put_user(self.event)
        if not grants:
            self.reject(action, "no target")
            return
        for target, granted in grants:
            required = GroupRole.ADMIN if granted is GroupRole.ADMIN else GroupRole.MODERATOR
            if not self.has(required):
                self.reject(action, f"{required.value} required", target)
                continue
            self.state.members[target] = granted
            self.state.removed.discard(target)
            self.accept(action, target)

    def _remove_user(self, action: ModerationAction) -> None:
        targets = parse_targets(self.event)
        if not targets:
            self.reject(action, "no target")
            return
        for target in targets:
            if target != self.actor:
                target_role = self.state.members.get(target)
                required = (
                    GroupRole.ADMIN if target_role is GroupRole.ADMIN else GroupRole.MODERATOR
                )
                if not self.has(required):
                    self.reject(action, f"{required.value} required", target)
                    continue
                self.state.removed.add(target)
            self.state.members.pop(target, None)
            self.accept(action, target)

    def _edit_metadata(self, action: ModerationAction) -> None:
        if not self.has(GroupRole.ADMIN):
            self.reject(action, "admin required")
            return
        self.state.metadata = apply_metadata_edit(self.state.metadata, self.event)
        self.accept(action)

    def _delete_event(self, action: ModerationAction) -> None:
        event_ids = parse_deleted_event_ids(self.event)
        if not event_ids:
            self.reject(action, "no target")
            return
        own = all(self.event_authors.get(event_id) == self.actor for event_id in event_ids)
        if not (own or self.has(GroupRole.MODERATOR)):
            self.reject(action, "moderator required", event_ids[0])
            return
        self.state.deleted_events.update(event_ids)
        for event_id in event_ids:
            self.accept(action, event_id)

    def _delete_group(self, action: ModerationAction) -> None:
        if not self.has(GroupRole.ADMIN):
            self.reject(action, "admin required")
            return
        self.state.deleted = True
        self.accept(action)

    # -- membership -----------------------------------------------------------

    def _join(self, action: ModerationAction) -> None:
        if self.actor in self.state.removed:
            self.reject(action, "removed from group", self.actor)
        elif self.actor in self.state.members:
            self.accept(action, self.actor)
        elif self.state.metadata.is_closed:
            self.reject(action, "group is closed", self.actor)
        else:
            self.state.members[self.actor] = GroupRole.MEMBER
            self.accept(action, self.actor)

    def _leave(self, action: ModerationAction) -> None:
        if self.state.members.pop(self.actor, None) is None:
            self.reject(action, "not a member", self.actor)
        else:
            self.accept(action, self.actor)

    def _message(self, action: ModerationAction) -> None:
        # Accepted messages are content, not moderation: nothing is logged.
        if self.role is None:
            self.reject(action, "not a member")


def reduce_event(
    state: _WorkingState,
    event: Event,
    *,
    relay_keys: frozenset[str] = frozenset(),
    event_authors: Mapping[str, str] | None = None,
) -> list[ModerationEntry]:
    """Apply one group event to *state* in place.

    Returns:
        The moderation log entries produced (accepted and rejected).
    """
    return _Step(state, event, relay_keys, event_authors or {}).run()


# ---------------------------------------------------------------------------
# Per-group timeline
# ---------------------------------------------------------------------------


class GroupTimeline:
    """Sorted event log of one group with snapshots and a folding horizon."""

    def __init__(
        self,
        group_id: str,
        config: GroupReducerConfig | None = None,
        *,
        logger: Logger | None = None,
    ) -> None:
        self.group_id = group_id
        self._config = config or GroupReducerConfig()
        self._relay_keys = frozenset(self._config.relay_pubkeys)
        self._logger = (logger or Logger("relaysync.reducers.group")).bind(group=group_id)

        self._events: list[Event] = []
        self._keys: list[SortKey] = []
        self._ids: set[str] = set()
        self._authors: dict[str, str] = {}
        self._snapshots: dict[int, GroupState] = {0: GroupState(group_id)}
        self._working = _WorkingState.from_state(self._snapshots[0])
        self._frozen: GroupState | None = None
        self._horizon: SortKey | None = None

        self.replays = 0
        self.dropped = 0
        self.folded = 0

    @property
    def state(self) -> GroupState:
        if self._frozen is None:
            self._frozen = self._working.freeze()
        return self._frozen

    @property
    def base(self) -> GroupState:
        """State with every folded event applied."""
        return self._snapshots[0]

    @property
    def horizon(self) -> SortKey | None:
        return self._horizon

    @property
    def events(self) -> tuple[Event, ...]:
        return tuple(self._events)

    def __len__(self) -> int:
        return len(self._events)

    def add(self, event: Event) -> bool:
        """Insert *event* and bring the state up to date.

        Returns:
            ``False`` for duplicates and events behind the horizon.
        """
        if event.id in self._ids:
            return False
        key = event.sort_key
        if self._horizon is not None and key <= self._horizon:
            self.dropped += 1
            self._logger.warning(
                "group_event_behind_horizon",
                event_id=event.id,
                created_at=event.created_at,
                horizon=self._horizon[0],
            )
            return False

        self._ids.add(event.id)
        self._authors[event.id] = event.pubkey
        index = bisect.bisect_left(self._keys, key)
        self._keys.insert(index, key)
        self._events.insert(index, event)

        if index == len(self._events) - 1:
            self._apply(index)
        else:
            self._replay_from(index)
        self._fold()
        self._frozen = None
        return True

    def _apply(self, index: int) -> None:
        reduce_event(
            self._working,
            self._events[index],
            relay_keys=self._relay_keys,
            event_authors=self._authors,
        )
        applied = index + 1
        if applied % self._config.snapshot_interval == 0:
            self._snapshots[applied] = self._working.freeze()

    def _replay_from(self, index: int) -> None:
        start = max(k for k in self._snapshots if k <= index)
        for k in [k for k in self._snapshots if k > start]:
            del self._snapshots[k]
        self._working = _WorkingState.from_state(self._snapshots[start])
        self.replays += 1
        self._logger.debug(
            "group_replay", from_index=start, insert_index=index, events=len(self._events)
        )
        for i in range(start, len(self._events)):
            self._apply(i)

    def _fold(self) -> None:
        interval = self._config.snapshot_interval
        excess = len(self._events) - self._config.max_log_events
        if excess < interval:
            return
        count = (excess // interval) * interval
        folded = self._events[:count]
        self._horizon = self._keys[count - 1]
        del self._events[:count]
        del self._keys[:count]
        for event in folded:
            self._ids.discard(event.id)
            self._authors.pop(event.id, None)
        self._snapshots = {k - count: s for k, s in self._snapshots.items() if k >= count}
        self.folded += count
        self._logger.debug("group_log_folded", folded=count, horizon=self._horizon[0])


# ---------------------------------------------------------------------------
# Reducer
# ---------------------------------------------------------------------------


class GroupReducer:
    """Routes group events to per-group timelines.

    Examples:
        ```python
        reducer = GroupReducer(GroupReducerConfig(groups=["pizza-lovers"]))
        reducer.register(registry)
        ...
        state = reducer.state("pizza-lovers")
        state.has_role(pubkey, GroupRole.MODERATOR)
        ```
    """

    KINDS: frozenset[int] = GROUP_KINDS

    def __init__(self, config: GroupReducerConfig | None = None, *, logger: Logger | None = None) -> None:
        self._config = config or GroupReducerConfig()
        self._logger = logger or Logger("relaysync.reducers.group")
        self._allowed = set(self._config.groups) if self._config.groups is not None else None
        self._timelines: dict[str, GroupTimeline] = {}

    @property
    def config(self) -> GroupReducerConfig:
        return self._config

    @property
    def group_ids(self) -> list[str]:
        return sorted(self._timelines)

    def apply(self, event: Event) -> GroupState | None:
        """Feed one event; return the group's new state if it changed anything."""
        if event.kind not in self.KINDS:
            return None
        group_id = group_id_of(event)
        if group_id is None:
            self._logger.debug("group_event_without_h_tag", event_id=event.id, kind=event.kind)
            return None
        if self._allowed is not None and group_id not in self._allowed:
            return None

        timeline = self._timelines.get(group_id)
        if timeline is None:
            timeline = GroupTimeline(group_id, self._config, logger=self._logger)
            self._timelines[group_id] = timeline
        if not timeline.add(event):
            return None
        return timeline.state

    def state(self, group_id: str) -> GroupState | None:
        timeline = self._timelines.get(group_id)
        return timeline.state if timeline is not None else None

    def timeline(self, group_id: str) -> GroupTimeline | None:
        return self._timelines.get(group_id)

    def register(self, registry: ReducerRegistry) -> None:
        """Register [apply()][relaysync.reducers.group.GroupReducer.apply] for every group kind."""
        registry.register(sorted(self.KINDS), self.apply)

    def filters(self) -> list[Filter]:
        """Subscription filters covering the tracked groups."""
        kinds = tuple(sorted(self.KINDS))
        if self._allowed is None:
            return [Filter(kinds=kinds)]
        return [Filter(kinds=kinds, tags={"h": tuple(sorted(self._allowed))})]

    def stats(self) -> dict[str, int]:
        timelines = self._timelines.values()
        return {
            "groups": len(self._timelines),
            "events": sum(len(t) for t in timelines),
            "replays": sum(t.replays for t in timelines),
            "dropped": sum(t.dropped for t in timelines),
            "folded": sum(t.folded for t in timelines),
        }
