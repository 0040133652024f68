"""Synchronizer service configuration models.

See Also:
    [Synchronizer][relaysync.services.synchronizer.Synchronizer]: The service
        class that consumes these configurations.
    [BaseServiceConfig][relaysync.core.base_service.BaseServiceConfig]:
        Base class providing ``interval`` and ``metrics`` fields.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from relaysync.client.configs import RelayPoolConfig
from relaysync.core.base_service import BaseServiceConfig
from relaysync.models.constants import EVENT_KIND_MAX
from relaysync.models.filter import Filter
from relaysync.reducers.group import GroupReducerConfig
from relaysync.utils.keys import KeysConfig


_HEX_STRING_LENGTH = 64


class FilterConfig(BaseModel):
    """Nostr event filter configuration for the long-lived subscription.

    See Also:
        [to_filter()][relaysync.services.synchronizer.FilterConfig.to_filter]:
            Converts this config into a [Filter][relaysync.models.filter.Filter].
    """

    ids: list[str] | None = Field(default=None, description="Event IDs to sync (None = all)")
    kinds: list[int] | None = Field(default=None, description="Event kinds to sync (None = all)")
    authors: list[str] | None = Field(default=None, description="Authors to sync (None = all)")
    tags: dict[str, list[str]] | None = Field(default=None, description="Tag filters (None = all)")
    since: int | None = Field(default=None, ge=0, description="Oldest created_at to request")
    limit: int = Field(default=500, ge=1, le=5000, description="Backlog events per relay")

    @field_validator("kinds", mode="after")
    @classmethod
    def validate_kinds(cls, v: list[int] | None) -> list[int] | None:
        """Validate that all event kinds are within the valid range (0-65535)."""
        if v is None:
            return v
        for kind in v:
            if not 0 <= kind <= EVENT_KIND_MAX:
                raise ValueError(f"Event kind {kind} out of valid range (0-{EVENT_KIND_MAX})")
        return v

    @field_validator("ids", "authors", mode="after")
    @classmethod
    def validate_hex_strings(cls, v: list[str] | None) -> list[str] | None:
        """Validate that all entries are valid 64-character hex strings."""
        if v is None:
            return v
        for hex_str in v:
            if len(hex_str) != _HEX_STRING_LENGTH:
                raise ValueError(
                    f"Invalid hex string length: {len(hex_str)} (expected {_HEX_STRING_LENGTH})"
                )
            try:
                bytes.fromhex(hex_str)
            except ValueError as e:
                raise ValueError(f"Invalid hex string: {hex_str}") from e
        return v

    def to_filter(self) -> Filter:
        return Filter(
            ids=self.ids,
            authors=self.authors,
            kinds=self.kinds,
            since=self.since,
            tags=self.tags or {},
            limit=self.limit,
        )


class SynchronizerConfig(BaseServiceConfig):
    """Configuration for the Synchronizer service.

    Attributes:
        pool: Relay set, timeouts and policies of the relay pool.
        filters: Filters kept subscribed for the life of the service.
        keys: Optional signing key for NIP-42 authentication.
        groups: Group reducer settings; ``None`` disables group tracking.
        fetch_relay_lists: Fetch the kind 10002 relay lists of the filters'
            authors before subscribing, so reads go to their inbox relays.

    See Also:
        [Synchronizer][relaysync.services.synchronizer.Synchronizer]: The
            service class that consumes this configuration.
    """

    pool: RelayPoolConfig = Field(default_factory=RelayPoolConfig)
    filters: list[FilterConfig] = Field(default_factory=list)
    keys: KeysConfig = Field(default_factory=lambda: KeysConfig.model_validate({}))
    groups: GroupReducerConfig | None = Field(default=None)
    fetch_relay_lists: bool = Field(default=True)
