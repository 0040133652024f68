"""
Configuration models for the relay client core.

Every tunable of [RelayPool][relaysync.client.pool.RelayPool] and the
components it owns is a pydantic model with documented defaults, so a pool
can be built from a YAML mapping through
[RelayPoolConfig][relaysync.client.configs.RelayPoolConfig] and partial
overrides inherit everything else.

Examples:
    ```yaml
    pool:
      relays:
        - wss://relay.damus.io
        - wss://nos.lol
      eose_timeout: 4.0
      connection:
        connect_timeout: 10.0
        retry:
          max_attempts: 5
      auth:
        preference: on_demand
    ```
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from relaysync.models.relay import normalize_relay_url
from relaysync.utils.network import NetworksConfig


FALLBACK_RELAYS: tuple[str, ...] = (
    "wss://relay.damus.io",
    "wss://relay.nostr.band",
    "wss://nos.lol",
    "wss://relay.primal.net",
)


def _normalize_urls(urls: list[str]) -> list[str]:
    normalized: list[str] = []
    for url in urls:
        value = normalize_relay_url(url)
        if value not in normalized:
            normalized.append(value)
    return normalized


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


class RetryConfig(BaseModel):
    """Reconnect strategy for a relay connection.

    Note:
        Exponential backoff (the default) doubles the delay each attempt:
        ``initial_delay * 2^(attempt - 1)``, capped at ``max_delay``, plus a
        ``random.uniform(0, jitter)`` term that decorrelates reconnect
        storms. After ``max_attempts`` consecutive failures the connection
        is marked degraded and retried every ``degraded_interval`` seconds.
        It is never abandoned.
    """

    max_attempts: int = Field(
        default=5, ge=1, le=100, description="Consecutive failures before degraded"
    )
    initial_delay: float = Field(default=1.0, ge=0.0, description="Initial retry delay")
    max_delay: float = Field(default=60.0, ge=0.0, description="Maximum retry delay")
    exponential_backoff: bool = Field(default=True, description="Use exponential backoff")
    jitter: float = Field(default=0.5, ge=0.0, le=10.0, description="Maximum random extra delay")
    degraded_interval: float = Field(
        default=300.0, ge=0.0, description="Retry period once degraded"
    )

    @field_validator("max_delay")
    @classmethod
    def validate_max_delay(cls, v: float, info: ValidationInfo) -> float:
        """Ensure max_delay >= initial_delay."""
        initial_delay = info.data.get("initial_delay", 1.0)
        if v < initial_delay:
            raise ValueError(f"max_delay ({v}) must be >= initial_delay ({initial_delay})")
        return v


class ConnectionConfig(BaseModel):
    """Per-relay WebSocket session settings."""

    connect_timeout: float = Field(
        default=10.0, gt=0.0, le=120.0, description="WebSocket handshake timeout"
    )
    heartbeat: float = Field(default=30.0, gt=0.0, description="WebSocket ping interval")
    max_message_size: int = Field(
        default=4 * 1024 * 1024, ge=1024, description="Largest accepted inbound frame"
    )
    retry: RetryConfig = Field(default_factory=RetryConfig)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class AuthPreference(StrEnum):
    """When to answer a relay's NIP-42 challenge.

    Attributes:
        ALWAYS: Sign as soon as a challenge arrives.
        ON_DEMAND: Sign only when a request needs authentication.
        NEVER: Never authenticate; auth-requiring requests fail.
    """

    ALWAYS = "always"
    ON_DEMAND = "on_demand"
    NEVER = "never"


class AuthConfig(BaseModel):
    """NIP-42 authentication settings."""

    preference: AuthPreference = Field(
        default=AuthPreference.ON_DEMAND, description="Default auth preference"
    )
    relay_preferences: dict[str, AuthPreference] = Field(
        default_factory=dict, description="Per-relay overrides keyed by URL"
    )
    auth_timeout: float = Field(
        default=10.0, gt=0.0, description="Wait for a challenge or the relay's OK"
    )
    signer_timeout: float = Field(
        default=120.0, gt=0.0, description="Wait for the signer (may ask the user)"
    )
    challenge_ttl: float = Field(
        default=300.0, gt=0.0, description="Challenges older than this are not answered"
    )

    @field_validator("relay_preferences")
    @classmethod
    def normalize_relay_keys(
        cls, v: dict[str, AuthPreference]
    ) -> dict[str, AuthPreference]:
        return {normalize_relay_url(url): preference for url, preference in v.items()}

    def preference_for(self, url: str) -> AuthPreference:
        """Effective preference for the relay at normalized *url*."""
        return self.relay_preferences.get(url, self.preference)


# ---------------------------------------------------------------------------
# Health and selection
# ---------------------------------------------------------------------------


class HealthConfig(BaseModel):
    """Rolling health window for relay deprioritization.

    A relay whose success ratio over the last ``window_size`` outcomes falls
    below ``unhealthy_threshold`` (with at least ``min_samples`` recorded)
    is ordered last during selection. It is never removed from the pool.
    """

    window_size: int = Field(default=20, ge=1, le=1000)
    min_samples: int = Field(default=5, ge=1)
    unhealthy_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    probe_interval: float = Field(
        default=60.0, gt=0.0, description="Seconds between probes of unhealthy relays"
    )

    @field_validator("min_samples")
    @classmethod
    def validate_min_samples(cls, v: int, info: ValidationInfo) -> int:
        """Ensure min_samples <= window_size."""
        window_size = info.data.get("window_size", 20)
        if v > window_size:
            raise ValueError(f"min_samples ({v}) must be <= window_size ({window_size})")
        return v


class SelectionConfig(BaseModel):
    """Per-author relay selection (inbox/outbox model)."""

    max_relays_per_author: int = Field(default=5, ge=1, le=50)
    min_relays: int = Field(
        default=2, ge=1, description="Unhealthy relays are used only to reach this count"
    )
    fallback_relays: list[str] = Field(
        default_factory=lambda: list(FALLBACK_RELAYS),
        description="Used when an author has no relay list and no default relay is set",
    )

    @field_validator("fallback_relays")
    @classmethod
    def normalize_fallback(cls, v: list[str]) -> list[str]:
        return _normalize_urls(v)


# ---------------------------------------------------------------------------
# Ingest
# ---------------------------------------------------------------------------


class IngestConfig(BaseModel):
    """Validation and deduplication settings for inbound events."""

    verify_signatures: bool = Field(default=True, description="Verify Schnorr signatures")
    max_future_seconds: int | None = Field(
        default=900, ge=0, description="Reject events dated further ahead (None = no limit)"
    )
    ephemeral_cache_size: int = Field(
        default=10_000, ge=1, description="Ephemeral event ids remembered for dedup"
    )


# ---------------------------------------------------------------------------
# Pool
# ---------------------------------------------------------------------------


class RelayPoolConfig(BaseModel):
    """Top-level configuration of a [RelayPool][relaysync.client.pool.RelayPool].

    Attributes:
        relays: Default relays, used for reads and writes when no per-author
            assignment applies.
        eose_timeout: Seconds before a subscription's logical EOSE fires
            without every relay having reported.
        publish_timeout: Seconds a relay has to answer ``OK`` to a publish.
        subscription_seen_limit: Event ids each subscription remembers for
            deduplication once its logical EOSE has fired.
    """

    relays: list[str] = Field(default_factory=list, description="Default relay URLs")
    eose_timeout: float = Field(default=4.0, gt=0.0, le=300.0)
    publish_timeout: float = Field(default=10.0, gt=0.0, le=300.0)
    subscription_seen_limit: int = Field(default=10_000, ge=1)
    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    selection: SelectionConfig = Field(default_factory=SelectionConfig)
    ingest: IngestConfig = Field(default_factory=IngestConfig)
    networks: NetworksConfig = Field(default_factory=NetworksConfig)

    @field_validator("relays")
    @classmethod
    def normalize_relays(cls, v: list[str]) -> list[str]:
        return _normalize_urls(v)
