"""relaysync exception hierarchy.

Provides typed exceptions for every failure category of the relay client
core, so callers can distinguish transient relay trouble (retried
internally) from user-facing failures (signer refusal, authentication
denial) and let ``CancelledError`` propagate untouched.

Exception hierarchy:

```text
RelaySyncError (base -- never raised directly)
├── ConfigurationError       -- config validation, missing keys, bad YAML
├── ConnectivityError        -- relay unreachable, transient network failure
│   ├── RelayConnectionError -- not connected, transport closed or refused
│   └── RelayTimeoutError    -- connect or response timed out
├── ProtocolViolation        -- malformed inbound frame
├── InvalidEvent             -- id or signature mismatch
├── AuthRejected             -- relay or signer denied NIP-42 authentication
├── SignerError              -- external signing capability failed
│   ├── SignerUnavailable    -- no signer, or signer unreachable
│   └── SignerRejected       -- the user declined to sign
└── PublishingError          -- no relay accepted a published event
```

Note:
    Relay-specific failures are isolated to their relay: the pool logs
    them, updates relay health, and keeps running. Only
    [SignerError][relaysync.core.exceptions.SignerError],
    [AuthRejected][relaysync.core.exceptions.AuthRejected], and
    [PublishingError][relaysync.core.exceptions.PublishingError] surface to
    callers, and none of them is fatal.

See Also:
    [RelayConnection][relaysync.client.connection.RelayConnection]: Retries
        [ConnectivityError][relaysync.core.exceptions.ConnectivityError]
        with exponential backoff.
    [EventIngestPipeline][relaysync.client.ingest.EventIngestPipeline]:
        Raises [InvalidEvent][relaysync.core.exceptions.InvalidEvent] from
        ``validate()``.
    [BaseService][relaysync.core.base_service.BaseService]: Catches errors
        in the
        [run_forever()][relaysync.core.base_service.BaseService.run_forever]
        loop.
"""

from __future__ import annotations


class RelaySyncError(Exception):
    """Base exception for all relaysync errors.

    Never raised directly -- always use a specific subclass.
    """


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(RelaySyncError):
    """Invalid or missing configuration (YAML, env vars, CLI flags).

    See Also:
        [load_yaml()][relaysync.core.yaml.load_yaml]: YAML loading function
            whose output is validated into config models.
    """


# ---------------------------------------------------------------------------
# Connectivity
# ---------------------------------------------------------------------------


class ConnectivityError(RelaySyncError):
    """Base for transient relay/network errors.

    Never fatal: [RelayConnection][relaysync.client.connection.RelayConnection]
    retries with backoff, and the pool reports total loss as a liveness
    condition.
    """

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class RelayConnectionError(ConnectivityError):
    """The relay is not connected, refused the connection, or closed it."""


class RelayTimeoutError(ConnectivityError):
    """Connection or response timed out."""


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ProtocolViolation(RelaySyncError):
    """A relay sent a frame that does not follow the wire protocol.

    The frame is dropped and logged; the session continues.

    See Also:
        [parse_message()][relaysync.nips.nip01.parse_message]: Raises this
            for malformed inbound frames.
    """


class InvalidEvent(RelaySyncError):
    """An event failed id recomputation or signature verification.

    Invalid events are never stored and never reach reducers or consumers.
    """

    def __init__(self, message: str, event_id: str | None = None) -> None:
        super().__init__(message)
        self.event_id = event_id


# ---------------------------------------------------------------------------
# Authentication and signing
# ---------------------------------------------------------------------------


class AuthRejected(RelaySyncError):
    """A relay (or the signer) denied NIP-42 authentication.

    Authenticated operations against that relay fail with this error; other
    relays are unaffected.
    """

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class SignerError(RelaySyncError):
    """Base for failures of the external signing capability."""


class SignerUnavailable(SignerError):
    """No signer is configured, or the signer cannot be reached."""


class SignerRejected(SignerError):
    """The signer (typically the user) declined the signing request."""


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------


class PublishingError(RelaySyncError):
    """No relay accepted a published event.

    Attributes:
        outcomes: Per-relay outcome map collected before giving up.
    """

    def __init__(self, message: str, outcomes: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.outcomes = dict(outcomes or {})
