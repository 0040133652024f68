"""Signer capability and Nostr key loading.

The client core never implements signing itself: it consumes the
[Signer][relaysync.utils.keys.Signer] protocol, whose ``sign()`` may suspend
indefinitely on a human (browser extension, remote signer app) and may fail
with [SignerRejected][relaysync.core.exceptions.SignerRejected] or
[SignerUnavailable][relaysync.core.exceptions.SignerUnavailable].

[KeysSigner][relaysync.utils.keys.KeysSigner] is the local implementation
backed by a ``nostr_sdk.Keys`` loaded from an environment variable through
[KeysConfig][relaysync.utils.keys.KeysConfig].

Warning:
    Private keys must **never** be stored in configuration files, source code,
    or logged to any output. Always use environment variables or a secure
    secret management system.

Examples:
    ```python
    import os

    os.environ["RELAYSYNC_PRIVATE_KEY"] = "nsec1..."  # pragma: allowlist secret
    signer = KeysSigner(load_keys_from_env("RELAYSYNC_PRIVATE_KEY"))
    sig = await signer.sign(draft)
    event = draft.finalize(sig)
    ```
"""

from __future__ import annotations

import os
from typing import Any, Protocol, runtime_checkable

from nostr_sdk import EventBuilder, Keys, Kind, NostrSdkError, Tag, Timestamp
from pydantic import BaseModel, Field, model_validator

from relaysync.core.exceptions import SignerRejected, SignerUnavailable
from relaysync.models.event import EventDraft


ENV_PRIVATE_KEY = "RELAYSYNC_PRIVATE_KEY"  # pragma: allowlist secret  # Default env var name


@runtime_checkable
class Signer(Protocol):
    """External signing capability.

    Implementations may block on user approval. They must raise
    [SignerRejected][relaysync.core.exceptions.SignerRejected] when the
    user declines and
    [SignerUnavailable][relaysync.core.exceptions.SignerUnavailable] when
    the signer cannot be reached.
    """

    async def public_key(self) -> str:
        """Hex public key of the signing identity."""
        ...

    async def sign(self, draft: EventDraft) -> str:
        """Return the 128-char hex Schnorr signature over ``draft.compute_id()``."""
        ...


def load_keys_from_env(env_var: str) -> Keys:
    """Load Nostr keys from an environment variable.

    Parses a private key (nsec1 bech32 or 64-char hex).

    Raises:
        ValueError: If the environment variable is not set or is empty.
        nostr_sdk.NostrSdkError: If the key value is malformed.
    """
    value = os.getenv(env_var)

    if not value:
        raise ValueError(
            f"{env_var} environment variable is required. Generate one with: openssl rand -hex 32"
        )

    return Keys.parse(value)


class KeysSigner:
    """[Signer][relaysync.utils.keys.Signer] backed by local ``nostr_sdk.Keys``.

    Signing never suspends on a human, so it is only ever rejected when the
    draft names a different author.
    """

    def __init__(self, keys: Keys) -> None:
        self._keys = keys
        self._pubkey = keys.public_key().to_hex()

    @property
    def pubkey(self) -> str:
        return self._pubkey

    async def public_key(self) -> str:
        return self._pubkey

    async def sign(self, draft: EventDraft) -> str:
        """Sign *draft* with the local keys.

        Raises:
            SignerRejected: If the draft's author is not this signer's key.
            SignerUnavailable: If ``nostr_sdk`` fails to build or sign the
                event, or derives an id different from the draft's.
        """
        if draft.pubkey != self._pubkey:
            raise SignerRejected("draft author does not match the signer key")

        try:
            unsigned = (
                EventBuilder(Kind(draft.kind), draft.content)
                .tags([Tag.parse(list(tag)) for tag in draft.tags])
                .custom_created_at(Timestamp.from_secs(draft.created_at))
                .finalize_unsigned(self._keys.public_key())
            )
            signed = self._keys.sign_event(unsigned)
        except NostrSdkError as e:
            raise SignerUnavailable(f"signing failed: {e}") from e

        if signed.id().to_hex() != draft.compute_id():
            raise SignerUnavailable("signer derived a different event id")
        return str(signed.signature())


class KeysConfig(BaseModel):
    """Pydantic model that loads optional Nostr keys from an environment variable.

    When the variable is unset, ``keys`` stays ``None`` and the service runs
    read-only: relays that demand authentication are skipped for the
    operations that need it.

    Attributes:
        keys_env: Environment variable name for the private key.
        required: Fail validation when the variable is missing.
        keys: Loaded ``nostr_sdk.Keys`` instance, or ``None``.

    Warning:
        The ``keys`` field contains a live private key. Do not serialize
        this model to logs, JSON, or any persistent storage.
    """

    model_config = {"arbitrary_types_allowed": True}

    keys_env: str = Field(
        default=ENV_PRIVATE_KEY,
        min_length=1,
        description="Environment variable name for private key",
    )
    required: bool = Field(default=False, description="Fail when the key is missing")
    keys: Keys | None = Field(default=None, description="Keys loaded from keys_env")

    @model_validator(mode="before")
    @classmethod
    def _load_keys_from_env(cls, data: Any) -> Any:
        """Auto-populate the ``keys`` field from the environment variable."""
        if isinstance(data, dict) and data.get("keys") is None:
            env_var = data.get("keys_env", ENV_PRIVATE_KEY)
            if os.getenv(env_var):
                data = {**data, "keys": load_keys_from_env(env_var)}
            elif data.get("required", False):
                raise ValueError(f"{env_var} environment variable is required")
        return data

    def signer(self) -> KeysSigner | None:
        """Return a [KeysSigner][relaysync.utils.keys.KeysSigner], or ``None`` without keys."""
        return KeysSigner(self.keys) if self.keys is not None else None
