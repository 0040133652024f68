"""
Unit tests for utils.keys module.

Tests:
- load_keys_from_env() - hex and nsec parsing, missing variable
- KeysSigner - signatures that verify, author mismatch
- KeysConfig - optional and required keys, signer()
"""

import pytest
from nostr_sdk import Keys

from relaysync.core.exceptions import SignerRejected
from relaysync.models.event import EventDraft
from relaysync.utils.keys import KeysConfig, KeysSigner, Signer, load_keys_from_env


# Valid secp256k1 test key (DO NOT USE IN PRODUCTION)
VALID_HEX_KEY = "67dea2ed018072d675f5415ecfaed7d2597555e202d85b3d65ea4e58d2d92ffa"
VALID_NSEC_KEY = "nsec1vl029mgpspedva04g90vltkh6fvh240zqtv9k0t9af8935ke9laqsnlfe5"
ENV_VAR = "RELAYSYNC_TEST_PRIVATE_KEY"


class TestLoadKeysFromEnv:
    """load_keys_from_env()."""

    def test_hex(self, monkeypatch) -> None:
        monkeypatch.setenv(ENV_VAR, VALID_HEX_KEY)
        assert load_keys_from_env(ENV_VAR).secret_key().to_hex() == VALID_HEX_KEY

    def test_nsec_matches_hex(self, monkeypatch) -> None:
        monkeypatch.setenv(ENV_VAR, VALID_NSEC_KEY)
        assert load_keys_from_env(ENV_VAR).secret_key().to_hex() == VALID_HEX_KEY

    def test_missing(self, monkeypatch) -> None:
        monkeypatch.delenv(ENV_VAR, raising=False)
        with pytest.raises(ValueError, match="environment variable is required"):
            load_keys_from_env(ENV_VAR)


class TestKeysSigner:
    """KeysSigner."""

    def test_satisfies_protocol(self, keys: Keys) -> None:
        assert isinstance(KeysSigner(keys), Signer)

    async def test_public_key(self, keys: Keys) -> None:
        signer = KeysSigner(keys)
        assert await signer.public_key() == keys.public_key().to_hex()
        assert signer.pubkey == keys.public_key().to_hex()

    async def test_signature_verifies(self, keys: Keys) -> None:
        signer = KeysSigner(keys)
        draft = EventDraft(
            pubkey=signer.pubkey,
            kind=1,
            content="héllo",
            tags=[["t", "test"], ["p", "a" * 64]],
            created_at=1_700_000_000,
        )
        event = draft.finalize(await signer.sign(draft))
        assert len(event.sig) == 128
        assert event.has_valid_id()
        assert event.verify_signature()

    async def test_other_author_rejected(self, keys: Keys) -> None:
        draft = EventDraft(pubkey="a" * 64, kind=1, created_at=1)
        with pytest.raises(SignerRejected):
            await KeysSigner(keys).sign(draft)


class TestKeysConfig:
    """KeysConfig."""

    def test_no_env_no_keys(self, monkeypatch) -> None:
        monkeypatch.delenv(ENV_VAR, raising=False)
        config = KeysConfig(keys_env=ENV_VAR)
        assert config.keys is None
        assert config.signer() is None

    def test_loaded_from_env(self, monkeypatch) -> None:
        monkeypatch.setenv(ENV_VAR, VALID_HEX_KEY)
        config = KeysConfig(keys_env=ENV_VAR)
        assert config.keys is not None
        signer = config.signer()
        assert isinstance(signer, KeysSigner)
        assert signer.pubkey == Keys.parse(VALID_HEX_KEY).public_key().to_hex()

    def test_required_missing(self, monkeypatch) -> None:
        monkeypatch.delenv(ENV_VAR, raising=False)
        with pytest.raises(ValueError, match=ENV_VAR):
            KeysConfig(keys_env=ENV_VAR, required=True)
