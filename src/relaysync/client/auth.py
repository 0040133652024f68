"""
NIP-42 authentication state machine, one per relay connection.

```text
UNAUTHENTICATED --challenge--> CHALLENGED --sign--> SIGNING --OK true--> AUTHENTICATED
                                   ^                   |
                                   |              signer or relay
                                   |               rejection
                                   |                   v
                                   +----retry------ REJECTED
any state --connection lost--> UNAUTHENTICATED
```

Challenges are single-use and scoped to the connection epoch that received
them: a challenge is consumed when its answer is sent, discarded on
disconnect, and ignored once older than ``challenge_ttl``. When the *signer*
declines, the challenge was never answered, so it is retained and the next
auth-requiring request re-enters ``CHALLENGED`` with it.

Signing runs in its own task. It is the only place the client core waits on
an external actor (possibly a human), so other relays and subscriptions keep
flowing while it is pending. A signature that resolves after the connection
dropped belongs to a dead epoch and is discarded. Once the AUTH event is sent,
the relay has ``auth_timeout`` to answer with ``OK`` before the session moves
to ``REJECTED``.

Requests that need authentication go through
[send_authenticated()][relaysync.client.auth.AuthSession.send_authenticated]:
they are queued while the session is not yet authenticated, flushed in order
on ``AUTHENTICATED``, and failed with
[AuthRejected][relaysync.core.exceptions.AuthRejected] on ``REJECTED``.

See Also:
    [build_auth_draft()][relaysync.nips.nip42.build_auth_draft]: The kind
        22242 event answered to the relay.
    [AuthPreference][relaysync.client.configs.AuthPreference]: When
        challenges are answered.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections import deque
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from relaysync.core.exceptions import (
    AuthRejected,
    ConnectivityError,
    RelayConnectionError,
    SignerError,
    SignerUnavailable,
)
from relaysync.core.logger import Logger
from relaysync.nips.nip01 import AuthMessage, OkMessage, encode_auth
from relaysync.nips.nip42 import build_auth_draft

from .configs import AuthConfig, AuthPreference


if TYPE_CHECKING:
    from relaysync.nips.nip01 import RelayMessage
    from relaysync.utils.keys import Signer

    from .connection import RelayConnection


class AuthState(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    CHALLENGED = "challenged"
    SIGNING = "signing"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"


class AuthTrigger(StrEnum):
    """Inputs that drive [AuthState][relaysync.client.auth.AuthState] transitions."""

    CHALLENGE = "challenge"
    SIGN = "sign"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    RETRY = "retry"
    RESET = "reset"


_TRANSITIONS: dict[tuple[AuthState, AuthTrigger], AuthState] = {
    (AuthState.UNAUTHENTICATED, AuthTrigger.CHALLENGE): AuthState.CHALLENGED,
    (AuthState.CHALLENGED, AuthTrigger.CHALLENGE): AuthState.CHALLENGED,
    (AuthState.REJECTED, AuthTrigger.CHALLENGE): AuthState.CHALLENGED,
    (AuthState.CHALLENGED, AuthTrigger.SIGN): AuthState.SIGNING,
    (AuthState.CHALLENGED, AuthTrigger.REJECTED): AuthState.REJECTED,
    (AuthState.SIGNING, AuthTrigger.ACCEPTED): AuthState.AUTHENTICATED,
    (AuthState.SIGNING, AuthTrigger.REJECTED): AuthState.REJECTED,
    (AuthState.REJECTED, AuthTrigger.RETRY): AuthState.CHALLENGED,
}


def next_state(state: AuthState, trigger: AuthTrigger) -> AuthState | None:
    """Return the state reached from *state* on *trigger*, or ``None`` if not allowed.

    ``RESET`` (connection loss) leads to ``UNAUTHENTICATED`` from any state.
    """
    if trigger is AuthTrigger.RESET:
        return AuthState.UNAUTHENTICATED
    return _TRANSITIONS.get((state, trigger))


@dataclass(slots=True)
class _Challenge:
    value: str
    received_at: float
    epoch: int


@dataclass(slots=True)
class _PendingRequest:
    frame: str
    future: asyncio.Future[None]


class AuthSession:
    """Per-connection NIP-42 session.

    Registers itself as a listener of *connection* to receive ``AUTH``
    challenges, the relay's ``OK`` for the auth event, and disconnects.

    Args:
        connection: The relay connection this session authenticates.
        signer: External signing capability, or ``None`` for read-only use.
        config: Timeouts, challenge TTL and auth preference.
        logger: Parent logger.

    Attributes:
        history: Recent ``(from, to)`` state transitions, newest last.
    """

    def __init__(
        self,
        connection: RelayConnection,
        signer: Signer | None,
        config: AuthConfig | None = None,
        *,
        logger: Logger | None = None,
    ) -> None:
        self._connection = connection
        self._signer = signer
        self._config = config or AuthConfig()
        self._preference = self._config.preference_for(connection.url)
        self._logger = (logger or Logger("relaysync.client.auth")).bind(relay=connection.url)

        self._state = AuthState.UNAUTHENTICATED
        self._challenge: _Challenge | None = None
        self._pending: list[_PendingRequest] = []
        self._auth_event_id: str | None = None
        self._sign_task: asyncio.Task[None] | None = None
        self._flush_task: asyncio.Task[None] | None = None
        self._challenge_timer: asyncio.TimerHandle | None = None
        self._ok_timer: asyncio.TimerHandle | None = None
        self._rejection: str | None = None
        self.authenticated_pubkey: str | None = None
        self.history: deque[tuple[AuthState, AuthState]] = deque(maxlen=32)

        connection.add_listener(self)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def preference(self) -> AuthPreference:
        return self._preference

    @property
    def is_authenticated(self) -> bool:
        return self._state is AuthState.AUTHENTICATED

    @property
    def has_challenge(self) -> bool:
        return self._usable_challenge() is not None

    @property
    def rejection_reason(self) -> str | None:
        return self._rejection

    @property
    def pending_requests(self) -> int:
        return len(self._pending)

    def _transition(self, trigger: AuthTrigger) -> bool:
        target = next_state(self._state, trigger)
        if target is None:
            self._logger.debug("auth_transition_ignored", state=self._state, trigger=trigger)
            return False
        if target is not self._state:
            self.history.append((self._state, target))
            self._logger.debug("auth_state", previous=self._state, state=target)
        self._state = target
        return True

    def _usable_challenge(self) -> _Challenge | None:
        challenge = self._challenge
        if challenge is None:
            return None
        if challenge.epoch != self._connection.epoch:
            self._challenge = None
            return None
        if time.monotonic() - challenge.received_at > self._config.challenge_ttl:
            self._logger.debug("auth_challenge_expired")
            self._challenge = None
            return None
        return challenge

    # -------------------------------------------------------------------------
    # Connection listener
    # -------------------------------------------------------------------------

    def on_connected(self, connection: RelayConnection) -> None:
        pass

    def on_message(self, connection: RelayConnection, message: RelayMessage) -> None:
        if isinstance(message, AuthMessage):
            self.receive_challenge(message.challenge)
        elif isinstance(message, OkMessage) and message.event_id == self._auth_event_id:
            self._on_auth_result(message)

    def on_disconnected(self, connection: RelayConnection) -> None:
        self.reset()

    def on_connect_failed(self, connection: RelayConnection, error: ConnectivityError) -> None:
        pass

    # -------------------------------------------------------------------------
    # Challenge handling
    # -------------------------------------------------------------------------

    def receive_challenge(self, challenge: str) -> None:
        """Record a challenge from the relay and answer it if warranted."""
        self._challenge = _Challenge(challenge, time.monotonic(), self._connection.epoch)
        self._cancel_challenge_timer()
        self._logger.debug("auth_challenge_received", state=self._state)

        if self._state in (AuthState.SIGNING, AuthState.AUTHENTICATED):
            # Kept for a later re-authentication.
            return
        self._transition(AuthTrigger.CHALLENGE)
        if self._preference is AuthPreference.ALWAYS or self._pending:
            self._start_signing()

    def _start_signing(self) -> None:
        challenge = self._usable_challenge()
        if challenge is None:
            self._logger.debug("auth_no_usable_challenge", state=self._state)
            if self._state is not AuthState.UNAUTHENTICATED:
                self._transition(AuthTrigger.RESET)
            self._arm_challenge_timer()
            return
        if self._signer is None:
            self._fail(SignerUnavailable("no signer configured"), retain=challenge)
            return
        if not self._transition(AuthTrigger.SIGN):
            return
        self._challenge = None
        self._sign_task = asyncio.create_task(
            self._sign_and_send(challenge), name=f"auth:{self._connection.url}"
        )

    async def _sign_and_send(self, challenge: _Challenge) -> None:
        assert self._signer is not None  # noqa: S101
        try:
            pubkey = await self._signer.public_key()
            draft = build_auth_draft(pubkey, self._connection.url, challenge.value)
            sig = await asyncio.wait_for(
                self._signer.sign(draft), timeout=self._config.signer_timeout
            )
        except (SignerError, TimeoutError) as e:
            if self._is_stale(challenge):
                self._logger.debug("auth_stale_signer_error_discarded", error=str(e))
                return
            error = e if isinstance(e, SignerError) else SignerUnavailable("signer timed out")
            self._fail(error, retain=challenge)
            return
        except Exception as e:  # Intentionally broad: any signer fault ends in REJECTED
            if self._is_stale(challenge):
                self._logger.debug("auth_stale_signer_error_discarded", error=str(e))
                return
            self._logger.exception("auth_signer_failed", error_type=type(e).__name__)
            self._fail(SignerUnavailable(f"signer failed: {e}"), retain=challenge)
            return

        if self._is_stale(challenge):
            self._logger.debug("auth_stale_signature_discarded")
            return

        try:
            event = draft.finalize(sig)
        except (TypeError, ValueError) as e:
            self._fail(SignerUnavailable(f"signer returned an invalid signature: {e}"), retain=None)
            return

        self._auth_event_id = event.id
        self.authenticated_pubkey = pubkey
        try:
            await self._connection.send(encode_auth(event))
        except RelayConnectionError as e:
            # The disconnect callback resets the session.
            self._logger.debug("auth_send_failed", error=str(e))
            return
        self._logger.debug("auth_sent", event_id=event.id)
        if self._state is AuthState.SIGNING and self._auth_event_id == event.id:
            self._arm_ok_timer(event.id)

    def _is_stale(self, challenge: _Challenge) -> bool:
        return (
            challenge.epoch != self._connection.epoch
            or not self._connection.is_connected
            or self._state is not AuthState.SIGNING
        )

    def _arm_ok_timer(self, event_id: str) -> None:
        self._cancel_ok_timer()
        loop = asyncio.get_running_loop()
        self._ok_timer = loop.call_later(self._config.auth_timeout, self._ok_timeout, event_id)

    def _cancel_ok_timer(self) -> None:
        if self._ok_timer is not None:
            self._ok_timer.cancel()
            self._ok_timer = None

    def _ok_timeout(self, event_id: str) -> None:
        self._ok_timer = None
        if self._state is not AuthState.SIGNING or self._auth_event_id != event_id:
            return
        self._auth_event_id = None
        self.authenticated_pubkey = None
        self._fail(AuthRejected("no OK for AUTH", url=self._connection.url), retain=None)

    def _on_auth_result(self, message: OkMessage) -> None:
        self._cancel_ok_timer()
        self._auth_event_id = None
        if self._state is not AuthState.SIGNING:
            return
        if message.accepted:
            self._transition(AuthTrigger.ACCEPTED)
            self._rejection = None
            self._logger.info("authenticated", pubkey=self.authenticated_pubkey)
            self._flush_task = asyncio.create_task(
                self._flush(), name=f"auth-flush:{self._connection.url}"
            )
        else:
            self.authenticated_pubkey = None
            self._fail(AuthRejected(message.message or "relay rejected authentication"), retain=None)

    def _fail(self, error: Exception, *, retain: _Challenge | None) -> None:
        """Move to ``REJECTED`` and fail every queued request."""
        if self._challenge is None:
            self._challenge = retain
        self._rejection = str(error)
        self._transition(AuthTrigger.REJECTED)
        self._logger.warning("auth_rejected", error_type=type(error).__name__, reason=str(error))
        self._fail_pending(AuthRejected(f"authentication failed: {error}", url=self._connection.url))

    # -------------------------------------------------------------------------
    # Authenticated requests
    # -------------------------------------------------------------------------

    async def send_authenticated(self, frame: str) -> None:
        """Send *frame* once the session is authenticated.

        Sends immediately when already authenticated. Otherwise the frame is
        queued; signing starts when a usable challenge is available (now,
        or when one arrives within ``auth_timeout``).

        Raises:
            AuthRejected: If authentication is disabled for this relay, no
                challenge or OK arrives in time, or the signer or relay refuses.
            RelayConnectionError: If the connection drops while waiting.
        """
        if self._state is AuthState.AUTHENTICATED:
            await self._connection.send(frame)
            return
        if self._preference is AuthPreference.NEVER:
            raise AuthRejected("authentication disabled for this relay", url=self._connection.url)

        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._pending.append(_PendingRequest(frame, future))

        if self._state is AuthState.REJECTED and self._usable_challenge() is not None:
            self._transition(AuthTrigger.RETRY)
        if self._state is AuthState.CHALLENGED:
            self._start_signing()
        elif self._state in (AuthState.UNAUTHENTICATED, AuthState.REJECTED):
            if self._state is AuthState.REJECTED:
                self._transition(AuthTrigger.RESET)
            self._arm_challenge_timer()

        await future

    async def _flush(self) -> None:
        pending, self._pending = self._pending, []
        for request in pending:
            if request.future.done():
                continue
            try:
                await self._connection.send(request.frame)
            except RelayConnectionError as e:
                request.future.set_exception(e)
            else:
                request.future.set_result(None)

    def _fail_pending(self, error: Exception) -> None:
        self._cancel_challenge_timer()
        pending, self._pending = self._pending, []
        for request in pending:
            if not request.future.done():
                request.future.set_exception(error)

    def _arm_challenge_timer(self) -> None:
        if self._challenge_timer is not None:
            return
        loop = asyncio.get_running_loop()
        self._challenge_timer = loop.call_later(self._config.auth_timeout, self._challenge_timeout)

    def _cancel_challenge_timer(self) -> None:
        if self._challenge_timer is not None:
            self._challenge_timer.cancel()
            self._challenge_timer = None

    def _challenge_timeout(self) -> None:
        self._challenge_timer = None
        if self._state is AuthState.UNAUTHENTICATED and self._pending:
            self._logger.warning("auth_challenge_timeout", pending=len(self._pending))
            self._fail_pending(
                AuthRejected("relay sent no authentication challenge", url=self._connection.url)
            )

    # -------------------------------------------------------------------------
    # Reset
    # -------------------------------------------------------------------------

    def reset(self) -> None:
        """Return to ``UNAUTHENTICATED`` after a connection loss.

        The challenge is discarded, any in-flight signature becomes stale,
        and queued requests fail with
        [RelayConnectionError][relaysync.core.exceptions.RelayConnectionError].
        """
        self._challenge = None
        self._auth_event_id = None
        self.authenticated_pubkey = None
        self._cancel_ok_timer()
        self._transition(AuthTrigger.RESET)
        self._fail_pending(
            RelayConnectionError("connection lost during authentication", url=self._connection.url)
        )

    async def close(self) -> None:
        """Detach from the connection and cancel any signing in progress."""
        self._connection.remove_listener(self)
        self._cancel_ok_timer()
        self._fail_pending(RelayConnectionError("session closed", url=self._connection.url))
        task, self._sign_task = self._sign_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
