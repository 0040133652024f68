"""
Unit tests for client.pool module.

Every test runs a real pool against the in-memory ``FakeTransport``.

Tests:
- The same event from several relays is stored and dispatched once
- Replaceable events from competing relays keep the newest version
- Logical EOSE from all relays, or after the timeout with a silent relay
- Nothing is dispatched after a subscription or the pool is closed
- Invalid and out-of-filter events are dropped; health records them
- CLOSED auth-required triggers NIP-42 authentication and one REQ retry
- Publish outcomes per relay (accepted, rejected, timeout), relay silent after AUTH
- NIP-65 relay lists update the inbox/outbox selection
- Liveness, offline reporting, refused dials in relay health, probe re-admission
- Resubscription narrowed to the watermark after a reconnect
"""

import asyncio

import pytest

from relaysync.client.configs import (
    AuthConfig,
    ConnectionConfig,
    HealthConfig,
    IngestConfig,
    RelayPoolConfig,
    RetryConfig,
)
from relaysync.client.pool import RelayPool
from relaysync.client.publication import PublishOutcome
from relaysync.client.subscription import EoseReason
from relaysync.core.exceptions import InvalidEvent, PublishingError, SignerUnavailable
from relaysync.models.event import Event, EventDraft
from relaysync.models.filter import Filter
from relaysync.nips.nip01 import EventMessage


R1 = "wss://relay1.example.com"
R2 = "wss://relay2.example.com"
R3 = "wss://relay3.example.com"
R4 = "wss://relay4.example.com"
RELAYS = [R1, R2, R3]
PUBKEY_A = "a" * 64
PUBKEY_B = "b" * 64


def pool_config(relays=RELAYS, **overrides) -> RelayPoolConfig:
    params = {
        "relays": relays,
        "eose_timeout": 2.0,
        "publish_timeout": 0.2,
        "connection": ConnectionConfig(
            retry=RetryConfig(
                initial_delay=0.0,
                max_delay=0.0,
                jitter=0.0,
                max_attempts=2,
                degraded_interval=0.01,
            )
        ),
        "ingest": IngestConfig(verify_signatures=False),
    }
    params.update(overrides)
    return RelayPoolConfig(**params)


@pytest.fixture
async def pool(transport):
    pool = RelayPool(pool_config(), transport=transport)
    await pool.start()
    for url in RELAYS:
        assert await pool.connection(url).wait_connected(1.0)
    yield pool
    await pool.close()


async def open_subscription(pool, transport, wait_until, **kwargs):
    kwargs.setdefault("subscription_id", "sub1")
    subscription = await pool.subscribe(Filter(kinds=[1, 10002]), **kwargs)
    await wait_until(
        lambda: all(transport.session(url).frames("REQ") for url in subscription.relays)
    )
    return subscription


def push_event(transport, url: str, event: Event, subscription_id: str = "sub1") -> None:
    transport.session(url).push(["EVENT", subscription_id, event.to_dict()])


def push_eose(transport, urls, subscription_id: str = "sub1") -> None:
    for url in urls:
        transport.session(url).push(["EOSE", subscription_id])


# =============================================================================
# Exactly-once delivery
# =============================================================================


class TestExactlyOnce:
    """Deduplication across relays."""

    async def test_same_event_from_three_relays(
        self, pool, transport, wait_until, make_event
    ) -> None:
        dispatched: list[Event] = []
        delivered: list[Event] = []
        pool.ingest.add_listener(dispatched.append)
        subscription = await open_subscription(
            pool, transport, wait_until, on_event=delivered.append
        )

        event = make_event(content="hello")
        for url in RELAYS:
            push_event(transport, url, event)
        push_eose(transport, RELAYS)

        assert await subscription.wait_eose(timeout=1.0) is EoseReason.ALL_RELAYS
        assert dispatched == [event]
        assert delivered == [event]
        assert pool.ingest.stats.stored == 1
        assert pool.ingest.stats.duplicate == 2
        assert len(pool.store) == 1

    async def test_duplicates_count_as_liveness(
        self, pool, transport, wait_until, make_event
    ) -> None:
        subscription = await open_subscription(pool, transport, wait_until)
        event = make_event()
        for url in RELAYS:
            push_event(transport, url, event)
        push_eose(transport, RELAYS)
        await subscription.wait_eose(timeout=1.0)

        for url in RELAYS:
            health = pool.endpoints[url].health
            assert health.events_received == 1
            assert health.invalid_events == 0
        assert sum(pool.endpoints[url].health.duplicates for url in RELAYS) == 2

    async def test_replaceable_converges(self, pool, transport, wait_until, make_event) -> None:
        subscription = await open_subscription(pool, transport, wait_until)
        versions = [
            make_event(kind=10002, created_at=ts, tags=[["r", f"wss://r{ts}.example.com"]])
            for ts in (100, 200, 150)
        ]
        for url, event in zip(RELAYS, versions, strict=True):
            push_event(transport, url, event)
        push_eose(transport, RELAYS)
        await subscription.wait_eose(timeout=1.0)

        retained = pool.store.get_replaceable(PUBKEY_A, 10002)
        assert retained is not None
        assert retained.created_at == 200


# =============================================================================
# EOSE aggregation and ordering
# =============================================================================


class TestEose:
    """Logical EOSE across relays."""

    async def test_timeout_with_silent_relay(
        self, pool, transport, wait_until, make_event
    ) -> None:
        delivered: list[Event] = []
        subscription = await open_subscription(
            pool, transport, wait_until, on_event=delivered.append, eose_timeout=0.1
        )
        push_event(transport, R1, make_event(created_at=20))
        push_event(transport, R2, make_event(created_at=10))
        push_eose(transport, [R1, R2])

        assert await subscription.wait_eose(timeout=1.0) is EoseReason.TIMEOUT
        assert subscription.relays_done == {R1, R2}
        assert [event.created_at for event in delivered] == [10, 20]

    async def test_backlog_then_live_then_late(
        self, pool, transport, wait_until, make_event
    ) -> None:
        delivered: list[Event] = []
        late: list[Event] = []
        subscription = await open_subscription(
            pool, transport, wait_until, on_event=delivered.append, on_late=late.append
        )
        push_event(transport, R1, make_event(created_at=300))
        push_event(transport, R2, make_event(created_at=100))
        push_eose(transport, RELAYS)
        await subscription.wait_eose(timeout=1.0)

        push_event(transport, R3, make_event(created_at=400))
        push_event(transport, R3, make_event(created_at=200))
        await wait_until(lambda: len(late) == 1)

        assert [event.created_at for event in delivered] == [100, 300, 400]
        assert late[0].created_at == 200

    async def test_closed_counts_as_finished(self, pool, transport, wait_until) -> None:
        subscription = await open_subscription(pool, transport, wait_until)
        push_eose(transport, [R1, R2])
        transport.session(R3).push(["CLOSED", "sub1", "error: shutting down"])
        assert await subscription.wait_eose(timeout=1.0) is EoseReason.ALL_RELAYS

    async def test_fetch(self, pool, transport, wait_until, make_event) -> None:
        task = asyncio.create_task(pool.fetch(Filter(kinds=[1]), relays=[R1]))
        await wait_until(lambda: bool(transport.session(R1).frames("REQ")))
        sub_id = transport.session(R1).frames("REQ")[-1][1]

        push_event(transport, R1, make_event(created_at=2), sub_id)
        push_event(transport, R1, make_event(created_at=1), sub_id)
        push_eose(transport, [R1], sub_id)

        events = await asyncio.wait_for(task, timeout=1.0)
        assert [event.created_at for event in events] == [1, 2]
        assert sub_id not in pool.subscriptions
        await wait_until(lambda: bool(transport.session(R1).frames("CLOSE")))


# =============================================================================
# Close
# =============================================================================


class TestClose:
    """No dispatch after close."""

    async def test_subscription_close(self, pool, transport, wait_until, make_event) -> None:
        delivered: list[Event] = []
        subscription = await open_subscription(
            pool, transport, wait_until, on_event=delivered.append
        )
        subscription.close()
        await wait_until(
            lambda: all(transport.session(url).frames("CLOSE") for url in RELAYS)
        )

        event = make_event(content="too late")
        push_event(transport, R1, event)
        push_eose(transport, RELAYS)
        await asyncio.sleep(0.05)

        assert delivered == []
        assert event.id not in pool.store
        assert "sub1" not in pool.subscriptions

    async def test_pool_close(self, transport, wait_until, make_event) -> None:
        delivered: list[Event] = []
        pool = RelayPool(pool_config(), transport=transport)
        await pool.start()
        await pool.connection(R1).wait_connected(1.0)
        subscription = await pool.subscribe(
            Filter(kinds=[1]), relays=[R1], on_event=delivered.append, subscription_id="sub1"
        )
        connection = pool.connection(R1)
        session = transport.session(R1)

        await pool.close()
        await pool.close()

        pool.on_message(connection, EventMessage("sub1", make_event()))
        assert delivered == []
        assert subscription.closed
        assert session.closed
        assert pool.liveness().total == 0


# =============================================================================
# Validation and filters
# =============================================================================


class TestInvalidDeliveries:
    """Invalid and unrequested events."""

    async def test_invalid_event_not_delivered(
        self, pool, transport, wait_until, make_event
    ) -> None:
        delivered: list[Event] = []
        subscription = await open_subscription(
            pool, transport, wait_until, on_event=delivered.append
        )
        data = make_event().to_dict()
        data["content"] = "tampered"
        transport.session(R1).push(["EVENT", "sub1", data])
        push_eose(transport, RELAYS)
        await subscription.wait_eose(timeout=1.0)

        assert delivered == []
        assert pool.ingest.stats.invalid == 1
        assert pool.endpoints[R1].health.invalid_events == 1

    async def test_malformed_frame_keeps_session(
        self, pool, transport, wait_until, make_event
    ) -> None:
        delivered: list[Event] = []
        subscription = await open_subscription(
            pool, transport, wait_until, on_event=delivered.append
        )
        transport.session(R1).push('["EVENT", "sub1"')
        push_event(transport, R1, make_event())
        push_eose(transport, RELAYS)
        await subscription.wait_eose(timeout=1.0)

        assert len(delivered) == 1
        assert pool.connection(R1).protocol_errors == 1
        assert len(transport.sessions[R1]) == 1

    async def test_event_outside_filters_dropped(
        self, pool, transport, wait_until, make_event
    ) -> None:
        subscription = await open_subscription(pool, transport, wait_until)
        push_event(transport, R1, make_event(kind=7))
        push_eose(transport, RELAYS)
        await subscription.wait_eose(timeout=1.0)

        assert len(pool.store) == 0
        assert subscription.delivered == 0

    async def test_unknown_subscription_ignored(
        self, pool, transport, wait_until, make_event
    ) -> None:
        push_event(transport, R1, make_event(), "unknown")
        await asyncio.sleep(0.02)
        assert len(pool.store) == 0


# =============================================================================
# Authentication
# =============================================================================


class TestAuthRequired:
    """CLOSED auth-required handling."""

    async def test_authenticates_and_retries_once(
        self, transport, fake_signer, wait_until
    ) -> None:
        pool = RelayPool(pool_config(relays=[R1]), transport=transport, signer=fake_signer)
        await pool.start()
        try:
            await pool.connection(R1).wait_connected(1.0)
            subscription = await open_subscription(pool, transport, wait_until)
            session = transport.session(R1)

            session.push(["AUTH", "challenge-1"])
            session.push(["CLOSED", "sub1", "auth-required: members only"])
            await wait_until(lambda: bool(session.frames("AUTH")))

            auth_event = session.frames("AUTH")[-1][1]
            assert ["challenge", "challenge-1"] in auth_event["tags"]
            assert ["relay", R1] in auth_event["tags"]
            session.push(["OK", auth_event["id"], True, ""])
            await wait_until(lambda: len(session.frames("REQ")) == 2)

            assert pool.auth_session(R1).is_authenticated
            assert pool.endpoints[R1].auth_required

            session.push(["CLOSED", "sub1", "auth-required: still no"])
            assert await subscription.wait_eose(timeout=1.0) is EoseReason.ALL_RELAYS
            assert len(session.frames("REQ")) == 2
        finally:
            await pool.close()

    async def test_no_signer_finishes_relay(self, transport, wait_until) -> None:
        pool = RelayPool(pool_config(relays=[R1]), transport=transport)
        await pool.start()
        try:
            await pool.connection(R1).wait_connected(1.0)
            subscription = await open_subscription(pool, transport, wait_until)
            session = transport.session(R1)
            session.push(["AUTH", "challenge-1"])
            session.push(["CLOSED", "sub1", "auth-required: members only"])

            assert await subscription.wait_eose(timeout=1.0) is EoseReason.ALL_RELAYS
            assert session.frames("AUTH") == []
        finally:
            await pool.close()


# =============================================================================
# Publishing
# =============================================================================


class TestPublish:
    """Publish fan-out and per-relay outcomes."""

    async def test_outcomes_per_relay(self, pool, transport, wait_until, make_event) -> None:
        event = make_event(content="note")
        publication = await pool.publish(event)
        await wait_until(lambda: all(transport.session(url).frames("EVENT") for url in RELAYS))

        transport.session(R1).push(["OK", event.id, True, ""])
        transport.session(R2).push(["OK", event.id, False, "blocked: spam"])

        assert await publication.accepted() == R1
        results = await asyncio.wait_for(publication.completed(), timeout=1.0)
        assert publication.outcomes == {
            R1: PublishOutcome.ACCEPTED,
            R2: PublishOutcome.REJECTED,
            R3: PublishOutcome.TIMEOUT,
        }
        assert results[R2].message == "blocked: spam"
        assert event.id in pool.store
        assert pool.endpoints[R3].health.last_error == "no OK received"

    async def test_all_rejected(self, pool, transport, wait_until, make_event) -> None:
        event = make_event()
        publication = await pool.publish(event)
        await wait_until(lambda: all(transport.session(url).frames("EVENT") for url in RELAYS))
        for url in RELAYS:
            transport.session(url).push(["OK", event.id, False, "invalid: no"])

        with pytest.raises(PublishingError) as exc_info:
            await asyncio.wait_for(publication.accepted(), timeout=1.0)
        assert set(exc_info.value.outcomes.values()) == {PublishOutcome.REJECTED}

    async def test_not_connected_is_error(self, transport, make_event) -> None:
        transport.refuse.add(R1)
        pool = RelayPool(pool_config(relays=[R1]), transport=transport)
        await pool.start()
        try:
            publication = await pool.publish(make_event())
            results = await asyncio.wait_for(publication.completed(), timeout=1.0)
            assert results[R1].outcome is PublishOutcome.ERROR
        finally:
            await pool.close()

    async def test_invalid_event_raises(self, pool, make_event) -> None:
        data = make_event().to_dict()
        data["content"] = "tampered"
        with pytest.raises(InvalidEvent):
            await pool.publish(Event.from_dict(data))

    async def test_explicit_relays(self, pool, transport, wait_until, make_event) -> None:
        event = make_event()
        publication = await pool.publish(event, relays=[R2])
        await wait_until(lambda: bool(transport.session(R2).frames("EVENT")))
        transport.session(R2).push(["OK", event.id, True, "duplicate: have it"])
        assert await publication.accepted() == R2
        assert transport.session(R1).frames("EVENT") == []

    async def test_relay_silent_after_auth(
        self, transport, fake_signer, wait_until, make_event
    ) -> None:
        config = pool_config(relays=[R1], publish_timeout=2.0, auth=AuthConfig(auth_timeout=0.1))
        pool = RelayPool(config, transport=transport, signer=fake_signer)
        await pool.start()
        try:
            await pool.connection(R1).wait_connected(1.0)
            event = make_event()
            publication = await pool.publish(event)
            session = transport.session(R1)
            await wait_until(lambda: bool(session.frames("EVENT")))

            session.push(["AUTH", "challenge-1"])
            session.push(["OK", event.id, False, "auth-required: members only"])
            await wait_until(lambda: bool(session.frames("AUTH")))

            results = await asyncio.wait_for(publication.completed(), timeout=1.0)
            assert results[R1].outcome is PublishOutcome.REJECTED
            assert "no OK for AUTH" in results[R1].message
            assert pool.auth_session(R1).state.value == "rejected"
        finally:
            await pool.close()

    async def test_publish_draft_without_signer(self, pool) -> None:
        draft = EventDraft(pubkey=PUBKEY_A, kind=1, content="hi", created_at=1)
        with pytest.raises(SignerUnavailable):
            await pool.publish_draft(draft)

    async def test_publish_draft_signs(
        self, pool, fake_signer, transport, wait_until
    ) -> None:
        draft = EventDraft(pubkey=PUBKEY_A, kind=1, content="hi", created_at=1)
        publication = await pool.publish_draft(draft, fake_signer, relays=[R1])
        assert fake_signer.drafts == [draft]
        assert publication.event.id == draft.compute_id()
        await wait_until(lambda: bool(transport.session(R1).frames("EVENT")))


# =============================================================================
# Relay selection
# =============================================================================


class TestRelayLists:
    """NIP-65 relay lists and inbox/outbox routing."""

    async def test_relay_list_updates_selection(self, pool, make_event) -> None:
        relay_list = make_event(
            pubkey=PUBKEY_B,
            kind=10002,
            created_at=100,
            tags=[["r", R4, "write"], ["r", R2, "read"], ["r", R3]],
        )
        pool.ingest.ingest(relay_list)

        assert pool.selector.write_relays_for(PUBKEY_B) == [R4, R3]
        assert pool.selector.read_relays_for(PUBKEY_B) == [R4, R3]
        assert pool.relay_list(PUBKEY_B).read == (R2, R3)

    async def test_older_list_ignored(self, pool, make_event) -> None:
        newer = make_event(pubkey=PUBKEY_B, kind=10002, created_at=200, tags=[["r", R1]])
        older = make_event(pubkey=PUBKEY_B, kind=10002, created_at=100, tags=[["r", R2]])
        assert pool.ingest_relay_list(newer)
        assert not pool.ingest_relay_list(older)
        assert pool.selector.outbox_of(PUBKEY_B) == [R1]

    async def test_subscribe_uses_author_inbox(
        self, pool, transport, wait_until
    ) -> None:
        pool.set_relay_list(PUBKEY_B, inbox=[R4])
        subscription = await pool.subscribe(Filter(authors=[PUBKEY_B]))

        assert subscription.relays == (R4,)
        assert R4 in pool.endpoints
        assert PUBKEY_B in pool.endpoints[R4].inbox_for
        await wait_until(lambda: R4 in transport.sessions)
        await wait_until(lambda: bool(transport.session(R4).frames("REQ")))

    async def test_publish_uses_author_outbox(self, pool, make_event) -> None:
        pool.set_relay_list(PUBKEY_B, outbox=[R2])
        event = make_event(pubkey=PUBKEY_B)
        publication = await pool.publish(event)
        assert publication.relays == (R2,)


# =============================================================================
# Health and resubscription
# =============================================================================


class TestLiveness:
    """Pool liveness and relay re-admission."""

    async def test_partial_connectivity(self, transport) -> None:
        transport.refuse.add(R3)
        pool = RelayPool(pool_config(), transport=transport)
        await pool.start()
        try:
            await pool.connection(R1).wait_connected(1.0)
            await pool.connection(R2).wait_connected(1.0)
            liveness = pool.liveness()
            assert liveness.total == 3
            assert liveness.connected == 2
            assert not liveness.offline
        finally:
            await pool.close()

    async def test_offline_when_all_refused(self, transport, wait_until) -> None:
        transport.refuse.update(RELAYS)
        pool = RelayPool(pool_config(), transport=transport)
        await pool.start()
        try:
            await wait_until(lambda: all(transport.attempts[url] >= 3 for url in RELAYS))
            liveness = pool.liveness()
            assert liveness.offline
            assert liveness.degraded == 3
            assert {status.state for status in liveness.relays} == {"degraded"}
        finally:
            await pool.close()

    async def test_refused_relay_unhealthy_and_ranked_last(self, transport, wait_until) -> None:
        transport.refuse.add(R3)
        config = pool_config(health=HealthConfig(window_size=5, min_samples=3))
        pool = RelayPool(config, transport=transport)
        await pool.start()
        try:
            health = pool.endpoints[R3].health
            await wait_until(lambda: health.samples >= 3)
            assert not health.is_healthy
            assert health.last_error == "connection refused"
            assert pool.selector.rank([R3, R1, R2])[:2] == [R1, R2]
            assert pool.liveness().unhealthy >= 1
        finally:
            await pool.close()

    async def test_probe_readmits_connected_relay(self, transport) -> None:
        config = pool_config(health=HealthConfig(window_size=2, min_samples=1))
        pool = RelayPool(config, transport=transport)
        await pool.start()
        try:
            await pool.connection(R1).wait_connected(1.0)
            health = pool.endpoints[R1].health
            health.record_failure("timeout")
            health.record_failure("timeout")
            assert not health.is_healthy
            assert pool.liveness().unhealthy == 1

            assert pool.probe() == [R1]
            assert health.is_healthy
        finally:
            await pool.close()


class TestResubscribe:
    """Reconnect behavior of open subscriptions."""

    async def test_req_resent_since_watermark(
        self, pool, transport, wait_until, make_event
    ) -> None:
        subscription = await open_subscription(pool, transport, wait_until)
        push_event(transport, R1, make_event(created_at=100))
        push_eose(transport, RELAYS)
        await subscription.wait_eose(timeout=1.0)

        transport.session(R1).drop()
        await wait_until(lambda: len(transport.sessions[R1]) == 2)
        await wait_until(lambda: bool(transport.session(R1).frames("REQ")))

        _, sub_id, *filters = transport.session(R1).frames("REQ")[-1]
        assert sub_id == "sub1"
        assert all(flt["since"] == 100 for flt in filters)
        assert pool.connection(R1).epoch == 2
