"""
Relay pool: fan-out of requests and fan-in of event streams.

[RelayPool][relaysync.client.pool.RelayPool] owns every relay the client
talks to. Each registered [RelayEndpoint][relaysync.client.selection.RelayEndpoint]
gets one supervised [RelayConnection][relaysync.client.connection.RelayConnection]
and one [AuthSession][relaysync.client.auth.AuthSession]. The pool listens
to all connections and routes:

* ``EVENT`` frames through the [EventIngestPipeline][relaysync.client.ingest.EventIngestPipeline]
  into the owning [Subscription][relaysync.client.subscription.Subscription];
* ``EOSE``/``CLOSED`` into the subscription's EOSE aggregation;
* ``OK`` into the pending [Publication][relaysync.client.publication.Publication];
* ``NOTICE`` into the log.

Relay failures are isolated: a relay that drops, times out, or misbehaves
affects its own health score and nothing else. Losing every relay is
reported by [liveness()][relaysync.client.pool.RelayPool.liveness] as
``offline``; the pool keeps serving the store and keeps redialing.

Relay selection follows the inbox/outbox model in
[RelaySelector][relaysync.client.selection.RelaySelector]. Kind 10002 relay
lists flowing through the ingest pipeline update the selector automatically.

Examples:
    ```python
    async with RelayPool(RelayPoolConfig(relays=["wss://nos.lol"])) as pool:
        subscription = await pool.subscribe(
            [Filter(kinds=(1,), limit=50)],
            on_event=print,
        )
        await subscription.wait_eose()
        publication = await pool.publish(event)
        await publication.accepted()
    ```
"""

from __future__ import annotations

import asyncio
import contextlib
import secrets
from collections.abc import Coroutine, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType, TracebackType
from typing import TYPE_CHECKING, Any, Self

from relaysync.core.exceptions import (
    AuthRejected,
    ConnectivityError,
    InvalidEvent,
    RelayConnectionError,
    SignerUnavailable,
)
from relaysync.core.logger import Logger
from relaysync.core.metrics import RELAY_GAUGE
from relaysync.models.constants import EventKind
from relaysync.models.event import Event, EventDraft
from relaysync.models.filter import Filter
from relaysync.models.relay import Relay, normalize_relay_url
from relaysync.nips.nip01 import (
    AuthMessage,
    ClosedMessage,
    CountMessage,
    EoseMessage,
    EventMessage,
    NoticeMessage,
    OkMessage,
    encode_close,
    encode_event,
    encode_req,
)
from relaysync.nips.nip65 import RelayList, parse_relay_list
from relaysync.utils.transport import AiohttpTransport

from .auth import AuthSession
from .configs import AuthPreference, RelayPoolConfig
from .connection import RelayConnection
from .ingest import EventIngestPipeline, IngestOutcome
from .publication import Publication, PublishOutcome
from .selection import RelayEndpoint, RelayHealth, RelaySelector
from .subscription import EoseCallback, EventCallback, Subscription


if TYPE_CHECKING:
    from relaysync.nips.nip01 import RelayMessage
    from relaysync.utils.keys import Signer
    from relaysync.utils.transport import Transport

    from .store import EventStore


@dataclass(frozen=True, slots=True)
class RelayStatus:
    """Point-in-time view of one relay."""

    url: str
    state: str
    authenticated: bool
    health_score: float
    healthy: bool


@dataclass(frozen=True, slots=True)
class PoolLiveness:
    """Aggregate connectivity of the pool.

    Attributes:
        total: Registered relays.
        connected: Relays with an open session.
        degraded: Relays past their retry budget (still redialed).
        unhealthy: Relays deprioritized by their health window.
        offline: ``True`` when relays are registered but none is connected.
    """

    total: int
    connected: int
    degraded: int
    unhealthy: int
    relays: tuple[RelayStatus, ...] = field(default=())

    @property
    def offline(self) -> bool:
        return self.total > 0 and self.connected == 0


class RelayPool:
    """Registry of relay endpoints with subscription and publish fan-out.

    Args:
        config: Pool configuration (default relays, timeouts, policies).
        transport: WebSocket factory; defaults to
            [AiohttpTransport][relaysync.utils.transport.AiohttpTransport]
            using ``config.networks``.
        signer: Signer for NIP-42 authentication and ``publish_draft()``.
        store: Event store shared with the ingest pipeline.
        logger: Structured logger.
        metrics_enabled: Update per-relay Prometheus gauges.
    """

    def __init__(
        self,
        config: RelayPoolConfig | None = None,
        *,
        transport: Transport | None = None,
        signer: Signer | None = None,
        store: EventStore | None = None,
        logger: Logger | None = None,
        metrics_enabled: bool = False,
    ) -> None:
        self._config = config or RelayPoolConfig()
        connection = self._config.connection
        self._transport: Transport = transport or AiohttpTransport(
            self._config.networks,
            heartbeat=connection.heartbeat,
            max_message_size=connection.max_message_size,
        )
        self._signer = signer
        self._logger = logger or Logger("relaysync.client.pool")
        self._metrics_enabled = metrics_enabled

        self._endpoints: dict[str, RelayEndpoint] = {}
        self._connections: dict[str, RelayConnection] = {}
        self._auth: dict[str, AuthSession] = {}
        self._selector = RelaySelector(self._endpoints, self._config.relays, self._config.selection)
        self._ingest = EventIngestPipeline(
            store,
            self._config.ingest,
            logger=self._logger,
            metrics_enabled=metrics_enabled,
        )
        self._ingest.add_listener(self._on_ingested)

        self._subscriptions: dict[str, Subscription] = {}
        self._publications: dict[str, Publication] = {}
        self._relay_lists: dict[str, tuple[int, RelayList]] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self._probe_task: asyncio.Task[None] | None = None
        self._started = False

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def config(self) -> RelayPoolConfig:
        return self._config

    @property
    def store(self) -> EventStore:
        return self._ingest.store

    @property
    def ingest(self) -> EventIngestPipeline:
        return self._ingest

    @property
    def selector(self) -> RelaySelector:
        return self._selector

    @property
    def endpoints(self) -> Mapping[str, RelayEndpoint]:
        return MappingProxyType(self._endpoints)

    @property
    def subscriptions(self) -> Mapping[str, Subscription]:
        return MappingProxyType(self._subscriptions)

    @property
    def is_started(self) -> bool:
        return self._started

    def connection(self, url: str) -> RelayConnection | None:
        return self._connections.get(normalize_relay_url(url))

    def auth_session(self, url: str) -> AuthSession | None:
        return self._auth.get(normalize_relay_url(url))

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Register and dial the configured default relays and start the health probe."""
        if self._started:
            return
        self._started = True
        for url in self._config.relays:
            await self.add_relay(url)
        for connection in list(self._connections.values()):
            # Relays registered before start() were not dialed yet.
            await connection.connect()
        self._probe_task = asyncio.create_task(self._probe_loop(), name="relay-pool-probe")
        self._logger.info("pool_started", relays=len(self._endpoints))

    async def close(self) -> None:
        """Close every subscription, publication, session and connection. Idempotent."""
        if not self._started and not self._connections:
            return
        self._started = False

        for subscription in list(self._subscriptions.values()):
            subscription.close()
        for publication in list(self._publications.values()):
            publication.abort("pool closed")
        self._publications.clear()

        if self._probe_task is not None:
            self._probe_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._probe_task
            self._probe_task = None

        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()

        for session in self._auth.values():
            await session.close()
        for connection in self._connections.values():
            connection.remove_listener(self)
            await connection.close()
        self._auth.clear()
        self._connections.clear()
        self._endpoints.clear()
        self._logger.info("pool_closed")

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # -------------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------------

    async def add_relay(
        self,
        url: str,
        *,
        capabilities: Iterable[str] = (),
        auth_required: bool = False,
    ) -> RelayEndpoint:
        """Register a relay (idempotent) and dial it if the pool is running.

        Raises:
            ValueError: If *url* is not a valid relay URL.
        """
        relay = Relay(url)
        endpoint = self._endpoints.get(relay.url)
        if endpoint is not None:
            endpoint.capabilities.update(capabilities)
            endpoint.auth_required = endpoint.auth_required or auth_required
            return endpoint

        endpoint = RelayEndpoint(
            relay=relay,
            capabilities=set(capabilities),
            auth_required=auth_required,
            health=RelayHealth(self._config.health),
        )
        for pubkey in self._selector.authors_with_inbox(relay.url):
            endpoint.inbox_for.add(pubkey)
        for pubkey in self._selector.authors_with_outbox(relay.url):
            endpoint.outbox_for.add(pubkey)
        self._endpoints[relay.url] = endpoint

        connection = RelayConnection(
            relay.url,
            self._transport,
            self._config.connection,
            logger=self._logger,
        )
        self._auth[relay.url] = AuthSession(
            connection, self._signer, self._config.auth, logger=self._logger
        )
        connection.add_listener(self)
        self._connections[relay.url] = connection
        self._logger.debug("relay_added", relay=relay.url, network=relay.network)

        if self._started:
            await connection.connect()
        return endpoint

    async def _ensure_relays(self, urls: Iterable[str]) -> None:
        for url in urls:
            if url not in self._endpoints:
                await self.add_relay(url)

    # -------------------------------------------------------------------------
    # Relay lists
    # -------------------------------------------------------------------------

    def set_relay_list(
        self,
        pubkey: str,
        *,
        inbox: Iterable[str] | None = None,
        outbox: Iterable[str] | None = None,
    ) -> None:
        """Assign *pubkey*'s inbox (read) and outbox (publish) relays."""
        self._selector.set_roles(pubkey, inbox=inbox, outbox=outbox)
        inbox_urls = set(self._selector.inbox_of(pubkey))
        outbox_urls = set(self._selector.outbox_of(pubkey))
        for url, endpoint in self._endpoints.items():
            if inbox is not None:
                if url in inbox_urls:
                    endpoint.inbox_for.add(pubkey)
                else:
                    endpoint.inbox_for.discard(pubkey)
            if outbox is not None:
                if url in outbox_urls:
                    endpoint.outbox_for.add(pubkey)
                else:
                    endpoint.outbox_for.discard(pubkey)

    def ingest_relay_list(self, event: Event) -> bool:
        """Apply a kind 10002 relay list if it is newer than the one in use.

        The author's ``write`` relays become both their outbox and inbox
        (others read the author's events where the author publishes them).

        Returns:
            ``True`` if the assignment changed.

        Raises:
            ValueError: If *event* is not a relay-list event.
        """
        relay_list = parse_relay_list(event)
        current = self._relay_lists.get(event.pubkey)
        if current is not None and current[0] >= event.created_at:
            return False
        self._relay_lists[event.pubkey] = (event.created_at, relay_list)
        self.set_relay_list(event.pubkey, inbox=relay_list.write, outbox=relay_list.write)
        self._logger.debug(
            "relay_list_applied",
            pubkey=event.pubkey,
            read=len(relay_list.read),
            write=len(relay_list.write),
        )
        return True

    def relay_list(self, pubkey: str) -> RelayList | None:
        """The last NIP-65 list applied for *pubkey*, if any."""
        current = self._relay_lists.get(pubkey)
        return current[1] if current is not None else None

    def _on_ingested(self, event: Event) -> None:
        if event.kind == EventKind.RELAY_LIST:
            self.ingest_relay_list(event)

    # -------------------------------------------------------------------------
    # Connection listener
    # -------------------------------------------------------------------------

    def on_connected(self, connection: RelayConnection) -> None:
        endpoint = self._endpoints.get(connection.url)
        if endpoint is not None:
            endpoint.health.record_success()
        for subscription in list(self._subscriptions.values()):
            if connection.url in subscription.relays and not subscription.closed:
                self._spawn(
                    self._send_req(subscription, connection.url),
                    name=f"req:{subscription.id}:{connection.url}",
                )

    def on_disconnected(self, connection: RelayConnection) -> None:
        endpoint = self._endpoints.get(connection.url)
        if endpoint is not None and self._started:
            endpoint.health.record_failure("connection lost")

    def on_connect_failed(self, connection: RelayConnection, error: ConnectivityError) -> None:
        endpoint = self._endpoints.get(connection.url)
        if endpoint is not None:
            endpoint.health.record_failure(str(error))

    def on_message(self, connection: RelayConnection, message: RelayMessage) -> None:
        url = connection.url
        if isinstance(message, EventMessage):
            self._on_event(url, message)
        elif isinstance(message, EoseMessage):
            subscription = self._subscriptions.get(message.subscription_id)
            if subscription is not None:
                subscription.relay_finished(url)
        elif isinstance(message, OkMessage):
            publication = self._publications.get(message.event_id)
            if publication is not None:
                publication.resolve_ack(url, message)
        elif isinstance(message, ClosedMessage):
            self._on_closed(url, message)
        elif isinstance(message, NoticeMessage):
            self._logger.info("relay_notice", relay=url, notice=message.message)
        elif isinstance(message, AuthMessage):
            self._logger.debug("relay_auth_challenge", relay=url)
        elif isinstance(message, CountMessage):
            self._logger.debug("relay_count_ignored", relay=url, count=message.count)

    def _on_event(self, url: str, message: EventMessage) -> None:
        subscription = self._subscriptions.get(message.subscription_id)
        if subscription is None or subscription.closed:
            self._logger.debug(
                "event_for_unknown_subscription",
                relay=url,
                subscription=message.subscription_id,
            )
            return
        event = message.event
        if not subscription.matches(event):
            self._logger.debug("event_outside_filters", relay=url, event_id=event.id)
            return

        result = self._ingest.ingest(event, url)
        endpoint = self._endpoints.get(url)
        if endpoint is not None:
            endpoint.health.record_delivery(
                duplicate=result.outcome is IngestOutcome.DUPLICATE,
                valid=result.valid,
            )
        if result.valid and result.outcome is not IngestOutcome.STALE:
            subscription.deliver(event)

    def _on_closed(self, url: str, message: ClosedMessage) -> None:
        subscription = self._subscriptions.get(message.subscription_id)
        if subscription is None or subscription.closed:
            return
        endpoint = self._endpoints.get(url)
        session = self._auth.get(url)
        if (
            message.auth_required
            and endpoint is not None
            and session is not None
            and session.preference is not AuthPreference.NEVER
            and subscription.mark_auth_retry(url)
        ):
            endpoint.auth_required = True
            endpoint.capabilities.add("nip-42")
            self._logger.info("subscription_auth_required", relay=url, subscription=subscription.id)
            self._spawn(
                self._send_req(subscription, url, authenticated=True),
                name=f"req-auth:{subscription.id}:{url}",
            )
            return
        self._logger.info(
            "subscription_closed_by_relay",
            relay=url,
            subscription=subscription.id,
            reason=message.message,
        )
        subscription.relay_finished(url)

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    async def subscribe(
        self,
        filters: Filter | Sequence[Filter],
        *,
        relays: Iterable[str] | None = None,
        on_event: EventCallback | None = None,
        on_eose: EoseCallback | None = None,
        on_late: EventCallback | None = None,
        eose_timeout: float | None = None,
        subscription_id: str | None = None,
    ) -> Subscription:
        """Open a subscription across the relevant relays.

        Returns as soon as the ``REQ`` frames are scheduled; events arrive
        through the callbacks or by iterating the returned handle.

        Args:
            filters: One filter or several (OR-ed).
            relays: Explicit relay URLs; by default the inbox relays of the
                filters' authors, or the default relays.
            on_event: Main-stream callback (ordered, deduplicated).
            on_eose: Called once at the logical EOSE.
            on_late: Called for live events behind the watermark.
            eose_timeout: Override ``config.eose_timeout``.
            subscription_id: Override the generated wire id.

        Raises:
            ValueError: If no filter is given or a relay URL is invalid.
        """
        filter_list = [filters] if isinstance(filters, Filter) else list(filters)
        if not filter_list:
            raise ValueError("subscribe needs at least one filter")
        if relays is not None:
            targets = list(dict.fromkeys(normalize_relay_url(url) for url in relays))
        else:
            targets = self._selector.relays_for_filters(filter_list)
        await self._ensure_relays(targets)

        sub_id = subscription_id or secrets.token_hex(8)
        encode_req(sub_id, filter_list)  # validate id and filters before registering
        subscription = Subscription(
            sub_id,
            filter_list,
            targets,
            on_event=on_event,
            on_eose=on_eose,
            on_late=on_late,
            on_close=self._release,
            seen_limit=self._config.subscription_seen_limit,
            logger=self._logger,
        )
        self._subscriptions[sub_id] = subscription
        subscription.start_timer(eose_timeout or self._config.eose_timeout)

        for url in targets:
            connection = self._connections[url]
            if connection.is_connected:
                self._spawn(self._send_req(subscription, url), name=f"req:{sub_id}:{url}")
        self._logger.debug("subscription_opened", subscription=sub_id, relays=len(targets))
        return subscription

    async def fetch(
        self,
        filters: Filter | Sequence[Filter],
        *,
        relays: Iterable[str] | None = None,
        eose_timeout: float | None = None,
    ) -> list[Event]:
        """Subscribe, collect the backlog until the logical EOSE, and close.

        Returns:
            The backlog in ascending ``(created_at, id)`` order.
        """
        events: list[Event] = []
        subscription = await self.subscribe(
            filters, relays=relays, on_event=events.append, eose_timeout=eose_timeout
        )
        try:
            await subscription.wait_eose()
        finally:
            subscription.close()
        return events

    async def _send_req(
        self, subscription: Subscription, url: str, *, authenticated: bool = False
    ) -> None:
        if subscription.closed:
            return
        connection = self._connections.get(url)
        session = self._auth.get(url)
        endpoint = self._endpoints.get(url)
        if connection is None or session is None or endpoint is None:
            return
        frame = encode_req(subscription.id, subscription.resume_filters())
        try:
            if authenticated or (endpoint.auth_required and not session.is_authenticated):
                await session.send_authenticated(frame)
            else:
                await connection.send(frame)
        except RelayConnectionError as e:
            # Re-sent from on_connected once the relay is back.
            self._logger.debug("req_send_failed", relay=url, subscription=subscription.id, error=str(e))
        except AuthRejected as e:
            self._logger.warning(
                "subscription_auth_failed", relay=url, subscription=subscription.id, error=str(e)
            )
            subscription.relay_finished(url)

    def _release(self, subscription: Subscription) -> None:
        if self._subscriptions.get(subscription.id) is not subscription:
            return
        del self._subscriptions[subscription.id]
        for url in subscription.relays:
            connection = self._connections.get(url)
            if connection is not None and connection.is_connected:
                self._spawn(
                    self._send_close(connection, subscription.id),
                    name=f"close:{subscription.id}:{url}",
                )

    async def _send_close(self, connection: RelayConnection, subscription_id: str) -> None:
        try:
            await connection.send(encode_close(subscription_id))
        except RelayConnectionError as e:
            self._logger.debug("close_send_failed", relay=connection.url, error=str(e))

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    async def publish(self, event: Event, *, relays: Iterable[str] | None = None) -> Publication:
        """Send a signed event to the author's outbox relays.

        The event is validated and added to the local store first. Returns
        as soon as the sends are scheduled.

        Raises:
            InvalidEvent: If the event's id or signature does not verify.
            ValueError: If a relay URL is invalid.
        """
        result = self._ingest.ingest(event)
        if result.outcome is IngestOutcome.INVALID:
            raise InvalidEvent(result.error or "invalid event", event.id)

        if relays is not None:
            targets = list(dict.fromkeys(normalize_relay_url(url) for url in relays))
        else:
            targets = self._selector.write_relays_for(event.pubkey)
        await self._ensure_relays(targets)

        existing = self._publications.get(event.id)
        if existing is not None and not existing.done:
            return existing

        publication = Publication(event, targets)
        if publication.done:
            return publication
        self._publications[event.id] = publication
        for url in targets:
            self._spawn(self._publish_to(publication, url), name=f"publish:{event.id[:8]}:{url}")
        self._logger.debug("publish_started", event_id=event.id, relays=len(targets))
        return publication

    async def publish_draft(
        self,
        draft: EventDraft,
        signer: Signer | None = None,
        *,
        relays: Iterable[str] | None = None,
    ) -> Publication:
        """Sign *draft* and publish it.

        Raises:
            SignerUnavailable: If no signer is available or it cannot be reached.
            SignerRejected: If the signer declines.
        """
        signer = signer or self._signer
        if signer is None:
            raise SignerUnavailable("no signer configured")
        sig = await signer.sign(draft)
        return await self.publish(draft.finalize(sig), relays=relays)

    async def _publish_to(self, publication: Publication, url: str) -> None:
        connection = self._connections[url]
        session = self._auth[url]
        endpoint = self._endpoints[url]
        timeout = self._config.publish_timeout
        frame = encode_event(publication.event)

        try:
            if not await connection.wait_connected(timeout):
                self._finish_publish(publication, endpoint, PublishOutcome.ERROR, "not connected")
                return

            ack = publication.expect_ack(url)
            await connection.send(frame)
            try:
                message = await asyncio.wait_for(ack, timeout=timeout)
            except TimeoutError:
                self._finish_publish(publication, endpoint, PublishOutcome.TIMEOUT, "no OK received")
                return

            if message.auth_required and session.preference is not AuthPreference.NEVER:
                self._logger.info("publish_auth_required", relay=url, event_id=publication.event.id)
                ack = publication.expect_ack(url)
                await session.send_authenticated(frame)
                try:
                    message = await asyncio.wait_for(ack, timeout=timeout)
                except TimeoutError:
                    self._finish_publish(publication, endpoint, PublishOutcome.TIMEOUT, "no OK after auth")
                    return
        except RelayConnectionError as e:
            self._finish_publish(publication, endpoint, PublishOutcome.ERROR, str(e))
            return
        except AuthRejected as e:
            self._finish_publish(publication, endpoint, PublishOutcome.REJECTED, str(e))
            return

        outcome = PublishOutcome.ACCEPTED if message.accepted else PublishOutcome.REJECTED
        self._finish_publish(publication, endpoint, outcome, message.message)

    def _finish_publish(
        self,
        publication: Publication,
        endpoint: RelayEndpoint,
        outcome: PublishOutcome,
        message: str,
    ) -> None:
        if outcome in (PublishOutcome.ACCEPTED, PublishOutcome.REJECTED):
            endpoint.health.record_success()
        else:
            endpoint.health.record_failure(message)
        self._logger.debug(
            "publish_result",
            relay=endpoint.url,
            event_id=publication.event.id,
            outcome=outcome,
            message=message,
        )
        publication.record(endpoint.url, outcome, message)
        if publication.done and self._publications.get(publication.event.id) is publication:
            del self._publications[publication.event.id]

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    def liveness(self) -> PoolLiveness:
        """Snapshot of relay connectivity and health."""
        statuses = tuple(
            RelayStatus(
                url=url,
                state=self._connections[url].state.value,
                authenticated=self._auth[url].is_authenticated,
                health_score=endpoint.health.score,
                healthy=endpoint.health.is_healthy,
            )
            for url, endpoint in self._endpoints.items()
        )
        liveness = PoolLiveness(
            total=len(statuses),
            connected=sum(1 for conn in self._connections.values() if conn.is_connected),
            degraded=sum(1 for conn in self._connections.values() if conn.is_degraded),
            unhealthy=sum(1 for status in statuses if not status.healthy),
            relays=statuses,
        )
        if self._metrics_enabled:
            for status in statuses:
                RELAY_GAUGE.labels(relay=status.url, name="health_score").set(status.health_score)
                RELAY_GAUGE.labels(relay=status.url, name="connected").set(
                    float(status.state == "connected")
                )
                RELAY_GAUGE.labels(relay=status.url, name="degraded").set(
                    float(status.state == "degraded")
                )
        return liveness

    def probe(self) -> list[str]:
        """Re-admit unhealthy relays whose connection is open again.

        Returns:
            URLs of the re-admitted relays.
        """
        readmitted: list[str] = []
        for url, endpoint in self._endpoints.items():
            if endpoint.health.is_healthy:
                continue
            if self._connections[url].is_connected:
                endpoint.health.readmit()
                readmitted.append(url)
                self._logger.info("relay_readmitted", relay=url)
        return readmitted

    async def _probe_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.health.probe_interval)
            self.probe()
            liveness = self.liveness()
            if liveness.offline:
                self._logger.warning("pool_offline", relays=liveness.total)
