"""
Unit tests for client.selection module.

Tests:
- RelayHealth window, score, thresholds and readmit
- RelayEndpoint roles
- RelaySelector inbox/outbox policy, defaults and fallbacks
- Health-aware ranking with min_relays and per-author caps
"""

from relaysync.client.configs import HealthConfig, SelectionConfig
from relaysync.client.selection import RelayEndpoint, RelayHealth, RelayRole, RelaySelector
from relaysync.models.filter import Filter
from relaysync.models.relay import Relay


PUBKEY_A = "a" * 64
PUBKEY_B = "b" * 64
R1 = "wss://relay1.example.com"
R2 = "wss://relay2.example.com"
R3 = "wss://relay3.example.com"
R4 = "wss://relay4.example.com"


def unhealthy_endpoint(url: str) -> RelayEndpoint:
    endpoint = RelayEndpoint(Relay(url), health=RelayHealth(HealthConfig(min_samples=1)))
    endpoint.health.record_failure("down")
    return endpoint


# =============================================================================
# Health
# =============================================================================


class TestRelayHealth:
    """Rolling health window."""

    def test_no_samples_is_healthy(self) -> None:
        health = RelayHealth()
        assert health.score == 1.0
        assert health.is_healthy

    def test_min_samples_required(self) -> None:
        health = RelayHealth(HealthConfig(min_samples=3))
        health.record_failure()
        health.record_failure()
        assert health.is_healthy
        health.record_failure("timeout")
        assert not health.is_healthy
        assert health.last_error == "timeout"

    def test_window_rolls(self) -> None:
        health = RelayHealth(HealthConfig(window_size=4, min_samples=1))
        for _ in range(4):
            health.record_failure()
        for _ in range(4):
            health.record_success()
        assert health.score == 1.0
        assert health.failures == 4

    def test_threshold(self) -> None:
        health = RelayHealth(HealthConfig(window_size=4, min_samples=4, unhealthy_threshold=0.5))
        health.record_success()
        health.record_success()
        health.record_failure()
        health.record_failure()
        assert health.score == 0.5
        assert health.is_healthy

    def test_deliveries(self) -> None:
        health = RelayHealth()
        health.record_delivery()
        health.record_delivery(duplicate=True)
        health.record_delivery(valid=False)
        assert health.events_received == 3
        assert health.duplicates == 1
        assert health.invalid_events == 1
        assert health.successes == 2
        assert health.failures == 1

    def test_readmit(self) -> None:
        health = RelayHealth(HealthConfig(min_samples=1))
        health.record_failure()
        assert not health.is_healthy
        health.readmit()
        assert health.is_healthy
        assert health.samples == 1


class TestRelayEndpoint:
    """Role lookup."""

    def test_roles(self) -> None:
        endpoint = RelayEndpoint(Relay(R1), inbox_for={PUBKEY_A}, outbox_for={PUBKEY_A, PUBKEY_B})
        assert endpoint.url == R1
        assert endpoint.roles_for(PUBKEY_A) == {RelayRole.INBOX, RelayRole.OUTBOX}
        assert endpoint.roles_for(PUBKEY_B) == {RelayRole.OUTBOX}
        assert endpoint.roles_for("c" * 64) == set()


# =============================================================================
# Selection
# =============================================================================


class TestRelaySelector:
    """Inbox/outbox selection."""

    def test_assigned_roles(self) -> None:
        selector = RelaySelector({}, [R1])
        selector.set_roles(PUBKEY_A, inbox=[R2], outbox=["ws://Relay3.example.com/"])
        assert selector.read_relays_for(PUBKEY_A) == [R2]
        assert selector.write_relays_for(PUBKEY_A) == [R3]
        assert selector.authors_with_inbox(R2) == [PUBKEY_A]
        assert selector.authors_with_outbox(R3) == [PUBKEY_A]

    def test_defaults_when_unassigned(self) -> None:
        selector = RelaySelector({}, [R1, R2])
        assert selector.read_relays_for(PUBKEY_B) == [R1, R2]
        assert selector.write_relays_for(PUBKEY_B) == [R1, R2]

    def test_fallback_without_defaults(self) -> None:
        selector = RelaySelector({}, [], SelectionConfig(fallback_relays=[R4]))
        assert selector.read_relays_for(PUBKEY_A) == [R4]

    def test_per_author_cap(self) -> None:
        selector = RelaySelector({}, [], SelectionConfig(max_relays_per_author=2))
        selector.set_roles(PUBKEY_A, inbox=[R1, R2, R3])
        assert selector.read_relays_for(PUBKEY_A) == [R1, R2]

    def test_unhealthy_ordered_last(self) -> None:
        endpoints = {R1: unhealthy_endpoint(R1)}
        selector = RelaySelector(endpoints, [], SelectionConfig(min_relays=3))
        assert selector.rank([R1, R2, R3]) == [R2, R3, R1]

    def test_unhealthy_only_to_reach_min(self) -> None:
        endpoints = {R1: unhealthy_endpoint(R1)}
        selector = RelaySelector(endpoints, [], SelectionConfig(min_relays=2))
        assert selector.rank([R1, R2, R3]) == [R2, R3]
        assert selector.rank([R1, R2]) == [R2, R1]

    def test_all_unhealthy_still_selected(self) -> None:
        endpoints = {R1: unhealthy_endpoint(R1), R2: unhealthy_endpoint(R2)}
        selector = RelaySelector(endpoints, [], SelectionConfig(min_relays=1))
        assert selector.rank([R1, R2]) == [R1]

    def test_relays_for_filters(self) -> None:
        selector = RelaySelector({}, [R1])
        selector.set_roles(PUBKEY_A, inbox=[R2])
        selector.set_roles(PUBKEY_B, inbox=[R3, R2])
        filters = [Filter(authors=[PUBKEY_A, PUBKEY_B]), Filter(kinds=[1])]
        assert selector.relays_for_filters(filters) == [R2, R3, R1]
