"""How relays on each network are dialed.

Relays are classified by [Relay][relaysync.models.relay.Relay] from their
host. Clearnet and local relays are dialed directly; Tor, I2P and Lokinet
relays go through the SOCKS5 proxy of their network and are refused while
that network is disabled.

Overlay handshakes are slow, so each network may raise the pool's connect
timeout with its own ``connect_timeout`` floor.

Only the keys given in YAML are overridden; the rest keep the network's
defaults:

```yaml
networks:
  tor:
    enabled: true          # proxy_url stays socks5://127.0.0.1:9050
  i2p:
    enabled: true
    proxy_url: socks5://10.0.0.2:4447
```
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, model_validator

from relaysync.models.constants import NetworkType


class NetworkConfig(BaseModel):
    """Dial settings of one network."""

    enabled: bool = False
    proxy_url: str | None = Field(default=None, description="SOCKS5 proxy; None dials directly")
    connect_timeout: float | None = Field(
        default=None, ge=1.0, le=120.0, description="Minimum connect timeout on this network"
    )


_DEFAULTS: dict[str, dict[str, Any]] = {
    "clearnet": {"enabled": True},
    "tor": {"proxy_url": "socks5://127.0.0.1:9050", "connect_timeout": 30.0},
    "i2p": {"proxy_url": "socks5://127.0.0.1:4447", "connect_timeout": 45.0},
    # Lokinet clients only exist for Linux.
    "loki": {"proxy_url": "socks5://127.0.0.1:1080", "connect_timeout": 30.0},
}


class NetworksConfig(BaseModel):
    """Settings for every network a relay can live on.

    Examples:
        ```python
        config = NetworksConfig.model_validate({"tor": {"enabled": True}})
        config.get_proxy_url(NetworkType.TOR)           # 'socks5://127.0.0.1:9050'
        config.connect_timeout(NetworkType.TOR, 10.0)   # 30.0
        ```
    """

    clearnet: NetworkConfig = Field(default_factory=lambda: NetworkConfig(**_DEFAULTS["clearnet"]))
    tor: NetworkConfig = Field(default_factory=lambda: NetworkConfig(**_DEFAULTS["tor"]))
    i2p: NetworkConfig = Field(default_factory=lambda: NetworkConfig(**_DEFAULTS["i2p"]))
    loki: NetworkConfig = Field(default_factory=lambda: NetworkConfig(**_DEFAULTS["loki"]))

    @model_validator(mode="before")
    @classmethod
    def _merge_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        merged = dict(data)
        for name, defaults in _DEFAULTS.items():
            given = merged.get(name)
            if isinstance(given, dict):
                merged[name] = {**defaults, **given}
        return merged

    def get(self, network: NetworkType) -> NetworkConfig:
        """Settings for *network*; local relays use the clearnet settings."""
        if network is NetworkType.LOCAL:
            return self.clearnet
        return getattr(self, network.value, self.clearnet)

    def is_enabled(self, network: NetworkType) -> bool:
        return self.get(network).enabled

    def get_proxy_url(self, network: NetworkType) -> str | None:
        """Proxy for *network*, ``None`` for direct dialing or a disabled network."""
        config = self.get(network)
        return config.proxy_url if config.enabled else None

    def connect_timeout(self, network: NetworkType, default: float) -> float:
        floor = self.get(network).connect_timeout
        return default if floor is None else max(default, floor)

    def get_enabled_networks(self) -> list[str]:
        return [name for name in type(self).model_fields if getattr(self, name).enabled]
