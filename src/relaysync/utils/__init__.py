"""Utility layer: WebSocket transport, network settings, and signing.

Attributes:
    transport: Transport protocol and its aiohttp implementation with SOCKS5
        proxy support for overlay networks.
    network: Per-network (clearnet, Tor, I2P, Lokinet) connection settings.
    keys: Signer protocol, local key signer, and key loading from the
        environment.
"""

from .keys import ENV_PRIVATE_KEY, KeysConfig, KeysSigner, Signer, load_keys_from_env
from .network import NetworkConfig, NetworksConfig
from .transport import AiohttpTransport, AiohttpWebSocketSession, Transport, WebSocketSession


__all__ = [
    "ENV_PRIVATE_KEY",
    "AiohttpTransport",
    "AiohttpWebSocketSession",
    "KeysConfig",
    "KeysSigner",
    "NetworkConfig",
    "NetworksConfig",
    "Signer",
    "Transport",
    "WebSocketSession",
    "load_keys_from_env",
]
