"""HTTP gateway for chat clients."""

from chatrelay.gateway.server import GatewayServer

__all__ = ["GatewayServer"]
