"""Tunnel subsystem interface and the subprocess adapter."""

from smartconnect.tunnel.base import TunnelClient, TunnelCredentials, TunnelListener
from smartconnect.tunnel.subprocess_tunnel import SubprocessTunnel

__all__ = ["SubprocessTunnel", "TunnelClient", "TunnelCredentials", "TunnelListener"]
