"""Mesh tunnel session, socket forwarding, and engine connectors."""

from __future__ import annotations

from .connect import (
    DaemonConnector,
    DirectDialConnector,
    ForwardedSocketConnector,
    make_connector,
)
from .forward import SocketForwarder, remove_socket
from .session import SessionSettings, TunnelManager, TunnelSession, start_session

__all__ = [
    'DaemonConnector',
    'DirectDialConnector',
    'ForwardedSocketConnector',
    'SessionSettings',
    'SocketForwarder',
    'TunnelManager',
    'TunnelSession',
    'make_connector',
    'remove_socket',
    'start_session',
]
