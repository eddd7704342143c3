"""Tests for choosing and building engine connectors."""

from __future__ import annotations

import pytest

from flyvm.config import ProviderConfig
from flyvm.errors import ConfigurationError
from flyvm.tasks import TaskSupervisor
from flyvm.tunnel import (
    DirectDialConnector,
    ForwardedSocketConnector,
    SessionSettings,
    SocketForwarder,
    TunnelManager,
    make_connector,
)
from flyvm.tunnel.connect import TunnelHTTPAdapter


class FakeSession:
    def __init__(self) -> None:
        self.dials = []

    def dial(self, host, port, *, timeout_s=5.0):
        self.dials.append((host, port))
        return object()


def _parts(tmp_path, session=None):
    cfg = ProviderConfig()
    cfg.paths.base_dir = str(tmp_path)
    cfg.expanded_paths()
    tunnels = TunnelManager(
        SessionSettings(auth_key='k', control_url='', base_dir=str(tmp_path)),
        factory=lambda s: session or FakeSession(),
    )
    return cfg, tunnels, SocketForwarder(tunnels, TaskSupervisor())


def test_make_connector_by_mode(tmp_path) -> None:
    cfg, tunnels, fwd = _parts(tmp_path)
    conn = make_connector(cfg, tunnels, fwd)
    assert isinstance(conn, ForwardedSocketConnector)
    assert conn.socket_path('t1') == tmp_path / 'sockets' / 't1' / 'docker-forward.sock'

    cfg.tunnel.mode = 'DIRECT'
    assert isinstance(make_connector(cfg, tunnels, fwd), DirectDialConnector)

    cfg.tunnel.mode = 'carrier-pigeon'
    with pytest.raises(ConfigurationError):
        make_connector(cfg, tunnels, fwd)


def test_direct_dial_client_routes_through_tunnel(tmp_path) -> None:
    session = FakeSession()
    _, tunnels, _ = _parts(tmp_path, session)
    conn = DirectDialConnector(tunnels, daemon_port=2375)
    client = conn.engine_client('t1')
    adapter = client.api.get_adapter('http://t1:2375/version')
    assert isinstance(adapter, TunnelHTTPAdapter)
    pool = adapter.get_connection('http://t1:2375/version')
    pool._new_conn()._new_conn()
    assert session.dials == [('t1', 2375)]
    client.close()
