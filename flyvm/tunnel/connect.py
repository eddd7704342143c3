"""Ways to reach the container engine running inside a remote machine.

Two strategies, both tunneled through the mesh session:

- ``ForwardedSocketConnector`` keeps a persistent forward of the remote
  engine socket to a local Unix socket. Setup costs an SSH session; each
  API call is then a local socket connection.
- ``DirectDialConnector`` dials the engine's TCP port through the mesh
  for every new HTTP connection. Nothing to set up, one tunnel dial per
  connection.
"""

from __future__ import annotations

import abc
import socket
from pathlib import Path
from typing import Callable

import docker
from loguru import logger
from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPConnection
from urllib3.connectionpool import HTTPConnectionPool

from ..config import TUNNEL_MODES, ProviderConfig
from ..errors import ConfigurationError
from .forward import SocketForwarder
from .session import TunnelManager

log = logger

ENGINE_API_VERSION = '1.41'
FORWARD_SOCK_NAME = 'docker-forward.sock'


class DaemonConnector(abc.ABC):
    @abc.abstractmethod
    def engine_client(self, hostname: str) -> docker.DockerClient:
        """Return an engine client whose traffic reaches ``hostname``'s daemon."""

    def release(self, hostname: str) -> None:
        """Forget any per-host state kept for ``hostname``."""


class ForwardedSocketConnector(DaemonConnector):
    def __init__(
        self,
        forwarder: SocketForwarder,
        *,
        sock_dir: str | Path,
        remote_socket: str = '/var/run/docker.sock',
        api_version: str = ENGINE_API_VERSION,
    ):
        self.forwarder = forwarder
        self.sock_dir = Path(sock_dir)
        self.remote_socket = remote_socket
        self.api_version = api_version

    def socket_path(self, hostname: str) -> Path:
        return self.sock_dir / hostname / FORWARD_SOCK_NAME

    def engine_client(self, hostname: str) -> docker.DockerClient:
        local = self.socket_path(hostname)
        self.forwarder.ensure_forward(hostname, self.remote_socket, local)
        return docker.DockerClient(
            base_url=f'unix://{local}', version=self.api_version
        )

    def release(self, hostname: str) -> None:
        self.forwarder.drop(hostname, self.socket_path(hostname))


class _TunnelHTTPConnection(HTTPConnection):
    def __init__(self, dial: Callable[[], socket.socket], **kwargs):
        super().__init__('localhost', **kwargs)
        self._dial = dial

    def _new_conn(self) -> socket.socket:
        return self._dial()


class _TunnelHTTPConnectionPool(HTTPConnectionPool):
    def __init__(
        self, dial: Callable[[], socket.socket], *, timeout=60, maxsize=4
    ):
        super().__init__('localhost', timeout=timeout, maxsize=maxsize)
        self._dial = dial

    def _new_conn(self) -> _TunnelHTTPConnection:
        return _TunnelHTTPConnection(
            self._dial, timeout=self.timeout.connect_timeout
        )


class TunnelHTTPAdapter(HTTPAdapter):
    """Requests adapter whose connections are opened by ``dial``."""

    def __init__(
        self, dial: Callable[[], socket.socket], *, timeout=60, maxsize=4
    ):
        self._pool = _TunnelHTTPConnectionPool(
            dial, timeout=timeout, maxsize=maxsize
        )
        super().__init__()

    def get_connection_with_tls_context(
        self, request, verify, proxies=None, cert=None
    ):
        return self._pool

    def get_connection(self, url, proxies=None):
        return self._pool

    def close(self) -> None:
        self._pool.close()
        super().close()


class DirectDialConnector(DaemonConnector):
    def __init__(
        self,
        tunnels: TunnelManager,
        *,
        daemon_port: int = 2375,
        api_version: str = ENGINE_API_VERSION,
    ):
        self.tunnels = tunnels
        self.daemon_port = daemon_port
        self.api_version = api_version

    def engine_client(self, hostname: str) -> docker.DockerClient:
        session = self.tunnels.get_session()
        port = self.daemon_port
        client = docker.DockerClient(
            base_url=f'tcp://{hostname}:{port}', version=self.api_version
        )
        client.api.mount(
            f'http://{hostname}:{port}',
            TunnelHTTPAdapter(lambda: session.dial(hostname, port)),
        )
        log.debug('Engine client for {} dials {} per connection', hostname, port)
        return client


def make_connector(
    cfg: ProviderConfig, tunnels: TunnelManager, forwarder: SocketForwarder
) -> DaemonConnector:
    mode = str(cfg.tunnel.mode or '').strip().lower()
    if mode == 'forward':
        return ForwardedSocketConnector(
            forwarder,
            sock_dir=cfg.paths.sock_dir,
            remote_socket=cfg.tunnel.remote_socket,
        )
    if mode == 'direct':
        return DirectDialConnector(
            tunnels, daemon_port=int(cfg.tunnel.daemon_port)
        )
    raise ConfigurationError(
        f'tunnel.mode must be one of {", ".join(TUNNEL_MODES)} '
        f'(got {cfg.tunnel.mode!r})'
    )
