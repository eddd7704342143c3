"""Mesh-network session owned by one provider instance.

The session is a userspace ``tailscaled`` node started on first use. It
gets its own state directory and a generated hostname so several provider
instances on one host do not share node state. TCP dials go through the
node's SOCKS5 listener; SSH uses ``tailscale nc`` as its proxy command.

The node lives as long as the process. It is not torn down when a target
is destroyed, and it is terminated when the interpreter exits.
"""

from __future__ import annotations

import atexit
import socket
import subprocess
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from loguru import logger
from python_socks import ProxyConnectionError, ProxyError, ProxyTimeoutError
from python_socks.sync import Proxy

from ..config import ProviderConfig
from ..errors import ConfigurationError, TunnelError, WaitTimeoutError
from ..poll import poll_until
from ..runtime import proxy_command, tailscale_cmd
from ..util import CmdError, ensure_dir, run_cmd, spawn

log = logger


@dataclass
class SessionSettings:
    auth_key: str
    control_url: str
    base_dir: str
    socks_port: int = 0
    up_timeout_s: int = 120
    boot_timeout_s: float = 30.0

    @classmethod
    def from_config(cls, cfg: ProviderConfig) -> 'SessionSettings':
        return cls(
            auth_key=cfg.tunnel.auth_key,
            control_url=cfg.tunnel.control_url,
            base_dir=cfg.paths.base_dir,
            socks_port=int(cfg.tunnel.socks_port),
            up_timeout_s=int(cfg.tunnel.up_timeout_s),
        )


class TunnelSession:
    """Handle on a running mesh node."""

    def __init__(
        self,
        *,
        workdir: Path,
        hostname: str,
        socks_port: int,
        process: Optional[subprocess.Popen] = None,
    ):
        self.workdir = workdir
        self.hostname = hostname
        self.socks_port = socks_port
        self.process = process

    @property
    def control_socket(self) -> Path:
        return self.workdir / 'tailscaled.sock'

    @property
    def proxy_url(self) -> str:
        return f'socks5://127.0.0.1:{self.socks_port}'

    def proxy_command(self) -> str:
        return proxy_command(self.control_socket)

    def dial(
        self, host: str, port: int, *, timeout_s: float = 5.0
    ) -> socket.socket:
        """Open a TCP connection to ``host:port`` inside the mesh network."""
        proxy = Proxy.from_url(self.proxy_url)
        try:
            return proxy.connect(
                dest_host=host, dest_port=port, timeout=timeout_s
            )
        except (
            ProxyConnectionError,
            ProxyTimeoutError,
            ProxyError,
            OSError,
        ) as ex:
            raise TunnelError(f'dial {host}:{port} failed: {ex}') from ex

    def close(self) -> None:
        if self.process is not None and self.process.poll() is None:
            log.debug('Stopping mesh node {}', self.hostname)
            self.process.terminate()


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


def start_session(settings: SessionSettings) -> TunnelSession:
    if not settings.auth_key:
        raise ConfigurationError(
            'tunnel.auth_key is empty; a pre-shared key is required to join '
            'the mesh network.'
        )
    workdir = Path(settings.base_dir) / 'tsnet' / uuid.uuid4().hex
    hostname = f'flyvm-provider-{uuid.uuid4().hex}'
    port = settings.socks_port or _free_port()
    ensure_dir(workdir)
    ctl = workdir / 'tailscaled.sock'
    proc = spawn(
        [
            'tailscaled',
            '--tun=userspace-networking',
            f'--statedir={workdir}',
            f'--socket={ctl}',
            f'--socks5-server=127.0.0.1:{port}',
        ],
        log_path=workdir / 'tailscaled.log',
    )
    session = TunnelSession(
        workdir=workdir, hostname=hostname, socks_port=port, process=proc
    )
    atexit.register(session.close)

    def _booted() -> bool:
        if proc.poll() is not None:
            raise TunnelError(
                f'tailscaled exited with code {proc.returncode}; '
                f'see {workdir / "tailscaled.log"}'
            )
        return ctl.exists()

    up = [
        'up',
        f'--authkey={settings.auth_key}',
        f'--hostname={hostname}',
        f'--timeout={settings.up_timeout_s}s',
    ]
    if settings.control_url:
        up.append(f'--login-server={settings.control_url}')
    try:
        poll_until(
            _booted,
            timeout_s=settings.boot_timeout_s,
            interval_s=0.2,
            what='mesh node control socket',
        )
        run_cmd(
            tailscale_cmd(ctl, *up),
            check=True,
            capture=True,
            timeout=settings.up_timeout_s + 10,
            secrets=[settings.auth_key],
        )
    except (CmdError, WaitTimeoutError, subprocess.TimeoutExpired) as ex:
        session.close()
        raise TunnelError(f'failed to join mesh network: {ex}') from ex
    except TunnelError:
        session.close()
        raise
    log.info('Joined mesh network as {} (socks port {})', hostname, port)
    return session


class TunnelManager:
    """Lazily creates the single mesh session and hands it out."""

    def __init__(
        self,
        settings: SessionSettings,
        *,
        factory: Callable[[SessionSettings], TunnelSession] = start_session,
    ):
        self.settings = settings
        self._factory = factory
        self._lock = threading.Lock()
        self._session: Optional[TunnelSession] = None

    def get_session(self) -> TunnelSession:
        session = self._session
        if session is not None:
            return session
        with self._lock:
            if self._session is None:
                log.debug('Creating mesh session')
                self._session = self._factory(self.settings)
            return self._session

    def wait_for_dial(
        self,
        hostname: str,
        port: int,
        *,
        timeout_s: float,
        interval_s: float = 1.0,
    ) -> float:
        """Retry a TCP dial to ``hostname:port`` until it connects.

        Failed attempts are retried at a fixed interval. Raises
        WaitTimeoutError, carrying the elapsed time, once ``timeout_s`` passes.
        """
        session = self.get_session()

        def _can_dial() -> bool:
            try:
                conn = session.dial(
                    hostname, port, timeout_s=min(5.0, max(interval_s, 0.1))
                )
            except TunnelError as ex:
                log.debug('Dial {}:{} not ready: {}', hostname, port, ex)
                return False
            conn.close()
            return True

        elapsed = poll_until(
            _can_dial,
            timeout_s=timeout_s,
            interval_s=interval_s,
            what=f'dial {hostname}:{port}',
        )
        log.info('Reached {}:{} after {:.1f}s', hostname, port, elapsed)
        return elapsed
