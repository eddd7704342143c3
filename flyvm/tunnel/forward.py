"""Forward a remote Unix socket to a local Unix socket over the mesh tunnel.

Each forward is an ``ssh -N -L local.sock:remote.sock`` process reached
through the mesh node's proxy command, run as a supervised background task.

Deduplication is keyed on the local socket's parent directory: if it
exists, a forward is assumed to be running already. Inside one process a
lock and a table of in-flight forwards make concurrent first use share a
single task. Two processes sharing a socket directory can still race on
first use; that case is not guarded.
"""

from __future__ import annotations

import atexit
import os
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from loguru import logger

from ..errors import TunnelError, WaitTimeoutError
from ..poll import poll_until
from ..runtime import ssh_base_args
from ..tasks import TaskSupervisor
from ..util import ensure_dir, spawn
from .session import TunnelManager, TunnelSession

log = logger


@dataclass
class _Forward:
    hostname: str
    local_sock: Path
    started: threading.Event = field(default_factory=threading.Event)
    ok: bool = False
    closing: bool = False
    error: Optional[BaseException] = None
    proc: Optional[subprocess.Popen] = None


def remove_socket(local_sock: Path) -> None:
    """Delete a forward's socket file and its directory if now empty."""
    local_sock.unlink(missing_ok=True)
    try:
        local_sock.parent.rmdir()
    except FileNotFoundError:
        pass
    except OSError as ex:
        log.debug('Keeping socket dir {}: {}', local_sock.parent, ex)


def _tail(path: Path, lines: int = 10) -> str:
    """Last lines of a child's log, formatted for an error message."""
    try:
        text = path.read_text(encoding='utf-8', errors='replace')
    except OSError:
        return ''
    tail = text.strip().splitlines()[-lines:]
    return (': ' + ' | '.join(tail)) if tail else ''


class SocketForwarder:
    def __init__(
        self,
        tunnels: TunnelManager,
        supervisor: TaskSupervisor,
        *,
        ssh_port: int = 2222,
        ssh_user: str = 'daytona',
        ssh_identity_file: str = '',
        start_timeout_s: float = 60.0,
        log_dir: str | Path | None = None,
    ):
        self.tunnels = tunnels
        self.supervisor = supervisor
        self.ssh_port = ssh_port
        self.ssh_user = ssh_user
        self.ssh_identity_file = ssh_identity_file
        self.start_timeout_s = start_timeout_s
        self.log_dir = Path(log_dir) if log_dir else None
        self._lock = threading.Lock()
        self._forwards: dict[str, _Forward] = {}
        atexit.register(self.close_all)

    def ensure_forward(
        self,
        hostname: str,
        remote_sock: str,
        local_sock: str | Path,
    ) -> None:
        """Make ``local_sock`` a live bridge to ``remote_sock`` on ``hostname``.

        Blocks until the forward reports that it started. Raises TunnelError
        if it fails to start; the local socket path is removed in that case.
        """
        local_sock = Path(local_sock)
        with self._lock:
            fwd = self._forwards.get(hostname)
            if fwd is None:
                if local_sock.parent.exists():
                    log.debug(
                        'Socket dir {} exists; assuming forward is active',
                        local_sock.parent,
                    )
                    return
                session = self.tunnels.get_session()
                ensure_dir(local_sock.parent)
                fwd = _Forward(hostname=hostname, local_sock=local_sock)
                self._forwards[hostname] = fwd
                self.supervisor.spawn(
                    f'forward:{hostname}',
                    self._run,
                    fwd,
                    session,
                    remote_sock,
                )
        if not fwd.started.wait(self.start_timeout_s + 5):
            raise TunnelError(f'SSH tunnel to {hostname} did not report start')
        if not fwd.ok:
            raise TunnelError(
                f'failed to start SSH tunnel to {hostname}: {fwd.error}'
            ) from fwd.error

    def drop(self, hostname: str, local_sock: str | Path | None = None) -> None:
        """Stop the forward for ``hostname`` and remove its socket."""
        with self._lock:
            fwd = self._forwards.pop(hostname, None)
        if fwd is not None:
            fwd.closing = True
            if fwd.proc is not None and fwd.proc.poll() is None:
                fwd.proc.terminate()
            local_sock = fwd.local_sock
        if local_sock is not None:
            remove_socket(Path(local_sock))

    def close_all(self) -> None:
        """Stop every forward started by this process."""
        with self._lock:
            hostnames = list(self._forwards)
        for hostname in hostnames:
            self.drop(hostname)

    def log_path(self, fwd: _Forward) -> Path:
        # Kept outside the socket dir so a failed forward can remove that dir.
        log_dir = self.log_dir or fwd.local_sock.parent.parent
        return log_dir / f'forward-{fwd.hostname}.log'

    def _ssh_cmd(
        self, fwd: _Forward, session: TunnelSession, remote_sock: str
    ) -> list[str]:
        return [
            'ssh',
            '-N',
            '-o',
            'ExitOnForwardFailure=yes',
            '-o',
            'StreamLocalBindUnlink=yes',
            '-o',
            'ServerAliveInterval=15',
            *ssh_base_args(
                self.ssh_identity_file,
                batch_mode=True,
                strict_host_key_checking='no',
                user_known_hosts_file=os.devnull,
                proxy=session.proxy_command(),
                port=self.ssh_port,
            ),
            '-L',
            f'{fwd.local_sock}:{remote_sock}',
            f'{self.ssh_user}@{fwd.hostname}',
        ]

    def _run(
        self, fwd: _Forward, session: TunnelSession, remote_sock: str
    ) -> None:
        try:
            self._serve(fwd, session, remote_sock)
        except Exception as ex:
            fwd.error = ex
            with self._lock:
                if self._forwards.get(fwd.hostname) is fwd:
                    del self._forwards[fwd.hostname]
            remove_socket(fwd.local_sock)
            if not fwd.closing:
                raise
            log.debug('Forward to {} closed', fwd.hostname)
        finally:
            fwd.started.set()

    def _serve(
        self, fwd: _Forward, session: TunnelSession, remote_sock: str
    ) -> None:
        log_path = self.log_path(fwd)
        proc = spawn(self._ssh_cmd(fwd, session, remote_sock), log_path=log_path)
        fwd.proc = proc

        def _listening() -> bool:
            if proc.poll() is not None:
                raise TunnelError(
                    f'ssh forward to {fwd.hostname} exited with code '
                    f'{proc.returncode} before listening'
                    f'{_tail(log_path)}'
                )
            return fwd.local_sock.exists()

        try:
            poll_until(
                _listening,
                timeout_s=self.start_timeout_s,
                interval_s=0.1,
                what=f'forward socket {fwd.local_sock}',
            )
        except WaitTimeoutError as ex:
            proc.terminate()
            raise TunnelError(str(ex)) from ex

        fwd.ok = True
        fwd.started.set()
        log.info(
            'Forwarding {} -> {}:{}', fwd.local_sock, fwd.hostname, remote_sock
        )
        code = proc.wait()
        raise TunnelError(
            f'ssh forward to {fwd.hostname} exited with code {code}'
            f'{_tail(log_path)}'
        )
