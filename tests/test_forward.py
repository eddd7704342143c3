"""Tests for Unix socket forwarding over the mesh session."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from flyvm.errors import TunnelError
from flyvm.tasks import TaskSupervisor
from flyvm.tunnel import SessionSettings, SocketForwarder, TunnelManager


class FakeTunnelSession:
    hostname = 'flyvm-provider-test'

    def proxy_command(self) -> str:
        return 'tailscale --socket=/tmp/x.sock nc %h %p'


class FakeProc:
    """An ssh child that creates the local socket and runs until terminated."""

    def __init__(self, local_sock: Path | None, exit_code: int | None = None):
        self._done = threading.Event()
        self.returncode = exit_code
        if exit_code is not None:
            self._done.set()
        elif local_sock is not None:
            local_sock.touch()

    def poll(self):
        return self.returncode

    def terminate(self) -> None:
        if self.returncode is None:
            self.returncode = -15
        self._done.set()

    def wait(self):
        self._done.wait()
        return self.returncode

    def die(self, code: int = 255) -> None:
        self.returncode = code
        self._done.set()


def _local_from_cmd(cmd) -> Path:
    spec = cmd[cmd.index('-L') + 1]
    return Path(spec.rsplit(':', 1)[0])


def _manager(tmp_path, sessions: list) -> TunnelManager:
    def factory(settings):
        sess = FakeTunnelSession()
        sessions.append(sess)
        return sess

    return TunnelManager(
        SessionSettings(auth_key='k', control_url='', base_dir=str(tmp_path)),
        factory=factory,
    )


def test_existing_socket_dir_skips_forward(tmp_path, monkeypatch) -> None:
    spawned = []
    monkeypatch.setattr(
        'flyvm.tunnel.forward.spawn', lambda cmd, **k: spawned.append(cmd)
    )
    sessions: list = []
    fwd = SocketForwarder(_manager(tmp_path, sessions), TaskSupervisor())
    local = tmp_path / 'socks' / 't1' / 'docker-forward.sock'
    local.parent.mkdir(parents=True)
    fwd.ensure_forward('t1', '/var/run/docker.sock', local)
    assert spawned == []
    assert sessions == []


def test_concurrent_first_use_shares_one_forward(tmp_path, monkeypatch) -> None:
    procs = []

    def fake_spawn(cmd, **kwargs):
        proc = FakeProc(_local_from_cmd(cmd))
        procs.append((cmd, proc))
        return proc

    monkeypatch.setattr('flyvm.tunnel.forward.spawn', fake_spawn)
    supervisor = TaskSupervisor()
    fwd = SocketForwarder(
        _manager(tmp_path, []), supervisor, ssh_port=2222, ssh_user='daytona'
    )
    local = tmp_path / 'socks' / 't1' / 'docker-forward.sock'
    errors = []

    def use() -> None:
        try:
            fwd.ensure_forward('t1', '/var/run/docker.sock', local)
        except Exception as ex:  # pragma: no cover
            errors.append(ex)

    threads = [threading.Thread(target=use) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []
    assert len(procs) == 1
    assert len(supervisor.tasks('forward:t1')) == 1
    cmd = procs[0][0]
    assert cmd[0] == 'ssh'
    assert 'daytona@t1' == cmd[-1]
    assert f'{local}:/var/run/docker.sock' in cmd
    assert local.exists()

    fwd.drop('t1')
    assert supervisor.join(timeout=5)
    assert not local.exists()
    assert not local.parent.exists()
    assert supervisor.failed() == []


def test_failed_forward_removes_socket_dir(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(
        'flyvm.tunnel.forward.spawn',
        lambda cmd, **k: FakeProc(None, exit_code=255),
    )
    supervisor = TaskSupervisor()
    fwd = SocketForwarder(_manager(tmp_path, []), supervisor)
    local = tmp_path / 'socks' / 't1' / 'docker-forward.sock'
    with pytest.raises(TunnelError, match='failed to start SSH tunnel'):
        fwd.ensure_forward('t1', '/var/run/docker.sock', local)
    assert not local.exists()
    assert not local.parent.exists()
    assert supervisor.join(timeout=5)
    assert len(supervisor.failed()) == 1


def test_ssh_output_goes_to_log_and_into_error(tmp_path, monkeypatch) -> None:
    seen = {}

    def fake_spawn(cmd, *, log_path=None):
        seen['log_path'] = log_path
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_path.write_text(
            'Warning: Permanently added t1\nconnect to t1 port 2222: refused\n',
            encoding='utf-8',
        )
        return FakeProc(None, exit_code=255)

    monkeypatch.setattr('flyvm.tunnel.forward.spawn', fake_spawn)
    supervisor = TaskSupervisor()
    fwd = SocketForwarder(_manager(tmp_path, []), supervisor)
    local = tmp_path / 'socks' / 't1' / 'docker-forward.sock'
    with pytest.raises(TunnelError, match='port 2222: refused'):
        fwd.ensure_forward('t1', '/var/run/docker.sock', local)
    assert seen['log_path'] == tmp_path / 'socks' / 'forward-t1.log'
    # The log lives beside the socket dir, so the dir can still be removed.
    assert not local.parent.exists()
    assert supervisor.join(timeout=5)


def test_forward_dying_after_start_is_replaced(tmp_path, monkeypatch) -> None:
    procs = []

    def fake_spawn(cmd, **kwargs):
        proc = FakeProc(_local_from_cmd(cmd))
        procs.append(proc)
        return proc

    monkeypatch.setattr('flyvm.tunnel.forward.spawn', fake_spawn)
    supervisor = TaskSupervisor()
    fwd = SocketForwarder(_manager(tmp_path, []), supervisor)
    local = tmp_path / 'socks' / 't1' / 'docker-forward.sock'
    fwd.ensure_forward('t1', '/var/run/docker.sock', local)
    assert local.exists()

    procs[0].die()
    assert supervisor.join(timeout=5, name='forward:t1')
    assert not local.exists()
    assert not local.parent.exists()
    assert len(supervisor.failed()) == 1

    fwd.ensure_forward('t1', '/var/run/docker.sock', local)
    assert len(procs) == 2
    assert local.exists()
    fwd.drop('t1')
    assert supervisor.join(timeout=5)


def test_close_all_stops_live_forwards(tmp_path, monkeypatch) -> None:
    registered = []
    monkeypatch.setattr(
        'flyvm.tunnel.forward.atexit.register', registered.append
    )
    procs = []

    def fake_spawn(cmd, **kwargs):
        proc = FakeProc(_local_from_cmd(cmd))
        procs.append(proc)
        return proc

    monkeypatch.setattr('flyvm.tunnel.forward.spawn', fake_spawn)
    supervisor = TaskSupervisor()
    fwd = SocketForwarder(_manager(tmp_path, []), supervisor)
    assert registered == [fwd.close_all]
    for host in ('t1', 't2'):
        fwd.ensure_forward(
            host,
            '/var/run/docker.sock',
            tmp_path / 'socks' / host / 'docker-forward.sock',
        )
    fwd.close_all()
    assert [p.returncode for p in procs] == [-15, -15]
    assert supervisor.join(timeout=5)
    assert supervisor.failed() == []
    assert not (tmp_path / 'socks' / 't1').exists()
    assert not (tmp_path / 'socks' / 't2').exists()
