"""Runtime helpers for constructing tailscale and SSH command arguments."""

from __future__ import annotations

from pathlib import Path


def tailscale_cmd(control_socket: str | Path, *args: str) -> list[str]:
    return ['tailscale', f'--socket={control_socket}', *args]


def proxy_command(control_socket: str | Path) -> str:
    # %h/%p are expanded by ssh itself.
    return f'tailscale --socket={control_socket} nc %h %p'


def ssh_base_args(
    ident: str,
    *,
    strict_host_key_checking: str = 'accept-new',
    connect_timeout: int | None = None,
    batch_mode: bool = False,
    user_known_hosts_file: str | None = None,
    proxy: str | None = None,
    port: int | None = None,
) -> list[str]:
    args: list[str] = []
    if batch_mode:
        args.extend(['-o', 'BatchMode=yes'])
    if connect_timeout is not None:
        args.extend(['-o', f'ConnectTimeout={connect_timeout}'])
    args.extend(['-o', f'StrictHostKeyChecking={strict_host_key_checking}'])
    if user_known_hosts_file:
        args.extend(['-o', f'UserKnownHostsFile={user_known_hosts_file}'])
    if proxy:
        args.extend(['-o', f'ProxyCommand={proxy}'])
    if port is not None:
        args.extend(['-p', str(port)])
    if ident:
        args.extend(['-i', ident])
    return args
