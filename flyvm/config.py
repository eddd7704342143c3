"""Provider configuration: dataclass sections persisted as TOML."""

from __future__ import annotations

import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path

import ubelt as ub

from .util import expand

DEFAULT_MACHINES_URL = 'https://api.machines.dev/v1'
DEFAULT_PLATFORM_URL = 'https://api.fly.io'
DEFAULT_AGENT_DOWNLOAD_URL = 'https://download.daytona.io/daytona/install.sh'

TUNNEL_MODES = ('forward', 'direct')


@dataclass
class ApiConfig:
    machines_url: str = DEFAULT_MACHINES_URL
    platform_url: str = DEFAULT_PLATFORM_URL
    timeout_s: int = 30


@dataclass
class TunnelConfig:
    control_url: str = ''
    auth_key: str = ''
    mode: str = 'forward'
    ssh_port: int = 2222
    ssh_user: str = 'daytona'
    ssh_identity_file: str = ''
    remote_socket: str = '/var/run/docker.sock'
    daemon_port: int = 2375
    socks_port: int = 0
    up_timeout_s: int = 120


@dataclass
class MachineConfig:
    image: str = 'alpine:latest'
    mount_path: str = '/workspaces'
    ready_timeout_s: float = 300.0
    poll_interval_s: float = 0.2
    dial_timeout_s: float = 300.0
    dial_interval_s: float = 1.0
    log_idle_delay_s: float = 10.0


@dataclass
class AgentConfig:
    download_url: str = DEFAULT_AGENT_DOWNLOAD_URL
    api_key: str = ''


def _default_base_dir() -> str:
    return str(ub.Path.appdir('flyvm', type='data'))


@dataclass
class PathsConfig:
    base_dir: str = field(default_factory=_default_base_dir)
    sock_dir: str = ''
    target_logs_dir: str = ''


@dataclass
class ProviderConfig:
    api: ApiConfig = field(default_factory=ApiConfig)
    tunnel: TunnelConfig = field(default_factory=TunnelConfig)
    machine: MachineConfig = field(default_factory=MachineConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    verbosity: int = 1

    def expanded_paths(self) -> 'ProviderConfig':
        self.paths.base_dir = expand(self.paths.base_dir)
        self.paths.sock_dir = (
            expand(self.paths.sock_dir)
            if self.paths.sock_dir
            else str(Path(self.paths.base_dir) / 'sockets')
        )
        self.paths.target_logs_dir = (
            expand(self.paths.target_logs_dir)
            if self.paths.target_logs_dir
            else ''
        )
        self.tunnel.ssh_identity_file = (
            expand(self.tunnel.ssh_identity_file)
            if self.tunnel.ssh_identity_file
            else ''
        )
        return self


_SECTIONS = ('api', 'tunnel', 'machine', 'agent', 'paths')


def default_config_path() -> Path:
    return Path(ub.Path.appdir('flyvm', type='config')) / 'config.toml'


def _toml_escape(s: str) -> str:
    return s.replace('\\', '\\\\').replace('"', '\\"')


def dump_toml(cfg: ProviderConfig) -> str:
    d = asdict(cfg)
    lines: list[str] = []
    for section, body in d.items():
        if isinstance(body, dict):
            lines.append(f'[{section}]')
            for k, v in body.items():
                if isinstance(v, bool):
                    lines.append(f'{k} = {"true" if v else "false"}')
                elif isinstance(v, (int, float)):
                    lines.append(f'{k} = {v}')
                else:
                    lines.append(f'{k} = "{_toml_escape(str(v))}"')
            lines.append('')
        elif section == 'verbosity' and body != 1:
            lines.append(f'{section} = {body}')
            lines.append('')
    return '\n'.join(lines).rstrip() + '\n'


def load(path: Path) -> ProviderConfig:
    raw = tomllib.loads(path.read_text(encoding='utf-8'))
    cfg = ProviderConfig()
    for section in _SECTIONS:
        if section in raw and isinstance(raw[section], dict):
            sec = raw[section]
            obj = getattr(cfg, section)
            for k, v in sec.items():
                if hasattr(obj, k):
                    setattr(obj, k, v)
    if 'verbosity' in raw:
        cfg.verbosity = int(raw['verbosity'])
    return cfg


def save(path: Path, cfg: ProviderConfig) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dump_toml(cfg), encoding='utf-8')
