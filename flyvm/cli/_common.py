from __future__ import annotations

from pathlib import Path

import scriptconfig as scfg
from loguru import logger

from ..config import ProviderConfig, default_config_path, load
from ..errors import ConfigurationError
from ..targets import Target

log = logger


class _BaseCommand(scfg.DataConfig):
    """Base options shared by all commands."""

    config = scfg.Value(
        None, help='Path to config TOML (default: per-user config dir).'
    )
    verbose = scfg.Value(
        0,
        short_alias=['v'],
        isflag='counter',
        help='Increase verbosity (-v, -vv).',
    )


class _TargetCommand(_BaseCommand):
    """Options identifying one target."""

    target_id = scfg.Value('', help='Target identifier (names the app).')
    target_name = scfg.Value('', help='Target name (names machine and volume).')
    options = scfg.Value(
        '{}', help='Target options as a JSON object (see `flyvm manifest`).'
    )
    api_key = scfg.Value('', help='API key handed to the agent install script.')
    env = scfg.Value(
        '', help='Comma separated KEY=VALUE pairs passed to the machine.'
    )


def _cfg_path(p: str | None) -> Path:
    return Path(p).expanduser().resolve() if p else default_config_path()


def _load_cfg(config_path: str | None) -> ProviderConfig:
    """Load the config file, or defaults when it does not exist yet."""
    path = _cfg_path(config_path)
    if not path.exists():
        if config_path:
            raise FileNotFoundError(
                f'Config not found: {path}. Run: flyvm config init --config {path}'
            )
        log.debug('No config at {}; using defaults', path)
        return ProviderConfig()
    return load(path)


def _parse_env(raw: str) -> dict[str, str]:
    env: dict[str, str] = {}
    for item in str(raw or '').split(','):
        item = item.strip()
        if not item:
            continue
        key, sep, value = item.partition('=')
        if not sep or not key.strip():
            raise ConfigurationError(f'Invalid --env entry (want KEY=VALUE): {item!r}')
        env[key.strip()] = value
    return env


def _target_from_args(args) -> Target:
    target_id = str(args.target_id or '').strip()
    if not target_id:
        raise ConfigurationError('--target_id is required.')
    return Target(
        id=target_id,
        name=str(args.target_name or '').strip() or target_id,
        options=str(args.options or '{}'),
        api_key=str(args.api_key or ''),
        env_vars=_parse_env(args.env),
    )


__all__ = [name for name in globals() if not name.startswith('__')]
