"""Target definitions and parsing of per-target option JSON."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field

from .errors import ConfigurationError

ACCESS_TOKEN_ENV = 'FLY_ACCESS_TOKEN'

DEFAULT_SIZE = 'shared-cpu-4x'
DEFAULT_DISK_SIZE_GB = 10

REGIONS = [
    'ams', 'arn', 'atl', 'bog', 'bom', 'bos', 'cdg', 'den', 'dfw', 'ewr',
    'eze', 'fra', 'gdl', 'gig', 'gru', 'hkg', 'iad', 'jnb', 'lax', 'lhr',
    'mad', 'mia', 'nrt', 'ord', 'otp', 'phx', 'qro', 'scl', 'sea', 'sin',
    'sjc', 'syd', 'waw', 'yul', 'yyz',
]  # fmt: skip


@dataclass
class TargetOptions:
    region: str = ''
    size: str = DEFAULT_SIZE
    disk_size: int = DEFAULT_DISK_SIZE_GB
    org_slug: str = ''
    auth_token: str = ''


@dataclass
class Target:
    """A logical target as handed to the provider by the orchestrator."""

    id: str
    name: str
    options: str = '{}'
    api_key: str = ''
    env_vars: dict[str, str] = field(default_factory=dict)


def parse_target_options(options_json: str) -> TargetOptions:
    """Parse target options, resolving the auth token from the environment.

    Raises ConfigurationError before any remote call when the token or the
    organization cannot be resolved.
    """
    try:
        raw = json.loads(options_json or '{}')
    except json.JSONDecodeError as ex:
        raise ConfigurationError(f'Invalid target options JSON: {ex}') from ex
    if not isinstance(raw, dict):
        raise ConfigurationError('Target options must be a JSON object.')

    opts = TargetOptions()
    opts.region = str(raw.get('Region', '') or '')
    opts.size = str(raw.get('Size', '') or DEFAULT_SIZE)
    disk = raw.get('Disk Size', DEFAULT_DISK_SIZE_GB)
    try:
        opts.disk_size = int(disk)
    except (TypeError, ValueError) as ex:
        raise ConfigurationError(f'Disk Size must be an integer: {disk!r}') from ex
    if opts.disk_size <= 0:
        raise ConfigurationError(f'Disk Size must be positive: {opts.disk_size}')
    opts.org_slug = str(raw.get('Org Slug', '') or '')
    opts.auth_token = str(raw.get('Auth Token', '') or '')

    if not opts.auth_token:
        opts.auth_token = os.environ.get(ACCESS_TOKEN_ENV, '')
    if not opts.auth_token:
        raise ConfigurationError('auth token not set in env/target options')
    if not opts.org_slug:
        raise ConfigurationError('org slug not set in target options')
    return opts


def target_config_manifest() -> dict[str, dict]:
    return {
        'Region': {
            'type': 'string',
            'description': (
                'The region where the fly machine resides. '
                'If not specified, near region will be used.'
            ),
            'suggestions': list(REGIONS),
        },
        'Size': {
            'type': 'string',
            'default_value': DEFAULT_SIZE,
            'description': (
                f'The size of the fly machine. Default is {DEFAULT_SIZE}. '
                'List of available sizes '
                'https://fly.io/docs/about/pricing/#started-fly-machines'
            ),
        },
        'Disk Size': {
            'type': 'int',
            'default_value': str(DEFAULT_DISK_SIZE_GB),
            'description': 'The size of the disk in GB.',
        },
        'Org Slug': {
            'type': 'string',
            'description': 'The organization name to create the fly machine in.',
        },
        'Auth Token': {
            'type': 'string',
            'input_masked': True,
            'description': (
                'If empty, token will be fetched from the '
                f'{ACCESS_TOKEN_ENV} environment variable.'
            ),
        },
    }
