"""Deterministic remote resource names derived from logical identifiers.

Remote apps and machines are looked up by name only, so the same logical
identifier must always map to the same remote name.

Volume names are limited to 30 characters of ``[A-Za-z0-9_]``. Identifiers
whose sanitized form does not fit keep a readable prefix and end with a
digest of the full identifier. Two identifiers that differ only beyond the
prefix therefore still get distinct names, but the digest is short (8 hex
digits), so a collision remains possible in principle.
"""

from __future__ import annotations

import hashlib
import re

RESOURCE_PREFIX = 'flyvm-'
VOLUME_PREFIX = 'flyvm_'
VOLUME_NAME_MAX = 30

_DIGEST_LEN = 8
_INVALID_VOLUME_CHARS = re.compile(r'[^a-zA-Z0-9_]')


def resource_name(identifier: str) -> str:
    """Name of the remote app or machine for a workspace/target identifier."""
    return f'{RESOURCE_PREFIX}{identifier}'


def volume_name(name: str) -> str:
    """
    Example:
        >>> volume_name('my-project')
        'flyvm_myproject'
        >>> len(volume_name('x' * 64))
        30
    """
    formatted = _INVALID_VOLUME_CHARS.sub('', f'{VOLUME_PREFIX}{name}')
    if len(formatted) <= VOLUME_NAME_MAX:
        return formatted
    digest = hashlib.sha256(name.encode('utf-8')).hexdigest()[:_DIGEST_LEN]
    keep = VOLUME_NAME_MAX - _DIGEST_LEN - 1
    return f'{formatted[:keep]}_{digest}'
