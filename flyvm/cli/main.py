"""Top-level modal CLI wiring and logging setup."""

from __future__ import annotations

import json
import os
import sys

import scriptconfig as scfg
from loguru import logger

from ..provider import provider_info
from ._common import _BaseCommand, _load_cfg, log
from .config import ConfigModalCLI
from .target import TargetModalCLI

# Verbosity 0, 1, 2+.
_LEVELS = ('WARNING', 'INFO', 'DEBUG')

_LOG_FORMAT = (
    '<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | '
    '<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>'
)


class ManifestCLI(_BaseCommand):
    """Print provider info and the target options manifest as JSON."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        cls.cli(argv=argv, data=kwargs)
        print(json.dumps(provider_info(), indent=2))
        return 0


class FlyVMModalCLI(scfg.ModalCLI):
    """Remote machine provider with mesh tunneled engine access."""

    config = ConfigModalCLI
    target = TargetModalCLI
    manifest = ManifestCLI


def main(argv: list[str] | None = None) -> None:
    if argv is None:
        argv = sys.argv[1:]
    _setup_logging(_count_verbose(argv), _config_verbosity(argv))
    try:
        rc = FlyVMModalCLI.main(argv=argv, _noexit=True)
    except Exception as ex:
        print(f'ERROR: {ex}', file=sys.stderr)
        log.error('Unhandled flyvm error: {}', ex)
        sys.exit(2)
    if '-h' in argv or '--help' in argv:
        sys.exit(0)
    sys.exit(rc if isinstance(rc, int) else 0)


def _config_arg(argv: list[str]) -> str | None:
    for idx, item in enumerate(argv):
        if item.startswith('--config='):
            return item.split('=', 1)[1]
        if item == '--config' and idx + 1 < len(argv):
            return argv[idx + 1]
    return None


def _config_verbosity(argv: list[str]) -> int:
    """Verbosity from the config file; 1 when it cannot be read."""
    try:
        return int(_load_cfg(_config_arg(argv)).verbosity)
    except Exception:
        return 1


def _setup_logging(args_verbose: int, cfg_verbosity: int) -> None:
    logger.remove()
    effective = args_verbose if args_verbose > 0 else cfg_verbosity
    level = _LEVELS[max(0, min(effective, len(_LEVELS) - 1))]
    colorize = sys.stderr.isatty() and os.getenv('NO_COLOR') is None
    logger.add(sys.stderr, level=level, colorize=colorize, format=_LOG_FORMAT)
    log.debug('Logging configured at {} (verbosity={})', level, effective)


def _count_verbose(argv: list[str]) -> int:
    count = argv.count('--verbose')
    for item in argv:
        short = item[1:] if item.startswith('-') and not item.startswith('--') else ''
        if short and set(short) == {'v'}:
            count += len(short)
    return count
