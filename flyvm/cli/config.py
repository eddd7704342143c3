from __future__ import annotations

import sys

import scriptconfig as scfg

from ..config import ProviderConfig, dump_toml, save
from ._common import _BaseCommand, _cfg_path, _load_cfg


class InitCLI(_BaseCommand):
    """Write a default config file."""

    force = scfg.Value(
        False, isflag=True, help='Overwrite an existing config file.'
    )

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        path = _cfg_path(args.config)
        if path.exists() and not args.force:
            print(f'Config already exists: {path}', file=sys.stderr)
            print('Use --force to overwrite it.', file=sys.stderr)
            return 2
        save(path, ProviderConfig())
        print(f'Wrote config: {path}')
        return 0


class ConfigShowCLI(_BaseCommand):
    """Show the resolved config, defaults included."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        path = _cfg_path(args.config)
        cfg = _load_cfg(args.config).expanded_paths()
        print(f'# Config: {path} ({"exists" if path.exists() else "defaults"})')
        print(dump_toml(cfg), end='')
        return 0


class ConfigModalCLI(scfg.ModalCLI):
    """Provider config management commands."""

    init = InitCLI
    show = ConfigShowCLI
