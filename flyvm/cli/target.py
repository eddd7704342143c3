from __future__ import annotations

import json
import sys

import scriptconfig as scfg

from ..errors import WaitTimeoutError
from ..provider import FlyProvider
from ._common import _TargetCommand, _load_cfg, _target_from_args, log


def _provider(args) -> FlyProvider:
    return FlyProvider(_load_cfg(args.config))


class CreateCLI(_TargetCommand):
    """Create the app, volume, and machine for a target and wait for its agent."""

    follow_logs = scfg.Value(
        False,
        isflag=True,
        help='Keep running and stream machine logs after creation.',
    )

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        target = _target_from_args(args)
        provider = _provider(args)
        try:
            created = provider.create_target(target)
        except WaitTimeoutError as ex:
            print(f'Timed out after {ex.elapsed:.1f}s: {ex}', file=sys.stderr)
            return 1
        print(
            json.dumps(
                {
                    'MachineId': created.machine.id,
                    'Name': created.machine.name,
                    'State': created.machine.state.value,
                }
            )
        )
        if args.follow_logs:
            log.info('Following logs for target {}', target.id)
            provider.supervisor.join(name=f'logs:{target.id}')
        return 0


class StartCLI(_TargetCommand):
    """Start a stopped target machine."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        _provider(args).start_target(_target_from_args(args))
        return 0


class StopCLI(_TargetCommand):
    """Stop a running target machine."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        _provider(args).stop_target(_target_from_args(args))
        return 0


class DestroyCLI(_TargetCommand):
    """Delete the target's app with its machines and volumes."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        _provider(args).destroy_target(_target_from_args(args))
        print(f'Destroyed target {args.target_id}')
        return 0


class InfoCLI(_TargetCommand):
    """Print target metadata as JSON."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        print(_provider(args).target_metadata(_target_from_args(args)))
        return 0


class LogsCLI(_TargetCommand):
    """Stream the target's machine logs to stdout until interrupted."""

    machine_id = scfg.Value('', help='Only show logs from this machine.')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        try:
            _provider(args).stream_target_logs(
                _target_from_args(args),
                sys.stdout,
                machine_id=str(args.machine_id or ''),
            )
        except KeyboardInterrupt:
            return 0


class TargetModalCLI(scfg.ModalCLI):
    """Target lifecycle commands."""

    create = CreateCLI
    start = StartCLI
    stop = StopCLI
    destroy = DestroyCLI
    info = InfoCLI
    logs = LogsCLI
