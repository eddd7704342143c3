"""Target lifecycle: create, start, stop, destroy, and inspect remote machines.

Preconditions for callers: operations on one target are issued in order
by a single caller. Running create and destroy for the same target at the
same time is not supported and is not detected here.
"""

from __future__ import annotations

import contextlib
import json
from dataclasses import dataclass
from typing import Any, Iterator, NoReturn, Optional

import docker
from loguru import logger

from . import __version__
from .config import ProviderConfig
from .errors import FlyVMError, NotFoundError, RemoteAPIError
from .fly import (
    READY_STATES,
    LaunchSpec,
    LogsClient,
    MachineHandle,
    MachineMount,
    MachinesClient,
    MachineState,
)
from .logsink import LogWriter, target_log_writer
from .naming import resource_name, volume_name
from .poll import poll_until
from .targets import Target, TargetOptions, parse_target_options, target_config_manifest
from .tasks import TaskSupervisor
from .tunnel import (
    DaemonConnector,
    SessionSettings,
    SocketForwarder,
    TunnelManager,
    make_connector,
)

log = logger

PROVIDER_NAME = 'fly-provider'
PROVIDER_LABEL = 'Fly.io'


def provider_info() -> dict[str, Any]:
    return {
        'name': PROVIDER_NAME,
        'label': PROVIDER_LABEL,
        'version': __version__,
        'target_config_manifest': target_config_manifest(),
    }


def _is_transient(ex: RemoteAPIError) -> bool:
    code = ex.status_code
    return code in (0, 404, 429) or code >= 500


@dataclass
class CreatedTarget:
    machine: MachineHandle
    engine: docker.DockerClient


class FlyProvider:
    """
    Args:
        cfg: provider configuration; paths are expanded in place.
        supervisor: owner of background tasks (log streams, forwards).
        tunnels: mesh session owner; built from ``cfg`` when omitted.
    """

    def __init__(
        self,
        cfg: ProviderConfig,
        *,
        supervisor: Optional[TaskSupervisor] = None,
        tunnels: Optional[TunnelManager] = None,
    ):
        self.cfg = cfg.expanded_paths()
        self.supervisor = supervisor if supervisor is not None else TaskSupervisor()
        self.tunnels = (
            tunnels
            if tunnels is not None
            else TunnelManager(SessionSettings.from_config(self.cfg))
        )
        self.forwarder = SocketForwarder(
            self.tunnels,
            self.supervisor,
            ssh_port=int(self.cfg.tunnel.ssh_port),
            ssh_user=self.cfg.tunnel.ssh_user,
            ssh_identity_file=self.cfg.tunnel.ssh_identity_file,
        )
        self.connector: DaemonConnector = make_connector(
            self.cfg, self.tunnels, self.forwarder
        )

    def info(self) -> dict[str, Any]:
        return provider_info()

    def _machines(self, target: Target, opts: TargetOptions) -> MachinesClient:
        return MachinesClient(
            resource_name(target.id),
            opts.auth_token,
            base_url=self.cfg.api.machines_url,
            timeout_s=self.cfg.api.timeout_s,
        )

    def _logs(self, target: Target, opts: TargetOptions) -> LogsClient:
        return LogsClient(
            resource_name(target.id),
            opts.auth_token,
            base_url=self.cfg.api.platform_url,
            timeout_s=self.cfg.api.timeout_s,
        )

    def log_writer(self, target: Target):
        return target_log_writer(
            self.cfg.paths.target_logs_dir, target.id, target.name
        )

    def init_script(self, target: Target) -> str:
        url = self.cfg.agent.download_url
        if not url:
            raise FlyVMError('agent.download_url is not set.')
        api_key = target.api_key or self.cfg.agent.api_key
        return (
            'apk add --no-cache curl bash && '
            f'curl -sfL -H "Authorization: Bearer {api_key}" {url} | bash'
        )

    def create_target(self, target: Target) -> CreatedTarget:
        """Provision the target's app, volume, and machine and make it reachable.

        Blocks until the machine is in a ready state and its agent answers
        over the tunnel. Log streaming is started in the background and is
        not awaited.
        """
        writer, cleanup = self.log_writer(target)
        try:
            opts = parse_target_options(target.options)
            entrypoint = ['sh', '-c', self.init_script(target)]
            client = self._machines(target, opts)
            client.create_app(
                opts.org_slug,
                ready_timeout_s=self.cfg.machine.ready_timeout_s,
                poll_interval_s=self.cfg.machine.dial_interval_s,
            )
            volume = client.create_volume(
                volume_name(target.name), opts.disk_size, opts.region
            )
            spec = LaunchSpec(
                name=resource_name(target.name),
                image=self.cfg.machine.image,
                size=opts.size,
                region=opts.region,
                mounts=[
                    MachineMount(
                        volume=volume.id,
                        path=self.cfg.machine.mount_path,
                        name=volume.name,
                        size_gb=opts.disk_size,
                    )
                ],
                env=dict(target.env_vars),
                entrypoint=entrypoint,
            )
            machine = client.launch(spec)
            self.supervisor.spawn(
                f'logs:{target.id}',
                self._stream_logs_task,
                target,
                opts,
                machine.id,
            )
            self.wait_until_ready(client, spec.name)
            self.wait_for_dial(target.id)
            writer.write('target agent started.\n')
            engine = self.connector.engine_client(target.id)
            return CreatedTarget(machine=machine, engine=engine)
        except FlyVMError as ex:
            writer.write(f'Failed to create target: {ex}\n')
            raise
        finally:
            cleanup()

    def wait_until_ready(
        self, client: MachinesClient, machine_name: str
    ) -> float:
        """Poll the machine until it reaches a ready state.

        Ready means the machine exists in one of READY_STATES; it does not
        have to be started. Lookup misses, transport failures, 404, 429 and
        5xx answers count as not ready; any other API error is raised at once.
        """

        def _ready() -> bool:
            try:
                machine = client.find_machine(machine_name)
            except NotFoundError as ex:
                log.debug('Machine {} not ready: {}', machine_name, ex)
                return False
            except RemoteAPIError as ex:
                if not _is_transient(ex):
                    raise
                log.debug('Machine {} not ready: {}', machine_name, ex)
                return False
            return machine.state in READY_STATES

        return poll_until(
            _ready,
            timeout_s=self.cfg.machine.ready_timeout_s,
            interval_s=self.cfg.machine.poll_interval_s,
            what=f'machine {machine_name}',
        )

    def wait_for_dial(
        self, hostname: str, timeout_s: Optional[float] = None
    ) -> float:
        return self.tunnels.wait_for_dial(
            hostname,
            int(self.cfg.tunnel.ssh_port),
            timeout_s=(
                self.cfg.machine.dial_timeout_s
                if timeout_s is None
                else timeout_s
            ),
            interval_s=self.cfg.machine.dial_interval_s,
        )

    def engine_client(self, target: Target) -> docker.DockerClient:
        return self.connector.engine_client(target.id)

    def start_target(self, target: Target) -> None:
        with self._logged(target, 'start'):
            opts = parse_target_options(target.options)
            client = self._machines(target, opts)
            client.wait_for_app(timeout_s=self.cfg.machine.ready_timeout_s)
            machine = client.find_machine(resource_name(target.name))
            if machine.state in (MachineState.STARTED, MachineState.STARTING):
                log.info('Machine {} already {}', machine.name, machine.state.value)
                return
            if machine.state not in (MachineState.STOPPED, MachineState.CREATED):
                raise FlyVMError(
                    f'Cannot start machine {machine.name} in state {machine.state.value}'
                )
            client.start(machine.id)

    def stop_target(self, target: Target) -> None:
        with self._logged(target, 'stop'):
            opts = parse_target_options(target.options)
            client = self._machines(target, opts)
            machine = client.find_machine(resource_name(target.name))
            if machine.state not in (MachineState.STARTED, MachineState.STARTING):
                log.info(
                    'Machine {} not running (state={}); nothing to stop',
                    machine.name,
                    machine.state.value,
                )
                return
            client.stop(machine.id)

    def destroy_target(self, target: Target) -> None:
        with self._logged(target, 'destroy'):
            opts = parse_target_options(target.options)
            self._machines(target, opts).destroy_app()
            self.connector.release(target.id)

    def get_machine(self, target: Target) -> MachineHandle:
        opts = parse_target_options(target.options)
        return self._machines(target, opts).find_machine(
            resource_name(target.name)
        )

    def target_metadata(self, target: Target) -> str:
        with self._logged(target, 'get metadata for'):
            machine = self.get_machine(target)
        return json.dumps(
            {
                'MachineId': machine.id,
                'VolumeId': machine.mounts[0].volume if machine.mounts else '',
                'IsRunning': machine.state == MachineState.STARTED,
                'Created': machine.created_at,
            }
        )

    def stream_target_logs(
        self, target: Target, sink: LogWriter, machine_id: str = ''
    ) -> NoReturn:
        opts = parse_target_options(target.options)
        self._logs(target, opts).stream(
            sink,
            region=opts.region,
            machine_id=machine_id,
            idle_delay_s=self.cfg.machine.log_idle_delay_s,
        )

    def _stream_logs_task(
        self, target: Target, opts: TargetOptions, machine_id: str
    ) -> None:
        writer, cleanup = self.log_writer(target)
        try:
            self._logs(target, opts).stream(
                writer,
                region=opts.region,
                machine_id=machine_id,
                idle_delay_s=self.cfg.machine.log_idle_delay_s,
            )
        except Exception as ex:
            writer.write(f'Log streaming stopped: {ex}\n')
            raise
        finally:
            cleanup()

    @contextlib.contextmanager
    def _logged(self, target: Target, action: str) -> Iterator[LogWriter]:
        """Write a failed operation's error to the target log, then re-raise."""
        writer, cleanup = self.log_writer(target)
        try:
            yield writer
        except FlyVMError as ex:
            writer.write(f'Failed to {action} target: {ex}\n')
            raise
        finally:
            cleanup()
