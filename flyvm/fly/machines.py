"""Client for the remote machines control-plane API.

Every call is scoped to one app. Calls are safe to repeat but are not
deduplicated, so callers must not run two operations for the same app or
machine concurrently.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Optional

import requests
from loguru import logger

from ..config import DEFAULT_MACHINES_URL
from ..errors import NotFoundError, RemoteAPIError
from ..poll import poll_until
from ._common import new_session, send

log = logger


class MachineState(str, enum.Enum):
    CREATED = 'created'
    STARTING = 'starting'
    STARTED = 'started'
    STOPPING = 'stopping'
    STOPPED = 'stopped'
    DESTROYING = 'destroying'
    DESTROYED = 'destroyed'
    UNKNOWN = 'unknown'

    @classmethod
    def parse(cls, raw: Any) -> 'MachineState':
        try:
            return cls(str(raw or '').lower())
        except ValueError:
            return cls.UNKNOWN


# Any of these means the machine exists and can be inspected.
READY_STATES = frozenset(
    {MachineState.CREATED, MachineState.STARTED, MachineState.STOPPED}
)


@dataclass
class MachineMount:
    volume: str
    path: str
    name: str = ''
    size_gb: int = 0


@dataclass
class MachineHandle:
    id: str
    name: str
    state: MachineState = MachineState.UNKNOWN
    created_at: str = ''
    region: str = ''
    mounts: list[MachineMount] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict) -> 'MachineHandle':
        config = data.get('config') or {}
        mounts = [
            MachineMount(
                volume=str(m.get('volume', '')),
                path=str(m.get('path', '')),
                name=str(m.get('name', '')),
                size_gb=int(m.get('size_gb', 0) or 0),
            )
            for m in (config.get('mounts') or [])
        ]
        return cls(
            id=str(data.get('id', '')),
            name=str(data.get('name', '')),
            state=MachineState.parse(data.get('state')),
            created_at=str(data.get('created_at', '')),
            region=str(data.get('region', '')),
            mounts=mounts,
        )


@dataclass
class VolumeRef:
    id: str
    name: str
    region: str = ''
    size_gb: int = 0


@dataclass
class LaunchSpec:
    name: str
    image: str
    size: str
    region: str = ''
    mounts: list[MachineMount] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    entrypoint: list[str] = field(default_factory=list)

    def as_request(self) -> dict:
        config: dict[str, Any] = {
            'image': self.image,
            'size': self.size,
            'env': dict(self.env),
            'mounts': [
                {
                    'volume': m.volume,
                    'path': m.path,
                    'name': m.name,
                    'size_gb': m.size_gb,
                }
                for m in self.mounts
            ],
        }
        if self.entrypoint:
            config['init'] = {'entrypoint': list(self.entrypoint)}
        body: dict[str, Any] = {'name': self.name, 'config': config}
        if self.region:
            body['region'] = self.region
        return body


class MachinesClient:
    def __init__(
        self,
        app_name: str,
        token: str,
        *,
        base_url: str = DEFAULT_MACHINES_URL,
        timeout_s: float = 30,
        session: Optional[requests.Session] = None,
    ):
        self.app_name = app_name
        self.base_url = base_url.rstrip('/')
        self.timeout_s = timeout_s
        self.session = session if session is not None else new_session(token)

    def _send(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        return send(
            self.session,
            method,
            f'{self.base_url}{path}',
            timeout_s=self.timeout_s,
            **kwargs,
        )

    def create_app(
        self,
        org_slug: str,
        *,
        ready_timeout_s: float = 300.0,
        poll_interval_s: float = 1.0,
    ) -> None:
        """Create the app, then block until the API reports it."""
        log.info('Creating app {} in org {}', self.app_name, org_slug)
        self._send(
            'POST',
            '/apps',
            json={'app_name': self.app_name, 'org_slug': org_slug},
            ok=(200, 201),
        )
        self.wait_for_app(
            timeout_s=ready_timeout_s, interval_s=poll_interval_s
        )

    def app_exists(self) -> bool:
        try:
            self._send('GET', f'/apps/{self.app_name}')
        except RemoteAPIError as ex:
            if ex.status_code == 404:
                return False
            raise
        return True

    def wait_for_app(
        self, *, timeout_s: float = 300.0, interval_s: float = 1.0
    ) -> None:
        poll_until(
            self.app_exists,
            timeout_s=timeout_s,
            interval_s=interval_s,
            what=f'app {self.app_name}',
        )

    def destroy_app(self) -> None:
        # Deletion is asynchronous on the remote side; 202 is success.
        log.info('Deleting app {}', self.app_name)
        self._send('DELETE', f'/apps/{self.app_name}', ok=(200, 202, 204))

    def create_volume(self, name: str, size_gb: int, region: str) -> VolumeRef:
        body: dict[str, Any] = {'name': name, 'size_gb': size_gb}
        if region:
            body['region'] = region
        data = self._send(
            'POST', f'/apps/{self.app_name}/volumes', json=body, ok=(200, 201)
        ).json()
        vol = VolumeRef(
            id=str(data.get('id', '')),
            name=str(data.get('name', name)),
            region=str(data.get('region', region)),
            size_gb=int(data.get('size_gb', size_gb) or size_gb),
        )
        log.info('Created volume {} ({})', vol.name, vol.id)
        return vol

    def launch(self, spec: LaunchSpec) -> MachineHandle:
        """Ask the provider to create a machine; does not wait for boot."""
        data = self._send(
            'POST',
            f'/apps/{self.app_name}/machines',
            json=spec.as_request(),
            ok=(200, 201),
        ).json()
        machine = MachineHandle.from_api(data)
        log.info(
            'Launched machine {} ({}) state={}',
            machine.name,
            machine.id,
            machine.state.value,
        )
        return machine

    def list_machines(self) -> list[MachineHandle]:
        data = self._send('GET', f'/apps/{self.app_name}/machines').json()
        return [MachineHandle.from_api(item) for item in data or []]

    def find_machine(self, name: str) -> MachineHandle:
        # There is no get-by-name endpoint; scan the app's machines.
        for machine in self.list_machines():
            if machine.name == name:
                return machine
        raise NotFoundError(f'machine {name} not found')

    def start(self, machine_id: str) -> None:
        log.info('Starting machine {}', machine_id)
        self._send('POST', f'/apps/{self.app_name}/machines/{machine_id}/start')

    def stop(self, machine_id: str) -> None:
        log.info('Stopping machine {}', machine_id)
        self._send(
            'POST',
            f'/apps/{self.app_name}/machines/{machine_id}/stop',
            json={},
        )

    def destroy_machine(self, machine_id: str, *, kill: bool = True) -> None:
        log.info('Destroying machine {}', machine_id)
        self._send(
            'DELETE',
            f'/apps/{self.app_name}/machines/{machine_id}',
            params={'kill': 'true' if kill else 'false'},
        )
