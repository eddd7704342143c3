"""Clients for the remote machines control plane and its log API."""

from __future__ import annotations

from .logs import LogEntry, LogsClient, stream_logs
from .machines import (
    READY_STATES,
    LaunchSpec,
    MachineHandle,
    MachineMount,
    MachinesClient,
    MachineState,
    VolumeRef,
)

__all__ = [
    'READY_STATES',
    'LaunchSpec',
    'LogEntry',
    'LogsClient',
    'MachineHandle',
    'MachineMount',
    'MachineState',
    'MachinesClient',
    'VolumeRef',
    'stream_logs',
]
