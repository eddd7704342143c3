"""Polling reader for the remote application log API."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, NoReturn, Optional

import requests
from loguru import logger

from ..config import DEFAULT_PLATFORM_URL
from ..logsink import LogWriter
from ._common import new_session, send

log = logger

DEFAULT_IDLE_DELAY_S = 10.0


@dataclass
class LogEntry:
    timestamp: str = ''
    instance: str = ''
    region: str = ''
    level: str = ''
    message: str = ''

    @classmethod
    def from_api(cls, data: dict) -> 'LogEntry':
        attrs = data.get('attributes', data) or {}
        return cls(
            timestamp=str(attrs.get('timestamp', '')),
            instance=str(attrs.get('instance', '')),
            region=str(attrs.get('region', '')),
            level=str(attrs.get('level', '')),
            message=str(attrs.get('message', '')),
        )

    def format(self) -> str:
        return (
            f'{self.timestamp} app[{self.instance}] {self.region} '
            f'[{self.level}] {self.message}\n'
        )


FetchPage = Callable[[str], tuple[list[LogEntry], str]]


def stream_logs(
    fetch_page: FetchPage,
    sink: LogWriter,
    *,
    idle_delay_s: float = DEFAULT_IDLE_DELAY_S,
    sleep: Callable[[float], None] = time.sleep,
) -> NoReturn:
    """Copy log pages to ``sink`` forever.

    ``fetch_page`` receives the pagination token to resume from and returns
    the entries plus the next token. Entries are written in the order the
    page lists them. When a page comes back with the same token as the
    previous one there is nothing new yet, and the loop waits
    ``idle_delay_s`` before asking again. The only way out is an exception
    from ``fetch_page`` (or the sink), which propagates to the caller.
    """
    prev_token = ''
    next_token = ''
    while True:
        entries, token = fetch_page(next_token)
        for entry in entries:
            sink.write(entry.format())
        idle = token == prev_token
        prev_token = token
        if token:
            next_token = token
        if idle:
            sleep(idle_delay_s)


class LogsClient:
    def __init__(
        self,
        app_name: str,
        token: str,
        *,
        base_url: str = DEFAULT_PLATFORM_URL,
        timeout_s: float = 30,
        session: Optional[requests.Session] = None,
    ):
        self.app_name = app_name
        self.base_url = base_url.rstrip('/')
        self.timeout_s = timeout_s
        self.session = session if session is not None else new_session(token)

    def fetch(
        self, next_token: str, region: str = '', machine_id: str = ''
    ) -> tuple[list[LogEntry], str]:
        params = {'next_token': next_token}
        if machine_id:
            params['instance'] = machine_id
        if region:
            params['region'] = region
        resp = send(
            self.session,
            'GET',
            f'{self.base_url}/api/v1/apps/{self.app_name}/logs',
            params=params,
            timeout_s=self.timeout_s,
        )
        data = resp.json() or {}
        entries = [LogEntry.from_api(item) for item in data.get('data') or []]
        token = str((data.get('meta') or {}).get('next_token', '') or '')
        return entries, token

    def stream(
        self,
        sink: LogWriter,
        *,
        region: str = '',
        machine_id: str = '',
        idle_delay_s: float = DEFAULT_IDLE_DELAY_S,
    ) -> NoReturn:
        log.debug(
            'Streaming logs for app={} region={} machine={}',
            self.app_name,
            region or '(any)',
            machine_id or '(any)',
        )
        stream_logs(
            lambda token: self.fetch(token, region, machine_id),
            sink,
            idle_delay_s=idle_delay_s,
        )
