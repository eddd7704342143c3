"""Tests for the log page streamer and the logs API client."""

from __future__ import annotations

import pytest

from flyvm.fly.logs import LogEntry, LogsClient, stream_logs


class Sink:
    def __init__(self) -> None:
        self.lines: list[str] = []

    def write(self, data: str) -> int:
        self.lines.append(data)
        return len(data)


class Stop(Exception):
    pass


def _pages(pages):
    tokens = []
    it = iter(pages)

    def fetch(token: str):
        tokens.append(token)
        try:
            return next(it)
        except StopIteration:
            raise Stop()

    return fetch, tokens


def _entry(msg: str) -> LogEntry:
    return LogEntry(
        timestamp='2024-01-01T00:00:00Z',
        instance='m1',
        region='ams',
        level='info',
        message=msg,
    )


def test_stream_writes_in_order_and_waits_when_idle() -> None:
    fetch, tokens = _pages(
        [
            ([_entry('A'), _entry('B')], 't1'),
            ([], 't1'),
            ([_entry('C')], 't2'),
        ]
    )
    sink = Sink()
    sleeps: list[float] = []
    with pytest.raises(Stop):
        stream_logs(fetch, sink, idle_delay_s=10.0, sleep=sleeps.append)
    assert [line.split('] ')[-1] for line in sink.lines] == ['A\n', 'B\n', 'C\n']
    assert tokens == ['', 't1', 't1', 't2']
    assert sleeps == [10.0]


def test_stream_keeps_last_token_on_empty_token() -> None:
    fetch, tokens = _pages([([_entry('A')], 't1'), ([], ''), ([], '')])
    sleeps: list[float] = []
    with pytest.raises(Stop):
        stream_logs(fetch, Sink(), idle_delay_s=1.0, sleep=sleeps.append)
    assert tokens == ['', 't1', 't1', 't1']
    assert sleeps == [1.0]


def test_entry_format() -> None:
    line = _entry('hello').format()
    assert line == '2024-01-01T00:00:00Z app[m1] ams [info] hello\n'


class FakeResponse:
    def __init__(self, status_code: int, data) -> None:
        self.status_code = status_code
        self._data = data
        self.text = str(data)

    def json(self):
        return self._data


class FakeSession:
    def __init__(self, resp: FakeResponse) -> None:
        self.resp = resp
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self.resp


def test_logs_client_fetch_parses_page() -> None:
    session = FakeSession(
        FakeResponse(
            200,
            {
                'data': [
                    {
                        'attributes': {
                            'timestamp': 'ts',
                            'instance': 'm1',
                            'region': 'ams',
                            'level': 'info',
                            'message': 'hi',
                        }
                    }
                ],
                'meta': {'next_token': 'n2'},
            },
        )
    )
    client = LogsClient(
        'flyvm-t1', 'tok', base_url='https://plat.example', session=session
    )
    entries, token = client.fetch('n1', region='ams', machine_id='m1')
    assert token == 'n2'
    assert entries[0].message == 'hi'
    method, url, kwargs = session.calls[0]
    assert method == 'GET'
    assert url == 'https://plat.example/api/v1/apps/flyvm-t1/logs'
    assert kwargs['params'] == {
        'next_token': 'n1',
        'instance': 'm1',
        'region': 'ams',
    }
