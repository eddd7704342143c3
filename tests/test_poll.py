"""Tests for bounded polling."""

from __future__ import annotations

import pytest

from flyvm.errors import WaitTimeoutError
from flyvm.poll import poll_until


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, s: float) -> None:
        self.sleeps.append(s)
        self.now += s


def test_poll_returns_elapsed_when_ready() -> None:
    clock = FakeClock()
    calls = []

    def check() -> bool:
        calls.append(clock.now)
        return len(calls) == 3

    elapsed = poll_until(
        check,
        timeout_s=5.0,
        interval_s=0.2,
        what='thing',
        clock=clock,
        sleep=clock.sleep,
    )
    assert len(calls) == 3
    assert elapsed == pytest.approx(0.4)


def test_poll_times_out_at_deadline() -> None:
    clock = FakeClock()
    calls = []

    def check() -> bool:
        calls.append(clock.now)
        return False

    with pytest.raises(WaitTimeoutError) as info:
        poll_until(
            check,
            timeout_s=1.0,
            interval_s=0.375,
            what='thing',
            clock=clock,
            sleep=clock.sleep,
        )
    # The final sleep is clipped to land on the deadline.
    assert clock.sleeps == [0.375, 0.375, 0.25]
    assert info.value.elapsed == pytest.approx(1.0)
    assert calls[-1] == 101.0
    assert len(calls) == 4
    assert 'elapsed=1.0s' in str(info.value)


def test_poll_first_check_success_does_not_sleep() -> None:
    clock = FakeClock()
    elapsed = poll_until(
        lambda: True,
        timeout_s=0.0,
        interval_s=1.0,
        what='thing',
        clock=clock,
        sleep=clock.sleep,
    )
    assert elapsed == 0.0
    assert clock.sleeps == []
