"""Bounded polling used for machine readiness and tunnel dial waits."""

from __future__ import annotations

import time
from typing import Callable

from loguru import logger

from .errors import WaitTimeoutError

log = logger


def poll_until(
    check: Callable[[], bool],
    *,
    timeout_s: float,
    interval_s: float,
    what: str,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> float:
    """Call ``check`` every ``interval_s`` until it returns True.

    The deadline is fixed when polling starts and is tested after every
    call, before sleeping, so the total wall-clock time is bounded by
    ``timeout_s`` plus one check no matter how short the interval is. A
    check never runs after the deadline has been observed to pass.

    Returns:
        float: seconds elapsed until the check succeeded.

    Raises:
        WaitTimeoutError: if the deadline passes first.
    """
    start = clock()
    deadline = start + timeout_s
    attempts = 0
    while True:
        attempts += 1
        if check():
            elapsed = clock() - start
            log.debug('{} ready after {} attempt(s)', what, attempts)
            return elapsed
        now = clock()
        if now >= deadline:
            raise WaitTimeoutError(
                f'Timed out waiting for {what} after {attempts} attempt(s)',
                elapsed=now - start,
            )
        sleep(min(interval_s, deadline - now))
