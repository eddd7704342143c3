"""Subprocess and filesystem helpers shared by the tunnel code."""

from __future__ import annotations

import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from loguru import logger

log = logger

REDACTED = '***'


@dataclass(frozen=True)
class CmdResult:
    code: int
    stdout: str
    stderr: str


class CmdError(RuntimeError):
    def __init__(self, cmd: str, result: CmdResult):
        self.cmd = cmd
        self.result = result
        super().__init__(
            f'Command failed (code={result.code}): {cmd}\n{result.stderr}'.strip()
        )


def shell_join(cmd: Sequence[str], secrets: Sequence[str] = ()) -> str:
    """Quote ``cmd`` for display, masking any of ``secrets`` it contains."""
    text = ' '.join(shlex.quote(c) for c in cmd)
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


def run_cmd(
    cmd: Sequence[str],
    *,
    check: bool = True,
    capture: bool = True,
    timeout: Optional[float] = None,
    secrets: Sequence[str] = (),
) -> CmdResult:
    """Run a short-lived command and collect its output.

    ``secrets`` are masked wherever the command line is logged or shown in
    a raised CmdError. ``subprocess.TimeoutExpired`` propagates unchanged.
    """
    shown = shell_join(cmd, secrets)
    log.opt(depth=1).debug('RUN: {}', shown)
    p = subprocess.run(
        list(cmd), capture_output=capture, text=True, timeout=timeout
    )
    res = CmdResult(p.returncode, p.stdout or '', p.stderr or '')
    if p.returncode != 0 and check:
        log.opt(depth=1).error(
            'Command failed code={} cmd={} stderr={}',
            p.returncode,
            shown,
            res.stderr.strip(),
        )
        raise CmdError(shown, res)
    log.opt(depth=1).debug('Command exited code={} cmd={}', p.returncode, shown)
    return res


def spawn(
    cmd: Sequence[str], *, log_path: Optional[Path] = None
) -> subprocess.Popen:
    """Start a long-running child in its own session.

    Output is appended to ``log_path`` when given and discarded otherwise;
    the child never writes to a pipe.
    """
    log.opt(depth=1).debug('SPAWN: {}', shell_join(cmd))
    if log_path is None:
        return subprocess.Popen(
            list(cmd),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    ensure_dir(log_path.parent)
    # The child keeps its own copy of the descriptor.
    with log_path.open('ab') as fp:
        return subprocess.Popen(
            list(cmd),
            stdin=subprocess.DEVNULL,
            stdout=fp,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def expand(path: str) -> str:
    return os.path.expandvars(os.path.expanduser(path))
