"""Writers that receive per-target log lines."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Protocol, TextIO

from loguru import logger

from .util import ensure_dir

log = logger


class LogWriter(Protocol):
    def write(self, data: str) -> int: ...


class InfoLogWriter:
    """Forward each written line to the process logger at INFO level."""

    def write(self, data: str) -> int:
        for line in data.splitlines():
            if line.strip():
                log.opt(depth=1).info(line)
        return len(data)


class FileLogWriter:
    def __init__(self, fp: TextIO):
        self.fp = fp

    def write(self, data: str) -> int:
        n = self.fp.write(data)
        self.fp.flush()
        return n


class MultiWriter:
    def __init__(self, *writers: LogWriter):
        self.writers = list(writers)

    def write(self, data: str) -> int:
        for w in self.writers:
            w.write(data)
        return len(data)


def target_log_writer(
    logs_dir: str, target_id: str, target_name: str
) -> tuple[MultiWriter, Callable[[], None]]:
    """Build the log writer for a target and the function that closes it.

    The file part is optional: without a logs directory, or when the file
    cannot be opened, only the INFO forwarder is used.
    """
    writer = MultiWriter(InfoLogWriter())
    if not logs_dir:
        return writer, lambda: None
    path = Path(logs_dir) / f'{target_id}.log'
    try:
        ensure_dir(path.parent)
        fp = path.open('a', encoding='utf-8')
    except OSError as ex:
        log.warning(
            'Could not open log file for target {} ({}): {}',
            target_name,
            path,
            ex,
        )
        return writer, lambda: None
    writer.writers.append(FileLogWriter(fp))
    return writer, fp.close
