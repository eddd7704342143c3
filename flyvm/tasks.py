"""Supervisor for fire-and-forget background tasks.

Log streaming and socket forwarding run in daemon threads that nobody joins
during normal operation. The supervisor keeps a handle on each one so their
failures are logged and inspectable instead of silently lost.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from loguru import logger

log = logger


@dataclass
class TaskRecord:
    name: str
    thread: threading.Thread
    error: Optional[BaseException] = None
    done: threading.Event = field(default_factory=threading.Event)

    @property
    def running(self) -> bool:
        return not self.done.is_set()


class TaskSupervisor:
    def __init__(self, *, max_failed: int = 100) -> None:
        self.max_failed = max_failed
        self._lock = threading.Lock()
        self._tasks: list[TaskRecord] = []

    def spawn(
        self,
        name: str,
        func: Callable[..., Any],
        *args: Any,
        on_error: Callable[[BaseException], None] | None = None,
        **kwargs: Any,
    ) -> TaskRecord:
        """Run ``func`` in a daemon thread and record how it ends.

        An exception raised by ``func`` ends only that task: it is stored on
        the record, logged, and handed to ``on_error`` if given.
        """
        rec: TaskRecord

        def _run() -> None:
            try:
                func(*args, **kwargs)
            except Exception as ex:
                rec.error = ex
                log.error('Background task {} stopped: {}', name, ex)
                if on_error is not None:
                    try:
                        on_error(ex)
                    except Exception as cb_ex:
                        log.error(
                            'Error handler for task {} failed: {}', name, cb_ex
                        )
            finally:
                rec.done.set()
                log.debug('Background task {} finished', name)

        thread = threading.Thread(target=_run, name=name, daemon=True)
        rec = TaskRecord(name=name, thread=thread)
        with self._lock:
            self._prune()
            self._tasks.append(rec)
        log.debug('Starting background task {}', name)
        thread.start()
        return rec

    def _prune(self) -> None:
        # Finished tasks are dropped; only the newest failures are kept.
        failed = [t for t in self._tasks if not t.running and t.error is not None]
        keep_failed = set(map(id, failed[max(0, len(failed) - self.max_failed) :]))
        self._tasks = [
            t for t in self._tasks if t.running or id(t) in keep_failed
        ]

    def tasks(self, name: str | None = None) -> list[TaskRecord]:
        with self._lock:
            items = list(self._tasks)
        if name is None:
            return items
        return [t for t in items if t.name == name]

    def failed(self) -> list[TaskRecord]:
        return [t for t in self.tasks() if t.error is not None]

    def join(
        self, timeout: float | None = None, name: str | None = None
    ) -> bool:
        """Wait for known tasks, optionally only those called ``name``.

        Returns True if they all finished.
        """
        for rec in self.tasks(name):
            if not rec.done.wait(timeout):
                return False
        return True
