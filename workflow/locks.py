from __future__ import annotations

from contextlib import contextmanager
import threading
from typing import Iterator


class ProjectLocks:
    """One mutex per project id, created on demand and dropped when idle."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._waiters: dict[str, int] = {}

    @contextmanager
    def hold(self, project_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(project_id, threading.Lock())
            self._waiters[project_id] = self._waiters.get(project_id, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._waiters[project_id] -= 1
                if self._waiters[project_id] == 0:
                    del self._waiters[project_id]
                    del self._locks[project_id]

    def active(self) -> int:
        with self._guard:
            return len(self._locks)
