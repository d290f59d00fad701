from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from copy import deepcopy
import threading
from typing import Any, ContextManager, Iterator

from .errors import NotFoundError, StageConflictError
from .types import Channel, HistoryEvent, Project, Role, SystemLogEntry, TaskStatus, WorkflowStage

# Fields a store update may touch; identity, channel and history are not among them.
UPDATABLE_FIELDS = frozenset(
    {
        "current_stage",
        "assigned_to_role",
        "assigned_to_user_id",
        "status",
        "priority",
        "due_date",
        "data",
        "updated_at",
    }
)


class ProjectUnit:
    """One project loaded for a read-modify-write.

    ``project`` is the state as loaded. Changes, history events and system
    log entries collected here are written by the store together when the
    ``transaction`` block exits cleanly, and dropped when it raises.
    """

    def __init__(self, project: Project) -> None:
        self.project = project
        self.changes: dict[str, Any] = {}
        self.events: list[HistoryEvent] = []
        self.entries: list[SystemLogEntry] = []
        self._pending = project.snapshot()

    def update(self, changes: dict[str, Any], event: HistoryEvent | None = None) -> Project:
        check_changes(changes)
        for key, value in changes.items():
            if key == "data":
                # Never keep a reference to the caller's nested objects.
                value = deepcopy(value)
            self.changes[key] = value
            setattr(self._pending, key, value)
        if event is not None:
            self.events.append(event)
            self._pending.history.append(event)
        return self._pending.snapshot()

    def log(self, entry: SystemLogEntry) -> None:
        self.entries.append(entry)

    @property
    def result(self) -> Project:
        return self._pending.snapshot()


class ProjectStore(ABC):
    @abstractmethod
    def create(
        self,
        project: Project,
        entry: SystemLogEntry | None = None,
        system_log: SystemLogStore | None = None,
    ) -> str:
        """Persist a new project with its initial history and ``entry`` as one unit."""

    @abstractmethod
    def get(self, project_id: str) -> Project | None:
        ...

    @abstractmethod
    def transaction(
        self,
        project_id: str,
        system_log: SystemLogStore | None = None,
    ) -> ContextManager[ProjectUnit]:
        """Load ``project_id`` and yield a ``ProjectUnit`` to validate and change.

        Raises ``NotFoundError`` for an unknown id, and ``StageConflictError``
        when another writer changed the project before the unit was written.
        """

    def update(self, project_id: str, changes: dict[str, Any], event: HistoryEvent | None = None) -> Project:
        """Apply ``changes`` and append ``event`` as one unit; return the new state."""
        with self.transaction(project_id) as unit:
            unit.update(changes, event)
        return unit.result

    @abstractmethod
    def list(
        self,
        *,
        channel: Channel | None = None,
        stage: WorkflowStage | None = None,
        status: TaskStatus | None = None,
        assigned_to_role: Role | None = None,
    ) -> list[Project]:
        ...


class SystemLogStore(ABC):
    @abstractmethod
    def append(self, entry: SystemLogEntry) -> None:
        ...

    @abstractmethod
    def list(self, limit: int = 100, actor_id: str | None = None) -> list[SystemLogEntry]:
        ...


def check_changes(changes: dict[str, Any]) -> None:
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported project fields: {sorted(unknown)}")


def matches(
    project: Project,
    channel: Channel | None,
    stage: WorkflowStage | None,
    status: TaskStatus | None,
    assigned_to_role: Role | None,
) -> bool:
    if channel is not None and project.channel != channel:
        return False
    if stage is not None and project.current_stage != stage:
        return False
    if status is not None and project.status != status:
        return False
    if assigned_to_role is not None and project.assigned_to_role != assigned_to_role:
        return False
    return True


class InMemoryProjectStore(ProjectStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._projects: dict[str, Project] = {}

    def create(
        self,
        project: Project,
        entry: SystemLogEntry | None = None,
        system_log: SystemLogStore | None = None,
    ) -> str:
        with self._lock:
            if project.id in self._projects:
                raise ValueError(f"Project already exists: {project.id}")
            if entry is not None and system_log is not None:
                system_log.append(entry)
            self._projects[project.id] = project.snapshot()
        return project.id

    def get(self, project_id: str) -> Project | None:
        with self._lock:
            project = self._projects.get(project_id)
            return project.snapshot() if project is not None else None

    @contextmanager
    def transaction(self, project_id: str, system_log: SystemLogStore | None = None) -> Iterator[ProjectUnit]:
        with self._lock:
            loaded = self._projects.get(project_id)
            if loaded is None:
                raise NotFoundError("Project not found", project_id)
            unit = ProjectUnit(loaded.snapshot())
        yield unit
        with self._lock:
            # Writes replace the stored object, so identity tells whether it moved.
            if self._projects.get(project_id) is not loaded:
                raise StageConflictError("Project changed while the transition was running", project_id)
            if system_log is not None:
                for entry in unit.entries:
                    system_log.append(entry)
            self._projects[project_id] = unit.result

    def list(
        self,
        *,
        channel: Channel | None = None,
        stage: WorkflowStage | None = None,
        status: TaskStatus | None = None,
        assigned_to_role: Role | None = None,
    ) -> list[Project]:
        with self._lock:
            rows = [p.snapshot() for p in self._projects.values() if matches(p, channel, stage, status, assigned_to_role)]
        return sorted(rows, key=lambda p: p.created_at, reverse=True)


class InMemorySystemLogStore(SystemLogStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: list[SystemLogEntry] = []

    def append(self, entry: SystemLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def list(self, limit: int = 100, actor_id: str | None = None) -> list[SystemLogEntry]:
        with self._lock:
            rows = [e for e in self._entries if actor_id is None or e.actor_id == actor_id]
        # Stable sort keeps append order for identical timestamps.
        rows = sorted(reversed(rows), key=lambda e: e.timestamp, reverse=True)
        return rows[:limit]
