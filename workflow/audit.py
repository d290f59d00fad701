from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Callable

from .store import SystemLogStore
from .types import Actor, HistoryAction, HistoryEvent, Project, SystemLogEntry, WorkflowStage

logger = logging.getLogger(__name__)

# System log action kinds.
PROJECT_CREATED = "PROJECT_CREATED"
WORKFLOW_SUBMIT = "WORKFLOW_SUBMIT"
WORKFLOW_ADVANCE = "WORKFLOW_ADVANCE"
WORKFLOW_REJECT = "WORKFLOW_REJECT"
PROJECT_PUBLISHED = "PROJECT_PUBLISHED"
POST_SCHEDULED = "POST_SCHEDULED"


class AuditTrail:
    """Builds history events and system log entries for the engine."""

    def __init__(self, system_log: SystemLogStore, clock: Callable[[], datetime]) -> None:
        self._system_log = system_log
        self._clock = clock

    def event(
        self,
        stage: WorkflowStage,
        actor: Actor,
        action: HistoryAction,
        comment: str | None = None,
    ) -> HistoryEvent:
        return HistoryEvent(
            stage=stage,
            actor_id=actor.id,
            actor_name=actor.name,
            action=action,
            comment=comment or None,
            timestamp=self._clock(),
        )

    @property
    def system_log(self) -> SystemLogStore:
        return self._system_log

    def entry(
        self,
        actor: Actor,
        action: str,
        details: str,
        project: Project | None = None,
        **payload: Any,
    ) -> SystemLogEntry:
        """Build a system log entry; the store writes it with the project change."""
        if project is not None:
            payload.setdefault("project_id", project.id)
        return SystemLogEntry(
            actor_id=actor.id,
            actor_name=actor.name,
            actor_role=actor.role,
            action=action,
            details=details,
            payload={key: _plain(value) for key, value in payload.items()},
            timestamp=self._clock(),
        )

    def announce(self, entry: SystemLogEntry) -> None:
        logger.info("%s by %s (%s): %s", entry.action, entry.actor_name, entry.actor_role.value, entry.details)

    def entries(self, limit: int = 100, actor_id: str | None = None) -> list[SystemLogEntry]:
        return self._system_log.list(limit=limit, actor_id=actor_id)


def _plain(value: Any) -> Any:
    if hasattr(value, "value"):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value
