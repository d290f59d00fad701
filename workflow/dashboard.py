from __future__ import annotations

from collections import Counter
from datetime import UTC, datetime
from typing import Iterable

from .types import Priority, Project, TaskStatus


def _count(values: Iterable[object]) -> dict[str, int]:
    return {str(getattr(key, "value", key)): count for key, count in Counter(values).items()}


def is_overdue(project: Project, now: datetime) -> bool:
    if project.is_done or project.due_date is None:
        return False
    due = project.due_date
    if due.tzinfo is None:
        due = due.replace(tzinfo=UTC)
    return due < now


def workload(projects: Iterable[Project], now: datetime | None = None) -> dict:
    """Aggregate counts for dashboards, computed from project snapshots."""
    now = now or datetime.now(UTC)
    rows = list(projects)
    open_rows = [p for p in rows if not p.is_done]
    return {
        "total": len(rows),
        "open": len(open_rows),
        "done": len(rows) - len(open_rows),
        "by_stage": _count(p.current_stage for p in open_rows),
        "by_status": _count(p.status for p in rows),
        "by_role": _count(p.assigned_to_role for p in open_rows),
        "by_channel": _count(p.channel for p in rows),
        "waiting_approval": sum(1 for p in open_rows if p.status == TaskStatus.WAITING_APPROVAL),
        "high_priority": sum(1 for p in open_rows if p.priority == Priority.HIGH),
        "overdue": sorted(p.id for p in open_rows if is_overdue(p, now)),
    }
