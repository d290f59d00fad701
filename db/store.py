from __future__ import annotations

from contextlib import contextmanager
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Callable, Iterator
from uuid import UUID

from sqlalchemy import desc, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from workflow.engine import WorkflowEngine
from workflow.errors import NotFoundError, StageConflictError
from workflow.store import ProjectStore, ProjectUnit, SystemLogStore
from workflow.table import WorkflowTable, table_from_env
from workflow.types import (
    Channel,
    ContentType,
    HistoryAction,
    HistoryEvent,
    Priority,
    Project,
    Role,
    SystemLogEntry,
    TaskStatus,
    WorkflowStage,
)

from .models import HistoryEventRecord, ProjectRecord, SystemLogRecord


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _coerce_uuid(value: str) -> UUID | None:
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _event_row(event: HistoryEvent) -> HistoryEventRecord:
    return HistoryEventRecord(
        event_id=UUID(event.id),
        stage=event.stage.value,
        actor_id=event.actor_id,
        actor_name=event.actor_name,
        action=event.action.value,
        comment=event.comment,
        occurred_at=event.timestamp,
    )


def _event(row: HistoryEventRecord) -> HistoryEvent:
    return HistoryEvent(
        id=str(row.event_id),
        stage=WorkflowStage(row.stage),
        actor_id=row.actor_id,
        actor_name=row.actor_name,
        action=HistoryAction(row.action),
        comment=row.comment,
        timestamp=_aware(row.occurred_at),
    )


def _project(row: ProjectRecord) -> Project:
    return Project(
        id=str(row.id),
        title=row.title,
        channel=Channel(row.channel),
        content_type=ContentType(row.content_type),
        current_stage=WorkflowStage(row.current_stage),
        assigned_to_role=Role(row.assigned_to_role),
        assigned_to_user_id=row.assigned_to_user_id,
        status=TaskStatus(row.status),
        priority=Priority(row.priority),
        due_date=_aware(row.due_date),
        data=dict(row.data or {}),
        history=[_event(item) for item in row.history],
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _log_row(entry: SystemLogEntry) -> SystemLogRecord:
    return SystemLogRecord(
        entry_id=UUID(entry.id),
        actor_id=entry.actor_id,
        actor_name=entry.actor_name,
        actor_role=entry.actor_role.value,
        action=entry.action,
        details=entry.details,
        payload=entry.payload or None,
        occurred_at=entry.timestamp,
    )


def _stage_entries(
    session: Session,
    entries: list[SystemLogEntry],
    system_log: SystemLogStore | None,
) -> list[SystemLogEntry]:
    # SQL log entries ride the project's transaction; any other store is
    # written after the flush and before the commit.
    if system_log is None:
        return []
    if isinstance(system_log, SqlSystemLogStore):
        for entry in entries:
            session.add(_log_row(entry))
        return []
    return list(entries)


class SqlProjectStore(ProjectStore):
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def create(
        self,
        project: Project,
        entry: SystemLogEntry | None = None,
        system_log: SystemLogStore | None = None,
    ) -> str:
        session = self._session_factory()
        try:
            row = ProjectRecord(
                id=UUID(project.id),
                title=project.title,
                channel=project.channel.value,
                content_type=project.content_type.value,
                current_stage=project.current_stage.value,
                assigned_to_role=project.assigned_to_role.value,
                assigned_to_user_id=project.assigned_to_user_id,
                status=project.status.value,
                priority=project.priority.value,
                due_date=project.due_date,
                data=dict(project.data),
                created_at=project.created_at,
                updated_at=project.updated_at,
            )
            row.history = [_event_row(event) for event in project.history]
            session.add(row)
            pending = _stage_entries(session, [entry] if entry is not None else [], system_log)
            session.flush()
            for item in pending:
                system_log.append(item)
            session.commit()
            return project.id
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get(self, project_id: str) -> Project | None:
        key = _coerce_uuid(project_id)
        if key is None:
            return None
        session = self._session_factory()
        try:
            row = session.get(ProjectRecord, key)
            return _project(row) if row is not None else None
        finally:
            session.close()

    def _locked_row(self, session: Session, key: UUID) -> ProjectRecord | None:
        stmt = select(ProjectRecord).where(ProjectRecord.id == key).with_for_update()
        return session.execute(stmt).scalar_one_or_none()

    @contextmanager
    def transaction(self, project_id: str, system_log: SystemLogStore | None = None) -> Iterator[ProjectUnit]:
        key = _coerce_uuid(project_id)
        if key is None:
            raise NotFoundError("Project not found", project_id)
        session = self._session_factory()
        try:
            row = self._locked_row(session, key)
            if row is None:
                raise NotFoundError("Project not found", project_id)
            unit = ProjectUnit(_project(row))
            yield unit
            for name, value in unit.changes.items():
                setattr(row, name, _column_value(value))
            for event in unit.events:
                row.history.append(_event_row(event))
            pending = _stage_entries(session, unit.entries, system_log)
            # The version check fails the flush if another writer got there first.
            session.flush()
            for entry in pending:
                system_log.append(entry)
            session.commit()
        except StaleDataError as exc:
            session.rollback()
            raise StageConflictError("Project changed while the transition was running", project_id) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def list(
        self,
        *,
        channel: Channel | None = None,
        stage: WorkflowStage | None = None,
        status: TaskStatus | None = None,
        assigned_to_role: Role | None = None,
    ) -> list[Project]:
        session = self._session_factory()
        try:
            stmt = select(ProjectRecord)
            if channel is not None:
                stmt = stmt.where(ProjectRecord.channel == channel.value)
            if stage is not None:
                stmt = stmt.where(ProjectRecord.current_stage == stage.value)
            if status is not None:
                stmt = stmt.where(ProjectRecord.status == status.value)
            if assigned_to_role is not None:
                stmt = stmt.where(ProjectRecord.assigned_to_role == assigned_to_role.value)
            stmt = stmt.order_by(desc(ProjectRecord.created_at))
            rows = session.execute(stmt).scalars().all()
            return [_project(row) for row in rows]
        finally:
            session.close()


class SqlSystemLogStore(SystemLogStore):
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def append(self, entry: SystemLogEntry) -> None:
        session = self._session_factory()
        try:
            session.add(_log_row(entry))
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def list(self, limit: int = 100, actor_id: str | None = None) -> list[SystemLogEntry]:
        session = self._session_factory()
        try:
            stmt = select(SystemLogRecord)
            if actor_id:
                stmt = stmt.where(SystemLogRecord.actor_id == actor_id)
            stmt = stmt.order_by(desc(SystemLogRecord.occurred_at), desc(SystemLogRecord.seq)).limit(limit)
            rows = session.execute(stmt).scalars().all()
            return [
                SystemLogEntry(
                    id=str(row.entry_id),
                    actor_id=row.actor_id,
                    actor_name=row.actor_name,
                    actor_role=Role(row.actor_role),
                    action=row.action,
                    details=row.details,
                    payload=dict(row.payload or {}),
                    timestamp=_aware(row.occurred_at),
                )
                for row in rows
            ]
        finally:
            session.close()


def build_sql_engine(table: WorkflowTable | None = None) -> WorkflowEngine:
    from .session import SessionLocal

    return WorkflowEngine(
        SqlProjectStore(SessionLocal),
        SqlSystemLogStore(SessionLocal),
        table=table or table_from_env(),
    )
