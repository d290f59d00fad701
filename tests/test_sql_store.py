from __future__ import annotations

from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db import models
from db.base import Base
from db.store import SqlProjectStore, SqlSystemLogStore
from workflow import (
    Actor,
    Channel,
    ForbiddenError,
    HistoryAction,
    InMemorySystemLogStore,
    NotFoundError,
    Role,
    StageConflictError,
    TaskStatus,
    WorkflowEngine,
    WorkflowStage,
)
from workflow import audit

WRITER = Actor(id="u-writer", role=Role.WRITER, name="Writer")
CMO = Actor(id="u-cmo", role=Role.CMO, name="Cmo")
CEO = Actor(id="u-ceo", role=Role.CEO, name="Ceo")


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


def _session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


def _file_session_factory(path):
    engine = create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


def _engine(session_factory=None) -> WorkflowEngine:
    session_factory = session_factory or _session_factory()
    return WorkflowEngine(
        SqlProjectStore(session_factory),
        SqlSystemLogStore(session_factory),
        clock=_Clock(),
    )


def test_create_and_reload_project() -> None:
    engine = _engine()
    due = datetime(2026, 2, 1, 17, 0, tzinfo=UTC)
    created = engine.create("Teaser", Channel.YOUTUBE, due, WRITER, data={"hook": "v1"})

    loaded = engine.get(created.id)

    assert loaded.id == created.id
    assert loaded.title == "Teaser"
    assert loaded.current_stage == WorkflowStage.SCRIPT
    assert loaded.assigned_to_role == Role.WRITER
    assert loaded.status == TaskStatus.TODO
    assert loaded.due_date == due
    assert loaded.data == {"hook": "v1"}
    assert [event.action for event in loaded.history] == [HistoryAction.CREATED]
    assert loaded.history[0].id == created.history[0].id


def test_transitions_persist_with_history() -> None:
    engine = _engine()
    project = engine.create("Teaser", Channel.LINKEDIN, None, WRITER)
    engine.update_data(project.id, {"hook": "v2"}, WRITER)
    engine.submit(project.id, WRITER, "draft ready")
    engine.approve(project.id, CMO)
    engine.reject(project.id, CEO, WorkflowStage.SCRIPT, "wrong tone")

    loaded = engine.get(project.id)

    assert loaded.current_stage == WorkflowStage.SCRIPT
    assert loaded.assigned_to_role == Role.WRITER
    assert loaded.status == TaskStatus.REJECTED
    assert loaded.data == {"hook": "v2"}
    assert [(event.stage, event.action) for event in loaded.history] == [
        (WorkflowStage.SCRIPT, HistoryAction.CREATED),
        (WorkflowStage.SCRIPT, HistoryAction.SUBMITTED),
        (WorkflowStage.SCRIPT_REVIEW_L1, HistoryAction.APPROVED),
        (WorkflowStage.SCRIPT_REVIEW_L2, HistoryAction.REJECTED),
    ]
    assert loaded.history[1].comment == "draft ready"
    assert loaded.history[-1].comment == "wrong tone"


def test_refused_transition_leaves_rows_untouched() -> None:
    session_factory = _session_factory()
    engine = _engine(session_factory)
    project = engine.create("Teaser", Channel.YOUTUBE, None, WRITER)

    with pytest.raises(ForbiddenError):
        engine.submit(project.id, CMO)

    session = session_factory()
    try:
        rows = session.execute(select(models.HistoryEventRecord)).scalars().all()
        assert [row.action for row in rows] == ["CREATED"]
        record = session.get(models.ProjectRecord, UUID(project.id))
        assert record.current_stage == "SCRIPT"
    finally:
        session.close()


def test_unknown_ids_are_not_found() -> None:
    engine = _engine()
    with pytest.raises(NotFoundError):
        engine.get("not-a-uuid")
    with pytest.raises(NotFoundError):
        engine.get(str(uuid4()))
    with pytest.raises(NotFoundError):
        engine.store.update(str(uuid4()), {"status": TaskStatus.DONE})


def test_list_filters_and_order() -> None:
    engine = _engine()
    older = engine.create("Older", Channel.YOUTUBE, None, WRITER)
    newer = engine.create("Newer", Channel.LINKEDIN, None, WRITER)
    engine.submit(newer.id, WRITER)

    assert [p.id for p in engine.list_projects()] == [newer.id, older.id]
    assert [p.id for p in engine.list_projects(channel=Channel.YOUTUBE)] == [older.id]
    assert [p.id for p in engine.list_projects(status=TaskStatus.WAITING_APPROVAL)] == [newer.id]
    assert [p.id for p in engine.list_projects(WRITER)] == [older.id]


def test_system_log_round_trip() -> None:
    engine = _engine()
    project = engine.create("Teaser", Channel.YOUTUBE, None, WRITER)
    engine.submit(project.id, WRITER)

    entries = engine.system_logs()

    assert [entry.action for entry in entries] == [audit.WORKFLOW_SUBMIT, audit.PROJECT_CREATED]
    assert entries[0].actor_role == Role.WRITER
    assert entries[0].payload["project_id"] == project.id
    assert entries[0].payload["to_stage"] == "SCRIPT_REVIEW_L1"
    assert engine.system_logs(actor_id="someone-else") == []
    assert len(engine.system_logs(limit=1)) == 1


def test_store_rejects_unknown_fields() -> None:
    engine = _engine()
    project = engine.create("Teaser", Channel.YOUTUBE, None, WRITER)
    with pytest.raises(ValueError):
        engine.store.update(project.id, {"title": "renamed", "id": "x"})


def test_write_over_a_moved_row_is_a_stage_conflict(tmp_path) -> None:
    session_factory = _file_session_factory(tmp_path / "flow.db")
    store = SqlProjectStore(session_factory)
    engine = WorkflowEngine(store, SqlSystemLogStore(session_factory), clock=_Clock())
    other = _engine(session_factory)
    project = engine.create("Teaser", Channel.YOUTUBE, None, WRITER)

    with pytest.raises(StageConflictError):
        with store.transaction(project.id) as unit:
            other.submit(project.id, WRITER)
            unit.update({"status": TaskStatus.IN_PROGRESS})

    loaded = engine.get(project.id)
    assert loaded.current_stage == WorkflowStage.SCRIPT_REVIEW_L1
    assert loaded.status == TaskStatus.WAITING_APPROVAL
    assert [event.action for event in loaded.history] == [HistoryAction.CREATED, HistoryAction.SUBMITTED]


def test_system_log_rows_share_the_project_transaction() -> None:
    session_factory = _session_factory()
    engine = _engine(session_factory)
    project = engine.create("Teaser", Channel.YOUTUBE, None, WRITER)

    with pytest.raises(ForbiddenError):
        engine.submit(project.id, CMO)

    session = session_factory()
    try:
        rows = session.execute(select(models.SystemLogRecord)).scalars().all()
        assert [row.action for row in rows] == [audit.PROJECT_CREATED]
    finally:
        session.close()


class _FailingLog(InMemorySystemLogStore):
    def __init__(self) -> None:
        super().__init__()
        self.failing = False

    def append(self, entry) -> None:
        if self.failing:
            raise RuntimeError("system log unavailable")
        super().append(entry)


def test_failed_external_log_write_rolls_back_transition() -> None:
    session_factory = _session_factory()
    log = _FailingLog()
    engine = WorkflowEngine(SqlProjectStore(session_factory), log, clock=_Clock())
    project = engine.create("Teaser", Channel.YOUTUBE, None, WRITER)

    log.failing = True
    with pytest.raises(RuntimeError):
        engine.submit(project.id, WRITER)

    loaded = engine.get(project.id)
    assert loaded.current_stage == WorkflowStage.SCRIPT
    assert [event.action for event in loaded.history] == [HistoryAction.CREATED]
    assert [entry.action for entry in engine.system_logs()] == [audit.PROJECT_CREATED]
