from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workflow.types import Channel, ContentType, HistoryAction, Priority, Role, TaskStatus, WorkflowStage

from .base import Base

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _one_of(column: str, enum: type[Enum]) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum)
    return f"{column} in ({values})"


class ProjectRecord(Base):
    __tablename__ = "project"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(Text)
    channel: Mapped[str] = mapped_column(Text)
    content_type: Mapped[str] = mapped_column(Text)
    current_stage: Mapped[str] = mapped_column(Text)
    assigned_to_role: Mapped[str] = mapped_column(Text)
    assigned_to_user_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(Text)
    priority: Mapped[str] = mapped_column(Text, default=Priority.NORMAL.value)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    data: Mapped[dict] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    # Bumped on every write; an UPDATE against a stale version matches no row.
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    history: Mapped[list["HistoryEventRecord"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="HistoryEventRecord.seq",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(_one_of("channel", Channel), name="ck_project_channel"),
        CheckConstraint(_one_of("content_type", ContentType), name="ck_project_content_type"),
        CheckConstraint(_one_of("current_stage", WorkflowStage), name="ck_project_current_stage"),
        CheckConstraint(_one_of("assigned_to_role", Role), name="ck_project_assigned_to_role"),
        CheckConstraint(_one_of("status", TaskStatus), name="ck_project_status"),
        CheckConstraint(_one_of("priority", Priority), name="ck_project_priority"),
        Index("ix_project_assigned_to_role", "assigned_to_role"),
        Index("ix_project_created_at", "created_at"),
    )


class HistoryEventRecord(Base):
    __tablename__ = "workflow_history"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), unique=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("project.id", ondelete="CASCADE"),
    )
    stage: Mapped[str] = mapped_column(Text)
    actor_id: Mapped[str] = mapped_column(Text)
    actor_name: Mapped[str] = mapped_column(Text)
    action: Mapped[str] = mapped_column(Text)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    project: Mapped["ProjectRecord"] = relationship(back_populates="history")

    __table_args__ = (
        CheckConstraint(_one_of("stage", WorkflowStage), name="ck_workflow_history_stage"),
        CheckConstraint(_one_of("action", HistoryAction), name="ck_workflow_history_action"),
        Index("ix_workflow_history_project_id", "project_id"),
    )


class SystemLogRecord(Base):
    __tablename__ = "system_log"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entry_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), unique=True, default=uuid4)
    actor_id: Mapped[str] = mapped_column(Text)
    actor_name: Mapped[str] = mapped_column(Text)
    actor_role: Mapped[str] = mapped_column(Text)
    action: Mapped[str] = mapped_column(Text)
    details: Mapped[str] = mapped_column(Text)
    payload: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        CheckConstraint(_one_of("actor_role", Role), name="ck_system_log_actor_role"),
        Index("ix_system_log_occurred_at", "occurred_at"),
        Index("ix_system_log_actor_id", "actor_id"),
    )
