from __future__ import annotations

from contextlib import contextmanager
from copy import deepcopy
from datetime import UTC, datetime
import logging
from typing import Any, Callable, Iterator

from . import audit, policy
from .audit import AuditTrail
from .errors import (
    AlreadyTerminalError,
    CommentRequiredError,
    ForbiddenError,
    InvalidChannelError,
    InvalidStageForChannelError,
    InvalidTargetError,
    NotFoundError,
    StageConflictError,
    WorkflowError,
)
from .locks import ProjectLocks
from .policy import Action
from .rework import ReworkRules
from .store import ProjectStore, ProjectUnit, SystemLogStore
from .table import WorkflowStep, WorkflowTable
from .types import (
    Actor,
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
    default_content_type,
)

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class WorkflowEngine:
    """State machine moving projects through their channel's stage sequence.

    Every mutating call runs as one read-modify-write under the project's
    lock and inside one store transaction: load, validate against the policy
    and table, then hand the change and its audit records to the store, which
    writes them together. A call that fails leaves the stored project and the
    system log untouched.
    """

    def __init__(
        self,
        store: ProjectStore,
        system_log: SystemLogStore,
        table: WorkflowTable | None = None,
        rework: ReworkRules | None = None,
        locks: ProjectLocks | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.table = table or WorkflowTable.default()
        self.rework = rework or ReworkRules(self.table)
        self.locks = locks or ProjectLocks()
        self._clock = clock or _utc_now
        self._audit = AuditTrail(system_log, self._clock)

    # -- reads -------------------------------------------------------------

    def get(self, project_id: str, actor: Actor | None = None) -> Project:
        project = self._load(project_id)
        if actor is not None and not policy.visible_to(actor.role, project):
            raise ForbiddenError(f"{actor.role.value} cannot view this project", project_id)
        return project

    def history(self, project_id: str) -> list[HistoryEvent]:
        return self._load(project_id).history

    def list_projects(
        self,
        actor: Actor | None = None,
        *,
        channel: Channel | None = None,
        stage: WorkflowStage | None = None,
        status: TaskStatus | None = None,
        assigned_to_role: Role | None = None,
    ) -> list[Project]:
        projects = self.store.list(channel=channel, stage=stage, status=status, assigned_to_role=assigned_to_role)
        if actor is None:
            return projects
        return [p for p in projects if policy.visible_to(actor.role, p)]

    def rework_options(self, project_id: str) -> list[WorkflowStep]:
        project = self._load(project_id)
        if project.is_done or not self.table.is_review(project.channel, project.current_stage):
            return []
        return self.rework.targets(project.channel, project.current_stage, project.content_type)

    def system_logs(self, limit: int = 100, actor_id: str | None = None) -> list[SystemLogEntry]:
        return self._audit.entries(limit=limit, actor_id=actor_id)

    # -- transitions -------------------------------------------------------

    def create(
        self,
        title: str,
        channel: Channel | str,
        due_date: datetime | None,
        actor: Actor,
        content_type: ContentType | str | None = None,
        priority: Priority | str = Priority.NORMAL,
        data: dict[str, Any] | None = None,
    ) -> Project:
        channel = _coerce_channel(channel)
        first = self.table.first(channel)
        if not policy.can_create(actor.role, channel, self.table):
            logger.warning("create refused for %s (%s) on %s", actor.id, actor.role.value, channel.value)
            raise ForbiddenError(f"{actor.role.value} cannot create {channel.value} projects")
        title = (title or "").strip()
        if not title:
            raise ValueError("Project title is required")

        now = self._clock()
        project = Project(
            title=title,
            channel=channel,
            content_type=ContentType(content_type) if content_type else default_content_type(channel),
            current_stage=first.stage,
            assigned_to_role=first.role,
            status=TaskStatus.TODO,
            priority=Priority(priority),
            due_date=due_date,
            data=deepcopy(data or {}),
            created_at=now,
            updated_at=now,
        )
        project.history.append(self._audit.event(first.stage, actor, HistoryAction.CREATED))
        entry = self._audit.entry(
            actor,
            audit.PROJECT_CREATED,
            f"Created project {project.title} for {channel.value}",
            project,
            channel=channel,
        )
        self.store.create(project, entry, self._audit.system_log)
        self._audit.announce(entry)
        return project.snapshot()

    def update_data(
        self,
        project_id: str,
        partial_data: dict[str, Any],
        actor: Actor,
        expected_stage: WorkflowStage | None = None,
    ) -> Project:
        with self._transition(project_id, "update_data", actor) as unit:
            project = unit.project
            self._check_expected(project, expected_stage)
            policy.ensure_can_act(actor.role, project, Action.EDIT_DATA, self.table)
            changes: dict[str, Any] = {
                "data": {**project.data, **partial_data},
                "updated_at": self._clock(),
            }
            # First touch by the writer marks the draft as started.
            if actor.role == Role.WRITER and project.status == TaskStatus.TODO:
                changes["status"] = TaskStatus.IN_PROGRESS
            unit.update(changes)
        return unit.result

    def submit(
        self,
        project_id: str,
        actor: Actor,
        comment: str | None = None,
        expected_stage: WorkflowStage | None = None,
    ) -> Project:
        with self._transition(project_id, "submit", actor) as unit:
            project = unit.project
            self._check_expected(project, expected_stage)
            self._ensure_open(project)
            policy.ensure_can_act(actor.role, project, Action.SUBMIT, self.table)
            if self.table.is_review(project.channel, project.current_stage):
                self._advance(unit, actor, HistoryAction.APPROVED, comment)
            else:
                self._advance(unit, actor, HistoryAction.SUBMITTED, comment)
        return unit.result

    def approve(
        self,
        project_id: str,
        actor: Actor,
        comment: str | None = None,
        expected_stage: WorkflowStage | None = None,
    ) -> Project:
        with self._transition(project_id, "approve", actor) as unit:
            project = unit.project
            self._check_expected(project, expected_stage)
            self._ensure_open(project)
            policy.ensure_can_act(actor.role, project, Action.APPROVE, self.table)
            self._advance(unit, actor, HistoryAction.APPROVED, comment)
        return unit.result

    def reject(
        self,
        project_id: str,
        actor: Actor,
        target_stage: WorkflowStage | str,
        comment: str | None,
        is_required_comment: bool = True,
        expected_stage: WorkflowStage | None = None,
    ) -> Project:
        with self._transition(project_id, "reject", actor) as unit:
            project = unit.project
            self._check_expected(project, expected_stage)
            self._ensure_open(project)
            policy.ensure_can_act(actor.role, project, Action.REJECT, self.table)
            target = self._rework_target(project, target_stage)
            comment = (comment or "").strip()
            if not comment:
                if is_required_comment:
                    raise CommentRequiredError("A reason is required to send work back", project_id)
                comment = f"Rejected by {actor.role.value}"
            self._send_back(unit, actor, target, comment)
        return unit.result

    def reject_completely(
        self,
        project_id: str,
        actor: Actor,
        comment: str | None = None,
        expected_stage: WorkflowStage | None = None,
    ) -> Project:
        """Kill decision: the project restarts at the first stage."""
        with self._transition(project_id, "reject_completely", actor) as unit:
            project = unit.project
            self._check_expected(project, expected_stage)
            self._ensure_open(project)
            policy.ensure_can_act(actor.role, project, Action.REJECT, self.table)
            first = self.table.first(project.channel)
            comment = (comment or "").strip() or f"Rejected completely by {actor.role.value}"
            self._send_back(unit, actor, first, comment)
        return unit.result

    def schedule_post(self, project_id: str, actor: Actor, scheduled_for: datetime) -> Project:
        with self._transition(project_id, "schedule_post", actor) as unit:
            project = unit.project
            self._ensure_open(project)
            self._ensure_publish_stage(project)
            policy.ensure_can_act(actor.role, project, Action.EDIT_DATA, self.table)
            updated = unit.update(
                {
                    "data": {**project.data, "post_scheduled_date": scheduled_for.isoformat()},
                    "status": TaskStatus.IN_PROGRESS,
                    "updated_at": self._clock(),
                }
            )
            unit.log(
                self._audit.entry(
                    actor,
                    audit.POST_SCHEDULED,
                    f"Scheduled {project.title} for {scheduled_for.isoformat()}",
                    updated,
                    scheduled_for=scheduled_for,
                )
            )
        return unit.result

    def mark_posted(self, project_id: str, actor: Actor, live_url: str, comment: str | None = None) -> Project:
        live_url = (live_url or "").strip()
        if not live_url:
            raise ValueError("live_url is required")
        with self._transition(project_id, "mark_posted", actor) as unit:
            project = unit.project
            self._ensure_open(project)
            self._ensure_publish_stage(project)
            policy.ensure_can_act(actor.role, project, Action.SUBMIT, self.table)
            self._advance(
                unit,
                actor,
                HistoryAction.SUBMITTED,
                comment or "Project completed and published",
                data={**project.data, "live_url": live_url},
            )
        return unit.result

    # -- internals ---------------------------------------------------------

    @contextmanager
    def _transition(self, project_id: str, intent: str, actor: Actor) -> Iterator[ProjectUnit]:
        # The store writes the unit when the block exits; a raise discards it.
        with self.locks.hold(project_id):
            try:
                with self.store.transaction(project_id, self._audit.system_log) as unit:
                    yield unit
            except WorkflowError as exc:
                logger.warning("%s refused for %s (%s): %s", intent, actor.id, actor.role.value, exc)
                raise
        for entry in unit.entries:
            self._audit.announce(entry)

    def _load(self, project_id: str) -> Project:
        project = self.store.get(project_id)
        if project is None:
            raise NotFoundError("Project not found", project_id)
        return project

    def _check_expected(self, project: Project, expected_stage: WorkflowStage | None) -> None:
        if expected_stage is not None and WorkflowStage(expected_stage) != project.current_stage:
            raise StageConflictError(
                f"Project moved to {project.current_stage.value} (expected {WorkflowStage(expected_stage).value})",
                project.id,
            )

    def _ensure_open(self, project: Project) -> None:
        terminal = self.table.is_terminal(project.channel, project.current_stage)
        if project.is_done or (terminal and not self.table.is_review(project.channel, project.current_stage)):
            raise AlreadyTerminalError("Workflow already completed", project.id)

    def _ensure_publish_stage(self, project: Project) -> None:
        if project.current_stage != WorkflowStage.PUBLISH:
            raise InvalidStageForChannelError(
                f"Publishing actions need {WorkflowStage.PUBLISH.value}, project is at {project.current_stage.value}",
                project.id,
            )

    def _rework_target(self, project: Project, target_stage: WorkflowStage | str) -> WorkflowStep:
        try:
            target = WorkflowStage(target_stage)
        except ValueError as exc:
            raise InvalidTargetError(f"Unknown stage: {target_stage}", project.id) from exc
        if not self.table.contains(project.channel, target):
            raise InvalidTargetError(
                f"{target.value} is not part of the {project.channel.value} workflow",
                project.id,
            )
        if not self.rework.allows(project.channel, project.current_stage, target, project.content_type):
            raise InvalidTargetError(
                f"{project.current_stage.value} cannot send work back to {target.value}",
                project.id,
            )
        return self.table.step_for(project.channel, target)

    def _advance(
        self,
        unit: ProjectUnit,
        actor: Actor,
        action: HistoryAction,
        comment: str | None,
        data: dict[str, Any] | None = None,
    ) -> None:
        project = unit.project
        step = self.table.next(project.channel, project.current_stage)
        changes: dict[str, Any] = {"updated_at": self._clock()}
        if data is not None:
            changes["data"] = data

        finishing = step is None or (
            self.table.is_terminal(project.channel, step.stage)
            and not self.table.is_review(project.channel, step.stage)
        )
        if finishing:
            event = self._audit.event(
                project.current_stage, actor, HistoryAction.PUBLISHED, comment or "Workflow completed"
            )
            changes["status"] = TaskStatus.DONE
            if step is not None:
                changes.update(current_stage=step.stage, assigned_to_role=step.role)
            updated = unit.update(changes, event)
            unit.log(
                self._audit.entry(
                    actor,
                    audit.PROJECT_PUBLISHED,
                    f"Completed project {project.title} at {project.current_stage.value}",
                    updated,
                    stage=project.current_stage,
                )
            )
            return

        review_next = self.table.is_review(project.channel, step.stage)
        changes.update(
            current_stage=step.stage,
            assigned_to_role=step.role,
            status=TaskStatus.WAITING_APPROVAL if review_next else TaskStatus.TODO,
        )
        event = self._audit.event(project.current_stage, actor, action, comment)
        updated = unit.update(changes, event)
        if action == HistoryAction.APPROVED:
            kind = audit.WORKFLOW_ADVANCE
            details = f"APPROVED project {project.title} at {project.current_stage.value}"
        else:
            kind = audit.WORKFLOW_SUBMIT
            details = f"Submitted {project.title} to {step.role.value}"
        unit.log(
            self._audit.entry(actor, kind, details, updated, from_stage=project.current_stage, to_stage=step.stage)
        )

    def _send_back(self, unit: ProjectUnit, actor: Actor, target: WorkflowStep, comment: str) -> None:
        project = unit.project
        event = self._audit.event(project.current_stage, actor, HistoryAction.REJECTED, comment)
        updated = unit.update(
            {
                "current_stage": target.stage,
                "assigned_to_role": target.role,
                "status": TaskStatus.REJECTED,
                "updated_at": self._clock(),
            },
            event,
        )
        unit.log(
            self._audit.entry(
                actor,
                audit.WORKFLOW_REJECT,
                f"Rejected project {project.title} back to {target.stage.value}",
                updated,
                from_stage=project.current_stage,
                to_stage=target.stage,
            )
        )


def _coerce_channel(channel: Channel | str) -> Channel:
    try:
        return Channel(str(channel.value if isinstance(channel, Channel) else channel).upper())
    except ValueError as exc:
        raise InvalidChannelError(f"Unknown channel: {channel}") from exc
