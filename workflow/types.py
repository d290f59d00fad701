from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4


def _utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return str(uuid4())


class Channel(str, Enum):
    LINKEDIN = "LINKEDIN"
    YOUTUBE = "YOUTUBE"
    INSTAGRAM = "INSTAGRAM"


class WorkflowStage(str, Enum):
    SCRIPT = "SCRIPT"
    SCRIPT_REVIEW_L1 = "SCRIPT_REVIEW_L1"
    SCRIPT_REVIEW_L2 = "SCRIPT_REVIEW_L2"
    SHOOT = "SHOOT"
    EDIT = "EDIT"
    DESIGN = "DESIGN"
    METADATA = "METADATA"
    FINAL_REVIEW_L1 = "FINAL_REVIEW_L1"
    FINAL_REVIEW_L2 = "FINAL_REVIEW_L2"
    PUBLISH = "PUBLISH"
    COMPLETED = "COMPLETED"


class Role(str, Enum):
    WRITER = "WRITER"
    CINE = "CINE"
    EDITOR = "EDITOR"
    DESIGNER = "DESIGNER"
    CMO = "CMO"
    CEO = "CEO"
    OPS = "OPS"
    ADMIN = "ADMIN"
    OBSERVER = "OBSERVER"


APPROVER_ROLES = frozenset({Role.CMO, Role.CEO})
READ_ONLY_ROLES = frozenset({Role.ADMIN, Role.OBSERVER})


class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    WAITING_APPROVAL = "WAITING_APPROVAL"
    REJECTED = "REJECTED"
    DONE = "DONE"


class HistoryAction(str, Enum):
    CREATED = "CREATED"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PUBLISHED = "PUBLISHED"


class ContentType(str, Enum):
    VIDEO = "VIDEO"
    CREATIVE_ONLY = "CREATIVE_ONLY"


class Priority(str, Enum):
    HIGH = "HIGH"
    NORMAL = "NORMAL"


ROLE_LABELS: dict[Role, str] = {
    Role.ADMIN: "Admin",
    Role.WRITER: "Content Writer",
    Role.CINE: "Cinematographer",
    Role.EDITOR: "Video Editor",
    Role.DESIGNER: "Graphic Designer",
    Role.CMO: "CMO (Approver)",
    Role.CEO: "CEO (Approver)",
    Role.OPS: "Operations",
    Role.OBSERVER: "Observer",
}

STAGE_LABELS: dict[WorkflowStage, str] = {
    WorkflowStage.SCRIPT: "Scripting",
    WorkflowStage.SCRIPT_REVIEW_L1: "Script Review (CMO)",
    WorkflowStage.SCRIPT_REVIEW_L2: "Script Review (CEO)",
    WorkflowStage.SHOOT: "Shoot",
    WorkflowStage.EDIT: "Video Editing",
    WorkflowStage.DESIGN: "Design",
    WorkflowStage.METADATA: "Metadata",
    WorkflowStage.FINAL_REVIEW_L1: "Final Review (CMO)",
    WorkflowStage.FINAL_REVIEW_L2: "Final Review (CEO)",
    WorkflowStage.PUBLISH: "Scheduling",
    WorkflowStage.COMPLETED: "Posted",
}


def default_content_type(channel: Channel) -> ContentType:
    if channel == Channel.LINKEDIN:
        return ContentType.CREATIVE_ONLY
    return ContentType.VIDEO


@dataclass(frozen=True)
class Actor:
    """Acting identity handed to the engine by the auth collaborator."""

    id: str
    role: Role
    name: str


@dataclass(frozen=True)
class HistoryEvent:
    stage: WorkflowStage
    actor_id: str
    actor_name: str
    action: HistoryAction
    comment: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class SystemLogEntry:
    actor_id: str
    actor_name: str
    actor_role: Role
    action: str
    details: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=new_id)


@dataclass
class Project:
    title: str
    channel: Channel
    current_stage: WorkflowStage
    assigned_to_role: Role
    status: TaskStatus
    due_date: datetime | None = None
    content_type: ContentType = ContentType.VIDEO
    priority: Priority = Priority.NORMAL
    assigned_to_user_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    history: list[HistoryEvent] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=new_id)

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.DONE

    def snapshot(self) -> "Project":
        # History events are frozen; only the list needs copying.
        return replace(self, data=deepcopy(self.data), history=list(self.history))
