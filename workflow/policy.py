from __future__ import annotations

from enum import Enum

from .errors import ForbiddenError, NotAReviewStageError
from .table import WorkflowTable
from .types import APPROVER_ROLES, READ_ONLY_ROLES, Channel, Project, Role

# Roles whose dashboards list every project regardless of assignment.
OVERSIGHT_ROLES = frozenset({Role.CEO, Role.CMO, Role.ADMIN, Role.OPS, Role.OBSERVER})


class Action(str, Enum):
    EDIT_DATA = "edit_data"
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"


_REVIEW_ACTIONS = frozenset({Action.APPROVE, Action.REJECT})


def can_create(role: Role, channel: Channel, table: WorkflowTable) -> bool:
    return role not in READ_ONLY_ROLES and table.first(channel).role == role


def can_act(role: Role, project: Project, action: Action, table: WorkflowTable) -> bool:
    try:
        ensure_can_act(role, project, action, table)
    except (ForbiddenError, NotAReviewStageError):
        return False
    return True


def ensure_can_act(role: Role, project: Project, action: Action, table: WorkflowTable) -> None:
    if role in READ_ONLY_ROLES:
        raise ForbiddenError(f"{role.value} has read-only access", project.id)
    if action in _REVIEW_ACTIONS:
        if not table.is_review(project.channel, project.current_stage):
            raise NotAReviewStageError(
                f"{project.current_stage.value} is not a review stage",
                project.id,
            )
        if role not in APPROVER_ROLES:
            raise ForbiddenError(f"{role.value} cannot {action.value} projects", project.id)
    if role != project.assigned_to_role:
        raise ForbiddenError(
            f"{role.value} cannot {action.value}; project is assigned to {project.assigned_to_role.value}",
            project.id,
        )


def visible_to(role: Role, project: Project) -> bool:
    if role in OVERSIGHT_ROLES:
        return True
    return project.assigned_to_role == role
