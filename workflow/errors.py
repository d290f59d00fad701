from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar


@dataclass(eq=False)
class WorkflowError(Exception):
    message: str
    project_id: str | None = None

    code: ClassVar[str] = "workflow_error"

    def __str__(self) -> str:
        if self.project_id:
            return f"{self.code}({self.project_id}): {self.message}"
        return f"{self.code}: {self.message}"


class NotFoundError(WorkflowError):
    code = "not_found"


class InvalidChannelError(NotFoundError):
    code = "invalid_channel"


class ForbiddenError(WorkflowError):
    code = "forbidden"


class InvalidStageForChannelError(WorkflowError):
    code = "invalid_stage_for_channel"


class InvalidTargetError(WorkflowError):
    code = "invalid_target"


class CommentRequiredError(WorkflowError):
    code = "comment_required"


class AlreadyTerminalError(WorkflowError):
    code = "already_terminal"


class NotAReviewStageError(WorkflowError):
    code = "not_a_review_stage"


class StageConflictError(WorkflowError):
    code = "stage_conflict"
