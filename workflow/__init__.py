from .engine import WorkflowEngine
from .errors import (
    AlreadyTerminalError,
    CommentRequiredError,
    ForbiddenError,
    InvalidChannelError,
    InvalidStageForChannelError,
    InvalidTargetError,
    NotAReviewStageError,
    NotFoundError,
    StageConflictError,
    WorkflowError,
)
from .locks import ProjectLocks
from .rework import ReworkRules
from .store import InMemoryProjectStore, InMemorySystemLogStore, ProjectStore, ProjectUnit, SystemLogStore
from .table import WorkflowStep, WorkflowTable, load_table, table_from_env
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
)

__all__ = [
    "WorkflowEngine",
    "WorkflowError",
    "NotFoundError",
    "InvalidChannelError",
    "ForbiddenError",
    "InvalidStageForChannelError",
    "InvalidTargetError",
    "CommentRequiredError",
    "AlreadyTerminalError",
    "NotAReviewStageError",
    "StageConflictError",
    "ProjectLocks",
    "ReworkRules",
    "ProjectStore",
    "ProjectUnit",
    "SystemLogStore",
    "InMemoryProjectStore",
    "InMemorySystemLogStore",
    "WorkflowStep",
    "WorkflowTable",
    "load_table",
    "table_from_env",
    "Actor",
    "Channel",
    "ContentType",
    "HistoryAction",
    "HistoryEvent",
    "Priority",
    "Project",
    "Role",
    "SystemLogEntry",
    "TaskStatus",
    "WorkflowStage",
]
