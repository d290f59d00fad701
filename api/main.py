from __future__ import annotations

from datetime import datetime
from os import getenv
import threading
from typing import List, Literal, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from workflow import (
    Actor,
    Channel,
    InMemoryProjectStore,
    InMemorySystemLogStore,
    Project,
    Role,
    TaskStatus,
    WorkflowEngine,
    WorkflowError,
    WorkflowStage,
    table_from_env,
)
from workflow.dashboard import workload
from workflow.policy import OVERSIGHT_ROLES
from workflow.rework import REWORK_LABELS
from workflow.types import ROLE_LABELS, STAGE_LABELS

DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://127.0.0.1:5173"

_STATUS_BY_CODE = {
    "not_found": 404,
    "invalid_channel": 404,
    "forbidden": 403,
    "invalid_target": 400,
    "invalid_stage_for_channel": 400,
    "comment_required": 400,
    "already_terminal": 409,
    "not_a_review_stage": 409,
    "stage_conflict": 409,
}


def _cors_origins() -> list[str]:
    raw = getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS)
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


app = FastAPI(title="StudioFlow API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WorkflowError)
def workflow_error_handler(_request: Request, exc: WorkflowError) -> JSONResponse:
    return JSONResponse(
        status_code=_STATUS_BY_CODE.get(exc.code, 400),
        content={"detail": exc.code, "message": exc.message},
    )


@app.exception_handler(ValueError)
def value_error_handler(_request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": "invalid_request", "message": str(exc)})


_engine: WorkflowEngine | None = None
_engine_lock = threading.Lock()


def _build_engine() -> WorkflowEngine:
    table = table_from_env()
    if getenv("WORKFLOW_STORE", "sql").lower() == "memory":
        return WorkflowEngine(InMemoryProjectStore(), InMemorySystemLogStore(), table=table)

    from db.store import build_sql_engine

    return build_sql_engine(table)


def get_engine() -> WorkflowEngine:
    # One engine per process: the project lock registry lives on it.
    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = _build_engine()
        return _engine


def get_actor(
    x_actor_id: str | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
    x_actor_name: str | None = Header(default=None),
) -> Actor:
    if not x_actor_id or not x_actor_role:
        raise HTTPException(status_code=401, detail="actor_required")
    try:
        role = Role(x_actor_role.strip().upper())
    except ValueError:
        raise HTTPException(status_code=400, detail="invalid_role")
    return Actor(id=x_actor_id, role=role, name=x_actor_name or x_actor_id)


def _paginate(limit: int, offset: int) -> tuple[int, int]:
    limit = max(1, min(limit, 200))
    offset = max(0, offset)
    return limit, offset


def _project_row(project: Project) -> dict:
    payload = {
        "id": project.id,
        "title": project.title,
        "channel": project.channel,
        "content_type": project.content_type,
        "current_stage": project.current_stage,
        "stage_label": STAGE_LABELS.get(project.current_stage, project.current_stage.value),
        "assigned_to_role": project.assigned_to_role,
        "assigned_to_user_id": project.assigned_to_user_id,
        "status": project.status,
        "priority": project.priority,
        "due_date": project.due_date,
        "data": project.data,
        "created_at": project.created_at,
        "updated_at": project.updated_at,
        "history": project.history,
    }
    return jsonable_encoder(payload)


class ProjectCreateRequest(BaseModel):
    title: str
    channel: str
    due_date: datetime | None = None
    content_type: Literal["VIDEO", "CREATIVE_ONLY"] | None = None
    priority: Literal["HIGH", "NORMAL"] = "NORMAL"
    data: dict = Field(default_factory=dict)


class ProjectDataRequest(BaseModel):
    data: dict
    expected_stage: WorkflowStage | None = None


class TransitionRequest(BaseModel):
    comment: str | None = None
    expected_stage: WorkflowStage | None = None


class RejectRequest(BaseModel):
    target_stage: str
    comment: str | None = None
    is_required_comment: bool = True
    expected_stage: WorkflowStage | None = None


class ScheduleRequest(BaseModel):
    scheduled_for: datetime


class PostedRequest(BaseModel):
    live_url: str
    comment: str | None = None


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/settings")
def get_settings() -> dict:
    def flag(name: str, default: str = "") -> str:
        return getenv(name, default)

    return {
        "database_url": flag("DATABASE_URL", ""),
        "workflow_table_path": flag("WORKFLOW_TABLE_PATH", ""),
        "workflow_store": flag("WORKFLOW_STORE", "sql"),
        "cors_origins": _cors_origins(),
    }


@app.get("/workflows")
def list_workflows(engine: WorkflowEngine = Depends(get_engine)) -> dict:
    return {
        "workflows": engine.table.to_dict(),
        "stage_labels": {stage.value: label for stage, label in STAGE_LABELS.items()},
        "role_labels": {role.value: label for role, label in ROLE_LABELS.items()},
    }


@app.get("/workflows/{channel}")
def get_workflow(channel: str, engine: WorkflowEngine = Depends(get_engine)) -> List[dict]:
    steps = engine.table.sequence(channel.upper())
    return [
        {
            "stage": step.stage.value,
            "role": step.role.value,
            "label": STAGE_LABELS.get(step.stage, step.stage.value),
            "review": engine.table.is_review(channel.upper(), step.stage),
        }
        for step in steps
    ]


@app.post("/projects", status_code=201)
def create_project(
    request: ProjectCreateRequest,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
) -> dict:
    project = engine.create(
        request.title,
        request.channel,
        request.due_date,
        actor,
        content_type=request.content_type,
        priority=request.priority,
        data=request.data,
    )
    return _project_row(project)


@app.get("/projects")
def list_projects(
    channel: Optional[Channel] = None,
    stage: Optional[WorkflowStage] = None,
    status: Optional[TaskStatus] = None,
    assigned_to_role: Optional[Role] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
) -> List[dict]:
    limit, offset = _paginate(limit, offset)
    rows = engine.list_projects(
        actor,
        channel=channel,
        stage=stage,
        status=status,
        assigned_to_role=assigned_to_role,
    )
    return [_project_row(row) for row in rows[offset : offset + limit]]


@app.get("/projects/{project_id}")
def get_project(
    project_id: str,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
) -> dict:
    return _project_row(engine.get(project_id, actor))


@app.patch("/projects/{project_id}/data")
def update_project_data(
    project_id: str,
    request: ProjectDataRequest,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
) -> dict:
    project = engine.update_data(project_id, request.data, actor, expected_stage=request.expected_stage)
    return _project_row(project)


@app.post("/projects/{project_id}/submit")
def submit_project(
    project_id: str,
    request: TransitionRequest,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
) -> dict:
    project = engine.submit(project_id, actor, request.comment, expected_stage=request.expected_stage)
    return _project_row(project)


@app.post("/projects/{project_id}/approve")
def approve_project(
    project_id: str,
    request: TransitionRequest,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
) -> dict:
    project = engine.approve(project_id, actor, request.comment, expected_stage=request.expected_stage)
    return _project_row(project)


@app.post("/projects/{project_id}/reject")
def reject_project(
    project_id: str,
    request: RejectRequest,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
) -> dict:
    project = engine.reject(
        project_id,
        actor,
        request.target_stage.upper(),
        request.comment,
        is_required_comment=request.is_required_comment,
        expected_stage=request.expected_stage,
    )
    return _project_row(project)


@app.post("/projects/{project_id}/reject-completely")
def reject_project_completely(
    project_id: str,
    request: TransitionRequest,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
) -> dict:
    project = engine.reject_completely(project_id, actor, request.comment, expected_stage=request.expected_stage)
    return _project_row(project)


@app.post("/projects/{project_id}/schedule")
def schedule_project_post(
    project_id: str,
    request: ScheduleRequest,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
) -> dict:
    return _project_row(engine.schedule_post(project_id, actor, request.scheduled_for))


@app.post("/projects/{project_id}/posted")
def mark_project_posted(
    project_id: str,
    request: PostedRequest,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
) -> dict:
    return _project_row(engine.mark_posted(project_id, actor, request.live_url, request.comment))


@app.get("/projects/{project_id}/history")
def get_project_history(
    project_id: str,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
) -> List[dict]:
    return jsonable_encoder(engine.get(project_id, actor).history)


@app.get("/projects/{project_id}/rework-options")
def get_rework_options(
    project_id: str,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
) -> List[dict]:
    engine.get(project_id, actor)
    return [
        {
            "stage": step.stage.value,
            "role": step.role.value,
            "label": REWORK_LABELS.get(step.stage, STAGE_LABELS.get(step.stage, step.stage.value)),
        }
        for step in engine.rework_options(project_id)
    ]


@app.get("/system-logs")
def list_system_logs(
    actor_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=200),
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
) -> List[dict]:
    if actor.role not in OVERSIGHT_ROLES:
        raise HTTPException(status_code=403, detail="forbidden")
    limit, _ = _paginate(limit, 0)
    return jsonable_encoder(engine.system_logs(limit=limit, actor_id=actor_id))


@app.get("/dashboard/workload")
def dashboard_workload(
    channel: Optional[Channel] = None,
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
) -> dict:
    return workload(engine.list_projects(actor, channel=channel))
