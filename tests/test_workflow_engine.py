from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from workflow import (
    Actor,
    AlreadyTerminalError,
    Channel,
    CommentRequiredError,
    ContentType,
    ForbiddenError,
    HistoryAction,
    InMemoryProjectStore,
    InMemorySystemLogStore,
    InvalidChannelError,
    InvalidStageForChannelError,
    InvalidTargetError,
    NotAReviewStageError,
    NotFoundError,
    Role,
    StageConflictError,
    TaskStatus,
    WorkflowEngine,
    WorkflowStage,
    WorkflowStep,
    WorkflowTable,
)
from workflow import audit

ACTORS = {role: Actor(id=f"u-{role.value.lower()}", role=role, name=role.value.title()) for role in Role}


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


def _engine(table: WorkflowTable | None = None) -> WorkflowEngine:
    return WorkflowEngine(InMemoryProjectStore(), InMemorySystemLogStore(), table=table, clock=_Clock())


def _create(engine: WorkflowEngine, channel: Channel = Channel.YOUTUBE, **kwargs) -> str:
    project = engine.create("Launch teaser", channel, None, ACTORS[Role.WRITER], **kwargs)
    return project.id


def _drive_to(engine: WorkflowEngine, project_id: str, stage: WorkflowStage) -> None:
    # Each assignee hands off in turn until the project sits at ``stage``.
    while (project := engine.get(project_id)).current_stage != stage:
        engine.submit(project_id, ACTORS[project.assigned_to_role])


def test_create_places_project_at_first_stage() -> None:
    engine = _engine()
    project = engine.create("Founder post", Channel.LINKEDIN, None, ACTORS[Role.WRITER])

    assert project.current_stage == WorkflowStage.SCRIPT
    assert project.assigned_to_role == Role.WRITER
    assert project.status == TaskStatus.TODO
    assert project.content_type == ContentType.CREATIVE_ONLY
    assert [event.action for event in project.history] == [HistoryAction.CREATED]
    assert project.history[0].stage == WorkflowStage.SCRIPT
    assert engine.get(project.id) == project


def test_create_video_channel_defaults_to_video_content() -> None:
    engine = _engine()
    project = engine.get(_create(engine, Channel.INSTAGRAM))
    assert project.content_type == ContentType.VIDEO


def test_create_refuses_roles_other_than_first_step() -> None:
    engine = _engine()
    for role in (Role.CMO, Role.ADMIN, Role.OBSERVER, Role.OPS):
        with pytest.raises(ForbiddenError):
            engine.create("Nope", Channel.YOUTUBE, None, ACTORS[role])
    assert engine.list_projects() == []


def test_create_rejects_unknown_channel_and_blank_title() -> None:
    engine = _engine()
    with pytest.raises(InvalidChannelError):
        engine.create("Clip", "TIKTOK", None, ACTORS[Role.WRITER])
    with pytest.raises(NotFoundError):
        engine.create("Clip", "TIKTOK", None, ACTORS[Role.WRITER])
    with pytest.raises(ValueError):
        engine.create("   ", Channel.YOUTUBE, None, ACTORS[Role.WRITER])


def test_create_accepts_lowercase_channel() -> None:
    engine = _engine()
    project = engine.create("Clip", "youtube", None, ACTORS[Role.WRITER])
    assert project.channel == Channel.YOUTUBE


def test_update_data_merges_and_marks_first_touch() -> None:
    engine = _engine()
    project_id = _create(engine, data={"hook": "v1", "cta": "subscribe"})

    updated = engine.update_data(project_id, {"hook": "v2", "script": "..."}, ACTORS[Role.WRITER])

    assert updated.data == {"hook": "v2", "cta": "subscribe", "script": "..."}
    assert updated.status == TaskStatus.IN_PROGRESS
    assert len(updated.history) == 1


def test_update_data_by_non_assignee_is_forbidden() -> None:
    engine = _engine()
    project_id = _create(engine)
    before = engine.get(project_id)

    with pytest.raises(ForbiddenError):
        engine.update_data(project_id, {"hook": "x"}, ACTORS[Role.EDITOR])

    assert engine.get(project_id) == before


def test_update_data_for_missing_project() -> None:
    engine = _engine()
    with pytest.raises(NotFoundError):
        engine.update_data("missing", {}, ACTORS[Role.WRITER])


def test_submit_moves_to_review_and_waits_for_approval() -> None:
    engine = _engine()
    project_id = _create(engine)

    project = engine.submit(project_id, ACTORS[Role.WRITER], "first draft")

    assert project.current_stage == WorkflowStage.SCRIPT_REVIEW_L1
    assert project.assigned_to_role == Role.CMO
    assert project.status == TaskStatus.WAITING_APPROVAL
    assert [event.action for event in project.history] == [HistoryAction.CREATED, HistoryAction.SUBMITTED]
    submitted = project.history[-1]
    assert submitted.stage == WorkflowStage.SCRIPT
    assert submitted.actor_id == ACTORS[Role.WRITER].id
    assert submitted.comment == "first draft"


def test_approvals_walk_script_reviews() -> None:
    engine = _engine()
    project_id = _create(engine, Channel.LINKEDIN)
    engine.submit(project_id, ACTORS[Role.WRITER])

    project = engine.approve(project_id, ACTORS[Role.CMO])
    assert project.current_stage == WorkflowStage.SCRIPT_REVIEW_L2
    assert project.assigned_to_role == Role.CEO
    assert project.status == TaskStatus.WAITING_APPROVAL

    project = engine.approve(project_id, ACTORS[Role.CEO], "ship it")
    assert project.current_stage == WorkflowStage.DESIGN
    assert project.assigned_to_role == Role.DESIGNER
    assert project.status == TaskStatus.TODO
    assert project.history[-1].action == HistoryAction.APPROVED
    assert project.history[-1].stage == WorkflowStage.SCRIPT_REVIEW_L2


def test_submit_at_review_stage_records_approval() -> None:
    engine = _engine()
    project_id = _create(engine)
    engine.submit(project_id, ACTORS[Role.WRITER])

    project = engine.submit(project_id, ACTORS[Role.CMO])

    assert project.current_stage == WorkflowStage.SCRIPT_REVIEW_L2
    assert project.history[-1].action == HistoryAction.APPROVED


def test_wrong_role_cannot_move_project_and_nothing_changes() -> None:
    engine = _engine()
    project_id = _create(engine)

    before = engine.get(project_id)
    with pytest.raises(ForbiddenError):
        engine.submit(project_id, ACTORS[Role.DESIGNER])
    with pytest.raises(ForbiddenError):
        engine.submit(project_id, ACTORS[Role.OBSERVER])
    assert engine.get(project_id) == before

    engine.submit(project_id, ACTORS[Role.WRITER])
    before = engine.get(project_id)
    with pytest.raises(ForbiddenError):
        engine.approve(project_id, ACTORS[Role.CEO])
    with pytest.raises(ForbiddenError):
        engine.approve(project_id, ACTORS[Role.WRITER])
    with pytest.raises(ForbiddenError):
        engine.submit(project_id, ACTORS[Role.WRITER])
    assert engine.get(project_id) == before


def test_approve_on_non_review_stage() -> None:
    engine = _engine()
    project_id = _create(engine)
    before = engine.get(project_id)

    with pytest.raises(NotAReviewStageError):
        engine.approve(project_id, ACTORS[Role.CMO])
    with pytest.raises(NotAReviewStageError):
        engine.approve(project_id, ACTORS[Role.WRITER])
    with pytest.raises(NotAReviewStageError):
        engine.reject(project_id, ACTORS[Role.CEO], WorkflowStage.SCRIPT, "redo")

    assert engine.get(project_id) == before


def test_reject_routes_final_review_back_to_editor() -> None:
    engine = _engine()
    project_id = _create(engine, Channel.INSTAGRAM)
    _drive_to(engine, project_id, WorkflowStage.FINAL_REVIEW_L2)

    project = engine.reject(project_id, ACTORS[Role.CEO], WorkflowStage.EDIT, "color grade is off")

    assert project.current_stage == WorkflowStage.EDIT
    assert project.assigned_to_role == Role.EDITOR
    assert project.status == TaskStatus.REJECTED
    rejected = project.history[-1]
    assert rejected.action == HistoryAction.REJECTED
    assert rejected.stage == WorkflowStage.FINAL_REVIEW_L2
    assert rejected.comment == "color grade is off"


def test_reject_to_disallowed_target_leaves_project_unchanged() -> None:
    engine = _engine()
    project_id = _create(engine, Channel.YOUTUBE)
    _drive_to(engine, project_id, WorkflowStage.FINAL_REVIEW_L2)
    before = engine.get(project_id)

    with pytest.raises(InvalidTargetError):
        engine.reject(project_id, ACTORS[Role.CEO], WorkflowStage.SCRIPT, "rewrite")
    with pytest.raises(InvalidTargetError):
        engine.reject(project_id, ACTORS[Role.CEO], WorkflowStage.PUBLISH, "skip")
    with pytest.raises(InvalidTargetError):
        engine.reject(project_id, ACTORS[Role.CEO], "NOT_A_STAGE", "??")

    assert engine.get(project_id) == before


def test_reject_target_outside_channel_sequence() -> None:
    engine = _engine()
    project_id = _create(engine, Channel.LINKEDIN)
    _drive_to(engine, project_id, WorkflowStage.FINAL_REVIEW_L1)

    with pytest.raises(InvalidTargetError):
        engine.reject(project_id, ACTORS[Role.CMO], WorkflowStage.SHOOT, "reshoot")


def test_creative_only_video_project_cannot_be_sent_to_shoot() -> None:
    engine = _engine()
    project_id = _create(engine, Channel.INSTAGRAM, content_type=ContentType.CREATIVE_ONLY)
    _drive_to(engine, project_id, WorkflowStage.FINAL_REVIEW_L1)

    with pytest.raises(InvalidTargetError):
        engine.reject(project_id, ACTORS[Role.CMO], WorkflowStage.SHOOT, "reshoot")
    project = engine.reject(project_id, ACTORS[Role.CMO], WorkflowStage.DESIGN, "new cover")
    assert project.assigned_to_role == Role.DESIGNER


def test_reject_requires_comment_unless_waived() -> None:
    engine = _engine()
    project_id = _create(engine)
    engine.submit(project_id, ACTORS[Role.WRITER])
    before = engine.get(project_id)

    with pytest.raises(CommentRequiredError):
        engine.reject(project_id, ACTORS[Role.CMO], WorkflowStage.SCRIPT, "   ")
    with pytest.raises(CommentRequiredError):
        engine.reject(project_id, ACTORS[Role.CMO], WorkflowStage.SCRIPT, None)
    assert engine.get(project_id) == before

    project = engine.reject(project_id, ACTORS[Role.CMO], WorkflowStage.SCRIPT, "", is_required_comment=False)
    assert project.current_stage == WorkflowStage.SCRIPT
    assert project.status == TaskStatus.REJECTED
    assert project.history[-1].comment == "Rejected by CMO"


def test_rejected_draft_can_be_resubmitted() -> None:
    engine = _engine()
    project_id = _create(engine)
    engine.submit(project_id, ACTORS[Role.WRITER])
    engine.reject(project_id, ACTORS[Role.CMO], WorkflowStage.SCRIPT, "tighten the hook")

    project = engine.update_data(project_id, {"hook": "v2"}, ACTORS[Role.WRITER])
    assert project.status == TaskStatus.REJECTED

    project = engine.submit(project_id, ACTORS[Role.WRITER])
    assert project.current_stage == WorkflowStage.SCRIPT_REVIEW_L1
    assert [event.action for event in project.history] == [
        HistoryAction.CREATED,
        HistoryAction.SUBMITTED,
        HistoryAction.REJECTED,
        HistoryAction.SUBMITTED,
    ]


def test_reject_completely_restarts_at_first_stage() -> None:
    engine = _engine()
    project_id = _create(engine, Channel.YOUTUBE)
    _drive_to(engine, project_id, WorkflowStage.FINAL_REVIEW_L1)

    project = engine.reject_completely(project_id, ACTORS[Role.CMO])

    assert project.current_stage == WorkflowStage.SCRIPT
    assert project.assigned_to_role == Role.WRITER
    assert project.status == TaskStatus.REJECTED
    assert project.history[-1].action == HistoryAction.REJECTED
    assert project.history[-1].stage == WorkflowStage.FINAL_REVIEW_L1
    assert project.history[-1].comment == "Rejected completely by CMO"


def test_full_video_workflow_reaches_completed() -> None:
    engine = _engine()
    project_id = _create(engine, Channel.YOUTUBE)

    _drive_to(engine, project_id, WorkflowStage.PUBLISH)
    project = engine.get(project_id)
    assert project.assigned_to_role == Role.OPS
    assert project.status == TaskStatus.TODO

    project = engine.mark_posted(project_id, ACTORS[Role.OPS], "https://youtu.be/abc")

    assert project.current_stage == WorkflowStage.COMPLETED
    assert project.status == TaskStatus.DONE
    assert project.data["live_url"] == "https://youtu.be/abc"
    assert [event.action for event in project.history] == [
        HistoryAction.CREATED,
        HistoryAction.SUBMITTED,
        HistoryAction.APPROVED,
        HistoryAction.APPROVED,
        HistoryAction.SUBMITTED,
        HistoryAction.SUBMITTED,
        HistoryAction.SUBMITTED,
        HistoryAction.SUBMITTED,
        HistoryAction.APPROVED,
        HistoryAction.APPROVED,
        HistoryAction.PUBLISHED,
    ]
    assert project.history[-1].stage == WorkflowStage.PUBLISH
    timestamps = [event.timestamp for event in project.history]
    assert timestamps == sorted(timestamps)


def test_completed_project_refuses_further_transitions() -> None:
    engine = _engine()
    project_id = _create(engine, Channel.LINKEDIN)
    _drive_to(engine, project_id, WorkflowStage.PUBLISH)
    engine.submit(project_id, ACTORS[Role.OPS])
    before = engine.get(project_id)
    assert before.status == TaskStatus.DONE

    with pytest.raises(AlreadyTerminalError):
        engine.submit(project_id, ACTORS[Role.OPS])
    with pytest.raises(AlreadyTerminalError):
        engine.approve(project_id, ACTORS[Role.CEO])
    with pytest.raises(AlreadyTerminalError):
        engine.reject(project_id, ACTORS[Role.CEO], WorkflowStage.DESIGN, "late change")
    assert engine.get(project_id) == before
    assert engine.rework_options(project_id) == []


def test_approving_last_review_stage_publishes() -> None:
    table = WorkflowTable(
        {
            Channel.LINKEDIN: [
                WorkflowStep(WorkflowStage.SCRIPT, Role.WRITER),
                WorkflowStep(WorkflowStage.FINAL_REVIEW_L1, Role.CMO),
            ]
        }
    )
    engine = _engine(table)
    project_id = _create(engine, Channel.LINKEDIN)
    engine.submit(project_id, ACTORS[Role.WRITER])

    project = engine.approve(project_id, ACTORS[Role.CMO], "great")

    assert project.status == TaskStatus.DONE
    assert project.current_stage == WorkflowStage.FINAL_REVIEW_L1
    assert project.history[-1].action == HistoryAction.PUBLISHED
    assert HistoryAction.APPROVED not in [event.action for event in project.history]
    with pytest.raises(AlreadyTerminalError):
        engine.approve(project_id, ACTORS[Role.CMO])


def test_expected_stage_guards_against_stale_requests() -> None:
    engine = _engine()
    project_id = _create(engine)
    engine.submit(project_id, ACTORS[Role.WRITER], expected_stage=WorkflowStage.SCRIPT)
    before = engine.get(project_id)

    with pytest.raises(StageConflictError):
        engine.approve(project_id, ACTORS[Role.CMO], expected_stage=WorkflowStage.SCRIPT)
    assert engine.get(project_id) == before

    project = engine.approve(project_id, ACTORS[Role.CMO], expected_stage=WorkflowStage.SCRIPT_REVIEW_L1)
    assert project.current_stage == WorkflowStage.SCRIPT_REVIEW_L2


def test_schedule_post_at_publish_stage() -> None:
    engine = _engine()
    project_id = _create(engine, Channel.LINKEDIN)
    _drive_to(engine, project_id, WorkflowStage.PUBLISH)
    when = datetime(2026, 2, 1, 15, 30, tzinfo=UTC)

    project = engine.schedule_post(project_id, ACTORS[Role.OPS], when)

    assert project.current_stage == WorkflowStage.PUBLISH
    assert project.status == TaskStatus.IN_PROGRESS
    assert project.data["post_scheduled_date"] == when.isoformat()
    latest = engine.system_logs(limit=1)[0]
    assert latest.action == audit.POST_SCHEDULED
    assert latest.payload["project_id"] == project_id


def test_publishing_actions_outside_publish_stage() -> None:
    engine = _engine()
    project_id = _create(engine)
    with pytest.raises(InvalidStageForChannelError):
        engine.schedule_post(project_id, ACTORS[Role.WRITER], datetime(2026, 2, 1, tzinfo=UTC))
    with pytest.raises(InvalidStageForChannelError):
        engine.mark_posted(project_id, ACTORS[Role.WRITER], "https://example.com/post")
    with pytest.raises(ValueError):
        engine.mark_posted(project_id, ACTORS[Role.OPS], "  ")


def test_rework_options_follow_rules() -> None:
    engine = _engine()
    project_id = _create(engine, Channel.INSTAGRAM)
    assert engine.rework_options(project_id) == []

    _drive_to(engine, project_id, WorkflowStage.FINAL_REVIEW_L1)
    stages = [step.stage for step in engine.rework_options(project_id)]
    assert stages == [WorkflowStage.DESIGN, WorkflowStage.EDIT, WorkflowStage.SHOOT]


def test_visibility_for_get_and_list() -> None:
    engine = _engine()
    first = _create(engine, Channel.YOUTUBE)
    second = _create(engine, Channel.LINKEDIN)
    engine.submit(second, ACTORS[Role.WRITER])

    assert [p.id for p in engine.list_projects(ACTORS[Role.WRITER])] == [first]
    assert [p.id for p in engine.list_projects(ACTORS[Role.DESIGNER])] == []
    assert {p.id for p in engine.list_projects(ACTORS[Role.CMO])} == {first, second}
    assert {p.id for p in engine.list_projects(ACTORS[Role.OPS])} == {first, second}
    assert [p.id for p in engine.list_projects(ACTORS[Role.OBSERVER], channel=Channel.YOUTUBE)] == [first]
    assert engine.list_projects(ACTORS[Role.EDITOR]) == []

    with pytest.raises(ForbiddenError):
        engine.get(second, ACTORS[Role.WRITER])
    assert engine.get(second, ACTORS[Role.ADMIN]).id == second


def test_list_projects_newest_first_with_filters() -> None:
    engine = _engine()
    older = _create(engine, Channel.YOUTUBE)
    newer = _create(engine, Channel.INSTAGRAM)
    engine.submit(newer, ACTORS[Role.WRITER])

    assert [p.id for p in engine.list_projects()] == [newer, older]
    assert [p.id for p in engine.list_projects(status=TaskStatus.WAITING_APPROVAL)] == [newer]
    assert [p.id for p in engine.list_projects(stage=WorkflowStage.SCRIPT)] == [older]
    assert [p.id for p in engine.list_projects(assigned_to_role=Role.CMO)] == [newer]


def test_system_log_records_each_transition() -> None:
    engine = _engine()
    project_id = _create(engine)
    engine.submit(project_id, ACTORS[Role.WRITER])
    engine.approve(project_id, ACTORS[Role.CMO])
    engine.reject(project_id, ACTORS[Role.CEO], WorkflowStage.SCRIPT, "off brand")

    entries = engine.system_logs()
    assert [entry.action for entry in entries] == [
        audit.WORKFLOW_REJECT,
        audit.WORKFLOW_ADVANCE,
        audit.WORKFLOW_SUBMIT,
        audit.PROJECT_CREATED,
    ]
    assert entries[0].payload == {
        "from_stage": "SCRIPT_REVIEW_L2",
        "to_stage": "SCRIPT",
        "project_id": project_id,
    }
    assert [entry.action for entry in engine.system_logs(actor_id=ACTORS[Role.CMO].id)] == [audit.WORKFLOW_ADVANCE]
    assert len(engine.system_logs(limit=2)) == 2


def test_refused_transition_writes_no_system_log() -> None:
    engine = _engine()
    project_id = _create(engine)
    with pytest.raises(ForbiddenError):
        engine.submit(project_id, ACTORS[Role.CINE])
    assert [entry.action for entry in engine.system_logs()] == [audit.PROJECT_CREATED]


def test_returned_snapshots_are_isolated_from_the_store() -> None:
    engine = _engine()
    project = engine.create("Clip", Channel.YOUTUBE, None, ACTORS[Role.WRITER], data={"tags": ["a"]})
    project.data["tags"].append("b")
    project.history.clear()

    stored = engine.get(project.id)
    assert stored.data == {"tags": ["a"]}
    assert len(stored.history) == 1


def test_stored_data_does_not_alias_caller_objects() -> None:
    engine = _engine()
    project_id = _create(engine)
    payload = {"shots": [{"id": 1}]}
    engine.update_data(project_id, payload, ACTORS[Role.WRITER])

    payload["shots"][0]["id"] = 99
    payload["shots"].append({"id": 2})

    assert engine.get(project_id).data == {"shots": [{"id": 1}]}


class _FailingLog(InMemorySystemLogStore):
    def __init__(self) -> None:
        super().__init__()
        self.failing = False

    def append(self, entry) -> None:
        if self.failing:
            raise RuntimeError("system log unavailable")
        super().append(entry)


def test_failed_system_log_write_leaves_project_unchanged() -> None:
    log = _FailingLog()
    engine = WorkflowEngine(InMemoryProjectStore(), log, clock=_Clock())
    project_id = _create(engine)

    log.failing = True
    with pytest.raises(RuntimeError):
        engine.submit(project_id, ACTORS[Role.WRITER])

    stored = engine.get(project_id)
    assert stored.current_stage == WorkflowStage.SCRIPT
    assert [event.action for event in stored.history] == [HistoryAction.CREATED]
    assert engine.locks.active() == 0

    log.failing = False
    assert engine.submit(project_id, ACTORS[Role.WRITER]).current_stage == WorkflowStage.SCRIPT_REVIEW_L1
    assert [entry.action for entry in engine.system_logs()] == [audit.WORKFLOW_SUBMIT, audit.PROJECT_CREATED]


def test_failed_system_log_write_drops_new_project() -> None:
    log = _FailingLog()
    log.failing = True
    engine = WorkflowEngine(InMemoryProjectStore(), log, clock=_Clock())

    with pytest.raises(RuntimeError):
        _create(engine)

    assert engine.list_projects() == []


def test_write_over_a_moved_project_is_a_stage_conflict() -> None:
    engine = _engine()
    project_id = _create(engine)

    with pytest.raises(StageConflictError):
        with engine.store.transaction(project_id) as unit:
            engine.submit(project_id, ACTORS[Role.WRITER])
            unit.update({"status": TaskStatus.IN_PROGRESS})

    stored = engine.get(project_id)
    assert stored.current_stage == WorkflowStage.SCRIPT_REVIEW_L1
    assert stored.status == TaskStatus.WAITING_APPROVAL
