"""create workflow schema

Revision ID: 3a1f6c2d9b70
Revises:
Create Date: 2026-10-19 09:00:00

Touched tables:
- project, workflow_history, system_log
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "3a1f6c2d9b70"
down_revision = None
branch_labels = None
depends_on = None


CHANNELS = ("LINKEDIN", "YOUTUBE", "INSTAGRAM")
STAGES = (
    "SCRIPT",
    "SCRIPT_REVIEW_L1",
    "SCRIPT_REVIEW_L2",
    "SHOOT",
    "EDIT",
    "DESIGN",
    "METADATA",
    "FINAL_REVIEW_L1",
    "FINAL_REVIEW_L2",
    "PUBLISH",
    "COMPLETED",
)
ROLES = ("WRITER", "CINE", "EDITOR", "DESIGNER", "CMO", "CEO", "OPS", "ADMIN", "OBSERVER")
STATUSES = ("TODO", "IN_PROGRESS", "WAITING_APPROVAL", "REJECTED", "DONE")
ACTIONS = ("CREATED", "SUBMITTED", "APPROVED", "REJECTED", "PUBLISHED")


def _one_of(column: str, values: tuple[str, ...]) -> str:
    return f"{column} in ({', '.join(repr(v) for v in values)})"


def _json() -> sa.types.TypeEngine:
    return sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "project",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("channel", sa.Text(), nullable=False),
        sa.Column("content_type", sa.Text(), nullable=False),
        sa.Column("current_stage", sa.Text(), nullable=False),
        sa.Column("assigned_to_role", sa.Text(), nullable=False),
        sa.Column("assigned_to_user_id", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("priority", sa.Text(), nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("data", _json(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(_one_of("channel", CHANNELS), name="ck_project_channel"),
        sa.CheckConstraint(_one_of("content_type", ("VIDEO", "CREATIVE_ONLY")), name="ck_project_content_type"),
        sa.CheckConstraint(_one_of("current_stage", STAGES), name="ck_project_current_stage"),
        sa.CheckConstraint(_one_of("assigned_to_role", ROLES), name="ck_project_assigned_to_role"),
        sa.CheckConstraint(_one_of("status", STATUSES), name="ck_project_status"),
        sa.CheckConstraint(_one_of("priority", ("HIGH", "NORMAL")), name="ck_project_priority"),
    )
    op.create_index("ix_project_assigned_to_role", "project", ["assigned_to_role"])
    op.create_index("ix_project_created_at", "project", ["created_at"])

    op.create_table(
        "workflow_history",
        sa.Column("seq", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_id", sa.Uuid(), nullable=False),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column("stage", sa.Text(), nullable=False),
        sa.Column("actor_id", sa.Text(), nullable=False),
        sa.Column("actor_name", sa.Text(), nullable=False),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["project_id"], ["project.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("seq"),
        sa.UniqueConstraint("event_id"),
        sa.CheckConstraint(_one_of("stage", STAGES), name="ck_workflow_history_stage"),
        sa.CheckConstraint(_one_of("action", ACTIONS), name="ck_workflow_history_action"),
    )
    op.create_index("ix_workflow_history_project_id", "workflow_history", ["project_id"])

    op.create_table(
        "system_log",
        sa.Column("seq", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("entry_id", sa.Uuid(), nullable=False),
        sa.Column("actor_id", sa.Text(), nullable=False),
        sa.Column("actor_name", sa.Text(), nullable=False),
        sa.Column("actor_role", sa.Text(), nullable=False),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("details", sa.Text(), nullable=False),
        sa.Column("payload", _json(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("seq"),
        sa.UniqueConstraint("entry_id"),
        sa.CheckConstraint(_one_of("actor_role", ROLES), name="ck_system_log_actor_role"),
    )
    op.create_index("ix_system_log_occurred_at", "system_log", ["occurred_at"])
    op.create_index("ix_system_log_actor_id", "system_log", ["actor_id"])


def downgrade() -> None:
    op.drop_index("ix_system_log_actor_id", table_name="system_log")
    op.drop_index("ix_system_log_occurred_at", table_name="system_log")
    op.drop_table("system_log")
    op.drop_index("ix_workflow_history_project_id", table_name="workflow_history")
    op.drop_table("workflow_history")
    op.drop_index("ix_project_created_at", table_name="project")
    op.drop_index("ix_project_assigned_to_role", table_name="project")
    op.drop_table("project")
