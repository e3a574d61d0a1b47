"""init
Revision ID: 0001_init
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _base_columns():
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("responsible", sa.String(length=200), nullable=False, server_default="System"),
    ]


def upgrade():
    op.create_table(
        "companies",
        *_base_columns(),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("company_code", sa.String(length=20), nullable=False),
        sa.Column("primary_contact", sa.String(length=200), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=40), nullable=True),
    )
    op.create_index("ix_companies_company_code", "companies", ["company_code"], unique=True)

    op.create_table(
        "users",
        *_base_columns(),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("login_code", sa.String(length=20), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=30), nullable=False),
        sa.Column("company_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="America/New_York"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_login_code", "users", ["login_code"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_company_id", "users", ["company_id"])

    op.create_table(
        "agents",
        *_base_columns(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("assigned_company_ids", sa.JSON(), nullable=False, server_default=sa.text("'[]'::json")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.create_index("ix_agents_user_id", "agents", ["user_id"], unique=True)

    op.create_table(
        "service_requests",
        *_base_columns(),
        sa.Column("service_queue_id", sa.String(length=20), nullable=False),
        sa.Column("insured", sa.String(length=300), nullable=False),
        sa.Column("service_request_narrative", sa.Text(), nullable=False),
        sa.Column("service_queue_category", sa.String(length=50), nullable=False),
        sa.Column("company_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("task_status", sa.String(length=20), nullable=False, server_default="new"),
        sa.Column("assigned_to_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("assigned_by_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("modified_by_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("due_time", sa.String(length=10), nullable=True),
        sa.Column("in_progress_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("time_spent", sa.Integer(), nullable=True),
    )
    op.create_index("ix_service_requests_service_queue_id", "service_requests", ["service_queue_id"], unique=True)
    op.create_index("ix_service_requests_service_queue_category", "service_requests", ["service_queue_category"])
    op.create_index("ix_service_requests_company_id", "service_requests", ["company_id"])
    op.create_index("ix_service_requests_task_status", "service_requests", ["task_status"])
    op.create_index("ix_service_requests_assigned_to_id", "service_requests", ["assigned_to_id"])
    op.create_index("ix_service_requests_due_date", "service_requests", ["due_date"])

    op.create_table(
        "sub_tasks",
        *_base_columns(),
        sa.Column("task_id", sa.String(length=40), nullable=False),
        sa.Column("request_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("task_description", sa.Text(), nullable=False),
        sa.Column("assigned_to_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("assigned_by_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("task_status", sa.String(length=20), nullable=False, server_default="new"),
    )
    op.create_index("ix_sub_tasks_task_id", "sub_tasks", ["task_id"], unique=True)
    op.create_index("ix_sub_tasks_request_id", "sub_tasks", ["request_id"])
    op.create_index("ix_sub_tasks_assigned_to_id", "sub_tasks", ["assigned_to_id"])

    op.create_table(
        "assignment_change_requests",
        *_base_columns(),
        sa.Column("request_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("requested_by_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("current_assignee_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("requested_assignee_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("reviewed_by_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("review_comment", sa.Text(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_assignment_change_requests_request_id", "assignment_change_requests", ["request_id"])
    op.create_index("ix_assignment_change_requests_requested_by_id", "assignment_change_requests", ["requested_by_id"])
    op.create_index("ix_assignment_change_requests_status", "assignment_change_requests", ["status"])

    op.create_table(
        "request_notes",
        *_base_columns(),
        sa.Column("request_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("author_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("note_content", sa.Text(), nullable=False),
        sa.Column("is_internal", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    op.create_index("ix_request_notes_request_id", "request_notes", ["request_id"])

    op.create_table(
        "request_attachments",
        *_base_columns(),
        sa.Column("request_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("file_name", sa.String(length=300), nullable=False),
        sa.Column("file_path", sa.String(length=500), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("mime_type", sa.String(length=150), nullable=False),
        sa.Column("uploaded_by_id", postgresql.UUID(as_uuid=True), nullable=False),
    )
    op.create_index("ix_request_attachments_request_id", "request_attachments", ["request_id"])

    op.create_table(
        "activity_logs",
        *_base_columns(),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("company_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("request_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False, server_default=sa.text("'{}'::json")),
    )
    op.create_index("ix_activity_logs_type", "activity_logs", ["type"])
    op.create_index("ix_activity_logs_company_id", "activity_logs", ["company_id"])
    op.create_index("ix_activity_logs_request_id", "activity_logs", ["request_id"])

    op.create_table(
        "notifications",
        *_base_columns(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("request_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False, server_default=sa.text("'{}'::json")),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dedupe_key", sa.String(length=255), nullable=True, unique=True),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_request_id", "notifications", ["request_id"])
    op.create_index("ix_notifications_type", "notifications", ["type"])
    op.create_index("ix_notifications_is_read", "notifications", ["is_read"])


def downgrade():
    op.drop_table("notifications")
    op.drop_table("activity_logs")
    op.drop_table("request_attachments")
    op.drop_table("request_notes")
    op.drop_table("assignment_change_requests")
    op.drop_table("sub_tasks")
    op.drop_table("service_requests")
    op.drop_table("agents")
    op.drop_table("users")
    op.drop_table("companies")
