"""initial_reimburse_schema

Create users, projects, settings, requests, settlements and audit_logs.

Revision ID: 0001a7c3e9b2
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "0001a7c3e9b2"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("uid", sa.String(length=128), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False, server_default=""),
            sa.Column("name", sa.String(length=200), nullable=False, server_default=""),
            sa.Column("display_name", sa.String(length=200), nullable=False, server_default=""),
            sa.Column("phone", sa.String(length=40), nullable=False, server_default=""),
            sa.Column("bank_name", sa.String(length=100), nullable=False, server_default=""),
            sa.Column("bank_account", sa.String(length=100), nullable=False, server_default=""),
            sa.Column("default_committee", sa.String(length=30), nullable=False, server_default="operations"),
            sa.Column("signature", sa.Text(), nullable=True),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="user"),
            sa.Column("project_ids", sa.JSON(), nullable=True),
            sa.Column("bank_book_url", sa.String(length=500), nullable=True),
            sa.Column("bank_book_storage_path", sa.String(length=500), nullable=True),
            sa.Column("bank_book_drive_url", sa.String(length=500), nullable=True),
            sa.Column("bank_book_image", sa.Text(), nullable=True),
            sa.Column("schema_version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("uid"),
        )

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.String(length=64), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=False, server_default=""),
            sa.Column("document_no", sa.String(length=100), nullable=False, server_default=""),
            sa.Column("budget_config", sa.JSON(), nullable=True),
            sa.Column("director_approval_threshold", sa.Integer(), nullable=False, server_default="600000"),
            sa.Column("budget_warning_threshold", sa.Integer(), nullable=False, server_default="85"),
            sa.Column("member_uids", sa.JSON(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_by", sa.JSON(), nullable=True),
            sa.Column("schema_version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )

    if "settings" not in existing_tables:
        op.create_table(
            "settings",
            sa.Column("key", sa.String(length=64), nullable=False),
            sa.Column("value", sa.JSON(), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("key"),
        )

    if "requests" not in existing_tables:
        op.create_table(
            "requests",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("payee", sa.String(length=200), nullable=False),
            sa.Column("phone", sa.String(length=40), nullable=False),
            sa.Column("bank_name", sa.String(length=100), nullable=False),
            sa.Column("bank_account", sa.String(length=100), nullable=False),
            sa.Column("date", sa.String(length=10), nullable=False),
            sa.Column("session", sa.String(length=100), nullable=False, server_default=""),
            sa.Column("committee", sa.String(length=30), nullable=False),
            sa.Column("project_id", sa.String(length=64), nullable=True),
            sa.Column("items", sa.JSON(), nullable=False),
            sa.Column("total_amount", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("receipts", sa.JSON(), nullable=False),
            sa.Column("comments", sa.Text(), nullable=False, server_default=""),
            sa.Column("requested_by", sa.JSON(), nullable=False),
            sa.Column("requested_by_uid", sa.String(length=128), nullable=False),
            sa.Column("approved_by", sa.JSON(), nullable=True),
            sa.Column("approval_signature", sa.Text(), nullable=True),
            sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("rejection_reason", sa.Text(), nullable=True),
            sa.Column("settlement_id", sa.String(length=36), nullable=True),
            sa.Column("original_request_id", sa.String(length=36), nullable=True),
            sa.Column("director_approval_required", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("schema_version", sa.Integer(), nullable=False, server_default="1"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_requests_project_id", "requests", ["project_id"])
        op.create_index("ix_requests_settlement_id", "requests", ["settlement_id"])
        op.create_index("ix_requests_project_status", "requests", ["project_id", "status"])
        op.create_index("ix_requests_requester", "requests", ["requested_by_uid"])

    if "settlements" not in existing_tables:
        op.create_table(
            "settlements",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("created_by", sa.JSON(), nullable=False),
            sa.Column("payee", sa.String(length=200), nullable=False),
            sa.Column("phone", sa.String(length=40), nullable=False),
            sa.Column("bank_name", sa.String(length=100), nullable=False),
            sa.Column("bank_account", sa.String(length=100), nullable=False),
            sa.Column("session", sa.String(length=100), nullable=False, server_default=""),
            sa.Column("committee", sa.String(length=30), nullable=False),
            sa.Column("project_id", sa.String(length=64), nullable=True),
            sa.Column("items", sa.JSON(), nullable=False),
            sa.Column("total_amount", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("request_ids", sa.JSON(), nullable=False),
            sa.Column("receipts", sa.JSON(), nullable=False),
            sa.Column("requested_by_signature", sa.Text(), nullable=True),
            sa.Column("approval_signature", sa.Text(), nullable=True),
            sa.Column("approved_by", sa.JSON(), nullable=True),
            sa.Column("director_approval_required", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("schema_version", sa.Integer(), nullable=False, server_default="1"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_settlements_project_id", "settlements", ["project_id"])

    if "audit_logs" not in existing_tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=255), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor_uid", sa.String(length=128), nullable=False, server_default="system"),
            sa.Column("project_id", sa.String(length=64), nullable=True),
            sa.Column("diff", sa.JSON(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_project", "audit_logs", ["project_id"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])


def downgrade():
    op.drop_table("audit_logs")
    op.drop_table("settlements")
    op.drop_table("requests")
    op.drop_table("settings")
    op.drop_table("projects")
    op.drop_table("users")
