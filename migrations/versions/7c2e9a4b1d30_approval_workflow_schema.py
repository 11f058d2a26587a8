"""approval_workflow_schema

Create work requests, approvers, approval chain entries, approval rule
configuration, audit log and notification tables.

Revision ID: 7c2e9a4b1d30
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "7c2e9a4b1d30"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "work_requests" not in existing_tables:
        op.create_table(
            "work_requests",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.String(length=64), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("priority", sa.String(length=20), nullable=False, server_default="medium",
                      comment="low | medium | high | critical"),
            sa.Column("work_type", sa.String(length=30), nullable=False, server_default="maintenance"),
            sa.Column("asset_type", sa.String(length=30), nullable=True),
            sa.Column("asset_code", sa.String(length=50), nullable=True),
            sa.Column("estimated_total_cost", sa.Numeric(12, 2), nullable=True),
            sa.Column("requestor_name", sa.String(length=150), nullable=True),
            sa.Column("submission_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="submitted"),
            sa.Column("status_reason", sa.Text(), nullable=True),
            sa.Column("approval_required", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("approval_level", sa.String(length=20), nullable=True),
            sa.Column("current_approver_id", sa.String(length=64), nullable=True),
            sa.Column("approval_deadline", sa.DateTime(timezone=True), nullable=True),
            sa.Column("approved_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_by", sa.String(length=64), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_work_requests_organization_id", "work_requests", ["organization_id"])
        op.create_index("ix_work_requests_current_approver_id", "work_requests", ["current_approver_id"])
        op.create_index("ix_work_requests_org_status", "work_requests", ["organization_id", "status"])

    if "approvers" not in existing_tables:
        op.create_table(
            "approvers",
            sa.Column("id", sa.String(length=64), nullable=False),
            sa.Column("name", sa.String(length=150), nullable=False),
            sa.Column("role", sa.String(length=100), nullable=True),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("department", sa.String(length=100), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )

    if "work_request_approvals" not in existing_tables:
        op.create_table(
            "work_request_approvals",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("work_request_id", sa.Integer(), nullable=False),
            sa.Column("approver_id", sa.String(length=64), nullable=False),
            sa.Column("approver_name", sa.String(length=150), nullable=True),
            sa.Column("approver_role", sa.String(length=100), nullable=True),
            sa.Column("approver_email", sa.String(length=255), nullable=True),
            sa.Column("approval_level", sa.String(length=20), nullable=False, server_default="standard"),
            sa.Column("sequence_order", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("can_delegate", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("rule_id", sa.String(length=64), nullable=True),
            sa.Column("decision_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("comments", sa.Text(), nullable=True),
            sa.Column("conditions", sa.Text(), nullable=True),
            sa.Column("delegated_to", sa.String(length=64), nullable=True),
            sa.Column("delegated_from", sa.String(length=64), nullable=True),
            sa.Column("timeout_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("reminded_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("escalated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["work_request_id"], ["work_requests.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("work_request_id", "approver_id", "sequence_order",
                                name="uq_approval_request_approver_stage"),
        )
        op.create_index("ix_work_request_approvals_work_request_id",
                        "work_request_approvals", ["work_request_id"])
        op.create_index("ix_approval_request_stage",
                        "work_request_approvals", ["work_request_id", "sequence_order"])
        op.create_index("ix_approval_approver_status",
                        "work_request_approvals", ["approver_id", "status"])

    if "approval_rule_configs" not in existing_tables:
        op.create_table(
            "approval_rule_configs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.String(length=64), nullable=False),
            sa.Column("rule_key", sa.String(length=64), nullable=False),
            sa.Column("name", sa.String(length=150), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("conditions", sa.JSON(), nullable=False),
            sa.Column("steps", sa.JSON(), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("priority", sa.Integer(), nullable=False, server_default="100"),
            sa.Column("created_by", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("organization_id", "rule_key", name="uq_approval_rule_org_key"),
        )
        op.create_index("ix_approval_rule_configs_organization_id",
                        "approval_rule_configs", ["organization_id"])

    if "audit_logs" not in existing_tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.String(length=64), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("diff_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_org", "audit_logs", ["organization_id"])
        op.create_index("idx_audit_actor", "audit_logs", ["actor"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.String(length=64), nullable=True),
            sa.Column("recipient", sa.String(length=150), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=30), nullable=True),
            sa.Column("severity", sa.String(length=20), nullable=True),
            sa.Column("event_type", sa.String(length=30), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_organization_id", "notifications", ["organization_id"])
        op.create_index("ix_notifications_recipient", "notifications", ["recipient"])


def downgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    for table in (
        "notifications",
        "audit_logs",
        "approval_rule_configs",
        "work_request_approvals",
        "approvers",
        "work_requests",
    ):
        if table in existing_tables:
            op.drop_table(table)
