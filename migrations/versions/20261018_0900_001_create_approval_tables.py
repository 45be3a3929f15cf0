"""Create approval routing tables

Revision ID: 001
Revises:
Create Date: 2026-10-18 09:00:00.000000

Creates the following tables:
- companies, roles, users, user_roles: Directory data read by the engine
- expense_reports: Request records routed through approval
- approval_matrices / approval_levels: Per-company approval chains
- approval_rules: Additional-approver rules
- approval_instances / approval_history: Routing state and decisions
- audit_logs: System audit trail
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # ========================================
    # 1. Directory
    # ========================================
    op.create_table(
        "companies",
        sa.Column("id", sa.String(50), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("self_approval_policy", sa.String(20), nullable=False, server_default="SKIP_SELF"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "self_approval_policy IN ('SKIP_SELF', 'ALLOW_SELF')",
            name="ck_company_self_approval_policy",
        ),
    )

    op.create_table(
        "roles",
        sa.Column("id", sa.String(50), nullable=False),
        sa.Column("company_id", sa.String(50), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_roles_company_id", "roles", ["company_id"])

    op.create_table(
        "users",
        sa.Column("id", sa.String(50), nullable=False),
        sa.Column("company_id", sa.String(50), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sa.CheckConstraint("status IN ('ACTIVE', 'INACTIVE')", name="ck_user_status"),
    )
    op.create_index("ix_users_company_id", "users", ["company_id"])
    op.create_index("ix_users_status", "users", ["status"])

    op.create_table(
        "user_roles",
        sa.Column("user_id", sa.String(50), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("role_id", sa.String(50), sa.ForeignKey("roles.id"), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "role_id"),
    )

    # ========================================
    # 2. expense_reports
    # ========================================
    op.create_table(
        "expense_reports",
        sa.Column("id", sa.String(50), nullable=False),
        sa.Column("company_id", sa.String(50), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("submitter_id", sa.String(50), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("total_amount", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="INR"),
        sa.Column("project_id", sa.String(50), nullable=True),
        sa.Column("cost_centre_id", sa.String(50), nullable=True),
        # Denormalised approval state
        sa.Column("status", sa.String(30), nullable=False, server_default="DRAFT"),
        sa.Column("approval_level", sa.Integer(), nullable=True),
        sa.Column("approvers", JSONB(), nullable=False, server_default="[]"),
        sa.Column("additional_approvers_resolved", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('DRAFT', 'SUBMITTED', 'PENDING_APPROVAL', 'APPROVED', "
            "'REJECTED', 'CHANGES_REQUESTED')",
            name="ck_report_status",
        ),
    )
    op.create_index("ix_expense_reports_company_id", "expense_reports", ["company_id"])
    op.create_index("ix_expense_reports_submitter_id", "expense_reports", ["submitter_id"])
    op.create_index("ix_expense_reports_status", "expense_reports", ["status"])

    # ========================================
    # 3. approval_matrices / approval_levels
    # ========================================
    op.create_table(
        "approval_matrices",
        sa.Column("id", sa.String(50), nullable=False),
        sa.Column("company_id", sa.String(50), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("previous_version_id", sa.String(50), sa.ForeignKey("approval_matrices.id"), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_approval_matrices_company_id", "approval_matrices", ["company_id"])
    op.create_index("idx_matrix_company_active", "approval_matrices", ["company_id", "is_active"])

    op.create_table(
        "approval_levels",
        sa.Column("id", sa.String(50), nullable=False),
        sa.Column("matrix_id", sa.String(50), sa.ForeignKey("approval_matrices.id"), nullable=False),
        sa.Column("level_number", sa.Integer(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("approval_type", sa.String(20), nullable=False),
        sa.Column("parallel_rule", sa.String(10), nullable=True),
        sa.Column("approver_user_ids", JSONB(), nullable=False, server_default="[]"),
        sa.Column("approver_role_ids", JSONB(), nullable=False, server_default="[]"),
        sa.Column("conditions", JSONB(), nullable=False, server_default="[]"),
        sa.Column("skip_allowed", sa.Boolean(), nullable=False, server_default="false"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "approval_type IN ('SEQUENTIAL', 'PARALLEL')", name="ck_level_approval_type"
        ),
        sa.CheckConstraint(
            "parallel_rule IN ('ALL', 'ANY') OR parallel_rule IS NULL",
            name="ck_level_parallel_rule",
        ),
    )
    op.create_index("ix_approval_levels_matrix_id", "approval_levels", ["matrix_id"])

    # ========================================
    # 4. approval_rules
    # ========================================
    op.create_table(
        "approval_rules",
        sa.Column("id", sa.String(50), nullable=False),
        sa.Column("company_id", sa.String(50), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("trigger_type", sa.String(40), nullable=False),
        sa.Column("threshold_value", sa.Numeric(18, 2), nullable=False),
        sa.Column("approver_user_id", sa.String(50), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("approver_role_id", sa.String(50), sa.ForeignKey("roles.id"), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "trigger_type IN ('REPORT_AMOUNT_EXCEEDS', 'PROJECT_BUDGET_EXCEEDS', "
            "'COST_CENTRE_BUDGET_EXCEEDS')",
            name="ck_rule_trigger_type",
        ),
        sa.CheckConstraint(
            "approver_user_id IS NOT NULL OR approver_role_id IS NOT NULL",
            name="ck_rule_approver",
        ),
        sa.CheckConstraint("threshold_value >= 0", name="ck_rule_threshold"),
    )
    op.create_index("idx_rule_company_active", "approval_rules", ["company_id", "active"])

    # ========================================
    # 5. approval_instances / approval_history
    # ========================================
    op.create_table(
        "approval_instances",
        sa.Column("id", sa.String(50), nullable=False),
        sa.Column("company_id", sa.String(50), sa.ForeignKey("companies.id"), nullable=False),
        sa.Column("matrix_id", sa.String(50), sa.ForeignKey("approval_matrices.id"), nullable=False),
        sa.Column("request_id", sa.String(50), nullable=False),
        sa.Column("request_type", sa.String(30), nullable=False, server_default="EXPENSE_REPORT"),
        sa.Column("submitter_id", sa.String(50), nullable=True),
        sa.Column("current_level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("resolution", sa.String(30), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_action_at", sa.DateTime(timezone=True), nullable=True),
        # Optimistic lock counter
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED', 'CHANGES_REQUESTED')",
            name="ck_instance_status",
        ),
    )
    op.create_index("ix_approval_instances_request_id", "approval_instances", ["request_id"])
    op.create_index("ix_approval_instances_status", "approval_instances", ["status"])
    op.create_index("idx_instance_company_status", "approval_instances", ["company_id", "status"])
    # At most one in-flight instance per request
    op.create_index(
        "uq_instance_request_pending",
        "approval_instances",
        ["request_id"],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
    )

    op.create_table(
        "approval_history",
        sa.Column("id", sa.String(50), nullable=False),
        sa.Column("instance_id", sa.String(50), sa.ForeignKey("approval_instances.id"), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("level_number", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("approver_id", sa.String(50), nullable=True),
        sa.Column("role_id", sa.String(50), nullable=True),
        sa.Column("is_additional", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("instance_id", "level_number", "approver_id", name="uq_history_actor_level"),
        sa.UniqueConstraint("instance_id", "sequence", name="uq_history_sequence"),
        sa.CheckConstraint(
            "status IN ('APPROVED', 'REJECTED', 'CHANGES_REQUESTED', 'SKIPPED')",
            name="ck_history_status",
        ),
    )
    op.create_index("ix_approval_history_instance_id", "approval_history", ["instance_id"])
    op.create_index("ix_approval_history_approver_id", "approval_history", ["approver_id"])

    # ========================================
    # 6. audit_logs
    # ========================================
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("resource_type", sa.String(50), nullable=False),
        sa.Column("resource_id", sa.String(100), nullable=True),
        sa.Column("actor_id", sa.String(50), nullable=True),
        sa.Column("old_value", JSONB(), nullable=True),
        sa.Column("new_value", JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_resource_type", "audit_logs", ["resource_type"])
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("approval_history")
    op.drop_index("uq_instance_request_pending", table_name="approval_instances")
    op.drop_table("approval_instances")
    op.drop_table("approval_rules")
    op.drop_table("approval_levels")
    op.drop_table("approval_matrices")
    op.drop_table("expense_reports")
    op.drop_table("user_roles")
    op.drop_table("users")
    op.drop_table("roles")
    op.drop_table("companies")
