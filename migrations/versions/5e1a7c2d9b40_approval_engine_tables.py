"""approval_engine_tables

Create users, projects, documents, approver sets, approval rounds,
decisions, status change requests, audit log, signer envelopes,
webhook events and email log.

Revision ID: 5e1a7c2d9b40
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "5e1a7c2d9b40"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=True):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(150), nullable=False),
            sa.Column("email", sa.String(255), nullable=False),
            sa.Column("role", sa.String(20), nullable=False, server_default="REQUESTER"),
            sa.Column("department", sa.String(100), nullable=True),
            _ts("created_at"),
        )
        op.create_index("ix_users_email", "users", ["email"], unique=True)

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("code", sa.String(50), nullable=False, unique=True),
            sa.Column("title", sa.String(200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("type", sa.String(50), nullable=True),
            sa.Column("methodology", sa.String(30), nullable=True),
            sa.Column("status", sa.String(50), nullable=False, server_default="Initiative Submitted"),
            sa.Column("priority", sa.String(10), nullable=False, server_default="MEDIUM"),
            sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
        )

    if "documents" not in existing_tables:
        op.create_table(
            "documents",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
            sa.Column("type", sa.String(80), nullable=False),
            sa.Column("filename", sa.String(255), nullable=False),
            sa.Column("storage_key", sa.String(500), nullable=True),
            sa.Column("lifecycle_step", sa.String(50), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("status", sa.String(20), nullable=False, server_default="DRAFT"),
            sa.Column("priority", sa.String(10), nullable=False, server_default="MEDIUM"),
            sa.Column("created_by_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            _ts("created_at"),
        )
        op.create_index("ix_documents_project_id", "documents", ["project_id"])

    if "approver_sets" not in existing_tables:
        op.create_table(
            "approver_sets",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("subject_type", sa.String(20), nullable=False),
            sa.Column("subject_id", sa.Integer(), nullable=False),
            sa.Column("mode", sa.String(12), nullable=False),
            sa.Column("priority", sa.String(10), nullable=False, server_default="MEDIUM"),
            sa.Column("configured_by_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            _ts("created_at"),
            _ts("updated_at"),
            sa.UniqueConstraint("subject_type", "subject_id", name="uq_approver_set_subject"),
        )

    if "approver_set_members" not in existing_tables:
        op.create_table(
            "approver_set_members",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("approver_set_id", sa.Integer(),
                      sa.ForeignKey("approver_sets.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("email", sa.String(255), nullable=False),
            sa.Column("order_index", sa.Integer(), nullable=False),
            sa.UniqueConstraint("approver_set_id", "user_id", name="uq_set_member_user"),
            sa.UniqueConstraint("approver_set_id", "order_index", name="uq_set_member_order"),
        )
        op.create_index("ix_approver_set_members_approver_set_id", "approver_set_members", ["approver_set_id"])

    if "approval_rounds" not in existing_tables:
        op.create_table(
            "approval_rounds",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("approver_set_id", sa.Integer(),
                      sa.ForeignKey("approver_sets.id", ondelete="SET NULL"), nullable=True),
            sa.Column("subject_type", sa.String(20), nullable=False),
            sa.Column("subject_id", sa.Integer(), nullable=False),
            sa.Column("mode", sa.String(12), nullable=False),
            sa.Column("status", sa.String(12), nullable=False, server_default="PENDING"),
            sa.Column("outcome", sa.String(10), nullable=True),
            sa.Column("priority", sa.String(10), nullable=False, server_default="MEDIUM"),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("requested_by_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            _ts("created_at"),
            _ts("completed_at"),
        )
        op.create_index("ix_approval_rounds_approver_set_id", "approval_rounds", ["approver_set_id"])
        op.create_index("ix_round_subject", "approval_rounds", ["subject_type", "subject_id"])
        op.create_index(
            "uq_round_pending_subject",
            "approval_rounds",
            ["subject_type", "subject_id"],
            unique=True,
            postgresql_where=sa.text("status = 'PENDING'"),
            sqlite_where=sa.text("status = 'PENDING'"),
        )

    if "approval_decisions" not in existing_tables:
        op.create_table(
            "approval_decisions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("round_id", sa.Integer(),
                      sa.ForeignKey("approval_rounds.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("email", sa.String(255), nullable=False),
            sa.Column("order_index", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(10), nullable=False, server_default="PENDING"),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("source", sa.String(10), nullable=False, server_default="MANUAL"),
            _ts("decided_at"),
            sa.UniqueConstraint("round_id", "user_id", name="uq_decision_round_user"),
            sa.UniqueConstraint("round_id", "order_index", name="uq_decision_round_order"),
        )
        op.create_index("ix_approval_decisions_round_id", "approval_decisions", ["round_id"])
        op.create_index("ix_approval_decisions_user_id", "approval_decisions", ["user_id"])

    if "status_change_requests" not in existing_tables:
        op.create_table(
            "status_change_requests",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("project_id", sa.Integer(),
                      sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
            sa.Column("round_id", sa.Integer(),
                      sa.ForeignKey("approval_rounds.id", ondelete="SET NULL"), nullable=True),
            sa.Column("from_status", sa.String(50), nullable=False),
            sa.Column("to_status", sa.String(50), nullable=False),
            sa.Column("requested_by_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("status", sa.String(10), nullable=False, server_default="PENDING"),
            sa.Column("priority", sa.String(10), nullable=False, server_default="MEDIUM"),
            sa.Column("comment", sa.Text(), nullable=True),
            _ts("created_at"),
            _ts("completed_at"),
        )
        op.create_index("ix_status_change_requests_project_id", "status_change_requests", ["project_id"])
        op.create_index(
            "uq_status_request_pending_project",
            "status_change_requests",
            ["project_id"],
            unique=True,
            postgresql_where=sa.text("status = 'PENDING'"),
            sqlite_where=sa.text("status = 'PENDING'"),
        )

    if "audit_logs" not in existing_tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("actor_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("action", sa.String(60), nullable=False),
            sa.Column("target_type", sa.String(30), nullable=False),
            sa.Column("target_id", sa.String(36), nullable=False),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            _ts("created_at", nullable=False),
        )
        op.create_index("idx_audit_target", "audit_logs", ["target_type", "target_id"])
        op.create_index("idx_audit_actor", "audit_logs", ["actor_id"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["created_at"])

    if "signature_envelopes" not in existing_tables:
        op.create_table(
            "signature_envelopes",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("document_id", sa.Integer(),
                      sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False),
            sa.Column("round_id", sa.Integer(),
                      sa.ForeignKey("approval_rounds.id", ondelete="SET NULL"), nullable=True),
            sa.Column("submission_id", sa.String(100), nullable=True, unique=True),
            sa.Column("signing_url", sa.String(500), nullable=True),
            sa.Column("status", sa.String(12), nullable=False, server_default="CREATED"),
            _ts("created_at"),
            _ts("completed_at"),
        )
        op.create_index("ix_signature_envelopes_document_id", "signature_envelopes", ["document_id"])

    if "webhook_events" not in existing_tables:
        op.create_table(
            "webhook_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("provider", sa.String(30), nullable=False, server_default="signer"),
            sa.Column("event_type", sa.String(60), nullable=True),
            sa.Column("payload_json", sa.Text(), nullable=False),
            sa.Column("status", sa.String(12), nullable=False, server_default="PENDING"),
            sa.Column("error", sa.Text(), nullable=True),
            _ts("received_at"),
            _ts("processed_at"),
        )

    if "email_logs" not in existing_tables:
        op.create_table(
            "email_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("recipient_email", sa.String(255), nullable=False),
            sa.Column("recipient_name", sa.String(150), nullable=True),
            sa.Column("subject", sa.String(500), nullable=False),
            sa.Column("template_name", sa.String(100), nullable=True),
            sa.Column("status", sa.String(20), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            _ts("sent_at"),
            _ts("created_at"),
        )
        op.create_index("ix_email_logs_recipient_email", "email_logs", ["recipient_email"])


def downgrade():
    for table in (
        "email_logs",
        "webhook_events",
        "signature_envelopes",
        "audit_logs",
        "status_change_requests",
        "approval_decisions",
        "approval_rounds",
        "approver_set_members",
        "approver_sets",
        "documents",
        "projects",
        "users",
    ):
        op.drop_table(table)
