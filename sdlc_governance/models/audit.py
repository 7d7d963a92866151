"""
SDLC Governance Approval Engine
Audit domain model.

Models:
    - AuditLog: immutable, append-only history of every state-changing action.
"""

import json
from datetime import datetime, timezone

from sdlc_governance.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_TARGET_TYPES = {"document", "project", "approval_round", "status_change_request"}

AUDIT_ACTIONS = {
    # Approver configuration
    "Approval Workflow Configured",
    "Project Approvers Configured",
    "Approver Removed",
    # Document review
    "Document Approved",
    "Document Rejected",
    "Document Fully Approved",
    "Document Approval Rejected",
    # Project lifecycle gate
    "Status Change Requested",
    "Status Change Approved",
    "Status Change Rejected",
    "Status Change Request Rejected",
    "Status Updated",
    # External signer
    "Signature Requested",
    "Individual Signature Completed",
    "Signature Declined",
}


class AuditLog(db.Model):
    """
    Immutable audit trail entry.

    Rows are only ever inserted. ``metadata_json`` carries the structured
    key/value context of the action (outcome, round id, from/to status …).
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_target", "target_type", "target_id"),
        db.Index("idx_audit_actor", "actor_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="Null for system / signer-originated entries",
    )
    action = db.Column(db.String(60), nullable=False)
    target_type = db.Column(db.String(30), nullable=False, comment="document | project | …")
    target_id = db.Column(db.String(36), nullable=False)
    metadata_json = db.Column(db.Text, default="{}")
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def meta(self) -> dict:
        try:
            return json.loads(self.metadata_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_id": self.actor_id,
            "action": self.action,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "metadata": self.meta,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.target_type}/{self.target_id}>"
