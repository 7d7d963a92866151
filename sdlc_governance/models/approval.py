"""
SDLC Governance Approval Engine
Approval domain models.

Models:
    - ApproverSet:        ordered, mode-tagged list of approvers bound to a subject
    - ApproverSetMember:  one (user, email, order_index) slot in a set
    - ApprovalRound:      one resolvable instance of the set against a subject
    - Decision:           one approver's vote within a round
    - StatusChangeRequest: a gated project lifecycle transition

Rules:
    - At most one PENDING round per (subject_type, subject_id)  → partial unique index
    - At most one PENDING status-change request per project     → partial unique index
    - order_index is unique per set and per round (contiguous 0..N-1 kept by services)
    - Decisions never move back to PENDING once decided
"""

from datetime import datetime, timezone
from enum import Enum

from sdlc_governance.models import db


# ── Enumerations ─────────────────────────────────────────────────────────────


class SubjectType(str, Enum):
    DOCUMENT = "DOCUMENT"
    PROJECT_STATUS = "PROJECT_STATUS"


class ApprovalMode(str, Enum):
    SEQUENTIAL = "SEQUENTIAL"
    PARALLEL = "PARALLEL"


class DecisionStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class RoundStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


PRIORITIES = ("LOW", "MEDIUM", "HIGH", "CRITICAL")
DEFAULT_PRIORITY = "MEDIUM"
DECISION_SOURCES = frozenset({"MANUAL", "SIGNER"})


def _utcnow():
    return datetime.now(timezone.utc)


# ── Approver set ─────────────────────────────────────────────────────────────


class ApproverSet(db.Model):
    """Who must approve a subject, and in what order."""

    __tablename__ = "approver_sets"
    __table_args__ = (
        db.UniqueConstraint("subject_type", "subject_id", name="uq_approver_set_subject"),
    )

    id = db.Column(db.Integer, primary_key=True)
    subject_type = db.Column(db.String(20), nullable=False, comment="DOCUMENT | PROJECT_STATUS")
    subject_id = db.Column(db.Integer, nullable=False, comment="documents.id or projects.id")
    mode = db.Column(db.String(12), nullable=False, comment="SEQUENTIAL | PARALLEL")
    priority = db.Column(db.String(10), nullable=False, default=DEFAULT_PRIORITY)
    configured_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    members = db.relationship(
        "ApproverSetMember",
        backref="approver_set",
        order_by="ApproverSetMember.order_index",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "subject_type": self.subject_type,
            "subject_id": self.subject_id,
            "mode": self.mode,
            "priority": self.priority,
            "configured_by_id": self.configured_by_id,
            "approvers": [m.to_dict() for m in self.members],
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ApproverSet {self.id}: {self.subject_type}/{self.subject_id} {self.mode}>"


class ApproverSetMember(db.Model):
    __tablename__ = "approver_set_members"
    __table_args__ = (
        db.UniqueConstraint("approver_set_id", "user_id", name="uq_set_member_user"),
        db.UniqueConstraint("approver_set_id", "order_index", name="uq_set_member_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    approver_set_id = db.Column(
        db.Integer,
        db.ForeignKey("approver_sets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    email = db.Column(db.String(255), nullable=False, comment="Snapshot at configuration time")
    order_index = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "order_index": self.order_index,
        }


# ── Rounds & decisions ───────────────────────────────────────────────────────


class ApprovalRound(db.Model):
    """
    One in-flight approval process for a subject.

    ``version`` is the compare-and-swap token: completion is applied with
    ``UPDATE … WHERE status='PENDING' AND version=:v`` so only one writer
    ever moves the round to COMPLETED.
    """

    __tablename__ = "approval_rounds"
    __table_args__ = (
        db.Index("ix_round_subject", "subject_type", "subject_id"),
        db.Index(
            "uq_round_pending_subject",
            "subject_type",
            "subject_id",
            unique=True,
            postgresql_where=db.text("status = 'PENDING'"),
            sqlite_where=db.text("status = 'PENDING'"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    approver_set_id = db.Column(
        db.Integer,
        db.ForeignKey("approver_sets.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    subject_type = db.Column(db.String(20), nullable=False)
    subject_id = db.Column(db.Integer, nullable=False)
    mode = db.Column(db.String(12), nullable=False, comment="Copied from the set at creation")
    status = db.Column(db.String(12), nullable=False, default=RoundStatus.PENDING.value)
    outcome = db.Column(db.String(10), nullable=True, comment="APPROVED | REJECTED once completed")
    priority = db.Column(db.String(10), nullable=False, default=DEFAULT_PRIORITY)
    version = db.Column(db.Integer, nullable=False, default=1)
    requested_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    decisions = db.relationship(
        "Decision",
        backref="round",
        order_by="Decision.order_index",
        cascade="all, delete-orphan",
    )

    @property
    def is_pending(self) -> bool:
        return self.status == RoundStatus.PENDING.value

    def to_dict(self, include_decisions: bool = True) -> dict:
        d = {
            "id": self.id,
            "approver_set_id": self.approver_set_id,
            "subject_type": self.subject_type,
            "subject_id": self.subject_id,
            "mode": self.mode,
            "status": self.status,
            "outcome": self.outcome,
            "priority": self.priority,
            "version": self.version,
            "requested_by_id": self.requested_by_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
        if include_decisions:
            d["decisions"] = [x.to_dict() for x in self.decisions]
        return d

    def __repr__(self):
        return f"<ApprovalRound {self.id}: {self.subject_type}/{self.subject_id} [{self.status}]>"


class Decision(db.Model):
    __tablename__ = "approval_decisions"
    __table_args__ = (
        db.UniqueConstraint("round_id", "user_id", name="uq_decision_round_user"),
        db.UniqueConstraint("round_id", "order_index", name="uq_decision_round_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    round_id = db.Column(
        db.Integer,
        db.ForeignKey("approval_rounds.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)
    order_index = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(10), nullable=False, default=DecisionStatus.PENDING.value)
    comment = db.Column(db.Text, nullable=True)
    source = db.Column(db.String(10), nullable=False, default="MANUAL", comment="MANUAL | SIGNER")
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "round_id": self.round_id,
            "user_id": self.user_id,
            "email": self.email,
            "order_index": self.order_index,
            "status": self.status,
            "comment": self.comment,
            "source": self.source,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
        }

    def __repr__(self):
        return f"<Decision {self.id}: round={self.round_id} user={self.user_id} [{self.status}]>"


# ── Status change gate ───────────────────────────────────────────────────────


class StatusChangeRequest(db.Model):
    """
    A requested lifecycle transition awaiting the project's approvers.

    Per-approver votes are the Decisions of ``round_id`` (a PROJECT_STATUS
    round created together with the request).
    """

    __tablename__ = "status_change_requests"
    __table_args__ = (
        db.Index(
            "uq_status_request_pending_project",
            "project_id",
            unique=True,
            postgresql_where=db.text("status = 'PENDING'"),
            sqlite_where=db.text("status = 'PENDING'"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    round_id = db.Column(
        db.Integer,
        db.ForeignKey("approval_rounds.id", ondelete="SET NULL"),
        nullable=True,
    )
    from_status = db.Column(db.String(50), nullable=False)
    to_status = db.Column(db.String(50), nullable=False)
    requested_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status = db.Column(db.String(10), nullable=False, default=DecisionStatus.PENDING.value)
    priority = db.Column(db.String(10), nullable=False, default=DEFAULT_PRIORITY)
    comment = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    round = db.relationship("ApprovalRound")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "round_id": self.round_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "requested_by_id": self.requested_by_id,
            "status": self.status,
            "priority": self.priority,
            "comment": self.comment,
            "votes": [d.to_dict() for d in self.round.decisions] if self.round else [],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self):
        return (
            f"<StatusChangeRequest {self.id}: project={self.project_id} "
            f"{self.from_status!r}→{self.to_status!r} [{self.status}]>"
        )
