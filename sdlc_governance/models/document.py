"""Lifecycle document model.

Content lives in external storage; this row only carries the metadata and
the review status the approval engine reads and writes.
"""

from datetime import datetime, timezone

from sdlc_governance.models import db

DOCUMENT_STATUSES = frozenset({"DRAFT", "IN_REVIEW", "APPROVED", "REJECTED", "SIGNED", "DELETED"})


class Document(db.Model):
    __tablename__ = "documents"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type = db.Column(db.String(80), nullable=False, comment="BRD | FSD | TSD | UAT sign-off | …")
    filename = db.Column(db.String(255), nullable=False)
    storage_key = db.Column(db.String(500), nullable=True, comment="Opaque key in the file store")
    lifecycle_step = db.Column(db.String(50), nullable=True, comment="Stage the document belongs to")
    version = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(
        db.String(20), nullable=False, default="DRAFT",
        comment="DRAFT | IN_REVIEW | APPROVED | REJECTED | SIGNED | DELETED",
    )
    priority = db.Column(db.String(10), nullable=False, default="MEDIUM")
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "type": self.type,
            "filename": self.filename,
            "lifecycle_step": self.lifecycle_step,
            "version": self.version,
            "status": self.status,
            "priority": self.priority,
            "created_by_id": self.created_by_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Document {self.id}: {self.filename} v{self.version} [{self.status}]>"
