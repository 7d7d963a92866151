"""Project (SDLC initiative) model."""

from datetime import datetime, timezone

from sdlc_governance.models import db


class Project(db.Model):
    """An initiative moving through the SDLC governance stages.

    ``status`` holds the current lifecycle stage name (see
    ``services.lifecycle.STAGES``). Only the approval engine writes it once
    a PROJECT_STATUS approver set exists.
    """

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), nullable=False, unique=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    type = db.Column(db.String(50), nullable=True, comment="Enhancement | New Application | …")
    methodology = db.Column(db.String(30), nullable=True, comment="waterfall | agile | hybrid")
    status = db.Column(
        db.String(50), nullable=False, default="Initiative Submitted",
        comment="Current lifecycle stage",
    )
    priority = db.Column(db.String(10), nullable=False, default="MEDIUM")
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    owner = db.relationship("User", foreign_keys=[owner_id])
    documents = db.relationship(
        "Document", backref="project", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "methodology": self.methodology,
            "status": self.status,
            "priority": self.priority,
            "owner_id": self.owner_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.code} [{self.status}]>"
