"""User directory model."""

from datetime import datetime, timezone

from sdlc_governance.models import db

USER_ROLES = frozenset({"REQUESTER", "APPROVER", "ADMIN"})


class User(db.Model):
    """A person who can request changes or sit on an approver set."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    role = db.Column(
        db.String(20), nullable=False, default="REQUESTER",
        comment="REQUESTER | APPROVER | ADMIN",
    )
    department = db.Column(db.String(100), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "department": self.department,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"
