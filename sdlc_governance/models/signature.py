"""
External signer models.

Models:
    - SignatureEnvelope: a document routed to the signer provider for one round
    - WebhookEvent:      raw inbound callback, kept for replay/debugging
"""

import json
from datetime import datetime, timezone

from sdlc_governance.models import db

ENVELOPE_STATUSES = frozenset({"CREATED", "SENT", "COMPLETED", "DECLINED"})
WEBHOOK_STATUSES = frozenset({"PENDING", "PROCESSED", "IGNORED", "FAILED"})


class SignatureEnvelope(db.Model):
    __tablename__ = "signature_envelopes"

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer,
        db.ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    round_id = db.Column(
        db.Integer,
        db.ForeignKey("approval_rounds.id", ondelete="SET NULL"),
        nullable=True,
    )
    submission_id = db.Column(
        db.String(100), nullable=True, unique=True,
        comment="Opaque handle returned by the signer provider",
    )
    signing_url = db.Column(db.String(500), nullable=True)
    status = db.Column(db.String(12), nullable=False, default="CREATED")
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "round_id": self.round_id,
            "submission_id": self.submission_id,
            "signing_url": self.signing_url,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self):
        return f"<SignatureEnvelope {self.id}: doc={self.document_id} [{self.status}]>"


class WebhookEvent(db.Model):
    __tablename__ = "webhook_events"

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(30), nullable=False, default="signer")
    event_type = db.Column(db.String(60), nullable=True)
    payload_json = db.Column(db.Text, nullable=False, default="{}")
    status = db.Column(db.String(12), nullable=False, default="PENDING")
    error = db.Column(db.Text, nullable=True)
    received_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def payload(self) -> dict:
        try:
            return json.loads(self.payload_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "provider": self.provider,
            "event_type": self.event_type,
            "status": self.status,
            "error": self.error,
            "received_at": self.received_at.isoformat() if self.received_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }
