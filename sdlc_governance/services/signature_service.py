"""
External signer routing and callback intake.

Document subjects may be routed to an external e-signature provider. The
engine only cares about signing progress, which it feeds into the normal
decide() path:

    recipient.completed                → APPROVED decision for that recipient (source SIGNER)
    envelope.declined / envelope.voided → REJECTED decision (named recipient, else whoever is next)
    envelope.completed                 → APPROVED for every still-pending decision, in order

The provider call happens before any engine lock is taken; decisions then
go through approval_service.decide() exactly like manual approvals.
Every callback is stored as a WebhookEvent. Callbacks that the engine
refuses (already decided, unknown recipient, out of order) are marked
IGNORED instead of failing the webhook. A decline or void always closes
the envelope, even when the engine refuses the REJECTED decision.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select

from sdlc_governance.core.exceptions import (
    AlreadyDecidedError,
    ConflictError,
    InvalidInputError,
    NotFoundError,
    OutOfOrderError,
    SignerUnavailableError,
    WebhookSignatureError,
)
from sdlc_governance.integrations.signer_gateway import SignerGateway
from sdlc_governance.models import db
from sdlc_governance.models.approval import ApprovalMode, DecisionStatus, SubjectType
from sdlc_governance.models.signature import SignatureEnvelope, WebhookEvent
from sdlc_governance.services import approval_service, audit_service, decision_resolver, directory
from sdlc_governance.services.subject_strategies import strategy_for

logger = logging.getLogger(__name__)

_DOCUMENT = strategy_for(SubjectType.DOCUMENT)

_gateway: SignerGateway | None = None

# Engine refusals that make a callback a no-op rather than a failure
_IGNORABLE = (AlreadyDecidedError, OutOfOrderError, NotFoundError)


def _utcnow():
    return datetime.now(timezone.utc)


def get_gateway() -> SignerGateway:
    global _gateway
    if _gateway is None:
        cfg = current_app.config
        _gateway = SignerGateway(api_base=cfg["SIGNER_API_BASE"], api_key=cfg.get("SIGNER_API_KEY"))
    return _gateway


def set_gateway(gateway: SignerGateway | None) -> None:
    """Swap the module gateway (tests inject one with a mocked session)."""
    global _gateway
    _gateway = gateway


# ═════════════════════════════════════════════════════════════════════════════
# Outbound: route a document for signing
# ═════════════════════════════════════════════════════════════════════════════


def route_for_signature(document_id: int, actor_id: int | None = None) -> dict:
    """Send the document's active review round to the external signer."""
    if not current_app.config.get("SIGNER_API_KEY"):
        raise InvalidInputError("Signer integration is not configured")

    doc = _DOCUMENT.load(document_id)
    approval_round = approval_service.get_active_round(SubjectType.DOCUMENT, document_id)
    if approval_round is None:
        raise NotFoundError("Pending approval round for document", document_id)
    existing = db.session.execute(
        select(SignatureEnvelope).where(
            SignatureEnvelope.round_id == approval_round.id,
            SignatureEnvelope.status.in_(("CREATED", "SENT")),
        )
    ).scalar_one_or_none()
    if existing is not None:
        raise ConflictError("SignatureEnvelope", "round_id", approval_round.id)

    recipients = [
        {"email": d.email, "name": directory.display_name(d.user_id), "order": d.order_index}
        for d in approval_round.decisions
    ]
    round_id = approval_round.id
    mode = approval_round.mode
    document_name = doc.filename
    document_url = f"{current_app.config.get('APP_BASE_URL', '')}/documents/{doc.id}/file"
    # Release the read transaction before the network call
    db.session.commit()

    result = get_gateway().create_submission(
        document_name=document_name,
        document_url=document_url,
        recipients=recipients,
        preserve_order=mode == ApprovalMode.SEQUENTIAL.value,
    )
    if not result.ok:
        raise SignerUnavailableError(
            f"Signer request failed: {result.error}",
            details={"status_code": result.status_code},
        )

    data = result.data if isinstance(result.data, dict) else {}
    submission_id = data.get("id") or data.get("submission_id")
    if submission_id is None:
        raise SignerUnavailableError("Signer response carried no submission id")
    submitters = data.get("submitters") or []
    signing_url = data.get("signing_url") or (submitters[0].get("embed_src") if submitters else None)

    try:
        envelope = SignatureEnvelope(
            document_id=document_id,
            round_id=round_id,
            submission_id=str(submission_id),
            signing_url=signing_url,
            status="SENT",
        )
        db.session.add(envelope)
        db.session.flush()
        audit_service.append(
            action="Signature Requested",
            target_type="document",
            target_id=document_id,
            actor_id=actor_id,
            metadata={
                "envelope_id": envelope.id,
                "submission_id": str(submission_id),
                "round_id": round_id,
                "recipient_count": len(recipients),
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Document %s routed for signature: submission=%s", document_id, submission_id,
                extra={"round_id": round_id, "document_id": document_id})
    return envelope.to_dict()


# ═════════════════════════════════════════════════════════════════════════════
# Inbound: webhook intake
# ═════════════════════════════════════════════════════════════════════════════


def verify_signature(raw_body: bytes, signature: str | None) -> None:
    """Check the HMAC-SHA256 of the raw body when a webhook secret is configured."""
    secret = current_app.config.get("SIGNER_WEBHOOK_SECRET")
    if not secret:
        return
    expected = hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()
    if not signature or not hmac.compare_digest(expected, signature.strip()):
        raise WebhookSignatureError("Invalid webhook signature")


def handle_signer_event(payload: dict, raw_body: bytes = b"", signature: str | None = None) -> dict:
    """Record and apply one signer callback.

    Returns the stored WebhookEvent as a dict.
    """
    verify_signature(raw_body, signature)
    if not isinstance(payload, dict):
        raise InvalidInputError("Webhook payload must be a JSON object")

    event_type = payload.get("event_type")
    event = WebhookEvent(
        provider="signer",
        event_type=event_type,
        payload_json=json.dumps(payload, default=str),
        status="PENDING",
    )
    db.session.add(event)
    db.session.commit()
    event_id = event.id

    try:
        status, error = _apply_event(event_type, payload.get("data") or {})
    except _IGNORABLE as exc:
        db.session.rollback()
        status, error = "IGNORED", str(exc)
    except Exception as exc:
        db.session.rollback()
        event = db.session.get(WebhookEvent, event_id)
        event.status = "FAILED"
        event.error = str(exc)[:1000]
        event.processed_at = _utcnow()
        db.session.commit()
        logger.exception("Signer webhook %s failed", event_id, extra={"event_type": event_type})
        raise

    event = db.session.get(WebhookEvent, event_id)
    event.status = status
    event.error = error
    event.processed_at = _utcnow()
    db.session.commit()
    logger.info("Signer webhook %s: %s -> %s", event_id, event_type, status,
                extra={"event_type": event_type})
    return event.to_dict()


def _find_envelope(data: dict) -> SignatureEnvelope | None:
    submission_id = data.get("submission_id") or data.get("id")
    if submission_id is None:
        return None
    return db.session.execute(
        select(SignatureEnvelope).where(SignatureEnvelope.submission_id == str(submission_id))
    ).scalar_one_or_none()


def _recipient_email(data: dict) -> str | None:
    recipient = data.get("recipient") or data.get("submitter") or {}
    email = recipient.get("email") or data.get("email")
    return email.strip().lower() if email else None


def _decision_user_for_email(round_id: int, email: str) -> int:
    approval_round = approval_service.get_round(round_id)
    for d in approval_round.decisions:
        if d.email.lower() == email:
            return d.user_id
    raise NotFoundError("Approver with email", email)


def _decliner(round_id: int, email: str | None) -> int | None:
    """The named recipient, else whoever may act next; None once the round is resolved."""
    if email:
        return _decision_user_for_email(round_id, email)
    approval_round = approval_service.get_round(round_id)
    nxt = decision_resolver.eligible(approval_round.decisions, approval_round.mode)
    return nxt[0].user_id if nxt else None


def _apply_event(event_type: str | None, data: dict) -> tuple[str, str | None]:
    envelope = _find_envelope(data)
    if envelope is None or envelope.round_id is None:
        return "IGNORED", "Unknown submission"
    round_id = envelope.round_id
    envelope_id = envelope.id
    document_id = envelope.document_id

    if event_type == "recipient.completed":
        email = _recipient_email(data)
        if not email:
            return "IGNORED", "No recipient email in payload"
        user_id = _decision_user_for_email(round_id, email)
        result = approval_service.decide(round_id, user_id, DecisionStatus.APPROVED.value,
                                         comment="Signed via external signer", source="SIGNER")
        audit_service.append(
            action="Individual Signature Completed",
            target_type="document",
            target_id=document_id,
            actor_id=user_id,
            metadata={"envelope_id": envelope_id, "round_id": round_id, "email": email},
        )
        if result["completed"]:
            _finish_envelope(envelope_id, result["outcome"])
        db.session.commit()
        return "PROCESSED", None

    if event_type == "envelope.completed":
        outcome = None
        approval_round = approval_service.get_round(round_id)
        pending = [d.user_id for d in approval_round.decisions
                   if d.status == DecisionStatus.PENDING.value]
        for user_id in pending:
            result = approval_service.decide(round_id, user_id, DecisionStatus.APPROVED.value,
                                             comment="Signed via external signer", source="SIGNER")
            outcome = result["outcome"] or outcome
        if outcome is None:
            outcome = approval_service.get_round(round_id).outcome
        _finish_envelope(envelope_id, outcome)
        db.session.commit()
        return "PROCESSED", None

    if event_type in ("envelope.declined", "envelope.voided"):
        if envelope.status in ("COMPLETED", "DECLINED"):
            return "IGNORED", f"Envelope already {envelope.status}"
        # The provider has dropped the envelope: close it even when the
        # engine refuses the decision, so the document can be routed again
        user_id = None
        refused = None
        try:
            user_id = _decliner(round_id, _recipient_email(data))
            if user_id is None:
                refused = "Round already resolved"
            else:
                approval_service.decide(round_id, user_id, DecisionStatus.REJECTED.value,
                                        comment=f"Signer event {event_type}", source="SIGNER")
        except _IGNORABLE as exc:
            db.session.rollback()
            refused = str(exc)

        envelope = db.session.get(SignatureEnvelope, envelope_id)
        envelope.status = "DECLINED"
        envelope.completed_at = _utcnow()
        audit_service.append(
            action="Signature Declined",
            target_type="document",
            target_id=document_id,
            actor_id=user_id,
            metadata={
                "envelope_id": envelope_id,
                "round_id": round_id,
                "event_type": event_type,
                "decision_recorded": refused is None,
            },
        )
        db.session.commit()
        return ("PROCESSED", None) if refused is None else ("IGNORED", refused)

    return "IGNORED", f"Unhandled event type {event_type!r}"


def _finish_envelope(envelope_id: int, outcome: str | None) -> None:
    """Close the envelope; a fully approved document becomes SIGNED."""
    envelope = db.session.get(SignatureEnvelope, envelope_id)
    envelope.completed_at = _utcnow()
    if outcome == DecisionStatus.APPROVED.value:
        envelope.status = "COMPLETED"
        _DOCUMENT.set_status(envelope.document_id, "SIGNED")
    else:
        envelope.status = "DECLINED"


def get_envelopes(document_id: int) -> list[dict]:
    _DOCUMENT.load(document_id)
    rows = db.session.execute(
        select(SignatureEnvelope)
        .where(SignatureEnvelope.document_id == document_id)
        .order_by(SignatureEnvelope.id.desc())
    ).scalars().all()
    return [r.to_dict() for r in rows]
