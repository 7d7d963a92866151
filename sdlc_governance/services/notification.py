"""
Approval notifications.

Hook handlers that turn engine events into emails. They run after the
engine has committed; ``hooks.fire`` logs and swallows anything they raise,
and each handler also rolls back its own session work on failure so a
broken notification leaves no half-written EmailLog behind.

    round.created     → email every approver eligible to act now
    decision.recorded → SEQUENTIAL: email the approver whose turn it now is
    round.completed   → email the requester with the outcome
"""

import logging

from sqlalchemy import select

from sdlc_governance.models import db
from sdlc_governance.models.approval import ApprovalMode, StatusChangeRequest, SubjectType
from sdlc_governance.services import directory, hooks
from sdlc_governance.services.email_service import EmailService
from sdlc_governance.services.subject_strategies import strategy_for

logger = logging.getLogger(__name__)

_registered = False


def _subject_label(subject_type: str, subject_id: int, round_id: int | None = None) -> str:
    subject = strategy_for(subject_type).describe(subject_id)
    if subject_type == SubjectType.DOCUMENT.value:
        return f"document {subject.get('filename')}"
    # Read the target stage from the round's own request; it is no longer
    # pending once the round has completed
    target = None
    if round_id is not None:
        target = db.session.execute(
            select(StatusChangeRequest.to_status).where(StatusChangeRequest.round_id == round_id)
        ).scalar_one_or_none()
    if target is None:
        target = (subject.get("pending_request") or {}).get("to_status")
    label = f"project {subject.get('code')}"
    return f"{label} → {target}" if target else label


def _email_users(user_ids, template_name: str, context: dict) -> int:
    sent = 0
    for user in directory.resolve_users(list(user_ids)):
        EmailService.send_from_template(
            to_email=user.email,
            to_name=user.name,
            template_name=template_name,
            context=context,
        )
        sent += 1
    return sent


def _run(handler_name: str, fn, payload: dict):
    try:
        return fn(payload)
    except Exception:
        db.session.rollback()
        logger.warning("Notification %s failed for round %s", handler_name, payload.get("round_id"),
                       exc_info=True, extra={"round_id": payload.get("round_id")})
        return None


def on_round_created(payload: dict):
    def _send(p):
        ctx = {
            "subject_label": _subject_label(p["subject_type"], p["subject_id"], p.get("round_id")),
            "priority": p.get("priority"),
            "mode": p.get("mode", "").lower(),
        }
        return _email_users(p.get("eligible_user_ids") or [], "approval_requested", ctx)
    return _run("round.created", _send, payload)


def on_decision_recorded(payload: dict):
    def _send(p):
        if p.get("completed") or p.get("mode") != ApprovalMode.SEQUENTIAL.value:
            return 0
        ctx = {
            "subject_label": _subject_label(p["subject_type"], p["subject_id"], p.get("round_id")),
            "previous_outcome": p.get("outcome"),
        }
        return _email_users(p.get("eligible_user_ids") or [], "approval_turn", ctx)
    return _run("decision.recorded", _send, payload)


def on_round_completed(payload: dict):
    def _send(p):
        requester = p.get("requested_by_id")
        if requester is None:
            return 0
        ctx = {
            "subject_label": _subject_label(p["subject_type"], p["subject_id"], p.get("round_id")),
            "outcome": p.get("outcome"),
        }
        return _email_users([requester], "approval_completed", ctx)
    return _run("round.completed", _send, payload)


def register_default_handlers():
    """Wire the email handlers into the hook registry (idempotent)."""
    global _registered
    if _registered:
        return
    hooks.on("round.created", on_round_created)
    hooks.on("decision.recorded", on_decision_recorded)
    hooks.on("round.completed", on_round_completed)
    _registered = True


def reset():
    """Forget registration state (tests clear the hook registry)."""
    global _registered
    _registered = False
