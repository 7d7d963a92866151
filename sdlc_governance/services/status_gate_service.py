"""
Status Transition Gate — project lifecycle stage changes.

Rules:
    - request_status_change() reads the project's current stage as from_status.
    - A second request while one is PENDING fails with ConflictError.
    - No PROJECT_STATUS approver set → the stage changes immediately ("Status Updated").
    - Otherwise a PENDING StatusChangeRequest is created together with a
      PROJECT_STATUS round holding one PENDING vote per approver.
    - Votes go through approval_service.decide(), so they follow the same
      resolver rules (REJECTED dominates, completion needs every vote) and the
      same exactly-once outcome application.
    - Backward transitions are allowed unless LIFECYCLE_ENFORCE_FORWARD is set.
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from sdlc_governance.core.exceptions import ConflictError, InvalidInputError, NotFoundError
from sdlc_governance.models import db
from sdlc_governance.models.approval import (
    ApprovalRound,
    Decision,
    DecisionStatus,
    RoundStatus,
    StatusChangeRequest,
    SubjectType,
)
from sdlc_governance.models.project import Project
from sdlc_governance.services import (
    approval_service,
    approver_set_service,
    audit_service,
    decision_resolver,
    directory,
    hooks,
    lifecycle,
    round_locks,
)
from sdlc_governance.services.subject_strategies import strategy_for

logger = logging.getLogger(__name__)

_PROJECT = strategy_for(SubjectType.PROJECT_STATUS)


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════


def get_request(request_id: int) -> StatusChangeRequest:
    req = db.session.get(StatusChangeRequest, request_id)
    if req is None:
        raise NotFoundError("StatusChangeRequest", request_id)
    return req


def get_pending_request(project_id: int) -> StatusChangeRequest | None:
    return db.session.execute(
        select(StatusChangeRequest).where(
            StatusChangeRequest.project_id == project_id,
            StatusChangeRequest.status == DecisionStatus.PENDING.value,
        )
    ).scalar_one_or_none()


def list_requests(project_id: int) -> list[dict]:
    _PROJECT.load(project_id)
    rows = db.session.execute(
        select(StatusChangeRequest)
        .where(StatusChangeRequest.project_id == project_id)
        .order_by(StatusChangeRequest.id.desc())
    ).scalars().all()
    return [r.to_dict() for r in rows]


# ═════════════════════════════════════════════════════════════════════════════
# Request
# ═════════════════════════════════════════════════════════════════════════════


def request_status_change(
    project_id: int,
    to_status: str,
    requester_id: int,
    comment: str | None = None,
    priority: str | None = None,
) -> dict:
    """Apply or gate a lifecycle stage change.

    Returns:
        {"applied": True,  "project": {...}, "request": None}        no approvers configured
        {"applied": False, "project": {...}, "request": {...}}       request created, awaiting votes
    """
    if not lifecycle.is_valid(to_status):
        raise InvalidInputError(
            f"Unknown lifecycle stage {to_status!r}",
            details={"to_status": to_status, "stages": list(lifecycle.STAGES)},
        )
    priority = approval_service.parse_priority(priority)
    directory.get_user(requester_id)

    events = []
    with round_locks.hold(round_locks.project_key(project_id)):
        try:
            project = _PROJECT.load(project_id, for_update=True)
            from_status = project.status
            if get_pending_request(project_id) is not None:
                raise ConflictError("StatusChangeRequest", "project_id", project_id)
            if to_status == from_status:
                raise InvalidInputError(
                    f"Project is already in stage {to_status!r}",
                    details={"status": from_status},
                )
            if not lifecycle.is_forward(from_status, to_status):
                if current_app.config.get("LIFECYCLE_ENFORCE_FORWARD"):
                    raise InvalidInputError(
                        f"Backward transition {from_status!r} -> {to_status!r} is not allowed",
                        details={"from_status": from_status, "to_status": to_status},
                    )
                logger.info("Backward status transition requested: %r -> %r",
                            from_status, to_status, extra={"project_id": project_id})

            approver_set = approver_set_service.get_approver_set(SubjectType.PROJECT_STATUS, project_id)
            if approver_set is None or not approver_set.members:
                project.status = to_status
                audit_service.append(
                    action="Status Updated",
                    target_type="project",
                    target_id=project_id,
                    actor_id=requester_id,
                    metadata={"from_status": from_status, "to_status": to_status, "gated": False},
                )
                result = {"applied": True, "project": project.to_dict(), "request": None}
                events.append(("status.updated", {
                    "project_id": project_id,
                    "from_status": from_status,
                    "to_status": to_status,
                    "actor_id": requester_id,
                }))
            else:
                approval_round = approval_service.open_round(
                    approver_set, requested_by_id=requester_id, priority=priority,
                )
                req = StatusChangeRequest(
                    project_id=project_id,
                    round_id=approval_round.id,
                    from_status=from_status,
                    to_status=to_status,
                    requested_by_id=requester_id,
                    status=DecisionStatus.PENDING.value,
                    priority=priority,
                    comment=(comment or "").strip() or None,
                )
                db.session.add(req)
                db.session.flush()
                audit_service.append(
                    action="Status Change Requested",
                    target_type="project",
                    target_id=project_id,
                    actor_id=requester_id,
                    metadata={
                        "from_status": from_status,
                        "to_status": to_status,
                        "request_id": req.id,
                        "round_id": approval_round.id,
                        "approver_count": len(approver_set.members),
                        "mode": approval_round.mode,
                    },
                )
                result = {"applied": False, "project": project.to_dict(), "request": req.to_dict()}
                events.append(("round.created", approval_service.round_created_payload(approval_round)))
            db.session.commit()
        except IntegrityError:
            # Partial unique index: another process created the pending request first
            db.session.rollback()
            raise ConflictError("StatusChangeRequest", "project_id", project_id) from None
        except Exception:
            db.session.rollback()
            raise

    logger.info("Status change %s: %r -> %r", "applied" if result["applied"] else "requested",
                from_status, to_status, extra={"project_id": project_id})
    for event_type, payload in events:
        hooks.fire(event_type, payload)
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Vote
# ═════════════════════════════════════════════════════════════════════════════


def vote_on_status_change(request_id: int, approver_id: int, outcome, comment: str | None = None) -> dict:
    """Record one approver's vote on a pending status change request.

    Returns:
        {"request": {...}, "completed": bool, "outcome": str|None, "decision": {...}}
    """
    req = get_request(request_id)
    if req.round_id is None:
        raise NotFoundError("Approval round for StatusChangeRequest", request_id)
    result = approval_service.decide(req.round_id, approver_id, outcome, comment=comment)
    req = get_request(request_id)
    return {
        "request": req.to_dict(),
        "decision": result["decision"],
        "completed": result["completed"],
        "outcome": result["outcome"],
    }


def list_pending_votes_for_user(user_id: int) -> list[dict]:
    """Pending requests where ``user_id`` may vote now."""
    items = []
    for item in approval_service.pending_for_user(user_id, subject_type=SubjectType.PROJECT_STATUS):
        req = db.session.execute(
            select(StatusChangeRequest).where(StatusChangeRequest.round_id == item["round"]["id"])
        ).scalar_one_or_none()
        if req is None:
            continue
        items.append({"request": req.to_dict(), "decision": item["decision"], "project": item["subject"]})
    return items


# ═════════════════════════════════════════════════════════════════════════════
# Approver lifecycle view
# ═════════════════════════════════════════════════════════════════════════════


def get_approver_lifecycle(approver_id: int, project_id: int | None = None) -> list[dict]:
    """For each project the approver votes on, their vote per lifecycle stage.

    A stage with no request carrying a vote from this approver is NOT_REACHED;
    when several requests targeted the same stage the latest one wins.
    """
    directory.get_user(approver_id)
    q = (
        select(StatusChangeRequest, Decision)
        .join(ApprovalRound, ApprovalRound.id == StatusChangeRequest.round_id)
        .join(Decision, Decision.round_id == ApprovalRound.id)
        .where(Decision.user_id == approver_id)
        .order_by(StatusChangeRequest.id)
    )
    if project_id is not None:
        _PROJECT.load(project_id)
        q = q.where(StatusChangeRequest.project_id == project_id)

    votes: dict[int, dict[str, tuple[StatusChangeRequest, Decision]]] = {}
    for req, decision in db.session.execute(q).all():
        votes.setdefault(req.project_id, {})[req.to_status] = (req, decision)

    project_ids = [project_id] if project_id is not None else sorted(votes)
    out = []
    for pid in project_ids:
        project = db.session.get(Project, pid)
        by_stage = votes.get(pid, {})
        stages = []
        for stage in lifecycle.STAGES:
            hit = by_stage.get(stage)
            if hit is None:
                stages.append({"stage": stage, "vote": "NOT_REACHED", "request_id": None, "decided_at": None})
                continue
            req, decision = hit
            stages.append({
                "stage": stage,
                "vote": decision.status,
                "request_id": req.id,
                "request_status": req.status,
                "comment": decision.comment,
                "decided_at": decision.decided_at.isoformat() if decision.decided_at else None,
            })
        out.append({
            "project_id": pid,
            "project_code": project.code if project else None,
            "current_status": project.status if project else None,
            "stages": stages,
        })
    return out


def eligible_voters(request_id: int) -> list[int]:
    req = get_request(request_id)
    approval_round = approval_service.get_round(req.round_id)
    if approval_round.status != RoundStatus.PENDING.value:
        return []
    return [d.user_id for d in decision_resolver.eligible(approval_round.decisions, approval_round.mode)]
