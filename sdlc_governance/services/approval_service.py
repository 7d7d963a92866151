"""
Approval Round service — approve / reject and round queries.

Rules:
    - decide() fails with NotFoundError when (round, user) has no decision,
      AlreadyDecidedError when that decision is terminal, OutOfOrderError
      when a SEQUENTIAL approver is not next.
    - The decision write, resolver evaluation and outcome application run
      in ONE transaction, inside the per-round lock and behind a
      ``SELECT … FOR UPDATE`` on the round row.
    - Completion is a compare-and-swap on (status='PENDING', version); only
      the writer whose UPDATE matches one row applies the outcome and
      writes the aggregate audit entry.
    - Notifications fire after commit, outside the lock; their failures
      never reach the caller.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update

from sdlc_governance.core.exceptions import (
    AlreadyDecidedError,
    InvalidInputError,
    NotFoundError,
    OutOfOrderError,
)
from sdlc_governance.models import db
from sdlc_governance.models.approval import (
    DECISION_SOURCES,
    DEFAULT_PRIORITY,
    PRIORITIES,
    ApprovalRound,
    ApproverSet,
    Decision,
    DecisionStatus,
    RoundStatus,
    SubjectType,
)
from sdlc_governance.services import audit_service, decision_resolver, directory, hooks, round_locks
from sdlc_governance.services.subject_strategies import parse_subject_type, strategy_for

logger = logging.getLogger(__name__)

TERMINAL_OUTCOMES = (DecisionStatus.APPROVED.value, DecisionStatus.REJECTED.value)

_PRIORITY_RANK = {p: i for i, p in enumerate(reversed(PRIORITIES))}  # CRITICAL first


def _utcnow():
    return datetime.now(timezone.utc)


def parse_outcome(outcome) -> str:
    value = getattr(outcome, "value", outcome)
    if value not in TERMINAL_OUTCOMES:
        raise InvalidInputError(
            f"Invalid outcome {outcome!r}. Must be APPROVED or REJECTED",
            details={"outcome": outcome},
        )
    return value


def parse_priority(priority) -> str:
    if priority is None:
        return DEFAULT_PRIORITY
    value = str(priority).upper()
    if value not in PRIORITIES:
        raise InvalidInputError(
            f"Invalid priority {priority!r}. Must be one of: {', '.join(PRIORITIES)}",
            details={"priority": priority},
        )
    return value


# ═════════════════════════════════════════════════════════════════════════════
# Round lookup
# ═════════════════════════════════════════════════════════════════════════════


def get_round(round_id: int) -> ApprovalRound:
    r = db.session.get(ApprovalRound, round_id)
    if r is None:
        raise NotFoundError("ApprovalRound", round_id)
    return r


def get_active_round(subject_type, subject_id: int) -> ApprovalRound | None:
    """The PENDING round for a subject (at most one exists)."""
    st = parse_subject_type(subject_type)
    return db.session.execute(
        select(ApprovalRound).where(
            ApprovalRound.subject_type == st.value,
            ApprovalRound.subject_id == subject_id,
            ApprovalRound.status == RoundStatus.PENDING.value,
        )
    ).scalar_one_or_none()


def get_latest_round(subject_type, subject_id: int) -> ApprovalRound | None:
    st = parse_subject_type(subject_type)
    return db.session.execute(
        select(ApprovalRound)
        .where(ApprovalRound.subject_type == st.value, ApprovalRound.subject_id == subject_id)
        .order_by(ApprovalRound.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def _load_decisions(round_id: int) -> list[Decision]:
    return list(db.session.execute(
        select(Decision).where(Decision.round_id == round_id).order_by(Decision.order_index)
    ).scalars().all())


# ═════════════════════════════════════════════════════════════════════════════
# Round creation (used by approver-set configuration and the status gate)
# ═════════════════════════════════════════════════════════════════════════════


def open_round(
    approver_set: ApproverSet,
    requested_by_id: int | None = None,
    priority: str | None = None,
) -> ApprovalRound:
    """Create a PENDING round with one PENDING decision per set member.

    Flush only; the caller commits. The partial unique index rejects a
    second PENDING round for the same subject at flush time.
    """
    strategy = strategy_for(approver_set.subject_type)
    approval_round = ApprovalRound(
        approver_set_id=approver_set.id,
        subject_type=approver_set.subject_type,
        subject_id=approver_set.subject_id,
        mode=approver_set.mode,
        status=RoundStatus.PENDING.value,
        priority=priority or approver_set.priority or DEFAULT_PRIORITY,
        version=1,
        requested_by_id=requested_by_id,
    )
    db.session.add(approval_round)
    db.session.flush()
    rebuild_decisions(approval_round, approver_set)
    strategy.on_round_opened(approval_round)
    logger.info("Approval round opened: %s/%s mode=%s approvers=%d",
                approval_round.subject_type, approval_round.subject_id,
                approval_round.mode, len(approver_set.members),
                extra={"round_id": approval_round.id})
    return approval_round


def rebuild_decisions(approval_round: ApprovalRound, approver_set: ApproverSet) -> None:
    """Replace a still-unresolved round's decisions with the set's members, all PENDING."""
    if approval_round.decisions:
        approval_round.decisions.clear()
        db.session.flush()
        approval_round.version += 1
    for member in approver_set.members:
        approval_round.decisions.append(Decision(
            user_id=member.user_id,
            email=member.email,
            order_index=member.order_index,
            status=DecisionStatus.PENDING.value,
        ))
    approval_round.mode = approver_set.mode
    db.session.flush()


def round_created_payload(approval_round: ApprovalRound) -> dict:
    res = decision_resolver.resolve(approval_round.decisions, approval_round.mode)
    return {
        "round_id": approval_round.id,
        "subject_type": approval_round.subject_type,
        "subject_id": approval_round.subject_id,
        "mode": approval_round.mode,
        "priority": approval_round.priority,
        "requested_by_id": approval_round.requested_by_id,
        "eligible_user_ids": res.eligible_user_ids,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Completion (compare-and-swap)
# ═════════════════════════════════════════════════════════════════════════════


def complete_round(
    approval_round: ApprovalRound,
    expected_version: int,
    outcome: str,
    actor_id: int | None = None,
) -> bool:
    """Move the round to COMPLETED and apply its outcome, exactly once.

    Returns True when this caller won the transition, False when the round
    had already been completed (or reconfigured) by someone else. Flush
    only; the caller commits.
    """
    result = db.session.execute(
        update(ApprovalRound)
        .where(
            ApprovalRound.id == approval_round.id,
            ApprovalRound.status == RoundStatus.PENDING.value,
            ApprovalRound.version == expected_version,
        )
        .values(
            status=RoundStatus.COMPLETED.value,
            outcome=outcome,
            completed_at=_utcnow(),
            version=expected_version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("Round completion lost the race (version %s)", expected_version,
                       extra={"round_id": approval_round.id})
        return False

    db.session.refresh(approval_round)
    strategy_for(approval_round.subject_type).apply_outcome(approval_round, outcome, actor_id)
    db.session.flush()
    logger.info("Approval round completed: %s/%s outcome=%s",
                approval_round.subject_type, approval_round.subject_id, outcome,
                extra={"round_id": approval_round.id})
    return True


# ═════════════════════════════════════════════════════════════════════════════
# Approve / reject
# ═════════════════════════════════════════════════════════════════════════════


def decide(
    round_id: int,
    user_id: int,
    outcome,
    comment: str | None = None,
    source: str = "MANUAL",
) -> dict:
    """Record one approver's decision and resolve the round.

    Returns:
        {"decision": {...}, "round": {...}, "completed": bool, "outcome": str|None,
         "eligible_user_ids": [...]}
    """
    outcome = parse_outcome(outcome)
    if source not in DECISION_SOURCES:
        raise InvalidInputError(f"Invalid decision source {source!r}")

    key = round_locks.round_key(round_id)
    with round_locks.hold(key):
        try:
            result, events = _decide_locked(round_id, user_id, outcome, comment, source)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
    if result["completed"]:
        round_locks.discard(key)

    for event_type, payload in events:
        hooks.fire(event_type, payload)
    return result


def _decide_locked(round_id, user_id, outcome, comment, source):
    approval_round = db.session.execute(
        select(ApprovalRound).where(ApprovalRound.id == round_id).with_for_update()
    ).scalar_one_or_none()
    if approval_round is None:
        raise NotFoundError("ApprovalRound", round_id)
    expected_version = approval_round.version

    decisions = _load_decisions(round_id)
    mine = next((d for d in decisions if d.user_id == user_id), None)
    if mine is None:
        raise NotFoundError("Decision", f"round={round_id} user={user_id}")
    if mine.status != DecisionStatus.PENDING.value:
        raise AlreadyDecidedError(round_id, user_id, mine.status)
    if not decision_resolver.is_eligible(decisions, approval_round.mode, user_id):
        nxt = decision_resolver.eligible(decisions, approval_round.mode)
        raise OutOfOrderError(round_id, user_id, nxt[0].user_id if nxt else None)

    mine.status = outcome
    mine.decided_at = _utcnow()
    mine.comment = (comment or "").strip() or None
    mine.source = source
    db.session.flush()

    strategy = strategy_for(approval_round.subject_type)
    target_type, target_id = strategy.audit_target(approval_round)
    audit_service.append(
        action=strategy.individual_action(outcome),
        target_type=target_type,
        target_id=target_id,
        actor_id=user_id,
        metadata={
            "round_id": round_id,
            "order_index": mine.order_index,
            "mode": approval_round.mode,
            "comment": mine.comment,
            "source": source,
        },
    )
    logger.info("Decision recorded: user=%s outcome=%s source=%s", user_id, outcome, source,
                extra={"round_id": round_id, "user_id": user_id})

    # Re-read the full decision set; never trust an incremental count
    resolution = decision_resolver.resolve(_load_decisions(round_id), approval_round.mode)
    completed = False
    if resolution.is_complete:
        completed = complete_round(approval_round, expected_version, resolution.outcome, actor_id=user_id)

    events = [("decision.recorded", {
        "round_id": round_id,
        "subject_type": approval_round.subject_type,
        "subject_id": approval_round.subject_id,
        "mode": approval_round.mode,
        "user_id": user_id,
        "outcome": outcome,
        "eligible_user_ids": resolution.eligible_user_ids,
        "completed": completed,
    })]
    if completed:
        events.append(("round.completed", {
            "round_id": round_id,
            "subject_type": approval_round.subject_type,
            "subject_id": approval_round.subject_id,
            "outcome": resolution.outcome,
            "requested_by_id": approval_round.requested_by_id,
        }))

    result = {
        "decision": mine.to_dict(),
        "round": approval_round.to_dict(include_decisions=False),
        "completed": completed,
        "outcome": resolution.outcome if completed else None,
        "eligible_user_ids": resolution.eligible_user_ids,
    }
    return result, events


def decide_for_document(document_id: int, user_id: int, outcome, comment: str | None = None) -> dict:
    """Approve/reject the document's review round.

    Uses the active round, or the most recent one once it has completed so a
    repeated decision fails with AlreadyDecidedError rather than NotFound.
    """
    strategy_for(SubjectType.DOCUMENT).load(document_id)
    approval_round = (
        get_active_round(SubjectType.DOCUMENT, document_id)
        or get_latest_round(SubjectType.DOCUMENT, document_id)
    )
    if approval_round is None:
        raise NotFoundError("Approval round for document", document_id)
    return decide(approval_round.id, user_id, outcome, comment=comment)


# ═════════════════════════════════════════════════════════════════════════════
# Status summaries & queues
# ═════════════════════════════════════════════════════════════════════════════


def get_approval_status(subject_type, subject_id: int) -> dict:
    """Summary of the subject's current (or most recent) round."""
    st = parse_subject_type(subject_type)
    strategy = strategy_for(st)
    subject_status = strategy.get_status(subject_id)
    approval_round = get_active_round(st, subject_id) or get_latest_round(st, subject_id)
    if approval_round is None:
        return {
            "subject_type": st.value,
            "subject_id": subject_id,
            "subject_status": subject_status,
            "status": "NOT_CONFIGURED",
            "round_id": None,
            "mode": None,
            "total": 0, "approved": 0, "rejected": 0, "pending": 0,
            "is_complete": False,
            "outcome": None,
            "eligible_user_ids": [],
            "approvers": [],
        }

    res = decision_resolver.resolve(approval_round.decisions, approval_round.mode)
    if approval_round.status == RoundStatus.COMPLETED.value:
        overall = approval_round.outcome
    elif res.rejected:
        overall = DecisionStatus.REJECTED.value
    else:
        overall = DecisionStatus.PENDING.value

    approvers = []
    for d in approval_round.decisions:
        item = d.to_dict()
        item["name"] = directory.display_name(d.user_id)
        item["is_eligible"] = d.user_id in res.eligible_user_ids
        approvers.append(item)

    summary = {
        "subject_type": st.value,
        "subject_id": subject_id,
        "subject_status": subject_status,
        "status": overall,
        "round_id": approval_round.id,
        "round_status": approval_round.status,
        "mode": approval_round.mode,
        "priority": approval_round.priority,
        "approvers": approvers,
    }
    summary.update(res.to_dict())
    summary["outcome"] = approval_round.outcome
    return summary


def _sort_key(item: dict):
    return (_PRIORITY_RANK.get(item["round"]["priority"], 99), item["round"]["created_at"] or "")


def pending_for_user(user_id: int, subject_type=None) -> list[dict]:
    """Decisions ``user_id`` can act on now.

    PARALLEL rounds list every pending approver; SEQUENTIAL rounds only the
    approver whose turn it is. Admins see every actionable decision.
    """
    user = directory.get_user(user_id)
    q = select(ApprovalRound).where(ApprovalRound.status == RoundStatus.PENDING.value)
    if subject_type is not None:
        q = q.where(ApprovalRound.subject_type == parse_subject_type(subject_type).value)
    if not user.is_admin:
        q = q.where(ApprovalRound.id.in_(
            select(Decision.round_id).where(
                Decision.user_id == user_id,
                Decision.status == DecisionStatus.PENDING.value,
            )
        ))

    items = []
    for approval_round in db.session.execute(q).scalars().all():
        eligible = decision_resolver.eligible(approval_round.decisions, approval_round.mode)
        for d in eligible:
            if not user.is_admin and d.user_id != user_id:
                continue
            items.append({
                "round": approval_round.to_dict(include_decisions=False),
                "decision": d.to_dict(),
                "subject": strategy_for(approval_round.subject_type).describe(approval_round.subject_id),
            })
    items.sort(key=_sort_key)
    return items


def completed_for_user(user_id: int) -> list[dict]:
    """Decisions ``user_id`` has already made, newest first."""
    directory.get_user(user_id)
    rows = db.session.execute(
        select(Decision)
        .where(Decision.user_id == user_id, Decision.status != DecisionStatus.PENDING.value)
        .order_by(Decision.decided_at.desc(), Decision.id.desc())
    ).scalars().all()
    return [
        {
            "round": d.round.to_dict(include_decisions=False),
            "decision": d.to_dict(),
            "subject": strategy_for(d.round.subject_type).describe(d.round.subject_id),
        }
        for d in rows
    ]
