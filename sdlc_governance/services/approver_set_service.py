"""
Approver Set configuration service.

Rules:
    - configure() rejects an empty list, duplicate ids, or unknown users (InvalidInputError).
    - Approvers are locked once any decision in the subject's round is non-PENDING
      (SubjectLockedError). Documents stay locked after their round completes;
      a project's standing set only locks while a status-change vote is under way.
    - The mode of an existing set never changes (ModeLockedError).
    - On success the member list is fully replaced (order_index 0..N-1). A document
      gets a fresh PENDING round (its unresolved round, if any, is discarded); a
      project's pending status-change round has its votes rebuilt.
    - remove_approver() follows the same lock rule and keeps order_index contiguous.
"""

from __future__ import annotations

import logging
from contextlib import nullcontext

from sqlalchemy import select

from sdlc_governance.core.exceptions import (
    InvalidInputError,
    ModeLockedError,
    NotFoundError,
    SubjectLockedError,
)
from sdlc_governance.models import db
from sdlc_governance.models.approval import (
    ApprovalMode,
    ApprovalRound,
    ApproverSet,
    ApproverSetMember,
    DecisionStatus,
)
from sdlc_governance.services import approval_service, directory, hooks, round_locks
from sdlc_governance.services import audit_service
from sdlc_governance.services.subject_strategies import parse_subject_type, strategy_for

logger = logging.getLogger(__name__)


# ── Validation helpers ─────────────────────────────────────────────────────────


def _parse_mode(mode) -> str:
    value = getattr(mode, "value", mode)
    value = str(value).upper() if value is not None else None
    if value not in (ApprovalMode.SEQUENTIAL.value, ApprovalMode.PARALLEL.value):
        raise InvalidInputError(
            f"Invalid mode {mode!r}. Must be SEQUENTIAL or PARALLEL",
            details={"mode": mode},
        )
    return value


def _parse_approver_ids(approver_user_ids) -> list[int]:
    if not isinstance(approver_user_ids, (list, tuple)) or not approver_user_ids:
        raise InvalidInputError(
            "At least one approver is required",
            details={"approver_ids": approver_user_ids},
        )
    try:
        ids = [int(x) for x in approver_user_ids]
    except (TypeError, ValueError):
        raise InvalidInputError(
            "approver_ids must be a list of user ids",
            details={"approver_ids": approver_user_ids},
        ) from None
    seen: set[int] = set()
    dupes: list[int] = []
    for i in ids:
        if i in seen and i not in dupes:
            dupes.append(i)
        seen.add(i)
    if dupes:
        raise InvalidInputError(
            f"Duplicate approver id(s): {', '.join(str(d) for d in dupes)}",
            details={"duplicate_user_ids": dupes},
        )
    return ids


# ── Lock checks ────────────────────────────────────────────────────────────────


def _has_started(approval_round: ApprovalRound | None) -> bool:
    if approval_round is None:
        return False
    return any(d.status != DecisionStatus.PENDING.value for d in approval_round.decisions)


def is_locked(subject_type, subject_id: int) -> bool:
    """True when approvers of the subject may no longer be edited."""
    strategy = strategy_for(subject_type)
    if _has_started(approval_service.get_active_round(subject_type, subject_id)):
        return True
    if strategy.locks_after_completion:
        return _has_started(approval_service.get_latest_round(subject_type, subject_id))
    return False


def _round_lock(subject_type, subject_id: int):
    active = approval_service.get_active_round(subject_type, subject_id)
    if active is None:
        return nullcontext()
    return round_locks.hold(round_locks.round_key(active.id))


# ── Queries ────────────────────────────────────────────────────────────────────


def get_approver_set(subject_type, subject_id: int) -> ApproverSet | None:
    st = parse_subject_type(subject_type)
    return db.session.execute(
        select(ApproverSet).where(
            ApproverSet.subject_type == st.value,
            ApproverSet.subject_id == subject_id,
        )
    ).scalar_one_or_none()


# ── Configure ─────────────────────────────────────────────────────────────────


def configure(
    subject_type,
    subject_id: int,
    approver_user_ids: list[int],
    mode,
    priority: str | None = None,
    actor_id: int | None = None,
) -> ApproverSet:
    """Create or replace the approver set of a subject.

    Returns:
        The configured ApproverSet (committed).
    """
    st = parse_subject_type(subject_type)
    strategy = strategy_for(st)
    mode = _parse_mode(mode)
    priority = approval_service.parse_priority(priority)
    ids = _parse_approver_ids(approver_user_ids)
    users = directory.resolve_users(ids)

    events = []
    with _round_lock(st, subject_id):
        try:
            strategy.load(subject_id, for_update=True)
            if is_locked(st, subject_id):
                raise SubjectLockedError(st.value, subject_id)

            approver_set = get_approver_set(st, subject_id)
            if approver_set is not None and approver_set.mode != mode:
                raise ModeLockedError(approver_set.mode, mode)

            if approver_set is None:
                approver_set = ApproverSet(subject_type=st.value, subject_id=subject_id, mode=mode)
                db.session.add(approver_set)
            approver_set.priority = priority
            approver_set.configured_by_id = actor_id

            # Replace members; flush the deletes first so order_index slots are free
            approver_set.members.clear()
            db.session.flush()
            for idx, user in enumerate(users):
                approver_set.members.append(
                    ApproverSetMember(user_id=user.id, email=user.email, order_index=idx)
                )
            db.session.flush()

            active = approval_service.get_active_round(st, subject_id)
            if strategy.opens_round_on_configure:
                if active is not None:
                    db.session.delete(active)
                    db.session.flush()
                new_round = approval_service.open_round(
                    approver_set, requested_by_id=actor_id, priority=priority,
                )
                events.append(("round.created", approval_service.round_created_payload(new_round)))
            elif active is not None:
                approval_service.rebuild_decisions(active, approver_set)
                events.append(("round.created", approval_service.round_created_payload(active)))

            audit_service.append(
                action=strategy.configured_action,
                target_type=strategy.audit_target_type,
                target_id=subject_id,
                actor_id=actor_id,
                metadata={
                    "approver_ids": ids,
                    "approver_names": ", ".join(u.name or u.email for u in users),
                    "approver_count": len(users),
                    "mode": mode,
                    "priority": priority,
                },
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    logger.info("Approvers configured: %s/%s mode=%s count=%d",
                st.value, subject_id, mode, len(users))
    for event_type, payload in events:
        hooks.fire(event_type, payload)
    return approver_set


# ── Remove ────────────────────────────────────────────────────────────────────


def remove_approver(
    subject_type,
    subject_id: int,
    user_id: int,
    actor_id: int | None = None,
) -> ApproverSet | None:
    """Remove one approver while the subject is unlocked.

    Returns the updated set, or None when the last approver was removed
    (the set and any unresolved round are then deleted).
    """
    st = parse_subject_type(subject_type)
    strategy = strategy_for(st)

    with _round_lock(st, subject_id):
        try:
            strategy.load(subject_id, for_update=True)
            approver_set = get_approver_set(st, subject_id)
            if approver_set is None:
                raise NotFoundError("ApproverSet", f"{st.value}/{subject_id}")
            member = next((m for m in approver_set.members if m.user_id == user_id), None)
            if member is None:
                raise NotFoundError("Approver", user_id)
            if is_locked(st, subject_id):
                raise SubjectLockedError(st.value, subject_id)

            active = approval_service.get_active_round(st, subject_id)
            remaining = [m for m in approver_set.members if m.user_id != user_id]
            if not remaining and active is not None and not strategy.opens_round_on_configure:
                raise InvalidInputError(
                    "Cannot remove the last approver while a status change request is pending",
                    details={"round_id": active.id},
                )

            approver_set.members.remove(member)
            db.session.flush()
            # Re-compact order_index in ascending order so each target slot is free
            for idx, m in enumerate(sorted(remaining, key=lambda x: x.order_index)):
                if m.order_index != idx:
                    m.order_index = idx
                    db.session.flush()

            audit_service.append(
                action="Approver Removed",
                target_type=strategy.audit_target_type,
                target_id=subject_id,
                actor_id=actor_id,
                metadata={"user_id": user_id, "remaining": len(remaining)},
            )

            if not remaining:
                if active is not None:
                    strategy.on_round_discarded(active)
                    db.session.delete(active)
                db.session.delete(approver_set)
                approver_set = None
            elif active is not None:
                approval_service.rebuild_decisions(active, approver_set)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    logger.info("Approver %s removed from %s/%s", user_id, st.value, subject_id)
    return approver_set
