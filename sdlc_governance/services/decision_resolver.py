"""
Decision Resolver — pure functions over a round's decisions.

Given the full current set of decisions of a round and its mode, decide:
    (a) who may act now            → ``eligible``
    (b) whether the round is done  → ``is_complete``
    (c) the terminal outcome       → ``outcome``

Rules:
    - PARALLEL: every PENDING decision is eligible.
    - SEQUENTIAL: only the PENDING decision with the lowest order_index is eligible.
    - Complete iff no decision is PENDING, regardless of mode.
    - Outcome: REJECTED if any decision is REJECTED, otherwise APPROVED.

Callers always pass the full decision list read after the latest write;
nothing here keeps counters between calls. Decisions are any objects with
``user_id``, ``order_index`` and ``status`` attributes (ORM rows or plain
dataclasses in tests).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Protocol

from sdlc_governance.models.approval import ApprovalMode, DecisionStatus

_PENDING = DecisionStatus.PENDING.value
_APPROVED = DecisionStatus.APPROVED.value
_REJECTED = DecisionStatus.REJECTED.value


class DecisionLike(Protocol):
    user_id: int
    order_index: int
    status: str


@dataclass(frozen=True)
class Resolution:
    """Snapshot of a round's state after re-evaluation."""

    is_complete: bool
    outcome: str | None
    eligible_user_ids: list[int] = field(default_factory=list)
    approved: int = 0
    rejected: int = 0
    pending: int = 0

    @property
    def total(self) -> int:
        return self.approved + self.rejected + self.pending

    def to_dict(self) -> dict:
        return {
            "is_complete": self.is_complete,
            "outcome": self.outcome,
            "eligible_user_ids": list(self.eligible_user_ids),
            "total": self.total,
            "approved": self.approved,
            "rejected": self.rejected,
            "pending": self.pending,
        }


def _mode_value(mode) -> str:
    value = getattr(mode, "value", mode)
    if value not in (ApprovalMode.SEQUENTIAL.value, ApprovalMode.PARALLEL.value):
        raise ValueError(f"Unknown approval mode: {mode!r}")
    return value


def eligible(decisions: Iterable[DecisionLike], mode) -> list[DecisionLike]:
    """Decisions that may be acted on right now."""
    pending = sorted((d for d in decisions if d.status == _PENDING), key=lambda d: d.order_index)
    if not pending:
        return []
    if _mode_value(mode) == ApprovalMode.SEQUENTIAL.value:
        return pending[:1]
    return pending


def is_eligible(decisions: Iterable[DecisionLike], mode, user_id: int) -> bool:
    return any(d.user_id == user_id for d in eligible(decisions, mode))


def is_complete(decisions: Iterable[DecisionLike]) -> bool:
    return all(d.status != _PENDING for d in decisions)


def outcome(decisions: Iterable[DecisionLike]) -> str | None:
    """Terminal outcome, or None while any decision is still PENDING."""
    decisions = list(decisions)
    if not is_complete(decisions):
        return None
    if any(d.status == _REJECTED for d in decisions):
        return _REJECTED
    return _APPROVED


def resolve(decisions: Iterable[DecisionLike], mode) -> Resolution:
    decisions = list(decisions)
    return Resolution(
        is_complete=is_complete(decisions),
        outcome=outcome(decisions),
        eligible_user_ids=[d.user_id for d in eligible(decisions, mode)],
        approved=sum(1 for d in decisions if d.status == _APPROVED),
        rejected=sum(1 for d in decisions if d.status == _REJECTED),
        pending=sum(1 for d in decisions if d.status == _PENDING),
    )
