"""
Approval subjects and their outcome-application strategies.

An approval subject is a tagged variant (DOCUMENT or PROJECT_STATUS) and
each tag owns one strategy object. The engine dispatches on the tag once
(``strategy_for``) instead of branching on subject fields at each call site.

A strategy is the Subject Store for its tag: it loads the subject, reads
and writes its status, names the audit actions, and applies a round's
resolved outcome. All writes flush into the caller's transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from sdlc_governance.core.exceptions import InvalidInputError, NotFoundError
from sdlc_governance.models import db
from sdlc_governance.models.approval import (
    ApprovalRound,
    DecisionStatus,
    StatusChangeRequest,
    SubjectType,
)
from sdlc_governance.models.document import Document
from sdlc_governance.models.project import Project
from sdlc_governance.services import audit_service

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


class SubjectStrategy:
    """Base strategy. Subclasses fill in the subject-specific parts."""

    subject_type: SubjectType
    audit_target_type: str
    configured_action: str
    approved_action: str
    rejected_action: str
    # Whether a finished round still blocks reconfiguration of the approver set
    locks_after_completion: bool = False
    # Whether configure() opens a round immediately
    opens_round_on_configure: bool = False

    def load(self, subject_id: int, for_update: bool = False):
        raise NotImplementedError

    def get_status(self, subject_id: int) -> str:
        return self.load(subject_id).status

    def individual_action(self, outcome: str) -> str:
        return self.approved_action if outcome == DecisionStatus.APPROVED.value else self.rejected_action

    def audit_target(self, approval_round: ApprovalRound) -> tuple[str, int]:
        return self.audit_target_type, approval_round.subject_id

    def on_round_opened(self, approval_round: ApprovalRound) -> None:
        """Move the subject to its awaiting-decision marker."""

    def on_round_discarded(self, approval_round: ApprovalRound) -> None:
        """Undo ``on_round_opened`` when an unresolved round is dropped."""

    def apply_outcome(self, approval_round: ApprovalRound, outcome: str, actor_id: int | None) -> dict:
        raise NotImplementedError

    def describe(self, subject_id: int) -> dict:
        return self.load(subject_id).to_dict()


class DocumentStrategy(SubjectStrategy):
    subject_type = SubjectType.DOCUMENT
    audit_target_type = "document"
    configured_action = "Approval Workflow Configured"
    approved_action = "Document Approved"
    rejected_action = "Document Rejected"
    locks_after_completion = True
    opens_round_on_configure = True

    def load(self, subject_id: int, for_update: bool = False) -> Document:
        q = select(Document).where(Document.id == subject_id)
        if for_update:
            q = q.with_for_update()
        doc = db.session.execute(q).scalar_one_or_none()
        if doc is None or doc.status == "DELETED":
            raise NotFoundError("Document", subject_id)
        return doc

    def set_status(self, subject_id: int, status: str) -> Document:
        doc = self.load(subject_id)
        doc.status = status
        return doc

    def on_round_opened(self, approval_round: ApprovalRound) -> None:
        self.set_status(approval_round.subject_id, "IN_REVIEW")

    def on_round_discarded(self, approval_round: ApprovalRound) -> None:
        self.set_status(approval_round.subject_id, "DRAFT")

    def apply_outcome(self, approval_round: ApprovalRound, outcome: str, actor_id: int | None) -> dict:
        doc = self.set_status(approval_round.subject_id, outcome)
        action = (
            "Document Fully Approved"
            if outcome == DecisionStatus.APPROVED.value
            else "Document Approval Rejected"
        )
        audit_service.append(
            action=action,
            target_type=self.audit_target_type,
            target_id=doc.id,
            actor_id=actor_id,
            metadata={
                "round_id": approval_round.id,
                "mode": approval_round.mode,
                "outcome": outcome,
                "filename": doc.filename,
            },
        )
        logger.info("Document %s resolved to %s", doc.id, outcome,
                    extra={"round_id": approval_round.id, "document_id": doc.id})
        return {"document_id": doc.id, "status": doc.status}


class ProjectStatusStrategy(SubjectStrategy):
    subject_type = SubjectType.PROJECT_STATUS
    audit_target_type = "project"
    configured_action = "Project Approvers Configured"
    approved_action = "Status Change Approved"
    rejected_action = "Status Change Rejected"

    def load(self, subject_id: int, for_update: bool = False) -> Project:
        q = select(Project).where(Project.id == subject_id)
        if for_update:
            q = q.with_for_update()
        project = db.session.execute(q).scalar_one_or_none()
        if project is None:
            raise NotFoundError("Project", subject_id)
        return project

    def set_status(self, subject_id: int, status: str) -> Project:
        project = self.load(subject_id)
        project.status = status
        return project

    def request_for_round(self, round_id: int) -> StatusChangeRequest:
        req = db.session.execute(
            select(StatusChangeRequest).where(StatusChangeRequest.round_id == round_id)
        ).scalar_one_or_none()
        if req is None:
            raise NotFoundError("StatusChangeRequest for round", round_id)
        return req

    def apply_outcome(self, approval_round: ApprovalRound, outcome: str, actor_id: int | None) -> dict:
        req = self.request_for_round(approval_round.id)
        req.status = outcome
        req.completed_at = _utcnow()
        project = self.load(approval_round.subject_id)

        if outcome == DecisionStatus.APPROVED.value:
            previous = project.status
            project.status = req.to_status
            audit_service.append(
                action="Status Updated",
                target_type=self.audit_target_type,
                target_id=project.id,
                actor_id=actor_id,
                metadata={
                    "from_status": previous,
                    "to_status": req.to_status,
                    "request_id": req.id,
                    "round_id": approval_round.id,
                    "gated": True,
                },
            )
            logger.info("Project %s moved %r -> %r", project.id, previous, req.to_status,
                        extra={"round_id": approval_round.id, "project_id": project.id})
        else:
            audit_service.append(
                action="Status Change Request Rejected",
                target_type=self.audit_target_type,
                target_id=project.id,
                actor_id=actor_id,
                metadata={
                    "from_status": req.from_status,
                    "to_status": req.to_status,
                    "request_id": req.id,
                    "round_id": approval_round.id,
                },
            )
            logger.info("Project %s status change to %r rejected", project.id, req.to_status,
                        extra={"round_id": approval_round.id, "project_id": project.id})
        return {"project_id": project.id, "status": project.status, "request_id": req.id}

    def describe(self, subject_id: int) -> dict:
        project = self.load(subject_id)
        d = project.to_dict()
        pending = db.session.execute(
            select(StatusChangeRequest).where(
                StatusChangeRequest.project_id == subject_id,
                StatusChangeRequest.status == DecisionStatus.PENDING.value,
            )
        ).scalar_one_or_none()
        d["pending_request"] = (
            {"id": pending.id, "from_status": pending.from_status, "to_status": pending.to_status}
            if pending else None
        )
        return d


STRATEGIES: dict[SubjectType, SubjectStrategy] = {
    SubjectType.DOCUMENT: DocumentStrategy(),
    SubjectType.PROJECT_STATUS: ProjectStatusStrategy(),
}


def parse_subject_type(value) -> SubjectType:
    try:
        return SubjectType(getattr(value, "value", value))
    except ValueError:
        raise InvalidInputError(
            f"Invalid subject_type {value!r}. Must be one of: {', '.join(t.value for t in SubjectType)}",
        ) from None


def strategy_for(subject_type) -> SubjectStrategy:
    return STRATEGIES[parse_subject_type(subject_type)]
