"""Approver set configuration: validation, locks and replacement."""

import pytest

from sdlc_governance.core.exceptions import (
    InvalidInputError,
    ModeLockedError,
    NotFoundError,
    SubjectLockedError,
)
from sdlc_governance.models import db
from sdlc_governance.services import approval_service, approver_set_service, audit_service


def _ids(users):
    return [u.id for u in users]


class TestConfigureValidation:
    def test_empty_list_rejected(self, document):
        with pytest.raises(InvalidInputError):
            approver_set_service.configure("DOCUMENT", document.id, [], "PARALLEL")

    def test_duplicate_ids_rejected(self, document, approvers):
        a = approvers[0]
        with pytest.raises(InvalidInputError) as exc:
            approver_set_service.configure("DOCUMENT", document.id, [a.id, a.id], "PARALLEL")
        assert exc.value.details["duplicate_user_ids"] == [a.id]

    def test_unknown_user_rejected(self, document, approvers):
        with pytest.raises(InvalidInputError) as exc:
            approver_set_service.configure("DOCUMENT", document.id, [approvers[0].id, 9999], "PARALLEL")
        assert exc.value.details["unknown_user_ids"] == [9999]

    def test_invalid_mode_rejected(self, document, approvers):
        with pytest.raises(InvalidInputError):
            approver_set_service.configure("DOCUMENT", document.id, _ids(approvers), "ROUND_ROBIN")

    def test_invalid_subject_type_rejected(self, document, approvers):
        with pytest.raises(InvalidInputError):
            approver_set_service.configure("INVOICE", document.id, _ids(approvers), "PARALLEL")

    def test_missing_document(self, approvers):
        with pytest.raises(NotFoundError):
            approver_set_service.configure("DOCUMENT", 404, _ids(approvers), "PARALLEL")

    def test_nothing_written_on_failure(self, document, approvers):
        with pytest.raises(InvalidInputError):
            approver_set_service.configure("DOCUMENT", document.id, [approvers[0].id, 9999], "PARALLEL")
        assert approver_set_service.get_approver_set("DOCUMENT", document.id) is None
        assert audit_service.count("Approval Workflow Configured") == 0


class TestConfigureDocument:
    def test_creates_set_round_and_pending_decisions(self, document, approvers, requester):
        aset = approver_set_service.configure(
            "DOCUMENT", document.id, _ids(approvers), "SEQUENTIAL", actor_id=requester.id,
        )
        assert [m.order_index for m in aset.members] == [0, 1, 2]
        assert [m.user_id for m in aset.members] == _ids(approvers)

        rnd = approval_service.get_active_round("DOCUMENT", document.id)
        assert rnd.mode == "SEQUENTIAL"
        assert [d.status for d in rnd.decisions] == ["PENDING"] * 3
        assert db.session.get(type(document), document.id).status == "IN_REVIEW"
        assert audit_service.count("Approval Workflow Configured", "document", document.id) == 1

    def test_reconfigure_replaces_list(self, document, approvers):
        a, b, c = approvers
        approver_set_service.configure("DOCUMENT", document.id, [a.id, b.id], "PARALLEL")
        aset = approver_set_service.configure("DOCUMENT", document.id, [c.id, a.id], "PARALLEL")
        assert [(m.user_id, m.order_index) for m in aset.members] == [(c.id, 0), (a.id, 1)]

        rnd = approval_service.get_active_round("DOCUMENT", document.id)
        assert [d.user_id for d in rnd.decisions] == [c.id, a.id]

    def test_mode_locked(self, document, approvers):
        approver_set_service.configure("DOCUMENT", document.id, _ids(approvers), "SEQUENTIAL")
        with pytest.raises(ModeLockedError):
            approver_set_service.configure("DOCUMENT", document.id, _ids(approvers), "PARALLEL")

    def test_locked_after_first_decision(self, document, approvers):
        a, b, c = approvers
        approver_set_service.configure("DOCUMENT", document.id, [a.id, b.id], "PARALLEL")
        approval_service.decide_for_document(document.id, a.id, "APPROVED")

        with pytest.raises(SubjectLockedError):
            approver_set_service.configure("DOCUMENT", document.id, [a.id, b.id, c.id], "PARALLEL")
        aset = approver_set_service.get_approver_set("DOCUMENT", document.id)
        assert [m.user_id for m in aset.members] == [a.id, b.id]

    def test_locked_check_precedes_mode_check(self, document, approvers):
        a, b, _ = approvers
        approver_set_service.configure("DOCUMENT", document.id, [a.id, b.id], "PARALLEL")
        approval_service.decide_for_document(document.id, a.id, "APPROVED")
        with pytest.raises(SubjectLockedError):
            approver_set_service.configure("DOCUMENT", document.id, [a.id], "SEQUENTIAL")

    def test_document_stays_locked_after_completion(self, document, approvers):
        a = approvers[0]
        approver_set_service.configure("DOCUMENT", document.id, [a.id], "PARALLEL")
        approval_service.decide_for_document(document.id, a.id, "APPROVED")
        assert approver_set_service.is_locked("DOCUMENT", document.id)
        with pytest.raises(SubjectLockedError):
            approver_set_service.configure("DOCUMENT", document.id, [a.id], "PARALLEL")


class TestRemoveApprover:
    def test_recompacts_order(self, document, approvers):
        a, b, c = approvers
        approver_set_service.configure("DOCUMENT", document.id, [a.id, b.id, c.id], "SEQUENTIAL")
        aset = approver_set_service.remove_approver("DOCUMENT", document.id, b.id)

        assert [(m.user_id, m.order_index) for m in aset.members] == [(a.id, 0), (c.id, 1)]
        rnd = approval_service.get_active_round("DOCUMENT", document.id)
        assert [(d.user_id, d.order_index) for d in rnd.decisions] == [(a.id, 0), (c.id, 1)]
        assert audit_service.count("Approver Removed", "document", document.id) == 1

    def test_remove_last_deletes_set_and_round(self, document, approvers):
        a = approvers[0]
        approver_set_service.configure("DOCUMENT", document.id, [a.id], "PARALLEL")
        assert approver_set_service.remove_approver("DOCUMENT", document.id, a.id) is None

        assert approver_set_service.get_approver_set("DOCUMENT", document.id) is None
        assert approval_service.get_active_round("DOCUMENT", document.id) is None
        assert db.session.get(type(document), document.id).status == "DRAFT"

    def test_remove_unknown_member(self, document, approvers):
        a, b, c = approvers
        approver_set_service.configure("DOCUMENT", document.id, [a.id, b.id], "PARALLEL")
        with pytest.raises(NotFoundError):
            approver_set_service.remove_approver("DOCUMENT", document.id, c.id)

    def test_remove_without_set(self, document, approvers):
        with pytest.raises(NotFoundError):
            approver_set_service.remove_approver("DOCUMENT", document.id, approvers[0].id)

    def test_remove_when_locked(self, document, approvers):
        a, b, _ = approvers
        approver_set_service.configure("DOCUMENT", document.id, [a.id, b.id], "PARALLEL")
        approval_service.decide_for_document(document.id, a.id, "APPROVED")
        with pytest.raises(SubjectLockedError):
            approver_set_service.remove_approver("DOCUMENT", document.id, b.id)


class TestProjectApprovers:
    def test_configure_does_not_open_round(self, project, approvers):
        aset = approver_set_service.configure("PROJECT_STATUS", project.id, _ids(approvers), "PARALLEL")
        assert aset.subject_type == "PROJECT_STATUS"
        assert approval_service.get_active_round("PROJECT_STATUS", project.id) is None
        assert audit_service.count("Project Approvers Configured", "project", project.id) == 1

    def test_unlocked_again_after_request_resolves(self, project, approvers, requester):
        from sdlc_governance.services import status_gate_service

        a, b, c = approvers
        approver_set_service.configure("PROJECT_STATUS", project.id, [a.id], "PARALLEL")
        res = status_gate_service.request_status_change(project.id, "Demand Prioritized", requester.id)
        status_gate_service.vote_on_status_change(res["request"]["id"], a.id, "APPROVED")

        aset = approver_set_service.configure("PROJECT_STATUS", project.id, [a.id, b.id], "PARALLEL")
        assert len(aset.members) == 2

    def test_reconfigure_rebuilds_pending_votes(self, project, approvers, requester):
        from sdlc_governance.services import status_gate_service

        a, b, c = approvers
        approver_set_service.configure("PROJECT_STATUS", project.id, [a.id, b.id], "PARALLEL")
        res = status_gate_service.request_status_change(project.id, "Demand Prioritized", requester.id)
        rnd = approval_service.get_active_round("PROJECT_STATUS", project.id)
        version = rnd.version

        approver_set_service.configure("PROJECT_STATUS", project.id, [c.id], "PARALLEL")
        rnd = approval_service.get_round(res["request"]["round_id"])
        assert [d.user_id for d in rnd.decisions] == [c.id]
        assert rnd.version > version

    def test_cannot_remove_last_while_request_pending(self, project, approvers, requester):
        from sdlc_governance.services import status_gate_service

        a = approvers[0]
        approver_set_service.configure("PROJECT_STATUS", project.id, [a.id], "PARALLEL")
        status_gate_service.request_status_change(project.id, "Demand Prioritized", requester.id)
        with pytest.raises(InvalidInputError):
            approver_set_service.remove_approver("PROJECT_STATUS", project.id, a.id)
