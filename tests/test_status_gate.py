"""Project lifecycle gate: immediate apply, gated requests and votes."""

import pytest

from sdlc_governance.core.exceptions import (
    AlreadyDecidedError,
    ConflictError,
    InvalidInputError,
    NotFoundError,
    OutOfOrderError,
)
from sdlc_governance.models import db
from sdlc_governance.models.approval import StatusChangeRequest
from sdlc_governance.models.project import Project
from sdlc_governance.services import approver_set_service, audit_service, status_gate_service


def _project_status(project):
    return db.session.get(Project, project.id).status


def _gate(project, users, mode="PARALLEL"):
    approver_set_service.configure("PROJECT_STATUS", project.id, [u.id for u in users], mode)


class TestUngated:
    def test_applies_immediately(self, project, requester):
        res = status_gate_service.request_status_change(project.id, "Demand Prioritized", requester.id)
        assert res["applied"] is True
        assert res["request"] is None
        assert _project_status(project) == "Demand Prioritized"
        assert db.session.query(StatusChangeRequest).count() == 0
        assert audit_service.count("Status Updated", "project", project.id) == 1

    def test_backward_allowed_by_default(self, make_project, requester):
        project = make_project(status="ARF")
        res = status_gate_service.request_status_change(project.id, "Kick Off", requester.id)
        assert res["applied"] is True
        assert _project_status(project) == "Kick Off"

    def test_backward_rejected_when_enforced(self, app, make_project, requester):
        project = make_project(status="ARF")
        app.config["LIFECYCLE_ENFORCE_FORWARD"] = True
        try:
            with pytest.raises(InvalidInputError):
                status_gate_service.request_status_change(project.id, "Kick Off", requester.id)
        finally:
            app.config["LIFECYCLE_ENFORCE_FORWARD"] = False
        assert _project_status(project) == "ARF"

    def test_unknown_stage(self, project, requester):
        with pytest.raises(InvalidInputError):
            status_gate_service.request_status_change(project.id, "Done", requester.id)

    def test_same_stage(self, project, requester):
        with pytest.raises(InvalidInputError):
            status_gate_service.request_status_change(project.id, "Initiative Submitted", requester.id)

    def test_unknown_project(self, requester):
        with pytest.raises(NotFoundError):
            status_gate_service.request_status_change(999, "ARF", requester.id)


class TestGatedRequest:
    def test_creates_pending_request_with_votes(self, project, approvers, requester):
        _gate(project, approvers)
        res = status_gate_service.request_status_change(
            project.id, "Demand Prioritized", requester.id, comment="budget ok",
        )
        assert res["applied"] is False
        req = res["request"]
        assert req["status"] == "PENDING"
        assert req["from_status"] == "Initiative Submitted"
        assert req["to_status"] == "Demand Prioritized"
        assert [v["status"] for v in req["votes"]] == ["PENDING"] * 3
        assert _project_status(project) == "Initiative Submitted"
        assert audit_service.count("Status Change Requested", "project", project.id) == 1

    def test_second_request_conflicts(self, project, approvers, requester):
        _gate(project, approvers)
        status_gate_service.request_status_change(project.id, "Demand Prioritized", requester.id)
        with pytest.raises(ConflictError):
            status_gate_service.request_status_change(project.id, "Initiative Approved", requester.id)
        with pytest.raises(ConflictError):
            status_gate_service.request_status_change(project.id, "Initiative Submitted", requester.id)

    def test_all_approve_moves_project(self, project, approvers, requester):
        a, b, c = approvers
        _gate(project, approvers)
        req_id = status_gate_service.request_status_change(
            project.id, "Demand Prioritized", requester.id)["request"]["id"]

        status_gate_service.vote_on_status_change(req_id, a.id, "APPROVED")
        status_gate_service.vote_on_status_change(req_id, b.id, "APPROVED")
        assert _project_status(project) == "Initiative Submitted"

        res = status_gate_service.vote_on_status_change(req_id, c.id, "APPROVED")
        assert res["completed"] is True
        assert res["request"]["status"] == "APPROVED"
        assert res["request"]["completed_at"] is not None
        assert _project_status(project) == "Demand Prioritized"
        assert audit_service.count("Status Updated", "project", project.id) == 1
        assert audit_service.count("Status Change Approved", "project", project.id) == 3

    def test_one_rejection_keeps_stage(self, project, approvers, requester):
        a, b, c = approvers
        _gate(project, approvers)
        req_id = status_gate_service.request_status_change(
            project.id, "Demand Prioritized", requester.id)["request"]["id"]

        status_gate_service.vote_on_status_change(req_id, a.id, "APPROVED")
        status_gate_service.vote_on_status_change(req_id, b.id, "REJECTED", comment="not yet")
        res = status_gate_service.vote_on_status_change(req_id, c.id, "APPROVED")

        assert res["request"]["status"] == "REJECTED"
        assert _project_status(project) == "Initiative Submitted"
        assert audit_service.count("Status Change Request Rejected", "project", project.id) == 1
        assert audit_service.count("Status Updated") == 0

    def test_new_request_allowed_after_resolution(self, project, approvers, requester):
        a = approvers[0]
        _gate(project, [a])
        req_id = status_gate_service.request_status_change(
            project.id, "Demand Prioritized", requester.id)["request"]["id"]
        status_gate_service.vote_on_status_change(req_id, a.id, "REJECTED")

        res = status_gate_service.request_status_change(project.id, "Demand Prioritized", requester.id)
        assert res["request"]["status"] == "PENDING"
        assert len(status_gate_service.list_requests(project.id)) == 2

    def test_sequential_votes(self, project, approvers, requester):
        a, b, _ = approvers
        _gate(project, [a, b], mode="SEQUENTIAL")
        req_id = status_gate_service.request_status_change(
            project.id, "Demand Prioritized", requester.id)["request"]["id"]
        assert status_gate_service.eligible_voters(req_id) == [a.id]
        with pytest.raises(OutOfOrderError):
            status_gate_service.vote_on_status_change(req_id, b.id, "APPROVED")

    def test_double_vote(self, project, approvers, requester):
        a, b, _ = approvers
        _gate(project, [a, b])
        req_id = status_gate_service.request_status_change(
            project.id, "Demand Prioritized", requester.id)["request"]["id"]
        status_gate_service.vote_on_status_change(req_id, a.id, "APPROVED")
        with pytest.raises(AlreadyDecidedError):
            status_gate_service.vote_on_status_change(req_id, a.id, "APPROVED")

    def test_unknown_request(self, approvers):
        with pytest.raises(NotFoundError):
            status_gate_service.vote_on_status_change(12345, approvers[0].id, "APPROVED")


class TestApproverViews:
    def test_pending_votes_for_user(self, project, approvers, requester):
        a, _, _ = approvers
        _gate(project, approvers)
        status_gate_service.request_status_change(project.id, "Demand Prioritized", requester.id)
        items = status_gate_service.list_pending_votes_for_user(a.id)
        assert len(items) == 1
        assert items[0]["request"]["to_status"] == "Demand Prioritized"
        assert items[0]["project"]["id"] == project.id

    def test_approver_lifecycle(self, project, approvers, requester):
        a, _, _ = approvers
        _gate(project, [a])
        req_id = status_gate_service.request_status_change(
            project.id, "Demand Prioritized", requester.id)["request"]["id"]
        status_gate_service.vote_on_status_change(req_id, a.id, "APPROVED", comment="go")

        view = status_gate_service.get_approver_lifecycle(a.id, project_id=project.id)
        assert len(view) == 1
        stages = {s["stage"]: s for s in view[0]["stages"]}
        assert stages["Demand Prioritized"]["vote"] == "APPROVED"
        assert stages["Demand Prioritized"]["comment"] == "go"
        assert stages["Go Live"]["vote"] == "NOT_REACHED"
        assert view[0]["current_status"] == "Demand Prioritized"

    def test_approver_lifecycle_across_projects(self, make_project, approvers, requester):
        a = approvers[0]
        p1, p2 = make_project(), make_project()
        for p in (p1, p2):
            _gate(p, [a])
            status_gate_service.request_status_change(p.id, "Demand Prioritized", requester.id)

        view = status_gate_service.get_approver_lifecycle(a.id)
        assert [v["project_id"] for v in view] == [p1.id, p2.id]
        assert all(
            next(s for s in v["stages"] if s["stage"] == "Demand Prioritized")["vote"] == "PENDING"
            for v in view
        )
