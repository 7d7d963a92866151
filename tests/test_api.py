"""HTTP surface: status codes and error bodies."""


def headers(user_id):
    return {"X-User-Id": str(user_id)}


class TestAuthHeader:
    def test_missing_user_header(self, client, document):
        res = client.post(f"/api/v1/documents/{document.id}/approve")
        assert res.status_code == 401

    def test_non_integer_user_header(self, client, document):
        res = client.post(f"/api/v1/documents/{document.id}/approve", headers={"X-User-Id": "abc"})
        assert res.status_code == 400


class TestDocumentApprovalApi:
    def test_configure_and_approve(self, client, document, approvers, requester):
        a, b, _ = approvers
        res = client.post(
            f"/api/v1/documents/{document.id}/approvers",
            json={"approver_ids": [a.id, b.id], "mode": "SEQUENTIAL", "priority": "HIGH"},
            headers=headers(requester.id),
        )
        assert res.status_code == 201
        body = res.get_json()
        assert body["approver_set"]["mode"] == "SEQUENTIAL"
        assert len(body["round"]["decisions"]) == 2

        res = client.post(f"/api/v1/documents/{document.id}/approve", headers=headers(b.id))
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_OUT_OF_ORDER"

        res = client.post(f"/api/v1/documents/{document.id}/approve",
                          json={"comment": "ok"}, headers=headers(a.id))
        assert res.status_code == 200
        assert res.get_json()["completed"] is False

        res = client.post(f"/api/v1/documents/{document.id}/reject", headers=headers(b.id))
        assert res.get_json()["outcome"] == "REJECTED"

        status = client.get(f"/api/v1/documents/{document.id}/approval-status").get_json()
        assert status["status"] == "REJECTED"
        assert status["subject_status"] == "REJECTED"

    def test_configure_validation(self, client, document, requester):
        res = client.post(f"/api/v1/documents/{document.id}/approvers", json={},
                          headers=headers(requester.id))
        assert res.status_code == 400

        res = client.post(f"/api/v1/documents/{document.id}/approvers",
                          json={"approver_ids": []}, headers=headers(requester.id))
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_INVALID_INPUT"

    def test_mode_change_conflict(self, client, document, approvers, requester):
        ids = [u.id for u in approvers]
        client.post(f"/api/v1/documents/{document.id}/approvers",
                    json={"approver_ids": ids, "mode": "PARALLEL"}, headers=headers(requester.id))
        res = client.post(f"/api/v1/documents/{document.id}/approvers",
                          json={"approver_ids": ids, "mode": "SEQUENTIAL"}, headers=headers(requester.id))
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_MODE_LOCKED"

    def test_unknown_round(self, client, approvers):
        res = client.post("/api/v1/approval-rounds/999/decisions",
                          json={"outcome": "APPROVED"}, headers=headers(approvers[0].id))
        assert res.status_code == 404

    def test_decision_requires_outcome(self, client, approvers):
        res = client.post("/api/v1/approval-rounds/1/decisions", json={}, headers=headers(approvers[0].id))
        assert res.status_code == 400

    def test_pending_queue(self, client, document, approvers, requester):
        client.post(f"/api/v1/documents/{document.id}/approvers",
                    json={"approver_ids": [approvers[0].id], "mode": "PARALLEL"},
                    headers=headers(requester.id))
        res = client.get("/api/v1/approvals/pending", headers=headers(approvers[0].id))
        assert res.status_code == 200
        assert res.get_json()["total"] == 1


class TestProjectStatusApi:
    def test_ungated_change_is_200(self, client, project, requester):
        res = client.patch(f"/api/v1/projects/{project.id}/status",
                           json={"status": "Demand Prioritized"}, headers=headers(requester.id))
        assert res.status_code == 200
        assert res.get_json()["applied"] is True

    def test_gated_change_is_202_then_conflict(self, client, project, approvers, requester):
        res = client.post(f"/api/v1/projects/{project.id}/approvers",
                          json={"approver_ids": [approvers[0].id], "mode": "PARALLEL"},
                          headers=headers(requester.id))
        assert res.status_code == 201

        res = client.patch(f"/api/v1/projects/{project.id}/status",
                           json={"status": "Demand Prioritized"}, headers=headers(requester.id))
        assert res.status_code == 202
        request_id = res.get_json()["request"]["id"]

        res = client.patch(f"/api/v1/projects/{project.id}/status",
                           json={"status": "Kick Off"}, headers=headers(requester.id))
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT"

        pending = client.get(f"/api/v1/projects/{project.id}/status-request").get_json()
        assert pending["request"]["eligible_user_ids"] == [approvers[0].id]

        res = client.post(f"/api/v1/status-requests/{request_id}/approve", headers=headers(approvers[0].id))
        assert res.status_code == 200
        assert res.get_json()["request"]["status"] == "APPROVED"

        lifecycle = client.get(f"/api/v1/projects/{project.id}/lifecycle").get_json()
        assert lifecycle["stage"] == "Demand Prioritized"

    def test_invalid_stage_is_400(self, client, project, requester):
        res = client.patch(f"/api/v1/projects/{project.id}/status",
                           json={"status": "Shipped"}, headers=headers(requester.id))
        assert res.status_code == 400

    def test_unknown_project_is_404(self, client, requester):
        res = client.get("/api/v1/projects/777/approval-status")
        assert res.status_code == 404

    def test_stages(self, client):
        assert len(client.get("/api/v1/lifecycle/stages").get_json()["stages"]) == 10


class TestAuditApi:
    def test_document_history(self, client, document, approvers, requester):
        client.post(f"/api/v1/documents/{document.id}/approvers",
                    json={"approver_ids": [approvers[0].id]}, headers=headers(requester.id))
        res = client.get(f"/api/v1/audit/document/{document.id}")
        assert res.status_code == 200
        items = res.get_json()["items"]
        assert items[0]["action"] == "Approval Workflow Configured"
        assert items[0]["actor_id"] == requester.id

        history = client.get(f"/api/v1/projects/{document.project_id}/history").get_json()
        assert history["total"] == 1

    def test_unknown_target_type(self, client):
        assert client.get("/api/v1/audit/invoice/1").status_code == 400


class TestHealth:
    def test_ready(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_live(self, client):
        assert client.get("/api/v1/health/live").status_code == 200

    def test_unknown_route_json_404(self, client):
        res = client.get("/api/v1/nope")
        assert res.status_code == 404
