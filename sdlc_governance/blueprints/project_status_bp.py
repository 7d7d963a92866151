"""
Project lifecycle gate blueprint.

Endpoints:
    GET    /api/v1/lifecycle/stages                                — ordered stage list
    POST   /api/v1/projects/<project_id>/approvers                 — configure PROJECT_STATUS approvers
    GET    /api/v1/projects/<project_id>/approvers                 — current approver set
    DELETE /api/v1/projects/<project_id>/approvers/<user_id>       — remove approver
    GET    /api/v1/projects/<project_id>/approval-status           — current/latest vote summary
    PATCH  /api/v1/projects/<project_id>/status                    — request a stage change
    GET    /api/v1/projects/<project_id>/status-request            — pending request (or null)
    GET    /api/v1/projects/<project_id>/status-requests           — all requests
    GET    /api/v1/projects/<project_id>/lifecycle                 — progress view
    POST   /api/v1/status-requests/<request_id>/approve            — vote APPROVED
    POST   /api/v1/status-requests/<request_id>/reject             — vote REJECTED
    GET    /api/v1/status-requests/pending                         — caller's pending votes
    GET    /api/v1/approvers/<user_id>/lifecycle                   — approver's vote per stage
"""

import logging

from flask import Blueprint, jsonify, request

from sdlc_governance.blueprints import acting_user_id, json_body, register_error_handlers
from sdlc_governance.models.approval import SubjectType
from sdlc_governance.services import approval_service, approver_set_service, lifecycle
from sdlc_governance.services import status_gate_service
from sdlc_governance.services.subject_strategies import strategy_for

logger = logging.getLogger(__name__)

project_status_bp = Blueprint("project_status", __name__, url_prefix="/api/v1")
register_error_handlers(project_status_bp)


@project_status_bp.route("/lifecycle/stages", methods=["GET"])
def list_stages():
    return jsonify({"stages": list(lifecycle.STAGES)})


# ── Approver set ──────────────────────────────────────────────────────────────


@project_status_bp.route("/projects/<int:project_id>/approvers", methods=["POST"])
def configure_project_approvers(project_id):
    user_id, err = acting_user_id()
    if err:
        return err
    data = json_body()
    if "approver_ids" not in data:
        return jsonify({"error": "approver_ids is required"}), 400

    approver_set = approver_set_service.configure(
        SubjectType.PROJECT_STATUS,
        project_id,
        data.get("approver_ids"),
        data.get("mode", "SEQUENTIAL"),
        priority=data.get("priority"),
        actor_id=user_id,
    )
    return jsonify(approver_set.to_dict()), 201


@project_status_bp.route("/projects/<int:project_id>/approvers", methods=["GET"])
def get_project_approvers(project_id):
    strategy_for(SubjectType.PROJECT_STATUS).load(project_id)
    approver_set = approver_set_service.get_approver_set(SubjectType.PROJECT_STATUS, project_id)
    return jsonify({"approver_set": approver_set.to_dict() if approver_set else None})


@project_status_bp.route("/projects/<int:project_id>/approvers/<int:user_id>", methods=["DELETE"])
def remove_project_approver(project_id, user_id):
    actor_id, err = acting_user_id()
    if err:
        return err
    approver_set = approver_set_service.remove_approver(
        SubjectType.PROJECT_STATUS, project_id, user_id, actor_id=actor_id,
    )
    return jsonify({"approver_set": approver_set.to_dict() if approver_set else None})


@project_status_bp.route("/projects/<int:project_id>/approval-status", methods=["GET"])
def project_approval_status(project_id):
    return jsonify(approval_service.get_approval_status(SubjectType.PROJECT_STATUS, project_id))


# ── Status change ─────────────────────────────────────────────────────────────


@project_status_bp.route("/projects/<int:project_id>/status", methods=["PATCH"])
def request_status_change(project_id):
    user_id, err = acting_user_id()
    if err:
        return err
    data = json_body()
    to_status = (data.get("status") or "").strip()
    if not to_status:
        return jsonify({"error": "status is required"}), 400

    result = status_gate_service.request_status_change(
        project_id, to_status, user_id,
        comment=data.get("comment"),
        priority=data.get("priority"),
    )
    return jsonify(result), 200 if result["applied"] else 202


@project_status_bp.route("/projects/<int:project_id>/status-request", methods=["GET"])
def get_pending_request(project_id):
    strategy_for(SubjectType.PROJECT_STATUS).load(project_id)
    req = status_gate_service.get_pending_request(project_id)
    if req is None:
        return jsonify({"request": None})
    body = req.to_dict()
    body["eligible_user_ids"] = status_gate_service.eligible_voters(req.id)
    return jsonify({"request": body})


@project_status_bp.route("/projects/<int:project_id>/status-requests", methods=["GET"])
def list_requests(project_id):
    return jsonify({"items": status_gate_service.list_requests(project_id)})


@project_status_bp.route("/projects/<int:project_id>/lifecycle", methods=["GET"])
def project_lifecycle(project_id):
    project = strategy_for(SubjectType.PROJECT_STATUS).load(project_id)
    return jsonify(lifecycle.progress(project.status))


@project_status_bp.route("/status-requests/<int:request_id>/approve", methods=["POST"])
def approve_status_change(request_id):
    user_id, err = acting_user_id()
    if err:
        return err
    result = status_gate_service.vote_on_status_change(
        request_id, user_id, "APPROVED", comment=json_body().get("comment"),
    )
    return jsonify(result)


@project_status_bp.route("/status-requests/<int:request_id>/reject", methods=["POST"])
def reject_status_change(request_id):
    user_id, err = acting_user_id()
    if err:
        return err
    result = status_gate_service.vote_on_status_change(
        request_id, user_id, "REJECTED", comment=json_body().get("comment"),
    )
    return jsonify(result)


@project_status_bp.route("/status-requests/pending", methods=["GET"])
def pending_votes():
    user_id, err = acting_user_id()
    if err:
        return err
    items = status_gate_service.list_pending_votes_for_user(user_id)
    return jsonify({"items": items, "total": len(items)})


@project_status_bp.route("/approvers/<int:user_id>/lifecycle", methods=["GET"])
def approver_lifecycle(user_id):
    project_id = request.args.get("project_id", type=int)
    return jsonify({"items": status_gate_service.get_approver_lifecycle(user_id, project_id)})
