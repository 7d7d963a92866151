"""
Document approval blueprint.

Endpoints:
    POST   /api/v1/documents/<document_id>/approvers                  — configure approver set
    GET    /api/v1/documents/<document_id>/approvers                  — current approver set
    DELETE /api/v1/documents/<document_id>/approvers/<user_id>        — remove approver (unlocked only)
    GET    /api/v1/documents/<document_id>/approval-status            — round summary
    POST   /api/v1/documents/<document_id>/approve                    — approve active round
    POST   /api/v1/documents/<document_id>/reject                     — reject active round
    GET    /api/v1/approval-rounds/<round_id>                         — round with decisions
    POST   /api/v1/approval-rounds/<round_id>/decisions               — decide (any subject)
    GET    /api/v1/approvals/pending                                  — caller's actionable decisions
    GET    /api/v1/approvals/completed                                — caller's past decisions
"""

import logging

from flask import Blueprint, jsonify, request

from sdlc_governance.blueprints import acting_user_id, json_body, register_error_handlers
from sdlc_governance.models.approval import SubjectType
from sdlc_governance.services import approval_service, approver_set_service

logger = logging.getLogger(__name__)

approval_bp = Blueprint("approval", __name__, url_prefix="/api/v1")
register_error_handlers(approval_bp)


def _set_response(approver_set, subject_type, subject_id):
    active = approval_service.get_active_round(subject_type, subject_id)
    return {
        "approver_set": approver_set.to_dict() if approver_set else None,
        "round": active.to_dict() if active else None,
    }


# ═════════════════════════════════════════════════════════════════════════
# Approver configuration
# ═════════════════════════════════════════════════════════════════════════


@approval_bp.route("/documents/<int:document_id>/approvers", methods=["POST"])
def configure_document_approvers(document_id):
    user_id, err = acting_user_id()
    if err:
        return err
    data = json_body()
    if "approver_ids" not in data:
        return jsonify({"error": "approver_ids is required"}), 400

    approver_set = approver_set_service.configure(
        SubjectType.DOCUMENT,
        document_id,
        data.get("approver_ids"),
        data.get("mode", "SEQUENTIAL"),
        priority=data.get("priority"),
        actor_id=user_id,
    )
    return jsonify(_set_response(approver_set, SubjectType.DOCUMENT, document_id)), 201


@approval_bp.route("/documents/<int:document_id>/approvers", methods=["GET"])
def get_document_approvers(document_id):
    approver_set = approver_set_service.get_approver_set(SubjectType.DOCUMENT, document_id)
    return jsonify(_set_response(approver_set, SubjectType.DOCUMENT, document_id))


@approval_bp.route("/documents/<int:document_id>/approvers/<int:user_id>", methods=["DELETE"])
def remove_document_approver(document_id, user_id):
    actor_id, err = acting_user_id()
    if err:
        return err
    approver_set = approver_set_service.remove_approver(
        SubjectType.DOCUMENT, document_id, user_id, actor_id=actor_id,
    )
    return jsonify(_set_response(approver_set, SubjectType.DOCUMENT, document_id))


# ═════════════════════════════════════════════════════════════════════════
# Decisions
# ═════════════════════════════════════════════════════════════════════════


@approval_bp.route("/documents/<int:document_id>/approval-status", methods=["GET"])
def document_approval_status(document_id):
    return jsonify(approval_service.get_approval_status(SubjectType.DOCUMENT, document_id))


@approval_bp.route("/documents/<int:document_id>/approve", methods=["POST"])
def approve_document(document_id):
    user_id, err = acting_user_id()
    if err:
        return err
    result = approval_service.decide_for_document(
        document_id, user_id, "APPROVED", comment=json_body().get("comment"),
    )
    return jsonify(result)


@approval_bp.route("/documents/<int:document_id>/reject", methods=["POST"])
def reject_document(document_id):
    user_id, err = acting_user_id()
    if err:
        return err
    result = approval_service.decide_for_document(
        document_id, user_id, "REJECTED", comment=json_body().get("comment"),
    )
    return jsonify(result)


@approval_bp.route("/approval-rounds/<int:round_id>", methods=["GET"])
def get_round(round_id):
    return jsonify(approval_service.get_round(round_id).to_dict())


@approval_bp.route("/approval-rounds/<int:round_id>/decisions", methods=["POST"])
def decide(round_id):
    user_id, err = acting_user_id()
    if err:
        return err
    data = json_body()
    outcome = (data.get("outcome") or "").upper()
    if not outcome:
        return jsonify({"error": "outcome is required"}), 400
    result = approval_service.decide(round_id, user_id, outcome, comment=data.get("comment"))
    return jsonify(result)


# ═════════════════════════════════════════════════════════════════════════
# Queues
# ═════════════════════════════════════════════════════════════════════════


@approval_bp.route("/approvals/pending", methods=["GET"])
def pending_approvals():
    user_id, err = acting_user_id()
    if err:
        return err
    subject_type = request.args.get("subject_type")
    items = approval_service.pending_for_user(user_id, subject_type=subject_type)
    return jsonify({"items": items, "total": len(items)})


@approval_bp.route("/approvals/completed", methods=["GET"])
def completed_approvals():
    user_id, err = acting_user_id()
    if err:
        return err
    items = approval_service.completed_for_user(user_id)
    return jsonify({"items": items, "total": len(items)})
