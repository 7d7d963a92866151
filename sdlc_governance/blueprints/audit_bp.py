"""
Audit trail blueprint (read-only).

Endpoints:
    GET /api/v1/audit/<target_type>/<target_id>     — history for one target
    GET /api/v1/projects/<project_id>/history       — project + its documents
"""

from flask import Blueprint, jsonify, request

from sdlc_governance.blueprints import register_error_handlers
from sdlc_governance.models.audit import AUDIT_TARGET_TYPES
from sdlc_governance.models.approval import SubjectType
from sdlc_governance.services import audit_service
from sdlc_governance.services.subject_strategies import strategy_for

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1")
register_error_handlers(audit_bp)


def _limit() -> int:
    return min(request.args.get("limit", 200, type=int) or 200, 1000)


@audit_bp.route("/audit/<target_type>/<target_id>", methods=["GET"])
def target_history(target_type, target_id):
    if target_type not in AUDIT_TARGET_TYPES:
        return jsonify({"error": f"Unknown target_type '{target_type}'"}), 400
    items = audit_service.history_for(target_type, target_id, limit=_limit())
    return jsonify({"items": items, "total": len(items)})


@audit_bp.route("/projects/<int:project_id>/history", methods=["GET"])
def project_history(project_id):
    strategy_for(SubjectType.PROJECT_STATUS).load(project_id)
    items = audit_service.project_history(project_id, limit=_limit())
    return jsonify({"items": items, "total": len(items)})
