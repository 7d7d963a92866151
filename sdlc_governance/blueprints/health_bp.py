"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — database and engine checks
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import func, select

from sdlc_governance.models import db
from sdlc_governance.models.approval import ApprovalRound, RoundStatus

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Liveness check with database latency and pending round count."""
    checks = {}
    overall = True

    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
        pending = db.session.execute(
            select(func.count(ApprovalRound.id)).where(ApprovalRound.status == RoundStatus.PENDING.value)
        ).scalar_one()
        checks["engine"] = {"status": "ok", "pending_rounds": pending}
    except Exception as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    checks["mail"] = {"status": "smtp" if current_app.config.get("MAIL_SERVER") else "log_only"}
    checks["signer"] = {"status": "configured" if current_app.config.get("SIGNER_API_KEY") else "disabled"}

    return jsonify({"status": "ok" if overall else "degraded", "checks": checks}), 200 if overall else 503
