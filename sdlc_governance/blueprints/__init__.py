"""
Shared blueprint helpers.

- ``register_error_handlers(bp)``: map the engine exception hierarchy to JSON
  responses on a blueprint (one handler per blueprint, same shape everywhere)
- ``acting_user_id()``: the caller's user id from the ``X-User-Id`` header
  (authentication happens upstream of this service)
"""

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from sdlc_governance.core.exceptions import ApprovalEngineError

logger = logging.getLogger(__name__)


def register_error_handlers(bp):
    @bp.errorhandler(ApprovalEngineError)
    def _handle_engine_error(error: ApprovalEngineError):
        return jsonify(error.to_dict()), error.status_code

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return jsonify({"error": "Internal server error"}), 500


def acting_user_id():
    """Return (user_id, None) or (None, error_response)."""
    raw = request.headers.get("X-User-Id", "").strip()
    if not raw:
        return None, (jsonify({"error": "X-User-Id header is required"}), 401)
    try:
        return int(raw), None
    except ValueError:
        return None, (jsonify({"error": "X-User-Id must be an integer"}), 400)


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
