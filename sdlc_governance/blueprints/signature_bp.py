"""
External signer blueprint.

Endpoints:
    POST /api/v1/documents/<document_id>/send-for-signing   — route active round to the signer
    GET  /api/v1/documents/<document_id>/signatures         — envelopes for a document
    POST /api/v1/webhooks/signer                            — provider callback intake

The webhook is authenticated by HMAC (X-Signer-Signature) when
SIGNER_WEBHOOK_SECRET is set, never by X-User-Id.
"""

import logging

from flask import Blueprint, jsonify, request

from sdlc_governance.blueprints import acting_user_id, register_error_handlers
from sdlc_governance.services import signature_service

logger = logging.getLogger(__name__)

signature_bp = Blueprint("signature", __name__, url_prefix="/api/v1")
register_error_handlers(signature_bp)


@signature_bp.route("/documents/<int:document_id>/send-for-signing", methods=["POST"])
def send_for_signing(document_id):
    user_id, err = acting_user_id()
    if err:
        return err
    envelope = signature_service.route_for_signature(document_id, actor_id=user_id)
    return jsonify(envelope), 201


@signature_bp.route("/documents/<int:document_id>/signatures", methods=["GET"])
def list_signatures(document_id):
    return jsonify({"items": signature_service.get_envelopes(document_id)})


@signature_bp.route("/webhooks/signer", methods=["POST"])
def signer_webhook():
    raw = request.get_data(cache=True)
    payload = request.get_json(silent=True)
    if payload is None:
        return jsonify({"error": "JSON body is required"}), 400
    event = signature_service.handle_signer_event(
        payload, raw_body=raw, signature=request.headers.get("X-Signer-Signature"),
    )
    return jsonify(event), 200
