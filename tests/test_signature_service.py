"""External signer routing and webhook intake (provider HTTP mocked)."""

import hashlib
import hmac
import json
from unittest.mock import MagicMock

import pytest
import requests

from sdlc_governance.core.exceptions import (
    ConflictError,
    NotFoundError,
    SignerUnavailableError,
    WebhookSignatureError,
)
from sdlc_governance.integrations.signer_gateway import SignerGateway
from sdlc_governance.models import db
from sdlc_governance.models.document import Document
from sdlc_governance.models.signature import SignatureEnvelope, WebhookEvent
from sdlc_governance.services import (
    approval_service,
    approver_set_service,
    audit_service,
    signature_service,
)


def _response(status_code=200, body=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = body if body is not None else {}
    resp.text = json.dumps(body or {})
    return resp


@pytest.fixture()
def http():
    session = MagicMock()
    session.request.return_value = _response(200, {"id": 501, "signing_url": "https://sign.example/s/abc"})
    signature_service.set_gateway(
        SignerGateway(api_base="https://signer.test/api", api_key="k", session=session, sleep=lambda s: None)
    )
    return session


def _routed(document, users, mode="SEQUENTIAL"):
    approver_set_service.configure("DOCUMENT", document.id, [u.id for u in users], mode)
    return signature_service.route_for_signature(document.id)


class TestGateway:
    def test_retries_on_5xx(self):
        session = MagicMock()
        session.request.side_effect = [_response(503), _response(502), _response(201, {"id": 7})]
        sleeps = []
        gw = SignerGateway("https://signer.test/api", "k", session=session, sleep=sleeps.append)
        result = gw.get_submission("7")
        assert result.ok
        assert result.data == {"id": 7}
        assert sleeps == [1, 4]

    def test_no_retry_on_4xx(self):
        session = MagicMock()
        session.request.return_value = _response(422, {"error": "bad"})
        gw = SignerGateway("https://signer.test/api", "k", session=session, sleep=lambda s: None)
        result = gw.get_submission("x")
        assert not result.ok
        assert result.status_code == 422
        assert session.request.call_count == 1

    def test_network_error_never_raises(self):
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("down")
        gw = SignerGateway("https://signer.test/api", "k", session=session, sleep=lambda s: None)
        result = gw.get_submission("x")
        assert not result.ok
        assert "ConnectionError" in result.error
        assert session.request.call_count == 3


class TestRouteForSignature:
    def test_creates_envelope(self, http, document, approvers):
        a, b, _ = approvers
        env = _routed(document, [a, b])
        assert env["status"] == "SENT"
        assert env["submission_id"] == "501"

        payload = http.request.call_args.kwargs["json"]
        assert payload["order"] == "preserved"
        assert [s["email"] for s in payload["submitters"]] == [a.email, b.email]
        assert audit_service.count("Signature Requested", "document", document.id) == 1

    def test_requires_active_round(self, http, document):
        with pytest.raises(NotFoundError):
            signature_service.route_for_signature(document.id)

    def test_second_envelope_conflicts(self, http, document, approvers):
        _routed(document, approvers[:1])
        with pytest.raises(ConflictError):
            signature_service.route_for_signature(document.id)

    def test_provider_failure(self, document, approvers):
        session = MagicMock()
        session.request.return_value = _response(500)
        signature_service.set_gateway(
            SignerGateway("https://signer.test/api", "k", session=session, sleep=lambda s: None)
        )
        approver_set_service.configure("DOCUMENT", document.id, [approvers[0].id], "PARALLEL")
        with pytest.raises(SignerUnavailableError):
            signature_service.route_for_signature(document.id)
        assert db.session.query(SignatureEnvelope).count() == 0


class TestWebhook:
    def test_recipient_completed_records_signer_decision(self, http, document, approvers):
        a, b, _ = approvers
        _routed(document, [a, b])
        event = signature_service.handle_signer_event({
            "event_type": "recipient.completed",
            "data": {"submission_id": 501, "recipient": {"email": a.email.upper()}},
        })
        assert event["status"] == "PROCESSED"

        rnd = approval_service.get_active_round("DOCUMENT", document.id)
        first = rnd.decisions[0]
        assert (first.status, first.source) == ("APPROVED", "SIGNER")
        assert audit_service.count("Individual Signature Completed", "document", document.id) == 1

    def test_envelope_completed_signs_document(self, http, document, approvers):
        a, b, _ = approvers
        _routed(document, [a, b])
        signature_service.handle_signer_event({
            "event_type": "envelope.completed",
            "data": {"submission_id": "501"},
        })
        assert db.session.get(Document, document.id).status == "SIGNED"
        env = db.session.query(SignatureEnvelope).one()
        assert env.status == "COMPLETED"
        assert audit_service.count("Document Fully Approved", "document", document.id) == 1

    def test_declined_rejects_next_approver(self, http, document, approvers):
        a, b, _ = approvers
        _routed(document, [a, b], mode="PARALLEL")
        signature_service.handle_signer_event({
            "event_type": "envelope.declined",
            "data": {"submission_id": "501"},
        })
        rnd = approval_service.get_active_round("DOCUMENT", document.id)
        assert [d.status for d in rnd.decisions] == ["REJECTED", "PENDING"]
        assert db.session.query(SignatureEnvelope).one().status == "DECLINED"
        assert audit_service.count("Signature Declined", "document", document.id) == 1

    def test_void_naming_later_recipient_closes_envelope(self, http, document, approvers):
        a, b, _ = approvers
        _routed(document, [a, b])
        event = signature_service.handle_signer_event({
            "event_type": "envelope.voided",
            "data": {"submission_id": "501", "recipient": {"email": b.email}},
        })
        assert event["status"] == "IGNORED"
        rnd = approval_service.get_active_round("DOCUMENT", document.id)
        assert [d.status for d in rnd.decisions] == ["PENDING", "PENDING"]
        assert db.session.query(SignatureEnvelope).one().status == "DECLINED"
        assert audit_service.count("Signature Declined", "document", document.id) == 1

        # the round is still open, so it can be sent to the signer again
        http.request.return_value = _response(200, {"id": 502})
        envelope = signature_service.route_for_signature(document.id)
        assert envelope["submission_id"] == "502"
        assert envelope["status"] == "SENT"

    def test_decline_after_envelope_closed_ignored(self, http, document, approvers):
        a, b, _ = approvers
        _routed(document, [a, b], mode="PARALLEL")
        payload = {"event_type": "envelope.declined", "data": {"submission_id": "501"}}
        signature_service.handle_signer_event(payload)
        event = signature_service.handle_signer_event(payload)
        assert event["status"] == "IGNORED"
        rnd = approval_service.get_active_round("DOCUMENT", document.id)
        assert [d.status for d in rnd.decisions] == ["REJECTED", "PENDING"]

    def test_out_of_order_signer_event_ignored(self, http, document, approvers):
        a, b, _ = approvers
        _routed(document, [a, b])
        event = signature_service.handle_signer_event({
            "event_type": "recipient.completed",
            "data": {"submission_id": "501", "recipient": {"email": b.email}},
        })
        assert event["status"] == "IGNORED"
        rnd = approval_service.get_active_round("DOCUMENT", document.id)
        assert [d.status for d in rnd.decisions] == ["PENDING", "PENDING"]

    def test_unknown_submission_ignored(self):
        event = signature_service.handle_signer_event({
            "event_type": "recipient.completed",
            "data": {"submission_id": "nope"},
        })
        assert event["status"] == "IGNORED"
        assert db.session.query(WebhookEvent).count() == 1

    def test_bad_signature(self, app):
        app.config["SIGNER_WEBHOOK_SECRET"] = "s3cret"
        try:
            with pytest.raises(WebhookSignatureError):
                signature_service.handle_signer_event({"event_type": "x"}, raw_body=b"{}", signature="deadbeef")
        finally:
            app.config["SIGNER_WEBHOOK_SECRET"] = None
        assert db.session.query(WebhookEvent).count() == 0

    def test_good_signature_over_http(self, app, client):
        body = json.dumps({"event_type": "envelope.completed", "data": {"submission_id": "zzz"}}).encode()
        app.config["SIGNER_WEBHOOK_SECRET"] = "s3cret"
        try:
            sig = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
            res = client.post("/api/v1/webhooks/signer", data=body,
                              headers={"Content-Type": "application/json", "X-Signer-Signature": sig})
            assert res.status_code == 200
            assert res.get_json()["status"] == "IGNORED"

            res = client.post("/api/v1/webhooks/signer", data=body,
                              headers={"Content-Type": "application/json", "X-Signer-Signature": "bad"})
            assert res.status_code == 401
        finally:
            app.config["SIGNER_WEBHOOK_SECRET"] = None
