"""
External e-signature provider gateway.

The engine treats the provider as opaque: it hands over a document reference
and an ordered recipient list, and gets back a submission handle. Signing
progress comes back through the webhook intake (signature_service).

  - Auth: ``X-Auth-Token`` header from SIGNER_API_KEY
  - Retry: max 2 retries on network errors / 5xx, backoff 1 s → 4 s
  - Timeout: 30 s
  - Always returns a GatewayResult; never raises

Testability: pass a mock ``session`` to SignerGateway() instead of letting
it create a real requests.Session.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import requests

logger = logging.getLogger(__name__)

_RETRY_MAX = 2
_RETRY_BACKOFF_SECONDS = [1, 4]
_DEFAULT_TIMEOUT = 30


class GatewayResult:
    """Structured return value from SignerGateway calls.

    Attributes:
        ok:          True if the call succeeded (HTTP 2xx, no exception).
        status_code: HTTP status code (None on network-level failure).
        data:        Parsed JSON body, else None.
        error:       Human-readable error message or None.
        duration_ms: Round-trip latency in milliseconds.
    """

    def __init__(
        self,
        ok: bool,
        status_code: int | None,
        data: dict | list | None,
        error: str | None,
        duration_ms: int,
    ) -> None:
        self.ok = ok
        self.status_code = status_code
        self.data = data
        self.error = error
        self.duration_ms = duration_ms

    def __repr__(self):
        return f"<GatewayResult ok={self.ok} status={self.status_code} error={self.error!r}>"


class SignerGateway:
    """E-signature provider REST gateway.

    Usage:
        gw = SignerGateway(api_base=..., api_key=...)
        result = gw.create_submission(document_name=..., document_url=..., recipients=[...])
    """

    def __init__(
        self,
        api_base: str,
        api_key: str | None,
        session: requests.Session | None = None,
        sleep=time.sleep,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self._session = session
        self._sleep = sleep

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _headers(self) -> dict[str, str]:
        return {
            "X-Auth-Token": self.api_key or "",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _request(self, method: str, path: str, payload: dict | None = None) -> GatewayResult:
        url = f"{self.api_base}{path}"
        last_error: str | None = None
        last_status: int | None = None
        t0 = time.perf_counter()

        for attempt in range(_RETRY_MAX + 1):
            try:
                resp = self.session.request(
                    method, url, json=payload, headers=self._headers(), timeout=_DEFAULT_TIMEOUT,
                )
                last_status = resp.status_code
                if 200 <= resp.status_code < 300:
                    try:
                        data = resp.json()
                    except ValueError:
                        data = None
                    return GatewayResult(True, resp.status_code, data, None,
                                         int((time.perf_counter() - t0) * 1000))
                last_error = f"HTTP {resp.status_code}: {resp.text[:300]}"
                if resp.status_code < 500:
                    break
            except requests.RequestException as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                last_status = None

            if attempt < _RETRY_MAX:
                logger.warning("Signer call %s %s failed (attempt %d): %s",
                               method, path, attempt + 1, last_error)
                self._sleep(_RETRY_BACKOFF_SECONDS[attempt])

        logger.error("Signer call %s %s gave up: %s", method, path, last_error)
        return GatewayResult(False, last_status, None, last_error,
                             int((time.perf_counter() - t0) * 1000))

    # ── Public API ────────────────────────────────────────────────────────────

    def create_submission(
        self,
        *,
        document_name: str,
        document_url: str | None,
        recipients: list[dict[str, Any]],
        preserve_order: bool,
    ) -> GatewayResult:
        """Send a document to the ordered recipient list.

        ``recipients`` items: {"email", "name", "order"}. The response's
        ``id`` is the opaque submission handle; ``signing_url`` (if present)
        is the first signer's link.
        """
        payload = {
            "name": document_name,
            "documents": [{"name": document_name, "file": document_url}] if document_url else [],
            "order": "preserved" if preserve_order else "random",
            "send_email": True,
            "submitters": [
                {"email": r["email"], "name": r.get("name"), "role": f"Approver {r['order'] + 1}"}
                for r in sorted(recipients, key=lambda r: r["order"])
            ],
        }
        return self._request("POST", "/submissions", payload)

    def get_submission(self, submission_id: str) -> GatewayResult:
        return self._request("GET", f"/submissions/{submission_id}")
