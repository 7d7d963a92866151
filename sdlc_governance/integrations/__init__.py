"""sdlc_governance.integrations — External service gateway modules.

All outbound HTTP calls to third-party APIs go through a gateway in this
package, never via bare ``requests`` calls in services or blueprints.

Every gateway call is:
  - Authenticated (API token injected by the gateway)
  - Retried with backoff on network errors and 5xx responses
  - Returned as a structured GatewayResult (never raises)

Current gateways:
  signer_gateway.SignerGateway — external e-signature provider
"""
